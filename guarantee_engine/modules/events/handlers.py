"""EventHandlerRegistry — central registry for outbox event handlers."""

import inspect
import logging
from collections import defaultdict
from collections.abc import Callable

logger = logging.getLogger(__name__)


class EventHandlerRegistry:
    """Class-level registry for event handlers.

    Handlers accept a payload dict and may be plain functions or coroutines.
    Multiple handlers can be registered for the same event_type.
    """

    _handlers: dict[str, list[Callable]] = defaultdict(list)

    @classmethod
    def register(cls, event_type: str, handler: Callable) -> None:
        if handler in cls._handlers[event_type]:
            return
        cls._handlers[event_type].append(handler)
        logger.info("Registered handler %s for event type %s", handler.__name__, event_type)

    @classmethod
    def get_handlers(cls, event_type: str) -> list[Callable]:
        return list(cls._handlers.get(event_type, []))

    @classmethod
    async def dispatch(cls, event_type: str, payload: dict) -> list[dict]:
        """Run every handler for ``event_type``.

        Returns one result dict per handler. A failing handler is logged and
        reported but does not stop the others.
        """
        results = []
        for handler in cls.get_handlers(event_type):
            try:
                outcome = handler(payload)
                if inspect.isawaitable(outcome):
                    await outcome
                results.append({"handler": handler.__name__, "status": "ok"})
            except Exception as exc:
                logger.exception(
                    "Handler %s failed for event type %s", handler.__name__, event_type
                )
                results.append({
                    "handler": handler.__name__,
                    "status": "error",
                    "error": str(exc),
                })
        return results

    @classmethod
    def clear(cls) -> None:
        """Remove all registered handlers. Useful for testing."""
        cls._handlers.clear()
