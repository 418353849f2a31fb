from guarantee_engine.database.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from guarantee_engine.database.engine import async_session, engine
from guarantee_engine.database.session import get_db

__all__ = [
    "Base",
    "TimestampMixin",
    "UUIDPrimaryKeyMixin",
    "async_session",
    "engine",
    "get_db",
]
