"""Tests for JWT authentication dependencies."""

import uuid
from unittest.mock import MagicMock

import pytest
from fastapi.security import HTTPAuthorizationCredentials
from jose import jwt

from guarantee_engine.auth import get_current_user, get_optional_user, require_admin
from guarantee_engine.config import settings
from guarantee_engine.exceptions import ForbiddenException, UnauthorizedException


def _credentials(claims: dict, secret: str | None = None) -> HTTPAuthorizationCredentials:
    token = jwt.encode(claims, secret or settings.jwt_secret_key, algorithm=settings.jwt_algorithm)
    return HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)


class TestGetCurrentUser:
    @pytest.mark.asyncio
    async def test_decodes_claims(self):
        user_id = uuid.uuid4()
        request = MagicMock()

        user = await get_current_user(
            request, _credentials({"sub": str(user_id), "email": "awa@example.com"})
        )

        assert user.id == user_id
        assert user.role == "client"
        assert user.is_admin is False
        assert request.state.user is user

    @pytest.mark.asyncio
    async def test_admin_role_grants_admin(self):
        user = await get_current_user(
            MagicMock(),
            _credentials({"sub": str(uuid.uuid4()), "email": "ops@example.com", "role": "admin"}),
        )
        assert user.is_admin is True
        assert await require_admin(user) is user

    @pytest.mark.asyncio
    async def test_missing_credentials(self):
        with pytest.raises(UnauthorizedException):
            await get_current_user(MagicMock(), None)

    @pytest.mark.asyncio
    async def test_bad_signature(self):
        with pytest.raises(UnauthorizedException):
            await get_current_user(
                MagicMock(),
                _credentials({"sub": str(uuid.uuid4()), "email": "x@example.com"}, "wrong-secret"),
            )

    @pytest.mark.asyncio
    async def test_missing_claims(self):
        with pytest.raises(UnauthorizedException):
            await get_current_user(MagicMock(), _credentials({"email": "x@example.com"}))


class TestOptionalAndAdmin:
    @pytest.mark.asyncio
    async def test_optional_user_swallows_bad_tokens(self):
        bad = HTTPAuthorizationCredentials(scheme="Bearer", credentials="not-a-jwt")
        assert await get_optional_user(MagicMock(), bad) is None
        assert await get_optional_user(MagicMock(), None) is None

    @pytest.mark.asyncio
    async def test_require_admin_rejects_clients(self):
        client = await get_current_user(
            MagicMock(), _credentials({"sub": str(uuid.uuid4()), "email": "awa@example.com"})
        )
        with pytest.raises(ForbiddenException):
            await require_admin(client)
