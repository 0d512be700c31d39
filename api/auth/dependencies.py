"""
Auth dependencies for protected FastAPI routes.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable

import asyncpg
from fastapi import Depends, Header

from core import db
from core.errors import AuthenticationError, PermissionDeniedError
from core.tenancy import Role, TenantContext

from . import service


def _extract_bearer_token(authorization: str | None) -> str:
    raw = (authorization or "").strip()
    if not raw:
        raise AuthenticationError("Missing Authorization header.")

    parts = raw.split(" ", 1)
    if len(parts) != 2:
        raise AuthenticationError("Invalid Authorization header format.")

    scheme, token = parts[0].strip().lower(), parts[1].strip()
    if scheme != "bearer" or not token:
        raise AuthenticationError("Authorization must be: Bearer <token>.")
    return token


async def get_bearer_token(authorization: str | None = Header(default=None)) -> str:
    return _extract_bearer_token(authorization)


async def get_current_user(
    access_token: str = Depends(get_bearer_token),
    conn: asyncpg.Connection = Depends(db.get_connection),
) -> TenantContext:
    return await service.get_context_from_access_token(conn, access_token)


def require_roles(*roles: Role) -> Callable[..., Awaitable[TenantContext]]:
    """
    Dependency factory: authenticated user holding one of `roles`.
    """
    allowed = frozenset(roles)

    async def _dependency(ctx: TenantContext = Depends(get_current_user)) -> TenantContext:
        if ctx.role not in allowed:
            raise PermissionDeniedError("Insufficient permissions.")
        return ctx

    return _dependency


require_admin = require_roles(Role.ADMIN)
require_staff = require_roles(Role.ADMIN, Role.RECRUITER, Role.TRAINER)
require_candidate = require_roles(Role.CANDIDATE)
