"""
FastAPI router for auth endpoints.
"""

from __future__ import annotations

import asyncpg
from fastapi import APIRouter, Depends, Request

from core import db
from core.responses import ok
from core.tenancy import TenantContext

from . import dependencies as auth_dependencies
from . import schemas, service

router = APIRouter(prefix="/auth")


def _client_meta(request: Request) -> dict[str, str | None]:
    return {
        "user_agent": request.headers.get("user-agent"),
        "ip_address": request.client.host if request.client else None,
    }


@router.post("/register", status_code=201)
async def register(
    payload: schemas.RegisterRequest,
    request: Request,
    conn: asyncpg.Connection = Depends(db.get_connection),
) -> dict:
    result = await service.register(conn, payload, **_client_meta(request))
    return ok(result.model_dump(mode="json"))


@router.post("/login")
async def login(
    payload: schemas.LoginRequest,
    request: Request,
    conn: asyncpg.Connection = Depends(db.get_connection),
) -> dict:
    result = await service.login(conn, payload, **_client_meta(request))
    return ok(result.model_dump(mode="json"))


@router.post("/refresh")
async def refresh(
    payload: schemas.RefreshRequest,
    request: Request,
    conn: asyncpg.Connection = Depends(db.get_connection),
) -> dict:
    tokens = await service.refresh_tokens(conn, payload, **_client_meta(request))
    return ok(tokens.model_dump(mode="json"))


@router.post("/logout")
async def logout(
    payload: schemas.LogoutRequest,
    conn: asyncpg.Connection = Depends(db.get_connection),
    current_user: TenantContext = Depends(auth_dependencies.get_current_user),
) -> dict:
    """
    Revoke one refresh token, or every session of the caller when none is given.
    """
    result = await service.logout(conn, payload, current_user_id=current_user.user_id)
    return ok(result)


@router.get("/me")
async def me(
    conn: asyncpg.Connection = Depends(db.get_connection),
    current_user: TenantContext = Depends(auth_dependencies.get_current_user),
) -> dict:
    user = await service.me(conn, current_user)
    return ok(user.model_dump(mode="json"))


@router.post("/users", status_code=201)
async def create_user(
    payload: schemas.CreateUserRequest,
    conn: asyncpg.Connection = Depends(db.get_connection),
    current_user: TenantContext = Depends(auth_dependencies.require_admin),
) -> dict:
    user = await service.create_user(conn, current_user, payload)
    return ok(user.model_dump(mode="json"))
