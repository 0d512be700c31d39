"""
FastAPI router for candidate notifications.
"""

from __future__ import annotations

import asyncpg
from fastapi import APIRouter, Depends, Query

from auth import dependencies as auth_dependencies
from core import db
from core.responses import ok
from core.tenancy import TenantContext

from . import service

router = APIRouter(prefix="/candidate/notifications")


@router.get("")
async def list_notifications(
    unread_only: bool = Query(False),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    conn: asyncpg.Connection = Depends(db.get_connection),
    current_user: TenantContext = Depends(auth_dependencies.get_current_user),
) -> dict:
    result = await service.list_notifications(
        conn,
        current_user,
        unread_only=unread_only,
        limit=limit,
        offset=offset,
    )
    return ok(result)


@router.patch("/{notification_id}/read")
async def mark_read(
    notification_id: int,
    conn: asyncpg.Connection = Depends(db.get_connection),
    current_user: TenantContext = Depends(auth_dependencies.get_current_user),
) -> dict:
    row = await service.mark_read(conn, current_user, notification_id)
    return ok(row)
