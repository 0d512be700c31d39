"""
Notification persistence (raw SQL).
"""

from __future__ import annotations

from typing import Any

import asyncpg

from core import db
from core.tenancy import TenantContext


async def insert_notification(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    *,
    user_id: int,
    title: str,
    message: str,
    entity_type: str | None = None,
    entity_id: int | None = None,
) -> dict[str, Any]:
    row = await db.fetch_one(
        conn,
        """
        INSERT INTO notifications (tenant_id, user_id, title, message, entity_type, entity_id)
        VALUES ($1, $2, $3, $4, $5, $6)
        RETURNING id, tenant_id, user_id, title, message, entity_type, entity_id, is_read, created_at
        """,
        ctx.tenant_id,
        user_id,
        title,
        message,
        entity_type,
        entity_id,
    )
    if row is None:
        raise RuntimeError("Failed to insert notification.")
    return row


async def list_for_user(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    *,
    unread_only: bool = False,
    limit: int = 50,
    offset: int = 0,
) -> list[dict[str, Any]]:
    return await db.fetch_all(
        conn,
        """
        SELECT id, title, message, entity_type, entity_id, is_read, created_at, read_at
        FROM notifications
        WHERE tenant_id = $1
          AND user_id = $2
          AND ($3 = false OR is_read = false)
        ORDER BY created_at DESC, id DESC
        LIMIT $4
        OFFSET $5
        """,
        ctx.tenant_id,
        ctx.user_id,
        unread_only,
        limit,
        offset,
    )


async def count_unread(conn: asyncpg.Connection, ctx: TenantContext) -> int:
    value = await db.fetch_value(
        conn,
        """
        SELECT count(*)
        FROM notifications
        WHERE tenant_id = $1
          AND user_id = $2
          AND is_read = false
        """,
        ctx.tenant_id,
        ctx.user_id,
    )
    return int(value or 0)


async def mark_read(conn: asyncpg.Connection, ctx: TenantContext, notification_id: int) -> dict[str, Any] | None:
    return await db.fetch_one(
        conn,
        """
        UPDATE notifications
        SET is_read = true,
            read_at = COALESCE(read_at, now())
        WHERE id = $1
          AND tenant_id = $2
          AND user_id = $3
        RETURNING id, is_read, read_at
        """,
        notification_id,
        ctx.tenant_id,
        ctx.user_id,
    )
