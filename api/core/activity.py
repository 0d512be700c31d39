"""
Activity log writes.

Handlers call `record` inside their transaction so the log row commits or
rolls back together with the change it describes.
"""

from __future__ import annotations

from typing import Any

import asyncpg

from . import db
from .tenancy import TenantContext


async def record(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    *,
    action: str,
    entity_type: str,
    entity_id: int | None,
    details: dict[str, Any] | None = None,
) -> None:
    # jsonb params are encoded by the codec installed in `db.init_connection`.
    await db.execute(
        conn,
        """
        INSERT INTO activity_logs (tenant_id, user_id, action, entity_type, entity_id, details)
        VALUES ($1, $2, $3, $4, $5, COALESCE($6::jsonb, '{}'::jsonb))
        """,
        ctx.tenant_id,
        ctx.user_id,
        action,
        entity_type,
        entity_id,
        details,
    )


async def recent(conn: asyncpg.Connection, ctx: TenantContext, *, limit: int = 10) -> list[dict[str, Any]]:
    return await db.fetch_all(
        conn,
        """
        SELECT a.id, a.action, a.entity_type, a.entity_id, a.details, a.created_at,
               u.email AS actor_email
        FROM activity_logs a
        LEFT JOIN users u ON u.id = a.user_id
        WHERE a.tenant_id = $1
        ORDER BY a.created_at DESC, a.id DESC
        LIMIT $2
        """,
        ctx.tenant_id,
        limit,
    )
