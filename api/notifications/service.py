"""
Candidate notifications.

A notification is a row in `notifications`, written in the caller's
transaction. When `NOTIFICATION_WEBHOOK_URL` is configured the same payload
is also POSTed there before the transaction commits, so a delivery failure
rolls the whole workflow step back instead of leaving a silent gap.
"""

from __future__ import annotations

import logging
from typing import Any

import asyncpg
import httpx

from core import config
from core.errors import NotFoundError, NotificationDeliveryError
from core.tenancy import TenantContext

from . import repository

logger = logging.getLogger(__name__)


async def deliver_webhook(payload: dict[str, Any]) -> None:
    url = config.notification_webhook_url()
    if not url:
        return None

    try:
        async with httpx.AsyncClient(timeout=config.notification_timeout_s()) as client:
            resp = await client.post(url, json=payload)
    except httpx.HTTPError as exc:
        logger.warning("notification_delivery_failed error=%s", type(exc).__name__)
        raise NotificationDeliveryError("Notification delivery failed.") from exc

    if resp.status_code >= 400:
        logger.warning("notification_delivery_rejected status=%s", resp.status_code)
        raise NotificationDeliveryError("Notification delivery failed.")


async def notify_user(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    *,
    user_id: int | None,
    title: str,
    message: str,
    entity_type: str | None = None,
    entity_id: int | None = None,
) -> dict[str, Any] | None:
    """
    Record (and optionally deliver) a notification.

    Candidates created by staff may have no login yet; they get nothing.
    """
    if user_id is None:
        logger.info("notification_skipped reason=no_user entity_type=%s entity_id=%s", entity_type, entity_id)
        return None

    row = await repository.insert_notification(
        conn,
        ctx,
        user_id=user_id,
        title=title,
        message=message,
        entity_type=entity_type,
        entity_id=entity_id,
    )
    await deliver_webhook(
        {
            "notification_id": int(row["id"]),
            "tenant_id": ctx.tenant_id,
            "user_id": user_id,
            "title": title,
            "message": message,
            "entity_type": entity_type,
            "entity_id": entity_id,
        }
    )
    return row


async def list_notifications(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    *,
    unread_only: bool = False,
    limit: int = 50,
    offset: int = 0,
) -> dict[str, Any]:
    rows = await repository.list_for_user(conn, ctx, unread_only=unread_only, limit=limit, offset=offset)
    unread = await repository.count_unread(conn, ctx)
    return {"notifications": rows, "unread": unread, "limit": limit, "offset": offset}


async def mark_read(conn: asyncpg.Connection, ctx: TenantContext, notification_id: int) -> dict[str, Any]:
    row = await repository.mark_read(conn, ctx, notification_id)
    if row is None:
        raise NotFoundError.for_entity("Notification")
    return row
