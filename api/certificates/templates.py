"""
Certificate template management.
"""

from __future__ import annotations

from typing import Any

import asyncpg

from core import activity
from core.errors import ConflictError, NotFoundError
from core.tenancy import TenantContext

from . import repository, schemas


async def create_template(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    payload: schemas.TemplateCreateRequest,
) -> dict[str, Any]:
    async with conn.transaction():
        row = await repository.insert_template(
            conn,
            ctx,
            name=payload.name.strip(),
            description=payload.description,
            design=payload.design,
            content=payload.content,
            is_active=payload.is_active,
        )
        await activity.record(
            conn,
            ctx,
            action="CERTIFICATE_TEMPLATE_CREATED",
            entity_type="certificate_template",
            entity_id=int(row["id"]),
            details={"name": row["name"]},
        )
    return row


async def get_template(conn: asyncpg.Connection, ctx: TenantContext, template_id: int) -> dict[str, Any]:
    row = await repository.get_template(conn, ctx, template_id)
    if row is None:
        raise NotFoundError.for_entity("Certificate template")
    return row


async def list_templates(conn: asyncpg.Connection, ctx: TenantContext, *, active_only: bool = False) -> list[dict[str, Any]]:
    return await repository.list_templates(conn, ctx, active_only=active_only)


async def update_template(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    template_id: int,
    payload: schemas.TemplateUpdateRequest,
) -> dict[str, Any]:
    fields = {k: v for k, v in payload.model_dump(exclude_unset=True).items() if v is not None or k == "description"}
    row = await repository.update_template(conn, ctx, template_id, fields)
    if row is None:
        raise NotFoundError.for_entity("Certificate template")
    return row


async def set_active(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    template_id: int,
    is_active: bool,
) -> dict[str, Any]:
    async with conn.transaction():
        row = await repository.set_template_active(conn, ctx, template_id, is_active)
        if row is None:
            raise NotFoundError.for_entity("Certificate template")
        await activity.record(
            conn,
            ctx,
            action="CERTIFICATE_TEMPLATE_ACTIVATED" if is_active else "CERTIFICATE_TEMPLATE_DEACTIVATED",
            entity_type="certificate_template",
            entity_id=template_id,
        )
    return row


async def delete_template(conn: asyncpg.Connection, ctx: TenantContext, template_id: int) -> None:
    """
    Templates referenced by any certificate cannot be deleted; deactivate them instead.
    """
    async with conn.transaction():
        await get_template(conn, ctx, template_id)
        in_use = await repository.count_certificates_using_template(conn, ctx, template_id)
        if in_use > 0:
            raise ConflictError(f"Certificate template is used by {in_use} certificate(s); deactivate it instead.")
        try:
            deleted = await repository.delete_template(conn, ctx, template_id)
        except asyncpg.ForeignKeyViolationError as exc:
            raise ConflictError("Certificate template is in use; deactivate it instead.") from exc
        if not deleted:
            raise NotFoundError.for_entity("Certificate template")
        await activity.record(
            conn,
            ctx,
            action="CERTIFICATE_TEMPLATE_DELETED",
            entity_type="certificate_template",
            entity_id=template_id,
        )
