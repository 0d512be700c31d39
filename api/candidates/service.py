"""
Candidate profiles and the recruiter pipeline.

`advance_for_event` is the hook other workflows (cohort approval, vetting)
use to move a candidate along; it only ever moves forward from the statuses
listed in `lifecycle.transitions.CANDIDATE_EVENT_RULES`.
"""

from __future__ import annotations

import logging
from typing import Any

import asyncpg

from auth import repository as auth_repository
from core import activity
from core.errors import NotFoundError, PermissionDeniedError, ValidationError
from core.tenancy import Role, TenantContext
from lifecycle import transitions
from lifecycle.statuses import CandidateStatus, parse_status
from notifications import service as notification_service

from . import repository, schemas

logger = logging.getLogger(__name__)


def _can_see(ctx: TenantContext, candidate: dict[str, Any]) -> bool:
    if ctx.role is Role.RECRUITER:
        return candidate.get("recruiter_id") == ctx.user_id
    if ctx.role is Role.CANDIDATE:
        return candidate.get("user_id") == ctx.user_id
    return True


async def _require_recruiter(conn: asyncpg.Connection, ctx: TenantContext, recruiter_id: int) -> None:
    user = await auth_repository.get_user_in_tenant(conn, ctx, recruiter_id)
    if user is None or user["role"] != Role.RECRUITER.value:
        raise NotFoundError.for_entity("Recruiter")


async def load_candidate(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    candidate_id: int,
    *,
    for_update: bool = False,
) -> dict[str, Any]:
    row = await repository.get_candidate(conn, ctx, candidate_id, for_update=for_update)
    if row is None or not _can_see(ctx, row):
        raise NotFoundError.for_entity("Candidate")
    return row


async def candidate_for_user(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    *,
    for_update: bool = False,
) -> dict[str, Any]:
    """
    Candidate profile behind the logged-in user.
    """
    row = await repository.get_candidate_by_user(conn, ctx, ctx.user_id, for_update=for_update)
    if row is None:
        raise NotFoundError.for_entity("Candidate profile")
    return row


async def create_candidate(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    payload: schemas.CandidateCreateRequest,
) -> dict[str, Any]:
    recruiter_id = payload.recruiter_id
    if ctx.role is Role.RECRUITER:
        # Recruiters always own the candidates they create.
        recruiter_id = ctx.user_id
    elif recruiter_id is not None:
        await _require_recruiter(conn, ctx, recruiter_id)

    async with conn.transaction():
        row = await repository.insert_candidate(
            conn,
            ctx,
            full_name=payload.full_name.strip(),
            email=(payload.email or "").strip().lower() or None,
            phone=payload.phone,
            preferred_country=payload.preferred_country,
            recruiter_id=recruiter_id,
        )
        await repository.insert_pipeline_event(
            conn,
            ctx,
            candidate_id=int(row["id"]),
            from_stage=None,
            to_stage=CandidateStatus.REGISTERED,
            comment="Candidate created.",
        )
        await activity.record(
            conn,
            ctx,
            action="CANDIDATE_CREATED",
            entity_type="candidate",
            entity_id=int(row["id"]),
            details={"recruiter_id": recruiter_id},
        )

    logger.info("candidate_created candidate_id=%s tenant_id=%s", row["id"], ctx.tenant_id)
    return row


async def list_candidates(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    *,
    status: CandidateStatus | None = None,
    limit: int = 50,
    offset: int = 0,
) -> dict[str, Any]:
    recruiter_id = ctx.user_id if ctx.role is Role.RECRUITER else None
    rows = await repository.list_candidates(
        conn,
        ctx,
        status=status,
        recruiter_id=recruiter_id,
        limit=limit,
        offset=offset,
    )
    return {"candidates": rows, "limit": limit, "offset": offset, "count": len(rows)}


async def assign_recruiter(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    candidate_id: int,
    recruiter_id: int,
) -> dict[str, Any]:
    if not ctx.is_admin:
        raise PermissionDeniedError("Insufficient permissions.")
    await _require_recruiter(conn, ctx, recruiter_id)

    async with conn.transaction():
        row = await repository.set_recruiter(conn, ctx, candidate_id, recruiter_id)
        if row is None:
            raise NotFoundError.for_entity("Candidate")
        await activity.record(
            conn,
            ctx,
            action="CANDIDATE_RECRUITER_ASSIGNED",
            entity_type="candidate",
            entity_id=candidate_id,
            details={"recruiter_id": recruiter_id},
        )
    return row


async def transition_stage(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    candidate_id: int,
    payload: schemas.PipelineTransitionRequest,
) -> dict[str, Any]:
    blocker_reason = (payload.blocker_reason or "").strip() or None
    if payload.is_blocked and blocker_reason is None:
        raise ValidationError("blocker_reason is required when blocking a stage.")

    async with conn.transaction():
        candidate = await load_candidate(conn, ctx, candidate_id, for_update=True)
        current = parse_status(CandidateStatus, candidate["status"])
        next_stage = transitions.pipeline(current, payload.next_stage)

        if next_stage is not current:
            candidate = await repository.update_status(conn, ctx, candidate_id, next_stage)
            if candidate is None:
                raise NotFoundError.for_entity("Candidate")

        event = await repository.insert_pipeline_event(
            conn,
            ctx,
            candidate_id=candidate_id,
            from_stage=current,
            to_stage=next_stage,
            comment=payload.comment,
            is_blocked=payload.is_blocked,
            blocker_reason=blocker_reason,
        )
        await activity.record(
            conn,
            ctx,
            action="CANDIDATE_STAGE_CHANGED",
            entity_type="candidate",
            entity_id=candidate_id,
            details={"from": current.value, "to": next_stage.value, "is_blocked": payload.is_blocked},
        )
        if next_stage is not current:
            await notification_service.notify_user(
                conn,
                ctx,
                user_id=candidate.get("user_id"),
                title="Application status updated",
                message=f"Your application moved to {next_stage.value}.",
                entity_type="candidate",
                entity_id=candidate_id,
            )

    logger.info(
        "candidate_transition candidate_id=%s from=%s to=%s tenant_id=%s",
        candidate_id,
        current.value,
        next_stage.value,
        ctx.tenant_id,
    )
    return {"candidate": candidate, "event": event}


async def pipeline_events(conn: asyncpg.Connection, ctx: TenantContext, candidate_id: int) -> list[dict[str, Any]]:
    await load_candidate(conn, ctx, candidate_id)
    return await repository.list_pipeline_events(conn, ctx, candidate_id)


async def advance_for_event(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    candidate_id: int,
    event: transitions.CandidateEvent,
    *,
    comment: str | None = None,
) -> dict[str, Any] | None:
    """
    Apply a workflow-driven candidate move inside the caller's transaction.

    Returns the updated candidate, or None when the event does not apply to
    the candidate's current status.
    """
    candidate = await repository.get_candidate(conn, ctx, candidate_id, for_update=True)
    if candidate is None:
        raise NotFoundError.for_entity("Candidate")

    current = parse_status(CandidateStatus, candidate["status"])
    target = transitions.candidate_after(current, event)
    if target is None or target is current:
        return None

    updated = await repository.update_status(conn, ctx, candidate_id, target)
    await repository.insert_pipeline_event(
        conn,
        ctx,
        candidate_id=candidate_id,
        from_stage=current,
        to_stage=target,
        comment=comment,
    )
    logger.info(
        "candidate_transition candidate_id=%s from=%s to=%s event=%s tenant_id=%s",
        candidate_id,
        current.value,
        target.value,
        event.value,
        ctx.tenant_id,
    )
    return updated
