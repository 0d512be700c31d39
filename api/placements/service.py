"""
Employer companies, job openings and candidate placements.

A placement takes a CLEARED candidate through interview, offer, visa and
travel to COMPLETED, which moves the candidate to PLACED and is what the
recruiter dashboard counts as a hire. A candidate has at most one active
placement: checked up front and enforced by a partial unique index.
"""

from __future__ import annotations

import logging
from typing import Any

import asyncpg

from candidates import service as candidate_service
from core import activity
from core.errors import ConflictError, InvalidStateError, NotFoundError, ValidationError
from core.tenancy import Role, TenantContext
from lifecycle import transitions
from lifecycle.statuses import (
    ACTIVE_PLACEMENT_STATUSES,
    CandidateStatus,
    CompanyStatus,
    JobOpeningStatus,
    PlacementStatus,
    parse_status,
    values,
)
from lifecycle.transitions import CandidateEvent, Effect, PlacementAction
from notifications import service as notification_service

from . import repository, schemas

logger = logging.getLogger(__name__)

ACTIVE_PLACEMENT_MESSAGE = "Candidate already has an active placement."

NOTIFICATION_TITLES = {
    PlacementStatus.INTERVIEW_SCHEDULED: "Interview scheduled",
    PlacementStatus.OFFER_LETTER_SENT: "Offer letter sent",
    PlacementStatus.TRAVEL_READY: "Ready to travel",
    PlacementStatus.COMPLETED: "Placement completed",
    PlacementStatus.CANCELLED: "Placement cancelled",
}


def _clean(value: str | None) -> str | None:
    return (value or "").strip() or None


async def _load_company(conn: asyncpg.Connection, ctx: TenantContext, company_id: int) -> dict[str, Any]:
    row = await repository.get_company(conn, ctx, company_id)
    if row is None:
        raise NotFoundError.for_entity("Company")
    return row


async def _load_placement(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    placement_id: int,
    *,
    for_update: bool = False,
) -> dict[str, Any]:
    row = await repository.get_placement(conn, ctx, placement_id, for_update=for_update)
    if row is None or (ctx.role is Role.RECRUITER and row.get("recruiter_id") != ctx.user_id):
        raise NotFoundError.for_entity("Placement")
    return row


async def create_company(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    payload: schemas.CompanyCreateRequest,
) -> dict[str, Any]:
    async with conn.transaction():
        try:
            row = await repository.insert_company(
                conn,
                ctx,
                name=payload.name.strip(),
                email=(_clean(payload.email) or "").lower() or None,
                phone=_clean(payload.phone),
                country=_clean(payload.country),
                industry=_clean(payload.industry),
                contact_person=_clean(payload.contact_person),
                website=_clean(payload.website),
            )
        except asyncpg.UniqueViolationError as exc:
            raise ConflictError("Company name already exists.") from exc
        await activity.record(
            conn,
            ctx,
            action="COMPANY_CREATED",
            entity_type="company",
            entity_id=int(row["id"]),
            details={"name": row["name"]},
        )

    logger.info("company_created company_id=%s tenant_id=%s", row["id"], ctx.tenant_id)
    return row


async def get_company(conn: asyncpg.Connection, ctx: TenantContext, company_id: int) -> dict[str, Any]:
    return await _load_company(conn, ctx, company_id)


async def list_companies(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    *,
    status: CompanyStatus | None = None,
    search: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> dict[str, Any]:
    rows = await repository.list_companies(
        conn,
        ctx,
        status=status,
        search=_clean(search),
        limit=limit,
        offset=offset,
    )
    return {"companies": rows, "limit": limit, "offset": offset, "count": len(rows)}


async def update_company(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    company_id: int,
    payload: schemas.CompanyUpdateRequest,
) -> dict[str, Any]:
    fields = payload.model_dump(exclude_unset=True)
    # Name and status are required columns; an explicit null leaves them as they are.
    for name in ("name", "status"):
        if name in fields and fields[name] is None:
            fields.pop(name)
    if "name" in fields:
        fields["name"] = fields["name"].strip()

    async with conn.transaction():
        try:
            row = await repository.update_company(conn, ctx, company_id, fields)
        except asyncpg.UniqueViolationError as exc:
            raise ConflictError("Company name already exists.") from exc
        if row is None:
            raise NotFoundError.for_entity("Company")
        await activity.record(
            conn,
            ctx,
            action="COMPANY_UPDATED",
            entity_type="company",
            entity_id=company_id,
            details={"fields": sorted(fields)},
        )
    return row


async def delete_company(conn: asyncpg.Connection, ctx: TenantContext, company_id: int) -> None:
    """
    Companies referenced by job openings or placements cannot be deleted; deactivate them instead.
    """
    async with conn.transaction():
        company = await _load_company(conn, ctx, company_id)
        if await repository.count_company_references(conn, ctx, company_id) > 0:
            raise ConflictError("Company has job openings or placements. Deactivate it instead.")
        if not await repository.delete_company(conn, ctx, company_id):
            raise NotFoundError.for_entity("Company")
        await activity.record(
            conn,
            ctx,
            action="COMPANY_DELETED",
            entity_type="company",
            entity_id=company_id,
            details={"name": company["name"]},
        )

    logger.info("company_deleted company_id=%s tenant_id=%s", company_id, ctx.tenant_id)


async def create_job_opening(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    payload: schemas.JobOpeningCreateRequest,
) -> dict[str, Any]:
    company = await _load_company(conn, ctx, payload.company_id)
    if company["status"] != CompanyStatus.ACTIVE.value:
        raise InvalidStateError("Company is inactive.")

    async with conn.transaction():
        row = await repository.insert_job_opening(
            conn,
            ctx,
            company_id=payload.company_id,
            job_title=payload.job_title.strip(),
            location=_clean(payload.location),
            job_type=_clean(payload.job_type),
            openings=payload.openings,
            salary_range=_clean(payload.salary_range),
            description=payload.description,
        )
        await activity.record(
            conn,
            ctx,
            action="JOB_OPENING_CREATED",
            entity_type="job_opening",
            entity_id=int(row["id"]),
            details={"job_title": row["job_title"], "company_id": payload.company_id},
        )

    logger.info("job_opening_created job_opening_id=%s tenant_id=%s", row["id"], ctx.tenant_id)
    return row


async def list_job_openings(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    *,
    status: JobOpeningStatus | None = None,
    company_id: int | None = None,
    limit: int = 50,
    offset: int = 0,
) -> dict[str, Any]:
    rows = await repository.list_job_openings(
        conn,
        ctx,
        status=status,
        company_id=company_id,
        limit=limit,
        offset=offset,
    )
    return {"job_openings": rows, "limit": limit, "offset": offset, "count": len(rows)}


async def close_job_opening(conn: asyncpg.Connection, ctx: TenantContext, job_opening_id: int) -> dict[str, Any]:
    async with conn.transaction():
        opening = await repository.get_job_opening(conn, ctx, job_opening_id)
        if opening is None:
            raise NotFoundError.for_entity("Job opening")
        row = await repository.close_job_opening(conn, ctx, job_opening_id)
        if row is None:
            raise InvalidStateError(f"Cannot close job opening in status {opening['status']}.")
        await activity.record(
            conn,
            ctx,
            action="JOB_OPENING_CLOSED",
            entity_type="job_opening",
            entity_id=job_opening_id,
        )
    return row


async def create_placement(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    payload: schemas.PlacementCreateRequest,
) -> dict[str, Any]:
    company = await _load_company(conn, ctx, payload.company_id)
    if company["status"] != CompanyStatus.ACTIVE.value:
        raise InvalidStateError("Company is inactive.")

    job_role = _clean(payload.job_role_offered)
    if payload.job_opening_id is not None:
        opening = await repository.get_job_opening(conn, ctx, payload.job_opening_id)
        if opening is None or int(opening["company_id"]) != payload.company_id:
            raise NotFoundError.for_entity("Job opening")
        if opening["status"] != JobOpeningStatus.OPEN.value:
            raise InvalidStateError("Job opening is closed.")
        job_role = job_role or opening["job_title"]
    if job_role is None:
        raise ValidationError("job_role_offered is required without a job opening.")

    async with conn.transaction():
        # Recruiters can only place candidates assigned to them.
        candidate = await candidate_service.load_candidate(conn, ctx, payload.candidate_id, for_update=True)
        status = parse_status(CandidateStatus, candidate["status"])
        if status is not CandidateStatus.CLEARED:
            raise InvalidStateError(f"Cannot place candidate in status {status.value}; vetting must be cleared.")

        if await repository.get_active_placement(
            conn, ctx, payload.candidate_id, values(ACTIVE_PLACEMENT_STATUSES)
        ) is not None:
            raise ConflictError(ACTIVE_PLACEMENT_MESSAGE)

        try:
            row = await repository.insert_placement(
                conn,
                ctx,
                candidate_id=payload.candidate_id,
                company_id=payload.company_id,
                job_opening_id=payload.job_opening_id,
                job_role_offered=job_role,
                country=_clean(payload.country) or company.get("country"),
            )
        except asyncpg.UniqueViolationError as exc:
            raise ConflictError(ACTIVE_PLACEMENT_MESSAGE) from exc

        await activity.record(
            conn,
            ctx,
            action="PLACEMENT_CREATED",
            entity_type="placement",
            entity_id=int(row["id"]),
            details={"candidate_id": payload.candidate_id, "company_id": payload.company_id},
        )
        await notification_service.notify_user(
            conn,
            ctx,
            user_id=candidate.get("user_id"),
            title="Placement started",
            message=f"A placement as {job_role} with {company['name']} has been started for you.",
            entity_type="placement",
            entity_id=int(row["id"]),
        )

    logger.info(
        "placement_created placement_id=%s candidate_id=%s tenant_id=%s",
        row["id"],
        payload.candidate_id,
        ctx.tenant_id,
    )
    return row


async def get_placement(conn: asyncpg.Connection, ctx: TenantContext, placement_id: int) -> dict[str, Any]:
    return await _load_placement(conn, ctx, placement_id)


async def list_placements(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    *,
    status: PlacementStatus | None = None,
    candidate_id: int | None = None,
    company_id: int | None = None,
    limit: int = 50,
    offset: int = 0,
) -> dict[str, Any]:
    rows = await repository.list_placements(
        conn,
        ctx,
        status=status,
        candidate_id=candidate_id,
        company_id=company_id,
        recruiter_id=ctx.user_id if ctx.role is Role.RECRUITER else None,
        limit=limit,
        offset=offset,
    )
    return {"placements": rows, "limit": limit, "offset": offset, "count": len(rows)}


async def my_placements(conn: asyncpg.Connection, ctx: TenantContext) -> list[dict[str, Any]]:
    candidate = await candidate_service.candidate_for_user(conn, ctx)
    return await repository.list_placements(conn, ctx, candidate_id=int(candidate["id"]), limit=100)


async def transition_placement(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    placement_id: int,
    action: PlacementAction,
    payload: schemas.PlacementTransitionRequest | None = None,
) -> dict[str, Any]:
    payload = payload or schemas.PlacementTransitionRequest()
    reason = _clean(payload.reason)
    if action is PlacementAction.SCHEDULE_INTERVIEW and payload.interview_date is None:
        raise ValidationError("interview_date is required when scheduling an interview.")

    async with conn.transaction():
        placement = await _load_placement(conn, ctx, placement_id, for_update=True)
        transition = transitions.placement(parse_status(PlacementStatus, placement["status"]), action)
        if transition.has(Effect.REQUIRE_REASON) and reason is None:
            raise ValidationError("A reason is required to cancel a placement.")

        row = await repository.update_placement_status(
            conn,
            ctx,
            placement_id,
            expected=transition.source,
            target=transition.target,
            interview_date=payload.interview_date if action is PlacementAction.SCHEDULE_INTERVIEW else None,
            cancellation_reason=reason if transition.has(Effect.REQUIRE_REASON) else None,
            stamp_completion=transition.has(Effect.STAMP_COMPLETION_DATE),
        )
        if row is None:
            raise InvalidStateError("Placement was modified concurrently.")

        candidate_id = int(placement["candidate_id"])
        if transition.has(Effect.CANDIDATE_PLACED):
            await candidate_service.advance_for_event(
                conn,
                ctx,
                candidate_id,
                CandidateEvent.PLACEMENT_COMPLETED,
                comment=f"Placement {placement_id} completed.",
            )

        details: dict[str, Any] = {"from": transition.source.value, "to": transition.target.value}
        if reason:
            details["reason"] = reason
        await activity.record(
            conn,
            ctx,
            action=f"PLACEMENT_{action.value.upper()}",
            entity_type="placement",
            entity_id=placement_id,
            details=details,
        )

        if transition.has(Effect.NOTIFY_CANDIDATE):
            candidate = await candidate_service.load_candidate(conn, ctx, candidate_id)
            message = f"Your placement as {row['job_role_offered']} is now {transition.target.value}."
            if reason:
                message = f"{message} Reason: {reason}"
            await notification_service.notify_user(
                conn,
                ctx,
                user_id=candidate.get("user_id"),
                title=NOTIFICATION_TITLES.get(transition.target, "Placement update"),
                message=message,
                entity_type="placement",
                entity_id=placement_id,
            )

    logger.info(
        "placement_transition placement_id=%s from=%s to=%s tenant_id=%s",
        placement_id,
        transition.source.value,
        transition.target.value,
        ctx.tenant_id,
    )
    return row
