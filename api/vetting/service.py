"""
Vetting workflows.

A candidate opens a vetting record against one of their ENROLLED cohort
enrollments; reviewers then move it through documents and review to a
terminal CLEARED or REJECTED outcome. At most one record per candidate may be
active at a time: checked up front for a readable error and enforced by a
partial unique index for concurrent requests.
"""

from __future__ import annotations

import logging
from typing import Any

import asyncpg

from candidates import service as candidate_service
from cohorts import repository as cohort_repository
from cohorts import service as cohort_service
from core import activity
from core.errors import ConflictError, InvalidStateError, NotFoundError, ValidationError
from core.tenancy import TenantContext
from lifecycle import transitions
from lifecycle.statuses import CohortEnrollmentStatus, VettingStatus, parse_status
from lifecycle.transitions import CandidateEvent, Effect, VettingAction
from notifications import service as notification_service

from . import repository, schemas

logger = logging.getLogger(__name__)

ACTIVE_RECORD_MESSAGE = "Candidate already has an active vetting record."

CANDIDATE_EVENTS = {
    Effect.CANDIDATE_VETTING_CLEARED: CandidateEvent.VETTING_CLEARED,
    Effect.CANDIDATE_VETTING_REJECTED: CandidateEvent.VETTING_REJECTED,
}


async def apply(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    payload: schemas.VettingApplyRequest,
) -> dict[str, Any]:
    candidate = await candidate_service.candidate_for_user(conn, ctx)
    candidate_id = int(candidate["id"])

    async with conn.transaction():
        enrollment = await cohort_repository.get_enrollment(conn, ctx, payload.cohort_enrollment_id, for_update=True)
        if enrollment is None or int(enrollment["candidate_id"]) != candidate_id:
            raise NotFoundError.for_entity("Cohort enrollment")
        if enrollment["status"] != CohortEnrollmentStatus.ENROLLED.value:
            raise InvalidStateError(
                f"Cannot apply for vetting with cohort enrollment in status {enrollment['status']}."
            )

        if await repository.get_active_record(conn, ctx, candidate_id) is not None:
            raise ConflictError(ACTIVE_RECORD_MESSAGE)

        try:
            row = await repository.insert_record(
                conn,
                ctx,
                candidate_id=candidate_id,
                cohort_enrollment_id=payload.cohort_enrollment_id,
                police_clearance_no=payload.police_clearance_no,
                medical_report_no=payload.medical_report_no,
            )
        except asyncpg.UniqueViolationError as exc:
            raise ConflictError(ACTIVE_RECORD_MESSAGE) from exc

        await cohort_repository.set_vetting_status(
            conn, ctx, payload.cohort_enrollment_id, VettingStatus.PENDING.value
        )
        await candidate_service.advance_for_event(
            conn,
            ctx,
            candidate_id,
            CandidateEvent.VETTING_STARTED,
            comment="Vetting application submitted.",
        )
        await activity.record(
            conn,
            ctx,
            action="VETTING_APPLIED",
            entity_type="vetting_record",
            entity_id=int(row["id"]),
            details={"cohort_enrollment_id": payload.cohort_enrollment_id},
        )

    logger.info("vetting_applied record_id=%s candidate_id=%s tenant_id=%s", row["id"], candidate_id, ctx.tenant_id)
    return row


async def my_records(conn: asyncpg.Connection, ctx: TenantContext) -> list[dict[str, Any]]:
    candidate = await candidate_service.candidate_for_user(conn, ctx)
    return await repository.list_records(conn, ctx, candidate_id=int(candidate["id"]), limit=100)


async def list_records(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    *,
    status: VettingStatus | None = None,
    limit: int = 50,
    offset: int = 0,
) -> dict[str, Any]:
    rows = await repository.list_records(conn, ctx, status=status, limit=limit, offset=offset)
    return {"records": rows, "limit": limit, "offset": offset, "count": len(rows)}


async def submit_documents(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    record_id: int,
    payload: schemas.VettingDocumentsRequest,
) -> dict[str, Any]:
    documents = payload.model_dump(exclude_none=True)
    if not any(documents.get(k) for k in ("police_clearance_url", "medical_report_url", "passport_url")):
        raise ValidationError("At least one document URL is required.")

    candidate = await candidate_service.candidate_for_user(conn, ctx)

    async with conn.transaction():
        record = await repository.get_record(conn, ctx, record_id, for_update=True)
        if record is None or int(record["candidate_id"]) != int(candidate["id"]):
            raise NotFoundError.for_entity("Vetting record")

        transition = transitions.vetting(
            parse_status(VettingStatus, record["vetting_status"]),
            VettingAction.SUBMIT_DOCUMENTS,
        )
        row = await repository.submit_documents(
            conn,
            ctx,
            record_id,
            expected=transition.source,
            target=transition.target,
            documents=documents,
        )
        if row is None:
            raise InvalidStateError("Vetting record was modified concurrently.")
        if record.get("cohort_enrollment_id") is not None:
            await cohort_repository.set_vetting_status(
                conn, ctx, int(record["cohort_enrollment_id"]), transition.target.value
            )
        await activity.record(
            conn,
            ctx,
            action="VETTING_DOCUMENTS_SUBMITTED",
            entity_type="vetting_record",
            entity_id=record_id,
            details={"documents": sorted(documents)},
        )

    logger.info(
        "vetting_transition record_id=%s from=%s to=%s tenant_id=%s",
        record_id,
        transition.source.value,
        transition.target.value,
        ctx.tenant_id,
    )
    return row


async def review(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    record_id: int,
    action: VettingAction,
    *,
    remarks: str | None = None,
) -> dict[str, Any]:
    """
    Reviewer-side transition: request_documents, start_review, clear or reject.
    """
    if action is VettingAction.SUBMIT_DOCUMENTS:
        raise ValidationError("Documents are submitted by the candidate.")
    remarks = (remarks or "").strip() or None
    if action is VettingAction.REJECT and remarks is None:
        raise ValidationError("Remarks are required when rejecting vetting.")

    async with conn.transaction():
        record = await repository.get_record(conn, ctx, record_id, for_update=True)
        if record is None:
            raise NotFoundError.for_entity("Vetting record")

        transition = transitions.vetting(parse_status(VettingStatus, record["vetting_status"]), action)
        row = await repository.update_status(
            conn,
            ctx,
            record_id,
            expected=transition.source,
            target=transition.target,
            remarks=remarks,
            reviewed=True,
        )
        if row is None:
            raise InvalidStateError("Vetting record was modified concurrently.")

        enrollment_id = record.get("cohort_enrollment_id")
        if enrollment_id is not None:
            await cohort_service.mirror_vetting_status(conn, ctx, int(enrollment_id), transition.target)

        candidate_id = int(record["candidate_id"])
        for effect, event in CANDIDATE_EVENTS.items():
            if transition.has(effect):
                await candidate_service.advance_for_event(
                    conn,
                    ctx,
                    candidate_id,
                    event,
                    comment=f"Vetting record {record_id} {transition.target.value}.",
                )

        await activity.record(
            conn,
            ctx,
            action=f"VETTING_{action.value.upper()}",
            entity_type="vetting_record",
            entity_id=record_id,
            details={"from": transition.source.value, "to": transition.target.value, "remarks": remarks},
        )

        if transition.has(Effect.NOTIFY_CANDIDATE):
            candidate = await candidate_service.load_candidate(conn, ctx, candidate_id)
            message = f"Your vetting status is now {transition.target.value}."
            if remarks:
                message = f"{message} Remarks: {remarks}"
            await notification_service.notify_user(
                conn,
                ctx,
                user_id=candidate.get("user_id"),
                title="Vetting update",
                message=message,
                entity_type="vetting_record",
                entity_id=record_id,
            )

    logger.info(
        "vetting_transition record_id=%s from=%s to=%s tenant_id=%s",
        record_id,
        transition.source.value,
        transition.target.value,
        ctx.tenant_id,
    )
    return row
