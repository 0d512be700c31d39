"""
Cohort workflows.

Covers the cohort lifecycle, seat allocation (admin enrollment, candidate
applications and their review), trainer-recorded progress metrics and the
progress summary.

Seat accounting: `cohorts.current_enrollment` counts ENROLLED and COMPLETED
rows. Every change to it happens while holding `SELECT ... FOR UPDATE` on the
cohort row, so two requests racing for the last seat serialize there and
exactly one of them wins.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any

import asyncpg

from auth import repository as auth_repository
from candidates import repository as candidate_repository
from candidates import service as candidate_service
from core import activity
from core.errors import (
    CapacityExceededError,
    ConflictError,
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from core.tenancy import Role, TenantContext
from courses import repository as course_repository
from lifecycle import transitions
from lifecycle.statuses import (
    AssessmentResult,
    CohortEnrollmentStatus,
    CohortStatus,
    INACTIVE_ENROLLMENT_STATUSES,
    SEAT_HOLDING_ENROLLMENT_STATUSES,
    VettingStatus,
    parse_status,
)
from lifecycle.transitions import ApplicationAction, CandidateEvent, CohortAction, Effect
from notifications import service as notification_service

from . import repository, schemas

logger = logging.getLogger(__name__)

EDITABLE_COHORT_STATUSES = frozenset({CohortStatus.DRAFT, CohortStatus.PUBLISHED})


def _validate_dates(start_date, end_date, enrollment_deadline) -> None:
    if end_date < start_date:
        raise ValidationError("end_date must not be before start_date.")
    if enrollment_deadline is not None and enrollment_deadline > start_date:
        raise ValidationError("enrollment_deadline must not be after start_date.")


async def _require_trainer(conn: asyncpg.Connection, ctx: TenantContext, trainer_id: int) -> None:
    user = await auth_repository.get_user_in_tenant(conn, ctx, trainer_id)
    if user is None or user["role"] != Role.TRAINER.value:
        raise NotFoundError.for_entity("Trainer")


async def _load_cohort(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    cohort_id: int,
    *,
    for_update: bool = False,
) -> dict[str, Any]:
    row = await repository.get_cohort(conn, ctx, cohort_id, for_update=for_update)
    if row is None:
        raise NotFoundError.for_entity("Cohort")
    return row


async def _load_application(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    application_id: int,
) -> dict[str, Any]:
    row = await repository.get_enrollment(conn, ctx, application_id, for_update=True)
    if row is None:
        raise NotFoundError.for_entity("Cohort application")
    return row


def _ensure_seat_available(cohort: dict[str, Any]) -> None:
    if int(cohort["current_enrollment"]) >= int(cohort["max_capacity"]):
        raise CapacityExceededError("Cohort is at full capacity.")


def _ensure_open(cohort: dict[str, Any]) -> None:
    if cohort["status"] != CohortStatus.ENROLLMENT_OPEN.value:
        raise InvalidStateError(f"Cohort is not open for enrollment (status {cohort['status']}).")


async def _notify_candidate(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    candidate_id: int,
    *,
    title: str,
    message: str,
    entity_type: str,
    entity_id: int,
) -> None:
    candidate = await candidate_repository.get_candidate(conn, ctx, candidate_id)
    await notification_service.notify_user(
        conn,
        ctx,
        user_id=candidate.get("user_id") if candidate else None,
        title=title,
        message=message,
        entity_type=entity_type,
        entity_id=entity_id,
    )


async def create_cohort(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    payload: schemas.CohortCreateRequest,
) -> dict[str, Any]:
    _validate_dates(payload.start_date, payload.end_date, payload.enrollment_deadline)

    course = await course_repository.get_course(conn, ctx, payload.course_id)
    if course is None:
        raise NotFoundError.for_entity("Course")
    if payload.lead_trainer_id is not None:
        await _require_trainer(conn, ctx, payload.lead_trainer_id)

    async with conn.transaction():
        try:
            row = await repository.insert_cohort(
                conn,
                ctx,
                course_id=payload.course_id,
                cohort_name=payload.cohort_name.strip(),
                cohort_code=payload.cohort_code.strip().upper(),
                description=payload.description,
                max_capacity=payload.max_capacity,
                lead_trainer_id=payload.lead_trainer_id,
                start_date=payload.start_date,
                end_date=payload.end_date,
                enrollment_deadline=payload.enrollment_deadline,
            )
        except asyncpg.UniqueViolationError as exc:
            raise ConflictError("Cohort code already exists.") from exc
        await activity.record(
            conn,
            ctx,
            action="COHORT_CREATED",
            entity_type="cohort",
            entity_id=int(row["id"]),
            details={"cohort_code": row["cohort_code"], "max_capacity": row["max_capacity"]},
        )

    logger.info("cohort_created cohort_id=%s tenant_id=%s", row["id"], ctx.tenant_id)
    return row


async def get_cohort(conn: asyncpg.Connection, ctx: TenantContext, cohort_id: int) -> dict[str, Any]:
    row = await _load_cohort(conn, ctx, cohort_id)
    if ctx.role is Role.CANDIDATE and row["status"] == CohortStatus.DRAFT.value:
        raise NotFoundError.for_entity("Cohort")
    return row


async def list_cohorts(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    *,
    status: CohortStatus | None = None,
    course_id: int | None = None,
    limit: int = 50,
    offset: int = 0,
) -> dict[str, Any]:
    rows = await repository.list_cohorts(
        conn,
        ctx,
        status=status,
        course_id=course_id,
        exclude_draft=ctx.role is Role.CANDIDATE,
        limit=limit,
        offset=offset,
    )
    return {"cohorts": rows, "limit": limit, "offset": offset, "count": len(rows)}


async def update_cohort(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    cohort_id: int,
    payload: schemas.CohortUpdateRequest,
) -> dict[str, Any]:
    """
    Edit cohort details. Only DRAFT and PUBLISHED cohorts are editable.
    """
    fields = payload.model_dump(exclude_unset=True)
    if "cohort_name" in fields and fields["cohort_name"] is not None:
        fields["cohort_name"] = fields["cohort_name"].strip()
    if fields.get("lead_trainer_id") is not None:
        await _require_trainer(conn, ctx, fields["lead_trainer_id"])

    async with conn.transaction():
        cohort = await _load_cohort(conn, ctx, cohort_id, for_update=True)
        if parse_status(CohortStatus, cohort["status"]) not in EDITABLE_COHORT_STATUSES:
            raise InvalidStateError(f"Cannot update cohort in status {cohort['status']}.")

        _validate_dates(
            fields.get("start_date") or cohort["start_date"],
            fields.get("end_date") or cohort["end_date"],
            fields.get("enrollment_deadline", cohort["enrollment_deadline"]),
        )
        max_capacity = fields.get("max_capacity")
        if max_capacity is not None and max_capacity < int(cohort["current_enrollment"]):
            raise ValidationError("max_capacity cannot be below the current enrollment.")
        # Required columns stay as they are when explicitly nulled.
        for name in ("start_date", "end_date", "max_capacity", "cohort_name"):
            if name in fields and fields[name] is None:
                fields.pop(name)

        row = await repository.update_cohort(conn, ctx, cohort_id, fields)
        if row is None:
            raise NotFoundError.for_entity("Cohort")
        await activity.record(
            conn,
            ctx,
            action="COHORT_UPDATED",
            entity_type="cohort",
            entity_id=cohort_id,
            details={"fields": sorted(fields)},
        )
    return row


async def delete_cohort(conn: asyncpg.Connection, ctx: TenantContext, cohort_id: int) -> None:
    """
    Only DRAFT cohorts without enrollments can be deleted; later ones are archived instead.
    """
    async with conn.transaction():
        cohort = await _load_cohort(conn, ctx, cohort_id, for_update=True)
        if cohort["status"] != CohortStatus.DRAFT.value:
            raise InvalidStateError(f"Cannot delete cohort in status {cohort['status']}. Archive it instead.")
        if sum((await repository.enrollment_counts(conn, ctx, cohort_id)).values()) > 0:
            raise ConflictError("Cannot delete cohort with enrollments.")
        if not await repository.delete_cohort(conn, ctx, cohort_id):
            raise InvalidStateError("Cohort was modified concurrently.")
        await activity.record(
            conn,
            ctx,
            action="COHORT_DELETED",
            entity_type="cohort",
            entity_id=cohort_id,
            details={"cohort_code": cohort["cohort_code"]},
        )

    logger.info("cohort_deleted cohort_id=%s tenant_id=%s", cohort_id, ctx.tenant_id)


async def transition_cohort(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    cohort_id: int,
    action: CohortAction,
) -> dict[str, Any]:
    async with conn.transaction():
        cohort = await _load_cohort(conn, ctx, cohort_id, for_update=True)
        transition = transitions.cohort(parse_status(CohortStatus, cohort["status"]), action)

        row = await repository.update_cohort_status(
            conn,
            ctx,
            cohort_id,
            expected=transition.source,
            target=transition.target,
        )
        if row is None:
            raise InvalidStateError("Cohort was modified concurrently.")
        await activity.record(
            conn,
            ctx,
            action=f"COHORT_{action.value.upper()}",
            entity_type="cohort",
            entity_id=cohort_id,
            details={"from": transition.source.value, "to": transition.target.value},
        )

    logger.info(
        "cohort_transition cohort_id=%s from=%s to=%s tenant_id=%s",
        cohort_id,
        transition.source.value,
        transition.target.value,
        ctx.tenant_id,
    )
    return row


async def enroll(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    cohort_id: int,
    payload: schemas.CohortEnrollRequest,
) -> dict[str, Any]:
    """
    Admin places a candidate into an open cohort, as APPLIED or directly ENROLLED.
    """
    status = payload.enrollment_status
    if status not in (CohortEnrollmentStatus.APPLIED, CohortEnrollmentStatus.ENROLLED):
        raise ValidationError("enrollment_status must be APPLIED or ENROLLED.")

    async with conn.transaction():
        cohort = await _load_cohort(conn, ctx, cohort_id, for_update=True)
        _ensure_open(cohort)
        _ensure_seat_available(cohort)

        candidate = await candidate_repository.get_candidate(conn, ctx, payload.candidate_id)
        if candidate is None:
            raise NotFoundError.for_entity("Candidate")

        try:
            row = await repository.insert_enrollment(
                conn,
                ctx,
                cohort_id=cohort_id,
                candidate_id=payload.candidate_id,
                status=status,
                reviewed_by=ctx.user_id if status is CohortEnrollmentStatus.ENROLLED else None,
            )
        except asyncpg.UniqueViolationError as exc:
            raise ConflictError("Candidate already has an active enrollment in this cohort.") from exc

        if status is CohortEnrollmentStatus.ENROLLED:
            await repository.adjust_current_enrollment(conn, ctx, cohort_id, 1)
            await candidate_service.advance_for_event(
                conn,
                ctx,
                payload.candidate_id,
                CandidateEvent.ENROLLMENT_APPROVED,
                comment=f"Enrolled in cohort {cohort['cohort_code']}.",
            )

        await activity.record(
            conn,
            ctx,
            action="COHORT_ENROLLMENT_CREATED",
            entity_type="cohort_enrollment",
            entity_id=int(row["id"]),
            details={"cohort_id": cohort_id, "candidate_id": payload.candidate_id, "status": status.value},
        )
        await notification_service.notify_user(
            conn,
            ctx,
            user_id=candidate.get("user_id"),
            title="Cohort enrollment",
            message=f"You have been added to cohort {cohort['cohort_name']} as {status.value}.",
            entity_type="cohort_enrollment",
            entity_id=int(row["id"]),
        )

    logger.info(
        "cohort_enrollment_created enrollment_id=%s cohort_id=%s status=%s tenant_id=%s",
        row["id"],
        cohort_id,
        status.value,
        ctx.tenant_id,
    )
    return row


async def apply(conn: asyncpg.Connection, ctx: TenantContext, cohort_id: int) -> dict[str, Any]:
    """
    Candidate applies to an open cohort.
    """
    candidate = await candidate_service.candidate_for_user(conn, ctx)

    async with conn.transaction():
        cohort = await _load_cohort(conn, ctx, cohort_id, for_update=True)
        _ensure_open(cohort)
        _ensure_seat_available(cohort)

        try:
            row = await repository.insert_enrollment(
                conn,
                ctx,
                cohort_id=cohort_id,
                candidate_id=int(candidate["id"]),
                status=CohortEnrollmentStatus.APPLIED,
            )
        except asyncpg.UniqueViolationError as exc:
            raise ConflictError("You already have an active application for this cohort.") from exc

        await activity.record(
            conn,
            ctx,
            action="COHORT_APPLICATION_SUBMITTED",
            entity_type="cohort_enrollment",
            entity_id=int(row["id"]),
            details={"cohort_id": cohort_id},
        )

    logger.info("cohort_application_submitted enrollment_id=%s cohort_id=%s", row["id"], cohort_id)
    return row


async def list_applications(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    *,
    status: CohortEnrollmentStatus | None = None,
    cohort_id: int | None = None,
    limit: int = 50,
    offset: int = 0,
) -> dict[str, Any]:
    rows = await repository.list_applications(
        conn,
        ctx,
        status=status,
        cohort_id=cohort_id,
        limit=limit,
        offset=offset,
    )
    return {"applications": rows, "limit": limit, "offset": offset, "count": len(rows)}


async def _apply_application_action(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    application_id: int,
    action: ApplicationAction,
    *,
    reason: str | None = None,
) -> dict[str, Any]:
    # Caller holds a transaction.
    application = await _load_application(conn, ctx, application_id)
    transition = transitions.application(
        parse_status(CohortEnrollmentStatus, application["status"]),
        action,
    )
    cohort_id = int(application["cohort_id"])
    candidate_id = int(application["candidate_id"])

    releases_seat = (
        transition.source in SEAT_HOLDING_ENROLLMENT_STATUSES
        and transition.target in INACTIVE_ENROLLMENT_STATUSES
    )
    cohort = None
    if transition.has(Effect.CLAIM_SEAT) or releases_seat:
        cohort = await _load_cohort(conn, ctx, cohort_id, for_update=True)
    if transition.has(Effect.CLAIM_SEAT):
        _ensure_seat_available(cohort)

    row = await repository.update_enrollment_status(
        conn,
        ctx,
        application_id,
        expected=transition.source,
        target=transition.target,
        stamp_approval=transition.has(Effect.STAMP_APPROVAL_DATE),
        stamp_withdrawal=transition.has(Effect.STAMP_WITHDRAWAL_DATE),
        rejection_reason=reason if transition.has(Effect.REQUIRE_REASON) else None,
    )
    if row is None:
        raise InvalidStateError("Cohort application was modified concurrently.")

    if transition.has(Effect.CLAIM_SEAT):
        await repository.adjust_current_enrollment(conn, ctx, cohort_id, 1)
    elif releases_seat:
        await repository.adjust_current_enrollment(conn, ctx, cohort_id, -1)

    if transition.has(Effect.CANDIDATE_ENROLLED):
        await candidate_service.advance_for_event(
            conn,
            ctx,
            candidate_id,
            CandidateEvent.ENROLLMENT_APPROVED,
            comment=f"Cohort application {application_id} approved.",
        )

    details: dict[str, Any] = {
        "cohort_id": cohort_id,
        "candidate_id": candidate_id,
        "from": transition.source.value,
        "to": transition.target.value,
    }
    if reason:
        details["reason"] = reason
    await activity.record(
        conn,
        ctx,
        action=f"COHORT_APPLICATION_{action.value.upper()}",
        entity_type="cohort_enrollment",
        entity_id=application_id,
        details=details,
    )

    if transition.has(Effect.NOTIFY_CANDIDATE):
        message = f"Your cohort application is now {transition.target.value}."
        if reason:
            message = f"{message} Reason: {reason}"
        await _notify_candidate(
            conn,
            ctx,
            candidate_id,
            title="Cohort application update",
            message=message,
            entity_type="cohort_enrollment",
            entity_id=application_id,
        )

    logger.info(
        "cohort_application_transition application_id=%s from=%s to=%s tenant_id=%s",
        application_id,
        transition.source.value,
        transition.target.value,
        ctx.tenant_id,
    )
    return row


async def approve_application(conn: asyncpg.Connection, ctx: TenantContext, application_id: int) -> dict[str, Any]:
    async with conn.transaction():
        return await _apply_application_action(conn, ctx, application_id, ApplicationAction.APPROVE)


async def reject_application(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    application_id: int,
    reason: str | None,
) -> dict[str, Any]:
    cleaned = (reason or "").strip()
    if not cleaned:
        raise ValidationError("Rejection reason is required.")

    async with conn.transaction():
        return await _apply_application_action(
            conn,
            ctx,
            application_id,
            ApplicationAction.REJECT,
            reason=cleaned,
        )


async def withdraw_application(conn: asyncpg.Connection, ctx: TenantContext, application_id: int) -> dict[str, Any]:
    async with conn.transaction():
        return await _apply_application_action(conn, ctx, application_id, ApplicationAction.WITHDRAW)


async def complete_application(conn: asyncpg.Connection, ctx: TenantContext, application_id: int) -> dict[str, Any]:
    async with conn.transaction():
        return await _apply_application_action(conn, ctx, application_id, ApplicationAction.COMPLETE)


def derive_placement_ready(
    *,
    attendance_rate: float | Decimal | None,
    assessment_result: str | None,
    vetting_status: str | None,
) -> bool:
    """
    Ready for placement: good attendance, passed assessment, vetting cleared.
    """
    if attendance_rate is None or float(attendance_rate) < repository.POOR_ATTENDANCE_THRESHOLD:
        return False
    return assessment_result == AssessmentResult.PASS.value and vetting_status == VettingStatus.CLEARED.value


async def record_metrics(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    cohort_id: int,
    enrollment_id: int,
    payload: schemas.EnrollmentMetricsRequest,
) -> dict[str, Any]:
    async with conn.transaction():
        cohort = await _load_cohort(conn, ctx, cohort_id)
        if ctx.role is Role.TRAINER and cohort.get("lead_trainer_id") != ctx.user_id:
            raise PermissionDeniedError("Only the cohort's lead trainer can record metrics.")

        enrollment = await repository.get_enrollment(conn, ctx, enrollment_id, for_update=True)
        if enrollment is None or int(enrollment["cohort_id"]) != cohort_id:
            raise NotFoundError.for_entity("Cohort enrollment")
        status = parse_status(CohortEnrollmentStatus, enrollment["status"])
        if status not in SEAT_HOLDING_ENROLLMENT_STATUSES:
            raise InvalidStateError(f"Cannot record metrics for cohort enrollment in status {status.value}.")

        placement_ready = payload.placement_ready
        if placement_ready is None:
            placement_ready = derive_placement_ready(
                attendance_rate=payload.attendance_rate
                if payload.attendance_rate is not None
                else enrollment.get("attendance_rate"),
                assessment_result=payload.assessment_result.value
                if payload.assessment_result is not None
                else enrollment.get("assessment_result"),
                vetting_status=enrollment.get("vetting_status"),
            )

        row = await repository.update_metrics(
            conn,
            ctx,
            enrollment_id,
            attendance_rate=payload.attendance_rate,
            assessment_score=payload.assessment_score,
            assessment_result=payload.assessment_result,
            placement_ready=placement_ready,
        )
        await activity.record(
            conn,
            ctx,
            action="COHORT_METRICS_RECORDED",
            entity_type="cohort_enrollment",
            entity_id=enrollment_id,
            details=payload.model_dump(mode="json", exclude_none=True),
        )
    return row


def _round(value: float | Decimal | None) -> float:
    if value is None:
        return 0.0
    return round(float(value), 2)


def _rate(part: int, whole: int) -> float:
    return round(part / whole * 100, 2) if whole > 0 else 0.0


def summarize_progress(
    cohort: dict[str, Any],
    enrollment_counts: dict[str, int],
    metrics: dict[str, Any],
    vetting_counts: dict[str, int],
) -> dict[str, Any]:
    students = int(metrics.get("students") or 0)
    passed = int(metrics.get("passed") or 0)
    failed = int(metrics.get("failed") or 0)
    assessed = int(metrics.get("assessed") or 0)
    placement_ready = int(metrics.get("placement_ready") or 0)

    pending = vetting_counts.get(VettingStatus.PENDING.value, 0) + vetting_counts.get(
        VettingStatus.PENDING_DOCUMENTS.value, 0
    )
    cleared = vetting_counts.get(VettingStatus.CLEARED.value, 0)
    rejected = vetting_counts.get(VettingStatus.REJECTED.value, 0)

    max_capacity = int(cohort["max_capacity"])
    current = int(cohort["current_enrollment"])
    return {
        "cohort_id": int(cohort["id"]),
        "status": cohort["status"],
        "capacity": {
            "max_capacity": max_capacity,
            "current_enrollment": current,
            "seats_available": max(max_capacity - current, 0),
            "fill_rate": _rate(current, max_capacity),
        },
        "enrollments": {s.value: enrollment_counts.get(s.value, 0) for s in CohortEnrollmentStatus},
        "attendance": {
            "average_rate": _round(metrics.get("average_attendance")),
            "students_with_poor_attendance": int(metrics.get("poor_attendance") or 0),
        },
        "assessment": {
            "assessed": assessed,
            "average_score": _round(metrics.get("average_score")),
            "passed": passed,
            "failed": failed,
            "pass_rate": _rate(passed, assessed),
        },
        "vetting": {
            "not_started": vetting_counts.get("NOT_STARTED", 0),
            "pending": pending,
            "in_progress": vetting_counts.get(VettingStatus.IN_PROGRESS.value, 0),
            "cleared": cleared,
            "rejected": rejected,
            "completion_rate": _rate(cleared + rejected, students),
        },
        "placement": {
            "ready": placement_ready,
            "not_ready": max(students - placement_ready, 0),
            "ready_rate": _rate(placement_ready, students),
        },
    }


async def progress(conn: asyncpg.Connection, ctx: TenantContext, cohort_id: int) -> dict[str, Any]:
    cohort = await _load_cohort(conn, ctx, cohort_id)
    counts = await repository.enrollment_counts(conn, ctx, cohort_id)
    metrics = await repository.metric_aggregates(conn, ctx, cohort_id)
    vetting_counts = await repository.latest_vetting_counts(conn, ctx, cohort_id)
    return summarize_progress(cohort, counts, metrics, vetting_counts)


async def mirror_vetting_status(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    enrollment_id: int,
    vetting_status: VettingStatus,
) -> None:
    """
    Copy a vetting outcome onto the cohort enrollment and refresh placement readiness.
    """
    await repository.set_vetting_status(conn, ctx, enrollment_id, vetting_status.value)
    enrollment = await repository.get_enrollment(conn, ctx, enrollment_id)
    if enrollment is None:
        return None
    ready = derive_placement_ready(
        attendance_rate=enrollment.get("attendance_rate"),
        assessment_result=enrollment.get("assessment_result"),
        vetting_status=vetting_status.value,
    )
    if ready != bool(enrollment.get("placement_ready")):
        await repository.set_placement_ready(conn, ctx, enrollment_id, ready)
