"""
Course catalogue and course enrollments.

A course enrollment is the record a certificate attests to, so its
`complete` transition is what makes a candidate eligible for issuance.
"""

from __future__ import annotations

import logging
from typing import Any

import asyncpg

from candidates import repository as candidate_repository
from core import activity
from core.errors import ConflictError, InvalidStateError, NotFoundError
from core.tenancy import TenantContext
from lifecycle import transitions
from lifecycle.statuses import CourseEnrollmentStatus, CourseStatus, parse_status
from lifecycle.transitions import CourseEnrollmentAction, Effect

from . import repository, schemas

logger = logging.getLogger(__name__)


async def create_course(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    payload: schemas.CourseCreateRequest,
) -> dict[str, Any]:
    async with conn.transaction():
        try:
            row = await repository.insert_course(
                conn,
                ctx,
                title=payload.title.strip(),
                code=payload.code.strip().upper(),
                description=payload.description,
                status=payload.status,
            )
        except asyncpg.UniqueViolationError as exc:
            raise ConflictError("Course code already exists.") from exc
        await activity.record(
            conn,
            ctx,
            action="COURSE_CREATED",
            entity_type="course",
            entity_id=int(row["id"]),
            details={"code": row["code"]},
        )
    return row


async def get_course(conn: asyncpg.Connection, ctx: TenantContext, course_id: int) -> dict[str, Any]:
    row = await repository.get_course(conn, ctx, course_id)
    if row is None:
        raise NotFoundError.for_entity("Course")
    return row


async def list_courses(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    *,
    status: CourseStatus | None = None,
    limit: int = 50,
    offset: int = 0,
) -> dict[str, Any]:
    rows = await repository.list_courses(conn, ctx, status=status, limit=limit, offset=offset)
    return {"courses": rows, "limit": limit, "offset": offset, "count": len(rows)}


async def enroll_in_course(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    course_id: int,
    candidate_id: int,
) -> dict[str, Any]:
    course = await get_course(conn, ctx, course_id)
    if course["status"] != CourseStatus.ACTIVE.value:
        raise InvalidStateError(f"Cannot enroll in course in status {course['status']}.")

    candidate = await candidate_repository.get_candidate(conn, ctx, candidate_id)
    if candidate is None:
        raise NotFoundError.for_entity("Candidate")

    async with conn.transaction():
        try:
            row = await repository.insert_enrollment(conn, ctx, candidate_id=candidate_id, course_id=course_id)
        except asyncpg.UniqueViolationError as exc:
            raise ConflictError("Candidate is already enrolled in this course.") from exc
        await activity.record(
            conn,
            ctx,
            action="COURSE_ENROLLMENT_CREATED",
            entity_type="course_enrollment",
            entity_id=int(row["id"]),
            details={"course_id": course_id, "candidate_id": candidate_id},
        )
    return row


async def transition_enrollment(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    enrollment_id: int,
    action: CourseEnrollmentAction,
) -> dict[str, Any]:
    current_row = await repository.get_enrollment(conn, ctx, enrollment_id)
    if current_row is None:
        raise NotFoundError.for_entity("Course enrollment")

    current = parse_status(CourseEnrollmentStatus, current_row["enrollment_status"])
    transition = transitions.course_enrollment(current, action)

    async with conn.transaction():
        row = await repository.update_enrollment_status(
            conn,
            ctx,
            enrollment_id,
            expected=transition.source,
            target=transition.target,
            stamp_completion=transition.has(Effect.STAMP_COMPLETION_DATE),
        )
        if row is None:
            raise InvalidStateError("Course enrollment was modified concurrently.")
        await activity.record(
            conn,
            ctx,
            action=f"COURSE_ENROLLMENT_{action.value.upper()}",
            entity_type="course_enrollment",
            entity_id=enrollment_id,
            details={"from": transition.source.value, "to": transition.target.value},
        )

    logger.info(
        "course_enrollment_transition enrollment_id=%s from=%s to=%s tenant_id=%s",
        enrollment_id,
        transition.source.value,
        transition.target.value,
        ctx.tenant_id,
    )
    return row
