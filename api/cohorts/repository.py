"""
Cohort and cohort-enrollment persistence (raw SQL).

Status columns are only changed through conditional updates that name the
status the caller decided from, so a concurrent change makes the update
match nothing instead of overwriting it.
"""

from __future__ import annotations

from datetime import date
from typing import Any

import asyncpg

from core import db
from core.tenancy import TenantContext
from lifecycle.statuses import AssessmentResult, CohortEnrollmentStatus, CohortStatus

COHORT_COLUMNS = (
    "id, tenant_id, course_id, cohort_name, cohort_code, description, max_capacity, current_enrollment, "
    "lead_trainer_id, start_date, end_date, enrollment_deadline, status, created_by, created_at, updated_at"
)
ENROLLMENT_COLUMNS = (
    "id, tenant_id, cohort_id, candidate_id, status, application_date, approval_date, withdrawal_date, "
    "rejection_reason, reviewed_by, vetting_status, attendance_rate, assessment_score, assessment_result, "
    "placement_ready, created_at, updated_at"
)

# Attendance below this percentage counts as poor.
POOR_ATTENDANCE_THRESHOLD = 75

# Columns `update_cohort` may touch.
UPDATABLE_COHORT_FIELDS = (
    "cohort_name",
    "description",
    "max_capacity",
    "lead_trainer_id",
    "start_date",
    "end_date",
    "enrollment_deadline",
)


async def insert_cohort(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    *,
    course_id: int,
    cohort_name: str,
    cohort_code: str,
    description: str | None,
    max_capacity: int,
    lead_trainer_id: int | None,
    start_date: date,
    end_date: date,
    enrollment_deadline: date | None,
) -> dict[str, Any]:
    row = await db.fetch_one(
        conn,
        f"""
        INSERT INTO cohorts (
            tenant_id, course_id, cohort_name, cohort_code, description, max_capacity,
            lead_trainer_id, start_date, end_date, enrollment_deadline, status, created_by
        )
        VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12)
        RETURNING {COHORT_COLUMNS}
        """,
        ctx.tenant_id,
        course_id,
        cohort_name,
        cohort_code,
        description,
        max_capacity,
        lead_trainer_id,
        start_date,
        end_date,
        enrollment_deadline,
        CohortStatus.DRAFT.value,
        ctx.user_id,
    )
    if row is None:
        raise RuntimeError("Failed to insert cohort.")
    return row


async def get_cohort(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    cohort_id: int,
    *,
    for_update: bool = False,
) -> dict[str, Any] | None:
    lock = "FOR UPDATE" if for_update else ""
    return await db.fetch_one(
        conn,
        f"""
        SELECT {COHORT_COLUMNS}
        FROM cohorts
        WHERE id = $1
          AND tenant_id = $2
        {lock}
        """,
        cohort_id,
        ctx.tenant_id,
    )


async def list_cohorts(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    *,
    status: CohortStatus | None = None,
    course_id: int | None = None,
    lead_trainer_id: int | None = None,
    exclude_draft: bool = False,
    limit: int = 50,
    offset: int = 0,
) -> list[dict[str, Any]]:
    return await db.fetch_all(
        conn,
        f"""
        SELECT {COHORT_COLUMNS}
        FROM cohorts
        WHERE tenant_id = $1
          AND ($2::text IS NULL OR status = $2)
          AND ($3::bigint IS NULL OR course_id = $3)
          AND ($4::bigint IS NULL OR lead_trainer_id = $4)
          AND ($5 = false OR status <> 'DRAFT')
        ORDER BY start_date DESC, id DESC
        LIMIT $6
        OFFSET $7
        """,
        ctx.tenant_id,
        status.value if status is not None else None,
        course_id,
        lead_trainer_id,
        exclude_draft,
        limit,
        offset,
    )


async def update_cohort(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    cohort_id: int,
    fields: dict[str, Any],
) -> dict[str, Any] | None:
    assignments: list[str] = []
    args: list[Any] = [cohort_id, ctx.tenant_id]
    for name in UPDATABLE_COHORT_FIELDS:
        if name in fields:
            args.append(fields[name])
            assignments.append(f"{name} = ${len(args)}")

    if not assignments:
        return await get_cohort(conn, ctx, cohort_id)

    return await db.fetch_one(
        conn,
        f"""
        UPDATE cohorts
        SET {", ".join(assignments)},
            updated_at = now()
        WHERE id = $1
          AND tenant_id = $2
        RETURNING {COHORT_COLUMNS}
        """,
        *args,
    )


async def update_cohort_status(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    cohort_id: int,
    *,
    expected: CohortStatus,
    target: CohortStatus,
) -> dict[str, Any] | None:
    return await db.fetch_one(
        conn,
        f"""
        UPDATE cohorts
        SET status = $4,
            updated_at = now()
        WHERE id = $1
          AND tenant_id = $2
          AND status = $3
        RETURNING {COHORT_COLUMNS}
        """,
        cohort_id,
        ctx.tenant_id,
        expected.value,
        target.value,
    )


async def delete_cohort(conn: asyncpg.Connection, ctx: TenantContext, cohort_id: int) -> bool:
    """
    Delete a DRAFT cohort with no enrollment rows of any status.
    """
    row = await db.fetch_one(
        conn,
        """
        DELETE FROM cohorts h
        WHERE h.id = $1
          AND h.tenant_id = $2
          AND h.status = $3
          AND NOT EXISTS (SELECT 1 FROM cohort_enrollments e WHERE e.cohort_id = h.id)
        RETURNING h.id
        """,
        cohort_id,
        ctx.tenant_id,
        CohortStatus.DRAFT.value,
    )
    return row is not None


async def adjust_current_enrollment(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    cohort_id: int,
    delta: int,
) -> dict[str, Any] | None:
    """
    Move the seat counter by `delta`. Callers hold the cohort row lock.
    """
    return await db.fetch_one(
        conn,
        f"""
        UPDATE cohorts
        SET current_enrollment = GREATEST(current_enrollment + $3, 0),
            updated_at = now()
        WHERE id = $1
          AND tenant_id = $2
        RETURNING {COHORT_COLUMNS}
        """,
        cohort_id,
        ctx.tenant_id,
        delta,
    )


async def insert_enrollment(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    *,
    cohort_id: int,
    candidate_id: int,
    status: CohortEnrollmentStatus,
    reviewed_by: int | None = None,
) -> dict[str, Any]:
    row = await db.fetch_one(
        conn,
        f"""
        INSERT INTO cohort_enrollments (tenant_id, cohort_id, candidate_id, status, approval_date, reviewed_by)
        VALUES ($1, $2, $3, $4, CASE WHEN $4 = 'ENROLLED' THEN now() END, $5)
        RETURNING {ENROLLMENT_COLUMNS}
        """,
        ctx.tenant_id,
        cohort_id,
        candidate_id,
        status.value,
        reviewed_by,
    )
    if row is None:
        raise RuntimeError("Failed to insert cohort enrollment.")
    return row


async def get_enrollment(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    enrollment_id: int,
    *,
    for_update: bool = False,
) -> dict[str, Any] | None:
    lock = "FOR UPDATE" if for_update else ""
    return await db.fetch_one(
        conn,
        f"""
        SELECT {ENROLLMENT_COLUMNS}
        FROM cohort_enrollments
        WHERE id = $1
          AND tenant_id = $2
        {lock}
        """,
        enrollment_id,
        ctx.tenant_id,
    )


async def list_applications(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    *,
    status: CohortEnrollmentStatus | None = None,
    cohort_id: int | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[dict[str, Any]]:
    return await db.fetch_all(
        conn,
        """
        SELECT e.id, e.cohort_id, e.candidate_id, e.status, e.application_date, e.approval_date,
               e.withdrawal_date, e.rejection_reason, e.reviewed_by, e.vetting_status,
               c.full_name AS candidate_name, c.email AS candidate_email,
               h.cohort_name, h.cohort_code, h.status AS cohort_status
        FROM cohort_enrollments e
        JOIN candidates c ON c.id = e.candidate_id
        JOIN cohorts h ON h.id = e.cohort_id
        WHERE e.tenant_id = $1
          AND ($2::text IS NULL OR e.status = $2)
          AND ($3::bigint IS NULL OR e.cohort_id = $3)
        ORDER BY e.application_date DESC, e.id DESC
        LIMIT $4
        OFFSET $5
        """,
        ctx.tenant_id,
        status.value if status is not None else None,
        cohort_id,
        limit,
        offset,
    )


async def update_enrollment_status(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    enrollment_id: int,
    *,
    expected: CohortEnrollmentStatus,
    target: CohortEnrollmentStatus,
    stamp_approval: bool = False,
    stamp_withdrawal: bool = False,
    rejection_reason: str | None = None,
) -> dict[str, Any] | None:
    return await db.fetch_one(
        conn,
        f"""
        UPDATE cohort_enrollments
        SET status = $4,
            approval_date = CASE WHEN $5 THEN now() ELSE approval_date END,
            withdrawal_date = CASE WHEN $6 THEN now() ELSE withdrawal_date END,
            rejection_reason = COALESCE($7, rejection_reason),
            reviewed_by = $8,
            updated_at = now()
        WHERE id = $1
          AND tenant_id = $2
          AND status = $3
        RETURNING {ENROLLMENT_COLUMNS}
        """,
        enrollment_id,
        ctx.tenant_id,
        expected.value,
        target.value,
        stamp_approval,
        stamp_withdrawal,
        rejection_reason,
        ctx.user_id,
    )


async def update_metrics(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    enrollment_id: int,
    *,
    attendance_rate: float | None,
    assessment_score: float | None,
    assessment_result: AssessmentResult | None,
    placement_ready: bool,
) -> dict[str, Any] | None:
    return await db.fetch_one(
        conn,
        f"""
        UPDATE cohort_enrollments
        SET attendance_rate = COALESCE($3, attendance_rate),
            assessment_score = COALESCE($4, assessment_score),
            assessment_result = COALESCE($5, assessment_result),
            placement_ready = $6,
            updated_at = now()
        WHERE id = $1
          AND tenant_id = $2
        RETURNING {ENROLLMENT_COLUMNS}
        """,
        enrollment_id,
        ctx.tenant_id,
        attendance_rate,
        assessment_score,
        assessment_result.value if assessment_result is not None else None,
        placement_ready,
    )


async def set_vetting_status(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    enrollment_id: int,
    vetting_status: str,
) -> None:
    await db.execute(
        conn,
        """
        UPDATE cohort_enrollments
        SET vetting_status = $3,
            updated_at = now()
        WHERE id = $1
          AND tenant_id = $2
        """,
        enrollment_id,
        ctx.tenant_id,
        vetting_status,
    )


async def enrollment_counts(conn: asyncpg.Connection, ctx: TenantContext, cohort_id: int) -> dict[str, int]:
    rows = await db.fetch_all(
        conn,
        """
        SELECT status, count(*) AS total
        FROM cohort_enrollments
        WHERE tenant_id = $1
          AND cohort_id = $2
        GROUP BY status
        """,
        ctx.tenant_id,
        cohort_id,
    )
    return {str(r["status"]): int(r["total"]) for r in rows}


async def metric_aggregates(conn: asyncpg.Connection, ctx: TenantContext, cohort_id: int) -> dict[str, Any]:
    """
    Attendance, assessment and placement figures over seat-holding enrollments.
    """
    row = await db.fetch_one(
        conn,
        """
        SELECT count(*) AS students,
               avg(attendance_rate) AS average_attendance,
               count(*) FILTER (WHERE attendance_rate < $3) AS poor_attendance,
               count(*) FILTER (WHERE assessment_result IS NOT NULL) AS assessed,
               avg(assessment_score) AS average_score,
               count(*) FILTER (WHERE assessment_result = 'PASS') AS passed,
               count(*) FILTER (WHERE assessment_result = 'FAIL') AS failed,
               count(*) FILTER (WHERE placement_ready) AS placement_ready
        FROM cohort_enrollments
        WHERE tenant_id = $1
          AND cohort_id = $2
          AND status IN ('ENROLLED', 'COMPLETED')
        """,
        ctx.tenant_id,
        cohort_id,
        POOR_ATTENDANCE_THRESHOLD,
    )
    return row or {}


async def latest_vetting_counts(conn: asyncpg.Connection, ctx: TenantContext, cohort_id: int) -> dict[str, int]:
    """
    Latest vetting status per seat-holding candidate; 'NOT_STARTED' when none exists.
    """
    rows = await db.fetch_all(
        conn,
        """
        SELECT COALESCE(v.vetting_status, 'NOT_STARTED') AS vetting_status, count(*) AS total
        FROM cohort_enrollments e
        LEFT JOIN LATERAL (
            SELECT vr.vetting_status
            FROM vetting_records vr
            WHERE vr.tenant_id = e.tenant_id
              AND vr.candidate_id = e.candidate_id
            ORDER BY vr.created_at DESC, vr.id DESC
            LIMIT 1
        ) v ON true
        WHERE e.tenant_id = $1
          AND e.cohort_id = $2
          AND e.status IN ('ENROLLED', 'COMPLETED')
        GROUP BY 1
        """,
        ctx.tenant_id,
        cohort_id,
    )
    return {str(r["vetting_status"]): int(r["total"]) for r in rows}


async def set_placement_ready(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    enrollment_id: int,
    placement_ready: bool,
) -> None:
    await db.execute(
        conn,
        """
        UPDATE cohort_enrollments
        SET placement_ready = $3,
            updated_at = now()
        WHERE id = $1
          AND tenant_id = $2
        """,
        enrollment_id,
        ctx.tenant_id,
        placement_ready,
    )
