"""
Read-only dashboard queries (raw SQL). Every query filters on the caller's tenant.
"""

from __future__ import annotations

from typing import Any

import asyncpg

from core import db
from core.tenancy import TenantContext

# table -> status column; the only tables `status_counts` may read.
STATUS_COLUMNS = {
    "candidates": "status",
    "cohorts": "status",
    "cohort_enrollments": "status",
    "vetting_records": "vetting_status",
    "certificates": "status",
    "course_enrollments": "enrollment_status",
    "placements": "status",
}


async def status_counts(conn: asyncpg.Connection, ctx: TenantContext, table: str) -> dict[str, int]:
    column = STATUS_COLUMNS[table]
    rows = await db.fetch_all(
        conn,
        f"""
        SELECT {column} AS status, count(*) AS total
        FROM {table}
        WHERE tenant_id = $1
        GROUP BY {column}
        """,
        ctx.tenant_id,
    )
    return {str(r["status"]): int(r["total"]) for r in rows}


async def recruiter_status_counts(conn: asyncpg.Connection, ctx: TenantContext) -> dict[str, int]:
    rows = await db.fetch_all(
        conn,
        """
        SELECT status, count(*) AS total
        FROM candidates
        WHERE tenant_id = $1
          AND recruiter_id = $2
        GROUP BY status
        """,
        ctx.tenant_id,
        ctx.user_id,
    )
    return {str(r["status"]): int(r["total"]) for r in rows}


async def recruiter_hires(conn: asyncpg.Connection, ctx: TenantContext, *, days: int) -> int:
    """
    Placements of the recruiter's candidates completed in the last `days` days.
    """
    value = await db.fetch_value(
        conn,
        """
        SELECT count(*)
        FROM placements p
        JOIN candidates c ON c.id = p.candidate_id
        WHERE p.tenant_id = $1
          AND c.recruiter_id = $2
          AND p.status = 'COMPLETED'
          AND p.completed_at >= now() - make_interval(days => $3)
        """,
        ctx.tenant_id,
        ctx.user_id,
        days,
    )
    return int(value or 0)


async def recruiter_placement_counts(conn: asyncpg.Connection, ctx: TenantContext) -> dict[str, int]:
    rows = await db.fetch_all(
        conn,
        """
        SELECT p.status, count(*) AS total
        FROM placements p
        JOIN candidates c ON c.id = p.candidate_id
        WHERE p.tenant_id = $1
          AND c.recruiter_id = $2
        GROUP BY p.status
        """,
        ctx.tenant_id,
        ctx.user_id,
    )
    return {str(r["status"]): int(r["total"]) for r in rows}


async def recruiter_upcoming_interviews(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    *,
    limit: int = 10,
) -> list[dict[str, Any]]:
    return await db.fetch_all(
        conn,
        """
        SELECT p.id, p.candidate_id, c.full_name AS candidate_name, co.name AS company_name,
               p.job_role_offered, p.country, p.interview_date
        FROM placements p
        JOIN candidates c ON c.id = p.candidate_id
        JOIN companies co ON co.id = p.company_id
        WHERE p.tenant_id = $1
          AND c.recruiter_id = $2
          AND p.status = 'INTERVIEW_SCHEDULED'
          AND p.interview_date >= now()
        ORDER BY p.interview_date ASC, p.id ASC
        LIMIT $3
        """,
        ctx.tenant_id,
        ctx.user_id,
        limit,
    )


async def recruiter_priority_candidates(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    *,
    limit: int = 10,
) -> list[dict[str, Any]]:
    """
    Assigned candidates waiting on the recruiter, longest-waiting first.
    """
    return await db.fetch_all(
        conn,
        """
        SELECT id, full_name, email, status, updated_at
        FROM candidates
        WHERE tenant_id = $1
          AND recruiter_id = $2
          AND status IN ('CLEARED', 'UNDER_REVIEW', 'APPLIED')
        ORDER BY CASE status WHEN 'CLEARED' THEN 0 WHEN 'UNDER_REVIEW' THEN 1 ELSE 2 END,
                 updated_at ASC, id ASC
        LIMIT $3
        """,
        ctx.tenant_id,
        ctx.user_id,
        limit,
    )


async def trainer_cohorts(conn: asyncpg.Connection, ctx: TenantContext) -> list[dict[str, Any]]:
    return await db.fetch_all(
        conn,
        """
        SELECT id, cohort_name, cohort_code, status, current_enrollment, max_capacity, start_date, end_date
        FROM cohorts
        WHERE tenant_id = $1
          AND lead_trainer_id = $2
        ORDER BY start_date DESC, id DESC
        """,
        ctx.tenant_id,
        ctx.user_id,
    )


async def trainer_enrollment_stats(conn: asyncpg.Connection, ctx: TenantContext) -> dict[str, Any]:
    row = await db.fetch_one(
        conn,
        """
        SELECT count(*) FILTER (WHERE e.status = 'ENROLLED') AS enrolled_students,
               avg(e.attendance_rate) FILTER (WHERE e.status IN ('ENROLLED', 'COMPLETED')) AS average_attendance,
               count(*) FILTER (WHERE e.status = 'ENROLLED' AND e.assessment_result IS NULL) AS pending_assessments
        FROM cohort_enrollments e
        JOIN cohorts h ON h.id = e.cohort_id
        WHERE e.tenant_id = $1
          AND h.lead_trainer_id = $2
        """,
        ctx.tenant_id,
        ctx.user_id,
    )
    return row or {}


async def candidate_cohort_enrollments(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    candidate_id: int,
) -> list[dict[str, Any]]:
    return await db.fetch_all(
        conn,
        """
        SELECT e.id, e.cohort_id, h.cohort_name, h.cohort_code, h.status AS cohort_status,
               e.status, e.application_date, e.approval_date, e.vetting_status,
               e.attendance_rate, e.assessment_result, e.placement_ready
        FROM cohort_enrollments e
        JOIN cohorts h ON h.id = e.cohort_id
        WHERE e.tenant_id = $1
          AND e.candidate_id = $2
        ORDER BY e.application_date DESC, e.id DESC
        """,
        ctx.tenant_id,
        candidate_id,
    )
