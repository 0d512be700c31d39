"""
Course and course-enrollment persistence (raw SQL).
"""

from __future__ import annotations

from typing import Any

import asyncpg

from core import db
from core.tenancy import TenantContext
from lifecycle.statuses import CourseEnrollmentStatus, CourseStatus

COURSE_COLUMNS = "id, tenant_id, title, code, description, status, created_by, created_at, updated_at"
ENROLLMENT_COLUMNS = (
    "id, tenant_id, candidate_id, course_id, enrollment_status, enrolled_at, completion_date, updated_at"
)


async def insert_course(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    *,
    title: str,
    code: str,
    description: str | None,
    status: CourseStatus,
) -> dict[str, Any]:
    row = await db.fetch_one(
        conn,
        f"""
        INSERT INTO courses (tenant_id, title, code, description, status, created_by)
        VALUES ($1, $2, $3, $4, $5, $6)
        RETURNING {COURSE_COLUMNS}
        """,
        ctx.tenant_id,
        title,
        code,
        description,
        status.value,
        ctx.user_id,
    )
    if row is None:
        raise RuntimeError("Failed to insert course.")
    return row


async def get_course(conn: asyncpg.Connection, ctx: TenantContext, course_id: int) -> dict[str, Any] | None:
    return await db.fetch_one(
        conn,
        f"""
        SELECT {COURSE_COLUMNS}
        FROM courses
        WHERE id = $1
          AND tenant_id = $2
        """,
        course_id,
        ctx.tenant_id,
    )


async def list_courses(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    *,
    status: CourseStatus | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[dict[str, Any]]:
    return await db.fetch_all(
        conn,
        f"""
        SELECT {COURSE_COLUMNS}
        FROM courses
        WHERE tenant_id = $1
          AND ($2::text IS NULL OR status = $2)
        ORDER BY created_at DESC, id DESC
        LIMIT $3
        OFFSET $4
        """,
        ctx.tenant_id,
        status.value if status is not None else None,
        limit,
        offset,
    )


async def insert_enrollment(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    *,
    candidate_id: int,
    course_id: int,
) -> dict[str, Any]:
    row = await db.fetch_one(
        conn,
        f"""
        INSERT INTO course_enrollments (tenant_id, candidate_id, course_id, enrollment_status)
        VALUES ($1, $2, $3, $4)
        RETURNING {ENROLLMENT_COLUMNS}
        """,
        ctx.tenant_id,
        candidate_id,
        course_id,
        CourseEnrollmentStatus.ENROLLED.value,
    )
    if row is None:
        raise RuntimeError("Failed to insert course enrollment.")
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
        FROM course_enrollments
        WHERE id = $1
          AND tenant_id = $2
        {lock}
        """,
        enrollment_id,
        ctx.tenant_id,
    )


async def update_enrollment_status(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    enrollment_id: int,
    *,
    expected: CourseEnrollmentStatus,
    target: CourseEnrollmentStatus,
    stamp_completion: bool = False,
) -> dict[str, Any] | None:
    """
    Conditional status change. None when the row is missing or no longer in `expected`.
    """
    return await db.fetch_one(
        conn,
        f"""
        UPDATE course_enrollments
        SET enrollment_status = $4,
            completion_date = CASE WHEN $5 THEN now() ELSE completion_date END,
            updated_at = now()
        WHERE id = $1
          AND tenant_id = $2
          AND enrollment_status = $3
        RETURNING {ENROLLMENT_COLUMNS}
        """,
        enrollment_id,
        ctx.tenant_id,
        expected.value,
        target.value,
        stamp_completion,
    )


async def list_enrollments_for_candidate(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    candidate_id: int,
) -> list[dict[str, Any]]:
    return await db.fetch_all(
        conn,
        """
        SELECT e.id, e.course_id, c.title AS course_title, c.code AS course_code,
               e.enrollment_status, e.enrolled_at, e.completion_date
        FROM course_enrollments e
        JOIN courses c ON c.id = e.course_id
        WHERE e.tenant_id = $1
          AND e.candidate_id = $2
        ORDER BY e.enrolled_at DESC, e.id DESC
        """,
        ctx.tenant_id,
        candidate_id,
    )
