"""
Company, job opening and placement persistence (raw SQL).

Placement status changes go through conditional updates naming the status the
caller decided from, the same way cohort applications do.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

import asyncpg

from core import db
from core.tenancy import TenantContext
from lifecycle.statuses import CompanyStatus, JobOpeningStatus, PlacementStatus

COMPANY_COLUMNS = (
    "id, tenant_id, name, email, phone, country, industry, contact_person, website, status, "
    "created_by, created_at, updated_at"
)
JOB_OPENING_COLUMNS = (
    "id, tenant_id, company_id, recruiter_id, job_title, location, job_type, openings, salary_range, "
    "description, status, created_at, updated_at"
)
# Placement rows carry the candidate's recruiter so services can scope recruiter access.
PLACEMENT_COLUMNS = (
    "p.id, p.tenant_id, p.candidate_id, p.company_id, p.job_opening_id, p.job_role_offered, p.country, "
    "p.interview_date, p.status, p.cancellation_reason, p.completed_at, p.created_by, p.created_at, "
    "p.updated_at, c.full_name AS candidate_name, c.recruiter_id, co.name AS company_name"
)
PLACEMENT_FROM = """
        FROM placements p
        JOIN candidates c ON c.id = p.candidate_id
        JOIN companies co ON co.id = p.company_id
"""

UPDATABLE_COMPANY_FIELDS = (
    "name",
    "email",
    "phone",
    "country",
    "industry",
    "contact_person",
    "website",
    "status",
)


async def insert_company(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    *,
    name: str,
    email: str | None,
    phone: str | None,
    country: str | None,
    industry: str | None,
    contact_person: str | None,
    website: str | None,
) -> dict[str, Any]:
    row = await db.fetch_one(
        conn,
        f"""
        INSERT INTO companies (
            tenant_id, name, email, phone, country, industry, contact_person, website, status, created_by
        )
        VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
        RETURNING {COMPANY_COLUMNS}
        """,
        ctx.tenant_id,
        name,
        email,
        phone,
        country,
        industry,
        contact_person,
        website,
        CompanyStatus.ACTIVE.value,
        ctx.user_id,
    )
    if row is None:
        raise RuntimeError("Failed to insert company.")
    return row


async def get_company(conn: asyncpg.Connection, ctx: TenantContext, company_id: int) -> dict[str, Any] | None:
    return await db.fetch_one(
        conn,
        f"""
        SELECT {COMPANY_COLUMNS}
        FROM companies
        WHERE id = $1
          AND tenant_id = $2
        """,
        company_id,
        ctx.tenant_id,
    )


async def list_companies(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    *,
    status: CompanyStatus | None = None,
    search: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[dict[str, Any]]:
    return await db.fetch_all(
        conn,
        f"""
        SELECT {COMPANY_COLUMNS}
        FROM companies
        WHERE tenant_id = $1
          AND ($2::text IS NULL OR status = $2)
          AND ($3::text IS NULL OR name ILIKE '%' || $3 || '%')
        ORDER BY name ASC, id ASC
        LIMIT $4 OFFSET $5
        """,
        ctx.tenant_id,
        status.value if status else None,
        search,
        limit,
        offset,
    )


async def update_company(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    company_id: int,
    fields: dict[str, Any],
) -> dict[str, Any] | None:
    assignments: list[str] = []
    args: list[Any] = [company_id, ctx.tenant_id]
    for name in UPDATABLE_COMPANY_FIELDS:
        if name in fields:
            value = fields[name]
            args.append(value.value if isinstance(value, CompanyStatus) else value)
            assignments.append(f"{name} = ${len(args)}")

    if not assignments:
        return await get_company(conn, ctx, company_id)

    return await db.fetch_one(
        conn,
        f"""
        UPDATE companies
        SET {", ".join(assignments)},
            updated_at = now()
        WHERE id = $1
          AND tenant_id = $2
        RETURNING {COMPANY_COLUMNS}
        """,
        *args,
    )


async def count_company_references(conn: asyncpg.Connection, ctx: TenantContext, company_id: int) -> int:
    value = await db.fetch_value(
        conn,
        """
        SELECT (SELECT count(*) FROM job_openings WHERE tenant_id = $1 AND company_id = $2)
             + (SELECT count(*) FROM placements WHERE tenant_id = $1 AND company_id = $2)
        """,
        ctx.tenant_id,
        company_id,
    )
    return int(value or 0)


async def delete_company(conn: asyncpg.Connection, ctx: TenantContext, company_id: int) -> bool:
    row = await db.fetch_one(
        conn,
        """
        DELETE FROM companies
        WHERE id = $1
          AND tenant_id = $2
        RETURNING id
        """,
        company_id,
        ctx.tenant_id,
    )
    return row is not None


async def insert_job_opening(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    *,
    company_id: int,
    job_title: str,
    location: str | None,
    job_type: str | None,
    openings: int,
    salary_range: str | None,
    description: str | None,
) -> dict[str, Any]:
    row = await db.fetch_one(
        conn,
        f"""
        INSERT INTO job_openings (
            tenant_id, company_id, recruiter_id, job_title, location, job_type, openings,
            salary_range, description, status
        )
        VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
        RETURNING {JOB_OPENING_COLUMNS}
        """,
        ctx.tenant_id,
        company_id,
        ctx.user_id,
        job_title,
        location,
        job_type,
        openings,
        salary_range,
        description,
        JobOpeningStatus.OPEN.value,
    )
    if row is None:
        raise RuntimeError("Failed to insert job opening.")
    return row


async def get_job_opening(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    job_opening_id: int,
) -> dict[str, Any] | None:
    return await db.fetch_one(
        conn,
        f"""
        SELECT {JOB_OPENING_COLUMNS}
        FROM job_openings
        WHERE id = $1
          AND tenant_id = $2
        """,
        job_opening_id,
        ctx.tenant_id,
    )


async def list_job_openings(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    *,
    status: JobOpeningStatus | None = None,
    company_id: int | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[dict[str, Any]]:
    return await db.fetch_all(
        conn,
        f"""
        SELECT {JOB_OPENING_COLUMNS}
        FROM job_openings
        WHERE tenant_id = $1
          AND ($2::text IS NULL OR status = $2)
          AND ($3::bigint IS NULL OR company_id = $3)
        ORDER BY created_at DESC, id DESC
        LIMIT $4 OFFSET $5
        """,
        ctx.tenant_id,
        status.value if status else None,
        company_id,
        limit,
        offset,
    )


async def close_job_opening(conn: asyncpg.Connection, ctx: TenantContext, job_opening_id: int) -> dict[str, Any] | None:
    return await db.fetch_one(
        conn,
        f"""
        UPDATE job_openings
        SET status = $3,
            updated_at = now()
        WHERE id = $1
          AND tenant_id = $2
          AND status = $4
        RETURNING {JOB_OPENING_COLUMNS}
        """,
        job_opening_id,
        ctx.tenant_id,
        JobOpeningStatus.CLOSED.value,
        JobOpeningStatus.OPEN.value,
    )


async def insert_placement(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    *,
    candidate_id: int,
    company_id: int,
    job_opening_id: int | None,
    job_role_offered: str,
    country: str | None,
) -> dict[str, Any]:
    row = await db.fetch_one(
        conn,
        """
        INSERT INTO placements (
            tenant_id, candidate_id, company_id, job_opening_id, job_role_offered, country, status, created_by
        )
        VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
        RETURNING id
        """,
        ctx.tenant_id,
        candidate_id,
        company_id,
        job_opening_id,
        job_role_offered,
        country,
        PlacementStatus.INITIATED.value,
        ctx.user_id,
    )
    if row is None:
        raise RuntimeError("Failed to insert placement.")
    placement = await get_placement(conn, ctx, int(row["id"]))
    if placement is None:
        raise RuntimeError("Failed to load inserted placement.")
    return placement


async def get_placement(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    placement_id: int,
    *,
    for_update: bool = False,
) -> dict[str, Any] | None:
    lock = "FOR UPDATE OF p" if for_update else ""
    return await db.fetch_one(
        conn,
        f"""
        SELECT {PLACEMENT_COLUMNS}
        {PLACEMENT_FROM}
        WHERE p.id = $1
          AND p.tenant_id = $2
        {lock}
        """,
        placement_id,
        ctx.tenant_id,
    )


async def get_active_placement(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    candidate_id: int,
    statuses: list[str],
) -> dict[str, Any] | None:
    return await db.fetch_one(
        conn,
        f"""
        SELECT {PLACEMENT_COLUMNS}
        {PLACEMENT_FROM}
        WHERE p.tenant_id = $1
          AND p.candidate_id = $2
          AND p.status = ANY($3::text[])
        """,
        ctx.tenant_id,
        candidate_id,
        statuses,
    )


async def list_placements(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    *,
    status: PlacementStatus | None = None,
    candidate_id: int | None = None,
    company_id: int | None = None,
    recruiter_id: int | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[dict[str, Any]]:
    return await db.fetch_all(
        conn,
        f"""
        SELECT {PLACEMENT_COLUMNS}
        {PLACEMENT_FROM}
        WHERE p.tenant_id = $1
          AND ($2::text IS NULL OR p.status = $2)
          AND ($3::bigint IS NULL OR p.candidate_id = $3)
          AND ($4::bigint IS NULL OR p.company_id = $4)
          AND ($5::bigint IS NULL OR c.recruiter_id = $5)
        ORDER BY p.updated_at DESC, p.id DESC
        LIMIT $6 OFFSET $7
        """,
        ctx.tenant_id,
        status.value if status else None,
        candidate_id,
        company_id,
        recruiter_id,
        limit,
        offset,
    )


async def update_placement_status(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    placement_id: int,
    *,
    expected: PlacementStatus,
    target: PlacementStatus,
    interview_date: datetime | None = None,
    cancellation_reason: str | None = None,
    stamp_completion: bool = False,
) -> dict[str, Any] | None:
    row = await db.fetch_one(
        conn,
        """
        UPDATE placements
        SET status = $4,
            interview_date = COALESCE($5, interview_date),
            cancellation_reason = COALESCE($6, cancellation_reason),
            completed_at = CASE WHEN $7 THEN now() ELSE completed_at END,
            updated_at = now()
        WHERE id = $1
          AND tenant_id = $2
          AND status = $3
        RETURNING id
        """,
        placement_id,
        ctx.tenant_id,
        expected.value,
        target.value,
        interview_date,
        cancellation_reason,
        stamp_completion,
    )
    if row is None:
        return None
    return await get_placement(conn, ctx, placement_id)
