"""
Candidate persistence (raw SQL).

Every function takes the caller's `TenantContext` and filters on its tenant.
"""

from __future__ import annotations

from typing import Any

import asyncpg

from core import db
from core.tenancy import TenantContext
from lifecycle.statuses import CandidateStatus

CANDIDATE_COLUMNS = (
    "id, tenant_id, user_id, recruiter_id, full_name, email, phone, preferred_country, "
    "status, created_at, updated_at"
)


async def insert_candidate(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    *,
    full_name: str,
    email: str | None = None,
    phone: str | None = None,
    user_id: int | None = None,
    preferred_country: str | None = None,
    recruiter_id: int | None = None,
    status: CandidateStatus = CandidateStatus.REGISTERED,
) -> dict[str, Any]:
    row = await db.fetch_one(
        conn,
        f"""
        INSERT INTO candidates (tenant_id, user_id, recruiter_id, full_name, email, phone, preferred_country, status)
        VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
        RETURNING {CANDIDATE_COLUMNS}
        """,
        ctx.tenant_id,
        user_id,
        recruiter_id,
        full_name,
        email,
        phone,
        preferred_country,
        status.value,
    )
    if row is None:
        raise RuntimeError("Failed to insert candidate.")
    return row


async def get_candidate(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    candidate_id: int,
    *,
    for_update: bool = False,
) -> dict[str, Any] | None:
    lock = "FOR UPDATE" if for_update else ""
    return await db.fetch_one(
        conn,
        f"""
        SELECT {CANDIDATE_COLUMNS}
        FROM candidates
        WHERE id = $1
          AND tenant_id = $2
        {lock}
        """,
        candidate_id,
        ctx.tenant_id,
    )


async def get_candidate_by_user(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    user_id: int,
    *,
    for_update: bool = False,
) -> dict[str, Any] | None:
    lock = "FOR UPDATE" if for_update else ""
    return await db.fetch_one(
        conn,
        f"""
        SELECT {CANDIDATE_COLUMNS}
        FROM candidates
        WHERE user_id = $1
          AND tenant_id = $2
        {lock}
        """,
        user_id,
        ctx.tenant_id,
    )


async def list_candidates(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    *,
    status: CandidateStatus | None = None,
    recruiter_id: int | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[dict[str, Any]]:
    return await db.fetch_all(
        conn,
        f"""
        SELECT {CANDIDATE_COLUMNS}
        FROM candidates
        WHERE tenant_id = $1
          AND ($2::text IS NULL OR status = $2)
          AND ($3::bigint IS NULL OR recruiter_id = $3)
        ORDER BY created_at DESC, id DESC
        LIMIT $4
        OFFSET $5
        """,
        ctx.tenant_id,
        status.value if status is not None else None,
        recruiter_id,
        limit,
        offset,
    )


async def set_recruiter(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    candidate_id: int,
    recruiter_id: int,
) -> dict[str, Any] | None:
    return await db.fetch_one(
        conn,
        f"""
        UPDATE candidates
        SET recruiter_id = $3,
            updated_at = now()
        WHERE id = $1
          AND tenant_id = $2
        RETURNING {CANDIDATE_COLUMNS}
        """,
        candidate_id,
        ctx.tenant_id,
        recruiter_id,
    )


async def update_status(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    candidate_id: int,
    status: CandidateStatus,
) -> dict[str, Any] | None:
    return await db.fetch_one(
        conn,
        f"""
        UPDATE candidates
        SET status = $3,
            updated_at = now()
        WHERE id = $1
          AND tenant_id = $2
        RETURNING {CANDIDATE_COLUMNS}
        """,
        candidate_id,
        ctx.tenant_id,
        status.value,
    )


async def insert_pipeline_event(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    *,
    candidate_id: int,
    from_stage: CandidateStatus | None,
    to_stage: CandidateStatus,
    comment: str | None = None,
    is_blocked: bool = False,
    blocker_reason: str | None = None,
) -> dict[str, Any]:
    row = await db.fetch_one(
        conn,
        """
        INSERT INTO candidate_pipeline_events
            (tenant_id, candidate_id, from_stage, to_stage, comment, is_blocked, blocker_reason, created_by)
        VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
        RETURNING id, candidate_id, from_stage, to_stage, comment, is_blocked, blocker_reason,
                  created_by, created_at
        """,
        ctx.tenant_id,
        candidate_id,
        from_stage.value if from_stage is not None else None,
        to_stage.value,
        comment,
        is_blocked,
        blocker_reason,
        ctx.user_id,
    )
    if row is None:
        raise RuntimeError("Failed to insert pipeline event.")
    return row


async def list_pipeline_events(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    candidate_id: int,
) -> list[dict[str, Any]]:
    return await db.fetch_all(
        conn,
        """
        SELECT e.id, e.candidate_id, e.from_stage, e.to_stage, e.comment, e.is_blocked,
               e.blocker_reason, e.created_by, e.created_at, u.email AS created_by_email
        FROM candidate_pipeline_events e
        LEFT JOIN users u ON u.id = e.created_by
        WHERE e.tenant_id = $1
          AND e.candidate_id = $2
        ORDER BY e.created_at ASC, e.id ASC
        """,
        ctx.tenant_id,
        candidate_id,
    )
