"""
Vetting record persistence (raw SQL).
"""

from __future__ import annotations

from typing import Any

import asyncpg

from core import db
from core.tenancy import TenantContext
from lifecycle.statuses import ACTIVE_VETTING_STATUSES, VettingStatus, values

RECORD_COLUMNS = (
    "id, tenant_id, candidate_id, cohort_enrollment_id, vetting_status, police_clearance_no, "
    "medical_report_no, police_clearance_url, medical_report_url, passport_url, remarks, "
    "reviewed_by, reviewed_at, created_at, updated_at"
)


async def insert_record(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    *,
    candidate_id: int,
    cohort_enrollment_id: int,
    police_clearance_no: str | None,
    medical_report_no: str | None,
) -> dict[str, Any]:
    row = await db.fetch_one(
        conn,
        f"""
        INSERT INTO vetting_records (
            tenant_id, candidate_id, cohort_enrollment_id, vetting_status, police_clearance_no, medical_report_no
        )
        VALUES ($1, $2, $3, $4, $5, $6)
        RETURNING {RECORD_COLUMNS}
        """,
        ctx.tenant_id,
        candidate_id,
        cohort_enrollment_id,
        VettingStatus.PENDING.value,
        police_clearance_no,
        medical_report_no,
    )
    if row is None:
        raise RuntimeError("Failed to insert vetting record.")
    return row


async def get_record(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    record_id: int,
    *,
    for_update: bool = False,
) -> dict[str, Any] | None:
    lock = "FOR UPDATE" if for_update else ""
    return await db.fetch_one(
        conn,
        f"""
        SELECT {RECORD_COLUMNS}
        FROM vetting_records
        WHERE id = $1
          AND tenant_id = $2
        {lock}
        """,
        record_id,
        ctx.tenant_id,
    )


async def get_active_record(conn: asyncpg.Connection, ctx: TenantContext, candidate_id: int) -> dict[str, Any] | None:
    return await db.fetch_one(
        conn,
        f"""
        SELECT {RECORD_COLUMNS}
        FROM vetting_records
        WHERE tenant_id = $1
          AND candidate_id = $2
          AND vetting_status = ANY($3::text[])
        """,
        ctx.tenant_id,
        candidate_id,
        values(ACTIVE_VETTING_STATUSES),
    )


async def list_records(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    *,
    status: VettingStatus | None = None,
    candidate_id: int | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[dict[str, Any]]:
    return await db.fetch_all(
        conn,
        """
        SELECT v.id, v.candidate_id, v.cohort_enrollment_id, v.vetting_status, v.police_clearance_no,
               v.medical_report_no, v.police_clearance_url, v.medical_report_url, v.passport_url,
               v.remarks, v.reviewed_by, v.reviewed_at, v.created_at, v.updated_at,
               c.full_name AS candidate_name, c.email AS candidate_email
        FROM vetting_records v
        JOIN candidates c ON c.id = v.candidate_id
        WHERE v.tenant_id = $1
          AND ($2::text IS NULL OR v.vetting_status = $2)
          AND ($3::bigint IS NULL OR v.candidate_id = $3)
        ORDER BY v.created_at DESC, v.id DESC
        LIMIT $4
        OFFSET $5
        """,
        ctx.tenant_id,
        status.value if status is not None else None,
        candidate_id,
        limit,
        offset,
    )


async def update_status(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    record_id: int,
    *,
    expected: VettingStatus,
    target: VettingStatus,
    remarks: str | None = None,
    reviewed: bool = False,
) -> dict[str, Any] | None:
    return await db.fetch_one(
        conn,
        f"""
        UPDATE vetting_records
        SET vetting_status = $4,
            remarks = COALESCE($5, remarks),
            reviewed_by = CASE WHEN $6 THEN $7 ELSE reviewed_by END,
            reviewed_at = CASE WHEN $6 THEN now() ELSE reviewed_at END,
            updated_at = now()
        WHERE id = $1
          AND tenant_id = $2
          AND vetting_status = $3
        RETURNING {RECORD_COLUMNS}
        """,
        record_id,
        ctx.tenant_id,
        expected.value,
        target.value,
        remarks,
        reviewed,
        ctx.user_id,
    )


async def submit_documents(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    record_id: int,
    *,
    expected: VettingStatus,
    target: VettingStatus,
    documents: dict[str, str | None],
) -> dict[str, Any] | None:
    return await db.fetch_one(
        conn,
        f"""
        UPDATE vetting_records
        SET vetting_status = $4,
            police_clearance_url = COALESCE($5, police_clearance_url),
            medical_report_url = COALESCE($6, medical_report_url),
            passport_url = COALESCE($7, passport_url),
            police_clearance_no = COALESCE($8, police_clearance_no),
            medical_report_no = COALESCE($9, medical_report_no),
            updated_at = now()
        WHERE id = $1
          AND tenant_id = $2
          AND vetting_status = $3
        RETURNING {RECORD_COLUMNS}
        """,
        record_id,
        ctx.tenant_id,
        expected.value,
        target.value,
        documents.get("police_clearance_url"),
        documents.get("medical_report_url"),
        documents.get("passport_url"),
        documents.get("police_clearance_no"),
        documents.get("medical_report_no"),
    )


async def latest_for_candidate(conn: asyncpg.Connection, ctx: TenantContext, candidate_id: int) -> dict[str, Any] | None:
    return await db.fetch_one(
        conn,
        f"""
        SELECT {RECORD_COLUMNS}
        FROM vetting_records
        WHERE tenant_id = $1
          AND candidate_id = $2
        ORDER BY created_at DESC, id DESC
        LIMIT 1
        """,
        ctx.tenant_id,
        candidate_id,
    )
