"""
Certificate persistence (raw SQL).

`next_sequence` is the only place certificate numbers come from: one
upsert on `certificate_sequences` per (tenant, year), which Postgres
serializes on the counter row.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

import asyncpg

from core import db
from core.tenancy import TenantContext
from lifecycle.statuses import CertificateRequestStatus, CertificateStatus

CERTIFICATE_COLUMNS = (
    "id, tenant_id, enrollment_id, candidate_id, course_id, template_id, certificate_number, status, "
    "issue_date, expiry_date, grade, remarks, revocation_reason, revoked_at, reissued_from_id, "
    "digital_signature, issued_by, created_at, updated_at"
)
TEMPLATE_COLUMNS = "id, tenant_id, name, description, design, content, is_active, created_by, created_at, updated_at"

REQUEST_COLUMNS = (
    "id, tenant_id, candidate_id, enrollment_id, status, remarks, rejection_reason, certificate_id, "
    "reviewed_by, reviewed_at, created_at, updated_at"
)

UPDATABLE_TEMPLATE_FIELDS = ("name", "description", "design", "content")


async def next_sequence(conn: asyncpg.Connection, ctx: TenantContext, year: int) -> int:
    value = await db.fetch_value(
        conn,
        """
        INSERT INTO certificate_sequences (tenant_id, year, last_value)
        VALUES ($1, $2, 1)
        ON CONFLICT (tenant_id, year)
        DO UPDATE SET last_value = certificate_sequences.last_value + 1
        RETURNING last_value
        """,
        ctx.tenant_id,
        year,
    )
    return int(value)


async def insert_certificate(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    *,
    enrollment_id: int | None,
    candidate_id: int,
    course_id: int,
    template_id: int | None,
    certificate_number: str,
    status: CertificateStatus,
    issue_date: datetime,
    expiry_date: date | None,
    grade: str | None,
    remarks: str | None,
    digital_signature: str,
    reissued_from_id: int | None = None,
) -> dict[str, Any]:
    row = await db.fetch_one(
        conn,
        f"""
        INSERT INTO certificates (
            tenant_id, enrollment_id, candidate_id, course_id, template_id, certificate_number, status,
            issue_date, expiry_date, grade, remarks, digital_signature, reissued_from_id, issued_by
        )
        VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14)
        RETURNING {CERTIFICATE_COLUMNS}
        """,
        ctx.tenant_id,
        enrollment_id,
        candidate_id,
        course_id,
        template_id,
        certificate_number,
        status.value,
        issue_date,
        expiry_date,
        grade,
        remarks,
        digital_signature,
        reissued_from_id,
        ctx.user_id,
    )
    if row is None:
        raise RuntimeError("Failed to insert certificate.")
    return row


async def get_certificate(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    certificate_id: int,
    *,
    for_update: bool = False,
) -> dict[str, Any] | None:
    lock = "FOR UPDATE" if for_update else ""
    return await db.fetch_one(
        conn,
        f"""
        SELECT {CERTIFICATE_COLUMNS}
        FROM certificates
        WHERE id = $1
          AND tenant_id = $2
        {lock}
        """,
        certificate_id,
        ctx.tenant_id,
    )


async def get_by_enrollment(conn: asyncpg.Connection, ctx: TenantContext, enrollment_id: int) -> dict[str, Any] | None:
    return await db.fetch_one(
        conn,
        f"""
        SELECT {CERTIFICATE_COLUMNS}
        FROM certificates
        WHERE tenant_id = $1
          AND enrollment_id = $2
        """,
        ctx.tenant_id,
        enrollment_id,
    )


async def get_for_verification(conn: asyncpg.Connection, *, tenant_slug: str, certificate_number: str) -> dict[str, Any] | None:
    """
    Public lookup: numbers are unique per tenant, so the tenant slug is part of the key.
    """
    return await db.fetch_one(
        conn,
        """
        SELECT c.certificate_number, c.status, c.issue_date, c.expiry_date, c.grade,
               c.digital_signature, c.candidate_id, c.course_id,
               cand.full_name AS candidate_name, co.title AS course_title, t.name AS tenant_name
        FROM certificates c
        JOIN tenants t ON t.id = c.tenant_id
        JOIN candidates cand ON cand.id = c.candidate_id
        JOIN courses co ON co.id = c.course_id
        WHERE t.slug = $1
          AND c.certificate_number = $2
        """,
        (tenant_slug or "").strip().lower(),
        (certificate_number or "").strip().upper(),
    )


async def revoke(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    certificate_id: int,
    *,
    expected: CertificateStatus,
    reason: str | None,
) -> dict[str, Any] | None:
    return await db.fetch_one(
        conn,
        f"""
        UPDATE certificates
        SET status = $4,
            revocation_reason = $5,
            revoked_at = now(),
            updated_at = now()
        WHERE id = $1
          AND tenant_id = $2
          AND status = $3
        RETURNING {CERTIFICATE_COLUMNS}
        """,
        certificate_id,
        ctx.tenant_id,
        expected.value,
        CertificateStatus.REVOKED.value,
        reason,
    )


async def list_certificates(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    *,
    status: CertificateStatus | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    candidate_id: int | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[dict[str, Any]]:
    return await db.fetch_all(
        conn,
        """
        SELECT c.id, c.enrollment_id, c.candidate_id, c.course_id, c.template_id, c.certificate_number,
               c.status, c.issue_date, c.expiry_date, c.grade, c.remarks, c.revocation_reason,
               c.reissued_from_id, cand.full_name AS candidate_name, co.title AS course_title
        FROM certificates c
        JOIN candidates cand ON cand.id = c.candidate_id
        JOIN courses co ON co.id = c.course_id
        WHERE c.tenant_id = $1
          AND ($2::text IS NULL OR c.status = $2)
          AND ($3::date IS NULL OR c.issue_date >= $3)
          AND ($4::date IS NULL OR c.issue_date < $4::date + 1)
          AND ($5::bigint IS NULL OR c.candidate_id = $5)
        ORDER BY c.issue_date DESC, c.id DESC
        LIMIT $6
        OFFSET $7
        """,
        ctx.tenant_id,
        status.value if status is not None else None,
        date_from,
        date_to,
        candidate_id,
        limit,
        offset,
    )


async def status_counts(conn: asyncpg.Connection, ctx: TenantContext) -> dict[str, int]:
    rows = await db.fetch_all(
        conn,
        """
        SELECT status, count(*) AS total
        FROM certificates
        WHERE tenant_id = $1
        GROUP BY status
        """,
        ctx.tenant_id,
    )
    return {str(r["status"]): int(r["total"]) for r in rows}


async def insert_template(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    *,
    name: str,
    description: str | None,
    design: dict[str, Any],
    content: str | None,
    is_active: bool,
) -> dict[str, Any]:
    row = await db.fetch_one(
        conn,
        f"""
        INSERT INTO certificate_templates (tenant_id, name, description, design, content, is_active, created_by)
        VALUES ($1, $2, $3, $4::jsonb, $5, $6, $7)
        RETURNING {TEMPLATE_COLUMNS}
        """,
        ctx.tenant_id,
        name,
        description,
        design,
        content,
        is_active,
        ctx.user_id,
    )
    if row is None:
        raise RuntimeError("Failed to insert certificate template.")
    return row


async def get_template(conn: asyncpg.Connection, ctx: TenantContext, template_id: int) -> dict[str, Any] | None:
    return await db.fetch_one(
        conn,
        f"""
        SELECT {TEMPLATE_COLUMNS}
        FROM certificate_templates
        WHERE id = $1
          AND tenant_id = $2
        """,
        template_id,
        ctx.tenant_id,
    )


async def list_templates(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    *,
    active_only: bool = False,
) -> list[dict[str, Any]]:
    return await db.fetch_all(
        conn,
        f"""
        SELECT {TEMPLATE_COLUMNS}
        FROM certificate_templates
        WHERE tenant_id = $1
          AND ($2 = false OR is_active)
        ORDER BY created_at DESC, id DESC
        """,
        ctx.tenant_id,
        active_only,
    )


async def update_template(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    template_id: int,
    fields: dict[str, Any],
) -> dict[str, Any] | None:
    assignments: list[str] = []
    args: list[Any] = [template_id, ctx.tenant_id]
    for name in UPDATABLE_TEMPLATE_FIELDS:
        if name in fields:
            args.append(fields[name])
            cast = "::jsonb" if name == "design" else ""
            assignments.append(f"{name} = ${len(args)}{cast}")

    if not assignments:
        return await get_template(conn, ctx, template_id)

    return await db.fetch_one(
        conn,
        f"""
        UPDATE certificate_templates
        SET {", ".join(assignments)},
            updated_at = now()
        WHERE id = $1
          AND tenant_id = $2
        RETURNING {TEMPLATE_COLUMNS}
        """,
        *args,
    )


async def set_template_active(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    template_id: int,
    is_active: bool,
) -> dict[str, Any] | None:
    return await db.fetch_one(
        conn,
        f"""
        UPDATE certificate_templates
        SET is_active = $3,
            updated_at = now()
        WHERE id = $1
          AND tenant_id = $2
        RETURNING {TEMPLATE_COLUMNS}
        """,
        template_id,
        ctx.tenant_id,
        is_active,
    )


async def count_certificates_using_template(conn: asyncpg.Connection, ctx: TenantContext, template_id: int) -> int:
    value = await db.fetch_value(
        conn,
        """
        SELECT count(*)
        FROM certificates
        WHERE tenant_id = $1
          AND template_id = $2
        """,
        ctx.tenant_id,
        template_id,
    )
    return int(value or 0)


async def delete_template(conn: asyncpg.Connection, ctx: TenantContext, template_id: int) -> bool:
    row = await db.fetch_one(
        conn,
        """
        DELETE FROM certificate_templates
        WHERE id = $1
          AND tenant_id = $2
        RETURNING id
        """,
        template_id,
        ctx.tenant_id,
    )
    return row is not None


async def insert_request(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    *,
    candidate_id: int,
    enrollment_id: int,
    remarks: str | None,
) -> dict[str, Any]:
    row = await db.fetch_one(
        conn,
        f"""
        INSERT INTO certificate_requests (tenant_id, candidate_id, enrollment_id, status, remarks)
        VALUES ($1, $2, $3, $4, $5)
        RETURNING {REQUEST_COLUMNS}
        """,
        ctx.tenant_id,
        candidate_id,
        enrollment_id,
        CertificateRequestStatus.PENDING.value,
        remarks,
    )
    if row is None:
        raise RuntimeError("Failed to insert certificate request.")
    return row


async def get_request(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    request_id: int,
    *,
    for_update: bool = False,
) -> dict[str, Any] | None:
    lock = "FOR UPDATE" if for_update else ""
    return await db.fetch_one(
        conn,
        f"""
        SELECT {REQUEST_COLUMNS}
        FROM certificate_requests
        WHERE id = $1
          AND tenant_id = $2
        {lock}
        """,
        request_id,
        ctx.tenant_id,
    )


async def get_pending_request(conn: asyncpg.Connection, ctx: TenantContext, enrollment_id: int) -> dict[str, Any] | None:
    return await db.fetch_one(
        conn,
        f"""
        SELECT {REQUEST_COLUMNS}
        FROM certificate_requests
        WHERE tenant_id = $1
          AND enrollment_id = $2
          AND status = $3
        """,
        ctx.tenant_id,
        enrollment_id,
        CertificateRequestStatus.PENDING.value,
    )


async def list_requests(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    *,
    status: CertificateRequestStatus | None = None,
    candidate_id: int | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[dict[str, Any]]:
    return await db.fetch_all(
        conn,
        f"""
        SELECT {REQUEST_COLUMNS}
        FROM certificate_requests
        WHERE tenant_id = $1
          AND ($2::text IS NULL OR status = $2)
          AND ($3::bigint IS NULL OR candidate_id = $3)
        ORDER BY created_at ASC, id ASC
        LIMIT $4 OFFSET $5
        """,
        ctx.tenant_id,
        status.value if status else None,
        candidate_id,
        limit,
        offset,
    )


async def update_request_status(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    request_id: int,
    *,
    expected: CertificateRequestStatus,
    target: CertificateRequestStatus,
    certificate_id: int | None = None,
    rejection_reason: str | None = None,
) -> dict[str, Any] | None:
    return await db.fetch_one(
        conn,
        f"""
        UPDATE certificate_requests
        SET status = $4,
            certificate_id = $5,
            rejection_reason = $6,
            reviewed_by = $7,
            reviewed_at = now(),
            updated_at = now()
        WHERE id = $1
          AND tenant_id = $2
          AND status = $3
        RETURNING {REQUEST_COLUMNS}
        """,
        request_id,
        ctx.tenant_id,
        expected.value,
        target.value,
        certificate_id,
        rejection_reason,
        ctx.user_id,
    )
