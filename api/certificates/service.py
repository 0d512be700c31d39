"""
Certificate issuance, revocation, reissue and verification.

Numbers look like `CERT-2026-0001`: the sequence restarts every calendar
year per tenant and is allocated inside the issuing transaction, so a
rolled-back issue never leaves a half-written certificate (it may leave a
gap in the sequence).
"""

from __future__ import annotations

import hashlib
import logging
from datetime import date, datetime, timezone
from typing import Any

import asyncpg

from candidates import repository as candidate_repository
from core import activity
from core.errors import ConflictError, InvalidStateError, NotFoundError, NotificationDeliveryError
from core.tenancy import TenantContext
from courses import repository as course_repository
from lifecycle import transitions
from lifecycle.statuses import (
    CertificateStatus,
    CourseEnrollmentStatus,
    VALID_CERTIFICATE_STATUSES,
    parse_status,
)
from lifecycle.transitions import CertificateAction, Effect
from notifications import service as notification_service

from . import repository, schemas

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_certificate_number(year: int, sequence: int) -> str:
    return f"CERT-{year}-{sequence:04d}"


def compute_signature(*, certificate_number: str, candidate_id: int, course_id: int, issue_date: datetime) -> str:
    """
    SHA-256 over the fields that identify a certificate.
    """
    payload = f"{certificate_number}|{candidate_id}|{course_id}|{issue_date.isoformat()}"
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


async def _allocate_number(conn: asyncpg.Connection, ctx: TenantContext, issued_at: datetime) -> str:
    sequence = await repository.next_sequence(conn, ctx, issued_at.year)
    return format_certificate_number(issued_at.year, sequence)


async def _load_certificate(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    certificate_id: int,
    *,
    for_update: bool = False,
) -> dict[str, Any]:
    row = await repository.get_certificate(conn, ctx, certificate_id, for_update=for_update)
    if row is None:
        raise NotFoundError.for_entity("Certificate")
    return row


async def notify_candidate_after_commit(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    certificate: dict[str, Any],
    *,
    title: str,
    message: str,
    entity_type: str = "certificate",
) -> None:
    """
    Notify the certificate holder once the certificate change has committed.

    Runs in its own short transaction so a slow webhook never holds the
    per-tenant numbering row. A failed delivery drops only the notification;
    the committed certificate stands.
    """
    try:
        async with conn.transaction():
            candidate = await candidate_repository.get_candidate(conn, ctx, int(certificate["candidate_id"]))
            await notification_service.notify_user(
                conn,
                ctx,
                user_id=candidate.get("user_id") if candidate else None,
                title=title,
                message=message,
                entity_type=entity_type,
                entity_id=int(certificate["id"]),
            )
    except NotificationDeliveryError:
        logger.warning(
            "certificate_notification_failed entity_type=%s entity_id=%s tenant_id=%s",
            entity_type,
            certificate["id"],
            ctx.tenant_id,
        )


async def _require_active_template(conn: asyncpg.Connection, ctx: TenantContext, template_id: int) -> None:
    template = await repository.get_template(conn, ctx, template_id)
    if template is None:
        raise NotFoundError.for_entity("Certificate template")
    if not bool(template["is_active"]):
        raise InvalidStateError("Certificate template is inactive.")


async def issue_in_transaction(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    payload: schemas.IssueCertificateRequest,
) -> dict[str, Any]:
    """
    Issue a certificate inside the caller's transaction, without notifying.

    The number is allocated last so the sequence row lock is held only for
    the insert and the activity record that follow it.
    """
    enrollment = await course_repository.get_enrollment(conn, ctx, payload.enrollment_id, for_update=True)
    if enrollment is None:
        raise NotFoundError.for_entity("Course enrollment")

    status = parse_status(CourseEnrollmentStatus, enrollment["enrollment_status"])
    if status is not CourseEnrollmentStatus.COMPLETED and not payload.override:
        raise InvalidStateError(f"Cannot issue certificate for course enrollment in status {status.value}.")

    if await repository.get_by_enrollment(conn, ctx, payload.enrollment_id) is not None:
        raise ConflictError("Certificate already issued for this enrollment.")

    if payload.template_id is not None:
        await _require_active_template(conn, ctx, payload.template_id)

    issued_at = _utc_now()
    number = await _allocate_number(conn, ctx, issued_at)
    try:
        row = await repository.insert_certificate(
            conn,
            ctx,
            enrollment_id=payload.enrollment_id,
            candidate_id=int(enrollment["candidate_id"]),
            course_id=int(enrollment["course_id"]),
            template_id=payload.template_id,
            certificate_number=number,
            status=CertificateStatus.ISSUED,
            issue_date=issued_at,
            expiry_date=payload.expiry_date,
            grade=payload.grade,
            remarks=payload.remarks,
            digital_signature=compute_signature(
                certificate_number=number,
                candidate_id=int(enrollment["candidate_id"]),
                course_id=int(enrollment["course_id"]),
                issue_date=issued_at,
            ),
        )
    except asyncpg.UniqueViolationError as exc:
        raise ConflictError("Certificate already issued for this enrollment.") from exc

    await activity.record(
        conn,
        ctx,
        action="CERTIFICATE_ISSUED",
        entity_type="certificate",
        entity_id=int(row["id"]),
        details={
            "certificate_number": number,
            "enrollment_id": payload.enrollment_id,
            "override": payload.override and status is not CourseEnrollmentStatus.COMPLETED,
        },
    )
    return row


async def issue(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    payload: schemas.IssueCertificateRequest,
) -> dict[str, Any]:
    async with conn.transaction():
        row = await issue_in_transaction(conn, ctx, payload)
    number = row["certificate_number"]

    logger.info("certificate_issued certificate_id=%s number=%s tenant_id=%s", row["id"], number, ctx.tenant_id)
    await notify_candidate_after_commit(
        conn,
        ctx,
        row,
        title="Certificate issued",
        message=f"Your certificate {number} has been issued.",
    )
    return row


async def revoke(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    certificate_id: int,
    reason: str | None = None,
) -> dict[str, Any]:
    reason = (reason or "").strip() or None

    async with conn.transaction():
        certificate = await _load_certificate(conn, ctx, certificate_id, for_update=True)
        transition = transitions.certificate(
            parse_status(CertificateStatus, certificate["status"]),
            CertificateAction.REVOKE,
        )
        row = await repository.revoke(conn, ctx, certificate_id, expected=transition.source, reason=reason)
        if row is None:
            raise InvalidStateError("Certificate was modified concurrently.")

        await activity.record(
            conn,
            ctx,
            action="CERTIFICATE_REVOKED",
            entity_type="certificate",
            entity_id=certificate_id,
            details={"certificate_number": row["certificate_number"], "reason": reason},
        )

    logger.info(
        "certificate_transition certificate_id=%s from=%s to=%s tenant_id=%s",
        certificate_id,
        transition.source.value,
        transition.target.value,
        ctx.tenant_id,
    )
    if transition.has(Effect.NOTIFY_CANDIDATE):
        message = f"Your certificate {row['certificate_number']} has been revoked."
        if reason:
            message = f"{message} Reason: {reason}"
        await notify_candidate_after_commit(conn, ctx, row, title="Certificate revoked", message=message)
    return row


async def reissue(conn: asyncpg.Connection, ctx: TenantContext, certificate_id: int) -> dict[str, Any]:
    """
    Issue a fresh certificate copying the source; the source row is left unchanged.
    """
    async with conn.transaction():
        source = await _load_certificate(conn, ctx, certificate_id, for_update=True)
        transition = transitions.certificate(
            parse_status(CertificateStatus, source["status"]),
            CertificateAction.REISSUE,
        )

        issued_at = _utc_now()
        number = await _allocate_number(conn, ctx, issued_at)
        row = await repository.insert_certificate(
            conn,
            ctx,
            enrollment_id=None,
            candidate_id=int(source["candidate_id"]),
            course_id=int(source["course_id"]),
            template_id=source.get("template_id"),
            certificate_number=number,
            status=CertificateStatus.REISSUED,
            issue_date=issued_at,
            expiry_date=source.get("expiry_date"),
            grade=source.get("grade"),
            remarks=f"Reissued from {source['certificate_number']}",
            digital_signature=compute_signature(
                certificate_number=number,
                candidate_id=int(source["candidate_id"]),
                course_id=int(source["course_id"]),
                issue_date=issued_at,
            ),
            reissued_from_id=certificate_id,
        )

        await activity.record(
            conn,
            ctx,
            action="CERTIFICATE_REISSUED",
            entity_type="certificate",
            entity_id=int(row["id"]),
            details={"certificate_number": number, "reissued_from": source["certificate_number"]},
        )

    logger.info(
        "certificate_reissued certificate_id=%s source_id=%s number=%s tenant_id=%s",
        row["id"],
        certificate_id,
        number,
        ctx.tenant_id,
    )
    if transition.has(Effect.NOTIFY_CANDIDATE):
        await notify_candidate_after_commit(
            conn,
            ctx,
            row,
            title="Certificate reissued",
            message=f"Certificate {source['certificate_number']} was reissued as {number}.",
        )
    return row


async def get_certificate(conn: asyncpg.Connection, ctx: TenantContext, certificate_id: int) -> dict[str, Any]:
    return await _load_certificate(conn, ctx, certificate_id)


async def list_certificates(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    *,
    status: CertificateStatus | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    limit: int = 50,
    offset: int = 0,
) -> dict[str, Any]:
    rows = await repository.list_certificates(
        conn,
        ctx,
        status=status,
        date_from=date_from,
        date_to=date_to,
        limit=limit,
        offset=offset,
    )
    return {"certificates": rows, "limit": limit, "offset": offset, "count": len(rows)}


async def statistics(conn: asyncpg.Connection, ctx: TenantContext) -> dict[str, Any]:
    counts = await repository.status_counts(conn, ctx)
    by_status = {s.value: counts.get(s.value, 0) for s in CertificateStatus}
    return {"total": sum(by_status.values()), "by_status": by_status}


def is_valid(certificate: dict[str, Any], *, today: date | None = None) -> bool:
    if certificate.get("status") not in {s.value for s in VALID_CERTIFICATE_STATUSES}:
        return False
    expiry = certificate.get("expiry_date")
    return expiry is None or expiry >= (today or _utc_now().date())


async def verify(conn: asyncpg.Connection, *, tenant_slug: str, certificate_number: str) -> dict[str, Any]:
    row = await repository.get_for_verification(
        conn,
        tenant_slug=tenant_slug,
        certificate_number=certificate_number,
    )
    if row is None:
        raise NotFoundError.for_entity("Certificate")

    return {
        "valid": is_valid(row),
        "certificate_number": row["certificate_number"],
        "status": row["status"],
        "candidate_name": row["candidate_name"],
        "course_title": row["course_title"],
        "issuer": row["tenant_name"],
        "issue_date": row["issue_date"],
        "expiry_date": row["expiry_date"],
        "grade": row["grade"],
        "signature_ok": row["digital_signature"]
        == compute_signature(
            certificate_number=row["certificate_number"],
            candidate_id=int(row["candidate_id"]),
            course_id=int(row["course_id"]),
            issue_date=row["issue_date"],
        ),
    }
