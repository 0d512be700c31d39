"""
Candidate certificate requests and the admin approval queue.

Approving a request issues the certificate in the same transaction; the
candidate hears about it only after both rows have committed.
"""

from __future__ import annotations

import logging
from typing import Any

import asyncpg

from candidates import service as candidate_service
from core import activity
from core.errors import ConflictError, InvalidStateError, NotFoundError, ValidationError
from core.tenancy import TenantContext
from courses import repository as course_repository
from lifecycle import transitions
from lifecycle.statuses import CertificateRequestStatus, CourseEnrollmentStatus, parse_status
from lifecycle.transitions import CertificateRequestAction, Effect

from . import repository, schemas, service

logger = logging.getLogger(__name__)


async def _load_request(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    request_id: int,
    *,
    for_update: bool = False,
) -> dict[str, Any]:
    row = await repository.get_request(conn, ctx, request_id, for_update=for_update)
    if row is None:
        raise NotFoundError.for_entity("Certificate request")
    return row


async def request_certificate(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    payload: schemas.CertificateRequestCreate,
) -> dict[str, Any]:
    async with conn.transaction():
        candidate = await candidate_service.candidate_for_user(conn, ctx)
        enrollment = await course_repository.get_enrollment(conn, ctx, payload.enrollment_id, for_update=True)
        if enrollment is None or int(enrollment["candidate_id"]) != int(candidate["id"]):
            raise NotFoundError.for_entity("Course enrollment")

        status = parse_status(CourseEnrollmentStatus, enrollment["enrollment_status"])
        if status is not CourseEnrollmentStatus.COMPLETED:
            raise InvalidStateError(f"Cannot request a certificate for course enrollment in status {status.value}.")
        if await repository.get_by_enrollment(conn, ctx, payload.enrollment_id) is not None:
            raise ConflictError("Certificate already issued for this enrollment.")
        if await repository.get_pending_request(conn, ctx, payload.enrollment_id) is not None:
            raise ConflictError("A certificate request for this enrollment is already pending.")

        try:
            row = await repository.insert_request(
                conn,
                ctx,
                candidate_id=int(candidate["id"]),
                enrollment_id=payload.enrollment_id,
                remarks=(payload.remarks or "").strip() or None,
            )
        except asyncpg.UniqueViolationError as exc:
            raise ConflictError("A certificate request for this enrollment is already pending.") from exc

        await activity.record(
            conn,
            ctx,
            action="CERTIFICATE_REQUESTED",
            entity_type="certificate_request",
            entity_id=int(row["id"]),
            details={"enrollment_id": payload.enrollment_id},
        )

    logger.info("certificate_requested request_id=%s tenant_id=%s", row["id"], ctx.tenant_id)
    return row


async def my_requests(conn: asyncpg.Connection, ctx: TenantContext) -> list[dict[str, Any]]:
    candidate = await candidate_service.candidate_for_user(conn, ctx)
    return await repository.list_requests(conn, ctx, candidate_id=int(candidate["id"]), limit=100)


async def list_requests(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    *,
    status: CertificateRequestStatus | None = None,
    limit: int = 50,
    offset: int = 0,
) -> dict[str, Any]:
    rows = await repository.list_requests(conn, ctx, status=status, limit=limit, offset=offset)
    return {"requests": rows, "limit": limit, "offset": offset, "count": len(rows)}


async def approve(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    request_id: int,
    payload: schemas.ApproveCertificateRequest | None = None,
) -> dict[str, Any]:
    payload = payload or schemas.ApproveCertificateRequest()

    async with conn.transaction():
        request = await _load_request(conn, ctx, request_id, for_update=True)
        transition = transitions.certificate_request(
            parse_status(CertificateRequestStatus, request["status"]),
            CertificateRequestAction.APPROVE,
        )
        certificate = None
        if transition.has(Effect.ISSUE_CERTIFICATE):
            certificate = await service.issue_in_transaction(
                conn,
                ctx,
                schemas.IssueCertificateRequest(
                    enrollment_id=int(request["enrollment_id"]),
                    template_id=payload.template_id,
                    grade=payload.grade,
                    expiry_date=payload.expiry_date,
                    remarks=request.get("remarks"),
                ),
            )
        row = await repository.update_request_status(
            conn,
            ctx,
            request_id,
            expected=transition.source,
            target=transition.target,
            certificate_id=int(certificate["id"]) if certificate else None,
        )
        if row is None:
            raise InvalidStateError("Certificate request was modified concurrently.")

        await activity.record(
            conn,
            ctx,
            action="CERTIFICATE_REQUEST_APPROVED",
            entity_type="certificate_request",
            entity_id=request_id,
            details={"certificate_id": row["certificate_id"]},
        )

    logger.info("certificate_request_approved request_id=%s tenant_id=%s", request_id, ctx.tenant_id)
    if certificate is not None:
        await service.notify_candidate_after_commit(
            conn,
            ctx,
            certificate,
            title="Certificate issued",
            message=f"Your certificate request was approved as {certificate['certificate_number']}.",
        )
    return {**row, "certificate": certificate}


async def reject(conn: asyncpg.Connection, ctx: TenantContext, request_id: int, reason: str | None) -> dict[str, Any]:
    reason = (reason or "").strip() or None

    async with conn.transaction():
        request = await _load_request(conn, ctx, request_id, for_update=True)
        transition = transitions.certificate_request(
            parse_status(CertificateRequestStatus, request["status"]),
            CertificateRequestAction.REJECT,
        )
        if transition.has(Effect.REQUIRE_REASON) and reason is None:
            raise ValidationError("A reason is required to reject a certificate request.")

        row = await repository.update_request_status(
            conn,
            ctx,
            request_id,
            expected=transition.source,
            target=transition.target,
            rejection_reason=reason,
        )
        if row is None:
            raise InvalidStateError("Certificate request was modified concurrently.")

        await activity.record(
            conn,
            ctx,
            action="CERTIFICATE_REQUEST_REJECTED",
            entity_type="certificate_request",
            entity_id=request_id,
            details={"reason": reason},
        )

    logger.info("certificate_request_rejected request_id=%s tenant_id=%s", request_id, ctx.tenant_id)
    if transition.has(Effect.NOTIFY_CANDIDATE):
        await service.notify_candidate_after_commit(
            conn,
            ctx,
            row,
            title="Certificate request rejected",
            message=f"Your certificate request was rejected. Reason: {reason}",
            entity_type="certificate_request",
        )
    return row
