"""
FastAPI router for certificates, templates, certificate requests and public verification.
"""

from __future__ import annotations

from datetime import date

import asyncpg
from fastapi import APIRouter, Depends, Query

from auth import dependencies as auth_dependencies
from core import db
from core.responses import ok
from core.tenancy import TenantContext
from lifecycle.statuses import CertificateRequestStatus, CertificateStatus

from . import requests, schemas, service, templates

router = APIRouter()


@router.post("/admin/certificates/issue", status_code=201)
async def issue_certificate(
    payload: schemas.IssueCertificateRequest,
    conn: asyncpg.Connection = Depends(db.get_connection),
    current_user: TenantContext = Depends(auth_dependencies.require_admin),
) -> dict:
    row = await service.issue(conn, current_user, payload)
    return ok(row, message="Certificate issued.")


@router.get("/admin/certificates")
async def list_certificates(
    status: CertificateStatus | None = Query(None),
    date_from: date | None = Query(None),
    date_to: date | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    conn: asyncpg.Connection = Depends(db.get_connection),
    current_user: TenantContext = Depends(auth_dependencies.require_admin),
) -> dict:
    result = await service.list_certificates(
        conn,
        current_user,
        status=status,
        date_from=date_from,
        date_to=date_to,
        limit=limit,
        offset=offset,
    )
    return ok(result)


@router.get("/admin/certificates/statistics")
async def certificate_statistics(
    conn: asyncpg.Connection = Depends(db.get_connection),
    current_user: TenantContext = Depends(auth_dependencies.require_admin),
) -> dict:
    return ok(await service.statistics(conn, current_user))


@router.get("/admin/certificates/{certificate_id}")
async def get_certificate(
    certificate_id: int,
    conn: asyncpg.Connection = Depends(db.get_connection),
    current_user: TenantContext = Depends(auth_dependencies.require_admin),
) -> dict:
    return ok(await service.get_certificate(conn, current_user, certificate_id))


@router.post("/admin/certificates/{certificate_id}/revoke")
async def revoke_certificate(
    certificate_id: int,
    payload: schemas.RevokeCertificateRequest | None = None,
    conn: asyncpg.Connection = Depends(db.get_connection),
    current_user: TenantContext = Depends(auth_dependencies.require_admin),
) -> dict:
    reason = payload.reason if payload is not None else None
    row = await service.revoke(conn, current_user, certificate_id, reason)
    return ok(row, message="Certificate revoked.")


@router.post("/admin/certificates/{certificate_id}/reissue", status_code=201)
async def reissue_certificate(
    certificate_id: int,
    conn: asyncpg.Connection = Depends(db.get_connection),
    current_user: TenantContext = Depends(auth_dependencies.require_admin),
) -> dict:
    row = await service.reissue(conn, current_user, certificate_id)
    return ok(row, message="Certificate reissued.")


@router.get("/certificates/verify/{certificate_number}")
async def verify_certificate(
    certificate_number: str,
    tenant: str = Query(..., min_length=1, max_length=100, description="Issuing tenant slug."),
    conn: asyncpg.Connection = Depends(db.get_connection),
) -> dict:
    """
    Public verification; no login required.
    """
    result = await service.verify(conn, tenant_slug=tenant, certificate_number=certificate_number)
    return ok(result)


@router.post("/admin/certificate-templates", status_code=201)
async def create_template(
    payload: schemas.TemplateCreateRequest,
    conn: asyncpg.Connection = Depends(db.get_connection),
    current_user: TenantContext = Depends(auth_dependencies.require_admin),
) -> dict:
    return ok(await templates.create_template(conn, current_user, payload))


@router.get("/admin/certificate-templates")
async def list_templates(
    active_only: bool = Query(False),
    conn: asyncpg.Connection = Depends(db.get_connection),
    current_user: TenantContext = Depends(auth_dependencies.require_admin),
) -> dict:
    rows = await templates.list_templates(conn, current_user, active_only=active_only)
    return ok({"templates": rows, "count": len(rows)})


@router.get("/admin/certificate-templates/{template_id}")
async def get_template(
    template_id: int,
    conn: asyncpg.Connection = Depends(db.get_connection),
    current_user: TenantContext = Depends(auth_dependencies.require_admin),
) -> dict:
    return ok(await templates.get_template(conn, current_user, template_id))


@router.put("/admin/certificate-templates/{template_id}")
async def update_template(
    template_id: int,
    payload: schemas.TemplateUpdateRequest,
    conn: asyncpg.Connection = Depends(db.get_connection),
    current_user: TenantContext = Depends(auth_dependencies.require_admin),
) -> dict:
    return ok(await templates.update_template(conn, current_user, template_id, payload))


@router.post("/admin/certificate-templates/{template_id}/activate")
async def activate_template(
    template_id: int,
    conn: asyncpg.Connection = Depends(db.get_connection),
    current_user: TenantContext = Depends(auth_dependencies.require_admin),
) -> dict:
    return ok(await templates.set_active(conn, current_user, template_id, True))


@router.post("/admin/certificate-templates/{template_id}/deactivate")
async def deactivate_template(
    template_id: int,
    conn: asyncpg.Connection = Depends(db.get_connection),
    current_user: TenantContext = Depends(auth_dependencies.require_admin),
) -> dict:
    return ok(await templates.set_active(conn, current_user, template_id, False))


@router.delete("/admin/certificate-templates/{template_id}")
async def delete_template(
    template_id: int,
    conn: asyncpg.Connection = Depends(db.get_connection),
    current_user: TenantContext = Depends(auth_dependencies.require_admin),
) -> dict:
    await templates.delete_template(conn, current_user, template_id)
    return ok({"deleted": True, "template_id": template_id})


@router.post("/candidate/certificate-requests", status_code=201)
async def request_certificate(
    payload: schemas.CertificateRequestCreate,
    conn: asyncpg.Connection = Depends(db.get_connection),
    current_user: TenantContext = Depends(auth_dependencies.require_candidate),
) -> dict:
    row = await requests.request_certificate(conn, current_user, payload)
    return ok(row, message="Certificate request submitted.")


@router.get("/candidate/certificate-requests")
async def my_certificate_requests(
    conn: asyncpg.Connection = Depends(db.get_connection),
    current_user: TenantContext = Depends(auth_dependencies.require_candidate),
) -> dict:
    rows = await requests.my_requests(conn, current_user)
    return ok({"requests": rows, "count": len(rows)})


@router.get("/admin/certificate-requests")
async def list_certificate_requests(
    status: CertificateRequestStatus | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    conn: asyncpg.Connection = Depends(db.get_connection),
    current_user: TenantContext = Depends(auth_dependencies.require_admin),
) -> dict:
    return ok(await requests.list_requests(conn, current_user, status=status, limit=limit, offset=offset))


@router.post("/admin/certificate-requests/{request_id}/approve")
async def approve_certificate_request(
    request_id: int,
    payload: schemas.ApproveCertificateRequest | None = None,
    conn: asyncpg.Connection = Depends(db.get_connection),
    current_user: TenantContext = Depends(auth_dependencies.require_admin),
) -> dict:
    row = await requests.approve(conn, current_user, request_id, payload)
    return ok(row, message="Certificate request approved.")


@router.post("/admin/certificate-requests/{request_id}/reject")
async def reject_certificate_request(
    request_id: int,
    payload: schemas.RejectCertificateRequest,
    conn: asyncpg.Connection = Depends(db.get_connection),
    current_user: TenantContext = Depends(auth_dependencies.require_admin),
) -> dict:
    row = await requests.reject(conn, current_user, request_id, payload.reason)
    return ok(row, message="Certificate request rejected.")
