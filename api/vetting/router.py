"""
FastAPI router for vetting (candidate and admin sides).
"""

from __future__ import annotations

import asyncpg
from fastapi import APIRouter, Depends, Query

from auth import dependencies as auth_dependencies
from core import db
from core.responses import ok
from core.tenancy import TenantContext
from lifecycle.statuses import VettingStatus
from lifecycle.transitions import VettingAction

from . import schemas, service

router = APIRouter()


@router.post("/candidate/vetting/apply", status_code=201)
async def apply(
    payload: schemas.VettingApplyRequest,
    conn: asyncpg.Connection = Depends(db.get_connection),
    current_user: TenantContext = Depends(auth_dependencies.require_candidate),
) -> dict:
    row = await service.apply(conn, current_user, payload)
    return ok(row, message="Vetting application submitted.")


@router.get("/candidate/vetting")
async def my_records(
    conn: asyncpg.Connection = Depends(db.get_connection),
    current_user: TenantContext = Depends(auth_dependencies.require_candidate),
) -> dict:
    rows = await service.my_records(conn, current_user)
    return ok({"records": rows, "count": len(rows)})


@router.post("/candidate/vetting/{record_id}/documents")
async def submit_documents(
    record_id: int,
    payload: schemas.VettingDocumentsRequest,
    conn: asyncpg.Connection = Depends(db.get_connection),
    current_user: TenantContext = Depends(auth_dependencies.require_candidate),
) -> dict:
    row = await service.submit_documents(conn, current_user, record_id, payload)
    return ok(row)


@router.get("/admin/vetting")
async def list_records(
    status: VettingStatus | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    conn: asyncpg.Connection = Depends(db.get_connection),
    current_user: TenantContext = Depends(auth_dependencies.require_admin),
) -> dict:
    result = await service.list_records(conn, current_user, status=status, limit=limit, offset=offset)
    return ok(result)


def _review_endpoint(action: VettingAction):
    async def endpoint(
        record_id: int,
        payload: schemas.VettingReviewRequest | None = None,
        conn: asyncpg.Connection = Depends(db.get_connection),
        current_user: TenantContext = Depends(auth_dependencies.require_admin),
    ) -> dict:
        remarks = payload.remarks if payload is not None else None
        row = await service.review(conn, current_user, record_id, action, remarks=remarks)
        return ok(row)

    endpoint.__name__ = f"vetting_{action.value}"
    return endpoint


for _action in (
    VettingAction.REQUEST_DOCUMENTS,
    VettingAction.START_REVIEW,
    VettingAction.CLEAR,
    VettingAction.REJECT,
):
    router.add_api_route(
        f"/admin/vetting/{{record_id}}/{_action.value.replace('_', '-')}",
        _review_endpoint(_action),
        methods=["POST"],
    )
