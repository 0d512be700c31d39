"""
FastAPI router for companies, job openings and placements.
"""

from __future__ import annotations

import asyncpg
from fastapi import APIRouter, Depends, Query

from auth import dependencies as auth_dependencies
from core import db
from core.responses import ok
from core.tenancy import Role, TenantContext
from lifecycle.statuses import CompanyStatus, JobOpeningStatus, PlacementStatus
from lifecycle.transitions import PlacementAction

from . import schemas, service

router = APIRouter()

require_placement_staff = auth_dependencies.require_roles(Role.ADMIN, Role.RECRUITER)


@router.post("/companies", status_code=201)
async def create_company(
    payload: schemas.CompanyCreateRequest,
    conn: asyncpg.Connection = Depends(db.get_connection),
    current_user: TenantContext = Depends(require_placement_staff),
) -> dict:
    row = await service.create_company(conn, current_user, payload)
    return ok(row, message="Company created.")


@router.get("/companies")
async def list_companies(
    status: CompanyStatus | None = Query(None),
    search: str | None = Query(None, max_length=200),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    conn: asyncpg.Connection = Depends(db.get_connection),
    current_user: TenantContext = Depends(require_placement_staff),
) -> dict:
    result = await service.list_companies(
        conn,
        current_user,
        status=status,
        search=search,
        limit=limit,
        offset=offset,
    )
    return ok(result)


@router.get("/companies/{company_id}")
async def get_company(
    company_id: int,
    conn: asyncpg.Connection = Depends(db.get_connection),
    current_user: TenantContext = Depends(require_placement_staff),
) -> dict:
    return ok(await service.get_company(conn, current_user, company_id))


@router.put("/companies/{company_id}")
async def update_company(
    company_id: int,
    payload: schemas.CompanyUpdateRequest,
    conn: asyncpg.Connection = Depends(db.get_connection),
    current_user: TenantContext = Depends(require_placement_staff),
) -> dict:
    row = await service.update_company(conn, current_user, company_id, payload)
    return ok(row, message="Company updated.")


@router.delete("/companies/{company_id}")
async def delete_company(
    company_id: int,
    conn: asyncpg.Connection = Depends(db.get_connection),
    current_user: TenantContext = Depends(auth_dependencies.require_admin),
) -> dict:
    await service.delete_company(conn, current_user, company_id)
    return ok(None, message="Company deleted.")


@router.post("/recruiter/jobs", status_code=201)
async def create_job_opening(
    payload: schemas.JobOpeningCreateRequest,
    conn: asyncpg.Connection = Depends(db.get_connection),
    current_user: TenantContext = Depends(require_placement_staff),
) -> dict:
    row = await service.create_job_opening(conn, current_user, payload)
    return ok(row)


@router.get("/recruiter/jobs")
async def list_job_openings(
    status: JobOpeningStatus | None = Query(None),
    company_id: int | None = Query(None, ge=1),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    conn: asyncpg.Connection = Depends(db.get_connection),
    current_user: TenantContext = Depends(require_placement_staff),
) -> dict:
    result = await service.list_job_openings(
        conn,
        current_user,
        status=status,
        company_id=company_id,
        limit=limit,
        offset=offset,
    )
    return ok(result)


@router.post("/recruiter/jobs/{job_opening_id}/close")
async def close_job_opening(
    job_opening_id: int,
    conn: asyncpg.Connection = Depends(db.get_connection),
    current_user: TenantContext = Depends(require_placement_staff),
) -> dict:
    return ok(await service.close_job_opening(conn, current_user, job_opening_id))


@router.post("/placements", status_code=201)
async def create_placement(
    payload: schemas.PlacementCreateRequest,
    conn: asyncpg.Connection = Depends(db.get_connection),
    current_user: TenantContext = Depends(require_placement_staff),
) -> dict:
    row = await service.create_placement(conn, current_user, payload)
    return ok(row, message="Placement created.")


@router.get("/placements")
async def list_placements(
    status: PlacementStatus | None = Query(None),
    candidate_id: int | None = Query(None, ge=1),
    company_id: int | None = Query(None, ge=1),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    conn: asyncpg.Connection = Depends(db.get_connection),
    current_user: TenantContext = Depends(require_placement_staff),
) -> dict:
    """
    Recruiters only see placements of the candidates assigned to them.
    """
    result = await service.list_placements(
        conn,
        current_user,
        status=status,
        candidate_id=candidate_id,
        company_id=company_id,
        limit=limit,
        offset=offset,
    )
    return ok(result)


@router.get("/placements/{placement_id}")
async def get_placement(
    placement_id: int,
    conn: asyncpg.Connection = Depends(db.get_connection),
    current_user: TenantContext = Depends(require_placement_staff),
) -> dict:
    return ok(await service.get_placement(conn, current_user, placement_id))


@router.get("/candidate/placements")
async def my_placements(
    conn: asyncpg.Connection = Depends(db.get_connection),
    current_user: TenantContext = Depends(auth_dependencies.require_candidate),
) -> dict:
    rows = await service.my_placements(conn, current_user)
    return ok({"placements": rows, "count": len(rows)})


def _transition_endpoint(action: PlacementAction):
    async def endpoint(
        placement_id: int,
        payload: schemas.PlacementTransitionRequest | None = None,
        conn: asyncpg.Connection = Depends(db.get_connection),
        current_user: TenantContext = Depends(require_placement_staff),
    ) -> dict:
        row = await service.transition_placement(conn, current_user, placement_id, action, payload)
        return ok(row)

    endpoint.__name__ = f"placement_{action.value}"
    return endpoint


# /placements/{id}/schedule-interview, /send-offer, ...
for _action in PlacementAction:
    router.add_api_route(
        f"/placements/{{placement_id}}/{_action.value.replace('_', '-')}",
        _transition_endpoint(_action),
        methods=["POST"],
    )
