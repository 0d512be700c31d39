"""
FastAPI router for candidates and the recruiter pipeline.
"""

from __future__ import annotations

import asyncpg
from fastapi import APIRouter, Depends, Query

from auth import dependencies as auth_dependencies
from core import db
from core.responses import ok
from core.tenancy import Role, TenantContext
from lifecycle.statuses import CandidateStatus

from . import schemas, service

router = APIRouter()

require_candidate_managers = auth_dependencies.require_roles(Role.ADMIN, Role.RECRUITER)


@router.post("/candidates", status_code=201)
async def create_candidate(
    payload: schemas.CandidateCreateRequest,
    conn: asyncpg.Connection = Depends(db.get_connection),
    current_user: TenantContext = Depends(require_candidate_managers),
) -> dict:
    row = await service.create_candidate(conn, current_user, payload)
    return ok(row)


@router.get("/candidates")
async def list_candidates(
    status: CandidateStatus | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    conn: asyncpg.Connection = Depends(db.get_connection),
    current_user: TenantContext = Depends(auth_dependencies.require_staff),
) -> dict:
    """
    Recruiters only see the candidates assigned to them.
    """
    result = await service.list_candidates(conn, current_user, status=status, limit=limit, offset=offset)
    return ok(result)


@router.get("/candidates/{candidate_id}")
async def get_candidate(
    candidate_id: int,
    conn: asyncpg.Connection = Depends(db.get_connection),
    current_user: TenantContext = Depends(auth_dependencies.get_current_user),
) -> dict:
    row = await service.load_candidate(conn, current_user, candidate_id)
    return ok(row)


@router.put("/candidates/{candidate_id}/recruiter")
async def assign_recruiter(
    candidate_id: int,
    payload: schemas.AssignRecruiterRequest,
    conn: asyncpg.Connection = Depends(db.get_connection),
    current_user: TenantContext = Depends(auth_dependencies.require_admin),
) -> dict:
    row = await service.assign_recruiter(conn, current_user, candidate_id, payload.recruiter_id)
    return ok(row)


@router.post("/recruiter/pipeline/{candidate_id}/transition")
async def transition_stage(
    candidate_id: int,
    payload: schemas.PipelineTransitionRequest,
    conn: asyncpg.Connection = Depends(db.get_connection),
    current_user: TenantContext = Depends(require_candidate_managers),
) -> dict:
    result = await service.transition_stage(conn, current_user, candidate_id, payload)
    return ok(result)


@router.get("/recruiter/pipeline/{candidate_id}/events")
async def pipeline_events(
    candidate_id: int,
    conn: asyncpg.Connection = Depends(db.get_connection),
    current_user: TenantContext = Depends(require_candidate_managers),
) -> dict:
    events = await service.pipeline_events(conn, current_user, candidate_id)
    return ok({"events": events, "count": len(events)})
