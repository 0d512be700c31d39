"""
FastAPI router for role dashboards.
"""

from __future__ import annotations

import asyncpg
from fastapi import APIRouter, Depends

from auth import dependencies as auth_dependencies
from core import db
from core.responses import ok
from core.tenancy import Role, TenantContext

from . import service

router = APIRouter()


@router.get("/admin/dashboard")
async def admin_dashboard(
    conn: asyncpg.Connection = Depends(db.get_connection),
    current_user: TenantContext = Depends(auth_dependencies.require_admin),
) -> dict:
    return ok(await service.admin_dashboard(conn, current_user))


@router.get("/recruiter/dashboard")
async def recruiter_dashboard(
    conn: asyncpg.Connection = Depends(db.get_connection),
    current_user: TenantContext = Depends(auth_dependencies.require_roles(Role.RECRUITER)),
) -> dict:
    return ok(await service.recruiter_dashboard(conn, current_user))


@router.get("/trainer/dashboard")
async def trainer_dashboard(
    conn: asyncpg.Connection = Depends(db.get_connection),
    current_user: TenantContext = Depends(auth_dependencies.require_roles(Role.TRAINER)),
) -> dict:
    return ok(await service.trainer_dashboard(conn, current_user))


@router.get("/candidate/dashboard")
async def candidate_dashboard(
    conn: asyncpg.Connection = Depends(db.get_connection),
    current_user: TenantContext = Depends(auth_dependencies.require_candidate),
) -> dict:
    return ok(await service.candidate_dashboard(conn, current_user))
