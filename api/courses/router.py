"""
FastAPI router for courses and course enrollments.
"""

from __future__ import annotations

import asyncpg
from fastapi import APIRouter, Depends, Query

from auth import dependencies as auth_dependencies
from core import db
from core.responses import ok
from core.tenancy import Role, TenantContext
from lifecycle.statuses import CourseStatus
from lifecycle.transitions import CourseEnrollmentAction

from . import schemas, service

router = APIRouter()

require_training_staff = auth_dependencies.require_roles(Role.ADMIN, Role.TRAINER)


@router.post("/courses", status_code=201)
async def create_course(
    payload: schemas.CourseCreateRequest,
    conn: asyncpg.Connection = Depends(db.get_connection),
    current_user: TenantContext = Depends(auth_dependencies.require_admin),
) -> dict:
    row = await service.create_course(conn, current_user, payload)
    return ok(row)


@router.get("/courses")
async def list_courses(
    status: CourseStatus | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    conn: asyncpg.Connection = Depends(db.get_connection),
    current_user: TenantContext = Depends(auth_dependencies.get_current_user),
) -> dict:
    result = await service.list_courses(conn, current_user, status=status, limit=limit, offset=offset)
    return ok(result)


@router.post("/courses/{course_id}/enrollments", status_code=201)
async def enroll_in_course(
    course_id: int,
    payload: schemas.CourseEnrollRequest,
    conn: asyncpg.Connection = Depends(db.get_connection),
    current_user: TenantContext = Depends(require_training_staff),
) -> dict:
    row = await service.enroll_in_course(conn, current_user, course_id, payload.candidate_id)
    return ok(row)


async def _transition(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    enrollment_id: int,
    action: CourseEnrollmentAction,
) -> dict:
    row = await service.transition_enrollment(conn, ctx, enrollment_id, action)
    return ok(row)


@router.post("/course-enrollments/{enrollment_id}/start")
async def start_enrollment(
    enrollment_id: int,
    conn: asyncpg.Connection = Depends(db.get_connection),
    current_user: TenantContext = Depends(require_training_staff),
) -> dict:
    return await _transition(conn, current_user, enrollment_id, CourseEnrollmentAction.START)


@router.post("/course-enrollments/{enrollment_id}/complete")
async def complete_enrollment(
    enrollment_id: int,
    conn: asyncpg.Connection = Depends(db.get_connection),
    current_user: TenantContext = Depends(require_training_staff),
) -> dict:
    return await _transition(conn, current_user, enrollment_id, CourseEnrollmentAction.COMPLETE)


@router.post("/course-enrollments/{enrollment_id}/drop")
async def drop_enrollment(
    enrollment_id: int,
    conn: asyncpg.Connection = Depends(db.get_connection),
    current_user: TenantContext = Depends(require_training_staff),
) -> dict:
    return await _transition(conn, current_user, enrollment_id, CourseEnrollmentAction.DROP)
