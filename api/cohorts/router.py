"""
FastAPI router for cohorts and cohort applications.
"""

from __future__ import annotations

import asyncpg
from fastapi import APIRouter, Depends, Query

from auth import dependencies as auth_dependencies
from core import db
from core.responses import ok
from core.tenancy import Role, TenantContext
from lifecycle.statuses import CohortEnrollmentStatus, CohortStatus
from lifecycle.transitions import CohortAction

from . import schemas, service

router = APIRouter()

require_training_staff = auth_dependencies.require_roles(Role.ADMIN, Role.TRAINER)


@router.post("/cohorts", status_code=201)
async def create_cohort(
    payload: schemas.CohortCreateRequest,
    conn: asyncpg.Connection = Depends(db.get_connection),
    current_user: TenantContext = Depends(auth_dependencies.require_admin),
) -> dict:
    row = await service.create_cohort(conn, current_user, payload)
    return ok(row)


@router.get("/cohorts")
async def list_cohorts(
    status: CohortStatus | None = Query(None),
    course_id: int | None = Query(None, ge=1),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    conn: asyncpg.Connection = Depends(db.get_connection),
    current_user: TenantContext = Depends(auth_dependencies.get_current_user),
) -> dict:
    result = await service.list_cohorts(
        conn,
        current_user,
        status=status,
        course_id=course_id,
        limit=limit,
        offset=offset,
    )
    return ok(result)


@router.get("/cohorts/{cohort_id}")
async def get_cohort(
    cohort_id: int,
    conn: asyncpg.Connection = Depends(db.get_connection),
    current_user: TenantContext = Depends(auth_dependencies.get_current_user),
) -> dict:
    row = await service.get_cohort(conn, current_user, cohort_id)
    return ok(row)


@router.patch("/cohorts/{cohort_id}")
async def update_cohort(
    cohort_id: int,
    payload: schemas.CohortUpdateRequest,
    conn: asyncpg.Connection = Depends(db.get_connection),
    current_user: TenantContext = Depends(auth_dependencies.require_admin),
) -> dict:
    row = await service.update_cohort(conn, current_user, cohort_id, payload)
    return ok(row)


@router.delete("/cohorts/{cohort_id}")
async def delete_cohort(
    cohort_id: int,
    conn: asyncpg.Connection = Depends(db.get_connection),
    current_user: TenantContext = Depends(auth_dependencies.require_admin),
) -> dict:
    await service.delete_cohort(conn, current_user, cohort_id)
    return ok(None, message="Cohort deleted.")


def _lifecycle_endpoint(action: CohortAction):
    async def endpoint(
        cohort_id: int,
        conn: asyncpg.Connection = Depends(db.get_connection),
        current_user: TenantContext = Depends(auth_dependencies.require_admin),
    ) -> dict:
        row = await service.transition_cohort(conn, current_user, cohort_id, action)
        return ok(row)

    endpoint.__name__ = f"cohort_{action.value}"
    return endpoint


# One endpoint per lifecycle action: /cohorts/{id}/publish, /open-enrollment, ...
for _action in CohortAction:
    router.add_api_route(
        f"/cohorts/{{cohort_id}}/{_action.value.replace('_', '-')}",
        _lifecycle_endpoint(_action),
        methods=["POST"],
    )


@router.post("/cohorts/{cohort_id}/enroll", status_code=201)
async def enroll(
    cohort_id: int,
    payload: schemas.CohortEnrollRequest,
    conn: asyncpg.Connection = Depends(db.get_connection),
    current_user: TenantContext = Depends(auth_dependencies.require_admin),
) -> dict:
    row = await service.enroll(conn, current_user, cohort_id, payload)
    return ok(row)


@router.post("/cohorts/{cohort_id}/apply", status_code=201)
async def apply(
    cohort_id: int,
    conn: asyncpg.Connection = Depends(db.get_connection),
    current_user: TenantContext = Depends(auth_dependencies.require_candidate),
) -> dict:
    row = await service.apply(conn, current_user, cohort_id)
    return ok(row)


@router.get("/cohorts/{cohort_id}/progress")
async def progress(
    cohort_id: int,
    conn: asyncpg.Connection = Depends(db.get_connection),
    current_user: TenantContext = Depends(auth_dependencies.require_staff),
) -> dict:
    result = await service.progress(conn, current_user, cohort_id)
    return ok(result)


@router.put("/cohorts/{cohort_id}/enrollments/{enrollment_id}/metrics")
async def record_metrics(
    cohort_id: int,
    enrollment_id: int,
    payload: schemas.EnrollmentMetricsRequest,
    conn: asyncpg.Connection = Depends(db.get_connection),
    current_user: TenantContext = Depends(require_training_staff),
) -> dict:
    row = await service.record_metrics(conn, current_user, cohort_id, enrollment_id, payload)
    return ok(row)


@router.get("/admin/cohort-applications")
async def list_applications(
    status: CohortEnrollmentStatus | None = Query(None),
    cohort_id: int | None = Query(None, ge=1),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    conn: asyncpg.Connection = Depends(db.get_connection),
    current_user: TenantContext = Depends(auth_dependencies.require_admin),
) -> dict:
    result = await service.list_applications(
        conn,
        current_user,
        status=status,
        cohort_id=cohort_id,
        limit=limit,
        offset=offset,
    )
    return ok(result)


@router.post("/admin/cohort-applications/{application_id}/approve")
async def approve_application(
    application_id: int,
    conn: asyncpg.Connection = Depends(db.get_connection),
    current_user: TenantContext = Depends(auth_dependencies.require_admin),
) -> dict:
    row = await service.approve_application(conn, current_user, application_id)
    return ok(row, message="Application approved.")


@router.post("/admin/cohort-applications/{application_id}/reject")
async def reject_application(
    application_id: int,
    payload: schemas.RejectApplicationRequest,
    conn: asyncpg.Connection = Depends(db.get_connection),
    current_user: TenantContext = Depends(auth_dependencies.require_admin),
) -> dict:
    row = await service.reject_application(conn, current_user, application_id, payload.reason)
    return ok(row, message="Application rejected.")


@router.post("/admin/cohort-applications/{application_id}/withdraw")
async def withdraw_application(
    application_id: int,
    conn: asyncpg.Connection = Depends(db.get_connection),
    current_user: TenantContext = Depends(auth_dependencies.require_admin),
) -> dict:
    row = await service.withdraw_application(conn, current_user, application_id)
    return ok(row)


@router.post("/admin/cohort-applications/{application_id}/complete")
async def complete_application(
    application_id: int,
    conn: asyncpg.Connection = Depends(db.get_connection),
    current_user: TenantContext = Depends(auth_dependencies.require_admin),
) -> dict:
    row = await service.complete_application(conn, current_user, application_id)
    return ok(row)
