"""
Role dashboards. Read-only aggregates, safe to call repeatedly.
"""

from __future__ import annotations

from typing import Any

import asyncpg

from candidates import service as candidate_service
from certificates import repository as certificate_repository
from core import activity, config
from core.tenancy import TenantContext
from courses import repository as course_repository
from lifecycle.statuses import (
    ACTIVE_PLACEMENT_STATUSES,
    CandidateStatus,
    CertificateStatus,
    CohortEnrollmentStatus,
    CohortStatus,
    CourseEnrollmentStatus,
    PlacementStatus,
    VettingStatus,
)
from notifications import repository as notification_repository
from placements import repository as placement_repository
from vetting import repository as vetting_repository

from . import repository

# Stages shown on the recruiter pipeline board.
PIPELINE_STAGES = (
    CandidateStatus.REGISTERED,
    CandidateStatus.APPLIED,
    CandidateStatus.UNDER_REVIEW,
    CandidateStatus.ENROLLED,
    CandidateStatus.WAITLISTED,
    CandidateStatus.VETTING,
    CandidateStatus.CLEARED,
    CandidateStatus.PLACED,
    CandidateStatus.CANCELLED,
)


def _fill(counts: dict[str, int], statuses) -> dict[str, int]:
    return {s.value: counts.get(s.value, 0) for s in statuses}


def _rate(part: int, whole: int) -> float:
    return round(part / whole * 100, 2) if whole > 0 else 0.0


async def admin_dashboard(conn: asyncpg.Connection, ctx: TenantContext) -> dict[str, Any]:
    candidates = _fill(await repository.status_counts(conn, ctx, "candidates"), CandidateStatus)
    cohorts = _fill(await repository.status_counts(conn, ctx, "cohorts"), CohortStatus)
    enrollments = _fill(await repository.status_counts(conn, ctx, "cohort_enrollments"), CohortEnrollmentStatus)
    vetting = _fill(await repository.status_counts(conn, ctx, "vetting_records"), VettingStatus)
    certificates = _fill(await repository.status_counts(conn, ctx, "certificates"), CertificateStatus)
    course_enrollments = _fill(
        await repository.status_counts(conn, ctx, "course_enrollments"),
        CourseEnrollmentStatus,
    )
    placements = _fill(await repository.status_counts(conn, ctx, "placements"), PlacementStatus)

    total_course_enrollments = sum(course_enrollments.values())
    completed = course_enrollments[CourseEnrollmentStatus.COMPLETED.value]
    return {
        "candidates": {"total": sum(candidates.values()), "by_status": candidates},
        "cohorts": {"total": sum(cohorts.values()), "by_status": cohorts},
        "cohort_enrollments": {"total": sum(enrollments.values()), "by_status": enrollments},
        "vetting": {"total": sum(vetting.values()), "by_status": vetting},
        "certificates": {"total": sum(certificates.values()), "by_status": certificates},
        "placements": {"total": sum(placements.values()), "by_status": placements},
        "course_completion": {
            "total": total_course_enrollments,
            "completed": completed,
            "completion_rate": _rate(completed, total_course_enrollments),
        },
        "recent_activity": await activity.recent(conn, ctx, limit=10),
    }


async def recruiter_dashboard(conn: asyncpg.Connection, ctx: TenantContext) -> dict[str, Any]:
    """
    Only candidates assigned to the calling recruiter are counted.
    """
    days = config.dashboard_recent_days()
    pipeline = _fill(await repository.recruiter_status_counts(conn, ctx), PIPELINE_STAGES)
    placements = _fill(await repository.recruiter_placement_counts(conn, ctx), PlacementStatus)
    return {
        "total_candidates": sum(pipeline.values()),
        "pipeline": pipeline,
        "hires": {"days": days, "count": await repository.recruiter_hires(conn, ctx, days=days)},
        "open_placements": sum(placements[s.value] for s in ACTIVE_PLACEMENT_STATUSES),
        "placements_by_status": placements,
        "cleared_awaiting_placement": pipeline[CandidateStatus.CLEARED.value],
        "priority_candidates": await repository.recruiter_priority_candidates(conn, ctx),
        "upcoming_interviews": await repository.recruiter_upcoming_interviews(conn, ctx),
    }


async def trainer_dashboard(conn: asyncpg.Connection, ctx: TenantContext) -> dict[str, Any]:
    cohorts = await repository.trainer_cohorts(conn, ctx)
    by_status = {s.value: 0 for s in CohortStatus}
    for cohort in cohorts:
        by_status[cohort["status"]] = by_status.get(cohort["status"], 0) + 1

    stats = await repository.trainer_enrollment_stats(conn, ctx)
    average = stats.get("average_attendance")
    return {
        "cohorts": cohorts,
        "cohorts_by_status": by_status,
        "enrolled_students": int(stats.get("enrolled_students") or 0),
        "average_attendance": round(float(average), 2) if average is not None else 0.0,
        "pending_assessments": int(stats.get("pending_assessments") or 0),
    }


async def candidate_dashboard(conn: asyncpg.Connection, ctx: TenantContext) -> dict[str, Any]:
    candidate = await candidate_service.candidate_for_user(conn, ctx)
    candidate_id = int(candidate["id"])
    return {
        "candidate": candidate,
        "cohort_enrollments": await repository.candidate_cohort_enrollments(conn, ctx, candidate_id),
        "course_enrollments": await course_repository.list_enrollments_for_candidate(conn, ctx, candidate_id),
        "latest_vetting": await vetting_repository.latest_for_candidate(conn, ctx, candidate_id),
        "certificates": await certificate_repository.list_certificates(conn, ctx, candidate_id=candidate_id),
        "placements": await placement_repository.list_placements(conn, ctx, candidate_id=candidate_id),
        "unread_notifications": await notification_repository.count_unread(conn, ctx),
    }
