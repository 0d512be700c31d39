from datetime import date

import asyncpg
import pytest

from candidates import repository as candidate_repository
from candidates import service as candidate_service
from cohorts import repository, schemas, service
from core.errors import (
    CapacityExceededError,
    ConflictError,
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from core.tenancy import Role
from lifecycle.statuses import CohortEnrollmentStatus
from lifecycle.transitions import CandidateEvent, CohortAction

from conftest import make_ctx


class CohortStore:
    """
    In-memory cohorts/cohort_enrollments keyed by tenant.
    """

    def __init__(self):
        self.cohorts = {}
        self.enrollments = {}
        self.candidate_events = []
        self.reads = 0

    def add_cohort(self, cohort_id, *, tenant_id=1, status="ENROLLMENT_OPEN", max_capacity=2, current=0):
        self.cohorts[cohort_id] = {
            "id": cohort_id,
            "tenant_id": tenant_id,
            "cohort_name": f"Cohort {cohort_id}",
            "cohort_code": f"C{cohort_id}",
            "status": status,
            "max_capacity": max_capacity,
            "current_enrollment": current,
            "lead_trainer_id": 70,
            "start_date": date(2026, 1, 1),
            "end_date": date(2026, 3, 1),
            "enrollment_deadline": None,
        }

    def add_enrollment(self, enrollment_id, *, cohort_id=1, tenant_id=1, status="APPLIED", candidate_id=5):
        self.enrollments[enrollment_id] = {
            "id": enrollment_id,
            "tenant_id": tenant_id,
            "cohort_id": cohort_id,
            "candidate_id": candidate_id,
            "status": status,
            "approval_date": None,
            "withdrawal_date": None,
            "rejection_reason": None,
            "vetting_status": None,
            "attendance_rate": None,
            "assessment_result": None,
            "placement_ready": False,
        }

    def install(self, monkeypatch):
        store = self

        async def get_cohort(conn, ctx, cohort_id, *, for_update=False):
            store.reads += 1
            row = store.cohorts.get(cohort_id)
            return dict(row) if row and row["tenant_id"] == ctx.tenant_id else None

        async def get_enrollment(conn, ctx, enrollment_id, *, for_update=False):
            store.reads += 1
            row = store.enrollments.get(enrollment_id)
            return dict(row) if row and row["tenant_id"] == ctx.tenant_id else None

        async def update_enrollment_status(conn, ctx, enrollment_id, *, expected, target, **kwargs):
            row = store.enrollments.get(enrollment_id)
            if row is None or row["status"] != expected.value:
                return None
            row["status"] = target.value
            if kwargs.get("stamp_approval"):
                row["approval_date"] = "now"
            if kwargs.get("stamp_withdrawal"):
                row["withdrawal_date"] = "now"
            if kwargs.get("rejection_reason"):
                row["rejection_reason"] = kwargs["rejection_reason"]
            return dict(row)

        async def adjust_current_enrollment(conn, ctx, cohort_id, delta):
            store.cohorts[cohort_id]["current_enrollment"] += delta
            return dict(store.cohorts[cohort_id])

        async def update_cohort_status(conn, ctx, cohort_id, *, expected, target):
            row = store.cohorts.get(cohort_id)
            if row is None or row["status"] != expected.value:
                return None
            row["status"] = target.value
            return dict(row)

        async def insert_enrollment(conn, ctx, *, cohort_id, candidate_id, status, reviewed_by=None):
            for row in store.enrollments.values():
                if (
                    row["cohort_id"] == cohort_id
                    and row["candidate_id"] == candidate_id
                    and row["status"] not in ("REJECTED", "WITHDRAWN")
                ):
                    raise asyncpg.UniqueViolationError("duplicate")
            new_id = max(store.enrollments, default=0) + 1
            store.add_enrollment(new_id, cohort_id=cohort_id, tenant_id=ctx.tenant_id, status=status.value,
                                 candidate_id=candidate_id)
            return dict(store.enrollments[new_id])

        async def get_candidate(conn, ctx, candidate_id, *, for_update=False):
            return {"id": candidate_id, "tenant_id": ctx.tenant_id, "user_id": 500 + candidate_id, "status": "APPLIED"}

        async def advance_for_event(conn, ctx, candidate_id, event, *, comment=None):
            store.candidate_events.append((candidate_id, event))
            return None

        async def enrollment_counts(conn, ctx, cohort_id):
            counts = {}
            for row in store.enrollments.values():
                if row["cohort_id"] == cohort_id:
                    counts[row["status"]] = counts.get(row["status"], 0) + 1
            return counts

        async def delete_cohort(conn, ctx, cohort_id):
            return store.cohorts.pop(cohort_id, None) is not None

        monkeypatch.setattr(repository, "get_cohort", get_cohort)
        monkeypatch.setattr(repository, "enrollment_counts", enrollment_counts)
        monkeypatch.setattr(repository, "delete_cohort", delete_cohort)
        monkeypatch.setattr(repository, "get_enrollment", get_enrollment)
        monkeypatch.setattr(repository, "update_enrollment_status", update_enrollment_status)
        monkeypatch.setattr(repository, "adjust_current_enrollment", adjust_current_enrollment)
        monkeypatch.setattr(repository, "update_cohort_status", update_cohort_status)
        monkeypatch.setattr(repository, "insert_enrollment", insert_enrollment)
        monkeypatch.setattr(candidate_repository, "get_candidate", get_candidate)
        monkeypatch.setattr(candidate_service, "advance_for_event", advance_for_event)


@pytest.fixture
def store(monkeypatch, recorded):
    s = CohortStore()
    s.install(monkeypatch)
    s.recorded = recorded
    return s


async def test_approve_enrolls_and_claims_seat(conn, admin_ctx, store):
    store.add_cohort(1, max_capacity=2, current=1)
    store.add_enrollment(10)

    row = await service.approve_application(conn, admin_ctx, 10)

    assert row["status"] == "ENROLLED"
    assert row["approval_date"] is not None
    assert store.cohorts[1]["current_enrollment"] == 2
    assert store.candidate_events == [(5, CandidateEvent.ENROLLMENT_APPROVED)]
    assert store.recorded["activity"][0]["action"] == "COHORT_APPLICATION_APPROVE"
    assert store.recorded["notifications"][0]["user_id"] == 505
    assert conn.commits == 1


async def test_approve_full_cohort_raises_capacity(conn, admin_ctx, store):
    store.add_cohort(1, max_capacity=1, current=1)
    store.add_enrollment(10)

    with pytest.raises(CapacityExceededError):
        await service.approve_application(conn, admin_ctx, 10)

    assert store.enrollments[10]["status"] == "APPLIED"
    assert store.cohorts[1]["current_enrollment"] == 1
    assert conn.rollbacks == 1


async def test_approve_twice_is_invalid_state(conn, admin_ctx, store):
    store.add_cohort(1)
    store.add_enrollment(10)

    await service.approve_application(conn, admin_ctx, 10)
    with pytest.raises(InvalidStateError):
        await service.approve_application(conn, admin_ctx, 10)
    assert store.cohorts[1]["current_enrollment"] == 1


async def test_approve_other_tenant_is_not_found(conn, store):
    store.add_cohort(1, tenant_id=2)
    store.add_enrollment(10, tenant_id=2)

    with pytest.raises(NotFoundError, match="Cohort application not found."):
        await service.approve_application(conn, make_ctx(Role.ADMIN, tenant_id=1), 10)
    assert store.enrollments[10]["status"] == "APPLIED"


@pytest.mark.parametrize("reason", [None, "", "   "])
async def test_reject_requires_reason_before_any_read(conn, admin_ctx, store, reason):
    store.add_cohort(1)
    store.add_enrollment(10)

    with pytest.raises(ValidationError):
        await service.reject_application(conn, admin_ctx, 10, reason)
    assert store.reads == 0
    assert conn.transactions_started == 0


async def test_reject_stores_reason_and_keeps_seats(conn, admin_ctx, store):
    store.add_cohort(1, current=1)
    store.add_enrollment(10)

    row = await service.reject_application(conn, admin_ctx, 10, "  Missing documents ")

    assert row["status"] == "REJECTED"
    assert row["rejection_reason"] == "Missing documents"
    assert store.cohorts[1]["current_enrollment"] == 1
    assert "Missing documents" in store.recorded["notifications"][0]["message"]


async def test_withdraw_enrolled_releases_seat(conn, admin_ctx, store):
    store.add_cohort(1, current=1)
    store.add_enrollment(10, status="ENROLLED")

    row = await service.withdraw_application(conn, admin_ctx, 10)

    assert row["status"] == "WITHDRAWN"
    assert row["withdrawal_date"] is not None
    assert store.cohorts[1]["current_enrollment"] == 0


async def test_withdraw_applied_keeps_counter(conn, admin_ctx, store):
    store.add_cohort(1, current=1)
    store.add_enrollment(10, status="APPLIED")

    await service.withdraw_application(conn, admin_ctx, 10)
    assert store.cohorts[1]["current_enrollment"] == 1


async def test_complete_keeps_seat(conn, admin_ctx, store):
    store.add_cohort(1, current=1)
    store.add_enrollment(10, status="ENROLLED")

    row = await service.complete_application(conn, admin_ctx, 10)
    assert row["status"] == "COMPLETED"
    assert store.cohorts[1]["current_enrollment"] == 1


async def test_enroll_requires_open_cohort(conn, admin_ctx, store):
    store.add_cohort(1, status="PUBLISHED")
    payload = schemas.CohortEnrollRequest(candidate_id=5)

    with pytest.raises(InvalidStateError):
        await service.enroll(conn, admin_ctx, 1, payload)


async def test_enroll_full_cohort(conn, admin_ctx, store):
    store.add_cohort(1, max_capacity=1, current=1)
    payload = schemas.CohortEnrollRequest(candidate_id=5)

    with pytest.raises(CapacityExceededError):
        await service.enroll(conn, admin_ctx, 1, payload)


async def test_enroll_directly_enrolled_takes_seat(conn, admin_ctx, store):
    store.add_cohort(1, max_capacity=1, current=0)
    payload = schemas.CohortEnrollRequest.model_validate({"candidateId": 5, "enrollmentStatus": "ENROLLED"})

    row = await service.enroll(conn, admin_ctx, 1, payload)

    assert row["status"] == "ENROLLED"
    assert store.cohorts[1]["current_enrollment"] == 1
    assert store.candidate_events == [(5, CandidateEvent.ENROLLMENT_APPROVED)]


async def test_enroll_as_applied_does_not_take_seat(conn, admin_ctx, store):
    store.add_cohort(1, max_capacity=1, current=0)
    payload = schemas.CohortEnrollRequest(candidate_id=5, enrollment_status=CohortEnrollmentStatus.APPLIED)

    row = await service.enroll(conn, admin_ctx, 1, payload)
    assert row["status"] == "APPLIED"
    assert store.cohorts[1]["current_enrollment"] == 0


async def test_enroll_rejects_other_statuses(conn, admin_ctx, store):
    store.add_cohort(1)
    payload = schemas.CohortEnrollRequest(candidate_id=5, enrollment_status=CohortEnrollmentStatus.COMPLETED)

    with pytest.raises(ValidationError):
        await service.enroll(conn, admin_ctx, 1, payload)


async def test_duplicate_active_enrollment_is_conflict(conn, admin_ctx, store):
    store.add_cohort(1, max_capacity=5)
    store.add_enrollment(10, status="APPLIED", candidate_id=5)
    payload = schemas.CohortEnrollRequest(candidate_id=5, enrollment_status=CohortEnrollmentStatus.APPLIED)

    with pytest.raises(ConflictError):
        await service.enroll(conn, admin_ctx, 1, payload)


async def test_lifecycle_transition_updates_status(conn, admin_ctx, store):
    store.add_cohort(1, status="DRAFT")

    row = await service.transition_cohort(conn, admin_ctx, 1, CohortAction.PUBLISH)

    assert row["status"] == "PUBLISHED"
    assert store.recorded["activity"][0]["details"] == {"from": "DRAFT", "to": "PUBLISHED"}


async def test_lifecycle_transition_rejects_skips(conn, admin_ctx, store):
    store.add_cohort(1, status="DRAFT")

    with pytest.raises(InvalidStateError):
        await service.transition_cohort(conn, admin_ctx, 1, CohortAction.START_TRAINING)
    assert store.cohorts[1]["status"] == "DRAFT"


async def test_delete_only_empty_draft_cohort(conn, admin_ctx, store):
    store.add_cohort(1, status="DRAFT")
    store.add_cohort(2, status="PUBLISHED")
    store.add_cohort(3, status="DRAFT")
    store.add_enrollment(10, cohort_id=3, status="WITHDRAWN")

    with pytest.raises(InvalidStateError, match="Archive it instead"):
        await service.delete_cohort(conn, admin_ctx, 2)
    with pytest.raises(ConflictError):
        await service.delete_cohort(conn, admin_ctx, 3)

    await service.delete_cohort(conn, admin_ctx, 1)

    assert 1 not in store.cohorts
    assert {2, 3} <= set(store.cohorts)
    assert store.recorded["activity"][-1]["action"] == "COHORT_DELETED"
    with pytest.raises(NotFoundError):
        await service.delete_cohort(conn, admin_ctx, 1)


async def test_record_metrics_only_by_lead_trainer(conn, store):
    store.add_cohort(1)
    store.add_enrollment(10, status="ENROLLED")
    payload = schemas.EnrollmentMetricsRequest(attendance_rate=80)

    with pytest.raises(PermissionDeniedError):
        await service.record_metrics(conn, make_ctx(Role.TRAINER, user_id=71), 1, 10, payload)


async def test_record_metrics_derives_placement_ready(conn, monkeypatch, store):
    store.add_cohort(1)
    store.add_enrollment(10, status="ENROLLED")
    store.enrollments[10]["vetting_status"] = "CLEARED"
    captured = {}

    async def update_metrics(conn, ctx, enrollment_id, **kwargs):
        captured.update(kwargs)
        return {"id": enrollment_id, **kwargs}

    monkeypatch.setattr(repository, "update_metrics", update_metrics)
    payload = schemas.EnrollmentMetricsRequest(attendance_rate=90, assessment_result="PASS")

    await service.record_metrics(conn, make_ctx(Role.TRAINER, user_id=70), 1, 10, payload)
    assert captured["placement_ready"] is True


def test_derive_placement_ready():
    assert service.derive_placement_ready(attendance_rate=75, assessment_result="PASS", vetting_status="CLEARED")
    assert not service.derive_placement_ready(attendance_rate=74.9, assessment_result="PASS", vetting_status="CLEARED")
    assert not service.derive_placement_ready(attendance_rate=None, assessment_result="PASS", vetting_status="CLEARED")
    assert not service.derive_placement_ready(attendance_rate=90, assessment_result="FAIL", vetting_status="CLEARED")
    assert not service.derive_placement_ready(attendance_rate=90, assessment_result="PASS", vetting_status="PENDING")


def test_summarize_progress():
    cohort = {"id": 1, "status": "IN_TRAINING", "max_capacity": 4, "current_enrollment": 3}
    summary = service.summarize_progress(
        cohort,
        {"ENROLLED": 3, "REJECTED": 1},
        {
            "students": 3,
            "average_attendance": 81.3333,
            "poor_attendance": 1,
            "assessed": 2,
            "average_score": 70,
            "passed": 1,
            "failed": 1,
            "placement_ready": 1,
        },
        {"CLEARED": 1, "PENDING_DOCUMENTS": 1, "NOT_STARTED": 1},
    )

    assert summary["capacity"] == {"max_capacity": 4, "current_enrollment": 3, "seats_available": 1, "fill_rate": 75.0}
    assert summary["enrollments"]["ENROLLED"] == 3
    assert summary["enrollments"]["WITHDRAWN"] == 0
    assert summary["attendance"]["average_rate"] == 81.33
    assert summary["assessment"]["pass_rate"] == 50.0
    assert summary["vetting"]["pending"] == 1
    assert summary["vetting"]["completion_rate"] == 33.33
    assert summary["placement"] == {"ready": 1, "not_ready": 2, "ready_rate": 33.33}


def test_summarize_progress_empty_cohort():
    cohort = {"id": 1, "status": "DRAFT", "max_capacity": 10, "current_enrollment": 0}
    summary = service.summarize_progress(cohort, {}, {}, {})
    assert summary["vetting"]["completion_rate"] == 0.0
    assert summary["assessment"]["average_score"] == 0.0
