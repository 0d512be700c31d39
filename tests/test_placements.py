from datetime import datetime, timezone

import pytest

from candidates import repository as candidate_repository
from candidates import service as candidate_service
from core.errors import ConflictError, InvalidStateError, NotFoundError, ValidationError
from core.tenancy import Role
from lifecycle.statuses import PlacementStatus
from lifecycle.transitions import CandidateEvent, PlacementAction
from placements import repository, schemas, service

from conftest import make_ctx

RECRUITER_ID = 7
INTERVIEW_AT = datetime(2026, 11, 2, 10, 0, tzinfo=timezone.utc)


class PlacementStore:
    def __init__(self, monkeypatch):
        self.candidates = {
            5: {"id": 5, "tenant_id": 1, "user_id": 55, "status": "CLEARED", "recruiter_id": RECRUITER_ID},
            6: {"id": 6, "tenant_id": 1, "user_id": 56, "status": "VETTING", "recruiter_id": RECRUITER_ID},
            8: {"id": 8, "tenant_id": 1, "user_id": 58, "status": "CLEARED", "recruiter_id": 99},
        }
        self.companies = {
            1: {"id": 1, "tenant_id": 1, "name": "Nordic Build", "country": "Norway", "status": "ACTIVE"},
            2: {"id": 2, "tenant_id": 1, "name": "Closed Ltd", "country": None, "status": "INACTIVE"},
        }
        self.openings = {
            3: {"id": 3, "tenant_id": 1, "company_id": 1, "job_title": "Welder", "status": "OPEN"},
            4: {"id": 4, "tenant_id": 1, "company_id": 1, "job_title": "Fitter", "status": "CLOSED"},
        }
        self.placements = {}
        self.events = []

        for name in (
            "get_company",
            "count_company_references",
            "delete_company",
            "insert_job_opening",
            "get_job_opening",
            "close_job_opening",
            "insert_placement",
            "get_placement",
            "get_active_placement",
            "list_placements",
            "update_placement_status",
        ):
            monkeypatch.setattr(repository, name, getattr(self, name))
        monkeypatch.setattr(candidate_repository, "get_candidate", self.get_candidate)
        monkeypatch.setattr(candidate_service, "advance_for_event", self.advance_for_event)

    def _placement_view(self, row):
        candidate = self.candidates[row["candidate_id"]]
        company = self.companies[row["company_id"]]
        return {**row, "recruiter_id": candidate["recruiter_id"], "company_name": company["name"]}

    async def get_candidate(self, conn, ctx, candidate_id, *, for_update=False):
        row = self.candidates.get(candidate_id)
        return dict(row) if row and row["tenant_id"] == ctx.tenant_id else None

    async def advance_for_event(self, conn, ctx, candidate_id, event, *, comment=None):
        self.events.append((candidate_id, event))

    async def get_company(self, conn, ctx, company_id):
        row = self.companies.get(company_id)
        return dict(row) if row and row["tenant_id"] == ctx.tenant_id else None

    async def count_company_references(self, conn, ctx, company_id):
        return sum(1 for row in self.openings.values() if row["company_id"] == company_id) + sum(
            1 for row in self.placements.values() if row["company_id"] == company_id
        )

    async def delete_company(self, conn, ctx, company_id):
        return self.companies.pop(company_id, None) is not None

    async def insert_job_opening(self, conn, ctx, *, company_id, job_title, **fields):
        new_id = max(self.openings) + 1
        self.openings[new_id] = {
            "id": new_id,
            "tenant_id": ctx.tenant_id,
            "company_id": company_id,
            "job_title": job_title,
            "recruiter_id": ctx.user_id,
            "status": "OPEN",
            **fields,
        }
        return dict(self.openings[new_id])

    async def get_job_opening(self, conn, ctx, job_opening_id):
        row = self.openings.get(job_opening_id)
        return dict(row) if row and row["tenant_id"] == ctx.tenant_id else None

    async def close_job_opening(self, conn, ctx, job_opening_id):
        row = self.openings.get(job_opening_id)
        if row is None or row["status"] != "OPEN":
            return None
        row["status"] = "CLOSED"
        return dict(row)

    async def insert_placement(self, conn, ctx, *, candidate_id, company_id, job_opening_id, job_role_offered, country):
        new_id = len(self.placements) + 1
        self.placements[new_id] = {
            "id": new_id,
            "tenant_id": ctx.tenant_id,
            "candidate_id": candidate_id,
            "company_id": company_id,
            "job_opening_id": job_opening_id,
            "job_role_offered": job_role_offered,
            "country": country,
            "status": "INITIATED",
            "interview_date": None,
            "cancellation_reason": None,
            "completed_at": None,
        }
        return self._placement_view(self.placements[new_id])

    async def get_placement(self, conn, ctx, placement_id, *, for_update=False):
        row = self.placements.get(placement_id)
        return self._placement_view(row) if row and row["tenant_id"] == ctx.tenant_id else None

    async def get_active_placement(self, conn, ctx, candidate_id, statuses):
        for row in self.placements.values():
            if row["candidate_id"] == candidate_id and row["status"] in statuses:
                return self._placement_view(row)
        return None

    async def list_placements(self, conn, ctx, *, candidate_id=None, recruiter_id=None, **filters):
        rows = [self._placement_view(row) for row in self.placements.values()]
        return [
            row
            for row in rows
            if (candidate_id is None or row["candidate_id"] == candidate_id)
            and (recruiter_id is None or row["recruiter_id"] == recruiter_id)
        ]

    async def update_placement_status(
        self,
        conn,
        ctx,
        placement_id,
        *,
        expected,
        target,
        interview_date=None,
        cancellation_reason=None,
        stamp_completion=False,
    ):
        row = self.placements.get(placement_id)
        if row is None or row["status"] != expected.value:
            return None
        row["status"] = target.value
        if interview_date is not None:
            row["interview_date"] = interview_date
        if cancellation_reason is not None:
            row["cancellation_reason"] = cancellation_reason
        if stamp_completion:
            row["completed_at"] = INTERVIEW_AT
        return self._placement_view(row)


@pytest.fixture
def store(monkeypatch, recorded):
    return PlacementStore(monkeypatch)


@pytest.fixture
def recruiter_ctx():
    return make_ctx(Role.RECRUITER, user_id=RECRUITER_ID)


async def _walk(conn, ctx, placement_id, *actions):
    row = None
    for action in actions:
        payload = schemas.PlacementTransitionRequest(interview_date=INTERVIEW_AT, reason="Visa refused")
        row = await service.transition_placement(conn, ctx, placement_id, action, payload)
    return row


async def test_placement_takes_role_from_job_opening(conn, recruiter_ctx, store, recorded):
    row = await service.create_placement(
        conn, recruiter_ctx, schemas.PlacementCreateRequest(candidate_id=5, company_id=1, job_opening_id=3)
    )

    assert row["status"] == "INITIATED"
    assert row["job_role_offered"] == "Welder"
    assert row["country"] == "Norway"
    assert recorded["activity"][-1]["action"] == "PLACEMENT_CREATED"
    assert recorded["notifications"][-1]["user_id"] == 55


async def test_placement_requires_cleared_candidate(conn, admin_ctx, store):
    with pytest.raises(InvalidStateError, match="VETTING"):
        await service.create_placement(
            conn, admin_ctx, schemas.PlacementCreateRequest(candidate_id=6, company_id=1, job_role_offered="Welder")
        )
    assert store.placements == {}


async def test_placement_rejects_inactive_company_and_closed_opening(conn, admin_ctx, store):
    with pytest.raises(InvalidStateError, match="inactive"):
        await service.create_placement(
            conn, admin_ctx, schemas.PlacementCreateRequest(candidate_id=5, company_id=2, job_role_offered="Welder")
        )

    with pytest.raises(InvalidStateError, match="closed"):
        await service.create_placement(
            conn, admin_ctx, schemas.PlacementCreateRequest(candidate_id=5, company_id=1, job_opening_id=4)
        )

    with pytest.raises(ValidationError):
        await service.create_placement(conn, admin_ctx, schemas.PlacementCreateRequest(candidate_id=5, company_id=1))


async def test_second_active_placement_is_conflict(conn, admin_ctx, store):
    await service.create_placement(
        conn, admin_ctx, schemas.PlacementCreateRequest(candidate_id=5, company_id=1, job_role_offered="Welder")
    )

    with pytest.raises(ConflictError, match="active placement"):
        await service.create_placement(
            conn, admin_ctx, schemas.PlacementCreateRequest(candidate_id=5, company_id=1, job_role_offered="Fitter")
        )
    assert len(store.placements) == 1


async def test_recruiter_cannot_place_other_recruiters_candidate(conn, recruiter_ctx, store):
    with pytest.raises(NotFoundError):
        await service.create_placement(
            conn, recruiter_ctx, schemas.PlacementCreateRequest(candidate_id=8, company_id=1, job_role_offered="Welder")
        )


async def test_completing_placement_places_candidate(conn, admin_ctx, store, recorded):
    created = await service.create_placement(
        conn, admin_ctx, schemas.PlacementCreateRequest(candidate_id=5, company_id=1, job_role_offered="Welder")
    )

    row = await _walk(
        conn,
        admin_ctx,
        created["id"],
        PlacementAction.SCHEDULE_INTERVIEW,
        PlacementAction.SEND_OFFER,
        PlacementAction.START_VISA,
        PlacementAction.MARK_TRAVEL_READY,
        PlacementAction.COMPLETE,
    )

    assert row["status"] == "COMPLETED"
    assert row["interview_date"] == INTERVIEW_AT
    assert row["completed_at"] is not None
    assert store.events == [(5, CandidateEvent.PLACEMENT_COMPLETED)]
    assert recorded["activity"][-1]["action"] == "PLACEMENT_COMPLETE"
    assert recorded["notifications"][-1]["title"] == "Placement completed"

    with pytest.raises(InvalidStateError):
        await _walk(conn, admin_ctx, created["id"], PlacementAction.CANCEL)


async def test_transition_out_of_order_is_invalid(conn, admin_ctx, store):
    created = await service.create_placement(
        conn, admin_ctx, schemas.PlacementCreateRequest(candidate_id=5, company_id=1, job_role_offered="Welder")
    )

    with pytest.raises(InvalidStateError, match="INITIATED"):
        await _walk(conn, admin_ctx, created["id"], PlacementAction.SEND_OFFER)
    assert store.placements[created["id"]]["status"] == "INITIATED"


async def test_schedule_requires_date_and_cancel_requires_reason(conn, admin_ctx, store):
    created = await service.create_placement(
        conn, admin_ctx, schemas.PlacementCreateRequest(candidate_id=5, company_id=1, job_role_offered="Welder")
    )

    with pytest.raises(ValidationError):
        await service.transition_placement(conn, admin_ctx, created["id"], PlacementAction.SCHEDULE_INTERVIEW)

    with pytest.raises(ValidationError):
        await service.transition_placement(
            conn, admin_ctx, created["id"], PlacementAction.CANCEL, schemas.PlacementTransitionRequest(reason=" ")
        )

    cancelled = await _walk(conn, admin_ctx, created["id"], PlacementAction.CANCEL)

    assert cancelled["status"] == PlacementStatus.CANCELLED.value
    assert cancelled["cancellation_reason"] == "Visa refused"
    assert store.events == []

    again = await service.create_placement(
        conn, admin_ctx, schemas.PlacementCreateRequest(candidate_id=5, company_id=1, job_role_offered="Fitter")
    )
    assert again["status"] == "INITIATED"


async def test_recruiter_sees_only_own_placements(conn, admin_ctx, recruiter_ctx, store):
    own = await service.create_placement(
        conn, admin_ctx, schemas.PlacementCreateRequest(candidate_id=5, company_id=1, job_role_offered="Welder")
    )
    other = await service.create_placement(
        conn, admin_ctx, schemas.PlacementCreateRequest(candidate_id=8, company_id=1, job_role_offered="Welder")
    )

    listed = await service.list_placements(conn, recruiter_ctx)

    assert [row["id"] for row in listed["placements"]] == [own["id"]]
    assert (await service.list_placements(conn, admin_ctx))["count"] == 2
    with pytest.raises(NotFoundError):
        await service.get_placement(conn, recruiter_ctx, other["id"])
    with pytest.raises(NotFoundError):
        await _walk(conn, recruiter_ctx, other["id"], PlacementAction.SCHEDULE_INTERVIEW)


async def test_company_with_references_cannot_be_deleted(conn, admin_ctx, store):
    with pytest.raises(ConflictError):
        await service.delete_company(conn, admin_ctx, 1)
    assert 1 in store.companies

    await service.delete_company(conn, admin_ctx, 2)
    assert 2 not in store.companies

    with pytest.raises(NotFoundError):
        await service.delete_company(conn, admin_ctx, 2)


async def test_job_openings_need_active_company_and_close_once(conn, recruiter_ctx, store):
    with pytest.raises(InvalidStateError):
        await service.create_job_opening(
            conn, recruiter_ctx, schemas.JobOpeningCreateRequest(company_id=2, job_title="Welder")
        )

    opening = await service.create_job_opening(
        conn, recruiter_ctx, schemas.JobOpeningCreateRequest(company_id=1, job_title=" Rigger ")
    )
    assert opening["job_title"] == "Rigger"
    assert opening["recruiter_id"] == RECRUITER_ID

    closed = await service.close_job_opening(conn, recruiter_ctx, opening["id"])
    assert closed["status"] == "CLOSED"

    with pytest.raises(InvalidStateError, match="CLOSED"):
        await service.close_job_opening(conn, recruiter_ctx, opening["id"])
