import pytest

from auth import repository as auth_repository
from candidates import repository, schemas, service
from core.errors import InvalidStateError, NotFoundError, PermissionDeniedError, ValidationError
from core.tenancy import Role
from lifecycle.statuses import CandidateStatus
from lifecycle.transitions import CandidateEvent

from conftest import make_ctx


@pytest.fixture
def candidates(monkeypatch, recorded):
    rows = {
        5: {"id": 5, "tenant_id": 1, "user_id": 55, "recruiter_id": 20, "status": "APPLIED"},
        6: {"id": 6, "tenant_id": 1, "user_id": None, "recruiter_id": 21, "status": "PLACED"},
    }
    events = []

    async def get_candidate(conn, ctx, candidate_id, *, for_update=False):
        row = rows.get(candidate_id)
        return dict(row) if row and row["tenant_id"] == ctx.tenant_id else None

    async def update_status(conn, ctx, candidate_id, status):
        rows[candidate_id]["status"] = status.value
        return dict(rows[candidate_id])

    async def insert_pipeline_event(conn, ctx, **fields):
        events.append(fields)
        return {"id": len(events), **fields}

    async def set_recruiter(conn, ctx, candidate_id, recruiter_id):
        row = rows.get(candidate_id)
        if row is None or row["tenant_id"] != ctx.tenant_id:
            return None
        row["recruiter_id"] = recruiter_id
        return dict(row)

    async def get_user_in_tenant(conn, ctx, user_id):
        users = {20: "RECRUITER", 21: "RECRUITER", 30: "TRAINER"}
        role = users.get(user_id)
        return {"id": user_id, "role": role} if role else None

    monkeypatch.setattr(repository, "get_candidate", get_candidate)
    monkeypatch.setattr(repository, "update_status", update_status)
    monkeypatch.setattr(repository, "insert_pipeline_event", insert_pipeline_event)
    monkeypatch.setattr(repository, "set_recruiter", set_recruiter)
    monkeypatch.setattr(auth_repository, "get_user_in_tenant", get_user_in_tenant)
    return {"rows": rows, "events": events, "recorded": recorded}


async def test_pipeline_move_records_event_and_notifies(conn, candidates):
    result = await service.transition_stage(
        conn,
        make_ctx(Role.RECRUITER, user_id=20),
        5,
        schemas.PipelineTransitionRequest(next_stage=CandidateStatus.UNDER_REVIEW, comment="Docs look fine"),
    )

    assert result["candidate"]["status"] == "UNDER_REVIEW"
    assert candidates["events"][-1]["from_stage"] is CandidateStatus.APPLIED
    assert candidates["events"][-1]["to_stage"] is CandidateStatus.UNDER_REVIEW
    assert candidates["recorded"]["notifications"][-1]["user_id"] == 55


async def test_pipeline_blocker_requires_reason(conn, admin_ctx, candidates):
    with pytest.raises(ValidationError):
        await service.transition_stage(
            conn,
            admin_ctx,
            5,
            schemas.PipelineTransitionRequest(next_stage=CandidateStatus.APPLIED, is_blocked=True),
        )
    assert conn.transactions_started == 0


async def test_pipeline_same_stage_logs_blocker_without_notifying(conn, admin_ctx, candidates):
    result = await service.transition_stage(
        conn,
        admin_ctx,
        5,
        schemas.PipelineTransitionRequest(
            next_stage=CandidateStatus.APPLIED, is_blocked=True, blocker_reason="Passport expired"
        ),
    )

    assert result["event"]["blocker_reason"] == "Passport expired"
    assert candidates["rows"][5]["status"] == "APPLIED"
    assert candidates["recorded"]["notifications"] == []


async def test_pipeline_rejects_skipping_stages(conn, admin_ctx, candidates):
    with pytest.raises(InvalidStateError):
        await service.transition_stage(
            conn,
            admin_ctx,
            5,
            schemas.PipelineTransitionRequest(next_stage=CandidateStatus.PLACED),
        )


async def test_recruiter_sees_only_assigned_candidates(conn, candidates):
    recruiter = make_ctx(Role.RECRUITER, user_id=20)

    assert (await service.load_candidate(conn, recruiter, 5))["id"] == 5
    with pytest.raises(NotFoundError):
        await service.load_candidate(conn, recruiter, 6)


async def test_candidate_from_other_tenant_is_not_found(conn, candidates):
    with pytest.raises(NotFoundError):
        await service.load_candidate(conn, make_ctx(Role.ADMIN, tenant_id=2), 5)


async def test_assign_recruiter(conn, admin_ctx, candidates):
    row = await service.assign_recruiter(conn, admin_ctx, 6, 20)
    assert row["recruiter_id"] == 20

    with pytest.raises(NotFoundError):
        await service.assign_recruiter(conn, admin_ctx, 6, 30)

    with pytest.raises(PermissionDeniedError):
        await service.assign_recruiter(conn, make_ctx(Role.RECRUITER, user_id=20), 6, 20)


async def test_advance_for_event_moves_forward_only(conn, admin_ctx, candidates):
    moved = await service.advance_for_event(conn, admin_ctx, 5, CandidateEvent.ENROLLMENT_APPROVED)
    assert moved["status"] == "ENROLLED"

    assert await service.advance_for_event(conn, admin_ctx, 6, CandidateEvent.ENROLLMENT_APPROVED) is None
    assert candidates["rows"][6]["status"] == "PLACED"
