"""
End-to-end workflows against a real Postgres (see the `pg_pool` fixture).
"""

import asyncio
from datetime import date, datetime, timezone

import pytest

from candidates import service as candidate_service
from certificates import schemas as certificate_schemas
from certificates import service as certificate_service
from cohorts import schemas as cohort_schemas
from cohorts import service as cohort_service
from core.errors import CapacityExceededError, ConflictError, InvalidStateError, NotFoundError
from core.tenancy import Role, TenantContext
from courses import schemas as course_schemas
from courses import service as course_service
from dashboards import service as dashboard_service
from lifecycle.transitions import CohortAction, CourseEnrollmentAction, PlacementAction, VettingAction
from placements import schemas as placement_schemas
from placements import service as placement_service
from vetting import schemas as vetting_schemas
from vetting import service as vetting_service


@pytest.fixture(autouse=True)
def no_webhook(monkeypatch):
    monkeypatch.delenv("NOTIFICATION_WEBHOOK_URL", raising=False)


async def _insert_user(conn, tenant_id, email, role):
    return await conn.fetchval(
        "INSERT INTO users (tenant_id, email, password_hash, role) VALUES ($1, $2, 'x', $3) RETURNING id",
        tenant_id,
        email,
        role,
    )


async def _insert_candidate_user(conn, tenant_id, email):
    user_id = await _insert_user(conn, tenant_id, email, "CANDIDATE")
    candidate_id = await conn.fetchval(
        "INSERT INTO candidates (tenant_id, user_id, full_name, email) VALUES ($1, $2, $3, $4) RETURNING id",
        tenant_id,
        user_id,
        email.split("@")[0],
        email,
    )
    return TenantContext(tenant_id=tenant_id, user_id=user_id, role=Role.CANDIDATE), candidate_id


@pytest.fixture
async def world(pg_pool):
    async with pg_pool.acquire() as conn:
        acme = await conn.fetchval("INSERT INTO tenants (slug, name) VALUES ('acme', 'Acme Mobility') RETURNING id")
        other = await conn.fetchval("INSERT INTO tenants (slug, name) VALUES ('other', 'Other Co') RETURNING id")
        admin_id = await _insert_user(conn, acme, "admin@acme.example", "ADMIN")
        other_admin_id = await _insert_user(conn, other, "admin@other.example", "ADMIN")
        first, first_candidate = await _insert_candidate_user(conn, acme, "ana@acme.example")
        second, second_candidate = await _insert_candidate_user(conn, acme, "ben@acme.example")

        admin = TenantContext(tenant_id=acme, user_id=admin_id, role=Role.ADMIN)
        course = await course_service.create_course(
            conn, admin, course_schemas.CourseCreateRequest(title="Welding Level 2", code="weld-2")
        )
        cohort = await cohort_service.create_cohort(
            conn,
            admin,
            cohort_schemas.CohortCreateRequest(
                course_id=course["id"],
                cohort_name="Spring intake",
                cohort_code="weld-2026-a",
                max_capacity=1,
                start_date=date(2027, 3, 1),
                end_date=date(2027, 5, 31),
            ),
        )
        await cohort_service.transition_cohort(conn, admin, cohort["id"], CohortAction.PUBLISH)
        await cohort_service.transition_cohort(conn, admin, cohort["id"], CohortAction.OPEN_ENROLLMENT)

    return {
        "pool": pg_pool,
        "admin": admin,
        "other_admin": TenantContext(tenant_id=other, user_id=other_admin_id, role=Role.ADMIN),
        "candidates": [(first, first_candidate), (second, second_candidate)],
        "course": course,
        "cohort": cohort,
    }


async def _with_conn(pool, fn, *args, **kwargs):
    async with pool.acquire() as conn:
        return await fn(conn, *args, **kwargs)


async def test_last_seat_goes_to_exactly_one_application(world):
    pool, admin, cohort_id = world["pool"], world["admin"], world["cohort"]["id"]

    applications = []
    for ctx, _ in world["candidates"]:
        applications.append(await _with_conn(pool, cohort_service.apply, ctx, cohort_id))

    results = await asyncio.gather(
        *(_with_conn(pool, cohort_service.approve_application, admin, a["id"]) for a in applications),
        return_exceptions=True,
    )

    approved = [r for r in results if isinstance(r, dict)]
    refused = [r for r in results if isinstance(r, CapacityExceededError)]
    assert len(approved) == 1 and len(refused) == 1

    async with pool.acquire() as conn:
        cohort = await cohort_service.get_cohort(conn, admin, cohort_id)
        enrolled = await conn.fetchval(
            "SELECT count(*) FROM cohort_enrollments WHERE cohort_id = $1 AND status = 'ENROLLED'", cohort_id
        )
        candidate_status = await conn.fetchval(
            "SELECT status FROM candidates WHERE id = $1", approved[0]["candidate_id"]
        )
    assert cohort["current_enrollment"] == 1
    assert enrolled == 1
    assert candidate_status == "ENROLLED"


async def test_withdraw_frees_the_seat(world):
    pool, admin, cohort_id = world["pool"], world["admin"], world["cohort"]["id"]
    (first, _), (second, second_candidate) = world["candidates"]

    application = await _with_conn(pool, cohort_service.apply, first, cohort_id)
    await _with_conn(pool, cohort_service.approve_application, admin, application["id"])
    await _with_conn(pool, cohort_service.withdraw_application, admin, application["id"])

    enrolled = await _with_conn(
        pool,
        cohort_service.enroll,
        admin,
        cohort_id,
        cohort_schemas.CohortEnrollRequest(candidate_id=second_candidate),
    )
    assert enrolled["status"] == "ENROLLED"

    cohort = await _with_conn(pool, cohort_service.get_cohort, admin, cohort_id)
    assert cohort["current_enrollment"] == 1


async def test_concurrent_issues_get_distinct_numbers(world):
    pool, admin = world["pool"], world["admin"]
    (_, candidate_id), _ = world["candidates"]

    enrollment_ids = []
    async with pool.acquire() as conn:
        for n in range(5):
            course = await course_service.create_course(
                conn, admin, course_schemas.CourseCreateRequest(title=f"Module {n}", code=f"mod-{n}")
            )
            enrollment = await course_service.enroll_in_course(conn, admin, course["id"], candidate_id)
            await course_service.transition_enrollment(conn, admin, enrollment["id"], CourseEnrollmentAction.START)
            await course_service.transition_enrollment(conn, admin, enrollment["id"], CourseEnrollmentAction.COMPLETE)
            enrollment_ids.append(enrollment["id"])

    issued = await asyncio.gather(
        *(
            _with_conn(
                pool,
                certificate_service.issue,
                admin,
                certificate_schemas.IssueCertificateRequest(enrollment_id=enrollment_id),
            )
            for enrollment_id in enrollment_ids
        )
    )

    year = datetime.now(timezone.utc).year
    numbers = sorted(row["certificate_number"] for row in issued)
    assert numbers == [f"CERT-{year}-{n:04d}" for n in range(1, 6)]

    with pytest.raises(ConflictError):
        await _with_conn(
            pool,
            certificate_service.issue,
            admin,
            certificate_schemas.IssueCertificateRequest(enrollment_id=enrollment_ids[0]),
        )

    verified = await _with_conn(
        pool, certificate_service.verify, tenant_slug="acme", certificate_number=numbers[0]
    )
    assert verified["valid"] is True
    assert verified["signature_ok"] is True

    with pytest.raises(NotFoundError):
        await _with_conn(pool, certificate_service.verify, tenant_slug="other", certificate_number=numbers[0])


async def test_second_active_vetting_record_is_rejected(world):
    pool, admin, cohort_id = world["pool"], world["admin"], world["cohort"]["id"]
    (first, first_candidate), _ = world["candidates"]

    enrollment = await _with_conn(
        pool,
        cohort_service.enroll,
        admin,
        cohort_id,
        cohort_schemas.CohortEnrollRequest(candidate_id=first_candidate),
    )
    request = vetting_schemas.VettingApplyRequest(cohort_enrollment_id=enrollment["id"])

    results = await asyncio.gather(
        _with_conn(pool, vetting_service.apply, first, request),
        _with_conn(pool, vetting_service.apply, first, request),
        return_exceptions=True,
    )
    records = [r for r in results if isinstance(r, dict)]
    assert len(records) == 1
    assert sum(isinstance(r, ConflictError) for r in results) == 1

    record_id = records[0]["id"]
    await _with_conn(pool, vetting_service.review, admin, record_id, VettingAction.REQUEST_DOCUMENTS)
    await _with_conn(pool, vetting_service.review, admin, record_id, VettingAction.START_REVIEW)
    await _with_conn(pool, vetting_service.review, admin, record_id, VettingAction.CLEAR)

    async with pool.acquire() as conn:
        mirrored = await conn.fetchval(
            "SELECT vetting_status FROM cohort_enrollments WHERE id = $1", enrollment["id"]
        )
        candidate_status = await conn.fetchval("SELECT status FROM candidates WHERE id = $1", first_candidate)
    assert mirrored == "CLEARED"
    assert candidate_status == "CLEARED"

    # A finished record no longer blocks a new one.
    again = await _with_conn(pool, vetting_service.apply, first, request)
    assert again["vetting_status"] == "PENDING"


async def test_other_tenant_sees_nothing(world):
    pool, other_admin = world["pool"], world["other_admin"]

    with pytest.raises(NotFoundError):
        await _with_conn(pool, cohort_service.get_cohort, other_admin, world["cohort"]["id"])
    with pytest.raises(NotFoundError):
        await _with_conn(pool, course_service.get_course, other_admin, world["course"]["id"])

    listed = await _with_conn(pool, cohort_service.list_cohorts, other_admin)
    assert listed["count"] == 0


async def test_cohort_walkthrough_from_draft(world):
    pool, admin, course_id = world["pool"], world["admin"], world["course"]["id"]
    (first, first_candidate), _ = world["candidates"]

    async with pool.acquire() as conn:
        cohort = await cohort_service.create_cohort(
            conn,
            admin,
            cohort_schemas.CohortCreateRequest(
                course_id=course_id,
                cohort_name="Autumn intake",
                cohort_code="weld-2026-b",
                max_capacity=2,
                start_date=date(2027, 9, 1),
                end_date=date(2027, 11, 30),
            ),
        )
        assert cohort["status"] == "DRAFT"
        await cohort_service.transition_cohort(conn, admin, cohort["id"], CohortAction.PUBLISH)
        opened = await cohort_service.transition_cohort(conn, admin, cohort["id"], CohortAction.OPEN_ENROLLMENT)
    assert opened["status"] == "ENROLLMENT_OPEN"

    application = await _with_conn(pool, cohort_service.apply, first, cohort["id"])
    assert application["status"] == "APPLIED"
    approved = await _with_conn(pool, cohort_service.approve_application, admin, application["id"])
    assert approved["status"] == "ENROLLED"

    async with pool.acquire() as conn:
        approval_date = await conn.fetchval(
            "SELECT approval_date FROM cohort_enrollments WHERE id = $1", application["id"]
        )
        notifications = await conn.fetchval(
            "SELECT count(*) FROM notifications "
            "WHERE user_id = $1 AND entity_type = 'cohort_enrollment' AND entity_id = $2",
            first.user_id,
            application["id"],
        )
        candidate_status = await conn.fetchval("SELECT status FROM candidates WHERE id = $1", first_candidate)
    assert approval_date is not None
    assert notifications >= 1
    assert candidate_status == "ENROLLED"

    closed = await _with_conn(
        pool, cohort_service.transition_cohort, admin, cohort["id"], CohortAction.CLOSE_ENROLLMENT
    )
    assert closed["status"] == "ENROLLMENT_CLOSED"
    with pytest.raises(InvalidStateError):
        await _with_conn(pool, cohort_service.transition_cohort, admin, cohort["id"], CohortAction.OPEN_ENROLLMENT)


async def test_concurrent_direct_enrolls_respect_capacity(world):
    pool, admin, cohort_id = world["pool"], world["admin"], world["cohort"]["id"]

    results = await asyncio.gather(
        *(
            _with_conn(
                pool,
                cohort_service.enroll,
                admin,
                cohort_id,
                cohort_schemas.CohortEnrollRequest(candidate_id=candidate_id),
            )
            for _, candidate_id in world["candidates"]
        ),
        return_exceptions=True,
    )

    assert sum(isinstance(r, dict) for r in results) == 1
    assert sum(isinstance(r, CapacityExceededError) for r in results) == 1

    async with pool.acquire() as conn:
        current = await conn.fetchval("SELECT current_enrollment FROM cohorts WHERE id = $1", cohort_id)
        enrolled = await conn.fetchval(
            "SELECT count(*) FROM cohort_enrollments WHERE cohort_id = $1 AND status = 'ENROLLED'", cohort_id
        )
    assert current == 1
    assert enrolled == 1


async def test_admin_dashboard_counts_only_own_tenant(world):
    pool, admin, other_admin = world["pool"], world["admin"], world["other_admin"]

    async with pool.acquire() as conn:
        other_candidate, other_candidate_id = await _insert_candidate_user(
            conn, other_admin.tenant_id, "eve@other.example"
        )
        course = await course_service.create_course(
            conn, other_admin, course_schemas.CourseCreateRequest(title="Masonry", code="mason-1")
        )
        cohort = await cohort_service.create_cohort(
            conn,
            other_admin,
            cohort_schemas.CohortCreateRequest(
                course_id=course["id"],
                cohort_name="Other intake",
                cohort_code="mason-2026-a",
                max_capacity=5,
                start_date=date(2027, 3, 1),
                end_date=date(2027, 5, 31),
            ),
        )
        await cohort_service.transition_cohort(conn, other_admin, cohort["id"], CohortAction.PUBLISH)
        await cohort_service.transition_cohort(conn, other_admin, cohort["id"], CohortAction.OPEN_ENROLLMENT)
        enrollment = await cohort_service.enroll(
            conn, other_admin, cohort["id"], cohort_schemas.CohortEnrollRequest(candidate_id=other_candidate_id)
        )
        await vetting_service.apply(
            conn, other_candidate, vetting_schemas.VettingApplyRequest(cohort_enrollment_id=enrollment["id"])
        )
        course_enrollment = await course_service.enroll_in_course(conn, other_admin, course["id"], other_candidate_id)
        await course_service.transition_enrollment(
            conn, other_admin, course_enrollment["id"], CourseEnrollmentAction.START
        )
        await course_service.transition_enrollment(
            conn, other_admin, course_enrollment["id"], CourseEnrollmentAction.COMPLETE
        )
        await certificate_service.issue(
            conn, other_admin, certificate_schemas.IssueCertificateRequest(enrollment_id=course_enrollment["id"])
        )

        own = await dashboard_service.admin_dashboard(conn, admin)
        theirs = await dashboard_service.admin_dashboard(conn, other_admin)

    assert own["candidates"]["total"] == 2
    assert own["cohorts"]["total"] == 1
    assert own["cohort_enrollments"]["total"] == 0
    assert own["vetting"]["total"] == 0
    assert own["certificates"]["total"] == 0
    assert own["course_completion"]["total"] == 0
    assert all(entry["entity_type"] != "certificate" for entry in own["recent_activity"])

    assert theirs["candidates"]["total"] == 1
    assert theirs["cohort_enrollments"]["total"] == 1
    assert theirs["vetting"]["total"] == 1
    assert theirs["certificates"]["total"] == 1


async def test_recruiter_dashboard_counts_only_assigned_candidates(world):
    pool, admin = world["pool"], world["admin"]
    (_, first_candidate), (_, second_candidate) = world["candidates"]

    async with pool.acquire() as conn:
        x_id = await _insert_user(conn, admin.tenant_id, "xena@acme.example", "RECRUITER")
        y_id = await _insert_user(conn, admin.tenant_id, "yuri@acme.example", "RECRUITER")
        await candidate_service.assign_recruiter(conn, admin, first_candidate, x_id)
        await candidate_service.assign_recruiter(conn, admin, second_candidate, y_id)
        # Both candidates have finished vetting.
        await conn.execute("UPDATE candidates SET status = 'CLEARED' WHERE tenant_id = $1", admin.tenant_id)

    recruiter_x = TenantContext(tenant_id=admin.tenant_id, user_id=x_id, role=Role.RECRUITER)
    recruiter_y = TenantContext(tenant_id=admin.tenant_id, user_id=y_id, role=Role.RECRUITER)

    async with pool.acquire() as conn:
        company = await placement_service.create_company(
            conn, recruiter_x, placement_schemas.CompanyCreateRequest(name="Nordic Build", country="Norway")
        )
        placement = await placement_service.create_placement(
            conn,
            recruiter_x,
            placement_schemas.PlacementCreateRequest(
                candidate_id=first_candidate, company_id=company["id"], job_role_offered="Welder"
            ),
        )
        await placement_service.transition_placement(
            conn,
            recruiter_x,
            placement["id"],
            PlacementAction.SCHEDULE_INTERVIEW,
            placement_schemas.PlacementTransitionRequest(interview_date=datetime.now(timezone.utc)),
        )
        for action in (
            PlacementAction.SEND_OFFER,
            PlacementAction.START_VISA,
            PlacementAction.MARK_TRAVEL_READY,
            PlacementAction.COMPLETE,
        ):
            await placement_service.transition_placement(conn, recruiter_x, placement["id"], action)

        with pytest.raises(NotFoundError):
            await placement_service.get_placement(conn, recruiter_y, placement["id"])

        x_board = await dashboard_service.recruiter_dashboard(conn, recruiter_x)
        y_board = await dashboard_service.recruiter_dashboard(conn, recruiter_y)
        placed = await conn.fetchval("SELECT status FROM candidates WHERE id = $1", first_candidate)

    assert placed == "PLACED"
    assert x_board["total_candidates"] == 1
    assert x_board["pipeline"]["PLACED"] == 1
    assert x_board["hires"]["count"] == 1
    assert x_board["placements_by_status"]["COMPLETED"] == 1
    assert x_board["open_placements"] == 0

    assert y_board["total_candidates"] == 1
    assert y_board["pipeline"]["CLEARED"] == 1
    assert y_board["hires"]["count"] == 0
    assert sum(y_board["placements_by_status"].values()) == 0
