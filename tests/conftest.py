import os
import re
import uuid
from pathlib import Path

import pytest

from core.tenancy import Role, TenantContext

MIGRATIONS_DIR = Path(__file__).resolve().parent.parent / "db" / "migrations"


class FakeTransaction:
    def __init__(self, conn):
        self.conn = conn

    async def __aenter__(self):
        self.conn.transactions_started += 1
        return self

    async def __aexit__(self, exc_type, exc, tb):
        if exc_type is None:
            self.conn.commits += 1
        else:
            self.conn.rollbacks += 1
        return False


class FakeConnection:
    """
    Stand-in for an asyncpg connection in service tests: repositories are
    monkeypatched, so only `transaction()` is ever called on it.
    """

    def __init__(self):
        self.transactions_started = 0
        self.commits = 0
        self.rollbacks = 0

    def transaction(self):
        return FakeTransaction(self)


def make_ctx(role=Role.ADMIN, *, tenant_id=1, user_id=10):
    return TenantContext(tenant_id=tenant_id, user_id=user_id, role=role)


@pytest.fixture
def conn():
    return FakeConnection()


@pytest.fixture
def admin_ctx():
    return make_ctx(Role.ADMIN, user_id=1)


@pytest.fixture
def candidate_ctx():
    return make_ctx(Role.CANDIDATE, user_id=50)


@pytest.fixture
def recorded(monkeypatch):
    """
    Capture activity-log writes and notifications instead of hitting the database.
    """
    from core import activity
    from notifications import service as notification_service

    calls = {"activity": [], "notifications": []}

    async def fake_record(conn, ctx, **kwargs):
        calls["activity"].append(kwargs)

    async def fake_notify(conn, ctx, **kwargs):
        calls["notifications"].append(kwargs)
        return None

    monkeypatch.setattr(activity, "record", fake_record)
    monkeypatch.setattr(notification_service, "notify_user", fake_notify)
    return calls


class CurrentUser:
    def __init__(self):
        self.ctx = make_ctx(Role.ADMIN, user_id=1)


@pytest.fixture
def api(monkeypatch):
    """
    App with the connection and the authenticated user overridden.

    The lifespan is not run, so no database is needed.
    """
    from fastapi.testclient import TestClient

    import main
    from auth import dependencies as auth_dependencies
    from core import db

    app = main.create_app()
    current = CurrentUser()
    fake_conn = FakeConnection()

    async def override_connection():
        yield fake_conn

    async def override_current_user():
        return current.ctx

    app.dependency_overrides[db.get_connection] = override_connection
    app.dependency_overrides[auth_dependencies.get_current_user] = override_current_user

    client = TestClient(app, raise_server_exceptions=False)
    client.current = current
    client.fake_conn = fake_conn
    return client


def _migration_up_sql() -> str:
    path = sorted(MIGRATIONS_DIR.glob("*_init.sql"))[0]
    text = path.read_text(encoding="utf-8")
    up = text.split("-- migrate:down", 1)[0]
    return up.replace("-- migrate:up", "")


@pytest.fixture
async def pg_pool():
    """
    Pool bound to a throwaway schema holding the full migration.

    Skipped unless TEST_DATABASE_URL points at a Postgres the tests may write to.
    """
    dsn = os.environ.get("TEST_DATABASE_URL", "").strip()
    if not dsn:
        pytest.skip("TEST_DATABASE_URL is not set.")

    import asyncpg

    from core import db

    schema = f"test_{uuid.uuid4().hex[:12]}"
    if not re.fullmatch(r"test_[0-9a-f]{12}", schema):
        raise RuntimeError("Unexpected schema name.")

    admin = await asyncpg.connect(dsn)
    await admin.execute(f"CREATE SCHEMA {schema}")
    await admin.execute(f"SET search_path TO {schema}")
    await admin.execute(_migration_up_sql())

    pool = await asyncpg.create_pool(
        dsn=dsn,
        min_size=1,
        max_size=6,
        init=db.init_connection,
        server_settings={"search_path": schema},
    )
    try:
        yield pool
    finally:
        await pool.close()
        await admin.execute(f"DROP SCHEMA {schema} CASCADE")
        await admin.close()
