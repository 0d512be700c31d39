"""
Async database access (raw SQL) using asyncpg.

`Database` owns one connection pool. The app lifespan constructs it from the
environment, stores it on `app.state.database` and closes it on shutdown
(see `api/main.py`). Request handlers never touch the pool directly: they
receive one connection per request through `get_connection`.

SQL parameter style:
- asyncpg uses positional placeholders: $1, $2, $3, ...
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import asyncpg
from fastapi import Request

from . import config


def _sanitize_database_url(url: str) -> str:
    parts = urlsplit(url)
    if not parts.query:
        return url

    params = [(k, v) for (k, v) in parse_qsl(parts.query, keep_blank_values=True) if k != "sslmode"]
    query = urlencode(params)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment))


def database_url() -> str:
    url = config.env_str("DATABASE_URL", "")
    if not url:
        raise RuntimeError("DATABASE_URL is not set.")
    return _sanitize_database_url(url)


def _json_dumps(value: Any) -> str:
    return json.dumps(value, ensure_ascii=True, default=str)


async def init_connection(conn: asyncpg.Connection) -> None:
    """
    Decode json/jsonb columns into Python objects instead of raw strings.
    """
    for type_name in ("json", "jsonb"):
        await conn.set_type_codec(
            type_name,
            encoder=_json_dumps,
            decoder=json.loads,
            schema="pg_catalog",
        )


class Database:
    """
    Explicitly constructed persistence handle.

    One instance per process; pass it where it is needed instead of importing
    a global client.
    """

    def __init__(
        self,
        dsn: str,
        *,
        min_size: int = 1,
        max_size: int = 10,
        command_timeout: float = 30.0,
        acquire_timeout: float = 10.0,
    ) -> None:
        self.dsn = dsn
        self.min_size = min_size
        self.max_size = max_size
        self.command_timeout = command_timeout
        self.acquire_timeout = acquire_timeout
        self._pool: asyncpg.Pool | None = None

    @classmethod
    def from_env(cls) -> "Database":
        return cls(
            database_url(),
            min_size=config.env_int("DB_POOL_MIN_SIZE", 1),
            max_size=config.env_int("DB_POOL_MAX_SIZE", 10),
            command_timeout=config.env_float("DB_COMMAND_TIMEOUT_S", 30.0),
            acquire_timeout=config.env_float("DB_ACQUIRE_TIMEOUT_S", 10.0),
        )

    async def connect(self) -> None:
        if self._pool is not None:
            return None
        self._pool = await asyncpg.create_pool(
            dsn=self.dsn,
            min_size=self.min_size,
            max_size=self.max_size,
            command_timeout=self.command_timeout,
            init=init_connection,
        )

    async def close(self) -> None:
        if self._pool is None:
            return None
        await self._pool.close()
        self._pool = None

    def pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise RuntimeError("DB pool is not initialized. Call connect() on startup.")
        return self._pool

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[asyncpg.Connection]:
        """
        Borrow a connection for the duration of the block.

        Waiting for a free connection is bounded by `acquire_timeout`.
        """
        async with self.pool().acquire(timeout=self.acquire_timeout) as conn:
            yield conn


def _record_to_dict(record: asyncpg.Record) -> dict[str, Any]:
    return dict(record)


async def fetch_one(conn: asyncpg.Connection, sql: str, *args: Any) -> dict[str, Any] | None:
    """
    Run a query and return a single row as a dict (or None).
    """
    row = await conn.fetchrow(sql, *args)
    return _record_to_dict(row) if row is not None else None


async def fetch_all(conn: asyncpg.Connection, sql: str, *args: Any) -> list[dict[str, Any]]:
    """
    Run a query and return all rows as a list of dicts.
    """
    rows = await conn.fetch(sql, *args)
    return [_record_to_dict(r) for r in rows]


async def fetch_value(conn: asyncpg.Connection, sql: str, *args: Any) -> Any:
    return await conn.fetchval(sql, *args)


async def execute(conn: asyncpg.Connection, sql: str, *args: Any) -> None:
    """
    Run a statement (INSERT/UPDATE/DELETE/DDL). No result returned.
    """
    await conn.execute(sql, *args)


def get_database(request: Request) -> Database:
    database = getattr(request.app.state, "database", None)
    if database is None:
        raise RuntimeError("Database is not configured on the application.")
    return database


async def get_connection(request: Request) -> AsyncIterator[asyncpg.Connection]:
    """
    FastAPI dependency: one pooled connection per request, released afterwards.
    """
    async with get_database(request).acquire() as conn:
        yield conn
