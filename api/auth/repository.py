"""
Auth persistence helpers.

Lookups here run before a tenant context exists (login, refresh), so they
key on globally unique values: email, user id, refresh-token hash.
"""

from __future__ import annotations

from datetime import datetime, timezone

import asyncpg

from core import db
from core.tenancy import TenantContext

USER_COLUMNS = "id, tenant_id, email, role, is_active, first_name, last_name, created_at, updated_at"


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


async def get_tenant_by_slug(conn: asyncpg.Connection, slug: str) -> dict | None:
    return await db.fetch_one(
        conn,
        """
        SELECT id, slug, name, is_active
        FROM tenants
        WHERE slug = $1
        """,
        (slug or "").strip().lower(),
    )


async def create_user(
    conn: asyncpg.Connection,
    *,
    tenant_id: int,
    email: str,
    password_hash: str,
    role: str,
    first_name: str | None = None,
    last_name: str | None = None,
    is_active: bool = True,
) -> dict:
    row = await db.fetch_one(
        conn,
        f"""
        INSERT INTO users (tenant_id, email, password_hash, role, first_name, last_name, is_active)
        VALUES ($1, $2, $3, $4, $5, $6, $7)
        RETURNING {USER_COLUMNS}
        """,
        tenant_id,
        normalize_email(email),
        password_hash,
        role,
        first_name,
        last_name,
        is_active,
    )
    if row is None:
        raise RuntimeError("Failed to create user.")
    return row


async def get_user_by_email(conn: asyncpg.Connection, email: str) -> dict | None:
    return await db.fetch_one(
        conn,
        f"""
        SELECT {USER_COLUMNS}, password_hash
        FROM users
        WHERE lower(email) = lower($1)
        """,
        normalize_email(email),
    )


async def get_user_by_id(conn: asyncpg.Connection, user_id: int) -> dict | None:
    return await db.fetch_one(
        conn,
        f"""
        SELECT {USER_COLUMNS}
        FROM users
        WHERE id = $1
        """,
        user_id,
    )


async def insert_refresh_token(
    conn: asyncpg.Connection,
    *,
    user_id: int,
    token_hash: str,
    expires_at: datetime,
    user_agent: str | None = None,
    ip_address: str | None = None,
) -> dict:
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)

    row = await db.fetch_one(
        conn,
        """
        INSERT INTO refresh_tokens (user_id, token_hash, expires_at, user_agent, ip_address)
        VALUES ($1, $2, $3, $4, $5)
        RETURNING id, user_id, token_hash, expires_at, revoked_at,
                  replaced_by_token_id, created_at, last_used_at, user_agent, ip_address
        """,
        user_id,
        token_hash,
        expires_at,
        user_agent,
        ip_address,
    )
    if row is None:
        raise RuntimeError("Failed to insert refresh token.")
    return row


async def get_refresh_token_by_hash(conn: asyncpg.Connection, token_hash: str) -> dict | None:
    return await db.fetch_one(
        conn,
        """
        SELECT id, user_id, token_hash, expires_at, revoked_at,
               replaced_by_token_id, created_at, last_used_at, user_agent, ip_address
        FROM refresh_tokens
        WHERE token_hash = $1
        """,
        token_hash,
    )


async def claim_refresh_token(conn: asyncpg.Connection, token_id: int) -> bool:
    """
    Mark a refresh token used and revoked in one statement.

    Returns False when another request already rotated it.
    """
    row = await db.fetch_one(
        conn,
        """
        UPDATE refresh_tokens
        SET last_used_at = now(),
            revoked_at = now()
        WHERE id = $1
          AND revoked_at IS NULL
        RETURNING id
        """,
        token_id,
    )
    return row is not None


async def revoke_refresh_token_by_hash(conn: asyncpg.Connection, token_hash: str) -> bool:
    row = await db.fetch_one(
        conn,
        """
        UPDATE refresh_tokens
        SET revoked_at = now()
        WHERE token_hash = $1
          AND revoked_at IS NULL
        RETURNING id
        """,
        token_hash,
    )
    return row is not None


async def revoke_refresh_token_by_id(conn: asyncpg.Connection, token_id: int) -> bool:
    row = await db.fetch_one(
        conn,
        """
        UPDATE refresh_tokens
        SET revoked_at = now()
        WHERE id = $1
          AND revoked_at IS NULL
        RETURNING id
        """,
        token_id,
    )
    return row is not None


async def revoke_all_refresh_tokens_for_user(conn: asyncpg.Connection, user_id: int) -> None:
    await db.execute(
        conn,
        """
        UPDATE refresh_tokens
        SET revoked_at = now()
        WHERE user_id = $1
          AND revoked_at IS NULL
        """,
        user_id,
    )


async def set_refresh_token_replacement(conn: asyncpg.Connection, *, old_token_id: int, new_token_id: int) -> None:
    await db.execute(
        conn,
        """
        UPDATE refresh_tokens
        SET replaced_by_token_id = $2
        WHERE id = $1
        """,
        old_token_id,
        new_token_id,
    )


async def get_user_in_tenant(conn: asyncpg.Connection, ctx: TenantContext, user_id: int) -> dict | None:
    return await db.fetch_one(
        conn,
        f"""
        SELECT {USER_COLUMNS}
        FROM users
        WHERE id = $1
          AND tenant_id = $2
        """,
        user_id,
        ctx.tenant_id,
    )
