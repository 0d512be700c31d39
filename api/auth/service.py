"""
Auth business logic.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

import asyncpg

from candidates import repository as candidate_repository
from core.errors import AuthenticationError, ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from core.tenancy import Role, TenantContext
from lifecycle.statuses import CandidateStatus

from . import repository, schemas, security

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _to_user_response(user_row: dict) -> schemas.UserResponse:
    return schemas.UserResponse(
        id=int(user_row["id"]),
        tenant_id=int(user_row["tenant_id"]),
        email=str(user_row["email"]),
        role=Role(user_row["role"]),
        is_active=bool(user_row["is_active"]),
        created_at=user_row["created_at"],
    )


async def _issue_token_pair(
    conn: asyncpg.Connection,
    *,
    user_row: dict,
    user_agent: str | None = None,
    ip_address: str | None = None,
    replaced_token_id: int | None = None,
) -> schemas.TokenPairResponse:
    user_id = int(user_row["id"])

    access_token = security.build_access_token(
        user_id=user_id,
        tenant_id=int(user_row["tenant_id"]),
        role=str(user_row["role"]),
    )
    raw_refresh_token = security.build_refresh_token()
    refresh_hash = security.hash_refresh_token(raw_refresh_token)
    expires_at = _utc_now() + timedelta(days=security.refresh_token_expire_days())

    refresh_row = await repository.insert_refresh_token(
        conn,
        user_id=user_id,
        token_hash=refresh_hash,
        expires_at=expires_at,
        user_agent=user_agent,
        ip_address=ip_address,
    )

    if replaced_token_id is not None:
        await repository.set_refresh_token_replacement(
            conn,
            old_token_id=replaced_token_id,
            new_token_id=int(refresh_row["id"]),
        )

    return schemas.TokenPairResponse(
        access_token=access_token,
        refresh_token=raw_refresh_token,
    )


def _hash_password(plain_password: str) -> str:
    try:
        return security.hash_password(plain_password)
    except security.AuthSecurityError as exc:
        raise ValidationError(str(exc)) from exc


def _full_name(first_name: str | None, last_name: str | None, email: str) -> str:
    name = " ".join(part.strip() for part in (first_name or "", last_name or "") if part and part.strip())
    return name or repository.normalize_email(email)


async def register(
    conn: asyncpg.Connection,
    payload: schemas.RegisterRequest,
    *,
    user_agent: str | None = None,
    ip_address: str | None = None,
) -> schemas.AuthResponse:
    """
    Self-registration always creates a candidate login plus its profile.
    """
    tenant = await repository.get_tenant_by_slug(conn, payload.tenant)
    if tenant is None or not bool(tenant.get("is_active", False)):
        raise NotFoundError.for_entity("Tenant")

    existing = await repository.get_user_by_email(conn, payload.email)
    if existing is not None:
        raise ConflictError("Email is already registered.")

    password_hash = _hash_password(payload.password)
    async with conn.transaction():
        try:
            user_row = await repository.create_user(
                conn,
                tenant_id=int(tenant["id"]),
                email=payload.email,
                password_hash=password_hash,
                role=Role.CANDIDATE.value,
                first_name=payload.first_name,
                last_name=payload.last_name,
            )
        except asyncpg.UniqueViolationError as exc:
            raise ConflictError("Email is already registered.") from exc

        ctx = TenantContext(tenant_id=int(tenant["id"]), user_id=int(user_row["id"]), role=Role.CANDIDATE)
        await candidate_repository.insert_candidate(
            conn,
            ctx,
            user_id=int(user_row["id"]),
            full_name=_full_name(payload.first_name, payload.last_name, payload.email),
            email=repository.normalize_email(payload.email),
            phone=payload.phone,
            status=CandidateStatus.REGISTERED,
        )
        tokens = await _issue_token_pair(
            conn,
            user_row=user_row,
            user_agent=user_agent,
            ip_address=ip_address,
        )

    logger.info("user_registered user_id=%s tenant_id=%s", user_row["id"], tenant["id"])
    return schemas.AuthResponse(user=_to_user_response(user_row), tokens=tokens)


async def create_user(
    conn: asyncpg.Connection,
    ctx: TenantContext,
    payload: schemas.CreateUserRequest,
) -> schemas.UserResponse:
    """
    Admin-created logins land in the admin's own tenant.
    """
    if not ctx.is_admin:
        raise PermissionDeniedError("Insufficient permissions.")

    existing = await repository.get_user_by_email(conn, payload.email)
    if existing is not None:
        raise ConflictError("Email is already registered.")

    async with conn.transaction():
        try:
            user_row = await repository.create_user(
                conn,
                tenant_id=ctx.tenant_id,
                email=payload.email,
                password_hash=_hash_password(payload.password),
                role=payload.role.value,
                first_name=payload.first_name,
                last_name=payload.last_name,
            )
        except asyncpg.UniqueViolationError as exc:
            raise ConflictError("Email is already registered.") from exc

        if payload.role is Role.CANDIDATE:
            await candidate_repository.insert_candidate(
                conn,
                ctx,
                user_id=int(user_row["id"]),
                full_name=_full_name(payload.first_name, payload.last_name, payload.email),
                email=repository.normalize_email(payload.email),
                phone=None,
                status=CandidateStatus.REGISTERED,
            )

    return _to_user_response(user_row)


async def login(
    conn: asyncpg.Connection,
    payload: schemas.LoginRequest,
    *,
    user_agent: str | None = None,
    ip_address: str | None = None,
) -> schemas.AuthResponse:
    user_row = await repository.get_user_by_email(conn, payload.email)
    if user_row is None:
        raise AuthenticationError("Invalid email or password.")

    if not bool(user_row.get("is_active", False)):
        raise PermissionDeniedError("User is inactive.")

    is_valid = security.verify_password(payload.password, str(user_row.get("password_hash") or ""))
    if not is_valid:
        raise AuthenticationError("Invalid email or password.")

    tokens = await _issue_token_pair(
        conn,
        user_row=user_row,
        user_agent=user_agent,
        ip_address=ip_address,
    )
    return schemas.AuthResponse(user=_to_user_response(user_row), tokens=tokens)


async def refresh_tokens(
    conn: asyncpg.Connection,
    payload: schemas.RefreshRequest,
    *,
    user_agent: str | None = None,
    ip_address: str | None = None,
) -> schemas.TokenPairResponse:
    incoming_refresh = (payload.refresh_token or "").strip()
    if not incoming_refresh:
        raise ValidationError("refresh_token is required.")

    incoming_hash = security.hash_refresh_token(incoming_refresh)
    old_token_row = await repository.get_refresh_token_by_hash(conn, incoming_hash)
    if old_token_row is None:
        raise AuthenticationError("Invalid refresh token.")

    if old_token_row.get("revoked_at") is not None:
        raise AuthenticationError("Refresh token is revoked.")

    expires_at = old_token_row.get("expires_at")
    if not isinstance(expires_at, datetime) or expires_at <= _utc_now():
        # Revoke expired token as cleanup.
        await repository.revoke_refresh_token_by_id(conn, int(old_token_row["id"]))
        raise AuthenticationError("Refresh token is expired.")

    user_row = await repository.get_user_by_id(conn, int(old_token_row["user_id"]))
    if user_row is None or not bool(user_row.get("is_active", False)):
        await repository.revoke_refresh_token_by_id(conn, int(old_token_row["id"]))
        raise AuthenticationError("Invalid refresh token owner.")

    async with conn.transaction():
        # Two concurrent refreshes with the same token: only one may rotate it.
        if not await repository.claim_refresh_token(conn, int(old_token_row["id"])):
            raise AuthenticationError("Refresh token is revoked.")

        return await _issue_token_pair(
            conn,
            user_row=user_row,
            user_agent=user_agent,
            ip_address=ip_address,
            replaced_token_id=int(old_token_row["id"]),
        )


async def logout(
    conn: asyncpg.Connection,
    payload: schemas.LogoutRequest,
    *,
    current_user_id: int | None = None,
) -> dict[str, bool]:
    # If specific refresh token is provided, revoke only that token.
    refresh_token = (payload.refresh_token or "").strip()
    if refresh_token:
        token_hash = security.hash_refresh_token(refresh_token)
        await repository.revoke_refresh_token_by_hash(conn, token_hash)
        return {"ok": True}

    # If token is not provided, but user is authenticated, revoke all sessions.
    if current_user_id is not None:
        await repository.revoke_all_refresh_tokens_for_user(conn, current_user_id)
        return {"ok": True}

    raise ValidationError("Provide refresh_token or authenticated user.")


async def get_context_from_access_token(conn: asyncpg.Connection, access_token: str) -> TenantContext:
    try:
        payload = security.decode_access_token(access_token)
    except security.AuthSecurityError as exc:
        raise AuthenticationError(str(exc)) from exc

    subject = str(payload.get("sub") or "").strip()
    if not subject.isdigit():
        raise AuthenticationError("Invalid access token subject.")

    user_row = await repository.get_user_by_id(conn, int(subject))
    if user_row is None:
        raise AuthenticationError("User not found.")
    if not bool(user_row.get("is_active", False)):
        raise PermissionDeniedError("User is inactive.")
    if payload.get("tenant_id") != user_row["tenant_id"]:
        raise AuthenticationError("Invalid access token tenant.")

    # Role comes from the database so demotions take effect immediately.
    return TenantContext(
        tenant_id=int(user_row["tenant_id"]),
        user_id=int(user_row["id"]),
        role=Role(user_row["role"]),
    )


async def me(conn: asyncpg.Connection, ctx: TenantContext) -> schemas.UserResponse:
    user_row = await repository.get_user_by_id(conn, ctx.user_id)
    if user_row is None:
        raise AuthenticationError("User not found.")
    return _to_user_response(user_row)
