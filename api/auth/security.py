"""
Password hashing and token primitives.

Access tokens are HS256 JWTs scoped to one tenant; refresh tokens are opaque
random strings stored only as SHA-256 hashes.
"""

from __future__ import annotations

import hashlib
import secrets
import time
from typing import Any

import bcrypt
import jwt

from core import config

ACCESS_TOKEN_CLAIMS = ("iss", "sub", "tenant_id", "type", "exp")


class AuthSecurityError(RuntimeError):
    pass


def jwt_secret() -> str:
    # Set JWT_SECRET in every deployed environment.
    return config.env_str("JWT_SECRET", "dev-change-this-secret")


def jwt_algorithm() -> str:
    return config.env_str("JWT_ALG", "HS256")


def jwt_issuer() -> str:
    return config.env_str("JWT_ISSUER", "labour-mobility-api")


def access_token_expire_minutes() -> int:
    return config.env_int("ACCESS_TOKEN_EXPIRE_MIN", 15)


def refresh_token_expire_days() -> int:
    return config.env_int("REFRESH_TOKEN_EXPIRE_DAYS", 30)


def now_epoch_s() -> int:
    return int(time.time())


BCRYPT_MAX_PASSWORD_BYTES = 72


def hash_password(plain_password: str) -> str:
    password = (plain_password or "").encode("utf-8")
    if not password:
        raise AuthSecurityError("Password is empty.")
    if len(password) > BCRYPT_MAX_PASSWORD_BYTES:
        raise AuthSecurityError(f"Password must be at most {BCRYPT_MAX_PASSWORD_BYTES} bytes.")
    return bcrypt.hashpw(password, bcrypt.gensalt()).decode("utf-8")


def verify_password(plain_password: str, password_hash: str) -> bool:
    password = (plain_password or "").encode("utf-8")
    hashed = (password_hash or "").encode("utf-8")
    if not password or not hashed:
        return False
    try:
        return bcrypt.checkpw(password, hashed)
    except ValueError:
        return False


def build_access_token(*, user_id: int, tenant_id: int, role: str) -> str:
    """
    Short-lived JWT carrying the user, tenant and role.

    The role is informational for clients; requests re-read it from the
    database (see `service.get_context_from_access_token`).
    """
    issued_at = now_epoch_s()
    payload = {
        "iss": jwt_issuer(),
        "sub": str(user_id),
        "tenant_id": tenant_id,
        "role": role,
        "type": "access",
        "iat": issued_at,
        "exp": issued_at + access_token_expire_minutes() * 60,
    }
    return jwt.encode(payload, jwt_secret(), algorithm=jwt_algorithm())


def decode_access_token(token: str) -> dict[str, Any]:
    raw = (token or "").strip()
    if not raw:
        raise AuthSecurityError("Access token is empty.")

    try:
        payload = jwt.decode(
            raw,
            jwt_secret(),
            algorithms=[jwt_algorithm()],
            issuer=jwt_issuer(),
            options={"require": list(ACCESS_TOKEN_CLAIMS)},
        )
    except jwt.ExpiredSignatureError as exc:
        raise AuthSecurityError("Access token is expired.") from exc
    except jwt.MissingRequiredClaimError as exc:
        raise AuthSecurityError(f"Access token is missing the {exc.claim} claim.") from exc
    except jwt.InvalidTokenError as exc:
        raise AuthSecurityError("Invalid access token.") from exc

    if str(payload["type"]).strip().lower() != "access":
        raise AuthSecurityError("Token is not an access token.")
    if not isinstance(payload["tenant_id"], int) or payload["tenant_id"] <= 0:
        raise AuthSecurityError("Invalid access token tenant.")

    return payload


def build_refresh_token() -> str:
    # URL-safe random string for client storage/transmission.
    return secrets.token_urlsafe(48)


def hash_refresh_token(raw_refresh_token: str) -> str:
    token = (raw_refresh_token or "").encode("utf-8")
    if not token:
        raise AuthSecurityError("Refresh token is empty.")
    return hashlib.sha256(token).hexdigest()
