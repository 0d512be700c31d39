"""
Domain error taxonomy.

Services raise these; `api/main.py` maps them to HTTP responses with the
`{"success": false, "message": ...}` envelope. Messages are stable and safe
to show to callers.
"""

from __future__ import annotations


class DomainError(RuntimeError):
    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(DomainError):
    """
    Entity is absent or belongs to another tenant.

    Both cases must produce the same message so callers cannot discover other
    tenants' ids.
    """

    status_code = 404

    @classmethod
    def for_entity(cls, entity: str) -> "NotFoundError":
        return cls(f"{entity} not found.")


class InvalidStateError(DomainError):
    status_code = 400


class ValidationError(DomainError):
    status_code = 400


class CapacityExceededError(DomainError):
    status_code = 409


class ConflictError(DomainError):
    status_code = 409


class PermissionDeniedError(DomainError):
    status_code = 403


class AuthenticationError(DomainError):
    status_code = 401


class NotificationDeliveryError(DomainError):
    status_code = 502
