"""
Tenant scoping.

`TenantContext` is built by the auth dependency from the access token and is
a required argument of every repository function that reads or writes
tenant data.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    ADMIN = "ADMIN"
    RECRUITER = "RECRUITER"
    TRAINER = "TRAINER"
    CANDIDATE = "CANDIDATE"


@dataclass(frozen=True)
class TenantContext:
    tenant_id: int
    user_id: int
    role: Role

    def __post_init__(self) -> None:
        if not isinstance(self.tenant_id, int) or self.tenant_id <= 0:
            raise ValueError("TenantContext requires a positive tenant_id.")

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN

    def has_role(self, *roles: Role) -> bool:
        return self.role in roles
