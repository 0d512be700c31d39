"""
Certificate and certificate-template API schemas.
"""

from __future__ import annotations

from datetime import date
from typing import Any

from pydantic import BaseModel, Field


class IssueCertificateRequest(BaseModel):
    enrollment_id: int = Field(..., ge=1, description="Course enrollment the certificate attests to.")
    override: bool = Field(default=False, description="Issue even if the enrollment is not COMPLETED.")
    template_id: int | None = Field(default=None, ge=1)
    grade: str | None = Field(default=None, max_length=20)
    expiry_date: date | None = None
    remarks: str | None = Field(default=None, max_length=2000)


class RevokeCertificateRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=2000)


class TemplateCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=2000)
    design: dict[str, Any] = Field(default_factory=dict)
    content: str | None = Field(default=None, max_length=20000)
    is_active: bool = True


class TemplateUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=2000)
    design: dict[str, Any] | None = None
    content: str | None = Field(default=None, max_length=20000)


class CertificateRequestCreate(BaseModel):
    enrollment_id: int = Field(..., ge=1)
    remarks: str | None = Field(default=None, max_length=2000)


class ApproveCertificateRequest(BaseModel):
    template_id: int | None = Field(default=None, ge=1)
    grade: str | None = Field(default=None, max_length=20)
    expiry_date: date | None = None


class RejectCertificateRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=2000)
