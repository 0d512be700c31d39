"""
Vetting API schemas.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class VettingApplyRequest(BaseModel):
    cohort_enrollment_id: int = Field(..., ge=1)
    police_clearance_no: str | None = Field(default=None, max_length=100)
    medical_report_no: str | None = Field(default=None, max_length=100)


class VettingDocumentsRequest(BaseModel):
    police_clearance_url: str | None = Field(default=None, max_length=2000)
    medical_report_url: str | None = Field(default=None, max_length=2000)
    passport_url: str | None = Field(default=None, max_length=2000)
    police_clearance_no: str | None = Field(default=None, max_length=100)
    medical_report_no: str | None = Field(default=None, max_length=100)


class VettingReviewRequest(BaseModel):
    remarks: str | None = Field(default=None, max_length=2000)
