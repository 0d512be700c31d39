"""
Candidate API schemas.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

from lifecycle.statuses import CandidateStatus


class CandidateCreateRequest(BaseModel):
    full_name: str = Field(..., min_length=1, max_length=200)
    email: str | None = Field(default=None, max_length=320)
    phone: str | None = Field(default=None, max_length=40)
    preferred_country: str | None = Field(default=None, max_length=100)
    recruiter_id: int | None = Field(default=None, ge=1)


class AssignRecruiterRequest(BaseModel):
    recruiter_id: int = Field(..., ge=1)


class PipelineTransitionRequest(BaseModel):
    next_stage: CandidateStatus
    comment: str | None = Field(default=None, max_length=2000)
    is_blocked: bool = False
    blocker_reason: str | None = Field(default=None, max_length=2000)
