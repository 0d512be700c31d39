"""
Placement API schemas: employer companies, job openings and placements.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import AliasChoices, BaseModel, Field

from lifecycle.statuses import CompanyStatus


class CompanyCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    email: str | None = Field(default=None, max_length=320)
    phone: str | None = Field(default=None, max_length=50)
    country: str | None = Field(default=None, max_length=100)
    industry: str | None = Field(default=None, max_length=100)
    contact_person: str | None = Field(
        default=None,
        max_length=200,
        validation_alias=AliasChoices("contact_person", "contactPerson"),
    )
    website: str | None = Field(default=None, max_length=500)


class CompanyUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    email: str | None = Field(default=None, max_length=320)
    phone: str | None = Field(default=None, max_length=50)
    country: str | None = Field(default=None, max_length=100)
    industry: str | None = Field(default=None, max_length=100)
    contact_person: str | None = Field(
        default=None,
        max_length=200,
        validation_alias=AliasChoices("contact_person", "contactPerson"),
    )
    website: str | None = Field(default=None, max_length=500)
    status: CompanyStatus | None = None


class JobOpeningCreateRequest(BaseModel):
    company_id: int = Field(..., ge=1, validation_alias=AliasChoices("company_id", "companyId"))
    job_title: str = Field(..., min_length=1, max_length=200, validation_alias=AliasChoices("job_title", "jobTitle"))
    location: str | None = Field(default=None, max_length=200)
    job_type: str | None = Field(default=None, max_length=100, validation_alias=AliasChoices("job_type", "jobType"))
    openings: int = Field(default=1, ge=1, le=10000)
    salary_range: str | None = Field(
        default=None,
        max_length=100,
        validation_alias=AliasChoices("salary_range", "salaryRange"),
    )
    description: str | None = Field(default=None, max_length=5000)


class PlacementCreateRequest(BaseModel):
    candidate_id: int = Field(..., ge=1, validation_alias=AliasChoices("candidate_id", "candidateId"))
    company_id: int = Field(..., ge=1, validation_alias=AliasChoices("company_id", "companyId"))
    job_opening_id: int | None = Field(
        default=None,
        ge=1,
        validation_alias=AliasChoices("job_opening_id", "jobOpeningId"),
    )
    # Defaults to the job opening's title when an opening is given.
    job_role_offered: str | None = Field(
        default=None,
        max_length=200,
        validation_alias=AliasChoices("job_role_offered", "jobRoleOffered"),
    )
    country: str | None = Field(default=None, max_length=100)


class PlacementTransitionRequest(BaseModel):
    interview_date: datetime | None = Field(
        default=None,
        validation_alias=AliasChoices("interview_date", "interviewDate"),
    )
    reason: str | None = Field(default=None, max_length=2000)
