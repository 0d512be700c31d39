"""
Cohort API schemas.
"""

from __future__ import annotations

from datetime import date

from pydantic import AliasChoices, BaseModel, Field

from lifecycle.statuses import AssessmentResult, CohortEnrollmentStatus


class CohortCreateRequest(BaseModel):
    course_id: int = Field(..., ge=1)
    cohort_name: str = Field(..., min_length=1, max_length=200)
    cohort_code: str = Field(..., min_length=1, max_length=50)
    description: str | None = Field(default=None, max_length=5000)
    max_capacity: int = Field(..., ge=1, le=10000)
    lead_trainer_id: int | None = Field(default=None, ge=1)
    start_date: date
    end_date: date
    enrollment_deadline: date | None = None


class CohortUpdateRequest(BaseModel):
    cohort_name: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=5000)
    max_capacity: int | None = Field(default=None, ge=1, le=10000)
    lead_trainer_id: int | None = Field(default=None, ge=1)
    start_date: date | None = None
    end_date: date | None = None
    enrollment_deadline: date | None = None


class CohortEnrollRequest(BaseModel):
    candidate_id: int = Field(..., ge=1, validation_alias=AliasChoices("candidate_id", "candidateId"))
    enrollment_status: CohortEnrollmentStatus = Field(
        default=CohortEnrollmentStatus.ENROLLED,
        validation_alias=AliasChoices("enrollment_status", "enrollmentStatus"),
    )


class RejectApplicationRequest(BaseModel):
    # Blank reasons are rejected by the service with a domain error.
    reason: str | None = Field(default=None, max_length=2000)


class EnrollmentMetricsRequest(BaseModel):
    attendance_rate: float | None = Field(default=None, ge=0, le=100)
    assessment_score: float | None = Field(default=None, ge=0, le=100)
    assessment_result: AssessmentResult | None = None
    placement_ready: bool | None = None
