"""
Course API schemas.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

from lifecycle.statuses import CourseStatus


class CourseCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    code: str = Field(..., min_length=1, max_length=50)
    description: str | None = Field(default=None, max_length=5000)
    status: CourseStatus = CourseStatus.ACTIVE


class CourseEnrollRequest(BaseModel):
    candidate_id: int = Field(..., ge=1)
