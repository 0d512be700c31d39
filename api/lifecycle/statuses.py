"""
Closed status vocabularies.

Members inherit from `(str, Enum)` so they compare equal to the plain strings
stored in Postgres and serialize naturally to JSON.
"""

from __future__ import annotations

from enum import Enum
from typing import TypeVar

from core.errors import InvalidStateError


class CandidateStatus(str, Enum):
    REGISTERED = "REGISTERED"
    APPLIED = "APPLIED"
    UNDER_REVIEW = "UNDER_REVIEW"
    ENROLLED = "ENROLLED"
    WAITLISTED = "WAITLISTED"
    VETTING = "VETTING"
    CLEARED = "CLEARED"
    PLACED = "PLACED"
    CANCELLED = "CANCELLED"


class CourseStatus(str, Enum):
    DRAFT = "DRAFT"
    ACTIVE = "ACTIVE"
    ARCHIVED = "ARCHIVED"


class CourseEnrollmentStatus(str, Enum):
    ENROLLED = "ENROLLED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    DROPPED = "DROPPED"


class CohortStatus(str, Enum):
    DRAFT = "DRAFT"
    PUBLISHED = "PUBLISHED"
    ENROLLMENT_OPEN = "ENROLLMENT_OPEN"
    ENROLLMENT_CLOSED = "ENROLLMENT_CLOSED"
    IN_TRAINING = "IN_TRAINING"
    ASSESSMENT_IN_PROGRESS = "ASSESSMENT_IN_PROGRESS"
    VETTING_IN_PROGRESS = "VETTING_IN_PROGRESS"
    COMPLETED = "COMPLETED"
    ARCHIVED = "ARCHIVED"


class CohortEnrollmentStatus(str, Enum):
    APPLIED = "APPLIED"
    ENROLLED = "ENROLLED"
    REJECTED = "REJECTED"
    WITHDRAWN = "WITHDRAWN"
    COMPLETED = "COMPLETED"


class VettingStatus(str, Enum):
    PENDING = "PENDING"
    PENDING_DOCUMENTS = "PENDING_DOCUMENTS"
    IN_PROGRESS = "IN_PROGRESS"
    CLEARED = "CLEARED"
    REJECTED = "REJECTED"


class CertificateStatus(str, Enum):
    ISSUED = "ISSUED"
    REVOKED = "REVOKED"
    REISSUED = "REISSUED"


class AssessmentResult(str, Enum):
    PASS = "PASS"
    FAIL = "FAIL"


class CompanyStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class JobOpeningStatus(str, Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class PlacementStatus(str, Enum):
    INITIATED = "INITIATED"
    INTERVIEW_SCHEDULED = "INTERVIEW_SCHEDULED"
    OFFER_LETTER_SENT = "OFFER_LETTER_SENT"
    VISA_PROCESSING = "VISA_PROCESSING"
    TRAVEL_READY = "TRAVEL_READY"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class CertificateRequestStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


# Enrollments in these statuses hold a seat in the cohort.
SEAT_HOLDING_ENROLLMENT_STATUSES = frozenset(
    {CohortEnrollmentStatus.ENROLLED, CohortEnrollmentStatus.COMPLETED}
)

# Leaving a seat-holding status for one of these frees the seat.
INACTIVE_ENROLLMENT_STATUSES = frozenset(
    {CohortEnrollmentStatus.REJECTED, CohortEnrollmentStatus.WITHDRAWN}
)

# At most one vetting record per candidate may be in this set.
ACTIVE_VETTING_STATUSES = frozenset(
    {VettingStatus.PENDING, VettingStatus.PENDING_DOCUMENTS, VettingStatus.IN_PROGRESS}
)

# At most one placement per candidate may be in this set.
ACTIVE_PLACEMENT_STATUSES = frozenset(
    {
        PlacementStatus.INITIATED,
        PlacementStatus.INTERVIEW_SCHEDULED,
        PlacementStatus.OFFER_LETTER_SENT,
        PlacementStatus.VISA_PROCESSING,
        PlacementStatus.TRAVEL_READY,
    }
)

# Certificates in these statuses attest something; REVOKED ones do not.
VALID_CERTIFICATE_STATUSES = frozenset({CertificateStatus.ISSUED, CertificateStatus.REISSUED})


StatusT = TypeVar("StatusT", bound=Enum)


def parse_status(status_cls: type[StatusT], raw: object) -> StatusT:
    """
    Turn a stored status string into its enum member.

    A value outside the vocabulary means the row cannot take part in any
    transition.
    """
    try:
        return status_cls(raw)
    except ValueError as exc:
        raise InvalidStateError(f"Unknown {status_cls.__name__} value: {raw!r}.") from exc


def values(statuses: object) -> list[str]:
    """
    Plain string values for SQL `= ANY($n)` parameters.
    """
    return sorted(str(s.value) for s in statuses)  # type: ignore[attr-defined]
