"""
Transition rules.

Each entity has an action enum and a rule table mapping every action to the
statuses it may start from, the status it produces and the side effects the
handler must apply. `decide(...)` is the only entry point services use; it
either returns a `Transition` or raises `InvalidStateError`.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

from core.errors import InvalidStateError

from .statuses import (
    ACTIVE_PLACEMENT_STATUSES,
    CandidateStatus,
    CertificateRequestStatus,
    CertificateStatus,
    CohortEnrollmentStatus,
    CohortStatus,
    CourseEnrollmentStatus,
    PlacementStatus,
    VettingStatus,
)


class Effect(str, Enum):
    CLAIM_SEAT = "claim_seat"
    RELEASE_SEAT = "release_seat"
    STAMP_APPROVAL_DATE = "stamp_approval_date"
    STAMP_WITHDRAWAL_DATE = "stamp_withdrawal_date"
    STAMP_COMPLETION_DATE = "stamp_completion_date"
    REQUIRE_REASON = "require_reason"
    NOTIFY_CANDIDATE = "notify_candidate"
    CANDIDATE_ENROLLED = "candidate_enrolled"
    CANDIDATE_VETTING_CLEARED = "candidate_vetting_cleared"
    CANDIDATE_VETTING_REJECTED = "candidate_vetting_rejected"
    CANDIDATE_PLACED = "candidate_placed"
    ISSUE_CERTIFICATE = "issue_certificate"


class CohortAction(str, Enum):
    PUBLISH = "publish"
    OPEN_ENROLLMENT = "open_enrollment"
    CLOSE_ENROLLMENT = "close_enrollment"
    START_TRAINING = "start_training"
    START_ASSESSMENT = "start_assessment"
    START_VETTING = "start_vetting"
    COMPLETE = "complete"
    ARCHIVE = "archive"


class ApplicationAction(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    WITHDRAW = "withdraw"
    COMPLETE = "complete"


class VettingAction(str, Enum):
    REQUEST_DOCUMENTS = "request_documents"
    SUBMIT_DOCUMENTS = "submit_documents"
    START_REVIEW = "start_review"
    CLEAR = "clear"
    REJECT = "reject"


class CertificateAction(str, Enum):
    REVOKE = "revoke"
    REISSUE = "reissue"


class CourseEnrollmentAction(str, Enum):
    START = "start"
    COMPLETE = "complete"
    DROP = "drop"


class PlacementAction(str, Enum):
    SCHEDULE_INTERVIEW = "schedule_interview"
    SEND_OFFER = "send_offer"
    START_VISA = "start_visa"
    MARK_TRAVEL_READY = "mark_travel_ready"
    COMPLETE = "complete"
    CANCEL = "cancel"


class CertificateRequestAction(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"


S = TypeVar("S", bound=Enum)
A = TypeVar("A", bound=Enum)


@dataclass(frozen=True)
class Rule(Generic[S]):
    sources: frozenset[S]
    # None means the source row keeps its status (e.g. reissue copies it).
    target: S | None
    effects: frozenset[Effect] = frozenset()


@dataclass(frozen=True)
class Transition(Generic[S, A]):
    entity: str
    action: A
    source: S
    target: S
    effects: frozenset[Effect]

    def has(self, effect: Effect) -> bool:
        return effect in self.effects


def _rule(sources: set | frozenset, target, *effects: Effect) -> Rule:
    return Rule(sources=frozenset(sources), target=target, effects=frozenset(effects))


COHORT_RULES: dict[CohortAction, Rule[CohortStatus]] = {
    CohortAction.PUBLISH: _rule({CohortStatus.DRAFT}, CohortStatus.PUBLISHED),
    CohortAction.OPEN_ENROLLMENT: _rule({CohortStatus.PUBLISHED}, CohortStatus.ENROLLMENT_OPEN),
    CohortAction.CLOSE_ENROLLMENT: _rule({CohortStatus.ENROLLMENT_OPEN}, CohortStatus.ENROLLMENT_CLOSED),
    CohortAction.START_TRAINING: _rule({CohortStatus.ENROLLMENT_CLOSED}, CohortStatus.IN_TRAINING),
    CohortAction.START_ASSESSMENT: _rule({CohortStatus.IN_TRAINING}, CohortStatus.ASSESSMENT_IN_PROGRESS),
    CohortAction.START_VETTING: _rule(
        {CohortStatus.IN_TRAINING, CohortStatus.ASSESSMENT_IN_PROGRESS},
        CohortStatus.VETTING_IN_PROGRESS,
    ),
    CohortAction.COMPLETE: _rule(
        {CohortStatus.ASSESSMENT_IN_PROGRESS, CohortStatus.VETTING_IN_PROGRESS},
        CohortStatus.COMPLETED,
    ),
    CohortAction.ARCHIVE: _rule({CohortStatus.COMPLETED}, CohortStatus.ARCHIVED),
}

APPLICATION_RULES: dict[ApplicationAction, Rule[CohortEnrollmentStatus]] = {
    ApplicationAction.APPROVE: _rule(
        {CohortEnrollmentStatus.APPLIED},
        CohortEnrollmentStatus.ENROLLED,
        Effect.CLAIM_SEAT,
        Effect.STAMP_APPROVAL_DATE,
        Effect.CANDIDATE_ENROLLED,
        Effect.NOTIFY_CANDIDATE,
    ),
    ApplicationAction.REJECT: _rule(
        {CohortEnrollmentStatus.APPLIED},
        CohortEnrollmentStatus.REJECTED,
        Effect.REQUIRE_REASON,
        Effect.NOTIFY_CANDIDATE,
    ),
    ApplicationAction.WITHDRAW: _rule(
        {CohortEnrollmentStatus.APPLIED, CohortEnrollmentStatus.ENROLLED},
        CohortEnrollmentStatus.WITHDRAWN,
        Effect.STAMP_WITHDRAWAL_DATE,
        Effect.NOTIFY_CANDIDATE,
    ),
    ApplicationAction.COMPLETE: _rule(
        {CohortEnrollmentStatus.ENROLLED},
        CohortEnrollmentStatus.COMPLETED,
        Effect.NOTIFY_CANDIDATE,
    ),
}

VETTING_RULES: dict[VettingAction, Rule[VettingStatus]] = {
    VettingAction.REQUEST_DOCUMENTS: _rule(
        {VettingStatus.PENDING, VettingStatus.IN_PROGRESS},
        VettingStatus.PENDING_DOCUMENTS,
        Effect.NOTIFY_CANDIDATE,
    ),
    VettingAction.SUBMIT_DOCUMENTS: _rule({VettingStatus.PENDING_DOCUMENTS}, VettingStatus.IN_PROGRESS),
    VettingAction.START_REVIEW: _rule({VettingStatus.PENDING_DOCUMENTS}, VettingStatus.IN_PROGRESS),
    VettingAction.CLEAR: _rule(
        {VettingStatus.IN_PROGRESS},
        VettingStatus.CLEARED,
        Effect.CANDIDATE_VETTING_CLEARED,
        Effect.NOTIFY_CANDIDATE,
    ),
    VettingAction.REJECT: _rule(
        {VettingStatus.IN_PROGRESS},
        VettingStatus.REJECTED,
        Effect.CANDIDATE_VETTING_REJECTED,
        Effect.NOTIFY_CANDIDATE,
    ),
}

CERTIFICATE_RULES: dict[CertificateAction, Rule[CertificateStatus]] = {
    CertificateAction.REVOKE: _rule(
        {CertificateStatus.ISSUED, CertificateStatus.REISSUED},
        CertificateStatus.REVOKED,
        Effect.NOTIFY_CANDIDATE,
    ),
    CertificateAction.REISSUE: _rule(
        {CertificateStatus.ISSUED, CertificateStatus.REISSUED},
        None,
        Effect.NOTIFY_CANDIDATE,
    ),
}

COURSE_ENROLLMENT_RULES: dict[CourseEnrollmentAction, Rule[CourseEnrollmentStatus]] = {
    CourseEnrollmentAction.START: _rule({CourseEnrollmentStatus.ENROLLED}, CourseEnrollmentStatus.IN_PROGRESS),
    CourseEnrollmentAction.COMPLETE: _rule(
        {CourseEnrollmentStatus.IN_PROGRESS},
        CourseEnrollmentStatus.COMPLETED,
        Effect.STAMP_COMPLETION_DATE,
    ),
    CourseEnrollmentAction.DROP: _rule(
        {CourseEnrollmentStatus.ENROLLED, CourseEnrollmentStatus.IN_PROGRESS},
        CourseEnrollmentStatus.DROPPED,
    ),
}

PLACEMENT_RULES: dict[PlacementAction, Rule[PlacementStatus]] = {
    PlacementAction.SCHEDULE_INTERVIEW: _rule(
        {PlacementStatus.INITIATED, PlacementStatus.INTERVIEW_SCHEDULED},
        PlacementStatus.INTERVIEW_SCHEDULED,
        Effect.NOTIFY_CANDIDATE,
    ),
    PlacementAction.SEND_OFFER: _rule(
        {PlacementStatus.INTERVIEW_SCHEDULED},
        PlacementStatus.OFFER_LETTER_SENT,
        Effect.NOTIFY_CANDIDATE,
    ),
    PlacementAction.START_VISA: _rule({PlacementStatus.OFFER_LETTER_SENT}, PlacementStatus.VISA_PROCESSING),
    PlacementAction.MARK_TRAVEL_READY: _rule(
        {PlacementStatus.VISA_PROCESSING},
        PlacementStatus.TRAVEL_READY,
        Effect.NOTIFY_CANDIDATE,
    ),
    PlacementAction.COMPLETE: _rule(
        {PlacementStatus.TRAVEL_READY},
        PlacementStatus.COMPLETED,
        Effect.STAMP_COMPLETION_DATE,
        Effect.CANDIDATE_PLACED,
        Effect.NOTIFY_CANDIDATE,
    ),
    PlacementAction.CANCEL: _rule(
        ACTIVE_PLACEMENT_STATUSES,
        PlacementStatus.CANCELLED,
        Effect.REQUIRE_REASON,
        Effect.NOTIFY_CANDIDATE,
    ),
}

CERTIFICATE_REQUEST_RULES: dict[CertificateRequestAction, Rule[CertificateRequestStatus]] = {
    CertificateRequestAction.APPROVE: _rule(
        {CertificateRequestStatus.PENDING},
        CertificateRequestStatus.APPROVED,
        Effect.ISSUE_CERTIFICATE,
    ),
    CertificateRequestAction.REJECT: _rule(
        {CertificateRequestStatus.PENDING},
        CertificateRequestStatus.REJECTED,
        Effect.REQUIRE_REASON,
        Effect.NOTIFY_CANDIDATE,
    ),
}

# Recruiter pipeline: current stage -> stages a recruiter may move to.
PIPELINE_TRANSITIONS: dict[CandidateStatus, frozenset[CandidateStatus]] = {
    CandidateStatus.REGISTERED: frozenset({CandidateStatus.APPLIED, CandidateStatus.CANCELLED}),
    CandidateStatus.APPLIED: frozenset(
        {CandidateStatus.UNDER_REVIEW, CandidateStatus.WAITLISTED, CandidateStatus.CANCELLED}
    ),
    CandidateStatus.UNDER_REVIEW: frozenset(
        {CandidateStatus.ENROLLED, CandidateStatus.WAITLISTED, CandidateStatus.CANCELLED}
    ),
    CandidateStatus.ENROLLED: frozenset(
        {CandidateStatus.PLACED, CandidateStatus.WAITLISTED, CandidateStatus.CANCELLED}
    ),
    CandidateStatus.WAITLISTED: frozenset({CandidateStatus.UNDER_REVIEW, CandidateStatus.CANCELLED}),
    CandidateStatus.VETTING: frozenset({CandidateStatus.CANCELLED}),
    CandidateStatus.CLEARED: frozenset({CandidateStatus.PLACED, CandidateStatus.CANCELLED}),
    CandidateStatus.PLACED: frozenset(),
    CandidateStatus.CANCELLED: frozenset(),
}


class CandidateEvent(str, Enum):
    ENROLLMENT_APPROVED = "enrollment_approved"
    VETTING_STARTED = "vetting_started"
    VETTING_CLEARED = "vetting_cleared"
    VETTING_REJECTED = "vetting_rejected"
    PLACEMENT_COMPLETED = "placement_completed"


# Workflow-driven candidate moves. A candidate outside the source set keeps
# its current status (e.g. an already PLACED candidate is not pulled back).
CANDIDATE_EVENT_RULES: dict[CandidateEvent, Rule[CandidateStatus]] = {
    CandidateEvent.ENROLLMENT_APPROVED: _rule(
        {
            CandidateStatus.REGISTERED,
            CandidateStatus.APPLIED,
            CandidateStatus.UNDER_REVIEW,
            CandidateStatus.WAITLISTED,
        },
        CandidateStatus.ENROLLED,
    ),
    CandidateEvent.VETTING_STARTED: _rule({CandidateStatus.ENROLLED}, CandidateStatus.VETTING),
    CandidateEvent.VETTING_CLEARED: _rule(
        {CandidateStatus.VETTING, CandidateStatus.ENROLLED},
        CandidateStatus.CLEARED,
    ),
    CandidateEvent.VETTING_REJECTED: _rule({CandidateStatus.VETTING}, CandidateStatus.ENROLLED),
    CandidateEvent.PLACEMENT_COMPLETED: _rule({CandidateStatus.CLEARED}, CandidateStatus.PLACED),
}


def _label(value: Enum) -> str:
    return str(value.value).replace("_", " ").lower()


def decide(entity: str, rules: dict[A, Rule[S]], current: S, action: A) -> Transition[S, A]:
    rule = rules.get(action)
    if rule is None or current not in rule.sources:
        raise InvalidStateError(
            f"Cannot {_label(action)} {entity} in status {current.value}."
        )
    target = rule.target if rule.target is not None else current
    return Transition(
        entity=entity,
        action=action,
        source=current,
        target=target,
        effects=rule.effects,
    )


def cohort(current: CohortStatus, action: CohortAction) -> Transition[CohortStatus, CohortAction]:
    return decide("cohort", COHORT_RULES, current, action)


def application(
    current: CohortEnrollmentStatus, action: ApplicationAction
) -> Transition[CohortEnrollmentStatus, ApplicationAction]:
    return decide("cohort application", APPLICATION_RULES, current, action)


def vetting(current: VettingStatus, action: VettingAction) -> Transition[VettingStatus, VettingAction]:
    return decide("vetting record", VETTING_RULES, current, action)


def certificate(
    current: CertificateStatus, action: CertificateAction
) -> Transition[CertificateStatus, CertificateAction]:
    return decide("certificate", CERTIFICATE_RULES, current, action)


def course_enrollment(
    current: CourseEnrollmentStatus, action: CourseEnrollmentAction
) -> Transition[CourseEnrollmentStatus, CourseEnrollmentAction]:
    return decide("course enrollment", COURSE_ENROLLMENT_RULES, current, action)


def pipeline(current: CandidateStatus, next_stage: CandidateStatus) -> CandidateStatus:
    """
    Validate a recruiter-driven stage move.

    Staying on the same stage is allowed so recruiters can log comments and
    blockers without moving the candidate.
    """
    if current is next_stage:
        return next_stage
    if next_stage not in PIPELINE_TRANSITIONS.get(current, frozenset()):
        raise InvalidStateError(f"Cannot move candidate from {current.value} to {next_stage.value}.")
    return next_stage


def candidate_after(current: CandidateStatus, event: CandidateEvent) -> CandidateStatus | None:
    """
    Status a workflow event moves the candidate to, or None when it stays put.
    """
    rule = CANDIDATE_EVENT_RULES[event]
    if current in rule.sources:
        return rule.target
    return None


def placement(current: PlacementStatus, action: PlacementAction) -> Transition[PlacementStatus, PlacementAction]:
    return decide("placement", PLACEMENT_RULES, current, action)


def certificate_request(
    current: CertificateRequestStatus, action: CertificateRequestAction
) -> Transition[CertificateRequestStatus, CertificateRequestAction]:
    return decide("certificate request", CERTIFICATE_REQUEST_RULES, current, action)
