"""Submission lifecycle.

    draft -> submitted -> under_review -> published
                                      -> rejected
                          under_review -> draft   (reviewer requests changes)

Owners drive ``draft -> submitted``; every other edge needs the reviewer
capability. ``published`` and ``rejected`` are terminal.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass

from encyclopedia.app.errors import ConflictError, ForbiddenError


class SubmissionStatus(str, enum.Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    PUBLISHED = "published"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


class ReviewAction(str, enum.Enum):
    START_REVIEW = "start_review"
    PUBLISH = "publish"
    REJECT = "reject"
    REQUEST_CHANGES = "request_changes"


@dataclass(frozen=True)
class Transition:
    source: SubmissionStatus
    target: SubmissionStatus
    reviewer_only: bool


TERMINAL_STATUSES: frozenset[SubmissionStatus] = frozenset(
    {SubmissionStatus.PUBLISHED, SubmissionStatus.REJECTED}
)

SUBMIT_TRANSITION = Transition(SubmissionStatus.DRAFT, SubmissionStatus.SUBMITTED, reviewer_only=False)

REVIEW_TRANSITIONS: dict[ReviewAction, Transition] = {
    ReviewAction.START_REVIEW: Transition(
        SubmissionStatus.SUBMITTED, SubmissionStatus.UNDER_REVIEW, reviewer_only=True
    ),
    ReviewAction.PUBLISH: Transition(
        SubmissionStatus.UNDER_REVIEW, SubmissionStatus.PUBLISHED, reviewer_only=True
    ),
    ReviewAction.REJECT: Transition(
        SubmissionStatus.UNDER_REVIEW, SubmissionStatus.REJECTED, reviewer_only=True
    ),
    ReviewAction.REQUEST_CHANGES: Transition(
        SubmissionStatus.UNDER_REVIEW, SubmissionStatus.DRAFT, reviewer_only=True
    ),
}

VALID_TRANSITIONS: dict[SubmissionStatus, frozenset[SubmissionStatus]] = {
    status: frozenset(
        transition.target
        for transition in (SUBMIT_TRANSITION, *REVIEW_TRANSITIONS.values())
        if transition.source == status
    )
    for status in SubmissionStatus
}


def can_transition(source: SubmissionStatus, target: SubmissionStatus) -> bool:
    return target in VALID_TRANSITIONS[source]


def apply_transition(
    transition: Transition,
    current: SubmissionStatus,
    *,
    is_reviewer: bool,
) -> SubmissionStatus:
    """Validate ``transition`` from ``current`` and return the target status."""
    if transition.reviewer_only and not is_reviewer:
        raise ForbiddenError("Only reviewers can perform this transition")
    if not can_transition(current, transition.target):
        message = f"Cannot move a {current.value} submission to {transition.target.value}"
        if current.is_terminal:
            message = f"Submission is {current.value} and can no longer change status"
        raise ConflictError(
            message,
            current_status=current.value,
            allowed_statuses=[
                status.value for status in SubmissionStatus if can_transition(status, transition.target)
            ],
        )
    return transition.target
