"""Application lifecycle: the single transition table every caller goes through.

:func:`plan_transition` is pure.  Given the current status and an action it
returns the target status together with the list of side effects the caller
must carry out, or raises :class:`~rars.errors.InvalidTransition`.  Services
perform the effects; nothing here touches the database.
"""

from dataclasses import dataclass
from enum import Enum

from rars.errors import InvalidTransition, ValidationFailure
from rars.models.enums import ApplicationStatus as S


class LifecycleAction(str, Enum):
    SUBMIT = "submit_application"
    START_SCREENING = "start_screening"
    RETURN = "return_application"
    FORWARD_TO_REVIEW = "forward_to_review"
    ASSIGN_REVIEWER = "assign_reviewer"
    COMPLETE_REVIEW = "submit_review"
    APPROVE = "approve"
    REJECT = "reject"
    ACTIVATE_RESEARCH = "activate_research"
    SUBMIT_FINAL = "submit_final"
    COMPLETE = "complete_application"
    PUBLISH = "publish_to_repository"


class Effect(str, Enum):
    STAMP_SCREENING_DEADLINE = "stamp_screening_deadline"
    STAMP_TURNAROUND_DEADLINE = "stamp_turnaround_deadline"
    APPEND_FEEDBACK_MESSAGE = "append_feedback_message"
    CREATE_REVIEW = "create_review"
    CREATE_DECISION = "create_decision"
    ISSUE_SIGNATURE = "issue_signature"
    GENERATE_LETTER = "generate_letter"
    CREATE_REPOSITORY_ITEM = "create_repository_item"
    NOTIFY_APPLICANT = "notify_applicant"
    EMAIL_APPLICANT = "email_applicant"
    NOTIFY_REVIEWER = "notify_reviewer"


@dataclass(frozen=True)
class Transition:
    source: S
    action: LifecycleAction
    target: S
    effects: tuple[Effect, ...] = ()


def _t(sources, action, target, *effects) -> list[Transition]:
    return [Transition(s, action, target, tuple(effects)) for s in sources]


_SUBMIT_EFFECTS = (Effect.STAMP_SCREENING_DEADLINE, Effect.NOTIFY_APPLICANT)
_DECISION_EFFECTS = (
    Effect.CREATE_DECISION,
    Effect.GENERATE_LETTER,
    Effect.NOTIFY_APPLICANT,
    Effect.EMAIL_APPLICANT,
)

_TABLE: list[Transition] = [
    *_t([S.DRAFT, S.RETURNED], LifecycleAction.SUBMIT, S.SUBMITTED, *_SUBMIT_EFFECTS),
    *_t([S.SUBMITTED], LifecycleAction.START_SCREENING, S.SCREENING),
    *_t(
        [S.SUBMITTED, S.SCREENING],
        LifecycleAction.RETURN,
        S.RETURNED,
        Effect.APPEND_FEEDBACK_MESSAGE,
        Effect.NOTIFY_APPLICANT,
        Effect.EMAIL_APPLICANT,
    ),
    *_t(
        [S.SUBMITTED, S.SCREENING],
        LifecycleAction.FORWARD_TO_REVIEW,
        S.IN_REVIEW,
        Effect.STAMP_TURNAROUND_DEADLINE,
    ),
    *_t(
        [S.SUBMITTED, S.SCREENING],
        LifecycleAction.ASSIGN_REVIEWER,
        S.IN_REVIEW,
        Effect.CREATE_REVIEW,
        Effect.STAMP_TURNAROUND_DEADLINE,
        Effect.NOTIFY_REVIEWER,
    ),
    # Additional stages may be assigned while the review is already running.
    *_t(
        [S.IN_REVIEW],
        LifecycleAction.ASSIGN_REVIEWER,
        S.IN_REVIEW,
        Effect.CREATE_REVIEW,
        Effect.NOTIFY_REVIEWER,
    ),
    *_t([S.IN_REVIEW], LifecycleAction.COMPLETE_REVIEW, S.ED_DECISION),
    *_t(
        [S.ED_DECISION],
        LifecycleAction.APPROVE,
        S.APPROVED,
        Effect.CREATE_DECISION,
        Effect.ISSUE_SIGNATURE,
        *_DECISION_EFFECTS[1:],
    ),
    *_t([S.ED_DECISION], LifecycleAction.REJECT, S.REJECTED, *_DECISION_EFFECTS),
    *_t([S.APPROVED], LifecycleAction.ACTIVATE_RESEARCH, S.ACTIVE_RESEARCH),
    *_t(
        [S.APPROVED, S.ACTIVE_RESEARCH],
        LifecycleAction.SUBMIT_FINAL,
        S.FINAL_SUBMISSION_PENDING,
    ),
    *_t([S.FINAL_SUBMISSION_PENDING], LifecycleAction.COMPLETE, S.COMPLETED),
    *_t(
        [S.FINAL_SUBMISSION_PENDING, S.COMPLETED],
        LifecycleAction.PUBLISH,
        S.PUBLISHED,
        Effect.CREATE_REPOSITORY_ITEM,
        Effect.NOTIFY_APPLICANT,
    ),
]

TRANSITIONS: dict[tuple[S, LifecycleAction], Transition] = {
    (t.source, t.action): t for t in _TABLE
}

# Status -> reachable statuses, for display and documentation.
ALLOWED_TRANSITIONS: dict[str, list[str]] = {
    status.value: sorted(
        {t.target.value for t in _TABLE if t.source == status and t.target != status}
    )
    for status in S
}

TERMINAL_STATUSES = frozenset({S.REJECTED, S.PUBLISHED})
EDITABLE_STATUSES = frozenset({S.DRAFT, S.RETURNED})
EXTENSION_STATUSES = frozenset({S.APPROVED, S.ACTIVE_RESEARCH})


def plan_transition(current: S | str, action: LifecycleAction) -> Transition:
    """Look up the transition for *action* from *current*.

    Raises:
        InvalidTransition: No edge exists for this (status, action) pair.
    """
    try:
        status = S(current)
    except ValueError as exc:
        raise InvalidTransition(f"Unknown application status '{current}'") from exc

    transition = TRANSITIONS.get((status, action))
    if transition is None:
        allowed = ALLOWED_TRANSITIONS.get(status.value, [])
        raise InvalidTransition(
            f"Cannot {action.value.replace('_', ' ')} from '{status.value}'. "
            f"Allowed transitions: {', '.join(allowed) if allowed else 'none (terminal state)'}",
            status=status.value,
            action=action.value,
        )
    return transition


def check_submission_guard(title: str | None, ethics_approved: bool) -> None:
    """Guard shared by DRAFT->SUBMITTED and RETURNED->SUBMITTED."""
    if not title or not title.strip():
        raise ValidationFailure("Please enter a research title")
    if not ethics_approved:
        raise InvalidTransition("Ethics approval is mandatory before submission")


def decision_action(decision: str) -> LifecycleAction:
    if decision == S.APPROVED.value:
        return LifecycleAction.APPROVE
    if decision == S.REJECTED.value:
        return LifecycleAction.REJECT
    raise ValidationFailure(f"Unknown decision '{decision}'")
