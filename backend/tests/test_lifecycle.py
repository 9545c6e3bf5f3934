"""
Unit tests for the application lifecycle table.

Usage:
    pytest backend/tests/test_lifecycle.py -v
"""

import pytest

from rars.errors import InvalidTransition, ValidationFailure
from rars.lifecycle import (
    ALLOWED_TRANSITIONS,
    TERMINAL_STATUSES,
    Effect,
    LifecycleAction,
    check_submission_guard,
    decision_action,
    plan_transition,
)
from rars.models.enums import ApplicationStatus as S


class TestPlanTransition:
    """The table is the only source of truth for status moves."""

    @pytest.mark.parametrize(
        "source,action,target",
        [
            (S.DRAFT, LifecycleAction.SUBMIT, S.SUBMITTED),
            (S.RETURNED, LifecycleAction.SUBMIT, S.SUBMITTED),
            (S.SUBMITTED, LifecycleAction.START_SCREENING, S.SCREENING),
            (S.SCREENING, LifecycleAction.RETURN, S.RETURNED),
            (S.SUBMITTED, LifecycleAction.ASSIGN_REVIEWER, S.IN_REVIEW),
            (S.SCREENING, LifecycleAction.FORWARD_TO_REVIEW, S.IN_REVIEW),
            (S.IN_REVIEW, LifecycleAction.COMPLETE_REVIEW, S.ED_DECISION),
            (S.ED_DECISION, LifecycleAction.APPROVE, S.APPROVED),
            (S.ED_DECISION, LifecycleAction.REJECT, S.REJECTED),
            (S.APPROVED, LifecycleAction.ACTIVATE_RESEARCH, S.ACTIVE_RESEARCH),
            (S.ACTIVE_RESEARCH, LifecycleAction.SUBMIT_FINAL, S.FINAL_SUBMISSION_PENDING),
            (S.FINAL_SUBMISSION_PENDING, LifecycleAction.COMPLETE, S.COMPLETED),
            (S.COMPLETED, LifecycleAction.PUBLISH, S.PUBLISHED),
        ],
    )
    def test_allowed_edges(self, source, action, target):
        assert plan_transition(source, action).target == target

    def test_accepts_plain_status_string(self):
        assert plan_transition("DRAFT", LifecycleAction.SUBMIT).target == S.SUBMITTED

    def test_wrong_source_raises_invalid_transition(self):
        with pytest.raises(InvalidTransition) as exc_info:
            plan_transition(S.DRAFT, LifecycleAction.APPROVE)
        assert exc_info.value.context["status"] == "DRAFT"

    def test_unknown_status_raises_invalid_transition(self):
        with pytest.raises(InvalidTransition):
            plan_transition("ARCHIVED", LifecycleAction.SUBMIT)

    @pytest.mark.parametrize("status", sorted(TERMINAL_STATUSES, key=lambda s: s.value))
    def test_terminal_statuses_have_no_exit(self, status):
        assert ALLOWED_TRANSITIONS[status.value] == []
        for action in LifecycleAction:
            with pytest.raises(InvalidTransition):
                plan_transition(status, action)

    def test_assigning_more_reviewers_keeps_in_review(self):
        transition = plan_transition(S.IN_REVIEW, LifecycleAction.ASSIGN_REVIEWER)
        assert transition.target == S.IN_REVIEW
        assert Effect.STAMP_TURNAROUND_DEADLINE not in transition.effects
        assert Effect.CREATE_REVIEW in transition.effects


class TestEffects:
    def test_submit_stamps_screening_deadline(self):
        effects = plan_transition(S.DRAFT, LifecycleAction.SUBMIT).effects
        assert Effect.STAMP_SCREENING_DEADLINE in effects

    def test_only_approval_issues_a_signature(self):
        approve = plan_transition(S.ED_DECISION, LifecycleAction.APPROVE).effects
        reject = plan_transition(S.ED_DECISION, LifecycleAction.REJECT).effects
        assert Effect.ISSUE_SIGNATURE in approve
        assert Effect.ISSUE_SIGNATURE not in reject
        assert Effect.GENERATE_LETTER in approve and Effect.GENERATE_LETTER in reject

    def test_return_appends_feedback_and_emails(self):
        effects = plan_transition(S.SUBMITTED, LifecycleAction.RETURN).effects
        assert Effect.APPEND_FEEDBACK_MESSAGE in effects
        assert Effect.EMAIL_APPLICANT in effects


class TestGuards:
    def test_submission_requires_ethics_approval(self):
        with pytest.raises(InvalidTransition):
            check_submission_guard("Study A", ethics_approved=False)

    @pytest.mark.parametrize("title", [None, "", "   "])
    def test_submission_requires_title(self, title):
        with pytest.raises(ValidationFailure):
            check_submission_guard(title, ethics_approved=True)

    def test_submission_guard_passes(self):
        check_submission_guard("Study A", ethics_approved=True)

    def test_decision_action_mapping(self):
        assert decision_action("APPROVED") == LifecycleAction.APPROVE
        assert decision_action("REJECTED") == LifecycleAction.REJECT
        with pytest.raises(ValidationFailure):
            decision_action("MAYBE")
