"""
Unit tests for the role/permission resolver.

Usage:
    pytest backend/tests/test_permissions.py -v
"""

import uuid

import pytest

from rars.models.enums import Role
from rars.permissions import (
    PUBLIC_PRINCIPAL,
    RULES,
    Principal,
    can,
    primary_role,
    role_label,
)


def make_principal(*roles: Role) -> Principal:
    return Principal(
        id=uuid.uuid4(),
        email="user@example.org",
        full_name="Test User",
        roles=frozenset(roles),
    )


@pytest.fixture
def applicant():
    return make_principal(Role.APPLICANT)


@pytest.fixture
def application(applicant):
    return {"id": uuid.uuid4(), "applicant_id": applicant.id}


class TestOwnership:
    def test_owner_can_submit(self, applicant, application):
        assert can(applicant, "submit_application", application)

    def test_other_applicant_cannot_submit(self, application):
        assert not can(make_principal(Role.APPLICANT), "submit_application", application)

    def test_staff_cannot_submit_on_behalf_of_applicant(self, application):
        assert not can(make_principal(Role.ADMIN_OFFICER), "submit_application", application)

    def test_owner_or_staff_view(self, applicant, application):
        assert can(applicant, "view_application", application)
        assert can(make_principal(Role.REVIEWER), "view_application", application)
        assert not can(make_principal(Role.APPLICANT), "view_application", application)

    def test_resource_may_be_an_object(self, applicant):
        class Row:
            applicant_id = applicant.id

        assert can(applicant, "update_draft", Row())

    def test_missing_resource_denies_ownership_rules(self, applicant):
        assert not can(applicant, "update_draft", None)


class TestRoles:
    def test_only_assigned_reviewer_submits(self):
        reviewer = make_principal(Role.REVIEWER)
        review = {"reviewer_id": reviewer.id}
        assert can(reviewer, "submit_review", review)
        assert not can(make_principal(Role.REVIEWER), "submit_review", review)

    def test_decision_roles(self):
        assert can(make_principal(Role.EXECUTIVE_DIRECTOR), "record_decision")
        assert can(make_principal(Role.ADMIN_OFFICER), "record_decision")
        assert not can(make_principal(Role.REVIEWER), "record_decision")
        assert not can(make_principal(Role.APPLICANT), "record_decision")

    def test_system_admin_passes_staff_checks(self):
        admin = make_principal(Role.SYSTEM_ADMIN)
        assert can(admin, "publish_to_repository")
        assert can(admin, "submit_review", {"reviewer_id": uuid.uuid4()})

    @pytest.mark.parametrize(
        "action", ["manage_users", "manage_settings", "view_audit_logs"]
    )
    def test_administration_is_system_admin_only(self, action):
        assert can(make_principal(Role.SYSTEM_ADMIN), action)
        assert can(make_principal(Role.APPLICANT, Role.SYSTEM_ADMIN), action)
        for role in (Role.EXECUTIVE_DIRECTOR, Role.ADMIN_OFFICER, Role.APPLICANT):
            assert not can(make_principal(role), action)

    def test_roles_are_a_set(self, application):
        # An applicant who is also a reviewer keeps both capabilities.
        dual = Principal(
            id=application["applicant_id"],
            roles=frozenset({Role.APPLICANT, Role.REVIEWER}),
        )
        assert can(dual, "submit_application", application)
        assert can(dual, "list_all_applications")

    def test_public_actions_need_no_login(self):
        assert can(PUBLIC_PRINCIPAL, "verify_token")
        assert can(PUBLIC_PRINCIPAL, "view_repository")
        assert not can(PUBLIC_PRINCIPAL, "create_application")

    def test_unknown_action_is_denied(self, applicant):
        assert not can(applicant, "delete_everything")

    def test_every_rule_is_decidable(self, applicant, application):
        for action in RULES:
            assert can(applicant, action, application) in (True, False)
            assert can(applicant, action, object()) in (True, False)


class TestPrimaryRole:
    def test_precedence_is_display_only(self):
        roles = {Role.APPLICANT, Role.EXECUTIVE_DIRECTOR}
        assert primary_role(roles) == Role.EXECUTIVE_DIRECTOR
        assert role_label(roles) == "Executive Director"

    def test_no_roles_is_public(self):
        assert primary_role(set()) == Role.PUBLIC
