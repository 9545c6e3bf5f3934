"""Role/permission resolver.

Roles are always handled as a set.  :func:`primary_role` exists for display
only and must never feed an authorization decision.
"""

import uuid
from dataclasses import dataclass, field
from typing import Any, Optional

from rars.models.enums import Role

STAFF_ROLES = frozenset(
    {Role.ADMIN_OFFICER, Role.REVIEWER, Role.EXECUTIVE_DIRECTOR, Role.SYSTEM_ADMIN}
)

_ROLE_PRECEDENCE = (
    Role.SYSTEM_ADMIN,
    Role.EXECUTIVE_DIRECTOR,
    Role.ADMIN_OFFICER,
    Role.REVIEWER,
    Role.APPLICANT,
)

_ROLE_LABELS = {
    Role.SYSTEM_ADMIN: "System Admin",
    Role.EXECUTIVE_DIRECTOR: "Executive Director",
    Role.ADMIN_OFFICER: "Admin Officer",
    Role.REVIEWER: "Reviewer",
    Role.APPLICANT: "Applicant",
    Role.PUBLIC: "Public",
}


@dataclass(frozen=True)
class Principal:
    """Authenticated caller (or the anonymous public principal)."""

    id: Optional[uuid.UUID] = None
    email: str = ""
    full_name: str = ""
    roles: frozenset[Role] = field(default_factory=lambda: frozenset({Role.PUBLIC}))

    @property
    def is_authenticated(self) -> bool:
        return self.id is not None


PUBLIC_PRINCIPAL = Principal()

# ---------------------------------------------------------------------------
# Rule table
# ---------------------------------------------------------------------------
# ``owner``: the principal must own the application (``applicant_id``).
# ``assignee``: the principal must be the reviewer on the review resource.
# ``owner_or_staff``: owner passes, otherwise one of ``roles`` is needed.


@dataclass(frozen=True)
class Rule:
    roles: frozenset[Role]
    ownership: Optional[str] = None
    public: bool = False


def _rule(*roles: Role, ownership: Optional[str] = None, public: bool = False) -> Rule:
    return Rule(roles=frozenset(roles), ownership=ownership, public=public)


RULES: dict[str, Rule] = {
    "create_application": _rule(Role.APPLICANT),
    "update_draft": _rule(Role.APPLICANT, ownership="owner"),
    "submit_application": _rule(Role.APPLICANT, ownership="owner"),
    "upload_document": _rule(
        Role.ADMIN_OFFICER, Role.EXECUTIVE_DIRECTOR, ownership="owner_or_staff"
    ),
    "delete_document": _rule(Role.ADMIN_OFFICER, ownership="owner_or_staff"),
    "view_application": _rule(
        Role.ADMIN_OFFICER,
        Role.REVIEWER,
        Role.EXECUTIVE_DIRECTOR,
        ownership="owner_or_staff",
    ),
    "list_all_applications": _rule(
        Role.ADMIN_OFFICER, Role.REVIEWER, Role.EXECUTIVE_DIRECTOR
    ),
    "start_screening": _rule(Role.ADMIN_OFFICER),
    "return_application": _rule(Role.ADMIN_OFFICER),
    "forward_to_review": _rule(Role.ADMIN_OFFICER),
    "assign_reviewer": _rule(Role.ADMIN_OFFICER),
    "submit_review": _rule(Role.REVIEWER, ownership="assignee"),
    "record_decision": _rule(Role.EXECUTIVE_DIRECTOR, Role.ADMIN_OFFICER),
    "activate_research": _rule(Role.ADMIN_OFFICER, ownership="owner_or_staff"),
    "submit_final": _rule(Role.APPLICANT, ownership="owner"),
    "complete_application": _rule(Role.ADMIN_OFFICER),
    "publish_to_repository": _rule(Role.ADMIN_OFFICER),
    "request_extension": _rule(Role.APPLICANT, ownership="owner"),
    "decide_extension": _rule(Role.ADMIN_OFFICER, Role.EXECUTIVE_DIRECTOR),
    "list_all_extensions": _rule(Role.ADMIN_OFFICER, Role.EXECUTIVE_DIRECTOR),
    "verify_token": _rule(public=True),
    "view_repository": _rule(public=True),
    # No listed roles: SYSTEM_ADMIN only.
    "manage_users": _rule(),
    "manage_settings": _rule(),
    "view_audit_logs": _rule(),
}


def _get(resource: Any, name: str) -> Any:
    if resource is None:
        return None
    if isinstance(resource, dict):
        return resource.get(name)
    return getattr(resource, name, None)


def _same_id(left: Any, right: Any) -> bool:
    if left is None or right is None:
        return False
    return str(left) == str(right)


def can(principal: Principal, action: str, resource: Any = None) -> bool:
    """Return whether *principal* may perform *action* on *resource*.

    Never raises: unknown actions and malformed resources resolve to ``False``.
    """
    rule = RULES.get(getattr(action, "value", action))
    if rule is None:
        return False
    if rule.public:
        return True
    if not principal.is_authenticated:
        return False

    roles = principal.roles
    is_admin = Role.SYSTEM_ADMIN in roles
    staff_ok = is_admin or bool(roles & rule.roles)

    if rule.ownership is None:
        return staff_ok

    if rule.ownership == "owner_or_staff":
        if _same_id(_get(resource, "applicant_id"), principal.id):
            return True
        return staff_ok and bool(roles & (rule.roles | {Role.SYSTEM_ADMIN}))

    if rule.ownership == "owner":
        return staff_ok and _same_id(_get(resource, "applicant_id"), principal.id)

    if rule.ownership == "assignee":
        if is_admin:
            return True
        return staff_ok and _same_id(_get(resource, "reviewer_id"), principal.id)

    return False


def primary_role(roles) -> Role:
    """Single display role; precedence matters for UI labels only."""
    for role in _ROLE_PRECEDENCE:
        if role in roles:
            return role
    return Role.PUBLIC


def role_label(roles) -> str:
    return _ROLE_LABELS[primary_role(roles)]
