"""Principal onboarding and SYSTEM_ADMIN account administration.

Self-registration always yields a plain APPLICANT.  Every other role is
granted by a SYSTEM_ADMIN, who replaces a user's role set as a whole.
"""

import logging
import secrets
import uuid
from typing import Iterable, Optional

from sqlalchemy import delete, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from rars.auth import hash_password, load_roles
from rars.errors import NotFound, Unauthorized, ValidationFailure
from rars.models.db.user import Profile, UserRole
from rars.models.enums import ApplicantType, Role
from rars.permissions import Principal, can
from rars.services.audit_service import AuditService

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8


def normalize_email(email: str) -> str:
    email = (email or "").strip().lower()
    if "@" not in email or email.startswith("@") or email.endswith("@"):
        raise ValidationFailure("A valid email address is required")
    return email


def parse_roles(values: Iterable[str]) -> frozenset[Role]:
    """Validate a requested role set; PUBLIC is implicit and never granted."""
    roles = set()
    for value in values or ():
        try:
            role = Role(getattr(value, "value", value))
        except ValueError as exc:
            raise ValidationFailure(f"Unknown role '{value}'") from exc
        if role == Role.PUBLIC:
            raise ValidationFailure("PUBLIC cannot be granted")
        roles.add(role)
    if not roles:
        raise ValidationFailure("At least one role is required")
    return frozenset(roles)


def _check_password(password: str) -> None:
    if len(password or "") < MIN_PASSWORD_LENGTH:
        raise ValidationFailure(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
        )


def _role_values(roles: Iterable[Role]) -> list[str]:
    return sorted(role.value for role in roles)


class UserService:
    # ------------------------------------------------------------------
    # onboarding
    # ------------------------------------------------------------------

    @staticmethod
    async def register(
        db: AsyncSession,
        email: str,
        password: str,
        full_name: str,
        applicant_type: Optional[str] = None,
        institution: Optional[str] = None,
        phone: Optional[str] = None,
    ) -> Profile:
        """Create an active profile holding only the APPLICANT role.

        Raises:
            ValidationFailure: Bad email, short password, blank name, unknown
                applicant type, or the email is already registered.
        """
        full_name = (full_name or "").strip()
        if not full_name:
            raise ValidationFailure("Full name is required")
        if applicant_type is not None:
            try:
                applicant_type = ApplicantType(applicant_type).value
            except ValueError as exc:
                raise ValidationFailure(
                    f"Invalid applicant_type '{applicant_type}'"
                ) from exc

        profile = await UserService._new_profile(
            db,
            email,
            password,
            full_name,
            frozenset({Role.APPLICANT}),
            applicant_type=applicant_type,
            institution=institution,
            phone=phone,
        )
        AuditService.record(
            db,
            profile.id,
            "profile",
            profile.id,
            "register",
            after={"email": profile.email, "roles": [Role.APPLICANT.value]},
        )
        await db.flush()
        logger.info("Registered applicant %s (%s)", profile.id, profile.email)
        return profile

    @staticmethod
    async def _new_profile(
        db: AsyncSession,
        email: str,
        password: str,
        full_name: str,
        roles: frozenset[Role],
        **fields,
    ) -> Profile:
        email = normalize_email(email)
        _check_password(password)
        existing = await db.execute(select(Profile.id).where(Profile.email == email))
        if existing.first() is not None:
            raise ValidationFailure("This email is already registered")

        profile = Profile(
            email=email,
            full_name=full_name,
            hashed_password=hash_password(password),
            is_active=True,
            **fields,
        )
        db.add(profile)
        try:
            await db.flush()
        except IntegrityError as exc:
            await db.rollback()
            raise ValidationFailure("This email is already registered") from exc
        for role in roles:
            db.add(UserRole(user_id=profile.id, role=role.value))
        return profile

    # ------------------------------------------------------------------
    # administration
    # ------------------------------------------------------------------

    @staticmethod
    def _require_admin(principal: Principal) -> None:
        if not can(principal, "manage_users"):
            raise Unauthorized("Only a system administrator can manage users")

    @staticmethod
    async def _get_profile(db: AsyncSession, user_id: uuid.UUID) -> Profile:
        profile = await db.get(Profile, user_id)
        if profile is None:
            raise NotFound("User not found")
        return profile

    @staticmethod
    async def list_users(
        db: AsyncSession, principal: Principal, search: Optional[str] = None
    ) -> list[tuple[Profile, frozenset[Role]]]:
        """Every profile with its role set, newest first."""
        UserService._require_admin(principal)
        query = select(Profile)
        if search:
            pattern = f"%{search.strip()}%"
            query = query.where(
                or_(Profile.email.ilike(pattern), Profile.full_name.ilike(pattern))
            )
        profiles = list(
            (await db.execute(query.order_by(Profile.created_at.desc()))).scalars()
        )

        roles: dict[uuid.UUID, set[Role]] = {p.id: set() for p in profiles}
        if profiles:
            rows = await db.execute(
                select(UserRole.user_id, UserRole.role).where(
                    UserRole.user_id.in_(list(roles))
                )
            )
            for user_id, value in rows:
                try:
                    roles[user_id].add(Role(value))
                except ValueError:
                    logger.warning("Ignoring unknown role %r for user %s", value, user_id)
        return [(p, frozenset(roles[p.id])) for p in profiles]

    @staticmethod
    async def create_user(
        db: AsyncSession,
        principal: Principal,
        email: str,
        full_name: str,
        roles: Iterable[str],
        password: Optional[str] = None,
    ) -> tuple[Profile, Optional[str]]:
        """Create an account with the given roles.

        Returns:
            The profile and, when no password was supplied, the generated one.
        """
        UserService._require_admin(principal)
        full_name = (full_name or "").strip()
        if not full_name:
            raise ValidationFailure("Full name is required")
        granted = parse_roles(roles)
        generated = None
        if not password:
            generated = password = secrets.token_urlsafe(12)

        profile = await UserService._new_profile(
            db, email, password, full_name, granted
        )
        AuditService.record(
            db,
            principal.id,
            "profile",
            profile.id,
            "create_user",
            after={"email": profile.email, "roles": _role_values(granted)},
        )
        await db.flush()
        logger.info(
            "Admin %s created user %s with roles %s",
            principal.email,
            profile.email,
            _role_values(granted),
        )
        return profile, generated

    @staticmethod
    async def set_roles(
        db: AsyncSession,
        principal: Principal,
        user_id: uuid.UUID,
        roles: Iterable[str],
    ) -> frozenset[Role]:
        """Replace the user's whole role set.

        Raises:
            ValidationFailure: Empty or unknown roles, or an admin removing
                their own SYSTEM_ADMIN role.
        """
        UserService._require_admin(principal)
        await UserService._get_profile(db, user_id)
        granted = parse_roles(roles)
        if user_id == principal.id and Role.SYSTEM_ADMIN not in granted:
            raise ValidationFailure("You cannot remove your own SYSTEM_ADMIN role")

        before = await load_roles(db, user_id)
        await db.execute(delete(UserRole).where(UserRole.user_id == user_id))
        for role in granted:
            db.add(UserRole(user_id=user_id, role=role.value))
        AuditService.record(
            db,
            principal.id,
            "profile",
            user_id,
            "set_roles",
            before={"roles": _role_values(before)},
            after={"roles": _role_values(granted)},
        )
        await db.flush()
        logger.info(
            "Admin %s set roles of %s to %s",
            principal.email,
            user_id,
            _role_values(granted),
        )
        return granted

    @staticmethod
    async def update_user(
        db: AsyncSession,
        principal: Principal,
        user_id: uuid.UUID,
        full_name: Optional[str] = None,
        is_active: Optional[bool] = None,
    ) -> Profile:
        UserService._require_admin(principal)
        profile = await UserService._get_profile(db, user_id)
        if is_active is False and user_id == principal.id:
            raise ValidationFailure("You cannot deactivate your own account")

        before = {"full_name": profile.full_name, "is_active": profile.is_active}
        if full_name is not None:
            if not full_name.strip():
                raise ValidationFailure("Full name cannot be blank")
            profile.full_name = full_name.strip()
        if is_active is not None:
            profile.is_active = is_active
        AuditService.record(
            db,
            principal.id,
            "profile",
            user_id,
            "update_user",
            before=before,
            after={"full_name": profile.full_name, "is_active": profile.is_active},
        )
        await db.flush()
        return profile

    @staticmethod
    async def reset_password(
        db: AsyncSession, principal: Principal, user_id: uuid.UUID, password: str
    ) -> None:
        UserService._require_admin(principal)
        profile = await UserService._get_profile(db, user_id)
        _check_password(password)
        profile.hashed_password = hash_password(password)
        AuditService.record(db, principal.id, "profile", user_id, "reset_password")
        await db.flush()
        logger.info("Admin %s reset the password of %s", principal.email, profile.email)
