"""Business logic for the application lifecycle.

Every status change goes through :meth:`ApplicationService.transition`,
which consults the permission resolver, plans the move with
:func:`rars.lifecycle.plan_transition`, runs guards before any mutation,
and then carries out the planned effects inside a transition intent.
"""

import logging
import os
import uuid
from dataclasses import dataclass
from datetime import timedelta
from functools import partial
from typing import Any, Awaitable, Callable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rars.errors import InvalidTransition, NotFound, Unauthorized, ValidationFailure
from rars.helpers.settings_reader import get_day_count
from rars.lifecycle import (
    EDITABLE_STATUSES,
    Effect,
    LifecycleAction,
    Transition,
    check_submission_guard,
    plan_transition,
)
from rars.models.db.application import Application, ApplicationStatusHistory
from rars.models.db.base import utcnow
from rars.models.db.notification import Message
from rars.models.db.user import Profile
from rars.models.enums import (
    ApplicantType,
    ApplicationStatus,
    DataType,
    DocumentType,
    IntentStatus,
    SensitivityLevel,
)
from rars.permissions import Principal, can
from rars.services.audit_service import AuditService, snapshot
from rars.services.document_service import DocumentService
from rars.services.notification_service import (
    EmailMessage,
    NotificationService,
    render_email,
)
from rars.services.transition_service import (
    TransitionContext,
    TransitionService,
    payload_fingerprint,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Deadlines (overridable through system_settings)
# ---------------------------------------------------------------------------
SCREENING_DAYS = int(os.getenv("SCREENING_DAYS", "14"))
TURNAROUND_DAYS = int(os.getenv("TURNAROUND_DAYS", "30"))

EDITABLE_FIELDS = (
    "title",
    "abstract",
    "objectives",
    "methodology",
    "institution",
    "program_area",
    "keywords",
    "data_type",
    "sensitivity_level",
    "supervisor_name",
    "supervisor_email",
    "start_date",
    "end_date",
    "applicant_type",
)

_AUDIT_FIELDS = (
    "status",
    "ethics_approved",
    "screening_deadline",
    "turnaround_deadline",
    "end_date",
)

_APPLICANT_NOTICES: dict[LifecycleAction, tuple[str, str]] = {
    LifecycleAction.SUBMIT: (
        "Application submitted",
        "Your application {ref} has been submitted and is awaiting screening.",
    ),
    LifecycleAction.RETURN: (
        "Application returned for correction",
        "Your application {ref} was returned: {reason}",
    ),
    LifecycleAction.APPROVE: (
        "Application approved",
        "Your application {ref} has been approved. The signed letter is available.",
    ),
    LifecycleAction.REJECT: (
        "Application rejected",
        "Your application {ref} was not approved. The decision letter is available.",
    ),
    LifecycleAction.PUBLISH: (
        "Research published",
        "The outputs of {ref} are now listed in the research repository.",
    ),
}

WorkFn = Callable[[Application, Transition, TransitionContext], Awaitable[Optional[dict]]]
GuardFn = Callable[[Application], Awaitable[None]]


@dataclass
class TransitionRequest:
    """One attempt at a lifecycle action.

    ``work`` performs the action-specific writes (review, decision, repository
    item) inside the transition's transaction; ``guard`` runs before any write.
    ``payload`` holds the arguments an Idempotency-Key is bound to.
    """

    action: LifecycleAction
    permission: str
    idempotency_key: Optional[str] = None
    reason: Optional[str] = None
    reviewer_id: Optional[uuid.UUID] = None
    resource: Any = None
    payload: Optional[dict[str, Any]] = None
    guard: Optional[GuardFn] = None
    work: Optional[WorkFn] = None


def generate_reference_number() -> str:
    return f"RARS-{utcnow():%Y}-{uuid.uuid4().hex[:6].upper()}"


class ApplicationService:
    """Service layer for research application operations."""

    # ------------------------------------------------------------------
    # lookups
    # ------------------------------------------------------------------

    @staticmethod
    async def get_or_404(db: AsyncSession, application_id: uuid.UUID) -> Application:
        application = await db.get(Application, application_id)
        if application is None:
            raise NotFound("Application not found")
        return application

    @staticmethod
    async def get(
        db: AsyncSession, principal: Principal, application_id: uuid.UUID
    ) -> Application:
        application = await ApplicationService.get_or_404(db, application_id)
        if not can(principal, "view_application", application):
            raise Unauthorized("You cannot view this application")
        return application

    @staticmethod
    async def list_applications(
        db: AsyncSession,
        principal: Principal,
        status: Optional[str] = None,
        mine: bool = False,
    ) -> list[Application]:
        """Applicants see their own applications; staff see everything."""
        if not principal.is_authenticated:
            raise Unauthorized("Sign in to list applications")
        query = select(Application)
        if mine or not can(principal, "list_all_applications"):
            query = query.where(Application.applicant_id == principal.id)
        if status:
            try:
                query = query.where(
                    Application.status == ApplicationStatus(status).value
                )
            except ValueError as exc:
                raise ValidationFailure(f"Unknown status '{status}'") from exc
        result = await db.execute(query.order_by(Application.created_at.desc()))
        return list(result.scalars().all())

    @staticmethod
    async def history(
        db: AsyncSession, principal: Principal, application_id: uuid.UUID
    ) -> list[ApplicationStatusHistory]:
        await ApplicationService.get(db, principal, application_id)
        result = await db.execute(
            select(ApplicationStatusHistory)
            .where(ApplicationStatusHistory.application_id == application_id)
            .order_by(ApplicationStatusHistory.created_at.asc())
        )
        return list(result.scalars().all())

    @staticmethod
    async def messages(
        db: AsyncSession, principal: Principal, application_id: uuid.UUID
    ) -> list[Message]:
        await ApplicationService.get(db, principal, application_id)
        result = await db.execute(
            select(Message)
            .where(Message.application_id == application_id)
            .order_by(Message.created_at.asc())
        )
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # create / edit
    # ------------------------------------------------------------------

    @staticmethod
    async def create(
        db: AsyncSession, principal: Principal, fields: dict[str, Any]
    ) -> Application:
        """Create a DRAFT owned by *principal* with a fresh reference number.

        Raises:
            Unauthorized: Principal is not an applicant.
            ValidationFailure: Dates are inverted or an enum value is unknown.
        """
        if not can(principal, "create_application"):
            raise Unauthorized("Only applicants can create applications")

        profile = await db.get(Profile, principal.id)
        values = {k: v for k, v in fields.items() if k in EDITABLE_FIELDS}
        values.setdefault(
            "applicant_type",
            (profile.applicant_type if profile else None) or ApplicantType.OTHER.value,
        )
        _validate_fields(values)

        reference = await ApplicationService._unique_reference(db)
        application = Application(
            reference_number=reference,
            applicant_id=principal.id,
            status=ApplicationStatus.DRAFT.value,
            ethics_approved=False,
            **{k: _enum_value(v) for k, v in values.items() if v is not None},
        )
        if application.title is None:
            application.title = ""
        db.add(application)
        await db.flush()

        db.add(
            ApplicationStatusHistory(
                application_id=application.id,
                old_status=None,
                new_status=ApplicationStatus.DRAFT.value,
                changed_by=principal.id,
            )
        )
        AuditService.record(
            db,
            principal.id,
            "application",
            application.id,
            "create",
            after={"reference_number": reference, "status": application.status},
        )
        await db.flush()
        logger.info("Created application %s (%s)", application.id, reference)
        return application

    @staticmethod
    async def _unique_reference(db: AsyncSession) -> str:
        for _ in range(5):
            reference = generate_reference_number()
            result = await db.execute(
                select(Application.id).where(Application.reference_number == reference)
            )
            if result.first() is None:
                return reference
        raise InvalidTransition("Could not allocate a reference number, try again")

    @staticmethod
    async def update_draft(
        db: AsyncSession,
        principal: Principal,
        application_id: uuid.UUID,
        fields: dict[str, Any],
    ) -> Application:
        """Edit proposal fields while the application is DRAFT or RETURNED."""
        application = await ApplicationService.get_or_404(db, application_id)
        if not can(principal, "update_draft", application):
            raise Unauthorized("Only the applicant can edit this application")
        if ApplicationStatus(application.status) not in EDITABLE_STATUSES:
            raise InvalidTransition(
                f"Application cannot be edited while {application.status}"
            )

        values = {k: v for k, v in fields.items() if k in EDITABLE_FIELDS}
        merged = {
            "start_date": application.start_date,
            "end_date": application.end_date,
            **values,
        }
        _validate_fields(merged)

        before = snapshot(application, tuple(values))
        for key, value in values.items():
            setattr(application, key, _enum_value(value))
        AuditService.record(
            db,
            principal.id,
            "application",
            application.id,
            "update_draft",
            before=before,
            after=snapshot(application, tuple(values)),
        )
        await db.flush()
        return application

    # ------------------------------------------------------------------
    # the transition engine
    # ------------------------------------------------------------------

    @staticmethod
    async def transition(
        db: AsyncSession,
        principal: Principal,
        application_id: uuid.UUID,
        request: TransitionRequest,
    ) -> tuple[Application, dict[str, Any]]:
        """Run one lifecycle action end to end.

        Returns:
            The application and the stored result payload.  A retry with the
            Idempotency-Key of a completed attempt returns the original payload
            without executing anything.

        Raises:
            NotFound, Unauthorized, InvalidTransition, ValidationFailure:
                raised before any write.
            UpstreamFailure, ConflictingVersion: a step failed; the intent
                records which one.
        """
        application = await ApplicationService.get_or_404(db, application_id)
        resource = request.resource if request.resource is not None else application
        if not can(principal, request.permission, resource):
            raise Unauthorized(
                f"You are not allowed to {request.permission.replace('_', ' ')}"
            )

        fingerprint = payload_fingerprint(request.payload)
        previous = await TransitionService.lookup(
            db,
            request.idempotency_key,
            request.action.value,
            application.id,
            fingerprint,
        )
        if previous is not None and previous.status == IntentStatus.COMPLETED.value:
            logger.info(
                "Replaying completed intent %s for %s on %s",
                previous.id,
                request.action.value,
                application.id,
            )
            return application, dict(previous.result_json or {})

        transition = plan_transition(application.status, request.action)
        if request.guard is not None:
            await request.guard(application)

        applicant = await db.get(Profile, application.applicant_id)
        before = snapshot(application, _AUDIT_FIELDS)
        ctx = await TransitionService.open(
            db,
            action=request.action.value,
            entity_id=application.id,
            actor_id=principal.id,
            idempotency_key=request.idempotency_key,
            fingerprint=fingerprint,
            previous=previous,
        )
        try:
            result: dict[str, Any] = {}
            if request.work is not None:
                result.update(await request.work(application, transition, ctx) or {})
            await ApplicationService._apply_status(
                db, application, transition, principal, request.reason, ctx
            )
            ApplicationService._apply_effects(
                db, application, applicant, transition, principal, request, ctx
            )
            AuditService.record(
                db,
                principal.id,
                "application",
                application.id,
                transition.action.value,
                before=before,
                after=snapshot(application, _AUDIT_FIELDS),
            )
            result.update(
                {"application_id": str(application.id), "status": application.status}
            )
            await TransitionService.complete(db, ctx, result)
        except Exception as exc:
            await TransitionService.fail(db, ctx, exc)
            raise

        await TransitionService.run_after_commit(ctx)
        return application, result

    @staticmethod
    async def _apply_status(
        db: AsyncSession,
        application: Application,
        transition: Transition,
        principal: Principal,
        reason: Optional[str],
        ctx: TransitionContext,
    ) -> None:
        old_status = application.status
        new_status = transition.target
        now = utcnow()

        application.status = new_status.value
        if new_status == ApplicationStatus.SUBMITTED:
            application.submitted_at = now
        elif new_status in (ApplicationStatus.APPROVED, ApplicationStatus.REJECTED):
            application.decided_at = now
        elif new_status == ApplicationStatus.COMPLETED:
            application.completed_at = now
        elif new_status == ApplicationStatus.PUBLISHED:
            application.published_at = now

        if Effect.STAMP_SCREENING_DEADLINE in transition.effects:
            days = await get_day_count(db, "screening_days", SCREENING_DAYS)
            application.screening_deadline = now + timedelta(days=days)
        if Effect.STAMP_TURNAROUND_DEADLINE in transition.effects:
            days = await get_day_count(db, "turnaround_days", TURNAROUND_DAYS)
            application.turnaround_deadline = now + timedelta(days=days)

        if old_status != new_status.value:
            db.add(
                ApplicationStatusHistory(
                    application_id=application.id,
                    old_status=old_status,
                    new_status=new_status.value,
                    changed_by=principal.id,
                    reason=reason,
                )
            )
        await db.flush()
        ctx.advance(f"status {old_status} -> {new_status.value}")

    @staticmethod
    def _apply_effects(
        db: AsyncSession,
        application: Application,
        applicant: Optional[Profile],
        transition: Transition,
        principal: Principal,
        request: TransitionRequest,
        ctx: TransitionContext,
    ) -> None:
        link = f"/applications/{application.id}"
        title, body = _APPLICANT_NOTICES.get(
            transition.action, ("Application updated", "Application {ref} changed.")
        )
        body = body.format(ref=application.reference_number, reason=request.reason or "")

        for effect in transition.effects:
            if effect == Effect.APPEND_FEEDBACK_MESSAGE:
                db.add(
                    Message(
                        application_id=application.id,
                        sender_id=principal.id,
                        body=f"Returned for correction: {request.reason}",
                    )
                )
            elif effect == Effect.NOTIFY_APPLICANT:
                NotificationService.notify(
                    db, application.applicant_id, title, body, link
                )
            elif effect == Effect.NOTIFY_REVIEWER and request.reviewer_id:
                NotificationService.notify(
                    db,
                    request.reviewer_id,
                    "New review assigned",
                    f"You have been assigned to review {application.reference_number}.",
                    "/reviews",
                )
            elif effect == Effect.EMAIL_APPLICANT and applicant and applicant.email:
                message = EmailMessage(
                    to=applicant.email,
                    subject=f"[{application.reference_number}] {title}",
                    html=render_email(title, body, link),
                )
                ctx.after_commit.append(
                    partial(NotificationService.send_email, db, message)
                )
        ctx.advance("effects")

    # ------------------------------------------------------------------
    # lifecycle actions
    # ------------------------------------------------------------------

    @staticmethod
    async def submit(
        db: AsyncSession,
        principal: Principal,
        application_id: uuid.UUID,
        idempotency_key: Optional[str] = None,
    ) -> Application:
        """DRAFT/RETURNED -> SUBMITTED once ethics approval and a title exist."""

        async def guard(application: Application) -> None:
            check_submission_guard(application.title, application.ethics_approved)

        application, _ = await ApplicationService.transition(
            db,
            principal,
            application_id,
            TransitionRequest(
                action=LifecycleAction.SUBMIT,
                permission="submit_application",
                idempotency_key=idempotency_key,
                guard=guard,
            ),
        )
        return application

    @staticmethod
    async def start_screening(
        db: AsyncSession,
        principal: Principal,
        application_id: uuid.UUID,
        idempotency_key: Optional[str] = None,
    ) -> Application:
        application, _ = await ApplicationService.transition(
            db,
            principal,
            application_id,
            TransitionRequest(
                action=LifecycleAction.START_SCREENING,
                permission="start_screening",
                idempotency_key=idempotency_key,
            ),
        )
        return application

    @staticmethod
    async def return_application(
        db: AsyncSession,
        principal: Principal,
        application_id: uuid.UUID,
        reason: str,
        idempotency_key: Optional[str] = None,
    ) -> Application:
        """SUBMITTED/SCREENING -> RETURNED with feedback for the applicant."""
        reason = (reason or "").strip()

        async def guard(application: Application) -> None:
            if not reason:
                raise ValidationFailure("A reason is required to return an application")

        application, _ = await ApplicationService.transition(
            db,
            principal,
            application_id,
            TransitionRequest(
                action=LifecycleAction.RETURN,
                permission="return_application",
                idempotency_key=idempotency_key,
                reason=reason,
                payload={"reason": reason},
                guard=guard,
            ),
        )
        return application

    @staticmethod
    async def forward_to_review(
        db: AsyncSession,
        principal: Principal,
        application_id: uuid.UUID,
        idempotency_key: Optional[str] = None,
    ) -> Application:
        """Move to IN_REVIEW without assigning a reviewer yet."""
        application, _ = await ApplicationService.transition(
            db,
            principal,
            application_id,
            TransitionRequest(
                action=LifecycleAction.FORWARD_TO_REVIEW,
                permission="forward_to_review",
                idempotency_key=idempotency_key,
                guard=partial(require_checklist, db),
            ),
        )
        return application

    @staticmethod
    async def activate_research(
        db: AsyncSession,
        principal: Principal,
        application_id: uuid.UUID,
        idempotency_key: Optional[str] = None,
    ) -> Application:
        application, _ = await ApplicationService.transition(
            db,
            principal,
            application_id,
            TransitionRequest(
                action=LifecycleAction.ACTIVATE_RESEARCH,
                permission="activate_research",
                idempotency_key=idempotency_key,
            ),
        )
        return application

    @staticmethod
    async def submit_final(
        db: AsyncSession,
        principal: Principal,
        application_id: uuid.UUID,
        idempotency_key: Optional[str] = None,
    ) -> Application:
        """APPROVED/ACTIVE_RESEARCH -> FINAL_SUBMISSION_PENDING once a FINAL_PAPER exists."""

        async def guard(application: Application) -> None:
            if not await DocumentService.has_document(
                db, application.id, DocumentType.FINAL_PAPER
            ):
                raise InvalidTransition(
                    "Upload the final paper before submitting final outputs"
                )

        application, _ = await ApplicationService.transition(
            db,
            principal,
            application_id,
            TransitionRequest(
                action=LifecycleAction.SUBMIT_FINAL,
                permission="submit_final",
                idempotency_key=idempotency_key,
                guard=guard,
            ),
        )
        return application

    @staticmethod
    async def complete(
        db: AsyncSession,
        principal: Principal,
        application_id: uuid.UUID,
        idempotency_key: Optional[str] = None,
    ) -> Application:
        """Close FINAL_SUBMISSION_PENDING -> COMPLETED without publishing."""
        application, _ = await ApplicationService.transition(
            db,
            principal,
            application_id,
            TransitionRequest(
                action=LifecycleAction.COMPLETE,
                permission="complete_application",
                idempotency_key=idempotency_key,
            ),
        )
        return application


async def require_checklist(db: AsyncSession, application: Application) -> None:
    """Guard: every required document type must be present."""
    missing = await DocumentService.missing_required(db, application.id)
    if missing:
        raise InvalidTransition(
            "Required documents missing: " + ", ".join(t.value for t in missing),
            missing=[t.value for t in missing],
        )


def _enum_value(value: Any) -> Any:
    return getattr(value, "value", value)


def _validate_fields(values: dict[str, Any]) -> None:
    checks = {
        "applicant_type": ApplicantType,
        "data_type": DataType,
        "sensitivity_level": SensitivityLevel,
    }
    for name, enum_cls in checks.items():
        value = values.get(name)
        if value is None:
            continue
        try:
            enum_cls(_enum_value(value))
        except ValueError as exc:
            raise ValidationFailure(f"Invalid {name} '{value}'") from exc

    start, end = values.get("start_date"), values.get("end_date")
    if start and end and end < start:
        raise ValidationFailure("End date must be after start date")
