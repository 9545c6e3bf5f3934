"""End-date extension requests.

A narrow sub-flow beside the main lifecycle: PENDING -> APPROVED | REJECTED,
never reopened.  Approval is the only path that changes
``Application.end_date`` once the application has left the editable states.
"""

import logging
import uuid
from datetime import date
from functools import partial
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rars.errors import InvalidTransition, NotFound, Unauthorized, ValidationFailure
from rars.lifecycle import EXTENSION_STATUSES
from rars.models.db.application import Application
from rars.models.db.base import utcnow
from rars.models.db.extension import Extension
from rars.models.db.user import Profile
from rars.models.enums import ApplicationStatus, ExtensionStatus, IntentStatus
from rars.permissions import Principal, can
from rars.services.application_service import ApplicationService
from rars.services.audit_service import AuditService
from rars.services.notification_service import (
    EmailMessage,
    NotificationService,
    render_email,
)
from rars.services.transition_service import TransitionService, payload_fingerprint

logger = logging.getLogger(__name__)


class ExtensionService:
    # ------------------------------------------------------------------
    # request_extension
    # ------------------------------------------------------------------

    @staticmethod
    async def request(
        db: AsyncSession,
        principal: Principal,
        application_id: uuid.UUID,
        requested_end_date: date,
        reason: str,
    ) -> Extension:
        """Ask to move the end date of an APPROVED/ACTIVE_RESEARCH application.

        Raises:
            Unauthorized: Principal does not own the application.
            InvalidTransition: Wrong application status or a request is pending.
            ValidationFailure: Missing reason or a date not after the current end.
        """
        application = await ApplicationService.get_or_404(db, application_id)
        if not can(principal, "request_extension", application):
            raise Unauthorized("Only the applicant can request an extension")
        if ApplicationStatus(application.status) not in EXTENSION_STATUSES:
            raise InvalidTransition(
                f"Extensions are not available while the application is {application.status}"
            )

        reason = (reason or "").strip()
        if not reason:
            raise ValidationFailure("A reason is required for an extension request")
        if application.end_date and requested_end_date <= application.end_date:
            raise ValidationFailure(
                "Requested end date must be later than the current end date"
            )
        if application.start_date and requested_end_date < application.start_date:
            raise ValidationFailure("Requested end date is before the start date")

        pending = await db.execute(
            select(Extension.id).where(
                Extension.application_id == application_id,
                Extension.status == ExtensionStatus.PENDING.value,
            )
        )
        if pending.first() is not None:
            raise InvalidTransition("An extension request is already pending")

        extension = Extension(
            application_id=application_id,
            requested_by=principal.id,
            reason=reason,
            current_end_date=application.end_date,
            requested_end_date=requested_end_date,
            status=ExtensionStatus.PENDING.value,
        )
        db.add(extension)
        await db.flush()
        AuditService.record(
            db,
            principal.id,
            "extension",
            extension.id,
            "request_extension",
            after={
                "application_id": application_id,
                "requested_end_date": requested_end_date,
            },
        )
        await db.flush()
        logger.info(
            "Extension %s requested for %s (%s -> %s)",
            extension.id,
            application.reference_number,
            application.end_date,
            requested_end_date,
        )
        return extension

    # ------------------------------------------------------------------
    # decide_extension
    # ------------------------------------------------------------------

    @staticmethod
    async def decide(
        db: AsyncSession,
        principal: Principal,
        extension_id: uuid.UUID,
        status: str,
        notes: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> Extension:
        """Approve or reject a PENDING extension and notify the requester.

        On approval the requested date is written to ``Application.end_date``;
        rejection leaves the application untouched.
        """
        extension = await db.get(Extension, extension_id)
        if extension is None:
            raise NotFound("Extension not found")
        if not can(principal, "decide_extension", extension):
            raise Unauthorized("You are not allowed to decide extensions")

        fingerprint = payload_fingerprint({"status": status, "notes": notes})
        previous = await TransitionService.lookup(
            db, idempotency_key, "decide_extension", extension.id, fingerprint
        )
        if previous is not None and previous.status == IntentStatus.COMPLETED.value:
            return extension

        try:
            verdict = ExtensionStatus(status)
        except ValueError as exc:
            raise ValidationFailure(f"Unknown extension status '{status}'") from exc
        if verdict == ExtensionStatus.PENDING:
            raise ValidationFailure("Decide with APPROVED or REJECTED")
        if extension.status != ExtensionStatus.PENDING.value:
            raise InvalidTransition(f"Extension is already {extension.status}")

        application = await ApplicationService.get_or_404(db, extension.application_id)
        if (
            verdict == ExtensionStatus.APPROVED
            and ApplicationStatus(application.status) not in EXTENSION_STATUSES
        ):
            raise InvalidTransition(
                f"Cannot extend an application that is {application.status}"
            )
        requester = await db.get(Profile, extension.requested_by)

        ctx = await TransitionService.open(
            db,
            action="decide_extension",
            entity_id=extension.id,
            actor_id=principal.id,
            idempotency_key=idempotency_key,
            fingerprint=fingerprint,
            previous=previous,
        )
        try:
            extension.status = verdict.value
            extension.decided_by = principal.id
            extension.decision_date = utcnow()
            extension.decision_notes = notes
            ctx.advance("extension decided")

            if verdict == ExtensionStatus.APPROVED:
                before_end = application.end_date
                application.end_date = extension.requested_end_date
                AuditService.record(
                    db,
                    principal.id,
                    "application",
                    application.id,
                    "extend_end_date",
                    before={"end_date": before_end},
                    after={"end_date": application.end_date},
                )
                ctx.advance("end date updated")

            title = f"Extension {verdict.value.lower()}"
            body = "Your extension request has been reviewed."
            NotificationService.notify(
                db,
                extension.requested_by,
                title,
                body,
                f"/applications/{application.id}",
            )
            if requester and requester.email:
                ctx.after_commit.append(
                    partial(
                        NotificationService.send_email,
                        db,
                        EmailMessage(
                            to=requester.email,
                            subject=f"[{application.reference_number}] {title}",
                            html=render_email(title, body),
                        ),
                    )
                )
            AuditService.record(
                db,
                principal.id,
                "extension",
                extension.id,
                verdict.value,
                before={"status": ExtensionStatus.PENDING.value},
                after={"status": verdict.value},
            )
            await db.flush()
            ctx.advance("notified")
            await TransitionService.complete(
                db,
                ctx,
                {"extension_id": str(extension.id), "status": verdict.value},
            )
        except Exception as exc:
            await TransitionService.fail(db, ctx, exc)
            raise

        await TransitionService.run_after_commit(ctx)
        return extension

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------

    @staticmethod
    async def list_for_application(
        db: AsyncSession, principal: Principal, application_id: uuid.UUID
    ) -> list[Extension]:
        application = await ApplicationService.get_or_404(db, application_id)
        if not can(principal, "view_application", application):
            raise Unauthorized("You cannot view this application")
        result = await db.execute(
            select(Extension)
            .where(Extension.application_id == application_id)
            .order_by(Extension.created_at.asc())
        )
        return list(result.scalars().all())

    @staticmethod
    async def list_all(
        db: AsyncSession, principal: Principal, status: Optional[str] = None
    ) -> list[Extension]:
        if not can(principal, "list_all_extensions"):
            raise Unauthorized("You are not allowed to list extensions")
        query = select(Extension)
        if status:
            query = query.where(Extension.status == status)
        result = await db.execute(query.order_by(Extension.created_at.desc()))
        return list(result.scalars().all())
