"""Reviewer assignment and review submission."""

import logging
import uuid
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rars.auth import load_roles
from rars.errors import InvalidTransition, NotFound, Unauthorized, ValidationFailure
from rars.lifecycle import LifecycleAction, Transition
from rars.models.db.application import Application
from rars.models.db.base import utcnow
from rars.models.db.review import Review
from rars.models.enums import (
    ApplicationStatus,
    IntentStatus,
    Recommendation,
    ReviewStage,
    Role,
)
from rars.permissions import Principal, can
from rars.services.application_service import (
    ApplicationService,
    TransitionRequest,
    require_checklist,
)
from rars.services.audit_service import AuditService
from rars.services.transition_service import (
    TransitionContext,
    TransitionService,
    payload_fingerprint,
)

logger = logging.getLogger(__name__)


class ReviewService:
    # ------------------------------------------------------------------
    # assign_reviewer
    # ------------------------------------------------------------------

    @staticmethod
    async def assign(
        db: AsyncSession,
        principal: Principal,
        application_id: uuid.UUID,
        reviewer_id: uuid.UUID,
        stage: str,
        idempotency_key: Optional[str] = None,
    ) -> Review:
        """Create a Review for *reviewer_id* and move the application to IN_REVIEW.

        Further stages may be assigned while the application is IN_REVIEW.

        Raises:
            ValidationFailure: Unknown stage, reviewer lacks the REVIEWER role,
                or the reviewer already holds this stage.
            InvalidTransition: Application is not SUBMITTED/SCREENING/IN_REVIEW,
                or required documents are missing.
        """
        try:
            review_stage = ReviewStage(stage)
        except ValueError as exc:
            raise ValidationFailure(f"Unknown review stage '{stage}'") from exc

        async def guard(application: Application) -> None:
            roles = await load_roles(db, reviewer_id)
            if Role.REVIEWER not in roles:
                raise ValidationFailure("Assigned user does not hold the REVIEWER role")
            existing = await db.execute(
                select(Review.id).where(
                    Review.application_id == application.id,
                    Review.reviewer_id == reviewer_id,
                    Review.stage == review_stage.value,
                )
            )
            if existing.first() is not None:
                raise ValidationFailure("Reviewer is already assigned to this stage")
            if application.status != ApplicationStatus.IN_REVIEW.value:
                await require_checklist(db, application)

        async def work(
            application: Application, transition: Transition, ctx: TransitionContext
        ) -> dict:
            review = Review(
                application_id=application.id,
                reviewer_id=reviewer_id,
                assigned_by=principal.id,
                stage=review_stage.value,
            )
            db.add(review)
            await db.flush()
            AuditService.record(
                db,
                principal.id,
                "review",
                review.id,
                "assign",
                after={"reviewer_id": reviewer_id, "stage": review_stage.value},
            )
            ctx.advance("review created")
            return {"review_id": str(review.id)}

        _, result = await ApplicationService.transition(
            db,
            principal,
            application_id,
            TransitionRequest(
                action=LifecycleAction.ASSIGN_REVIEWER,
                permission="assign_reviewer",
                idempotency_key=idempotency_key,
                reviewer_id=reviewer_id,
                payload={"reviewer_id": reviewer_id, "stage": review_stage.value},
                guard=guard,
                work=work,
            ),
        )
        review = await db.get(Review, uuid.UUID(result["review_id"]))
        logger.info(
            "Assigned reviewer %s (%s) to application %s",
            reviewer_id,
            review_stage.value,
            application_id,
        )
        return review

    # ------------------------------------------------------------------
    # submit_review
    # ------------------------------------------------------------------

    @staticmethod
    async def submit(
        db: AsyncSession,
        principal: Principal,
        review_id: uuid.UUID,
        recommendation: str,
        comments: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> Review:
        """Record the assigned reviewer's recommendation.

        The first submission moves IN_REVIEW -> ED_DECISION.  Reviews for other
        stages may still be submitted while the application awaits a decision;
        they are recorded without a further status change.
        """
        review = await db.get(Review, review_id)
        if review is None:
            raise NotFound("Review not found")
        if not can(principal, "submit_review", review):
            raise Unauthorized("Only the assigned reviewer can submit this review")
        payload = {
            "review_id": review_id,
            "recommendation": recommendation,
            "comments": comments,
        }
        if review.submitted_at is not None:
            previous = await TransitionService.lookup(
                db,
                idempotency_key,
                LifecycleAction.COMPLETE_REVIEW.value,
                review.application_id,
                payload_fingerprint(payload),
            )
            if previous is not None and previous.status == IntentStatus.COMPLETED.value:
                return review
            raise InvalidTransition("This review has already been submitted")
        try:
            verdict = Recommendation(recommendation)
        except ValueError as exc:
            raise ValidationFailure(f"Unknown recommendation '{recommendation}'") from exc

        def fill(target: Review) -> None:
            target.recommendation = verdict.value
            target.comments = comments
            target.submitted_at = utcnow()
            AuditService.record(
                db,
                principal.id,
                "review",
                target.id,
                "submit",
                after={"recommendation": verdict.value},
            )

        application = await ApplicationService.get_or_404(db, review.application_id)
        if application.status == ApplicationStatus.ED_DECISION.value:
            fill(review)
            await db.commit()
            logger.info("Late review %s recorded for %s", review.id, application.id)
            return review

        async def work(
            application: Application, transition: Transition, ctx: TransitionContext
        ) -> dict:
            target = await db.get(Review, review_id)
            fill(target)
            await db.flush()
            ctx.advance("review submitted")
            return {"review_id": str(review_id)}

        await ApplicationService.transition(
            db,
            principal,
            review.application_id,
            TransitionRequest(
                action=LifecycleAction.COMPLETE_REVIEW,
                permission="submit_review",
                idempotency_key=idempotency_key,
                resource=review,
                payload=payload,
                work=work,
            ),
        )
        return await db.get(Review, review_id)

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------

    @staticmethod
    async def list_for_application(
        db: AsyncSession, principal: Principal, application_id: uuid.UUID
    ) -> list[Review]:
        application = await ApplicationService.get_or_404(db, application_id)
        if not can(principal, "view_application", application):
            raise Unauthorized("You cannot view reviews for this application")
        result = await db.execute(
            select(Review)
            .where(Review.application_id == application_id)
            .order_by(Review.assigned_at.asc())
        )
        return list(result.scalars().all())

    @staticmethod
    async def my_reviews(
        db: AsyncSession, principal: Principal, pending_only: bool = False
    ) -> list[Review]:
        if not principal.is_authenticated:
            raise Unauthorized("Sign in to view assigned reviews")
        query = select(Review).where(Review.reviewer_id == principal.id)
        if pending_only:
            query = query.where(Review.submitted_at.is_(None))
        result = await db.execute(query.order_by(Review.assigned_at.desc()))
        return list(result.scalars().all())
