"""Decision & signature subsystem.

Recording a decision creates the Decision row, issues an ApprovalSignature
for approvals, renders the letter PDF, stores it in the object store and
appends it to the document ledger.  All of it runs as one transition intent.

Verification is public.  It recomputes the payload hash from stored rows and
answers every miss (unknown token, tampered row, no signature) with the
same ``{"valid": false}`` body.
"""

import asyncio
import hashlib
import hmac
import logging
import uuid
from functools import partial
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rars.errors import NotFound, Unauthorized
from rars.letters import LetterFields, render_decision_letter
from rars.lifecycle import Effect, Transition, decision_action
from rars.models.db.application import Application
from rars.models.db.decision import ApprovalSignature, Decision
from rars.models.db.user import Profile
from rars.models.enums import DecisionType, DocumentType
from rars.permissions import Principal, can
from rars.services.application_service import ApplicationService, TransitionRequest
from rars.services.audit_service import AuditService
from rars.services.document_service import DocumentService
from rars.services.transition_service import TransitionContext
from rars.storage import DocumentStorage

logger = logging.getLogger(__name__)

INVALID = {"valid": False}


def signature_payload(
    reference_number: str, title: str, applicant_name: str, decision: str, token: str
) -> str:
    return f"{reference_number}|{title}|{applicant_name}|{decision}|{token}"


def compute_payload_hash(
    reference_number: str, title: str, applicant_name: str, decision: str, token: str
) -> str:
    """SHA-256 hex digest binding a token to the decided application."""
    payload = signature_payload(reference_number, title, applicant_name, decision, token)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class DecisionService:
    # ------------------------------------------------------------------
    # record_decision
    # ------------------------------------------------------------------

    @staticmethod
    async def decide(
        db: AsyncSession,
        storage: DocumentStorage,
        principal: Principal,
        application_id: uuid.UUID,
        decision: str,
        notes: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> Decision:
        """ED_DECISION -> APPROVED | REJECTED with letter and (on approval) signature.

        Args:
            db: Async database session.
            storage: Object store receiving the letter PDF.
            principal: The deciding Executive Director / Admin Officer.
            application_id: Application awaiting a decision.
            decision: ``APPROVED`` or ``REJECTED``.
            notes: Optional notes printed on the letter.
            idempotency_key: Makes a retried request replay the first result.

        Returns:
            The Decision row.
        """
        action = decision_action(decision)

        async def work(
            application: Application, transition: Transition, ctx: TransitionContext
        ) -> dict:
            applicant = await db.get(Profile, application.applicant_id)
            decider = await db.get(Profile, principal.id)
            applicant_name = applicant.full_name if applicant else ""

            decision_row = Decision(
                application_id=application.id,
                decision=decision,
                decided_by=principal.id,
                notes=notes,
            )
            db.add(decision_row)
            await db.flush()
            ctx.advance("decision recorded")

            token: Optional[str] = None
            payload_hash: Optional[str] = None
            if Effect.ISSUE_SIGNATURE in transition.effects:
                token = str(uuid.uuid4())
                payload_hash = compute_payload_hash(
                    application.reference_number,
                    application.title,
                    applicant_name,
                    decision,
                    token,
                )
                db.add(
                    ApprovalSignature(
                        decision_id=decision_row.id,
                        application_id=application.id,
                        token=token,
                        payload_hash=payload_hash,
                        issued_by=principal.id,
                    )
                )
                await db.flush()
                ctx.advance("signature issued")

            if Effect.GENERATE_LETTER in transition.effects:
                letter = await asyncio.to_thread(
                    render_decision_letter,
                    LetterFields(
                        reference_number=application.reference_number,
                        title=application.title,
                        applicant_name=applicant_name,
                        decision=decision,
                        decision_date=decision_row.decision_date,
                        decider_name=decider.full_name if decider else principal.email,
                        notes=notes,
                        verification_token=token,
                        payload_hash=payload_hash,
                    ),
                )
                key = f"{principal.id}/letters/{application.id}_{decision}.pdf"
                await storage.upload(key, letter, "application/pdf")
                ctx.compensations.append(partial(storage.delete, key))
                ctx.advance("letter stored")

                letter_type = (
                    DocumentType.APPROVAL_LETTER
                    if decision == DecisionType.APPROVED.value
                    else DocumentType.REJECTION_LETTER
                )
                document = await DocumentService.record(
                    db,
                    application_id=application.id,
                    document_type=letter_type,
                    file_name=f"Decision_{application.reference_number}.pdf",
                    storage_key=key,
                    mime_type="application/pdf",
                    size_bytes=len(letter),
                    uploaded_by=principal.id,
                )
                decision_row.letter_document_id = document.id
                await db.flush()
                ctx.advance("letter recorded")

            AuditService.record(
                db,
                principal.id,
                "decision",
                decision_row.id,
                "record_decision",
                after={"decision": decision, "signed": token is not None},
            )
            return {"decision_id": str(decision_row.id)}

        _, result = await ApplicationService.transition(
            db,
            principal,
            application_id,
            TransitionRequest(
                action=action,
                permission="record_decision",
                idempotency_key=idempotency_key,
                reason=notes,
                payload={"decision": decision, "notes": notes},
                work=work,
            ),
        )
        decision_row = await db.get(Decision, uuid.UUID(result["decision_id"]))
        logger.info("Decision %s recorded for application %s", decision, application_id)
        return decision_row

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------

    @staticmethod
    async def for_application(
        db: AsyncSession, principal: Principal, application_id: uuid.UUID
    ) -> tuple[Decision, Optional[ApprovalSignature]]:
        application = await ApplicationService.get_or_404(db, application_id)
        if not can(principal, "view_application", application):
            raise Unauthorized("You cannot view this application")
        result = await db.execute(
            select(Decision).where(Decision.application_id == application_id)
        )
        decision = result.scalar_one_or_none()
        if decision is None:
            raise NotFound("No decision has been recorded for this application")
        signature = await db.execute(
            select(ApprovalSignature).where(ApprovalSignature.decision_id == decision.id)
        )
        return decision, signature.scalar_one_or_none()

    # ------------------------------------------------------------------
    # verify_token
    # ------------------------------------------------------------------

    @staticmethod
    async def verify(db: AsyncSession, token: str) -> dict[str, Any]:
        """Public verification of a letter token.

        Returns the decision metadata when the token exists, belongs to an
        APPROVED decision and its stored hash matches a fresh recomputation;
        otherwise exactly ``{"valid": False}``.
        """
        token = (token or "").strip()
        if not token or len(token) > 100:
            return dict(INVALID)

        result = await db.execute(
            select(ApprovalSignature, Decision, Application, Profile)
            .join(Decision, Decision.id == ApprovalSignature.decision_id)
            .join(Application, Application.id == Decision.application_id)
            .outerjoin(Profile, Profile.id == Application.applicant_id)
            .where(ApprovalSignature.token == token)
        )
        row = result.first()
        if row is None:
            return dict(INVALID)

        signature, decision, application, applicant = row
        if decision.decision != DecisionType.APPROVED.value:
            logger.warning("Signature %s bound to a non-approved decision", signature.id)
            return dict(INVALID)

        applicant_name = applicant.full_name if applicant else ""
        expected = compute_payload_hash(
            application.reference_number,
            application.title,
            applicant_name,
            decision.decision,
            signature.token,
        )
        if not hmac.compare_digest(expected, signature.payload_hash):
            logger.warning(
                "Hash mismatch for signature %s on application %s",
                signature.id,
                application.id,
            )
            return dict(INVALID)

        return {
            "valid": True,
            "issued_at": signature.issued_at,
            "decision": decision.decision,
            "decision_date": decision.decision_date,
            "reference_number": application.reference_number,
            "title": application.title,
            "applicant_name": applicant_name,
            "payload_hash": signature.payload_hash,
        }
