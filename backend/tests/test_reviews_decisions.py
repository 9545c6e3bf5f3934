"""
Tests for reviewer assignment, review submission, decisions, signed
letters and public token verification.

Usage:
    pytest backend/tests/test_reviews_decisions.py -v
"""

import asyncio

import pytest
from sqlalchemy import func, select

from rars.errors import (
    InvalidTransition,
    Unauthorized,
    UpstreamFailure,
    ValidationFailure,
)
from rars.letters import LetterFields, render_decision_letter, verification_url
from rars.models.db.base import utcnow
from rars.models.db.decision import ApprovalSignature, Decision
from rars.models.db.intent import TransitionIntent
from rars.models.db.notification import Notification
from rars.models.enums import ApplicationStatus, DocumentType, IntentStatus
from rars.services.application_service import ApplicationService
from rars.services.audit_service import AuditService
from rars.services.decision_service import DecisionService, compute_payload_hash
from rars.services.document_service import DocumentService
from rars.services.review_service import ReviewService


class TestReviews:
    def test_assign_and_submit_moves_to_decision(self, world):
        async def scenario():
            async with world.session() as db:
                application = await world.submitted(db)
                review = await ReviewService.assign(
                    db, world.officer, application.id, world.reviewer.id, "PROGRAM"
                )
                application = await ApplicationService.get_or_404(db, application.id)
                assert application.status == ApplicationStatus.IN_REVIEW.value
                assert application.turnaround_deadline is not None
                assert review.stage == "PROGRAM"

                inbox = await db.execute(
                    select(Notification.title).where(
                        Notification.user_id == world.reviewer.id
                    )
                )
                assert "New review assigned" in inbox.scalars().all()

                pending = await ReviewService.my_reviews(
                    db, world.reviewer, pending_only=True
                )
                assert [r.id for r in pending] == [review.id]

                submitted = await ReviewService.submit(
                    db, world.reviewer, review.id, "APPROVE", "Methodology is sound"
                )
                assert submitted.recommendation == "APPROVE"
                assert submitted.submitted_at is not None
                application = await ApplicationService.get_or_404(db, application.id)
                assert application.status == ApplicationStatus.ED_DECISION.value
                assert await ReviewService.my_reviews(
                    db, world.reviewer, pending_only=True
                ) == []

        asyncio.run(scenario())

    def test_assignee_must_hold_reviewer_role(self, world):
        async def scenario():
            async with world.session() as db:
                application = await world.submitted(db)
                with pytest.raises(ValidationFailure):
                    await ReviewService.assign(
                        db, world.officer, application.id, world.outsider.id, "PROGRAM"
                    )

        asyncio.run(scenario())

    def test_unknown_stage_rejected(self, world):
        async def scenario():
            async with world.session() as db:
                application = await world.submitted(db)
                with pytest.raises(ValidationFailure):
                    await ReviewService.assign(
                        db, world.officer, application.id, world.reviewer.id, "FINANCE"
                    )

        asyncio.run(scenario())

    def test_only_assigned_reviewer_submits(self, world):
        async def scenario():
            async with world.session() as db:
                application = await world.submitted(db)
                review = await ReviewService.assign(
                    db, world.officer, application.id, world.reviewer.id, "PROGRAM"
                )
                with pytest.raises(Unauthorized):
                    await ReviewService.submit(
                        db, world.second_reviewer, review.id, "REJECT"
                    )

        asyncio.run(scenario())

    def test_additional_stage_and_late_review(self, world):
        """The first submission triggers ED_DECISION; later ones are only recorded."""

        async def scenario():
            async with world.session() as db:
                application = await world.submitted(db)
                program = await ReviewService.assign(
                    db, world.officer, application.id, world.reviewer.id, "PROGRAM"
                )
                data_owner = await ReviewService.assign(
                    db,
                    world.officer,
                    application.id,
                    world.second_reviewer.id,
                    "DATA_OWNER",
                )
                with pytest.raises(ValidationFailure):
                    await ReviewService.assign(
                        db, world.officer, application.id, world.reviewer.id, "PROGRAM"
                    )

                await ReviewService.submit(db, world.reviewer, program.id, "APPROVE")
                late = await ReviewService.submit(
                    db, world.second_reviewer, data_owner.id, "REJECT", "Data too granular"
                )
                assert late.recommendation == "REJECT"

                application = await ApplicationService.get_or_404(db, application.id)
                assert application.status == ApplicationStatus.ED_DECISION.value
                reviews = await ReviewService.list_for_application(
                    db, world.applicant, application.id
                )
                assert {r.stage for r in reviews} == {"PROGRAM", "DATA_OWNER"}

        asyncio.run(scenario())

    def test_review_submission_replay(self, world):
        async def scenario():
            async with world.session() as db:
                application = await world.submitted(db)
                review = await ReviewService.assign(
                    db, world.officer, application.id, world.reviewer.id, "PROGRAM"
                )
                await ReviewService.submit(
                    db, world.reviewer, review.id, "APPROVE", idempotency_key="rv-1"
                )
                replay = await ReviewService.submit(
                    db, world.reviewer, review.id, "APPROVE", idempotency_key="rv-1"
                )
                assert replay.id == review.id
                with pytest.raises(InvalidTransition):
                    await ReviewService.submit(db, world.reviewer, review.id, "APPROVE")
                with pytest.raises(ValidationFailure):
                    await ReviewService.submit(
                        db, world.reviewer, review.id, "REJECT", idempotency_key="rv-1"
                    )

        asyncio.run(scenario())

    def test_assignment_key_is_bound_to_reviewer_and_stage(self, world):
        async def scenario():
            async with world.session() as db:
                application = await world.submitted(db)
                first = await ReviewService.assign(
                    db,
                    world.officer,
                    application.id,
                    world.reviewer.id,
                    "PROGRAM",
                    idempotency_key="k-assign",
                )
                replay = await ReviewService.assign(
                    db,
                    world.officer,
                    application.id,
                    world.reviewer.id,
                    "PROGRAM",
                    idempotency_key="k-assign",
                )
                assert replay.id == first.id

                with pytest.raises(ValidationFailure):
                    await ReviewService.assign(
                        db,
                        world.officer,
                        application.id,
                        world.second_reviewer.id,
                        "DATA_OWNER",
                        idempotency_key="k-assign",
                    )

                second = await ReviewService.assign(
                    db,
                    world.officer,
                    application.id,
                    world.second_reviewer.id,
                    "DATA_OWNER",
                    idempotency_key="k-assign-2",
                )
                reviews = await ReviewService.list_for_application(
                    db, world.officer, application.id
                )
                assert {r.id for r in reviews} == {first.id, second.id}

        asyncio.run(scenario())


class TestDecisions:
    def test_approval_issues_signature_and_letter(self, world):
        async def scenario():
            async with world.session() as db:
                application = await world.awaiting_decision(db)
                decision = await DecisionService.decide(
                    db,
                    world.storage,
                    world.director,
                    application.id,
                    "APPROVED",
                    "Proceed with data access",
                )
                application = await ApplicationService.get_or_404(db, application.id)
                assert application.status == ApplicationStatus.APPROVED.value
                assert application.decided_at is not None
                assert decision.decision == "APPROVED"

                decision, signature = await DecisionService.for_application(
                    db, world.applicant, application.id
                )
                assert signature is not None
                assert signature.payload_hash == compute_payload_hash(
                    application.reference_number,
                    application.title,
                    "Amina Juma",
                    "APPROVED",
                    signature.token,
                )

                letter = await DocumentService.latest(
                    db, application.id, DocumentType.APPROVAL_LETTER
                )
                assert letter.id == decision.letter_document_id
                assert letter.file_name == f"Decision_{application.reference_number}.pdf"
                assert world.storage.blobs[letter.storage_key].startswith(b"%PDF")

        asyncio.run(scenario())

    def test_rejection_has_letter_but_no_signature(self, world):
        async def scenario():
            async with world.session() as db:
                application = await world.awaiting_decision(db)
                await DecisionService.decide(
                    db, world.storage, world.director, application.id, "REJECTED"
                )
                application = await ApplicationService.get_or_404(db, application.id)
                assert application.status == ApplicationStatus.REJECTED.value

                _, signature = await DecisionService.for_application(
                    db, world.officer, application.id
                )
                assert signature is None
                letter = await DocumentService.latest(
                    db, application.id, DocumentType.REJECTION_LETTER
                )
                assert letter is not None

                # Terminal: nothing moves a rejected application.
                with pytest.raises(InvalidTransition):
                    await ApplicationService.activate_research(
                        db, world.officer, application.id
                    )

        asyncio.run(scenario())

    def test_reviewer_cannot_decide(self, world):
        async def scenario():
            async with world.session() as db:
                application = await world.awaiting_decision(db)
                with pytest.raises(Unauthorized):
                    await DecisionService.decide(
                        db, world.storage, world.reviewer, application.id, "APPROVED"
                    )

        asyncio.run(scenario())

    def test_decision_requires_ed_decision_status(self, world):
        async def scenario():
            async with world.session() as db:
                application = await world.submitted(db)
                with pytest.raises(InvalidTransition):
                    await DecisionService.decide(
                        db, world.storage, world.director, application.id, "APPROVED"
                    )

        asyncio.run(scenario())

    def test_failed_decision_resumes_with_same_key(self, world):
        """A storage outage leaves a FAILED intent; the retry completes it."""

        async def scenario():
            async with world.session() as db:
                application = await world.awaiting_decision(db)
                application_id = application.id

            world.storage.fail_next_uploads = 1
            async with world.session() as db:
                with pytest.raises(UpstreamFailure):
                    await DecisionService.decide(
                        db,
                        world.storage,
                        world.director,
                        application_id,
                        "APPROVED",
                        idempotency_key="decide-1",
                    )

            async with world.session() as db:
                application = await ApplicationService.get_or_404(db, application_id)
                assert application.status == ApplicationStatus.ED_DECISION.value
                decisions = await db.execute(select(func.count(Decision.id)))
                assert decisions.scalar_one() == 0
                intent = (
                    await db.execute(
                        select(TransitionIntent).where(
                            TransitionIntent.idempotency_key == "decide-1"
                        )
                    )
                ).scalar_one()
                assert intent.status == IntentStatus.FAILED.value
                # Decision recorded and signature issued before the upload failed.
                assert intent.step == 2
                assert "UpstreamFailure" in intent.error
                trail = await AuditService.for_entity(db, "application", application_id)
                assert "approve" not in [entry.action for entry in trail]

            async with world.session() as db:
                await DecisionService.decide(
                    db,
                    world.storage,
                    world.director,
                    application_id,
                    "APPROVED",
                    idempotency_key="decide-1",
                )
                intent = (
                    await db.execute(
                        select(TransitionIntent).where(
                            TransitionIntent.idempotency_key == "decide-1"
                        )
                    )
                ).scalar_one()
                assert intent.status == IntentStatus.COMPLETED.value
                signatures = await db.execute(select(func.count(ApprovalSignature.id)))
                assert signatures.scalar_one() == 1
                trail = await AuditService.for_entity(db, "application", application_id)
                assert [entry.action for entry in trail].count("approve") == 1

        asyncio.run(scenario())

    def test_stored_letter_is_removed_when_a_later_step_fails(self, world, monkeypatch):
        async def failing_record(db, **fields):
            raise UpstreamFailure("ledger unavailable")

        async def scenario():
            async with world.session() as db:
                application = await world.awaiting_decision(db)
                application_id = application.id
                monkeypatch.setattr(DocumentService, "record", staticmethod(failing_record))
                with pytest.raises(UpstreamFailure):
                    await DecisionService.decide(
                        db, world.storage, world.director, application_id, "REJECTED"
                    )
            assert len(world.storage.deleted) == 1
            assert world.storage.deleted[0].endswith(f"{application_id}_REJECTED.pdf")
            assert world.storage.deleted[0] not in world.storage.blobs

        asyncio.run(scenario())


class TestVerification:
    def test_valid_token(self, world):
        async def scenario():
            async with world.session() as db:
                application = await world.approved(db)
                _, signature = await DecisionService.for_application(
                    db, world.applicant, application.id
                )
                result = await DecisionService.verify(db, signature.token)
                assert result["valid"] is True
                assert result["reference_number"] == application.reference_number
                assert result["decision"] == "APPROVED"
                assert result["applicant_name"] == "Amina Juma"

        asyncio.run(scenario())

    @pytest.mark.parametrize("token", ["", "not-a-token", "x" * 500])
    def test_unknown_token(self, world, token):
        async def scenario():
            async with world.session() as db:
                assert await DecisionService.verify(db, token) == {"valid": False}

        asyncio.run(scenario())

    def test_tampered_title_invalidates(self, world):
        async def scenario():
            async with world.session() as db:
                application = await world.approved(db)
                _, signature = await DecisionService.for_application(
                    db, world.applicant, application.id
                )
                application.title = "A different study"
                await db.commit()
                assert await DecisionService.verify(db, signature.token) == {
                    "valid": False
                }

        asyncio.run(scenario())

    def test_non_approved_decision_invalidates(self, world):
        async def scenario():
            async with world.session() as db:
                application = await world.approved(db)
                decision, signature = await DecisionService.for_application(
                    db, world.applicant, application.id
                )
                decision.decision = "REJECTED"
                await db.commit()
                assert await DecisionService.verify(db, signature.token) == {
                    "valid": False
                }

        asyncio.run(scenario())


class TestLetters:
    def test_render_approval_letter(self):
        pdf = render_decision_letter(
            LetterFields(
                reference_number="RARS-2026-ABC123",
                title="Malaria <prevalence> & outcomes",
                applicant_name="Amina Juma",
                decision="APPROVED",
                decision_date=utcnow(),
                decider_name="Executive Director",
                notes="Proceed",
                verification_token="0f8fad5b-d9cb-469f-a165-70867728950e",
                payload_hash="ab" * 32,
            )
        )
        assert pdf.startswith(b"%PDF")

    def test_verification_url(self):
        assert verification_url("abc").endswith("/verify/abc")
