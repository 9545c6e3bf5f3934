"""
Service-level tests for drafting, submission, screening and return.

Covers the submission guard (ethics approval), deadline stamping, the
return-for-correction loop, visibility rules and transition idempotency.

Usage:
    pytest backend/tests/test_application_flow.py -v
"""

import asyncio
from datetime import date, datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from rars.errors import InvalidTransition, NotFound, Unauthorized, ValidationFailure
from rars.models.db.intent import TransitionIntent
from rars.models.db.notification import Notification
from rars.models.db.system_settings import SystemSetting
from rars.models.enums import ApplicationStatus, DocumentType, IntentStatus
from rars.services.application_service import ApplicationService
from rars.services.audit_service import AuditService


def _aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes.
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class TestDrafts:
    def test_create_assigns_reference_and_draft_status(self, world):
        async def scenario():
            async with world.session() as db:
                application = await world.draft(db)
                assert application.status == ApplicationStatus.DRAFT.value
                assert application.reference_number.startswith(
                    f"RARS-{date.today():%Y}-"
                )
                assert application.applicant_type == "NGO"
                assert application.ethics_approved is False

                history = await ApplicationService.history(
                    db, world.applicant, application.id
                )
                assert [h.new_status for h in history] == ["DRAFT"]

        asyncio.run(scenario())

    def test_staff_cannot_create_applications(self, world):
        async def scenario():
            async with world.session() as db:
                with pytest.raises(Unauthorized):
                    await ApplicationService.create(db, world.officer, {"title": "X"})

        asyncio.run(scenario())

    def test_ethics_flag_cannot_be_set_directly(self, world):
        async def scenario():
            async with world.session() as db:
                application = await world.draft(db, ethics_approved=True)
                assert application.ethics_approved is False

        asyncio.run(scenario())

    def test_update_draft_validates_dates(self, world):
        async def scenario():
            async with world.session() as db:
                application = await world.draft(db, start_date=date(2025, 3, 1))
                with pytest.raises(ValidationFailure):
                    await ApplicationService.update_draft(
                        db,
                        world.applicant,
                        application.id,
                        {"end_date": date(2025, 1, 1)},
                    )

                updated = await ApplicationService.update_draft(
                    db,
                    world.applicant,
                    application.id,
                    {"title": "Study A (revised)", "data_type": "PATIENT_LEVEL"},
                )
                assert updated.title == "Study A (revised)"
                assert updated.data_type == "PATIENT_LEVEL"

        asyncio.run(scenario())

    def test_only_owner_edits(self, world):
        async def scenario():
            async with world.session() as db:
                application = await world.draft(db)
                with pytest.raises(Unauthorized):
                    await ApplicationService.update_draft(
                        db, world.outsider, application.id, {"title": "Hijacked"}
                    )

        asyncio.run(scenario())

    def test_visibility(self, world):
        async def scenario():
            async with world.session() as db:
                mine = await world.draft(db)
                await world.draft(db, owner=world.outsider, title="Study B")

                own_list = await ApplicationService.list_applications(db, world.applicant)
                assert [a.id for a in own_list] == [mine.id]

                staff_list = await ApplicationService.list_applications(db, world.officer)
                assert len(staff_list) == 2

                with pytest.raises(Unauthorized):
                    await ApplicationService.get(db, world.outsider, mine.id)
                with pytest.raises(NotFound):
                    await ApplicationService.get(db, world.officer, world.officer.id)

        asyncio.run(scenario())


class TestSubmission:
    def test_submit_requires_ethics_letter(self, world):
        """DRAFT without ethics approval cannot be submitted until the letter arrives."""

        async def scenario():
            async with world.session() as db:
                application = await world.draft(db, title="Study A")

                with pytest.raises(InvalidTransition):
                    await ApplicationService.submit(db, world.applicant, application.id)
                application = await ApplicationService.get_or_404(db, application.id)
                assert application.status == ApplicationStatus.DRAFT.value

                await world.upload(db, application.id, DocumentType.ETHICS_LETTER)
                application = await ApplicationService.get_or_404(db, application.id)
                assert application.ethics_approved is True

                before = datetime.now(timezone.utc)
                submitted = await ApplicationService.submit(
                    db, world.applicant, application.id
                )
                assert submitted.status == ApplicationStatus.SUBMITTED.value
                assert submitted.submitted_at is not None
                deadline = _aware(submitted.screening_deadline)
                assert before + timedelta(days=13) < deadline
                assert deadline < before + timedelta(days=15)

                notes = await db.execute(
                    select(Notification).where(
                        Notification.user_id == world.applicant.id
                    )
                )
                assert any(
                    n.title == "Application submitted" for n in notes.scalars()
                )

        asyncio.run(scenario())

    def test_screening_days_come_from_settings(self, world):
        async def scenario():
            async with world.session() as db:
                db.add(SystemSetting(key="screening_days", value=3))
                await db.commit()

                before = datetime.now(timezone.utc)
                application = await world.submitted(db)
                deadline = _aware(application.screening_deadline)
                assert deadline < before + timedelta(days=4)

        asyncio.run(scenario())

    def test_malformed_setting_falls_back_to_default(self, world):
        async def scenario():
            async with world.session() as db:
                db.add(SystemSetting(key="screening_days", value="soon"))
                await db.commit()

                before = datetime.now(timezone.utc)
                application = await world.submitted(db)
                deadline = _aware(application.screening_deadline)
                assert deadline > before + timedelta(days=13)

        asyncio.run(scenario())

    def test_failed_guard_writes_nothing(self, world):
        async def scenario():
            async with world.session() as db:
                application = await world.draft(db)
                with pytest.raises(InvalidTransition):
                    await ApplicationService.submit(db, world.applicant, application.id)

                intents = await db.execute(select(func.count(TransitionIntent.id)))
                assert intents.scalar_one() == 0
                history = await ApplicationService.history(
                    db, world.applicant, application.id
                )
                assert len(history) == 1

        asyncio.run(scenario())

    def test_submission_is_audited(self, world):
        async def scenario():
            async with world.session() as db:
                application = await world.submitted(db)
                trail = await AuditService.for_entity(db, "application", application.id)
                assert [entry.action for entry in trail] == [
                    "create",
                    "submit_application",
                ]
                submit = trail[-1]
                assert submit.actor_id == world.applicant.id
                assert submit.before_json["status"] == "DRAFT"
                assert submit.after_json["status"] == "SUBMITTED"
                assert submit.after_json["ethics_approved"] is True

        asyncio.run(scenario())

    def test_outsider_cannot_submit(self, world):
        async def scenario():
            async with world.session() as db:
                application = await world.draft(db)
                await world.upload(db, application.id, DocumentType.ETHICS_LETTER)
                with pytest.raises(Unauthorized):
                    await ApplicationService.submit(db, world.outsider, application.id)

        asyncio.run(scenario())


class TestScreening:
    def test_return_and_resubmit(self, world):
        async def scenario():
            async with world.session() as db:
                application = await world.submitted(db)
                await ApplicationService.start_screening(db, world.officer, application.id)

                returned = await ApplicationService.return_application(
                    db, world.officer, application.id, "Please attach the consent form"
                )
                assert returned.status == ApplicationStatus.RETURNED.value

                messages = await ApplicationService.messages(
                    db, world.applicant, application.id
                )
                assert len(messages) == 1
                assert "consent form" in messages[0].body

                await ApplicationService.update_draft(
                    db, world.applicant, application.id, {"abstract": "With consent form"}
                )
                await db.commit()
                resubmitted = await ApplicationService.submit(
                    db, world.applicant, application.id
                )
                assert resubmitted.status == ApplicationStatus.SUBMITTED.value

                history = await ApplicationService.history(
                    db, world.applicant, application.id
                )
                assert [h.new_status for h in history] == [
                    "DRAFT",
                    "SUBMITTED",
                    "SCREENING",
                    "RETURNED",
                    "SUBMITTED",
                ]
                assert history[3].reason == "Please attach the consent form"

        asyncio.run(scenario())

    def test_return_requires_reason(self, world):
        async def scenario():
            async with world.session() as db:
                application = await world.submitted(db)
                with pytest.raises(ValidationFailure):
                    await ApplicationService.return_application(
                        db, world.officer, application.id, "   "
                    )

        asyncio.run(scenario())

    def test_applicant_cannot_screen(self, world):
        async def scenario():
            async with world.session() as db:
                application = await world.submitted(db)
                with pytest.raises(Unauthorized):
                    await ApplicationService.start_screening(
                        db, world.applicant, application.id
                    )

        asyncio.run(scenario())

    def test_forward_requires_complete_checklist(self, world):
        async def scenario():
            async with world.session() as db:
                application = await world.draft(db)
                await world.upload(db, application.id, DocumentType.ETHICS_LETTER)
                await ApplicationService.submit(db, world.applicant, application.id)

                with pytest.raises(InvalidTransition) as exc_info:
                    await ApplicationService.forward_to_review(
                        db, world.officer, application.id
                    )
                assert exc_info.value.context["missing"] == ["PROPOSAL"]

                # Staff may add the missing document after submission.
                await world.upload(
                    db, application.id, DocumentType.PROPOSAL, principal=world.officer
                )
                forwarded = await ApplicationService.forward_to_review(
                    db, world.officer, application.id
                )
                assert forwarded.status == ApplicationStatus.IN_REVIEW.value
                assert forwarded.turnaround_deadline is not None

        asyncio.run(scenario())


class TestIdempotency:
    def test_completed_intent_is_replayed(self, world):
        async def scenario():
            async with world.session() as db:
                application = await world.draft(db)
                await world.upload(db, application.id, DocumentType.ETHICS_LETTER)

                first = await ApplicationService.submit(
                    db, world.applicant, application.id, idempotency_key="submit-1"
                )
                again = await ApplicationService.submit(
                    db, world.applicant, application.id, idempotency_key="submit-1"
                )
                assert again.status == first.status == ApplicationStatus.SUBMITTED.value

                history = await ApplicationService.history(
                    db, world.applicant, application.id
                )
                assert [h.new_status for h in history] == ["DRAFT", "SUBMITTED"]

                intent = (
                    await db.execute(
                        select(TransitionIntent).where(
                            TransitionIntent.idempotency_key == "submit-1"
                        )
                    )
                ).scalar_one()
                assert intent.status == IntentStatus.COMPLETED.value
                assert intent.result_json["status"] == "SUBMITTED"

                # Without the key a second submit is an invalid transition.
                with pytest.raises(InvalidTransition):
                    await ApplicationService.submit(db, world.applicant, application.id)

        asyncio.run(scenario())

    def test_key_reused_for_other_operation_is_rejected(self, world):
        async def scenario():
            async with world.session() as db:
                application = await world.submitted(db)
                await ApplicationService.start_screening(
                    db, world.officer, application.id, idempotency_key="k-1"
                )
                with pytest.raises(ValidationFailure):
                    await ApplicationService.return_application(
                        db, world.officer, application.id, "Fix it", idempotency_key="k-1"
                    )

        asyncio.run(scenario())
