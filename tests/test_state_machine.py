"""
Tests for the qualification state machine
"""

from datetime import datetime
from unittest.mock import MagicMock
from uuid import uuid4

import pytest
from sqlalchemy.orm.exc import StaleDataError

from meetflow.database.crud import MeetingCRUD
from meetflow.database.models import CallRecording, MeetingStatus, TransitionTrigger
from meetflow.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from meetflow.qualification import state_machine
from meetflow.qualification.state_machine import validate_checklist

MEETING_DATE = datetime(2026, 11, 2, 15, 0)


@pytest.fixture
def machine(app):
    return app.state.state_machine


async def book(machine, session, world, **overrides):
    fields = dict(
        sales_rep_id=world.rep_id,
        campaign_id=world.campaign_id,
        contact_name="Dana Smith",
        meeting_date=MEETING_DATE,
        qualification_checklist=[True, True, False],
        actor_id="sdr-user",
    )
    fields.update(overrides)
    return await machine.create_meeting(session, **fields)


class TestChecklist:

    def test_accepts_mandatory_items(self):
        assert validate_checklist([True, True, False], 3) == [True, True, False]

    def test_rejects_unticked_mandatory(self):
        with pytest.raises(ValidationError):
            validate_checklist([True, False, True], 3)

    def test_rejects_length_mismatch(self):
        with pytest.raises(ValidationError):
            validate_checklist([True, True], 3)

    def test_rejects_non_booleans(self):
        with pytest.raises(ValidationError):
            validate_checklist([1, 1, 0], 3)

    def test_single_criterion(self):
        assert validate_checklist([True], 1) == [True]
        with pytest.raises(ValidationError):
            validate_checklist([False], 1)


class TestCreateMeeting:

    @pytest.mark.asyncio
    async def test_created_pending_with_history(self, machine, session, world):
        meeting = await book(machine, session, world)

        assert meeting.status == MeetingStatus.PENDING.value
        assert meeting.version == 1
        history = await MeetingCRUD.get_status_history(session, meeting.id)
        assert [(h.from_status, h.to_status, h.trigger) for h in history] == [
            (None, "pending", TransitionTrigger.CREATED.value)
        ]

    @pytest.mark.asyncio
    async def test_unapproved_rep(self, machine, session, world):
        with pytest.raises(AuthorizationError):
            await book(machine, session, world, sales_rep_id=world.idle_rep_id)

    @pytest.mark.asyncio
    async def test_unknown_campaign(self, machine, session, world):
        with pytest.raises(NotFoundError):
            await book(machine, session, world, campaign_id=uuid4())

    @pytest.mark.asyncio
    async def test_attaches_recording(self, machine, session, world):
        recording = CallRecording(
            sales_rep_id=world.rep_id,
            campaign_id=world.campaign_id,
            storage_path="rep/campaign/call.mp3",
            file_name="call.mp3",
        )
        session.add(recording)
        await session.commit()

        meeting = await book(machine, session, world, call_recording_id=recording.id)

        await session.refresh(recording)
        assert recording.meeting_id == meeting.id

    @pytest.mark.asyncio
    async def test_rejects_foreign_recording(self, machine, session, world):
        recording = CallRecording(
            sales_rep_id=world.idle_rep_id,
            campaign_id=world.campaign_id,
            storage_path="idle/campaign/call.mp3",
            file_name="call.mp3",
        )
        session.add(recording)
        await session.commit()

        with pytest.raises(ValidationError):
            await book(machine, session, world, call_recording_id=recording.id)


class TestTransitions:

    @pytest.mark.asyncio
    async def test_admin_approve(self, machine, session, world):
        meeting = await book(machine, session, world)

        review, meeting = await machine.record_admin_review(
            session, meeting.id, "approve", reviewed_by="admin-user", qualification_score=88
        )

        assert meeting.status == "qualified"
        assert meeting.version == 2
        assert review.review_decision == "approve"
        history = await MeetingCRUD.get_status_history(session, meeting.id)
        assert history[-1].source_id == str(review.id)
        assert history[-1].actor_id == "admin-user"

    @pytest.mark.asyncio
    async def test_needs_revision_keeps_status(self, machine, session, world):
        meeting = await book(machine, session, world)

        review, meeting = await machine.record_admin_review(
            session, meeting.id, "needs_revision", reviewed_by="admin-user", review_notes="Missing recording"
        )

        assert meeting.status == "pending"
        assert meeting.version == 1
        assert len(await MeetingCRUD.get_status_history(session, meeting.id)) == 1

    @pytest.mark.asyncio
    async def test_invalid_review_decision(self, machine, session, world):
        meeting = await book(machine, session, world)

        with pytest.raises(ValidationError):
            await machine.record_admin_review(session, meeting.id, "maybe", reviewed_by="admin-user")

    @pytest.mark.asyncio
    async def test_company_rejection_then_approval(self, machine, session, world):
        meeting = await book(machine, session, world)

        decision, meeting = await machine.record_company_decision(
            session, meeting.id, False, decided_by="company-user", rejection_reason="Wrong persona"
        )
        assert meeting.status == "not_qualified"
        assert meeting.rejection_reason == "Wrong persona"
        assert decision.rejection_reason == "Wrong persona"

        decision, meeting = await machine.record_company_decision(
            session, meeting.id, True, decided_by="company-user", rejection_reason="ignored"
        )
        assert meeting.status == "qualified"
        assert meeting.rejection_reason is None
        assert decision.rejection_reason is None

    @pytest.mark.asyncio
    async def test_stale_expected_version(self, machine, session, world):
        meeting = await book(machine, session, world)
        await machine.record_admin_review(session, meeting.id, "approve", reviewed_by="admin-user")

        with pytest.raises(ConflictError):
            await machine.record_company_decision(
                session, meeting.id, False, decided_by="company-user", expected_version=1
            )

    @pytest.mark.asyncio
    async def test_unknown_meeting(self, machine, session, world):
        with pytest.raises(NotFoundError):
            await machine.record_company_decision(session, uuid4(), True, decided_by="company-user")

    @pytest.mark.asyncio
    async def test_version_conflict_is_retried(self, machine, session, world, monkeypatch):
        """A concurrent write is absorbed by re-reading the meeting"""
        meeting = await book(machine, session, world)
        real_commit = session.commit
        commits = []

        async def flaky_commit():
            commits.append(1)
            if len(commits) == 1:
                raise StaleDataError("meetings row was updated concurrently")
            await real_commit()

        monkeypatch.setattr(session, "commit", flaky_commit)
        meeting = await machine._transition(
            session, meeting.id, MeetingStatus.QUALIFIED, TransitionTrigger.ADMIN_REVIEW, actor_id="admin-user"
        )
        monkeypatch.undo()

        assert len(commits) == 2
        assert meeting.status == "qualified"
        history = await MeetingCRUD.get_status_history(session, meeting.id)
        assert [h.to_status for h in history] == ["pending", "qualified"]

    @pytest.mark.asyncio
    async def test_version_conflict_gives_up(self, machine, session, world, monkeypatch):
        meeting = await book(machine, session, world)
        meeting_id = meeting.id

        async def always_stale():
            raise StaleDataError("meetings row was updated concurrently")

        monkeypatch.setattr(session, "commit", always_stale)
        with pytest.raises(ConflictError):
            await machine._transition(
                session, meeting_id, MeetingStatus.QUALIFIED, TransitionTrigger.ADMIN_REVIEW
            )
        monkeypatch.undo()

        meeting = await MeetingCRUD.get_meeting(session, meeting_id)
        assert meeting.status == "pending"


class TestDisputes:

    @pytest.mark.asyncio
    async def test_dispute_overrides_qualified(self, machine, session, world):
        meeting = await book(machine, session, world)
        await machine.record_company_decision(session, meeting.id, True, decided_by="company-user")

        dispute, meeting = await machine.open_dispute(
            session, meeting.id, raised_by="sdr-user", dispute_type="qualification",
            reason="Prospect confirmed budget on the call"
        )

        assert dispute.status == "open"
        assert meeting.status == "disputed"

    @pytest.mark.asyncio
    async def test_short_reason(self, machine, session, world):
        meeting = await book(machine, session, world)

        with pytest.raises(ValidationError):
            await machine.open_dispute(session, meeting.id, "sdr-user", "quality", "too short")

    @pytest.mark.asyncio
    async def test_invalid_type(self, machine, session, world):
        meeting = await book(machine, session, world)

        with pytest.raises(ValidationError):
            await machine.open_dispute(session, meeting.id, "sdr-user", "billing", "Prospect never showed up")

    @pytest.mark.asyncio
    async def test_review_and_resolve(self, machine, session, world):
        meeting = await book(machine, session, world)
        dispute, _ = await machine.open_dispute(
            session, meeting.id, "company-user", "quality", "Prospect was not the decision maker"
        )

        dispute = await machine.start_dispute_review(session, dispute.id, "admin-user")
        assert dispute.status == "under_review"
        with pytest.raises(ConflictError):
            await machine.start_dispute_review(session, dispute.id, "admin-user")

        dispute = await machine.resolve_dispute(
            session, dispute.id, "Recording confirms decision maker", "resolved", "admin-user"
        )
        assert dispute.status == "resolved"
        assert dispute.resolved_by == "admin-user"
        assert dispute.resolved_at is not None

        with pytest.raises(ConflictError):
            await machine.resolve_dispute(session, dispute.id, "Again", "rejected", "admin-user")

        # Closing the dispute leaves the outcome to a follow-up decision
        meeting = await MeetingCRUD.get_meeting(session, meeting.id)
        assert meeting.status == "disputed"

    @pytest.mark.asyncio
    async def test_resolution_requires_closed_status(self, machine, session, world):
        meeting = await book(machine, session, world)
        dispute, _ = await machine.open_dispute(
            session, meeting.id, "company-user", "other", "Contact details were fabricated"
        )

        with pytest.raises(ValidationError):
            await machine.resolve_dispute(session, dispute.id, "Looked into it", "open", "admin-user")

    @pytest.mark.asyncio
    async def test_unknown_dispute(self, machine, session, world):
        with pytest.raises(NotFoundError):
            await machine.start_dispute_review(session, uuid4(), "admin-user")
        with pytest.raises(NotFoundError):
            await machine.resolve_dispute(session, uuid4(), "n/a", "rejected", "admin-user")

    @pytest.mark.asyncio
    async def test_decision_after_dispute_wins(self, machine, session, world):
        """Disputes are not terminal: the last accepted decision sets the status"""
        meeting = await book(machine, session, world)
        await machine.open_dispute(session, meeting.id, "sdr-user", "payment", "Payment was withheld twice")

        _, meeting = await machine.record_admin_review(session, meeting.id, "reject", reviewed_by="admin-user")

        assert meeting.status == "not_qualified"
        history = await MeetingCRUD.get_status_history(session, meeting.id)
        assert [h.to_status for h in history] == ["pending", "disputed", "not_qualified"]

    @pytest.mark.asyncio
    async def test_decision_on_open_dispute_is_logged(self, machine, session, world, monkeypatch):
        meeting = await book(machine, session, world)
        await machine.open_dispute(session, meeting.id, "company-user", "quality", "Prospect was not the decision maker")
        logger = MagicMock()
        monkeypatch.setattr(state_machine, "logger", logger)

        _, meeting = await machine.record_company_decision(session, meeting.id, True, decided_by="company-user")

        assert meeting.status == "qualified"
        logger.warning.assert_called_once()
        assert logger.warning.call_args.kwargs["open_disputes"] == 1

    @pytest.mark.asyncio
    async def test_closed_dispute_does_not_warn(self, machine, session, world, monkeypatch):
        meeting = await book(machine, session, world)
        dispute, _ = await machine.open_dispute(
            session, meeting.id, "company-user", "quality", "Prospect was not the decision maker"
        )
        await machine.resolve_dispute(session, dispute.id, "Checked the recording", "rejected", "admin-user")
        logger = MagicMock()
        monkeypatch.setattr(state_machine, "logger", logger)

        _, meeting = await machine.record_admin_review(session, meeting.id, "approve", reviewed_by="admin-user")

        assert meeting.status == "qualified"
        logger.warning.assert_not_called()
