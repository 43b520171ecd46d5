"""
Qualification state machine
Sole writer of Meeting.status; every applied transition leaves a history row
"""

from datetime import datetime
from typing import Any, List, Optional, Tuple
from uuid import UUID

import structlog
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from ..analysis.qualification_scorer import parse_criteria
from ..config import Settings
from ..database.crud import CampaignCRUD, DisputeCRUD, MeetingCRUD, RecordingCRUD
from ..database.models import (
    AdminReview, CompanyDecision, Dispute, DisputeStatus, DisputeType, Meeting,
    MeetingStatus, MeetingStatusChange, ReviewDecision, TransitionTrigger
)
from ..errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from ..utils.helpers import utc_now

logger = structlog.get_logger("meetflow.qualification")

MANDATORY_CHECKLIST_ITEMS = 2
MIN_DISPUTE_REASON_LENGTH = 10
CLOSED_DISPUTE_STATUSES = (DisputeStatus.RESOLVED.value, DisputeStatus.REJECTED.value)

REVIEW_TRANSITIONS = {
    ReviewDecision.APPROVE: MeetingStatus.QUALIFIED,
    ReviewDecision.REJECT: MeetingStatus.NOT_QUALIFIED,
}

_KEEP = object()


def validate_checklist(checklist: Any, criteria_count: int) -> List[bool]:
    """Checklist must cover every criterion and tick the mandatory leading ones"""
    if not isinstance(checklist, list) or not all(isinstance(item, bool) for item in checklist):
        raise ValidationError("Qualification checklist must be a list of booleans", stage="create_meeting")
    if len(checklist) != criteria_count:
        raise ValidationError(
            "Qualification checklist does not match campaign criteria",
            stage="create_meeting",
            expected=criteria_count,
            received=len(checklist),
        )
    mandatory = min(MANDATORY_CHECKLIST_ITEMS, criteria_count)
    if not all(checklist[:mandatory]):
        raise ValidationError(
            "Mandatory qualification criteria are not met",
            stage="create_meeting",
            mandatory=mandatory,
        )
    return checklist


class QualificationStateMachine:
    """Meeting creation and status transitions driven by human decisions"""

    def __init__(self, settings: Settings):
        self.max_attempts = max(1, settings.transition_max_attempts)

    async def create_meeting(
        self,
        session: AsyncSession,
        sales_rep_id: UUID,
        campaign_id: UUID,
        contact_name: str,
        meeting_date: datetime,
        qualification_checklist: List[bool],
        contact_email: Optional[str] = None,
        contact_phone: Optional[str] = None,
        notes: Optional[str] = None,
        call_recording_id: Optional[UUID] = None,
        actor_id: Optional[str] = None
    ) -> Meeting:
        """Create a pending meeting for a rep approved on the campaign"""
        if not contact_name or not contact_name.strip():
            raise ValidationError("Contact name is required", stage="create_meeting")

        campaign = await CampaignCRUD.get_campaign(session, campaign_id)
        if not campaign:
            raise NotFoundError("Campaign not found", stage="create_meeting", campaign_id=str(campaign_id))

        if not await CampaignCRUD.rep_is_approved(session, sales_rep_id, campaign_id):
            raise AuthorizationError(
                "Sales rep is not approved for this campaign",
                stage="create_meeting",
                sales_rep_id=str(sales_rep_id),
                campaign_id=str(campaign_id),
            )

        criteria = parse_criteria(campaign.meeting_criteria)
        checklist = validate_checklist(qualification_checklist, len(criteria))

        meeting = Meeting(
            campaign_id=campaign_id,
            sales_rep_id=sales_rep_id,
            contact_name=contact_name.strip(),
            contact_email=contact_email,
            contact_phone=contact_phone,
            meeting_date=meeting_date,
            notes=notes,
            qualification_checklist=checklist,
            status=MeetingStatus.PENDING.value,
        )
        session.add(meeting)
        await session.flush()

        session.add(MeetingStatusChange(
            meeting_id=meeting.id,
            from_status=None,
            to_status=MeetingStatus.PENDING.value,
            trigger=TransitionTrigger.CREATED.value,
            actor_id=actor_id,
        ))

        if call_recording_id is not None:
            attached = await RecordingCRUD.attach_to_meeting(session, call_recording_id, meeting.id, sales_rep_id)
            if not attached:
                raise ValidationError(
                    "Recording not found or already attached",
                    stage="create_meeting",
                    call_recording_id=str(call_recording_id),
                )

        await session.commit()
        logger.info(
            "Meeting created",
            meeting_id=str(meeting.id),
            campaign_id=str(campaign_id),
            sales_rep_id=str(sales_rep_id)
        )
        return meeting

    async def record_admin_review(
        self,
        session: AsyncSession,
        meeting_id: UUID,
        decision: str,
        reviewed_by: str,
        review_notes: Optional[str] = None,
        qualification_score: Optional[int] = None,
        quality_score: Optional[int] = None,
        call_recording_id: Optional[UUID] = None,
        expected_version: Optional[int] = None
    ) -> Tuple[AdminReview, Meeting]:
        """
        Record an admin review and apply its transition.

        approve leads to qualified and reject to not_qualified. needs_revision
        writes the review only; the meeting keeps its current status. A
        decision on a meeting with an open or under_review dispute is still
        applied and logged as a warning; the dispute stays open.
        """
        try:
            decision = ReviewDecision(decision)
        except ValueError:
            raise ValidationError("Invalid review decision", stage="admin_review", decision=decision)

        for field_name, value in (("qualification_score", qualification_score), ("quality_score", quality_score)):
            if value is not None and not 0 <= value <= 100:
                raise ValidationError(f"{field_name} must be between 0 and 100", stage="admin_review")

        await self._require_meeting(session, meeting_id, "admin_review")

        review = await MeetingCRUD.add_admin_review(
            session,
            meeting_id=meeting_id,
            reviewed_by=reviewed_by,
            review_decision=decision.value,
            review_notes=review_notes,
            qualification_score=qualification_score,
            quality_score=quality_score,
            call_recording_id=call_recording_id,
        )

        to_status = REVIEW_TRANSITIONS.get(decision)
        if to_status is None:
            logger.info("Review requested revision", meeting_id=str(meeting_id), review_id=str(review.id))
            meeting = await self._require_meeting(session, meeting_id, "admin_review")
            return review, meeting

        await self._warn_open_disputes(session, meeting_id, "admin_review")

        meeting = await self._transition(
            session,
            meeting_id,
            to_status,
            TransitionTrigger.ADMIN_REVIEW,
            actor_id=reviewed_by,
            source_id=review.id,
            note=review_notes,
            expected_version=expected_version,
        )
        # A retried transition rolls back and expires earlier objects
        await session.refresh(review)
        return review, meeting

    async def record_company_decision(
        self,
        session: AsyncSession,
        meeting_id: UUID,
        approved: bool,
        decided_by: str,
        rejection_reason: Optional[str] = None,
        expected_version: Optional[int] = None
    ) -> Tuple[CompanyDecision, Meeting]:
        """
        Record a company approval and apply qualified or not_qualified.

        Like admin reviews, the decision wins over an unresolved dispute.
        """
        if not isinstance(approved, bool):
            raise ValidationError("Invalid approval status", stage="company_approval")

        await self._require_meeting(session, meeting_id, "company_approval")
        await self._warn_open_disputes(session, meeting_id, "company_approval")

        decision = await MeetingCRUD.add_company_decision(
            session,
            meeting_id=meeting_id,
            decided_by=decided_by,
            approved=approved,
            rejection_reason=None if approved else rejection_reason,
        )

        meeting = await self._transition(
            session,
            meeting_id,
            MeetingStatus.QUALIFIED if approved else MeetingStatus.NOT_QUALIFIED,
            TransitionTrigger.COMPANY_APPROVAL,
            actor_id=decided_by,
            source_id=decision.id,
            note=rejection_reason,
            expected_version=expected_version,
            rejection_reason=None if approved else rejection_reason,
        )
        await session.refresh(decision)
        return decision, meeting

    async def open_dispute(
        self,
        session: AsyncSession,
        meeting_id: UUID,
        raised_by: str,
        dispute_type: str,
        reason: str
    ) -> Tuple[Dispute, Meeting]:
        """Open a dispute; the meeting becomes disputed whatever its status"""
        try:
            dispute_type = DisputeType(dispute_type)
        except ValueError:
            raise ValidationError("Invalid dispute type", stage="dispute", dispute_type=dispute_type)
        if not reason or len(reason.strip()) < MIN_DISPUTE_REASON_LENGTH:
            raise ValidationError(
                f"Dispute reason must be at least {MIN_DISPUTE_REASON_LENGTH} characters",
                stage="dispute",
            )

        await self._require_meeting(session, meeting_id, "dispute")

        dispute = Dispute(
            meeting_id=meeting_id,
            raised_by=raised_by,
            dispute_type=dispute_type.value,
            reason=reason.strip(),
            status=DisputeStatus.OPEN.value,
        )
        session.add(dispute)
        await session.commit()

        meeting = await self._transition(
            session,
            meeting_id,
            MeetingStatus.DISPUTED,
            TransitionTrigger.DISPUTE_OPENED,
            actor_id=raised_by,
            source_id=dispute.id,
            note=dispute.reason,
        )
        await session.refresh(dispute)
        logger.info("Dispute opened", dispute_id=str(dispute.id), meeting_id=str(meeting_id))
        return dispute, meeting

    async def start_dispute_review(self, session: AsyncSession, dispute_id: UUID, actor_id: str) -> Dispute:
        """open -> under_review"""
        result = await session.execute(
            update(Dispute)
            .where(Dispute.id == dispute_id, Dispute.status == DisputeStatus.OPEN.value)
            .values(status=DisputeStatus.UNDER_REVIEW.value, updated_at=utc_now())
        )
        if result.rowcount == 0:
            dispute = await DisputeCRUD.get_dispute(session, dispute_id)
            if not dispute:
                raise NotFoundError("Dispute not found", stage="dispute", dispute_id=str(dispute_id))
            raise ConflictError(
                "Dispute is not open",
                stage="dispute",
                dispute_id=str(dispute_id),
                status=dispute.status,
            )
        await session.commit()

        logger.info("Dispute under review", dispute_id=str(dispute_id), actor_id=actor_id)
        return await DisputeCRUD.get_dispute(session, dispute_id)

    async def resolve_dispute(
        self,
        session: AsyncSession,
        dispute_id: UUID,
        resolution: str,
        status: str,
        resolved_by: str
    ) -> Dispute:
        """
        Close a dispute as resolved or rejected.

        The meeting stays disputed; a follow-up approval decides its outcome.
        """
        if status not in CLOSED_DISPUTE_STATUSES:
            raise ValidationError("Invalid resolution status", stage="dispute", status=status)
        if not resolution or not resolution.strip():
            raise ValidationError("Resolution is required", stage="dispute")

        result = await session.execute(
            update(Dispute)
            .where(Dispute.id == dispute_id, Dispute.status.notin_(CLOSED_DISPUTE_STATUSES))
            .values(
                status=status,
                resolution=resolution.strip(),
                resolved_by=resolved_by,
                resolved_at=utc_now(),
                updated_at=utc_now(),
            )
        )
        if result.rowcount == 0:
            dispute = await DisputeCRUD.get_dispute(session, dispute_id)
            if not dispute:
                raise NotFoundError("Dispute not found", stage="dispute", dispute_id=str(dispute_id))
            raise ConflictError(
                "Dispute is already closed",
                stage="dispute",
                dispute_id=str(dispute_id),
                status=dispute.status,
            )
        await session.commit()

        dispute = await DisputeCRUD.get_dispute(session, dispute_id)
        logger.info(
            "Dispute closed",
            dispute_id=str(dispute_id),
            meeting_id=str(dispute.meeting_id),
            status=status,
            resolved_by=resolved_by
        )
        return dispute

    async def _require_meeting(self, session: AsyncSession, meeting_id: UUID, stage: str) -> Meeting:
        meeting = await MeetingCRUD.get_meeting(session, meeting_id)
        if not meeting:
            raise NotFoundError("Meeting not found", stage=stage, meeting_id=str(meeting_id))
        return meeting

    async def _warn_open_disputes(self, session: AsyncSession, meeting_id: UUID, stage: str) -> None:
        open_disputes = await DisputeCRUD.count_open_for_meeting(session, meeting_id)
        if open_disputes:
            logger.warning(
                "Decision applied while dispute is open",
                meeting_id=str(meeting_id),
                stage=stage,
                open_disputes=open_disputes
            )

    async def _transition(
        self,
        session: AsyncSession,
        meeting_id: UUID,
        to_status: MeetingStatus,
        trigger: TransitionTrigger,
        actor_id: Optional[str] = None,
        source_id: Optional[UUID] = None,
        note: Optional[str] = None,
        expected_version: Optional[int] = None,
        rejection_reason: Any = _KEEP
    ) -> Meeting:
        """
        Apply a status change under the meeting's version lock.

        A concurrent write makes the commit fail with StaleDataError; the
        meeting is re-read and the change re-applied, so the last accepted
        writer wins. expected_version pins the caller to the version it saw.
        """
        for attempt in range(1, self.max_attempts + 1):
            meeting = await self._require_meeting(session, meeting_id, trigger.value)

            if expected_version is not None and meeting.version != expected_version:
                raise ConflictError(
                    "Meeting was modified by another request",
                    stage=trigger.value,
                    meeting_id=str(meeting_id),
                    expected_version=expected_version,
                    current_version=meeting.version,
                )

            from_status = meeting.status
            meeting.status = to_status.value
            if rejection_reason is not _KEEP:
                meeting.rejection_reason = rejection_reason
            session.add(MeetingStatusChange(
                meeting_id=meeting_id,
                from_status=from_status,
                to_status=to_status.value,
                trigger=trigger.value,
                actor_id=actor_id,
                source_id=str(source_id) if source_id is not None else None,
                note=note,
            ))

            try:
                await session.commit()
            except StaleDataError:
                await session.rollback()
                logger.warning(
                    "Meeting version conflict, retrying transition",
                    meeting_id=str(meeting_id),
                    attempt=attempt,
                    to_status=to_status.value
                )
                continue

            logger.info(
                "Meeting status changed",
                meeting_id=str(meeting_id),
                from_status=from_status,
                to_status=to_status.value,
                trigger=trigger.value,
                version=meeting.version
            )
            return meeting

        raise ConflictError(
            "Meeting transition kept conflicting",
            stage=trigger.value,
            meeting_id=str(meeting_id),
            attempts=self.max_attempts,
        )
