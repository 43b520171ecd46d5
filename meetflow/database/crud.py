"""
CRUD operations for database models
Async operations; callers own the session and its transaction
"""

from datetime import datetime, timedelta
from typing import List, Optional, Dict, Any, Sequence, Tuple
from uuid import UUID

from sqlalchemy import select, update, func, and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..errors import ConflictError
from ..utils.helpers import utc_now
from .models import (
    AdminReview, AIScore, ApplicationStatus, CallRecording, Campaign,
    CampaignApplication, CompanyDecision, DialerIntegration, Dispute, DisputeStatus,
    Lead, Meeting, MeetingStatusChange, OutreachAttempt, SalesRep,
    TranscriptionStatus
)

TOMBSTONE_FILE_NAME = "[DELETED - GDPR Compliance]"


class IntegrationCRUD:
    """CRUD operations for DialerIntegration model"""

    @staticmethod
    async def get_active(
        session: AsyncSession,
        provider: str,
        provider_account_id: str
    ) -> Optional[DialerIntegration]:
        """Active integration for a provider account"""
        result = await session.execute(
            select(DialerIntegration)
            .where(
                DialerIntegration.dialer_provider == provider,
                DialerIntegration.provider_account_id == provider_account_id,
                DialerIntegration.is_active.is_(True)
            )
            .order_by(DialerIntegration.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def touch_last_sync(session: AsyncSession, integration_id: UUID) -> None:
        await session.execute(
            update(DialerIntegration)
            .where(DialerIntegration.id == integration_id)
            .values(last_sync_at=utc_now())
        )


class CampaignCRUD:
    """CRUD operations for Campaign and CampaignApplication models"""

    @staticmethod
    async def get_campaign(session: AsyncSession, campaign_id: UUID) -> Optional[Campaign]:
        result = await session.execute(
            select(Campaign)
            .options(selectinload(Campaign.company))
            .where(Campaign.id == campaign_id)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def get_active_campaign_for_rep(
        session: AsyncSession,
        sales_rep_id: UUID
    ) -> Optional[Campaign]:
        """Campaign of the rep's most recent approved application"""
        result = await session.execute(
            select(Campaign)
            .join(CampaignApplication, CampaignApplication.campaign_id == Campaign.id)
            .where(
                CampaignApplication.sales_rep_id == sales_rep_id,
                CampaignApplication.status == ApplicationStatus.APPROVED.value
            )
            .order_by(CampaignApplication.applied_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def rep_is_approved(
        session: AsyncSession,
        sales_rep_id: UUID,
        campaign_id: UUID
    ) -> bool:
        count = await session.scalar(
            select(func.count(CampaignApplication.id)).where(
                CampaignApplication.sales_rep_id == sales_rep_id,
                CampaignApplication.campaign_id == campaign_id,
                CampaignApplication.status == ApplicationStatus.APPROVED.value
            )
        )
        return bool(count)


class ActorCRUD:
    """Lookups from authenticated user ids to domain actors"""

    @staticmethod
    async def get_sales_rep_by_user(session: AsyncSession, user_id: str) -> Optional[SalesRep]:
        result = await session.execute(select(SalesRep).where(SalesRep.user_id == user_id))
        return result.scalar_one_or_none()


class RecordingCRUD:
    """CRUD operations for CallRecording model"""

    @staticmethod
    async def get_recording(session: AsyncSession, recording_id: UUID) -> Optional[CallRecording]:
        result = await session.execute(
            select(CallRecording)
            .options(selectinload(CallRecording.campaign).selectinload(Campaign.company))
            .where(CallRecording.id == recording_id)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def get_by_dialer_call(
        session: AsyncSession,
        provider: str,
        dialer_call_id: str
    ) -> Optional[CallRecording]:
        result = await session.execute(
            select(CallRecording).where(
                CallRecording.dialer_provider == provider,
                CallRecording.dialer_call_id == dialer_call_id
            )
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def create_recording(session: AsyncSession, **fields: Any) -> CallRecording:
        """
        Insert and commit a recording row.

        Raises ConflictError when (dialer_provider, dialer_call_id) already
        exists; the session is rolled back and stays usable.
        """
        recording = CallRecording(**fields)
        session.add(recording)
        try:
            await session.commit()
        except IntegrityError as e:
            await session.rollback()
            raise ConflictError(
                "Recording already exists for provider call",
                stage="persist",
                provider=fields.get("dialer_provider"),
                call_id=fields.get("dialer_call_id"),
            ) from e
        await session.refresh(recording)
        return recording

    @staticmethod
    async def update_transcription(
        session: AsyncSession,
        recording_id: UUID,
        status: TranscriptionStatus,
        text: Optional[str] = None,
        error: Optional[str] = None
    ) -> bool:
        """Update transcription status and text of a live recording"""
        values: Dict[str, Any] = {
            "transcription_status": status.value,
            "transcription_error": error,
            "updated_at": utc_now()
        }
        if text is not None:
            values["transcription"] = text

        result = await session.execute(
            update(CallRecording)
            .where(CallRecording.id == recording_id, CallRecording.storage_path.isnot(None))
            .values(**values)
        )
        return result.rowcount > 0

    @staticmethod
    async def attach_to_meeting(
        session: AsyncSession,
        recording_id: UUID,
        meeting_id: UUID,
        sales_rep_id: UUID
    ) -> bool:
        """Link an unattached recording owned by the rep to a meeting"""
        result = await session.execute(
            update(CallRecording)
            .where(
                CallRecording.id == recording_id,
                CallRecording.sales_rep_id == sales_rep_id,
                CallRecording.meeting_id.is_(None)
            )
            .values(meeting_id=meeting_id, updated_at=utc_now())
        )
        return result.rowcount > 0

    @staticmethod
    async def get_latest_for_meeting(session: AsyncSession, meeting_id: UUID) -> Optional[CallRecording]:
        result = await session.execute(
            select(CallRecording)
            .where(CallRecording.meeting_id == meeting_id)
            .order_by(CallRecording.uploaded_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def get_expired(
        session: AsyncSession,
        now: Optional[datetime] = None
    ) -> Sequence[Tuple[UUID, str]]:
        """(id, storage_path) of recordings past their deadline and still stored"""
        now = now or utc_now()
        result = await session.execute(
            select(CallRecording.id, CallRecording.storage_path)
            .where(
                CallRecording.retention_deadline.isnot(None),
                CallRecording.retention_deadline <= now,
                CallRecording.storage_path.isnot(None)
            )
            .order_by(CallRecording.retention_deadline)
        )
        return result.all()

    @staticmethod
    async def redact(session: AsyncSession, recording_ids: List[UUID]) -> int:
        """Null storage fields, keep the row for audit"""
        if not recording_ids:
            return 0
        result = await session.execute(
            update(CallRecording)
            .where(CallRecording.id.in_(recording_ids), CallRecording.storage_path.isnot(None))
            .values(
                storage_path=None,
                file_name=TOMBSTONE_FILE_NAME,
                transcription=None,
                updated_at=utc_now()
            )
        )
        return result.rowcount

    @staticmethod
    async def expiration_stats(session: AsyncSession, now: Optional[datetime] = None) -> Dict[str, int]:
        """Counts of stored recordings, ones expiring within 7 days, and expired ones"""
        now = now or utc_now()
        soon = now + timedelta(days=7)
        stored = CallRecording.storage_path.isnot(None)

        total = await session.scalar(select(func.count(CallRecording.id)).where(stored))
        expiring_soon = await session.scalar(
            select(func.count(CallRecording.id)).where(
                stored,
                and_(CallRecording.retention_deadline >= now, CallRecording.retention_deadline <= soon)
            )
        )
        expired = await session.scalar(
            select(func.count(CallRecording.id)).where(stored, CallRecording.retention_deadline <= now)
        )
        return {"total": total or 0, "expiring_soon": expiring_soon or 0, "expired": expired or 0}


class LeadCRUD:
    """CRUD operations for Lead and OutreachAttempt models"""

    @staticmethod
    async def find_by_phone(session: AsyncSession, campaign_id: UUID, phone: str) -> Optional[Lead]:
        result = await session.execute(
            select(Lead)
            .where(Lead.campaign_id == campaign_id, Lead.phone == phone)
            .order_by(Lead.created_at)
            .limit(1)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def find_by_email(session: AsyncSession, campaign_id: UUID, email: str) -> Optional[Lead]:
        result = await session.execute(
            select(Lead)
            .where(Lead.campaign_id == campaign_id, Lead.email == email)
            .order_by(Lead.created_at)
            .limit(1)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def create_lead(session: AsyncSession, **fields: Any) -> Lead:
        lead = Lead(**fields)
        session.add(lead)
        await session.flush()
        return lead

    @staticmethod
    async def get_attempt_for_recording(session: AsyncSession, recording_id: UUID) -> Optional[OutreachAttempt]:
        result = await session.execute(
            select(OutreachAttempt).where(OutreachAttempt.call_recording_id == recording_id).limit(1)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def create_outreach_attempt(session: AsyncSession, **fields: Any) -> OutreachAttempt:
        attempt = OutreachAttempt(**fields)
        session.add(attempt)
        await session.flush()
        return attempt


class MeetingCRUD:
    """CRUD operations for Meeting and its append-only history"""

    @staticmethod
    async def get_meeting(session: AsyncSession, meeting_id: UUID) -> Optional[Meeting]:
        result = await session.execute(
            select(Meeting)
            .options(selectinload(Meeting.campaign).selectinload(Campaign.company))
            .where(Meeting.id == meeting_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def get_status_history(session: AsyncSession, meeting_id: UUID) -> List[MeetingStatusChange]:
        result = await session.execute(
            select(MeetingStatusChange)
            .where(MeetingStatusChange.meeting_id == meeting_id)
            .order_by(MeetingStatusChange.id)
        )
        return list(result.scalars().all())

    @staticmethod
    async def add_admin_review(session: AsyncSession, **fields: Any) -> AdminReview:
        review = AdminReview(**fields)
        session.add(review)
        await session.commit()
        return review

    @staticmethod
    async def add_company_decision(session: AsyncSession, **fields: Any) -> CompanyDecision:
        decision = CompanyDecision(**fields)
        session.add(decision)
        await session.commit()
        return decision

    @staticmethod
    async def add_score(session: AsyncSession, **fields: Any) -> AIScore:
        score = AIScore(**fields)
        session.add(score)
        await session.flush()
        return score

    @staticmethod
    async def update_ai_fields(session: AsyncSession, meeting_id: UUID, **fields: Any) -> None:
        """Refresh denormalized score columns without touching status or version"""
        await session.execute(
            update(Meeting)
            .where(Meeting.id == meeting_id)
            .values(**fields, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )

    @staticmethod
    async def list_scores(session: AsyncSession, meeting_id: UUID) -> List[AIScore]:
        result = await session.execute(
            select(AIScore).where(AIScore.meeting_id == meeting_id).order_by(AIScore.created_at)
        )
        return list(result.scalars().all())


class DisputeCRUD:
    """CRUD operations for Dispute model"""

    @staticmethod
    async def get_dispute(session: AsyncSession, dispute_id: UUID) -> Optional[Dispute]:
        result = await session.execute(
            select(Dispute)
            .where(Dispute.id == dispute_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def count_open_for_meeting(session: AsyncSession, meeting_id: UUID) -> int:
        result = await session.execute(
            select(func.count(Dispute.id)).where(
                Dispute.meeting_id == meeting_id,
                Dispute.status.in_((DisputeStatus.OPEN.value, DisputeStatus.UNDER_REVIEW.value))
            )
        )
        return result.scalar() or 0
