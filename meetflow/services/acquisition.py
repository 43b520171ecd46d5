"""
Recording acquisition service
Download, store and persist a provider recording exactly once per provider call
"""

from dataclasses import dataclass
from datetime import timedelta
from uuid import UUID

import httpx
import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import Settings
from ..database.crud import CampaignCRUD, RecordingCRUD
from ..database.models import CallRecording, DialerIntegration, TranscriptionStatus
from ..dialers.adapters import CanonicalCallEvent
from ..dialers.client import RecordingDownloader
from ..errors import AcquisitionError, ConflictError, NoActiveCampaignError, StorageError
from ..storage.recordings import RecordingStorage, recording_path
from ..utils.helpers import retry_async, utc_now

logger = structlog.get_logger("meetflow.services.acquisition")


@dataclass
class AcquisitionResult:
    """Outcome of acquiring one provider call"""
    recording: CallRecording
    created: bool
    campaign_id: UUID
    company_id: UUID


class RecordingAcquisitionService:
    """Turn a canonical call event into a stored CallRecording"""

    def __init__(self, settings: Settings, storage: RecordingStorage, downloader: RecordingDownloader):
        self.settings = settings
        self.storage = storage
        self.downloader = downloader

    async def acquire(
        self,
        session: AsyncSession,
        event: CanonicalCallEvent,
        integration: DialerIntegration
    ) -> AcquisitionResult:
        """
        Acquire the recording for a call.ended event.

        Repeated deliveries of the same (provider, call id) return the existing
        row with created=False and never download again. When the database
        insert fails for any reason other than the uniqueness conflict, the
        object this call uploaded is removed before AcquisitionError is raised.
        """
        # Plain values survive a rollback of the session
        provider = event.provider
        call_id = event.call_id
        sales_rep_id = integration.sales_rep_id
        integration_id = integration.id

        campaign = await CampaignCRUD.get_active_campaign_for_rep(session, sales_rep_id)
        if not campaign:
            raise NoActiveCampaignError(
                "No active campaign found",
                stage="acquire",
                provider=provider,
                call_id=call_id,
                sales_rep_id=str(sales_rep_id),
            )
        campaign_id = campaign.id
        company_id = campaign.company_id

        existing = await RecordingCRUD.get_by_dialer_call(session, provider, call_id)
        if existing:
            logger.info("Recording already acquired", provider=provider, call_id=call_id)
            return AcquisitionResult(existing, False, campaign_id, company_id)

        downloaded = await self.downloader.download(event.recording_url, integration)

        path = recording_path(sales_rep_id, campaign_id, call_id, downloaded.extension)
        try:
            object_created = await retry_async(
                lambda: self.storage.upload(path, downloaded.data, downloaded.content_type),
                max_retries=self.settings.http_max_retries,
                delay=self.settings.http_retry_delay_seconds,
                backoff_factor=2.0,
                exceptions=(httpx.TransportError, httpx.HTTPStatusError)
            )
        except (StorageError, httpx.HTTPError) as e:
            raise AcquisitionError(
                f"Recording upload failed: {e}",
                stage="upload",
                provider=provider,
                call_id=call_id,
            ) from e

        uploaded_at = utc_now()
        try:
            recording = await RecordingCRUD.create_recording(
                session,
                sales_rep_id=sales_rep_id,
                campaign_id=campaign_id,
                storage_path=path,
                file_name=f"{call_id}.{downloaded.extension}",
                file_size=downloaded.size,
                mime_type=downloaded.content_type,
                duration_seconds=event.duration,
                transcription_status=TranscriptionStatus.PENDING.value,
                dialer_provider=provider,
                dialer_call_id=call_id,
                dialer_integration_id=integration_id,
                uploaded_at=uploaded_at,
                retention_deadline=uploaded_at + timedelta(days=self.settings.recording_retention_days),
            )
        except ConflictError:
            # A concurrent delivery won the insert
            winner = await RecordingCRUD.get_by_dialer_call(session, provider, call_id)
            if winner is None:
                raise AcquisitionError(
                    "Recording conflict without an existing row",
                    stage="persist",
                    provider=provider,
                    call_id=call_id,
                )
            logger.info("Concurrent delivery already persisted recording", provider=provider, call_id=call_id)
            return AcquisitionResult(winner, False, campaign_id, company_id)
        except SQLAlchemyError as e:
            await session.rollback()
            if object_created:
                await self._compensate(path, provider, call_id)
            raise AcquisitionError(
                f"Recording persist failed: {e}",
                stage="persist",
                provider=provider,
                call_id=call_id,
            ) from e

        logger.info(
            "Recording acquired",
            provider=provider,
            call_id=call_id,
            recording_id=str(recording.id),
            storage_path=path,
            size=downloaded.size
        )
        return AcquisitionResult(recording, True, campaign_id, company_id)

    async def _compensate(self, path: str, provider: str, call_id: str) -> None:
        """Remove an uploaded object that no row will reference"""
        try:
            removed = await self.storage.delete(path)
        except (StorageError, httpx.HTTPError) as e:
            removed = False
            logger.error("Compensating delete raised", path=path, error=str(e))

        if removed:
            logger.warning("Removed orphaned recording object", path=path, provider=provider, call_id=call_id)
        else:
            logger.error("Orphaned recording object left in storage", path=path, provider=provider, call_id=call_id)
