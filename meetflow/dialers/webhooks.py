"""
Dialer webhook handlers
Process call.ended events into recordings, leads and outreach attempts
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from ..database.crud import IntegrationCRUD, LeadCRUD
from ..services.acquisition import AcquisitionResult, RecordingAcquisitionService
from ..services.lead_correlator import CallContact, LeadCorrelator
from .adapters import CanonicalCallEvent, ProviderAdapter

logger = structlog.get_logger("meetflow.dialers.webhooks")


@dataclass
class WebhookResult:
    """Response body plus follow-up work for the router"""
    body: Dict[str, Any]
    transcribe_recording_id: Optional[UUID] = None


class WebhookHandler:
    """Handle dialer webhooks"""

    def __init__(self, adapter: ProviderAdapter, acquisition: RecordingAcquisitionService):
        self.adapter = adapter
        self.acquisition = acquisition

    async def process_webhook(
        self,
        session: AsyncSession,
        raw_body: bytes,
        header_signature: Optional[str] = None
    ) -> WebhookResult:
        """Main webhook processing entry point"""
        normalized = await self.adapter.normalize(session, raw_body, header_signature)
        event = normalized.event
        integration = normalized.integration

        if not normalized.should_process:
            logger.info("Event skipped", provider=event.provider, event_type=event.event_type, call_id=event.call_id)
            return WebhookResult(body={"success": True, "message": "Event skipped"})

        integration_id = integration.id
        sales_rep_id = integration.sales_rep_id

        result = await self.acquisition.acquire(session, event, integration)
        recording_id = result.recording.id

        await self._record_outreach(session, event, result, sales_rep_id, integration_id)
        await IntegrationCRUD.touch_last_sync(session, integration_id)

        if result.created:
            message = "Call recording imported successfully"
        else:
            message = "Call recording already imported"

        logger.info(
            "Dialer webhook processed",
            provider=event.provider,
            call_id=event.call_id,
            recording_id=str(recording_id),
            created=result.created
        )
        return WebhookResult(
            body={"success": True, "recording_id": str(recording_id), "message": message},
            transcribe_recording_id=recording_id if result.created else None,
        )

    @staticmethod
    async def _record_outreach(
        session: AsyncSession,
        event: CanonicalCallEvent,
        result: AcquisitionResult,
        sales_rep_id: UUID,
        integration_id: UUID
    ) -> None:
        """Correlate the lead and log the call attempt once per recording"""
        recording_id = result.recording.id
        if await LeadCRUD.get_attempt_for_recording(session, recording_id):
            return

        lead_id = await LeadCorrelator.find_or_create(
            session,
            result.campaign_id,
            result.company_id,
            CallContact(
                name=event.contact_name,
                email=event.contact_email,
                phone=event.contact_phone,
                dialed_number=event.to_number,
            ),
        )

        await LeadCRUD.create_outreach_attempt(
            session,
            lead_id=lead_id,
            sales_rep_id=sales_rep_id,
            campaign_id=result.campaign_id,
            attempt_type="call",
            attempt_status="connected" if event.duration and event.duration > 0 else "no_answer",
            duration_seconds=event.duration,
            call_recording_id=recording_id,
            dialer_call_id=event.call_id,
            dialer_integration_id=integration_id,
            notes=f"Auto-imported from {event.provider}",
        )
