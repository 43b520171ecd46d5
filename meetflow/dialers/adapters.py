"""
Dialer provider adapters
Signature verification and normalization of webhook payloads into a canonical call event
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from ..database.crud import IntegrationCRUD
from ..database.models import DialerIntegration
from ..errors import AuthenticationError, NotFoundError, ValidationError
from ..utils.security import SecurityManager

logger = structlog.get_logger("meetflow.dialers.adapters")

SUPPORTED_PROVIDERS = ("aircall", "ringcentral", "twilio", "justcall", "kixie", "other")
CALL_ENDED = "call.ended"


@dataclass
class CanonicalCallEvent:
    """Provider-independent view of a call webhook"""
    provider: str
    event_type: str
    call_id: Optional[str]
    account_id: str
    recording_url: Optional[str] = None
    recording_id: Optional[str] = None
    duration: Optional[int] = None
    direction: Optional[str] = None
    from_number: Optional[str] = None
    to_number: Optional[str] = None
    contact_name: Optional[str] = None
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    started_at: Optional[str] = None
    ended_at: Optional[str] = None

    @property
    def has_recording(self) -> bool:
        return self.event_type == CALL_ENDED and bool(self.recording_url and self.recording_url.strip())


@dataclass
class NormalizedWebhook:
    integration: DialerIntegration
    event: CanonicalCallEvent

    @property
    def should_process(self) -> bool:
        return self.event.has_recording


def _as_int(value: Any) -> Optional[int]:
    try:
        return max(0, int(float(value)))
    except (TypeError, ValueError):
        return None


def _as_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def parse_webhook_body(raw_body: bytes) -> Dict[str, Any]:
    """Decode and shape-check the webhook envelope"""
    try:
        payload = json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ValidationError("Webhook body is not valid JSON", stage="normalize") from e

    if not isinstance(payload, dict):
        raise ValidationError("Webhook body must be an object", stage="normalize")

    provider = payload.get("provider")
    if provider not in SUPPORTED_PROVIDERS:
        raise ValidationError("Unsupported dialer provider", stage="normalize", provider=provider)

    call_data = payload.get("call_data")
    if not isinstance(call_data, dict):
        raise ValidationError("Webhook is missing call_data", stage="normalize", provider=provider)

    # Skipped events may omit the call id
    has_call_id = _as_str(call_data.get("id")) or _as_str(payload.get("call_id"))
    if payload.get("event_type") == CALL_ENDED and _as_str(call_data.get("recording_url")) and not has_call_id:
        raise ValidationError("Webhook is missing a call id", stage="normalize", provider=provider)

    return payload


def to_canonical_event(payload: Dict[str, Any]) -> CanonicalCallEvent:
    call_data = payload["call_data"]
    return CanonicalCallEvent(
        provider=payload["provider"],
        event_type=_as_str(payload.get("event_type")) or "",
        call_id=_as_str(call_data.get("id")) or _as_str(payload.get("call_id")),
        account_id=_as_str(call_data.get("user_id")) or _as_str(call_data.get("phone_number")) or "",
        recording_url=_as_str(call_data.get("recording_url")),
        recording_id=_as_str(call_data.get("recording_id")),
        duration=_as_int(call_data.get("duration")),
        direction=_as_str(call_data.get("direction")),
        from_number=_as_str(call_data.get("from")),
        to_number=_as_str(call_data.get("to")),
        contact_name=_as_str(call_data.get("contact_name")),
        contact_email=_as_str(call_data.get("contact_email")),
        contact_phone=_as_str(call_data.get("contact_phone")),
        started_at=_as_str(call_data.get("started_at")),
        ended_at=_as_str(call_data.get("ended_at")),
    )


class ProviderAdapter:
    """Authenticate and normalize inbound dialer webhooks"""

    def __init__(self, security: SecurityManager):
        self.security = security

    async def normalize(
        self,
        session: AsyncSession,
        raw_body: bytes,
        header_signature: Optional[str] = None
    ) -> NormalizedWebhook:
        """
        Resolve the integration, verify the signature and build the event.

        Raises ValidationError for a malformed body, NotFoundError when no
        active integration matches the provider account, and
        AuthenticationError when the signature is missing or wrong.
        """
        payload = parse_webhook_body(raw_body)
        event = to_canonical_event(payload)

        if not event.account_id:
            raise NotFoundError(
                "Webhook carries no provider account identifier",
                stage="normalize",
                provider=event.provider,
                call_id=event.call_id,
            )

        integration = await IntegrationCRUD.get_active(session, event.provider, event.account_id)
        if not integration:
            raise NotFoundError(
                "Dialer integration not found",
                stage="normalize",
                provider=event.provider,
                call_id=event.call_id,
            )

        signature = header_signature or _as_str(payload.get("signature"))
        if not self.security.verify_webhook_signature(
            event.provider, raw_body, signature, integration.webhook_secret
        ):
            raise AuthenticationError(
                "Invalid webhook signature",
                stage="normalize",
                provider=event.provider,
                call_id=event.call_id,
                integration_id=str(integration.id),
            )

        logger.info(
            "Webhook normalized",
            provider=event.provider,
            event_type=event.event_type,
            call_id=event.call_id,
            has_recording=event.has_recording,
        )
        return NormalizedWebhook(integration=integration, event=event)
