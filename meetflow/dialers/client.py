"""
Recording download client for dialer providers
Handles provider auth, size ceiling and retries of transient failures
"""

import base64
from dataclasses import dataclass
from typing import Dict, Optional

import httpx
import structlog

from ..config import Settings
from ..database.models import DialerIntegration
from ..errors import AcquisitionError
from ..utils.helpers import retry_async
from ..utils.security import SecurityManager

logger = structlog.get_logger("meetflow.dialers.client")

USER_AGENT = "meetflow-recording-fetcher/1.0"
BEARER_PROVIDERS = {"aircall", "ringcentral"}

CONTENT_TYPE_EXTENSIONS = {
    "audio/mpeg": "mp3",
    "audio/mp3": "mp3",
    "audio/wav": "wav",
    "audio/x-wav": "wav",
    "audio/ogg": "ogg",
    "audio/mp4": "m4a",
    "audio/x-m4a": "m4a",
    "audio/webm": "webm",
}


@dataclass
class DownloadedRecording:
    """Fetched recording bytes with their media type"""
    data: bytes
    content_type: str

    @property
    def extension(self) -> str:
        return CONTENT_TYPE_EXTENSIONS.get(self.content_type, "mp3")

    @property
    def size(self) -> int:
        return len(self.data)


class RecordingTooLargeError(AcquisitionError):
    """Recording exceeds the configured size ceiling"""


class RecordingDownloader:
    """Asynchronous downloader for provider-hosted recordings"""

    def __init__(
        self,
        settings: Settings,
        security: SecurityManager,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.settings = settings
        self.security = security
        self.transport = transport

    def auth_headers(self, integration: DialerIntegration) -> Dict[str, str]:
        """Provider-specific auth headers for the recording URL"""
        headers = {"User-Agent": USER_AGENT}
        if not integration.access_token_encrypted:
            return headers

        token = self.security.decrypt_data(integration.access_token_encrypted)
        if not token:
            logger.warning(
                "Could not decrypt dialer access token, downloading without auth",
                integration_id=str(integration.id)
            )
            return headers

        if integration.dialer_provider in BEARER_PROVIDERS:
            headers["Authorization"] = f"Bearer {token}"
        elif integration.dialer_provider == "twilio":
            credentials = f"{integration.provider_account_id}:{token}".encode()
            headers["Authorization"] = f"Basic {base64.b64encode(credentials).decode()}"
        return headers

    async def download(self, url: str, integration: DialerIntegration) -> DownloadedRecording:
        """
        Download recording bytes.

        Timeouts, connection errors and 5xx responses are retried with
        exponential backoff. Raises AcquisitionError(stage="download") once
        retries are exhausted, on 4xx responses, or when the body exceeds
        max_recording_bytes.
        """
        headers = self.auth_headers(integration)

        try:
            recording = await retry_async(
                lambda: self._fetch(url, headers),
                max_retries=self.settings.http_max_retries,
                delay=self.settings.http_retry_delay_seconds,
                backoff_factor=2.0,
                exceptions=(httpx.TransportError, httpx.HTTPStatusError)
            )
        except (httpx.TransportError, httpx.HTTPStatusError) as e:
            raise AcquisitionError(
                f"Recording download failed: {e}",
                stage="download",
                provider=integration.dialer_provider,
            ) from e

        logger.info(
            "Recording downloaded",
            provider=integration.dialer_provider,
            size=recording.size,
            content_type=recording.content_type
        )
        return recording

    async def _fetch(self, url: str, headers: Dict[str, str]) -> DownloadedRecording:
        ceiling = self.settings.max_recording_bytes

        async with httpx.AsyncClient(
            timeout=self.settings.http_timeout_seconds,
            follow_redirects=True,
            transport=self.transport
        ) as client:
            async with client.stream("GET", url, headers=headers) as response:
                if response.status_code >= 500 or response.status_code == 429:
                    await response.aread()
                    response.raise_for_status()
                if response.is_error:
                    raise AcquisitionError(
                        f"Recording URL returned {response.status_code}",
                        stage="download",
                        http_status=response.status_code,
                    )

                declared = response.headers.get("content-length")
                if declared and declared.isdigit() and int(declared) > ceiling:
                    raise RecordingTooLargeError(
                        "Recording exceeds size limit",
                        stage="download",
                        declared_bytes=int(declared),
                        limit=ceiling,
                    )

                chunks = []
                received = 0
                async for chunk in response.aiter_bytes():
                    received += len(chunk)
                    if received > ceiling:
                        raise RecordingTooLargeError(
                            "Recording exceeds size limit",
                            stage="download",
                            received_bytes=received,
                            limit=ceiling,
                        )
                    chunks.append(chunk)

                content_type = response.headers.get("content-type", "audio/mpeg")
                return DownloadedRecording(
                    data=b"".join(chunks),
                    content_type=content_type.split(";")[0].strip().lower() or "audio/mpeg"
                )
