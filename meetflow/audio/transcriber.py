"""
OpenAI Whisper API integration for recording transcription
Handles API calls, retries, and transcription status bookkeeping
"""

import io
from typing import Optional
from uuid import UUID

import httpx
import structlog

from ..config import Settings
from ..database.crud import RecordingCRUD
from ..database.init_db import DatabaseManager
from ..database.models import TranscriptionStatus
from ..errors import PipelineError, StorageError
from ..storage.recordings import RecordingStorage
from ..utils.helpers import retry_async

logger = structlog.get_logger("meetflow.audio.transcriber")


class TranscriptionError(PipelineError):
    """Whisper returned no usable transcript"""


class WhisperTranscriber:
    """OpenAI Whisper API client for transcription"""

    api_url = "https://api.openai.com/v1/audio/transcriptions"

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings
        self.transport = transport

    async def transcribe(
        self,
        audio_data: bytes,
        file_name: str = "audio.mp3",
        content_type: str = "audio/mpeg"
    ) -> str:
        """Transcribe audio using Whisper API"""
        if not self.settings.openai_api_key:
            raise TranscriptionError("OpenAI API key not configured", stage="transcribe")

        logger.info("Starting transcription", audio_size=len(audio_data))

        try:
            result = await retry_async(
                lambda: self._make_transcription_request(audio_data, file_name, content_type),
                max_retries=self.settings.http_max_retries,
                delay=self.settings.http_retry_delay_seconds,
                backoff_factor=2.0,
                exceptions=(httpx.TransportError, httpx.HTTPStatusError)
            )
        except httpx.HTTPError as e:
            raise TranscriptionError(f"Whisper request failed: {e}", stage="transcribe") from e

        if not result:
            raise TranscriptionError("Transcription returned empty result", stage="transcribe")

        logger.info("Transcription completed", length=len(result))
        return result

    async def _make_transcription_request(
        self,
        audio_data: bytes,
        file_name: str,
        content_type: str
    ) -> str:
        """Make actual API request to Whisper"""
        headers = {"Authorization": f"Bearer {self.settings.openai_api_key}"}
        files = {
            "file": (file_name, io.BytesIO(audio_data), content_type),
            "model": (None, self.settings.transcription_model),
            "response_format": (None, "text"),
        }

        async with httpx.AsyncClient(timeout=300.0, transport=self.transport) as client:
            response = await client.post(self.api_url, headers=headers, files=files)

        logger.info(
            "Whisper API request completed",
            status_code=response.status_code,
            response_size=len(response.content)
        )

        if response.status_code == 400:
            # Unusable audio, retrying will not help
            raise TranscriptionError(f"Bad request: {response.text}", stage="transcribe")
        response.raise_for_status()
        return response.text.strip()


class TranscriptionWorker:
    """Background transcription of acquired recordings"""

    def __init__(
        self,
        settings: Settings,
        db: DatabaseManager,
        storage: RecordingStorage,
        transcriber: WhisperTranscriber,
        scoring=None
    ):
        self.settings = settings
        self.db = db
        self.storage = storage
        self.transcriber = transcriber
        self.scoring = scoring

    async def process(self, recording_id: UUID) -> bool:
        """
        Move a recording through processing to completed or failed.

        Runs outside the request, so failures are recorded on the row and
        logged rather than raised.
        """
        async with self.db.get_session() as session:
            recording = await RecordingCRUD.get_recording(session, recording_id)
            if not recording or not recording.storage_path:
                logger.warning("Recording not available for transcription", recording_id=str(recording_id))
                return False
            storage_path = recording.storage_path
            file_name = recording.file_name
            mime_type = recording.mime_type or "audio/mpeg"
            await RecordingCRUD.update_transcription(session, recording_id, TranscriptionStatus.PROCESSING)

        try:
            audio = await self.storage.download(storage_path)
            text = await self.transcriber.transcribe(audio, file_name, mime_type)
        except (TranscriptionError, StorageError, httpx.HTTPError) as e:
            logger.error("Transcription failed", recording_id=str(recording_id), error=str(e))
            async with self.db.get_session() as session:
                await RecordingCRUD.update_transcription(
                    session, recording_id, TranscriptionStatus.FAILED, error=str(e)
                )
            return False

        async with self.db.get_session() as session:
            await RecordingCRUD.update_transcription(
                session, recording_id, TranscriptionStatus.COMPLETED, text=text
            )

        if self.scoring is not None and self.settings.auto_score_after_transcription:
            await self._auto_score(recording_id)
        return True

    async def _auto_score(self, recording_id: UUID) -> None:
        try:
            async with self.db.get_session() as session:
                await self.scoring.score(session, call_recording_id=recording_id)
        except PipelineError as e:
            logger.warning("Automatic scoring skipped", recording_id=str(recording_id), **e.to_log())
