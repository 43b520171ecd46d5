"""
Recording access endpoints
Short-lived signed URLs; objects are never served from a public location
"""

from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import FileResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ...database.crud import RecordingCRUD
from ...errors import AuthenticationError, NotFoundError, RecordingGoneError
from ...storage.recordings import LocalRecordingStorage
from ..deps import Actor, authorize_recording, get_current_actor, get_session
from ..schemas import recording_to_dict

logger = structlog.get_logger("meetflow.web.recordings")

router = APIRouter(prefix="/api/recordings", tags=["recordings"])


@router.get("/{recording_id}/url")
async def get_recording_url(
    recording_id: UUID,
    request: Request,
    actor: Actor = Depends(get_current_actor),
    session: AsyncSession = Depends(get_session)
):
    """Signed download URL for the admin, the owning company or the uploading rep"""
    recording = await RecordingCRUD.get_recording(session, recording_id)
    if not recording:
        raise NotFoundError("Recording not found", stage="read", call_recording_id=str(recording_id))
    await authorize_recording(session, actor, recording)

    if recording.storage_path is None:
        raise RecordingGoneError(
            "Recording deleted under retention policy",
            stage="read",
            call_recording_id=str(recording_id),
        )

    ttl = request.app.state.settings.signed_url_ttl_seconds
    url = await request.app.state.storage.create_signed_url(recording.storage_path, ttl)

    logger.info("Signed recording URL issued", call_recording_id=str(recording_id), user_id=actor.user_id)
    return {"url": url, "expires_in": ttl, "recording": recording_to_dict(recording)}


@router.get("/files/{path:path}")
async def download_local_recording(
    path: str,
    request: Request,
    expires: int = Query(...),
    token: str = Query(...)
):
    """Serve a local-backend object behind its signed link"""
    storage = request.app.state.storage
    if not isinstance(storage, LocalRecordingStorage):
        raise NotFoundError("Not found", stage="read")

    if not request.app.state.security.verify_storage_signature(path, expires, token):
        raise AuthenticationError("Invalid or expired recording link", stage="read")

    file_path = storage.file_for(path)
    if not file_path.is_file():
        raise NotFoundError("Recording object not found", stage="read")
    return FileResponse(file_path)
