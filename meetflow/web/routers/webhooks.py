"""
Dialer webhook endpoints
"""

from typing import Optional

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ...dialers.adapters import SUPPORTED_PROVIDERS
from ..deps import get_session

logger = structlog.get_logger("meetflow.web.webhooks")

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


@router.post("/dialer")
async def dialer_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    x_signature: Optional[str] = Header(None),
    session: AsyncSession = Depends(get_session)
):
    """Handle a provider call event"""
    raw_body = await request.body()
    handler = request.app.state.webhook_handler

    result = await handler.process_webhook(session, raw_body, x_signature)
    await session.commit()

    worker = request.app.state.transcription_worker
    if result.transcribe_recording_id and worker is not None:
        background_tasks.add_task(worker.process, result.transcribe_recording_id)
        logger.info("Queued transcription", recording_id=str(result.transcribe_recording_id))

    return result.body


@router.get("/dialer")
async def dialer_webhook_status():
    """Endpoint liveness for provider configuration screens"""
    return {
        "status": "ok",
        "message": "Dialer webhook endpoint is active",
        "supported_providers": list(SUPPORTED_PROVIDERS),
    }
