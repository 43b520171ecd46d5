"""
AI scoring endpoint
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import Actor, get_session, require_roles
from ..schemas import score_to_dict

router = APIRouter(prefix="/api/ai", tags=["scoring"])


class ScoreRequest(BaseModel):
    meeting_id: Optional[UUID] = None
    call_recording_id: Optional[UUID] = None
    transcript: Optional[str] = None
    threshold: Optional[float] = Field(None, ge=0, le=100)


@router.post("/score", status_code=201)
async def score_transcript(
    data: ScoreRequest,
    request: Request,
    actor: Actor = Depends(require_roles("admin")),
    session: AsyncSession = Depends(get_session)
):
    """Score a meeting or recording transcript against its campaign criteria"""
    outcome = await request.app.state.scoring.score(
        session,
        meeting_id=data.meeting_id,
        call_recording_id=data.call_recording_id,
        transcript=data.transcript,
        threshold=data.threshold,
    )
    await session.commit()
    return {
        "success": True,
        "qualification": outcome.score.to_dict(),
        "score": score_to_dict(outcome.ai_score),
    }
