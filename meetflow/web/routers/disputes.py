"""
Dispute endpoints
"""

from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from ...database.crud import MeetingCRUD
from ...errors import NotFoundError
from ..deps import Actor, authorize_meeting, get_current_actor, get_session, require_roles
from ..schemas import dispute_to_dict, meeting_to_dict

logger = structlog.get_logger("meetflow.web.disputes")

router = APIRouter(prefix="/api/disputes", tags=["disputes"])


class DisputeCreateRequest(BaseModel):
    meeting_id: UUID
    dispute_type: str
    reason: str


class DisputeResolveRequest(BaseModel):
    resolution: str
    status: str


@router.post("", status_code=201)
async def create_dispute(
    data: DisputeCreateRequest,
    request: Request,
    actor: Actor = Depends(get_current_actor),
    session: AsyncSession = Depends(get_session)
):
    """Open a dispute against a meeting the caller takes part in"""
    meeting = await MeetingCRUD.get_meeting(session, data.meeting_id)
    if not meeting:
        raise NotFoundError("Meeting not found", stage="dispute", meeting_id=str(data.meeting_id))
    await authorize_meeting(session, actor, meeting)

    dispute, meeting = await request.app.state.state_machine.open_dispute(
        session,
        data.meeting_id,
        raised_by=actor.user_id,
        dispute_type=data.dispute_type,
        reason=data.reason,
    )
    return {"success": True, "dispute": dispute_to_dict(dispute), "meeting": meeting_to_dict(meeting)}


@router.post("/{dispute_id}/review")
async def start_dispute_review(
    dispute_id: UUID,
    request: Request,
    actor: Actor = Depends(require_roles("admin")),
    session: AsyncSession = Depends(get_session)
):
    dispute = await request.app.state.state_machine.start_dispute_review(session, dispute_id, actor.user_id)
    return {"success": True, "dispute": dispute_to_dict(dispute)}


@router.post("/{dispute_id}/resolve")
async def resolve_dispute(
    dispute_id: UUID,
    data: DisputeResolveRequest,
    request: Request,
    actor: Actor = Depends(require_roles("admin")),
    session: AsyncSession = Depends(get_session)
):
    """Close a dispute; the meeting keeps its disputed status"""
    dispute = await request.app.state.state_machine.resolve_dispute(
        session,
        dispute_id,
        resolution=data.resolution,
        status=data.status,
        resolved_by=actor.user_id,
    )
    return {"success": True, "dispute": dispute_to_dict(dispute)}
