"""
Meeting endpoints
Creation by sales reps, review by admins, approval by the owning company
"""

from datetime import datetime
from typing import List, Optional
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from ...database.crud import ActorCRUD, MeetingCRUD
from ...errors import AuthorizationError, NotFoundError
from ..deps import Actor, authorize_meeting, company_owns, get_current_actor, get_session, require_roles
from ..schemas import decision_to_dict, history_to_list, meeting_to_dict, review_to_dict, score_to_dict

logger = structlog.get_logger("meetflow.web.meetings")

router = APIRouter(prefix="/api/meetings", tags=["meetings"])


class MeetingCreateRequest(BaseModel):
    campaign_id: UUID
    contact_name: str
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    meeting_date: datetime
    notes: Optional[str] = None
    qualification_checklist: List[bool]
    call_recording_id: Optional[UUID] = None


class ReviewRequest(BaseModel):
    review_decision: str
    review_notes: Optional[str] = None
    qualification_score: Optional[int] = Field(None, ge=0, le=100)
    quality_score: Optional[int] = Field(None, ge=0, le=100)
    call_recording_id: Optional[UUID] = None
    expected_version: Optional[int] = None


class ApprovalRequest(BaseModel):
    approved: bool
    rejection_reason: Optional[str] = None
    expected_version: Optional[int] = None


@router.post("", status_code=201)
async def create_meeting(
    data: MeetingCreateRequest,
    request: Request,
    actor: Actor = Depends(require_roles("sdr")),
    session: AsyncSession = Depends(get_session)
):
    """Book a meeting for an approved campaign"""
    rep = await ActorCRUD.get_sales_rep_by_user(session, actor.user_id)
    if not rep:
        raise AuthorizationError("Sales rep profile not found", stage="create_meeting", user_id=actor.user_id)

    meeting = await request.app.state.state_machine.create_meeting(
        session,
        sales_rep_id=rep.id,
        campaign_id=data.campaign_id,
        contact_name=data.contact_name,
        meeting_date=data.meeting_date,
        qualification_checklist=data.qualification_checklist,
        contact_email=data.contact_email,
        contact_phone=data.contact_phone,
        notes=data.notes,
        call_recording_id=data.call_recording_id,
        actor_id=actor.user_id,
    )
    return {"success": True, "meeting": meeting_to_dict(meeting)}


@router.get("/{meeting_id}")
async def get_meeting(
    meeting_id: UUID,
    actor: Actor = Depends(get_current_actor),
    session: AsyncSession = Depends(get_session)
):
    """Meeting with its status history and scores"""
    meeting = await MeetingCRUD.get_meeting(session, meeting_id)
    if not meeting:
        raise NotFoundError("Meeting not found", stage="read", meeting_id=str(meeting_id))
    await authorize_meeting(session, actor, meeting)

    history = await MeetingCRUD.get_status_history(session, meeting_id)
    scores = await MeetingCRUD.list_scores(session, meeting_id)
    return {
        "meeting": meeting_to_dict(meeting),
        "history": history_to_list(history),
        "scores": [score_to_dict(score) for score in scores],
    }


@router.post("/{meeting_id}/review")
async def review_meeting(
    meeting_id: UUID,
    data: ReviewRequest,
    request: Request,
    actor: Actor = Depends(require_roles("admin")),
    session: AsyncSession = Depends(get_session)
):
    """Admin review decision"""
    review, meeting = await request.app.state.state_machine.record_admin_review(
        session,
        meeting_id,
        decision=data.review_decision,
        reviewed_by=actor.user_id,
        review_notes=data.review_notes,
        qualification_score=data.qualification_score,
        quality_score=data.quality_score,
        call_recording_id=data.call_recording_id,
        expected_version=data.expected_version,
    )
    return {"success": True, "review": review_to_dict(review), "meeting": meeting_to_dict(meeting)}


@router.post("/{meeting_id}/approve")
async def approve_meeting(
    meeting_id: UUID,
    data: ApprovalRequest,
    request: Request,
    actor: Actor = Depends(require_roles("company")),
    session: AsyncSession = Depends(get_session)
):
    """Company approval decision on its own meeting"""
    meeting = await MeetingCRUD.get_meeting(session, meeting_id)
    if not meeting:
        raise NotFoundError("Meeting not found", stage="company_approval", meeting_id=str(meeting_id))
    if not company_owns(actor, meeting.campaign):
        raise AuthorizationError(
            "Company does not own this meeting",
            stage="company_approval",
            user_id=actor.user_id,
            meeting_id=str(meeting_id),
        )

    decision, meeting = await request.app.state.state_machine.record_company_decision(
        session,
        meeting_id,
        approved=data.approved,
        decided_by=actor.user_id,
        rejection_reason=data.rejection_reason,
        expected_version=data.expected_version,
    )
    return {"success": True, "decision": decision_to_dict(decision), "meeting": meeting_to_dict(meeting)}
