"""
Scoring persistence
Loads transcript and campaign, calls the scorer, appends the AIScore
"""

from dataclasses import dataclass
from typing import Optional
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from ..analysis.qualification_scorer import QualificationScore, QualificationScorer, parse_criteria, resolve_threshold
from ..database.crud import CampaignCRUD, MeetingCRUD, RecordingCRUD
from ..database.models import AIScore, CallRecording, Meeting, ScoreType
from ..errors import NotFoundError, RecordingGoneError, ValidationError

logger = structlog.get_logger("meetflow.services.scoring")


@dataclass
class ScoringOutcome:
    score: QualificationScore
    ai_score: AIScore


class ScoringService:
    """Score a meeting or recording and record the result"""

    def __init__(self, scorer: QualificationScorer):
        self.scorer = scorer

    async def score(
        self,
        session: AsyncSession,
        meeting_id: Optional[UUID] = None,
        call_recording_id: Optional[UUID] = None,
        transcript: Optional[str] = None,
        threshold: Optional[float] = None
    ) -> ScoringOutcome:
        """
        Score the transcript of a meeting or recording.

        The AIScore row and the meeting's denormalized score fields are only
        written after the scorer returns, so an unavailable model leaves no
        trace. Meeting.status is never changed here.
        """
        if meeting_id is None and call_recording_id is None:
            raise ValidationError("meeting_id or call_recording_id is required", stage="score")

        meeting: Optional[Meeting] = None
        recording: Optional[CallRecording] = None

        if meeting_id is not None:
            meeting = await MeetingCRUD.get_meeting(session, meeting_id)
            if not meeting:
                raise NotFoundError("Meeting not found", stage="score", meeting_id=str(meeting_id))

        if call_recording_id is not None:
            recording = await RecordingCRUD.get_recording(session, call_recording_id)
            if not recording:
                raise NotFoundError(
                    "Recording not found", stage="score", call_recording_id=str(call_recording_id)
                )
        elif meeting is not None and not transcript:
            recording = await RecordingCRUD.get_latest_for_meeting(session, meeting.id)

        if meeting is None and recording is not None and recording.meeting_id:
            meeting = await MeetingCRUD.get_meeting(session, recording.meeting_id)

        if not transcript:
            if recording is not None and recording.storage_path is None:
                raise RecordingGoneError(
                    "Recording deleted under retention policy",
                    stage="score",
                    call_recording_id=str(recording.id),
                )
            transcript = recording.transcription if recording is not None else None
        if not transcript or not transcript.strip():
            raise ValidationError("Transcript not available", stage="score")

        campaign = None
        if meeting is not None:
            campaign = meeting.campaign
        elif recording is not None:
            campaign = await CampaignCRUD.get_campaign(session, recording.campaign_id)
        if campaign is None:
            raise NotFoundError("Campaign not found", stage="score")

        criteria = parse_criteria(campaign.meeting_criteria)
        effective_threshold = resolve_threshold(threshold, campaign.qualification_threshold)

        result = await self.scorer.score(
            transcript,
            criteria,
            threshold=effective_threshold,
            icp_description=campaign.icp_description,
        )

        sales_rep_id = meeting.sales_rep_id if meeting is not None else recording.sales_rep_id
        ai_score = await MeetingCRUD.add_score(
            session,
            call_recording_id=recording.id if recording is not None else None,
            meeting_id=meeting.id if meeting is not None else None,
            sales_rep_id=sales_rep_id,
            score_type=ScoreType.QUALIFICATION_MATCH.value,
            score_value=round(result.overall_score, 1),
            score_details=result.to_dict(),
            ai_model=self.scorer.model,
        )

        if meeting is not None:
            await MeetingCRUD.update_ai_fields(
                session,
                meeting.id,
                overall_qualification_score=result.overall_score,
                criteria_scores=result.criteria_scores,
                criteria_met=result.criteria_met,
                criteria_unmet=result.criteria_unmet,
                qualification_confidence=result.confidence,
                qualification_reasoning=result.reasoning,
            )

        logger.info(
            "Qualification score recorded",
            ai_score_id=str(ai_score.id),
            meeting_id=str(meeting.id) if meeting is not None else None,
            call_recording_id=str(recording.id) if recording is not None else None,
            overall_score=ai_score.score_value,
            is_qualified=result.is_qualified
        )
        return ScoringOutcome(score=result, ai_score=ai_score)
