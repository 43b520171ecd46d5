"""
Response payloads for the API routers
"""

from typing import Any, Dict, List, Optional

from ..database.models import (
    AdminReview, AIScore, CallRecording, CompanyDecision, Dispute, Meeting, MeetingStatusChange
)


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _id(value) -> Optional[str]:
    return str(value) if value is not None else None


def meeting_to_dict(meeting: Meeting) -> Dict[str, Any]:
    return {
        "id": _id(meeting.id),
        "campaign_id": _id(meeting.campaign_id),
        "sales_rep_id": _id(meeting.sales_rep_id),
        "contact_name": meeting.contact_name,
        "contact_email": meeting.contact_email,
        "contact_phone": meeting.contact_phone,
        "meeting_date": _iso(meeting.meeting_date),
        "notes": meeting.notes,
        "qualification_checklist": meeting.qualification_checklist,
        "status": meeting.status,
        "rejection_reason": meeting.rejection_reason,
        "version": meeting.version,
        "overall_qualification_score": meeting.overall_qualification_score,
        "criteria_scores": meeting.criteria_scores,
        "criteria_met": meeting.criteria_met,
        "criteria_unmet": meeting.criteria_unmet,
        "qualification_confidence": meeting.qualification_confidence,
        "qualification_reasoning": meeting.qualification_reasoning,
        "created_at": _iso(meeting.created_at),
    }


def status_change_to_dict(change: MeetingStatusChange) -> Dict[str, Any]:
    return {
        "from_status": change.from_status,
        "to_status": change.to_status,
        "trigger": change.trigger,
        "actor_id": change.actor_id,
        "source_id": change.source_id,
        "note": change.note,
        "created_at": _iso(change.created_at),
    }


def review_to_dict(review: AdminReview) -> Dict[str, Any]:
    return {
        "id": _id(review.id),
        "meeting_id": _id(review.meeting_id),
        "call_recording_id": _id(review.call_recording_id),
        "reviewed_by": review.reviewed_by,
        "review_decision": review.review_decision,
        "review_notes": review.review_notes,
        "qualification_score": review.qualification_score,
        "quality_score": review.quality_score,
        "created_at": _iso(review.created_at),
    }


def decision_to_dict(decision: CompanyDecision) -> Dict[str, Any]:
    return {
        "id": _id(decision.id),
        "meeting_id": _id(decision.meeting_id),
        "decided_by": decision.decided_by,
        "approved": decision.approved,
        "rejection_reason": decision.rejection_reason,
        "created_at": _iso(decision.created_at),
    }


def dispute_to_dict(dispute: Dispute) -> Dict[str, Any]:
    return {
        "id": _id(dispute.id),
        "meeting_id": _id(dispute.meeting_id),
        "raised_by": dispute.raised_by,
        "dispute_type": dispute.dispute_type,
        "reason": dispute.reason,
        "status": dispute.status,
        "resolution": dispute.resolution,
        "resolved_by": dispute.resolved_by,
        "resolved_at": _iso(dispute.resolved_at),
        "created_at": _iso(dispute.created_at),
    }


def score_to_dict(score: AIScore) -> Dict[str, Any]:
    return {
        "id": _id(score.id),
        "meeting_id": _id(score.meeting_id),
        "call_recording_id": _id(score.call_recording_id),
        "sales_rep_id": _id(score.sales_rep_id),
        "score_type": score.score_type,
        "score_value": score.score_value,
        "score_details": score.score_details,
        "ai_model": score.ai_model,
        "created_at": _iso(score.created_at),
    }


def recording_to_dict(recording: CallRecording) -> Dict[str, Any]:
    return {
        "id": _id(recording.id),
        "meeting_id": _id(recording.meeting_id),
        "file_name": recording.file_name,
        "duration_seconds": recording.duration_seconds,
        "transcription_status": recording.transcription_status,
        "retention_deadline": _iso(recording.retention_deadline),
        "purged": recording.storage_path is None,
    }


def history_to_list(changes: List[MeetingStatusChange]) -> List[Dict[str, Any]]:
    return [status_change_to_dict(change) for change in changes]
