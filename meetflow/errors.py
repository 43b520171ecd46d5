"""
Error taxonomy for the meeting pipeline
Every error carries the pipeline stage and triage context
"""

from typing import Any, Dict, Optional


class PipelineError(Exception):
    """Base error with HTTP status and structured context"""

    status_code = 500
    public_message = "Something went wrong, please try again"

    def __init__(self, message: str, stage: Optional[str] = None, **context: Any):
        super().__init__(message)
        self.message = message
        self.stage = stage
        self.context = context

    def to_log(self) -> Dict[str, Any]:
        return {"error": self.message, "stage": self.stage, **self.context}


class AuthenticationError(PipelineError):
    """Missing or invalid webhook signature / caller token"""
    status_code = 401
    public_message = "Unauthorized"


class AuthorizationError(PipelineError):
    status_code = 403
    public_message = "Forbidden"


class NotFoundError(PipelineError):
    """Missing integration, campaign, meeting, dispute or recording"""
    status_code = 404
    public_message = "Not found"


class ValidationError(PipelineError):
    status_code = 400
    public_message = "Invalid request"


class NoActiveCampaignError(PipelineError):
    """Sales rep has no approved campaign application"""
    status_code = 400
    public_message = "No active campaign found"


class AcquisitionError(PipelineError):
    """Recording download, upload or persist failure"""
    status_code = 500
    public_message = "Failed to acquire recording"


class ScoringUnavailableError(PipelineError):
    """Scoring model unreachable or returned a malformed response"""
    status_code = 503
    public_message = "Scoring service unavailable"


class ConflictError(PipelineError):
    """Uniqueness or version conflict"""
    status_code = 409
    public_message = "Conflict, please reload and try again"


class RecordingGoneError(PipelineError):
    """Recording artifact was purged by the retention policy"""
    status_code = 410
    public_message = "Recording deleted under retention policy"


class RetentionError(PipelineError):
    """Per-item storage deletion failure during retention cleanup"""


class StorageError(PipelineError):
    """Object storage backend failure"""
