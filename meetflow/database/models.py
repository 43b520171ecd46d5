"""
SQLAlchemy models for the meeting lifecycle pipeline
Decision and score tables are append-only audit facts
"""

from enum import Enum
from uuid import uuid4, UUID

from sqlalchemy import (
    Column, String, Integer, Float, DateTime, Boolean, Text, JSON,
    ForeignKey, Index, UniqueConstraint, CheckConstraint
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.types import TypeDecorator, CHAR

from ..utils.helpers import utc_now


class GUID(TypeDecorator):
    """Platform-independent GUID type"""
    impl = CHAR
    cache_ok = True

    def load_dialect_impl(self, dialect):
        return dialect.type_descriptor(CHAR(32))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        elif isinstance(value, UUID):
            return value.hex
        else:
            return str(value).replace('-', '')

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        return UUID(value)


class MeetingStatus(str, Enum):
    PENDING = "pending"
    QUALIFIED = "qualified"
    NOT_QUALIFIED = "not_qualified"
    DISPUTED = "disputed"


class TranscriptionStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ReviewDecision(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    NEEDS_REVISION = "needs_revision"


class DisputeType(str, Enum):
    QUALIFICATION = "qualification"
    QUALITY = "quality"
    PAYMENT = "payment"
    OTHER = "other"


class DisputeStatus(str, Enum):
    OPEN = "open"
    UNDER_REVIEW = "under_review"
    RESOLVED = "resolved"
    REJECTED = "rejected"


class ScoreType(str, Enum):
    CALL_QUALITY = "call_quality"
    QUALIFICATION_MATCH = "qualification_match"
    SDR_PERFORMANCE = "sdr_performance"
    COMPLIANCE = "compliance"


class ApplicationStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class LeadStatus(str, Enum):
    NEW = "new"
    CONTACTED = "contacted"
    QUALIFIED = "qualified"
    NOT_QUALIFIED = "not_qualified"
    CONVERTED = "converted"
    SUPPRESSED = "suppressed"


class TransitionTrigger(str, Enum):
    CREATED = "created"
    ADMIN_REVIEW = "admin_review"
    COMPANY_APPROVAL = "company_approval"
    DISPUTE_OPENED = "dispute_opened"


Base = declarative_base()


class TimestampMixin:
    """Mixin for created_at and updated_at timestamps"""
    created_at = Column(DateTime, default=utc_now, nullable=False, index=True)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now, nullable=False)


class Company(Base, TimestampMixin):
    """Client company that owns campaigns"""
    __tablename__ = "companies"

    id = Column(GUID(), primary_key=True, default=uuid4)
    user_id = Column(String(64), nullable=False, unique=True, index=True)
    company_name = Column(String(255), nullable=False)

    campaigns = relationship("Campaign", back_populates="company")


class SalesRep(Base, TimestampMixin):
    """Outbound sales representative"""
    __tablename__ = "sales_reps"

    id = Column(GUID(), primary_key=True, default=uuid4)
    user_id = Column(String(64), nullable=False, unique=True, index=True)
    status = Column(String(20), default=ApplicationStatus.APPROVED.value, nullable=False)


class Campaign(Base, TimestampMixin):
    """Company campaign with its qualification criteria"""
    __tablename__ = "campaigns"

    id = Column(GUID(), primary_key=True, default=uuid4)
    company_id = Column(GUID(), ForeignKey("companies.id"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    icp_description = Column(Text, nullable=True)
    # Either a list of strings or a legacy JSON-encoded string
    meeting_criteria = Column(JSON, nullable=True)
    qualification_threshold = Column(Integer, nullable=True)
    status = Column(String(20), default="active", nullable=False)

    company = relationship("Company", back_populates="campaigns")

    __table_args__ = (
        CheckConstraint(
            "qualification_threshold IS NULL OR "
            "(qualification_threshold >= 0 AND qualification_threshold <= 100)",
            name="check_threshold_range"
        ),
    )


class CampaignApplication(Base):
    """Sales rep application to work a campaign"""
    __tablename__ = "campaign_applications"

    id = Column(GUID(), primary_key=True, default=uuid4)
    campaign_id = Column(GUID(), ForeignKey("campaigns.id"), nullable=False, index=True)
    sales_rep_id = Column(GUID(), ForeignKey("sales_reps.id"), nullable=False, index=True)
    status = Column(String(20), default=ApplicationStatus.PENDING.value, nullable=False)
    applied_at = Column(DateTime, default=utc_now, nullable=False)

    campaign = relationship("Campaign")

    __table_args__ = (
        Index("idx_applications_rep_status", "sales_rep_id", "status", "applied_at"),
    )


class Meeting(Base, TimestampMixin):
    """Booked sales meeting flowing through qualification"""
    __tablename__ = "meetings"

    id = Column(GUID(), primary_key=True, default=uuid4)
    campaign_id = Column(GUID(), ForeignKey("campaigns.id"), nullable=False, index=True)
    sales_rep_id = Column(GUID(), ForeignKey("sales_reps.id"), nullable=False, index=True)
    contact_name = Column(String(255), nullable=False)
    contact_email = Column(String(255), nullable=True)
    contact_phone = Column(String(50), nullable=True)
    meeting_date = Column(DateTime, nullable=False)
    notes = Column(Text, nullable=True)
    qualification_checklist = Column(JSON, nullable=False, default=list)

    status = Column(String(20), default=MeetingStatus.PENDING.value, nullable=False, index=True)
    rejection_reason = Column(Text, nullable=True)
    version = Column(Integer, nullable=False)

    # Latest AI score, denormalized for querying
    overall_qualification_score = Column(Float, nullable=True)
    criteria_scores = Column(JSON, nullable=True)
    criteria_met = Column(JSON, nullable=True)
    criteria_unmet = Column(JSON, nullable=True)
    qualification_confidence = Column(Float, nullable=True)
    qualification_reasoning = Column(Text, nullable=True)

    campaign = relationship("Campaign")
    status_changes = relationship(
        "MeetingStatusChange",
        back_populates="meeting",
        order_by="MeetingStatusChange.created_at"
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("idx_meetings_campaign_status", "campaign_id", "status"),
    )


class MeetingStatusChange(Base):
    """Append-only history of applied status transitions"""
    __tablename__ = "meeting_status_changes"

    id = Column(Integer, primary_key=True)
    meeting_id = Column(GUID(), ForeignKey("meetings.id"), nullable=False, index=True)
    from_status = Column(String(20), nullable=True)
    to_status = Column(String(20), nullable=False)
    trigger = Column(String(30), nullable=False)
    actor_id = Column(String(64), nullable=True)
    source_id = Column(String(64), nullable=True)
    note = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utc_now, nullable=False)

    meeting = relationship("Meeting", back_populates="status_changes")


class DialerIntegration(Base, TimestampMixin):
    """Sales rep credential binding to one telephony provider account"""
    __tablename__ = "dialer_integrations"

    id = Column(GUID(), primary_key=True, default=uuid4)
    sales_rep_id = Column(GUID(), ForeignKey("sales_reps.id"), nullable=False, index=True)
    dialer_provider = Column(String(20), nullable=False)
    provider_account_id = Column(String(100), nullable=False)
    provider_phone_number = Column(String(50), nullable=True)
    webhook_secret = Column(String(255), nullable=True)
    access_token_encrypted = Column(Text, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False, index=True)
    last_sync_at = Column(DateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "sales_rep_id", "dialer_provider", "provider_account_id",
            name="uq_integration_rep_provider_account"
        ),
        Index("idx_integrations_lookup", "dialer_provider", "provider_account_id", "is_active"),
    )


class CallRecording(Base, TimestampMixin):
    """Recorded call artifact, retained as an audit row after purge"""
    __tablename__ = "call_recordings"

    id = Column(GUID(), primary_key=True, default=uuid4)
    meeting_id = Column(GUID(), ForeignKey("meetings.id"), nullable=True, index=True)
    sales_rep_id = Column(GUID(), ForeignKey("sales_reps.id"), nullable=False, index=True)
    campaign_id = Column(GUID(), ForeignKey("campaigns.id"), nullable=False, index=True)

    storage_path = Column(String(500), nullable=True)
    file_name = Column(String(255), nullable=False)
    file_size = Column(Integer, nullable=True)
    mime_type = Column(String(100), nullable=True)
    duration_seconds = Column(Integer, nullable=True)

    transcription = Column(Text, nullable=True)
    transcription_status = Column(
        String(20),
        default=TranscriptionStatus.PENDING.value,
        nullable=False,
        index=True
    )
    transcription_error = Column(Text, nullable=True)

    dialer_provider = Column(String(20), nullable=True)
    dialer_call_id = Column(String(100), nullable=True)
    dialer_integration_id = Column(GUID(), ForeignKey("dialer_integrations.id"), nullable=True)

    retention_deadline = Column(DateTime, nullable=True, index=True)
    uploaded_at = Column(DateTime, default=utc_now, nullable=False)

    campaign = relationship("Campaign")

    __table_args__ = (
        UniqueConstraint("dialer_provider", "dialer_call_id", name="uq_recording_provider_call"),
        Index("idx_recordings_retention", "retention_deadline", "storage_path"),
        CheckConstraint("duration_seconds >= 0", name="check_duration_positive"),
    )


class AIScore(Base):
    """Immutable scoring event"""
    __tablename__ = "ai_scores"

    id = Column(GUID(), primary_key=True, default=uuid4)
    call_recording_id = Column(GUID(), ForeignKey("call_recordings.id"), nullable=True, index=True)
    meeting_id = Column(GUID(), ForeignKey("meetings.id"), nullable=True, index=True)
    sales_rep_id = Column(GUID(), ForeignKey("sales_reps.id"), nullable=True, index=True)
    score_type = Column(String(30), nullable=False)
    score_value = Column(Float, nullable=False)
    score_details = Column(JSON, nullable=True)
    ai_model = Column(String(100), nullable=True)
    created_at = Column(DateTime, default=utc_now, nullable=False, index=True)

    __table_args__ = (
        CheckConstraint("score_value >= 0 AND score_value <= 100", name="check_score_range"),
    )


class AdminReview(Base):
    """Immutable human review decision"""
    __tablename__ = "admin_reviews"

    id = Column(GUID(), primary_key=True, default=uuid4)
    meeting_id = Column(GUID(), ForeignKey("meetings.id"), nullable=False, index=True)
    call_recording_id = Column(GUID(), ForeignKey("call_recordings.id"), nullable=True)
    reviewed_by = Column(String(64), nullable=False)
    review_decision = Column(String(20), nullable=False)
    review_notes = Column(Text, nullable=True)
    qualification_score = Column(Integer, nullable=True)
    quality_score = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=utc_now, nullable=False)


class CompanyDecision(Base):
    """Immutable company approval submission"""
    __tablename__ = "company_decisions"

    id = Column(GUID(), primary_key=True, default=uuid4)
    meeting_id = Column(GUID(), ForeignKey("meetings.id"), nullable=False, index=True)
    decided_by = Column(String(64), nullable=False)
    approved = Column(Boolean, nullable=False)
    rejection_reason = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utc_now, nullable=False)


class Dispute(Base, TimestampMixin):
    """Dispute raised against a meeting"""
    __tablename__ = "disputes"

    id = Column(GUID(), primary_key=True, default=uuid4)
    meeting_id = Column(GUID(), ForeignKey("meetings.id"), nullable=False, index=True)
    raised_by = Column(String(64), nullable=False)
    dispute_type = Column(String(20), nullable=False)
    reason = Column(Text, nullable=False)
    status = Column(String(20), default=DisputeStatus.OPEN.value, nullable=False, index=True)
    resolution = Column(Text, nullable=True)
    resolved_by = Column(String(64), nullable=True)
    resolved_at = Column(DateTime, nullable=True)


class Lead(Base, TimestampMixin):
    """Correlated contact within a campaign"""
    __tablename__ = "leads"

    id = Column(GUID(), primary_key=True, default=uuid4)
    campaign_id = Column(GUID(), ForeignKey("campaigns.id"), nullable=False, index=True)
    company_id = Column(GUID(), ForeignKey("companies.id"), nullable=False)
    first_name = Column(String(255), nullable=True)
    last_name = Column(String(255), nullable=True)
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    status = Column(String(20), default=LeadStatus.NEW.value, nullable=False)

    __table_args__ = (
        Index("idx_leads_campaign_phone", "campaign_id", "phone"),
        Index("idx_leads_campaign_email", "campaign_id", "email"),
    )


class OutreachAttempt(Base):
    """One contact attempt against a lead"""
    __tablename__ = "outreach_attempts"

    id = Column(GUID(), primary_key=True, default=uuid4)
    lead_id = Column(GUID(), ForeignKey("leads.id"), nullable=False, index=True)
    sales_rep_id = Column(GUID(), ForeignKey("sales_reps.id"), nullable=False)
    campaign_id = Column(GUID(), ForeignKey("campaigns.id"), nullable=False)
    attempt_type = Column(String(20), default="call", nullable=False)
    attempt_status = Column(String(20), nullable=False)
    duration_seconds = Column(Integer, nullable=True)
    call_recording_id = Column(GUID(), ForeignKey("call_recordings.id"), nullable=True)
    dialer_call_id = Column(String(100), nullable=True)
    dialer_integration_id = Column(GUID(), ForeignKey("dialer_integrations.id"), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utc_now, nullable=False)
