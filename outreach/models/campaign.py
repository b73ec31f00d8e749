# outreach/models/campaign.py
"""
Campaign model - a tenant's segmented SMS/email campaign and its running
aggregates. Mutated only by the execution engine and the scheduler.
"""
import enum
from sqlalchemy import Column, String, Text, Integer, JSON, Boolean, DateTime, Numeric
from outreach.models.base import BaseModel


class CampaignStatus(str, enum.Enum):
    DRAFT = "draft"
    SCHEDULED = "scheduled"
    ACTIVE = "active"
    SENDING = "sending"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class CampaignType(str, enum.Enum):
    ONE_TIME = "one_time"
    AUTOMATED = "automated"


class CampaignChannel(str, enum.Enum):
    SMS = "sms"
    EMAIL = "email"
    BOTH = "both"


RUNNABLE_STATUSES = (CampaignStatus.DRAFT.value, CampaignStatus.SCHEDULED.value, CampaignStatus.ACTIVE.value)
TERMINAL_STATUSES = (CampaignStatus.COMPLETED.value, CampaignStatus.CANCELLED.value, CampaignStatus.FAILED.value)


class Campaign(BaseModel):
    __tablename__ = "campaigns"

    name = Column(String(255), nullable=False)
    target_type = Column(String(20), nullable=False, default="customer")

    # Channel & content
    channel = Column(String(10), nullable=False, default=CampaignChannel.SMS.value)
    sender = Column(String(50), nullable=True)
    email_sender = Column(String(255), nullable=True)
    email_display_name = Column(String(255), nullable=True)
    message_template = Column(Text, nullable=True)
    email_subject = Column(String(500), nullable=True)
    email_body = Column(Text, nullable=True)

    # Segment (ConditionTree as JSON)
    filter = Column(JSON, nullable=True)

    # Lifecycle
    status = Column(String(20), index=True, nullable=False, default=CampaignStatus.DRAFT.value)
    campaign_type = Column(String(20), nullable=False, default=CampaignType.ONE_TIME.value)
    is_test = Column(Boolean, default=False, nullable=False)
    pause_reason = Column(String(255), nullable=True)
    failure_reason = Column(Text, nullable=True)
    created_by = Column(String(100), nullable=True)

    # Scheduling
    scheduled_at = Column(DateTime, nullable=True)
    check_interval_minutes = Column(Integer, nullable=True)
    cooldown_days = Column(Integer, nullable=False, default=0)
    run_start_hour = Column(Integer, nullable=True)
    run_end_hour = Column(Integer, nullable=True)
    next_run_at = Column(DateTime, index=True, nullable=True)
    last_run_at = Column(DateTime, nullable=True)
    ends_at = Column(DateTime, nullable=True)
    run_count = Column(Integer, default=0, nullable=False)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    # SMS aggregates
    target_count = Column(Integer, default=0, nullable=False)
    sent_count = Column(Integer, default=0, nullable=False)
    delivered_count = Column(Integer, default=0, nullable=False)
    failed_count = Column(Integer, default=0, nullable=False)
    total_cost = Column(Numeric(12, 2), default=0, nullable=False)

    # Email aggregates
    email_sent_count = Column(Integer, default=0, nullable=False)
    email_delivered_count = Column(Integer, default=0, nullable=False)
    email_failed_count = Column(Integer, default=0, nullable=False)
    email_total_cost = Column(Numeric(12, 2), default=0, nullable=False)

    # Channel helpers

    def requires_phone(self) -> bool:
        return self.channel in (CampaignChannel.SMS.value, CampaignChannel.BOTH.value)

    def requires_email(self) -> bool:
        return self.channel in (CampaignChannel.EMAIL.value, CampaignChannel.BOTH.value)

    def is_automated(self) -> bool:
        return self.campaign_type == CampaignType.AUTOMATED.value

    def has_ended(self, now) -> bool:
        return self.ends_at is not None and self.ends_at <= now

    @property
    def total_sent(self) -> int:
        return (self.sent_count or 0) + (self.email_sent_count or 0)

    @property
    def total_failed(self) -> int:
        return (self.failed_count or 0) + (self.email_failed_count or 0)

    def __repr__(self):
        return f"<Campaign {self.id} {self.name} [{self.status}]>"
