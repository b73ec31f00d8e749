# outreach/schemas/campaign.py
from pydantic import BaseModel, Field, model_validator
from typing import List, Optional, Dict, Any
from datetime import datetime
from decimal import Decimal

from outreach.models.campaign import CampaignChannel, CampaignType
from outreach.schemas.segment import ConditionTree


class CampaignCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    target_type: str = Field("customer", pattern="^(customer|service)$")
    channel: CampaignChannel = CampaignChannel.SMS
    campaign_type: CampaignType = CampaignType.ONE_TIME

    # SMS
    sender: Optional[str] = Field(None, max_length=50, description="SMS sender id")
    message_template: Optional[str] = Field(None, min_length=1, description="SMS text with {{variables}}")

    # Email
    email_sender: Optional[str] = None
    email_display_name: Optional[str] = None
    email_subject: Optional[str] = Field(None, max_length=500)
    email_body: Optional[str] = None

    filter: ConditionTree = Field(default_factory=ConditionTree)

    # Scheduling
    scheduled_at: Optional[datetime] = None
    check_interval_minutes: Optional[int] = Field(None, gt=0)
    cooldown_days: int = Field(0, ge=0)
    run_start_hour: Optional[int] = Field(None, ge=0, le=23)
    run_end_hour: Optional[int] = Field(None, ge=0, le=24)
    ends_at: Optional[datetime] = None

    is_test: bool = False
    created_by: Optional[str] = None

    @model_validator(mode='after')
    def validate_channel_content(self):
        """Each selected channel needs its template and sender"""
        if self.channel in (CampaignChannel.SMS, CampaignChannel.BOTH):
            if not self.message_template or not self.sender:
                raise ValueError('SMS campaigns require message_template and sender')
        if self.channel in (CampaignChannel.EMAIL, CampaignChannel.BOTH):
            if not self.email_subject or not self.email_body or not self.email_sender:
                raise ValueError('Email campaigns require email_subject, email_body and email_sender')
        return self

    @model_validator(mode='after')
    def validate_run_window(self):
        """Run hours come in pairs"""
        if (self.run_start_hour is None) != (self.run_end_hour is None):
            raise ValueError('run_start_hour and run_end_hour must be set together')
        return self


class PassResult(BaseModel):
    """Outcome of one campaign execution pass"""
    campaign_id: int
    status: str
    target_count: int = 0
    eligible_count: int = 0
    skipped_cooldown: int = 0
    sent_count: int = 0
    delivered_count: int = 0
    failed_count: int = 0
    total_cost: Decimal = Decimal("0")
    email_sent_count: int = 0
    email_delivered_count: int = 0
    email_failed_count: int = 0
    email_total_cost: Decimal = Decimal("0")
    mock_mode: bool = False
    pause_reason: Optional[str] = None
    next_run_at: Optional[datetime] = None


class MessagePreview(BaseModel):
    target_id: int
    channel: str
    recipient: str
    content: str
    subject: Optional[str] = None
    segments: Optional[int] = None
    attributes: Dict[str, Any] = Field(default_factory=dict)


class CampaignPreview(BaseModel):
    total_count: int
    eligible_count: int
    previews: List[MessagePreview] = Field(default_factory=list)


class EligibleCounts(BaseModel):
    """Matching targets and how many each channel can reach"""
    total: int = 0
    in_cooldown: int = 0
    eligible: int = 0
    sms: int = 0
    email: int = 0
    both: int = 0
