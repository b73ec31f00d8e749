# outreach/schemas/message.py
from pydantic import BaseModel, Field
from typing import Optional
from decimal import Decimal


class SendResult(BaseModel):
    """Outcome of one ChannelSender.send call"""
    success: bool
    provider_id: Optional[str] = Field(None, description="Provider message/transaction id")
    cost: Optional[Decimal] = Field(None, description="Cost reported by the provider")
    error_message: Optional[str] = None
    error_code: Optional[str] = None
