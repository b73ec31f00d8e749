# outreach/models/message.py
"""
Outbound message log - one row per send attempt.
Audit trail and source of campaign aggregate counts.
"""
from sqlalchemy import Column, String, Text, Integer, Boolean, DateTime, Numeric
from outreach.models.base import BaseModel


class Message(BaseModel):
    __tablename__ = "messages"

    campaign_id = Column(Integer, index=True, nullable=True)
    target_type = Column(String(20), nullable=True)
    target_id = Column(Integer, index=True, nullable=True)

    channel = Column(String(10), nullable=False)  # 'sms' or 'email'
    source = Column(String(20), nullable=False, default="campaign")
    recipient = Column(String(255), index=True, nullable=False)
    sender = Column(String(255), nullable=True)
    subject = Column(String(500), nullable=True)
    content = Column(Text, nullable=True)
    segments = Column(Integer, nullable=True)

    cost = Column(Numeric(12, 2), default=0, nullable=False)
    provider_cost = Column(Numeric(12, 4), nullable=True)

    status = Column(String(20), nullable=False, default="pending")  # pending, sent, delivered, failed, bounced
    is_test = Column(Boolean, default=False, nullable=False)
    provider_message_id = Column(String(255), nullable=True)
    error_message = Column(Text, nullable=True)

    sent_at = Column(DateTime, nullable=True)
    delivered_at = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<Message {self.channel} to {self.recipient} [{self.status}]>"


SUCCESSFUL_STATUSES = ("sent", "delivered")
