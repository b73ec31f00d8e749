# outreach/models/cooldown.py
from sqlalchemy import Column, String, Integer, DateTime, UniqueConstraint
from outreach.models.base import BaseModel, utcnow


class Cooldown(BaseModel):
    """Last time a (campaign, target) pair was messaged - one row per pair"""
    __tablename__ = "cooldowns"
    __table_args__ = (
        UniqueConstraint('campaign_id', 'target_type', 'target_id', name='uq_cooldown_campaign_target'),
    )

    campaign_id = Column(Integer, index=True, nullable=False)
    target_type = Column(String(20), nullable=False)
    target_id = Column(Integer, nullable=False)
    sent_at = Column(DateTime, index=True, nullable=False, default=utcnow)

    def __repr__(self):
        return f"<Cooldown campaign={self.campaign_id} {self.target_type}#{self.target_id} at {self.sent_at}>"
