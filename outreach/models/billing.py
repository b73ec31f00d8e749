# outreach/models/billing.py
from sqlalchemy import Column, Numeric, UniqueConstraint
from outreach.models.base import BaseModel


class TenantBalance(BaseModel):
    """Prepaid messaging balance of a tenant"""
    __tablename__ = "tenant_balances"
    __table_args__ = (
        UniqueConstraint('tenant_id', name='uq_tenant_balance'),
    )

    balance = Column(Numeric(12, 2), nullable=False, default=0)

    def __repr__(self):
        return f"<TenantBalance {self.tenant_id}: {self.balance}>"
