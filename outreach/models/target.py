# outreach/models/target.py
"""
Campaign targets: customers and services.
Both carry optional contact channels and an open attribute map (`data`)
validated against the tenant's attribute schema at write time.
"""
from sqlalchemy import Column, String, JSON, Integer, DateTime, UniqueConstraint
from outreach.models.base import BaseModel

TARGET_CUSTOMER = "customer"
TARGET_SERVICE = "service"


class Customer(BaseModel):
    __tablename__ = "customers"
    __table_args__ = (
        UniqueConstraint('tenant_id', 'external_id', name='uq_customer_tenant_external'),
    )

    external_id = Column(String(100), nullable=True)
    name = Column(String(255), nullable=True)
    phone = Column(String(50), index=True, nullable=True)
    email = Column(String(255), index=True, nullable=True)
    data = Column(JSON, nullable=False, default=dict)

    target_type = TARGET_CUSTOMER

    def __repr__(self):
        return f"<Customer {self.name or self.phone or self.id}>"


class Service(BaseModel):
    __tablename__ = "services"
    __table_args__ = (
        UniqueConstraint('tenant_id', 'external_id', name='uq_service_tenant_external'),
    )

    customer_id = Column(Integer, index=True, nullable=True)
    external_id = Column(String(100), nullable=True)
    name = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    email = Column(String(255), nullable=True)
    expiry_at = Column(DateTime, nullable=True)
    status = Column(String(50), nullable=True)
    data = Column(JSON, nullable=False, default=dict)

    target_type = TARGET_SERVICE

    def __repr__(self):
        return f"<Service {self.name or self.id} expires {self.expiry_at}>"
