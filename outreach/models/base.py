# outreach/models/base.py
"""
Base model with common fields for all database models.
Provides consistent id, tenant and timestamp columns.
"""
from datetime import datetime, timezone
from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class BaseModel(Base):
    """
    Abstract base model with common fields.

    Provides:
    - id: Primary key
    - tenant_id: Multi-tenancy support
    - created_at: Auto timestamp on creation
    - updated_at: Auto timestamp on updates
    """
    __abstract__ = True

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(String(100), index=True, nullable=False, default="default")
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
