# outreach/db/base.py
"""Import all models so Base.metadata knows every table"""
from outreach.models.base import Base

from outreach.models.attribute_schema import AttributeDefinition
from outreach.models.target import Customer, Service
from outreach.models.campaign import Campaign
from outreach.models.cooldown import Cooldown
from outreach.models.message import Message
from outreach.models.billing import TenantBalance

__all__ = ["Base"]
