# outreach/models/attribute_schema.py
"""Per-tenant attribute definitions for customers and services"""
from sqlalchemy import Column, String, Boolean, JSON, UniqueConstraint
from outreach.models.base import BaseModel


class AttributeDefinition(BaseModel):
    """
    One declared attribute key of a tenant's target schema.
    The set of rows for (tenant_id, target_type) forms the AttributeSchema.
    """
    __tablename__ = "attribute_definitions"
    __table_args__ = (
        UniqueConstraint('tenant_id', 'target_type', 'attribute_key', name='uq_tenant_target_attribute'),
    )

    target_type = Column(String(20), nullable=False, default="customer")  # 'customer' or 'service'
    attribute_key = Column(String(100), nullable=False)
    attribute_type = Column(String(20), nullable=False)  # string, number, date, boolean, enum, array
    label = Column(String(255), nullable=True)
    required = Column(Boolean, default=False, nullable=False)

    options = Column(JSON, nullable=True)      # enum values
    item_type = Column(String(20), nullable=True)  # array element type, e.g. 'object'
    properties = Column(JSON, nullable=True)   # array-of-object property names

    def __repr__(self):
        return f"<AttributeDefinition {self.target_type}.{self.attribute_key}:{self.attribute_type}>"
