# outreach/services/attribute_schema_service.py
"""
Attribute schema service - loads and edits a tenant's attribute registry.
"""
import logging
from typing import List

from sqlalchemy.orm import Session

from outreach.core.exceptions import SchemaViolation
from outreach.models.attribute_schema import AttributeDefinition
from outreach.schemas.segment import AttributeSchema, AttributeSpec, AttributeType, BUILTIN_ATTRIBUTES

log = logging.getLogger("outreach.attribute_schema")


def _to_spec(row: AttributeDefinition) -> AttributeSpec:
    try:
        return AttributeSpec(
            key=row.attribute_key,
            type=AttributeType.parse(row.attribute_type),
            required=bool(row.required),
            label=row.label,
            options=row.options,
            item_type=row.item_type,
            properties=row.properties,
        )
    except ValueError as e:
        raise SchemaViolation(
            f"Invalid definition of attribute '{row.attribute_key}': {e}", key=row.attribute_key
        ) from e


def load_schema(db: Session, tenant_id: str, target_type: str = "customer") -> AttributeSchema:
    """
    Build the AttributeSchema for one tenant and target type.

    Raises:
        SchemaViolation: unknown target type or a malformed definition row
    """
    if target_type not in BUILTIN_ATTRIBUTES:
        raise SchemaViolation(f"Unknown target type '{target_type}'")

    rows: List[AttributeDefinition] = db.query(AttributeDefinition).filter(
        AttributeDefinition.tenant_id == tenant_id,
        AttributeDefinition.target_type == target_type
    ).order_by(AttributeDefinition.id).all()

    specs = [_to_spec(row) for row in rows]
    try:
        return AttributeSchema.from_specs(tenant_id, target_type, specs)
    except ValueError as e:
        raise SchemaViolation(f"Invalid schema for tenant {tenant_id}/{target_type}: {e}") from e


def define_attribute(
    db: Session,
    tenant_id: str,
    spec: AttributeSpec,
    target_type: str = "customer"
) -> AttributeDefinition:
    """
    Create or replace one attribute definition.

    Raises:
        SchemaViolation: unknown target type, or key collides with a built-in target field
    """
    if target_type not in BUILTIN_ATTRIBUTES:
        raise SchemaViolation(f"Unknown target type '{target_type}'")
    if spec.key in BUILTIN_ATTRIBUTES[target_type]:
        raise SchemaViolation(f"'{spec.key}' is a built-in {target_type} field", key=spec.key)

    row = db.query(AttributeDefinition).filter(
        AttributeDefinition.tenant_id == tenant_id,
        AttributeDefinition.target_type == target_type,
        AttributeDefinition.attribute_key == spec.key
    ).first()

    if row is None:
        row = AttributeDefinition(tenant_id=tenant_id, target_type=target_type, attribute_key=spec.key)
        db.add(row)

    row.attribute_type = spec.type.value
    row.label = spec.label
    row.required = spec.required
    row.options = spec.options
    row.item_type = spec.item_type
    row.properties = spec.properties

    db.commit()
    db.refresh(row)
    log.info(f"📐 Attribute '{spec.key}' ({spec.type.value}) defined for tenant {tenant_id}/{target_type}")
    return row
