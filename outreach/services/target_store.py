# outreach/services/target_store.py
"""
Target Store - repository of customers and services keyed by tenant.
Evaluates compiled predicates while streaming a tenant's targets in
id-ordered batches, so callers may commit between targets.
"""
import logging
from datetime import date, datetime
from typing import Any, Callable, Dict, Iterator, Optional

from sqlalchemy.orm import Session

from outreach.core.exceptions import SchemaViolation
from outreach.models.base import utcnow
from outreach.models.target import Customer, Service, TARGET_CUSTOMER, TARGET_SERVICE
from outreach.schemas.segment import AttributeSchema
from outreach.schemas.target import TargetRecord
from outreach.services.segment_compiler import Predicate

log = logging.getLogger("outreach.target_store")

TARGET_MODELS = {
    TARGET_CUSTOMER: Customer,
    TARGET_SERVICE: Service,
}


def model_for(target_type: str):
    try:
        return TARGET_MODELS[target_type]
    except KeyError:
        raise SchemaViolation(f"Unknown target type '{target_type}'") from None


class TargetStore:
    """Service for target reads and schema-validated writes"""

    BATCH_SIZE = 500

    def __init__(self, clock: Callable[[], datetime] = utcnow, batch_size: int = BATCH_SIZE):
        self.clock = clock
        self.batch_size = batch_size

    # ────────────────────────────────────────────
    # Attribute maps
    # ────────────────────────────────────────────

    def attribute_map(self, target, today: Optional[date] = None) -> Dict[str, Any]:
        """Merge built-in columns with the target's data map"""
        values = dict(target.data or {})
        values.update({
            "id": target.id,
            "external_id": target.external_id,
            "name": target.name,
            "phone": target.phone,
            "email": target.email,
            "created_at": target.created_at,
            "updated_at": target.updated_at,
        })
        if isinstance(target, Service):
            today = today or self.clock().date()
            values["expiry_at"] = target.expiry_at
            values["status"] = target.status
            values["days_until_expiry"] = (
                (target.expiry_at.date() - today).days if target.expiry_at else None
            )
        return values

    def to_record(self, target, today: Optional[date] = None) -> TargetRecord:
        return TargetRecord(
            id=target.id,
            target_type=target.target_type,
            tenant_id=target.tenant_id,
            name=target.name,
            phone=target.phone,
            email=target.email,
            attributes=self.attribute_map(target, today),
        )

    # ────────────────────────────────────────────
    # Reads
    # ────────────────────────────────────────────

    def matching(
        self,
        db: Session,
        tenant_id: str,
        predicate: Predicate,
        limit: Optional[int] = None
    ) -> Iterator[TargetRecord]:
        """
        Stream targets of `tenant_id` matching `predicate`.

        Each batch is fully loaded before it is evaluated, so the caller
        can commit the session while iterating.
        """
        model = model_for(predicate.target_type)
        if limit is not None and limit <= 0:
            return
        today = self.clock().date()
        last_id = 0
        yielded = 0

        while True:
            batch = (
                db.query(model)
                .filter(model.tenant_id == tenant_id, model.id > last_id)
                .order_by(model.id)
                .limit(self.batch_size)
                .all()
            )
            if not batch:
                return

            records = [self.to_record(target, today) for target in batch]
            last_id = batch[-1].id

            for record in records:
                if not predicate.evaluate(record.attributes, today):
                    continue
                yield record
                yielded += 1
                if limit is not None and yielded >= limit:
                    return

    def count(self, db: Session, tenant_id: str, predicate: Predicate) -> int:
        return sum(1 for _ in self.matching(db, tenant_id, predicate))

    # ────────────────────────────────────────────
    # Writes
    # ────────────────────────────────────────────

    def upsert(
        self,
        db: Session,
        schema: AttributeSchema,
        data: Optional[Dict[str, Any]] = None,
        external_id: Optional[str] = None,
        **fields
    ):
        """
        Create or update a target, validating its attribute map first.

        Targets are matched on (tenant_id, external_id) when an external id
        is given; otherwise a new row is always created.

        Raises:
            SchemaViolation: data does not fit the tenant schema
        """
        data = schema.validate_values(dict(data or {}))
        model = model_for(schema.target_type)
        for name in fields:
            if not hasattr(model, name) or name in ("id", "tenant_id", "data", "target_type"):
                raise SchemaViolation(f"'{name}' is not a {schema.target_type} field", key=name)

        target = None
        if external_id is not None:
            target = db.query(model).filter(
                model.tenant_id == schema.tenant_id,
                model.external_id == external_id
            ).first()

        if target is None:
            target = model(tenant_id=schema.tenant_id, external_id=external_id)
            db.add(target)

        for name, value in fields.items():
            setattr(target, name, value)
        target.data = data

        db.commit()
        db.refresh(target)
        log.debug(f"💾 Saved {schema.target_type} {target.id} for tenant {schema.tenant_id}")
        return target
