"""
Tests for target persistence, schema validation and predicate streaming.
"""
from datetime import timedelta

import pytest

from conftest import NOW, TENANT, days_from_now
from outreach.core.exceptions import SchemaViolation
from outreach.models.attribute_schema import AttributeDefinition
from outreach.models.target import Customer
from outreach.schemas.segment import AttributeSchema, AttributeSpec, AttributeType
from outreach.services.attribute_schema_service import define_attribute, load_schema
from outreach.services.segment_compiler import SegmentQueryCompiler
from outreach.services.target_store import TargetStore


@pytest.fixture
def store(clock):
    return TargetStore(clock=clock, batch_size=2)


def compile_filter(schema, *conditions, logic="AND"):
    return SegmentQueryCompiler().compile(schema, {"logic": logic, "conditions": list(conditions)})


class TestAttributeSchemaService:

    def test_load_schema_merges_builtins(self, tenant_schema):
        assert tenant_schema.get("phone").builtin is True
        assert tenant_schema.get("plan").options == ["basic", "pro", "enterprise"]
        assert "expiry" in tenant_schema.custom_keys()

    def test_redefine_replaces_type(self, db, tenant_schema):
        define_attribute(db, TENANT, AttributeSpec(key="score", type=AttributeType.STRING))
        assert load_schema(db, TENANT).get("score").type == AttributeType.STRING

    def test_builtin_key_rejected(self, db):
        with pytest.raises(SchemaViolation):
            define_attribute(db, TENANT, AttributeSpec(key="email", type=AttributeType.STRING))

    def test_schemas_are_per_tenant(self, db, tenant_schema):
        assert load_schema(db, "other").custom_keys() == []

    def test_unknown_target_type(self, db):
        with pytest.raises(SchemaViolation):
            load_schema(db, TENANT, "vehicle")
        with pytest.raises(SchemaViolation):
            define_attribute(db, TENANT, AttributeSpec(key="color", type=AttributeType.STRING), "vehicle")

    def test_stored_definition_with_unknown_type(self, db):
        db.add(AttributeDefinition(tenant_id=TENANT, target_type="customer", attribute_key="geo", attribute_type="polygon"))
        db.commit()

        with pytest.raises(SchemaViolation) as exc:
            load_schema(db, TENANT)
        assert exc.value.key == "geo"


class TestUpsert:
    """Write-time validation of attribute maps."""

    def test_creates_target(self, db, store, tenant_schema):
        customer = store.upsert(db, tenant_schema, data={"score": 5, "plan": "pro"}, name="Ana", phone="+359888")
        assert customer.id is not None
        assert customer.tenant_id == TENANT
        assert customer.data == {"score": 5, "plan": "pro"}

    def test_undeclared_key_rejected(self, db, store, tenant_schema):
        with pytest.raises(SchemaViolation) as exc:
            store.upsert(db, tenant_schema, data={"loyalty": 3})
        assert exc.value.key == "loyalty"

    @pytest.mark.parametrize("data", [
        {"score": "lots"},
        {"plan": "platinum"},
        {"vip": "yes"},
        {"expiry": "next week"},
        {"tags": "gold"},
        {"licenses": ["av"]},
    ])
    def test_wrong_type_rejected(self, db, store, tenant_schema, data):
        with pytest.raises(SchemaViolation):
            store.upsert(db, tenant_schema, data=data)
        assert db.query(Customer).count() == 0

    def test_builtin_key_in_data_rejected(self, db, store, tenant_schema):
        with pytest.raises(SchemaViolation):
            store.upsert(db, tenant_schema, data={"phone": "+359888"})

    def test_required_key_enforced(self, db, store):
        schema = AttributeSchema.from_specs(TENANT, "customer", [
            AttributeSpec(key="plan", type=AttributeType.STRING, required=True),
        ])
        with pytest.raises(SchemaViolation):
            store.upsert(db, schema, data={})

    def test_same_external_id_updates(self, db, store, tenant_schema):
        first = store.upsert(db, tenant_schema, data={"score": 1}, external_id="c-1", name="Ana")
        second = store.upsert(db, tenant_schema, data={"score": 2}, external_id="c-1", name="Ana B.")
        assert first.id == second.id
        assert db.query(Customer).count() == 1
        assert second.data == {"score": 2}
        assert second.name == "Ana B."

    def test_unknown_field_rejected(self, db, store, tenant_schema):
        with pytest.raises(SchemaViolation):
            store.upsert(db, tenant_schema, nickname="A")


class TestMatching:
    """Predicate evaluation while streaming tenant targets."""

    def test_streams_matches_across_batches(self, db, store, tenant_schema, make_customer):
        created = [make_customer(data={"score": score}, name=f"c{score}") for score in range(1, 8)]
        predicate = compile_filter(tenant_schema, {"key": "score", "operator": "greater_than", "value": 3})

        records = list(store.matching(db, TENANT, predicate))
        assert [r.id for r in records] == [c.id for c in created[3:]]
        assert records[0].attributes["name"] == "c4"
        assert store.count(db, TENANT, predicate) == 4

    def test_limit(self, db, store, tenant_schema, make_customer):
        for score in range(5):
            make_customer(data={"score": score})
        predicate = compile_filter(tenant_schema)
        assert len(list(store.matching(db, TENANT, predicate, limit=3))) == 3
        assert list(store.matching(db, TENANT, predicate, limit=0)) == []

    def test_other_tenants_are_invisible(self, db, store, tenant_schema, make_customer):
        make_customer(data={"score": 10})
        db.add(Customer(tenant_id="other", data={"score": 10}))
        db.commit()

        predicate = compile_filter(tenant_schema)
        assert store.count(db, TENANT, predicate) == 1

    def test_builtin_columns_are_filterable(self, db, store, tenant_schema, make_customer):
        make_customer(name="Ana", email="ana@example.com")
        make_customer(name="Bob")
        predicate = compile_filter(tenant_schema, {"key": "email", "operator": "is_set"})
        assert [r.name for r in store.matching(db, TENANT, predicate)] == ["Ana"]

    def test_service_days_until_expiry(self, db, store):
        schema = AttributeSchema(tenant_id=TENANT, target_type="service")
        store.upsert(db, schema, name="Hosting", expiry_at=NOW + timedelta(days=3))
        store.upsert(db, schema, name="Domain", expiry_at=NOW + timedelta(days=30))
        store.upsert(db, schema, name="Unknown")

        predicate = compile_filter(schema, {"key": "days_until_expiry", "operator": "less_than_or_equal", "value": 7})
        records = list(store.matching(db, TENANT, predicate))
        assert [r.name for r in records] == ["Hosting"]
        assert records[0].attributes["days_until_expiry"] == 3
        assert records[0].target_type == "service"

    def test_date_attribute_from_data_map(self, db, store, tenant_schema, make_customer):
        make_customer(data={"expiry": days_from_now(2)}, name="soon")
        make_customer(data={"expiry": days_from_now(20)}, name="later")
        predicate = compile_filter(tenant_schema, {"key": "expiry", "operator": "expires_in_days_lte", "value": 7})
        assert [r.name for r in store.matching(db, TENANT, predicate)] == ["soon"]
