"""
Shared fixtures: in-memory database, tenant schema, frozen clock and
recording channel senders.
"""
from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from outreach.core.config import EngineConfig
from outreach.db.base import Base
from outreach.models.campaign import Campaign
from outreach.schemas.campaign import CampaignCreate
from outreach.schemas.message import SendResult
from outreach.schemas.segment import AttributeSpec, AttributeType
from outreach.services.attribute_schema_service import define_attribute, load_schema
from outreach.services.campaign_engine import CampaignExecutionEngine
from outreach.services.campaign_repository import CampaignRepository
from outreach.services.target_store import TargetStore

TENANT = "acme"
NOW = datetime(2026, 3, 10, 12, 0, 0)

CUSTOM_SPECS = [
    AttributeSpec(key="expiry", type=AttributeType.DATE, label="Contract expiry"),
    AttributeSpec(key="score", type=AttributeType.NUMBER),
    AttributeSpec(key="plan", type=AttributeType.ENUM, options=["basic", "pro", "enterprise"]),
    AttributeSpec(key="vip", type=AttributeType.BOOLEAN),
    AttributeSpec(key="city", type=AttributeType.STRING),
    AttributeSpec(key="tags", type=AttributeType.ARRAY, item_type="string"),
    AttributeSpec(key="licenses", type=AttributeType.ARRAY, item_type="object", properties=["name", "expiry"]),
]


# =============================================================================
# TEST DOUBLES
# =============================================================================


class FrozenClock:
    """Callable clock that only moves when told to"""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


class FakeSender:
    """
    Records every send. Recipients in `fail_for` get a rejected result,
    recipients in `raise_for` raise the mapped exception.
    """

    def __init__(self, channel: str, fail_for=(), raise_for=None, on_send=None):
        self.channel = channel
        self.fail_for = set(fail_for)
        self.raise_for = dict(raise_for or {})
        self.on_send = on_send
        self.calls = []

    def send(self, recipient, content, sender_id, **options):
        self.calls.append({"recipient": recipient, "content": content, "sender_id": sender_id, **options})
        if self.on_send:
            self.on_send(recipient)
        if recipient in self.raise_for:
            raise self.raise_for[recipient]
        if recipient in self.fail_for:
            return SendResult(success=False, error_message="rejected by provider", error_code="400")
        return SendResult(success=True, provider_id=f"{self.channel}-{len(self.calls)}")

    @property
    def recipients(self):
        return [call["recipient"] for call in self.calls]


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def db():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    session = sessionmaker(bind=engine, autoflush=False)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def engine_config():
    return EngineConfig(sms_cost_per_segment=Decimal("0.25"), email_cost_per_message=Decimal("0.5"))


@pytest.fixture
def senders():
    return {"sms": FakeSender("sms"), "email": FakeSender("email")}


@pytest.fixture
def engine(clock, engine_config, senders):
    return CampaignExecutionEngine(senders=senders, config=engine_config, clock=clock)


@pytest.fixture
def repository(clock):
    return CampaignRepository(clock=clock)


@pytest.fixture
def tenant_schema(db):
    for spec in CUSTOM_SPECS:
        define_attribute(db, TENANT, spec)
    return load_schema(db, TENANT)


@pytest.fixture
def make_customer(db, tenant_schema, clock):
    store = TargetStore(clock=clock)

    def _make(data=None, **fields):
        return store.upsert(db, tenant_schema, data=data, **fields)

    return _make


@pytest.fixture
def make_campaign(db, repository):
    def _make(status="draft", **overrides):
        values = {
            "name": "Renewal reminder",
            "message_template": "Hi {{name}}, your contract expires {{expiry}}",
            "sender": "ACME",
            "filter": {"logic": "AND", "conditions": []},
        }
        values.update(overrides)
        campaign = repository.create(db, TENANT, CampaignCreate(**values))
        if status != "draft":
            db.query(Campaign).filter(Campaign.id == campaign.id).update({"status": status})
            db.commit()
            db.refresh(campaign)
        return campaign

    return _make


def days_from_now(days: int) -> str:
    return (NOW + timedelta(days=days)).date().isoformat()
