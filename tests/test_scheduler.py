"""
Tests for run windows, campaign lifecycle actions and scheduler ticks.
"""
from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from conftest import NOW, TENANT
from outreach.core.config import EngineConfig
from outreach.core.exceptions import InvalidState
from outreach.models.campaign import Campaign
from outreach.services.billing_ledger import BillingLedger
from outreach.services.campaign_engine import CampaignExecutionEngine
from outreach.services.campaign_repository import CampaignRepository, PassTally
from outreach.services.run_window import calculate_next_run_time, is_open_at, is_within_run_window
from outreach.services.scheduler import CampaignScheduler


@pytest.fixture
def scheduler(engine, clock):
    return CampaignScheduler(engine, clock=clock)


class TestRunWindow:

    @pytest.mark.parametrize("hour,expected", [(8, False), (9, True), (17, True), (18, False), (23, False)])
    def test_daytime_window(self, hour, expected):
        assert is_within_run_window(9, 18, hour) is expected

    @pytest.mark.parametrize("hour,expected", [(22, True), (23, True), (3, True), (6, False), (12, False)])
    def test_window_wrapping_midnight(self, hour, expected):
        assert is_within_run_window(22, 6, hour) is expected

    def test_unset_or_equal_hours_always_open(self):
        assert is_within_run_window(None, None, 3) is True
        assert is_within_run_window(9, 9, 3) is True

    def test_after_window_moves_to_next_day_opening(self):
        assert calculate_next_run_time(9, 18, datetime(2026, 3, 10, 20, 0)) == datetime(2026, 3, 11, 9, 0)

    def test_before_window_moves_to_same_day_opening(self):
        assert calculate_next_run_time(9, 18, datetime(2026, 3, 10, 7, 30)) == datetime(2026, 3, 10, 9, 0)

    def test_inside_window_unchanged(self):
        base = datetime(2026, 3, 10, 12, 15)
        assert calculate_next_run_time(9, 18, base) == base

    def test_wrapping_window_opens_in_the_evening(self):
        assert calculate_next_run_time(22, 6, datetime(2026, 3, 10, 12, 0)) == datetime(2026, 3, 10, 22, 0)
        assert calculate_next_run_time(22, 6, datetime(2026, 3, 11, 2, 0)) == datetime(2026, 3, 11, 2, 0)

    def test_hours_are_read_in_the_configured_timezone(self):
        # Sofia is UTC+2 in March
        assert is_open_at(9, 18, datetime(2026, 3, 10, 7, 30), "Europe/Sofia") is True
        assert is_open_at(9, 18, datetime(2026, 3, 10, 7, 30)) is False
        assert is_open_at(9, 18, datetime(2026, 3, 10, 16, 30), "Europe/Sofia") is False

    def test_next_opening_returned_in_utc(self):
        assert calculate_next_run_time(9, 18, datetime(2026, 3, 10, 20, 0), "Europe/Sofia") == datetime(2026, 3, 11, 7, 0)
        assert calculate_next_run_time(9, 18, datetime(2026, 3, 10, 5, 0), "Europe/Sofia") == datetime(2026, 3, 10, 7, 0)

    def test_unknown_timezone_rejected(self):
        with pytest.raises(ValueError):
            EngineConfig(timezone="Mars/Olympus")


class TestLifecycle:
    """Operator actions on the campaign repository."""

    def test_schedule(self, db, repository, make_campaign):
        campaign = make_campaign()
        at = NOW + timedelta(days=1)
        scheduled = repository.schedule(db, campaign.id, at)
        assert scheduled.status == "scheduled"
        assert scheduled.scheduled_at == at

    def test_schedule_requires_draft(self, db, repository, make_campaign):
        campaign = make_campaign(status="completed")
        with pytest.raises(InvalidState):
            repository.schedule(db, campaign.id)

    def test_activate_places_first_run_in_window(self, db, clock, repository, make_campaign):
        clock.now = datetime(2026, 3, 10, 20, 0)
        campaign = make_campaign(campaign_type="automated", run_start_hour=9, run_end_hour=18)

        active = repository.activate(db, campaign.id)

        assert active.status == "active"
        assert active.next_run_at == datetime(2026, 3, 11, 9, 0)

    def test_activate_uses_repository_timezone(self, db, clock, make_campaign):
        clock.now = datetime(2026, 3, 10, 20, 0)
        campaign = make_campaign(campaign_type="automated", run_start_hour=9, run_end_hour=18)

        active = CampaignRepository(clock=clock, timezone="Europe/Sofia").activate(db, campaign.id)

        assert active.next_run_at == datetime(2026, 3, 11, 7, 0)

    def test_activate_rejects_one_time(self, db, repository, make_campaign):
        campaign = make_campaign()
        with pytest.raises(InvalidState):
            repository.activate(db, campaign.id)

    def test_pause_and_resume_automated(self, db, repository, make_campaign):
        campaign = make_campaign(campaign_type="automated")
        repository.activate(db, campaign.id)

        paused = repository.pause(db, campaign.id, "holiday")
        assert paused.status == "paused"
        assert paused.pause_reason == "holiday"
        assert paused.next_run_at is None

        resumed = repository.resume(db, campaign.id)
        assert resumed.status == "active"
        assert resumed.pause_reason is None
        assert resumed.next_run_at == NOW

    def test_resume_one_time_returns_to_scheduled(self, db, repository, make_campaign):
        campaign = make_campaign(status="paused")
        assert repository.resume(db, campaign.id).status == "scheduled"

    def test_cancel(self, db, repository, make_campaign):
        campaign = make_campaign(status="active")
        cancelled = repository.cancel(db, campaign.id)
        assert cancelled.status == "cancelled"
        assert cancelled.completed_at == NOW

    def test_cancel_terminal_rejected(self, db, repository, make_campaign):
        campaign = make_campaign(status="completed")
        with pytest.raises(InvalidState):
            repository.cancel(db, campaign.id)

    def test_apply_tally_adds_to_stored_counters(self, db, repository, make_campaign):
        campaign = make_campaign()
        tally = PassTally()
        tally.record_success("sms", Decimal("0.25"))
        tally.record_success("email", Decimal("0.5"), delivered=True)
        tally.record_failure("sms")

        repository.apply_tally(db, campaign.id, tally, target_count=4)
        repository.apply_tally(db, campaign.id, tally)

        db.expire_all()
        stored = repository.get(db, campaign.id)
        assert stored.target_count == 4
        assert stored.sent_count == 2
        assert stored.failed_count == 2
        assert stored.total_cost == Decimal("0.50")
        assert stored.email_sent_count == 2
        assert stored.email_delivered_count == 2
        assert stored.email_total_cost == Decimal("1.00")
        assert stored.total_sent == 4
        assert stored.total_failed == 2


class TestScheduler:
    """Due campaign selection and ticks."""

    def test_due_campaigns(self, db, scheduler, make_campaign):
        past = make_campaign(status="scheduled", name="past", scheduled_at=NOW - timedelta(minutes=5))
        make_campaign(status="scheduled", name="future", scheduled_at=NOW + timedelta(minutes=5))
        make_campaign(status="draft", name="draft")
        auto_due = make_campaign(status="active", name="auto", campaign_type="automated")
        make_campaign(status="active", name="closed window", campaign_type="automated", run_start_hour=18, run_end_hour=22)
        make_campaign(status="active", name="ended", campaign_type="automated", ends_at=NOW - timedelta(days=1))
        later = make_campaign(status="active", name="later", campaign_type="automated")
        db.query(Campaign).filter(Campaign.id == later.id).update({"next_run_at": NOW + timedelta(hours=1)})
        db.commit()

        assert [c.id for c in scheduler.due_campaigns(db)] == [past.id, auto_due.id]

    def test_expire_ended(self, db, scheduler, make_campaign):
        ended = make_campaign(status="active", campaign_type="automated", ends_at=NOW - timedelta(days=1))
        running = make_campaign(status="active", campaign_type="automated", ends_at=NOW + timedelta(days=1))

        assert scheduler.expire_ended(db) == 1

        db.expire_all()
        assert db.get(Campaign, ended.id).status == "completed"
        assert db.get(Campaign, running.id).status == "active"

    def test_run_due_isolates_failures(self, db, scheduler, senders, make_customer, make_campaign):
        BillingLedger().credit(db, TENANT, Decimal("5.00"))
        make_customer(name="Ana", phone="+359888000001")
        good = make_campaign(status="scheduled", name="good")
        bad = make_campaign(
            status="scheduled", name="bad",
            filter={"conditions": [{"key": "loyalty", "operator": "equals", "value": "gold"}]},
        )

        results = scheduler.run_due(db)

        by_id = {item["campaign_id"]: item for item in results}
        assert by_id[good.id]["success"] is True
        assert by_id[good.id]["result"]["status"] == "completed"
        assert by_id[bad.id]["success"] is False
        assert "loyalty" in by_id[bad.id]["error"]
        assert len(senders["sms"].calls) == 1

    def test_automated_campaign_waits_for_next_run(self, db, clock, scheduler, make_customer, make_campaign):
        BillingLedger().credit(db, TENANT, Decimal("5.00"))
        make_customer(name="Ana", phone="+359888000001")
        campaign = make_campaign(status="active", campaign_type="automated", check_interval_minutes=30)

        assert len(scheduler.run_due(db)) == 1
        assert scheduler.run_due(db) == []

        clock.advance(minutes=30)
        assert [item["campaign_id"] for item in scheduler.run_due(db)] == [campaign.id]

    def test_window_follows_engine_timezone(self, db, clock, senders, make_campaign):
        engine = CampaignExecutionEngine(senders=senders, config=EngineConfig(timezone="Europe/Sofia"), clock=clock)
        scheduler = CampaignScheduler(engine, clock=clock)
        # 12:00 UTC is 14:00 in Sofia
        local = make_campaign(status="active", campaign_type="automated", run_start_hour=13, run_end_hour=15)
        make_campaign(status="active", campaign_type="automated", run_start_hour=11, run_end_hour=13)

        assert [c.id for c in scheduler.due_campaigns(db)] == [local.id]
