# outreach/services/campaign_repository.py
"""
Campaign Repository - lifecycle transitions and aggregate updates.

Every status change is a conditional UPDATE on the current status, so two
concurrent writers (a slow pass and a new tick, or a pass and an operator
cancel) can never both win. Counters are added in SQL, never read and
written back.
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Callable, Iterable, List, Optional, Set

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from outreach.core.exceptions import InvalidState
from outreach.models.base import utcnow
from outreach.models.campaign import (
    Campaign, CampaignStatus, CampaignType, RUNNABLE_STATUSES, TERMINAL_STATUSES
)
from outreach.models.message import Message, SUCCESSFUL_STATUSES
from outreach.schemas.campaign import CampaignCreate
from outreach.services.run_window import calculate_next_run_time

log = logging.getLogger("outreach.campaign_repository")


class PassTally:
    """Counters collected during one pass, applied in a single UPDATE"""

    FIELDS = (
        "sent_count", "delivered_count", "failed_count", "total_cost",
        "email_sent_count", "email_delivered_count", "email_failed_count", "email_total_cost",
    )

    def __init__(self):
        self.sent_count = 0
        self.delivered_count = 0
        self.failed_count = 0
        self.total_cost = Decimal("0")
        self.email_sent_count = 0
        self.email_delivered_count = 0
        self.email_failed_count = 0
        self.email_total_cost = Decimal("0")
        self.applied = False

    def record_success(self, channel: str, cost: Decimal, delivered: bool = False):
        if channel == "email":
            self.email_sent_count += 1
            self.email_total_cost += cost
            if delivered:
                self.email_delivered_count += 1
        else:
            self.sent_count += 1
            self.total_cost += cost
            if delivered:
                self.delivered_count += 1

    def record_failure(self, channel: str):
        if channel == "email":
            self.email_failed_count += 1
        else:
            self.failed_count += 1

    def is_empty(self) -> bool:
        return not any(getattr(self, name) for name in self.FIELDS)

    def as_dict(self) -> dict:
        return {name: getattr(self, name) for name in self.FIELDS}


class CampaignRepository:

    def __init__(self, clock: Callable[[], datetime] = utcnow, timezone: str = "UTC"):
        self.clock = clock
        self.timezone = timezone

    # ────────────────────────────────────────────
    # Reads
    # ────────────────────────────────────────────

    def create(self, db: Session, tenant_id: str, data: CampaignCreate) -> Campaign:
        values = data.model_dump(exclude={"filter"})
        values["channel"] = data.channel.value
        values["campaign_type"] = data.campaign_type.value

        campaign = Campaign(
            tenant_id=tenant_id,
            filter=data.filter.model_dump(mode="json"),
            status=CampaignStatus.DRAFT.value,
            **values
        )
        db.add(campaign)
        db.commit()
        db.refresh(campaign)
        log.info(f"📝 Campaign {campaign.id} '{campaign.name}' created for tenant {tenant_id}")
        return campaign

    def get(self, db: Session, campaign_id: int, tenant_id: Optional[str] = None) -> Optional[Campaign]:
        query = db.query(Campaign).filter(Campaign.id == campaign_id)
        if tenant_id is not None:
            query = query.filter(Campaign.tenant_id == tenant_id)
        return query.first()

    def current_status(self, db: Session, campaign_id: int) -> Optional[str]:
        """Status as stored right now, bypassing the identity map"""
        row = db.query(Campaign.status).filter(Campaign.id == campaign_id).first()
        return row[0] if row else None

    def messaged_target_ids(self, db: Session, campaign_id: int, target_type: str) -> Set[int]:
        """Targets the campaign already reached on any channel"""
        rows = db.query(Message.target_id).filter(
            Message.campaign_id == campaign_id,
            Message.target_type == target_type,
            Message.status.in_(SUCCESSFUL_STATUSES)
        ).distinct().all()
        return {row[0] for row in rows}

    def due(self, db: Session, now: datetime) -> List[Campaign]:
        """Scheduled one-time and active automated campaigns whose time has come"""
        one_time = db.query(Campaign).filter(
            Campaign.campaign_type == CampaignType.ONE_TIME.value,
            Campaign.status == CampaignStatus.SCHEDULED.value,
            or_(Campaign.scheduled_at.is_(None), Campaign.scheduled_at <= now)
        )
        automated = db.query(Campaign).filter(
            Campaign.campaign_type == CampaignType.AUTOMATED.value,
            Campaign.status == CampaignStatus.ACTIVE.value,
            or_(Campaign.next_run_at.is_(None), Campaign.next_run_at <= now),
            or_(Campaign.ends_at.is_(None), Campaign.ends_at > now)
        )
        return one_time.order_by(Campaign.id).all() + automated.order_by(Campaign.id).all()

    def ended(self, db: Session, now: datetime) -> List[Campaign]:
        return db.query(Campaign).filter(
            Campaign.campaign_type == CampaignType.AUTOMATED.value,
            Campaign.status == CampaignStatus.ACTIVE.value,
            Campaign.ends_at.isnot(None),
            Campaign.ends_at <= now
        ).order_by(Campaign.id).all()

    # ────────────────────────────────────────────
    # Conditional transitions
    # ────────────────────────────────────────────

    def _transition(
        self,
        db: Session,
        campaign_id: int,
        from_statuses: Iterable[str],
        values: dict
    ) -> bool:
        values = dict(values)
        values[Campaign.updated_at] = self.clock()
        updated = db.query(Campaign).filter(
            Campaign.id == campaign_id,
            Campaign.status.in_(list(from_statuses))
        ).update(values, synchronize_session=False)
        db.commit()
        return bool(updated)

    def begin_sending(self, db: Session, campaign: Campaign) -> None:
        """
        Claim the campaign for one execution pass.

        Raises:
            InvalidState: campaign not runnable, or another pass won the race
        """
        claimed = self._transition(db, campaign.id, RUNNABLE_STATUSES, {
            Campaign.status: CampaignStatus.SENDING.value,
            Campaign.started_at: func.coalesce(Campaign.started_at, self.clock()),
            Campaign.pause_reason: None,
        })
        if not claimed:
            status = self.current_status(db, campaign.id)
            log.warning(f"🔒 Campaign {campaign.id} not claimed (status: {status})")
            raise InvalidState(campaign.id, status)
        db.refresh(campaign)
        log.info(f"📤 Campaign {campaign.id} is sending")

    def finish(self, db: Session, campaign_id: int, status: CampaignStatus, **fields) -> bool:
        """Leave `sending` for `status`; False if the campaign left it already"""
        values = {getattr(Campaign, name): value for name, value in fields.items()}
        values[Campaign.status] = status.value
        return self._transition(db, campaign_id, (CampaignStatus.SENDING.value,), values)

    def expire(self, db: Session, campaign_id: int, now: datetime) -> bool:
        """Active automated campaign past its end date -> completed"""
        return self._transition(db, campaign_id, (CampaignStatus.ACTIVE.value,), {
            Campaign.status: CampaignStatus.COMPLETED.value,
            Campaign.completed_at: now,
            Campaign.next_run_at: None,
        })

    def mark_failed(self, db: Session, campaign_id: int, reason: str) -> bool:
        db.rollback()
        failed = self._transition(db, campaign_id, (CampaignStatus.SENDING.value,), {
            Campaign.status: CampaignStatus.FAILED.value,
            Campaign.failure_reason: reason[:2000],
            Campaign.completed_at: self.clock(),
        })
        if failed:
            log.error(f"💥 Campaign {campaign_id} failed: {reason}")
        return failed

    def apply_tally(self, db: Session, campaign_id: int, tally: PassTally, target_count: Optional[int] = None) -> None:
        """Add a pass's counters to the stored aggregates"""
        values = {
            getattr(Campaign, name): getattr(Campaign, name) + amount
            for name, amount in tally.as_dict().items()
            if amount
        }
        if target_count is not None:
            values[Campaign.target_count] = target_count
        if not values:
            return
        db.query(Campaign).filter(Campaign.id == campaign_id).update(values, synchronize_session=False)
        db.commit()
        tally.applied = True

    # ────────────────────────────────────────────
    # Operator actions
    # ────────────────────────────────────────────

    def _require(self, db: Session, campaign_id: int, changed: bool, action: str) -> Campaign:
        if not changed:
            status = self.current_status(db, campaign_id)
            raise InvalidState(campaign_id, status, f"Cannot {action} campaign in status: {status}")
        campaign = self.get(db, campaign_id)
        db.refresh(campaign)
        return campaign

    def schedule(self, db: Session, campaign_id: int, scheduled_at: Optional[datetime] = None) -> Campaign:
        """One-time campaign: draft -> scheduled"""
        changed = self._transition(db, campaign_id, (CampaignStatus.DRAFT.value,), {
            Campaign.status: CampaignStatus.SCHEDULED.value,
            Campaign.scheduled_at: scheduled_at or self.clock(),
        })
        campaign = self._require(db, campaign_id, changed, "schedule")
        log.info(f"📅 Campaign {campaign_id} scheduled for {campaign.scheduled_at}")
        return campaign

    def activate(self, db: Session, campaign_id: int) -> Campaign:
        """Automated campaign: draft/paused -> active, first run at the next open window"""
        campaign = self.get(db, campaign_id)
        if campaign is None or not campaign.is_automated():
            raise InvalidState(campaign_id, campaign.status if campaign else None,
                               "Only automated campaigns can be activated")

        next_run = calculate_next_run_time(
            campaign.run_start_hour, campaign.run_end_hour, self.clock(), self.timezone
        )
        changed = self._transition(db, campaign_id, (CampaignStatus.DRAFT.value, CampaignStatus.PAUSED.value), {
            Campaign.status: CampaignStatus.ACTIVE.value,
            Campaign.next_run_at: next_run,
            Campaign.pause_reason: None,
        })
        campaign = self._require(db, campaign_id, changed, "activate")
        log.info(f"▶️  Campaign {campaign_id} active, next run at {next_run}")
        return campaign

    def pause(self, db: Session, campaign_id: int, reason: Optional[str] = None) -> Campaign:
        changed = self._transition(db, campaign_id, (CampaignStatus.SCHEDULED.value, CampaignStatus.ACTIVE.value), {
            Campaign.status: CampaignStatus.PAUSED.value,
            Campaign.pause_reason: reason,
            Campaign.next_run_at: None,
        })
        campaign = self._require(db, campaign_id, changed, "pause")
        log.info(f"⏸️  Campaign {campaign_id} paused ({reason or 'manual'})")
        return campaign

    def resume(self, db: Session, campaign_id: int) -> Campaign:
        """Paused -> active (automated) or scheduled (one-time)"""
        campaign = self.get(db, campaign_id)
        if campaign is not None and campaign.is_automated():
            return self.activate(db, campaign_id)

        changed = self._transition(db, campaign_id, (CampaignStatus.PAUSED.value,), {
            Campaign.status: CampaignStatus.SCHEDULED.value,
            Campaign.pause_reason: None,
        })
        campaign = self._require(db, campaign_id, changed, "resume")
        log.info(f"▶️  Campaign {campaign_id} resumed")
        return campaign

    def cancel(self, db: Session, campaign_id: int) -> Campaign:
        """Any non-terminal status -> cancelled; a running pass stops at the next target"""
        changed = db.query(Campaign).filter(
            Campaign.id == campaign_id,
            Campaign.status.notin_(list(TERMINAL_STATUSES))
        ).update({
            Campaign.status: CampaignStatus.CANCELLED.value,
            Campaign.next_run_at: None,
            Campaign.completed_at: self.clock(),
            Campaign.updated_at: self.clock(),
        }, synchronize_session=False)
        db.commit()
        campaign = self._require(db, campaign_id, bool(changed), "cancel")
        log.info(f"🛑 Campaign {campaign_id} cancelled")
        return campaign
