# outreach/services/cooldown_ledger.py
"""
Cooldown Ledger - last time a (campaign, target) pair was messaged.

A target is eligible for a campaign unless a record for the pair has
`sent_at` within the campaign's cooldown_days. `record` is an upsert:
re-sending after the cooldown expires moves `sent_at` forward instead of
adding a row, and concurrent calls for the same key end with one row
holding the latest timestamp.
"""
import logging
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional, Set

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from outreach.models.base import utcnow
from outreach.models.cooldown import Cooldown

log = logging.getLogger("outreach.cooldown_ledger")

_CONFLICT_KEYS = ["campaign_id", "target_type", "target_id"]


class CooldownLedger:

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self.clock = clock

    def _window_start(self, cooldown_days: int) -> datetime:
        return self.clock() - timedelta(days=cooldown_days)

    def is_in_cooldown(
        self,
        db: Session,
        campaign_id: int,
        target_type: str,
        target_id: int,
        cooldown_days: int
    ) -> bool:
        if not cooldown_days or cooldown_days <= 0:
            return False
        return db.query(Cooldown.id).filter(
            Cooldown.campaign_id == campaign_id,
            Cooldown.target_type == target_type,
            Cooldown.target_id == target_id,
            Cooldown.sent_at >= self._window_start(cooldown_days)
        ).first() is not None

    def active_target_ids(
        self,
        db: Session,
        campaign_id: int,
        target_type: str,
        cooldown_days: int,
        target_ids: Optional[Iterable[int]] = None
    ) -> Set[int]:
        """Ids of targets currently in cooldown for the campaign"""
        if not cooldown_days or cooldown_days <= 0:
            return set()
        query = db.query(Cooldown.target_id).filter(
            Cooldown.campaign_id == campaign_id,
            Cooldown.target_type == target_type,
            Cooldown.sent_at >= self._window_start(cooldown_days)
        )
        if target_ids is not None:
            ids = list(target_ids)
            if not ids:
                return set()
            query = query.filter(Cooldown.target_id.in_(ids))
        return {row[0] for row in query.all()}

    def record(
        self,
        db: Session,
        campaign_id: int,
        target_type: str,
        target_id: int,
        tenant_id: str = "default"
    ) -> None:
        """Upsert sent_at = now for the pair and commit"""
        now = self.clock()
        dialect = db.get_bind().dialect.name

        if dialect in ("postgresql", "sqlite"):
            if dialect == "postgresql":
                from sqlalchemy.dialects.postgresql import insert
            else:
                from sqlalchemy.dialects.sqlite import insert

            stmt = insert(Cooldown).values(
                tenant_id=tenant_id,
                campaign_id=campaign_id,
                target_type=target_type,
                target_id=target_id,
                sent_at=now,
                created_at=now,
                updated_at=now,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=_CONFLICT_KEYS,
                set_={"sent_at": stmt.excluded.sent_at, "updated_at": stmt.excluded.updated_at}
            )
            db.execute(stmt)
            db.commit()
        else:
            self._update_or_insert(db, campaign_id, target_type, target_id, tenant_id, now)

        log.debug(f"⏳ Cooldown recorded: campaign {campaign_id} {target_type}#{target_id}")

    def _update_or_insert(self, db, campaign_id, target_type, target_id, tenant_id, now):
        key = (
            Cooldown.campaign_id == campaign_id,
            Cooldown.target_type == target_type,
            Cooldown.target_id == target_id,
        )
        if db.query(Cooldown).filter(*key).update({"sent_at": now}, synchronize_session=False):
            db.commit()
            return
        try:
            db.add(Cooldown(
                tenant_id=tenant_id,
                campaign_id=campaign_id,
                target_type=target_type,
                target_id=target_id,
                sent_at=now,
            ))
            db.commit()
        except IntegrityError:
            # Lost the insert race, the other writer's row gets our timestamp
            db.rollback()
            db.query(Cooldown).filter(*key).update({"sent_at": now}, synchronize_session=False)
            db.commit()

    def cleanup(self, db: Session, older_than_days: int = 90) -> int:
        """Delete records older than `older_than_days`; returns the count"""
        deleted = db.query(Cooldown).filter(
            Cooldown.sent_at < self._window_start(older_than_days)
        ).delete(synchronize_session=False)
        db.commit()
        log.info(f"🧹 Removed {deleted} cooldown record(s) older than {older_than_days} days")
        return deleted
