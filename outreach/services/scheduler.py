# outreach/services/scheduler.py
"""
Campaign Scheduler - picks due campaigns on every external tick and runs
one pass of each. A failing campaign never stops the others.
"""
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from outreach.core.exceptions import OutreachError
from outreach.models.base import utcnow
from outreach.models.campaign import Campaign
from outreach.services.campaign_engine import CampaignExecutionEngine
from outreach.services.campaign_repository import CampaignRepository
from outreach.services.run_window import calculate_next_run_time, is_open_at, is_within_run_window

log = logging.getLogger("outreach.scheduler")

__all__ = [
    "CampaignScheduler",
    "calculate_next_run_time",
    "is_open_at",
    "is_within_run_window",
]


class CampaignScheduler:

    def __init__(
        self,
        engine: CampaignExecutionEngine,
        repository: Optional[CampaignRepository] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.engine = engine
        self.repository = repository or engine.repository
        self.clock = clock

    def due_campaigns(self, db: Session, now: Optional[datetime] = None) -> List[Campaign]:
        """Campaigns to run at `now`; automated ones only inside their run window"""
        now = now or self.clock()
        return [
            campaign for campaign in self.repository.due(db, now)
            if not campaign.is_automated()
            or is_open_at(campaign.run_start_hour, campaign.run_end_hour, now, self.engine.config.timezone)
        ]

    def expire_ended(self, db: Session, now: Optional[datetime] = None) -> int:
        """Complete active automated campaigns whose `ends_at` has passed"""
        now = now or self.clock()
        expired = 0
        for campaign in self.repository.ended(db, now):
            if self.repository.expire(db, campaign.id, now):
                expired += 1
                log.info(f"🏁 Campaign {campaign.id} reached its end date")
        return expired

    def run_due(self, db: Session) -> List[Dict[str, Any]]:
        """
        One scheduler tick.

        Returns:
            One dict per attempted campaign: campaign_id, success, and
            either the pass result or the error
        """
        now = self.clock()
        self.expire_ended(db, now)

        campaigns = self.due_campaigns(db, now)
        if campaigns:
            log.info(f"⏰ {len(campaigns)} campaign(s) due")

        results = []
        for campaign in campaigns:
            campaign_id = campaign.id
            try:
                outcome = self.engine.execute(db, campaign_id)
                results.append({"campaign_id": campaign_id, "success": True, "result": outcome.model_dump()})
            except OutreachError as e:
                log.warning(f"⚠️ Campaign {campaign_id} skipped: {e}")
                results.append({"campaign_id": campaign_id, "success": False, "error": str(e)})
            except Exception as e:
                log.error(f"❌ Campaign {campaign_id} failed: {e}", exc_info=True)
                db.rollback()
                results.append({"campaign_id": campaign_id, "success": False, "error": str(e)})
        return results
