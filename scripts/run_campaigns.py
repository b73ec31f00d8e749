#!/usr/bin/env python3
# scripts/run_campaigns.py
"""
One scheduler tick - run from cron, e.g. every minute:

    * * * * * cd /srv/outreach && python scripts/run_campaigns.py

- Completes automated campaigns past their end date
- Runs one pass of every due campaign
- Optionally purges old cooldown records (--cleanup-days)
"""
import argparse
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from outreach.core.config import settings
from outreach.core.logging_config import setup_logging
from outreach.db.session import get_db_session, init_db, test_db_connection
from outreach.services import get_scheduler
from outreach.services.cooldown_ledger import CooldownLedger


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Run due outreach campaigns")
    parser.add_argument(
        "--cleanup-days",
        type=int,
        nargs="?",
        const=settings.COOLDOWN_RETENTION_DAYS,
        default=None,
        help=f"Also delete cooldown records older than N days (default {settings.COOLDOWN_RETENTION_DAYS})"
    )
    parser.add_argument("--init-db", action="store_true", help="Create missing tables first")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    setup_logging("outreach-scheduler", settings.LOG_LEVEL)

    print("=" * 70)
    print("⏰ OUTREACH CAMPAIGN TICK")
    print("=" * 70)

    if not test_db_connection():
        print("   ❌ Database connection failed! Check .env configuration")
        return 1

    if args.init_db:
        init_db()
        print("   ✅ Tables ready")

    scheduler = get_scheduler()
    with get_db_session() as db:
        results = scheduler.run_due(db)

        if not results:
            print("\n   No campaigns due")
        for item in results:
            if item["success"]:
                result = item["result"]
                print(
                    f"   ✅ Campaign {item['campaign_id']}: {result['status']} "
                    f"(sms {result['sent_count']}/{result['failed_count']}, "
                    f"email {result['email_sent_count']}/{result['email_failed_count']})"
                )
            else:
                print(f"   ❌ Campaign {item['campaign_id']}: {item['error']}")

        if args.cleanup_days is not None:
            deleted = CooldownLedger().cleanup(db, args.cleanup_days)
            print(f"\n   🧹 Removed {deleted} cooldown record(s) older than {args.cleanup_days} days")

    print("\n" + "=" * 70)
    return 1 if any(not item["success"] for item in results) else 0


if __name__ == "__main__":
    sys.exit(main())
