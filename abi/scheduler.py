"""Background scheduler — approval housekeeping.

Runs on a 5-minute tick loop. Each tick:
  - Expirations: pending requests past expires_at → expired, hold released
  - Escalations: pending requests inside the escalation window get one
    "escalated" event

Disabled under TESTING; tests call run_tick() directly.
"""

import asyncio
import logging
from datetime import datetime

from .database import SessionLocal, utcnow

log = logging.getLogger("abi.scheduler")


async def start_scheduler():
    """Launch the background loop. Call once on app startup."""
    from .config import settings

    interval = settings.scheduler_interval_seconds
    log.info(f"Background scheduler started — approval sweep every {interval}s")

    # Let the app finish booting before the first tick
    await asyncio.sleep(10)

    while True:
        try:
            run_tick()
        except Exception as e:
            log.error(f"Scheduler tick error: {e}")
        await asyncio.sleep(interval)


def run_tick(db=None, now: datetime | None = None) -> dict:
    """One sweep. Returns how many requests each job touched."""
    from .services.approval_service import process_escalations, process_expirations

    own_session = db is None
    db = db or SessionLocal()
    now = now or utcnow()
    stats = {"expired": 0, "escalated": 0}
    try:
        # ── Expirations ──
        try:
            stats["expired"] = process_expirations(db, now)
        except Exception as e:
            log.error(f"Expiration sweep error: {e}")
            db.rollback()

        # ── Escalations ──
        try:
            stats["escalated"] = process_escalations(db, now)
        except Exception as e:
            log.error(f"Escalation sweep error: {e}")
            db.rollback()

        if stats["expired"] or stats["escalated"]:
            log.info(f"Approval sweep: {stats['expired']} expired, {stats['escalated']} escalated")
        return stats
    finally:
        if own_session:
            db.close()
