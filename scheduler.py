"""
Centralized Scheduler — registers the periodic background jobs.

Jobs:
  - Expire overdue invites (hourly)
  - Tear down autosave views left idle (every 10 minutes)
"""

from __future__ import annotations

from apscheduler.schedulers.background import BackgroundScheduler

AUTOSAVE_IDLE_SECONDS = 2 * 60 * 60


def expire_invites(app) -> int:
    """Mark pending invites past their expiry as expired."""
    from db_stores import InviteStoreDB

    with app.app_context():
        count = InviteStoreDB.expire_overdue()
    if count:
        app.logger.info("Expired %d invite(s)", count)
    return count


def prune_autosave_views(app) -> int:
    """Drop autosave views whose page was closed without a teardown call."""
    from autosave import get_registry

    count = get_registry(app).prune(AUTOSAVE_IDLE_SECONDS)
    if count:
        app.logger.info("Pruned %d idle autosave view(s)", count)
    return count


def init_scheduler(app) -> BackgroundScheduler:
    """Start the background scheduler for all periodic jobs."""
    scheduler = BackgroundScheduler(daemon=True)

    scheduler.add_job(
        func=expire_invites,
        args=[app],
        trigger="interval",
        hours=1,
        id="expire_invites",
        replace_existing=True,
    )

    scheduler.add_job(
        func=prune_autosave_views,
        args=[app],
        trigger="interval",
        minutes=10,
        id="prune_autosave_views",
        replace_existing=True,
    )

    scheduler.start()
    app.logger.info("Scheduler started (invite expiry, autosave pruning)")
    return scheduler
