"""APScheduler integration: the dispatcher tick and history retention."""

import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from webhook_scheduler.config import settings
from webhook_scheduler.connectors.discord_connector import DiscordWebhookConnector
from webhook_scheduler.database import SessionLocal
from webhook_scheduler.services.dispatcher import ScheduleDispatcher
from webhook_scheduler.services.execution_cleanup import cleanup_old_executions

log = logging.getLogger(__name__)

TICK_JOB_ID = "dispatcher_tick_job"
CLEANUP_JOB_ID = "execution_cleanup_job"
CLEANUP_CRON = "30 3 * * *"

# Global scheduler instance
scheduler = AsyncIOScheduler(timezone="UTC")

_dispatcher: Optional[ScheduleDispatcher] = None


def get_dispatcher() -> ScheduleDispatcher:
    """Process-wide dispatcher sharing one HTTP client. Also the API dependency."""
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = ScheduleDispatcher(connector=DiscordWebhookConnector())
    return _dispatcher


async def dispatcher_tick_job():
    """Run one dispatcher pass. Never raises into the scheduler."""
    try:
        await get_dispatcher().run_tick()
    except Exception as e:
        log.error(f"Dispatcher tick failed: {e}", exc_info=True)


def execution_cleanup_job():
    db = SessionLocal()
    try:
        cleanup_old_executions(db)
    except Exception as e:
        db.rollback()
        log.error(f"Execution history cleanup failed: {e}", exc_info=True)
    finally:
        db.close()


def start_scheduler():
    """Register the tick and cleanup jobs and start APScheduler."""
    scheduler.add_job(
        dispatcher_tick_job,
        trigger=IntervalTrigger(seconds=settings.dispatcher_tick_seconds),
        id=TICK_JOB_ID,
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    scheduler.add_job(
        execution_cleanup_job,
        trigger=CronTrigger.from_crontab(CLEANUP_CRON, timezone="UTC"),
        id=CLEANUP_JOB_ID,
        replace_existing=True,
    )
    log.info(
        f"Dispatcher tick scheduled every {settings.dispatcher_tick_seconds}s; "
        f"history cleanup at cron='{CLEANUP_CRON}' (UTC)"
    )

    if not scheduler.running:
        scheduler.start()
        log.info("APScheduler started successfully")


async def shutdown_scheduler():
    """Stop APScheduler and release the delivery client."""
    global _dispatcher
    if scheduler.running:
        scheduler.shutdown(wait=False)
        log.info("APScheduler shut down successfully")
    if _dispatcher is not None:
        await _dispatcher.connector.aclose()
        _dispatcher = None
