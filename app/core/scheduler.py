"""
Automated job scheduler for the H2H edge sync API.

This module provides scheduled background jobs for:
- Daily game sync (yesterday and today)
- Score verification against the authoritative scoreboard
- Daily edge computation
- Odds refresh for today's slate

Each job opens its own session and runs through the SyncOrchestrator,
so every scheduled run is recorded in the job ledger like a triggered one.

Scheduler: APScheduler (lightweight, FastAPI-compatible)
"""
from datetime import timedelta
from typing import Any, Awaitable, Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm import sessionmaker

from app.core.config import settings
from app.core.database import get_session_factory
from app.core.logging import get_logger
from app.services.sync.orchestrator import SyncOrchestrator
from app.utils.timezone import today_local

logger = get_logger(__name__)


class AutomationScheduler:
    """
    Main scheduler for recurring jobs.

    Args:
        session_factory: Session factory for job sessions (defaults to the app's)
    """

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self.session_factory = session_factory or get_session_factory()
        self.scheduler: Optional[AsyncIOScheduler] = None
        self.running = False

    async def start(self):
        """Start the scheduler."""
        if self.running:
            logger.warning("Scheduler already running")
            return

        logger.info("Starting automation scheduler...")

        self.scheduler = AsyncIOScheduler(
            timezone=settings.SCHEDULER_TIMEZONE,
            job_defaults={
                'coalesce': True,  # Combine missed runs into one
                'max_instances': 1,  # Only one instance of each job
                'misfire_grace_time': 300
            }
        )

        self._schedule_daily_sync()
        self._schedule_score_verification()
        self._schedule_edge_computation()
        self._schedule_odds_refresh()

        self.scheduler.start()
        self.running = True

        logger.info("Scheduler started with %d jobs", len(self.scheduler.get_jobs()))
        self._log_scheduled_jobs()

    async def stop(self):
        """Stop the scheduler."""
        if not self.running:
            return

        logger.info("Stopping scheduler...")
        self.scheduler.shutdown(wait=False)
        self.running = False
        logger.info("Scheduler stopped")

    async def run_job(self, job_name: str, call: Callable[[SyncOrchestrator], Awaitable[Any]]) -> Optional[Any]:
        """
        Run one job with its own session.

        Failures are already recorded in the job ledger by the
        orchestrator; here they are only logged so the scheduler keeps
        running.
        """
        db = self.session_factory()
        try:
            result = await call(SyncOrchestrator(db))
            logger.info(f"Scheduled {job_name}: {result.get('status')}", extra={"run_id": result.get("run_id")})
            return result
        except Exception as e:
            logger.error(f"Scheduled {job_name} failed: {e}")
            return None
        finally:
            db.close()

    async def daily_sync(self):
        today = today_local()
        return await self.run_job(
            "games_backfill",
            lambda o: o.backfill_games(settings.DEFAULT_SPORTS, today - timedelta(days=1), today),
        )

    async def verify_scores(self):
        return await self.run_job("verify_scores", lambda o: o.verify_scores(settings.DEFAULT_SPORTS))

    async def compute_edges(self):
        return await self.run_job("compute_percentiles", lambda o: o.compute_percentiles(settings.DEFAULT_SPORTS))

    async def refresh_odds(self):
        return await self.run_job("odds_refresh", lambda o: o.refresh_odds(settings.DEFAULT_SPORTS))

    def _schedule_daily_sync(self):
        """
        Schedule: Sync yesterday's and today's games.

        Frequency: Daily 6:00 AM ET
        """
        self.scheduler.add_job(
            self.daily_sync,
            trigger=CronTrigger(hour=6, minute=0, timezone=settings.SCHEDULER_TIMEZONE),
            id='daily_sync',
            name='Daily game sync',
            misfire_grace_time=600
        )

    def _schedule_score_verification(self):
        """
        Schedule: Verify recent final scores.

        Frequency: Daily 6:30 AM ET (after the daily sync)
        """
        self.scheduler.add_job(
            self.verify_scores,
            trigger=CronTrigger(hour=6, minute=30, timezone=settings.SCHEDULER_TIMEZONE),
            id='verify_scores',
            name='Verify final scores'
        )

    def _schedule_edge_computation(self):
        """
        Schedule: Recompute today's edges.

        Frequency: Daily 7:00 AM ET (after verification)
        """
        self.scheduler.add_job(
            self.compute_edges,
            trigger=CronTrigger(hour=7, minute=0, timezone=settings.SCHEDULER_TIMEZONE),
            id='compute_percentiles',
            name='Compute daily edges'
        )

    def _schedule_odds_refresh(self):
        """
        Schedule: Attach today's bookmaker lines.

        Frequency: Every 30 minutes
        """
        self.scheduler.add_job(
            self.refresh_odds,
            trigger=IntervalTrigger(minutes=30),
            id='odds_refresh',
            name='Refresh odds'
        )

    def _log_scheduled_jobs(self):
        """Log all scheduled jobs for visibility."""
        for job in self.scheduler.get_jobs():
            next_run = job.next_run_time
            logger.info(
                f"Scheduled job {job.name}",
                extra={"job_id": job.id, "next_run": next_run.isoformat() if next_run else "pending"},
            )


# Global scheduler instance
_scheduler: Optional[AutomationScheduler] = None


async def start_scheduler() -> AutomationScheduler:
    """Start the global scheduler."""
    global _scheduler
    if _scheduler is None:
        _scheduler = AutomationScheduler()
        await _scheduler.start()
    return _scheduler


async def stop_scheduler():
    """Stop the global scheduler."""
    global _scheduler
    if _scheduler is not None:
        await _scheduler.stop()
        _scheduler = None
