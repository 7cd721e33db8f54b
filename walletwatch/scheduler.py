"""Recurring poll job on an APScheduler AsyncIOScheduler."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from walletwatch.config import WalletwatchConfig, clamp_interval
from walletwatch.engine import PollEngine
from walletwatch.exceptions import ConfigError
from walletwatch.log import get_logger
from walletwatch.models import PollSummary

logger = get_logger(__name__)

POLL_JOB_ID = "walletwatch_poll"


class PollScheduler:
    """
    Runs PollEngine.poll() every `poll.interval_seconds`.

    Each tick reloads the config (when a loader is given) so edits to the
    interval, keys or webhook take effect without a restart; an interval
    change reschedules the job.
    """

    def __init__(
        self,
        engine: PollEngine,
        scheduler: AsyncIOScheduler | None = None,
        config_loader: Callable[[], WalletwatchConfig] | None = None,
    ) -> None:
        self.engine = engine
        self.scheduler = scheduler or AsyncIOScheduler(timezone="UTC")
        self.interval_seconds = clamp_interval(engine.config.poll.interval_seconds)
        self._config_loader = config_loader

    def start(self, run_immediately: bool = True) -> None:
        """Register the poll job and start the scheduler."""
        job_kwargs: dict[str, Any] = {}
        if run_immediately:
            job_kwargs["next_run_time"] = datetime.now(timezone.utc)

        self.scheduler.add_job(
            self._tick,
            trigger="interval",
            seconds=self.interval_seconds,
            id=POLL_JOB_ID,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
            **job_kwargs,
        )
        if not self.scheduler.running:
            self.scheduler.start()
        logger.info("poll_scheduler_started", interval_seconds=self.interval_seconds)

    def reschedule(self, interval_seconds: int) -> bool:
        """Move the job to a new interval. Returns False if nothing changed."""
        interval = clamp_interval(interval_seconds)
        if interval == self.interval_seconds:
            return False
        self.interval_seconds = interval
        self.scheduler.reschedule_job(POLL_JOB_ID, trigger="interval", seconds=interval)
        logger.info("poll_rescheduled", interval_seconds=interval)
        return True

    def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        logger.info("poll_scheduler_stopped")

    async def _tick(self) -> PollSummary | None:
        if self._config_loader is not None:
            try:
                config = self._config_loader()
            except ConfigError as exc:
                logger.warning("config_reload_failed", error=exc.message)
            else:
                self.engine.config = config
                self.reschedule(config.poll.interval_seconds)

        try:
            return await self.engine.poll()
        except Exception as exc:
            logger.error("scheduled_poll_failed", error=str(exc))
            return None
