import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Optional

from telegram.ext import ContextTypes, Job, JobQueue

from channel_dvr.config import Config
from channel_dvr.db.models import Channel
from channel_dvr.services.checker import RunSummary, run_check_pass

logger = logging.getLogger(__name__)

CHECK_JOB_NAME = "channel_check_job"
INITIAL_CHECK_JOB_NAME = "channel_check_initial"

PassRunner = Callable[[Optional[list[Channel]]], Awaitable[RunSummary]]
Notifier = Callable[[RunSummary], Awaitable[None]]


@dataclass
class SchedulerStatus:
    is_active: bool
    is_checking: bool
    interval_minutes: float
    last_run_at: Optional[datetime] = None
    last_summary: Optional[RunSummary] = None


class CheckScheduler:
    """Owns the run state: the interval job and the single-flight flag.

    The event loop is single-threaded, so testing and setting `_checking`
    with no await in between cannot interleave with another pass.
    """

    def __init__(
        self,
        job_queue: JobQueue,
        interval_minutes: float = Config.CHECK_INTERVAL_MINUTES,
        first_delay_seconds: float = Config.INITIAL_CHECK_DELAY_SECONDS,
        runner: PassRunner = run_check_pass,
        notifier: Optional[Notifier] = None,
    ) -> None:
        self._job_queue = job_queue
        self.interval_minutes = interval_minutes
        self.first_delay_seconds = first_delay_seconds
        self._runner = runner
        self._notifier = notifier
        self._job: Optional[Job] = None
        self._initial_job: Optional[Job] = None
        self._checking = False
        self._last_summary: Optional[RunSummary] = None

    @property
    def is_active(self) -> bool:
        return self._job is not None

    @property
    def is_checking(self) -> bool:
        return self._checking

    def start(self) -> bool:
        """Register the interval job plus one delayed first run. False if already active."""
        if self.is_active:
            logger.info("Scheduler already active")
            return False

        self._job = self._job_queue.run_repeating(
            self._on_tick,
            interval=self.interval_minutes * 60,
            first=self.interval_minutes * 60,
            name=CHECK_JOB_NAME,
        )
        self._initial_job = self._job_queue.run_once(
            self._on_tick,
            when=self.first_delay_seconds,
            name=INITIAL_CHECK_JOB_NAME,
        )
        logger.info(
            f"Scheduler started: every {self.interval_minutes} minutes, "
            f"first check in {self.first_delay_seconds} seconds"
        )
        return True

    def stop(self) -> bool:
        """Cancel future firings. A pass already running is left to finish."""
        if not self.is_active:
            return False

        self._job.schedule_removal()
        self._job = None
        if self._initial_job is not None and not self._initial_job.removed:
            self._initial_job.schedule_removal()
        self._initial_job = None
        logger.info("Scheduler stopped")
        return True

    def status(self) -> SchedulerStatus:
        return SchedulerStatus(
            is_active=self.is_active,
            is_checking=self._checking,
            interval_minutes=self.interval_minutes,
            last_run_at=self._last_summary.finished_at if self._last_summary else None,
            last_summary=self._last_summary,
        )

    async def run_check(
        self,
        channels: Optional[list[Channel]] = None,
        trigger: str = "manual",
        notify: bool = True,
    ) -> Optional[RunSummary]:
        """Run one pass unless another is in progress. Returns None when skipped.

        Scheduled firings and manual checks share the same flag.
        """
        if self._checking:
            logger.info(f"Check already in progress, skipping {trigger} run")
            return None

        self._checking = True
        try:
            logger.info(f"Starting {trigger} check")
            summary = await self._runner(channels)
            self._last_summary = summary
        finally:
            self._checking = False

        if notify:
            await self._notify(summary)
        return summary

    async def _notify(self, summary: RunSummary) -> None:
        if self._notifier is None or not summary.has_news:
            return
        try:
            await self._notifier(summary)
        except Exception as e:
            logger.warning(f"Failed to send run summary: {e}")

    async def _on_tick(self, context: ContextTypes.DEFAULT_TYPE) -> None:
        if context.job is not None and context.job.name == INITIAL_CHECK_JOB_NAME:
            self._initial_job = None
        try:
            await self.run_check(trigger="scheduled")
        except Exception:
            logger.exception("Scheduled check failed")
