"""
Background scheduler for the periodic escalation pass.
Uses APScheduler's asyncio scheduler so jobs run on the app's event loop.
"""

from typing import List

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from .logging import get_logger

logger = get_logger(__name__)

ESCALATION_JOB_ID = "escalation_pass"


class EscalationScheduler:
    """Runs EscalationService.run every few minutes."""

    def __init__(self, escalation_service, interval_minutes: int = 5):
        self.escalations = escalation_service
        self.interval_minutes = interval_minutes
        self.scheduler = AsyncIOScheduler()
        self._started = False

    async def run_escalations(self) -> None:
        try:
            await self.escalations.run()
        except Exception:
            # Keep the job scheduled; the next tick retries
            logger.exception("escalation_pass_failed")

    def start(self) -> None:
        if self._started:
            return

        self.scheduler.add_job(
            func=self.run_escalations,
            trigger=IntervalTrigger(minutes=self.interval_minutes),
            id=ESCALATION_JOB_ID,
            name="Process escalation rules",
            replace_existing=True,
        )
        self.scheduler.start()
        self._started = True
        logger.info("scheduler_started", interval_minutes=self.interval_minutes)

    def shutdown(self) -> None:
        if self._started:
            self.scheduler.shutdown(wait=False)
            self._started = False
            logger.info("scheduler_stopped")

    def get_jobs_status(self) -> List[dict]:
        return [
            {
                "id": job.id,
                "name": job.name,
                "next_run": str(job.next_run_time) if job.next_run_time else "paused",
            }
            for job in self.scheduler.get_jobs()
        ]
