import logging
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from config import get_settings
from database import session_scope
from recurrence import RecurringEngine


logger = logging.getLogger(__name__)


class SchedulerManager:
    def __init__(self, session_factory=session_scope) -> None:
        settings = get_settings()
        self.session_factory = session_factory
        self.recurring_hour = settings.recurring_hour
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)

    def _run_job(self, source: str = "manual") -> int:
        logger.info(f"scheduler_run: source={source}")
        try:
            with self.session_factory() as session:
                count = RecurringEngine(session).post_due()
        except Exception:
            # The next scheduled run retries; nothing is retried within a tick.
            logger.exception(f"scheduler_run failed: source={source}")
            return 0
        logger.info(f"scheduler_run: source={source} transactions_posted={count}")
        return count

    def start(self) -> None:
        self._run_job("startup")

        trigger = CronTrigger(hour=self.recurring_hour, minute=0)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=[f"daily_{self.recurring_hour:02d}:00"],
            id="recurring_daily",
            replace_existing=True,
            misfire_grace_time=3600,
        )

        self.scheduler.start()
        logger.info(
            "Scheduler started with daily run at %02d:00", self.recurring_hour
        )

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
