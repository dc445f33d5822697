import logging
from datetime import date, datetime, timedelta
from typing import Optional, Union

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm import Session

from balances import BalanceReconciler
from config import get_settings
from database import session_scope
from recurrence import ProcessResult, RecurringEngine


logging.basicConfig(level=get_settings().log_level)
logger = logging.getLogger(__name__)


def run_sweep(
    session: Session,
    source: str = "manual",
    now: Union[datetime, date, None] = None,
) -> ProcessResult:
    """Retry queued balance adjustments, then post every due occurrence."""
    reconciled = BalanceReconciler(session).retry_pending()
    if reconciled.applied or reconciled.pending:
        logger.info(
            f"scheduler_reconcile: source={source} applied={reconciled.applied} "
            f"pending={reconciled.pending}"
        )
    result = RecurringEngine(session).process_all_due(now)
    logger.info(
        f"scheduler_run: source={source} processed={result.processed} "
        f"skipped={result.skipped} errors={result.errors}"
    )
    return result


class SchedulerManager:
    def __init__(self) -> None:
        settings = get_settings()
        self.settings = settings
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)

    def _run_job(self, source: str = "manual", attempt: int = 1) -> Optional[ProcessResult]:
        logger.info(f"scheduler_run: source={source} attempt={attempt}")
        try:
            with session_scope() as session:
                return run_sweep(session, source)
        except Exception:
            logger.exception(f"scheduler_run_failed: source={source} attempt={attempt}")
            self._schedule_retry(source, attempt)
            return None

    def _schedule_retry(self, source: str, attempt: int) -> None:
        if attempt > self.settings.sweep_retries:
            logger.error(
                f"scheduler_run_abandoned: source={source} attempts={attempt}"
            )
            return
        if not self.scheduler.running:
            return
        delay = self.settings.sweep_retry_delay_secs * attempt
        run_at = datetime.now(self.scheduler.timezone) + timedelta(seconds=delay)
        self.scheduler.add_job(
            self._run_job,
            DateTrigger(run_date=run_at),
            args=[source, attempt + 1],
            id=f"recurring_retry_{source}",
            replace_existing=True,
        )
        logger.info(
            f"scheduler_retry_scheduled: source={source} attempt={attempt + 1} "
            f"delay_secs={delay}"
        )

    def start(self) -> None:
        hour = self.settings.sweep_hour
        minute = self.settings.sweep_minute
        label = f"daily_{hour:02d}:{minute:02d}"

        trigger = CronTrigger(hour=hour, minute=minute)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=[label],
            id="recurring_daily",
            replace_existing=True,
            misfire_grace_time=3600,
        )

        trigger = IntervalTrigger(hours=1)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=["hourly_safety_net"],
            id="recurring_hourly_safety",
            replace_existing=True,
            misfire_grace_time=300,
        )

        self.scheduler.start()
        logger.info(f"Scheduler started with {label} and hourly safety net")
        self._run_job("startup")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
