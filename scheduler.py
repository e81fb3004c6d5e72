import logging
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from config import get_settings
from database import engine, session_scope
from services import BackupService, RecurringTransactionService


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class SchedulerManager:
    def __init__(self) -> None:
        self.settings = get_settings()
        self.scheduler = BackgroundScheduler(timezone=self.settings.timezone)

    def _run_job(self, source: str = "manual") -> None:
        logger.info(f"scheduler_run: source={source}")
        with session_scope() as session:
            service = RecurringTransactionService(session)
            count = service.generate_pending()
            logger.info(f"scheduler_run: source={source} occurrences_posted={count}")

    def _run_backup(self) -> None:
        if not self.settings.auto_backup:
            logger.info("scheduled_backup: skipped (disabled)")
            return
        try:
            name = BackupService(self.settings, engine).create_backup()
        except (OSError, ValueError) as exc:
            logger.error(f"scheduled_backup: failed error={exc}")
            return
        logger.info(f"scheduled_backup: name={name}")

    def start(self) -> None:
        self._run_job("startup")

        trigger = CronTrigger(hour=0, minute=0)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=["daily_00:00"],
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

        trigger = CronTrigger(hour=0, minute=30)
        self.scheduler.add_job(
            self._run_backup,
            trigger,
            id="backup_daily",
            replace_existing=True,
            misfire_grace_time=3600,
        )

        self.scheduler.start()
        logger.info(
            "Scheduler started with daily 00:00 generation, hourly safety net"
            " and daily 00:30 backup"
        )

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
