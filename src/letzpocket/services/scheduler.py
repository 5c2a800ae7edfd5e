"""Monthly quota reset scheduling with APScheduler.

The reset job runs on the first day of every month (UTC) inside the
application's event loop.
"""

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from letzpocket.config import Settings
from letzpocket.core.logging import get_logger
from letzpocket.services.quota import QuotaManager

logger = get_logger(__name__)

RESET_JOB_ID = "monthly_quota_reset"


def build_reset_trigger(hour: int = 0, minute: int = 5) -> CronTrigger:
    """Cron trigger firing on day 1 of each month at hour:minute UTC."""
    return CronTrigger(day=1, hour=hour, minute=minute, timezone="UTC")


class QuotaResetScheduler:
    """Owns the AsyncIOScheduler that runs the monthly reset."""

    def __init__(
        self,
        quota_manager: QuotaManager,
        settings: Settings,
        scheduler: AsyncIOScheduler | None = None,
    ) -> None:
        self.quota_manager = quota_manager
        self.settings = settings
        self.scheduler = scheduler or AsyncIOScheduler(timezone="UTC")

    @property
    def running(self) -> bool:
        return bool(self.scheduler.running)

    async def run_reset(self) -> int:
        """Job body: reset every user's quota."""
        try:
            count = await self.quota_manager.reset_monthly_quotas()
        except Exception:
            logger.exception("monthly_quota_reset_failed")
            raise
        logger.info("monthly_quota_reset_completed", users=count)
        return count

    def start(self) -> None:
        """Register the reset job and start the scheduler."""
        if not self.settings.quota_reset_enabled:
            logger.info("quota_reset_scheduler_disabled")
            return
        if self.running:
            logger.debug("quota_reset_scheduler_already_running")
            return

        self.scheduler.add_job(
            self.run_reset,
            trigger=build_reset_trigger(
                self.settings.quota_reset_hour,
                self.settings.quota_reset_minute,
            ),
            id=RESET_JOB_ID,
            replace_existing=True,
            coalesce=True,
            misfire_grace_time=3600,
        )
        self.scheduler.start()
        logger.info(
            "quota_reset_scheduler_started",
            hour=self.settings.quota_reset_hour,
            minute=self.settings.quota_reset_minute,
        )

    def stop(self) -> None:
        if self.running:
            self.scheduler.shutdown(wait=False)
            logger.info("quota_reset_scheduler_stopped")
