"""Background scheduler that closes the month on every account."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

if TYPE_CHECKING:
    from .context import AppContext

logger = logging.getLogger("fondo.scheduler")

MONTHLY_CLOSE_JOB_ID = "monthly_close"


class MonthlyCloseScheduler:
    """Runs ``LedgerService.close_all_months`` shortly after each month starts.

    Rollover also happens lazily on the first request of a month; the job
    makes sure idle accounts are fined and reset on time too.
    """

    def __init__(self, ctx: AppContext, *, day: int = 1, hour: int = 0, minute: int = 5):
        """Initialize the scheduler with app context.

        Args:
            ctx: Application context with the ledger service and timezone
            day, hour, minute: Cron fields, evaluated in the ledger timezone
        """
        self.ctx = ctx
        self.day = day
        self.hour = hour
        self.minute = minute
        self.scheduler: BackgroundScheduler | None = None

    @property
    def running(self) -> bool:
        return self.scheduler is not None and self.scheduler.running

    def start(self) -> None:
        """Start the background scheduler."""
        if self.running:
            logger.warning("Scheduler already running")
            return

        self.scheduler = BackgroundScheduler(timezone=self.ctx.tz)
        self.scheduler.add_job(
            func=self.run_monthly_close,
            trigger=CronTrigger(
                day=self.day, hour=self.hour, minute=self.minute, timezone=self.ctx.tz
            ),
            id=MONTHLY_CLOSE_JOB_ID,
            name="Monthly contribution close",
            replace_existing=True,
        )
        self.scheduler.start()
        logger.info(
            "Scheduled monthly close",
            extra={"day": self.day, "hour": self.hour, "minute": self.minute},
        )

    def stop(self) -> None:
        """Stop the background scheduler gracefully."""
        if self.running:
            self.scheduler.shutdown(wait=True)
            logger.info("Background scheduler stopped")
        self.scheduler = None

    def run_monthly_close(self) -> int:
        """Execute the close; returns how many months were closed in total."""
        try:
            results = self.ctx.ledger.close_all_months()
        except Exception as exc:
            logger.error(f"Monthly close failed: {exc}", exc_info=True)
            return 0
        closed = sum(len(closures) for closures in results.values())
        logger.info(
            "Monthly close completed",
            extra={"accounts": len(results), "months_closed": closed},
        )
        return closed


def create_scheduler(ctx: AppContext, *, auto_start: bool = False) -> MonthlyCloseScheduler:
    """Create and optionally start the monthly close scheduler."""
    scheduler = MonthlyCloseScheduler(ctx)
    if auto_start:
        scheduler.start()
    return scheduler
