import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from config import get_settings
from database import session_scope
from idempotency import IdempotencyLedger


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class LedgerMaintenanceScheduler:
    """Purges expired idempotency keys at startup and then hourly."""

    def __init__(self) -> None:
        settings = get_settings()
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)

    def _run_job(self, source: str = "manual") -> int:
        logger.info(f"ledger_purge: source={source}")
        with session_scope() as session:
            purged = IdempotencyLedger(session).purge_expired()
        logger.info(f"ledger_purge: source={source} purged={purged}")
        return purged

    def start(self) -> None:
        self._run_job("startup")

        trigger = IntervalTrigger(hours=1)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=["hourly"],
            id="ledger_purge_hourly",
            replace_existing=True,
            misfire_grace_time=300,
        )

        self.scheduler.start()
        logger.info("Ledger maintenance scheduler started with hourly purge")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Ledger maintenance scheduler stopped")
