import logging
from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from config import get_settings
from monitor import ConnectivityMonitor
from sync import DrainResult, SyncEngine


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class SyncScheduler:
    """Background triggers for the offline client.

    Probes connectivity on an interval and feeds the result to the monitor,
    which fires a drain on each offline to online transition. An hourly
    safety-net drain catches anything a missed transition left behind.
    """

    def __init__(
        self,
        engine: SyncEngine,
        monitor: ConnectivityMonitor,
        probe: Callable[[], bool],
        probe_interval_secs: Optional[int] = None,
    ) -> None:
        settings = get_settings()
        self.engine = engine
        self.monitor = monitor
        self.probe = probe
        self.probe_interval_secs = (
            probe_interval_secs or settings.sync_probe_interval_secs
        )
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)
        self._unsubscribe: Optional[Callable[[], None]] = None

    def run_drain(self, source: str = "manual") -> DrainResult:
        logger.info(f"sync_trigger: source={source}")
        result = self.engine.drain()
        logger.info(
            f"sync_trigger: source={source} synced={result.synced} "
            f"failed={result.failed} skipped={result.skipped}"
        )
        return result

    def check_connectivity(self) -> bool:
        try:
            online = bool(self.probe())
        except Exception:
            logger.exception("connectivity_probe_failed")
            online = False
        self.monitor.set_online(online)
        return online

    def start(self) -> None:
        self._unsubscribe = self.monitor.on_trigger(self.run_drain)
        self.check_connectivity()
        self.monitor.start()

        trigger = IntervalTrigger(seconds=self.probe_interval_secs)
        self.scheduler.add_job(
            self.check_connectivity,
            trigger,
            id="connectivity_probe",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

        trigger = IntervalTrigger(hours=1)
        self.scheduler.add_job(
            self.run_drain,
            trigger,
            args=["hourly_safety_net"],
            id="sync_hourly_safety",
            replace_existing=True,
            misfire_grace_time=300,
        )

        self.scheduler.start()
        logger.info(
            f"Sync scheduler started with {self.probe_interval_secs}s probe and hourly safety net"
        )

    def stop(self) -> None:
        self.monitor.stop()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Sync scheduler stopped")
