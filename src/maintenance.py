"""Background maintenance: periodic cache reload and garbage collection.

NSX subnets can change outside the operator, and an owner CR can vanish
while the operator is down (its finalizer removed by hand). The loop
reloads the subnet cache from NSX and then deletes cached subnets whose
owner no longer exists.
"""

import logging
import threading
import time

from metrics import GC_DELETED_SUBNETS, GC_DURATION, GC_RUNS
from reconciler import Reconciler
from resources.subnet_service import SubnetService

logger = logging.getLogger(__name__)


class MaintenanceLoop:
    """Runs resync and garbage collection on a daemon thread."""

    def __init__(
        self,
        service: SubnetService,
        reconcilers: list[Reconciler],
        interval: float,
    ) -> None:
        self.service = service
        self.reconcilers = reconcilers
        self.interval = interval
        self._stopped = threading.Event()
        self._thread: threading.Thread | None = None

    def run_once(self) -> int:
        """Reload the cache and collect garbage. Returns subnets deleted."""
        gc_start_time = time.monotonic()
        self.service.resync()

        total_deleted = 0
        for reconciler in self.reconcilers:
            deleted = reconciler.collect_garbage()
            if deleted:
                GC_DELETED_SUBNETS.labels(resource=reconciler.kind.value).inc(deleted)
            total_deleted += deleted

        GC_DURATION.observe(time.monotonic() - gc_start_time)
        if total_deleted:
            logger.info(f"GC completed: deleted {total_deleted} orphaned subnets")
        else:
            logger.debug("GC completed: no orphaned subnets found")
        return total_deleted

    def _run(self) -> None:
        while not self._stopped.wait(self.interval):
            try:
                self.run_once()
                GC_RUNS.labels(status="success").inc()
            except Exception as e:
                logger.error(f"Subnet maintenance failed: {e}")
                GC_RUNS.labels(status="error").inc()

    def start(self) -> None:
        """Start the loop. The first run happens one interval from now."""
        if self.interval <= 0:
            logger.info("Subnet cache resync disabled")
            return
        self._thread = threading.Thread(
            target=self._run, name="subnet-maintenance", daemon=True
        )
        self._thread.start()
        logger.info("Subnet maintenance running every %.0fs", self.interval)

    def stop(self, timeout: float = 10.0) -> None:
        """Stop the loop and wait for the current run to finish."""
        self._stopped.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
