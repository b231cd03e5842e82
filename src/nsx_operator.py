"""Kopf entry point for the NSX subnet operator.

Run with: kopf run src/nsx_operator.py
"""

import logging
import sys
from pathlib import Path
from typing import Any

# Add src directory to path for imports when run as script by Kopf
_src_dir = Path(__file__).parent
if str(_src_dir) not in sys.path:
    sys.path.insert(0, str(_src_dir))

import kopf
from prometheus_client import start_http_server

from constants import API_GROUP
from maintenance import MaintenanceLoop
from metrics import init_metrics, set_operator_info
from models import ConfigurationError, StoreInitializationError
from state import state

# Import resource handlers (registers with Kopf)
import handlers  # noqa: F401

logger = logging.getLogger(__name__)

# Operator version
OPERATOR_VERSION = "0.1.0"

_maintenance: MaintenanceLoop | None = None


@kopf.on.startup()
def configure(settings: kopf.OperatorSettings, **_: Any) -> None:
    """Configure operator settings and load the subnet cache on startup."""
    global _maintenance

    try:
        config = state.get_config()
    except ConfigurationError as e:
        raise kopf.PermanentError(str(e))

    # Reduce logging noise
    settings.posting.level = logging.WARNING
    # Keep Kopf bookkeeping out of the status the reconcilers own
    settings.persistence.progress_storage = kopf.AnnotationsProgressStorage(
        prefix=API_GROUP
    )
    settings.persistence.diffbase_storage = kopf.AnnotationsDiffBaseStorage(
        prefix=API_GROUP
    )
    # One reconcile per worker thread
    settings.execution.max_workers = config.worker_count

    # Start Prometheus metrics server
    try:
        start_http_server(config.metrics_port)
        logger.info("Prometheus metrics server started on port %d", config.metrics_port)
    except OSError as e:
        logger.warning(
            "Failed to start metrics server on port %d: %s", config.metrics_port, e
        )

    init_metrics()
    set_operator_info(OPERATOR_VERSION, config.cluster)

    # No reconcile may run before the cache holds what NSX already has
    service = state.get_subnet_service()
    try:
        service.initialize()
    except StoreInitializationError as e:
        logger.error("Subnet cache initialization failed: %s", e)
        raise kopf.PermanentError(str(e))

    _maintenance = MaintenanceLoop(
        service,
        [state.get_subnet_reconciler(), state.get_subnetset_reconciler()],
        interval=config.store_resync_interval,
    )
    _maintenance.start()

    logger.info(
        "NSX subnet operator started (version %s, cluster %s, %d workers)",
        OPERATOR_VERSION,
        config.cluster,
        config.worker_count,
    )


@kopf.on.cleanup()
def cleanup(**_: Any) -> None:
    """Clean up resources on operator shutdown."""
    logger.info("NSX subnet operator shutting down")
    if _maintenance is not None:
        # Cancel in-flight NSX waits first so the maintenance thread can exit
        _maintenance.service.stop()
        _maintenance.stop()
    state.close()


def main() -> None:
    """Entry point for running the operator without the kopf CLI."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = state.get_config()
    except ConfigurationError as e:
        logger.error("%s", e)
        sys.exit(1)

    logger.info("Starting NSX subnet operator...")
    if config.watch_namespace:
        kopf.run(namespaces=[config.watch_namespace])
    else:
        kopf.run(clusterwide=True)


if __name__ == "__main__":
    main()
