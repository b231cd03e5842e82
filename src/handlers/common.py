"""Glue between Kopf events and the reconcilers."""

import logging
import time

import kopf

from metrics import RECONCILE_TOTAL, RECONCILE_DURATION, RECONCILE_IN_PROGRESS
from models import ReconcileResult
from reconciler import Reconciler
from state import get_config

logger = logging.getLogger(__name__)


def retry_delay(retry: int) -> int:
    """Delay before the next attempt after `retry` earlier retries.

    Starts at the configured retry delay and doubles per retry, up to the
    configured maximum.
    """
    config = get_config()
    return min(config.retry_delay * 2 ** max(retry, 0), config.retry_max_delay)


def run_reconcile(
    reconciler: Reconciler,
    operation: str,
    namespace: str,
    name: str,
    body: kopf.Body,
    retry: int = 0,
) -> ReconcileResult:
    """Run one reconcile, recording metrics and mapping errors for Kopf.

    Any raised error becomes a kopf.TemporaryError so Kopf redelivers the
    event after retry_delay(retry). A Failed result (NSX restriction) is
    reported as a warning event and not retried.
    """
    resource = reconciler.kind.value
    logger.info(f"Reconciling {resource} {namespace}/{name} ({operation})")
    start_time = time.monotonic()
    RECONCILE_IN_PROGRESS.labels(resource=resource).inc()

    try:
        result = reconciler.reconcile(namespace, name)

        if result is ReconcileResult.FAILED:
            RECONCILE_TOTAL.labels(
                resource=resource, operation=operation, status="error"
            ).inc()
            kopf.warn(
                body,
                reason="NSXRestriction",
                message=f"NSX rejected this {resource}, see status conditions",
            )
        else:
            RECONCILE_TOTAL.labels(
                resource=resource, operation=operation, status="success"
            ).inc()

        RECONCILE_DURATION.labels(resource=resource, operation=operation).observe(
            time.monotonic() - start_time
        )
        logger.info(f"Reconciled {resource} {namespace}/{name}: {result.value}")
        return result

    except Exception as e:
        logger.error(f"Failed to reconcile {resource} {namespace}/{name}: {e}")
        RECONCILE_TOTAL.labels(
            resource=resource, operation=operation, status="error"
        ).inc()
        reason = "DeleteFailed" if operation == "delete" else "ReconcileFailed"
        kopf.warn(body, reason=reason, message=str(e)[:200])
        raise kopf.TemporaryError(
            f"Reconcile failed: {e}", delay=retry_delay(retry)
        )
    finally:
        RECONCILE_IN_PROGRESS.labels(resource=resource).dec()
