"""Kopf handler for SubnetPort creation.

A SubnetPort that names a SubnetSet instead of a Subnet gets a member
subnet of that SubnetSet with free addresses. The chosen subnet's NSX
path is recorded in an annotation on the port.
"""

import logging
import time
from typing import Any

import kopf

from constants import API_GROUP, API_VERSION, SUBNETPORT_PLURAL, SUBNET_PATH_ANNOTATION
from metrics import RECONCILE_TOTAL, RECONCILE_DURATION, RECONCILE_IN_PROGRESS
from models import NSXRestrictionError, SubnetPortSpec
from handlers.common import retry_delay
from state import get_subnetset_reconciler

logger = logging.getLogger(__name__)


@kopf.on.create(API_GROUP, API_VERSION, SUBNETPORT_PLURAL)
def allocate_subnetport_handler(
    spec: SubnetPortSpec,
    name: str,
    namespace: str,
    meta: kopf.Meta,
    patch: kopf.Patch,
    body: kopf.Body,
    retry: int = 0,
    **_: Any,
) -> None:
    """Pick a subnet for a SubnetPort that only names a SubnetSet."""
    if spec.get("subnet"):
        logger.debug(f"SubnetPort {namespace}/{name} names a Subnet, nothing to allocate")
        return
    subnetset_name = spec.get("subnetSet")
    if not subnetset_name:
        logger.debug(f"SubnetPort {namespace}/{name} names no SubnetSet")
        return
    if meta.get("annotations", {}).get(SUBNET_PATH_ANNOTATION):
        logger.debug(f"SubnetPort {namespace}/{name} already has a subnet")
        return

    logger.info(
        f"Allocating subnet for SubnetPort {namespace}/{name} "
        f"from SubnetSet {subnetset_name}"
    )
    start_time = time.monotonic()
    RECONCILE_IN_PROGRESS.labels(resource="SubnetSet").inc()

    try:
        subnet = get_subnetset_reconciler().allocate(namespace, subnetset_name)
        patch.metadata.annotations[SUBNET_PATH_ANNOTATION] = subnet.path

        RECONCILE_TOTAL.labels(
            resource="SubnetSet", operation="allocate", status="success"
        ).inc()
        RECONCILE_DURATION.labels(resource="SubnetSet", operation="allocate").observe(
            time.monotonic() - start_time
        )
        logger.info(f"SubnetPort {namespace}/{name} uses subnet {subnet.path}")

    except NSXRestrictionError as e:
        logger.error(f"NSX rejected subnet allocation for {namespace}/{name}: {e}")
        RECONCILE_TOTAL.labels(
            resource="SubnetSet", operation="allocate", status="error"
        ).inc()
        kopf.warn(body, reason="AllocationFailed", message=str(e)[:200])
        raise kopf.PermanentError(f"Allocation rejected by NSX: {e}")
    except Exception as e:
        logger.error(f"Failed to allocate subnet for {namespace}/{name}: {e}")
        RECONCILE_TOTAL.labels(
            resource="SubnetSet", operation="allocate", status="error"
        ).inc()
        kopf.warn(body, reason="AllocationFailed", message=str(e)[:200])
        raise kopf.TemporaryError(
            f"Allocation failed: {e}", delay=retry_delay(retry)
        )
    finally:
        RECONCILE_IN_PROGRESS.labels(resource="SubnetSet").dec()
