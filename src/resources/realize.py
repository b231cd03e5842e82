"""Waiters that poll NSX until a write is durably effective.

Both waiters block only the calling reconcile worker. They sleep on a
threading.Event, so setting the event (operator shutdown) ends the wait
at once with the waiter's timeout error.
"""

import logging
import threading
import time

from constants import REALIZED_ENTITY_TYPE, REALIZED_STATE, STATIC_IP_POOL_ID
from metrics import IP_RELEASE_WAIT_SECONDS, REALIZATION_WAIT_SECONDS
from models import (
    IPReleaseTimeoutError,
    NSXAPIError,
    RealizeTimeoutError,
    ResourceNotFoundError,
    VPCInfo,
)
from nsx_client import NSXClient

logger = logging.getLogger(__name__)


def wait_for_realization(
    client: NSXClient,
    vpc: VPCInfo,
    intent_path: str,
    timeout: float,
    interval: float,
    stop: threading.Event | None = None,
) -> None:
    """Poll realization status until the subnet's logical switch is realized.

    Errors from the status query are logged and polling continues until the
    deadline.

    Raises:
        RealizeTimeoutError: timeout elapsed or stop was set
    """
    stop = stop or threading.Event()
    start_time = time.monotonic()
    deadline = start_time + timeout

    while True:
        try:
            entities = client.list_realized_entities(vpc, intent_path)
        except (NSXAPIError, ResourceNotFoundError) as e:
            logger.debug(f"Realization status of {intent_path} not available yet: {e}")
        else:
            for entity in entities:
                if (
                    entity.get("entity_type") == REALIZED_ENTITY_TYPE
                    and entity.get("state") == REALIZED_STATE
                ):
                    elapsed = time.monotonic() - start_time
                    REALIZATION_WAIT_SECONDS.labels(status="realized").observe(elapsed)
                    logger.debug(f"{intent_path} realized after {elapsed:.1f}s")
                    return

        remaining = deadline - time.monotonic()
        if remaining <= 0:
            break
        if stop.wait(min(interval, remaining)):
            REALIZATION_WAIT_SECONDS.labels(status="timeout").observe(
                time.monotonic() - start_time
            )
            raise RealizeTimeoutError(f"Realization wait for {intent_path} cancelled")

    REALIZATION_WAIT_SECONDS.labels(status="timeout").observe(
        time.monotonic() - start_time
    )
    raise RealizeTimeoutError(
        f"{intent_path} was not realized within {timeout:.0f}s"
    )


def delete_ip_allocations(
    client: NSXClient, vpc: VPCInfo, subnet_id: str, pool_id: str = STATIC_IP_POOL_ID
) -> int:
    """Delete every IP allocation in a subnet's pool. Returns the count deleted."""
    try:
        allocations = client.list_ip_allocations(vpc, subnet_id, pool_id)
    except ResourceNotFoundError:
        logger.debug(f"Subnet {subnet_id} has no IP pool {pool_id}")
        return 0

    for allocation in allocations:
        client.delete_ip_allocation(vpc, subnet_id, pool_id, allocation["id"])
    if allocations:
        logger.info(
            f"Deleted {len(allocations)} IP allocations from subnet {subnet_id}"
        )
    return len(allocations)


def wait_for_ip_release(
    client: NSXClient,
    vpc: VPCInfo,
    subnet_id: str,
    timeout: float,
    interval: float,
    stop: threading.Event | None = None,
    pool_id: str = STATIC_IP_POOL_ID,
) -> None:
    """Release a subnet's IP allocations and wait until its pool is empty.

    Args:
        client: NSX client
        vpc: VPC the subnet lives in
        subnet_id: NSX subnet id
        timeout: Seconds to wait for the pool to drain, 0 waits forever
        interval: Seconds between usage polls
        stop: Event that cancels the wait when set
        pool_id: IP pool to drain

    Raises:
        IPReleaseTimeoutError: timeout elapsed or stop was set
    """
    stop = stop or threading.Event()
    start_time = time.monotonic()
    deadline = start_time + timeout if timeout > 0 else None

    delete_ip_allocations(client, vpc, subnet_id, pool_id)

    while True:
        try:
            usage = client.get_ip_pool_usage(vpc, subnet_id, pool_id)
        except ResourceNotFoundError:
            logger.debug(f"IP pool of subnet {subnet_id} is gone")
            break
        if usage.allocated_ip_allocations == 0:
            break

        logger.info(
            f"Subnet {subnet_id} still has {usage.allocated_ip_allocations} "
            "IP allocations, waiting"
        )
        wait = interval
        if deadline is not None:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                IP_RELEASE_WAIT_SECONDS.labels(status="timeout").observe(
                    time.monotonic() - start_time
                )
                raise IPReleaseTimeoutError(
                    f"IP pool of subnet {subnet_id} still has "
                    f"{usage.allocated_ip_allocations} allocations after {timeout:.0f}s"
                )
            wait = min(interval, remaining)
        if stop.wait(wait):
            IP_RELEASE_WAIT_SECONDS.labels(status="timeout").observe(
                time.monotonic() - start_time
            )
            raise IPReleaseTimeoutError(
                f"IP release wait for subnet {subnet_id} cancelled"
            )

    IP_RELEASE_WAIT_SECONDS.labels(status="released").observe(
        time.monotonic() - start_time
    )
