"""NSX subnet service shared by the Subnet and SubnetSet reconcilers.

The service owns the subnet cache and is the only component that writes
to NSX. One instance exists per process; both reconcilers receive it at
construction so a SubnetSet sees the subnets it owns in the same cache.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor

from config import OperatorConfig
from constants import RESERVED_IP_COUNT, STATIC_IP_POOL_ID
from metrics import STORE_RESYNC_RUNS
from models import (
    ResourceNotFoundError,
    SpecKind,
    SpecObject,
    StoreInitializationError,
    VPCInfo,
    VpcSubnet,
)
from nsx_client import NSXClient
from resources.builder import build_deletion, build_subnet, subnet_id_for
from resources.compare import is_changed
from resources.realize import wait_for_ip_release, wait_for_realization
from resources.store import SubnetStore
from resources.wrap import wrap_hierarchy_subnet
from utils import count_addresses

logger = logging.getLogger(__name__)


class SubnetService:
    """Create, update, delete and allocate NSX subnets for spec objects."""

    def __init__(
        self,
        client: NSXClient,
        config: OperatorConfig,
        store: SubnetStore | None = None,
    ) -> None:
        self.client = client
        self.config = config
        self.store = store if store is not None else SubnetStore()
        self.vpc = VPCInfo(config.org_id, config.project_id, config.vpc_id)
        self._stop = threading.Event()
        self._allocation_locks: dict[str, threading.Lock] = {}
        self._allocation_locks_guard = threading.Lock()
        # ids of subnets patched into NSX whose realization was not confirmed
        self._pending: set[str] = set()

    # -------------------------------------------------------------------------
    # Cache population
    # -------------------------------------------------------------------------

    def resync(self) -> int:
        """Reload every operator-owned subnet from NSX into the cache."""
        try:
            subnets = self.client.search_subnets(self.config.cluster)
        except Exception:
            STORE_RESYNC_RUNS.labels(status="error").inc()
            raise
        for subnet in subnets:
            self.store.operate(subnet)
        STORE_RESYNC_RUNS.labels(status="success").inc()
        logger.info(f"Loaded {len(subnets)} NSX subnets into the cache")
        return len(subnets)

    def initialize(self) -> None:
        """Populate the cache before any reconcile is served.

        The listing runs on a worker thread and the caller blocks until it
        finishes.

        Raises:
            StoreInitializationError: NSX could not be listed
        """
        with ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="subnet-store-init"
        ) as executor:
            future = executor.submit(self.resync)
            try:
                future.result()
            except Exception as e:
                raise StoreInitializationError(
                    f"Failed to load NSX subnets into the cache: {e}"
                ) from e

    def stop(self) -> None:
        """Cancel in-flight waits. Used on operator shutdown."""
        self._stop.set()

    # -------------------------------------------------------------------------
    # Create / update
    # -------------------------------------------------------------------------

    def vpc_for(self, subnet: VpcSubnet | None) -> VPCInfo:
        """Locate the VPC of a subnet, falling back to the configured VPC."""
        if subnet is not None and subnet.path:
            return VPCInfo.from_path(subnet.path)
        return self.vpc

    def create_or_update_subnet(
        self, obj: SpecObject, existing: VpcSubnet | None = None
    ) -> tuple[VpcSubnet, bool]:
        """Make NSX hold the desired subnet for a spec object.

        For a Subnet the cached entry is looked up by its deterministic id.
        For a SubnetSet, existing selects the member subnet to refresh and
        None creates a new member.

        A subnet whose patch went through but whose realization could not
        be confirmed is cached as pending, so it is patched again on the
        next call and is still found when its owner is deleted.

        Returns:
            The cached subnet after the call, and whether NSX was written.
        """
        if existing is None and obj.kind is SpecKind.SUBNET:
            existing = self.store.get_by_key(subnet_id_for(obj))

        desired = build_subnet(obj, self.config, existing)
        if desired.id not in self._pending and not is_changed(existing, desired):
            logger.debug(f"NSX subnet {desired.id} is up to date")
            return existing, False  # type: ignore[return-value]

        vpc = self.vpc_for(existing)
        verb = "Updating" if existing else "Creating"
        logger.info(f"{verb} NSX subnet {desired.id} for {obj.kind.value} {obj.key}")
        self.client.patch_infra(
            wrap_hierarchy_subnet(desired, self.config.cluster),
            enforce_revision_check=False,
        )
        try:
            wait_for_realization(
                self.client,
                vpc,
                vpc.subnet_path(desired.id),
                timeout=self.config.realize_timeout,
                interval=self.config.realize_poll_interval,
                stop=self._stop,
            )
            realized = self.client.get_subnet(vpc, desired.id)
        except Exception:
            logger.warning(f"NSX subnet {desired.id} was written but is not realized yet")
            self._pending.add(desired.id)
            self.store.operate(
                desired.replace(
                    path=vpc.subnet_path(desired.id), parent_path=vpc.vpc_path
                )
            )
            raise
        self._pending.discard(desired.id)
        self.store.operate(realized)
        return realized, True

    def is_pending(self, subnet_id: str) -> bool:
        """Whether a subnet was written to NSX without confirmed realization."""
        return subnet_id in self._pending

    # -------------------------------------------------------------------------
    # Delete
    # -------------------------------------------------------------------------

    def delete_subnet(self, subnet: VpcSubnet) -> None:
        """Release a subnet's IP allocations, then delete it from NSX."""
        vpc = self.vpc_for(subnet)
        wait_for_ip_release(
            self.client,
            vpc,
            subnet.id,
            timeout=self.config.ip_release_timeout,
            interval=self.config.ip_release_poll_interval,
            stop=self._stop,
        )
        deletion = build_deletion(subnet)
        logger.info(f"Deleting NSX subnet {subnet.id}")
        self.client.patch_infra(
            wrap_hierarchy_subnet(deletion, self.config.cluster),
            enforce_revision_check=False,
        )
        self.store.operate(deletion)
        self._pending.discard(subnet.id)

    def delete_subnets_for(self, uid: str) -> int:
        """Delete every NSX subnet owned by a spec object UID.

        Runs under the owner's allocation lock so no member is created
        while the set is being emptied. The lock itself is kept: a caller
        may already be waiting on it.
        """
        with self._allocation_lock(uid):
            subnets = self.store.get_by_index(uid)
            if not subnets:
                logger.info(f"No NSX subnet is owned by {uid}, nothing to delete")
            for subnet in subnets:
                self.delete_subnet(subnet)
            return len(subnets)

    def subnets_for(self, uid: str) -> list[VpcSubnet]:
        """Cached NSX subnets owned by a spec object UID."""
        return self.store.get_by_index(uid)

    # -------------------------------------------------------------------------
    # Lazy allocation for SubnetSets
    # -------------------------------------------------------------------------

    def _allocation_lock(self, uid: str) -> threading.Lock:
        with self._allocation_locks_guard:
            return self._allocation_locks.setdefault(uid, threading.Lock())

    def capacity(self, subnet: VpcSubnet) -> int:
        """Number of addresses a subnet provides."""
        if subnet.ip_addresses:
            return count_addresses(subnet.ip_addresses)
        if subnet.ipv4_subnet_size is not None:
            return subnet.ipv4_subnet_size
        return self.config.default_subnet_size

    def get_available_subnet(self, subnetset: SpecObject) -> VpcSubnet:
        """Return a SubnetSet member with spare addresses, creating one if needed.

        Members are scanned in cache order and the first with more than the
        reserved number of free addresses wins. A pending member is patched
        again before its usage is read.
        """
        with self._allocation_lock(subnetset.uid):
            for subnet in self.store.get_by_index(subnetset.uid):
                if self.is_pending(subnet.id):
                    subnet, _ = self.create_or_update_subnet(subnetset, existing=subnet)
                try:
                    usage = self.client.get_ip_pool_usage(
                        self.vpc_for(subnet), subnet.id, STATIC_IP_POOL_ID
                    )
                except ResourceNotFoundError:
                    logger.warning(f"Subnet {subnet.id} has no IP pool, skipping it")
                    continue
                free = self.capacity(subnet) - usage.allocated_ip_allocations
                if free > RESERVED_IP_COUNT:
                    logger.debug(
                        f"Subnet {subnet.id} of SubnetSet {subnetset.key} "
                        f"has {free} free addresses"
                    )
                    return subnet

            logger.info(
                f"No subnet of SubnetSet {subnetset.key} has free addresses, creating one"
            )
            subnet, _ = self.create_or_update_subnet(subnetset)
            return subnet
