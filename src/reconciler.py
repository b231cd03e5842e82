"""Reconcilers driving Subnet and SubnetSet objects through their lifecycle.

Each reconcile run reads the current spec object and moves it along:

- no finalizer yet: add the finalizer before any NSX work, so the delete
  branch is guaranteed to run later
- live object: build the desired NSX subnet(s), write only what changed,
  wait for realization and publish status
- deleting with our finalizer: release IP allocations, delete the NSX
  subnet(s), then drop the finalizer
- deleting without our finalizer: nothing to clean up

A raised exception asks the caller to redeliver the event with backoff.
NSX restriction errors are terminal: the object is marked Failed and
left alone until its spec changes.
"""

import logging

from constants import (
    CONDITION_READY,
    SUBNET_FINALIZER,
    TAG_CR_TYPE_SUBNET,
    TAG_CR_TYPE_SUBNETSET,
    TAG_SCOPE_CR_TYPE,
    TAG_SCOPE_NAMESPACE,
)
from models import (
    ConditionStatus,
    NSXRestrictionError,
    OperatorError,
    Phase,
    ReconcileResult,
    ResourceNotFoundError,
    SpecKind,
    SpecObject,
    SpecStatus,
    StoreConsistencyError,
    SubnetInfo,
    VpcSubnet,
)
from resources.specs import SpecStore
from resources.subnet_service import SubnetService
from utils import truncate_message

logger = logging.getLogger(__name__)


class Reconciler:
    """Shared state machine for kinds backed by NSX subnets."""

    kind: SpecKind
    cr_type: str

    def __init__(
        self,
        service: SubnetService,
        specs: SpecStore,
        finalizer: str = SUBNET_FINALIZER,
        namespace: str = "",
    ) -> None:
        """Initialize the reconciler.

        Args:
            service: Subnet service shared with the other reconciler
            specs: Kubernetes access for this kind
            finalizer: Finalizer guarding NSX cleanup
            namespace: Watched namespace, empty for cluster-wide
        """
        self.service = service
        self.specs = specs
        self.finalizer = finalizer
        self.namespace = namespace

    # -------------------------------------------------------------------------
    # Kind-specific behaviour
    # -------------------------------------------------------------------------

    def sync(self, obj: SpecObject) -> bool:
        """Bring NSX in line with the spec. Returns True if NSX was written."""
        raise NotImplementedError

    def cleanup(self, obj: SpecObject) -> None:
        """Remove everything the object owns in NSX."""
        raise NotImplementedError

    def ready_status(self, obj: SpecObject) -> SpecStatus:
        """Status to publish after a successful sync."""
        raise NotImplementedError

    # -------------------------------------------------------------------------
    # State machine
    # -------------------------------------------------------------------------

    def reconcile(self, namespace: str, name: str) -> ReconcileResult:
        """Reconcile one object end to end."""
        obj = self.specs.get(self.kind, namespace, name)
        if obj is None:
            logger.info(f"{self.kind.value} {namespace}/{name} not found, ignoring")
            return ReconcileResult.NOT_FOUND

        if obj.is_deleting:
            return self._reconcile_delete(obj)
        return self._reconcile_update(obj)

    def _reconcile_update(self, obj: SpecObject) -> ReconcileResult:
        if self._restriction_recorded(obj):
            logger.info(
                f"{self.kind.value} {obj.key} was rejected by NSX at generation "
                f"{obj.generation}, waiting for a spec change"
            )
            return ReconcileResult.FAILED

        obj = self.ensure_finalizer(obj)

        try:
            changed = self.sync(obj)
            status = self.ready_status(obj)
        except NSXRestrictionError as e:
            logger.error(f"NSX rejected {self.kind.value} {obj.key}: {e}")
            self._write_status(obj, self._failure_status(obj, e, Phase.FAILED))
            return ReconcileResult.FAILED
        except Exception as e:
            logger.error(f"Failed to reconcile {self.kind.value} {obj.key}: {e}")
            self._write_status(obj, self._failure_status(obj, e, Phase.ERROR))
            raise

        self._write_status(obj, status)
        if changed:
            logger.info(f"{self.kind.value} {obj.key} synced to NSX")
            return ReconcileResult.SYNCED
        return ReconcileResult.UNCHANGED

    def _reconcile_delete(self, obj: SpecObject) -> ReconcileResult:
        if not obj.has_finalizer(self.finalizer):
            logger.info(
                f"Finalizers cannot be recognized on {self.kind.value} {obj.key}, "
                "nothing to clean up"
            )
            return ReconcileResult.GONE

        if self._restriction_recorded(obj):
            logger.info(
                f"NSX refused to delete {self.kind.value} {obj.key}, "
                "waiting for a spec change"
            )
            return ReconcileResult.FAILED

        status = SpecStatus.from_dict(obj.status)
        status.phase = Phase.DELETING
        obj = self._write_status(obj, status)

        try:
            self.cleanup(obj)
        except NSXRestrictionError as e:
            logger.error(f"NSX refused to delete {self.kind.value} {obj.key}: {e}")
            self._write_status(
                obj, self._failure_status(obj, e, Phase.FAILED, deleting=True)
            )
            return ReconcileResult.FAILED
        except Exception as e:
            logger.error(f"Failed to delete {self.kind.value} {obj.key}: {e}")
            self._write_status(
                obj, self._failure_status(obj, e, Phase.ERROR, deleting=True)
            )
            raise

        self.specs.update_finalizers(
            obj, [f for f in obj.finalizers if f != self.finalizer]
        )
        logger.info(f"Deleted {self.kind.value} {obj.key}")
        return ReconcileResult.DELETED

    def ensure_finalizer(self, obj: SpecObject) -> SpecObject:
        """Persist our finalizer on the object if it is missing."""
        if obj.has_finalizer(self.finalizer):
            return obj
        updated = self.specs.update_finalizers(obj, [*obj.finalizers, self.finalizer])
        logger.info(f"Added finalizer to {self.kind.value} {obj.key}")
        return updated

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------

    @staticmethod
    def _restriction_recorded(obj: SpecObject) -> bool:
        return (
            obj.status.get("phase") == Phase.FAILED.value
            and obj.status.get("observedGeneration") == obj.generation
        )

    def _failure_status(
        self,
        obj: SpecObject,
        error: Exception,
        phase: Phase,
        deleting: bool = False,
    ) -> SpecStatus:
        status = SpecStatus.from_dict(obj.status)
        status.phase = phase
        status.observed_generation = obj.generation
        verb = "deleted" if deleting else "created/updated"
        status.set_condition(
            CONDITION_READY,
            ConditionStatus.FALSE,
            reason=(
                f"error occurred while processing the {self.kind.value} CR. "
                f"Error: {truncate_message(str(error))}"
            ),
            message=f"NSX {self.kind.value} could not be {verb}",
        )
        return status

    def _base_ready_status(self, obj: SpecObject, reason: str) -> SpecStatus:
        status = SpecStatus.from_dict(obj.status)
        status.phase = Phase.READY
        status.observed_generation = obj.generation
        status.set_condition(
            CONDITION_READY,
            ConditionStatus.TRUE,
            reason=reason,
            message=f"NSX {self.kind.value} has been successfully created/updated",
        )
        return status

    def _write_status(self, obj: SpecObject, status: SpecStatus) -> SpecObject:
        """Write status only if it differs from what the object carries.

        Returns the object to use for any later write.
        """
        new = status.to_dict()
        if new == SpecStatus.from_dict(obj.status).to_dict():
            logger.debug(f"Status of {self.kind.value} {obj.key} unchanged")
            return obj
        return self.specs.update_status(obj, new)

    # -------------------------------------------------------------------------
    # Garbage collection
    # -------------------------------------------------------------------------

    def collect_garbage(self) -> int:
        """Delete cached NSX subnets of this kind whose owner no longer exists.

        The cache is read before the owners are listed, so a subnet created
        after the listing can never be mistaken for an orphan.
        """
        candidates: list[VpcSubnet] = [
            s
            for s in self.service.store.list()
            if s.tag_value(TAG_SCOPE_CR_TYPE) == self.cr_type
            and (
                not self.namespace
                or s.tag_value(TAG_SCOPE_NAMESPACE) == self.namespace
            )
        ]
        if not candidates:
            return 0

        live = {o.uid for o in self.specs.list(self.kind, self.namespace)}
        deleted = 0
        for subnet in candidates:
            if subnet.owner_uid in live:
                continue
            logger.info(
                f"Deleting NSX subnet {subnet.id} of vanished "
                f"{self.kind.value} {subnet.owner_uid}"
            )
            try:
                self.service.delete_subnet(subnet)
                deleted += 1
            except OperatorError as e:
                logger.error(f"Failed to delete orphaned subnet {subnet.id}: {e}")
        return deleted


class SubnetReconciler(Reconciler):
    """Reconciles Subnet objects, each owning exactly one NSX subnet."""

    kind = SpecKind.SUBNET
    cr_type = TAG_CR_TYPE_SUBNET

    def sync(self, obj: SpecObject) -> bool:
        _, changed = self.service.create_or_update_subnet(obj)
        return changed

    def cleanup(self, obj: SpecObject) -> None:
        self.service.delete_subnets_for(obj.uid)

    def ready_status(self, obj: SpecObject) -> SpecStatus:
        subnets = self.service.subnets_for(obj.uid)
        if not subnets:
            raise StoreConsistencyError(
                f"failed to get subnet from store for Subnet {obj.key}"
            )
        status = self._base_ready_status(
            obj, reason="NSX API returned 200 response code for PATCH"
        )
        status.ip_addresses = list(subnets[0].ip_addresses)
        status.nsx_resource_path = subnets[0].path
        return status


class SubnetSetReconciler(Reconciler):
    """Reconciles SubnetSet objects.

    A SubnetSet has no NSX object of its own. Its members are created
    lazily by allocate(); a reconcile only refreshes the members that
    already exist.
    """

    kind = SpecKind.SUBNETSET
    cr_type = TAG_CR_TYPE_SUBNETSET

    def sync(self, obj: SpecObject) -> bool:
        changed = False
        for subnet in self.service.subnets_for(obj.uid):
            _, written = self.service.create_or_update_subnet(obj, existing=subnet)
            changed = changed or written
        return changed

    def cleanup(self, obj: SpecObject) -> None:
        self.service.delete_subnets_for(obj.uid)

    def ready_status(self, obj: SpecObject) -> SpecStatus:
        status = self._base_ready_status(obj, reason="All subnets are ready")
        status.subnets = [
            SubnetInfo.from_subnet(s) for s in self.service.subnets_for(obj.uid)
        ]
        return status

    def allocate(self, namespace: str, name: str) -> VpcSubnet:
        """Pick a member subnet with free addresses, creating one if needed.

        Raises:
            ResourceNotFoundError: the SubnetSet does not exist
            OperatorError: the SubnetSet is being deleted
        """
        obj = self.specs.get(self.kind, namespace, name)
        if obj is None:
            raise ResourceNotFoundError(f"SubnetSet {namespace}/{name} not found")
        if obj.is_deleting:
            raise OperatorError(f"SubnetSet {obj.key} is being deleted")

        obj = self.ensure_finalizer(obj)
        subnet = self.service.get_available_subnet(obj)
        self._write_status(obj, self.ready_status(obj))
        return subnet
