"""In-memory cache of NSX subnets owned by the operator.

Entries are keyed by NSX subnet id, with a secondary index from the
owning spec object's UID (the nsx-op/subnet_cr_uid tag) to the ids of
the subnets it owns. One owner may hold many subnets (a SubnetSet), and
the index keeps them in insertion order.

Every backend-confirmed state change enters the cache through operate(),
which removes entries whose marked_for_delete flag is set and upserts
everything else.
"""

import logging
import threading

from metrics import CACHED_SUBNETS
from models import VpcSubnet

logger = logging.getLogger(__name__)


class SubnetStore:
    """Thread-safe subnet cache with an owner-UID index.

    VpcSubnet values are immutable, so the cache hands out the stored
    instances directly. Callers derive changed copies with replace().
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._items: dict[str, VpcSubnet] = {}
        self._index: dict[str, dict[str, None]] = {}

    def _unindex(self, subnet: VpcSubnet) -> None:
        """Drop a subnet from the owner index (must hold lock)."""
        owner = subnet.owner_uid
        if owner is None:
            return
        ids = self._index.get(owner)
        if ids is None:
            return
        ids.pop(subnet.id, None)
        if not ids:
            del self._index[owner]

    def add(self, subnet: VpcSubnet) -> None:
        """Insert or overwrite a subnet."""
        with self._lock:
            previous = self._items.get(subnet.id)
            if previous is not None:
                self._unindex(previous)
            self._items[subnet.id] = subnet
            owner = subnet.owner_uid
            if owner is not None:
                self._index.setdefault(owner, {})[subnet.id] = None
            CACHED_SUBNETS.set(len(self._items))

    def delete(self, subnet: VpcSubnet) -> None:
        """Remove a subnet. Removing an absent subnet is a no-op."""
        with self._lock:
            previous = self._items.pop(subnet.id, None)
            if previous is not None:
                self._unindex(previous)
            CACHED_SUBNETS.set(len(self._items))

    def operate(self, subnet: VpcSubnet) -> None:
        """Apply backend-confirmed state to the cache."""
        if subnet.marked_for_delete:
            logger.debug(f"Removing subnet {subnet.id} from cache")
            self.delete(subnet)
        else:
            logger.debug(f"Caching subnet {subnet.id}")
            self.add(subnet)

    def get_by_key(self, subnet_id: str) -> VpcSubnet | None:
        """Get a subnet by NSX id."""
        with self._lock:
            return self._items.get(subnet_id)

    def get_by_index(self, owner_uid: str) -> list[VpcSubnet]:
        """Get every subnet owned by a spec object, in insertion order."""
        with self._lock:
            ids = self._index.get(owner_uid, {})
            return [self._items[i] for i in ids]

    def list(self) -> list[VpcSubnet]:
        """Get every cached subnet."""
        with self._lock:
            return list(self._items.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def __contains__(self, subnet_id: object) -> bool:
        with self._lock:
            return subnet_id in self._items
