"""Change detection between a cached and a freshly built NSX subnet.

Only fields that NSX lets the operator change after creation take part
in the comparison: id, display name, tags and advanced config. Subnet
size, access mode, addresses and DHCP config are fixed at creation and
backend-rendered fields such as path are owned by NSX.
"""

import hashlib
import json
from typing import Any

from models import VpcSubnet


def comparable(subnet: VpcSubnet) -> dict[str, Any]:
    """Project a subnet onto its mutable, backend-independent fields."""
    return {
        "id": subnet.id,
        "display_name": subnet.display_name,
        "tags": sorted([t.scope, t.tag] for t in subnet.tags),
        "advanced_config": (
            subnet.advanced_config.to_dict() if subnet.advanced_config else None
        ),
    }


def content_hash(subnet: VpcSubnet) -> str:
    """Digest of the comparable projection."""
    payload = json.dumps(comparable(subnet), sort_keys=True, separators=(",", ":"))
    return hashlib.sha1(payload.encode("utf-8")).hexdigest()


def is_changed(cached: VpcSubnet | None, desired: VpcSubnet) -> bool:
    """Return True when desired differs from what NSX already holds."""
    if cached is None:
        return True
    return content_hash(cached) != content_hash(desired)
