"""Hierarchical change sets for the NSX infra patch API.

A subnet write is sent as one request whose body mirrors the policy
tree, so NSX applies the subnet and its parent references atomically:

    Infra
    └── ChildResourceReference (Domain, id=<cluster>)
        └── ChildVpcSubnet (id=<subnet id>, marked_for_delete)
            └── VpcSubnet
"""

from typing import Any

from constants import (
    RESOURCE_TYPE_CHILD_REFERENCE,
    RESOURCE_TYPE_CHILD_SUBNET,
    RESOURCE_TYPE_DOMAIN,
    RESOURCE_TYPE_INFRA,
)
from models import VpcSubnet


def wrap_subnet(subnet: VpcSubnet) -> dict[str, Any]:
    """Wrap a subnet in its ChildVpcSubnet node."""
    return {
        "resource_type": RESOURCE_TYPE_CHILD_SUBNET,
        "id": subnet.id,
        "marked_for_delete": subnet.marked_for_delete,
        "VpcSubnet": subnet.to_dict(),
    }


def wrap_domain(cluster: str, children: list[dict[str, Any]]) -> dict[str, Any]:
    """Wrap child nodes in the cluster's domain reference."""
    return {
        "resource_type": RESOURCE_TYPE_CHILD_REFERENCE,
        "id": cluster,
        "target_type": RESOURCE_TYPE_DOMAIN,
        "children": children,
    }


def wrap_infra(children: list[dict[str, Any]]) -> dict[str, Any]:
    """Root node of a hierarchical change set."""
    return {"resource_type": RESOURCE_TYPE_INFRA, "children": children}


def wrap_hierarchy_subnet(subnet: VpcSubnet, cluster: str) -> dict[str, Any]:
    """Build the full change set for creating, updating or deleting a subnet."""
    return wrap_infra([wrap_domain(cluster, [wrap_subnet(subnet)])])
