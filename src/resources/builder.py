"""Build the NSX representation of Subnet and SubnetSet objects."""

import uuid

from config import OperatorConfig
from constants import (
    TAG_CR_TYPE_SUBNET,
    TAG_CR_TYPE_SUBNETSET,
    TAG_SCOPE_CLUSTER,
    TAG_SCOPE_CR_NAME,
    TAG_SCOPE_CR_TYPE,
    TAG_SCOPE_CR_UID,
    TAG_SCOPE_NAMESPACE,
)
from models import SpecKind, SpecObject, Tag, UnsupportedKindError, VpcSubnet


def subnet_id_for(obj: SpecObject) -> str:
    """NSX id of the single backend subnet owned by a Subnet object."""
    return f"subnet_{obj.uid}"


def new_subnetset_member_id() -> str:
    """Random NSX id for a new backend subnet owned by a SubnetSet."""
    return f"subnet_{uuid.uuid4()}"


def build_tags(obj: SpecObject, cluster: str) -> tuple[Tag, ...]:
    """Tags stamped on every backend subnet of a spec object.

    The nsx-op/subnet_cr_uid tag is the join key between the spec object
    and its backend subnets. It is always present exactly once.
    """
    if obj.kind is SpecKind.SUBNET:
        cr_type = TAG_CR_TYPE_SUBNET
    elif obj.kind is SpecKind.SUBNETSET:
        cr_type = TAG_CR_TYPE_SUBNETSET
    else:
        raise UnsupportedKindError(f"Unsupported spec kind: {obj.kind!r}")
    return (
        Tag(TAG_SCOPE_CLUSTER, cluster),
        Tag(TAG_SCOPE_NAMESPACE, obj.namespace),
        Tag(TAG_SCOPE_CR_NAME, obj.name),
        Tag(TAG_SCOPE_CR_UID, obj.uid),
        Tag(TAG_SCOPE_CR_TYPE, cr_type),
    )


def _build(
    obj: SpecObject, config: OperatorConfig, subnet_id: str, display_name: str
) -> VpcSubnet:
    ip_addresses = obj.ip_addresses
    return VpcSubnet(
        id=subnet_id,
        display_name=display_name,
        tags=build_tags(obj, config.cluster),
        ipv4_subnet_size=(
            None if ip_addresses else obj.ipv4_subnet_size(config.default_subnet_size)
        ),
        ip_addresses=ip_addresses,
        access_mode=obj.access_mode,
        dhcp_config=obj.dhcp_config,
        advanced_config=obj.advanced_config,
    )


def build_subnet(
    obj: SpecObject, config: OperatorConfig, existing: VpcSubnet | None = None
) -> VpcSubnet:
    """Build the desired NSX subnet for a spec object.

    Args:
        obj: Subnet or SubnetSet object
        config: Operator configuration (cluster, default size)
        existing: Cached subnet being refreshed. Its id is kept, and its
            immutable fields win over the spec.

    Raises:
        UnsupportedKindError: obj has a kind this builder does not know
    """
    if obj.kind is SpecKind.SUBNET:
        subnet_id = subnet_id_for(obj)
        display_name = f"{obj.namespace}-{obj.name}"
    elif obj.kind is SpecKind.SUBNETSET:
        subnet_id = existing.id if existing is not None else new_subnetset_member_id()
        suffix = subnet_id.removeprefix("subnet_")[:8]
        display_name = f"{obj.namespace}-{obj.name}-{suffix}"
    else:
        raise UnsupportedKindError(f"Unsupported spec kind: {obj.kind!r}")

    desired = _build(obj, config, subnet_id, display_name)
    if existing is not None:
        desired = freeze_immutable(desired, existing)
    return desired


def freeze_immutable(desired: VpcSubnet, cached: VpcSubnet) -> VpcSubnet:
    """Copy fields NSX fixes at creation time from the cached subnet.

    Also carries over the backend-rendered path so the result can be
    located without another read.
    """
    return desired.replace(
        ipv4_subnet_size=cached.ipv4_subnet_size,
        ip_addresses=cached.ip_addresses,
        access_mode=cached.access_mode,
        dhcp_config=cached.dhcp_config,
        path=cached.path,
        parent_path=cached.parent_path,
    )


def build_deletion(cached: VpcSubnet) -> VpcSubnet:
    """The last-known subnet with its deletion marker set."""
    return cached.replace(marked_for_delete=True)
