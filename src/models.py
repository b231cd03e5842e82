"""Domain models for the NSX subnet operator.

This module defines typed data structures for all operator concepts:
the CRD specs delivered by Kubernetes, the NSX backend representation
of a VPC subnet, status values and the exception hierarchy.
"""

import dataclasses
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal, NotRequired, TypedDict

from constants import TAG_SCOPE_CR_UID


# =============================================================================
# Enums for constrained values
# =============================================================================


class Phase(Enum):
    """Spec object lifecycle phase."""

    PENDING = "Pending"
    READY = "Ready"
    ERROR = "Error"
    FAILED = "Failed"
    DELETING = "Deleting"


class ConditionStatus(Enum):
    """Kubernetes condition status."""

    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


class AccessMode(Enum):
    """Subnet access mode."""

    PRIVATE = "Private"
    PUBLIC = "Public"


class SpecKind(Enum):
    """Kind of spec object handled by the reconcilers."""

    SUBNET = "Subnet"
    SUBNETSET = "SubnetSet"


class ReconcileResult(Enum):
    """Outcome of a single reconcile invocation."""

    SYNCED = "Synced"
    UNCHANGED = "Unchanged"
    FAILED = "Failed"
    DELETED = "Deleted"
    GONE = "Gone"
    NOT_FOUND = "NotFound"


# =============================================================================
# TypedDicts for CRD spec (external data from Kubernetes)
# =============================================================================


class DNSClientConfigSpec(TypedDict, total=False):
    """DNS client configuration from CRD."""

    dnsServersIPs: list[str]


class DHCPConfigSpec(TypedDict, total=False):
    """DHCP configuration from CRD."""

    enableDHCP: bool
    dhcpRelayConfigPath: str
    dhcpV4PoolSize: int
    dhcpV6PoolSize: int
    dnsClientConfig: DNSClientConfigSpec


class StaticIPAllocationSpec(TypedDict, total=False):
    """Static IP allocation settings from CRD."""

    enable: bool


class AdvancedConfigSpec(TypedDict, total=False):
    """Advanced subnet configuration from CRD."""

    staticIPAllocation: StaticIPAllocationSpec


class SubnetSpec(TypedDict, total=False):
    """Full Subnet CRD spec."""

    ipv4SubnetSize: int
    accessMode: Literal["Private", "Public"]
    ipAddresses: list[str]
    dhcpConfig: DHCPConfigSpec
    advancedConfig: AdvancedConfigSpec


class SubnetSetSpec(TypedDict, total=False):
    """Full SubnetSet CRD spec."""

    ipv4SubnetSize: int
    accessMode: Literal["Private", "Public"]
    dhcpConfig: DHCPConfigSpec
    advancedConfig: AdvancedConfigSpec


class SubnetPortSpec(TypedDict):
    """The parts of a SubnetPort spec the operator reads."""

    subnet: NotRequired[str]
    subnetSet: NotRequired[str]


# =============================================================================
# NSX backend representation
# =============================================================================


@dataclass(frozen=True)
class Tag:
    """NSX scope/tag pair."""

    scope: str
    tag: str

    def to_dict(self) -> dict[str, str]:
        """Convert to NSX API dict."""
        return {"scope": self.scope, "tag": self.tag}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Tag":
        """Create from NSX API dict."""
        return cls(scope=data.get("scope", ""), tag=data.get("tag", ""))


@dataclass(frozen=True)
class DhcpConfig:
    """DHCP settings of a VPC subnet."""

    enable_dhcp: bool = False
    dhcp_relay_config_path: str = ""
    dhcp_v4_pool_size: int = 0
    dhcp_v6_pool_size: int = 0
    dns_server_ips: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        """Convert to NSX API dict."""
        result: dict[str, Any] = {"enable_dhcp": self.enable_dhcp}
        if self.dhcp_relay_config_path:
            result["dhcp_relay_config_path"] = self.dhcp_relay_config_path
        if self.dhcp_v4_pool_size:
            result["dhcp_v4_pool_size"] = self.dhcp_v4_pool_size
        if self.dhcp_v6_pool_size:
            result["dhcp_v6_pool_size"] = self.dhcp_v6_pool_size
        if self.dns_server_ips:
            result["dns_client_config"] = {"dns_server_ips": list(self.dns_server_ips)}
        return result

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DhcpConfig":
        """Create from NSX API dict."""
        dns = data.get("dns_client_config") or {}
        return cls(
            enable_dhcp=bool(data.get("enable_dhcp", False)),
            dhcp_relay_config_path=data.get("dhcp_relay_config_path") or "",
            dhcp_v4_pool_size=int(data.get("dhcp_v4_pool_size") or 0),
            dhcp_v6_pool_size=int(data.get("dhcp_v6_pool_size") or 0),
            dns_server_ips=tuple(dns.get("dns_server_ips") or ()),
        )

    @classmethod
    def from_spec(cls, spec: DHCPConfigSpec | None) -> "DhcpConfig":
        """Create from the dhcpConfig section of a CRD spec."""
        spec = spec or {}
        dns = spec.get("dnsClientConfig") or {}
        return cls(
            enable_dhcp=bool(spec.get("enableDHCP", False)),
            dhcp_relay_config_path=spec.get("dhcpRelayConfigPath", ""),
            dhcp_v4_pool_size=int(spec.get("dhcpV4PoolSize", 0)),
            dhcp_v6_pool_size=int(spec.get("dhcpV6PoolSize", 0)),
            dns_server_ips=tuple(dns.get("dnsServersIPs", ())),
        )


@dataclass(frozen=True)
class AdvancedConfig:
    """Advanced settings of a VPC subnet."""

    static_ip_allocation: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Convert to NSX API dict."""
        return {"static_ip_allocation": {"enabled": self.static_ip_allocation}}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AdvancedConfig":
        """Create from NSX API dict."""
        allocation = data.get("static_ip_allocation") or {}
        return cls(static_ip_allocation=bool(allocation.get("enabled", False)))

    @classmethod
    def from_spec(cls, spec: AdvancedConfigSpec | None) -> "AdvancedConfig":
        """Create from the advancedConfig section of a CRD spec."""
        allocation = (spec or {}).get("staticIPAllocation") or {}
        return cls(static_ip_allocation=bool(allocation.get("enable", False)))


@dataclass(frozen=True)
class VpcSubnet:
    """NSX VPC subnet.

    Instances are immutable, so the cache and its callers can share them
    freely. Use dataclasses.replace() to derive a modified copy.
    """

    id: str
    display_name: str = ""
    tags: tuple[Tag, ...] = ()
    ipv4_subnet_size: int | None = None
    ip_addresses: tuple[str, ...] = ()
    access_mode: str | None = None
    dhcp_config: DhcpConfig | None = None
    advanced_config: AdvancedConfig | None = None
    path: str | None = None
    parent_path: str | None = None
    marked_for_delete: bool = False

    def tag_value(self, scope: str) -> str | None:
        """Return the value of the first tag with the given scope."""
        for tag in self.tags:
            if tag.scope == scope:
                return tag.tag
        return None

    @property
    def owner_uid(self) -> str | None:
        """UID of the spec object that owns this subnet."""
        return self.tag_value(TAG_SCOPE_CR_UID)

    def replace(self, **changes: Any) -> "VpcSubnet":
        """Return a copy with the given fields replaced."""
        return dataclasses.replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        """Convert to NSX API dict."""
        result: dict[str, Any] = {
            "resource_type": "VpcSubnet",
            "id": self.id,
            "display_name": self.display_name,
            "tags": [t.to_dict() for t in self.tags],
            "marked_for_delete": self.marked_for_delete,
        }
        if self.ipv4_subnet_size is not None:
            result["ipv4_subnet_size"] = self.ipv4_subnet_size
        if self.ip_addresses:
            result["ip_addresses"] = list(self.ip_addresses)
        if self.access_mode is not None:
            result["access_mode"] = self.access_mode
        if self.dhcp_config is not None:
            result["dhcp_config"] = self.dhcp_config.to_dict()
        if self.advanced_config is not None:
            result["advanced_config"] = self.advanced_config.to_dict()
        if self.path:
            result["path"] = self.path
        if self.parent_path:
            result["parent_path"] = self.parent_path
        return result

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "VpcSubnet":
        """Create from NSX API dict."""
        dhcp = data.get("dhcp_config")
        advanced = data.get("advanced_config")
        size = data.get("ipv4_subnet_size")
        return cls(
            id=data["id"],
            display_name=data.get("display_name", ""),
            tags=tuple(Tag.from_dict(t) for t in data.get("tags") or ()),
            ipv4_subnet_size=int(size) if size is not None else None,
            ip_addresses=tuple(data.get("ip_addresses") or ()),
            access_mode=data.get("access_mode"),
            dhcp_config=DhcpConfig.from_dict(dhcp) if dhcp is not None else None,
            advanced_config=(
                AdvancedConfig.from_dict(advanced) if advanced is not None else None
            ),
            path=data.get("path"),
            parent_path=data.get("parent_path"),
            marked_for_delete=bool(data.get("marked_for_delete", False)),
        )


@dataclass(frozen=True)
class IPPoolUsage:
    """Usage counters of a subnet's IP pool."""

    total_ips: int = 0
    allocated_ip_allocations: int = 0
    available_ips: int = 0

    @classmethod
    def from_pool(cls, pool: Mapping[str, Any]) -> "IPPoolUsage":
        """Create from an NSX IP pool dict."""
        usage = pool.get("pool_usage") or {}
        return cls(
            total_ips=int(usage.get("total_ips", 0)),
            allocated_ip_allocations=int(usage.get("allocated_ip_allocations", 0)),
            available_ips=int(usage.get("available_ips", 0)),
        )


@dataclass(frozen=True)
class VPCInfo:
    """Locator of the VPC a backend resource lives in."""

    org_id: str
    project_id: str
    vpc_id: str

    @classmethod
    def from_path(cls, path: str) -> "VPCInfo":
        """Parse /orgs/<org>/projects/<project>/vpcs/<vpc>/... into a locator."""
        parts = path.split("/")
        if (
            len(parts) < 7
            or parts[1] != "orgs"
            or parts[3] != "projects"
            or parts[5] != "vpcs"
            or not all(parts[i] for i in (2, 4, 6))
        ):
            raise ValueError(f"Not a VPC path: {path!r}")
        return cls(org_id=parts[2], project_id=parts[4], vpc_id=parts[6])

    @property
    def vpc_path(self) -> str:
        return f"/orgs/{self.org_id}/projects/{self.project_id}/vpcs/{self.vpc_id}"

    def subnet_path(self, subnet_id: str) -> str:
        """Intent path of a subnet in this VPC."""
        return f"{self.vpc_path}/subnets/{subnet_id}"


# =============================================================================
# Spec objects (Subnet, SubnetSet) as seen by the reconcilers
# =============================================================================


@dataclass(frozen=True)
class SpecObject:
    """A Subnet or SubnetSet custom object, tagged with its kind."""

    kind: SpecKind
    namespace: str
    name: str
    uid: str
    generation: int = 0
    resource_version: str = ""
    finalizers: tuple[str, ...] = ()
    deletion_timestamp: str | None = None
    spec: dict[str, Any] = field(default_factory=dict)
    status: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_body(cls, kind: SpecKind, body: Mapping[str, Any]) -> "SpecObject":
        """Create from a Kubernetes object body."""
        metadata = body.get("metadata") or {}
        return cls(
            kind=kind,
            namespace=metadata.get("namespace", ""),
            name=metadata.get("name", ""),
            uid=metadata.get("uid", ""),
            generation=int(metadata.get("generation") or 0),
            resource_version=metadata.get("resourceVersion", ""),
            finalizers=tuple(metadata.get("finalizers") or ()),
            deletion_timestamp=metadata.get("deletionTimestamp"),
            spec=dict(body.get("spec") or {}),
            status=dict(body.get("status") or {}),
        )

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"

    @property
    def is_deleting(self) -> bool:
        return self.deletion_timestamp is not None

    def has_finalizer(self, finalizer: str) -> bool:
        return finalizer in self.finalizers

    def ipv4_subnet_size(self, default: int) -> int:
        """Requested subnet size, falling back to the configured default."""
        return int(self.spec.get("ipv4SubnetSize") or default)

    @property
    def access_mode(self) -> str:
        return self.spec.get("accessMode") or AccessMode.PRIVATE.value

    @property
    def ip_addresses(self) -> tuple[str, ...]:
        return tuple(self.spec.get("ipAddresses") or ())

    @property
    def dhcp_config(self) -> DhcpConfig:
        return DhcpConfig.from_spec(self.spec.get("dhcpConfig"))

    @property
    def advanced_config(self) -> AdvancedConfig:
        return AdvancedConfig.from_spec(self.spec.get("advancedConfig"))


# =============================================================================
# Dataclasses for status
# =============================================================================


@dataclass(frozen=True)
class SubnetInfo:
    """Summary of one backend subnet, as published in SubnetSet status."""

    nsx_resource_path: str
    ip_addresses: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict for Kubernetes status."""
        return {
            "nsxResourcePath": self.nsx_resource_path,
            "ipAddresses": list(self.ip_addresses),
        }

    @classmethod
    def from_subnet(cls, subnet: VpcSubnet) -> "SubnetInfo":
        """Create from a cached backend subnet."""
        return cls(
            nsx_resource_path=subnet.path or "", ip_addresses=subnet.ip_addresses
        )


@dataclass(frozen=True)
class Condition:
    """Kubernetes-style condition."""

    type: str
    status: ConditionStatus
    reason: str = ""
    message: str = ""
    last_transition_time: str = ""

    def to_dict(self) -> dict[str, str]:
        """Convert to dict for Kubernetes status."""
        return {
            "type": self.type,
            "status": self.status.value,
            "reason": self.reason,
            "message": self.message,
            "lastTransitionTime": self.last_transition_time,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Condition":
        """Create from Kubernetes status dict."""
        try:
            status = ConditionStatus(data.get("status", "Unknown"))
        except ValueError:
            status = ConditionStatus.UNKNOWN
        return cls(
            type=data.get("type", ""),
            status=status,
            reason=data.get("reason", ""),
            message=data.get("message", ""),
            last_transition_time=data.get("lastTransitionTime", ""),
        )


@dataclass
class SpecStatus:
    """Status of a Subnet or SubnetSet resource."""

    phase: Phase = Phase.PENDING
    observed_generation: int | None = None
    conditions: list[Condition] = field(default_factory=list)
    ip_addresses: list[str] = field(default_factory=list)
    nsx_resource_path: str | None = None
    subnets: list[SubnetInfo] | None = None

    def to_dict(self) -> dict[str, object]:
        """Convert to dict for Kubernetes status."""
        result: dict[str, object] = {"phase": self.phase.value}
        if self.observed_generation is not None:
            result["observedGeneration"] = self.observed_generation
        if self.conditions:
            result["conditions"] = [c.to_dict() for c in self.conditions]
        if self.ip_addresses:
            result["ipAddresses"] = list(self.ip_addresses)
        if self.nsx_resource_path:
            result["nsxResourcePath"] = self.nsx_resource_path
        if self.subnets is not None:
            result["subnets"] = [s.to_dict() for s in self.subnets]
        return result

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SpecStatus":
        """Create from Kubernetes status dict."""
        try:
            phase = Phase(data.get("phase", "Pending"))
        except ValueError:
            phase = Phase.PENDING

        subnets = data.get("subnets")
        return cls(
            phase=phase,
            observed_generation=data.get("observedGeneration"),
            conditions=[Condition.from_dict(c) for c in data.get("conditions") or []],
            ip_addresses=list(data.get("ipAddresses") or []),
            nsx_resource_path=data.get("nsxResourcePath"),
            subnets=(
                [
                    SubnetInfo(
                        nsx_resource_path=s.get("nsxResourcePath", ""),
                        ip_addresses=tuple(s.get("ipAddresses") or ()),
                    )
                    for s in subnets
                ]
                if subnets is not None
                else None
            ),
        )

    def set_condition(
        self,
        condition_type: str,
        status: ConditionStatus,
        reason: str = "",
        message: str = "",
    ) -> None:
        """Set or update a condition.

        The transition time only moves when the condition status flips, so
        re-applying an identical outcome leaves the status unchanged.
        """
        from utils import now_iso

        for i, cond in enumerate(self.conditions):
            if cond.type == condition_type:
                transition_time = cond.last_transition_time
                if cond.status != status:
                    transition_time = now_iso()
                self.conditions[i] = Condition(
                    type=condition_type,
                    status=status,
                    reason=reason,
                    message=message,
                    last_transition_time=transition_time,
                )
                return

        self.conditions.append(
            Condition(
                type=condition_type,
                status=status,
                reason=reason,
                message=message,
                last_transition_time=now_iso(),
            )
        )


# =============================================================================
# Exceptions
# =============================================================================


class OperatorError(Exception):
    """Base exception for operator errors."""

    pass


class NSXAPIError(OperatorError):
    """Transient error communicating with the NSX API."""

    pass


class NSXRestrictionError(OperatorError):
    """NSX refused the requested configuration. Retrying cannot succeed."""

    pass


class ResourceNotFoundError(OperatorError):
    """A required NSX resource was not found."""

    pass


class RealizeTimeoutError(OperatorError):
    """A backend resource did not reach the realized state in time."""

    pass


class IPReleaseTimeoutError(OperatorError):
    """A subnet's IP pool did not drain in time."""

    pass


class StoreConsistencyError(OperatorError):
    """The subnet cache is missing an entry it should hold."""

    pass


class StoreInitializationError(OperatorError):
    """The subnet cache could not be populated from NSX."""

    pass


class ConfigurationError(OperatorError):
    """Invalid or missing configuration."""

    pass


class UnsupportedKindError(OperatorError, TypeError):
    """A kind-polymorphic function received a kind it does not handle."""

    pass
