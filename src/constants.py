"""Constants used across the operator."""

# Kubernetes API coordinates of the watched custom resources
API_GROUP = "nsx.vmware.com"
API_VERSION = "v1alpha1"
SUBNET_PLURAL = "subnets"
SUBNETSET_PLURAL = "subnetsets"
SUBNETPORT_PLURAL = "subnetports"

# Finalizer guarding backend cleanup of Subnet and SubnetSet objects
SUBNET_FINALIZER = "subnet.nsx.vmware.com/finalizer"

# Annotation recording the backend subnet chosen for a SubnetPort
SUBNET_PATH_ANNOTATION = "nsx.vmware.com/subnet-path"

# Tag scopes stamped on every backend subnet created by the operator
TAG_SCOPE_CLUSTER = "nsx-op/cluster"
TAG_SCOPE_NAMESPACE = "nsx-op/namespace"
TAG_SCOPE_CR_NAME = "nsx-op/subnet_cr_name"
TAG_SCOPE_CR_UID = "nsx-op/subnet_cr_uid"
TAG_SCOPE_CR_TYPE = "nsx-op/subnet_cr_type"

TAG_CR_TYPE_SUBNET = "subnet"
TAG_CR_TYPE_SUBNETSET = "subnetset"

# Backend resource types used in the hierarchical patch
RESOURCE_TYPE_INFRA = "Infra"
RESOURCE_TYPE_CHILD_REFERENCE = "ChildResourceReference"
RESOURCE_TYPE_DOMAIN = "Domain"
RESOURCE_TYPE_CHILD_SUBNET = "ChildVpcSubnet"
RESOURCE_TYPE_SUBNET = "VpcSubnet"

# Realization
REALIZED_ENTITY_TYPE = "RealizedLogicalSwitch"
REALIZED_STATE = "REALIZED"

# Static IP pool every VPC subnet carries
STATIC_IP_POOL_ID = "static-ipv4-default"

# Network, gateway, DHCP server and broadcast addresses are never handed out
RESERVED_IP_COUNT = 4

# Condition type published on every spec object
CONDITION_READY = "Ready"

# Status error messages are truncated to this many characters
STATUS_MESSAGE_LIMIT = 200
