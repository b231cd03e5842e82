"""Tests for building NSX subnets from spec objects."""

import pytest

from fakes import make_config, make_spec
from models import (
    AdvancedConfig,
    DhcpConfig,
    SpecKind,
    Tag,
    UnsupportedKindError,
    VpcSubnet,
)
from resources.builder import build_deletion, build_subnet, build_tags


class TestBuildSubnet:
    """Tests for build_subnet with Subnet objects."""

    def test_subnet_identity(self):
        subnet = build_subnet(make_spec(uid="u1"), make_config())

        assert subnet.id == "subnet_u1"
        assert subnet.display_name == "ns1-net1"
        assert subnet.marked_for_delete is False

    def test_subnet_tags_carry_exactly_one_owner_uid(self):
        subnet = build_subnet(make_spec(uid="u1"), make_config())

        uid_tags = [t for t in subnet.tags if t.scope == "nsx-op/subnet_cr_uid"]
        assert uid_tags == [Tag("nsx-op/subnet_cr_uid", "u1")]
        assert subnet.owner_uid == "u1"
        assert subnet.tag_value("nsx-op/cluster") == "cluster1"
        assert subnet.tag_value("nsx-op/namespace") == "ns1"
        assert subnet.tag_value("nsx-op/subnet_cr_name") == "net1"
        assert subnet.tag_value("nsx-op/subnet_cr_type") == "subnet"

    def test_spec_fields(self):
        obj = make_spec(
            spec={
                "ipv4SubnetSize": 32,
                "accessMode": "Public",
                "dhcpConfig": {
                    "enableDHCP": True,
                    "dnsClientConfig": {"dnsServersIPs": ["10.1.1.1"]},
                },
                "advancedConfig": {"staticIPAllocation": {"enable": True}},
            }
        )
        subnet = build_subnet(obj, make_config())

        assert subnet.ipv4_subnet_size == 32
        assert subnet.access_mode == "Public"
        assert subnet.dhcp_config == DhcpConfig(
            enable_dhcp=True, dns_server_ips=("10.1.1.1",)
        )
        assert subnet.advanced_config == AdvancedConfig(static_ip_allocation=True)

    def test_defaults(self):
        subnet = build_subnet(make_spec(spec={}), make_config(default_subnet_size=128))

        assert subnet.ipv4_subnet_size == 128
        assert subnet.access_mode == "Private"
        assert subnet.advanced_config == AdvancedConfig(static_ip_allocation=False)

    def test_explicit_addresses_replace_size(self):
        obj = make_spec(spec={"ipAddresses": ["10.0.0.0/28"]})
        subnet = build_subnet(obj, make_config())

        assert subnet.ip_addresses == ("10.0.0.0/28",)
        assert subnet.ipv4_subnet_size is None

    def test_existing_freezes_immutable_fields(self):
        cached = VpcSubnet(
            id="subnet_u1",
            ipv4_subnet_size=64,
            ip_addresses=("10.0.0.0/26",),
            access_mode="Private",
            dhcp_config=DhcpConfig(),
            path="/orgs/default/projects/default/vpcs/default/subnets/subnet_u1",
        )
        obj = make_spec(spec={"ipv4SubnetSize": 256, "accessMode": "Public"})
        subnet = build_subnet(obj, make_config(), existing=cached)

        assert subnet.ipv4_subnet_size == 64
        assert subnet.ip_addresses == ("10.0.0.0/26",)
        assert subnet.access_mode == "Private"
        assert subnet.path == cached.path
        assert subnet.owner_uid == "u1"


class TestBuildSubnetSetMember:
    """Tests for build_subnet with SubnetSet objects."""

    def test_new_members_get_random_ids(self):
        obj = make_spec(kind=SpecKind.SUBNETSET, name="set1", uid="s1")
        first = build_subnet(obj, make_config())
        second = build_subnet(obj, make_config())

        assert first.id.startswith("subnet_")
        assert first.id != second.id
        assert first.display_name.startswith("ns1-set1-")
        assert first.owner_uid == "s1"
        assert first.tag_value("nsx-op/subnet_cr_type") == "subnetset"

    def test_existing_member_keeps_its_id(self):
        obj = make_spec(kind=SpecKind.SUBNETSET, name="set1", uid="s1")
        cached = VpcSubnet(id="subnet_0123456789", ipv4_subnet_size=64)
        subnet = build_subnet(obj, make_config(), existing=cached)

        assert subnet.id == "subnet_0123456789"
        assert subnet.display_name == "ns1-set1-01234567"


class TestUnsupportedKind:
    """Kinds the builder does not know are rejected."""

    def test_build_subnet_rejects_unknown_kind(self):
        obj = make_spec(kind="SubnetPort")  # type: ignore[arg-type]

        with pytest.raises(UnsupportedKindError):
            build_subnet(obj, make_config())

    def test_unsupported_kind_is_a_type_error(self):
        obj = make_spec(kind="SubnetPort")  # type: ignore[arg-type]

        with pytest.raises(TypeError):
            build_tags(obj, "cluster1")


class TestBuildDeletion:
    """Tests for build_deletion."""

    def test_sets_marker_and_keeps_fields(self):
        cached = VpcSubnet(id="subnet_u1", ip_addresses=("10.0.0.0/26",))
        deletion = build_deletion(cached)

        assert deletion.marked_for_delete is True
        assert deletion.ip_addresses == cached.ip_addresses
        assert cached.marked_for_delete is False
