"""Tests for SubnetService create/update/delete and cache population."""

import pytest

from fakes import VPC_PATH, FakeNSXClient, make_service, make_spec
from models import (
    NSXAPIError,
    RealizeTimeoutError,
    SpecKind,
    StoreInitializationError,
    Tag,
    VpcSubnet,
)
from resources.builder import build_subnet


def _raise(error):
    def fail(*args, **kwargs):
        raise error

    return fail


class TestInitialize:
    """Tests for cache population from NSX."""

    def test_loads_existing_subnets(self):
        client = FakeNSXClient()
        client.seed(
            VpcSubnet(id="subnet_u1", tags=(Tag("nsx-op/subnet_cr_uid", "u1"),))
        )
        service = make_service(client)

        service.initialize()

        assert service.store.get_by_key("subnet_u1") is not None
        assert [s.id for s in service.store.get_by_index("u1")] == ["subnet_u1"]
        assert client.calls == [("search_subnets", "cluster1")]

    def test_failure_is_fatal(self):
        client = FakeNSXClient()
        client.search_error = NSXAPIError("unreachable")
        service = make_service(client)

        with pytest.raises(StoreInitializationError) as exc_info:
            service.initialize()

        assert isinstance(exc_info.value.__cause__, NSXAPIError)

    def test_resync_upserts(self):
        client = FakeNSXClient()
        service = make_service(client)
        service.initialize()
        client.seed(VpcSubnet(id="late", tags=(Tag("nsx-op/subnet_cr_uid", "u9"),)))

        assert service.resync() == 1
        assert service.store.get_by_key("late") is not None


class TestCreateOrUpdateSubnet:
    """Tests for create_or_update_subnet."""

    def test_create(self):
        client = FakeNSXClient()
        service = make_service(client)

        subnet, changed = service.create_or_update_subnet(make_spec(uid="u1"))

        assert changed is True
        assert subnet.id == "subnet_u1"
        assert subnet.path == f"{VPC_PATH}/subnets/subnet_u1"
        assert len(client.patches) == 1
        assert [s.id for s in service.store.get_by_index("u1")] == ["subnet_u1"]
        names = [call for call, _ in client.calls]
        assert names == ["patch_infra", "list_realized_entities", "get_subnet"]

    def test_second_call_is_noop(self):
        client = FakeNSXClient()
        service = make_service(client)
        obj = make_spec(uid="u1")
        service.create_or_update_subnet(obj)

        subnet, changed = service.create_or_update_subnet(obj)

        assert changed is False
        assert subnet.id == "subnet_u1"
        assert len(client.patches) == 1

    def test_immutable_change_alone_is_noop(self):
        client = FakeNSXClient()
        service = make_service(client)
        service.create_or_update_subnet(make_spec(uid="u1"))

        _, changed = service.create_or_update_subnet(
            make_spec(uid="u1", spec={"ipv4SubnetSize": 256, "accessMode": "Public"})
        )

        assert changed is False
        assert len(client.patches) == 1

    def test_mutable_change_patches_with_frozen_fields(self):
        client = FakeNSXClient()
        service = make_service(client)
        service.create_or_update_subnet(make_spec(uid="u1"))

        obj = make_spec(
            uid="u1",
            spec={
                "ipv4SubnetSize": 256,
                "advancedConfig": {"staticIPAllocation": {"enable": True}},
            },
        )
        subnet, changed = service.create_or_update_subnet(obj)

        assert changed is True
        assert len(client.patches) == 2
        leaf = client.patched_subnets()[-1]["VpcSubnet"]
        assert leaf["ipv4_subnet_size"] == 64
        assert leaf["advanced_config"] == {"static_ip_allocation": {"enabled": True}}
        assert subnet.advanced_config.static_ip_allocation is True

    def test_realization_timeout_caches_pending_subnet(self):
        client = FakeNSXClient()
        client.realized = False
        service = make_service(client, realize_timeout=0.05)
        obj = make_spec(uid="u1")

        with pytest.raises(RealizeTimeoutError):
            service.create_or_update_subnet(obj)

        [pending] = service.store.get_by_index("u1")
        assert pending.id == "subnet_u1"
        assert pending.path == f"{VPC_PATH}/subnets/subnet_u1"
        assert service.is_pending("subnet_u1")

        client.realized = True
        subnet, changed = service.create_or_update_subnet(obj)

        assert changed is True
        assert len(client.patches) == 2
        assert subnet.ip_addresses
        assert not service.is_pending("subnet_u1")
        assert service.store.get_by_key("subnet_u1") == subnet

    def test_failed_read_back_caches_pending_subnet(self):
        client = FakeNSXClient()
        service = make_service(client)
        client.get_subnet = _raise(NSXAPIError("503"))  # type: ignore[method-assign]

        with pytest.raises(NSXAPIError):
            service.create_or_update_subnet(make_spec(uid="u1"))

        assert [s.id for s in service.subnets_for("u1")] == ["subnet_u1"]
        assert service.is_pending("subnet_u1")

    def test_unrealized_subnetset_member_is_deleted_with_owner(self):
        client = FakeNSXClient()
        client.realized = False
        service = make_service(client, realize_timeout=0.05)
        obj = make_spec(kind=SpecKind.SUBNETSET, name="set1", uid="s1")

        with pytest.raises(RealizeTimeoutError):
            service.get_available_subnet(obj)

        [member] = service.subnets_for("s1")
        assert member.id in client.subnets

        assert service.delete_subnets_for("s1") == 1
        assert client.subnets == {}
        assert service.subnets_for("s1") == []
        assert not service.is_pending(member.id)

    def test_subnetset_without_existing_creates_member(self):
        client = FakeNSXClient()
        service = make_service(client)
        obj = make_spec(kind=SpecKind.SUBNETSET, name="set1", uid="s1")

        first, _ = service.create_or_update_subnet(obj)
        second, _ = service.create_or_update_subnet(obj)

        assert first.id != second.id
        assert [s.id for s in service.subnets_for("s1")] == [first.id, second.id]


class TestDeleteSubnets:
    """Tests for delete_subnet and delete_subnets_for."""

    def test_drains_pool_before_delete_patch(self):
        client = FakeNSXClient()
        service = make_service(client)
        subnet, _ = service.create_or_update_subnet(make_spec(uid="u1"))
        client.allocations[subnet.id] = [{"id": "a1"}]
        client.pool_usage[subnet.id] = [1, 1, 0]
        client.calls.clear()

        assert service.delete_subnets_for("u1") == 1

        names = [call for call, _ in client.calls]
        assert names == [
            "list_ip_allocations",
            "delete_ip_allocation",
            "get_ip_pool_usage",
            "get_ip_pool_usage",
            "get_ip_pool_usage",
            "patch_infra",
        ]
        deletion = client.patched_subnets()[-1]
        assert deletion["marked_for_delete"] is True
        assert deletion["VpcSubnet"]["ip_addresses"] == list(subnet.ip_addresses)
        assert service.store.get_by_index("u1") == []
        assert subnet.id not in client.subnets

    def test_nothing_cached_is_noop(self):
        client = FakeNSXClient()
        service = make_service(client)

        assert service.delete_subnets_for("u1") == 0
        assert client.calls == []

    def test_deletes_every_member(self):
        client = FakeNSXClient()
        service = make_service(client)
        obj = make_spec(kind=SpecKind.SUBNETSET, name="set1", uid="s1")
        service.create_or_update_subnet(obj)
        service.create_or_update_subnet(obj)

        assert service.delete_subnets_for("s1") == 2
        assert service.subnets_for("s1") == []
        assert client.subnets == {}

    def test_failed_delete_patch_keeps_cache_entry(self):
        client = FakeNSXClient()
        service = make_service(client)
        service.create_or_update_subnet(make_spec(uid="u1"))
        client.patch_error = NSXAPIError("boom")

        with pytest.raises(NSXAPIError):
            service.delete_subnets_for("u1")

        assert [s.id for s in service.store.get_by_index("u1")] == ["subnet_u1"]

    def test_allocation_lock_is_held_and_kept(self):
        client = FakeNSXClient()
        service = make_service(client)
        service.store.add(
            VpcSubnet(
                id="m1", tags=(Tag("nsx-op/subnet_cr_uid", "s1"),), ipv4_subnet_size=64
            )
        )
        lock = service._allocation_lock("s1")
        held = []
        client.on_patch = lambda infra: held.append(lock.locked())

        assert service.delete_subnets_for("s1") == 1

        assert held == [True]
        assert not lock.locked()
        assert service._allocation_lock("s1") is lock


class TestVpcFor:
    """Tests for locating a subnet's VPC."""

    def test_uses_rendered_path(self):
        service = make_service()
        subnet = VpcSubnet(id="x", path="/orgs/o1/projects/p1/vpcs/v1/subnets/x")

        vpc = service.vpc_for(subnet)

        assert (vpc.org_id, vpc.project_id, vpc.vpc_id) == ("o1", "p1", "v1")

    def test_falls_back_to_configured_vpc(self):
        service = make_service(org_id="o2", project_id="p2", vpc_id="v2")

        assert service.vpc_for(None).vpc_path == "/orgs/o2/projects/p2/vpcs/v2"
        built = build_subnet(make_spec(), service.config)
        assert service.vpc_for(built) == service.vpc
