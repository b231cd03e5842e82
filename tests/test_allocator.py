"""Tests for lazy subnet allocation from a SubnetSet."""

import threading

import pytest

from fakes import FakeNSXClient, make_service, make_spec
from models import (
    RealizeTimeoutError,
    ResourceNotFoundError,
    SpecKind,
    Tag,
    VpcSubnet,
)


def _subnetset():
    return make_spec(kind=SpecKind.SUBNETSET, name="set1", uid="s1")


def _member(service, subnet_id: str, **fields) -> VpcSubnet:
    subnet = VpcSubnet(
        id=subnet_id,
        tags=(Tag("nsx-op/subnet_cr_uid", "s1"),),
        **fields,
    )
    service.store.add(subnet)
    return subnet


class TestGetAvailableSubnet:
    """Tests for SubnetService.get_available_subnet."""

    def test_returns_member_with_headroom(self):
        client = FakeNSXClient()
        service = make_service(client)
        _member(service, "full", ipv4_subnet_size=64)
        free = _member(service, "free", ipv4_subnet_size=64)
        client.pool_usage["full"] = [60]
        client.pool_usage["free"] = [0]

        assert service.get_available_subnet(_subnetset()) == free
        assert client.patches == []

    def test_first_fit_in_cache_order(self):
        client = FakeNSXClient()
        service = make_service(client)
        first = _member(service, "first", ipv4_subnet_size=64)
        _member(service, "second", ipv4_subnet_size=64)

        assert service.get_available_subnet(_subnetset()) == first
        assert ("get_ip_pool_usage", "second") not in client.calls

    def test_reserved_addresses_are_not_headroom(self):
        client = FakeNSXClient()
        service = make_service(client)
        _member(service, "almost", ipv4_subnet_size=64)
        client.pool_usage["almost"] = [59]

        assert service.get_available_subnet(_subnetset()).id == "almost"

        client.pool_usage["almost"] = [60]
        assert service.get_available_subnet(_subnetset()).id != "almost"

    def test_capacity_from_explicit_addresses(self):
        client = FakeNSXClient()
        service = make_service(client)
        _member(service, "small", ip_addresses=("10.0.0.0/29",))
        client.pool_usage["small"] = [4]

        # 8 addresses, 4 used, 4 reserved: nothing left
        chosen = service.get_available_subnet(_subnetset())

        assert chosen.id != "small"
        assert len(client.patches) == 1

    def test_creates_member_when_all_are_full(self):
        client = FakeNSXClient()
        service = make_service(client)
        _member(service, "a", ipv4_subnet_size=64)
        _member(service, "b", ipv4_subnet_size=64)
        client.pool_usage["a"] = [64]
        client.pool_usage["b"] = [62]

        chosen = service.get_available_subnet(_subnetset())

        assert chosen.id not in ("a", "b")
        assert chosen.owner_uid == "s1"
        assert chosen.path is not None
        assert len(client.patches) == 1
        assert ("list_realized_entities", chosen.path) in client.calls
        assert [s.id for s in service.subnets_for("s1")] == ["a", "b", chosen.id]

    def test_creates_first_member_of_empty_set(self):
        client = FakeNSXClient()
        service = make_service(client)

        chosen = service.get_available_subnet(_subnetset())

        assert chosen.tag_value("nsx-op/subnet_cr_type") == "subnetset"
        assert service.subnets_for("s1") == [chosen]

    def test_concurrent_requests_create_one_member(self):
        client = FakeNSXClient()
        service = make_service(client)
        results = []

        def worker():
            results.append(service.get_available_subnet(_subnetset()))

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(client.patches) == 1
        assert len({s.id for s in results}) == 1

    def test_member_without_pool_is_skipped(self):
        client = FakeNSXClient()
        service = make_service(client)
        _member(service, "broken", ipv4_subnet_size=64)
        ok = _member(service, "ok", ipv4_subnet_size=64)
        real_usage = client.get_ip_pool_usage

        def usage(vpc, subnet_id, pool_id):
            if subnet_id == "broken":
                raise ResourceNotFoundError("no pool")
            return real_usage(vpc, subnet_id, pool_id)

        client.get_ip_pool_usage = usage  # type: ignore[method-assign]

        assert service.get_available_subnet(_subnetset()) == ok

    def test_pending_member_is_retried_before_reuse(self):
        client = FakeNSXClient()
        client.realized = False
        service = make_service(client, realize_timeout=0.05)

        with pytest.raises(RealizeTimeoutError):
            service.get_available_subnet(_subnetset())
        [pending] = service.subnets_for("s1")

        client.realized = True
        chosen = service.get_available_subnet(_subnetset())

        assert chosen.id == pending.id
        assert chosen.ip_addresses
        assert len(client.patches) == 2
        assert not service.is_pending(pending.id)
        assert [s.id for s in service.subnets_for("s1")] == [pending.id]
