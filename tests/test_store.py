"""Tests for the subnet cache."""

import threading

from models import Tag, VpcSubnet
from resources.store import SubnetStore


def _subnet(subnet_id: str, owner: str | None = "u1", **fields) -> VpcSubnet:
    tags = (Tag("nsx-op/cluster", "cluster1"),)
    if owner is not None:
        tags += (Tag("nsx-op/subnet_cr_uid", owner),)
    return VpcSubnet(id=subnet_id, tags=tags, **fields)


class TestSubnetStore:
    """Tests for SubnetStore."""

    def test_add_and_get_by_key(self):
        store = SubnetStore()
        subnet = _subnet("subnet_u1")
        store.add(subnet)

        assert store.get_by_key("subnet_u1") == subnet
        assert "subnet_u1" in store
        assert len(store) == 1

    def test_get_by_key_missing(self):
        assert SubnetStore().get_by_key("nope") is None

    def test_get_by_index_returns_owned_subnets_in_insertion_order(self):
        store = SubnetStore()
        store.add(_subnet("b", owner="set1"))
        store.add(_subnet("a", owner="set1"))
        store.add(_subnet("c", owner="other"))

        assert [s.id for s in store.get_by_index("set1")] == ["b", "a"]
        assert [s.id for s in store.get_by_index("other")] == ["c"]
        assert store.get_by_index("unknown") == []

    def test_overwrite_keeps_index_position(self):
        store = SubnetStore()
        store.add(_subnet("a", owner="set1"))
        store.add(_subnet("b", owner="set1"))
        store.add(_subnet("a", owner="set1", display_name="renamed"))

        owned = store.get_by_index("set1")
        assert [s.id for s in owned] == ["b", "a"]
        assert owned[1].display_name == "renamed"

    def test_owner_change_moves_index_entry(self):
        store = SubnetStore()
        store.add(_subnet("a", owner="u1"))
        store.add(_subnet("a", owner="u2"))

        assert store.get_by_index("u1") == []
        assert [s.id for s in store.get_by_index("u2")] == ["a"]

    def test_subnet_without_owner_is_not_indexed(self):
        store = SubnetStore()
        store.add(_subnet("a", owner=None))

        assert store.get_by_key("a") is not None
        assert store.get_by_index("") == []

    def test_delete(self):
        store = SubnetStore()
        subnet = _subnet("a")
        store.add(subnet)
        store.delete(subnet)

        assert store.get_by_key("a") is None
        assert store.get_by_index("u1") == []
        assert len(store) == 0

    def test_delete_missing_is_noop(self):
        store = SubnetStore()
        store.delete(_subnet("a"))

        assert len(store) == 0

    def test_operate_upserts_live_subnet(self):
        store = SubnetStore()
        store.operate(_subnet("a"))

        assert store.get_by_key("a") is not None

    def test_operate_removes_subnet_marked_for_delete(self):
        store = SubnetStore()
        subnet = _subnet("a")
        store.operate(subnet)
        store.operate(subnet.replace(marked_for_delete=True))

        assert store.get_by_key("a") is None
        assert store.get_by_index("u1") == []

    def test_list(self):
        store = SubnetStore()
        store.add(_subnet("a"))
        store.add(_subnet("b", owner="u2"))

        assert sorted(s.id for s in store.list()) == ["a", "b"]

    def test_concurrent_writers(self):
        store = SubnetStore()

        def worker(n: int):
            for i in range(50):
                store.add(_subnet(f"s-{n}-{i}", owner=f"owner-{n}"))
                if i % 2:
                    store.delete(_subnet(f"s-{n}-{i}", owner=f"owner-{n}"))

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(store) == 8 * 25
        for n in range(8):
            owned = store.get_by_index(f"owner-{n}")
            assert len(owned) == 25
            assert all(s.owner_uid == f"owner-{n}" for s in owned)
