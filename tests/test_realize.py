"""Tests for the realization and IP release waiters."""

import threading
import time

import pytest

from fakes import VPC_PATH, FakeNSXClient
from models import (
    IPReleaseTimeoutError,
    RealizeTimeoutError,
    ResourceNotFoundError,
    VPCInfo,
)
from resources.realize import (
    delete_ip_allocations,
    wait_for_ip_release,
    wait_for_realization,
)

VPC = VPCInfo("default", "default", "default")
INTENT = f"{VPC_PATH}/subnets/subnet_u1"


def _poll_count(client: FakeNSXClient, name: str) -> int:
    return sum(1 for call, _ in client.calls if call == name)


class TestWaitForRealization:
    """Tests for wait_for_realization."""

    def test_returns_when_realized(self):
        client = FakeNSXClient()

        wait_for_realization(client, VPC, INTENT, timeout=1.0, interval=0.01)

        assert client.calls == [("list_realized_entities", INTENT)]

    def test_status_errors_keep_polling(self):
        client = FakeNSXClient()
        client.realize_errors = 2

        wait_for_realization(client, VPC, INTENT, timeout=1.0, interval=0.01)

        assert _poll_count(client, "list_realized_entities") == 3

    def test_times_out(self):
        client = FakeNSXClient()
        client.realized = False

        start = time.monotonic()
        with pytest.raises(RealizeTimeoutError):
            wait_for_realization(client, VPC, INTENT, timeout=0.1, interval=0.01)

        assert time.monotonic() - start < 1.0
        assert _poll_count(client, "list_realized_entities") > 1

    def test_stop_event_cancels_wait(self):
        client = FakeNSXClient()
        client.realized = False
        stop = threading.Event()
        stop.set()

        start = time.monotonic()
        with pytest.raises(RealizeTimeoutError):
            wait_for_realization(client, VPC, INTENT, timeout=30, interval=5, stop=stop)

        assert time.monotonic() - start < 1.0


class TestWaitForIPRelease:
    """Tests for wait_for_ip_release."""

    def test_deletes_allocations_then_waits_for_drain(self):
        client = FakeNSXClient()
        client.allocations["subnet_u1"] = [{"id": "a1"}, {"id": "a2"}]
        client.pool_usage["subnet_u1"] = [2, 1, 0]

        wait_for_ip_release(client, VPC, "subnet_u1", timeout=1.0, interval=0.01)

        names = [call for call, _ in client.calls]
        assert names == [
            "list_ip_allocations",
            "delete_ip_allocation",
            "delete_ip_allocation",
            "get_ip_pool_usage",
            "get_ip_pool_usage",
            "get_ip_pool_usage",
        ]
        assert client.allocations["subnet_u1"] == []

    def test_empty_pool_returns_immediately(self):
        client = FakeNSXClient()

        wait_for_ip_release(client, VPC, "subnet_u1", timeout=1.0, interval=0.01)

        assert _poll_count(client, "get_ip_pool_usage") == 1

    def test_times_out(self):
        client = FakeNSXClient()
        client.pool_usage["subnet_u1"] = [3]

        with pytest.raises(IPReleaseTimeoutError):
            wait_for_ip_release(client, VPC, "subnet_u1", timeout=0.1, interval=0.01)

    def test_zero_timeout_waits_until_drained(self):
        client = FakeNSXClient()
        client.pool_usage["subnet_u1"] = [1] * 20 + [0]

        wait_for_ip_release(client, VPC, "subnet_u1", timeout=0, interval=0.001)

        assert _poll_count(client, "get_ip_pool_usage") == 21

    def test_stop_event_cancels_wait(self):
        client = FakeNSXClient()
        client.pool_usage["subnet_u1"] = [1]
        stop = threading.Event()
        stop.set()

        with pytest.raises(IPReleaseTimeoutError):
            wait_for_ip_release(
                client, VPC, "subnet_u1", timeout=0, interval=5, stop=stop
            )

    def test_missing_pool_counts_as_released(self):
        client = FakeNSXClient()

        def missing(*args):
            raise ResourceNotFoundError("no pool")

        client.get_ip_pool_usage = missing  # type: ignore[method-assign]
        client.list_ip_allocations = missing  # type: ignore[method-assign]

        wait_for_ip_release(client, VPC, "subnet_u1", timeout=1.0, interval=0.01)


class TestDeleteIPAllocations:
    """Tests for delete_ip_allocations."""

    def test_returns_count(self):
        client = FakeNSXClient()
        client.allocations["subnet_u1"] = [{"id": "a1"}]

        assert delete_ip_allocations(client, VPC, "subnet_u1") == 1
        assert delete_ip_allocations(client, VPC, "subnet_u1") == 0
