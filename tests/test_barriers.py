# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the Apache 2.0 License.

import pytest

import ledgernet.path
from conftest import FakeChainReader
from ledgernet.barriers import (
    Barriers,
    BarrierTimeoutError,
    FAULT_MARKER,
    SyncTimeoutError,
)
from ledgernet.node import NodeManager

H1 = "11" * 32
H2 = "22" * 32


@pytest.fixture
def nodes(network, daemon, clock):
    nodes = NodeManager(network, daemon)
    nodes.start_all()
    return nodes


def barriers(nodes, script=None):
    reader = FakeChainReader(script)
    return Barriers(nodes, reader), reader


def test_await_era(nodes, clock):
    b, reader = barriers(
        nodes, {1: [(None, None, None), (1, H1, 5), (2, H2, 9)]}
    )
    assert b.await_era(2, timeout=10) == 2
    assert reader.calls == [1, 1, 1]
    assert clock.sleeps == [1, 1]


def test_await_era_zero_timeout(nodes, clock):
    b, reader = barriers(nodes, {1: [(2, H1, 1)]})
    with pytest.raises(BarrierTimeoutError):
        b.await_era(2, timeout=0)
    assert reader.calls == []
    assert clock.sleeps == []


def test_await_era_timeout(nodes, clock):
    b, reader = barriers(nodes, {1: [(1, H1, 1)]})
    with pytest.raises(TimeoutError) as e:
        b.await_era(2, timeout=5)
    assert e.value.node_id == 1
    assert len(reader.calls) == 5


def test_await_era_requires_exact_era(nodes, clock):
    b, _ = barriers(nodes, {1: [(1, H1, 1), (3, H2, 2)]})
    with pytest.raises(BarrierTimeoutError):
        b.await_era(2, timeout=5)


def test_await_era_follows_lowest_active_node(nodes, clock):
    nodes.stop_node(1)
    b, reader = barriers(nodes, {2: [(4, H1, 1)]})
    b.await_era(4, timeout=5)
    assert reader.calls == [2]


def test_await_era_on_explicit_node(nodes, clock):
    b, reader = barriers(nodes, {3: [(4, H1, 1)]})
    b.await_era(4, timeout=5, node_id=3)
    assert reader.calls == [3]


def test_await_n_eras(nodes, clock):
    b, _ = barriers(
        nodes, {1: [(None, None, None), (3, H1, 1), (4, H1, 2), (5, H2, 3)]}
    )
    assert b.await_n_eras(2, timeout=10) == 5


@pytest.mark.parametrize("timeout", [0, 10])
def test_await_zero_blocks(nodes, clock, timeout):
    b, reader = barriers(nodes)
    assert b.await_n_blocks(1, 0, timeout) is None
    assert reader.calls == []
    assert clock.sleeps == []


def test_await_negative_blocks(nodes, clock):
    b, _ = barriers(nodes)
    with pytest.raises(ValueError):
        b.await_n_blocks(1, -1, 10)


def test_await_n_blocks(nodes, clock):
    b, _ = barriers(
        nodes,
        {2: [(None, None, None), (1, H1, 10), (1, H1, 11), (1, H2, 12)]},
    )
    assert b.await_n_blocks(2, 2, timeout=10) == 12


def test_await_n_blocks_timeout(nodes, clock):
    b, _ = barriers(nodes, {2: [(1, H1, 10)]})
    with pytest.raises(BarrierTimeoutError) as e:
        b.await_n_blocks(2, 1, timeout=3)
    assert e.value.node_id == 2


def test_network_sync(nodes, clock):
    b, reader = barriers(nodes, {i: [(1, H1, 5)] for i in (1, 2, 3)})
    assert b.check_network_sync([1, 2, 3], timeout=10) == H1
    assert clock.sleeps == []
    # Sync is a pure check, repeating it gives the same result
    assert b.check_network_sync([1, 2, 3], timeout=10) == H1
    assert reader.calls == [1, 2, 3, 1, 2, 3]


def test_network_sync_converges(nodes, clock):
    b, reader = barriers(
        nodes,
        {
            1: [(1, H2, 6)],
            2: [(1, H2, 6)],
            3: [(1, H1, 5), (1, H2, 6)],
        },
    )
    assert b.check_network_sync([1, 2, 3], timeout=10) == H2
    # Every node is sampled on every tick
    assert reader.calls == [1, 2, 3, 1, 2, 3]
    assert clock.sleeps == [1]


def test_network_sync_pivot_is_lowest_node(nodes, clock):
    b, _ = barriers(nodes, {2: [(1, H2, 6)], 3: [(1, H2, 6)]})
    assert b.check_network_sync([3, 2], timeout=10) == H2


def test_network_sync_requires_pivot_hash(nodes, clock):
    b, _ = barriers(nodes)
    with pytest.raises(SyncTimeoutError) as e:
        b.check_network_sync([1, 2, 3], timeout=3)
    assert e.value.node_id == 1
    assert isinstance(e.value, TimeoutError)


def test_network_sync_zero_timeout(nodes, clock):
    b, reader = barriers(nodes, {i: [(1, H1, 5)] for i in (1, 2, 3)})
    with pytest.raises(SyncTimeoutError):
        b.check_network_sync([1, 2, 3], timeout=0)
    assert reader.calls == []


def test_network_sync_empty_set(nodes):
    b, _ = barriers(nodes)
    with pytest.raises(ValueError):
        b.check_network_sync([], timeout=10)


def test_check_faulty(network, nodes):
    b, _ = barriers(nodes)
    assert not b.check_faulty(1)

    stdout_path = network.node(1).stdout_path
    ledgernet.path.mk(stdout_path, '{"level":"INFO","message":"starting"}\n')
    assert not b.check_faulty(1)

    with open(stdout_path, "a", encoding="utf-8") as f:
        f.write(f'{{"level":"WARN","message":"{FAULT_MARKER}"}}\n')
    assert b.check_faulty(1)
    assert not b.check_faulty(2)
