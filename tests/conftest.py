# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the Apache 2.0 License.

import itertools
import os
import sys
import time

import pytest

# Add the repository root to the path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import ledgernet.assets
import ledgernet.daemon
from ledgernet.chain import ChainObservation
from ledgernet.clients import DispatchError, TransferResult
from ledgernet.daemon import DaemonStatus


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now
        self.sleeps = []

    def time(self):
        return self.now

    def sleep(self, s):
        self.sleeps.append(s)
        self.now += s


class FakeDaemon(ledgernet.daemon.Daemon):
    """
    In-memory process supervisor. Nodes listed in fail_start never report
    RUNNING and nodes listed in fail_stop never report STOPPED.
    """

    NAME = "fake"

    def __init__(self, network, fail_start=(), fail_stop=()):
        super().__init__(network)
        self.statuses = {}
        self.fail_start = set(fail_start)
        self.fail_stop = set(fail_stop)
        self.calls = []

    def start(self, node_id, trusted_hash=None):
        self.calls.append(("start", node_id, trusted_hash))
        self._start(node_id)

    def _start(self, node_id):
        if node_id not in self.fail_start:
            self.statuses[node_id] = DaemonStatus.RUNNING

    def stop(self, node_id):
        self.calls.append(("stop", node_id))
        if node_id not in self.fail_stop:
            self.statuses[node_id] = DaemonStatus.STOPPED

    def status(self, node_id):
        return self.statuses.get(node_id, DaemonStatus.STOPPED)


class FakeChainReader:
    """
    Replays a scripted sequence of observations per node, repeating the last
    one once the script is exhausted. Unscripted nodes are unavailable.
    """

    def __init__(self, script=None):
        self.script = {k: list(v) for k, v in (script or {}).items()}
        self.calls = []

    def observe(self, node_id):
        self.calls.append(node_id)
        observations = self.script.get(node_id)
        if not observations:
            return ChainObservation(node_id)
        obs = observations.pop(0) if len(observations) > 1 else observations[0]
        if isinstance(obs, ChainObservation):
            return obs
        era, block_hash, height = obs
        return ChainObservation(node_id, era, block_hash, height)


class FakeClient:
    def __init__(self, fail_at=None, balances=None):
        self.fail_at = fail_at
        self.balances = balances or {}
        self.transfers = []
        self.balance_queries = []
        self._counter = itertools.count(1)

    def transfer(
        self,
        node_id,
        amount,
        target_account,
        secret_key_path,
        gas_price,
        payment_amount,
        ttl="1day",
    ):
        n = next(self._counter)
        if n == self.fail_at:
            raise DispatchError(node_id, f"Transfer {n} rejected by node {node_id}")
        self.transfers.append((node_id, amount, target_account, secret_key_path))
        return TransferResult(node_id, f"{n:064x}")

    def get_account_balance(self, node_id, public_key_hex):
        self.balance_queries.append((node_id, public_key_hex))
        return self.balances.get(public_key_hex, 0)


@pytest.fixture
def clock(monkeypatch):
    c = FakeClock()
    monkeypatch.setattr(time, "time", c.time)
    monkeypatch.setattr(time, "sleep", c.sleep)
    return c


@pytest.fixture
def home(tmp_path):
    return str(tmp_path / "home")


@pytest.fixture
def binary_dir(tmp_path):
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    for name in (
        ledgernet.assets.BINARIES
        + ledgernet.assets.SYSTEM_CONTRACTS
        + ledgernet.assets.CLIENT_CONTRACTS
    ):
        (bin_dir / name).write_text(f"fake {name}\n")
    return str(bin_dir)


@pytest.fixture
def network(home, binary_dir):
    return ledgernet.assets.generate(
        net_id=1,
        node_count=3,
        user_count=2,
        genesis_delay=0,
        home=home,
        binary_dir=binary_dir,
    )


@pytest.fixture
def daemon(network):
    return FakeDaemon(network)
