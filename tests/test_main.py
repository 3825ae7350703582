# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the Apache 2.0 License.

import os

import pytest

import ledgernet.clients
import ledgernet.main
from ledgernet.network import AccountType, Network


def run(home, *argv):
    ledgernet.main.main(list(argv) + ["--home", home])


def test_setup_and_teardown(home, binary_dir):
    run(home, "setup", "net=2", "nodes=3", "users=1", "delay=0", "-b", binary_dir)
    network = Network.load(home, 2)
    assert network.node_count == 3
    assert network.user_count == 1
    assert network.chain_name == "net-2"

    run(home, "status", "net=2")
    run(home, "faulty", "net=2", "node=1")
    run(home, "upgrade", "net=2", "version=2.0.0", "era=5")
    assert os.path.isdir(os.path.join(network.node(6).config_dir, "2_0_0"))

    run(home, "teardown", "net=2")
    assert not network.exists()
    # Teardown of a missing network is a no-op
    run(home, "teardown", "net=2")


@pytest.mark.parametrize(
    "argv",
    [
        ["setup", "nodes=2"],
        ["status", "net=7"],
        ["scenario"],
        ["balance", "account=validator"],
    ],
)
def test_fatal_errors_exit_with_status_1(home, binary_dir, argv):
    with pytest.raises(SystemExit) as e:
        run(home, *argv, "-b", binary_dir)
    assert e.value.code == 1


def test_rotate_unknown_node(home, binary_dir):
    run(home, "setup", "nodes=3", "delay=0", "-b", binary_dir)
    with pytest.raises(SystemExit):
        run(home, "rotate", "out=1", "in=9")


def test_missing_scenario_file(home, tmp_path):
    with pytest.raises(SystemExit) as e:
        run(home, "scenario", f"file={tmp_path / 'missing.json'}")
    assert e.value.code == 1


def test_balance(home, binary_dir, monkeypatch):
    queries = []

    def get_account_balance(self, node_id, public_key_hex):
        queries.append((node_id, public_key_hex))
        return 7

    monkeypatch.setattr(
        ledgernet.clients.LedgerClient, "get_account_balance", get_account_balance
    )
    run(home, "setup", "nodes=3", "users=2", "delay=0", "-b", binary_dir)
    network = Network.load(home, 1)
    run(home, "balance", "id=2")
    run(home, "balance", "account=faucet", "node=3")
    run(home, "balance", "account=node", "id=2", "node=2")
    assert queries == [
        (1, network.user(2).public_key_hex()),
        (3, network.faucet.public_key_hex()),
        (2, network.account(AccountType.NODE, 2).public_key_hex()),
    ]
