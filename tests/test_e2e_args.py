# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the Apache 2.0 License.

import os

import pytest

import ledgernet.e2e_args
import ledgernet.main
from ledgernet.e2e_args import OPERATION_DEFAULTS, parse_kv_args
from ledgernet.network import InvalidInput


def test_defaults():
    assert parse_kv_args("transfer", []) == OPERATION_DEFAULTS["transfer"]


def test_unordered_arguments_are_coerced():
    params = parse_kv_args("setup", ["users=2", "net=3", "nodes=4"])
    assert params["net"] == 3
    assert params["nodes"] == 4
    assert params["users"] == 2
    assert params["delay"] == OPERATION_DEFAULTS["setup"]["delay"]

    params = parse_kv_args("transfer", ["interval=0.5", "node=all"])
    assert params["interval"] == 0.5
    assert params["node"] == "all"


def test_unknown_keys_are_ignored():
    assert parse_kv_args("teardown", ["net=2", "colour=blue"]) == {"net": 2}


@pytest.mark.parametrize("value,expected", [("true", True), ("0", False)])
def test_boolean_arguments(value, expected):
    assert parse_kv_args("scenario", [f"keep={value}"])["keep"] is expected


@pytest.mark.parametrize(
    "operation,args",
    [
        ("setup", ["nodes=five"]),
        ("setup", ["nodes"]),
        ("scenario", ["keep=maybe"]),
        ("reboot", []),
    ],
)
def test_invalid_arguments(operation, args):
    with pytest.raises(InvalidInput):
        parse_kv_args(operation, args)


def test_defaults_are_not_shared():
    parse_kv_args("stop", ["node=2"])
    assert OPERATION_DEFAULTS["stop"]["node"] == "all"


def test_cli_args(tmp_path):
    args = ledgernet.e2e_args.cli_args(
        argv=["rotate", "out=2", "in=6", "--home", str(tmp_path), "--daemon", "docker"]
    )
    assert args.operation == "rotate"
    assert args.params == {"net": 1, "out": 2, "in": 6, "hash": ""}
    assert args.home == str(tmp_path)
    assert args.daemon == "docker"
    assert os.path.isabs(args.binary_dir)


def test_home_from_environment(tmp_path, monkeypatch):
    monkeypatch.setenv("LEDGERNET_HOME", str(tmp_path))
    args = ledgernet.e2e_args.cli_args(argv=["status"])
    assert args.home == str(tmp_path)


def test_every_operation_has_defaults():
    assert set(OPERATION_DEFAULTS) == set(ledgernet.main.OPERATIONS)
    assert parse_kv_args("balance", ["account=faucet", "node=2"]) == {
        "net": 1,
        "account": "faucet",
        "id": 1,
        "node": 2,
    }
