# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the Apache 2.0 License.
import argparse
import os
import sys

import ledgernet.daemon
import ledgernet.dispatch
import ledgernet.path
from ledgernet.network import InvalidInput

from loguru import logger as LOG

LOG_FORMAT = "<green>{time:HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"

DEFAULT_TIMEOUT_S = 300

# Arguments accepted by each operation, with their default values. Values
# given on the command line are coerced to the type of the default.
OPERATION_DEFAULTS = {
    "setup": {
        "net": 1,
        "nodes": 5,
        "users": 5,
        "bootstraps": 1,
        "delay": 30,
        "chainspec": "",
        "algorithm": "ed25519",
    },
    "teardown": {"net": 1},
    "start": {"net": 1, "node": "all", "hash": ""},
    "stop": {"net": 1, "node": "all"},
    "rotate": {"net": 1, "out": 1, "in": 0, "hash": ""},
    "status": {"net": 1},
    "await-era": {"net": 1, "era": 1, "timeout": DEFAULT_TIMEOUT_S, "node": 0},
    "await-blocks": {
        "net": 1,
        "offset": 1,
        "timeout": DEFAULT_TIMEOUT_S,
        "node": 0,
    },
    "sync": {"net": 1, "nodes": "", "timeout": DEFAULT_TIMEOUT_S},
    "faulty": {"net": 1, "node": 1},
    "transfer": {
        "net": 1,
        "node": "1",
        "user": 1,
        "transfers": ledgernet.dispatch.DEFAULT_TRANSFER_COUNT,
        "amount": ledgernet.dispatch.DEFAULT_TRANSFER_AMOUNT,
        "interval": ledgernet.dispatch.DEFAULT_TRANSFER_INTERVAL_S,
        "gas": ledgernet.dispatch.DEFAULT_GAS_PRICE,
        "payment": ledgernet.dispatch.DEFAULT_PAYMENT_AMOUNT,
    },
    "balance": {"net": 1, "account": "user", "id": 1, "node": 0},
    "upgrade": {"net": 1, "version": "1.1.0", "era": 1},
    "scenario": {"file": "", "keep": False},
}

TRUE_VALUES = ("1", "true", "yes", "y")
FALSE_VALUES = ("0", "false", "no", "n")


def coerce(key, value, default):
    if isinstance(default, bool):
        if value.lower() in TRUE_VALUES:
            return True
        if value.lower() in FALSE_VALUES:
            return False
        raise InvalidInput(f"Invalid input: {key} must be a boolean (got {value})")
    try:
        return type(default)(value)
    except ValueError:
        raise InvalidInput(
            f"Invalid input: {key} must be of type {type(default).__name__} (got {value})"
        ) from None


def parse_kv_args(operation, kv_args):
    """
    Parses unordered key=value arguments against the operation's defaults.
    Unknown keys are ignored.
    """
    try:
        params = dict(OPERATION_DEFAULTS[operation])
    except KeyError:
        raise InvalidInput(f"Invalid input: unknown operation {operation}") from None
    for kv in kv_args:
        key, sep, value = kv.partition("=")
        if not sep or not key:
            raise InvalidInput(f"Invalid input: expected key=value, got {kv}")
        if key not in params:
            LOG.debug(f"Ignoring unknown argument {key} for {operation}")
            continue
        params[key] = coerce(key, value, OPERATION_DEFAULTS[operation][key])
    return params


def setup_logging(level="INFO"):
    LOG.remove()
    LOG.add(sys.stdout, format=LOG_FORMAT, level=level.upper())


def cli_args(add=lambda x: None, parser=None, argv=None):
    if parser is None:
        parser = argparse.ArgumentParser(
            formatter_class=argparse.ArgumentDefaultsHelpFormatter
        )
    parser.add_argument(
        "operation",
        help="Operation to run against the network",
        choices=list(OPERATION_DEFAULTS),
    )
    parser.add_argument(
        "args", help="Operation arguments, as key=value", nargs="*", default=[]
    )
    parser.add_argument(
        "--home",
        help=f"Harness installation root (defaults to ${ledgernet.path.HOME_ENV_VAR} or ./workspace)",
        default=None,
    )
    parser.add_argument(
        "-b",
        "--binary-dir",
        help="Path to the node and client binaries, and system contracts",
        default=".",
    )
    parser.add_argument(
        "--daemon",
        help="Process supervisor used to run nodes",
        default="local",
        choices=list(ledgernet.daemon.DAEMONS),
    )
    log_level_choices = ("trace", "debug", "info", "warning", "error")
    parser.add_argument(
        "--log-level",
        help="Harness log level",
        default="info",
        choices=log_level_choices,
    )
    add(parser)

    args = parser.parse_args(argv)
    setup_logging(args.log_level)

    args.home = os.path.abspath(args.home or ledgernet.path.default_home())
    args.binary_dir = os.path.abspath(args.binary_dir)
    args.params = parse_kv_args(args.operation, args.args)
    return args
