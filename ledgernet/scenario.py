# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the Apache 2.0 License.
import json
from contextlib import contextmanager
from dataclasses import dataclass, field

import ledgernet.assets
import ledgernet.barriers
import ledgernet.chain
import ledgernet.clients
import ledgernet.dispatch
import ledgernet.node
from ledgernet.network import AccountType, InvalidInput

from loguru import logger as LOG

DEFAULT_BARRIER_TIMEOUT_S = 300


class CheckFailed(Exception):
    def __init__(self, node_id, msg):
        super().__init__(msg)
        self.node_id = node_id


class Harness:
    """
    Everything needed to drive one set up network: node lifecycle, chain
    observation, barriers and deploy dispatch.
    """

    def __init__(self, network, daemon=None, reader=None, client=None):
        self.network = network
        self.nodes = ledgernet.node.NodeManager(network, daemon)
        self.reader = reader or ledgernet.chain.ChainReader(network)
        self.barriers = ledgernet.barriers.Barriers(self.nodes, self.reader)
        self.client = client or ledgernet.clients.LedgerClient(network)
        self.dispatcher = ledgernet.dispatch.Dispatcher(self.nodes, self.client)

    def start_after_n_blocks(
        self, node_id, offset, timeout=DEFAULT_BARRIER_TIMEOUT_S, trusted_hash=None
    ):
        """
        Waits until the chain has grown by `offset` blocks, then starts a node
        trusting the latest finalized block of the lowest active node.
        """
        watched_id = self.nodes.get_node_for_dispatch()
        self.barriers.await_n_blocks(watched_id, offset, timeout)
        if trusted_hash is None:
            trusted_hash = self.reader.observe(watched_id).last_finalized_block_hash
        self.nodes.start_node(node_id, trusted_hash)

    def get_balance(self, account="user", account_id=1, node_id=None):
        """
        Reads the main purse balance of a faucet, node or user account, as
        seen by `node_id` (defaults to the lowest active node).
        """
        try:
            account_type = AccountType(account)
        except ValueError:
            raise InvalidInput(
                f"Invalid input: account must be one of {[t.value for t in AccountType]} (got {account})"
            ) from None
        asset = self.network.account(account_type, account_id)
        node_id = node_id or self.nodes.get_node_for_dispatch()
        balance = self.client.get_account_balance(node_id, asset.public_key_hex())
        LOG.info(f"{account}-{account_id} balance on node {node_id}: {balance}")
        return balance


@contextmanager
def scenario(
    net_id=1,
    node_count=5,
    user_count=5,
    bootstrap_count=1,
    genesis_delay=30,
    home=None,
    binary_dir=".",
    chainspec_path=None,
    daemon="local",
    keep=False,
    harness_factory=Harness,
):
    """
    Sets up a network, starts its genesis nodes and yields a Harness over it.
    The network is torn down on exit, unless `keep` is set.
    """
    network = ledgernet.assets.generate(
        net_id=net_id,
        node_count=node_count,
        user_count=user_count,
        bootstrap_count=bootstrap_count,
        genesis_delay=genesis_delay,
        home=home,
        binary_dir=binary_dir,
        chainspec_path=chainspec_path,
        daemon=daemon,
    )
    try:
        harness = harness_factory(network)
        harness.nodes.start_all()
        yield harness
    finally:
        if keep:
            LOG.warning(f"net-{network.net_id}: keeping network at {network.path}")
        else:
            ledgernet.assets.teardown(network.home, network.net_id)


def _node_ids(harness, node):
    if node == "all":
        return list(harness.nodes.active)
    return [int(node)]


def _start(harness, node, trusted_hash=None):
    for node_id in _node_ids(harness, node):
        harness.nodes.start_node(node_id, trusted_hash)


def _stop(harness, node):
    for node_id in _node_ids(harness, node):
        harness.nodes.stop_node(node_id)


def _rotate(harness, out, trusted_hash=None, **kwargs):
    # "in" is a keyword, it can only be given through kwargs
    if "in" not in kwargs:
        raise InvalidInput("Invalid input: rotate requires in=<node id>")
    harness.nodes.rotate(int(out), int(kwargs["in"]), trusted_hash)


def _start_after_n_blocks(
    harness, node, blocks, timeout=DEFAULT_BARRIER_TIMEOUT_S, trusted_hash=None
):
    harness.start_after_n_blocks(int(node), blocks, timeout, trusted_hash)


def _await_era(harness, era, timeout=DEFAULT_BARRIER_TIMEOUT_S, node=None):
    harness.barriers.await_era(era, timeout, node)


def _await_n_eras(harness, count, timeout=DEFAULT_BARRIER_TIMEOUT_S, node=None):
    harness.barriers.await_n_eras(count, timeout, node)


def _await_n_blocks(harness, blocks, timeout=DEFAULT_BARRIER_TIMEOUT_S, node=None):
    node_id = node or harness.nodes.get_node_for_dispatch()
    harness.barriers.await_n_blocks(node_id, blocks, timeout)


def _check_sync(harness, nodes=None, timeout=DEFAULT_BARRIER_TIMEOUT_S):
    harness.barriers.check_network_sync(nodes or list(harness.nodes.active), timeout)


def _check_faulty(harness, node, expect=False):
    faulty = harness.barriers.check_faulty(node)
    if faulty != expect:
        raise CheckFailed(
            node,
            f"Node {node} is {'' if faulty else 'not '}faulty, expected {expect}",
        )


def _transfer(harness, node=1, **kwargs):
    harness.dispatcher.dispatch(node, **kwargs)


def _balance(harness, account="user", id=1, node=None, minimum=None):
    node_id = int(node) if node else None
    balance = harness.get_balance(account, int(id), node_id)
    if minimum is not None and balance < int(minimum):
        raise CheckFailed(
            node_id or harness.nodes.get_node_for_dispatch(),
            f"Balance of {account}-{id} is {balance}, expected at least {minimum}",
        )


def _stage_upgrade(harness, version, era):
    ledgernet.assets.stage_upgrade(harness.network, version, era)


OPS = {
    "start": _start,
    "stop": _stop,
    "rotate": _rotate,
    "start_after_n_blocks": _start_after_n_blocks,
    "await_era": _await_era,
    "await_n_eras": _await_n_eras,
    "await_n_blocks": _await_n_blocks,
    "check_sync": _check_sync,
    "check_faulty": _check_faulty,
    "transfer": _transfer,
    "balance": _balance,
    "stage_upgrade": _stage_upgrade,
}


@dataclass
class Step:
    op: str
    params: dict = field(default_factory=dict)

    def __post_init__(self):
        if self.op not in OPS:
            raise InvalidInput(f"Invalid input: unknown scenario op {self.op}")

    def describe(self):
        args = " ".join(f"{k}={v}" for k, v in self.params.items())
        return f"{self.op} {args}".strip()

    @staticmethod
    def from_json(json_):
        params = dict(json_)
        try:
            op = params.pop("op")
        except KeyError:
            raise InvalidInput(
                f"Invalid input: scenario step without op: {json_}"
            ) from None
        return Step(op, params)


class Scenario:
    """
    Runs a list of steps, strictly in order, against a freshly set up network:
    setup, start of the genesis nodes, steps, then teardown. The first failing
    step aborts the run.
    """

    def __init__(self, steps, network_args=None, keep=False):
        self.steps = list(steps)
        self.network_args = network_args or {}
        self.keep = keep

    @staticmethod
    def load(path, **kwargs):
        """
        Reads a scenario from a JSON file, either a list of steps or an object
        with "steps" and an optional "network" table of setup arguments.
        """
        with open(path, encoding="utf-8") as f:
            scenario_json = json.load(f)
        if isinstance(scenario_json, list):
            scenario_json = {"steps": scenario_json}
        network_args = dict(scenario_json.get("network", {}))
        network_args.update(kwargs.pop("network_args", {}))
        return Scenario(
            [Step.from_json(s) for s in scenario_json.get("steps", [])],
            network_args=network_args,
            **kwargs,
        )

    def run_step(self, harness, n, step):
        LOG.info(f"STEP {n}: {step.describe()}")
        try:
            OPS[step.op](harness, **step.params)
        except Exception as e:
            LOG.error(
                f"step={n} op={step.op} node={getattr(e, 'node_id', step.params.get('node'))} condition={e}"
            )
            raise

    def run(self, **kwargs):
        network_args = dict(self.network_args)
        network_args.update(kwargs)
        with scenario(keep=self.keep, **network_args) as harness:
            for n, step in enumerate(self.steps, start=1):
                self.run_step(harness, n, step)
            LOG.success(f"Scenario complete: {len(self.steps)} steps passed")
            return harness
