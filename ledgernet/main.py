# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the Apache 2.0 License.
import sys

import ledgernet.assets
import ledgernet.e2e_args
import ledgernet.node
import ledgernet.scenario
from ledgernet.network import Network, InvalidInput

from loguru import logger as LOG


def _harness(args, params):
    network = Network.load(args.home, params["net"])
    harness = ledgernet.scenario.Harness(network)
    harness.nodes.refresh()
    return harness


def _node_ids(node):
    if node == "all":
        return None
    try:
        return [int(n) for n in node.split(",")]
    except ValueError:
        raise InvalidInput(
            f"Invalid input: node must be 'all' or node ids (got {node})"
        ) from None


def setup(args, params):
    ledgernet.assets.generate(
        net_id=params["net"],
        node_count=params["nodes"],
        user_count=params["users"],
        bootstrap_count=params["bootstraps"],
        genesis_delay=params["delay"],
        home=args.home,
        binary_dir=args.binary_dir,
        chainspec_path=params["chainspec"] or None,
        daemon=args.daemon,
        key_algorithm=params["algorithm"],
    )


def teardown(args, params):
    ledgernet.assets.teardown(args.home, params["net"])


def start(args, params):
    harness = _harness(args, params)
    trusted_hash = params["hash"] or None
    node_ids = _node_ids(params["node"])
    if node_ids is None:
        harness.nodes.start_all(trusted_hash)
        return
    for node_id in node_ids:
        harness.nodes.start_node(node_id, trusted_hash)


def stop(args, params):
    harness = _harness(args, params)
    node_ids = _node_ids(params["node"])
    if node_ids is None:
        harness.nodes.stop_all()
        return
    for node_id in node_ids:
        harness.nodes.stop_node(node_id)


def rotate(args, params):
    harness = _harness(args, params)
    harness.nodes.rotate(params["out"], params["in"], params["hash"] or None)


def status(args, params):
    harness = _harness(args, params)
    for node_id, state in harness.nodes.handles.items():
        obs = None
        if state.status == ledgernet.node.NodeState.RUNNING:
            obs = harness.reader.observe(node_id)
        LOG.info(
            f"node-{node_id}: {state.status.name}"
            + (
                f" era={obs.era} height={obs.height} lfb={obs.last_finalized_block_hash}"
                if obs is not None and obs.is_available()
                else ""
            )
        )
    LOG.info(f"Active nodes: {list(harness.nodes.active)}")


def await_era(args, params):
    harness = _harness(args, params)
    harness.barriers.await_era(
        params["era"], params["timeout"], params["node"] or None
    )


def await_blocks(args, params):
    harness = _harness(args, params)
    node_id = params["node"] or harness.nodes.get_node_for_dispatch()
    harness.barriers.await_n_blocks(node_id, params["offset"], params["timeout"])


def sync(args, params):
    harness = _harness(args, params)
    node_ids = (
        _node_ids(params["nodes"]) if params["nodes"] else None
    ) or list(harness.nodes.active)
    harness.barriers.check_network_sync(node_ids, params["timeout"])


def faulty(args, params):
    harness = _harness(args, params)
    if harness.barriers.check_faulty(params["node"]):
        LOG.warning(f"Node {params['node']} is faulty")
    else:
        LOG.info(f"Node {params['node']} is not faulty")


def transfer(args, params):
    harness = _harness(args, params)
    deploy_hashes = harness.dispatcher.dispatch(
        params["node"],
        amount=params["amount"],
        count=params["transfers"],
        interval=params["interval"],
        gas=params["gas"],
        payment=params["payment"],
        user=params["user"],
    )
    for deploy_hash in deploy_hashes:
        LOG.info(f"deploy hash: {deploy_hash}")


def balance(args, params):
    harness = _harness(args, params)
    harness.get_balance(params["account"], params["id"], params["node"] or None)


def upgrade(args, params):
    network = Network.load(args.home, params["net"])
    ledgernet.assets.stage_upgrade(network, params["version"], params["era"])


def run_scenario(args, params):
    if not params["file"]:
        raise InvalidInput("Invalid input: scenario requires file=<path>")
    s = ledgernet.scenario.Scenario.load(params["file"], keep=params["keep"])
    s.run(home=args.home, binary_dir=args.binary_dir, daemon=args.daemon)


OPERATIONS = {
    "setup": setup,
    "teardown": teardown,
    "start": start,
    "stop": stop,
    "rotate": rotate,
    "status": status,
    "await-era": await_era,
    "await-blocks": await_blocks,
    "sync": sync,
    "faulty": faulty,
    "transfer": transfer,
    "balance": balance,
    "upgrade": upgrade,
    "scenario": run_scenario,
}


def run(argv=None):
    args = ledgernet.e2e_args.cli_args(argv=argv)
    OPERATIONS[args.operation](args, args.params)


def main(argv=None):
    try:
        run(argv)
    except Exception as e:
        LOG.error(
            f"operation failed: error={type(e).__name__} node={getattr(e, 'node_id', None)} condition={e}"
        )
        sys.exit(1)


if __name__ == "__main__":
    main()
