# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the Apache 2.0 License.
import os
import re
import time
from datetime import datetime, timedelta, timezone

from jinja2 import Environment, FileSystemLoader, select_autoescape

import ledgernet.crypto
import ledgernet.daemon
import ledgernet.network
import ledgernet.path
from ledgernet.network import Network, InvalidInput, validate_counts

from loguru import logger as LOG

BINARIES = ("casper-node", "casper-client")
SYSTEM_CONTRACTS = (
    "auction_install.wasm",
    "mint_install.wasm",
    "pos_install.wasm",
    "standard_payment_install.wasm",
)
CLIENT_CONTRACTS = (
    "add_bid.wasm",
    "delegate.wasm",
    "transfer_to_account_u512.wasm",
    "undelegate.wasm",
    "withdraw_bid.wasm",
)

DEFAULT_PROTOCOL_VERSION = "1.0.0"
DEFAULT_ERA_DURATION = "41seconds"
DEFAULT_MINIMUM_ERA_HEIGHT = 10

# Chain name baked into the upstream chainspec template
TEMPLATE_CHAIN_NAME = "casper-example"

NODE_CONFIG_TEMPLATE = "node_config.toml.jinja"
CHAINSPEC_TEMPLATE = "chainspec.toml.jinja"
SUPERVISORD_TEMPLATE = "supervisord.conf.jinja"

TEMPLATES_DIR = os.path.join(os.path.dirname(__file__), "templates")

TEARDOWN_TIMEOUT_S = 10


def render(template_name, **kwargs):
    loader = FileSystemLoader(TEMPLATES_DIR)
    t_env = Environment(
        loader=loader, autoescape=select_autoescape(), keep_trailing_newline=True
    )
    return t_env.get_template(template_name).render(**kwargs)


def genesis_timestamp(delay_s, now=None):
    now = now or datetime.now(timezone.utc)
    ts = now + timedelta(seconds=delay_s)
    return ts.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def substitute_chainspec(contents, chain_name, timestamp):
    contents = contents.replace(TEMPLATE_CHAIN_NAME, chain_name)
    contents = re.sub(
        r"^([A-Za-z0-9_]*timestamp) = .*$",
        lambda m: f"{m.group(1)} = '{timestamp}'",
        contents,
        flags=re.MULTILINE,
    )
    contents = contents.replace(
        "${BASEDIR}/target/wasm32-unknown-unknown/release/", "../bin/"
    )
    return contents.replace("${BASEDIR}/resources/local/", "./")


def _set_bin(network, binary_dir):
    bin_dir = ledgernet.path.get_path_to_bin(network.path)
    ledgernet.path.make_dirs(bin_dir)
    for name in BINARIES + SYSTEM_CONTRACTS + CLIENT_CONTRACTS:
        ledgernet.path.copy_file(os.path.join(binary_dir, name), bin_dir)
    for name in BINARIES:
        os.chmod(os.path.join(bin_dir, name), 0o755)


def _set_chainspec(network, chainspec_path=None):
    chainspec_dir = os.path.join(network.path, "chainspec")
    ledgernet.path.make_dirs(chainspec_dir)
    if chainspec_path is None:
        contents = render(
            CHAINSPEC_TEMPLATE,
            network=network,
            protocol_version=DEFAULT_PROTOCOL_VERSION,
            activation_point=network.genesis_timestamp,
            validator_slots=2 * network.node_count,
            era_duration=DEFAULT_ERA_DURATION,
            minimum_era_height=DEFAULT_MINIMUM_ERA_HEIGHT,
        )
    else:
        LOG.info(f"Using chainspec template {chainspec_path}")
        contents = substitute_chainspec(
            ledgernet.path.slurp_file(chainspec_path),
            network.chain_name,
            network.genesis_timestamp,
        )
    ledgernet.path.mk(ledgernet.path.get_path_to_chainspec(network.path), contents)
    ledgernet.path.mk(ledgernet.path.get_path_to_accounts(network.path), "")


def append_manifest_row(network, public_key_hex, balance, weight=0):
    with open(
        ledgernet.path.get_path_to_accounts(network.path), "a", encoding="utf-8"
    ) as f:
        f.write(f"{public_key_hex},{balance},{weight}\n")


def read_manifest(network):
    """
    Returns the genesis accounts ledger as a list of
    (public_key_hex, balance, stake_weight) tuples, in file order.
    """
    rows = []
    with open(
        ledgernet.path.get_path_to_accounts(network.path), encoding="utf-8"
    ) as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            key, balance, weight = line.split(",")
            rows.append((key, int(balance), int(weight)))
    return rows


def _new_keypair(network, dir_path):
    keypair = ledgernet.crypto.generate_keypair(
        ledgernet.crypto.KeyAlgorithm[network.key_algorithm]
    )
    ledgernet.crypto.write_keypair(dir_path, keypair)
    return keypair


def _set_faucet(network):
    faucet = network.faucet
    ledgernet.path.make_dirs(faucet.path)
    keypair = _new_keypair(network, faucet.path)
    append_manifest_row(network, keypair.public_key_hex, faucet.initial_balance)


def write_node_config(network, node_id, trusted_hash=None):
    node = network.node(node_id)
    known_addresses = [
        network.node(bootstrap_id).network_address
        for bootstrap_id in network.bootstrap_node_ids
    ]
    contents = render(
        NODE_CONFIG_TEMPLATE,
        network=network,
        node=node,
        host=ledgernet.network.NODE_HOST,
        known_addresses=known_addresses,
        trusted_hash=trusted_hash,
        chainspec_path=ledgernet.path.get_path_to_chainspec(network.path),
        secret_key_path=os.path.join(node.keys_dir, ledgernet.crypto.SECRET_KEY_FILE),
        storage_path=os.path.join(node.path, "storage"),
    )
    ledgernet.path.mk(node.config_path, contents)


def _set_node(network, node_id):
    node = network.node(node_id)
    ledgernet.path.make_dirs(
        node.config_dir, node.logs_dir, node.keys_dir, node.sockets_dir
    )
    keypair = _new_keypair(network, node.keys_dir)
    write_node_config(network, node_id)
    # Reserve nodes are bonded later on, they hold no genesis account
    if node.is_genesis():
        append_manifest_row(
            network,
            keypair.public_key_hex,
            ledgernet.network.INITIAL_BALANCE_VALIDATOR,
            node.stake_weight,
        )


def _set_nodes(network):
    # Assets are created for twice the genesis set so that nodes can be rotated in
    for node_id in network.all_node_ids:
        _set_node(network, node_id)


def _set_users(network):
    for user in network.users:
        ledgernet.path.make_dirs(user.path)
        keypair = _new_keypair(network, user.path)
        append_manifest_row(network, keypair.public_key_hex, user.initial_balance)


def _set_daemon(network):
    ledgernet.path.make_dirs(
        ledgernet.path.get_path_to_daemon(network.path, "config"),
        ledgernet.path.get_path_to_daemon(network.path, "logs"),
        ledgernet.path.get_path_to_daemon(network.path, "socket"),
    )
    ledgernet.daemon.get_daemon_class(network.daemon).setup(network)


def generate(
    net_id=1,
    node_count=5,
    user_count=5,
    bootstrap_count=1,
    genesis_delay=30,
    home=None,
    binary_dir=".",
    chainspec_path=None,
    daemon="local",
    key_algorithm="ed25519",
) -> Network:
    """
    Sets up the assets required to run an N node network: staged binaries,
    chainspec, genesis accounts ledger, faucet, node and user keys, and the
    daemon configuration.
    :param net_id: ordinal identifier of the network namespace
    :param node_count: number of genesis validators (>= 3). Twice as many
        nodes are created, the second half being held in reserve for rotation
    :param user_count: number of funded user accounts
    :param bootstrap_count: number of genesis nodes other nodes connect to first
    :param genesis_delay: delay (s) applied to the genesis timestamp
    :return: the Network configuration value
    """
    validate_counts(node_count, user_count, bootstrap_count, genesis_delay)
    ledgernet.daemon.get_daemon_class(daemon)
    if key_algorithm not in ledgernet.crypto.KeyAlgorithm.__members__:
        raise InvalidInput(f"Invalid input: unknown key algorithm {key_algorithm}")

    home = os.path.abspath(home or ledgernet.path.default_home())
    network = Network(
        net_id=net_id,
        node_count=node_count,
        user_count=user_count,
        bootstrap_count=bootstrap_count,
        genesis_delay=genesis_delay,
        chain_name=ledgernet.network.chain_name(net_id),
        home=home,
        daemon=daemon,
        genesis_timestamp=genesis_timestamp(genesis_delay),
        key_algorithm=key_algorithm,
    )

    if network.exists():
        teardown(home, net_id)
    ledgernet.path.make_dirs(network.path)

    LOG.info(f"net-{net_id}: asset setup begins ... please wait")
    LOG.info("... setting binaries")
    _set_bin(network, binary_dir)
    LOG.info("... setting chainspec")
    _set_chainspec(network, chainspec_path)
    LOG.info("... setting faucet")
    _set_faucet(network)
    LOG.info("... setting nodes")
    _set_nodes(network)
    LOG.info("... setting users")
    _set_users(network)
    LOG.info("... setting daemon")
    _set_daemon(network)
    network.save()
    LOG.success(f"net-{net_id}: asset setup complete")
    return network


def _wait_for_stopped(daemon, node_ids, timeout=TEARDOWN_TIMEOUT_S):
    end_time = time.time() + timeout
    while time.time() < end_time:
        node_ids = [
            node_id
            for node_id in node_ids
            if daemon.status(node_id) != ledgernet.daemon.DaemonStatus.STOPPED
        ]
        if not node_ids:
            return
        time.sleep(1)
    LOG.warning(f"Nodes {node_ids} still running after {timeout}s, removing assets")


def teardown(home, net_id):
    """
    Stops every node of a network and deletes its asset tree. Does nothing
    if the network was never set up.
    """
    net_path = ledgernet.path.get_path_to_net(home, net_id)
    if not os.path.isdir(net_path):
        LOG.debug(f"net-{net_id}: nothing to tear down at {net_path}")
        return

    LOG.info(f"net-{net_id}: tearing down assets")
    try:
        network = Network.load(home, net_id)
    except (FileNotFoundError, ValueError, TypeError):
        LOG.warning(f"net-{net_id}: no readable network vars, skipping node shutdown")
        network = None

    if network is not None:
        daemon = ledgernet.daemon.get_daemon(network)
        stopping = []
        for node_id in network.all_node_ids:
            try:
                if daemon.status(node_id) != ledgernet.daemon.DaemonStatus.STOPPED:
                    daemon.stop(node_id)
                    stopping.append(node_id)
            except Exception:
                LOG.exception(f"Failed to stop node {node_id} cleanly")
        try:
            _wait_for_stopped(daemon, stopping)
        except Exception:
            LOG.exception("Failed to confirm that nodes stopped")
        try:
            daemon.shutdown()
        except Exception:
            LOG.exception(f"Failed to shut down {network.daemon} daemon cleanly")

    ledgernet.path.remove_dir(net_path)
    LOG.success(f"net-{net_id}: teardown complete")


def stage_upgrade(network, protocol_version, activation_era):
    """
    Stages a protocol upgrade on every node: a copy of the network chainspec
    carrying the new protocol version and activation era is written to the
    node's config/<version>/ directory, alongside the node config.
    """
    if activation_era < 0:
        raise InvalidInput(
            f"Invalid input: activation era must be >= 0 (got {activation_era})"
        )
    chainspec = ledgernet.path.slurp_file(
        ledgernet.path.get_path_to_chainspec(network.path)
    )
    chainspec = re.sub(
        r"^version = .*$",
        f"version = '{protocol_version}'",
        chainspec,
        count=1,
        flags=re.MULTILINE,
    )
    chainspec = re.sub(
        r"^activation_point = .*$",
        f"activation_point = {activation_era}",
        chainspec,
        count=1,
        flags=re.MULTILINE,
    )
    version_dir_name = protocol_version.replace(".", "_")
    staged = []
    for node in network.nodes:
        version_dir = os.path.join(node.config_dir, version_dir_name)
        ledgernet.path.make_dirs(version_dir)
        ledgernet.path.mk(os.path.join(version_dir, "chainspec.toml"), chainspec)
        ledgernet.path.mk(
            os.path.join(version_dir, "config.toml"),
            ledgernet.path.slurp_file(node.config_path),
        )
        staged.append(version_dir)
    LOG.info(
        f"net-{network.net_id}: staged upgrade to {protocol_version} at era {activation_era} on {len(staged)} nodes"
    )
    return staged
