# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the Apache 2.0 License.
import json
import os
from dataclasses import dataclass, asdict
from enum import Enum

import ledgernet.crypto
import ledgernet.path

from loguru import logger as LOG

# Smallest validator set able to reach quorum
MIN_NODE_COUNT = 3

BASE_PORT_NETWORK = 34000
BASE_PORT_RPC = 40000
BASE_PORT_REST = 50000
BASE_PORT_EVENT = 60000

INITIAL_BALANCE_FAUCET = 10**33
INITIAL_BALANCE_VALIDATOR = 10**33
INITIAL_BALANCE_USER = 10**33
VALIDATOR_BASE_WEIGHT = 10**15

NODE_HOST = "127.0.0.1"


class InvalidInput(ValueError):
    pass


class NodeRole(Enum):
    GENESIS_ACTIVE = "genesis-active"
    ROTATION_RESERVE = "rotation-reserve"


class AccountType(Enum):
    FAUCET = "faucet"
    NODE = "node"
    USER = "user"


@dataclass(frozen=True)
class NodeAsset:
    node_id: int
    role: NodeRole
    path: str
    port_network: int
    port_rpc: int
    port_rest: int
    port_event: int
    stake_weight: int

    @property
    def keys_dir(self):
        return os.path.join(self.path, "keys")

    @property
    def config_dir(self):
        return os.path.join(self.path, "config")

    @property
    def logs_dir(self):
        return os.path.join(self.path, "logs")

    @property
    def sockets_dir(self):
        return os.path.join(self.path, "sockets")

    @property
    def config_path(self):
        return os.path.join(self.config_dir, "config.toml")

    @property
    def stdout_path(self):
        return os.path.join(self.logs_dir, "stdout.log")

    @property
    def stderr_path(self):
        return os.path.join(self.logs_dir, "stderr.log")

    @property
    def network_address(self):
        return f"{NODE_HOST}:{self.port_network}"

    @property
    def rpc_address(self):
        return f"http://{NODE_HOST}:{self.port_rpc}"

    @property
    def rest_address(self):
        return f"http://{NODE_HOST}:{self.port_rest}"

    def is_genesis(self):
        return self.role == NodeRole.GENESIS_ACTIVE

    def public_key_hex(self):
        return ledgernet.crypto.read_public_key_hex(self.keys_dir)


@dataclass(frozen=True)
class AccountAsset:
    account_type: AccountType
    account_id: int
    path: str
    initial_balance: int

    @property
    def secret_key_path(self):
        return os.path.join(self.path, ledgernet.crypto.SECRET_KEY_FILE)

    def public_key_hex(self):
        return ledgernet.crypto.read_public_key_hex(self.path)


def validate_counts(node_count, user_count, bootstrap_count, genesis_delay):
    if node_count < MIN_NODE_COUNT:
        raise InvalidInput(
            f"Invalid input: node count must be >= {MIN_NODE_COUNT} (got {node_count})"
        )
    for name, value in (
        ("user count", user_count),
        ("bootstrap count", bootstrap_count),
        ("genesis delay", genesis_delay),
    ):
        if value < 0:
            raise InvalidInput(f"Invalid input: {name} must be >= 0 (got {value})")


@dataclass(frozen=True)
class Network:
    """
    Configuration value of one network namespace. Passed explicitly to every
    component instead of being loaded into the calling environment.
    """

    net_id: int
    node_count: int
    user_count: int
    bootstrap_count: int
    genesis_delay: int
    chain_name: str
    home: str
    daemon: str = "local"
    genesis_timestamp: str = ""
    key_algorithm: str = ledgernet.crypto.KeyAlgorithm.ed25519.name

    def __post_init__(self):
        validate_counts(
            self.node_count, self.user_count, self.bootstrap_count, self.genesis_delay
        )

    @property
    def path(self):
        return ledgernet.path.get_path_to_net(self.home, self.net_id)

    @property
    def genesis_node_ids(self):
        return list(range(1, self.node_count + 1))

    @property
    def reserve_node_ids(self):
        return list(range(self.node_count + 1, 2 * self.node_count + 1))

    @property
    def all_node_ids(self):
        return self.genesis_node_ids + self.reserve_node_ids

    @property
    def bootstrap_node_ids(self):
        count = min(max(self.bootstrap_count, 1), self.node_count)
        return list(range(1, count + 1))

    def _port(self, base, node_id):
        return base + self.net_id * 100 + node_id

    def node(self, node_id) -> NodeAsset:
        if node_id not in self.all_node_ids:
            raise KeyError(f"Node {node_id} is not part of network {self.net_id}")
        genesis = node_id <= self.node_count
        return NodeAsset(
            node_id=node_id,
            role=NodeRole.GENESIS_ACTIVE if genesis else NodeRole.ROTATION_RESERVE,
            path=ledgernet.path.get_path_to_node(self.path, node_id),
            port_network=self._port(BASE_PORT_NETWORK, node_id),
            port_rpc=self._port(BASE_PORT_RPC, node_id),
            port_rest=self._port(BASE_PORT_REST, node_id),
            port_event=self._port(BASE_PORT_EVENT, node_id),
            stake_weight=VALIDATOR_BASE_WEIGHT + node_id if genesis else 0,
        )

    @property
    def nodes(self):
        return [self.node(node_id) for node_id in self.all_node_ids]

    @property
    def faucet(self) -> AccountAsset:
        return AccountAsset(
            AccountType.FAUCET,
            0,
            ledgernet.path.get_path_to_faucet(self.path),
            INITIAL_BALANCE_FAUCET,
        )

    def user(self, user_id) -> AccountAsset:
        if not 1 <= user_id <= self.user_count:
            raise KeyError(f"User {user_id} is not part of network {self.net_id}")
        return AccountAsset(
            AccountType.USER,
            user_id,
            ledgernet.path.get_path_to_user(self.path, user_id),
            INITIAL_BALANCE_USER,
        )

    @property
    def users(self):
        return [self.user(user_id) for user_id in range(1, self.user_count + 1)]

    def account(self, account_type, account_id=0):
        if account_type == AccountType.FAUCET:
            return self.faucet
        if account_type == AccountType.USER:
            return self.user(account_id)
        node = self.node(account_id)
        return AccountAsset(
            AccountType.NODE, account_id, node.keys_dir, INITIAL_BALANCE_VALIDATOR
        )

    def get_path_to_client(self):
        return ledgernet.path.get_path_to_bin(self.path, "casper-client")

    def get_path_to_node_binary(self):
        return ledgernet.path.get_path_to_bin(self.path, "casper-node")

    def exists(self):
        return os.path.isdir(self.path)

    def to_json(self):
        return asdict(self)

    @staticmethod
    def from_json(json_):
        return Network(**json_)

    def save(self):
        vars_path = ledgernet.path.get_path_to_vars(self.home, self.net_id)
        ledgernet.path.mk(vars_path, json.dumps(self.to_json(), indent=2))

    @staticmethod
    def load(home, net_id):
        vars_path = ledgernet.path.get_path_to_vars(home, net_id)
        if not os.path.isfile(vars_path):
            raise FileNotFoundError(
                f"Network {net_id} has not been set up under {home} (no {vars_path})"
            )
        with open(vars_path, encoding="utf-8") as f:
            network = Network.from_json(json.load(f))
        LOG.debug(f"Loaded network {network.net_id} from {vars_path}")
        return network


def chain_name(net_id):
    return f"net-{net_id}"
