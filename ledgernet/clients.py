# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the Apache 2.0 License.
import json
import re
from dataclasses import dataclass

import ledgernet.proc

from loguru import logger as LOG

DEFAULT_TTL = "1day"

DEPLOY_HASH_PATTERN = re.compile(r"^[0-9a-fA-F]{64}$")


class ClientError(Exception):
    def __init__(self, node_id, msg):
        super().__init__(msg)
        self.node_id = node_id


class DispatchError(ClientError):
    pass


@dataclass(frozen=True)
class TransferResult:
    node_id: int
    deploy_hash: str


def truncate(string: str, max_len: int = 256):
    if len(string) > max_len:
        return string[: max_len - 3] + "..."
    return string


class LedgerClient:
    """
    Runs the ledger's command line client against a node and parses its JSON
    output into typed results. All knowledge of the client's command line and
    output format is contained in this class.
    """

    def __init__(self, network):
        self.network = network

    def _call(self, node_id, command, *args, error=ClientError):
        result = ledgernet.proc.ccall(
            self.network.get_path_to_client(), command, *args, log_output=False
        )
        stdout = result.stdout.decode(errors="replace").strip()
        if result.returncode != 0:
            stderr = result.stderr.decode(errors="replace").strip()
            raise error(
                node_id,
                f"{command} on node {node_id} failed with return code {result.returncode}: {truncate(stderr or stdout)}",
            )
        try:
            response = json.loads(stdout)
        except ValueError as e:
            raise error(
                node_id,
                f"{command} on node {node_id} returned invalid JSON: {truncate(stdout)}",
            ) from e
        if not isinstance(response, dict):
            raise error(node_id, f"{command} on node {node_id} returned {response!r}")
        if response.get("error") is not None:
            raise error(
                node_id, f"{command} on node {node_id} failed: {response['error']}"
            )
        LOG.debug(f"{command} on node {node_id}: {truncate(stdout)}")
        return response.get("result") or {}

    def _field(self, node_id, result, name, error=ClientError):
        value = result.get(name)
        if value is None:
            raise error(
                node_id, f"Response from node {node_id} has no {name}: {result}"
            )
        return value

    def transfer(
        self,
        node_id,
        amount,
        target_account,
        secret_key_path,
        gas_price,
        payment_amount,
        ttl=DEFAULT_TTL,
    ) -> TransferResult:
        """
        Submits a native transfer to a node and returns once the node has
        accepted it.
        """
        result = self._call(
            node_id,
            "transfer",
            "--chain-name",
            self.network.chain_name,
            "--gas-price",
            gas_price,
            "--node-address",
            self.network.node(node_id).rpc_address,
            "--payment-amount",
            payment_amount,
            "--secret-key",
            secret_key_path,
            "--ttl",
            ttl,
            "--amount",
            amount,
            "--target-account",
            target_account,
            error=DispatchError,
        )
        deploy_hash = self._field(node_id, result, "deploy_hash", error=DispatchError)
        if not DEPLOY_HASH_PATTERN.match(str(deploy_hash)):
            raise DispatchError(
                node_id,
                f"Node {node_id} returned a malformed deploy hash: {deploy_hash}",
            )
        return TransferResult(node_id, deploy_hash)

    def get_state_root_hash(self, node_id):
        result = self._call(
            node_id,
            "get-state-root-hash",
            "--node-address",
            self.network.node(node_id).rpc_address,
        )
        return self._field(node_id, result, "state_root_hash")

    def get_balance(self, node_id, purse_uref, state_root_hash=None):
        state_root_hash = state_root_hash or self.get_state_root_hash(node_id)
        result = self._call(
            node_id,
            "get-balance",
            "--node-address",
            self.network.node(node_id).rpc_address,
            "--state-root-hash",
            state_root_hash,
            "--purse-uref",
            purse_uref,
        )
        return int(self._field(node_id, result, "balance_value"))

    def get_main_purse(self, node_id, public_key_hex, state_root_hash=None):
        state_root_hash = state_root_hash or self.get_state_root_hash(node_id)
        result = self._call(
            node_id,
            "query-state",
            "--node-address",
            self.network.node(node_id).rpc_address,
            "--state-root-hash",
            state_root_hash,
            "--key",
            public_key_hex,
        )
        account = self._field(node_id, result, "stored_value").get("Account") or {}
        return self._field(node_id, account, "main_purse")

    def get_account_balance(self, node_id, public_key_hex):
        """
        Reads the balance of an account's main purse at the node's current
        state root hash.
        """
        state_root_hash = self.get_state_root_hash(node_id)
        purse_uref = self.get_main_purse(node_id, public_key_hex, state_root_hash)
        return self.get_balance(node_id, purse_uref, state_root_hash)
