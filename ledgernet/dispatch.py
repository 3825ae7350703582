# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the Apache 2.0 License.
import time

from ledgernet.network import InvalidInput

from loguru import logger as LOG

ALL_NODES = "all"

DEFAULT_TRANSFER_AMOUNT = 1000000000
DEFAULT_TRANSFER_COUNT = 100
DEFAULT_TRANSFER_INTERVAL_S = 0.01
DEFAULT_GAS_PRICE = 10
DEFAULT_PAYMENT_AMOUNT = 200000


class Dispatcher:
    """
    Submits batches of native transfers from the faucet to a user account,
    either against a single node or round-robin across the active nodes.
    """

    def __init__(self, nodes, client):
        self.nodes = nodes
        self.client = client

    def _targets(self, target):
        if target == ALL_NODES:
            node_ids = list(self.nodes.active)
            if not node_ids:
                raise InvalidInput("Invalid input: no active node to dispatch to")
            return node_ids
        try:
            node_id = int(target)
        except (TypeError, ValueError):
            raise InvalidInput(
                f"Invalid input: dispatch target must be a node id or '{ALL_NODES}' (got {target})"
            ) from None
        self.nodes.network.node(node_id)
        return [node_id]

    def dispatch(
        self,
        target=1,
        amount=DEFAULT_TRANSFER_AMOUNT,
        count=DEFAULT_TRANSFER_COUNT,
        interval=DEFAULT_TRANSFER_INTERVAL_S,
        gas=DEFAULT_GAS_PRICE,
        payment=DEFAULT_PAYMENT_AMOUNT,
        user=1,
    ):
        """
        Sends `count` transfers one at a time, sleeping `interval` seconds
        after each one, and returns their deploy hashes in dispatch order. The
        first failed transfer aborts the batch.
        """
        if count < 0:
            raise InvalidInput(
                f"Invalid input: transfer count must be >= 0 (got {count})"
            )
        node_ids = self._targets(target)
        network = self.nodes.network
        faucet = network.faucet
        target_account = network.user(user).public_key_hex()

        LOG.info(
            f"Dispatching {count} transfers of {amount} to user {user} via nodes {node_ids}"
        )
        deploy_hashes = []
        for i in range(count):
            node_id = node_ids[i % len(node_ids)]
            result = self.client.transfer(
                node_id,
                amount,
                target_account,
                faucet.secret_key_path,
                gas,
                payment,
            )
            LOG.debug(
                f"Transfer #{i + 1} dispatched to node {node_id}: {result.deploy_hash}"
            )
            deploy_hashes.append(result.deploy_hash)
            time.sleep(interval)
        LOG.success(f"Dispatched {len(deploy_hashes)} transfers")
        return deploy_hashes
