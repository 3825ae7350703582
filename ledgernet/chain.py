# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the Apache 2.0 License.
from dataclasses import dataclass
from typing import Optional

import httpx

from loguru import logger as LOG

# Maximum duration after which a node's status endpoint is considered unreachable
DEFAULT_CLIENT_NODE_TIMEOUT_S = 3

STATUS_PATH = "/status"

# Key under which the status endpoint reports the node's latest block,
# depending on the node version
BLOCK_INFO_KEYS = ("last_added_block_info", "last_finalized_block")


@dataclass(frozen=True)
class ChainObservation:
    node_id: int
    era: Optional[int] = None
    last_finalized_block_hash: Optional[str] = None
    height: Optional[int] = None

    def is_available(self):
        return self.last_finalized_block_hash is not None


def parse_status(node_id, body):
    block = None
    for key in BLOCK_INFO_KEYS:
        block = body.get(key)
        if block:
            break
    if not block:
        return ChainObservation(node_id)
    era = block.get("era_id")
    height = block.get("height")
    return ChainObservation(
        node_id,
        era=int(era) if era is not None else None,
        last_finalized_block_hash=block.get("hash"),
        height=int(height) if height is not None else None,
    )


class ChainReader:
    """
    Samples a node's view of the chain through its REST status endpoint.
    Every call is a fresh observation: nothing is cached.
    """

    def __init__(self, network, timeout=DEFAULT_CLIENT_NODE_TIMEOUT_S):
        self.network = network
        self.timeout = timeout

    def observe(self, node_id) -> ChainObservation:
        """
        Returns the node's current era, last finalized block hash and height,
        or an empty observation if the node is unreachable or has not yet
        produced a block.
        """
        url = self.network.node(node_id).rest_address + STATUS_PATH
        try:
            r = httpx.get(url, timeout=self.timeout)
            r.raise_for_status()
            return parse_status(node_id, r.json())
        except (httpx.HTTPError, ValueError) as e:
            LOG.warning(f"Could not read chain status from node {node_id}: {e}")
            return ChainObservation(node_id)
