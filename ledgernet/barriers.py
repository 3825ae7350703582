# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the Apache 2.0 License.
import os
import time

from loguru import logger as LOG

# How often barrier conditions are sampled
POLL_INTERVAL_S = 1

# Substring written to a node's stdout log once it detects an equivocation
FAULT_MARKER = "this validator is faulty"


class BarrierTimeoutError(TimeoutError):
    def __init__(self, node_id, msg):
        super().__init__(msg)
        self.node_id = node_id


class SyncTimeoutError(BarrierTimeoutError):
    pass


class Barriers:
    """
    Polling wait conditions over the cluster. Each barrier samples the chain
    state once per tick and either returns once its condition holds or raises
    once its timeout has elapsed. Nothing is retained between calls.
    """

    def __init__(self, nodes, reader, poll_interval_s=POLL_INTERVAL_S):
        self.nodes = nodes
        self.reader = reader
        self.poll_interval_s = poll_interval_s

    def await_era(self, target_era, timeout, node_id=None):
        """
        Waits until the designated node (lowest active node unless specified)
        reports exactly `target_era`. An era that is not yet available is
        retried.
        """
        end_time = time.time() + timeout
        era = None
        observed_node_id = node_id
        while time.time() < end_time:
            observed_node_id = node_id or self.nodes.get_node_for_dispatch()
            era = self.reader.observe(observed_node_id).era
            if era == target_era:
                LOG.success(f"Node {observed_node_id} reached era {target_era}")
                return era
            time.sleep(self.poll_interval_s)
        else:
            raise BarrierTimeoutError(
                observed_node_id,
                f"Timed out after {timeout}s waiting for era {target_era} (last era: {era})",
            )

    def await_n_eras(self, count, timeout, node_id=None):
        """
        Waits for `count` era changes from the era observed on the first
        available sample.
        """
        end_time = time.time() + timeout
        start_era = None
        era = None
        observed_node_id = node_id
        while time.time() < end_time:
            observed_node_id = node_id or self.nodes.get_node_for_dispatch()
            era = self.reader.observe(observed_node_id).era
            if era is not None:
                if start_era is None:
                    start_era = era
                    LOG.info(f"Awaiting {count} eras from era {start_era}")
                if era >= start_era + count:
                    LOG.success(f"Node {observed_node_id} reached era {era}")
                    return era
            time.sleep(self.poll_interval_s)
        else:
            raise BarrierTimeoutError(
                observed_node_id,
                f"Timed out after {timeout}s waiting for {count} eras from era {start_era} (last era: {era})",
            )

    def await_n_blocks(self, node_id, offset, timeout):
        """
        Waits until the node's height has grown by `offset` blocks from its
        height when the call is made.
        """
        if offset < 0:
            raise ValueError(f"Block offset must be >= 0 (got {offset})")
        if offset == 0:
            return None
        end_time = time.time() + timeout
        start_height = None
        height = None
        while time.time() < end_time:
            height = self.reader.observe(node_id).height
            if height is not None:
                if start_height is None:
                    start_height = height
                    LOG.info(
                        f"Node {node_id} at height {start_height}, awaiting height {start_height + offset}"
                    )
                elif height >= start_height + offset:
                    LOG.success(f"Node {node_id} reached height {height}")
                    return height
            time.sleep(self.poll_interval_s)
        else:
            raise BarrierTimeoutError(
                node_id,
                f"Timed out after {timeout}s waiting for {offset} blocks on node {node_id} (start height: {start_height}, last height: {height})",
            )

    def check_network_sync(self, node_set, timeout):
        """
        Waits until every node in `node_set` reports the same last finalized
        block hash as the pivot node, the lowest node id of the set.
        """
        node_ids = sorted(set(node_set))
        if not node_ids:
            raise ValueError("Cannot check sync of an empty node set")
        pivot = node_ids[0]
        LOG.info(f"Checking last finalized blocks of nodes {node_ids} are in sync")
        end_time = time.time() + timeout
        hashes = {}
        while time.time() < end_time:
            # All nodes are sampled within the same tick
            hashes = {
                node_id: self.reader.observe(node_id).last_finalized_block_hash
                for node_id in node_ids
            }
            pivot_hash = hashes[pivot]
            if pivot_hash is not None and all(
                h == pivot_hash for h in hashes.values()
            ):
                LOG.success(f"All nodes in sync at {pivot_hash}, proceeding...")
                return pivot_hash
            time.sleep(self.poll_interval_s)
        else:
            raise SyncTimeoutError(
                pivot,
                f"Failed to confirm network sync after {timeout}s: {hashes}",
            )

    def check_faulty(self, node_id):
        """
        Returns True if the node has logged the fault marker so far. A False
        result only means that the marker has not been logged yet.
        """
        out_path = self.nodes.network.node(node_id).stdout_path
        if not os.path.isfile(out_path):
            return False
        with open(out_path, "r", errors="replace", encoding="utf-8") as lines:
            for line in lines:
                if FAULT_MARKER in line:
                    LOG.warning(f"Node {node_id} is faulty: {line.rstrip()}")
                    return True
        return False
