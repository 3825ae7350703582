# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the Apache 2.0 License.
import bisect
import time
from dataclasses import dataclass
from enum import Enum, auto

import ledgernet.daemon
from ledgernet.daemon import DaemonStatus

from loguru import logger as LOG

# Number of status polls before a start or stop is declared failed
NODE_STATUS_RETRY_COUNT = 10

STATUS_POLL_INTERVAL_S = 1


class NodeState(Enum):
    STOPPED = auto()
    STARTING = auto()
    RUNNING = auto()
    UNKNOWN = auto()
    FAILED = auto()


class StartupFailed(Exception):
    def __init__(self, node_id, msg):
        super().__init__(msg)
        self.node_id = node_id


class ShutdownFailed(Exception):
    def __init__(self, node_id, msg):
        super().__init__(msg)
        self.node_id = node_id


@dataclass
class DaemonHandle:
    node_id: int
    daemon: ledgernet.daemon.Daemon
    status: NodeState = NodeState.STOPPED


class ActiveSet:
    """
    Ordered (ascending ordinal) collection of the nodes currently expected to
    take part in the network.
    """

    def __init__(self, node_ids=()):
        self._ids = sorted(set(node_ids))

    def add(self, node_id):
        if node_id not in self._ids:
            bisect.insort(self._ids, node_id)

    def discard(self, node_id):
        if node_id in self._ids:
            self._ids.remove(node_id)

    def lowest(self):
        if not self._ids:
            raise ValueError("No node is active")
        return self._ids[0]

    def __contains__(self, node_id):
        return node_id in self._ids

    def __iter__(self):
        return iter(list(self._ids))

    def __len__(self):
        return len(self._ids)

    def __repr__(self):
        return f"ActiveSet({self._ids})"


class NodeManager:
    """
    Drives node start, stop and rotation through the network's daemon and
    turns the daemon's raw status into verified lifecycle transitions.
    """

    def __init__(
        self,
        network,
        daemon=None,
        retry_count=NODE_STATUS_RETRY_COUNT,
        poll_interval_s=STATUS_POLL_INTERVAL_S,
    ):
        self.network = network
        self.daemon = daemon or ledgernet.daemon.get_daemon(network)
        self.retry_count = retry_count
        self.poll_interval_s = poll_interval_s
        self.handles = {
            node_id: DaemonHandle(node_id, self.daemon)
            for node_id in network.all_node_ids
        }
        self.active = ActiveSet(network.genesis_node_ids)

    def handle(self, node_id) -> DaemonHandle:
        try:
            return self.handles[node_id]
        except KeyError:
            raise KeyError(
                f"Node {node_id} is not part of network {self.network.net_id}"
            ) from None

    def state(self, node_id):
        return self.handle(node_id).status

    def _wait_for_status(self, node_id, expected):
        status = None
        for _ in range(self.retry_count):
            status = self.daemon.status(node_id)
            if status == expected:
                return True
            time.sleep(self.poll_interval_s)
        LOG.error(
            f"Node {node_id} did not reach {expected.value} after {self.retry_count} polls (last status: {status.value if status else None})"
        )
        return False

    def _start(self, node_id, trusted_hash=None):
        handle = self.handle(node_id)
        if handle.status == NodeState.FAILED:
            raise StartupFailed(node_id, f"Node {node_id} has already failed")
        if self.daemon.status(node_id) == DaemonStatus.RUNNING:
            LOG.info(f"Node {node_id} is already running")
            handle.status = NodeState.RUNNING
            return
        handle.status = NodeState.STARTING
        self.daemon.start(node_id, trusted_hash=trusted_hash)
        if not self._wait_for_status(node_id, DaemonStatus.RUNNING):
            handle.status = NodeState.FAILED
            self.active.discard(node_id)
            raise StartupFailed(node_id, f"Node {node_id} is not running")
        handle.status = NodeState.RUNNING
        LOG.info(f"Node {node_id} is running")

    def _stop(self, node_id):
        handle = self.handle(node_id)
        self.daemon.stop(node_id)
        if not self._wait_for_status(node_id, DaemonStatus.STOPPED):
            handle.status = NodeState.FAILED
            self.active.discard(node_id)
            raise ShutdownFailed(node_id, f"Node {node_id} is still running")
        handle.status = NodeState.STOPPED
        LOG.info(f"Node {node_id} stopped")

    def start_node(self, node_id, trusted_hash=None):
        """
        Starts a node and waits until its daemon reports it running.
        :param trusted_hash: block hash the node syncs from instead of genesis
        """
        self._start(node_id, trusted_hash)
        self.active.add(node_id)

    def stop_node(self, node_id):
        self._stop(node_id)
        self.active.discard(node_id)

    def rotate(self, out_id, in_id, trusted_hash=None):
        """
        Replaces an active node with a currently inactive (reserve) node. The
        outgoing node is stopped before the incoming node is started.
        """
        if out_id not in self.active:
            raise ValueError(f"Cannot rotate out node {out_id}: it is not active")
        if in_id in self.active:
            raise ValueError(f"Cannot rotate in node {in_id}: it is already active")
        self.handle(in_id)
        LOG.info(f"Rotating node {out_id} out and node {in_id} in")
        self._stop(out_id)
        self.active.discard(out_id)
        self._start(in_id, trusted_hash)
        self.active.add(in_id)
        LOG.success(
            f"Rotated node {out_id} -> {in_id}, active nodes: {list(self.active)}"
        )

    def start_all(self, trusted_hash=None):
        for node_id in self.network.genesis_node_ids:
            self.start_node(node_id, trusted_hash)
        LOG.success("All genesis nodes started")

    def stop_all(self):
        for node_id in self.network.all_node_ids:
            if self.daemon.status(node_id) != DaemonStatus.STOPPED:
                self.stop_node(node_id)
            else:
                self.handle(node_id).status = NodeState.STOPPED
        LOG.info("All nodes stopped")

    def refresh(self):
        """
        Rebuilds node states (and the active set) from the daemon, for use by a
        process that did not start the nodes itself.
        """
        running = []
        for node_id, handle in self.handles.items():
            status = self.daemon.status(node_id)
            if status == DaemonStatus.RUNNING:
                handle.status = NodeState.RUNNING
                running.append(node_id)
            elif status == DaemonStatus.STOPPED:
                handle.status = NodeState.STOPPED
            else:
                handle.status = NodeState.UNKNOWN
        if running:
            self.active = ActiveSet(running)
        return {node_id: h.status for node_id, h in self.handles.items()}

    def get_running_nodes(self):
        return [
            node_id
            for node_id, handle in self.handles.items()
            if handle.status == NodeState.RUNNING
        ]

    def get_node_for_dispatch(self):
        return self.active.lowest()
