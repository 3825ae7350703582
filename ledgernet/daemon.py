# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the Apache 2.0 License.
import abc
import os
import re
import signal
import subprocess
from enum import Enum

import docker

import ledgernet.assets
import ledgernet.path
import ledgernet.proc
from ledgernet.network import InvalidInput

from loguru import logger as LOG

NODE_IMAGE_ENV_VAR = "LEDGERNET_NODE_IMAGE"
DEFAULT_NODE_IMAGE = "ubuntu:22.04"

# Identifier for all ledgernet containers
CONTAINERS_LABEL = "ledgernet"


class DaemonStatus(Enum):
    RUNNING = "RUNNING"
    STOPPED = "STOPPED"
    UNKNOWN = "UNKNOWN"


class Daemon(abc.ABC):
    """
    Start/stop/status capability over one process supervisor backend.

    start() and stop() only trigger a transition: whether it happened must be
    confirmed by polling status().
    """

    NAME = None

    def __init__(self, network):
        self.network = network

    @classmethod
    def setup(cls, network):
        """Writes backend specific artefacts under the network's daemon/ directory"""

    def start(self, node_id, trusted_hash=None):
        ledgernet.assets.write_node_config(self.network, node_id, trusted_hash)
        LOG.info(
            f"[{self.NAME}] starting node {node_id}"
            + (f" (trusted hash: {trusted_hash})" if trusted_hash else "")
        )
        self._start(node_id)

    @abc.abstractmethod
    def _start(self, node_id):
        pass

    @abc.abstractmethod
    def stop(self, node_id):
        pass

    @abc.abstractmethod
    def status(self, node_id) -> DaemonStatus:
        pass

    def shutdown(self):
        """Releases the supervisor itself once all nodes are stopped"""

    def node_cmd(self, node_id):
        return [
            self.network.get_path_to_node_binary(),
            "validator",
            self.network.node(node_id).config_path,
        ]


class LocalDaemon(Daemon):
    """
    Runs nodes as direct child processes. stdout and stderr are captured to
    the node's logs/ directory and the pid is recorded in its sockets/
    directory, so that status can be queried from another process.
    """

    NAME = "local"

    def __init__(self, network):
        super().__init__(network)
        self.procs = {}
        self.log_files = {}

    def _pid_path(self, node_id):
        return ledgernet.path.get_path_to_node_pid(self.network.path, node_id)

    def _read_pid(self, node_id):
        try:
            with open(self._pid_path(node_id), encoding="utf-8") as f:
                return int(f.read().strip())
        except (FileNotFoundError, ValueError):
            return None

    def _remove_pid(self, node_id):
        # Pid files only name live processes
        try:
            os.remove(self._pid_path(node_id))
        except FileNotFoundError:
            pass

    def _close_logs(self, node_id):
        for f in self.log_files.pop(node_id, []):
            f.close()

    def _start(self, node_id):
        if self.status(node_id) == DaemonStatus.RUNNING:
            LOG.warning(
                f"[{self.NAME}] node {node_id} is already running, not spawning"
            )
            return
        node = self.network.node(node_id)
        cmd = self.node_cmd(node_id)
        LOG.info(f"[{self.NAME}] {' '.join(cmd)}")
        self._close_logs(node_id)
        stdout = open(node.stdout_path, "ab")
        stderr = open(node.stderr_path, "ab")
        self.log_files[node_id] = [stdout, stderr]
        proc = subprocess.Popen(
            cmd,
            cwd=node.config_dir,
            stdout=stdout,
            stderr=stderr,
            start_new_session=True,
        )
        self.procs[node_id] = proc
        ledgernet.path.mk(self._pid_path(node_id), str(proc.pid))

    def stop(self, node_id):
        LOG.info(f"[{self.NAME}] stopping node {node_id}")
        proc = self.procs.get(node_id)
        if proc is not None:
            if proc.poll() is None:
                proc.terminate()
            return
        pid = self._read_pid(node_id)
        if pid is not None:
            try:
                os.kill(pid, signal.SIGTERM)
            except ProcessLookupError:
                pass

    def status(self, node_id):
        proc = self.procs.get(node_id)
        if proc is not None:
            if proc.poll() is None:
                return DaemonStatus.RUNNING
            self.procs.pop(node_id)
            self._close_logs(node_id)
            self._remove_pid(node_id)
            return DaemonStatus.STOPPED
        pid = self._read_pid(node_id)
        if pid is None:
            return DaemonStatus.STOPPED
        try:
            os.kill(pid, 0)
        except ProcessLookupError:
            self._remove_pid(node_id)
            return DaemonStatus.STOPPED
        except PermissionError:
            return DaemonStatus.UNKNOWN
        return DaemonStatus.RUNNING


class SupervisordDaemon(Daemon):
    """
    Delegates process control to a per-network supervisord instance, driven
    through supervisorctl.
    """

    NAME = "supervisord"
    CONFIG_FILE = "supervisord.conf"

    STATUS_MAP = {
        "RUNNING": DaemonStatus.RUNNING,
        "STOPPED": DaemonStatus.STOPPED,
        "EXITED": DaemonStatus.STOPPED,
        "FATAL": DaemonStatus.STOPPED,
        "BACKOFF": DaemonStatus.STOPPED,
    }

    @staticmethod
    def program_name(node_id):
        return f"node-{node_id}"

    @staticmethod
    def config_path(network):
        return os.path.join(
            ledgernet.path.get_path_to_daemon(network.path, "config"),
            SupervisordDaemon.CONFIG_FILE,
        )

    @staticmethod
    def socket_path(network):
        return os.path.join(
            ledgernet.path.get_path_to_daemon(network.path, "socket"),
            "supervisord.sock",
        )

    @classmethod
    def setup(cls, network):
        contents = ledgernet.assets.render(
            ledgernet.assets.SUPERVISORD_TEMPLATE,
            socket_path=cls.socket_path(network),
            log_path=os.path.join(
                ledgernet.path.get_path_to_daemon(network.path, "logs"),
                "supervisord.log",
            ),
            pid_path=os.path.join(
                ledgernet.path.get_path_to_daemon(network.path, "socket"),
                "supervisord.pid",
            ),
            program_prefix="node",
            node_binary=network.get_path_to_node_binary(),
            nodes=network.nodes,
        )
        ledgernet.path.mk(cls.config_path(network), contents)

    def _is_up(self):
        return os.path.exists(self.socket_path(self.network))

    def _ctl(self, *args):
        return ledgernet.proc.ccall(
            "supervisorctl", "-c", self.config_path(self.network), *args
        )

    def _ensure_up(self):
        if not self._is_up():
            LOG.info(
                f"[{self.NAME}] starting supervisord for net-{self.network.net_id}"
            )
            result = ledgernet.proc.ccall(
                "supervisord", "-c", self.config_path(self.network)
            )
            if result.returncode != 0:
                raise RuntimeError(
                    f"Could not start supervisord for net-{self.network.net_id}"
                )

    def _start(self, node_id):
        self._ensure_up()
        self._ctl("start", self.program_name(node_id))

    def stop(self, node_id):
        if self._is_up():
            self._ctl("stop", self.program_name(node_id))

    def status(self, node_id):
        if not self._is_up():
            return DaemonStatus.STOPPED
        result = self._ctl("status", self.program_name(node_id))
        return self.parse_status(result.stdout.decode(), self.program_name(node_id))

    @classmethod
    def parse_status(cls, output, program_name):
        for line in output.splitlines():
            tokens = line.split()
            if len(tokens) >= 2 and tokens[0] == program_name:
                return cls.STATUS_MAP.get(tokens[1], DaemonStatus.UNKNOWN)
        return DaemonStatus.UNKNOWN

    def shutdown(self):
        if self._is_up():
            self._ctl("shutdown")


class DockerDaemon(Daemon):
    """
    Runs each node in its own container. The network directory is mounted at
    the same path inside the container and the host network is shared, so
    node configs are identical to the local backend.
    """

    NAME = "docker"

    def __init__(self, network):
        super().__init__(network)
        self._client = None

    @property
    def client(self):
        if self._client is None:
            self._client = docker.DockerClient()
        return self._client

    def container_name(self, node_id):
        name = f"{CONTAINERS_LABEL}_{self.network.chain_name}_node-{node_id}"
        # Sanitise container name, replacing illegal characters with underscores
        return re.sub(r"[^a-zA-Z0-9_.-]", "_", name)

    def _get_container(self, node_id):
        try:
            return self.client.containers.get(self.container_name(node_id))
        except docker.errors.NotFound:
            return None

    def _create_container(self, node_id):
        node = self.network.node(node_id)
        image_name = os.getenv(NODE_IMAGE_ENV_VAR, DEFAULT_NODE_IMAGE)
        try:
            self.client.images.get(image_name)
        except docker.errors.ImageNotFound:
            LOG.info(f"Pulling image {image_name}")
            self.client.images.pull(image_name)
        command = (
            f'exec {" ".join(self.node_cmd(node_id))} '
            f"1>> {node.stdout_path} 2>> {node.stderr_path}"
        )
        container = self.client.containers.create(
            image_name,
            command=["sh", "-c", command],
            name=self.container_name(node_id),
            volumes={self.network.path: {"bind": self.network.path, "mode": "rw"}},
            working_dir=node.config_dir,
            network_mode="host",
            labels=[CONTAINERS_LABEL, self.network.chain_name],
            user=f"{os.getuid()}:{os.getgid()}",
            init=True,
            detach=True,
        )
        LOG.debug(f"Created container {container.name} [{image_name}]")
        return container

    def _start(self, node_id):
        container = self._get_container(node_id) or self._create_container(node_id)
        container.start()

    def stop(self, node_id):
        container = self._get_container(node_id)
        if container is None:
            return
        try:
            container.stop()
            LOG.info(f"Stopped container {container.name}")
        except docker.errors.NotFound:
            pass

    def status(self, node_id):
        container = self._get_container(node_id)
        if container is None:
            return DaemonStatus.STOPPED
        try:
            container.reload()
        except docker.errors.NotFound:
            return DaemonStatus.STOPPED
        state = container.attrs["State"]["Status"]
        if state == "running":
            return DaemonStatus.RUNNING
        if state in ("created", "exited", "dead"):
            return DaemonStatus.STOPPED
        return DaemonStatus.UNKNOWN

    def shutdown(self):
        for c in self.client.containers.list(
            all=True, filters={"label": [CONTAINERS_LABEL, self.network.chain_name]}
        ):
            try:
                c.stop()
                c.remove()
                LOG.info(f"Removed container {c.name}")
            except docker.errors.NotFound:
                pass


DAEMONS = {cls.NAME: cls for cls in (LocalDaemon, SupervisordDaemon, DockerDaemon)}


def get_daemon_class(name):
    try:
        return DAEMONS[name]
    except KeyError:
        raise InvalidInput(
            f"Invalid input: unknown daemon {name} (expected one of {', '.join(DAEMONS)})"
        ) from None


def get_daemon(network) -> Daemon:
    return get_daemon_class(network.daemon)(network)
