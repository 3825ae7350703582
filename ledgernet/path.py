# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the Apache 2.0 License.
import os
from shutil import copy2, rmtree

from loguru import logger as LOG

HOME_ENV_VAR = "LEDGERNET_HOME"

ASSETS_DIR = "assets"
VARS_FILE = "vars.json"


def default_home():
    return os.getenv(HOME_ENV_VAR, os.path.join(os.getcwd(), "workspace"))


def get_path_to_net(home, net_id):
    return os.path.join(home, ASSETS_DIR, f"net-{net_id}")


def get_path_to_vars(home, net_id):
    return os.path.join(get_path_to_net(home, net_id), VARS_FILE)


def get_path_to_bin(net_path, name=None):
    bin_dir = os.path.join(net_path, "bin")
    return bin_dir if name is None else os.path.join(bin_dir, name)


def get_path_to_chainspec(net_path):
    return os.path.join(net_path, "chainspec", "chainspec.toml")


def get_path_to_accounts(net_path):
    return os.path.join(net_path, "chainspec", "accounts.csv")


def get_path_to_faucet(net_path):
    return os.path.join(net_path, "faucet")


def get_path_to_user(net_path, user_id):
    return os.path.join(net_path, "users", f"user-{user_id}")


def get_path_to_node(net_path, node_id):
    return os.path.join(net_path, "nodes", f"node-{node_id}")


def get_path_to_node_pid(net_path, node_id):
    return os.path.join(get_path_to_node(net_path, node_id), "sockets", "node.pid")


def get_path_to_daemon(net_path, sub_dir=None):
    daemon_dir = os.path.join(net_path, "daemon")
    return daemon_dir if sub_dir is None else os.path.join(daemon_dir, sub_dir)


def mk(name, contents):
    LOG.debug('echo "<{} bytes>" > {}'.format(len(contents), name))
    with open(name, "w", encoding="utf-8") as dst:
        dst.write(contents)


def slurp_file(path):
    with open(path, encoding="utf-8") as f:
        return f.read()


def make_dirs(*dir_paths):
    for dir_path in dir_paths:
        os.makedirs(dir_path, exist_ok=True)


def remove_dir(dir_path):
    if os.path.isdir(dir_path):
        LOG.info("rm -rf {}".format(dir_path))
        rmtree(dir_path)


def copy_file(src_path, dst_dir):
    if not os.path.isfile(src_path):
        raise FileNotFoundError(f"Could not find {src_path} to stage into {dst_dir}")
    copy2(src_path, dst_dir)

