# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the Apache 2.0 License.
from subprocess import run

from loguru import logger as LOG


def ccall(*args, path=None, log_output=True, env=None):
    suffix = f" [cwd: {path}]" if path else ""
    cmd = " ".join(str(a) for a in args)
    LOG.info(f"{cmd}{suffix}")
    result = run(
        [str(a) for a in args], capture_output=True, cwd=path, check=False, env=env
    )
    if result.stdout and log_output:
        LOG.debug("stdout: {}".format(result.stdout.decode().strip()))
    if result.stderr and log_output:
        LOG.error("stderr: {}".format(result.stderr.decode().strip()))
    return result
