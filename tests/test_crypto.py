# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the Apache 2.0 License.

import os
import stat

from cryptography.hazmat.primitives.serialization import load_pem_private_key

import ledgernet.crypto
from ledgernet.crypto import KeyAlgorithm


def test_ed25519_keypair():
    keypair = ledgernet.crypto.generate_keypair(KeyAlgorithm.ed25519)
    assert keypair.public_key_hex.startswith("01")
    assert len(keypair.public_key_hex) == 2 + 64
    assert "BEGIN PRIVATE KEY" in keypair.private_pem


def test_secp256k1_keypair():
    keypair = ledgernet.crypto.generate_keypair(KeyAlgorithm.secp256k1)
    assert keypair.public_key_hex.startswith("02")
    # Compressed point
    assert len(keypair.public_key_hex) == 2 + 66


def test_keypairs_are_unique():
    keys = {
        ledgernet.crypto.generate_keypair().public_key_hex for _ in range(10)
    }
    assert len(keys) == 10


def test_write_keypair(tmp_path):
    keypair = ledgernet.crypto.generate_keypair()
    ledgernet.crypto.write_keypair(str(tmp_path), keypair)
    secret_key_path = tmp_path / ledgernet.crypto.SECRET_KEY_FILE
    assert stat.S_IMODE(os.stat(secret_key_path).st_mode) == 0o600
    assert ledgernet.crypto.read_public_key_hex(str(tmp_path)) == keypair.public_key_hex
    load_pem_private_key(secret_key_path.read_bytes(), password=None)
