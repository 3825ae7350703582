# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the Apache 2.0 License.

from dataclasses import dataclass
from enum import IntEnum
import os

from cryptography.hazmat.primitives.asymmetric import ec, ed25519
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    PrivateFormat,
    PublicFormat,
    NoEncryption,
)
from cryptography.hazmat.backends import default_backend

import ledgernet.path

SECRET_KEY_FILE = "secret_key.pem"
PUBLIC_KEY_FILE = "public_key.pem"
PUBLIC_KEY_HEX_FILE = "public_key_hex"


# Value is the tag prefixed to the hex encoded public key
class KeyAlgorithm(IntEnum):
    ed25519 = 1
    secp256k1 = 2

    def tag(self):
        return f"{self.value:02x}"


@dataclass(frozen=True)
class Keypair:
    algorithm: KeyAlgorithm
    private_pem: str
    public_pem: str
    public_key_hex: str


def _raw_public_bytes(pub, algorithm):
    if algorithm == KeyAlgorithm.ed25519:
        return pub.public_bytes(Encoding.Raw, PublicFormat.Raw)
    return pub.public_bytes(Encoding.X962, PublicFormat.CompressedPoint)


def generate_keypair(algorithm=KeyAlgorithm.ed25519) -> Keypair:
    if algorithm == KeyAlgorithm.ed25519:
        priv = ed25519.Ed25519PrivateKey.generate()
    elif algorithm == KeyAlgorithm.secp256k1:
        priv = ec.generate_private_key(curve=ec.SECP256K1(), backend=default_backend())
    else:
        raise ValueError(f"Unsupported key algorithm {algorithm}")
    pub = priv.public_key()
    priv_pem = priv.private_bytes(
        Encoding.PEM, PrivateFormat.PKCS8, NoEncryption()
    ).decode("ascii")
    pub_pem = pub.public_bytes(Encoding.PEM, PublicFormat.SubjectPublicKeyInfo).decode(
        "ascii"
    )
    public_key_hex = algorithm.tag() + _raw_public_bytes(pub, algorithm).hex()
    return Keypair(algorithm, priv_pem, pub_pem, public_key_hex)


def write_keypair(dir_path, keypair: Keypair):
    """
    Writes the keypair in the layout expected by the node and client
    binaries: two PEM files and the tagged public key in hex.
    """
    ledgernet.path.mk(os.path.join(dir_path, SECRET_KEY_FILE), keypair.private_pem)
    os.chmod(os.path.join(dir_path, SECRET_KEY_FILE), 0o600)
    ledgernet.path.mk(os.path.join(dir_path, PUBLIC_KEY_FILE), keypair.public_pem)
    ledgernet.path.mk(
        os.path.join(dir_path, PUBLIC_KEY_HEX_FILE), keypair.public_key_hex
    )


def read_public_key_hex(dir_path):
    return ledgernet.path.slurp_file(
        os.path.join(dir_path, PUBLIC_KEY_HEX_FILE)
    ).strip()
