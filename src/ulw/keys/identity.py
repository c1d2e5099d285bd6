"""
Node identity derived from a 32 byte entropy seed.

The node secret is the hardened BIP32 child m/0' of the master key of the
seed. Equal seeds always give the same node id. Random values for payment
preimages and secrets are not derived from the seed alone, they mix process
entropy, a per instance key and a counter.
"""

from __future__ import annotations

import hashlib
import hmac
import os
import secrets
import struct
import threading
import time

import coincurve

from ulw.errors import InvalidSeed
from ulw.log import getLogger

SEED_LENGTH = 32
BIP32_HARDENED = 0x80000000
NODE_KEY_INDEX = 0
SECP256K1_ORDER = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141

logger = getLogger(__name__)


def _master_key(seed: bytes) -> tuple[bytes, bytes]:
    """BIP32 master key and chain code."""

    i = hmac.new(b"Bitcoin seed", seed, hashlib.sha512).digest()
    return i[:32], i[32:]


def _derive_hardened_child(
    parent_key: bytes, parent_chain: bytes, index: int
) -> tuple[bytes, bytes]:
    """BIP32 hardened child key derivation."""

    data = b"\x00" + parent_key + struct.pack(">I", index | BIP32_HARDENED)
    i = hmac.new(parent_chain, data, hashlib.sha512).digest()

    child_key_int = (
        int.from_bytes(i[:32], "big") + int.from_bytes(parent_key, "big")
    ) % SECP256K1_ORDER
    return child_key_int.to_bytes(32, "big"), i[32:]


class NodeIdentity:
    """
    Signing key of the node plus a source of unpredictable random bytes.
    """

    def __init__(self, node_secret: bytes, seed: bytes) -> None:
        self._node_key = coincurve.PrivateKey(node_secret)
        self._pubkey = self._node_key.public_key.format(compressed=True)

        # Key for the random source. The start time makes two instances created
        # from the same seed produce different streams.
        start_ns = time.time_ns()
        self._rand_key = hashlib.sha256(
            seed + struct.pack(">Q", start_ns) + os.urandom(16)
        ).digest()
        self._rand_counter = 0
        self._rand_lock = threading.Lock()

    @property
    def pubkey(self) -> bytes:
        """Compressed secp256k1 public key, 33 bytes."""
        return self._pubkey

    @property
    def node_id(self) -> str:
        return self._pubkey.hex()

    def get_secure_random_bytes(self) -> bytes:
        """
        Returns 32 fresh random bytes. Safe to call from multiple threads.
        """

        with self._rand_lock:
            self._rand_counter += 1
            counter = self._rand_counter

        msg = struct.pack(">Q", counter) + secrets.token_bytes(32)
        return hmac.new(self._rand_key, msg, hashlib.sha256).digest()

    def sign_recoverable(self, msg_hash: bytes) -> tuple[bytes, int]:
        """
        Signs a 32 byte message hash. Returns the compact signature (r || s)
        and the recovery id.
        """

        sig = self._node_key.sign_recoverable(msg_hash, hasher=None)
        return sig[:64], sig[64]


def derive_identity(seed: bytes) -> NodeIdentity:
    """
    Derives the node identity for the given seed. Raises InvalidSeed if the
    seed is not 32 bytes long.
    """

    if len(seed) != SEED_LENGTH:
        raise InvalidSeed(f"seed must be {SEED_LENGTH} bytes, got {len(seed)}")

    key, chain = _master_key(seed)
    node_secret, _ = _derive_hardened_child(key, chain, NODE_KEY_INDEX)

    try:
        identity = NodeIdentity(node_secret, seed)
    except ValueError as e:
        # Only possible for a derived key of zero, negligible in practice.
        raise InvalidSeed(f"seed does not yield a valid node key: {e}") from e

    logger.debug(f"Derived node identity {identity.node_id}")
    return identity


def load_or_create_seed(path: str) -> bytes:
    """
    Reads the raw 32 byte seed from path. If the file does not exist, a new
    seed is created with the secrets module and written with mode 0600.
    """

    path = os.path.expanduser(path)

    if os.path.exists(path):
        with open(path, "rb") as f:
            seed = f.read()
        if len(seed) != SEED_LENGTH:
            raise InvalidSeed(
                f"seed file '{path}' holds {len(seed)} bytes, expected {SEED_LENGTH}"
            )
        return seed

    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    seed = secrets.token_bytes(SEED_LENGTH)

    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    with os.fdopen(fd, "wb") as f:
        f.write(seed)

    logger.info(f"Created new seed file {path}")
    return seed
