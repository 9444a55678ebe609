"""Hash primitive used by the commitment accumulator."""

import hashlib
from typing import Protocol, Union

DIGEST_SIZE = 32
ZERO_DIGEST = b"\x00" * DIGEST_SIZE


class Hasher(Protocol):
    """
    Two-input compression function H(a, b) -> digest.

    The engine never picks a hash on its own: whatever is injected here must
    be bit-for-bit the function used by the offline withdrawal circuit.
    """

    def hash(self, left: bytes, right: bytes) -> bytes:
        ...


class Sha256Hasher:
    """SHA-256(left || right) over 32-byte digests."""

    def hash(self, left: bytes, right: bytes) -> bytes:
        return merkle_hash(left, right)

    def __repr__(self) -> str:
        return "Sha256Hasher()"


def sha256(data: Union[bytes, str]) -> bytes:
    """
    Compute SHA-256 hash of data.

    Args:
        data: Bytes or string to hash

    Returns:
        bytes: 32-byte SHA-256 hash
    """
    if isinstance(data, str):
        data = data.encode('utf-8')
    return hashlib.sha256(data).digest()


def hash_concatenate(*data: Union[bytes, str]) -> bytes:
    """SHA-256 of the concatenation of all arguments (strings UTF-8 encoded)."""
    concatenated = b""
    for item in data:
        if isinstance(item, str):
            concatenated += item.encode('utf-8')
        else:
            concatenated += item
    return sha256(concatenated)


def merkle_hash(left: bytes, right: bytes) -> bytes:
    """
    Compute Merkle tree hash of two siblings.

    Args:
        left: Left child hash (32 bytes)
        right: Right child hash (32 bytes)

    Returns:
        bytes: Parent hash (32 bytes)

    Raises:
        ValueError: If either child is not a 32-byte digest
    """
    if not isinstance(left, bytes) or len(left) != DIGEST_SIZE:
        raise ValueError("Left hash must be 32 bytes")
    if not isinstance(right, bytes) or len(right) != DIGEST_SIZE:
        raise ValueError("Right hash must be 32 bytes")

    return sha256(left + right)


def compute_commitment(hasher: Hasher, secret: bytes, nullifier: bytes) -> bytes:
    """
    Client-side commitment C = H(secret, nullifier).

    Depositors compute this offline; the engine only ever sees C.
    """
    return hasher.hash(secret, nullifier)


def compute_nullifier_hash(hasher: Hasher, nullifier: bytes) -> bytes:
    """Client-side nullifier hash N = H(nullifier, 0), revealed at withdrawal."""
    return hasher.hash(nullifier, ZERO_DIGEST)
