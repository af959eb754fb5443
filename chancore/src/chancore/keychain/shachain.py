"""
Per-commitment secret generation (BOLT 3 "efficient per-commitment secret
storage", producer side).
"""

from __future__ import annotations

import hashlib

from coincurve import PrivateKey

from chancore.constants import SHACHAIN_MAX_HEIGHT, SHACHAIN_MAX_INDEX
from chancore.errors import DerivationError


def generate_from_seed(seed: bytes, index: int) -> bytes:
    """Flip-and-hash derivation of element `index` from the root seed."""
    if len(seed) != 32:
        raise DerivationError("shachain seed must be 32 bytes")
    if not 0 <= index <= SHACHAIN_MAX_INDEX:
        raise DerivationError(f"shachain index out of range: {index}")

    value = bytearray(seed)
    for bit in range(SHACHAIN_MAX_HEIGHT - 1, -1, -1):
        if (index >> bit) & 1:
            value[bit // 8] ^= 1 << (bit % 8)
            value = bytearray(hashlib.sha256(value).digest())
    return bytes(value)


def commitment_point(secret: bytes) -> bytes:
    """Public per-commitment point of a per-commitment secret."""
    return PrivateKey(secret).public_key.format(compressed=True)


class RevocationProducer:
    """
    Produces the per-commitment secrets of one channel side.

    Commitment heights count up from 0 while shachain indices count down from
    2^48-1, so the secret of height h is the element at 2^48-1-h.
    """

    def __init__(self, root: bytes):
        if len(root) != 32:
            raise DerivationError("revocation root must be 32 bytes")
        self._root = root

    def at_index(self, height: int) -> bytes:
        if not 0 <= height <= SHACHAIN_MAX_INDEX:
            raise DerivationError(f"commitment height out of range: {height}")
        return generate_from_seed(self._root, SHACHAIN_MAX_INDEX - height)

    def commitment_secret(self, height: int) -> bytes:
        return self.at_index(height)

    def commitment_point(self, height: int) -> bytes:
        return commitment_point(self.at_index(height))
