"""
Per-commitment key tweaks (BOLT 3 key derivation).

Single tweak:
    key = basepoint + SHA256(per_commitment_point || basepoint) * G

Double tweak:
    revocationkey = revocation_basepoint * SHA256(revocation_basepoint || per_commitment_point)
                  + per_commitment_point * SHA256(per_commitment_point || revocation_basepoint)
"""

from __future__ import annotations

import hashlib

from coincurve import PrivateKey, PublicKey

from chancore.constants import SECP256K1_N
from chancore.errors import ConstructionError


def single_tweak_bytes(commit_point: bytes, base_point: bytes) -> bytes:
    return hashlib.sha256(commit_point + base_point).digest()


def tweak_pubkey(base_point: bytes, commit_point: bytes) -> bytes:
    tweak = single_tweak_bytes(commit_point, base_point)
    try:
        return PublicKey(base_point).add(tweak).format(compressed=True)
    except ValueError as e:
        raise ConstructionError(f"cannot tweak public key: {e}") from e


def tweak_privkey(base_key: PrivateKey, single_tweak: bytes) -> PrivateKey:
    value = int.from_bytes(base_key.secret, "big") + int.from_bytes(single_tweak, "big")
    value %= SECP256K1_N
    if value == 0:
        raise ConstructionError("tweaked private key is zero")
    return PrivateKey(value.to_bytes(32, "big"))


def derive_revocation_pubkey(revoke_base: bytes, commit_point: bytes) -> bytes:
    revoke_tweak = hashlib.sha256(revoke_base + commit_point).digest()
    commit_tweak = hashlib.sha256(commit_point + revoke_base).digest()
    try:
        return PublicKey.combine_keys(
            [
                PublicKey(revoke_base).multiply(revoke_tweak),
                PublicKey(commit_point).multiply(commit_tweak),
            ]
        ).format(compressed=True)
    except ValueError as e:
        raise ConstructionError(f"cannot derive revocation key: {e}") from e


def derive_revocation_privkey(revoke_base_key: PrivateKey, commit_secret: bytes) -> PrivateKey:
    revoke_base = revoke_base_key.public_key.format(compressed=True)
    commit_point = PrivateKey(commit_secret).public_key.format(compressed=True)

    revoke_tweak = int.from_bytes(hashlib.sha256(revoke_base + commit_point).digest(), "big")
    commit_tweak = int.from_bytes(hashlib.sha256(commit_point + revoke_base).digest(), "big")

    value = (
        int.from_bytes(revoke_base_key.secret, "big") * revoke_tweak
        + int.from_bytes(commit_secret, "big") * commit_tweak
    ) % SECP256K1_N
    if value == 0:
        raise ConstructionError("revocation private key is zero")
    return PrivateKey(value.to_bytes(32, "big"))
