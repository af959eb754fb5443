"""
HKDF based key derivation of Core Lightning's hsm_secret.

Core Lightning does not use BIP32 for its node and channel keys. The node key
comes straight from the hsm_secret; channel keys are expanded per peer and per
channel database id into a 160 byte block with one 32 byte window per role.
"""

from __future__ import annotations

import hashlib
import hmac

from coincurve import PrivateKey

from chancore.errors import DerivationError
from chancore.models import KeyFamily

HSM_SECRET_LEN = 32

INFO_NODE_ID = b"nodeid"
INFO_PEER_SEED = b"peer seed"
INFO_PER_PEER = b"per-peer seed"
INFO_CHANNEL_KEYS = b"c-lightning"

# Window of each channel key role in the expanded per-channel block
KEY_WINDOWS: dict[KeyFamily, int] = {
    KeyFamily.MULTISIG: 0,
    KeyFamily.REVOCATION_BASE: 1,
    KeyFamily.HTLC_BASE: 2,
    KeyFamily.PAYMENT_BASE: 3,
    KeyFamily.DELAY_BASE: 4,
}


def hkdf_sha256(ikm: bytes, salt: bytes | None, info: bytes, length: int = 32) -> bytes:
    """RFC 5869 HKDF with SHA256 (extract then expand)."""
    if length > 255 * 32:
        raise DerivationError("HKDF output too long")
    prk = hmac.new(salt or b"\x00" * 32, ikm, hashlib.sha256).digest()

    output = b""
    block = b""
    counter = 1
    while len(output) < length:
        block = hmac.new(prk, block + info + bytes([counter]), hashlib.sha256).digest()
        output += block
        counter += 1
    return output[:length]


def _check_secret(secret: bytes) -> None:
    if len(secret) != HSM_SECRET_LEN:
        raise DerivationError(
            f"hsm_secret must be {HSM_SECRET_LEN} bytes, got {len(secret)}"
        )


def node_key(secret: bytes) -> PrivateKey:
    _check_secret(secret)
    return PrivateKey(hkdf_sha256(secret, b"\x00" * 4, INFO_NODE_ID))


def channel_key(
    secret: bytes, peer_pubkey: bytes, dbid: int, family: KeyFamily | int
) -> PrivateKey:
    """
    Channel key of the given role for the channel with database id dbid
    opened with peer_pubkey.
    """
    _check_secret(secret)
    family = KeyFamily(family)
    if family == KeyFamily.NODE_KEY:
        return node_key(secret)
    if family not in KEY_WINDOWS:
        raise DerivationError(f"unsupported key family for CLN: {family.name}")
    if len(peer_pubkey) != 33:
        raise DerivationError("peer public key must be 33 bytes")
    if not 0 <= dbid < 1 << 64:
        raise DerivationError(f"channel id out of range: {dbid}")

    channel_base = hkdf_sha256(secret, None, INFO_PEER_SEED)
    channel_seed = hkdf_sha256(
        channel_base, peer_pubkey + dbid.to_bytes(8, "little"), INFO_PER_PEER
    )

    offset = KEY_WINDOWS[family] * 32
    block = hkdf_sha256(channel_seed, None, INFO_CHANNEL_KEYS, offset + 32)
    return PrivateKey(block[offset:])
