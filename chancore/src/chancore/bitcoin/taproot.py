"""
Taproot helpers: BIP340 tagged hashes, BIP341 tweaks and script trees, and
BIP327 MuSig2 key aggregation for taproot channel funding outputs.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field

from coincurve import PrivateKey, PublicKey

from chancore.bitcoin.tx import encode_varint
from chancore.constants import SECP256K1_N, TAPSCRIPT_LEAF_VERSION
from chancore.errors import ConstructionError


def tagged_hash(tag: str, msg: bytes) -> bytes:
    tag_hash = hashlib.sha256(tag.encode()).digest()
    return hashlib.sha256(tag_hash + tag_hash + msg).digest()


def x_only(pubkey: bytes) -> bytes:
    """32-byte x-only form of a compressed or x-only public key."""
    if len(pubkey) == 33:
        return pubkey[1:]
    if len(pubkey) == 32:
        return pubkey
    raise ConstructionError(f"invalid public key length {len(pubkey)}")


def lift_x(xonly: bytes) -> PublicKey:
    """The point with the given x coordinate and even y."""
    try:
        return PublicKey(b"\x02" + x_only(xonly))
    except ValueError as e:
        raise ConstructionError(f"{xonly.hex()} is not a valid x coordinate") from e


def has_even_y(pubkey: PublicKey) -> bool:
    return pubkey.format(compressed=True)[0] == 0x02


def negate(pubkey: PublicKey) -> PublicKey:
    return pubkey.multiply((SECP256K1_N - 1).to_bytes(32, "big"))


def tap_leaf_hash(script: bytes, leaf_version: int = TAPSCRIPT_LEAF_VERSION) -> bytes:
    return tagged_hash("TapLeaf", bytes([leaf_version]) + encode_varint(len(script)) + script)


def tap_branch_hash(left: bytes, right: bytes) -> bytes:
    if right < left:
        left, right = right, left
    return tagged_hash("TapBranch", left + right)


def _tweak_scalar(internal_key: bytes, merkle_root: bytes | None) -> bytes:
    tweak = tagged_hash("TapTweak", x_only(internal_key) + (merkle_root or b""))
    if int.from_bytes(tweak, "big") >= SECP256K1_N:
        raise ConstructionError("taproot tweak exceeds the curve order")
    return tweak


def taproot_tweak_pubkey(
    internal_key: bytes, merkle_root: bytes | None = None
) -> tuple[int, bytes]:
    """
    Tweak an internal key with a script tree root (None for BIP86 key-only
    outputs). Returns (output key parity, 32-byte output key).
    """
    tweak = _tweak_scalar(internal_key, merkle_root)
    output = lift_x(internal_key).add(tweak).format(compressed=True)
    return output[0] & 1, output[1:]


def taproot_tweak_seckey(seckey: bytes, merkle_root: bytes | None = None) -> bytes:
    """Private key for a key path spend of the output built by taproot_tweak_pubkey."""
    priv = PrivateKey(seckey)
    d = int.from_bytes(priv.secret, "big")
    pubkey = priv.public_key.format(compressed=True)
    if pubkey[0] == 0x03:
        d = SECP256K1_N - d
    tweak = _tweak_scalar(pubkey, merkle_root)
    tweaked = (d + int.from_bytes(tweak, "big")) % SECP256K1_N
    if tweaked == 0:
        raise ConstructionError("tweaked private key is zero")
    return tweaked.to_bytes(32, "big")


def control_block(
    internal_key: bytes,
    output_parity: int,
    merkle_path: list[bytes],
    leaf_version: int = TAPSCRIPT_LEAF_VERSION,
) -> bytes:
    return bytes([leaf_version | output_parity]) + x_only(internal_key) + b"".join(merkle_path)


@dataclass
class TapLeaf:
    script: bytes
    leaf_version: int = TAPSCRIPT_LEAF_VERSION

    @property
    def leaf_hash(self) -> bytes:
        return tap_leaf_hash(self.script, self.leaf_version)


@dataclass
class TapscriptTree:
    """
    A script tree of one or two leaves over an internal key, the shape used
    by commitment outputs.
    """

    internal_key: bytes
    leaves: list[TapLeaf] = field(default_factory=list)

    @property
    def merkle_root(self) -> bytes:
        if len(self.leaves) == 1:
            return self.leaves[0].leaf_hash
        if len(self.leaves) == 2:
            return tap_branch_hash(self.leaves[0].leaf_hash, self.leaves[1].leaf_hash)
        raise ConstructionError("tapscript tree must have one or two leaves")

    def output_key(self) -> tuple[int, bytes]:
        return taproot_tweak_pubkey(self.internal_key, self.merkle_root)

    def pk_script(self) -> bytes:
        return bytes([0x51, 0x20]) + self.output_key()[1]

    def control_block(self, leaf_index: int) -> bytes:
        parity, _ = self.output_key()
        path = [leaf.leaf_hash for i, leaf in enumerate(self.leaves) if i != leaf_index]
        return control_block(
            self.internal_key, parity, path, self.leaves[leaf_index].leaf_version
        )


def _key_agg_coefficients(pubkeys: list[bytes]) -> list[int]:
    list_hash = tagged_hash("KeyAgg list", b"".join(pubkeys))
    second = next((pk for pk in pubkeys[1:] if pk != pubkeys[0]), None)

    coefficients = []
    for pk in pubkeys:
        if pk == second:
            coefficients.append(1)
        else:
            digest = tagged_hash("KeyAgg coefficient", list_hash + pk)
            coefficients.append(int.from_bytes(digest, "big") % SECP256K1_N)
    return coefficients


def key_agg(pubkeys: list[bytes], sort: bool = False) -> PublicKey:
    """
    BIP327 KeyAgg of 33-byte compressed public keys. Returns the aggregate
    point (not yet x-only normalized).
    """
    if not pubkeys:
        raise ConstructionError("key aggregation needs at least one key")
    for pk in pubkeys:
        if len(pk) != 33:
            raise ConstructionError("key aggregation needs compressed public keys")
    keys = sorted(pubkeys) if sort else list(pubkeys)

    points = []
    for pk, coefficient in zip(keys, _key_agg_coefficients(keys)):
        point = PublicKey(pk)
        if coefficient != 1:
            point = point.multiply(coefficient.to_bytes(32, "big"))
        points.append(point)

    try:
        return PublicKey.combine_keys(points)
    except ValueError as e:
        raise ConstructionError("aggregate key is the point at infinity") from e


def musig2_funding_key(
    key_a: bytes, key_b: bytes, tapscript_root: bytes | None = None
) -> bytes:
    """
    Taproot output key of a MuSig2 channel funding output: the sorted
    aggregate of both multisig keys, tweaked with BIP86 (no script) or with
    the given tapscript root.
    """
    internal = key_agg([key_a, key_b], sort=True).format(compressed=True)
    _, output_key = taproot_tweak_pubkey(internal, tapscript_root)
    return output_key
