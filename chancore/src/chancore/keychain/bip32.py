"""
BIP32 HD key derivation for lnd wallets.

Besides standard BIP32 this implements the legacy child derivation that older
btcutil versions (and therefore lnd) use: when a parent private key has leading
zero bytes, the hardened-derivation data is built from the unpadded key. lnd
additionally round-trips the coin type and account keys through their string
serialization, which re-pads the key. Which behaviour to use is always chosen
explicitly through DerivationMode.
"""

from __future__ import annotations

import hashlib
import hmac
from collections.abc import Iterable
from enum import Enum

import base58
from coincurve import PrivateKey, PublicKey

from chancore.bitcoin.address import hash160
from chancore.constants import HARDENED_KEY_START, SECP256K1_N
from chancore.errors import DerivationError
from chancore.params import ChainParams

MIN_SEED_BYTES = 16
MAX_SEED_BYTES = 64
SERIALIZED_KEY_LEN = 78


class DerivationMode(str, Enum):
    BIP32 = "bip32"
    NON_STANDARD = "non-standard"
    LND = "lnd"


def _int_to_minimal_bytes(value: int) -> bytes:
    return value.to_bytes((value.bit_length() + 7) // 8, "big")


class ExtendedKey:
    """
    HD key node: chain code plus a private or public key and its metadata.

    Private keys are kept the way btcutil keeps them, as big-endian bytes with
    leading zeros stripped for derived children. This is what makes the legacy
    derivation differ from BIP32.
    """

    def __init__(
        self,
        key: bytes,
        chain_code: bytes,
        params: ChainParams,
        depth: int = 0,
        parent_fingerprint: bytes = b"\x00\x00\x00\x00",
        child_number: int = 0,
        is_private: bool = True,
    ):
        self.key = key
        self.chain_code = chain_code
        self.params = params
        self.depth = depth
        self.parent_fingerprint = parent_fingerprint
        self.child_number = child_number
        self.is_private = is_private
        self._pubkey: bytes | None = None if is_private else key

    @classmethod
    def from_seed(cls, seed: bytes, params: ChainParams) -> ExtendedKey:
        """Create the master key from a BIP32 seed."""
        if not MIN_SEED_BYTES <= len(seed) <= MAX_SEED_BYTES:
            raise DerivationError("seed length must be between 128 and 512 bits")

        hmac_result = hmac.new(b"Bitcoin seed", seed, hashlib.sha512).digest()
        key_bytes = hmac_result[:32]
        key_int = int.from_bytes(key_bytes, "big")
        if key_int == 0 or key_int >= SECP256K1_N:
            raise DerivationError("unusable seed")

        return cls(key_bytes, hmac_result[32:], params)

    @classmethod
    def from_string(cls, value: str, params: ChainParams) -> ExtendedKey:
        """Parse an xprv/xpub (or tprv/tpub) string."""
        try:
            payload = base58.b58decode_check(value.strip())
        except ValueError as e:
            raise DerivationError(f"invalid extended key: {e}") from e
        if len(payload) != SERIALIZED_KEY_LEN:
            raise DerivationError("invalid extended key length")

        version = payload[:4]
        if version not in (params.hd_private_key_id, params.hd_public_key_id):
            raise DerivationError(
                f"extended key version {version.hex()} does not match network {params.name}"
            )

        depth = payload[4]
        parent_fingerprint = payload[5:9]
        child_number = int.from_bytes(payload[9:13], "big")
        chain_code = payload[13:45]
        key_data = payload[45:]

        is_private = key_data[0] == 0
        if is_private:
            key = key_data[1:]
            key_int = int.from_bytes(key, "big")
            if key_int == 0 or key_int >= SECP256K1_N:
                raise DerivationError("invalid private key in extended key")
        else:
            try:
                PublicKey(key_data)
            except ValueError as e:
                raise DerivationError(f"invalid public key in extended key: {e}") from e
            key = key_data

        return cls(
            key,
            chain_code,
            params,
            depth=depth,
            parent_fingerprint=parent_fingerprint,
            child_number=child_number,
            is_private=is_private,
        )

    def to_string(self) -> str:
        if self.is_private:
            version = self.params.hd_private_key_id
            key_data = b"\x00" + self.key.rjust(32, b"\x00")
        else:
            version = self.params.hd_public_key_id
            key_data = self.public_key_bytes()

        payload = (
            version
            + bytes([self.depth])
            + self.parent_fingerprint
            + self.child_number.to_bytes(4, "big")
            + self.chain_code
            + key_data
        )
        return base58.b58encode_check(payload).decode("ascii")

    def __str__(self) -> str:
        return self.to_string()

    def __repr__(self) -> str:
        kind = "private" if self.is_private else "public"
        return f"ExtendedKey({kind}, depth={self.depth}, child={self.child_number})"

    def private_key(self) -> PrivateKey:
        if not self.is_private:
            raise DerivationError("cannot create private key from public extended key")
        return PrivateKey(self.key.rjust(32, b"\x00"))

    def public_key_bytes(self) -> bytes:
        if self._pubkey is None:
            self._pubkey = self.private_key().public_key.format(compressed=True)
        return self._pubkey

    def public_key(self) -> PublicKey:
        return PublicKey(self.public_key_bytes())

    @property
    def fingerprint(self) -> bytes:
        return hash160(self.public_key_bytes())[:4]

    def neuter(self) -> ExtendedKey:
        """Return the public-only version of this key."""
        if not self.is_private:
            return self
        return ExtendedKey(
            self.public_key_bytes(),
            self.chain_code,
            self.params,
            depth=self.depth,
            parent_fingerprint=self.parent_fingerprint,
            child_number=self.child_number,
            is_private=False,
        )

    def derive(self, index: int) -> ExtendedKey:
        """Standard BIP32 child derivation."""
        return self._derive_child(index, standard=True)

    def derive_non_standard(self, index: int) -> ExtendedKey:
        """Legacy btcutil child derivation (unpadded hardened data)."""
        return self._derive_child(index, standard=False)

    def _derive_child(self, index: int, standard: bool) -> ExtendedKey:
        if not 0 <= index <= 0xFFFFFFFF:
            raise DerivationError(f"child index out of range: {index}")
        if self.depth == 255:
            raise DerivationError("cannot derive a key with more than 255 indices in its path")

        is_child_hardened = index >= HARDENED_KEY_START
        if is_child_hardened:
            if not self.is_private:
                raise DerivationError("cannot derive a hardened key from a public key")
            if standard:
                data = b"\x00" + self.key.rjust(32, b"\x00")
            else:
                # 0x00 || key, left aligned in the 33 byte field
                data = (b"\x00" + self.key).ljust(33, b"\x00")
        else:
            data = self.public_key_bytes()
        data += index.to_bytes(4, "big")

        hmac_result = hmac.new(self.chain_code, data, hashlib.sha512).digest()
        offset_int = int.from_bytes(hmac_result[:32], "big")
        child_chain = hmac_result[32:]
        if offset_int >= SECP256K1_N:
            raise DerivationError(f"derived key at index {index} is invalid, use the next index")

        if self.is_private:
            parent_key_int = int.from_bytes(self.key, "big")
            child_key_int = (parent_key_int + offset_int) % SECP256K1_N
            if child_key_int == 0:
                raise DerivationError(
                    f"derived key at index {index} is invalid, use the next index"
                )
            child_key = _int_to_minimal_bytes(child_key_int)
        else:
            try:
                child_key = (
                    PublicKey(self.key)
                    .add(hmac_result[:32])
                    .format(compressed=True)
                )
            except ValueError as e:
                raise DerivationError(
                    f"derived key at index {index} is invalid, use the next index"
                ) from e

        return ExtendedKey(
            child_key,
            child_chain,
            self.params,
            depth=self.depth + 1,
            parent_fingerprint=self.fingerprint,
            child_number=index,
            is_private=self.is_private,
        )


def derive_children(
    key: ExtendedKey, path: Iterable[int], mode: DerivationMode = DerivationMode.LND
) -> ExtendedKey:
    """
    Walk a path from key.

    In LND mode the key derived at depth 2 is re-parsed from its string form
    when the next (account) index is not 0', and the key at depth 3 when its
    own index is not 0'. This reproduces the keys btcwallet stores for coin
    type and account levels.
    """
    indices = list(path)
    current = key

    for idx, index in enumerate(indices):
        if mode == DerivationMode.BIP32:
            current = current.derive(index)
            continue

        derived = current.derive_non_standard(index)
        if mode == DerivationMode.NON_STANDARD:
            current = derived
            continue

        key_id = index - HARDENED_KEY_START
        next_id = 0
        if derived.depth == 2 and len(indices) > 2 and idx + 1 < len(indices):
            next_id = indices[idx + 1] - HARDENED_KEY_START

        if (derived.depth == 2 and next_id != 0) or (derived.depth == 3 and key_id != 0):
            current = ExtendedKey.from_string(derived.to_string(), derived.params)
        else:
            current = derived

    return current
