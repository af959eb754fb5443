"""
Root key loading: turn what the operator has (an extended private key, a
BIP39 mnemonic or a Core Lightning hsm_secret) into a KeyRing.
"""

from __future__ import annotations

import unicodedata
from hashlib import pbkdf2_hmac
from pathlib import Path

from chancore.errors import DerivationError
from chancore.keychain.bip32 import DerivationMode, ExtendedKey
from chancore.keychain.hkdf import HSM_SECRET_LEN
from chancore.keychain.keyring import Bip32Deriver, HkdfDeriver, KeyRing
from chancore.params import ChainParams
from loguru import logger

BIP39_WORD_COUNTS = (12, 15, 18, 21, 24)


def mnemonic_to_seed(mnemonic: str, passphrase: str = "") -> bytes:
    """BIP39 seed of a mnemonic (PBKDF2-HMAC-SHA512, 2048 rounds)."""
    words = mnemonic.split()
    if len(words) not in BIP39_WORD_COUNTS:
        raise DerivationError(
            f"mnemonic must have 12, 15, 18, 21 or 24 words, got {len(words)}"
        )
    normalized = unicodedata.normalize("NFKD", " ".join(words))
    salt = unicodedata.normalize("NFKD", "mnemonic" + passphrase)
    return pbkdf2_hmac("sha512", normalized.encode("utf-8"), salt.encode("utf-8"), 2048, dklen=64)


def load_extended_key(value: str, params: ChainParams) -> ExtendedKey:
    key = ExtendedKey.from_string(value, params)
    if not key.is_private:
        raise DerivationError("root key must be an extended private key (xprv/tprv)")
    return key


def read_hsm_secret(path: Path | str) -> bytes:
    """
    Read an hsm_secret file. Only unencrypted 32 byte secrets are supported;
    a hex encoded secret is accepted too.
    """
    path = Path(path)
    try:
        data = path.read_bytes()
    except OSError as e:
        raise DerivationError(f"cannot read hsm_secret {path}: {e}") from e

    if len(data) == HSM_SECRET_LEN:
        return data
    try:
        decoded = bytes.fromhex(data.decode("ascii").strip())
    except (UnicodeDecodeError, ValueError):
        decoded = b""
    if len(decoded) == HSM_SECRET_LEN:
        return decoded
    raise DerivationError(
        f"hsm_secret {path} must be {HSM_SECRET_LEN} bytes (encrypted secrets are not supported)"
    )


def load_root_key(
    params: ChainParams,
    rootkey: str | None = None,
    mnemonic: str | None = None,
    passphrase: str = "",
) -> ExtendedKey:
    """Extended private root key from an xprv string or a BIP39 mnemonic."""
    if bool(rootkey) == bool(mnemonic):
        raise DerivationError("exactly one of root key or mnemonic is required")
    if rootkey:
        return load_extended_key(rootkey, params)
    return ExtendedKey.from_seed(mnemonic_to_seed(mnemonic or "", passphrase), params)


def load_keyring(
    params: ChainParams,
    rootkey: str | None = None,
    mnemonic: str | None = None,
    passphrase: str = "",
    hsm_secret: bytes | None = None,
    mode: DerivationMode = DerivationMode.LND,
) -> KeyRing:
    """
    Build a KeyRing from exactly one root key source. The derivation scheme
    follows from the source: an hsm_secret selects the Core Lightning scheme,
    everything else the lnd BIP32 scheme in the given mode.
    """
    sources = [s for s in (rootkey, mnemonic, hsm_secret) if s]
    if len(sources) != 1:
        raise DerivationError("exactly one of root key, mnemonic or hsm_secret is required")

    if hsm_secret:
        logger.debug("Using Core Lightning key derivation from hsm_secret")
        return KeyRing(HkdfDeriver(hsm_secret), params)

    root = load_root_key(params, rootkey, mnemonic, passphrase)
    logger.debug(f"Using BIP32 key derivation in {mode.value} mode")
    return KeyRing(Bip32Deriver(root, params, mode), params)
