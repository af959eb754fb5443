"""
Key derivation.

Available derivers:
- Bip32Deriver: lnd keys under m/1017'/coin'/family'/0/index
- HkdfDeriver: Core Lightning keys expanded from the hsm_secret
"""

from chancore.keychain.bip32 import DerivationMode, ExtendedKey, derive_children
from chancore.keychain.keyring import Bip32Deriver, HkdfDeriver, KeyDeriver, KeyRing
from chancore.keychain.path import DerivationPath, format_path, parse_path
from chancore.keychain.shachain import RevocationProducer

__all__ = [
    "Bip32Deriver",
    "DerivationMode",
    "DerivationPath",
    "ExtendedKey",
    "HkdfDeriver",
    "KeyDeriver",
    "KeyRing",
    "RevocationProducer",
    "derive_children",
    "format_path",
    "parse_path",
]
