"""
chancore - Core library for Lightning channel fund recovery

Provides key derivation (lnd BIP32 and Core Lightning HKDF schemes), Bitcoin
primitives (addresses, scripts, transactions, PSBTs) and channel script
building and signing.
"""

__version__ = "0.1.0"

from chancore.errors import (
    CannotDeriveKeyError,
    ChanCoreError,
    ConstructionError,
    DerivationError,
    PsbtError,
    ScriptVerificationError,
    SigningError,
    UnsupportedChannelTypeError,
)
from chancore.models import (
    BackupVersion,
    ChannelBackupSingle,
    ChannelConfig,
    ChannelType,
    KeyDescriptor,
    KeyFamily,
    KeyLocator,
    NetworkType,
    OpenChannelState,
    OutPoint,
)
from chancore.params import ChainParams, get_chain_params

__all__ = [
    "BackupVersion",
    "CannotDeriveKeyError",
    "ChainParams",
    "ChanCoreError",
    "ChannelBackupSingle",
    "ChannelConfig",
    "ChannelType",
    "ConstructionError",
    "DerivationError",
    "KeyDescriptor",
    "KeyFamily",
    "KeyLocator",
    "NetworkType",
    "OpenChannelState",
    "OutPoint",
    "PsbtError",
    "ScriptVerificationError",
    "SigningError",
    "UnsupportedChannelTypeError",
    "get_chain_params",
]
