"""
Exception taxonomy for key derivation, transaction construction and signing.
"""

from __future__ import annotations


class ChanCoreError(Exception):
    """Base class for all chancore errors."""

    pass


class DerivationError(ChanCoreError):
    """Bad path syntax, bad seed/secret length or an underivable child key."""

    pass


class CannotDeriveKeyError(DerivationError):
    """Raised when a bounded key scan did not find the requested key."""

    def __init__(self, family: int, max_index: int, pubkey: bytes | None = None):
        self.family = family
        self.max_index = max_index
        self.pubkey = pubkey
        detail = f"family {int(family)}, indices 0..{max_index - 1}"
        if pubkey is not None:
            detail = f"pubkey {pubkey.hex()}, {detail}"
        super().__init__(f"cannot derive private key ({detail})")


class ConstructionError(ChanCoreError):
    """Missing channel fields or an inconsistent signing request."""

    pass


class UnsupportedChannelTypeError(ConstructionError):
    pass


class SigningError(ChanCoreError):
    pass


class PsbtError(ChanCoreError):
    pass


class ScriptVerificationError(ChanCoreError):
    pass
