"""
Match files exchanged by the two parties of zombie channels.

A match file lists both nodes and the channels they still share. Each party
adds a payout address and its candidate multisig keys to it, and the two
resulting key files are combined into an offer.
"""

from __future__ import annotations

import json
from enum import Enum
from pathlib import Path

from chancore.bitcoin.psbt import Psbt
from chancore.errors import ChanCoreError
from pydantic import AliasChoices, BaseModel, Field, ValidationError, field_validator

# Proprietary PSBT input key carrying the counterparty's multisig key
PSBT_KEY_MISSING_SIG_PUBKEY = b"\xcc"


class OfferValidationError(ChanCoreError):
    """A key file or offer failed validation."""


class FeeSplit(str, Enum):
    """Who pays the offer transaction fee."""

    EVEN = "even"
    LOCAL = "local"
    REMOTE = "remote"


class OfferState(str, Enum):
    UNSIGNED = "unsigned"
    PARTIALLY_SIGNED = "partially_signed"
    FULLY_SIGNED = "fully_signed"


class NodeInfo(BaseModel):
    identity_pubkey: str = Field(validation_alias=AliasChoices("identity_pubkey", "pubkey"))
    contact: str = ""
    payout_addr: str | None = None
    multisig_keys: list[str] | None = None

    @field_validator("identity_pubkey")
    @classmethod
    def normalize_pubkey(cls, v: str) -> str:
        v = v.strip().lower()
        if len(v) != 66 or v[:2] not in ("02", "03"):
            raise ValueError(f"invalid identity pubkey: {v}")
        return v


class MatchChannel(BaseModel):
    short_channel_id: str = ""
    chan_point: str
    address: str
    capacity: int


class Match(BaseModel):
    node1: NodeInfo | None = None
    node2: NodeInfo | None = None
    channels: list[MatchChannel] = []

    @classmethod
    def load(cls, path: Path | str) -> Match:
        path = Path(path)
        try:
            return cls.model_validate(json.loads(path.read_text()))
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            raise OfferValidationError(f"cannot load match file {path}: {e}") from e

    def nodes(self) -> tuple[NodeInfo, NodeInfo]:
        if self.node1 is None or self.node2 is None:
            raise OfferValidationError("invalid match file, node info missing")
        return self.node1, self.node2


def offer_state(psbt: Psbt) -> OfferState:
    """How far an offer has progressed, judged by its partial signatures."""
    if psbt.is_complete():
        return OfferState.FULLY_SIGNED
    signed = [pin for pin in psbt.inputs if pin.partial_sigs or pin.tap_key_sig]
    if not signed:
        return OfferState.UNSIGNED
    if all(len(pin.partial_sigs) >= 2 for pin in psbt.inputs):
        return OfferState.FULLY_SIGNED
    return OfferState.PARTIALLY_SIGNED
