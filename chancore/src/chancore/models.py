"""
Channel and key data models using Pydantic for validation and serialization.

These models describe the read-only channel state handed to the recovery
engines: key locators/descriptors, per-side channel configuration, the latest
local commitment and the compact static channel backup record.
"""

from __future__ import annotations

from enum import Enum, IntEnum, IntFlag
from typing import Annotated, Any

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    PlainSerializer,
    field_validator,
    model_validator,
)


def _decode_hex(value: Any) -> Any:
    if isinstance(value, str):
        try:
            return bytes.fromhex(value)
        except ValueError as e:
            raise ValueError(f"invalid hex string: {value!r}") from e
    return value


HexBytes = Annotated[
    bytes,
    BeforeValidator(_decode_hex),
    PlainSerializer(lambda v: v.hex(), return_type=str),
]


class NetworkType(str, Enum):
    MAINNET = "mainnet"
    TESTNET = "testnet"
    SIGNET = "signet"
    REGTEST = "regtest"


class KeyFamily(IntEnum):
    """Key families of lnd's keychain, third element of m/1017'/coin'/family'/0/index."""

    MULTISIG = 0
    REVOCATION_BASE = 1
    HTLC_BASE = 2
    PAYMENT_BASE = 3
    DELAY_BASE = 4
    REVOCATION_ROOT = 5
    NODE_KEY = 6
    STATIC_BACKUP = 7
    TOWER_SESSION = 8
    TOWER_ID = 9


class KeyLocator(BaseModel):
    model_config = ConfigDict(frozen=True)

    family: KeyFamily
    index: int = Field(default=0, ge=0, le=0xFFFFFFFF)

    def __str__(self) -> str:
        return f"{self.family.name.lower()}/{self.index}"


class KeyDescriptor(BaseModel):
    """A located key plus (optionally) its public key."""

    model_config = ConfigDict(frozen=True)

    locator: KeyLocator
    pub_key: HexBytes | None = None

    @field_validator("pub_key")
    @classmethod
    def validate_pub_key(cls, v: bytes | None) -> bytes | None:
        if v is not None and (len(v) != 33 or v[0] not in (2, 3)):
            raise ValueError("pub_key must be a 33 byte compressed public key")
        return v


class ChannelConstraints(BaseModel):
    csv_delay: int = Field(default=144, ge=0, le=0xFFFF)
    dust_limit: int = Field(default=354, ge=0)
    chan_reserve: int = Field(default=0, ge=0)


class ChannelConfig(BaseModel):
    """Static cryptographic setup of one side of a channel."""

    constraints: ChannelConstraints = Field(default_factory=ChannelConstraints)
    multisig_key: KeyDescriptor
    revocation_base_point: KeyDescriptor
    payment_base_point: KeyDescriptor
    delay_base_point: KeyDescriptor
    htlc_base_point: KeyDescriptor | None = None


class ChannelType(IntFlag):
    """Channel type bit field as stored in lnd's channel database."""

    SINGLE_FUNDER = 0
    DUAL_FUNDER = 1 << 0
    SINGLE_FUNDER_TWEAKLESS = 1 << 1
    NO_FUNDING_TX = 1 << 2
    ANCHOR_OUTPUTS = 1 << 3
    FROZEN = 1 << 4
    ZERO_HTLC_TX_FEE = 1 << 5
    LEASE_EXPIRATION = 1 << 6
    ZERO_CONF = 1 << 7
    SCID_ALIAS_CHAN = 1 << 8
    SCID_ALIAS_FEATURE = 1 << 9
    SIMPLE_TAPROOT = 1 << 10
    TAPSCRIPT_ROOT = 1 << 11

    @property
    def is_tweakless(self) -> bool:
        return bool(self & ChannelType.SINGLE_FUNDER_TWEAKLESS)

    @property
    def has_anchors(self) -> bool:
        return bool(self & ChannelType.ANCHOR_OUTPUTS)

    @property
    def zero_htlc_tx_fee(self) -> bool:
        return bool(self & ChannelType.ZERO_HTLC_TX_FEE)

    @property
    def has_lease_expiration(self) -> bool:
        return bool(self & ChannelType.LEASE_EXPIRATION)

    @property
    def is_taproot(self) -> bool:
        return bool(self & ChannelType.SIMPLE_TAPROOT)

    @property
    def has_tapscript_root(self) -> bool:
        return bool(self & ChannelType.TAPSCRIPT_ROOT)


class OutPoint(BaseModel):
    """A transaction output reference, written as txid:index."""

    model_config = ConfigDict(frozen=True)

    txid: str = Field(..., pattern=r"^[0-9a-f]{64}$")
    index: int = Field(..., ge=0, le=0xFFFFFFFF)

    @model_validator(mode="before")
    @classmethod
    def parse_string(cls, data: Any) -> Any:
        if isinstance(data, str):
            txid, sep, index = data.rpartition(":")
            if not sep or not index.isdigit():
                raise ValueError(f"invalid outpoint: {data!r}")
            return {"txid": txid.lower(), "index": int(index)}
        return data

    @classmethod
    def parse(cls, value: str) -> OutPoint:
        return cls.model_validate(value)

    def __str__(self) -> str:
        return f"{self.txid}:{self.index}"


class LocalCommitment(BaseModel):
    """Latest local commitment: unsigned-by-us tx plus the remote's signature."""

    commit_height: int = Field(default=0, ge=0)
    commit_tx: HexBytes | None = None
    commit_sig: HexBytes | None = None
    local_balance: int = Field(default=0, ge=0)
    remote_balance: int = Field(default=0, ge=0)
    commit_fee: int = Field(default=0, ge=0)


class OpenChannelState(BaseModel):
    funding_outpoint: OutPoint
    chain_hash: str = ""
    chan_type: int = Field(default=0, ge=0)
    is_initiator: bool = False
    capacity: int = Field(..., gt=0)
    short_channel_id: str = ""
    remote_node_pub: HexBytes | None = None
    local_chan_cfg: ChannelConfig
    remote_chan_cfg: ChannelConfig
    local_commitment: LocalCommitment = Field(default_factory=LocalCommitment)
    revocation_producer_root: HexBytes | None = None
    sha_chain_root_desc: KeyDescriptor | None = None
    thaw_height: int = Field(default=0, ge=0)
    tapscript_root: HexBytes | None = None

    @property
    def channel_type(self) -> ChannelType:
        return ChannelType(self.chan_type)


class BackupVersion(IntEnum):
    """Version of a static channel backup record."""

    DEFAULT = 0
    TWEAKLESS = 1
    ANCHORS = 2
    ANCHORS_ZERO_FEE_HTLC = 3
    SCRIPT_ENFORCED_LEASE = 4
    SIMPLE_TAPROOT = 5
    TAPSCRIPT_ROOT = 6

    def channel_type(self) -> ChannelType:
        anchors_zero_fee = (
            ChannelType.ZERO_HTLC_TX_FEE
            | ChannelType.ANCHOR_OUTPUTS
            | ChannelType.SINGLE_FUNDER_TWEAKLESS
        )
        mapping = {
            BackupVersion.DEFAULT: ChannelType.SINGLE_FUNDER,
            BackupVersion.TWEAKLESS: ChannelType.SINGLE_FUNDER_TWEAKLESS,
            BackupVersion.ANCHORS: ChannelType.ANCHOR_OUTPUTS
            | ChannelType.SINGLE_FUNDER_TWEAKLESS,
            BackupVersion.ANCHORS_ZERO_FEE_HTLC: anchors_zero_fee,
            BackupVersion.SCRIPT_ENFORCED_LEASE: anchors_zero_fee
            | ChannelType.LEASE_EXPIRATION,
            BackupVersion.SIMPLE_TAPROOT: anchors_zero_fee | ChannelType.SIMPLE_TAPROOT,
            BackupVersion.TAPSCRIPT_ROOT: anchors_zero_fee
            | ChannelType.SIMPLE_TAPROOT
            | ChannelType.TAPSCRIPT_ROOT,
        }
        return mapping[self]

    @property
    def is_taproot(self) -> bool:
        return self in (BackupVersion.SIMPLE_TAPROOT, BackupVersion.TAPSCRIPT_ROOT)


class CloseTxInputs(BaseModel):
    """Commitment data optionally cached inside a backup record."""

    commit_tx: HexBytes
    commit_sig: HexBytes
    commit_height: int = Field(default=0, ge=0)
    tapscript_root: HexBytes | None = None


class ChannelBackupSingle(BaseModel):
    """A decrypted static channel backup entry."""

    version: BackupVersion = BackupVersion.DEFAULT
    is_initiator: bool = False
    chain_hash: str = ""
    funding_outpoint: OutPoint
    short_channel_id: str = ""
    remote_node_pub: HexBytes | None = None
    addresses: list[str] = Field(default_factory=list)
    capacity: int = Field(..., gt=0)
    local_chan_cfg: ChannelConfig
    remote_chan_cfg: ChannelConfig
    sha_chain_root_desc: KeyDescriptor | None = None
    lease_expiry: int = Field(default=0, ge=0)
    close_tx_inputs: CloseTxInputs | None = None
