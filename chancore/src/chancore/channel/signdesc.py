"""
Sign descriptors: everything the signer needs to produce one input signature.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from chancore.bitcoin.address import p2wsh_script
from chancore.bitcoin.script import is_p2tr, is_p2wpkh, is_p2wsh
from chancore.bitcoin.tx import TxOut
from chancore.channel.scripts import gen_funding_script
from chancore.constants import SIGHASH_ALL
from chancore.errors import ConstructionError, UnsupportedChannelTypeError
from chancore.models import ChannelBackupSingle, ChannelConfig, ChannelType, KeyDescriptor


class SignMethod(str, Enum):
    WITNESS_V0 = "witness_v0"
    TAPROOT_KEY_SPEND_BIP86 = "taproot_key_spend_bip86"
    TAPROOT_KEY_SPEND = "taproot_key_spend"
    TAPROOT_SCRIPT_SPEND = "taproot_script_spend"

    @property
    def is_taproot(self) -> bool:
        return self != SignMethod.WITNESS_V0


@dataclass
class SignDescriptor:
    """
    Key, script and spent output of one input. output must be exactly the
    output being spent; its value and script are committed to by the
    signature hash.
    """

    key_desc: KeyDescriptor
    output: TxOut
    witness_script: bytes | None = None
    hash_type: int = SIGHASH_ALL
    input_index: int = 0
    single_tweak: bytes | None = None
    double_tweak: bytes | None = None
    tap_tweak: bytes | None = None
    sign_method: SignMethod = SignMethod.WITNESS_V0
    peer: bytes | None = None

    def validate(self) -> None:
        if self.single_tweak is not None and self.double_tweak is not None:
            raise ConstructionError("sign descriptor cannot have both a single and a double tweak")
        for name, tweak in (("single", self.single_tweak), ("double", self.double_tweak)):
            if tweak is not None and len(tweak) != 32:
                raise ConstructionError(f"{name} tweak must be 32 bytes")

        pk_script = self.output.script_pubkey
        if self.sign_method == SignMethod.WITNESS_V0:
            if self.tap_tweak is not None:
                raise ConstructionError("tap tweak is only valid for taproot key spends")
            if is_p2wsh(pk_script):
                if self.witness_script is None:
                    raise ConstructionError("P2WSH output needs a witness script")
                if p2wsh_script(self.witness_script) != pk_script:
                    raise ConstructionError("witness script does not match the spent output")
            elif not is_p2wpkh(pk_script):
                raise ConstructionError("witness v0 signing needs a P2WSH or P2WPKH output")
            return

        if not is_p2tr(pk_script):
            raise ConstructionError(f"{self.sign_method.value} signing needs a P2TR output")
        if self.sign_method == SignMethod.TAPROOT_SCRIPT_SPEND:
            if self.witness_script is None:
                raise ConstructionError("tapscript spend needs the leaf script")
            if self.tap_tweak is not None:
                raise ConstructionError("tap tweak is not used by script path spends")
            return

        if self.single_tweak is not None or self.double_tweak is not None:
            raise ConstructionError("key path spends cannot use per-commitment tweaks")
        if self.sign_method == SignMethod.TAPROOT_KEY_SPEND_BIP86 and self.tap_tweak:
            raise ConstructionError("BIP86 key spends have no tap tweak")


def funding_sign_descriptor(
    local_cfg: ChannelConfig,
    remote_cfg: ChannelConfig,
    capacity: int,
    chan_type: ChannelType,
    peer: bytes | None = None,
) -> SignDescriptor:
    """
    Descriptor for our signature on the funding output of a channel. peer is
    the counterparty node key, needed when our keys are derived per peer.
    """
    if chan_type.is_taproot:
        raise UnsupportedChannelTypeError(
            "taproot channels need a MuSig2 signing session, which is not supported"
        )
    local_key = local_cfg.multisig_key.pub_key
    remote_key = remote_cfg.multisig_key.pub_key
    if local_key is None or remote_key is None:
        raise ConstructionError("both multisig public keys are required")

    witness_script, output = gen_funding_script(local_key, remote_key, capacity)
    return SignDescriptor(
        key_desc=local_cfg.multisig_key,
        output=output,
        witness_script=witness_script,
        hash_type=SIGHASH_ALL,
        input_index=0,
        peer=peer,
    )


def funding_sign_descriptor_from_backup(backup: ChannelBackupSingle) -> SignDescriptor:
    if backup.version.is_taproot:
        raise UnsupportedChannelTypeError(
            f"backup of {backup.funding_outpoint} is a taproot channel, "
            "MuSig2 session state cannot be recovered from a backup"
        )
    if backup.local_chan_cfg.multisig_key.pub_key is None:
        raise ConstructionError(
            f"backup of {backup.funding_outpoint} is missing signing data: local multisig key"
        )
    if backup.remote_chan_cfg.multisig_key.pub_key is None:
        raise ConstructionError(
            f"backup of {backup.funding_outpoint} is missing signing data: remote multisig key"
        )
    return funding_sign_descriptor(
        backup.local_chan_cfg,
        backup.remote_chan_cfg,
        backup.capacity,
        backup.version.channel_type(),
        peer=backup.remote_node_pub,
    )
