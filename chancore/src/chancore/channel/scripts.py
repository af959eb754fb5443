"""
Channel output scripts: the 2-of-2 funding output and the commitment outputs
(to_local, to_remote, anchors) for every supported channel type.
"""

from __future__ import annotations

from dataclasses import dataclass

from chancore.bitcoin.address import p2wpkh_script, p2wsh_script
from chancore.bitcoin.script import OP, encode_script, script_num
from chancore.bitcoin.taproot import TapLeaf, TapscriptTree, musig2_funding_key, x_only
from chancore.bitcoin.tx import TxOut
from chancore.constants import TAPROOT_NUMS_KEY
from chancore.errors import ConstructionError
from chancore.models import ChannelType


def _check_pubkey(key: bytes | None, name: str) -> bytes:
    if key is None or len(key) != 33 or key[0] not in (2, 3):
        raise ConstructionError(f"{name} must be a 33 byte compressed public key")
    return key


def gen_multisig_script(key_a: bytes, key_b: bytes) -> bytes:
    """2-of-2 multisig script with the keys in ascending byte order."""
    key_a = _check_pubkey(key_a, "first multisig key")
    key_b = _check_pubkey(key_b, "second multisig key")
    first, second = sorted((key_a, key_b))
    return encode_script([OP.OP_2, first, second, OP.OP_2, OP.OP_CHECKMULTISIG])


def witness_script_hash(witness_script: bytes) -> bytes:
    return p2wsh_script(witness_script)


def gen_funding_script(
    key_a: bytes,
    key_b: bytes,
    capacity: int,
    taproot: bool = False,
    tapscript_root: bytes | None = None,
) -> tuple[bytes | None, TxOut]:
    """
    Funding output of a channel. Returns (witness script, output); taproot
    outputs have no witness script.
    """
    if capacity <= 0:
        raise ConstructionError("channel capacity must be positive")
    if taproot:
        output_key = musig2_funding_key(
            _check_pubkey(key_a, "first multisig key"),
            _check_pubkey(key_b, "second multisig key"),
            tapscript_root,
        )
        return None, TxOut(capacity, bytes([0x51, 0x20]) + output_key)

    witness_script = gen_multisig_script(key_a, key_b)
    return witness_script, TxOut(capacity, witness_script_hash(witness_script))


def commit_script_to_self(csv_timeout: int, self_key: bytes, revoke_key: bytes) -> bytes:
    """
    to_local script:

        OP_IF <revokekey>
        OP_ELSE <csv> OP_CHECKSEQUENCEVERIFY OP_DROP <selfkey>
        OP_ENDIF OP_CHECKSIG
    """
    return encode_script(
        [
            OP.OP_IF,
            _check_pubkey(revoke_key, "revocation key"),
            OP.OP_ELSE,
            script_num(csv_timeout),
            OP.OP_CHECKSEQUENCEVERIFY,
            OP.OP_DROP,
            _check_pubkey(self_key, "delay key"),
            OP.OP_ENDIF,
            OP.OP_CHECKSIG,
        ]
    )


def lease_commit_script_to_self(
    self_key: bytes, revoke_key: bytes, csv_timeout: int, lease_expiry: int
) -> bytes:
    """to_local script of a script enforced lease channel (extra CLTV)."""
    return encode_script(
        [
            OP.OP_IF,
            _check_pubkey(revoke_key, "revocation key"),
            OP.OP_ELSE,
            script_num(lease_expiry),
            OP.OP_CHECKLOCKTIMEVERIFY,
            OP.OP_DROP,
            script_num(csv_timeout),
            OP.OP_CHECKSEQUENCEVERIFY,
            OP.OP_DROP,
            _check_pubkey(self_key, "delay key"),
            OP.OP_ENDIF,
            OP.OP_CHECKSIG,
        ]
    )


def commit_script_to_remote_confirmed(key: bytes) -> bytes:
    """to_remote of anchor channels: <key> OP_CHECKSIGVERIFY 1 OP_CHECKSEQUENCEVERIFY"""
    return encode_script(
        [
            _check_pubkey(key, "remote key"),
            OP.OP_CHECKSIGVERIFY,
            OP.OP_1,
            OP.OP_CHECKSEQUENCEVERIFY,
        ]
    )


def lease_commit_script_to_remote_confirmed(key: bytes, lease_expiry: int) -> bytes:
    return encode_script(
        [
            _check_pubkey(key, "remote key"),
            OP.OP_CHECKSIGVERIFY,
            script_num(lease_expiry),
            OP.OP_CHECKLOCKTIMEVERIFY,
            OP.OP_DROP,
            OP.OP_1,
            OP.OP_CHECKSEQUENCEVERIFY,
        ]
    )


def commit_anchor_script(key: bytes) -> bytes:
    """
    Anchor output script:

        <key> OP_CHECKSIG OP_IFDUP
        OP_NOTIF 16 OP_CHECKSEQUENCEVERIFY OP_ENDIF
    """
    return encode_script(
        [
            _check_pubkey(key, "anchor key"),
            OP.OP_CHECKSIG,
            OP.OP_IFDUP,
            OP.OP_NOTIF,
            OP.OP_16,
            OP.OP_CHECKSEQUENCEVERIFY,
            OP.OP_ENDIF,
        ]
    )


def taproot_local_commit_tree(
    csv_timeout: int, self_key: bytes, revoke_key: bytes
) -> TapscriptTree:
    """to_local of a taproot channel: a delay leaf and a revocation leaf over the NUMS key."""
    delay_leaf = encode_script(
        [
            x_only(_check_pubkey(self_key, "delay key")),
            OP.OP_CHECKSIG,
            script_num(csv_timeout),
            OP.OP_CHECKSEQUENCEVERIFY,
            OP.OP_DROP,
        ]
    )
    revoke_leaf = encode_script(
        [
            x_only(self_key),
            OP.OP_DROP,
            x_only(_check_pubkey(revoke_key, "revocation key")),
            OP.OP_CHECKSIG,
        ]
    )
    return TapscriptTree(TAPROOT_NUMS_KEY, [TapLeaf(delay_leaf), TapLeaf(revoke_leaf)])


def taproot_remote_commit_tree(remote_key: bytes) -> TapscriptTree:
    leaf = encode_script(
        [
            x_only(_check_pubkey(remote_key, "remote key")),
            OP.OP_CHECKSIG,
            OP.OP_1,
            OP.OP_CHECKSEQUENCEVERIFY,
            OP.OP_DROP,
        ]
    )
    return TapscriptTree(TAPROOT_NUMS_KEY, [TapLeaf(leaf)])


@dataclass
class CommitScript:
    """
    A commitment output: its output script plus whatever is needed to spend
    it, a witness script for segwit v0 or a script tree for taproot.
    """

    pk_script: bytes
    witness_script: bytes | None = None
    tap_tree: TapscriptTree | None = None

    @classmethod
    def from_witness_script(cls, witness_script: bytes) -> CommitScript:
        return cls(pk_script=witness_script_hash(witness_script), witness_script=witness_script)

    @classmethod
    def from_tap_tree(cls, tree: TapscriptTree) -> CommitScript:
        return cls(pk_script=tree.pk_script(), tap_tree=tree)

    def leaf_script(self, leaf_index: int) -> bytes:
        if self.tap_tree is None:
            raise ConstructionError("not a taproot commitment output")
        return self.tap_tree.leaves[leaf_index].script

    def control_block(self, leaf_index: int) -> bytes:
        if self.tap_tree is None:
            raise ConstructionError("not a taproot commitment output")
        return self.tap_tree.control_block(leaf_index)


def commit_script_to_self_for_type(
    chan_type: ChannelType,
    initiator: bool,
    self_key: bytes,
    revoke_key: bytes,
    csv_timeout: int,
    lease_expiry: int = 0,
) -> CommitScript:
    if chan_type.is_taproot:
        return CommitScript.from_tap_tree(
            taproot_local_commit_tree(csv_timeout, self_key, revoke_key)
        )
    if chan_type.has_lease_expiration and initiator:
        return CommitScript.from_witness_script(
            lease_commit_script_to_self(self_key, revoke_key, csv_timeout, lease_expiry)
        )
    return CommitScript.from_witness_script(
        commit_script_to_self(csv_timeout, self_key, revoke_key)
    )


def commit_script_to_remote(
    chan_type: ChannelType, initiator: bool, key: bytes, lease_expiry: int = 0
) -> tuple[CommitScript, int]:
    """
    to_remote output for a channel type. Returns the script and the CSV delay
    the output is encumbered with.
    """
    if chan_type.is_taproot:
        return CommitScript.from_tap_tree(taproot_remote_commit_tree(key)), 1

    if chan_type.has_lease_expiration and not initiator:
        script = lease_commit_script_to_remote_confirmed(key, lease_expiry)
        return CommitScript.from_witness_script(script), 1

    if chan_type.has_anchors:
        return CommitScript.from_witness_script(commit_script_to_remote_confirmed(key)), 1

    key = _check_pubkey(key, "remote key")
    return CommitScript(pk_script=p2wpkh_script(key), witness_script=p2wpkh_script(key)), 0
