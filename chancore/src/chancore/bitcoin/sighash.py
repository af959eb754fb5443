"""
Signature hashes for segwit v0 (BIP143) and taproot (BIP341/BIP342) inputs.
"""

from __future__ import annotations

import hashlib

from chancore.bitcoin.taproot import tagged_hash
from chancore.bitcoin.tx import Transaction, TxOut, encode_varint, hash256
from chancore.constants import (
    SIGHASH_ANYONECANPAY,
    SIGHASH_DEFAULT,
    SIGHASH_NONE,
    SIGHASH_SINGLE,
)
from chancore.errors import SigningError

ZERO_HASH = b"\x00" * 32


def _sha256(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def compute_sighash_segwit(
    tx: Transaction,
    input_index: int,
    script_code: bytes,
    value: int,
    sighash_type: int,
) -> bytes:
    """BIP143 signature hash of a witness v0 input."""
    if input_index >= len(tx.inputs):
        raise SigningError(f"Input index {input_index} out of range")

    base_type = sighash_type & 0x1F
    anyone_can_pay = bool(sighash_type & SIGHASH_ANYONECANPAY)

    hash_prevouts = ZERO_HASH
    if not anyone_can_pay:
        hash_prevouts = hash256(b"".join(inp.serialize_outpoint() for inp in tx.inputs))

    hash_sequence = ZERO_HASH
    if not anyone_can_pay and base_type not in (SIGHASH_SINGLE, SIGHASH_NONE):
        hash_sequence = hash256(b"".join(inp.sequence.to_bytes(4, "little") for inp in tx.inputs))

    hash_outputs = ZERO_HASH
    if base_type not in (SIGHASH_SINGLE, SIGHASH_NONE):
        hash_outputs = hash256(b"".join(out.serialize() for out in tx.outputs))
    elif base_type == SIGHASH_SINGLE and input_index < len(tx.outputs):
        hash_outputs = hash256(tx.outputs[input_index].serialize())

    target_input = tx.inputs[input_index]

    preimage = (
        tx.version.to_bytes(4, "little")
        + hash_prevouts
        + hash_sequence
        + target_input.serialize_outpoint()
        + encode_varint(len(script_code))
        + script_code
        + value.to_bytes(8, "little")
        + target_input.sequence.to_bytes(4, "little")
        + hash_outputs
        + tx.locktime.to_bytes(4, "little")
        + sighash_type.to_bytes(4, "little")
    )

    return hash256(preimage)


def p2wpkh_script_code(pubkey_hash: bytes) -> bytes:
    """BIP143 scriptCode of a P2WPKH input (the P2PKH script)."""
    return b"\x76\xa9\x14" + pubkey_hash + b"\x88\xac"


def compute_sighash_taproot(
    tx: Transaction,
    input_index: int,
    prevouts: list[TxOut],
    sighash_type: int = SIGHASH_DEFAULT,
    leaf_hash: bytes | None = None,
    annex: bytes | None = None,
    codesep_pos: int = 0xFFFFFFFF,
) -> bytes:
    """
    BIP341 signature hash. A leaf_hash selects the tapscript (BIP342)
    extension used by script path spends.
    """
    if input_index >= len(tx.inputs):
        raise SigningError(f"Input index {input_index} out of range")
    if len(prevouts) != len(tx.inputs):
        raise SigningError("taproot sighash needs the previous output of every input")
    if sighash_type not in (0x00, 0x01, 0x02, 0x03, 0x81, 0x82, 0x83):
        raise SigningError(f"invalid taproot sighash type {sighash_type:#x}")

    base_type = sighash_type & 0x03
    anyone_can_pay = bool(sighash_type & SIGHASH_ANYONECANPAY)

    msg = bytearray(b"\x00")
    msg.append(sighash_type)
    msg += tx.version.to_bytes(4, "little")
    msg += tx.locktime.to_bytes(4, "little")

    if not anyone_can_pay:
        msg += _sha256(b"".join(inp.serialize_outpoint() for inp in tx.inputs))
        msg += _sha256(b"".join(p.value.to_bytes(8, "little") for p in prevouts))
        msg += _sha256(
            b"".join(encode_varint(len(p.script_pubkey)) + p.script_pubkey for p in prevouts)
        )
        msg += _sha256(b"".join(inp.sequence.to_bytes(4, "little") for inp in tx.inputs))

    if base_type not in (SIGHASH_NONE, SIGHASH_SINGLE):
        msg += _sha256(b"".join(out.serialize() for out in tx.outputs))

    ext_flag = 1 if leaf_hash is not None else 0
    msg.append(ext_flag * 2 + (1 if annex is not None else 0))

    if anyone_can_pay:
        prevout = prevouts[input_index]
        msg += tx.inputs[input_index].serialize_outpoint()
        msg += prevout.value.to_bytes(8, "little")
        msg += encode_varint(len(prevout.script_pubkey)) + prevout.script_pubkey
        msg += tx.inputs[input_index].sequence.to_bytes(4, "little")
    else:
        msg += input_index.to_bytes(4, "little")

    if annex is not None:
        msg += _sha256(encode_varint(len(annex)) + annex)

    if base_type == SIGHASH_SINGLE:
        if input_index >= len(tx.outputs):
            raise SigningError("SIGHASH_SINGLE without a corresponding output")
        msg += _sha256(tx.outputs[input_index].serialize())

    if leaf_hash is not None:
        msg += leaf_hash
        msg.append(0x00)
        msg += codesep_pos.to_bytes(4, "little")

    return tagged_hash("TapSighash", bytes(msg))
