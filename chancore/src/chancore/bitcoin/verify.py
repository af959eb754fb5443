"""
In-process verification of witness spends.

Covers the spend types this project produces: P2WPKH, P2WSH m-of-n
CHECKMULTISIG and P2TR key path spends.
"""

from __future__ import annotations

import hashlib

from coincurve import PublicKey, PublicKeyXOnly
from loguru import logger

from chancore.bitcoin.address import hash160
from chancore.bitcoin.script import is_p2tr, is_p2wpkh, is_p2wsh, parse_multisig
from chancore.bitcoin.sighash import (
    compute_sighash_segwit,
    compute_sighash_taproot,
    p2wpkh_script_code,
)
from chancore.bitcoin.tx import Transaction, TxOut
from chancore.errors import ConstructionError, ScriptVerificationError, SigningError


def verify_ecdsa(pubkey: bytes, der_sig: bytes, sighash: bytes) -> bool:
    try:
        return PublicKey(pubkey).verify(der_sig, sighash, hasher=None)
    except ValueError:
        return False


def _check_ecdsa(
    tx: Transaction, index: int, script_code: bytes, value: int, pubkey: bytes, sig: bytes
) -> bool:
    if len(sig) < 9:
        return False
    sighash = compute_sighash_segwit(tx, index, script_code, value, sig[-1])
    return verify_ecdsa(pubkey, sig[:-1], sighash)


def _verify_p2wpkh(tx: Transaction, index: int, prevout: TxOut) -> None:
    witness = tx.inputs[index].witness
    if len(witness) != 2:
        raise ScriptVerificationError(f"input {index}: P2WPKH witness must have 2 items")
    sig, pubkey = witness
    if hash160(pubkey) != prevout.script_pubkey[2:]:
        raise ScriptVerificationError(f"input {index}: public key does not match program")
    script_code = p2wpkh_script_code(prevout.script_pubkey[2:])
    if not _check_ecdsa(tx, index, script_code, prevout.value, pubkey, sig):
        raise ScriptVerificationError(f"input {index}: invalid signature")


def _verify_p2wsh(tx: Transaction, index: int, prevout: TxOut) -> None:
    witness = tx.inputs[index].witness
    if not witness:
        raise ScriptVerificationError(f"input {index}: empty witness")
    witness_script = witness[-1]
    if hashlib.sha256(witness_script).digest() != prevout.script_pubkey[2:]:
        raise ScriptVerificationError(f"input {index}: witness script does not match program")

    try:
        required, pubkeys = parse_multisig(witness_script)
    except ConstructionError as e:
        raise ScriptVerificationError(
            f"input {index}: only multisig witness scripts can be verified"
        ) from e

    stack = witness[:-1]
    if len(stack) != required + 1:
        raise ScriptVerificationError(
            f"input {index}: expected {required} signatures plus dummy element"
        )
    if stack[0] != b"":
        raise ScriptVerificationError(f"input {index}: CHECKMULTISIG dummy must be empty")

    # Signatures must appear in the same order as their keys
    key_iter = iter(pubkeys)
    for sig in stack[1:]:
        for pubkey in key_iter:
            if _check_ecdsa(tx, index, witness_script, prevout.value, pubkey, sig):
                break
        else:
            raise ScriptVerificationError(f"input {index}: multisig signature check failed")


def _verify_p2tr(tx: Transaction, index: int, prevouts: list[TxOut]) -> None:
    witness = list(tx.inputs[index].witness)
    annex = None
    if len(witness) >= 2 and witness[-1][:1] == b"\x50":
        annex = witness.pop()
    if len(witness) != 1:
        raise ScriptVerificationError(f"input {index}: only key path spends can be verified")

    sig = witness[0]
    if len(sig) == 64:
        hash_type = 0x00
    elif len(sig) == 65 and sig[64] != 0x00:
        hash_type = sig[64]
    else:
        raise ScriptVerificationError(f"input {index}: invalid schnorr signature length")

    try:
        msg = compute_sighash_taproot(tx, index, prevouts, hash_type, annex=annex)
    except SigningError as e:
        raise ScriptVerificationError(f"input {index}: {e}") from e

    output_key = prevouts[index].script_pubkey[2:]
    try:
        valid = PublicKeyXOnly(output_key).verify(sig[:64], msg)
    except ValueError:
        valid = False
    if not valid:
        raise ScriptVerificationError(f"input {index}: invalid schnorr signature")


def verify_input(tx: Transaction, index: int, prevouts: list[TxOut]) -> None:
    """Verify the witness of one input against the outputs it spends."""
    if len(prevouts) != len(tx.inputs):
        raise ScriptVerificationError("need the spent output of every input")
    prevout = prevouts[index]
    script = prevout.script_pubkey

    if is_p2wpkh(script):
        _verify_p2wpkh(tx, index, prevout)
    elif is_p2wsh(script):
        _verify_p2wsh(tx, index, prevout)
    elif is_p2tr(script):
        _verify_p2tr(tx, index, prevouts)
    else:
        raise ScriptVerificationError(f"input {index}: unsupported script {script.hex()}")
    logger.debug(f"Verified input {index} of {tx.txid()}")


def verify_transaction(tx: Transaction, prevouts: list[TxOut]) -> None:
    for index in range(len(tx.inputs)):
        verify_input(tx, index, prevouts)
