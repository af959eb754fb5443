"""
Tests for in-process witness verification.
"""

import pytest
from coincurve import PrivateKey

from chancore.bitcoin.address import hash160, p2tr_script, p2wpkh_script
from chancore.bitcoin.sighash import (
    compute_sighash_segwit,
    compute_sighash_taproot,
    p2wpkh_script_code,
)
from chancore.bitcoin.taproot import taproot_tweak_pubkey, taproot_tweak_seckey
from chancore.bitcoin.tx import Transaction, TxIn, TxOut
from chancore.bitcoin.verify import verify_input, verify_transaction
from chancore.channel.scripts import gen_funding_script
from chancore.constants import SIGHASH_ALL
from chancore.errors import ScriptVerificationError

KEY_A = PrivateKey(b"\x11" * 32)
KEY_B = PrivateKey(b"\x22" * 32)


def _spending_tx() -> Transaction:
    return Transaction(
        inputs=[TxIn("cd" * 32, 0)],
        outputs=[TxOut(90_000, p2wpkh_script(KEY_B.public_key.format()))],
    )


def _signed_p2wpkh() -> tuple[Transaction, TxOut]:
    pub = KEY_A.public_key.format()
    prevout = TxOut(100_000, p2wpkh_script(pub))
    tx = _spending_tx()
    sighash = compute_sighash_segwit(
        tx, 0, p2wpkh_script_code(hash160(pub)), prevout.value, SIGHASH_ALL
    )
    tx.inputs[0].witness = [KEY_A.sign(sighash, hasher=None) + b"\x01", pub]
    return tx, prevout


def _multisig_spend(reverse: bool = False) -> tuple[Transaction, TxOut]:
    pub_a, pub_b = KEY_A.public_key.format(), KEY_B.public_key.format()
    witness_script, prevout = gen_funding_script(pub_a, pub_b, 100_000)
    tx = _spending_tx()
    sighash = compute_sighash_segwit(tx, 0, witness_script, prevout.value, SIGHASH_ALL)
    sigs = {
        pub_a: KEY_A.sign(sighash, hasher=None) + b"\x01",
        pub_b: KEY_B.sign(sighash, hasher=None) + b"\x01",
    }
    ordered = [sigs[k] for k in sorted(sigs, reverse=reverse)]
    tx.inputs[0].witness = [b""] + ordered + [witness_script]
    return tx, prevout


class TestP2wpkh:
    def test_valid(self):
        tx, prevout = _signed_p2wpkh()
        verify_input(tx, 0, [prevout])

    def test_wrong_amount(self):
        tx, prevout = _signed_p2wpkh()
        with pytest.raises(ScriptVerificationError, match="invalid signature"):
            verify_input(tx, 0, [TxOut(100_001, prevout.script_pubkey)])

    def test_wrong_pubkey(self):
        tx, prevout = _signed_p2wpkh()
        tx.inputs[0].witness[1] = KEY_B.public_key.format()
        with pytest.raises(ScriptVerificationError, match="does not match"):
            verify_input(tx, 0, [prevout])


class TestP2wshMultisig:
    def test_valid(self):
        tx, prevout = _multisig_spend()
        verify_transaction(tx, [prevout])

    def test_signature_order_matters(self):
        tx, prevout = _multisig_spend(reverse=True)
        with pytest.raises(ScriptVerificationError, match="multisig signature check failed"):
            verify_input(tx, 0, [prevout])

    def test_dummy_must_be_empty(self):
        tx, prevout = _multisig_spend()
        tx.inputs[0].witness[0] = b"\x00"
        with pytest.raises(ScriptVerificationError, match="dummy"):
            verify_input(tx, 0, [prevout])


class TestP2trKeyPath:
    def _signed(self, hash_type: int = 0x00) -> tuple[Transaction, TxOut]:
        _, output_key = taproot_tweak_pubkey(KEY_A.public_key.format())
        prevout = TxOut(100_000, p2tr_script(output_key))
        tx = _spending_tx()
        msg = compute_sighash_taproot(tx, 0, [prevout], hash_type)
        sig = PrivateKey(taproot_tweak_seckey(KEY_A.secret)).sign_schnorr(msg)
        tx.inputs[0].witness = [sig if hash_type == 0 else sig + bytes([hash_type])]
        return tx, prevout

    def test_default_sighash(self):
        tx, prevout = self._signed()
        verify_input(tx, 0, [prevout])

    def test_explicit_sighash(self):
        tx, prevout = self._signed(SIGHASH_ALL)
        verify_input(tx, 0, [prevout])

    def test_sighash_byte_is_committed(self):
        tx, prevout = self._signed()
        tx.inputs[0].witness = [tx.inputs[0].witness[0] + b"\x01"]
        with pytest.raises(ScriptVerificationError):
            verify_input(tx, 0, [prevout])

    def test_explicit_default_byte_rejected(self):
        tx, prevout = self._signed()
        tx.inputs[0].witness = [tx.inputs[0].witness[0] + b"\x00"]
        with pytest.raises(ScriptVerificationError, match="length"):
            verify_input(tx, 0, [prevout])


class TestUnsupported:
    def test_needs_all_prevouts(self):
        tx, prevout = _signed_p2wpkh()
        with pytest.raises(ScriptVerificationError):
            verify_input(tx, 0, [prevout, prevout])

    def test_unknown_script(self):
        tx, _ = _signed_p2wpkh()
        with pytest.raises(ScriptVerificationError, match="unsupported script"):
            verify_input(tx, 0, [TxOut(1, b"\x6a")])
