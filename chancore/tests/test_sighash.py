"""
Tests for BIP143 and BIP341 signature hashes.
"""

import pytest

from chancore.bitcoin.address import p2tr_script, p2wpkh_script
from chancore.bitcoin.sighash import (
    compute_sighash_segwit,
    compute_sighash_taproot,
    p2wpkh_script_code,
)
from chancore.bitcoin.taproot import tap_leaf_hash
from chancore.bitcoin.tx import Transaction, TxIn, TxOut
from chancore.constants import (
    SIGHASH_ALL,
    SIGHASH_ANYONECANPAY,
    SIGHASH_DEFAULT,
    SIGHASH_NONE,
    SIGHASH_SINGLE,
)
from chancore.errors import SigningError

PUBKEY_HASH = bytes.fromhex("751e76e8199196d454941c45d1b3a323f1433bd6")
SCRIPT_CODE = p2wpkh_script_code(PUBKEY_HASH)
P2TR = p2tr_script(b"\x79" * 32)


def _tx(second_txid: str = "02" * 32) -> Transaction:
    return Transaction(
        inputs=[TxIn("01" * 32, 0), TxIn(second_txid, 1)],
        outputs=[TxOut(10_000, p2wpkh_script(b"\x02" * 33))],
    )


class TestSegwitSighash:
    def test_script_code(self):
        assert SCRIPT_CODE.hex() == "76a914751e76e8199196d454941c45d1b3a323f1433bd688ac"

    def test_types_differ(self):
        tx = _tx()
        hashes = {
            compute_sighash_segwit(tx, 0, SCRIPT_CODE, 20_000, t)
            for t in (SIGHASH_ALL, SIGHASH_NONE, SIGHASH_SINGLE, SIGHASH_ALL | SIGHASH_ANYONECANPAY)
        }
        assert len(hashes) == 4

    def test_value_is_committed(self):
        tx = _tx()
        assert compute_sighash_segwit(tx, 0, SCRIPT_CODE, 20_000, SIGHASH_ALL) != (
            compute_sighash_segwit(tx, 0, SCRIPT_CODE, 20_001, SIGHASH_ALL)
        )

    def test_anyonecanpay_ignores_other_inputs(self):
        flags = SIGHASH_ALL | SIGHASH_ANYONECANPAY
        assert compute_sighash_segwit(_tx(), 0, SCRIPT_CODE, 1, flags) == (
            compute_sighash_segwit(_tx("03" * 32), 0, SCRIPT_CODE, 1, flags)
        )
        assert compute_sighash_segwit(_tx(), 0, SCRIPT_CODE, 1, SIGHASH_ALL) != (
            compute_sighash_segwit(_tx("03" * 32), 0, SCRIPT_CODE, 1, SIGHASH_ALL)
        )

    def test_index_out_of_range(self):
        with pytest.raises(SigningError):
            compute_sighash_segwit(_tx(), 2, SCRIPT_CODE, 1, SIGHASH_ALL)


class TestTaprootSighash:
    def _prevouts(self) -> list[TxOut]:
        return [TxOut(20_000, P2TR), TxOut(30_000, P2TR)]

    def test_default_differs_from_all(self):
        tx = _tx()
        assert compute_sighash_taproot(tx, 0, self._prevouts(), SIGHASH_DEFAULT) != (
            compute_sighash_taproot(tx, 0, self._prevouts(), SIGHASH_ALL)
        )

    def test_all_prevout_amounts_committed(self):
        tx = _tx()
        changed = [TxOut(20_000, P2TR), TxOut(30_001, P2TR)]
        assert compute_sighash_taproot(tx, 0, self._prevouts()) != (
            compute_sighash_taproot(tx, 0, changed)
        )

    def test_leaf_hash_changes_message(self):
        tx = _tx()
        assert compute_sighash_taproot(tx, 0, self._prevouts()) != compute_sighash_taproot(
            tx, 0, self._prevouts(), leaf_hash=tap_leaf_hash(b"\x51")
        )

    def test_annex_changes_message(self):
        tx = _tx()
        assert compute_sighash_taproot(tx, 0, self._prevouts()) != compute_sighash_taproot(
            tx, 0, self._prevouts(), annex=b"\x50\x01"
        )

    def test_single_without_output(self):
        with pytest.raises(SigningError, match="SIGHASH_SINGLE"):
            compute_sighash_taproot(_tx(), 1, self._prevouts(), SIGHASH_SINGLE)

    def test_invalid_type(self):
        with pytest.raises(SigningError):
            compute_sighash_taproot(_tx(), 0, self._prevouts(), 0x04)

    def test_needs_every_prevout(self):
        with pytest.raises(SigningError):
            compute_sighash_taproot(_tx(), 0, self._prevouts()[:1])
