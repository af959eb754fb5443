"""
Tests for the transaction model and its serialization.
"""

import pytest

from chancore.bitcoin.tx import (
    Transaction,
    TxIn,
    TxOut,
    deserialize_transaction,
    encode_varint,
    hash256,
    read_varint,
)
from chancore.errors import ConstructionError

P2WPKH_SCRIPT = bytes.fromhex("0014751e76e8199196d454941c45d1b3a323f1433bd6")


def _sample_tx(witness: bool = True) -> Transaction:
    inp = TxIn("ab" * 32, 1, sequence=0xFFFFFFFD)
    if witness:
        inp.witness = [b"\x30" * 71, b"\x02" * 33]
    return Transaction(
        version=2,
        inputs=[inp],
        outputs=[TxOut(50_000, P2WPKH_SCRIPT), TxOut(1_000, b"\x6a\x00")],
        locktime=800_000,
    )


class TestHash256:
    def test_empty_input(self):
        assert hash256(b"").hex() == (
            "5df6e0e2761359d30a8275058e299fcc0381534545f55cf43e41983f5d4c9456"
        )


class TestVarint:
    def test_roundtrip(self):
        for value in [0, 1, 252, 253, 0xFFFF, 0x10000, 0xFFFFFFFF, 0x100000000]:
            encoded = encode_varint(value)
            decoded, offset = read_varint(encoded, 0)
            assert decoded == value
            assert offset == len(encoded)


class TestTransaction:
    def test_witness_roundtrip(self):
        tx = _sample_tx()
        parsed = deserialize_transaction(tx.serialize())
        assert parsed == tx
        assert parsed.inputs[0].witness == tx.inputs[0].witness

    def test_txid_ignores_witness(self):
        assert _sample_tx().txid() == _sample_tx(witness=False).txid()
        assert _sample_tx().wtxid() != _sample_tx(witness=False).wtxid()

    def test_outpoint_is_display_order(self):
        tx = _sample_tx()
        assert tx.inputs[0].outpoint == f"{'ab' * 32}:1"
        serialized = tx.serialize(include_witness=False)
        assert serialized[5:37] == bytes.fromhex("ab" * 32)[::-1]

    def test_weight(self):
        tx = _sample_tx()
        base = len(tx.serialize(include_witness=False))
        total = len(tx.serialize())
        assert tx.weight() == base * 3 + total
        assert tx.vsize() == (tx.weight() + 3) // 4

    def test_legacy_has_no_marker(self):
        raw = _sample_tx(witness=False).serialize()
        assert raw[4] == 1

    def test_copy_is_independent(self):
        tx = _sample_tx()
        clone = tx.copy()
        clone.inputs[0].witness = []
        clone.outputs[0].value = 1
        assert tx.inputs[0].witness
        assert tx.outputs[0].value == 50_000

    def test_trailing_data(self):
        with pytest.raises(ConstructionError):
            deserialize_transaction(_sample_tx().serialize() + b"\x00")

    def test_truncated(self):
        with pytest.raises(ConstructionError):
            deserialize_transaction(_sample_tx().serialize()[:-10])

    def test_hex(self):
        tx = _sample_tx()
        assert bytes.fromhex(tx.hex()) == tx.serialize()
