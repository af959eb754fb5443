"""
Bitcoin transaction model and (de)serialization with segwit support.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field

from chancore.constants import SEQUENCE_FINAL
from chancore.errors import ConstructionError

WITNESS_SCALE_FACTOR = 4


def hash256(data: bytes) -> bytes:
    return hashlib.sha256(hashlib.sha256(data).digest()).digest()


def read_varint(data: bytes, offset: int) -> tuple[int, int]:
    first = data[offset]
    offset += 1

    if first < 0xFD:
        return first, offset
    if first == 0xFD:
        value = int.from_bytes(data[offset : offset + 2], "little")
        return value, offset + 2
    if first == 0xFE:
        value = int.from_bytes(data[offset : offset + 4], "little")
        return value, offset + 4
    value = int.from_bytes(data[offset : offset + 8], "little")
    return value, offset + 8


def encode_varint(value: int) -> bytes:
    if value < 0xFD:
        return bytes([value])
    if value <= 0xFFFF:
        return b"\xfd" + value.to_bytes(2, "little")
    if value <= 0xFFFFFFFF:
        return b"\xfe" + value.to_bytes(4, "little")
    return b"\xff" + value.to_bytes(8, "little")


def serialize_witness(stack: list[bytes]) -> bytes:
    return encode_varint(len(stack)) + b"".join(
        encode_varint(len(item)) + item for item in stack
    )


def deserialize_witness(data: bytes, offset: int = 0) -> tuple[list[bytes], int]:
    count, offset = read_varint(data, offset)
    stack = []
    for _ in range(count):
        length, offset = read_varint(data, offset)
        stack.append(data[offset : offset + length])
        offset += length
    return stack, offset


@dataclass
class TxIn:
    """Transaction input; txid is in the usual (reversed, display) hex form."""

    txid: str
    vout: int
    script_sig: bytes = b""
    sequence: int = SEQUENCE_FINAL
    witness: list[bytes] = field(default_factory=list)

    def serialize_outpoint(self) -> bytes:
        return bytes.fromhex(self.txid)[::-1] + self.vout.to_bytes(4, "little")

    @property
    def outpoint(self) -> str:
        return f"{self.txid}:{self.vout}"


@dataclass
class TxOut:
    value: int
    script_pubkey: bytes

    def serialize(self) -> bytes:
        return (
            self.value.to_bytes(8, "little")
            + encode_varint(len(self.script_pubkey))
            + self.script_pubkey
        )


@dataclass
class Transaction:
    version: int = 2
    inputs: list[TxIn] = field(default_factory=list)
    outputs: list[TxOut] = field(default_factory=list)
    locktime: int = 0

    @property
    def has_witness(self) -> bool:
        return any(inp.witness for inp in self.inputs)

    def serialize(self, include_witness: bool = True) -> bytes:
        with_witness = include_witness and self.has_witness
        result = bytearray(self.version.to_bytes(4, "little"))
        if with_witness:
            result += b"\x00\x01"

        result += encode_varint(len(self.inputs))
        for inp in self.inputs:
            result += inp.serialize_outpoint()
            result += encode_varint(len(inp.script_sig)) + inp.script_sig
            result += inp.sequence.to_bytes(4, "little")

        result += encode_varint(len(self.outputs))
        for out in self.outputs:
            result += out.serialize()

        if with_witness:
            for inp in self.inputs:
                result += serialize_witness(inp.witness)

        result += self.locktime.to_bytes(4, "little")
        return bytes(result)

    def txid(self) -> str:
        return hash256(self.serialize(include_witness=False))[::-1].hex()

    def wtxid(self) -> str:
        return hash256(self.serialize())[::-1].hex()

    def weight(self) -> int:
        base = len(self.serialize(include_witness=False))
        total = len(self.serialize())
        return base * (WITNESS_SCALE_FACTOR - 1) + total

    def vsize(self) -> int:
        return (self.weight() + WITNESS_SCALE_FACTOR - 1) // WITNESS_SCALE_FACTOR

    def copy(self) -> Transaction:
        return Transaction(
            version=self.version,
            inputs=[
                TxIn(i.txid, i.vout, i.script_sig, i.sequence, list(i.witness))
                for i in self.inputs
            ],
            outputs=[TxOut(o.value, o.script_pubkey) for o in self.outputs],
            locktime=self.locktime,
        )

    def hex(self) -> str:
        return self.serialize().hex()


def deserialize_transaction(tx_bytes: bytes, allow_witness: bool = True) -> Transaction:
    try:
        offset = 0
        version = int.from_bytes(tx_bytes[offset : offset + 4], "little")
        offset += 4

        marker_flag = False
        if allow_witness and tx_bytes[offset] == 0x00 and tx_bytes[offset + 1] == 0x01:
            marker_flag = True
            offset += 2

        input_count, offset = read_varint(tx_bytes, offset)
        inputs: list[TxIn] = []

        for _ in range(input_count):
            txid = tx_bytes[offset : offset + 32][::-1].hex()
            offset += 32

            vout = int.from_bytes(tx_bytes[offset : offset + 4], "little")
            offset += 4

            script_len, offset = read_varint(tx_bytes, offset)
            script = tx_bytes[offset : offset + script_len]
            offset += script_len

            sequence = int.from_bytes(tx_bytes[offset : offset + 4], "little")
            offset += 4

            inputs.append(TxIn(txid, vout, script, sequence))

        output_count, offset = read_varint(tx_bytes, offset)
        outputs: list[TxOut] = []

        for _ in range(output_count):
            value = int.from_bytes(tx_bytes[offset : offset + 8], "little")
            offset += 8

            script_len, offset = read_varint(tx_bytes, offset)
            script = tx_bytes[offset : offset + script_len]
            offset += script_len

            outputs.append(TxOut(value, script))

        if marker_flag:
            for inp in inputs:
                inp.witness, offset = deserialize_witness(tx_bytes, offset)

        if offset + 4 != len(tx_bytes):
            raise ValueError(f"unexpected trailing data at offset {offset}")
        locktime = int.from_bytes(tx_bytes[offset : offset + 4], "little")
        return Transaction(version, inputs, outputs, locktime)

    except (IndexError, ValueError) as e:
        raise ConstructionError(f"Failed to parse transaction: {e}") from e
