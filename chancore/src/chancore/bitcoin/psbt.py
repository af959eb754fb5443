"""
Partially Signed Bitcoin Transactions (BIP174, version 0).

Only what the recovery flows need is modelled as fields: witness UTXOs,
witness scripts, partial signatures, sighash types and final witnesses, plus
the taproot key spend fields. Every other key is kept verbatim as an unknown
so that round trips never drop data.
"""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass, field

from chancore.bitcoin.address import hash160, p2wsh_script
from chancore.bitcoin.script import is_p2tr, is_p2wpkh, is_p2wsh, parse_multisig
from chancore.bitcoin.tx import (
    Transaction,
    TxOut,
    deserialize_transaction,
    deserialize_witness,
    encode_varint,
    read_varint,
    serialize_witness,
)
from chancore.errors import ConstructionError, PsbtError

PSBT_MAGIC = b"psbt\xff"

PSBT_GLOBAL_UNSIGNED_TX = 0x00

PSBT_IN_NON_WITNESS_UTXO = 0x00
PSBT_IN_WITNESS_UTXO = 0x01
PSBT_IN_PARTIAL_SIG = 0x02
PSBT_IN_SIGHASH_TYPE = 0x03
PSBT_IN_REDEEM_SCRIPT = 0x04
PSBT_IN_WITNESS_SCRIPT = 0x05
PSBT_IN_BIP32_DERIVATION = 0x06
PSBT_IN_FINAL_SCRIPTSIG = 0x07
PSBT_IN_FINAL_SCRIPTWITNESS = 0x08
PSBT_IN_TAP_KEY_SIG = 0x13
PSBT_IN_TAP_INTERNAL_KEY = 0x17
PSBT_IN_TAP_MERKLE_ROOT = 0x18

PSBT_OUT_REDEEM_SCRIPT = 0x00
PSBT_OUT_WITNESS_SCRIPT = 0x01
PSBT_OUT_BIP32_DERIVATION = 0x02
PSBT_OUT_TAP_INTERNAL_KEY = 0x05


def _read_map(data: bytes, offset: int) -> tuple[list[tuple[bytes, bytes]], int]:
    """Read key-value pairs up to the 0x00 separator."""
    pairs: list[tuple[bytes, bytes]] = []
    seen: set[bytes] = set()
    while True:
        key_len, offset = read_varint(data, offset)
        if key_len == 0:
            return pairs, offset
        key = data[offset : offset + key_len]
        offset += key_len
        value_len, offset = read_varint(data, offset)
        value = data[offset : offset + value_len]
        offset += value_len
        if len(key) != key_len or len(value) != value_len:
            raise PsbtError("truncated PSBT")
        if key in seen:
            raise PsbtError(f"duplicate PSBT key {key.hex()}")
        seen.add(key)
        pairs.append((key, value))


def _write_pair(key: bytes, value: bytes) -> bytes:
    return encode_varint(len(key)) + key + encode_varint(len(value)) + value


def _parse_txout(value: bytes) -> TxOut:
    amount = int.from_bytes(value[:8], "little")
    script_len, offset = read_varint(value, 8)
    script = value[offset : offset + script_len]
    if offset + script_len != len(value):
        raise PsbtError("invalid witness UTXO encoding")
    return TxOut(amount, script)


@dataclass
class PsbtInput:
    non_witness_utxo: bytes | None = None
    witness_utxo: TxOut | None = None
    partial_sigs: dict[bytes, bytes] = field(default_factory=dict)
    sighash_type: int | None = None
    redeem_script: bytes | None = None
    witness_script: bytes | None = None
    bip32_derivation: dict[bytes, bytes] = field(default_factory=dict)
    final_script_sig: bytes | None = None
    final_script_witness: list[bytes] | None = None
    tap_key_sig: bytes | None = None
    tap_internal_key: bytes | None = None
    tap_merkle_root: bytes | None = None
    unknowns: dict[bytes, bytes] = field(default_factory=dict)

    @property
    def is_finalized(self) -> bool:
        return self.final_script_witness is not None or self.final_script_sig is not None

    @classmethod
    def from_pairs(cls, pairs: list[tuple[bytes, bytes]]) -> PsbtInput:
        pin = cls()
        for key, value in pairs:
            key_type, key_data = key[0], key[1:]
            if key_type == PSBT_IN_NON_WITNESS_UTXO and not key_data:
                pin.non_witness_utxo = value
            elif key_type == PSBT_IN_WITNESS_UTXO and not key_data:
                pin.witness_utxo = _parse_txout(value)
            elif key_type == PSBT_IN_PARTIAL_SIG:
                if len(key_data) != 33:
                    raise PsbtError("partial signature key must be a compressed pubkey")
                pin.partial_sigs[key_data] = value
            elif key_type == PSBT_IN_SIGHASH_TYPE and not key_data:
                pin.sighash_type = int.from_bytes(value, "little")
            elif key_type == PSBT_IN_REDEEM_SCRIPT and not key_data:
                pin.redeem_script = value
            elif key_type == PSBT_IN_WITNESS_SCRIPT and not key_data:
                pin.witness_script = value
            elif key_type == PSBT_IN_BIP32_DERIVATION:
                pin.bip32_derivation[key_data] = value
            elif key_type == PSBT_IN_FINAL_SCRIPTSIG and not key_data:
                pin.final_script_sig = value
            elif key_type == PSBT_IN_FINAL_SCRIPTWITNESS and not key_data:
                pin.final_script_witness, _ = deserialize_witness(value)
            elif key_type == PSBT_IN_TAP_KEY_SIG and not key_data:
                pin.tap_key_sig = value
            elif key_type == PSBT_IN_TAP_INTERNAL_KEY and not key_data:
                pin.tap_internal_key = value
            elif key_type == PSBT_IN_TAP_MERKLE_ROOT and not key_data:
                pin.tap_merkle_root = value
            else:
                pin.unknowns[key] = value
        return pin

    def serialize(self) -> bytes:
        out = bytearray()
        if self.non_witness_utxo is not None:
            out += _write_pair(bytes([PSBT_IN_NON_WITNESS_UTXO]), self.non_witness_utxo)
        if self.witness_utxo is not None:
            out += _write_pair(bytes([PSBT_IN_WITNESS_UTXO]), self.witness_utxo.serialize())
        for pubkey, sig in self.partial_sigs.items():
            out += _write_pair(bytes([PSBT_IN_PARTIAL_SIG]) + pubkey, sig)
        if self.sighash_type is not None:
            out += _write_pair(
                bytes([PSBT_IN_SIGHASH_TYPE]), self.sighash_type.to_bytes(4, "little")
            )
        if self.redeem_script is not None:
            out += _write_pair(bytes([PSBT_IN_REDEEM_SCRIPT]), self.redeem_script)
        if self.witness_script is not None:
            out += _write_pair(bytes([PSBT_IN_WITNESS_SCRIPT]), self.witness_script)
        for pubkey, origin in self.bip32_derivation.items():
            out += _write_pair(bytes([PSBT_IN_BIP32_DERIVATION]) + pubkey, origin)
        if self.final_script_sig is not None:
            out += _write_pair(bytes([PSBT_IN_FINAL_SCRIPTSIG]), self.final_script_sig)
        if self.final_script_witness is not None:
            out += _write_pair(
                bytes([PSBT_IN_FINAL_SCRIPTWITNESS]),
                serialize_witness(self.final_script_witness),
            )
        if self.tap_key_sig is not None:
            out += _write_pair(bytes([PSBT_IN_TAP_KEY_SIG]), self.tap_key_sig)
        if self.tap_internal_key is not None:
            out += _write_pair(bytes([PSBT_IN_TAP_INTERNAL_KEY]), self.tap_internal_key)
        if self.tap_merkle_root is not None:
            out += _write_pair(bytes([PSBT_IN_TAP_MERKLE_ROOT]), self.tap_merkle_root)
        for key, value in self.unknowns.items():
            out += _write_pair(key, value)
        out += b"\x00"
        return bytes(out)


@dataclass
class PsbtOutput:
    redeem_script: bytes | None = None
    witness_script: bytes | None = None
    bip32_derivation: dict[bytes, bytes] = field(default_factory=dict)
    tap_internal_key: bytes | None = None
    unknowns: dict[bytes, bytes] = field(default_factory=dict)

    @classmethod
    def from_pairs(cls, pairs: list[tuple[bytes, bytes]]) -> PsbtOutput:
        pout = cls()
        for key, value in pairs:
            key_type, key_data = key[0], key[1:]
            if key_type == PSBT_OUT_REDEEM_SCRIPT and not key_data:
                pout.redeem_script = value
            elif key_type == PSBT_OUT_WITNESS_SCRIPT and not key_data:
                pout.witness_script = value
            elif key_type == PSBT_OUT_BIP32_DERIVATION:
                pout.bip32_derivation[key_data] = value
            elif key_type == PSBT_OUT_TAP_INTERNAL_KEY and not key_data:
                pout.tap_internal_key = value
            else:
                pout.unknowns[key] = value
        return pout

    def serialize(self) -> bytes:
        out = bytearray()
        if self.redeem_script is not None:
            out += _write_pair(bytes([PSBT_OUT_REDEEM_SCRIPT]), self.redeem_script)
        if self.witness_script is not None:
            out += _write_pair(bytes([PSBT_OUT_WITNESS_SCRIPT]), self.witness_script)
        for pubkey, origin in self.bip32_derivation.items():
            out += _write_pair(bytes([PSBT_OUT_BIP32_DERIVATION]) + pubkey, origin)
        if self.tap_internal_key is not None:
            out += _write_pair(bytes([PSBT_OUT_TAP_INTERNAL_KEY]), self.tap_internal_key)
        for key, value in self.unknowns.items():
            out += _write_pair(key, value)
        out += b"\x00"
        return bytes(out)


@dataclass
class Psbt:
    unsigned_tx: Transaction
    inputs: list[PsbtInput] = field(default_factory=list)
    outputs: list[PsbtOutput] = field(default_factory=list)
    unknowns: dict[bytes, bytes] = field(default_factory=dict)

    @classmethod
    def from_unsigned_tx(cls, tx: Transaction) -> Psbt:
        for inp in tx.inputs:
            if inp.script_sig or inp.witness:
                raise PsbtError("unsigned transaction must not carry signature data")
        return cls(
            unsigned_tx=tx,
            inputs=[PsbtInput() for _ in tx.inputs],
            outputs=[PsbtOutput() for _ in tx.outputs],
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> Psbt:
        if not data.startswith(PSBT_MAGIC):
            raise PsbtError("invalid PSBT magic bytes")
        try:
            global_pairs, offset = _read_map(data, len(PSBT_MAGIC))
            unsigned_tx: Transaction | None = None
            unknowns: dict[bytes, bytes] = {}
            for key, value in global_pairs:
                if key == bytes([PSBT_GLOBAL_UNSIGNED_TX]):
                    unsigned_tx = deserialize_transaction(value, allow_witness=False)
                else:
                    unknowns[key] = value
            if unsigned_tx is None:
                raise PsbtError("PSBT has no unsigned transaction")

            inputs = []
            for _ in unsigned_tx.inputs:
                pairs, offset = _read_map(data, offset)
                inputs.append(PsbtInput.from_pairs(pairs))
            outputs = []
            for _ in unsigned_tx.outputs:
                pairs, offset = _read_map(data, offset)
                outputs.append(PsbtOutput.from_pairs(pairs))
        except (IndexError, ConstructionError) as e:
            raise PsbtError(f"malformed PSBT: {e}") from e

        if offset != len(data):
            raise PsbtError("unexpected trailing data after PSBT")
        return cls(unsigned_tx, inputs, outputs, unknowns)

    @classmethod
    def from_base64(cls, value: str) -> Psbt:
        try:
            raw = base64.b64decode(value.strip(), validate=True)
        except binascii.Error as e:
            raise PsbtError(f"invalid base64 PSBT: {e}") from e
        return cls.from_bytes(raw)

    def serialize(self) -> bytes:
        out = bytearray(PSBT_MAGIC)
        out += _write_pair(
            bytes([PSBT_GLOBAL_UNSIGNED_TX]),
            self.unsigned_tx.serialize(include_witness=False),
        )
        for key, value in self.unknowns.items():
            out += _write_pair(key, value)
        out += b"\x00"
        for pin in self.inputs:
            out += pin.serialize()
        for pout in self.outputs:
            out += pout.serialize()
        return bytes(out)

    def to_base64(self) -> str:
        return base64.b64encode(self.serialize()).decode("ascii")

    def prevouts(self) -> list[TxOut]:
        """Spent outputs of all inputs, needed for taproot signature hashes."""
        prevouts = []
        for idx, pin in enumerate(self.inputs):
            if pin.witness_utxo is None:
                raise PsbtError(f"input {idx} has no witness UTXO")
            prevouts.append(pin.witness_utxo)
        return prevouts

    def fee(self) -> int:
        total_in = sum(p.value for p in self.prevouts())
        total_out = sum(o.value for o in self.unsigned_tx.outputs)
        return total_in - total_out

    def add_partial_signature(
        self,
        index: int,
        pubkey: bytes,
        signature: bytes,
        witness_script: bytes | None = None,
    ) -> None:
        """
        Add a signature (DER plus sighash byte) for pubkey to an input. The
        witness script, if given, must hash to the witness UTXO's script.
        """
        if not 0 <= index < len(self.inputs):
            raise PsbtError(f"input index {index} out of range")
        pin = self.inputs[index]
        if pin.is_finalized:
            raise PsbtError(f"input {index} is already finalized")
        if pin.witness_utxo is None:
            raise PsbtError(f"input {index} has no witness UTXO")
        if len(pubkey) != 33:
            raise PsbtError("signing key must be a compressed public key")
        if not signature:
            raise PsbtError("empty signature")
        if pin.sighash_type is not None and signature[-1] != pin.sighash_type:
            raise PsbtError(
                f"signature sighash type {signature[-1]:#x} does not match "
                f"input sighash type {pin.sighash_type:#x}"
            )

        pk_script = pin.witness_utxo.script_pubkey
        if witness_script is not None:
            if not is_p2wsh(pk_script) or p2wsh_script(witness_script) != pk_script:
                raise PsbtError(f"witness script does not match UTXO of input {index}")
            if pin.witness_script is not None and pin.witness_script != witness_script:
                raise PsbtError(f"input {index} already has a different witness script")
            pin.witness_script = witness_script
        elif is_p2wpkh(pk_script):
            if pk_script[2:] != hash160(pubkey):
                raise PsbtError(f"key {pubkey.hex()} does not own input {index}")
        elif is_p2wsh(pk_script) and pin.witness_script is None:
            raise PsbtError(f"input {index} needs a witness script")

        pin.partial_sigs[pubkey] = signature

    def finalize_input(self, index: int) -> None:
        pin = self.inputs[index]
        if pin.is_finalized:
            return
        if pin.witness_utxo is None:
            raise PsbtError(f"input {index} has no witness UTXO")

        pk_script = pin.witness_utxo.script_pubkey
        if is_p2wsh(pk_script):
            if pin.witness_script is None:
                raise PsbtError(f"input {index} has no witness script")
            try:
                required, pubkeys = parse_multisig(pin.witness_script)
            except ConstructionError as e:
                raise PsbtError(f"cannot finalize input {index}: {e}") from e
            sigs = [pin.partial_sigs[k] for k in pubkeys if k in pin.partial_sigs]
            if len(sigs) < required:
                raise PsbtError(
                    f"input {index} has {len(sigs)} of {required} required signatures"
                )
            witness = [b""] + sigs[:required] + [pin.witness_script]
        elif is_p2wpkh(pk_script):
            if len(pin.partial_sigs) != 1:
                raise PsbtError(f"input {index} needs exactly one signature")
            ((pubkey, sig),) = pin.partial_sigs.items()
            witness = [sig, pubkey]
        elif is_p2tr(pk_script):
            if pin.tap_key_sig is None:
                raise PsbtError(f"input {index} has no taproot key signature")
            witness = [pin.tap_key_sig]
        else:
            raise PsbtError(f"cannot finalize input {index} with script {pk_script.hex()}")

        pin.final_script_witness = witness
        pin.partial_sigs = {}
        pin.sighash_type = None
        pin.redeem_script = None
        pin.witness_script = None
        pin.bip32_derivation = {}
        pin.tap_key_sig = None
        pin.tap_internal_key = None
        pin.tap_merkle_root = None

    def finalize_all(self) -> None:
        for index in range(len(self.inputs)):
            self.finalize_input(index)

    def is_complete(self) -> bool:
        return all(pin.is_finalized for pin in self.inputs)

    def extract(self) -> Transaction:
        """The fully signed network transaction; every input must be final."""
        if not self.is_complete():
            raise PsbtError("PSBT is not finalized")
        tx = self.unsigned_tx.copy()
        for inp, pin in zip(tx.inputs, self.inputs):
            inp.script_sig = pin.final_script_sig or b""
            inp.witness = list(pin.final_script_witness or [])
        return tx
