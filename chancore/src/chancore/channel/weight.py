"""
Transaction weight estimation and fee helpers for sweep and offer transactions.
"""

from __future__ import annotations

from chancore.bitcoin.tx import WITNESS_SCALE_FACTOR, encode_varint
from chancore.constants import SIGHASH_DEFAULT

# Output script sizes
P2PKH_SIZE = 25
P2SH_SIZE = 23
P2WPKH_SIZE = 22
P2WSH_SIZE = 34
P2TR_SIZE = 34

# outpoint (36) + script length (1) + sequence (4)
INPUT_SIZE = 32 + 4 + 1 + 4

# version + locktime
BASE_TX_SIZE = 4 + 4

# segwit marker + flag
WITNESS_HEADER_SIZE = 2

MULTISIG_SCRIPT_SIZE = 1 + 1 + 33 + 1 + 33 + 1 + 1

# item count, empty dummy, two signatures, witness script
MULTISIG_WITNESS_SIZE = 1 + 1 + 1 + 73 + 1 + 73 + 1 + MULTISIG_SCRIPT_SIZE

# item count, signature, public key
P2WKH_WITNESS_SIZE = 1 + 1 + 73 + 1 + 33

TO_LOCAL_SCRIPT_SIZE = 1 + 1 + 33 + 1 + 1 + 4 + 1 + 1 + 1 + 33 + 1 + 1

# item count, signature, empty branch selector, witness script
TO_LOCAL_TIMEOUT_WITNESS_SIZE = 1 + 1 + 73 + 1 + 1 + TO_LOCAL_SCRIPT_SIZE

TAPROOT_KEY_PATH_WITNESS_SIZE = 1 + 1 + 64
TAPROOT_KEY_PATH_CUSTOM_SIGHASH_WITNESS_SIZE = TAPROOT_KEY_PATH_WITNESS_SIZE + 1


class TxWeightEstimator:
    """Accumulates input and output sizes and reports the resulting weight."""

    def __init__(self) -> None:
        self.input_count = 0
        self.output_count = 0
        self.input_size = 0
        self.output_size = 0
        self.input_witness_size = 0
        self.has_witness = False

    def add_witness_input(self, witness_size: int) -> TxWeightEstimator:
        self.input_size += INPUT_SIZE
        self.input_witness_size += witness_size
        self.input_count += 1
        self.has_witness = True
        return self

    def add_p2wkh_input(self) -> TxWeightEstimator:
        return self.add_witness_input(P2WKH_WITNESS_SIZE)

    def add_taproot_key_spend_input(self, hash_type: int = SIGHASH_DEFAULT) -> TxWeightEstimator:
        if hash_type == SIGHASH_DEFAULT:
            return self.add_witness_input(TAPROOT_KEY_PATH_WITNESS_SIZE)
        return self.add_witness_input(TAPROOT_KEY_PATH_CUSTOM_SIGHASH_WITNESS_SIZE)

    def add_output(self, pk_script_size: int) -> TxWeightEstimator:
        self.output_size += 8 + len(encode_varint(pk_script_size)) + pk_script_size
        self.output_count += 1
        return self

    def add_p2wkh_output(self) -> TxWeightEstimator:
        return self.add_output(P2WPKH_SIZE)

    def add_p2wsh_output(self) -> TxWeightEstimator:
        return self.add_output(P2WSH_SIZE)

    def add_p2tr_output(self) -> TxWeightEstimator:
        return self.add_output(P2TR_SIZE)

    def weight(self) -> int:
        stripped = (
            BASE_TX_SIZE
            + len(encode_varint(self.input_count))
            + self.input_size
            + len(encode_varint(self.output_count))
            + self.output_size
        )
        weight = stripped * WITNESS_SCALE_FACTOR
        if self.has_witness:
            weight += WITNESS_HEADER_SIZE + self.input_witness_size
        return weight

    def vsize(self) -> int:
        return (self.weight() + WITNESS_SCALE_FACTOR - 1) // WITNESS_SCALE_FACTOR


def fee_for_weight(sat_per_vbyte: int, weight: int) -> int:
    """Fee in sats at a sat/vByte rate, computed through sat/kw like lnd does."""
    sat_per_kw = sat_per_vbyte * 250
    return sat_per_kw * weight // 1000


def dust_limit_for_size(pk_script_size: int) -> int:
    """Dust threshold of an output at the default 1 sat/vByte relay fee."""
    output_size = 8 + len(encode_varint(pk_script_size)) + pk_script_size
    if pk_script_size in (P2WPKH_SIZE, P2WSH_SIZE):
        spend_size = 32 + 4 + 1 + 107 // WITNESS_SCALE_FACTOR + 4
    else:
        spend_size = 32 + 4 + 1 + 107 + 4
    return 3 * (output_size + spend_size)
