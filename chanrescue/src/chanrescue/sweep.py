"""
Sweep the time locked to_local outputs of confirmed force close transactions.

Works from summary entries carrying a force close record. The CSV delay of
the output is not always known, so it is brute forced by rebuilding the
to_local script for every delay up to a limit until it matches the output.
"""

from __future__ import annotations

from dataclasses import dataclass

from chancore.bitcoin.address import AddressType, address_to_script, check_address, p2wsh_script
from chancore.bitcoin.tx import Transaction, TxIn, TxOut
from chancore.channel.scripts import commit_script_to_self
from chancore.channel.signdesc import SignDescriptor
from chancore.channel.signer import Signer
from chancore.channel.tweak import derive_revocation_pubkey, single_tweak_bytes, tweak_pubkey
from chancore.channel.weight import (
    TO_LOCAL_TIMEOUT_WITNESS_SIZE,
    TxWeightEstimator,
    dust_limit_for_size,
    fee_for_weight,
)
from chancore.constants import DEFAULT_MAX_CSV_TIMEOUT, SIGHASH_ALL
from chancore.errors import ConstructionError, DerivationError
from chancore.models import KeyDescriptor, KeyFamily, KeyLocator
from chancore.params import ChainParams
from loguru import logger

from chanrescue.results import ForceCloseRecord, SummaryEntry


@dataclass
class SweepInput:
    channel_point: str
    txid: str
    vout: int
    csv_delay: int
    sign_desc: SignDescriptor


def find_sweep_output(entry: SummaryEntry) -> int:
    """
    Index of our to_local output in the force close tx, found by our local
    balance. Returns -1 if no output matches.
    """
    fc = entry.force_close
    if fc is None:
        return -1
    if len(fc.outs) == 1:
        if fc.outs[0].value != entry.local_balance:
            logger.error(
                f"Potential value mismatch! {fc.outs[0].value} vs {entry.local_balance} "
                f"({entry.channel_point})"
            )
        return 0

    index = -1
    for idx, out in enumerate(fc.outs):
        if out.value == entry.local_balance:
            index = idx
    return index


def brute_force_delay(
    delay_pubkey: bytes, revocation_pubkey: bytes, target_script: bytes, max_csv: int
) -> tuple[int, bytes]:
    """Find the CSV delay whose to_local script hashes to target_script."""
    if len(target_script) != 34:
        raise ConstructionError(f"invalid target script: {target_script.hex()}")
    for csv in range(max_csv + 1):
        witness_script = commit_script_to_self(csv, delay_pubkey, revocation_pubkey)
        if p2wsh_script(witness_script) == target_script:
            return csv, witness_script
    raise ConstructionError(f"csv timeout not found for target script {target_script.hex()}")


def prepare_sweep_input(
    signer: Signer, entry: SummaryEntry, fc: ForceCloseRecord, index: int, max_csv: int
) -> SweepInput:
    commit_point = bytes.fromhex(fc.commit_point)
    revocation_base = bytes.fromhex(fc.revocation_basepoint.pubkey)
    delay_desc = KeyDescriptor(
        locator=KeyLocator(
            family=KeyFamily(fc.delay_basepoint.family), index=fc.delay_basepoint.index
        )
    )
    delay_base = signer.keyring.derive_private_key(delay_desc).public_key.format(compressed=True)

    out = fc.outs[index]
    csv, witness_script = brute_force_delay(
        tweak_pubkey(delay_base, commit_point),
        derive_revocation_pubkey(revocation_base, commit_point),
        bytes.fromhex(out.script),
        max_csv,
    )
    sign_desc = SignDescriptor(
        key_desc=KeyDescriptor(locator=delay_desc.locator, pub_key=delay_base),
        output=TxOut(out.value, p2wsh_script(witness_script)),
        witness_script=witness_script,
        hash_type=SIGHASH_ALL,
        single_tweak=single_tweak_bytes(commit_point, delay_base),
    )
    return SweepInput(entry.channel_point, fc.txid, index, csv, sign_desc)


def sweep_timelock(
    entries: list[SummaryEntry],
    signer: Signer,
    params: ChainParams,
    sweep_addr: str,
    fee_rate: int,
    max_csv: int = DEFAULT_MAX_CSV_TIMEOUT,
) -> Transaction:
    """
    Build and sign one transaction sweeping every sweepable to_local output
    into sweep_addr. Entries that cannot be swept are logged and skipped.
    """
    addr_type = check_address(
        sweep_addr, params, (AddressType.P2WPKH, AddressType.P2TR), "sweep address"
    )
    sweep_script = address_to_script(sweep_addr, params)

    inputs: list[SweepInput] = []
    for entry in entries:
        fc = entry.force_close
        if (
            fc is None
            or (entry.closing_tx is not None and entry.closing_tx.all_outputs_spent)
            or entry.local_balance == 0
        ):
            logger.info(f"Not sweeping {entry.channel_point}, info missing or all spent")
            continue

        index = find_sweep_output(entry)
        if index == -1:
            logger.error(f"Could not find sweep output for chan {entry.channel_point}")
            continue

        try:
            inputs.append(prepare_sweep_input(signer, entry, fc, index, max_csv))
        except (ConstructionError, DerivationError, ValueError) as e:
            logger.error(
                f"Could not create matching script for {entry.channel_point} "
                f"or csv too high: {e}"
            )

    if not inputs:
        raise ConstructionError("no sweepable outputs found")

    estimator = TxWeightEstimator()
    for _ in inputs:
        estimator.add_witness_input(TO_LOCAL_TIMEOUT_WITNESS_SIZE)
    if addr_type == AddressType.P2TR:
        estimator.add_p2tr_output()
    else:
        estimator.add_p2wkh_output()

    total = sum(i.sign_desc.output.value for i in inputs)
    fee = fee_for_weight(fee_rate, estimator.weight())
    logger.info(f"Fee {fee} sats of {total} total amount (estimated weight {estimator.weight()})")
    if total - fee < dust_limit_for_size(len(sweep_script)):
        raise ConstructionError(f"sweep amount {total} does not cover fee {fee}")

    tx = Transaction(
        version=2,
        inputs=[TxIn(i.txid, i.vout, sequence=i.csv_delay) for i in inputs],
        outputs=[TxOut(total - fee, sweep_script)],
    )
    for idx, sweep_input in enumerate(inputs):
        sweep_input.sign_desc.input_index = idx
        sig = signer.sign_output_raw(tx, sweep_input.sign_desc)
        tx.inputs[idx].witness = [
            sig + bytes([SIGHASH_ALL]),
            b"",
            sweep_input.sign_desc.witness_script or b"",
        ]

    logger.info(f"Swept {len(inputs)} outputs in transaction {tx.txid()}")
    return tx
