"""
Channel summary: look up every channel's funding output on chain and sort the
channels into open, cooperatively closed and force closed, counting funds
that might still be recoverable.
"""

from __future__ import annotations

from chancore.constants import SEQUENCE_FINAL
from loguru import logger

from chanrescue.chain import ChainClient, Outspend, TxInfo, TxNotFoundError, TxOutput
from chanrescue.results import ClosingTx, SummaryEntry, SummaryEntryFile


def is_coop_close(tx: TxInfo) -> bool:
    return bool(tx.inputs) and tx.inputs[0].sequence == SEQUENCE_FINAL


def could_be_ours(entry: SummaryEntry, utxos: list[TxOutput]) -> bool:
    if len(utxos) == 1 and utxos[0].value == entry.remote_balance:
        return False
    return entry.local_balance != 0


def _unspent(tx: TxInfo) -> list[TxOutput]:
    return [out for out in tx.outputs if out.outspend is None or not out.outspend.spent]


async def _report_outspend(
    client: ChainClient,
    summary: SummaryEntryFile,
    entry: SummaryEntry,
    closing_tx: ClosingTx,
    outspend: Outspend,
) -> None:
    spend_tx = await client.fetch_transaction(outspend.txid or "")

    summary.funds_closed_channels += entry.local_balance
    utxos = _unspent(spend_tx)

    if is_coop_close(spend_tx):
        summary.coop_closed_channels += 1
        summary.funds_coop_closed_maybe_ours += entry.local_balance
        closing_tx.force_close = False
        closing_tx.all_outputs_spent = not utxos
        entry.has_potential_funds = entry.local_balance > 0 and bool(utxos)
        return

    summary.force_closed_channels += 1
    closing_tx.force_close = True
    entry.has_potential_funds = False

    if not utxos:
        closing_tx.all_outputs_spent = True
        summary.funds_closed_channels_spent += entry.local_balance
        summary.fully_spent_channels += 1
        return

    logger.debug(
        f"Channel {entry.channel_point} spent by {outspend.txid}:{outspend.vin} which has "
        f"{len(spend_tx.outputs)} outputs of which {len(utxos)} are unspent"
    )
    closing_tx.all_outputs_spent = False
    summary.channels_with_unspent_funds += 1

    for out in utxos:
        if out.scriptpubkey_type == "v0_p2wpkh":
            closing_tx.to_remote_addr = out.scriptpubkey_address or ""

    if could_be_ours(entry, utxos):
        summary.channels_with_potential_funds += 1
        summary.funds_force_closed_maybe_ours += utxos[0].value
        entry.has_potential_funds = True
        # A single P2WPKH output left could be ours
        if len(utxos) == 1 and utxos[0].scriptpubkey_type == "v0_p2wpkh":
            closing_tx.our_addr = utxos[0].scriptpubkey_address or ""
        return

    if entry.local_balance == 0 or (len(utxos) == 1 and utxos[0].value == entry.remote_balance):
        return

    for idx, out in enumerate(spend_tx.outputs):
        if out.outspend is None or not out.outspend.spent:
            logger.debug(f"UTXO {idx} of type {out.scriptpubkey_type} with value {out.value}")
    logger.debug(
        f"Local balance: {entry.local_balance}, remote balance: {entry.remote_balance}, "
        f"initiator: {entry.initiator}"
    )


async def summarize_channels(
    client: ChainClient, entries: list[SummaryEntry]
) -> SummaryEntryFile:
    """
    Query the funding transaction of every entry and classify the channel.
    A funding transaction the explorer does not know marks the channel as not
    existing on chain; any other explorer error aborts the summary.
    """
    summary = SummaryEntryFile(channels=entries)

    for idx, entry in enumerate(entries):
        try:
            tx = await client.fetch_transaction(entry.funding_txid)
        except TxNotFoundError:
            logger.error(f"Funding TX {entry.funding_txid} not found. Ignoring.")
            entry.chan_exists_onchain = False
            continue

        entry.chan_exists_onchain = True
        if entry.funding_tx_index >= len(tx.outputs):
            raise ValueError(
                f"channel {entry.channel_point}: funding tx has only {len(tx.outputs)} outputs"
            )
        outspend = tx.outputs[entry.funding_tx_index].outspend

        if outspend is not None and outspend.spent:
            summary.closed_channels += 1
            closing_tx = ClosingTx(txid=outspend.txid or "", conf_height=outspend.block_height or 0)
            entry.closing_tx = closing_tx
            await _report_outspend(client, summary, entry, closing_tx, outspend)
        else:
            summary.open_channels += 1
            summary.funds_open_channels += entry.local_balance
            entry.closing_tx = None
            entry.has_potential_funds = True

        if idx % 50 == 0:
            logger.info(f"Queried channel {idx} of {len(entries)}")

    return summary
