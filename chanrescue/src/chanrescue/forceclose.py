"""
Force close channels from their latest local commitment.

For every channel that has not been recorded as closed, the commitment the
remote party signed is completed with our funding signature. The result keeps
what is needed to sweep our time locked output later: the delay basepoint,
the remote revocation basepoint, the commitment point and the CSV delay.
"""

from __future__ import annotations

from chancore.bitcoin.script import disassemble
from chancore.bitcoin.tx import Transaction
from chancore.channel.commitment import sign_commitment
from chancore.channel.signer import Signer
from chancore.errors import ConstructionError, DerivationError
from chancore.keychain.shachain import RevocationProducer
from chancore.models import OpenChannelState
from loguru import logger

from chanrescue.chain import ChainClient, ChainClientError
from chanrescue.results import BasePoint, ForceCloseRecord, Out, SummaryEntry
from chanrescue.store import ChannelStore


def revocation_producer(signer: Signer, state: OpenChannelState) -> RevocationProducer:
    """
    Revocation producer of a channel. A stored root is used as is; otherwise
    the root is re-derived from the shachain root key. A root descriptor
    carrying a public key marks a legacy channel whose root is the private
    key itself, newer channels use ECDH with our multisig key.
    """
    if state.revocation_producer_root:
        return RevocationProducer(state.revocation_producer_root)

    desc = state.sha_chain_root_desc
    if desc is None:
        raise ConstructionError(
            f"channel {state.funding_outpoint} has no revocation producer root"
        )
    keyring = signer.keyring
    if desc.pub_key is not None:
        return keyring.revocation_producer(desc, peer=state.remote_node_pub)
    return keyring.revocation_producer(
        desc, state.local_chan_cfg.multisig_key.pub_key, peer=state.remote_node_pub
    )


def outputs_of(tx: Transaction) -> list[Out]:
    return [
        Out(
            script=out.script_pubkey.hex(),
            script_asm=disassemble(out.script_pubkey),
            value=out.value,
        )
        for out in tx.outputs
    ]


def force_close_record(
    signed_tx: Transaction, state: OpenChannelState, commit_point: bytes
) -> ForceCloseRecord:
    delay_base = state.local_chan_cfg.delay_base_point
    revocation_base = state.remote_chan_cfg.revocation_base_point
    if delay_base.pub_key is None or revocation_base.pub_key is None:
        raise ConstructionError(
            f"channel {state.funding_outpoint} is missing delay or revocation basepoint"
        )

    return ForceCloseRecord(
        txid=signed_tx.txid(),
        serialized=signed_tx.hex(),
        csv_delay=state.local_chan_cfg.constraints.csv_delay,
        delay_basepoint=BasePoint(
            family=int(delay_base.locator.family),
            index=delay_base.locator.index,
            pubkey=delay_base.pub_key.hex(),
        ),
        revocation_basepoint=BasePoint(pubkey=revocation_base.pub_key.hex()),
        commit_point=commit_point.hex(),
        outs=outputs_of(signed_tx),
    )


class ForceCloseEngine:
    """
    Signs the latest local commitment of each channel and optionally
    publishes it.

    Channels without a local commitment and channels failing key derivation
    or transaction construction are logged and skipped. Signing and script
    verification errors abort the whole run.
    """

    def __init__(
        self, store: ChannelStore, signer: Signer, client: ChainClient | None = None
    ):
        self.store = store
        self.signer = signer
        self.client = client

    def sign_channel(self, state: OpenChannelState) -> ForceCloseRecord:
        """Sign one channel's commitment and describe the result."""
        signed_tx = sign_commitment(self.signer, state)
        height = state.local_commitment.commit_height
        commit_point = revocation_producer(self.signer, state).commitment_point(height)
        logger.debug(f"Signed commitment {signed_tx.txid()} at height {height}")
        return force_close_record(signed_tx, state, commit_point)

    async def publish(self, record: ForceCloseRecord, channel_point: str) -> None:
        if self.client is None:
            raise ValueError("a chain client is required to publish transactions")
        try:
            response = await self.client.broadcast(record.serialized)
            logger.info(f"Published TX {record.txid}, response: {response}")
        except ChainClientError as e:
            logger.error(f"Publishing force close of {channel_point} failed: {e}")

    async def run(self, entries: list[SummaryEntry], publish: bool = False) -> list[SummaryEntry]:
        """Add a force close record to every closable entry; returns the entries."""
        signed = 0
        for entry in entries:
            if entry.closing_tx is not None:
                logger.info(f"Channel {entry.channel_point} already closed, skipping")
                continue

            state = self.store.fetch_channel(entry.channel_point)
            if state is None:
                logger.warning(f"Channel {entry.channel_point} not found in channel store")
                continue

            if not state.local_commitment.commit_tx:
                logger.error(
                    f"Cannot force-close, no local commit TX for channel {entry.channel_point}"
                )
                continue

            try:
                entry.force_close = self.sign_channel(state)
            except (DerivationError, ConstructionError) as e:
                logger.error(f"Cannot force-close channel {entry.channel_point}: {e}")
                continue
            signed += 1

            if publish:
                await self.publish(entry.force_close, entry.channel_point)

        logger.info(f"Signed force close transactions for {signed} of {len(entries)} channels")
        return entries
