"""
Force close channels from static channel backups.

Newer backups can carry the latest commitment transaction and the remote
party's signature on it. That is enough to complete the commitment with our
funding signature even when the channel database is gone.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from chancore.bitcoin.tx import Transaction
from chancore.channel.commitment import sign_commitment_from_backup
from chancore.channel.scripts import commit_script_to_remote
from chancore.channel.signer import Signer
from chancore.constants import ANCHOR_OUTPUT_VALUE
from chancore.errors import ConstructionError
from chancore.models import ChannelBackupSingle
from chancore.params import ChainParams
from loguru import logger

from chanrescue.chain import ChainClient, ChainClientError


class OutputKind(str, Enum):
    TO_REMOTE = "to_remote"
    ANCHOR = "anchor"
    OTHER = "other"


@dataclass
class ClassifiedOutput:
    index: int
    value: int
    script: bytes
    kind: OutputKind


@dataclass
class ScbCloseResult:
    channel_point: str
    tx: Transaction
    outputs: list[ClassifiedOutput] = field(default_factory=list)

    @property
    def txid(self) -> str:
        return self.tx.txid()

    @property
    def to_remote(self) -> ClassifiedOutput | None:
        return next((o for o in self.outputs if o.kind == OutputKind.TO_REMOTE), None)


def classify_outputs(backup: ChannelBackupSingle, tx: Transaction) -> list[ClassifiedOutput]:
    """
    Label the outputs of a signed commitment. The to_remote output is found
    by rebuilding its script from the remote payment basepoint, 330 sat
    outputs are taken for anchors and the rest is to_local or HTLCs.
    """
    to_remote_script = b""
    remote_key = backup.remote_chan_cfg.payment_base_point.pub_key
    if remote_key is not None:
        commit_script, _ = commit_script_to_remote(
            backup.version.channel_type(), backup.is_initiator, remote_key, backup.lease_expiry
        )
        to_remote_script = commit_script.pk_script

    to_remote_index = next(
        (
            idx
            for idx, out in enumerate(tx.outputs)
            if to_remote_script and out.script_pubkey == to_remote_script
        ),
        -1,
    )

    classified = []
    for idx, out in enumerate(tx.outputs):
        if idx == to_remote_index:
            kind = OutputKind.TO_REMOTE
        elif out.value == ANCHOR_OUTPUT_VALUE:
            kind = OutputKind.ANCHOR
        else:
            kind = OutputKind.OTHER
        classified.append(ClassifiedOutput(idx, out.value, out.script_pubkey, kind))
    return classified


def backups_with_close_tx(
    backups: list[ChannelBackupSingle], channel_point: str | None = None
) -> list[ChannelBackupSingle]:
    """Backups that carry a commitment, optionally only the given channel."""
    usable = [b for b in backups if b.close_tx_inputs is not None]
    logger.info(f"Found {len(backups)} channel backups, {len(usable)} of them have close tx")
    if channel_point:
        usable = [b for b in usable if str(b.funding_outpoint) == channel_point]
    return usable


class ScbCloseEngine:
    def __init__(self, signer: Signer, params: ChainParams, client: ChainClient | None = None):
        self.signer = signer
        self.params = params
        self.client = client

    def sign_backup(self, backup: ChannelBackupSingle) -> ScbCloseResult:
        tx = sign_commitment_from_backup(self.signer, backup, self.params)
        result = ScbCloseResult(channel_point=str(backup.funding_outpoint), tx=tx)
        try:
            result.outputs = classify_outputs(backup, tx)
        except ConstructionError as e:
            logger.warning(f"Failed to classify outputs of {result.channel_point}: {e}")
        return result

    async def run(
        self, backups: list[ChannelBackupSingle], publish: bool = False
    ) -> list[ScbCloseResult]:
        """
        Sign every backup's commitment. Any failure aborts the run since the
        operator picked these backups explicitly.
        """
        results = []
        for backup in backups:
            try:
                result = self.sign_backup(backup)
            except ConstructionError as e:
                logger.error(f"Signing close tx failed for {backup.funding_outpoint}: {e}")
                raise
            results.append(result)
            _log_result(result)

            if publish:
                if self.client is None:
                    raise ValueError("a chain client is required to publish transactions")
                try:
                    response = await self.client.broadcast(result.tx.hex())
                    logger.info(f"Published TX {result.txid}, response: {response}")
                except ChainClientError as e:
                    logger.error(f"Publishing close tx of {result.channel_point} failed: {e}")
        return results


def _log_result(result: ScbCloseResult) -> None:
    logger.info(f"Channel {result.channel_point}: signed close tx {result.txid}")
    to_remote = result.to_remote
    if to_remote is None:
        logger.info("Output to_remote: not identified")
    for out in result.outputs:
        if out.kind == OutputKind.TO_REMOTE:
            logger.info(f"Output to_remote: idx={out.index} amount={out.value} sat")
        elif out.kind == OutputKind.ANCHOR:
            logger.info(f"Possible anchor: idx={out.index} amount={out.value} sat")
        else:
            logger.info(f"Possible to_local/htlc: idx={out.index} amount={out.value} sat")
