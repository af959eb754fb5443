"""
Commitment transaction signing: complete the latest local commitment with our
funding signature so it can be broadcast unilaterally.
"""

from __future__ import annotations

from loguru import logger

from chancore.bitcoin.tx import Transaction, deserialize_transaction
from chancore.bitcoin.verify import verify_input
from chancore.channel.signdesc import (
    SignDescriptor,
    funding_sign_descriptor,
    funding_sign_descriptor_from_backup,
)
from chancore.channel.signer import Signer
from chancore.constants import SIGHASH_ALL
from chancore.errors import ConstructionError
from chancore.models import ChannelBackupSingle, OpenChannelState, OutPoint
from chancore.params import ChainParams


def spend_multisig(
    witness_script: bytes, pub_a: bytes, sig_a: bytes, pub_b: bytes, sig_b: bytes
) -> list[bytes]:
    """
    Witness spending a 2-of-2 funding output. Signatures are DER without the
    sighash byte and are placed in the order of their public keys.
    """
    sig_a = sig_a + bytes([SIGHASH_ALL])
    sig_b = sig_b + bytes([SIGHASH_ALL])
    if pub_a < pub_b:
        return [b"", sig_a, sig_b, witness_script]
    return [b"", sig_b, sig_a, witness_script]


def _sign_commitment_tx(
    signer: Signer,
    sign_desc: SignDescriptor,
    funding_outpoint: OutPoint,
    commit_tx: bytes,
    their_sig: bytes,
    remote_multisig_key: bytes,
) -> Transaction:
    tx = deserialize_transaction(commit_tx)
    if len(tx.inputs) != 1 or tx.inputs[0].outpoint != str(funding_outpoint):
        raise ConstructionError(
            f"commitment transaction does not spend funding outpoint {funding_outpoint}"
        )
    tx.inputs[0].witness = []

    our_sig = signer.sign_output_raw(tx, sign_desc)
    local_key = sign_desc.key_desc.pub_key
    if local_key is None:
        raise ConstructionError("local multisig key descriptor has no public key")

    tx.inputs[0].witness = spend_multisig(
        sign_desc.witness_script or b"", local_key, our_sig, remote_multisig_key, their_sig
    )
    verify_input(tx, 0, [sign_desc.output])
    logger.debug(f"Signed commitment {tx.txid()} of channel {funding_outpoint}")
    return tx


def sign_commitment(signer: Signer, state: OpenChannelState) -> Transaction:
    commitment = state.local_commitment
    if not commitment.commit_tx or not commitment.commit_sig:
        raise ConstructionError(
            f"channel {state.funding_outpoint} has no local commitment transaction"
        )

    sign_desc = funding_sign_descriptor(
        state.local_chan_cfg,
        state.remote_chan_cfg,
        state.capacity,
        state.channel_type,
        peer=state.remote_node_pub,
    )
    return _sign_commitment_tx(
        signer,
        sign_desc,
        state.funding_outpoint,
        commitment.commit_tx,
        commitment.commit_sig,
        state.remote_chan_cfg.multisig_key.pub_key or b"",
    )


def sign_commitment_from_backup(
    signer: Signer, backup: ChannelBackupSingle, params: ChainParams
) -> Transaction:
    """Sign the commitment cached in a static channel backup."""
    if backup.close_tx_inputs is None:
        raise ConstructionError(
            "channel backup does not have data needed to sign force close tx"
        )
    if backup.chain_hash and backup.chain_hash != params.genesis_hash:
        raise ConstructionError(
            f"backup of {backup.funding_outpoint} is for another chain ({backup.chain_hash})"
        )

    sign_desc = funding_sign_descriptor_from_backup(backup)
    return _sign_commitment_tx(
        signer,
        sign_desc,
        backup.funding_outpoint,
        backup.close_tx_inputs.commit_tx,
        backup.close_tx_inputs.commit_sig,
        backup.remote_chan_cfg.multisig_key.pub_key or b"",
    )
