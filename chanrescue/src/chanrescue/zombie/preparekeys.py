"""
PrepareKeys: add our payout address and candidate multisig keys to a match
file so that the counterparty can build an offer.
"""

from __future__ import annotations

from pathlib import Path

from chancore.bitcoin.address import check_address
from chancore.constants import NUM_ZOMBIE_MULTISIG_KEYS
from chancore.keychain.keyring import KeyRing
from chancore.models import KeyFamily, KeyLocator
from loguru import logger

from chanrescue.results import write_result_file
from chanrescue.zombie.makeoffer import (
    PAYOUT_ADDRESS_TYPES,
    match_keys,
    offer_channels,
    parse_keys,
)
from chanrescue.zombie.models import Match, OfferValidationError


def prepare_keys(
    match: Match,
    keyring: KeyRing,
    payout_addr: str,
    num_keys: int = NUM_ZOMBIE_MULTISIG_KEYS,
) -> Match:
    """
    Copy of match with our node's payout address and multisig keys 0..num_keys-1
    filled in. If the counterparty's keys are already in the file, every
    channel must match one of our keys.
    """
    check_address(payout_addr, keyring.params, PAYOUT_ADDRESS_TYPES, "payout address")
    if num_keys <= 0:
        raise OfferValidationError("number of multisig keys must be positive")

    prepared = match.model_copy(deep=True)
    node1, node2 = prepared.nodes()
    our_pubkey = keyring.node_pubkey().hex()
    if node1.identity_pubkey == our_pubkey:
        ours, theirs = node1, node2
    elif node2.identity_pubkey == our_pubkey:
        ours, theirs = node2, node1
    else:
        raise OfferValidationError(
            f"derived pubkey {our_pubkey} from seed but that key was not found in the match file"
        )

    peer = bytes.fromhex(theirs.identity_pubkey)
    logger.info(f"Deriving {num_keys} multisig keys for node {our_pubkey}")
    keys = []
    for index in range(num_keys):
        desc = keyring.derive_key(KeyLocator(family=KeyFamily.MULTISIG, index=index), peer)
        keys.append((desc.pub_key or b"").hex())

    ours.payout_addr = payout_addr
    ours.multisig_keys = keys

    if theirs.multisig_keys:
        match_keys(
            offer_channels(prepared.channels),
            parse_keys(keys, "our"),
            parse_keys(theirs.multisig_keys, "their"),
            keyring.params,
        )
        logger.info(f"All {len(prepared.channels)} channels match the counterparty's keys")

    return prepared


def write_prepared_keys(prepared: Match, keyring: KeyRing, results_dir: Path | str) -> Path:
    return write_result_file(
        results_dir,
        "preparedkeys",
        prepared,
        date_format="%Y-%m-%d",
        suffix=keyring.node_pubkey().hex(),
        exclude_none=True,
    )
