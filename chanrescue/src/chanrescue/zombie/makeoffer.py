"""
MakeOffer: combine both parties' prepared key files into one PSBT closing
every matched channel.

The multisig keys of the two parties are tried against each channel's
funding address until the pair that produced it is found. The offer pays
our share of all channels to our payout address and the rest to theirs,
carries our partial signature and tells the counterparty which of its keys
still has to sign.
"""

from __future__ import annotations

from dataclasses import dataclass

from chancore.bitcoin.address import AddressType, address_to_script, check_address, p2wsh_script
from chancore.bitcoin.psbt import Psbt
from chancore.bitcoin.script import is_p2tr, is_p2wsh
from chancore.bitcoin.taproot import musig2_funding_key
from chancore.bitcoin.tx import Transaction, TxIn, TxOut
from chancore.channel.scripts import gen_multisig_script
from chancore.channel.signer import Signer
from chancore.channel.weight import (
    MULTISIG_WITNESS_SIZE,
    P2WSH_SIZE,
    TxWeightEstimator,
    dust_limit_for_size,
    fee_for_weight,
)
from chancore.constants import SEQUENCE_FINAL, SIGHASH_ALL, SIGHASH_DEFAULT
from chancore.keychain.keyring import KeyRing
from chancore.models import KeyDescriptor, KeyFamily, KeyLocator, OutPoint
from chancore.params import ChainParams
from loguru import logger

from chanrescue.zombie.models import (
    PSBT_KEY_MISSING_SIG_PUBKEY,
    FeeSplit,
    Match,
    MatchChannel,
    NodeInfo,
    OfferValidationError,
)

PAYOUT_ADDRESS_TYPES = (AddressType.P2WPKH, AddressType.P2TR)


@dataclass
class OfferChannel:
    chan_point: OutPoint
    address: str
    capacity: int
    our_key: bytes = b""
    their_key: bytes = b""
    our_key_index: int = -1
    witness_script: bytes | None = None
    pk_script: bytes = b""

    @property
    def is_taproot(self) -> bool:
        return is_p2tr(self.pk_script)


def parse_keys(keys: list[str], label: str) -> list[bytes]:
    parsed = []
    for key in keys:
        try:
            raw = bytes.fromhex(key)
        except ValueError as e:
            raise OfferValidationError(f"invalid {label} multisig key {key!r}") from e
        if len(raw) != 33 or raw[0] not in (2, 3):
            raise OfferValidationError(f"invalid {label} multisig key {key!r}")
        parsed.append(raw)
    return parsed


def offer_channels(channels: list[MatchChannel]) -> list[OfferChannel]:
    result = []
    for channel in channels:
        if not channel.address:
            raise OfferValidationError(f"channel {channel.chan_point} has no address")
        try:
            chan_point = OutPoint.parse(channel.chan_point)
        except ValueError as e:
            raise OfferValidationError(f"invalid channel point {channel.chan_point}") from e
        result.append(OfferChannel(chan_point, channel.address, channel.capacity))
    return result


def match_script(
    address: str, our_key: bytes, their_key: bytes, params: ChainParams
) -> tuple[bool, bytes | None, bytes]:
    """
    Whether the two keys produce the funding address. Returns the match
    flag, the witness script (P2WSH only) and the funding output script.
    """
    pk_script = address_to_script(address, params)
    if is_p2wsh(pk_script):
        witness_script = gen_multisig_script(our_key, their_key)
        return p2wsh_script(witness_script) == pk_script, witness_script, pk_script
    if is_p2tr(pk_script):
        return musig2_funding_key(our_key, their_key) == pk_script[2:], None, pk_script
    raise OfferValidationError(f"funding address {address} is neither P2WSH nor P2TR")


def match_keys(
    channels: list[OfferChannel],
    our_keys: list[bytes],
    their_keys: list[bytes],
    params: ChainParams,
) -> None:
    """Fill in the key pair of every channel; every channel must match."""
    logger.info(
        f"Matching {len(our_keys)} x {len(their_keys)} keys against {len(channels)} channels"
    )
    for channel in channels:
        found = False
        for our_index, our_key in enumerate(our_keys):
            for their_key in their_keys:
                match, witness_script, pk_script = match_script(
                    channel.address, our_key, their_key, params
                )
                if match:
                    channel.our_key_index = our_index
                    channel.our_key = our_key
                    channel.their_key = their_key
                    channel.witness_script = witness_script
                    channel.pk_script = pk_script
                    found = True
                    break
            if found:
                break

        if not found:
            raise OfferValidationError(
                f"didn't find matching multisig keys for channel {channel.chan_point}"
            )
        logger.debug(
            f"Channel {channel.chan_point} uses our key {channel.our_key.hex()} "
            f"(index {channel.our_key_index}) and their key {channel.their_key.hex()}"
        )


def validate_key_files(keys1: Match, keys2: Match) -> None:
    """The two files describe the same match and each adds one node's keys."""
    for label, keys in (("first", keys1), ("second", keys2)):
        if keys.node1 is None or keys.node2 is None:
            raise OfferValidationError(f"invalid {label} key file, node info missing")
        if not keys.node1.multisig_keys and not keys.node2.multisig_keys:
            raise OfferValidationError(f"invalid {label} key file, missing multisig keys")

    node1_a, node2_a = keys1.nodes()
    node1_b, node2_b = keys2.nodes()
    if node1_a.identity_pubkey != node1_b.identity_pubkey:
        raise OfferValidationError("invalid key files, node 1 pubkey doesn't match")
    if node2_a.identity_pubkey != node2_b.identity_pubkey:
        raise OfferValidationError("invalid key files, node 2 pubkey doesn't match")

    if bool(node1_a.multisig_keys) == bool(node1_b.multisig_keys) or bool(
        node2_a.multisig_keys
    ) == bool(node2_b.multisig_keys):
        raise OfferValidationError(
            "invalid key files, each file must carry the keys of a different node"
        )

    if len(keys1.channels) != len(keys2.channels):
        raise OfferValidationError("invalid key files, channel count differs")
    for chan1, chan2 in zip(keys1.channels, keys2.channels):
        if chan1.chan_point != chan2.chan_point:
            raise OfferValidationError(
                f"invalid key files, channel {chan1.chan_point} vs {chan2.chan_point}"
            )
        if not chan1.address or chan1.address != chan2.address:
            raise OfferValidationError(
                f"invalid key files, address of channel {chan1.chan_point} differs or is empty"
            )


def select_nodes(keys1: Match, keys2: Match, our_pubkey: str) -> tuple[NodeInfo, NodeInfo]:
    """Our node (with our keys) and the counterparty's node (with theirs)."""
    node1_a, node2_a = keys1.nodes()
    node1_b, node2_b = keys2.nodes()
    candidates = (
        (node1_a, node2_b),
        (node2_a, node1_b),
        (node1_b, node2_a),
        (node2_b, node1_a),
    )
    if our_pubkey not in (node1_a.identity_pubkey, node2_a.identity_pubkey):
        raise OfferValidationError(
            f"derived pubkey {our_pubkey} from seed but that key was not found in the key files"
        )

    for ours, theirs in candidates:
        if ours.identity_pubkey == our_pubkey and ours.multisig_keys:
            if not theirs.multisig_keys:
                break
            if not ours.payout_addr or not theirs.payout_addr:
                raise OfferValidationError("payout address missing")
            return ours, theirs
    raise OfferValidationError("couldn't find necessary keys")


def split_fee(our_sum: int, their_sum: int, fee: int, fee_split: FeeSplit) -> tuple[int, int]:
    """
    Deduct the fee from the payout sums. An even split falls back to the
    side that can pay the whole fee when one side is too small for half.
    """
    half_fee = fee // 2
    if fee_split == FeeSplit.EVEN:
        if our_sum - half_fee > 0 and their_sum - half_fee > 0:
            return our_sum - half_fee, their_sum - (fee - half_fee)
        if our_sum - fee > 0:
            return our_sum - fee, their_sum
        if their_sum - fee > 0:
            return our_sum, their_sum - fee
    elif fee_split == FeeSplit.LOCAL:
        if our_sum - fee > 0:
            return our_sum - fee, their_sum
    elif fee_split == FeeSplit.REMOTE:
        if their_sum - fee > 0:
            return our_sum, their_sum - fee
    raise OfferValidationError(
        f"error distributing fee of {fee} sats ({fee_split.value}) between {our_sum} "
        f"and {their_sum} sats"
    )


def _add_payout(
    estimator: TxWeightEstimator, address: str, params: ChainParams, label: str
) -> bytes:
    kind = check_address(address, params, PAYOUT_ADDRESS_TYPES, label)
    if kind == AddressType.P2TR:
        estimator.add_p2tr_output()
    else:
        estimator.add_p2wkh_output()
    return address_to_script(address, params)


def make_offer(
    keys1: Match,
    keys2: Match,
    keyring: KeyRing,
    params: ChainParams,
    balances: dict[str, int],
    fee_rate: int,
    fee_split: FeeSplit,
) -> str:
    """
    Build, partially sign and base64 encode the offer PSBT.

    balances maps each channel point to the amount in sats that goes to us;
    the rest of the channel capacity goes to the counterparty.
    """
    validate_key_files(keys1, keys2)
    our_pubkey = keyring.node_pubkey().hex()
    ours, theirs = select_nodes(keys1, keys2, our_pubkey)
    peer = bytes.fromhex(theirs.identity_pubkey)

    channels = offer_channels(keys1.channels)
    match_keys(
        channels,
        parse_keys(ours.multisig_keys or [], "our"),
        parse_keys(theirs.multisig_keys or [], "their"),
        params,
    )

    estimator = TxWeightEstimator()
    inputs = []
    key_descs = []
    our_sum = 0
    their_sum = 0
    for channel in channels:
        chan_point = str(channel.chan_point)
        if chan_point not in balances:
            raise OfferValidationError(f"no balance given for channel {chan_point}")
        our_part = balances[chan_point]
        if not 0 <= our_part <= channel.capacity:
            raise OfferValidationError(
                f"balance {our_part} of channel {chan_point} exceeds capacity {channel.capacity}"
            )
        our_sum += our_part
        their_sum += channel.capacity - our_part

        # prepared keys are listed in multisig index order
        key_desc = KeyDescriptor(
            locator=KeyLocator(family=KeyFamily.MULTISIG, index=channel.our_key_index),
            pub_key=channel.our_key,
        )
        keyring.derive_private_key(key_desc, peer)
        key_descs.append(key_desc)
        inputs.append(
            TxIn(channel.chan_point.txid, channel.chan_point.index, sequence=SEQUENCE_FINAL)
        )

        if channel.is_taproot:
            estimator.add_taproot_key_spend_input(SIGHASH_DEFAULT)
        else:
            estimator.add_witness_input(MULTISIG_WITNESS_SIZE)

    dust_limit = dust_limit_for_size(P2WSH_SIZE)
    if our_sum < dust_limit:
        logger.warning(f"Our payout of {our_sum} sats is dust, dropping it")
        our_sum = 0
    if their_sum < dust_limit:
        logger.warning(f"Their payout of {their_sum} sats is dust, dropping it")
        their_sum = 0
    if our_sum == 0 and their_sum == 0:
        raise OfferValidationError("offer has no outputs above the dust limit")

    our_script = b""
    their_script = b""
    if our_sum > 0:
        our_script = _add_payout(estimator, ours.payout_addr or "", params, "our payout address")
    if their_sum > 0:
        their_script = _add_payout(
            estimator, theirs.payout_addr or "", params, "their payout address"
        )

    fee = fee_for_weight(fee_rate, estimator.weight())
    logger.info(
        f"Before fees: {our_sum} sats to us ({ours.payout_addr}), {their_sum} sats to them "
        f"({theirs.payout_addr}), fee {fee} sats at {fee_rate} sat/vByte"
    )
    our_sum, their_sum = split_fee(our_sum, their_sum, fee, fee_split)
    logger.info(f"After fees: {our_sum} sats to us, {their_sum} sats to them")

    outputs = []
    if our_script:
        outputs.append(TxOut(our_sum, our_script))
    if their_script:
        outputs.append(TxOut(their_sum, their_script))

    psbt = Psbt.from_unsigned_tx(Transaction(version=2, inputs=inputs, outputs=outputs))
    for pin, channel in zip(psbt.inputs, channels):
        pin.witness_utxo = TxOut(channel.capacity, channel.pk_script)
        pin.unknowns[PSBT_KEY_MISSING_SIG_PUBKEY] = channel.their_key
        if channel.witness_script is not None:
            pin.witness_script = channel.witness_script
            pin.sighash_type = SIGHASH_ALL

    signer = Signer(keyring)
    for idx, key_desc in enumerate(key_descs):
        signer.add_partial_signature(psbt, key_desc, idx, peer)

    logger.info(f"Created offer closing {len(channels)} channels with {len(outputs)} outputs")
    return psbt.to_base64()
