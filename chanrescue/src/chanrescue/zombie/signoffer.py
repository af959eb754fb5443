"""
SignOffer: check an offer made by the counterparty, add our signature and
produce the final transaction.

Everything is validated before we sign. The counterparty's signatures must
already be valid and the payout we agreed on must be in the transaction.
"""

from __future__ import annotations

from chancore.bitcoin.address import address_to_script, p2wsh_script, script_to_address
from chancore.bitcoin.psbt import Psbt
from chancore.bitcoin.script import is_p2tr, is_p2wsh, parse_multisig
from chancore.bitcoin.sighash import compute_sighash_segwit
from chancore.bitcoin.verify import verify_ecdsa, verify_transaction
from chancore.channel.signer import Signer
from chancore.constants import DEFAULT_KEY_SCAN_LIMIT, SIGHASH_ALL
from chancore.errors import ConstructionError, UnsupportedChannelTypeError
from chancore.keychain.keyring import KeyRing
from chancore.params import ChainParams
from loguru import logger

from chanrescue.zombie.models import PSBT_KEY_MISSING_SIG_PUBKEY, OfferValidationError


def _target_key(psbt: Psbt, idx: int) -> bytes:
    pin = psbt.inputs[idx]
    if len(pin.unknowns) != 1:
        raise OfferValidationError(
            f"invalid PSBT, expected 1 unknown in input {idx}, got {len(pin.unknowns)}"
        )
    ((key, value),) = pin.unknowns.items()
    if key != PSBT_KEY_MISSING_SIG_PUBKEY:
        raise OfferValidationError(
            f"invalid PSBT, unknown has invalid key {key.hex()}, "
            f"expected {PSBT_KEY_MISSING_SIG_PUBKEY.hex()}"
        )
    if len(value) != 33 or value[0] not in (2, 3):
        raise OfferValidationError(f"invalid PSBT, input {idx} carries an invalid public key")
    return value


def check_offer_input(psbt: Psbt, idx: int) -> bytes:
    """
    Validate one input and the counterparty's signature on it. Returns the
    public key we are expected to sign with.
    """
    target = _target_key(psbt, idx)
    pin = psbt.inputs[idx]
    if pin.witness_utxo is None:
        raise OfferValidationError(f"invalid PSBT, input {idx} has no witness UTXO")
    pk_script = pin.witness_utxo.script_pubkey
    if is_p2tr(pk_script):
        raise UnsupportedChannelTypeError(
            f"input {idx} spends a taproot channel, MuSig2 signing is not supported"
        )
    if not is_p2wsh(pk_script) or pin.witness_script is None:
        raise OfferValidationError(f"invalid PSBT, input {idx} is not a P2WSH multisig spend")
    if p2wsh_script(pin.witness_script) != pk_script:
        raise OfferValidationError(f"invalid PSBT, witness script of input {idx} does not match")
    if pin.sighash_type is not None and pin.sighash_type != SIGHASH_ALL:
        raise OfferValidationError(f"invalid PSBT, input {idx} must use SIGHASH_ALL")

    try:
        _, pubkeys = parse_multisig(pin.witness_script)
    except ConstructionError as e:
        raise OfferValidationError(f"invalid PSBT, input {idx}: {e}") from e
    if target not in pubkeys:
        raise OfferValidationError(f"invalid PSBT, key {target.hex()} is not in input {idx}")

    remote_sigs = {k: s for k, s in pin.partial_sigs.items() if k != target}
    if len(remote_sigs) != 1:
        raise OfferValidationError(
            f"invalid PSBT, expected the counterparty's signature on input {idx}"
        )
    ((remote_key, remote_sig),) = remote_sigs.items()
    if remote_key not in pubkeys or remote_sig[-1] != SIGHASH_ALL:
        raise OfferValidationError(f"invalid PSBT, unexpected signature on input {idx}")

    sighash = compute_sighash_segwit(
        psbt.unsigned_tx, idx, pin.witness_script, pin.witness_utxo.value, SIGHASH_ALL
    )
    if not verify_ecdsa(remote_key, remote_sig[:-1], sighash):
        raise OfferValidationError(f"counterparty signature on input {idx} is invalid")
    return target


def check_payout(
    psbt: Psbt,
    params: ChainParams,
    expected_payout_addr: str,
    expected_amount: int,
) -> None:
    """Our payout must be in the offer and pay at least expected_amount."""
    if expected_amount <= 0:
        raise OfferValidationError(f"expected payout must be positive, got {expected_amount}")
    expected_script = address_to_script(expected_payout_addr, params)
    for out in psbt.unsigned_tx.outputs:
        if out.script_pubkey != expected_script:
            continue
        if out.value < expected_amount:
            raise OfferValidationError(
                f"payout to {expected_payout_addr} is {out.value} sats, "
                f"expected at least {expected_amount} sats"
            )
        return
    raise OfferValidationError(f"offer does not pay to {expected_payout_addr}")


def sign_offer(
    psbt_b64: str,
    keyring: KeyRing,
    params: ChainParams,
    expected_payout_addr: str,
    expected_amount: int,
    peer: bytes | None = None,
    max_index: int = DEFAULT_KEY_SCAN_LIMIT,
) -> str:
    """
    Validate the offer, sign every input and return the final transaction
    as hex. The offer must pay at least expected_amount sats to
    expected_payout_addr. peer is the counterparty's node key, needed for
    hsm_secret keys.
    """
    psbt = Psbt.from_base64(psbt_b64)
    if not psbt.inputs:
        raise OfferValidationError("invalid PSBT, expected at least 1 input, got 0")

    targets = [check_offer_input(psbt, idx) for idx in range(len(psbt.inputs))]
    check_payout(psbt, params, expected_payout_addr, expected_amount)

    for idx, (txin, prevout) in enumerate(zip(psbt.unsigned_tx.inputs, psbt.prevouts())):
        logger.info(f"Closing channel {idx} ({txin.outpoint}), capacity {prevout.value} sats")
    for out in psbt.unsigned_tx.outputs:
        logger.info(f"Sending {out.value} sats to {script_to_address(out.script_pubkey, params)}")
    logger.info(f"Total fees: {psbt.fee()} sats")

    signer = Signer(keyring)
    for idx, target in enumerate(targets):
        key_desc = signer.find_multisig_key(target, peer, max_index)
        signer.add_partial_signature(psbt, key_desc, idx, peer)

    prevouts = psbt.prevouts()
    psbt.finalize_all()
    tx = psbt.extract()
    verify_transaction(tx, prevouts)

    logger.info(f"Signed offer transaction {tx.txid()}")
    return tx.hex()
