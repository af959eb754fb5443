"""
Signer producing raw input signatures from sign descriptors.
"""

from __future__ import annotations

from coincurve import PrivateKey
from loguru import logger

from chancore.bitcoin.psbt import Psbt
from chancore.bitcoin.script import is_p2tr, is_p2wpkh
from chancore.bitcoin.sighash import (
    compute_sighash_segwit,
    compute_sighash_taproot,
    p2wpkh_script_code,
)
from chancore.bitcoin.taproot import tap_leaf_hash, taproot_tweak_seckey
from chancore.bitcoin.tx import Transaction, TxOut
from chancore.channel.signdesc import SignDescriptor, SignMethod
from chancore.channel.tweak import derive_revocation_privkey, tweak_privkey
from chancore.constants import DEFAULT_KEY_SCAN_LIMIT, SIGHASH_ALL
from chancore.errors import PsbtError, SigningError, UnsupportedChannelTypeError
from chancore.keychain.keyring import KeyRing
from chancore.models import KeyDescriptor


class Signer:
    """Signs with keys re-derived from a KeyRing for every request."""

    def __init__(self, keyring: KeyRing):
        self.keyring = keyring

    def fetch_private_key(self, sign_desc: SignDescriptor) -> PrivateKey:
        """Derive the descriptor's key and apply its single or double tweak."""
        priv = self.keyring.derive_private_key(sign_desc.key_desc, sign_desc.peer)
        if sign_desc.single_tweak is not None:
            return tweak_privkey(priv, sign_desc.single_tweak)
        if sign_desc.double_tweak is not None:
            return derive_revocation_privkey(priv, sign_desc.double_tweak)
        return priv

    def sign_output_raw(
        self,
        tx: Transaction,
        sign_desc: SignDescriptor,
        prevouts: list[TxOut] | None = None,
    ) -> bytes:
        """
        Signature for one input: DER without the sighash byte for witness v0
        spends, 64 byte BIP340 signature for taproot spends. Taproot needs the
        spent outputs of all inputs unless the tx has a single input.
        """
        sign_desc.validate()
        if not 0 <= sign_desc.input_index < len(tx.inputs):
            raise SigningError(f"input index {sign_desc.input_index} out of range")
        priv = self.fetch_private_key(sign_desc)

        if sign_desc.sign_method == SignMethod.WITNESS_V0:
            pk_script = sign_desc.output.script_pubkey
            if is_p2wpkh(pk_script):
                script_code = p2wpkh_script_code(pk_script[2:])
            else:
                script_code = sign_desc.witness_script or b""
            sighash = compute_sighash_segwit(
                tx, sign_desc.input_index, script_code, sign_desc.output.value, sign_desc.hash_type
            )
            return priv.sign(sighash, hasher=None)

        if prevouts is None:
            if len(tx.inputs) != 1:
                raise SigningError("taproot signing needs the spent output of every input")
            prevouts = [sign_desc.output]

        if sign_desc.sign_method == SignMethod.TAPROOT_SCRIPT_SPEND:
            leaf_hash = tap_leaf_hash(sign_desc.witness_script or b"")
            msg = compute_sighash_taproot(
                tx, sign_desc.input_index, prevouts, sign_desc.hash_type, leaf_hash=leaf_hash
            )
            return priv.sign_schnorr(msg)

        merkle_root = None
        if sign_desc.sign_method == SignMethod.TAPROOT_KEY_SPEND:
            merkle_root = sign_desc.tap_tweak
        tweaked = PrivateKey(taproot_tweak_seckey(priv.secret, merkle_root))
        msg = compute_sighash_taproot(tx, sign_desc.input_index, prevouts, sign_desc.hash_type)
        return tweaked.sign_schnorr(msg)

    def add_partial_signature(
        self,
        psbt: Psbt,
        key_desc: KeyDescriptor,
        index: int,
        peer: bytes | None = None,
    ) -> bytes:
        """Sign a P2WSH input of a PSBT with SIGHASH_ALL and record the signature."""
        if not 0 <= index < len(psbt.inputs):
            raise PsbtError(f"input index {index} out of range")
        pin = psbt.inputs[index]
        if pin.witness_utxo is None:
            raise PsbtError(f"input {index} has no witness UTXO")
        if is_p2tr(pin.witness_utxo.script_pubkey):
            raise UnsupportedChannelTypeError(
                f"input {index} spends a taproot output, MuSig2 signing is not supported"
            )
        if pin.witness_script is None:
            raise PsbtError(f"input {index} has no witness script")

        sign_desc = SignDescriptor(
            key_desc=key_desc,
            output=pin.witness_utxo,
            witness_script=pin.witness_script,
            hash_type=SIGHASH_ALL,
            input_index=index,
            peer=peer,
        )
        der_sig = self.sign_output_raw(psbt.unsigned_tx, sign_desc)
        pubkey = key_desc.pub_key or self.keyring.derive_private_key(
            key_desc.locator, peer
        ).public_key.format(compressed=True)

        signature = der_sig + bytes([SIGHASH_ALL])
        psbt.add_partial_signature(index, pubkey, signature, pin.witness_script)
        logger.debug(f"Added partial signature for input {index} with key {key_desc.locator}")
        return signature

    def find_multisig_key(
        self,
        target: bytes,
        peer: bytes | None = None,
        max_index: int = DEFAULT_KEY_SCAN_LIMIT,
    ) -> KeyDescriptor:
        return self.keyring.find_multisig_key(target, peer, max_index)
