"""
Tests for completing a local commitment with our funding signature.
"""

import pytest

from chancore.bitcoin.sighash import compute_sighash_segwit
from chancore.bitcoin.tx import deserialize_transaction
from chancore.channel.commitment import (
    sign_commitment,
    sign_commitment_from_backup,
    spend_multisig,
)
from chancore.channel.scripts import gen_funding_script
from chancore.channel.signer import Signer
from chancore.constants import SIGHASH_ALL
from chancore.errors import (
    ConstructionError,
    DerivationError,
    ScriptVerificationError,
    UnsupportedChannelTypeError,
)
from chancore.models import (
    BackupVersion,
    ChannelBackupSingle,
    ChannelConfig,
    CloseTxInputs,
    KeyFamily,
    KeyLocator,
    LocalCommitment,
)
from chancore.params import MAINNET_PARAMS, REGTEST_PARAMS


def _backup(state, **kwargs) -> ChannelBackupSingle:
    fields = {
        "version": BackupVersion.TWEAKLESS,
        "chain_hash": REGTEST_PARAMS.genesis_hash,
        "funding_outpoint": state.funding_outpoint,
        "capacity": state.capacity,
        "local_chan_cfg": state.local_chan_cfg,
        "remote_chan_cfg": state.remote_chan_cfg,
        "close_tx_inputs": CloseTxInputs(
            commit_tx=state.local_commitment.commit_tx,
            commit_sig=state.local_commitment.commit_sig,
            commit_height=state.local_commitment.commit_height,
        ),
    }
    fields.update(kwargs)
    return ChannelBackupSingle(**fields)


class TestSpendMultisig:
    def test_orders_by_pubkey(self):
        low, high = b"\x02" + b"\x01" * 32, b"\x03" + b"\x01" * 32
        witness = spend_multisig(b"ws", high, b"sig-high", low, b"sig-low")
        assert witness == [b"", b"sig-low\x01", b"sig-high\x01", b"ws"]


class TestSignCommitment:
    def test_signs_and_verifies(self, lnd_keyring, channel_state):
        tx = sign_commitment(Signer(lnd_keyring), channel_state)

        witness = tx.inputs[0].witness
        assert len(witness) == 4
        assert witness[0] == b""
        ws, _ = gen_funding_script(
            channel_state.local_chan_cfg.multisig_key.pub_key,
            channel_state.remote_chan_cfg.multisig_key.pub_key,
            channel_state.capacity,
        )
        assert witness[-1] == ws
        assert tx.outputs[1].value == 590_000

    def test_bad_remote_signature(self, lnd_keyring, channel_state):
        sig = bytearray(channel_state.local_commitment.commit_sig)
        sig[-1] ^= 0x01
        channel_state.local_commitment.commit_sig = bytes(sig)
        with pytest.raises(ScriptVerificationError):
            sign_commitment(Signer(lnd_keyring), channel_state)

    def test_missing_commitment(self, lnd_keyring, channel_state):
        channel_state.local_commitment = LocalCommitment()
        with pytest.raises(ConstructionError, match="no local commitment"):
            sign_commitment(Signer(lnd_keyring), channel_state)

    def test_wrong_funding_outpoint(self, lnd_keyring, channel_state):
        channel_state.funding_outpoint = f"{'b2' * 32}:0"
        with pytest.raises(ConstructionError, match="does not spend funding outpoint"):
            sign_commitment(Signer(lnd_keyring), channel_state)

    def test_taproot_channel_unsupported(self, lnd_keyring, channel_state):
        channel_state.chan_type = int(BackupVersion.SIMPLE_TAPROOT.channel_type())
        with pytest.raises(UnsupportedChannelTypeError):
            sign_commitment(Signer(lnd_keyring), channel_state)


class TestSignFromBackup:
    def test_signs_cached_commitment(self, lnd_keyring, channel_state):
        backup = _backup(channel_state)
        tx = sign_commitment_from_backup(Signer(lnd_keyring), backup, REGTEST_PARAMS)
        assert tx.txid() == sign_commitment(Signer(lnd_keyring), channel_state).txid()

    def test_without_close_tx_inputs(self, lnd_keyring, channel_state):
        backup = _backup(channel_state, close_tx_inputs=None)
        with pytest.raises(
            ConstructionError,
            match="channel backup does not have data needed to sign force close tx",
        ):
            sign_commitment_from_backup(Signer(lnd_keyring), backup, REGTEST_PARAMS)

    def test_other_chain(self, lnd_keyring, channel_state):
        backup = _backup(channel_state)
        with pytest.raises(ConstructionError, match="another chain"):
            sign_commitment_from_backup(Signer(lnd_keyring), backup, MAINNET_PARAMS)

    def test_taproot_backup(self, lnd_keyring, channel_state):
        backup = _backup(channel_state, version=BackupVersion.SIMPLE_TAPROOT)
        with pytest.raises(UnsupportedChannelTypeError):
            sign_commitment_from_backup(Signer(lnd_keyring), backup, REGTEST_PARAMS)


@pytest.fixture
def peer_pub(remote_key_factory) -> bytes:
    return remote_key_factory("node").public_key.format(compressed=True)


@pytest.fixture
def cln_channel_state(cln_keyring, channel_state, remote_key_factory, peer_pub):
    """channel_state with our side keyed from an hsm_secret for peer_pub."""

    def local(family: KeyFamily):
        return cln_keyring.derive_key(KeyLocator(family=family, index=4), peer_pub)

    local_cfg = ChannelConfig(
        multisig_key=local(KeyFamily.MULTISIG),
        revocation_base_point=local(KeyFamily.REVOCATION_BASE),
        payment_base_point=local(KeyFamily.PAYMENT_BASE),
        delay_base_point=local(KeyFamily.DELAY_BASE),
    )
    witness_script, funding_output = gen_funding_script(
        local_cfg.multisig_key.pub_key,
        channel_state.remote_chan_cfg.multisig_key.pub_key,
        channel_state.capacity,
    )
    commit_tx = deserialize_transaction(channel_state.local_commitment.commit_tx)
    sighash = compute_sighash_segwit(
        commit_tx, 0, witness_script, funding_output.value, SIGHASH_ALL
    )
    commitment = channel_state.local_commitment.model_copy(
        update={"commit_sig": remote_key_factory("multisig").sign(sighash, hasher=None)}
    )
    return channel_state.model_copy(
        update={
            "remote_node_pub": peer_pub,
            "local_chan_cfg": local_cfg,
            "local_commitment": commitment,
        }
    )


class TestPerPeerKeys:
    def test_sign_commitment(self, cln_keyring, cln_channel_state):
        tx = sign_commitment(Signer(cln_keyring), cln_channel_state)
        assert len(tx.inputs[0].witness) == 4

    def test_sign_commitment_needs_remote_node(self, cln_keyring, cln_channel_state):
        state = cln_channel_state.model_copy(update={"remote_node_pub": None})
        with pytest.raises(DerivationError, match="peer public key is required"):
            sign_commitment(Signer(cln_keyring), state)

    def test_sign_from_backup(self, cln_keyring, cln_channel_state, peer_pub):
        backup = _backup(cln_channel_state, remote_node_pub=peer_pub)
        tx = sign_commitment_from_backup(Signer(cln_keyring), backup, REGTEST_PARAMS)
        assert len(tx.inputs[0].witness) == 4
