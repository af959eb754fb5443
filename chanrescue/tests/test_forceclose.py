"""
Tests for force closing channels from their latest local commitment.
"""

import hashlib
from unittest.mock import AsyncMock, Mock

import pytest
from chancore.bitcoin.tx import deserialize_transaction
from chancore.channel.signer import Signer
from chancore.errors import ConstructionError
from chancore.keychain.shachain import RevocationProducer
from chancore.models import KeyDescriptor, KeyFamily, KeyLocator, LocalCommitment

from chanrescue.chain import ChainClientError
from chanrescue.forceclose import ForceCloseEngine, revocation_producer
from chanrescue.results import ClosingTx, SummaryEntry
from chanrescue.store import ChannelStore


class FakeStore(ChannelStore):
    def __init__(self, channels):
        self.channels = channels

    def fetch_all_channels(self):
        return list(self.channels)

    def fetch_backups(self):
        return []


class TestRevocationProducer:
    def test_stored_root(self, lnd_keyring, channel_state):
        producer = revocation_producer(Signer(lnd_keyring), channel_state)
        expected = RevocationProducer(hashlib.sha256(b"producer root").digest())
        assert producer.commitment_point(3) == expected.commitment_point(3)

    def test_derived_root(self, lnd_keyring, channel_state):
        locator = KeyLocator(family=KeyFamily.REVOCATION_ROOT, index=1)
        state = channel_state.model_copy(
            update={
                "revocation_producer_root": None,
                "sha_chain_root_desc": KeyDescriptor(locator=locator),
            }
        )
        producer = revocation_producer(Signer(lnd_keyring), state)

        root_key = lnd_keyring.derive_private_key(locator)
        multisig_pub = channel_state.local_chan_cfg.multisig_key.pub_key
        expected = RevocationProducer(root_key.ecdh(multisig_pub))
        assert producer.at_index(0) == expected.at_index(0)

    def test_legacy_root(self, lnd_keyring, channel_state):
        locator = KeyLocator(family=KeyFamily.REVOCATION_ROOT, index=1)
        state = channel_state.model_copy(
            update={
                "revocation_producer_root": None,
                "sha_chain_root_desc": lnd_keyring.derive_key(locator),
            }
        )
        producer = revocation_producer(Signer(lnd_keyring), state)
        expected = RevocationProducer(lnd_keyring.derive_private_key(locator).secret)
        assert producer.at_index(5) == expected.at_index(5)

    def test_derived_root_uses_remote_node(self, channel_state):
        keyring = Mock()
        desc = KeyDescriptor(locator=KeyLocator(family=KeyFamily.REVOCATION_ROOT, index=1))
        state = channel_state.model_copy(
            update={"revocation_producer_root": None, "sha_chain_root_desc": desc}
        )

        revocation_producer(Signer(keyring), state)

        keyring.revocation_producer.assert_called_once_with(
            desc,
            channel_state.local_chan_cfg.multisig_key.pub_key,
            peer=channel_state.remote_node_pub,
        )

    def test_missing_root(self, lnd_keyring, channel_state):
        state = channel_state.model_copy(update={"revocation_producer_root": None})
        with pytest.raises(ConstructionError, match="no revocation producer root"):
            revocation_producer(Signer(lnd_keyring), state)


class TestForceCloseEngine:
    def test_sign_channel(self, lnd_keyring, channel_state):
        engine = ForceCloseEngine(FakeStore([channel_state]), Signer(lnd_keyring))
        record = engine.sign_channel(channel_state)

        tx = deserialize_transaction(bytes.fromhex(record.serialized))
        assert tx.txid() == record.txid
        assert len(tx.inputs[0].witness) == 4
        assert record.csv_delay == 144
        assert record.delay_basepoint.family == int(KeyFamily.DELAY_BASE)
        assert record.delay_basepoint.index == 1
        assert record.revocation_basepoint.pubkey == (
            channel_state.remote_chan_cfg.revocation_base_point.pub_key.hex()
        )
        producer = RevocationProducer(channel_state.revocation_producer_root)
        assert record.commit_point == producer.commitment_point(3).hex()
        assert [o.value for o in record.outs] == [300_000, 690_000]
        assert record.outs[0].script_asm.startswith("0 ")

    @pytest.mark.asyncio
    async def test_run_skips_and_signs(self, lnd_keyring, channel_state, channel_entry):
        closed = SummaryEntry(
            channel_point="cc" * 32 + ":0", closing_tx=ClosingTx(txid="dd" * 32)
        )
        unknown = SummaryEntry(channel_point="ee" * 32 + ":0")
        engine = ForceCloseEngine(FakeStore([channel_state]), Signer(lnd_keyring))

        entries = await engine.run([closed, unknown, channel_entry])

        assert entries[0].force_close is None
        assert entries[1].force_close is None
        assert entries[2].force_close is not None

    @pytest.mark.asyncio
    async def test_run_skips_failing_channels(self, lnd_keyring, channel_state, channel_entry):
        no_commit = channel_state.model_copy(update={"local_commitment": LocalCommitment()})
        engine = ForceCloseEngine(FakeStore([no_commit]), Signer(lnd_keyring))
        entries = await engine.run([channel_entry])
        assert entries[0].force_close is None

        no_root = channel_state.model_copy(update={"revocation_producer_root": None})
        engine = ForceCloseEngine(FakeStore([no_root]), Signer(lnd_keyring))
        entries = await engine.run([channel_entry])
        assert entries[0].force_close is None

    @pytest.mark.asyncio
    async def test_publish(self, lnd_keyring, channel_state, channel_entry):
        client = AsyncMock()
        client.broadcast.return_value = "ok"
        engine = ForceCloseEngine(FakeStore([channel_state]), Signer(lnd_keyring), client)

        (entry,) = await engine.run([channel_entry], publish=True)

        client.broadcast.assert_awaited_once_with(entry.force_close.serialized)

    @pytest.mark.asyncio
    async def test_publish_failure_is_logged(self, lnd_keyring, channel_state, channel_entry):
        client = AsyncMock()
        client.broadcast.side_effect = ChainClientError("rejected")
        engine = ForceCloseEngine(FakeStore([channel_state]), Signer(lnd_keyring), client)

        (entry,) = await engine.run([channel_entry], publish=True)

        assert entry.force_close is not None

    @pytest.mark.asyncio
    async def test_publish_needs_client(self, lnd_keyring, channel_state, channel_entry):
        engine = ForceCloseEngine(FakeStore([channel_state]), Signer(lnd_keyring))
        with pytest.raises(ValueError, match="chain client"):
            await engine.run([channel_entry], publish=True)
