"""
Test configuration for chanrescue tests.
"""

from __future__ import annotations

import hashlib

import pytest
from chancore.bitcoin.address import p2wpkh_script
from chancore.bitcoin.sighash import compute_sighash_segwit
from chancore.bitcoin.tx import Transaction, TxIn, TxOut
from chancore.channel.scripts import gen_funding_script
from chancore.constants import SIGHASH_ALL
from chancore.keychain.bip32 import ExtendedKey
from chancore.keychain.keyring import Bip32Deriver, KeyRing
from chancore.models import (
    ChannelConfig,
    KeyDescriptor,
    KeyFamily,
    KeyLocator,
    LocalCommitment,
    OpenChannelState,
)
from chancore.params import REGTEST_PARAMS
from coincurve import PrivateKey

from chanrescue.results import SummaryEntry

# BIP39 seed of "abandon ... about" with an empty passphrase
ABANDON_SEED = bytes.fromhex(
    "5eb00bbddcf069084889a8ab9155568165f5c453ccb85e70811aaed6f6da5fc1"
    "9a5ac40b389cd370d086206dec8aa6c43daea6690f20ad3d8d48b2d2ce9e38e4"
)

PEER_SEED = hashlib.sha256(b"zombie peer seed").digest()

FUNDING_TXID = "b2" * 32


def remote_key(label: str) -> PrivateKey:
    return PrivateKey(hashlib.sha256(b"remote " + label.encode()).digest())


@pytest.fixture
def regtest_root() -> ExtendedKey:
    return ExtendedKey.from_seed(ABANDON_SEED, REGTEST_PARAMS)


@pytest.fixture
def regtest_rootkey(regtest_root) -> str:
    return regtest_root.to_string()


@pytest.fixture
def lnd_keyring(regtest_root) -> KeyRing:
    return KeyRing(Bip32Deriver(regtest_root, REGTEST_PARAMS), REGTEST_PARAMS)


@pytest.fixture
def peer_keyring() -> KeyRing:
    root = ExtendedKey.from_seed(PEER_SEED, REGTEST_PARAMS)
    return KeyRing(Bip32Deriver(root, REGTEST_PARAMS), REGTEST_PARAMS)


@pytest.fixture
def channel_state(lnd_keyring) -> OpenChannelState:
    """A channel whose local commitment is already signed by the remote party."""
    capacity = 1_000_000

    def local(family: KeyFamily) -> KeyDescriptor:
        return lnd_keyring.derive_key(KeyLocator(family=family, index=1))

    def remote(family: KeyFamily, label: str) -> KeyDescriptor:
        return KeyDescriptor(
            locator=KeyLocator(family=family, index=0),
            pub_key=remote_key(label).public_key.format(compressed=True),
        )

    local_cfg = ChannelConfig(
        multisig_key=local(KeyFamily.MULTISIG),
        revocation_base_point=local(KeyFamily.REVOCATION_BASE),
        payment_base_point=local(KeyFamily.PAYMENT_BASE),
        delay_base_point=local(KeyFamily.DELAY_BASE),
    )
    remote_cfg = ChannelConfig(
        multisig_key=remote(KeyFamily.MULTISIG, "multisig"),
        revocation_base_point=remote(KeyFamily.REVOCATION_BASE, "revocation"),
        payment_base_point=remote(KeyFamily.PAYMENT_BASE, "payment"),
        delay_base_point=remote(KeyFamily.DELAY_BASE, "delay"),
    )

    witness_script, funding_output = gen_funding_script(
        local_cfg.multisig_key.pub_key, remote_cfg.multisig_key.pub_key, capacity
    )
    commit_tx = Transaction(
        version=2,
        inputs=[TxIn(FUNDING_TXID, 1, sequence=0x80000000)],
        outputs=[
            TxOut(300_000, p2wpkh_script(remote_cfg.payment_base_point.pub_key)),
            TxOut(690_000, p2wpkh_script(local_cfg.payment_base_point.pub_key)),
        ],
        locktime=0x20000000,
    )
    sighash = compute_sighash_segwit(
        commit_tx, 0, witness_script, funding_output.value, SIGHASH_ALL
    )

    return OpenChannelState(
        funding_outpoint=f"{FUNDING_TXID}:1",
        capacity=capacity,
        is_initiator=True,
        remote_node_pub=remote_key("node").public_key.format(compressed=True),
        local_chan_cfg=local_cfg,
        remote_chan_cfg=remote_cfg,
        local_commitment=LocalCommitment(
            commit_height=3,
            commit_tx=commit_tx.serialize(),
            commit_sig=remote_key("multisig").sign(sighash, hasher=None),
            local_balance=690_000,
            remote_balance=300_000,
            commit_fee=10_000,
        ),
        revocation_producer_root=hashlib.sha256(b"producer root").digest(),
    )


@pytest.fixture
def channel_entry(channel_state) -> SummaryEntry:
    return SummaryEntry(
        channel_point=str(channel_state.funding_outpoint),
        capacity=channel_state.capacity,
        initiator=True,
        local_balance=690_000,
        remote_balance=300_000,
    )
