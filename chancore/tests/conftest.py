"""
Test configuration for chancore tests.
"""

from __future__ import annotations

import hashlib

import pytest
from coincurve import PrivateKey

from chancore.bitcoin.address import p2wpkh_script
from chancore.bitcoin.sighash import compute_sighash_segwit
from chancore.bitcoin.tx import Transaction, TxIn, TxOut
from chancore.channel.scripts import gen_funding_script
from chancore.constants import SIGHASH_ALL
from chancore.keychain.bip32 import ExtendedKey
from chancore.keychain.keyring import Bip32Deriver, HkdfDeriver, KeyRing
from chancore.models import (
    ChannelConfig,
    KeyDescriptor,
    KeyFamily,
    KeyLocator,
    LocalCommitment,
    OpenChannelState,
)
from chancore.params import MAINNET_PARAMS, REGTEST_PARAMS

# BIP39 seed of "abandon abandon ... about" with an empty passphrase
ABANDON_SEED = bytes.fromhex(
    "5eb00bbddcf069084889a8ab9155568165f5c453ccb85e70811aaed6f6da5fc1"
    "9a5ac40b389cd370d086206dec8aa6c43daea6690f20ad3d8d48b2d2ce9e38e4"
)

HSM_SECRET = bytes.fromhex("3f0a06c6385b7493f75aa0089f316a13bf72beb430e59e71b5ac5a73581a6270")

FUNDING_TXID = "a1" * 32


def remote_key(label: str) -> PrivateKey:
    """Deterministic counterparty key for a role label."""
    return PrivateKey(hashlib.sha256(b"remote " + label.encode()).digest())


def _descriptor(family: KeyFamily, priv: PrivateKey, index: int = 0) -> KeyDescriptor:
    return KeyDescriptor(
        locator=KeyLocator(family=family, index=index),
        pub_key=priv.public_key.format(compressed=True),
    )


@pytest.fixture
def remote_key_factory():
    return remote_key


@pytest.fixture
def mnemonic_seed() -> bytes:
    return ABANDON_SEED


@pytest.fixture
def mainnet_root(mnemonic_seed) -> ExtendedKey:
    return ExtendedKey.from_seed(mnemonic_seed, MAINNET_PARAMS)


@pytest.fixture
def regtest_root(mnemonic_seed) -> ExtendedKey:
    return ExtendedKey.from_seed(mnemonic_seed, REGTEST_PARAMS)


@pytest.fixture
def lnd_keyring(regtest_root) -> KeyRing:
    return KeyRing(Bip32Deriver(regtest_root, REGTEST_PARAMS), REGTEST_PARAMS)


@pytest.fixture
def cln_keyring() -> KeyRing:
    return KeyRing(HkdfDeriver(HSM_SECRET), MAINNET_PARAMS)


@pytest.fixture
def channel_state(lnd_keyring) -> OpenChannelState:
    """
    A channel with a local commitment already signed by the remote party.
    The commitment pays both balances to plain P2WPKH outputs.
    """
    capacity = 1_000_000

    def local(family: KeyFamily, index: int) -> KeyDescriptor:
        return lnd_keyring.derive_key(KeyLocator(family=family, index=index))

    local_cfg = ChannelConfig(
        multisig_key=local(KeyFamily.MULTISIG, 3),
        revocation_base_point=local(KeyFamily.REVOCATION_BASE, 3),
        payment_base_point=local(KeyFamily.PAYMENT_BASE, 3),
        delay_base_point=local(KeyFamily.DELAY_BASE, 3),
    )
    remote_multisig = remote_key("multisig")
    remote_cfg = ChannelConfig(
        multisig_key=_descriptor(KeyFamily.MULTISIG, remote_multisig),
        revocation_base_point=_descriptor(KeyFamily.REVOCATION_BASE, remote_key("revocation")),
        payment_base_point=_descriptor(KeyFamily.PAYMENT_BASE, remote_key("payment")),
        delay_base_point=_descriptor(KeyFamily.DELAY_BASE, remote_key("delay")),
    )

    witness_script, funding_output = gen_funding_script(
        local_cfg.multisig_key.pub_key, remote_cfg.multisig_key.pub_key, capacity
    )
    commit_tx = Transaction(
        version=2,
        inputs=[TxIn(FUNDING_TXID, 0, sequence=0x80000000)],
        outputs=[
            TxOut(400_000, p2wpkh_script(remote_cfg.payment_base_point.pub_key)),
            TxOut(590_000, p2wpkh_script(local_cfg.payment_base_point.pub_key)),
        ],
        locktime=0x20000000,
    )
    sighash = compute_sighash_segwit(
        commit_tx, 0, witness_script, funding_output.value, SIGHASH_ALL
    )
    remote_sig = remote_multisig.sign(sighash, hasher=None)

    return OpenChannelState(
        funding_outpoint=f"{FUNDING_TXID}:0",
        capacity=capacity,
        is_initiator=True,
        local_chan_cfg=local_cfg,
        remote_chan_cfg=remote_cfg,
        local_commitment=LocalCommitment(
            commit_height=7,
            commit_tx=commit_tx.serialize(),
            commit_sig=remote_sig,
            local_balance=590_000,
            remote_balance=400_000,
            commit_fee=10_000,
        ),
    )
