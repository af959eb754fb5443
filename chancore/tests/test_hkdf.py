"""
Tests for Core Lightning hsm_secret key derivation.
"""

import pytest

from chancore.errors import DerivationError
from chancore.keychain.hkdf import KEY_WINDOWS, channel_key, hkdf_sha256, node_key
from chancore.models import KeyFamily

HSM_SECRET = bytes.fromhex("3f0a06c6385b7493f75aa0089f316a13bf72beb430e59e71b5ac5a73581a6270")
PEER = bytes.fromhex("02678187ca43e6a6f62f9185be98a933bf485313061e6a05578bbd83c54e88d460")


class TestHkdf:
    def test_rfc5869_case_1(self):
        okm = hkdf_sha256(
            bytes([0x0B] * 22),
            bytes(range(13)),
            bytes.fromhex("f0f1f2f3f4f5f6f7f8f9"),
            42,
        )
        assert okm.hex() == (
            "3cb25f25faacd57a90434f64d0362f2a2d2d0a90cf1a5a4c5db02d56ecc4c5bf"
            "34007208d5b887185865"
        )

    def test_rfc5869_case_3_no_salt(self):
        okm = hkdf_sha256(bytes([0x0B] * 22), None, b"", 42)
        assert okm.hex() == (
            "8da4e775a563c18f715f802a063c5a31b8a11f5c5ee1879ec3454e5f3c738d2d"
            "9d201395faa4b61a96c8"
        )

    def test_too_long(self):
        with pytest.raises(DerivationError):
            hkdf_sha256(b"x", None, b"", 255 * 32 + 1)


class TestNodeKey:
    def test_vector(self):
        assert node_key(HSM_SECRET).public_key.format(compressed=True).hex() == (
            "035149629152c1bee83f1e148a51400b5f24bf3e2ca53384dd801418446e1f53fe"
        )

    def test_secret_length(self):
        with pytest.raises(DerivationError, match="32 bytes"):
            node_key(HSM_SECRET[:31])


class TestChannelKey:
    def test_funding_key(self):
        key = channel_key(HSM_SECRET, PEER, 1, KeyFamily.MULTISIG)
        assert key.public_key.format(compressed=True).hex() == (
            "0326a2171c97673cc8cd7a04a043f0224c59591fc8c9de320a48f7c9b68ab0ae2b"
        )

    def test_payment_base_point(self):
        secret = bytes.fromhex(
            "665b09e6fc86391f0141d957eb14ec30f8f8a58a876842792474cacc24489456"
        )
        peer = bytes.fromhex(
            "0350aeef9f33a157953d3c3c1ef464bdf421204461959524e52e530c17f166f541"
        )
        key = channel_key(secret, peer, 1, KeyFamily.PAYMENT_BASE)
        assert key.public_key.format(compressed=True).hex() == (
            "0339c93ca896829672510f8a4e51caef4b5f6a26f880acf5a120725a7f027b56b4"
        )

    def test_roles_are_distinct(self):
        keys = {channel_key(HSM_SECRET, PEER, 1, family).secret for family in KEY_WINDOWS}
        assert len(keys) == len(KEY_WINDOWS)

    def test_dbid_changes_key(self):
        assert (
            channel_key(HSM_SECRET, PEER, 1, KeyFamily.MULTISIG).secret
            != channel_key(HSM_SECRET, PEER, 2, KeyFamily.MULTISIG).secret
        )

    def test_node_family_returns_node_key(self):
        assert channel_key(HSM_SECRET, PEER, 9, KeyFamily.NODE_KEY).secret == (
            node_key(HSM_SECRET).secret
        )

    def test_unsupported_family(self):
        with pytest.raises(DerivationError, match="unsupported key family for CLN"):
            channel_key(HSM_SECRET, PEER, 1, KeyFamily.REVOCATION_ROOT)

    def test_bad_peer(self):
        with pytest.raises(DerivationError):
            channel_key(HSM_SECRET, PEER[1:], 1, KeyFamily.MULTISIG)
