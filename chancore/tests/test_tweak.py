"""
Tests for per-commitment key derivation (BOLT 3 appendix E vectors).
"""

from coincurve import PrivateKey

from chancore.channel.tweak import (
    derive_revocation_privkey,
    derive_revocation_pubkey,
    single_tweak_bytes,
    tweak_privkey,
    tweak_pubkey,
)
from chancore.keychain.shachain import commitment_point

BASE_SECRET = bytes.fromhex("000102030405060708090a0b0c0d0e0f101112131415161718191a1b1c1d1e1f")
PER_COMMITMENT_SECRET = bytes.fromhex(
    "1f1e1d1c1b1a191817161514131211100f0e0d0c0b0a09080706050403020100"
)
BASE_POINT = bytes.fromhex("036d6caac248af96f6afa7f904f550253a0f3ef3f5aa2fe6838a95b216691468e2")
PER_COMMITMENT_POINT = bytes.fromhex(
    "025f7117a78150fe2ef97db7cfc83bd57b2e2c0d0dd25eaf467a4a1c2a45ce1486"
)


class TestVectors:
    def test_inputs_consistent(self):
        assert PrivateKey(BASE_SECRET).public_key.format() == BASE_POINT
        assert commitment_point(PER_COMMITMENT_SECRET) == PER_COMMITMENT_POINT

    def test_localpubkey(self):
        assert tweak_pubkey(BASE_POINT, PER_COMMITMENT_POINT).hex() == (
            "0235f2dbfaa89b57ec7b055afe29849ef7ddfeb1cefdb9ebdc43f5494984db29e5"
        )

    def test_localprivkey(self):
        tweak = single_tweak_bytes(PER_COMMITMENT_POINT, BASE_POINT)
        assert tweak_privkey(PrivateKey(BASE_SECRET), tweak).secret.hex() == (
            "cbced912d3b21bf196a766651e436aff192362621ce317704ea2f75d87e7be0f"
        )

    def test_revocationpubkey(self):
        assert derive_revocation_pubkey(BASE_POINT, PER_COMMITMENT_POINT).hex() == (
            "02916e326636d19c33f13e8c0c3a03dd157f332f3e99c317c141dd865eb01f8ff0"
        )

    def test_revocationprivkey(self):
        priv = derive_revocation_privkey(PrivateKey(BASE_SECRET), PER_COMMITMENT_SECRET)
        assert priv.secret.hex() == (
            "d09ffff62ddb2297ab000cc85bcb4283fdeb6aa052affbc9dddcf33b61078110"
        )


class TestConsistency:
    def test_revocation_keys_match(self):
        base = PrivateKey(b"\x09" * 32)
        secret = b"\x0a" * 32
        priv = derive_revocation_privkey(base, secret)
        pub = derive_revocation_pubkey(base.public_key.format(), commitment_point(secret))
        assert priv.public_key.format() == pub

    def test_single_tweak_keys_match(self):
        base = PrivateKey(b"\x0b" * 32)
        point = commitment_point(b"\x0c" * 32)
        tweak = single_tweak_bytes(point, base.public_key.format())
        assert tweak_privkey(base, tweak).public_key.format() == tweak_pubkey(
            base.public_key.format(), point
        )
