"""
Tests for address encoding, decoding and WIF keys.
"""

import pytest

from chancore.bitcoin.address import (
    AddressType,
    address_to_script,
    address_type,
    bech32_encode,
    check_address,
    convertbits,
    decode_wif,
    encode_wif,
    hash160,
    pubkey_to_p2wpkh_address,
    script_to_address,
    script_to_p2wsh_address,
)
from chancore.errors import ConstructionError
from chancore.params import MAINNET_PARAMS, REGTEST_PARAMS, TESTNET_PARAMS

G = bytes.fromhex("0279be667ef9dcbbac55a06295ce870b07029bfcdb2dce28d959f2815b16f81798")
G_CHECKSIG = b"\x21" + G + b"\xac"


class TestSegwitAddresses:
    def test_p2wpkh(self):
        assert hash160(G).hex() == "751e76e8199196d454941c45d1b3a323f1433bd6"
        assert (
            pubkey_to_p2wpkh_address(G, MAINNET_PARAMS)
            == "bc1qw508d6qejxtdg4y5r3zarvary0c5xw7kv8f3t4"
        )

    def test_p2wsh(self):
        assert (
            script_to_p2wsh_address(G_CHECKSIG, MAINNET_PARAMS)
            == "bc1qrp33g0q5c5txsp9arysrx4k6zdkfs4nce4xj0gdcccefvpysxf3qccfmv3"
        )
        assert (
            script_to_p2wsh_address(G_CHECKSIG, TESTNET_PARAMS)
            == "tb1qrp33g0q5c5txsp9arysrx4k6zdkfs4nce4xj0gdcccefvpysxf3q0sl5k7"
        )

    def test_roundtrip_regtest(self):
        address = pubkey_to_p2wpkh_address(G, REGTEST_PARAMS)
        assert address.startswith("bcrt1q")
        script = address_to_script(address, REGTEST_PARAMS)
        assert script_to_address(script, REGTEST_PARAMS) == address

    def test_uppercase_accepted(self):
        address = "BC1QW508D6QEJXTDG4Y5R3ZARVARY0C5XW7KV8F3T4"
        assert address_type(address, MAINNET_PARAMS) == AddressType.P2WPKH

    def test_wrong_network(self):
        address = pubkey_to_p2wpkh_address(G, REGTEST_PARAMS)
        with pytest.raises(ConstructionError):
            address_to_script(address, MAINNET_PARAMS)

    def test_v1_with_bech32_checksum_rejected(self):
        data = [1] + convertbits(bytes(range(32)), 8, 5)
        address = bech32_encode("bc", data)
        with pytest.raises(ConstructionError, match="wrong checksum variant"):
            address_to_script(address, MAINNET_PARAMS)

    def test_bad_checksum(self):
        with pytest.raises(ConstructionError):
            address_to_script("bc1qw508d6qejxtdg4y5r3zarvary0c5xw7kv8f3t5", MAINNET_PARAMS)


class TestLegacyAddresses:
    def test_p2pkh(self):
        script = address_to_script("1BgGZ9tcN4rm9KBzDn7KprQz87SZ26SAMH", MAINNET_PARAMS)
        assert script.hex() == "76a914751e76e8199196d454941c45d1b3a323f1433bd688ac"
        assert address_type("1BgGZ9tcN4rm9KBzDn7KprQz87SZ26SAMH", MAINNET_PARAMS) == (
            AddressType.P2PKH
        )

    def test_nonstandard_script_has_no_address(self):
        with pytest.raises(ConstructionError):
            script_to_address(b"\x6a\x00", MAINNET_PARAMS)


class TestCheckAddress:
    def test_allowed(self):
        kind = check_address(
            "bc1qw508d6qejxtdg4y5r3zarvary0c5xw7kv8f3t4",
            MAINNET_PARAMS,
            (AddressType.P2WPKH, AddressType.P2TR),
        )
        assert kind == AddressType.P2WPKH

    def test_disallowed_type(self):
        with pytest.raises(ConstructionError, match="must be one of"):
            check_address(
                "1BgGZ9tcN4rm9KBzDn7KprQz87SZ26SAMH",
                MAINNET_PARAMS,
                (AddressType.P2WPKH,),
                label="payout address",
            )

    def test_empty(self):
        with pytest.raises(ConstructionError, match="is required"):
            check_address("", MAINNET_PARAMS, (AddressType.P2WPKH,))


class TestWif:
    def test_compressed(self):
        key = (1).to_bytes(32, "big")
        wif = encode_wif(key, MAINNET_PARAMS)
        assert wif == "KwDiBf89QgGbjEhKnhXJuH7LrciVrZi3qYjgd9M7rFU73sVHnoWn"
        assert decode_wif(wif, MAINNET_PARAMS) == (key, True)

    def test_uncompressed(self):
        key = (1).to_bytes(32, "big")
        wif = encode_wif(key, MAINNET_PARAMS, compressed=False)
        assert wif == "5HpHagT65TZzG1PH3CSu63k8DbpvD8s5ip4nEB3kEsreAnchuDf"
        assert decode_wif(wif, MAINNET_PARAMS) == (key, False)

    def test_wrong_network(self):
        wif = encode_wif(b"\x01" * 32, MAINNET_PARAMS)
        with pytest.raises(ConstructionError):
            decode_wif(wif, REGTEST_PARAMS)
