"""
Bitcoin address encoding and decoding.

Native segwit addresses use bech32 (witness v0, BIP173) or bech32m (witness
v1+, BIP350). Legacy P2PKH/P2SH addresses and WIF keys use base58check.
"""

from __future__ import annotations

import hashlib
from enum import Enum

import base58

from chancore.errors import ConstructionError
from chancore.params import ChainParams

BECH32_CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"
BECH32_CONST = 1
BECH32M_CONST = 0x2BC830A3


class AddressType(str, Enum):
    P2PKH = "p2pkh"
    P2SH = "p2sh"
    P2WPKH = "p2wpkh"
    P2WSH = "p2wsh"
    P2TR = "p2tr"


def hash160(data: bytes) -> bytes:
    """RIPEMD160(SHA256(data))"""
    h = hashlib.new("ripemd160")
    h.update(hashlib.sha256(data).digest())
    return h.digest()


def bech32_polymod(values: list[int]) -> int:
    """Bech32 checksum polymod"""
    gen = [0x3B6A57B2, 0x26508E6D, 0x1EA119FA, 0x3D4233DD, 0x2A1462B3]
    chk = 1
    for v in values:
        b = chk >> 25
        chk = (chk & 0x1FFFFFF) << 5 ^ v
        for i in range(5):
            chk ^= gen[i] if ((b >> i) & 1) else 0
    return chk


def bech32_hrp_expand(hrp: str) -> list[int]:
    return [ord(x) >> 5 for x in hrp] + [0] + [ord(x) & 31 for x in hrp]


def bech32_create_checksum(hrp: str, data: list[int], const: int = BECH32_CONST) -> list[int]:
    values = bech32_hrp_expand(hrp) + data
    polymod = bech32_polymod(values + [0, 0, 0, 0, 0, 0]) ^ const
    return [(polymod >> 5 * (5 - i)) & 31 for i in range(6)]


def bech32_encode(hrp: str, data: list[int], const: int = BECH32_CONST) -> str:
    combined = data + bech32_create_checksum(hrp, data, const)
    return hrp + "1" + "".join([BECH32_CHARSET[d] for d in combined])


def bech32_decode(bech: str) -> tuple[str, list[int], int]:
    """
    Decode a bech32/bech32m string.

    Returns (hrp, data without checksum, checksum constant).
    """
    if any(ord(c) < 33 or ord(c) > 126 for c in bech):
        raise ConstructionError(f"invalid character in bech32 string: {bech!r}")
    if bech.lower() != bech and bech.upper() != bech:
        raise ConstructionError("mixed case bech32 string")

    bech = bech.lower()
    pos = bech.rfind("1")
    if pos < 1 or pos + 7 > len(bech) or len(bech) > 90:
        raise ConstructionError(f"invalid bech32 string: {bech!r}")
    if not all(c in BECH32_CHARSET for c in bech[pos + 1 :]):
        raise ConstructionError(f"invalid bech32 data characters: {bech!r}")

    hrp = bech[:pos]
    data = [BECH32_CHARSET.find(c) for c in bech[pos + 1 :]]
    const = bech32_polymod(bech32_hrp_expand(hrp) + data)
    if const not in (BECH32_CONST, BECH32M_CONST):
        raise ConstructionError(f"invalid bech32 checksum: {bech!r}")
    return hrp, data[:-6], const


def convertbits(data: bytes | list[int], frombits: int, tobits: int, pad: bool = True) -> list[int]:
    """Convert between bit groups"""
    acc = 0
    bits = 0
    ret = []
    maxv = (1 << tobits) - 1
    max_acc = (1 << (frombits + tobits - 1)) - 1

    for value in data:
        if value < 0 or value >> frombits:
            raise ValueError("Invalid value")
        acc = ((acc << frombits) | value) & max_acc
        bits += frombits
        while bits >= tobits:
            bits -= tobits
            ret.append((acc >> bits) & maxv)

    if pad:
        if bits:
            ret.append((acc << (tobits - bits)) & maxv)
    elif bits >= frombits or ((acc << (tobits - bits)) & maxv):
        raise ValueError("Invalid bits")

    return ret


def encode_segwit_address(hrp: str, witness_version: int, program: bytes) -> str:
    const = BECH32_CONST if witness_version == 0 else BECH32M_CONST
    return bech32_encode(hrp, [witness_version] + convertbits(program, 8, 5), const)


def decode_segwit_address(hrp: str, address: str) -> tuple[int, bytes]:
    """Decode a segwit address, returning (witness version, witness program)."""
    hrp_got, data, const = bech32_decode(address)
    if hrp_got != hrp:
        raise ConstructionError(f"address {address} is not for network prefix {hrp}")
    if not data:
        raise ConstructionError(f"empty segwit address: {address}")

    version = data[0]
    try:
        program = bytes(convertbits(data[1:], 5, 8, False))
    except ValueError as e:
        raise ConstructionError(f"invalid segwit address {address}: {e}") from e

    if version > 16 or not 2 <= len(program) <= 40:
        raise ConstructionError(f"invalid segwit address: {address}")
    if version == 0 and len(program) not in (20, 32):
        raise ConstructionError(f"invalid witness v0 program length: {address}")
    expected_const = BECH32_CONST if version == 0 else BECH32M_CONST
    if const != expected_const:
        raise ConstructionError(f"wrong checksum variant for witness v{version}: {address}")
    return version, program


def p2wpkh_script(pubkey: bytes) -> bytes:
    """Create P2WPKH scriptPubKey (OP_0 <20-byte-hash>)"""
    return bytes([0x00, 0x14]) + hash160(pubkey)


def p2wsh_script(witness_script: bytes) -> bytes:
    """Create P2WSH scriptPubKey (OP_0 <32-byte-sha256>)"""
    return bytes([0x00, 0x20]) + hashlib.sha256(witness_script).digest()


def p2tr_script(output_key: bytes) -> bytes:
    """Create P2TR scriptPubKey (OP_1 <32-byte-x-only-key>)"""
    if len(output_key) == 33:
        output_key = output_key[1:]
    if len(output_key) != 32:
        raise ConstructionError("taproot output key must be 32 bytes")
    return bytes([0x51, 0x20]) + output_key


def p2pkh_script(pubkey_hash: bytes) -> bytes:
    return b"\x76\xa9\x14" + pubkey_hash + b"\x88\xac"


def p2sh_script(script_hash: bytes) -> bytes:
    return b"\xa9\x14" + script_hash + b"\x87"


def pubkey_to_p2wpkh_address(pubkey: bytes, params: ChainParams) -> str:
    if len(pubkey) != 33:
        raise ConstructionError(f"Invalid compressed pubkey length: {len(pubkey)}")
    return encode_segwit_address(params.bech32_hrp, 0, hash160(pubkey))


def script_to_p2wsh_address(witness_script: bytes, params: ChainParams) -> str:
    return encode_segwit_address(params.bech32_hrp, 0, hashlib.sha256(witness_script).digest())


def output_key_to_p2tr_address(output_key: bytes, params: ChainParams) -> str:
    return script_to_address(p2tr_script(output_key), params)


def address_to_script(address: str, params: ChainParams) -> bytes:
    """Convert an address of the given network to its scriptPubKey."""
    if address.lower().startswith(params.bech32_hrp + "1"):
        version, program = decode_segwit_address(params.bech32_hrp, address)
        version_op = 0x00 if version == 0 else 0x50 + version
        return bytes([version_op, len(program)]) + program

    try:
        payload = base58.b58decode_check(address)
    except ValueError as e:
        raise ConstructionError(f"invalid address {address}: {e}") from e
    if len(payload) != 21:
        raise ConstructionError(f"invalid base58 address length: {address}")
    if payload[0] == params.pubkey_hash_addr_id:
        return p2pkh_script(payload[1:])
    if payload[0] == params.script_hash_addr_id:
        return p2sh_script(payload[1:])
    raise ConstructionError(f"address {address} is not valid for network {params.name}")


def script_to_address(script: bytes, params: ChainParams) -> str:
    """Convert a standard scriptPubKey to an address, raising for non-standard scripts."""
    if len(script) == 22 and script[:2] == b"\x00\x14":
        return encode_segwit_address(params.bech32_hrp, 0, script[2:])
    if len(script) == 34 and script[:2] == b"\x00\x20":
        return encode_segwit_address(params.bech32_hrp, 0, script[2:])
    if len(script) == 34 and script[:2] == b"\x51\x20":
        return encode_segwit_address(params.bech32_hrp, 1, script[2:])
    if len(script) == 25 and script[:3] == b"\x76\xa9\x14" and script[23:] == b"\x88\xac":
        return base58.b58encode_check(bytes([params.pubkey_hash_addr_id]) + script[3:23]).decode()
    if len(script) == 23 and script[:2] == b"\xa9\x14" and script[22:] == b"\x87":
        return base58.b58encode_check(bytes([params.script_hash_addr_id]) + script[2:22]).decode()
    raise ConstructionError(f"script {script.hex()} has no address form")


def address_type(address: str, params: ChainParams) -> AddressType:
    script = address_to_script(address, params)
    if len(script) == 22 and script[0] == 0x00:
        return AddressType.P2WPKH
    if len(script) == 34 and script[0] == 0x00:
        return AddressType.P2WSH
    if len(script) == 34 and script[0] == 0x51:
        return AddressType.P2TR
    if len(script) == 25:
        return AddressType.P2PKH
    if len(script) == 23:
        return AddressType.P2SH
    raise ConstructionError(f"unsupported address type: {address}")


def check_address(
    address: str, params: ChainParams, allowed: tuple[AddressType, ...], label: str = "address"
) -> AddressType:
    """Make sure an address is valid for the network and of an allowed type."""
    if not address:
        raise ConstructionError(f"{label} is required")
    kind = address_type(address, params)
    if kind not in allowed:
        names = ", ".join(a.value.upper() for a in allowed)
        raise ConstructionError(f"{label} {address} must be one of: {names}")
    return kind


def encode_wif(private_key: bytes, params: ChainParams, compressed: bool = True) -> str:
    payload = bytes([params.private_key_id]) + private_key.rjust(32, b"\x00")
    if compressed:
        payload += b"\x01"
    return base58.b58encode_check(payload).decode("ascii")


def decode_wif(wif: str, params: ChainParams) -> tuple[bytes, bool]:
    """Decode a WIF string into (private key, compressed flag)."""
    try:
        payload = base58.b58decode_check(wif)
    except ValueError as e:
        raise ConstructionError(f"invalid WIF: {e}") from e
    if payload[0] != params.private_key_id:
        raise ConstructionError(f"WIF is not for network {params.name}")
    if len(payload) == 34 and payload[33] == 0x01:
        return payload[1:33], True
    if len(payload) == 33:
        return payload[1:], False
    raise ConstructionError("invalid WIF length")
