"""
Bitcoin script encoding, decoding and disassembly.

Scripts are assembled from a list of items: OP members are emitted as
opcodes, bytes are emitted as minimal data pushes. Numbers go through
script_num() which returns a small-int opcode or the minimal encoding.
"""

from __future__ import annotations

from enum import IntEnum

from chancore.errors import ConstructionError


class OP(IntEnum):
    OP_0 = 0x00
    OP_PUSHDATA1 = 0x4C
    OP_PUSHDATA2 = 0x4D
    OP_PUSHDATA4 = 0x4E
    OP_1NEGATE = 0x4F
    OP_1 = 0x51
    OP_2 = 0x52
    OP_3 = 0x53
    OP_4 = 0x54
    OP_5 = 0x55
    OP_6 = 0x56
    OP_7 = 0x57
    OP_8 = 0x58
    OP_9 = 0x59
    OP_10 = 0x5A
    OP_11 = 0x5B
    OP_12 = 0x5C
    OP_13 = 0x5D
    OP_14 = 0x5E
    OP_15 = 0x5F
    OP_16 = 0x60
    OP_NOP = 0x61
    OP_IF = 0x63
    OP_NOTIF = 0x64
    OP_ELSE = 0x67
    OP_ENDIF = 0x68
    OP_VERIFY = 0x69
    OP_RETURN = 0x6A
    OP_IFDUP = 0x73
    OP_DROP = 0x75
    OP_DUP = 0x76
    OP_SWAP = 0x7C
    OP_SIZE = 0x82
    OP_EQUAL = 0x87
    OP_EQUALVERIFY = 0x88
    OP_SHA256 = 0xA8
    OP_HASH160 = 0xA9
    OP_CHECKSIG = 0xAC
    OP_CHECKSIGVERIFY = 0xAD
    OP_CHECKMULTISIG = 0xAE
    OP_CHECKMULTISIGVERIFY = 0xAF
    OP_CHECKLOCKTIMEVERIFY = 0xB1
    OP_CHECKSEQUENCEVERIFY = 0xB2
    OP_CHECKSIGADD = 0xBA


def small_int_op(n: int) -> OP:
    """Opcode for the small integers 0..16."""
    if n == 0:
        return OP.OP_0
    if 1 <= n <= 16:
        return OP(0x50 + n)
    raise ConstructionError(f"{n} is not a small integer")


def encode_number(n: int) -> bytes:
    """Minimal little-endian script number encoding."""
    if n == 0:
        return b""
    negative = n < 0
    value = abs(n)
    result = bytearray()
    while value:
        result.append(value & 0xFF)
        value >>= 8
    if result[-1] & 0x80:
        result.append(0x80 if negative else 0x00)
    elif negative:
        result[-1] |= 0x80
    return bytes(result)


def decode_number(data: bytes) -> int:
    if not data:
        return 0
    value = int.from_bytes(data, "little")
    if data[-1] & 0x80:
        return -(value & ~(0x80 << (8 * (len(data) - 1))))
    return value


def script_num(n: int) -> OP | bytes:
    """Item that pushes the number n in the shortest form."""
    if 0 <= n <= 16:
        return small_int_op(n)
    if n == -1:
        return OP.OP_1NEGATE
    return encode_number(n)


def push_data(data: bytes) -> bytes:
    length = len(data)
    if length < OP.OP_PUSHDATA1:
        return bytes([length]) + data
    if length <= 0xFF:
        return bytes([OP.OP_PUSHDATA1, length]) + data
    if length <= 0xFFFF:
        return bytes([OP.OP_PUSHDATA2]) + length.to_bytes(2, "little") + data
    return bytes([OP.OP_PUSHDATA4]) + length.to_bytes(4, "little") + data


def encode_script(items: list[OP | int | bytes]) -> bytes:
    script = bytearray()
    for item in items:
        if isinstance(item, bytes):
            script += push_data(item)
        else:
            script.append(int(item))
    return bytes(script)


def decode_script(script: bytes) -> list[int | bytes]:
    """Split a script into opcodes (ints) and pushed data (bytes)."""
    items: list[int | bytes] = []
    offset = 0
    while offset < len(script):
        opcode = script[offset]
        offset += 1
        if 0 < opcode < OP.OP_PUSHDATA1:
            length = opcode
        elif opcode == OP.OP_PUSHDATA1:
            length = script[offset]
            offset += 1
        elif opcode == OP.OP_PUSHDATA2:
            length = int.from_bytes(script[offset : offset + 2], "little")
            offset += 2
        elif opcode == OP.OP_PUSHDATA4:
            length = int.from_bytes(script[offset : offset + 4], "little")
            offset += 4
        else:
            items.append(opcode)
            continue

        if offset + length > len(script):
            raise ConstructionError("script push exceeds script length")
        items.append(script[offset : offset + length])
        offset += length
    return items


def disassemble(script: bytes) -> str:
    """One-line disassembly, small integers as numbers and pushes as hex."""
    parts = []
    for item in decode_script(script):
        if isinstance(item, bytes):
            parts.append(item.hex())
        elif item == OP.OP_0:
            parts.append("0")
        elif item == OP.OP_1NEGATE:
            parts.append("-1")
        elif OP.OP_1 <= item <= OP.OP_16:
            parts.append(str(item - 0x50))
        else:
            try:
                parts.append(OP(item).name)
            except ValueError:
                parts.append(f"OP_UNKNOWN{item}")
    return " ".join(parts)


def is_p2wpkh(script: bytes) -> bool:
    return len(script) == 22 and script[0] == 0x00 and script[1] == 0x14


def is_p2wsh(script: bytes) -> bool:
    return len(script) == 34 and script[0] == 0x00 and script[1] == 0x20


def is_p2tr(script: bytes) -> bool:
    return len(script) == 34 and script[0] == OP.OP_1 and script[1] == 0x20


def parse_multisig(script: bytes) -> tuple[int, list[bytes]]:
    """Parse an "m <pubkeys...> n OP_CHECKMULTISIG" script into (m, pubkeys)."""
    items = decode_script(script)
    if len(items) < 4 or items[-1] != OP.OP_CHECKMULTISIG:
        raise ConstructionError("not a multisig script")

    m_op, n_op = items[0], items[-2]
    if not isinstance(m_op, int) or not isinstance(n_op, int):
        raise ConstructionError("not a multisig script")
    if not (OP.OP_1 <= m_op <= OP.OP_16 and OP.OP_1 <= n_op <= OP.OP_16):
        raise ConstructionError("not a multisig script")

    pubkeys = items[1:-2]
    m, n = m_op - 0x50, n_op - 0x50
    if len(pubkeys) != n or m > n or not all(isinstance(k, bytes) for k in pubkeys):
        raise ConstructionError("malformed multisig script")
    return m, [bytes(k) for k in pubkeys]
