"""
Output descriptor checksums as defined by Bitcoin Core (BIP380).
"""

from __future__ import annotations

INPUT_CHARSET = (
    "0123456789()[],'/*abcdefgh@:$%{}"
    "IJKLMNOPQRSTUVWXYZ&+-.;<=>?!^_|~"
    'ijklmnopqrstuvwxyzABCDEFGH`#"\\ '
)
CHECKSUM_CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"
GENERATOR = [0xF5DEE51989, 0xA9FDCA3312, 0x1BAB10E32D, 0x3706B1677A, 0x644D626FFD]


def _polymod(symbols: list[int]) -> int:
    chk = 1
    for value in symbols:
        top = chk >> 35
        chk = (chk & 0x7FFFFFFFF) << 5 ^ value
        for i in range(5):
            if (top >> i) & 1:
                chk ^= GENERATOR[i]
    return chk


def _expand(descriptor: str) -> list[int] | None:
    groups: list[int] = []
    symbols: list[int] = []
    for c in descriptor:
        v = INPUT_CHARSET.find(c)
        if v < 0:
            return None
        symbols.append(v & 31)
        groups.append(v >> 5)
        if len(groups) == 3:
            symbols.append(groups[0] * 9 + groups[1] * 3 + groups[2])
            groups = []
    if len(groups) == 1:
        symbols.append(groups[0])
    elif len(groups) == 2:
        symbols.append(groups[0] * 3 + groups[1])
    return symbols


def descriptor_checksum(descriptor: str) -> str:
    """The 8 character checksum of a descriptor (without the '#')."""
    symbols = _expand(descriptor)
    if symbols is None:
        raise ValueError(f"invalid character in descriptor: {descriptor!r}")
    checksum = _polymod(symbols + [0] * 8) ^ 1
    return "".join(CHECKSUM_CHARSET[(checksum >> (5 * (7 - i))) & 31] for i in range(8))


def add_checksum(descriptor: str) -> str:
    return f"{descriptor}#{descriptor_checksum(descriptor)}"


def check_descriptor(descriptor: str, require: bool = False) -> bool:
    """Validate the checksum of a descriptor string; require=False allows none."""
    if "#" not in descriptor:
        return not require
    if len(descriptor) < 9 or descriptor[-9] != "#":
        return False

    checksum = descriptor[-8:]
    if not all(c in CHECKSUM_CHARSET for c in checksum):
        return False
    symbols = _expand(descriptor[:-9])
    if symbols is None:
        return False
    symbols += [CHECKSUM_CHARSET.find(c) for c in checksum]
    return _polymod(symbols) == 1
