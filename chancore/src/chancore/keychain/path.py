"""
Derivation path parsing and formatting.

Paths look like "m/1017'/0'/6'/0/0"; a trailing ' (or h) marks a hardened
index, which is offset by 2^31.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass

from chancore.constants import BIP0043_PURPOSE, HARDENED_KEY_START
from chancore.errors import DerivationError
from chancore.models import KeyFamily
from chancore.params import ChainParams


def hardened(index: int) -> int:
    return index + HARDENED_KEY_START


def is_hardened(index: int) -> bool:
    return index >= HARDENED_KEY_START


def parse_path(path: str) -> list[int]:
    """Parse a path string into a list of 32-bit child indices."""
    path = path.strip()
    if not path:
        raise DerivationError("path cannot be empty")
    if not path.startswith("m/"):
        raise DerivationError("path must start with m/")

    indices: list[int] = []
    for part in path[2:].split("/"):
        offset = 0
        number = part
        if part.endswith(("'", "h")):
            offset = HARDENED_KEY_START
            number = part.rstrip("'h")
        if not number.isdigit() or int(number) >= HARDENED_KEY_START:
            raise DerivationError(f'could not parse part "{part}"')
        indices.append(int(number) + offset)

    return indices


def format_path(indices: Iterable[int]) -> str:
    parts = ["m"]
    for index in indices:
        if is_hardened(index):
            parts.append(f"{index - HARDENED_KEY_START}'")
        else:
            parts.append(str(index))
    return "/".join(parts)


@dataclass(frozen=True)
class DerivationPath:
    """Immutable sequence of child indices."""

    indices: tuple[int, ...] = ()

    @classmethod
    def parse(cls, path: str) -> DerivationPath:
        return cls(tuple(parse_path(path)))

    def child(self, index: int) -> DerivationPath:
        return DerivationPath(self.indices + (index,))

    def __add__(self, other: DerivationPath) -> DerivationPath:
        return DerivationPath(self.indices + other.indices)

    def __iter__(self) -> Iterator[int]:
        return iter(self.indices)

    def __len__(self) -> int:
        return len(self.indices)

    def __str__(self) -> str:
        return format_path(self.indices)


def lnd_family_path(params: ChainParams, family: KeyFamily | int) -> DerivationPath:
    """Branch m/1017'/coin'/family'/0 under which lnd derives a key family."""
    return DerivationPath(
        (
            hardened(BIP0043_PURPOSE),
            hardened(params.hd_coin_type),
            hardened(int(family)),
            0,
        )
    )


def lnd_key_path(params: ChainParams, family: KeyFamily | int, index: int) -> DerivationPath:
    return lnd_family_path(params, family).child(index)


def identity_path(params: ChainParams) -> DerivationPath:
    return lnd_key_path(params, KeyFamily.NODE_KEY, 0)


def multisig_path(params: ChainParams, index: int) -> DerivationPath:
    return lnd_key_path(params, KeyFamily.MULTISIG, index)
