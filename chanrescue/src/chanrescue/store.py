"""
Read-only channel store.

The recovery engines never open node databases themselves. Channel state and
decrypted static channel backups are handed over as a JSON dump:

    {"channels": [<OpenChannelState>, ...], "backups": [<ChannelBackupSingle>, ...]}
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from pathlib import Path

from chancore.models import ChannelBackupSingle, OpenChannelState, OutPoint
from loguru import logger
from pydantic import ValidationError


class StoreError(Exception):
    """The channel store cannot be opened or parsed."""

    pass


class ChannelStore(ABC):
    @abstractmethod
    def fetch_all_channels(self) -> list[OpenChannelState]:
        """All open channels in the store"""

    @abstractmethod
    def fetch_backups(self) -> list[ChannelBackupSingle]:
        """All static channel backup records in the store"""

    def fetch_channel(self, outpoint: OutPoint | str) -> OpenChannelState | None:
        """Channel with the given funding outpoint, None if unknown."""
        wanted = str(outpoint)
        for channel in self.fetch_all_channels():
            if str(channel.funding_outpoint) == wanted:
                return channel
        return None


class JsonChannelStore(ChannelStore):
    def __init__(self, path: Path | str):
        self.path = Path(path)
        self._channels, self._backups = self._load()

    def _load(self) -> tuple[list[OpenChannelState], list[ChannelBackupSingle]]:
        try:
            raw = json.loads(self.path.read_text())
        except OSError as e:
            raise StoreError(f"cannot open channel store {self.path}: {e}") from e
        except json.JSONDecodeError as e:
            raise StoreError(f"channel store {self.path} is not valid JSON: {e}") from e

        if not isinstance(raw, dict):
            raise StoreError(f"channel store {self.path} must be a JSON object")

        try:
            channels = [OpenChannelState.model_validate(c) for c in raw.get("channels", [])]
            backups = [ChannelBackupSingle.model_validate(b) for b in raw.get("backups", [])]
        except ValidationError as e:
            raise StoreError(f"invalid record in channel store {self.path}: {e}") from e

        logger.info(
            f"Loaded {len(channels)} channels and {len(backups)} backups from {self.path}"
        )
        return channels, backups

    def fetch_all_channels(self) -> list[OpenChannelState]:
        return [c.model_copy(deep=True) for c in self._channels]

    def fetch_backups(self) -> list[ChannelBackupSingle]:
        return [b.model_copy(deep=True) for b in self._backups]
