"""
Tests for the JSON channel store.
"""

import json

import pytest
from chancore.models import BackupVersion, ChannelBackupSingle

from chanrescue.store import JsonChannelStore, StoreError


@pytest.fixture
def store_file(tmp_path, channel_state):
    backup = ChannelBackupSingle(
        version=BackupVersion.TWEAKLESS,
        funding_outpoint=channel_state.funding_outpoint,
        capacity=channel_state.capacity,
        local_chan_cfg=channel_state.local_chan_cfg,
        remote_chan_cfg=channel_state.remote_chan_cfg,
    )
    path = tmp_path / "channel.db.json"
    path.write_text(
        json.dumps(
            {
                "channels": [channel_state.model_dump(mode="json")],
                "backups": [backup.model_dump(mode="json")],
            }
        )
    )
    return path


class TestJsonChannelStore:
    def test_loads_channels_and_backups(self, store_file, channel_state):
        store = JsonChannelStore(store_file)
        channels = store.fetch_all_channels()
        assert len(channels) == 1
        assert channels[0] == channel_state
        assert len(store.fetch_backups()) == 1
        assert store.fetch_backups()[0].version == BackupVersion.TWEAKLESS

    def test_fetch_channel(self, store_file, channel_state):
        store = JsonChannelStore(store_file)
        found = store.fetch_channel(str(channel_state.funding_outpoint))
        assert found is not None
        assert found.capacity == channel_state.capacity
        assert store.fetch_channel("00" * 32 + ":0") is None

    def test_returns_copies(self, store_file):
        store = JsonChannelStore(store_file)
        store.fetch_all_channels()[0].capacity = 1
        assert store.fetch_all_channels()[0].capacity == 1_000_000

    def test_missing_file(self, tmp_path):
        with pytest.raises(StoreError, match="cannot open"):
            JsonChannelStore(tmp_path / "missing.json")

    def test_invalid_content(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text("[1, 2]")
        with pytest.raises(StoreError, match="JSON object"):
            JsonChannelStore(path)

        path.write_text("{not json")
        with pytest.raises(StoreError, match="not valid JSON"):
            JsonChannelStore(path)

        path.write_text(json.dumps({"channels": [{"capacity": 5}]}))
        with pytest.raises(StoreError, match="invalid record"):
            JsonChannelStore(path)
