"""Tests for JSON-file persistence of the organization record."""

import asyncio
import json

import pytest

from chatshelf.services.state_store import StateStore


class TestStateStore:
    def test_missing_file_is_first_run(self, tmp_path):
        assert StateStore(tmp_path / "state.json").load() is None

    def test_unreadable_file_is_ignored(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text("{truncated")
        assert StateStore(path).load() is None

    def test_save_and_load(self, tmp_path):
        store = StateStore(tmp_path / "nested" / "state.json")
        store.save({"folders": []})
        assert store.load() == {"folders": []}
        assert not (tmp_path / "nested" / "state.json.tmp").exists()

    def test_save_without_loop_writes_immediately(self, tmp_path):
        path = tmp_path / "state.json"
        StateStore(path).save_debounced({"enabled": False})
        assert json.loads(path.read_text()) == {"enabled": False}

    @pytest.mark.asyncio
    async def test_debounced_saves_write_latest_document(self, tmp_path):
        path = tmp_path / "state.json"
        store = StateStore(path, debounce_seconds=0.01)

        store.save_debounced({"n": 1})
        store.save_debounced({"n": 2})
        assert not path.exists()

        await asyncio.sleep(0.05)
        assert json.loads(path.read_text()) == {"n": 2}

    @pytest.mark.asyncio
    async def test_flush_writes_pending_now(self, tmp_path):
        path = tmp_path / "state.json"
        store = StateStore(path, debounce_seconds=60)

        store.save_debounced({"n": 1})
        store.flush()

        assert json.loads(path.read_text()) == {"n": 1}


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
