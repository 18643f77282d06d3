"""
Unit tests for history retention.
"""

from pathlib import Path

import pytest

from ledger.backup_engine.history import HistoryManager, sanitize_timestamp
from ledger.backup_engine.history import retention


class TestSanitizeTimestamp:
    def test_replaces_colons_and_dots(self):
        assert sanitize_timestamp("2026-01-15T14:30:00.123Z") == "2026-01-15T14-30-00-123Z"


class TestHistoryManager:
    """Tests for HistoryManager."""

    @pytest.fixture
    def history(self, temp_dir):
        return HistoryManager(temp_dir / "history", max_kept=10)

    def test_record_history_writes_slot(self, history):
        path = history.record_history(b'{"x": 1}', "2026-01-15T14:30:00.123Z")

        assert path.name == "backup_2026-01-15T14-30-00-123Z.json"
        assert path.read_bytes() == b'{"x": 1}'
        assert history.list_history() == [path]
        assert sorted(p.name for p in history.history_dir.iterdir()) == [path.name]

    def test_failed_write_leaves_no_slot(self, history, monkeypatch):
        def fail(src, dst):
            raise OSError("no space left on device")

        monkeypatch.setattr(retention.os, "replace", fail)

        with pytest.raises(OSError):
            history.record_history(b'{"x": 1}', "2026-01-15T14:30:00.123Z")

        monkeypatch.undo()
        assert history.list_history() == []
        assert list(history.history_dir.iterdir()) == []

    def test_retention_bound(self, history, clock):
        """After more than max_kept backups exactly max_kept remain, the newest ones."""
        written = [history.record_history(b"{}", clock()) for _ in range(15)]

        remaining = history.list_history()

        assert len(remaining) == 10
        assert set(remaining) == set(written[-10:])
        assert remaining[0] == written[-1]

    def test_latest_history(self, history, clock):
        assert history.latest_history() is None

        history.record_history(b"{}", clock())
        newest = history.record_history(b"{}", clock())

        assert history.latest_history() == newest

    def test_list_ignores_foreign_files(self, history, clock):
        history.record_history(b"{}", clock())
        (history.history_dir / "notes.txt").write_text("keep me")
        (history.history_dir / "backup_partial.json.tmp").write_text("{}")

        assert len(history.list_history()) == 1

    def test_list_missing_directory(self, temp_dir):
        assert HistoryManager(temp_dir / "absent").list_history() == []

    def test_prune_explicit(self, history, clock):
        for _ in range(5):
            history.record_history(b"{}", clock())

        deleted = history.prune(2)

        assert deleted == 3
        assert len(history.list_history()) == 2

    def test_prune_failures_are_swallowed(self, history, clock, monkeypatch):
        for _ in range(3):
            history.record_history(b"{}", clock())

        def refuse(self, missing_ok=False):
            raise PermissionError("read-only file system")

        monkeypatch.setattr(Path, "unlink", refuse)

        assert history.prune(1) == 0
        monkeypatch.undo()
        assert len(history.list_history()) == 3

    def test_max_kept_must_be_positive(self, temp_dir):
        with pytest.raises(ValueError):
            HistoryManager(temp_dir, max_kept=0)
