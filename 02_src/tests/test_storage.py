"""Tests for Storage."""

from datetime import datetime, timedelta, timezone

import pytest

from runtrace.models import (
    ChannelMessage,
    LogKind,
    LogLine,
    MessageType,
    Run,
    RunState,
    RunStatus,
    TreeSnapshot,
)
from runtrace.storage import Storage


def _run(run_id="run-1", started_at=None, status=RunStatus.BUILDING):
    return Run(
        id=run_id,
        source="def main():\n    pass\n",
        status=status,
        started_at=started_at or datetime.now(timezone.utc),
    )


class TestStorageInit:
    """Tests for Storage initialization."""

    async def test_init_creates_tables(self, storage):
        """Test that init creates all tables."""
        async with storage._conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table'"
        ) as cursor:
            tables = [row[0] for row in await cursor.fetchall()]
            assert "runs" in tables
            assert "channel_messages" in tables
            assert "log_lines" in tables
            assert "trace_snapshots" in tables

    async def test_uninitialized_storage_raises(self):
        """Test that using storage before init raises."""
        st = Storage(":memory:")
        with pytest.raises(RuntimeError, match="Storage not initialized"):
            await st.get_runs()


class TestStorageRuns:
    """Tests for Run storage."""

    async def test_save_and_get_run(self, storage):
        """Test saving and retrieving a run."""
        await storage.save_run(_run())

        run = await storage.get_run("run-1")
        assert run.status is RunStatus.BUILDING
        assert run.source.startswith("def main")
        assert run.finished_at is None

    async def test_save_run_updates_existing(self, storage):
        """Test that saving same run ID updates it."""
        run = _run()
        await storage.save_run(run)

        run.status = RunStatus.FINISHED
        run.finished_at = datetime.now(timezone.utc)
        await storage.save_run(run)

        stored = await storage.get_run("run-1")
        assert stored.status is RunStatus.FINISHED
        assert stored.finished_at is not None

    async def test_get_runs_newest_first(self, storage):
        """Test run history ordering."""
        now = datetime.now(timezone.utc)
        await storage.save_run(_run("old", started_at=now - timedelta(minutes=5)))
        await storage.save_run(_run("new", started_at=now))

        runs = await storage.get_runs()
        assert [r.id for r in runs] == ["new", "old"]

    async def test_get_missing_run(self, storage):
        assert await storage.get_run("nope") is None


class TestStorageLogLines:
    """Tests for LogLine storage."""

    async def test_save_and_get_log_lines(self, storage):
        """Test that log lines come back in sequence order."""
        for seq, text in [(1, "second"), (0, "first")]:
            await storage.save_log_line(
                LogLine(run_id="run-1", seq=seq, kind=LogKind.CONSOLE, text=text, timestamp=seq)
            )

        lines = await storage.get_log_lines("run-1")
        assert [l.text for l in lines] == ["first", "second"]


class TestStorageChannelMessages:
    """Tests for the channel message archive."""

    async def test_messages_are_per_run(self, storage):
        await storage.save_channel_message(
            ChannelMessage(run_id="run-1", type=MessageType.LOG, payload="a")
        )
        await storage.save_channel_message(ChannelMessage(run_id="run-2", type=MessageType.DONE))

        messages = await storage.get_channel_messages("run-1")
        assert messages == [{"runId": "run-1", "type": "log", "payload": "a"}]


class TestStorageSnapshots:
    """Tests for tree snapshot storage."""

    async def test_save_and_get_snapshot(self, storage):
        snapshot = TreeSnapshot(
            run_id="run-1",
            source="events",
            state=RunState.FINISHED,
            root={"id": "fn-main-1", "name": "main", "children": []},
            node_count=1,
        )
        await storage.save_trace_snapshot(snapshot)

        stored = await storage.get_trace_snapshot("run-1")
        assert stored["source"] == "events"
        assert stored["root"]["name"] == "main"
        assert stored["node_count"] == 1

    async def test_snapshot_without_run_is_skipped(self, storage):
        await storage.save_trace_snapshot(
            TreeSnapshot(run_id=None, source="none", state=RunState.EMPTY, root=None)
        )
        async with storage._conn.execute("SELECT COUNT(*) FROM trace_snapshots") as cursor:
            assert (await cursor.fetchone())[0] == 0


class TestStorageClear:
    """Tests for Storage.clear()."""

    async def test_clear_removes_everything(self, storage):
        await storage.save_run(_run())
        await storage.save_log_line(
            LogLine(run_id="run-1", seq=0, kind=LogKind.SYSTEM, text="x", timestamp=0)
        )

        await storage.clear()

        assert await storage.get_runs() == []
        assert await storage.get_log_lines("run-1") == []
