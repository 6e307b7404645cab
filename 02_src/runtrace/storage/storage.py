"""SQLite archive of runs, channel messages, log lines and tree snapshots."""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

import aiosqlite

from ..config import resolve_db_path
from ..models import (
    ChannelMessage,
    LogKind,
    LogLine,
    Run,
    RunStatus,
    TreeSnapshot,
)
from ..protocol import message_to_dict


class IStorage(Protocol):
    """Persistent archive for run history (SQLite). Live state stays in memory."""

    async def init(self) -> None:
        """Initialize database and create tables."""
        ...

    async def close(self) -> None:
        """Close database connection."""
        ...

    # Runs
    async def save_run(self, run: Run) -> None:
        """Insert or replace a run record."""
        ...

    async def get_run(self, run_id: str) -> Run | None:
        """Get a run by ID."""
        ...

    async def get_runs(self, limit: int = 50) -> list[Run]:
        """Get runs (newest first)."""
        ...

    # Channel messages
    async def save_channel_message(self, message: ChannelMessage) -> None:
        """Archive a channel message."""
        ...

    async def get_channel_messages(
        self, run_id: str, limit: int = 1000
    ) -> list[dict]:
        """Get archived messages of a run in arrival order, in wire form."""
        ...

    # Log lines
    async def save_log_line(self, line: LogLine) -> None:
        """Archive a log line."""
        ...

    async def get_log_lines(self, run_id: str) -> list[LogLine]:
        """Get log lines of a run in order."""
        ...

    # Tree snapshots
    async def save_trace_snapshot(self, snapshot: TreeSnapshot) -> None:
        """Store the final tree of a run."""
        ...

    async def get_trace_snapshot(self, run_id: str) -> dict | None:
        """Get the stored tree of a run."""
        ...

    # Lifecycle
    async def clear(self) -> None:
        """Clear all data."""
        ...


def _parse_ts(value) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value).replace(tzinfo=timezone.utc)


class Storage:
    """SQLite storage implementation."""

    def __init__(self, db_path: str | Path | None = None):
        if db_path is None:
            self._db_path = resolve_db_path()
        else:
            self._db_path = resolve_db_path(db_path)
        self._conn: aiosqlite.Connection | None = None

    async def init(self) -> None:
        """Initialize database and create tables."""
        self._conn = await aiosqlite.connect(self._db_path)

        # Read and execute schema
        schema_path = Path(__file__).parent / "schema.sql"
        with open(schema_path, "r", encoding="utf-8") as f:
            schema_sql = f.read()
        await self._conn.executescript(schema_sql)
        await self._conn.commit()

    async def close(self) -> None:
        """Close database connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None

    # Runs
    async def save_run(self, run: Run) -> None:
        """Insert or replace a run record."""
        if not self._conn:
            raise RuntimeError("Storage not initialized")

        await self._conn.execute(
            """
            INSERT OR REPLACE INTO runs
            (id, source, status, started_at, finished_at, error)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                run.id,
                run.source,
                run.status.value,
                run.started_at.replace(tzinfo=None).isoformat(),
                run.finished_at.replace(tzinfo=None).isoformat() if run.finished_at else None,
                run.error,
            ),
        )
        await self._conn.commit()

    async def get_run(self, run_id: str) -> Run | None:
        """Get a run by ID."""
        if not self._conn:
            raise RuntimeError("Storage not initialized")

        cursor = await self._conn.execute(
            """
            SELECT id, source, status, started_at, finished_at, error
            FROM runs
            WHERE id = ?
            """,
            (run_id,),
        )
        row = await cursor.fetchone()

        if not row:
            return None

        return self._row_to_run(row)

    async def get_runs(self, limit: int = 50) -> list[Run]:
        """Get runs (newest first)."""
        if not self._conn:
            raise RuntimeError("Storage not initialized")

        cursor = await self._conn.execute(
            """
            SELECT id, source, status, started_at, finished_at, error
            FROM runs
            ORDER BY started_at DESC
            LIMIT ?
            """,
            (limit,),
        )
        rows = await cursor.fetchall()

        return [self._row_to_run(row) for row in rows]

    @staticmethod
    def _row_to_run(row) -> Run:
        return Run(
            id=row[0],
            source=row[1],
            status=RunStatus(row[2]),
            started_at=_parse_ts(row[3]),
            finished_at=_parse_ts(row[4]),
            error=row[5],
        )

    # Channel messages
    async def save_channel_message(self, message: ChannelMessage) -> None:
        """Archive a channel message."""
        if not self._conn:
            raise RuntimeError("Storage not initialized")

        wire = message_to_dict(message)
        await self._conn.execute(
            """
            INSERT INTO channel_messages (run_id, type, payload)
            VALUES (?, ?, ?)
            """,
            (
                message.run_id,
                message.type.value,
                json.dumps(wire["payload"]),
            ),
        )
        await self._conn.commit()

    async def get_channel_messages(
        self, run_id: str, limit: int = 1000
    ) -> list[dict]:
        """Get archived messages of a run in arrival order, in wire form."""
        if not self._conn:
            raise RuntimeError("Storage not initialized")

        cursor = await self._conn.execute(
            """
            SELECT run_id, type, payload
            FROM channel_messages
            WHERE run_id = ?
            ORDER BY id ASC
            LIMIT ?
            """,
            (run_id, limit),
        )
        rows = await cursor.fetchall()

        return [
            {"runId": row[0], "type": row[1], "payload": json.loads(row[2])}
            for row in rows
        ]

    # Log lines
    async def save_log_line(self, line: LogLine) -> None:
        """Archive a log line."""
        if not self._conn:
            raise RuntimeError("Storage not initialized")

        await self._conn.execute(
            """
            INSERT OR REPLACE INTO log_lines (run_id, seq, kind, text, timestamp)
            VALUES (?, ?, ?, ?, ?)
            """,
            (line.run_id, line.seq, line.kind.value, line.text, line.timestamp),
        )
        await self._conn.commit()

    async def get_log_lines(self, run_id: str) -> list[LogLine]:
        """Get log lines of a run in order."""
        if not self._conn:
            raise RuntimeError("Storage not initialized")

        cursor = await self._conn.execute(
            """
            SELECT run_id, seq, kind, text, timestamp
            FROM log_lines
            WHERE run_id = ?
            ORDER BY seq ASC
            """,
            (run_id,),
        )
        rows = await cursor.fetchall()

        return [
            LogLine(
                run_id=row[0],
                seq=row[1],
                kind=LogKind(row[2]),
                text=row[3],
                timestamp=row[4],
            )
            for row in rows
        ]

    # Tree snapshots
    async def save_trace_snapshot(self, snapshot: TreeSnapshot) -> None:
        """Store the final tree of a run."""
        if not self._conn:
            raise RuntimeError("Storage not initialized")
        if snapshot.run_id is None:
            return

        await self._conn.execute(
            """
            INSERT OR REPLACE INTO trace_snapshots (run_id, source, tree, node_count, saved_at)
            VALUES (?, ?, ?, ?, CURRENT_TIMESTAMP)
            """,
            (
                snapshot.run_id,
                snapshot.source,
                json.dumps(snapshot.root) if snapshot.root is not None else None,
                snapshot.node_count,
            ),
        )
        await self._conn.commit()

    async def get_trace_snapshot(self, run_id: str) -> dict | None:
        """Get the stored tree of a run."""
        if not self._conn:
            raise RuntimeError("Storage not initialized")

        cursor = await self._conn.execute(
            """
            SELECT run_id, source, tree, node_count
            FROM trace_snapshots
            WHERE run_id = ?
            """,
            (run_id,),
        )
        row = await cursor.fetchone()

        if not row:
            return None

        return {
            "run_id": row[0],
            "source": row[1],
            "root": json.loads(row[2]) if row[2] else None,
            "node_count": row[3],
        }

    # Lifecycle
    async def clear(self) -> None:
        """Clear all data."""
        if not self._conn:
            raise RuntimeError("Storage not initialized")

        tables = [
            "channel_messages",
            "log_lines",
            "trace_snapshots",
            "runs",
        ]

        for table in tables:
            await self._conn.execute(f"DELETE FROM {table}")

        await self._conn.commit()
