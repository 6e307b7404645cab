"""Tracker implementation for the append-only run log."""

import time
from typing import Protocol

from ..event_bus import IEventBus
from ..models import ChannelMessage, LifecycleEvent, LogKind, LogLine, MessageType
from ..protocol import belongs_to_run
from ..storage import IStorage


class ITracker(Protocol):
    """Run log. Two channels: EventBus subscription + direct calls."""

    def begin_run(self, run_id: str) -> None:
        """Start a fresh log for run_id."""
        ...

    async def track(self, kind: LogKind, text: str) -> LogLine | None:
        """Append a line to the current run log and save to Storage."""
        ...

    def lines(self) -> list[LogLine]:
        """All lines of the current run."""
        ...

    async def stop(self) -> None:
        """Stop tracker (no-op for now)."""
        ...


def format_event(event: LifecycleEvent) -> str:
    """Human-readable trace annotation for one lifecycle event."""
    return (
        f"[trace] {event.phase.value} {event.name} ({event.id}) "
        f"parent={event.parent_id or 'none'}"
    )


class Tracker:
    """Collects console output and trace annotations of the current run."""

    def __init__(self, event_bus: IEventBus, storage: IStorage | None = None):
        self._event_bus = event_bus
        self._storage = storage
        self._run_id: str | None = None
        self._lines: list[LogLine] = []

    async def start(self) -> None:
        """Subscribe to all EventBus topics."""
        for topic in [MessageType.PROCESS_EVENT, MessageType.LOG, MessageType.DONE]:
            self._event_bus.subscribe(topic, self._handle_bus_message)

    def begin_run(self, run_id: str) -> None:
        """Start a fresh log for run_id."""
        self._run_id = run_id
        self._lines = []

    async def _handle_bus_message(self, message: ChannelMessage) -> None:
        """Handle incoming ChannelMessage from EventBus."""
        if not belongs_to_run(message, self._run_id):
            return

        if message.type is MessageType.LOG:
            await self.track(LogKind.CONSOLE, message.text or "")
        elif message.type is MessageType.PROCESS_EVENT and message.event:
            await self.track(LogKind.TRACE, format_event(message.event))
        elif message.type is MessageType.DONE:
            await self.track(LogKind.SYSTEM, "Run complete")

    async def track(self, kind: LogKind, text: str) -> LogLine | None:
        """Append a line to the current run log and save to Storage."""
        if self._run_id is None:
            return None

        line = LogLine(
            run_id=self._run_id,
            seq=len(self._lines),
            kind=kind,
            text=text,
            timestamp=time.time_ns() // 1_000_000,
        )
        self._lines.append(line)
        if self._storage:
            await self._storage.save_log_line(line)
        return line

    def lines(self) -> list[LogLine]:
        """All lines of the current run."""
        return list(self._lines)

    def console_lines(self) -> list[LogLine]:
        """Only the program's own output."""
        return [line for line in self._lines if line.kind is LogKind.CONSOLE]

    async def stop(self) -> None:
        """Stop tracker (no-op for now)."""
        return
