"""Run-level data models."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class RunStatus(str, Enum):
    """Lifecycle of one execution attempt."""

    BUILDING = "building"
    FINISHED = "finished"
    ABORTED = "aborted"
    FAILED = "failed"  # rewrite error, never executed


class LogKind(str, Enum):
    """Origin of a log line."""

    CONSOLE = "console"  # user program output
    TRACE = "trace"  # lifecycle event annotation
    SYSTEM = "system"  # executor notices (timeout, completion)


@dataclass
class Run:
    """A single execution attempt."""

    id: str
    source: str
    status: RunStatus
    started_at: datetime
    finished_at: datetime | None = None
    error: str | None = None


@dataclass
class LogLine:
    """One append-only line of run output."""

    run_id: str
    seq: int
    kind: LogKind
    text: str
    timestamp: int  # epoch milliseconds
