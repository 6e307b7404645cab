"""Lifecycle event models shared by the sandbox and the host."""

from dataclasses import dataclass
from enum import Enum


class EventKind(str, Enum):
    """What produced an activation."""

    FUNCTION = "function"  # def / async def body
    CALL = "call"  # observed at the call boundary (lambda wrapper)
    CALLBACK = "callback"  # scheduled timer or done callback


class Phase(str, Enum):
    """Lifecycle phase of an activation."""

    START = "start"
    END = "end"


@dataclass(frozen=True)
class LifecycleEvent:
    """A start or end notification for one activation."""

    id: str
    name: str
    kind: EventKind
    phase: Phase
    parent_id: str | None
    timestamp: int  # epoch milliseconds

    def to_wire(self) -> dict:
        """Wire form with camelCase keys."""
        return {
            "id": self.id,
            "name": self.name,
            "kind": self.kind.value,
            "phase": self.phase.value,
            "parentId": self.parent_id,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_wire(cls, data: dict) -> "LifecycleEvent":
        """Build from wire form. Raises ValueError/TypeError/KeyError when invalid."""
        event_id = data["id"]
        name = data["name"]
        parent_id = data.get("parentId")
        timestamp = data["timestamp"]

        if not isinstance(event_id, str) or not event_id:
            raise ValueError("id must be a non-empty string")
        if not isinstance(name, str):
            raise TypeError("name must be a string")
        if parent_id is not None and not isinstance(parent_id, str):
            raise TypeError("parentId must be a string or null")
        # bool is an int subclass
        if isinstance(timestamp, bool) or not isinstance(timestamp, int):
            raise TypeError("timestamp must be an integer")

        return cls(
            id=event_id,
            name=name,
            kind=EventKind(data["kind"]),
            phase=Phase(data["phase"]),
            parent_id=parent_id or None,
            timestamp=timestamp,
        )
