"""Reconstructed call tree models."""

from dataclasses import dataclass, field
from enum import Enum


class NodeStatus(str, Enum):
    """Status of a reconstructed activation."""

    RUNNING = "running"
    COMPLETED = "completed"


class RunState(str, Enum):
    """Reconstructor state for the current run."""

    EMPTY = "empty"
    BUILDING = "building"
    FINISHED = "finished"


@dataclass
class TraceNode:
    """The reconstructed record of one activation."""

    id: str
    name: str
    kind: str  # EventKind value
    start_time: int
    status: NodeStatus = NodeStatus.RUNNING
    end_time: int | None = None
    parent_id: str | None = None
    children: list["TraceNode"] = field(default_factory=list)
    provisional: bool = False  # placeholder parent awaiting its own start

    def complete(self, end_time: int) -> None:
        """Mark completed, clamping end_time so it never precedes start_time."""
        self.status = NodeStatus.COMPLETED
        self.end_time = max(end_time, self.start_time)

    def has_child(self, node_id: str) -> bool:
        return any(child.id == node_id for child in self.children)

    def walk(self):
        """Yield this node and all descendants, depth first."""
        stack = [self]
        seen: set[str] = set()
        while stack:
            node = stack.pop()
            if node.id in seen:
                continue
            seen.add(node.id)
            yield node
            stack.extend(reversed(node.children))

    def to_dict(self) -> dict:
        """Detached, JSON-ready copy of the subtree."""
        return self._to_dict(set())

    def _to_dict(self, seen: set[str]) -> dict:
        seen.add(self.id)
        return {
            "id": self.id,
            "name": self.name,
            "kind": self.kind,
            "status": self.status.value,
            "startTime": self.start_time,
            "endTime": self.end_time,
            "parentId": self.parent_id,
            "provisional": self.provisional,
            "children": [
                child._to_dict(seen) for child in self.children if child.id not in seen
            ],
        }


@dataclass
class TreeSnapshot:
    """Read-only view of the current tree handed to the visualization side."""

    run_id: str | None
    source: str  # "events", "fallback" or "none"
    state: RunState
    root: dict | None
    node_count: int = 0
