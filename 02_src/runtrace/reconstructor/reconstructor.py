"""Incremental call-tree reconstruction from an unordered lifecycle event stream.

No ordering is assumed between events beyond "an id's end, if it arrives,
arrives after its start"; violations of that are logged and ignored. Events
are applied one at a time under an asyncio.Lock, so a message that arrives
while another is being applied waits in the lock's FIFO queue.
"""

import asyncio
import bisect
import time
from typing import Callable, Protocol

from ..config import DEFAULT_ENTRY_POINT, DEFAULT_SWEEP_GRACE
from ..logging_config import get_logger
from ..models import (
    ChannelMessage,
    EventKind,
    LifecycleEvent,
    MessageType,
    NodeStatus,
    Phase,
    RunState,
    TraceNode,
    TreeSnapshot,
)
from ..protocol import belongs_to_run

logger = get_logger(__name__)

PLACEHOLDER_PREFIX = "pending:"


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


class ITraceReconstructor(Protocol):
    """Builds and maintains the call tree of the current run."""

    def begin_run(self, run_id: str) -> None:
        """Discard all node state and bind to a new run."""
        ...

    async def handle_message(self, message: ChannelMessage) -> None:
        """Apply a channel message if it belongs to the current run."""
        ...

    async def finish(self, run_id: str) -> None:
        """Move the run to FINISHED (completion sentinel or timeout)."""
        ...

    async def sync(self) -> int:
        """Run the orphan sweep now. Returns the number of nodes completed."""
        ...

    def snapshot(self) -> TreeSnapshot:
        """Detached copy of the current tree."""
        ...


class TraceReconstructor:
    """Owns the node map of one run at a time."""

    def __init__(
        self,
        entry_point: str = DEFAULT_ENTRY_POINT,
        sweep_grace: float = DEFAULT_SWEEP_GRACE,
        clock: Callable[[], int] | None = None,
    ):
        self._entry_point = entry_point
        self._sweep_grace = sweep_grace
        self._clock = clock or _now_ms
        self._lock = asyncio.Lock()

        self._run_id: str | None = None
        self._state = RunState.EMPTY
        self._nodes: dict[str, TraceNode] = {}
        self._root_id: str | None = None
        self._sweep_task: asyncio.Task | None = None

    # Read access

    @property
    def run_id(self) -> str | None:
        return self._run_id

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def root(self) -> TraceNode | None:
        return self._nodes.get(self._root_id) if self._root_id else None

    def get_node(self, node_id: str) -> TraceNode | None:
        return self._nodes.get(node_id)

    def nodes(self) -> list[TraceNode]:
        return list(self._nodes.values())

    def snapshot(self) -> TreeSnapshot:
        """Detached copy of the current tree."""
        root = self.root
        return TreeSnapshot(
            run_id=self._run_id,
            source="events" if root else "none",
            state=self._state,
            root=root.to_dict() if root else None,
            node_count=len(self._nodes),
        )

    # Run lifecycle

    def begin_run(self, run_id: str) -> None:
        """Discard all node state and bind to a new run."""
        self._cancel_sweep()
        self._run_id = run_id
        self._state = RunState.EMPTY
        self._nodes = {}
        self._root_id = None
        logger.debug("Reconstructor bound to new run", extra={"run_id": run_id})

    async def finish(self, run_id: str) -> None:
        """Move the run to FINISHED (completion sentinel or timeout)."""
        async with self._lock:
            if run_id != self._run_id:
                return
            self._state = RunState.FINISHED
            root = self.root
            running = sum(1 for n in self._nodes.values() if n.status is NodeStatus.RUNNING)
            logger.info(
                "Run finished: %d nodes, root=%s, %d still running",
                len(self._nodes),
                root.name if root else None,
                running,
                extra={"run_id": run_id},
            )

    async def close(self) -> None:
        self._cancel_sweep()

    # Message handling

    async def handle_message(self, message: ChannelMessage) -> None:
        """Apply a channel message if it belongs to the current run."""
        if not belongs_to_run(message, self._run_id):
            logger.debug(
                "Dropping message of stale run %s", message.run_id,
                extra={"run_id": self._run_id},
            )
            return

        if message.type is MessageType.PROCESS_EVENT and message.event:
            await self.apply(message.run_id, message.event)
        elif message.type is MessageType.DONE:
            await self.finish(message.run_id)

    async def apply(self, run_id: str, event: LifecycleEvent) -> None:
        """Apply one lifecycle event to the node map of run_id."""
        async with self._lock:
            # the run may have been replaced while this event was queued
            if run_id != self._run_id:
                return
            if self._state is RunState.EMPTY:
                self._state = RunState.BUILDING

            if event.phase is Phase.START:
                self._apply_start(event)
            else:
                self._apply_end(event)

    # Event application (called with the lock held, never awaits)

    def _apply_start(self, event: LifecycleEvent) -> None:
        parent_id = event.parent_id
        if parent_id == event.id:
            parent_id = self._find_listing_parent(event.id)
            logger.warning(
                "Self-referential parent on %s corrected to %s",
                event.id,
                parent_id,
                extra={"run_id": self._run_id},
            )

        node = self._nodes.get(event.id)
        if node is not None and not node.provisional:
            logger.debug("Duplicate start for %s ignored", event.id)
            return

        if node is None:
            node = TraceNode(
                id=event.id,
                name=event.name,
                kind=event.kind.value,
                start_time=event.timestamp,
            )
            self._nodes[node.id] = node
        else:
            # placeholder becomes the real node; attached children stay
            node.name = event.name
            node.kind = event.kind.value
            node.start_time = event.timestamp
            node.provisional = False
            logger.debug("Placeholder %s reconciled as %s", node.id, node.name)

        if parent_id:
            self._attach(node, parent_id, event.timestamp)

        self._select_root()

    def _apply_end(self, event: LifecycleEvent) -> None:
        node = self._nodes.get(event.id)
        if node is None or node.provisional:
            logger.warning(
                "End for unknown activation %s (%s) ignored",
                event.id,
                event.name,
                extra={"run_id": self._run_id},
            )
            return

        # late parent information
        if (
            node.parent_id is None
            and event.parent_id
            and event.parent_id != node.id
        ):
            self._attach(node, event.parent_id, event.timestamp)
            self._select_root()

        if node.status is NodeStatus.COMPLETED:
            logger.debug("Duplicate end for %s ignored", event.id)
            return

        node.complete(event.timestamp)
        if node.id == self._root_id:
            self._schedule_sweep()

    def _find_listing_parent(self, node_id: str) -> str | None:
        for candidate in self._nodes.values():
            if candidate.id != node_id and candidate.has_child(node_id):
                return candidate.id
        return None

    def _is_ancestor(self, ancestor_id: str, node_id: str) -> bool:
        """True if ancestor_id is node_id or above it in the parent chain."""
        seen: set[str] = set()
        current: str | None = node_id
        while current and current not in seen:
            if current == ancestor_id:
                return True
            seen.add(current)
            parent = self._nodes.get(current)
            current = parent.parent_id if parent else None
        return False

    def _attach(self, node: TraceNode, parent_id: str, timestamp: int) -> None:
        parent = self._nodes.get(parent_id)
        if parent is None:
            parent = TraceNode(
                id=parent_id,
                name=f"{PLACEHOLDER_PREFIX}{parent_id}",
                kind=EventKind.FUNCTION.value,
                start_time=timestamp,
                provisional=True,
            )
            self._nodes[parent_id] = parent
            logger.debug("Placeholder parent %s created for %s", parent_id, node.id)

        if self._is_ancestor(node.id, parent_id):
            logger.warning(
                "Parent %s of %s would create a cycle; left detached",
                parent_id,
                node.id,
                extra={"run_id": self._run_id},
            )
            return

        # a node is a child of at most one parent
        if node.parent_id and node.parent_id != parent_id:
            previous = self._nodes.get(node.parent_id)
            if previous:
                previous.children = [c for c in previous.children if c.id != node.id]

        node.parent_id = parent_id
        if not parent.has_child(node.id):
            starts = [child.start_time for child in parent.children]
            parent.children.insert(bisect.bisect_right(starts, node.start_time), node)

    def _has_resolvable_parent(self, node: TraceNode) -> bool:
        if not node.parent_id:
            return False
        parent = self._nodes.get(node.parent_id)
        return parent is not None and not parent.provisional

    def _select_root(self) -> None:
        real = [n for n in self._nodes.values() if not n.provisional]
        groups = (
            [n for n in real if n.name == self._entry_point],
            [n for n in real if self._entry_point in n.name],
            [n for n in real if not self._has_resolvable_parent(n)],
        )
        root_id = None
        for group in groups:
            if group:
                root_id = min(group, key=lambda n: (n.start_time, n.id)).id
                break

        if root_id != self._root_id:
            self._root_id = root_id
            root = self.root
            if root and root.status is NodeStatus.COMPLETED:
                self._schedule_sweep()

    # Orphan sweep

    def _schedule_sweep(self) -> None:
        if self._sweep_task and not self._sweep_task.done():
            return
        self._sweep_task = asyncio.get_running_loop().create_task(
            self._sweep_after_grace(self._run_id)
        )

    def _cancel_sweep(self) -> None:
        if self._sweep_task and not self._sweep_task.done():
            self._sweep_task.cancel()
        self._sweep_task = None

    async def _sweep_after_grace(self, run_id: str | None) -> None:
        await asyncio.sleep(self._sweep_grace)
        async with self._lock:
            if run_id == self._run_id:
                self._sweep()

    def _sweep(self) -> int:
        """Complete every running descendant of a completed root."""
        root = self.root
        if root is None or root.status is not NodeStatus.COMPLETED:
            return 0

        now = self._clock()
        swept = 0
        for node in root.walk():
            if node.status is NodeStatus.RUNNING:
                node.complete(now)
                swept += 1
        if swept:
            logger.info(
                "Orphan sweep completed %d nodes under %s",
                swept,
                root.name,
                extra={"run_id": self._run_id},
            )
        return swept

    async def sync(self) -> int:
        """Run the orphan sweep now. Returns the number of nodes completed."""
        async with self._lock:
            swept = self._sweep()
            root = self.root
        if root and root.status is NodeStatus.COMPLETED:
            self._cancel_sweep()
        return swept
