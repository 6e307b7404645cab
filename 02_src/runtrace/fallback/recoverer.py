"""Best-effort tree recovery from console output when events are unusable."""

import re
from typing import Iterable, Protocol

from ..config import DEFAULT_ENTRY_POINT
from ..logging_config import get_logger
from ..models import LogLine, NodeStatus, TraceNode

logger = get_logger(__name__)

_NAME = r"[A-Za-z_$][\w$]*"

# "Main execution calling outer", "outer is calling inner"
_CALLING = re.compile(
    rf"^\s*(?P<caller>{_NAME})(?:\s+(?P<word>[A-Za-z_]\w*))??\s+(?:is\s+)?calling\s+(?P<callee>{_NAME})",
    re.IGNORECASE,
)
# "First function starting", "inner started"
_STARTING = re.compile(
    rf"^\s*(?P<name>{_NAME})(?:\s+(?P<word>[A-Za-z_]\w*))??\s+(?:is\s+)?(?:starting|started|begins|beginning)\b",
    re.IGNORECASE,
)
# "Second operation completed", "outer finished"
_ENDING = re.compile(
    rf"^\s*(?P<name>{_NAME})(?:\s+(?P<word>[A-Za-z_]\w*))??\s+(?:is\s+)?(?:completed|complete|finished|done|ended)\b",
    re.IGNORECASE,
)


class IFallbackRecoverer(Protocol):
    """Rebuilds a tree from console lines."""

    def recover(
        self,
        lines: Iterable[LogLine | str],
        function_names: Iterable[str] | None = None,
    ) -> TraceNode | None:
        """Return the recovered root, or None when nothing is recognizable."""
        ...


def _key(name: str) -> str:
    return name.lower()


class _TreeBuilder:
    """Accumulates nodes from recognized phrases, keyed by lowercased name."""

    def __init__(self, function_names: list[str], entry_point: str = DEFAULT_ENTRY_POINT):
        self._entry_point = _key(entry_point)
        self.nodes: list[TraceNode] = []
        self._latest: dict[str, TraceNode] = {}
        self._open: list[TraceNode] = []
        self._known = {_key(name): name for name in function_names}

    def resolve(self, name: str, word: str | None) -> str:
        """Pick "firstOperation" for "First operation" when that name is known."""
        if word:
            joined = _key(name + word)
            if joined in self._latest:
                return self._latest[joined].name
            if joined in self._known:
                return self._known[joined]
        return self._known.get(_key(name), name)

    def _create(self, name: str, timestamp: int, parent: TraceNode | None) -> TraceNode:
        node = TraceNode(
            id=f"fallback-{len(self.nodes) + 1}-{name}",
            name=name,
            kind="function",
            start_time=timestamp,
        )
        if parent is not None and parent is not node:
            node.parent_id = parent.id
            parent.children.append(node)
        self.nodes.append(node)
        self._latest[_key(name)] = node
        return node

    def _running(self, name: str) -> TraceNode | None:
        node = self._latest.get(_key(name))
        if node is not None and node.status is NodeStatus.RUNNING:
            return node
        return None

    def _top(self) -> TraceNode | None:
        return self._open[-1] if self._open else None

    def start(self, name: str, timestamp: int) -> None:
        node = self._running(name)
        if node is None:
            node = self._create(name, timestamp, self._top())
        if node not in self._open:
            self._open.append(node)

    def end(self, name: str, timestamp: int) -> None:
        node = self._running(name)
        if node is None:
            node = self._create(name, timestamp, self._top())
        node.complete(timestamp)
        if node in self._open:
            self._open.remove(node)

    def call(self, caller_name: str, callee_name: str, timestamp: int) -> None:
        caller = self._running(caller_name)
        if caller is None:
            caller = self._create(caller_name, timestamp, self._top())
            self._open.append(caller)

        callee = self._running(callee_name)
        if callee is None:
            self._create(callee_name, timestamp, caller)
        elif callee.parent_id is None and callee is not caller and not self._above(callee, caller):
            callee.parent_id = caller.id
            caller.children.append(callee)

    def _above(self, candidate: TraceNode, node: TraceNode) -> bool:
        by_id = {n.id: n for n in self.nodes}
        current = node
        while current.parent_id:
            if current.parent_id == candidate.id:
                return True
            current = by_id[current.parent_id]
        return False

    def root(self) -> TraceNode | None:
        roots = [n for n in self.nodes if n.parent_id is None]
        if not roots:
            return None
        for node in roots:
            if _key(node.name) == self._entry_point:
                return node
        for node in roots:
            if self._entry_point in _key(node.name):
                return node
        return max(roots, key=lambda n: (sum(1 for _ in n.walk()), -n.start_time))


class FallbackRecoverer:
    """Parses console lines for call phrases and rebuilds a tree from them.

    Used only when the event stream produced no root. Recognizes
    "X [word] calling Y", "X [word] starting" and "X [word] completed"
    phrases; if none are present, falls back to a linear chain of known
    function names in the order they first appear in the output.
    """

    def __init__(self, entry_point: str = DEFAULT_ENTRY_POINT):
        self._entry_point = entry_point

    def recover(
        self,
        lines: Iterable[LogLine | str],
        function_names: Iterable[str] | None = None,
    ) -> TraceNode | None:
        """Return the recovered root, or None when nothing is recognizable."""
        try:
            return self._recover(list(lines), list(function_names or []))
        except Exception:
            logger.exception("Fallback recovery failed")
            return None

    def _recover(self, lines: list[LogLine | str], function_names: list[str]) -> TraceNode | None:
        entries = [self._entry(line, index) for index, line in enumerate(lines)]
        builder = _TreeBuilder(function_names, self._entry_point)

        for text, timestamp in entries:
            match = _CALLING.match(text)
            if match:
                builder.call(
                    builder.resolve(match["caller"], match["word"]),
                    builder.resolve(match["callee"], None),
                    timestamp,
                )
                continue
            match = _STARTING.match(text)
            if match:
                builder.start(builder.resolve(match["name"], match["word"]), timestamp)
                continue
            match = _ENDING.match(text)
            if match:
                builder.end(builder.resolve(match["name"], match["word"]), timestamp)

        if builder.nodes:
            root = builder.root()
            logger.info("Recovered %d nodes from call phrases", len(builder.nodes))
            return root

        return self._linear_chain(entries, function_names)

    @staticmethod
    def _entry(line: LogLine | str, index: int) -> tuple[str, int]:
        if isinstance(line, LogLine):
            return line.text, line.timestamp
        return str(line), index

    def _linear_chain(
        self, entries: list[tuple[str, int]], function_names: list[str]
    ) -> TraceNode | None:
        if not entries or not function_names:
            return None

        patterns = {
            name: re.compile(rf"(?<![\w$]){re.escape(name)}(?![\w$])")
            for name in function_names
        }
        first_seen: dict[str, int] = {}
        for position, (text, timestamp) in enumerate(entries):
            for name, pattern in patterns.items():
                if name not in first_seen and pattern.search(text):
                    first_seen[name] = position

        if not first_seen:
            return None

        end_time = entries[-1][1]
        root = None
        parent = None
        for index, name in enumerate(sorted(first_seen, key=first_seen.get)):
            node = TraceNode(
                id=f"fallback-{index + 1}-{name}",
                name=name,
                kind="function",
                start_time=entries[first_seen[name]][1],
            )
            node.complete(end_time)
            if parent is None:
                root = node
            else:
                node.parent_id = parent.id
                parent.children.append(node)
            parent = node

        logger.info("Recovered linear chain of %d functions", len(first_seen))
        return root
