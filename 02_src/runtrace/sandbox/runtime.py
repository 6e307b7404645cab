"""Tracing runtime injected into instrumented programs as ``__runtrace__``.

The active-call stack is an immutable tuple of activation ids held in a
ContextVar owned by the ExecutionContext instance. asyncio copies the
current context into every task and scheduled callback, so coroutines that
interleave on one loop each see their own chain; scheduled callbacks
additionally restore the chain captured when they were registered.
"""

import functools
import itertools
import threading
import time
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Any, Callable

from ..models import EventKind, LifecycleEvent, Phase

EventSink = Callable[[LifecycleEvent], None]

_ID_PREFIX = {
    EventKind.FUNCTION: "fn",
    EventKind.CALL: "call",
    EventKind.CALLBACK: "cb",
}


class MonotonicClock:
    """Epoch milliseconds that never go backwards within one process."""

    def __init__(self) -> None:
        self._epoch_ms = time.time_ns() // 1_000_000
        self._origin = time.monotonic_ns()

    def __call__(self) -> int:
        return self._epoch_ms + (time.monotonic_ns() - self._origin) // 1_000_000


@dataclass
class Activation:
    """One execution of one callable inside the sandbox."""

    id: str
    name: str
    kind: EventKind
    parent_id: str | None
    ended: bool = False


_CURRENT = object()


class ExecutionContext:
    """Owns the active-call stack and turns enter/exit into lifecycle events."""

    def __init__(self, sink: EventSink, clock: Callable[[], int] | None = None):
        self._sink = sink
        self._clock = clock or MonotonicClock()
        self._stack: ContextVar[tuple[str, ...]] = ContextVar(
            f"runtrace_stack_{id(self)}", default=()
        )
        self._counter = itertools.count(1)
        self._counter_lock = threading.Lock()

    # Stack

    @property
    def stack(self) -> tuple[str, ...]:
        """The active-call chain visible from the calling context."""
        return self._stack.get()

    def current_parent(self) -> str | None:
        stack = self._stack.get()
        return stack[-1] if stack else None

    def _next_id(self, kind: EventKind, name: str) -> str:
        with self._counter_lock:
            number = next(self._counter)
        return f"{_ID_PREFIX[kind]}-{name}-{number}"

    def _emit(self, activation: Activation, phase: Phase) -> None:
        self._sink(
            LifecycleEvent(
                id=activation.id,
                name=activation.name,
                kind=activation.kind,
                phase=phase,
                parent_id=activation.parent_id,
                timestamp=self._clock(),
            )
        )

    # Activations

    def enter(
        self,
        name: str,
        kind: str = EventKind.FUNCTION.value,
        parent_id: Any = _CURRENT,
    ) -> Activation:
        """Start an activation: mint an id, push it, emit ``start``."""
        event_kind = EventKind(kind)
        parent = self.current_parent() if parent_id is _CURRENT else parent_id
        activation = Activation(
            id=self._next_id(event_kind, name),
            name=name,
            kind=event_kind,
            parent_id=parent,
        )
        self._stack.set(self._stack.get() + (activation.id,))
        self._emit(activation, Phase.START)
        return activation

    def exit(self, activation: Activation) -> None:
        """End an activation exactly once: pop it, emit ``end``."""
        if activation.ended:
            return
        activation.ended = True

        stack = self._stack.get()
        if stack and stack[-1] == activation.id:
            self._stack.set(stack[:-1])
        elif activation.id in stack:
            # out-of-order completion (generators closed late, callbacks)
            self._stack.set(tuple(i for i in stack if i != activation.id))
        self._emit(activation, Phase.END)

    # Suspension (generators)

    def pause(self, activation: Activation) -> None:
        """Take a suspended activation off the stack without ending it."""
        stack = self._stack.get()
        if activation.id in stack:
            self._stack.set(tuple(i for i in stack if i != activation.id))

    def resume(self, activation: Activation) -> None:
        """Put a resumed activation back on top of the resumer's stack."""
        stack = self._stack.get()
        if not activation.ended and activation.id not in stack:
            self._stack.set(stack + (activation.id,))

    def paused(self, activation: Activation, value: Any = None) -> Any:
        self.pause(activation)
        return value

    def resumed(self, activation: Activation, sent: Any = None) -> Any:
        self.resume(activation)
        return sent

    def suspend(self, activation: Activation, value: Any = None):
        """Yield ``value`` to the consumer with the activation off the stack.

        Used as ``yield from`` in rewritten generators, so ``send`` and
        ``throw`` resume the activation before the generator body continues.
        """
        self.pause(activation)
        try:
            return (yield value)
        finally:
            self.resume(activation)

    def delegate(self, activation: Activation, iterable: Any) -> "Delegation":
        """Target for a rewritten ``yield from``."""
        return Delegation(self, activation, iterable)

    # Wrappers

    def traced(self, fn: Any, name: str = "<lambda>") -> Any:
        """Wrap a callable whose body cannot be rewritten (lambdas)."""
        if not callable(fn):
            return fn

        @functools.wraps(fn)
        def traced_call(*args, **kwargs):
            activation = self.enter(name, EventKind.CALL.value)
            try:
                return fn(*args, **kwargs)
            finally:
                self.exit(activation)

        return traced_call

    def callback(self, fn: Any, name: str) -> Any:
        """Wrap a scheduled callback, capturing the scheduling chain now."""
        if not callable(fn):
            return fn
        captured = self._stack.get()
        parent = captured[-1] if captured else None

        @functools.wraps(fn)
        def scheduled_callback(*args, **kwargs):
            previous = self._stack.get()
            self._stack.set(captured)
            activation = self.enter(name, EventKind.CALLBACK.value, parent_id=parent)
            try:
                return fn(*args, **kwargs)
            finally:
                self.exit(activation)
                self._stack.set(previous)

        return scheduled_callback

    def schedule(self, register: Callable, position: int, *args, **kwargs) -> Any:
        """Call a timer registration with its callback argument traced."""
        if position < len(args):
            args_list = list(args)
            args_list[position] = self.callback(
                args_list[position], callback_name(register, args_list[position])
            )
            args = tuple(args_list)
        return register(*args, **kwargs)


class Delegation:
    """Iterator proxy for ``yield from`` inside a traced generator.

    The delegating activation is on the stack while the subiterator runs and
    off it while a value is out with the consumer.
    """

    def __init__(self, context: ExecutionContext, activation: Activation, iterable: Any):
        self._context = context
        self._activation = activation
        self._iterator = iter(iterable)
        # the delegating generator is running when the proxy is created
        self._suspended = False

    def __iter__(self):
        return self

    def _step(self, method: Callable, *args) -> Any:
        if self._suspended:
            self._context.resume(self._activation)
            self._suspended = False
        value = method(*args)
        self._context.pause(self._activation)
        self._suspended = True
        return value

    def __next__(self):
        return self._step(next, self._iterator)

    def send(self, value):
        if value is None:
            return self._step(next, self._iterator)
        return self._step(self._iterator.send, value)

    def throw(self, *args):
        throw = getattr(self._iterator, "throw", None)
        if throw is None:
            self.close()
            if len(args) > 1 and isinstance(args[1], BaseException):
                raise args[1]
            raise args[0]
        return self._step(throw, *args)

    def close(self) -> None:
        if self._suspended:
            self._context.resume(self._activation)
            self._suspended = False
        close = getattr(self._iterator, "close", None)
        if close is not None:
            close()


def callback_name(register: Any, callback: Any) -> str:
    """Display name for a scheduled callback."""
    target = getattr(callback, "func", callback)  # functools.partial
    name = getattr(target, "__name__", None)
    if name and name != "<lambda>":
        return name
    register_name = getattr(register, "__name__", None) or "timer"
    return f"{register_name} callback"
