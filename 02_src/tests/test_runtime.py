"""Tests for the sandbox tracing runtime."""

import asyncio
import functools
import io

from runtrace.models import EventKind, MessageType, Phase
from runtrace.protocol import decode_message
from runtrace.sandbox import Channel, ChannelWriter, ExecutionContext, callback_name


class FakeConn:
    """Stands in for a multiprocessing Connection."""

    def __init__(self):
        self.sent: list[bytes] = []
        self.closed = False

    def send_bytes(self, data: bytes) -> None:
        if self.closed:
            raise BrokenPipeError
        self.sent.append(data)

    def close(self) -> None:
        self.closed = True

    def messages(self):
        return [decode_message(raw) for raw in self.sent]


class TestExecutionContext:
    """Tests for enter/exit bookkeeping."""

    def test_enter_exit_emits_pair(self, collected_events):
        """Test that an activation produces start then end."""
        context, events = collected_events

        activation = context.enter("work")
        assert context.stack == (activation.id,)
        context.exit(activation)

        assert context.stack == ()
        assert [e.phase for e in events] == [Phase.START, Phase.END]
        assert events[0].id == events[1].id == activation.id
        assert events[0].timestamp <= events[1].timestamp

    def test_exit_is_idempotent(self, collected_events):
        """Test that exiting twice emits a single end."""
        context, events = collected_events

        activation = context.enter("work")
        context.exit(activation)
        context.exit(activation)

        assert len(events) == 2

    def test_out_of_order_exit_removes_from_middle(self, collected_events):
        """Test that an activation ending below the top is removed where it sits."""
        context, events = collected_events

        outer = context.enter("outer")
        inner = context.enter("inner")
        context.exit(outer)

        assert context.stack == (inner.id,)
        context.exit(inner)
        assert context.stack == ()

    def test_ids_are_unique_per_activation(self, collected_events):
        """Test that repeated entries of one name get distinct ids."""
        context, _ = collected_events

        ids = set()
        for _ in range(5):
            activation = context.enter("again")
            ids.add(activation.id)
            context.exit(activation)

        assert len(ids) == 5

    def test_explicit_parent(self, collected_events):
        """Test that an explicit parent overrides the stack top."""
        context, events = collected_events

        context.enter("main")
        context.enter("cb", EventKind.CALLBACK.value, parent_id=None)

        assert events[-1].parent_id is None
        assert events[-1].kind is EventKind.CALLBACK

    def test_tasks_have_separate_chains(self, collected_events):
        """Test that interleaved coroutines do not see each other's activations."""
        context, events = collected_events

        async def worker(name):
            activation = context.enter(name)
            await asyncio.sleep(0)
            inner = context.enter(f"{name}.inner")
            context.exit(inner)
            context.exit(activation)

        async def main():
            await asyncio.gather(worker("a"), worker("b"))

        asyncio.run(main())

        starts = {e.name: e for e in events if e.phase is Phase.START}
        assert starts["a.inner"].parent_id == starts["a"].id
        assert starts["b.inner"].parent_id == starts["b"].id


class TestWrappers:
    """Tests for traced() and callback()."""

    def test_traced_wraps_calls(self, collected_events):
        """Test that traced() emits a call activation per invocation."""
        context, events = collected_events

        double = context.traced(lambda x: x * 2, "double")

        assert double(4) == 8
        assert [(e.name, e.kind, e.phase) for e in events] == [
            ("double", EventKind.CALL, Phase.START),
            ("double", EventKind.CALL, Phase.END),
        ]

    def test_traced_passes_non_callables(self, collected_events):
        context, _ = collected_events
        assert context.traced(5) == 5

    def test_callback_restores_captured_parent(self, collected_events):
        """Test that a callback runs under the chain captured at scheduling time."""
        context, events = collected_events

        scheduler = context.enter("scheduler")
        wrapped = context.callback(lambda: context.stack, "later")
        context.exit(scheduler)

        stack_inside = wrapped()

        callback_start = events[2]
        assert callback_start.kind is EventKind.CALLBACK
        assert callback_start.parent_id == scheduler.id
        assert stack_inside[0] == scheduler.id
        assert context.stack == ()

    def test_schedule_wraps_argument_at_position(self, collected_events):
        """Test that schedule() wraps only the callback argument."""
        context, events = collected_events
        received = []

        def register(delay, callback, *args):
            received.append(delay)
            callback(*args)

        def handler(value):
            received.append(value)

        context.schedule(register, 1, 0.5, handler, "payload")

        assert received == [0.5, "payload"]
        assert events[0].name == "handler"
        assert events[0].kind is EventKind.CALLBACK


class TestCallbackName:
    """Tests for callback display names."""

    def test_named_function(self):
        def tick():
            pass

        assert callback_name(print, tick) == "tick"

    def test_partial(self):
        def tick(x):
            pass

        assert callback_name(print, functools.partial(tick, 1)) == "tick"

    def test_lambda_uses_register_name(self):
        assert callback_name(print, lambda: None) == "print callback"


class TestChannel:
    """Tests for the sandbox side of the channel."""

    def test_sends_encoded_messages(self):
        """Test that channel messages decode on the host side."""
        conn = FakeConn()
        channel = Channel(conn, "run-1")

        channel.log("hello")
        channel.done()

        messages = conn.messages()
        assert [m.type for m in messages] == [MessageType.LOG, MessageType.DONE]
        assert messages[0].text == "hello"
        assert all(m.run_id == "run-1" for m in messages)

    def test_broken_pipe_closes_silently(self):
        """Test that a vanished host does not raise into the program."""
        conn = FakeConn()
        conn.closed = True
        channel = Channel(conn, "run-1")

        channel.log("lost")

        assert channel.closed

    def test_writer_splits_lines(self):
        """Test that only complete lines are forwarded until drained."""
        conn = FakeConn()
        writer = ChannelWriter(Channel(conn, "run-1"))

        print("first", file=writer)
        writer.write("sec")
        writer.write("ond\nthi")
        assert [m.text for m in conn.messages()] == ["first", "second"]

        writer.drain()
        assert [m.text for m in conn.messages()] == ["first", "second", "thi"]

    def test_writer_is_text_stream(self):
        writer = ChannelWriter(Channel(FakeConn(), "run-1"))
        assert isinstance(writer, io.TextIOBase)
        assert writer.writable()
