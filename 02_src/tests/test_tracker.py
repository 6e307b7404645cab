"""Tests for Tracker."""

from runtrace.models import ChannelMessage, EventKind, LifecycleEvent, LogKind, MessageType, Phase
from runtrace.tracker import format_event


class TestTrackerDirect:
    """Tests for direct track() calls."""

    async def test_track_appends_and_saves(self, tracker, storage):
        """Test that track() appends a numbered line and archives it."""
        tracker.begin_run("run-1")

        await tracker.track(LogKind.SYSTEM, "hello")
        await tracker.track(LogKind.CONSOLE, "world")

        lines = tracker.lines()
        assert [(l.seq, l.text) for l in lines] == [(0, "hello"), (1, "world")]

        stored = await storage.get_log_lines("run-1")
        assert [l.text for l in stored] == ["hello", "world"]
        assert stored[1].kind is LogKind.CONSOLE

    async def test_track_without_run_is_noop(self, tracker):
        """Test that nothing is recorded before a run begins."""
        assert await tracker.track(LogKind.SYSTEM, "lost") is None
        assert tracker.lines() == []

    async def test_begin_run_clears(self, tracker):
        tracker.begin_run("run-1")
        await tracker.track(LogKind.CONSOLE, "old")

        tracker.begin_run("run-2")

        assert tracker.lines() == []


class TestTrackerSubscription:
    """Tests for the EventBus subscription channel."""

    async def test_bus_messages_become_lines(self, tracker, event_bus):
        """Test that log, event and done messages are all logged."""
        await tracker.start()
        tracker.begin_run("run-1")
        event = LifecycleEvent("fn-outer-1", "outer", EventKind.FUNCTION, Phase.START, None, 1)

        await event_bus.publish(ChannelMessage(run_id="run-1", type=MessageType.LOG, payload="hi"))
        await event_bus.publish(
            ChannelMessage(run_id="run-1", type=MessageType.PROCESS_EVENT, payload=event)
        )
        await event_bus.publish(ChannelMessage(run_id="run-1", type=MessageType.DONE))

        lines = tracker.lines()
        assert [l.kind for l in lines] == [LogKind.CONSOLE, LogKind.TRACE, LogKind.SYSTEM]
        assert lines[1].text == "[trace] start outer (fn-outer-1) parent=none"
        assert [l.text for l in tracker.console_lines()] == ["hi"]

    async def test_other_runs_ignored(self, tracker, event_bus):
        """Test that messages of a stale run are not logged."""
        await tracker.start()
        tracker.begin_run("run-2")

        await event_bus.publish(ChannelMessage(run_id="run-1", type=MessageType.LOG, payload="x"))

        assert tracker.lines() == []


class TestFormatEvent:
    def test_with_parent(self):
        event = LifecycleEvent("fn-inner-2", "inner", EventKind.FUNCTION, Phase.END, "fn-outer-1", 3)
        assert format_event(event) == "[trace] end inner (fn-inner-2) parent=fn-outer-1"
