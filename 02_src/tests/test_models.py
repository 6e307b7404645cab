"""Tests for data models."""

import pytest

from runtrace.models import (
    ChannelMessage,
    EventKind,
    LifecycleEvent,
    MessageType,
    NodeStatus,
    Phase,
    TraceNode,
)


class TestLifecycleEvent:
    """Tests for LifecycleEvent wire form."""

    def test_to_wire_uses_camel_case(self):
        """Test that parentId is camelCase on the wire."""
        event = LifecycleEvent(
            id="fn-outer-1",
            name="outer",
            kind=EventKind.FUNCTION,
            phase=Phase.START,
            parent_id=None,
            timestamp=1700000000000,
        )
        wire = event.to_wire()

        assert wire == {
            "id": "fn-outer-1",
            "name": "outer",
            "kind": "function",
            "phase": "start",
            "parentId": None,
            "timestamp": 1700000000000,
        }

    def test_from_wire(self):
        """Test parsing a valid wire dict."""
        event = LifecycleEvent.from_wire(
            {
                "id": "cb-tick-3",
                "name": "tick",
                "kind": "callback",
                "phase": "end",
                "parentId": "fn-main-1",
                "timestamp": 5,
            }
        )

        assert event.kind is EventKind.CALLBACK
        assert event.phase is Phase.END
        assert event.parent_id == "fn-main-1"

    def test_from_wire_empty_parent_is_none(self):
        """Test that an empty parentId reads as no parent."""
        event = LifecycleEvent.from_wire(
            {"id": "a", "name": "a", "kind": "call", "phase": "start", "parentId": "", "timestamp": 1}
        )
        assert event.parent_id is None

    @pytest.mark.parametrize(
        "bad",
        [
            {"name": "a", "kind": "function", "phase": "start", "timestamp": 1},
            {"id": "", "name": "a", "kind": "function", "phase": "start", "timestamp": 1},
            {"id": "a", "name": "a", "kind": "method", "phase": "start", "timestamp": 1},
            {"id": "a", "name": "a", "kind": "function", "phase": "middle", "timestamp": 1},
            {"id": "a", "name": "a", "kind": "function", "phase": "start", "timestamp": "1"},
            {"id": "a", "name": "a", "kind": "function", "phase": "start", "timestamp": True},
            {"id": "a", "name": 3, "kind": "function", "phase": "start", "timestamp": 1},
        ],
    )
    def test_from_wire_rejects_invalid(self, bad):
        """Test that invalid wire dicts raise."""
        with pytest.raises((KeyError, TypeError, ValueError)):
            LifecycleEvent.from_wire(bad)


class TestChannelMessage:
    """Tests for ChannelMessage accessors."""

    def test_event_accessor(self):
        """Test that .event returns the payload only for process events."""
        event = LifecycleEvent("a", "a", EventKind.FUNCTION, Phase.START, None, 1)
        message = ChannelMessage(run_id="r", type=MessageType.PROCESS_EVENT, payload=event)

        assert message.event is event
        assert message.text is None

    def test_text_accessor(self):
        """Test that .text returns the payload only for log messages."""
        message = ChannelMessage(run_id="r", type=MessageType.LOG, payload="hello")

        assert message.text == "hello"
        assert message.event is None


class TestTraceNode:
    """Tests for TraceNode."""

    def test_complete_clamps_end_time(self):
        """Test that end_time never precedes start_time."""
        node = TraceNode(id="a", name="a", kind="function", start_time=100)
        node.complete(90)

        assert node.status is NodeStatus.COMPLETED
        assert node.end_time == 100

    def test_walk_visits_each_node_once(self):
        """Test depth-first walk order and cycle guard."""
        root = TraceNode(id="r", name="r", kind="function", start_time=0)
        child = TraceNode(id="c", name="c", kind="function", start_time=1, parent_id="r")
        grandchild = TraceNode(id="g", name="g", kind="function", start_time=2, parent_id="c")
        root.children.append(child)
        child.children.append(grandchild)
        grandchild.children.append(root)  # corrupt on purpose

        assert [n.id for n in root.walk()] == ["r", "c", "g"]

    def test_to_dict_is_detached(self):
        """Test that the dict form is a copy."""
        root = TraceNode(id="r", name="main", kind="function", start_time=0)
        root.children.append(TraceNode(id="c", name="c", kind="call", start_time=1, parent_id="r"))
        data = root.to_dict()

        root.children.clear()

        assert data["children"][0]["id"] == "c"
        assert data["children"][0]["parentId"] == "r"
        assert data["status"] == "running"
        assert data["endTime"] is None
