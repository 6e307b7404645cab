"""Core data models for runtrace."""

from .events import EventKind, LifecycleEvent, Phase
from .messages import PROTOCOL_VERSION, SOURCE_TAG, ChannelMessage, MessageType
from .runs import LogKind, LogLine, Run, RunStatus
from .tracing import NodeStatus, RunState, TraceNode, TreeSnapshot

__all__ = [
    # Events
    "EventKind",
    "Phase",
    "LifecycleEvent",
    # Channel
    "ChannelMessage",
    "MessageType",
    "SOURCE_TAG",
    "PROTOCOL_VERSION",
    # Runs
    "Run",
    "RunStatus",
    "LogLine",
    "LogKind",
    # Tracing
    "TraceNode",
    "NodeStatus",
    "RunState",
    "TreeSnapshot",
]
