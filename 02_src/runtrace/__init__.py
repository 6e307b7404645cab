"""Runtime instrumentation and call-tree reconstruction."""

from .app import Application, IApplication
from .event_bus import EventBus, IEventBus
from .fallback import FallbackRecoverer, IFallbackRecoverer
from .instrumentor import IInstrumentor, InstrumentationError, Instrumentor
from .models import (
    ChannelMessage,
    EventKind,
    LifecycleEvent,
    LogKind,
    LogLine,
    MessageType,
    NodeStatus,
    Phase,
    Run,
    RunState,
    RunStatus,
    TraceNode,
    TreeSnapshot,
)
from .reconstructor import ITraceReconstructor, TraceReconstructor
from .sandbox import ISandboxExecutor, SandboxExecutor
from .storage import IStorage, Storage
from .tracker import ITracker, Tracker

__all__ = [
    # Application
    "Application",
    "IApplication",
    # Models
    "LifecycleEvent",
    "EventKind",
    "Phase",
    "ChannelMessage",
    "MessageType",
    "TraceNode",
    "NodeStatus",
    "TreeSnapshot",
    "RunState",
    "Run",
    "RunStatus",
    "LogLine",
    "LogKind",
    # Components
    "IInstrumentor",
    "Instrumentor",
    "InstrumentationError",
    "ISandboxExecutor",
    "SandboxExecutor",
    "ITraceReconstructor",
    "TraceReconstructor",
    "IFallbackRecoverer",
    "FallbackRecoverer",
    "IEventBus",
    "EventBus",
    "ITracker",
    "Tracker",
    "IStorage",
    "Storage",
]
