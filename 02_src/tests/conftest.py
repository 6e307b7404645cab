"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

import pytest
import pytest_asyncio

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))


@pytest_asyncio.fixture
async def storage():
    """Create in-memory storage for testing."""
    from runtrace.storage import Storage

    st = Storage(":memory:")
    await st.init()
    yield st
    await st.close()


@pytest.fixture
def event_bus(storage):
    """Create EventBus with storage."""
    from runtrace.event_bus import EventBus

    eb = EventBus(storage)
    return eb


@pytest.fixture
def tracker(storage, event_bus):
    """Create Tracker with storage and event bus."""
    from runtrace.tracker import Tracker

    tr = Tracker(event_bus=event_bus, storage=storage)
    return tr


@pytest.fixture
def reconstructor():
    """Create a TraceReconstructor bound to run-1 with a short sweep grace."""
    from runtrace.reconstructor import TraceReconstructor

    rc = TraceReconstructor(entry_point="main", sweep_grace=0.05, clock=lambda: 10_000)
    rc.begin_run("run-1")
    return rc


@pytest.fixture
def collected_events():
    """ExecutionContext recording its events into a list, for in-process runs."""
    from runtrace.sandbox import ExecutionContext

    events = []
    context = ExecutionContext(events.append)
    return context, events


@pytest.fixture
def run_instrumented(collected_events):
    """Instrument source and exec it in-process with the collecting context."""
    from runtrace.instrumentor import RUNTIME_NAME, instrument

    context, events = collected_events

    def _run(source: str) -> list:
        code = compile(instrument(source), "<program>", "exec")
        exec(code, {"__name__": "__main__", RUNTIME_NAME: context})
        return events

    return _run


@pytest.fixture
def make_event():
    """Factory for LifecycleEvents with terse arguments."""
    from runtrace.models import EventKind, LifecycleEvent, Phase

    def _make(id, phase="start", parent=None, ts=0, name=None, kind="function"):
        return LifecycleEvent(
            id=id,
            name=name or id,
            kind=EventKind(kind),
            phase=Phase(phase),
            parent_id=parent,
            timestamp=ts,
        )

    return _make


@pytest_asyncio.fixture
async def app():
    """Create and start an in-memory application."""
    from runtrace.app import Application
    from runtrace.config import Settings

    application = Application(
        db_path=":memory:",
        settings=Settings(sandbox_timeout=10.0, sweep_grace=0.05),
    )
    await application.start()
    yield application
    await application.stop()
