"""Application bootstrap and lifecycle management."""

import asyncio
import os
import uuid
from datetime import datetime, timezone
from typing import Protocol

from .config import Settings, load_settings, resolve_db_path
from .event_bus import EventBus
from .fallback import FallbackRecoverer
from .instrumentor import InstrumentationError, Instrumentor, collect_function_names
from .logging_config import get_logger
from .models import (
    ChannelMessage,
    LogLine,
    MessageType,
    Run,
    RunState,
    RunStatus,
    TraceNode,
    TreeSnapshot,
)
from .reconstructor import TraceReconstructor
from .sandbox import SandboxExecutor
from .storage import IStorage, Storage
from .tracker import Tracker

logger = get_logger(__name__)


class IApplication(Protocol):
    """Bootstrap and lifecycle."""

    async def start(self) -> None:
        """Initialize components in dependency order."""
        ...

    async def stop(self) -> None:
        """Shutdown in reverse order."""
        ...

    async def reset(self) -> Run | None:
        """Abort and forget the current run, clear the archive."""
        ...

    async def run(self, source: str) -> Run:
        """Instrument source and start executing it, replacing any current run."""
        ...


class Application:
    """Main application bootstrap.

    Wires the tracing pipeline: Instrumentor rewrites the program,
    SandboxExecutor runs it and publishes channel messages on the EventBus,
    Tracker and TraceReconstructor consume them, and FallbackRecoverer is
    consulted once the run is over if no tree came out of the events.
    """

    def __init__(self, db_path: str | None = None, settings: Settings | None = None):
        env_db_path = os.getenv("DATABASE_URL") if db_path is None else db_path
        self._db_path = resolve_db_path(env_db_path)
        self._settings = settings or load_settings()

        # Components (will be initialized in start())
        self._storage: IStorage | None = None
        self._event_bus: EventBus | None = None
        self._tracker: Tracker | None = None
        self._reconstructor: TraceReconstructor | None = None
        self._recoverer: FallbackRecoverer | None = None
        self._instrumentor: Instrumentor | None = None
        self._executor: SandboxExecutor | None = None

        # Current run
        self._run: Run | None = None
        self._function_names: list[str] = []
        self._fallback_root: TraceNode | None = None
        self._finished = asyncio.Event()

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def storage(self) -> IStorage | None:
        return self._storage

    @property
    def event_bus(self) -> EventBus | None:
        return self._event_bus

    @property
    def reconstructor(self) -> TraceReconstructor | None:
        return self._reconstructor

    @property
    def tracker(self) -> Tracker | None:
        return self._tracker

    @property
    def current_run(self) -> Run | None:
        return self._run

    async def start(self) -> None:
        """Initialize components in dependency order."""
        logger.info("Starting application")

        # 1. Storage (no dependencies)
        self._storage = Storage(self._db_path)
        await self._storage.init()
        logger.info("Storage initialized")

        # 2. EventBus (depends on Storage for persistence)
        self._event_bus = EventBus(self._storage)
        logger.info("EventBus initialized")

        # 3. Tracker (depends on EventBus + Storage)
        self._tracker = Tracker(self._event_bus, self._storage)
        await self._tracker.start()

        # 4. TraceReconstructor (depends on EventBus)
        self._reconstructor = TraceReconstructor(
            entry_point=self._settings.entry_point,
            sweep_grace=self._settings.sweep_grace,
        )
        self._event_bus.subscribe(
            MessageType.PROCESS_EVENT, self._reconstructor.handle_message
        )
        # completion is driven from _handle_done so it runs after the last event
        self._event_bus.subscribe(MessageType.DONE, self._handle_done)
        logger.info("TraceReconstructor initialized")

        # 5. FallbackRecoverer, Instrumentor (stateless)
        self._recoverer = FallbackRecoverer(entry_point=self._settings.entry_point)
        self._instrumentor = Instrumentor()

        # 6. SandboxExecutor (publishes to EventBus)
        self._executor = SandboxExecutor(timeout=self._settings.sandbox_timeout)
        logger.info("All components initialized successfully")

    async def stop(self) -> None:
        """Shutdown in reverse order."""
        if self._executor:
            await self._executor.abort()
        if self._reconstructor:
            await self._reconstructor.close()
        if self._tracker:
            await self._tracker.stop()
        if self._storage:
            await self._storage.close()
            logger.info("Storage closed")

    async def reset(self) -> Run | None:
        """Abort the current run, clear the archive and forget the run.

        Returns the discarded run; its status is ``aborted`` if it was still
        building.
        """
        discarded = self._run

        # 1. Kill any running sandbox
        if self._executor:
            await self._executor.abort()

        # 2. Clear storage
        if self._storage:
            await self._close_run(RunStatus.ABORTED)
            await self._storage.clear()
            logger.info("Storage cleared")

        # 3. Forget the current run
        if self._reconstructor:
            await self._reconstructor.close()
        self._run = None
        self._fallback_root = None
        self._function_names = []
        self._finished = asyncio.Event()
        return discarded

    def _require_started(self) -> None:
        if not self._executor or not self._storage:
            raise RuntimeError("Application not started")

    # Runs

    async def run(self, source: str) -> Run:
        """Instrument source and start executing it, replacing any current run.

        Raises InstrumentationError if the program cannot be parsed; in that
        case the previous run is left untouched.
        """
        self._require_started()

        try:
            instrumented = self._instrumentor.instrument(source)
        except InstrumentationError as e:
            failed = Run(
                id=uuid.uuid4().hex,
                source=source,
                status=RunStatus.FAILED,
                started_at=datetime.now(timezone.utc),
                finished_at=datetime.now(timezone.utc),
                error=str(e),
            )
            await self._storage.save_run(failed)
            logger.warning("Rewrite failed: %s", e, extra={"run_id": failed.id})
            raise

        # Tear down the previous run before any state is reset
        await self._executor.abort()
        if self._run and self._run.status is RunStatus.BUILDING:
            await self._close_run(RunStatus.ABORTED)

        run = Run(
            id=uuid.uuid4().hex,
            source=source,
            status=RunStatus.BUILDING,
            started_at=datetime.now(timezone.utc),
        )
        self._run = run
        self._function_names = collect_function_names(source)
        self._fallback_root = None
        self._finished = asyncio.Event()

        self._reconstructor.begin_run(run.id)
        self._tracker.begin_run(run.id)
        await self._storage.save_run(run)

        await self._executor.start(run.id, instrumented, self._event_bus.publish)
        logger.info("Run started", extra={"run_id": run.id})
        return run

    async def _handle_done(self, message: ChannelMessage) -> None:
        """Finalize the current run when its completion sentinel arrives."""
        if self._run is None or message.run_id != self._run.id:
            return

        await self._reconstructor.finish(message.run_id)
        if self._reconstructor.root is None:
            self._recover()

        await self._storage.save_trace_snapshot(self.snapshot())
        await self._close_run(RunStatus.FINISHED)

    async def _close_run(self, status: RunStatus) -> None:
        run = self._run
        if run is None or run.status is not RunStatus.BUILDING:
            return
        run.status = status
        run.finished_at = datetime.now(timezone.utc)
        await self._storage.save_run(run)
        self._finished.set()
        logger.info("Run %s", status.value, extra={"run_id": run.id})

    def _recover(self) -> None:
        self._fallback_root = self._recoverer.recover(
            self._tracker.console_lines(), self._function_names
        )
        if self._fallback_root is None:
            logger.info("No tree available", extra={"run_id": self._run.id})

    async def wait(self, timeout: float | None = None) -> Run | None:
        """Wait until the current run is closed and its sandbox released."""
        if self._run is None:
            return None
        await asyncio.wait_for(self._wait_released(), timeout)
        return self._run

    async def _wait_released(self) -> None:
        await self._finished.wait()
        # the pump archives the sentinel after the handlers return
        await self._executor.join()

    async def abort(self) -> Run | None:
        """Kill the current run's sandbox. The tree built so far is kept."""
        self._require_started()
        await self._executor.abort()
        await self._close_run(RunStatus.ABORTED)
        return self._run

    # Views

    def snapshot(self) -> TreeSnapshot:
        """Current tree: from events if available, else the fallback tree."""
        if self._reconstructor is None:
            return TreeSnapshot(run_id=None, source="none", state=RunState.EMPTY, root=None)

        snapshot = self._reconstructor.snapshot()
        if snapshot.root is None and self._fallback_root is not None:
            return TreeSnapshot(
                run_id=snapshot.run_id,
                source="fallback",
                state=snapshot.state,
                root=self._fallback_root.to_dict(),
                node_count=sum(1 for _ in self._fallback_root.walk()),
            )
        return snapshot

    async def sync(self) -> TreeSnapshot:
        """Force the orphan sweep (and fallback if needed), then snapshot."""
        self._require_started()
        await self._reconstructor.sync()
        if self._run and self._reconstructor.root is None:
            self._recover()
        return self.snapshot()

    def logs(self) -> list[LogLine]:
        """All log lines of the current run."""
        if self._tracker is None:
            return []
        return self._tracker.lines()
