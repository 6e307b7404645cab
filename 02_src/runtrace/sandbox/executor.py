"""Host side of the sandbox: process lifecycle, message pump, wall-clock budget."""

import asyncio
import multiprocessing
from typing import Awaitable, Callable, Protocol

from ..config import DEFAULT_SANDBOX_TIMEOUT
from ..logging_config import get_logger
from ..models import ChannelMessage, MessageType
from ..protocol import decode_message
from .worker import run_program

logger = get_logger(__name__)


MessageHandler = Callable[[ChannelMessage], Awaitable[None]]


class ISandboxExecutor(Protocol):
    """Runs instrumented source in an isolated process."""

    async def start(self, run_id: str, source: str, on_message: MessageHandler) -> None:
        """Spawn the sandbox and start forwarding its messages to on_message."""
        ...

    async def abort(self) -> None:
        """Kill the sandbox; no further messages are delivered for its run."""
        ...

    async def join(self) -> None:
        """Wait until the current sandbox has finished and been released."""
        ...


class SandboxExecutor:
    """Spawns one sandbox process per run and pumps its pipe into the host."""

    def __init__(
        self,
        timeout: float = DEFAULT_SANDBOX_TIMEOUT,
        poll_interval: float = 0.05,
    ):
        self._timeout = timeout
        self._poll_interval = poll_interval
        # spawn: the child starts from a fresh interpreter, no host memory
        self._mp = multiprocessing.get_context("spawn")
        self._pump_task: asyncio.Task | None = None
        self._run_id: str | None = None

    @property
    def run_id(self) -> str | None:
        return self._run_id

    @property
    def running(self) -> bool:
        return self._pump_task is not None and not self._pump_task.done()

    async def start(self, run_id: str, source: str, on_message: MessageHandler) -> None:
        """Spawn the sandbox and start forwarding its messages to on_message."""
        await self.abort()

        reader, writer = self._mp.Pipe(duplex=False)
        process = self._mp.Process(
            target=run_program,
            args=(writer, run_id, source),
            name=f"runtrace-sandbox-{run_id[:8]}",
            daemon=True,
        )
        await asyncio.to_thread(process.start)
        writer.close()

        self._run_id = run_id
        self._pump_task = asyncio.create_task(
            self._pump(run_id, process, reader, on_message)
        )
        logger.info("Sandbox started (pid %s)", process.pid, extra={"run_id": run_id})

    async def abort(self) -> None:
        """Kill the sandbox; no further messages are delivered for its run."""
        task = self._pump_task
        self._pump_task = None
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            logger.info("Sandbox aborted", extra={"run_id": self._run_id})

    async def join(self) -> None:
        """Wait until the current sandbox has finished and been released."""
        task = self._pump_task
        if task:
            await asyncio.shield(task)

    async def _pump(self, run_id, process, conn, on_message: MessageHandler) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._timeout
        completed = False
        timed_out = False

        try:
            while True:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    timed_out = True
                    break
                try:
                    ready = await asyncio.to_thread(
                        conn.poll, min(self._poll_interval, remaining)
                    )
                    if not ready:
                        continue
                    raw = conn.recv_bytes()
                except (EOFError, OSError):
                    # writer closed: the process has exited
                    break

                message = None
                try:
                    message = decode_message(raw)
                    if message is not None:
                        await on_message(message)
                except Exception:
                    # one bad message must not cost the run its completion
                    logger.exception("Failed to deliver sandbox message", extra={"run_id": run_id})
                if message is not None and message.type is MessageType.DONE:
                    completed = True
                    break
        finally:
            conn.close()
            await self._release(process)

        if completed:
            return

        if timed_out:
            text = f"Execution timed out after {self._timeout:g}s; sandbox terminated"
            logger.warning(text, extra={"run_id": run_id})
        else:
            text = f"Sandbox exited with code {process.exitcode} before completing"
            logger.warning(text, extra={"run_id": run_id})
        await on_message(ChannelMessage(run_id=run_id, type=MessageType.LOG, payload=text))
        await on_message(ChannelMessage(run_id=run_id, type=MessageType.DONE))

    async def _release(self, process) -> None:
        """Give the process a moment to exit on its own, then kill it."""
        await asyncio.to_thread(process.join, 0.5)
        if process.is_alive():
            process.kill()
            await asyncio.to_thread(process.join)
