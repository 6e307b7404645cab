"""SIM implementation - submits every sample program through the HTTP API."""

import asyncio
from typing import Protocol

import httpx

from runtrace.logging_config import get_logger

logger = get_logger(__name__)


class ISim(Protocol):
    """Drive the tracer with the built-in samples."""

    async def start(self, sample_ids: list[str] | None = None) -> None:
        """Start the scenario, optionally limited to some samples."""
        ...

    async def stop(self) -> None:
        """Stop scenario."""
        ...


def count_nodes(tree: dict | None) -> int:
    """Number of nodes in a snapshot tree dict."""
    if not tree:
        return 0
    total = 0
    pending = [tree]
    while pending:
        node = pending.pop()
        total += 1
        pending.extend(node.get("children", []))
    return total


class Sim:
    """SIM that runs each sample in turn and logs the resulting tree."""

    def __init__(
        self,
        api_url: str = "http://localhost:8000",
        poll_interval: float = 0.25,
        run_timeout: float = 15.0,
    ):
        self._api_url = api_url
        self._poll_interval = poll_interval
        self._run_timeout = run_timeout
        self._running = False
        self._task: asyncio.Task | None = None
        self._client: httpx.AsyncClient | None = None
        self._selection: list[str] | None = None
        self.results: dict[str, dict] = {}

    @property
    def running(self) -> bool:
        return self._running

    @property
    def selection(self) -> list[str] | None:
        """Sample ids of the current scenario; None means every sample."""
        return self._selection

    async def start(self, sample_ids: list[str] | None = None) -> None:
        """Start the scenario, optionally limited to some samples."""
        if self._running:
            return

        self._running = True
        self._selection = list(sample_ids) if sample_ids else None
        self.results = {}
        if self._client is None:
            self._client = httpx.AsyncClient(base_url=self._api_url, timeout=10.0)

        # Start background task
        self._task = asyncio.create_task(self._run_scenario())

    async def stop(self) -> None:
        """Stop scenario."""
        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        if self._client:
            await self._client.aclose()
            self._client = None

    async def _run_scenario(self) -> None:
        """Run every sample and record a summary of each tree."""
        try:
            sample_ids = self._selection
            if sample_ids is None:
                response = await self._client.get("/api/samples")
                response.raise_for_status()
                sample_ids = [sample["id"] for sample in response.json()]
            logger.info("SIM: running %d samples", len(sample_ids))

            for sample_id in sample_ids:
                if not self._running:
                    break
                summary = await self._run_sample(sample_id)
                if summary:
                    self.results[sample_id] = summary

        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.error("SIM scenario error: %s", e)
        finally:
            self._running = False
            logger.info("SIM: completed %d samples", len(self.results))

    async def _run_sample(self, sample_id: str) -> dict | None:
        """Submit one sample, wait for it to finish, fetch its tree."""
        try:
            response = await self._client.post("/api/runs", json={"sample_id": sample_id})
            if response.status_code != 200:
                logger.error("SIM: %s rejected: %s", sample_id, response.status_code)
                return None
            run_id = response.json()["id"]

            loop = asyncio.get_running_loop()
            deadline = loop.time() + self._run_timeout
            while loop.time() < deadline:
                current = (await self._client.get("/api/runs/current")).json()
                if current["id"] != run_id or current["status"] != "building":
                    break
                await asyncio.sleep(self._poll_interval)

            tree = (await self._client.post("/api/runs/current/sync")).json()
            summary = {
                "run_id": run_id,
                "source": tree["source"],
                "root": tree["root"]["name"] if tree["root"] else None,
                "nodes": count_nodes(tree["root"]),
            }
            logger.info(
                "SIM: %s -> root=%s nodes=%d (%s)",
                sample_id,
                summary["root"],
                summary["nodes"],
                summary["source"],
            )
            return summary

        except httpx.HTTPError as e:
            logger.error("SIM: Failed to run %s: %s", sample_id, e)
            return None
