"""Observability API routes."""

from typing import Any

from pydantic import BaseModel
from fastapi import APIRouter, HTTPException

from ...app import Application
from ...models import TreeSnapshot
from ...samples import SAMPLES


class SnapshotResponse(BaseModel):
    """Response model for a tree snapshot."""

    run_id: str | None
    source: str
    state: str
    root: dict[str, Any] | None
    node_count: int


class LogLineResponse(BaseModel):
    """Response model for a log line."""

    seq: int
    kind: str
    text: str
    timestamp: int


class SampleResponse(BaseModel):
    """Response model for a sample program."""

    id: str
    name: str
    description: str
    complexity: str
    code: str
    hint: str


def snapshot_to_dict(snapshot: TreeSnapshot) -> dict:
    return {
        "run_id": snapshot.run_id,
        "source": snapshot.source,
        "state": snapshot.state.value,
        "root": snapshot.root,
        "node_count": snapshot.node_count,
    }


def create_observability_router(app: Application) -> APIRouter:
    """Create observability router."""
    router = APIRouter(prefix="/api", tags=["observability"])

    @router.get("/runs/current/tree", response_model=SnapshotResponse)
    async def get_tree() -> dict:
        """Get the current tree snapshot."""
        if not app.current_run:
            raise HTTPException(status_code=404, detail="No run")
        return snapshot_to_dict(app.snapshot())

    @router.post("/runs/current/sync", response_model=SnapshotResponse)
    async def sync_tree() -> dict:
        """Complete orphans now and fall back to console parsing if needed."""
        if not app.current_run:
            raise HTTPException(status_code=404, detail="No run")
        try:
            return snapshot_to_dict(await app.sync())
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    @router.get("/runs/current/logs", response_model=list[LogLineResponse])
    async def get_logs() -> list[dict]:
        """Get log lines of the current run in order."""
        if not app.current_run:
            raise HTTPException(status_code=404, detail="No run")
        return [
            {
                "seq": line.seq,
                "kind": line.kind.value,
                "text": line.text,
                "timestamp": line.timestamp,
            }
            for line in app.logs()
        ]

    @router.get("/samples", response_model=list[SampleResponse])
    async def get_samples() -> list[dict]:
        """Get built-in sample programs."""
        return [
            {
                "id": s.id,
                "name": s.name,
                "description": s.description,
                "complexity": s.complexity,
                "code": s.code,
                "hint": s.hint,
            }
            for s in SAMPLES
        ]

    return router
