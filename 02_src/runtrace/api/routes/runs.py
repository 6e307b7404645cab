"""Run API routes."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel
from fastapi import APIRouter, HTTPException, Query

from ...app import Application
from ...instrumentor import InstrumentationError
from ...models import Run
from ...samples import get_sample


class RunRequest(BaseModel):
    """Request model for starting a run: inline source or a sample id."""

    source: str | None = None
    sample_id: str | None = None


class RunResponse(BaseModel):
    """Response model for a run."""

    id: str
    status: str
    started_at: datetime
    finished_at: datetime | None = None
    error: str | None = None


class ChannelMessageResponse(BaseModel):
    """Response model for an archived channel message."""

    runId: str
    type: str
    payload: Any = None


def run_to_dict(run: Run) -> dict:
    return {
        "id": run.id,
        "status": run.status.value,
        "started_at": run.started_at,
        "finished_at": run.finished_at,
        "error": run.error,
    }


def create_runs_router(app: Application) -> APIRouter:
    """Create runs router."""
    router = APIRouter(prefix="/api/runs", tags=["runs"])

    @router.post("", response_model=RunResponse)
    async def start_run(request: RunRequest) -> dict:
        """Instrument a program and start tracing it."""
        source = request.source
        if request.sample_id:
            sample = get_sample(request.sample_id)
            if not sample:
                raise HTTPException(
                    status_code=404, detail=f"Unknown sample: {request.sample_id}"
                )
            source = sample.code
        if source is None:
            raise HTTPException(status_code=400, detail="source or sample_id required")

        try:
            run = await app.run(source)
            return run_to_dict(run)
        except InstrumentationError as e:
            raise HTTPException(
                status_code=422,
                detail={"message": e.message, "line": e.lineno, "column": e.offset},
            )
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    @router.get("", response_model=list[RunResponse])
    async def list_runs(limit: int = Query(50, ge=1, le=500)) -> list[dict]:
        """Get archived runs, newest first."""
        try:
            runs = await app.storage.get_runs(limit=limit)
            return [run_to_dict(run) for run in runs]
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    @router.get("/current", response_model=RunResponse)
    async def get_current_run() -> dict:
        """Get the run currently shown."""
        run = app.current_run
        if not run:
            raise HTTPException(status_code=404, detail="No run")
        return run_to_dict(run)

    @router.post("/current/abort", response_model=RunResponse)
    async def abort_current_run() -> dict:
        """Kill the sandbox of the current run."""
        if not app.current_run:
            raise HTTPException(status_code=404, detail="No run")
        try:
            run = await app.abort()
            return run_to_dict(run)
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    @router.get("/{run_id}/messages", response_model=list[ChannelMessageResponse])
    async def get_run_messages(
        run_id: str,
        limit: int = Query(1000, ge=1, le=10000),
    ) -> list[dict]:
        """Get archived channel messages of a run."""
        try:
            return await app.storage.get_channel_messages(run_id, limit=limit)
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    return router
