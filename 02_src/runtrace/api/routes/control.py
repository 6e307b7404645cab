"""Control API routes: reset and the sample driver."""

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from ...app import IApplication
from ...models import RunStatus
from ...samples import get_sample


class ResetResponse(BaseModel):
    """What a reset tore down."""

    status: str
    discarded_run_id: str | None = None
    aborted: bool = False


class SimStartRequest(BaseModel):
    """Samples to drive; empty or missing means all of them."""

    sample_ids: list[str] | None = None


class SimStatusResponse(BaseModel):
    """State of the sample driver."""

    running: bool
    sample_ids: list[str] | None = None
    results: dict[str, dict] = {}


def _sim_or_404(request: Request):
    sim = getattr(request.app.state, "sim", None)
    if sim is None:
        raise HTTPException(status_code=404, detail="SIM not configured")
    return sim


def _sim_status(sim) -> dict:
    return {"running": sim.running, "sample_ids": sim.selection, "results": sim.results}


def create_control_router(app: IApplication) -> APIRouter:
    """Create control router. The driver is read from ``app.state.sim``."""
    router = APIRouter(prefix="/api/control", tags=["control"])

    @router.post("/reset", response_model=ResetResponse)
    async def reset_system() -> dict:
        """Abort the current run and clear the archive."""
        try:
            discarded = await app.reset()
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))
        if discarded is None:
            return {"status": "ok"}
        return {
            "status": "ok",
            "discarded_run_id": discarded.id,
            "aborted": discarded.status is RunStatus.ABORTED,
        }

    @router.get("/sim", response_model=SimStatusResponse)
    async def sim_status(request: Request) -> dict:
        """Whether the driver is running and what it has collected."""
        return _sim_status(_sim_or_404(request))

    @router.post("/sim/start", response_model=SimStatusResponse)
    async def start_sim(request: Request, body: SimStartRequest | None = None) -> dict:
        """Start submitting sample programs."""
        sim = _sim_or_404(request)
        sample_ids = body.sample_ids if body else None
        unknown = [i for i in sample_ids or [] if get_sample(i) is None]
        if unknown:
            raise HTTPException(
                status_code=404, detail=f"Unknown samples: {', '.join(unknown)}"
            )
        try:
            await sim.start(sample_ids)
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))
        return _sim_status(sim)

    @router.post("/sim/stop", response_model=SimStatusResponse)
    async def stop_sim(request: Request) -> dict:
        """Stop the driver; results collected so far are kept."""
        sim = _sim_or_404(request)
        try:
            await sim.stop()
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))
        return _sim_status(sim)

    return router
