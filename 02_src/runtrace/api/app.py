"""FastAPI application setup."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ..app import Application
from .routes import control, observability, runs


# Global application instance
_app: Application | None = None


def get_app() -> Application:
    """Get the global application instance."""
    global _app
    if not _app:
        _app = Application()
    return _app


def set_app(application: Application | None) -> None:
    """Replace the global application instance (tests)."""
    global _app
    _app = application


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifespan."""
    # Startup
    application = get_app()
    await application.start()
    yield
    # Shutdown
    sim = getattr(app.state, "sim", None)
    if sim is not None:
        await sim.stop()
    await application.stop()


def create_fastapi_app(sim=None) -> FastAPI:
    """Create and configure FastAPI application.

    ``sim`` is the optional sample driver exposed under /api/control/sim.
    """
    fastapi_app = FastAPI(
        title="Runtrace API",
        description="Runtime instrumentation and call-tree reconstruction",
        version="0.1.0",
        lifespan=lifespan,
    )
    fastapi_app.state.sim = sim

    # Enable CORS
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:5173", "http://localhost:5174"],  # Vite default
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers; /runs/current/* before /runs/{run_id}/*
    application = get_app()
    fastapi_app.include_router(observability.create_observability_router(application))
    fastapi_app.include_router(runs.create_runs_router(application))
    fastapi_app.include_router(control.create_control_router(application))

    return fastapi_app
