"""Main entry point for the runtrace server."""

import os
import sys
from pathlib import Path

import uvicorn
from dotenv import load_dotenv

from runtrace.api import create_fastapi_app, set_app
from runtrace.app import Application
from runtrace.config import load_settings
from runtrace.logging_config import get_logger, setup_logging
from sim import Sim

logger = get_logger(__name__)


def main():
    """Validate configuration, then serve the API."""
    project_root = Path(__file__).resolve().parent.parent
    load_dotenv(project_root / ".env")
    setup_logging()

    # Fail fast on bad tracing knobs instead of at the first run
    try:
        settings = load_settings()
    except ValueError as e:
        logger.error("Invalid configuration: %s", e)
        sys.exit(2)
    logger.info(
        "Tracing settings: timeout=%gs sweep_grace=%gs entry_point=%s",
        settings.sandbox_timeout,
        settings.sweep_grace,
        settings.entry_point,
    )
    set_app(Application(settings=settings))

    api_host = os.getenv("API_HOST", "localhost")
    api_port = int(os.getenv("API_PORT", "8000"))

    # The driver polls runs, so give it at least the sandbox budget per sample
    sim = Sim(
        api_url=f"http://{api_host}:{api_port}",
        run_timeout=settings.sandbox_timeout + 5.0,
    )

    uvicorn.run(
        create_fastapi_app(sim=sim),
        host=api_host,
        port=api_port,
        log_level="info",
    )


if __name__ == "__main__":
    main()
