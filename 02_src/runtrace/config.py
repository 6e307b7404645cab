"""Project-level configuration and path helpers."""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Union

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
DATA_DIR = PROJECT_ROOT / "03_data"
LOGS_DIR = PROJECT_ROOT / "04_logs"
DEFAULT_DB_PATH = DATA_DIR / "runtrace.db"
DEFAULT_LOG_PATH = LOGS_DIR / "app.log"

DATA_DIR.mkdir(parents=True, exist_ok=True)
LOGS_DIR.mkdir(parents=True, exist_ok=True)


PathLike = Union[str, Path]

DEFAULT_SANDBOX_TIMEOUT = 10.0
DEFAULT_SWEEP_GRACE = 0.5
DEFAULT_ENTRY_POINT = "main"


def resolve_db_path(env_value: PathLike | None = None) -> PathLike:
    """Resolve DATABASE_URL to an absolute path."""
    if not env_value:
        return DEFAULT_DB_PATH

    if str(env_value) == ":memory:":
        return ":memory:"

    candidate = Path(env_value)
    return candidate if candidate.is_absolute() else PROJECT_ROOT / candidate


@dataclass(frozen=True)
class Settings:
    """Runtime knobs for a tracing session."""

    sandbox_timeout: float = DEFAULT_SANDBOX_TIMEOUT  # seconds
    sweep_grace: float = DEFAULT_SWEEP_GRACE  # seconds
    entry_point: str = DEFAULT_ENTRY_POINT


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {raw!r}")
    return value


def load_settings() -> Settings:
    """Build Settings from SANDBOX_TIMEOUT_SECONDS, SWEEP_GRACE_SECONDS, ENTRY_POINT."""
    return Settings(
        sandbox_timeout=_float_env("SANDBOX_TIMEOUT_SECONDS", DEFAULT_SANDBOX_TIMEOUT),
        sweep_grace=_float_env("SWEEP_GRACE_SECONDS", DEFAULT_SWEEP_GRACE),
        entry_point=os.getenv("ENTRY_POINT") or DEFAULT_ENTRY_POINT,
    )
