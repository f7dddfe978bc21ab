"""Project configuration helpers for environment-driven defaults."""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import field_validator
from pydantic.dataclasses import dataclass

DEFAULT_MAX_RESULTS_DB_QUERY_SIZE = 100
DEFAULT_KEEP_ALIVE_SECONDS = 30.0


def _default_env_path() -> Path:
    return Path(__file__).resolve().parents[1] / ".env.local"


def load_env_file(env_path: Path | None = None) -> None:
    """Load environment variables from a .env file if present.

    Already-set variables are not overridden.
    """
    path = env_path or _default_env_path()
    if not path.exists():
        return
    load_dotenv(path, override=False)


def get_database_url() -> str | None:
    """Return the configured database connection string, if available."""
    return os.environ.get("SR_DATABASE_URL") or os.environ.get("DATABASE_URL")


def get_result_uploads_path(default: Path | None = None) -> Path:
    """Return the root directory of uploaded result files."""
    raw = os.environ.get("SR_RESULT_UPLOADS_PATH")
    if raw:
        return Path(raw).expanduser().resolve()
    return default or Path("result_uploads").resolve()


def get_study_logs_path(default: Path | None = None) -> Path | None:
    """Return the directory for per-study log files, if configured."""
    raw = os.environ.get("SR_STUDY_LOGS_PATH")
    if raw:
        return Path(raw).expanduser().resolve()
    return default


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class ResultSettings:
    """Tunables for result export and removal."""

    max_results_db_query_size: int = DEFAULT_MAX_RESULTS_DB_QUERY_SIZE
    keep_alive_seconds: float = DEFAULT_KEEP_ALIVE_SECONDS
    allow_superuser: bool = False

    @field_validator("max_results_db_query_size")
    @classmethod
    def validate_query_size(cls, value: int) -> int:
        """Page size must be positive."""
        if value <= 0:
            raise ValueError("max_results_db_query_size must be positive")
        return value

    @field_validator("keep_alive_seconds")
    @classmethod
    def validate_keep_alive(cls, value: float) -> float:
        """Keep-alive interval must be positive."""
        if value <= 0:
            raise ValueError("keep_alive_seconds must be positive")
        return value

    @classmethod
    def from_env(cls) -> ResultSettings:
        """Build settings from SR_* environment variables."""
        return cls(
            max_results_db_query_size=int(
                os.environ.get("SR_MAX_RESULTS_DB_QUERY_SIZE", DEFAULT_MAX_RESULTS_DB_QUERY_SIZE)
            ),
            keep_alive_seconds=float(os.environ.get("SR_KEEP_ALIVE_SECONDS", DEFAULT_KEEP_ALIVE_SECONDS)),
            allow_superuser=_env_flag("SR_ALLOW_SUPERUSER"),
        )
