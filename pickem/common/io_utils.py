"""Shared environment, path and console helpers.

Purpose:
    Centralise .env loading, repository paths and the console log helpers so
    the pipeline modules stay focused on pick'em logic.
Inputs:
    Requested environment variable keys, log messages.
Outputs:
    Environment key/value mappings, the repository /out directory, stderr lines.
Source(s) of truth:
    Repository .env file (loaded once) layered under the process environment.
Example:
    >>> env = read_env(["CFBD_API_KEY", "THE_ODDS_API_KEY"])
    >>> db_path = default_db_path()
"""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Optional, Sequence

from dotenv import load_dotenv

RepositoryPath = Path(__file__).resolve().parents[2]
OUT = RepositoryPath / "out"

_ENV_LOADED = False


def load_env_once(override: bool = False) -> None:
    """Load .env into os.environ once (idempotent)."""
    global _ENV_LOADED
    if _ENV_LOADED:
        return
    env_path = RepositoryPath / ".env"
    if env_path.exists():
        load_dotenv(dotenv_path=env_path, override=override)
    _ENV_LOADED = True


def getenv(key: str, default: str | None = None) -> str | None:
    """Project-safe getenv that ensures .env is loaded once."""
    load_env_once(override=False)
    value = os.environ.get(key)
    if value is None or not value.strip():
        return default
    return value.strip()


def read_env(keys: Sequence[str]) -> dict:
    """Return the requested environment variables (None when unset or blank)."""
    return {key: getenv(key) for key in keys}


def ensure_out_dir() -> Path:
    """Ensure the repository /out directory exists and return its Path."""
    OUT.mkdir(parents=True, exist_ok=True)
    return OUT


def default_db_path() -> Path:
    """Return PICKEM_DB_PATH or out/pickem.db."""
    override = getenv("PICKEM_DB_PATH")
    if override:
        path = Path(override)
        path.parent.mkdir(parents=True, exist_ok=True)
        return path
    return ensure_out_dir() / "pickem.db"


def log_api_error(message: str) -> None:
    """Emit API errors in red on stderr."""
    red = "\033[91m"
    reset = "\033[0m"
    print(f"{red}{message}{reset}", file=sys.stderr, flush=True)


def redact(text: str, secret: Optional[str]) -> str:
    """Replace a credential in URLs/log text before printing."""
    if not secret:
        return text
    return text.replace(secret, "<REDACTED>")


__all__ = [
    "load_env_once",
    "getenv",
    "read_env",
    "ensure_out_dir",
    "default_db_path",
    "log_api_error",
    "redact",
]
