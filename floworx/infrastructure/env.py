"""
Environment loader for FloWorx.

Entry points that need credentials (Gemini project, Graph tokens) call
ensure_env_loaded() before reading env vars. Library code never calls it at
import time.

Usage:
    from floworx.infrastructure.env import ensure_env_loaded, get_required_env

    ensure_env_loaded()
    project = get_required_env("GOOGLE_CLOUD_PROJECT")
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

_ENV_LOADED = False


class MissingEnvironmentError(RuntimeError):
    """Raised when a required environment variable is not set."""


def ensure_env_loaded(env_path: Path | None = None) -> None:
    """
    Load the nearest .env file exactly once.

    Args:
        env_path: Optional path to .env file. If None, walks up from this package.

    Side Effects:
        - Loads environment variables from .env file (existing vars win)
        - Sets module-level flag to prevent double-loading
    """
    global _ENV_LOADED
    if _ENV_LOADED:
        return

    if env_path is None:
        current = Path(__file__).parent
        while current != current.parent:
            candidate = current / ".env"
            if candidate.exists():
                env_path = candidate
                break
            current = current.parent

    if env_path and env_path.exists():
        load_dotenv(env_path)
    else:
        load_dotenv()
    _ENV_LOADED = True


def get_required_env(key: str, error_msg: str | None = None) -> str:
    """
    Get required environment variable or fail with a clear error.

    Raises:
        MissingEnvironmentError: If the variable is unset or empty
    """
    ensure_env_loaded()
    value = os.getenv(key)
    if not value:
        raise MissingEnvironmentError(error_msg or f"{key} not found in environment or .env")
    return value


def get_optional_env(key: str, default: str = "") -> str:
    ensure_env_loaded()
    return os.getenv(key, default)
