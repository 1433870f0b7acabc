"""
Environment-backed application configuration.

Values come from PATHRAG_* environment variables; a .env file in the
working directory is loaded first (existing environment wins).
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import find_dotenv, load_dotenv

SESSION_BACKENDS = ("memory", "file")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _to_positive_int(value: Optional[str], default: int) -> int:
    if value is None or str(value).strip() == "":
        return default
    try:
        parsed = int(value)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _to_positive_float(value: Optional[str], default: float) -> float:
    if value is None or str(value).strip() == "":
        return default
    try:
        parsed = float(value)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _to_optional_string(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


@dataclass
class AppConfig:
    """Runtime settings loaded from environment variables."""

    graph_path: Optional[str] = None
    assets_path: Optional[str] = None
    vendors_path: Optional[str] = None
    session_backend: str = "memory"
    session_dir: str = "outputs/sessions"
    session_ttl: int = 3600
    listen_timeout: float = 10.0
    log_level: str = "INFO"
    host: str = "127.0.0.1"
    port: int = 5000

    @classmethod
    def from_env(cls, load_env_file: bool = True, env_file: Optional[str] = None) -> "AppConfig":
        """
        Build configuration from the environment.

        Unknown backends and log levels fall back to defaults instead of
        failing startup; malformed numbers do the same.

        Args:
            load_env_file: Read a .env file before the environment
            env_file: Explicit .env path (defaults to .env found from the working directory)
        """
        if load_env_file:
            load_dotenv(dotenv_path=env_file or find_dotenv(usecwd=True))

        backend = (os.getenv("PATHRAG_SESSION_BACKEND") or "memory").strip().lower()
        if backend not in SESSION_BACKENDS:
            backend = "memory"

        log_level = (os.getenv("PATHRAG_LOG_LEVEL") or "INFO").strip().upper()
        if log_level not in LOG_LEVELS:
            log_level = "INFO"

        return cls(
            graph_path=_to_optional_string(os.getenv("PATHRAG_GRAPH_PATH")),
            assets_path=_to_optional_string(os.getenv("PATHRAG_ASSETS_PATH")),
            vendors_path=_to_optional_string(os.getenv("PATHRAG_VENDORS_PATH")),
            session_backend=backend,
            session_dir=_to_optional_string(os.getenv("PATHRAG_SESSION_DIR")) or "outputs/sessions",
            session_ttl=_to_positive_int(os.getenv("PATHRAG_SESSION_TTL"), default=3600),
            listen_timeout=_to_positive_float(os.getenv("PATHRAG_LISTEN_TIMEOUT"), default=10.0),
            log_level=log_level,
            host=_to_optional_string(os.getenv("PATHRAG_HOST")) or "127.0.0.1",
            port=_to_positive_int(os.getenv("PATHRAG_PORT"), default=5000),
        )

    @property
    def logging_level(self) -> int:
        return getattr(logging, self.log_level, logging.INFO)
