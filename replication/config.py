"""
Configuration constants for the graph clone.

Values are read from environment variables (a .env file is loaded at
import time via python-dotenv) and can be overridden per run by a YAML
settings file and command-line flags, see ``SyncSettings``.
"""

import logging
import os
from dataclasses import dataclass, fields, replace
from typing import Any, Optional

from dotenv import load_dotenv

from core.startup_config import (
    ConfigValidationError,
    resolve_int_setting,
    resolve_strict_config_validation,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Load .env file (idempotent; does nothing if already loaded or missing)
# ---------------------------------------------------------------------------
load_dotenv()

STRICT_CONFIG_VALIDATION: bool = resolve_strict_config_validation(default=False)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Invalid integer for %s=%r; using %d", name, raw, default)
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Invalid number for %s=%r; using %s", name, raw, default)
        return default


# ---------------------------------------------------------------------------
# Batching and pagination
# ---------------------------------------------------------------------------
CLONE_BATCH_SIZE: int = _env_int("CLONE_BATCH_SIZE", 500)
CLONE_PAGE_SIZE: int = _env_int("CLONE_PAGE_SIZE", 1000)
CLONE_WIPE_PAGE_SIZE: int = _env_int("CLONE_WIPE_PAGE_SIZE", 20000)
CLONE_PROGRESS_INTERVAL: float = _env_float("CLONE_PROGRESS_INTERVAL", 2.0)  # seconds

# ---------------------------------------------------------------------------
# Failure policy: "abort" raises after a copy phase if any batch failed,
# "continue" only logs and reports the failed entities.
# ---------------------------------------------------------------------------
BATCH_ERROR_POLICIES = ("abort", "continue")
CLONE_ON_BATCH_ERROR: str = os.getenv("CLONE_ON_BATCH_ERROR", "abort").strip().lower()

# ---------------------------------------------------------------------------
# Connection bootstrap (connectivity check only, statements are never retried)
# ---------------------------------------------------------------------------
CLONE_CONNECTION_RETRIES: int = _env_int("CLONE_CONNECTION_RETRIES", 3)
CLONE_CONNECTION_RETRY_DELAY: float = _env_float("CLONE_CONNECTION_RETRY_DELAY", 2.0)

CLONE_REPORT_DIR: str = os.getenv("CLONE_REPORT_DIR", "output/run_reports")


@dataclass(frozen=True)
class SyncSettings:
    """Tunables for one sync run."""

    batch_size: int = CLONE_BATCH_SIZE
    page_size: int = CLONE_PAGE_SIZE
    wipe_page_size: int = CLONE_WIPE_PAGE_SIZE
    progress_interval: float = CLONE_PROGRESS_INTERVAL
    on_batch_error: str = CLONE_ON_BATCH_ERROR
    remove_marker_residue: bool = False
    connection_retries: int = CLONE_CONNECTION_RETRIES
    connection_retry_delay: float = CLONE_CONNECTION_RETRY_DELAY
    report_dir: Optional[str] = CLONE_REPORT_DIR
    source_database: Optional[str] = None
    destination_database: Optional[str] = None

    def __post_init__(self) -> None:
        if self.on_batch_error not in BATCH_ERROR_POLICIES:
            raise ConfigValidationError(
                f"on_batch_error must be one of {BATCH_ERROR_POLICIES}, "
                f"got {self.on_batch_error!r}"
            )
        for name in ("batch_size", "page_size", "wipe_page_size"):
            if getattr(self, name) < 1:
                raise ConfigValidationError(f"{name} must be >= 1")
        if self.progress_interval <= 0:
            raise ConfigValidationError("progress_interval must be > 0")

    @classmethod
    def from_mapping(
        cls,
        settings: dict[str, Any],
        strict: bool = STRICT_CONFIG_VALIDATION,
    ) -> "SyncSettings":
        """Build settings from a parsed YAML mapping over the env defaults."""
        base = cls()
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(settings) - known)
        if unknown:
            msg = f"Unknown clone settings: {', '.join(unknown)}"
            if strict:
                raise ConfigValidationError(msg)
            logger.warning("%s; ignoring", msg)

        overrides: dict[str, Any] = {}
        for name in ("batch_size", "page_size", "wipe_page_size", "connection_retries"):
            overrides[name] = resolve_int_setting(
                settings, name, getattr(base, name), strict=strict
            )
        for name in ("progress_interval", "connection_retry_delay"):
            if name in settings:
                overrides[name] = float(settings[name])
        for name in ("on_batch_error", "report_dir", "source_database", "destination_database"):
            if name in settings:
                overrides[name] = settings[name]
        if "remove_marker_residue" in settings:
            overrides["remove_marker_residue"] = bool(settings["remove_marker_residue"])
        return replace(base, **overrides)

    def with_overrides(self, **overrides: Any) -> "SyncSettings":
        """Apply non-None overrides (typically CLI flags)."""
        values = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **values) if values else self
