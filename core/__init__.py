"""Core shared contracts and utilities."""

from core.structured_logging import (
    configure_structured_logging,
    get_phase,
    get_run_id,
    new_run_token,
    phase_scope,
    set_run_id,
)
from core.startup_config import (
    ConfigValidationError,
    ConnectionTarget,
    load_settings_file,
    parse_connection_string,
    resolve_int_setting,
    resolve_strict_config_validation,
)
from core.run_artifacts import build_failure_manifest, write_run_report

__all__ = [
    "configure_structured_logging",
    "get_phase",
    "get_run_id",
    "new_run_token",
    "phase_scope",
    "set_run_id",
    "ConfigValidationError",
    "ConnectionTarget",
    "load_settings_file",
    "parse_connection_string",
    "resolve_int_setting",
    "resolve_strict_config_validation",
    "build_failure_manifest",
    "write_run_report",
]
