from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

from pipe_runtime.engine.output_limiter import check_output_ceiling


DEFAULT_MAX_EXECUTION_SECONDS = 300
DEFAULT_MAX_OUTPUT_BYTES = 1024 * 1024
DEFAULT_MAX_OPERATORS = 50


@dataclass(slots=True)
class AppSettings:
    max_execution_seconds: float = DEFAULT_MAX_EXECUTION_SECONDS
    max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES
    max_operators: int = DEFAULT_MAX_OPERATORS
    require_input_connections: bool = False
    operator_request_timeout_seconds: float = 30
    sync_execution_timeout_seconds: float = 30
    queue_max_attempts: int = 3
    queue_backoff_seconds: float = 2.0
    queue_workers: int = 2
    domain_allowlist: tuple[str, ...] = ()



def _get_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        return default



def _get_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        return default



def _get_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if not value:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default



def _get_list(name: str) -> tuple[str, ...]:
    value = os.getenv(name, "")
    return tuple(item.strip().lower() for item in value.split(",") if item.strip())



def load_settings() -> AppSettings:
    load_dotenv()

    return AppSettings(
        max_execution_seconds=_get_float("PIPE_MAX_EXECUTION_SECONDS", DEFAULT_MAX_EXECUTION_SECONDS),
        max_output_bytes=check_output_ceiling(_get_int("PIPE_MAX_OUTPUT_BYTES", DEFAULT_MAX_OUTPUT_BYTES)),
        max_operators=_get_int("PIPE_MAX_OPERATORS", DEFAULT_MAX_OPERATORS),
        require_input_connections=_get_bool("PIPE_REQUIRE_INPUT_CONNECTIONS", False),
        operator_request_timeout_seconds=_get_float("OPERATOR_REQUEST_TIMEOUT_SECONDS", 30),
        sync_execution_timeout_seconds=_get_float("SYNC_EXECUTION_TIMEOUT_SECONDS", 30),
        queue_max_attempts=_get_int("QUEUE_MAX_ATTEMPTS", 3),
        queue_backoff_seconds=_get_float("QUEUE_BACKOFF_SECONDS", 2.0),
        queue_workers=_get_int("QUEUE_WORKERS", 2),
        domain_allowlist=_get_list("PIPE_DOMAIN_ALLOWLIST"),
    )
