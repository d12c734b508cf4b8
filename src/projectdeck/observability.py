from __future__ import annotations

import json
import logging
import os
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Optional

if TYPE_CHECKING:
    from .config_schema import LoggingConfig


LOGGER_NAME = "projectdeck"

# Environment variables for configuration
ENV_LOG_DIR = "PROJECTDECK_LOG_DIR"
ENV_LOG_LEVEL = "PROJECTDECK_LOG_LEVEL"
ENV_LOG_MAX_BYTES = "PROJECTDECK_LOG_MAX_BYTES"
ENV_LOG_BACKUP_COUNT = "PROJECTDECK_LOG_BACKUP_COUNT"
ENV_LOG_DISABLE_FILE = "PROJECTDECK_LOG_DISABLE_FILE"

# Defaults
DEFAULT_LOG_DIR = Path.home() / ".projectdeck" / "logs"
DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_MAX_BYTES = 10 * 1024 * 1024  # 10 MB
DEFAULT_BACKUP_COUNT = 5

_logger_initialized = False
_session_start: Optional[str] = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _get_log_level() -> int:
    """Get log level from environment, defaulting to INFO."""
    level_name = os.getenv(ENV_LOG_LEVEL, DEFAULT_LOG_LEVEL).upper()
    return getattr(logging, level_name, logging.INFO)


def _get_log_file_path() -> Optional[Path]:
    """Get the log file path, creating directories if needed.

    Returns None if file logging is disabled via PROJECTDECK_LOG_DISABLE_FILE=1.
    """
    global _session_start
    if os.getenv(ENV_LOG_DISABLE_FILE, "").lower() in ("1", "true", "yes"):
        return None

    log_dir = Path(os.getenv(ENV_LOG_DIR, DEFAULT_LOG_DIR))
    log_dir.mkdir(parents=True, exist_ok=True)

    if _session_start is None:
        _session_start = _utcnow().strftime("%Y-%m-%d_%H%M%S")

    # Session-based filename: projectdeck_2024-01-15_143022.log
    return log_dir / f"projectdeck_{_session_start}.log"


def configure_logging(config: "LoggingConfig") -> None:
    """Seed logging env vars from a config section.

    Explicit environment variables win over the config file, so values are
    only applied when the variable is unset. Must run before the first log
    call to take effect.
    """
    defaults = {
        ENV_LOG_LEVEL: config.level,
        ENV_LOG_MAX_BYTES: str(config.max_bytes),
        ENV_LOG_BACKUP_COUNT: str(config.backup_count),
    }
    if config.dir:
        defaults[ENV_LOG_DIR] = str(Path(config.dir).expanduser())
    if config.disable_file:
        defaults[ENV_LOG_DISABLE_FILE] = "1"
    for key, value in defaults.items():
        os.environ.setdefault(key, value)


def _get_logger() -> logging.Logger:
    """Get or initialize the projectdeck logger.

    By default, logs to ~/.projectdeck/logs/projectdeck_<session>.log

    Configuration via environment variables:
    - PROJECTDECK_LOG_DIR: Directory for log files (default: ~/.projectdeck/logs/)
    - PROJECTDECK_LOG_LEVEL: DEBUG, INFO, WARNING, ERROR (default: INFO)
    - PROJECTDECK_LOG_MAX_BYTES: Max log file size before rotation (default: 10MB)
    - PROJECTDECK_LOG_BACKUP_COUNT: Number of backup files to keep (default: 5)
    - PROJECTDECK_LOG_DISABLE_FILE: Set to 1 to disable file logging (stderr only)
    """
    global _logger_initialized
    logger = logging.getLogger(LOGGER_NAME)

    if not _logger_initialized:
        _logger_initialized = True
        logger.handlers.clear()

        log_level = _get_log_level()
        logger.setLevel(log_level)

        formatter = logging.Formatter(
            "[%(levelname)s %(asctime)s] %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S"
        )

        log_file = _get_log_file_path()
        if log_file:
            max_bytes = int(os.getenv(ENV_LOG_MAX_BYTES, DEFAULT_MAX_BYTES))
            backup_count = int(os.getenv(ENV_LOG_BACKUP_COUNT, DEFAULT_BACKUP_COUNT))

            file_handler = RotatingFileHandler(
                str(log_file),
                maxBytes=max_bytes,
                backupCount=backup_count,
            )
            file_handler.setFormatter(formatter)
            file_handler.setLevel(log_level)
            logger.addHandler(file_handler)

        # stderr only gets warnings and above
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(formatter)
        stream_handler.setLevel(max(log_level, logging.WARNING))
        logger.addHandler(stream_handler)

    return logger


def _with_fields(message: str, fields: Dict[str, Any]) -> str:
    if not fields:
        return message
    field_str = json.dumps(fields, separators=(",", ":"), sort_keys=True, default=str)
    return f"{message} {field_str}"


def log_action(
    action: str,
    *,
    outcome: str = "ok",
    duration_ms: Optional[float] = None,
    project_id: Optional[str] = None,
    **fields: Any,
) -> None:
    """Emit a structured log line for an action.

    Fields are serialized to JSON. Keep the schema lightweight.

    Args:
        action: Name of the action being logged
        outcome: Result status ("ok", "error", "stale", ...)
        duration_ms: How long the action took in milliseconds
        project_id: Project the action ran against, if any
        **fields: Additional fields to include
    """
    payload: Dict[str, Any] = {
        "ts": _utcnow().isoformat().replace("+00:00", "Z"),
        "action": action,
        "outcome": outcome,
    }
    if duration_ms is not None:
        payload["duration_ms"] = round(duration_ms, 2)
    if project_id is not None:
        payload["project"] = project_id
    if fields:
        payload.update(fields)

    _get_logger().info(json.dumps(payload, separators=(",", ":"), sort_keys=True, default=str))


def log_debug(message: str, **fields: Any) -> None:
    """Log a debug message with optional structured fields.

    Only emitted when log level is DEBUG.
    """
    logger = _get_logger()
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(_with_fields(message, fields))


def log_warning(message: str, **fields: Any) -> None:
    """Log a warning message with optional structured fields."""
    _get_logger().warning(_with_fields(message, fields))


def log_error(message: str, **fields: Any) -> None:
    """Log an error message with optional structured fields."""
    _get_logger().error(_with_fields(message, fields))


@contextmanager
def timeit(
    action: str,
    *,
    project_id: Optional[str] = None,
    **fields: Any,
):
    """Time a block and emit a structured log on exit.

    On exception, logs outcome="error" and re-raises. The yielded dict can be
    updated by the block; its contents are merged into the log line.
    """
    start = time.perf_counter()
    result_info: Dict[str, Any] = {}
    try:
        yield result_info
    except Exception:
        duration_ms = (time.perf_counter() - start) * 1000.0
        log_action(
            action,
            outcome="error",
            duration_ms=duration_ms,
            project_id=project_id,
            **fields,
        )
        raise
    duration_ms = (time.perf_counter() - start) * 1000.0
    log_action(
        action,
        outcome=result_info.pop("outcome", "ok"),
        duration_ms=duration_ms,
        project_id=project_id,
        **{**fields, **result_info},
    )
