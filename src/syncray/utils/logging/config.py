"""
Logging setup for SyncRay runs.

Every module logs through ``logging.getLogger(__name__)``; this module
attaches the handlers once per process. Console output goes to stderr so
reports printed on stdout stay clean. Options not given on the command line
fall back to the ``LOG_*`` environment variables.
"""

import logging
import logging.handlers
import os
import sys

from .formatters import ConsoleFormatter, JSONFormatter

PLAIN_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# Exporter and transport loggers that flood DEBUG output
QUIET_LOGGERS = ("urllib3", "grpc", "opentelemetry")

TRUE_VALUES = ("true", "1", "yes", "on")


def _make_formatter(json_format: bool, app_name: str, console: bool) -> logging.Formatter:
    if json_format:
        return JSONFormatter(app_name=app_name)
    if console:
        return ConsoleFormatter(use_colors=True)
    return logging.Formatter(fmt=PLAIN_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in TRUE_VALUES


def setup_logging(
    level: str = "INFO",
    log_file: str | None = None,
    console_output: bool = True,
    json_format: bool = False,
    app_name: str = "syncray",
    max_bytes: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 5,
) -> None:
    """
    Route all SyncRay loggers through the root logger.

    Args:
        level: Log level name; unknown names fall back to INFO
        log_file: Rotating log file (parent directories are created)
        console_output: Log to stderr
        json_format: JSON lines instead of plain text, on every handler
        app_name: ``app`` field of JSON records
        max_bytes: Size at which the log file is rotated
        backup_count: Rotated files kept
    """
    numeric_level = getattr(logging, level.upper(), None)
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()

    handlers: list[logging.Handler] = []
    if console_output:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(_make_formatter(json_format, app_name, console=True))
        handlers.append(console_handler)

    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            filename=log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(_make_formatter(json_format, app_name, console=False))
        handlers.append(file_handler)

    for handler in handlers:
        handler.setLevel(numeric_level)
        root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    logging.getLogger(__name__).debug(
        f"Logging initialized: level={logging.getLevelName(numeric_level)}, "
        f"file={log_file or 'none'}, console={console_output}, json={json_format}"
    )


def shutdown_logging() -> None:
    """Close and detach all root handlers, releasing the log file."""
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        handler.close()
        root_logger.removeHandler(handler)


def configure_from_env(
    level: str | None = None,
    log_file: str | None = None,
    json_format: bool | None = None,
    console_output: bool | None = None,
) -> None:
    """
    Configure logging, filling unset options from the environment.

    Environment variables:
        LOG_LEVEL: Log level (default: INFO)
        LOG_FILE: Log file path (default: none)
        LOG_JSON: Use JSON format (default: false)
        LOG_CONSOLE: Enable console output (default: true)

    Example:
        >>> configure_from_env(level=args.log_level)  # --log-level beats LOG_LEVEL
    """
    setup_logging(
        level=level or os.getenv("LOG_LEVEL") or "INFO",
        log_file=log_file or os.getenv("LOG_FILE") or None,
        console_output=(
            console_output if console_output is not None else _env_flag("LOG_CONSOLE", True)
        ),
        json_format=json_format if json_format is not None else _env_flag("LOG_JSON", False),
    )
