"""
Logging configuration for SyncRay

Provides JSON-formatted or colored console logging with contextual
information passed through ``extra``.

Usage:
    import logging
    from syncray.utils.logging import configure_from_env

    configure_from_env(log_file="logs/syncray.log")

    logger = logging.getLogger(__name__)
    logger.info("Applying changes", extra={"table_name": "users", "inserts": 3})
"""

from .config import configure_from_env, setup_logging, shutdown_logging
from .formatters import ConsoleFormatter, JSONFormatter

__all__ = [
    "setup_logging",
    "configure_from_env",
    "shutdown_logging",
    "JSONFormatter",
    "ConsoleFormatter",
]
