"""
Command-line interface for SyncRay.

Available modes:
- export: Write source tables to snapshot files
- import: Apply snapshot files to a target database
- sync: Apply source tables directly to a target database
- analyze: Report duplicate match keys
- validate: Check sync rules against the schemas
"""

import os
import sys

from syncray.utils.logging import configure_from_env, shutdown_logging
from syncray.utils.metrics import default_metrics
from syncray.utils.tracing import initialize_tracing, shutdown_tracing

from .commands import (
    cmd_analyze,
    cmd_export,
    cmd_import,
    cmd_sync,
    cmd_validate,
    prompt_confirm,
    run_command,
)
from .parser import create_parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the syncray CLI"""
    parser = create_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    configure_from_env(
        level=args.log_level,
        log_file=args.log_file,
        json_format=args.log_json,
    )

    otlp_endpoint = os.getenv("OTLP_ENDPOINT")
    if args.trace or otlp_endpoint:
        initialize_tracing(otlp_endpoint=otlp_endpoint, console_export=args.trace)

    try:
        return run_command(args)
    finally:
        if args.metrics_file:
            default_metrics().write_textfile(args.metrics_file)
        shutdown_tracing()
        shutdown_logging()


__all__ = [
    "main",
    "create_parser",
    "run_command",
    "prompt_confirm",
    "cmd_export",
    "cmd_import",
    "cmd_sync",
    "cmd_analyze",
    "cmd_validate",
]


if __name__ == "__main__":
    sys.exit(main())
