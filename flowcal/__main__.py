"""Command-line entry for flowcal."""

from __future__ import annotations

import argparse
import sys
from typing import NoReturn

from . import run_server


def _create_parser() -> argparse.ArgumentParser:
    """Create argument parser for the flowcal CLI.

    Returns:
        Configured argument parser
    """
    parser = argparse.ArgumentParser(
        prog="flowcal",
        description="FlowCal - calendar aggregation server for tasks, habits and external feeds",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m flowcal                              # Start server on default port (8080)
  python -m flowcal --port 3000                  # Start server on port 3000
  python -m flowcal --data-file data/demo.json   # Seed the in-memory store
        """,
    )

    parser.add_argument(
        "--port",
        type=int,
        metavar="PORT",
        help="Port number for the web server (default: 8080, or from FLOWCAL_WEB_PORT env var)",
    )
    parser.add_argument(
        "--host",
        metavar="HOST",
        help="Interface to bind (default: 0.0.0.0, or from FLOWCAL_WEB_HOST env var)",
    )
    parser.add_argument(
        "--data-file",
        metavar="PATH",
        help="JSON file seeding tasks, habits and subscriptions (or FLOWCAL_DATA_FILE)",
    )
    parser.add_argument(
        "--env-file",
        metavar="PATH",
        help="Path to a .env file (default: .env in the working directory)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )

    return parser


def main() -> NoReturn:
    """Run the flowcal CLI."""
    parser = _create_parser()
    args = parser.parse_args()

    try:
        run_server(args)
    except KeyboardInterrupt:
        sys.exit(130)
    except OSError as exc:
        print(f"flowcal: server could not start: {exc}", file=sys.stderr)
        sys.exit(1)
    sys.exit(0)


if __name__ == "__main__":
    main()
