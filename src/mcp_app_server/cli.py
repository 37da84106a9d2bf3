#!/usr/bin/env python3
"""Goal runner CLI.

Usage:
    mgmtcraft-goal add-resource datasource.yaml [--server local] [--dry-run]
    mgmtcraft-goal execute-commands setup.yaml --server local

Environment variables:
    MGMTCRAFT_SERVERS     Path to servers.yaml
    MGMTCRAFT_AUDIT_LOG   Append one JSON audit line per run
    WILDFLY_PASSWORD      Default management password
"""
import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path
from typing import Optional

from .config.inventory import ServerInventory
from .config_engine import GOALS, ConfigurationError
from .goals import GoalHarness
from .utils.logging_config import setup_logging

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mgmtcraft-goal",
        description="Run a management goal against an application server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Preview the operations of a resource spec
    mgmtcraft-goal add-resource datasource.yaml --dry-run

    # Run commands and scripts on a specific server
    mgmtcraft-goal execute-commands setup.yaml --server local
""",
    )
    parser.add_argument("goal", choices=GOALS, help="Goal to run")
    parser.add_argument("spec", type=Path, help="Goal configuration (YAML)")
    parser.add_argument(
        "--server",
        type=str,
        help="Server ID from servers.yaml (overrides the goal file's 'server')",
    )
    parser.add_argument(
        "--servers-file",
        type=str,
        default=os.environ.get("MGMTCRAFT_SERVERS"),
        help="Path to servers.yaml",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be sent without changing anything",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the result as JSON",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point; returns 0 on success, 1 on failure."""
    args = build_parser().parse_args(argv)

    if args.verbose:
        os.environ["MGMTCRAFT_LOG_LEVEL"] = "DEBUG"
    setup_logging()

    try:
        harness = GoalHarness(
            ServerInventory(args.servers_file),
            audit_log_path=os.environ.get("MGMTCRAFT_AUDIT_LOG"),
        )
        instance = harness.configure(
            args.goal,
            args.spec,
            server_id=args.server,
            dry_run=args.dry_run,
        )
    except (ConfigurationError, FileNotFoundError) as e:
        logger.error(str(e))
        return 1

    try:
        result = asyncio.run(harness.execute(instance))
    except KeyboardInterrupt:
        logger.warning("Goal interrupted by user")
        return 130

    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
    else:
        prefix = "[DRY-RUN] " if result.dry_run else ""
        print(f"{prefix}{result.goal}: {'SUCCESS' if result.success else 'FAILED'}")
        for line in result.operations_executed if result.dry_run else result.changes_made:
            print(f"  {line}")
        for warning in result.warnings:
            print(f"  Warning: {warning}")
        if result.error:
            print(f"  Error: {result.error}")
            if result.failed_step is not None:
                print(f"  Failed step: {result.failed_step}")

    return 0 if result.success else 1


if __name__ == "__main__":
    sys.exit(main())
