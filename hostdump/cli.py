# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
hostdump command line entry point.

Configuration comes from HOSTDUMP_* environment variables (see
hostdump.env). Usage:

    hostdump run KEY TYPE
    hostdump status [KEY]
    hostdump reindex KEY TYPE YYYY-MM-DD
"""

import argparse
import asyncio
import sys
from datetime import date
from typing import List

import structlog

from hostdump.core import get_run_status, rebuild_index, run_backup
from hostdump.env import create_config_from_env
from hostdump.exceptions import (
    ArchiveError,
    ConfigurationError,
    EnumerationError,
    HostDumpError,
    IndexBuildError,
    RunLockedError,
    StateError,
)

logger = structlog.get_logger()

EXIT_OK = 0
EXIT_CONFIGURATION = 2
EXIT_ENUMERATION = 3
EXIT_ARCHIVE = 4
EXIT_INDEX = 5
EXIT_STATE = 6
EXIT_LOCKED = 7

_EXIT_CODES = [
    (ConfigurationError, EXIT_CONFIGURATION),
    (EnumerationError, EXIT_ENUMERATION),
    (ArchiveError, EXIT_ARCHIVE),
    (IndexBuildError, EXIT_INDEX),
    (StateError, EXIT_STATE),
    (RunLockedError, EXIT_LOCKED),
]


def exit_code_for(error: HostDumpError) -> int:
    for error_type, code in _EXIT_CODES:
        if isinstance(error, error_type):
            return code
    return 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="hostdump",
        description="Full, differential and incremental backups of host directories.",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    run = commands.add_parser("run", help="back up one key")
    run.add_argument("key")
    run.add_argument("backup_type", metavar="TYPE", help="full, diff or incr")

    status = commands.add_parser("status", help="show last run dates")
    status.add_argument("key", nargs="?")

    reindex = commands.add_parser("reindex", help="rebuild the index of an existing archive")
    reindex.add_argument("key")
    reindex.add_argument("backup_type", metavar="TYPE")
    reindex.add_argument("run_date", type=date.fromisoformat, metavar="DATE")
    reindex.add_argument(
        "--no-advance",
        action="store_true",
        help="do not advance run state after a successful rebuild",
    )

    return parser


async def _dispatch(args: argparse.Namespace) -> int:
    config = create_config_from_env()

    if args.command == "run":
        result = await run_backup(config, args.key, args.backup_type)
        print(result.record.archive_path)
    elif args.command == "status":
        for record in await get_run_status(config, args.key):
            print(
                f"{record['backup_key']}\t{record['backup_type']}\t"
                f"{record['last_run_date'] or '-'}\t{record['last_run_day']}\t"
                f"{record['archive_name'] or '-'}"
            )
    elif args.command == "reindex":
        record = await rebuild_index(
            config,
            args.key,
            args.backup_type,
            args.run_date,
            advance_state=not args.no_advance,
        )
        print(record.index_path)
    return EXIT_OK


def main(argv: List[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return asyncio.run(_dispatch(args))
    except HostDumpError as e:
        logger.error("hostdump_failed", command=args.command, error=str(e))
        print(f"hostdump: {e}", file=sys.stderr)
        return exit_code_for(e)
    except KeyboardInterrupt:
        print("hostdump: interrupted, run state unchanged", file=sys.stderr)
        return 130


if __name__ == "__main__":
    sys.exit(main())
