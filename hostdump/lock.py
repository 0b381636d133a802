# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
hostdump Run Lock - One run per host, backup key and type at a time.
"""

import fcntl
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

import structlog

from hostdump.config import BackupType
from hostdump.exceptions import RunLockedError

logger = structlog.get_logger()


@asynccontextmanager
async def run_lock(
    lock_dir: Path,
    host: str,
    key: str,
    backup_type: BackupType,
) -> AsyncIterator[Path]:
    """
    Hold an exclusive, non-blocking lock for (host, key, backup_type).

    The lock is an flock(2) on "<lock_dir>/<host>.<key>.<type>.lock" and is
    released when the process exits, even after a crash.

    Raises:
        RunLockedError: If another run holds the lock
    """
    lock_dir.mkdir(parents=True, exist_ok=True)
    lock_path = lock_dir / f"{host}.{key}.{backup_type.value}.lock"

    handle = open(lock_path, "a+")
    try:
        fcntl.flock(handle, fcntl.LOCK_EX | fcntl.LOCK_NB)
    except BlockingIOError:
        handle.close()
        raise RunLockedError(
            f"Another {backup_type.value} backup of {key!r} on {host} is running",
            details={
                "host": host,
                "key": key,
                "backup_type": backup_type.value,
                "lock_path": str(lock_path),
            },
        ) from None

    try:
        handle.seek(0)
        handle.truncate()
        handle.write(f"{os.getpid()}\n")
        handle.flush()
        logger.debug("run_lock_acquired", lock_path=str(lock_path))
        yield lock_path
    finally:
        fcntl.flock(handle, fcntl.LOCK_UN)
        handle.close()
        logger.debug("run_lock_released", lock_path=str(lock_path))
