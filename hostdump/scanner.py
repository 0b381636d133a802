# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
hostdump File Enumerator - Produce the candidate file list for a backup.

Candidates are regular files and symbolic links under the configured
roots that stay on the root's filesystem and, for non-full backups, were
modified within the selection window. Local hosts are walked in-process;
remote hosts run find(1) through an executor.

The per-run staging area also lives here: raw lists are kept there for
diagnostics and the directory is released whether or not the run succeeds.
"""

import asyncio
import os
import shutil
import stat
import time
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, List, Sequence

import aiofiles
import structlog

from hostdump.exceptions import ConfigurationError, EnumerationError, ExecutorError
from hostdump.executor import RemoteExecutor
from hostdump.window import SelectionWindow

logger = structlog.get_logger()

# Thread pool for blocking directory walks
_executor = ThreadPoolExecutor(max_workers=2)

SECONDS_PER_DAY = 24 * 60 * 60

KIND_FILE = "file"
KIND_SYMLINK = "symlink"


@dataclass(frozen=True)
class CandidateFile:
    """A file selected by enumeration."""

    path: str  # Absolute path
    kind: str  # KIND_FILE or KIND_SYMLINK


def _validate_roots(roots: Sequence[str]) -> None:
    if not roots:
        raise ConfigurationError("At least one root directory is required")
    relative = [r for r in roots if not os.path.isabs(r)]
    if relative:
        raise ConfigurationError(
            "Root directories must be absolute",
            details={"roots": relative},
        )


def _is_within_roots(path: str, roots: Sequence[str]) -> bool:
    for root in roots:
        root = root.rstrip("/") or "/"
        if path == root:
            return True
        prefix = root if root.endswith("/") else root + "/"
        if path.startswith(prefix):
            return True
    return False


def _is_recent(mtime: float, window: SelectionWindow, now: float) -> bool:
    """find -mtime -N: modified less than N*24h ago."""
    if window.unbounded:
        return True
    return now - mtime < window.max_age_days * SECONDS_PER_DAY


def _classify(mode: int) -> str | None:
    if stat.S_ISREG(mode):
        return KIND_FILE
    if stat.S_ISLNK(mode):
        return KIND_SYMLINK
    return None


def walk_local(
    roots: Sequence[str],
    window: SelectionWindow,
    now: float | None = None,
) -> List[CandidateFile]:
    """
    Walk local roots and return qualifying files.

    Symlinks are never followed and directories on another device than
    their root are not entered (find -xdev). Only regular files and
    symlinks are returned.

    Args:
        roots: Absolute root directories
        window: Selection window
        now: Reference time for age checks (default: current time)

    Returns:
        Candidates in walk order

    Raises:
        EnumerationError: If a root is missing or a directory is unreadable
    """
    _validate_roots(roots)
    now = time.time() if now is None else now
    candidates: List[CandidateFile] = []

    for root in roots:
        try:
            root_stat = os.lstat(root)
        except OSError as e:
            raise EnumerationError(
                f"Cannot access root {root}: {e.strerror}",
                details={"root": root},
            ) from e

        kind = _classify(root_stat.st_mode)
        if kind is not None:
            if _is_recent(root_stat.st_mtime, window, now):
                candidates.append(CandidateFile(path=root, kind=kind))
            continue
        if not stat.S_ISDIR(root_stat.st_mode):
            continue

        root_dev = root_stat.st_dev
        pending = [root]
        while pending:
            directory = pending.pop()
            try:
                with os.scandir(directory) as entries:
                    for entry in sorted(entries, key=lambda e: e.name):
                        try:
                            entry_stat = entry.stat(follow_symlinks=False)
                        except FileNotFoundError:
                            # Removed while walking
                            continue
                        if stat.S_ISDIR(entry_stat.st_mode):
                            if entry_stat.st_dev == root_dev:
                                pending.append(entry.path)
                            continue
                        kind = _classify(entry_stat.st_mode)
                        if kind is None:
                            continue
                        if _is_recent(entry_stat.st_mtime, window, now):
                            candidates.append(CandidateFile(path=entry.path, kind=kind))
            except OSError as e:
                raise EnumerationError(
                    f"Cannot read directory {directory}: {e.strerror}",
                    details={"directory": directory, "root": root},
                ) from e

    return candidates


def build_find_command(roots: Sequence[str], window: SelectionWindow) -> List[str]:
    """
    Build the find(1) invocation for a remote enumeration.

    Output is NUL-separated so any byte sequence in a path survives.
    """
    _validate_roots(roots)
    command = [
        "find",
        *roots,
        "-xdev",
        "(", "-type", "f", "-o", "-type", "l", ")",
    ]
    if not window.unbounded:
        # find cannot express a negative age; "-0" matches nothing, as
        # does a non-positive window in walk_local
        command += ["-mtime", f"-{max(window.max_age_days, 0)}"]
    command.append("-print0")
    return command


def parse_find_output(raw: bytes) -> List[str]:
    """Split NUL-separated find output into paths."""
    return [os.fsdecode(chunk) for chunk in raw.split(b"\0") if chunk]


async def enumerate_files(
    roots: Sequence[str],
    window: SelectionWindow,
    *,
    executor: RemoteExecutor | None = None,
    now: float | None = None,
) -> List[str]:
    """
    Produce the candidate file list for a backup.

    Args:
        roots: Absolute root directories
        window: Selection window
        executor: Executor for remote hosts; None walks the local filesystem
        now: Reference time for local age checks

    Returns:
        Absolute paths in enumeration order

    Raises:
        ConfigurationError: If a root is not absolute
        EnumerationError: If the target is unreachable or traversal fails
    """
    _validate_roots(roots)

    if executor is None:
        loop = asyncio.get_running_loop()
        candidates = await loop.run_in_executor(_executor, walk_local, roots, window, now)
        paths = [c.path for c in candidates]
        host = "localhost"
    else:
        host = executor.host
        try:
            raw = await executor.run(build_find_command(roots, window))
        except ExecutorError as e:
            raise EnumerationError(
                f"File enumeration failed on {host}: {e.message}",
                details={"host": host, "roots": list(roots), **e.details},
            ) from e
        paths = parse_find_output(raw)

    selected = [p for p in paths if _is_within_roots(p, roots)]
    if len(selected) != len(paths):
        logger.warning(
            "paths_outside_roots_dropped",
            host=host,
            dropped=len(paths) - len(selected),
        )

    logger.info(
        "files_enumerated",
        host=host,
        roots=list(roots),
        count=len(selected),
        max_age_days=window.max_age_days,
    )
    return selected


@asynccontextmanager
async def staging_area(
    staging_dir: Path,
    run_id: str,
    keep: bool = False,
) -> AsyncIterator[Path]:
    """
    Provide a scratch directory for one run.

    The directory is removed on exit, success or failure, unless keep is
    set. Nothing in it is ever used as the final file list.
    """
    path = staging_dir / run_id
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise EnumerationError(
            f"Cannot create staging directory {path}: {e}",
            details={"staging": str(path)},
        ) from e
    try:
        yield path
    finally:
        if keep:
            logger.info("staging_kept", path=str(path))
        else:
            shutil.rmtree(path, ignore_errors=True)


async def write_path_list(path: Path, paths: Sequence[str]) -> Path:
    """
    Write a newline-separated path list atomically (temp file, then rename).

    Raises:
        OSError: If the list cannot be written; callers map it to the
            error of the step they are in
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.with_name(path.name + ".tmp")

    try:
        async with aiofiles.open(temp_path, "w", encoding="utf-8", errors="surrogateescape") as f:
            for entry in paths:
                await f.write(entry + "\n")
        temp_path.replace(path)
    except OSError:
        if temp_path.is_file():
            temp_path.unlink()
        raise
    return path
