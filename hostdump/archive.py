# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
hostdump Archive & Index Builder - Write the archive and its index.

Archives are tar streams, compressed with zstd by default. Local hosts are
archived in-process with tarfile; remote hosts run tar(1) through the
executor and stream the archive back, so nothing is staged on the remote
side. The index is read back from the finished archive, not from the file
list, so it records what was actually stored.
"""

import asyncio
import os
import tarfile
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import BinaryIO, Iterator, List, Protocol, Sequence

import aiofiles
import structlog
import zstandard as zstd

from hostdump.config import BackupType
from hostdump.exceptions import ArchiveError, ExecutorError, IndexBuildError
from hostdump.executor import RemoteExecutor

logger = structlog.get_logger()

# Thread pool for blocking tar work
_executor = ThreadPoolExecutor(max_workers=2)

DEFAULT_ZSTD_LEVEL = 3
ZSTD_SUFFIX = ".tar.zst"
TAR_SUFFIX = ".tar"

# GNU tar: some files changed or vanished while being read
TAR_FILES_CHANGED_STATUS = 1


@dataclass
class ArchiveRecord:
    """An archive produced by a run, and its index."""

    name: str
    host: str
    key: str
    backup_type: BackupType
    run_date: date
    archive_path: Path
    index_path: Path
    file_list_path: Path | None
    members: List[str] = field(default_factory=list)


def archive_name(run_date: date, host: str, key: str, backup_type: BackupType | str) -> str:
    """Deterministic archive name: YYYYMMDD-host-key-type."""
    backup_type = BackupType.parse(backup_type)
    return f"{run_date:%Y%m%d}-{host}-{key}-{backup_type.value}"


class Archiver(Protocol):
    """Protocol for archive codecs."""

    suffix: str

    async def create(
        self,
        file_list: Sequence[str],
        base_dir: str,
        destination: Path,
    ) -> Path:
        """Create an archive whose members are exactly file_list."""
        ...

    async def list(self, archive_path: Path) -> List[str]:
        """Return the member names of an archive."""
        ...


class TarArchiver:
    """
    tar archiver with optional zstd compression.

    Args:
        executor: Executor for remote hosts; None archives local files
        compress: Compress with zstd
        zstd_level: zstd compression level (1-22)
    """

    def __init__(
        self,
        executor: RemoteExecutor | None = None,
        compress: bool = True,
        zstd_level: int = DEFAULT_ZSTD_LEVEL,
    ):
        self.executor = executor
        self.compress = compress
        self.zstd_level = zstd_level

    @property
    def suffix(self) -> str:
        return ZSTD_SUFFIX if self.compress else TAR_SUFFIX

    @contextmanager
    def _open_sink(self, path: Path) -> Iterator[BinaryIO]:
        with open(path, "wb") as raw:
            if not self.compress:
                yield raw
                return
            cctx = zstd.ZstdCompressor(level=self.zstd_level)
            with cctx.stream_writer(raw) as writer:
                yield writer

    async def create(
        self,
        file_list: Sequence[str],
        base_dir: str,
        destination: Path,
    ) -> Path:
        """
        Create the archive at destination.

        Data is written to "<destination>.part" and renamed when complete;
        the part file is removed if anything goes wrong, including
        cancellation.
        """
        part_path = destination.with_name(destination.name + ".part")
        try:
            if self.executor is None or not file_list:
                loop = asyncio.get_running_loop()
                await loop.run_in_executor(
                    _executor, self._create_local, list(file_list), base_dir, part_path
                )
            else:
                await self._create_remote(list(file_list), base_dir, part_path)
            part_path.replace(destination)
        except BaseException:
            part_path.unlink(missing_ok=True)
            raise
        return destination

    def _create_local(self, file_list: List[str], base_dir: str, part_path: Path) -> None:
        vanished = 0
        with self._open_sink(part_path) as sink:
            with tarfile.open(fileobj=sink, mode="w|", format=tarfile.PAX_FORMAT) as tar:
                for member in file_list:
                    source = os.path.join(base_dir, member)
                    try:
                        tar.add(source, arcname=member, recursive=False)
                    except FileNotFoundError:
                        vanished += 1
                        logger.warning("file_vanished", path=source)
        if vanished:
            logger.warning("archive_incomplete", vanished=vanished, path=str(part_path))

    async def _create_remote(self, file_list: List[str], base_dir: str, part_path: Path) -> None:
        assert self.executor is not None
        stdin = b"".join(os.fsencode(p) + b"\0" for p in file_list)
        command = [
            "tar", "--null", "--no-recursion",
            "-C", base_dir,
            "-T", "-",
            "-cf", "-",
        ]
        with self._open_sink(part_path) as sink:
            returncode = await self.executor.stream(
                command,
                sink,
                stdin=stdin,
                ok_returncodes=(0, TAR_FILES_CHANGED_STATUS),
            )
        if returncode == TAR_FILES_CHANGED_STATUS:
            logger.warning("archive_files_changed", host=self.executor.host, path=str(part_path))

    async def list(self, archive_path: Path) -> List[str]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(_executor, self._list_sync, archive_path)

    def _list_sync(self, archive_path: Path) -> List[str]:
        with open(archive_path, "rb") as raw:
            if archive_path.name.endswith(".zst"):
                dctx = zstd.ZstdDecompressor()
                with dctx.stream_reader(raw) as reader:
                    with tarfile.open(fileobj=reader, mode="r|") as tar:
                        return [member.name for member in tar]
            with tarfile.open(fileobj=raw, mode="r|") as tar:
                return [member.name for member in tar]


async def create_archive(
    archiver: Archiver,
    file_list: Sequence[str],
    base_dir: str,
    destination: Path,
) -> Path:
    """
    Create an archive from the final file list.

    Args:
        archiver: Archive codec
        file_list: Relative member paths
        base_dir: Directory the paths are relative to ("/" for host backups)
        destination: Archive path

    Returns:
        Path to the created archive

    Raises:
        ArchiveError: If the archive exists already or cannot be created
    """
    if destination.exists():
        raise ArchiveError(
            f"Archive already exists: {destination}",
            details={"archive_path": str(destination)},
        )

    destination.parent.mkdir(parents=True, exist_ok=True)

    try:
        await archiver.create(file_list, base_dir, destination)
    except ExecutorError as e:
        raise ArchiveError(
            f"Archive creation failed: {e.message}",
            details={"archive_path": str(destination), **e.details},
        ) from e
    except ArchiveError:
        raise
    except Exception as e:
        raise ArchiveError(
            f"Archive creation failed: {e}",
            details={"archive_path": str(destination)},
        ) from e

    logger.info(
        "archive_created",
        archive_path=str(destination),
        members=len(file_list),
        size=destination.stat().st_size,
    )
    return destination


async def build_index(archiver: Archiver, archive_path: Path) -> List[str]:
    """
    List an archive's members as a sorted, de-duplicated index.

    Absolute member names are left out.

    Raises:
        IndexBuildError: If the archive cannot be listed
    """
    try:
        members = await archiver.list(archive_path)
    except Exception as e:
        raise IndexBuildError(
            f"Failed to list archive contents: {e}",
            details={"archive_path": str(archive_path)},
        ) from e

    return sorted({m for m in members if m and not m.startswith("/")})


async def write_index(index: Sequence[str], index_path: Path) -> Path:
    """
    Write an index file atomically (temp file, then rename).

    Raises:
        IndexBuildError: If the file cannot be written
    """
    temp_path = index_path.with_name(index_path.name + ".tmp")
    try:
        async with aiofiles.open(temp_path, "w", encoding="utf-8", errors="surrogateescape") as f:
            await f.write("".join(f"{entry}\n" for entry in index))
        temp_path.replace(index_path)
    except OSError as e:
        if temp_path.is_file():
            temp_path.unlink()
        raise IndexBuildError(
            f"Failed to write index: {e}",
            details={"index_path": str(index_path)},
        ) from e

    logger.info("index_written", index_path=str(index_path), entries=len(index))
    return index_path
