# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
hostdump Core - Run a backup of one key on one host.

A run is strictly sequential:
1. Read run state and compute the selection window
2. Enumerate candidate files
3. Normalize and filter them
4. Create the archive
5. Build the index from the archive
6. Advance run state

State is only advanced after steps 4 and 5 both succeed. A failure or a
cancellation anywhere earlier leaves the store exactly as it was.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, UTC
from pathlib import Path
from typing import List

import aiosqlite
import structlog
from ulid import ULID

from hostdump.archive import (
    ArchiveRecord,
    Archiver,
    TarArchiver,
    archive_name,
    build_index,
    create_archive,
    write_index,
)
from hostdump.config import BackupType, DumpConfig
from hostdump.exceptions import ArchiveError, EnumerationError, IndexBuildError
from hostdump.executor import RemoteExecutor, get_executor
from hostdump.filters import FilterRegistry, apply_filter_pipeline, registry_from_config
from hostdump.lock import run_lock
from hostdump.scanner import enumerate_files, staging_area, write_path_list
from hostdump.state import (
    RunStateRecord,
    get_last_run_date,
    get_last_runs,
    init_state_db,
    list_run_state,
    set_last_run,
)
from hostdump.window import LastRuns, SelectionWindow, compute_window

logger = structlog.get_logger()

# Archives are rooted at the filesystem root so members are stored relative
ARCHIVE_BASE_DIR = "/"


@dataclass(frozen=True)
class RunContext:
    """Everything a run decides up front, computed once and passed along."""

    run_id: str  # ULID
    host: str
    key: str
    backup_type: BackupType
    today: date
    last_runs: LastRuns
    window: SelectionWindow
    archive_name: str
    roots: List[str] = field(default_factory=list)


@dataclass
class BackupResult:
    """Result of a backup run."""

    run_id: str
    host: str
    key: str
    backup_type: str
    max_age_days: int | None
    candidates: int
    selected: int
    record: ArchiveRecord
    duration_seconds: float


def _default_archiver(config: DumpConfig, executor: RemoteExecutor | None) -> TarArchiver:
    return TarArchiver(
        executor=executor,
        compress=config.compress,
        zstd_level=config.zstd_level,
    )


async def prepare_run(
    config: DumpConfig,
    key: str,
    backup_type: BackupType | str,
    *,
    registry: FilterRegistry,
    today: date | None = None,
) -> RunContext:
    """
    Validate a run and compute its context.

    Configuration problems are reported before anything is touched.

    Args:
        config: hostdump configuration
        key: Backup key
        backup_type: Backup type
        registry: Filter registry
        today: Run date (default: today, UTC)

    Returns:
        RunContext for the run

    Raises:
        ConfigurationError: Unknown key, invalid type or missing filter
        StateError: If run state cannot be read
    """
    backup_type = BackupType.parse(backup_type)
    roots = config.roots_for(key)
    registry.resolve(key)

    today = today or datetime.now(UTC).date()

    await init_state_db(config.state_db_path)
    async with aiosqlite.connect(config.state_db_path) as db:
        last_runs = await get_last_runs(db, config.host, key, today)

    window = compute_window(backup_type, last_runs, today)
    if window.max_age_days is not None and window.max_age_days < 0:
        logger.warning(
            "negative_selection_window",
            key=key,
            backup_type=backup_type.value,
            max_age_days=window.max_age_days,
            reference_date=window.reference_date.isoformat() if window.reference_date else None,
        )

    return RunContext(
        run_id=str(ULID()),
        host=config.host,
        key=key,
        backup_type=backup_type,
        today=today,
        last_runs=last_runs,
        window=window,
        archive_name=archive_name(today, config.host, key, backup_type),
        roots=roots,
    )


async def run_backup(
    config: DumpConfig,
    key: str,
    backup_type: BackupType | str,
    *,
    registry: FilterRegistry | None = None,
    executor: RemoteExecutor | None = None,
    archiver: Archiver | None = None,
    today: date | None = None,
) -> BackupResult:
    """
    Run a complete backup of one key.

    This is the main entry point. It takes the run lock for (host, key, type),
    then reads state, enumerates, filters, archives, indexes and finally
    advances state.

    Args:
        config: hostdump configuration
        key: Backup key
        backup_type: Backup type
        registry: Filter registry (default: built from config.filters)
        executor: Executor override (default: ssh for remote hosts)
        archiver: Archiver override (default: tar + zstd)
        today: Run date override (default: today, UTC)

    Returns:
        BackupResult with run details

    Raises:
        ConfigurationError: Invalid input; nothing was touched
        RunLockedError: Another run for the same host, key and type is active
        EnumerationError: Candidate list could not be produced
        ArchiveError: Archive could not be created
        IndexBuildError: Archive exists but its index could not be built;
            state was not advanced, run rebuild_index() to finish
        StateError: State could not be read or persisted
    """
    start_time = datetime.now(UTC)
    backup_type = BackupType.parse(backup_type)
    config.roots_for(key)
    registry = registry if registry is not None else registry_from_config(config)
    registry.resolve(key)

    if executor is None:
        executor = get_executor(config)
    if archiver is None:
        archiver = _default_archiver(config, executor)

    async with run_lock(config.lock_dir, config.host, key, backup_type):
        context = await prepare_run(
            config, key, backup_type, registry=registry, today=today
        )

        logger.info(
            "run_started",
            run_id=context.run_id,
            host=context.host,
            key=key,
            backup_type=backup_type.value,
            max_age_days=context.window.max_age_days,
            reference_type=(
                context.window.reference_type.value if context.window.reference_type else None
            ),
        )

        archive_dir = config.archive_dir
        try:
            archive_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ArchiveError(
                f"Cannot create archive directory {archive_dir}: {e}",
                details={"archive_dir": str(archive_dir)},
            ) from e
        archive_path = archive_dir / f"{context.archive_name}{archiver.suffix}"
        index_path = archive_dir / f"{context.archive_name}.index"
        file_list_path = archive_dir / f"{context.archive_name}.list"

        if archive_path.exists():
            raise ArchiveError(
                f"Archive already exists: {archive_path}",
                details={"archive_path": str(archive_path)},
            )

        try:
            async with staging_area(
                config.staging_dir, context.run_id, keep=config.keep_staging
            ) as staging:
                candidates = await enumerate_files(
                    context.roots, context.window, executor=executor
                )
                try:
                    await write_path_list(staging / "raw.list", candidates)
                except OSError as e:
                    raise EnumerationError(
                        f"Cannot write candidate list: {e}",
                        details={"staging": str(staging)},
                    ) from e

                final_list = apply_filter_pipeline(candidates, key, registry)

            await create_archive(archiver, final_list, ARCHIVE_BASE_DIR, archive_path)

            # The final list only appears beside an archive that exists
            try:
                await write_path_list(file_list_path, final_list)
            except OSError as e:
                raise ArchiveError(
                    f"Cannot write file list {file_list_path}: {e}",
                    details={
                        "archive_path": str(archive_path),
                        "file_list_path": str(file_list_path),
                    },
                ) from e
        except Exception as e:
            logger.error(
                "run_failed",
                run_id=context.run_id,
                key=key,
                backup_type=backup_type.value,
                error=str(e),
            )
            raise

        try:
            members = await build_index(archiver, archive_path)
            await write_index(members, index_path)
        except IndexBuildError as e:
            logger.warning(
                "index_build_failed",
                run_id=context.run_id,
                key=key,
                backup_type=backup_type.value,
                archive_path=str(archive_path),
                error=str(e),
                state_advanced=False,
            )
            raise

        async with aiosqlite.connect(config.state_db_path) as db:
            await set_last_run(
                db, config.host, key, backup_type, context.today, context.archive_name
            )

    record = ArchiveRecord(
        name=context.archive_name,
        host=context.host,
        key=key,
        backup_type=backup_type,
        run_date=context.today,
        archive_path=archive_path,
        index_path=index_path,
        file_list_path=file_list_path,
        members=members,
    )

    duration = (datetime.now(UTC) - start_time).total_seconds()

    logger.info(
        "run_completed",
        run_id=context.run_id,
        key=key,
        backup_type=backup_type.value,
        candidates=len(candidates),
        selected=len(final_list),
        indexed=len(members),
        duration=duration,
    )

    return BackupResult(
        run_id=context.run_id,
        host=context.host,
        key=key,
        backup_type=backup_type.value,
        max_age_days=context.window.max_age_days,
        candidates=len(candidates),
        selected=len(final_list),
        record=record,
        duration_seconds=duration,
    )


def _find_archive(config: DumpConfig, name: str) -> Path | None:
    for suffix in (".tar.zst", ".tar"):
        candidate = config.archive_dir / f"{name}{suffix}"
        if candidate.exists():
            return candidate
    return None


async def rebuild_index(
    config: DumpConfig,
    key: str,
    backup_type: BackupType | str,
    run_date: date,
    *,
    archiver: Archiver | None = None,
    advance_state: bool = True,
) -> ArchiveRecord:
    """
    Regenerate the index of an existing archive without re-archiving.

    Used after a run failed with IndexBuildError. On success, and unless
    advance_state is False, run state is advanced to the archive's date.
    State that already records a later run is left alone.

    Raises:
        ArchiveError: If the archive does not exist
        IndexBuildError: If the archive still cannot be listed
        StateError: If state cannot be persisted
    """
    backup_type = BackupType.parse(backup_type)
    config.roots_for(key)
    name = archive_name(run_date, config.host, key, backup_type)

    archive_path = _find_archive(config, name)
    if archive_path is None:
        raise ArchiveError(
            f"No archive named {name} in {config.archive_dir}",
            details={"archive_name": name},
        )

    if archiver is None:
        archiver = _default_archiver(config, None)

    async with run_lock(config.lock_dir, config.host, key, backup_type):
        index_path = config.archive_dir / f"{name}.index"
        members = await build_index(archiver, archive_path)
        await write_index(members, index_path)

        if advance_state:
            await init_state_db(config.state_db_path)
            async with aiosqlite.connect(config.state_db_path) as db:
                current = await get_last_run_date(db, config.host, key, backup_type, run_date)
                if current is not None and current >= run_date:
                    advance_state = False
                else:
                    await set_last_run(db, config.host, key, backup_type, run_date, name)

    logger.info(
        "index_rebuilt",
        archive_path=str(archive_path),
        entries=len(members),
        state_advanced=advance_state,
    )

    file_list_path = config.archive_dir / f"{name}.list"
    return ArchiveRecord(
        name=name,
        host=config.host,
        key=key,
        backup_type=backup_type,
        run_date=run_date,
        archive_path=archive_path,
        index_path=index_path,
        file_list_path=file_list_path if file_list_path.exists() else None,
        members=members,
    )


async def get_run_status(config: DumpConfig, key: str | None = None) -> List[RunStateRecord]:
    """List stored run state of the configured host, optionally for one key."""
    await init_state_db(config.state_db_path)
    async with aiosqlite.connect(config.state_db_path) as db:
        return await list_run_state(db, config.host, key)
