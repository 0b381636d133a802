# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Run tests for hostdump.

These tests verify the guarantees a backup run makes:
1. State advances only after the archive and its index both exist
2. Failures and cancellation leave run state untouched
3. Configuration problems are reported before anything is touched
4. One run per host, key and type at a time; hosts never share state
5. An interrupted run can be finished with rebuild_index()
"""

import asyncio
import os
import time
from datetime import datetime, timedelta, UTC
from pathlib import Path

import aiosqlite
import pytest

from hostdump.archive import TarArchiver, archive_name
from hostdump.config import BackupType, DumpConfig
from hostdump.core import get_run_status, prepare_run, rebuild_index, run_backup
from hostdump.exceptions import (
    ArchiveError,
    ConfigurationError,
    EnumerationError,
    ExecutorError,
    HostDumpError,
    IndexBuildError,
    InvalidBackupTypeError,
    RunLockedError,
)
from hostdump.filters import FilterRegistry, exclude_patterns
from hostdump.lock import run_lock
from hostdump.state import get_last_run_date, get_last_runs, init_state_db, set_last_run
from hostdump.window import LastRuns


def _today():
    return datetime.now(UTC).date()


async def _last_runs(config: DumpConfig) -> LastRuns:
    await init_state_db(config.state_db_path)
    async with aiosqlite.connect(config.state_db_path) as db:
        return await get_last_runs(db, config.host, "data", _today())


class UnlistableArchiver(TarArchiver):
    """Creates archives normally but cannot read them back."""

    async def list(self, archive_path):
        raise OSError("archive listing failed")


class FailingArchiver(TarArchiver):
    async def create(self, file_list, base_dir, destination):
        raise OSError("disk full")


class FailingExecutor:
    host = "db1"

    async def run(self, command, *, stdin=None):
        raise ExecutorError("ssh failed", details={"reason": "unreachable", "returncode": 255})


# ============================================================================
# Successful runs
# ============================================================================

@pytest.mark.asyncio
async def test_full_run_archives_indexes_and_advances_state(
    local_config: DumpConfig, passthrough_registry: FilterRegistry, source_tree: Path
):
    result = await run_backup(local_config, "data", "full", registry=passthrough_registry)

    record = result.record
    assert record.archive_path.name.endswith("-localhost-data-full.tar.zst")
    assert record.archive_path.exists()
    assert result.max_age_days is None
    assert result.candidates == 4

    # Index matches the final file list
    final_list = record.file_list_path.read_text().splitlines()
    assert record.index_path.read_text().splitlines() == sorted(final_list)
    assert all(not line.startswith("/") for line in final_list)

    last_runs = await _last_runs(local_config)
    assert last_runs.full == _today()
    assert last_runs.differential is None
    assert last_runs.incremental is None


@pytest.mark.asyncio
async def test_incremental_selects_only_recent_files(
    local_config: DumpConfig, passthrough_registry: FilterRegistry, source_tree: Path
):
    old = time.time() - 30 * 24 * 60 * 60
    for name in ("a.txt", "sub/deeper/c.txt", "link"):
        os.utime(source_tree / name, (old, old), follow_symlinks=False)

    await init_state_db(local_config.state_db_path)
    async with aiosqlite.connect(local_config.state_db_path) as db:
        await set_last_run(db, local_config.host, "data", BackupType.FULL, _today() - timedelta(days=10))

    result = await run_backup(
        local_config, "data", BackupType.INCREMENTAL, registry=passthrough_registry
    )

    assert result.max_age_days == 10
    assert result.record.members == [str(source_tree / "sub" / "b.txt").lstrip("/")]

    last_runs = await _last_runs(local_config)
    assert last_runs.incremental == _today()
    assert last_runs.full == _today() - timedelta(days=10)


@pytest.mark.asyncio
async def test_filter_output_is_what_gets_archived(
    local_config: DumpConfig, source_tree: Path
):
    registry = FilterRegistry({"data": exclude_patterns("*/sub/*")})

    result = await run_backup(local_config, "data", "full", registry=registry)

    assert result.candidates == 4
    assert result.selected == 2
    assert all("/sub/" not in m for m in result.record.members)


@pytest.mark.asyncio
async def test_uncompressed_archive(
    local_config: DumpConfig, passthrough_registry: FilterRegistry
):
    config = local_config.with_updates(compress=False)

    result = await run_backup(config, "data", "full", registry=passthrough_registry)

    assert result.record.archive_path.suffix == ".tar"


@pytest.mark.asyncio
async def test_staging_is_cleaned_up(
    local_config: DumpConfig, passthrough_registry: FilterRegistry
):
    await run_backup(local_config, "data", "full", registry=passthrough_registry)

    assert list(local_config.staging_dir.iterdir()) == []


# ============================================================================
# Configuration errors touch nothing
# ============================================================================

@pytest.mark.asyncio
async def test_missing_filter_fails_before_enumeration(local_config: DumpConfig):
    with pytest.raises(ConfigurationError):
        await run_backup(local_config, "data", "full", registry=FilterRegistry())

    assert not local_config.destination.exists()


@pytest.mark.asyncio
async def test_invalid_backup_type(
    local_config: DumpConfig, passthrough_registry: FilterRegistry
):
    with pytest.raises(InvalidBackupTypeError):
        await run_backup(local_config, "data", "weekly", registry=passthrough_registry)

    assert not local_config.destination.exists()


@pytest.mark.asyncio
async def test_unknown_key(local_config: DumpConfig, passthrough_registry: FilterRegistry):
    with pytest.raises(ConfigurationError):
        await run_backup(local_config, "home", "full", registry=passthrough_registry)


# ============================================================================
# Failures leave state untouched
# ============================================================================

@pytest.mark.asyncio
async def test_enumeration_failure_leaves_state(
    local_config: DumpConfig, passthrough_registry: FilterRegistry
):
    with pytest.raises(EnumerationError) as exc_info:
        await run_backup(
            local_config,
            "data",
            "full",
            registry=passthrough_registry,
            executor=FailingExecutor(),
        )

    assert exc_info.value.details["reason"] == "unreachable"
    assert await _last_runs(local_config) == LastRuns()
    assert list(local_config.staging_dir.iterdir()) == []


@pytest.mark.asyncio
async def test_archive_failure_leaves_state(
    local_config: DumpConfig, passthrough_registry: FilterRegistry
):
    with pytest.raises(ArchiveError):
        await run_backup(
            local_config,
            "data",
            "full",
            registry=passthrough_registry,
            archiver=FailingArchiver(),
        )

    assert await _last_runs(local_config) == LastRuns()
    assert not list(local_config.archive_dir.glob("*.tar.zst"))
    assert not list(local_config.archive_dir.glob("*.list"))


@pytest.mark.asyncio
async def test_unwritable_file_list_is_an_archive_error(
    local_config: DumpConfig, passthrough_registry: FilterRegistry
):
    name = archive_name(_today(), local_config.host, "data", BackupType.FULL)
    (local_config.archive_dir / f"{name}.list.tmp").mkdir(parents=True)

    with pytest.raises(ArchiveError) as exc_info:
        await run_backup(local_config, "data", "full", registry=passthrough_registry)

    assert isinstance(exc_info.value, HostDumpError)
    assert isinstance(exc_info.value.__cause__, OSError)
    assert not (local_config.archive_dir / f"{name}.list").exists()
    assert await _last_runs(local_config) == LastRuns()


@pytest.mark.asyncio
async def test_uncreatable_archive_directory_is_an_archive_error(
    local_config: DumpConfig, passthrough_registry: FilterRegistry
):
    local_config.destination.mkdir(parents=True)
    local_config.archive_dir.write_text("not a directory")

    with pytest.raises(ArchiveError) as exc_info:
        await run_backup(local_config, "data", "full", registry=passthrough_registry)

    assert isinstance(exc_info.value.__cause__, OSError)
    assert await _last_runs(local_config) == LastRuns()


@pytest.mark.asyncio
async def test_uncreatable_staging_directory_is_an_enumeration_error(
    local_config: DumpConfig, passthrough_registry: FilterRegistry
):
    local_config.destination.mkdir(parents=True)
    local_config.staging_dir.write_text("not a directory")

    with pytest.raises(EnumerationError) as exc_info:
        await run_backup(local_config, "data", "full", registry=passthrough_registry)

    assert isinstance(exc_info.value.__cause__, OSError)
    assert await _last_runs(local_config) == LastRuns()


@pytest.mark.asyncio
async def test_index_failure_keeps_archive_but_not_state(
    local_config: DumpConfig, passthrough_registry: FilterRegistry
):
    with pytest.raises(IndexBuildError):
        await run_backup(
            local_config,
            "data",
            "full",
            registry=passthrough_registry,
            archiver=UnlistableArchiver(),
        )

    assert len(list(local_config.archive_dir.glob("*.tar.zst"))) == 1
    assert not list(local_config.archive_dir.glob("*.index"))
    assert await _last_runs(local_config) == LastRuns()


@pytest.mark.asyncio
async def test_same_day_rerun_is_refused(
    local_config: DumpConfig, passthrough_registry: FilterRegistry
):
    await run_backup(local_config, "data", "full", registry=passthrough_registry)
    list_path = next(local_config.archive_dir.glob("*.list"))
    before = list_path.read_text()

    with pytest.raises(ArchiveError):
        await run_backup(local_config, "data", "full", registry=passthrough_registry)

    assert list_path.read_text() == before


@pytest.mark.asyncio
async def test_cancellation_leaves_state_and_no_partial_archive(
    local_config: DumpConfig, passthrough_registry: FilterRegistry
):
    started = asyncio.Event()

    class SlowArchiver(TarArchiver):
        async def create(self, file_list, base_dir, destination):
            part_path = destination.with_name(destination.name + ".part")
            try:
                part_path.write_bytes(b"partial")
                started.set()
                await asyncio.sleep(3600)
            finally:
                part_path.unlink(missing_ok=True)
            return destination

    task = asyncio.create_task(
        run_backup(
            local_config,
            "data",
            "full",
            registry=passthrough_registry,
            archiver=SlowArchiver(),
        )
    )
    await asyncio.wait_for(started.wait(), timeout=10)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task

    assert await _last_runs(local_config) == LastRuns()
    assert not list(local_config.archive_dir.glob("*.part"))
    assert not list(local_config.archive_dir.glob("*.tar.zst"))


# ============================================================================
# Locking
# ============================================================================

@pytest.mark.asyncio
async def test_concurrent_run_of_same_type_is_refused(
    local_config: DumpConfig, passthrough_registry: FilterRegistry
):
    async with run_lock(local_config.lock_dir, local_config.host, "data", BackupType.FULL):
        with pytest.raises(RunLockedError):
            await run_backup(local_config, "data", "full", registry=passthrough_registry)

    assert await _last_runs(local_config) == LastRuns()


@pytest.mark.asyncio
async def test_other_type_is_not_blocked(
    local_config: DumpConfig, passthrough_registry: FilterRegistry
):
    async with run_lock(local_config.lock_dir, local_config.host, "data", BackupType.FULL):
        result = await run_backup(
            local_config, "data", "incr", registry=passthrough_registry
        )

    assert result.backup_type == "incr"


# ============================================================================
# Hosts sharing a destination
# ============================================================================

@pytest.mark.asyncio
async def test_hosts_sharing_a_destination_keep_separate_state(
    local_config: DumpConfig, passthrough_registry: FilterRegistry
):
    other_host = local_config.with_updates(host="127.0.0.1")
    assert other_host.state_db_path == local_config.state_db_path

    await run_backup(local_config, "data", "full", registry=passthrough_registry)

    context = await prepare_run(other_host, "data", "incr", registry=passthrough_registry)

    assert context.last_runs == LastRuns()
    assert context.window.max_age_days == _today().timetuple().tm_yday
    assert (await _last_runs(local_config)).full == _today()


@pytest.mark.asyncio
async def test_lock_on_one_host_does_not_block_another(
    local_config: DumpConfig, passthrough_registry: FilterRegistry
):
    other_host = local_config.with_updates(host="127.0.0.1")

    async with run_lock(local_config.lock_dir, local_config.host, "data", BackupType.FULL):
        result = await run_backup(other_host, "data", "full", registry=passthrough_registry)

    assert result.record.archive_path.parent == other_host.archive_dir
    assert (await _last_runs(other_host)).full == _today()
    assert await _last_runs(local_config) == LastRuns()


# ============================================================================
# Recovery
# ============================================================================

@pytest.mark.asyncio
async def test_rebuild_index_finishes_interrupted_run(
    local_config: DumpConfig, passthrough_registry: FilterRegistry
):
    with pytest.raises(IndexBuildError):
        await run_backup(
            local_config,
            "data",
            "full",
            registry=passthrough_registry,
            archiver=UnlistableArchiver(),
        )

    record = await rebuild_index(local_config, "data", "full", _today())

    assert record.index_path.exists()
    assert len(record.members) == 4
    assert record.file_list_path is not None
    assert (await _last_runs(local_config)).full == _today()


@pytest.mark.asyncio
async def test_rebuild_index_never_moves_state_backwards(
    local_config: DumpConfig, passthrough_registry: FilterRegistry
):
    yesterday = _today() - timedelta(days=1)
    await run_backup(
        local_config, "data", "full", registry=passthrough_registry, today=yesterday
    )
    await run_backup(local_config, "data", "full", registry=passthrough_registry)

    await rebuild_index(local_config, "data", "full", yesterday)

    async with aiosqlite.connect(local_config.state_db_path) as db:
        assert await get_last_run_date(db, local_config.host, "data", "full", _today()) == _today()


@pytest.mark.asyncio
async def test_rebuild_index_without_archive(local_config: DumpConfig):
    with pytest.raises(ArchiveError):
        await rebuild_index(local_config, "data", "full", _today())


# ============================================================================
# Status and preparation
# ============================================================================

@pytest.mark.asyncio
async def test_prepare_run_computes_window(
    local_config: DumpConfig, passthrough_registry: FilterRegistry
):
    await init_state_db(local_config.state_db_path)
    async with aiosqlite.connect(local_config.state_db_path) as db:
        await set_last_run(db, local_config.host, "data", BackupType.FULL, _today() - timedelta(days=4))

    context = await prepare_run(
        local_config, "data", "diff", registry=passthrough_registry
    )

    assert context.window.max_age_days == 4
    assert context.window.reference_type == BackupType.FULL
    assert context.archive_name.endswith("-localhost-data-diff")


@pytest.mark.asyncio
async def test_get_run_status(
    local_config: DumpConfig, passthrough_registry: FilterRegistry
):
    assert await get_run_status(local_config) == []

    await run_backup(local_config, "data", "full", registry=passthrough_registry)

    status = await get_run_status(local_config, "data")
    assert [(r["backup_key"], r["backup_type"]) for r in status] == [("data", "full")]
    assert status[0]["archive_name"].endswith("-localhost-data-full")
