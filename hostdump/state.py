# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
hostdump Run State Store - SQLite-based last-run bookkeeping.

This module keeps one record per (host, backup key, backup type) holding
the day-of-year and calendar date of the last successful run of that type.
Records are only written after an archive and its index have both been
created, so a recorded date always refers to files that are archived.

Hosts sharing a destination share the database but never each other's
records.

Records are never deleted automatically.
"""

from datetime import date, datetime, UTC
from pathlib import Path
from typing import List, TypedDict

import aiosqlite
import structlog

from hostdump.config import BackupType
from hostdump.exceptions import StateError
from hostdump.window import LastRuns, date_from_day_of_year, day_of_year

logger = structlog.get_logger()


class RunStateRecord(TypedDict):
    """Stored last-run record for one host, key and type."""

    host: str
    backup_key: str
    backup_type: str
    last_run_day: int  # 1-366, 0 = never run
    last_run_date: str | None  # ISO 8601 date
    archive_name: str | None
    updated_at: str  # ISO 8601


async def init_state_db(db_path: Path) -> None:
    """
    Initialize the run state database schema.

    Creates the run_state table if it doesn't exist. This is idempotent
    and safe to call multiple times.

    Args:
        db_path: Path to the SQLite database file
    """
    try:
        db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(db_path) as db:
            await db.execute("""
                CREATE TABLE IF NOT EXISTS run_state (
                    host TEXT NOT NULL,
                    backup_key TEXT NOT NULL,
                    backup_type TEXT NOT NULL,
                    last_run_day INTEGER NOT NULL DEFAULT 0,
                    last_run_date TEXT,
                    archive_name TEXT,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (host, backup_key, backup_type)
                )
            """)
            await db.commit()
    except Exception as e:
        raise StateError(
            f"Failed to initialize state database: {e}",
            details={"db_path": str(db_path)},
        ) from e


async def _fetch_row(
    db: aiosqlite.Connection,
    host: str,
    key: str,
    backup_type: BackupType,
) -> tuple | None:
    try:
        async with db.execute(
            """
            SELECT last_run_day, last_run_date
            FROM run_state
            WHERE host = ? AND backup_key = ? AND backup_type = ?
            """,
            (host, key, backup_type.value),
        ) as cursor:
            return await cursor.fetchone()
    except Exception as e:
        raise StateError(
            f"Failed to read run state: {e}",
            details={"host": host, "key": key, "backup_type": backup_type.value},
        ) from e


async def get_last_run_day(
    db: aiosqlite.Connection,
    host: str,
    key: str,
    backup_type: BackupType | str,
) -> int:
    """
    Get the day-of-year of the last successful run.

    Args:
        db: SQLite database connection
        host: Backed-up host
        key: Backup key
        backup_type: Backup type

    Returns:
        Day-of-year (1-366), or 0 if the key/type has never run on host
    """
    backup_type = BackupType.parse(backup_type)
    row = await _fetch_row(db, host, key, backup_type)
    return row[0] if row else 0


async def get_last_run_date(
    db: aiosqlite.Connection,
    host: str,
    key: str,
    backup_type: BackupType | str,
    today: date,
) -> date | None:
    """
    Get the calendar date of the last successful run.

    Records imported as a bare day-of-year are resolved relative to today.

    Returns:
        Date of the last run, or None if the key/type has never run on host
    """
    backup_type = BackupType.parse(backup_type)
    row = await _fetch_row(db, host, key, backup_type)
    if not row:
        return None

    last_run_day, last_run_date = row
    if last_run_date:
        return date.fromisoformat(last_run_date)
    return date_from_day_of_year(last_run_day, today)


async def get_last_runs(
    db: aiosqlite.Connection,
    host: str,
    key: str,
    today: date,
) -> LastRuns:
    """
    Get the last run dates of every backup type for a key on a host.

    Args:
        db: SQLite database connection
        host: Backed-up host
        key: Backup key
        today: Run date, used to resolve legacy day-of-year records

    Returns:
        LastRuns triple
    """
    return LastRuns(
        incremental=await get_last_run_date(db, host, key, BackupType.INCREMENTAL, today),
        differential=await get_last_run_date(db, host, key, BackupType.DIFFERENTIAL, today),
        full=await get_last_run_date(db, host, key, BackupType.FULL, today),
    )


async def set_last_run(
    db: aiosqlite.Connection,
    host: str,
    key: str,
    backup_type: BackupType | str,
    run_date: date,
    archive_name: str | None = None,
) -> None:
    """
    Record a successful run. Overwrites any previous record.

    The change is committed before returning. Failure is fatal for the
    run: a lost update would make the next run select the wrong files.

    Args:
        db: SQLite database connection
        host: Backed-up host
        key: Backup key
        backup_type: Backup type that completed
        run_date: Date of the run
        archive_name: Name of the archive the run produced

    Raises:
        StateError: If the record cannot be written
    """
    backup_type = BackupType.parse(backup_type)
    now = datetime.now(UTC).isoformat()

    try:
        await db.execute(
            """
            INSERT INTO run_state
            (host, backup_key, backup_type, last_run_day, last_run_date,
             archive_name, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(host, backup_key, backup_type) DO UPDATE SET
                last_run_day = excluded.last_run_day,
                last_run_date = excluded.last_run_date,
                archive_name = excluded.archive_name,
                updated_at = excluded.updated_at
            """,
            (
                host,
                key,
                backup_type.value,
                day_of_year(run_date),
                run_date.isoformat(),
                archive_name,
                now,
            ),
        )
        await db.commit()
    except Exception as e:
        raise StateError(
            f"Failed to persist run state: {e}",
            details={"host": host, "key": key, "backup_type": backup_type.value},
        ) from e

    logger.info(
        "state_advanced",
        host=host,
        key=key,
        backup_type=backup_type.value,
        last_run_day=day_of_year(run_date),
        last_run_date=run_date.isoformat(),
    )


async def set_last_run_day(
    db: aiosqlite.Connection,
    host: str,
    key: str,
    backup_type: BackupType | str,
    day: int,
    today: date,
) -> None:
    """
    Record a run given only its day-of-year.

    Used to import state kept as bare day numbers. Day 0 stores a
    "never run" record.

    Raises:
        StateError: If the day is out of range or cannot be written
    """
    backup_type = BackupType.parse(backup_type)
    try:
        run_date = date_from_day_of_year(day, today)
    except ValueError as e:
        raise StateError(str(e), details={"host": host, "key": key, "day": day}) from e

    if run_date is not None:
        await set_last_run(db, host, key, backup_type, run_date)
        return

    try:
        await db.execute(
            """
            INSERT INTO run_state
            (host, backup_key, backup_type, last_run_day, last_run_date,
             archive_name, updated_at)
            VALUES (?, ?, ?, 0, NULL, NULL, ?)
            ON CONFLICT(host, backup_key, backup_type) DO UPDATE SET
                last_run_day = 0,
                last_run_date = NULL,
                archive_name = NULL,
                updated_at = excluded.updated_at
            """,
            (host, key, backup_type.value, datetime.now(UTC).isoformat()),
        )
        await db.commit()
    except Exception as e:
        raise StateError(
            f"Failed to reset run state: {e}",
            details={"host": host, "key": key, "backup_type": backup_type.value},
        ) from e


async def list_run_state(
    db: aiosqlite.Connection,
    host: str | None = None,
    key: str | None = None,
) -> List[RunStateRecord]:
    """
    List stored run state records.

    Args:
        db: SQLite database connection
        host: Optional filter by host
        key: Optional filter by backup key

    Returns:
        Records ordered by host, key and type
    """
    query = """
        SELECT host, backup_key, backup_type, last_run_day, last_run_date,
               archive_name, updated_at
        FROM run_state
    """
    conditions: List[str] = []
    params: List = []

    if host:
        conditions.append("host = ?")
        params.append(host)
    if key:
        conditions.append("backup_key = ?")
        params.append(key)

    if conditions:
        query += " WHERE " + " AND ".join(conditions)
    query += " ORDER BY host, backup_key, backup_type"

    records: List[RunStateRecord] = []

    try:
        async with db.execute(query, params) as cursor:
            async for row in cursor:
                records.append(
                    RunStateRecord(
                        host=row[0],
                        backup_key=row[1],
                        backup_type=row[2],
                        last_run_day=row[3],
                        last_run_date=row[4],
                        archive_name=row[5],
                        updated_at=row[6],
                    )
                )
    except Exception as e:
        raise StateError(f"Failed to list run state: {e}") from e

    return records
