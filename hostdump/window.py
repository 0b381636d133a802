# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
hostdump Selection Window - Decide how far back a backup has to look.

A full backup takes everything. A differential takes everything changed
since the most recent differential or full backup, so differentials stay
cumulative relative to the last full. An incremental takes only what
changed since the single most recent backup of any type.

Elapsed time is computed from calendar dates. "Never run" is day 0 of the
current year (31 December of the previous year), so a key that has never
been backed up gets a window equal to today's day-of-year.
"""

from dataclasses import dataclass
from datetime import date, timedelta

from hostdump.config import BackupType


@dataclass(frozen=True)
class LastRuns:
    """Last successful run date per backup type for one key (None = never)."""

    incremental: date | None = None
    differential: date | None = None
    full: date | None = None

    def for_type(self, backup_type: BackupType) -> date | None:
        if backup_type == BackupType.INCREMENTAL:
            return self.incremental
        if backup_type == BackupType.DIFFERENTIAL:
            return self.differential
        return self.full


@dataclass(frozen=True)
class SelectionWindow:
    """
    Maximum file age, in days, for a backup.

    max_age_days is None for an unbounded (full) window. The reference
    fields record which earlier run the window was measured from.
    """

    max_age_days: int | None = None
    reference_type: BackupType | None = None
    reference_date: date | None = None

    @property
    def unbounded(self) -> bool:
        return self.max_age_days is None


UNBOUNDED = SelectionWindow()


def day_of_year(day: date) -> int:
    """Return the 1-based day-of-year of a date."""
    return day.timetuple().tm_yday


def day_zero(today: date) -> date:
    """Return day 0 of today's year, the reference for keys never run."""
    return date(today.year, 1, 1) - timedelta(days=1)


def date_from_day_of_year(day: int, today: date) -> date | None:
    """
    Convert a bare day-of-year into a calendar date.

    Day 0 means "never run" and maps to None. A day later than today's
    day-of-year can only come from last year.

    Raises:
        ValueError: If day is outside 0-366
    """
    if day < 0 or day > 366:
        raise ValueError(f"day-of-year must be 0-366, got {day}")
    if day == 0:
        return None

    year = today.year if day <= day_of_year(today) else today.year - 1
    resolved = date(year, 1, 1) + timedelta(days=day - 1)
    if resolved.year != year:
        # Day 366 of a non-leap year
        resolved = date(year, 12, 31)
    return resolved


def elapsed_days(today: date, reference: date | None) -> int:
    """Days from reference to today. A missing reference counts from day 0."""
    anchor = reference if reference is not None else day_zero(today)
    return (today - anchor).days


def _ordinal(day: date | None) -> int:
    return day.toordinal() if day is not None else 0


def select_reference(backup_type: BackupType, last_runs: LastRuns) -> BackupType | None:
    """
    Pick the earlier run a backup is measured from.

    Returns None for full backups. Differential: the more recent of
    differential and full (full wins a tie). Incremental: incremental if
    strictly more recent than both others, else differential if strictly
    more recent than both others, else full.
    """
    backup_type = BackupType.parse(backup_type)

    if backup_type == BackupType.FULL:
        return None

    incr = _ordinal(last_runs.incremental)
    diff = _ordinal(last_runs.differential)
    full = _ordinal(last_runs.full)

    if backup_type == BackupType.DIFFERENTIAL:
        return BackupType.DIFFERENTIAL if diff > full else BackupType.FULL

    if incr > diff and incr > full:
        return BackupType.INCREMENTAL
    if diff > incr and diff > full:
        return BackupType.DIFFERENTIAL
    return BackupType.FULL


def compute_window(
    backup_type: BackupType | str,
    last_runs: LastRuns,
    today: date,
) -> SelectionWindow:
    """
    Compute the selection window for a backup.

    Args:
        backup_type: Type of the backup being run
        last_runs: Last run dates for the key
        today: Run date, computed once for the whole run

    Returns:
        UNBOUNDED for full backups, otherwise a window whose max_age_days
        is the number of days since the reference run. The value is not
        clamped: a reference after today gives a negative window.

    Raises:
        InvalidBackupTypeError: If backup_type is not recognised
    """
    backup_type = BackupType.parse(backup_type)
    reference_type = select_reference(backup_type, last_runs)
    if reference_type is None:
        return UNBOUNDED

    reference_date = last_runs.for_type(reference_type)
    return SelectionWindow(
        max_age_days=elapsed_days(today, reference_date),
        reference_type=reference_type,
        reference_date=reference_date,
    )
