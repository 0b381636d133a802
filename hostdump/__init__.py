# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
hostdump - Full, differential and incremental host backups.

Selects the files a backup needs from each key's last-run history, writes
them to a single tar archive (zstd-compressed by default) with a sorted
index, and only then records the run so the next backup knows where to
start.
"""

__version__ = "0.1.0"

# Configuration creation (user-facing API)
from hostdump.builder import create_config
from hostdump.config import BackupType, DumpConfig
from hostdump.env import create_config_from_env

# Core functions
from hostdump.core import (
    prepare_run,
    run_backup,
    rebuild_index,
    get_run_status,
)

# Filters
from hostdump.filters import FilterRegistry, exclude_patterns, passthrough

__all__ = [
    # Version
    "__version__",
    # Configuration
    "create_config",
    "create_config_from_env",
    "BackupType",
    "DumpConfig",
    # Core orchestration functions
    "prepare_run",
    "run_backup",
    "rebuild_index",
    "get_run_status",
    # Filters
    "FilterRegistry",
    "exclude_patterns",
    "passthrough",
]
