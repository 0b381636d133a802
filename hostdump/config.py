# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
hostdump Configuration - Immutable configuration data structures.

All configuration is frozen (immutable) after creation so a run cannot
change its own targets or destination halfway through.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List
import re


class BackupType(str, Enum):
    """Backup type, which selects the window and the state slot to update."""

    FULL = "full"  # Everything, regardless of age
    DIFFERENTIAL = "diff"  # Changed since the last diff or full
    INCREMENTAL = "incr"  # Changed since the last backup of any type

    @classmethod
    def parse(cls, value: "BackupType | str") -> "BackupType":
        """
        Parse a backup type from user input.

        Accepts the enum itself, the short values ('full', 'diff', 'incr')
        and the long names ('differential', 'incremental'), case-insensitive.

        Raises:
            InvalidBackupTypeError: If the value is not a known type
        """
        if isinstance(value, cls):
            return value

        if isinstance(value, str):
            normalized = value.strip().lower()
            aliases = {
                "differential": cls.DIFFERENTIAL,
                "incremental": cls.INCREMENTAL,
            }
            if normalized in aliases:
                return aliases[normalized]
            try:
                return cls(normalized)
            except ValueError:
                pass

        from hostdump.errors import explain_invalid_backup_type
        from hostdump.exceptions import InvalidBackupTypeError

        raise InvalidBackupTypeError(
            explain_invalid_backup_type(value),
            details={"backup_type": repr(value)},
        )


# Hosts that are backed up without going through ssh
LOCAL_HOSTS = frozenset({"localhost", "127.0.0.1", "::1"})

_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")
_HOST_PATTERN = re.compile(r"^[A-Za-z0-9_.:@\[\]-]+$")


def _validate_key_name(key: str) -> bool:
    """Backup keys end up in file names, so keep them to a safe alphabet."""
    return bool(key) and bool(_KEY_PATTERN.match(key)) and key not in (".", "..")


def _validate_host(host: str) -> bool:
    """Validate a host name, ssh alias or user@host target."""
    if not host:
        return False
    return bool(_HOST_PATTERN.match(host))


def _validate_keys(keys: Dict[str, List[str]]) -> List[str]:
    """Validate the key -> roots mapping. Returns a list of problems."""
    problems: List[str] = []
    if not isinstance(keys, dict):
        return ["keys must be a dict of key -> list of directories"]

    for key, roots in keys.items():
        if not isinstance(key, str) or not _validate_key_name(key):
            problems.append(f"Invalid backup key name: {key!r}")
            continue
        if not isinstance(roots, (list, tuple)) or not roots:
            problems.append(f"Backup key {key!r} needs at least one directory")
            continue
        for root in roots:
            if not isinstance(root, str) or not root.startswith("/"):
                problems.append(f"Directory for key {key!r} must be absolute: {root!r}")
    return problems


@dataclass(frozen=True)
class DumpConfig:
    """
    Immutable configuration for host backups.

    One configuration describes one target host and every backup key
    configured for it.
    """

    # Required: host to back up ("localhost" uses the local filesystem)
    host: str

    # Root directory for archives, indexes, state, locks and staging
    destination: Path

    # Backup keys: {"key": ["/abs/dir1", "/abs/dir2"]}
    keys: Dict[str, List[str]] = field(default_factory=dict)

    # Filters per key: {"key": "package.module:callable"}
    filters: Dict[str, str] = field(default_factory=dict)

    # Run state database (default: <destination>/state.db)
    state_path: Path | None = None

    # Command prefix used to reach remote hosts
    ssh_command: List[str] = field(
        default_factory=lambda: ["ssh", "-o", "BatchMode=yes"]
    )

    # Compress archives with zstd
    compress: bool = True

    # zstd compression level (1-22)
    zstd_level: int = 3

    # Keep the per-run staging directory for diagnostics
    keep_staging: bool = False

    def __post_init__(self) -> None:
        """Validate configuration after creation."""
        errors: List[str] = []

        if not _validate_host(self.host):
            errors.append(f"Invalid host: {self.host!r}")

        if not self.destination:
            errors.append("destination is required")
        elif not isinstance(self.destination, Path):
            # Frozen dataclass: coerce through object.__setattr__
            object.__setattr__(self, "destination", Path(self.destination))

        if self.state_path is not None and not isinstance(self.state_path, Path):
            object.__setattr__(self, "state_path", Path(self.state_path))

        errors.extend(_validate_keys(self.keys))

        for key, ref in self.filters.items():
            if key not in self.keys:
                errors.append(f"Filter configured for unknown backup key: {key!r}")
            if not isinstance(ref, str) or ":" not in ref:
                errors.append(f"Filter for key {key!r} must be 'module:callable', got {ref!r}")

        if not self.ssh_command:
            errors.append("ssh_command must not be empty")

        if not 1 <= self.zstd_level <= 22:
            errors.append(f"zstd_level must be 1-22, got {self.zstd_level}")

        if errors:
            from hostdump.exceptions import ConfigurationError

            raise ConfigurationError(
                "Configuration validation failed",
                details={"errors": errors},
            )

    @property
    def is_local(self) -> bool:
        return self.host in LOCAL_HOSTS

    @property
    def state_db_path(self) -> Path:
        return self.state_path or self.destination / "state.db"

    @property
    def archive_dir(self) -> Path:
        return self.destination / self.host

    @property
    def lock_dir(self) -> Path:
        return self.destination / ".locks"

    @property
    def staging_dir(self) -> Path:
        return self.destination / ".staging"

    def roots_for(self, key: str) -> List[str]:
        """
        Return the directories configured for a backup key.

        Raises:
            ConfigurationError: If the key is not configured
        """
        if key not in self.keys:
            from hostdump.errors import explain_unknown_key
            from hostdump.exceptions import ConfigurationError

            raise ConfigurationError(
                explain_unknown_key(key, list(self.keys)),
                details={"key": key},
            )
        return list(self.keys[key])

    def with_updates(self, **kwargs) -> "DumpConfig":
        """
        Create a new config with updated values.

        Since the config is frozen, this creates a new instance.
        """
        from dataclasses import asdict

        current = asdict(self)
        current.update(kwargs)
        return DumpConfig(**current)


# Type alias for key configuration
KeyConfig = Dict[str, List[str]]
