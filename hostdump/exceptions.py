# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
hostdump Exceptions - Custom exceptions for the hostdump package.
"""


class HostDumpError(Exception):
    """Base exception for all hostdump errors."""

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(HostDumpError):
    """Raised when configuration is invalid or incomplete."""

    pass


class InvalidBackupTypeError(ConfigurationError):
    """Raised when a backup type is not one of full, diff or incr."""

    pass


class ExecutorError(HostDumpError):
    """Raised when a local or remote command cannot be run or fails."""

    @property
    def reason(self) -> str | None:
        return self.details.get("reason")


class EnumerationError(HostDumpError):
    """Raised when the candidate file list cannot be produced."""

    pass


class ArchiveError(HostDumpError):
    """Raised when archive creation fails."""

    pass


class IndexBuildError(HostDumpError):
    """Raised when the index of an existing archive cannot be built."""

    pass


class StateError(HostDumpError):
    """Raised when run state cannot be read or persisted."""

    pass


class RunLockedError(HostDumpError):
    """Raised when another run holds the lock for the same key and type."""

    pass
