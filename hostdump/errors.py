# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Human-friendly error message helpers for hostdump.

These helpers centralize wording for common configuration errors so that
all modules present consistent, actionable messages.
"""


def explain_missing_host_env() -> str:
    """
    Explain that the target host environment variable is missing.
    """

    return (
        "Target host is not configured. "
        "Set the HOSTDUMP_HOST environment variable or pass host=... to create_config()."
    )


def explain_missing_destination_env() -> str:
    """
    Explain that the destination directory is missing.
    """

    return (
        "Backup destination is not configured. "
        "Set HOSTDUMP_DESTINATION or pass destination=... to create_config()."
    )


def explain_missing_keys() -> str:
    """
    Explain that no backup keys were configured.
    """

    return (
        "No backup keys are configured. hostdump cannot guess which directories to save. "
        "Pass keys={\"etc\": [\"/etc\"]} to create_config() or set "
        "HOSTDUMP_KEYS=\"etc=/etc;home=/home\"."
    )


def explain_unknown_key(key: str, known: list[str]) -> str:
    """
    Explain that a backup key is not part of the configuration.
    """

    known_str = ", ".join(sorted(known)) or "none"
    return f"Unknown backup key {key!r}. Configured keys: {known_str}."


def explain_missing_filter(key: str) -> str:
    """
    Explain that no filter is registered for a backup key.
    """

    return (
        f"No filter registered for backup key {key!r}. "
        "Refusing to archive unfiltered data. Register one with "
        "FilterRegistry.register() or set filters={key: \"module:callable\"}; "
        "use hostdump.filters:passthrough to keep every file."
    )


def explain_invalid_backup_type(value: object) -> str:
    """
    Explain that a backup type is not recognised.
    """

    return (
        f"Invalid backup type: {value!r}. "
        "Expected one of: 'full', 'diff' (differential) or 'incr' (incremental)."
    )


def explain_invalid_keys_env(value: str | None) -> str:
    """
    Explain that HOSTDUMP_KEYS could not be parsed.
    """

    return (
        f"Invalid HOSTDUMP_KEYS value: {value!r}. "
        "Expected 'key=/dir1,/dir2;other=/dir3'."
    )


def explain_invalid_filters_env(value: str | None) -> str:
    """
    Explain that HOSTDUMP_FILTERS could not be parsed.
    """

    return (
        f"Invalid HOSTDUMP_FILTERS value: {value!r}. "
        "Expected 'key=package.module:callable;other=package.module:callable'."
    )


def explain_invalid_zstd_level_env(value: str | None) -> str:
    """
    Explain that HOSTDUMP_ZSTD_LEVEL is invalid.
    """

    return (
        f"Invalid HOSTDUMP_ZSTD_LEVEL value: {value!r}. "
        "It must be an integer between 1 and 22."
    )
