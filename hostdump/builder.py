# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
hostdump Builder - Functional builder pattern for configuration.

This module provides pure functions for building DumpConfig objects.
Each function takes a config dict and returns a new dict with the
modification applied (immutable updates).
"""

from pathlib import Path
from typing import Any, Callable, Dict, List

from hostdump.config import DumpConfig


# Type alias for builder functions
ConfigDict = Dict[str, Any]
BuilderFunc = Callable[[ConfigDict], ConfigDict]


def create_empty_config() -> ConfigDict:
    """
    Create an initial empty configuration dictionary.

    Returns:
        Dict with default values for all configuration fields
    """
    return {
        "host": "",
        "destination": None,
        "keys": {},
        "filters": {},
        "state_path": None,
        "ssh_command": ["ssh", "-o", "BatchMode=yes"],
        "compress": True,
        "zstd_level": 3,
        "keep_staging": False,
    }


def with_host(config: ConfigDict, host: str) -> ConfigDict:
    """
    Set the host to back up.

    Args:
        config: Current configuration dictionary
        host: Host name, ssh alias or user@host ("localhost" for local)

    Returns:
        New configuration dictionary with host set
    """
    return {**config, "host": host}


def with_destination(config: ConfigDict, destination: Path | str) -> ConfigDict:
    """
    Set the directory archives, indexes and state are written to.
    """
    return {**config, "destination": Path(destination)}


def backup_key(config: ConfigDict, key: str, directories: List[str]) -> ConfigDict:
    """
    Add a backup key and the directories it covers.

    Args:
        config: Current configuration dictionary
        key: Backup key name
        directories: Absolute directories on the target host

    Returns:
        New configuration dictionary with the key added
    """
    new_keys = {**config["keys"], key: list(directories)}
    return {**config, "keys": new_keys}


def with_filter(config: ConfigDict, key: str, filter_ref: str) -> ConfigDict:
    """
    Attach a filter to a backup key.

    Args:
        config: Current configuration dictionary
        key: Backup key name
        filter_ref: "package.module:callable" reference

    Returns:
        New configuration dictionary with the filter set
    """
    new_filters = {**config["filters"], key: filter_ref}
    return {**config, "filters": new_filters}


def with_state_path(config: ConfigDict, state_path: Path | str) -> ConfigDict:
    """Store run state somewhere other than <destination>/state.db."""
    return {**config, "state_path": Path(state_path)}


def with_ssh_command(config: ConfigDict, ssh_command: List[str]) -> ConfigDict:
    """
    Set the ssh command prefix, e.g. ["ssh", "-i", "/root/.ssh/backup"].
    """
    if not ssh_command:
        raise ValueError("ssh_command must not be empty")
    return {**config, "ssh_command": list(ssh_command)}


def disable_compression(config: ConfigDict) -> ConfigDict:
    """Write plain .tar archives."""
    return {**config, "compress": False}


def with_zstd_level(config: ConfigDict, level: int) -> ConfigDict:
    if not 1 <= level <= 22:
        raise ValueError(f"zstd level must be 1-22, got {level}")
    return {**config, "zstd_level": level}


def keep_staging(config: ConfigDict) -> ConfigDict:
    """Keep per-run staging directories for diagnostics."""
    return {**config, "keep_staging": True}


def build_config(config_dict: ConfigDict) -> DumpConfig:
    """
    Validate and build an immutable DumpConfig from a configuration dictionary.

    Raises:
        ConfigurationError: If validation fails
    """
    from hostdump.errors import (
        explain_missing_destination_env,
        explain_missing_host_env,
        explain_missing_keys,
    )
    from hostdump.exceptions import ConfigurationError

    if not config_dict.get("host"):
        raise ConfigurationError(explain_missing_host_env())
    if not config_dict.get("destination"):
        raise ConfigurationError(explain_missing_destination_env())
    if not config_dict.get("keys"):
        raise ConfigurationError(explain_missing_keys())

    return DumpConfig(**config_dict)


def pipe(*funcs: BuilderFunc) -> BuilderFunc:
    """
    Compose multiple builder functions into a single function.

        config = build_config(pipe(
            lambda c: with_host(c, "db1"),
            lambda c: with_destination(c, "/srv/dumps"),
            lambda c: backup_key(c, "etc", ["/etc"]),
        )(create_empty_config()))
    """

    def composed(config: ConfigDict) -> ConfigDict:
        result = config
        for func in funcs:
            result = func(result)
        return result

    return composed


def create_config(
    host: str,
    *,
    destination: str | Path,
    keys: Dict[str, List[str]],
    filters: Dict[str, str] | None = None,
    state_path: str | Path | None = None,
    ssh_command: List[str] | None = None,
    compress: bool = True,
    zstd_level: int = 3,
    **kwargs: Any,
) -> DumpConfig:
    """
    Create hostdump configuration from simple parameters.

    This is the recommended user-facing API for creating configurations.

    Example:
        config = create_config(
            "db1.example.org",
            destination="/srv/dumps",
            keys={"etc": ["/etc"], "home": ["/home", "/root"]},
            filters={"etc": "hostdump.filters:passthrough"},
        )
    """
    config_dict = with_destination(with_host(create_empty_config(), host), destination)

    for key, directories in keys.items():
        config_dict = backup_key(config_dict, key, directories)

    for key, filter_ref in (filters or {}).items():
        config_dict = with_filter(config_dict, key, filter_ref)

    if state_path:
        config_dict = with_state_path(config_dict, state_path)

    if ssh_command:
        config_dict = with_ssh_command(config_dict, ssh_command)

    if not compress:
        config_dict = disable_compression(config_dict)

    config_dict = with_zstd_level(config_dict, zstd_level)

    if kwargs.pop("keep_staging", False):
        config_dict = keep_staging(config_dict)

    # Apply any additional kwargs
    for key, value in kwargs.items():
        if key in config_dict:
            config_dict[key] = value

    return build_config(config_dict)
