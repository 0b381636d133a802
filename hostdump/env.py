# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Environment-based configuration helpers.

These helpers are small wrappers around create_config() that read the
target host, destination, keys and filters from environment variables.
"""

from __future__ import annotations

import os
import shlex
from typing import Dict, List

from hostdump.builder import create_config
from hostdump.config import DumpConfig, KeyConfig
from hostdump.errors import (
    explain_invalid_filters_env,
    explain_invalid_keys_env,
    explain_invalid_zstd_level_env,
    explain_missing_destination_env,
    explain_missing_host_env,
    explain_missing_keys,
)
from hostdump.exceptions import ConfigurationError


def _parse_bool(value: str | None, default: bool) -> bool:
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _parse_keys(value: str | None) -> KeyConfig:
    """Parse 'key=/a,/b;other=/c'."""
    if not value:
        return {}
    keys: Dict[str, List[str]] = {}
    for item in value.split(";"):
        item = item.strip()
        if not item:
            continue
        key, sep, dirs = item.partition("=")
        directories = [d.strip() for d in dirs.split(",") if d.strip()]
        if not sep or not key.strip() or not directories:
            raise ConfigurationError(explain_invalid_keys_env(value))
        keys[key.strip()] = directories
    return keys


def _parse_filters(value: str | None) -> Dict[str, str]:
    """Parse 'key=package.module:callable;other=...'."""
    if not value:
        return {}
    filters: Dict[str, str] = {}
    for item in value.split(";"):
        item = item.strip()
        if not item:
            continue
        key, sep, ref = item.partition("=")
        if not sep or not key.strip() or ":" not in ref:
            raise ConfigurationError(explain_invalid_filters_env(value))
        filters[key.strip()] = ref.strip()
    return filters


def _parse_zstd_level(value: str | None) -> int:
    if not value:
        return 3
    try:
        level = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(explain_invalid_zstd_level_env(value)) from exc
    if not 1 <= level <= 22:
        raise ConfigurationError(explain_invalid_zstd_level_env(value))
    return level


def create_config_from_env(*, keys: KeyConfig | None = None) -> DumpConfig:
    """
    Create a DumpConfig from environment variables.

    Explicit keys take precedence over HOSTDUMP_KEYS.

    Required:
        - HOSTDUMP_HOST: Host to back up ("localhost" for this machine)
        - HOSTDUMP_DESTINATION: Directory for archives, indexes and state
        - keys, or HOSTDUMP_KEYS: "etc=/etc;home=/home,/root"

    Optional environment variables:
        - HOSTDUMP_FILTERS: "etc=hostdump.filters:passthrough;home=mypkg.filters:home"
        - HOSTDUMP_STATE_PATH: Run state database (default: <destination>/state.db)
        - HOSTDUMP_SSH_COMMAND: ssh command prefix, shell-split (default: "ssh -o BatchMode=yes")
        - HOSTDUMP_COMPRESS: compress archives with zstd (default: true)
        - HOSTDUMP_ZSTD_LEVEL: 1-22 (default: 3)
        - HOSTDUMP_KEEP_STAGING: keep per-run staging directories (default: false)
    """

    host = os.getenv("HOSTDUMP_HOST")
    if not host:
        raise ConfigurationError(explain_missing_host_env())

    destination = os.getenv("HOSTDUMP_DESTINATION")
    if not destination:
        raise ConfigurationError(explain_missing_destination_env())

    keys = keys or _parse_keys(os.getenv("HOSTDUMP_KEYS"))
    if not keys:
        raise ConfigurationError(explain_missing_keys())

    ssh_env = os.getenv("HOSTDUMP_SSH_COMMAND")

    return create_config(
        host,
        destination=destination,
        keys=keys,
        filters=_parse_filters(os.getenv("HOSTDUMP_FILTERS")),
        state_path=os.getenv("HOSTDUMP_STATE_PATH") or None,
        ssh_command=shlex.split(ssh_env) if ssh_env else None,
        compress=_parse_bool(os.getenv("HOSTDUMP_COMPRESS"), True),
        zstd_level=_parse_zstd_level(os.getenv("HOSTDUMP_ZSTD_LEVEL")),
        keep_staging=_parse_bool(os.getenv("HOSTDUMP_KEEP_STAGING"), False),
    )
