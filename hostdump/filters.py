# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
hostdump Filter Pipeline - Turn candidate paths into the final file list.

Two stages, always in this order:
1. Path normalization: strip one leading separator so archive members are
   stored relative to the filesystem root.
2. User filter: the callable registered for the backup key decides which
   paths are kept.

Filters are plain callables registered per key, either directly or by
"module:callable" reference in the configuration.
"""

import importlib
import os
from fnmatch import fnmatchcase
from typing import Callable, Dict, List, Mapping, Sequence

import structlog

from hostdump.config import DumpConfig
from hostdump.errors import explain_missing_filter
from hostdump.exceptions import ConfigurationError

logger = structlog.get_logger()

# A filter receives normalized paths and returns the ones to archive
FilterFn = Callable[[Sequence[str]], Sequence[str]]


class FilterRegistry:
    """Filters resolved by backup key."""

    def __init__(self, filters: Mapping[str, FilterFn] | None = None):
        self._filters: Dict[str, FilterFn] = {}
        for key, fn in (filters or {}).items():
            self.register(key, fn)

    def register(self, key: str, fn: FilterFn) -> None:
        if not callable(fn):
            raise ConfigurationError(
                f"Filter for backup key {key!r} is not callable",
                details={"key": key, "filter": repr(fn)},
            )
        self._filters[key] = fn

    def resolve(self, key: str) -> FilterFn:
        """
        Return the filter for a key.

        Raises:
            ConfigurationError: If no filter is registered for the key
        """
        try:
            return self._filters[key]
        except KeyError:
            raise ConfigurationError(
                explain_missing_filter(key),
                details={"key": key},
            ) from None

    def keys(self) -> List[str]:
        return sorted(self._filters)

    def __contains__(self, key: object) -> bool:
        return key in self._filters


def passthrough(paths: Sequence[str]) -> List[str]:
    """Keep every path."""
    return list(paths)


def exclude_patterns(*patterns: str) -> FilterFn:
    """
    Build a filter that drops paths matching any glob pattern.

    Patterns match normalized (relative) paths, e.g. "var/cache/*".
    """

    def _filter(paths: Sequence[str]) -> List[str]:
        return [p for p in paths if not any(fnmatchcase(p, pat) for pat in patterns)]

    return _filter


def load_filter(ref: str) -> FilterFn:
    """
    Import a filter from a "package.module:callable" reference.

    Raises:
        ConfigurationError: If the module or attribute cannot be loaded
    """
    module_name, _, attr = ref.partition(":")
    if not module_name or not attr:
        raise ConfigurationError(
            f"Invalid filter reference {ref!r}, expected 'module:callable'",
            details={"filter": ref},
        )

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigurationError(
            f"Cannot import filter module {module_name!r}: {e}",
            details={"filter": ref},
        ) from e

    fn = module
    for part in attr.split("."):
        try:
            fn = getattr(fn, part)
        except AttributeError as e:
            raise ConfigurationError(
                f"Filter {ref!r} not found",
                details={"filter": ref},
            ) from e

    if not callable(fn):
        raise ConfigurationError(
            f"Filter {ref!r} is not callable",
            details={"filter": ref},
        )
    return fn


def registry_from_config(config: DumpConfig) -> FilterRegistry:
    """Build a registry from the filters named in the configuration."""
    registry = FilterRegistry()
    for key, ref in config.filters.items():
        registry.register(key, load_filter(ref))
    return registry


def normalize_paths(paths: Sequence[str]) -> List[str]:
    """Strip a single leading path separator from every path."""
    return [p[len(os.sep):] if p.startswith(os.sep) else p for p in paths]


def apply_filter_pipeline(
    paths: Sequence[str],
    key: str,
    registry: FilterRegistry,
) -> List[str]:
    """
    Normalize candidate paths and run the key's filter over them.

    Args:
        paths: Candidate paths from enumeration
        key: Backup key used to resolve the filter
        registry: Filter registry

    Returns:
        Final file list, relative paths only

    Raises:
        ConfigurationError: If no filter is registered for the key or the
            filter returns an absolute path
    """
    fn = registry.resolve(key)
    normalized = normalize_paths(paths)

    accepted = [p for p in fn(normalized) if p]

    absolute = [p for p in accepted if p.startswith(os.sep)]
    if absolute:
        raise ConfigurationError(
            f"Filter for backup key {key!r} returned absolute paths",
            details={"key": key, "examples": absolute[:5]},
        )

    logger.info(
        "files_filtered",
        key=key,
        candidates=len(normalized),
        accepted=len(accepted),
    )
    return accepted
