# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Filter pipeline tests.
"""

import pytest

from hostdump.config import DumpConfig
from hostdump.exceptions import ConfigurationError
from hostdump.filters import (
    FilterRegistry,
    apply_filter_pipeline,
    exclude_patterns,
    load_filter,
    normalize_paths,
    passthrough,
    registry_from_config,
)


def test_normalize_strips_exactly_one_separator():
    assert normalize_paths(["/etc/hosts", "//etc/hosts", "etc/hosts"]) == [
        "etc/hosts",
        "/etc/hosts",
        "etc/hosts",
    ]


def test_pipeline_produces_relative_paths():
    registry = FilterRegistry({"etc": passthrough})

    final = apply_filter_pipeline(["/etc/hosts", "/etc/ssh/sshd_config"], "etc", registry)

    assert final == ["etc/hosts", "etc/ssh/sshd_config"]


def test_filter_sees_normalized_paths():
    seen = []

    def spy(paths):
        seen.extend(paths)
        return paths

    apply_filter_pipeline(["/etc/hosts"], "etc", FilterRegistry({"etc": spy}))

    assert seen == ["etc/hosts"]


def test_missing_filter_is_configuration_error():
    registry = FilterRegistry({"etc": passthrough})

    with pytest.raises(ConfigurationError) as exc_info:
        apply_filter_pipeline(["/home/user/.bashrc"], "home", registry)

    assert "home" in exc_info.value.message


def test_filter_returning_absolute_paths_is_rejected():
    registry = FilterRegistry({"etc": lambda paths: ["/" + p for p in paths]})

    with pytest.raises(ConfigurationError):
        apply_filter_pipeline(["/etc/hosts"], "etc", registry)


def test_empty_entries_are_dropped():
    registry = FilterRegistry({"etc": lambda paths: list(paths) + [""]})

    assert apply_filter_pipeline(["/etc/hosts"], "etc", registry) == ["etc/hosts"]


def test_exclude_patterns():
    fn = exclude_patterns("var/cache/*", "*.tmp")

    assert fn(["var/cache/apt/pkg", "var/lib/dpkg/status", "home/a.tmp"]) == [
        "var/lib/dpkg/status"
    ]


def test_register_rejects_non_callable():
    registry = FilterRegistry()

    with pytest.raises(ConfigurationError):
        registry.register("etc", "not a function")


def test_registry_membership():
    registry = FilterRegistry({"etc": passthrough, "home": passthrough})

    assert "etc" in registry
    assert "var" not in registry
    assert registry.keys() == ["etc", "home"]


# ============================================================================
# Loading filters by reference
# ============================================================================

def test_load_filter_by_reference():
    assert load_filter("hostdump.filters:passthrough") is passthrough


@pytest.mark.parametrize(
    "reference",
    [
        "no_colon",
        "hostdump.not_a_module:fn",
        "hostdump.filters:missing",
        "hostdump:__version__",
    ],
)
def test_load_filter_rejects_bad_references(reference: str):
    with pytest.raises(ConfigurationError):
        load_filter(reference)


def test_registry_from_config(temp_dir):
    config = DumpConfig(
        host="localhost",
        destination=temp_dir,
        keys={"etc": ["/etc"], "home": ["/home"]},
        filters={"etc": "hostdump.filters:passthrough"},
    )

    registry = registry_from_config(config)

    assert "etc" in registry
    assert "home" not in registry
