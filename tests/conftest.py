# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Test fixtures for hostdump tests.

Provides temporary directories, a small source tree to back up and
configuration helpers for local-host runs.
"""

import tempfile
from pathlib import Path
from typing import Generator

import pytest


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir).resolve()


@pytest.fixture
def source_tree(temp_dir: Path) -> Path:
    """
    Create a small directory tree to back up.

    Layout:
        src/a.txt
        src/sub/b.txt
        src/sub/deeper/c.txt
        src/link -> a.txt
    """
    src = temp_dir / "src"
    (src / "sub" / "deeper").mkdir(parents=True)
    (src / "a.txt").write_text("alpha")
    (src / "sub" / "b.txt").write_text("bravo")
    (src / "sub" / "deeper" / "c.txt").write_text("charlie")
    (src / "link").symlink_to("a.txt")
    return src


@pytest.fixture
def local_config(temp_dir: Path, source_tree: Path):
    """Create a configuration backing up the source tree on localhost."""
    from hostdump.config import DumpConfig

    return DumpConfig(
        host="localhost",
        destination=temp_dir / "dumps",
        keys={"data": [str(source_tree)]},
    )


@pytest.fixture
def passthrough_registry():
    """Filter registry keeping every file of the 'data' key."""
    from hostdump.filters import FilterRegistry, passthrough

    return FilterRegistry({"data": passthrough})

