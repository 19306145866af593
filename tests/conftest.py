"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

import os
from collections.abc import Callable
from pathlib import Path

import pytest

from opctl.config import AppConfig, load_config

from fakes import write_stub


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip expensive tests during mutation runs."""
    if not os.environ.get("MUTANT_UNDER_TEST"):
        return
    skip_marker = pytest.mark.skip(reason="Skipped during mutation run to avoid timeouts.")
    for item in items:
        if "mutation_timeout" in item.keywords:
            item.add_marker(skip_marker)


@pytest.fixture
def as_root(monkeypatch: pytest.MonkeyPatch) -> None:
    """Pretend the test process runs with an effective uid of 0."""
    monkeypatch.setattr(os, "geteuid", lambda: 0)


@pytest.fixture
def as_user(monkeypatch: pytest.MonkeyPatch) -> None:
    """Pretend the test process runs as an unprivileged user."""
    monkeypatch.setattr(os, "geteuid", lambda: 1000)


@pytest.fixture
def backup_dir(tmp_path: Path) -> Path:
    """Return an existing, empty backup directory."""
    path = tmp_path / "backup"
    path.mkdir()
    return path


@pytest.fixture
def make_config(tmp_path: Path, backup_dir: Path) -> Callable[..., AppConfig]:
    """Return a factory building configs whose binaries resolve to stubs."""
    bin_dir = tmp_path / "bin"
    openproject = write_stub(bin_dir, "openproject")
    pg_restore = write_stub(bin_dir, "pg_restore")
    targets = tmp_path / "targets"

    def factory(**overrides: object) -> AppConfig:
        values: dict[str, object] = {
            "logs_dir": str(tmp_path / "logs"),
            "backup_dir": str(backup_dir),
            "openproject": {"bin": str(openproject)},
            "postgres": {"pg_restore_bin": str(pg_restore)},
            "restore_targets": {
                "attachments": str(targets / "files"),
                "configuration": str(targets / "conf"),
                "git_repositories": str(targets / "git"),
                "svn_repositories": str(targets / "svn"),
            },
        }
        values.update(overrides)
        return load_config(config_file=tmp_path / "missing.yml", env={}, overrides=values)

    return factory
