from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from git_filesync.config import TaskDefinition

from .fakes import FakeGit, FakeNotifier


@pytest.fixture
def fake_git() -> FakeGit:
    return FakeGit()


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def make_task(tmp_path: Path) -> Callable[..., TaskDefinition]:
    """Builds a TaskDefinition rooted in a fresh directory under tmp_path."""

    def _make(
        name: str = "docs",
        ignore: tuple[str, ...] = (),
        lfs: tuple[str, ...] = (),
        initialized: bool = False,
        **overrides: Any,
    ) -> TaskDefinition:
        path = tmp_path / name
        path.mkdir(exist_ok=True)
        if initialized:
            (path / ".git").mkdir(exist_ok=True)
        fields = {
            "name": name,
            "local_path": path,
            "remote_url": f"git@example.com:me/{name}.git",
            "cron_expression": "*/15 * * * *",
            "ignore_patterns": frozenset(ignore),
            "lfs_patterns": frozenset(lfs),
        }
        fields.update(overrides)
        return TaskDefinition(**fields)

    return _make
