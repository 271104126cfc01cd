"""Tests for ignore and LFS rule reconciliation."""

from pathlib import Path

import pytest

from git_filesync import rules
from git_filesync.constants import IGNORE_COMMIT_MESSAGE, LFS_COMMIT_MESSAGE
from git_filesync.exceptions import CommandFailure
from git_filesync.git_wrapper import GitRepo

from .fakes import FakeGit


@pytest.fixture
def repo(tmp_path: Path, fake_git: FakeGit) -> GitRepo:
    (tmp_path / ".git").mkdir()
    return GitRepo(tmp_path, fake_git)


def test_ignore_reordered_rules_are_a_no_op(repo: GitRepo, fake_git: FakeGit) -> None:
    """Verifies that the same patterns in a different order cause no rewrite."""
    ignore_file = repo.path / ".gitignore"
    ignore_file.write_text("*.tmp\n\n.DS_Store\n")

    committed = rules.reconcile_ignore(repo, [".DS_Store", "*.tmp"], "master")

    assert committed is False
    assert fake_git.calls == []
    assert ignore_file.read_text() == "*.tmp\n\n.DS_Store\n"


def test_ignore_change_is_written_committed_and_pushed(
    repo: GitRepo, fake_git: FakeGit
) -> None:
    (repo.path / ".gitignore").write_text("*.log\n")
    fake_git.script("diff", "--cached", returncode=1)

    committed = rules.reconcile_ignore(repo, {"*.tmp", "build/"}, "master")

    assert committed is True
    assert (repo.path / ".gitignore").read_text() == "*.tmp\nbuild/\n"
    assert fake_git.commands == [
        ["add", ".gitignore"],
        ["diff", "--cached", "--quiet", "--", ".gitignore"],
        ["commit", "-m", IGNORE_COMMIT_MESSAGE, "--", ".gitignore"],
        ["push", "origin", "master"],
    ]


def test_ignore_reconcile_twice_commits_once(repo: GitRepo, fake_git: FakeGit) -> None:
    """Verifies idempotence: the second run with the same rules does nothing."""
    fake_git.script("diff", "--cached", returncode=1)

    first = rules.reconcile_ignore(repo, {"*.tmp"}, "master")
    second = rules.reconcile_ignore(repo, {"*.tmp"}, "master")

    assert (first, second) == (True, False)
    assert fake_git.count("commit") == 1
    assert fake_git.count("push") == 1


def test_ignore_stage_without_diff_skips_commit(repo: GitRepo, fake_git: FakeGit) -> None:
    """Verifies that a rewrite git considers unchanged produces no commit."""
    (repo.path / ".gitignore").write_text("*.tmp")
    fake_git.script("diff", "--cached", returncode=0)

    assert rules.reconcile_ignore(repo, {"*.tmp", "*.bak"}, "master") is False
    assert fake_git.count("commit") == 0
    assert fake_git.count("push") == 0


def test_ignore_empty_rules_clear_stale_file(repo: GitRepo, fake_git: FakeGit) -> None:
    (repo.path / ".gitignore").write_text("*.tmp\n")
    fake_git.script("diff", "--cached", returncode=1)

    assert rules.reconcile_ignore(repo, [], "master") is True
    assert (repo.path / ".gitignore").exists()
    assert (repo.path / ".gitignore").read_text() == ""


def test_ignore_empty_rules_without_file_do_nothing(
    repo: GitRepo, fake_git: FakeGit
) -> None:
    assert rules.reconcile_ignore(repo, [], "master") is False
    assert not (repo.path / ".gitignore").exists()
    assert fake_git.calls == []


def test_ignore_unpublished_only_stages(repo: GitRepo, fake_git: FakeGit) -> None:
    assert rules.reconcile_ignore(repo, {"*.tmp"}, "master", publish=False) is False
    assert fake_git.commands == [["add", ".gitignore"]]
    assert (repo.path / ".gitignore").read_text() == "*.tmp\n"


def test_lfs_without_patterns_runs_nothing(repo: GitRepo, fake_git: FakeGit) -> None:
    assert rules.reconcile_lfs(repo, [], "master") is False
    assert fake_git.calls == []


def test_lfs_repeat_declarations_do_not_commit(repo: GitRepo, fake_git: FakeGit) -> None:
    """Verifies that already-tracked patterns skip the attributes commit."""
    fake_git.script("lfs", "track", stdout='"*.psd" already supported\n')

    assert rules.reconcile_lfs(repo, {"*.psd", "*.zip"}, "master") is False
    assert fake_git.commands == [
        ["lfs", "install"],
        ["lfs", "track", "*.psd"],
        ["lfs", "track", "*.zip"],
    ]


def test_lfs_new_pattern_commits_attributes(repo: GitRepo, fake_git: FakeGit) -> None:
    fake_git.script("lfs", "track", "*.psd", stdout='"*.psd" already supported\n')
    fake_git.script("lfs", "track", "*.zip", stdout='Tracking "*.zip"\n')
    fake_git.script("diff", "--cached", returncode=1)

    assert rules.reconcile_lfs(repo, {"*.psd", "*.zip"}, "main") is True
    assert fake_git.commands[-4:] == [
        ["add", ".gitattributes"],
        ["diff", "--cached", "--quiet", "--", ".gitattributes"],
        ["commit", "-m", LFS_COMMIT_MESSAGE, "--", ".gitattributes"],
        ["push", "origin", "main"],
    ]


def test_lfs_dropped_patterns_stay_tracked(
    repo: GitRepo, fake_git: FakeGit, caplog: pytest.LogCaptureFixture
) -> None:
    """Verifies that removing a pattern from the task never untracks it."""
    attributes = "*.psd filter=lfs diff=lfs merge=lfs -text\n"
    (repo.path / ".gitattributes").write_text(attributes)

    assert rules.reconcile_lfs(repo, [], "master") is False

    assert fake_git.calls == []
    assert (repo.path / ".gitattributes").read_text() == attributes
    assert "stay tracked: *.psd" in caplog.text


def test_lfs_track_failure_propagates(repo: GitRepo, fake_git: FakeGit) -> None:
    fake_git.script("lfs", "install", returncode=1, stderr="git: 'lfs' is not a git command.")
    with pytest.raises(CommandFailure):
        rules.reconcile_lfs(repo, {"*.psd"}, "master")


def test_reconcile_runs_both_rule_sets(repo: GitRepo, fake_git: FakeGit, make_task) -> None:
    task = make_task(ignore=("*.tmp",), lfs=("*.psd",))
    fake_git.script("lfs", "track", stdout='"*.psd" already supported\n')
    fake_git.script("diff", "--cached", returncode=1)

    assert rules.reconcile(repo, task) is True
    assert fake_git.count("commit") == 1
    assert fake_git.count("lfs", "track") == 1
