"""Tests for the git command gateway and repository facade."""

import subprocess
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from git_filesync.exceptions import CommandFailure
from git_filesync.git_wrapper import (
    CommandResult,
    GitRepo,
    GitRunner,
    is_already_tracked,
    is_missing_remote_ref,
)

from .fakes import FakeGit


def _completed(returncode: int, stdout: str = "", stderr: str = "") -> MagicMock:
    return MagicMock(
        spec=subprocess.CompletedProcess, returncode=returncode, stdout=stdout, stderr=stderr
    )


def test_run_returns_captured_output_without_fail_fast(
    mocker: MagicMock, tmp_path: Path
) -> None:
    """Verifies that a nonzero exit is handed back when fail_fast is off."""
    mock_run = mocker.patch(
        "subprocess.run", return_value=_completed(1, "out", "fatal: nope")
    )

    result = GitRunner().run(tmp_path, ["status", "--porcelain"], fail_fast=False)

    assert result == CommandResult(1, "out", "fatal: nope")
    assert not result.ok
    args, kwargs = mock_run.call_args
    assert args[0] == ["git", "status", "--porcelain"]
    assert kwargs["cwd"] == tmp_path
    assert kwargs["capture_output"] is True


def test_run_raises_command_failure_with_output(mocker: MagicMock, tmp_path: Path) -> None:
    """Verifies that fail_fast raises and keeps both streams on the exception."""
    mocker.patch(
        "subprocess.run",
        return_value=_completed(1, "", "fatal: couldn't find remote ref master"),
    )

    with pytest.raises(CommandFailure) as exc_info:
        GitRunner().run(tmp_path, ["pull", "origin", "master"])

    err = exc_info.value
    assert err.returncode == 1
    assert err.args_list == ["pull", "origin", "master"]
    assert "couldn't find remote ref" in err.output
    assert "couldn't find remote ref" in str(err)


def test_run_reports_spawn_errors_as_exit_127(mocker: MagicMock, tmp_path: Path) -> None:
    """Verifies that a missing executable or directory becomes a failed result."""
    mocker.patch("subprocess.run", side_effect=FileNotFoundError("no such file: git"))

    result = GitRunner().run(tmp_path / "gone", ["status"], fail_fast=False)
    assert result.returncode == 127
    assert "no such file" in result.stderr

    with pytest.raises(CommandFailure):
        GitRunner().run(tmp_path / "gone", ["status"])


def test_background_runner_never_prompts() -> None:
    """Verifies that the non-interactive environment disables credential prompts."""
    runner = GitRunner()
    assert runner.env is not None
    assert runner.env["GIT_TERMINAL_PROMPT"] == "0"
    assert "BatchMode=yes" in runner.env["GIT_SSH_COMMAND"]

    assert GitRunner(interactive=True).env is None


def test_output_predicates() -> None:
    assert is_missing_remote_ref("fatal: Couldn't find remote ref master\n")
    assert not is_missing_remote_ref("CONFLICT (content): Merge conflict in a.txt")
    assert is_already_tracked('"*.psd" already supported')
    assert not is_already_tracked('Tracking "*.psd"')


def test_probe_requires_own_git_dir(tmp_path: Path, fake_git: FakeGit) -> None:
    """Verifies that a directory without .git is not probed with git at all."""
    repo = GitRepo(tmp_path, fake_git)
    assert repo.probe() is False
    assert fake_git.calls == []

    (tmp_path / ".git").mkdir()
    assert repo.probe() is True
    assert fake_git.commands == [["status", "--porcelain"]]

    fake_git.script("status", returncode=128, stderr="fatal: not a git repository")
    assert repo.probe() is False


def test_probe_missing_directory(tmp_path: Path, fake_git: FakeGit) -> None:
    assert GitRepo(tmp_path / "deleted", fake_git).probe() is False


def test_add_remote_repoints_existing_remote(tmp_path: Path, fake_git: FakeGit) -> None:
    """Verifies that a duplicate remote registration is tolerated."""
    fake_git.script(
        "remote", "add", returncode=3, stderr="error: remote origin already exists."
    )
    GitRepo(tmp_path, fake_git).add_remote("git@example.com:me/docs.git")

    assert fake_git.commands[-1] == [
        "remote",
        "set-url",
        "origin",
        "git@example.com:me/docs.git",
    ]


def test_add_remote_other_errors_raise(tmp_path: Path, fake_git: FakeGit) -> None:
    fake_git.script("remote", "add", returncode=128, stderr="fatal: bad url")
    with pytest.raises(CommandFailure):
        GitRepo(tmp_path, fake_git).add_remote("::")


def test_has_staged_changes_reads_exit_code(tmp_path: Path, fake_git: FakeGit) -> None:
    repo = GitRepo(tmp_path, fake_git)

    fake_git.script("diff", "--cached", returncode=0)
    fake_git.script("diff", "--cached", returncode=1)
    fake_git.script("diff", "--cached", returncode=128, stderr="fatal")

    assert repo.has_staged_changes() is False
    assert repo.has_staged_changes(".gitignore") is True
    assert fake_git.commands[-1] == ["diff", "--cached", "--quiet", "--", ".gitignore"]
    with pytest.raises(CommandFailure):
        repo.has_staged_changes()


def test_lfs_track_distinguishes_new_rules(tmp_path: Path, fake_git: FakeGit) -> None:
    repo = GitRepo(tmp_path, fake_git)

    fake_git.script("lfs", "track", "*.psd", stdout='Tracking "*.psd"\n')
    fake_git.script("lfs", "track", "*.zip", stdout='"*.zip" already supported\n')

    assert repo.lfs_track("*.psd") is True
    assert repo.lfs_track("*.zip") is False


def test_lfs_rules_parses_attributes(tmp_path: Path) -> None:
    (tmp_path / ".gitattributes").write_text(
        "*.psd filter=lfs diff=lfs merge=lfs -text\n"
        "*.sh text eol=lf\n"
        "\n"
        "*.zip filter=lfs diff=lfs merge=lfs -text\n"
    )
    assert GitRepo(tmp_path, FakeGit()).lfs_rules() == {"*.psd", "*.zip"}


def test_commit_and_push_arguments(tmp_path: Path, fake_git: FakeGit) -> None:
    repo = GitRepo(tmp_path, fake_git)

    repo.commit("msg")
    repo.commit("rules", paths=[".gitignore"])
    repo.push("master")
    repo.push("master", set_upstream=True)

    assert fake_git.commands == [
        ["commit", "-m", "msg"],
        ["commit", "-m", "rules", "--", ".gitignore"],
        ["push", "origin", "master"],
        ["push", "-u", "origin", "master"],
    ]


def test_commits_ahead(tmp_path: Path, fake_git: FakeGit) -> None:
    repo = GitRepo(tmp_path, fake_git)

    fake_git.script("rev-list", stdout="2\n")
    fake_git.script("rev-list", returncode=128, stderr="unknown revision")

    assert repo.commits_ahead("master") == 2
    assert fake_git.commands[:2] == [
        ["rev-parse", "--verify", "--quiet", "refs/remotes/origin/master"],
        ["rev-list", "--count", "origin/master..HEAD"],
    ]
    assert repo.commits_ahead("master") == 0


def test_commits_ahead_of_empty_remote_counts_all_of_head(
    tmp_path: Path, fake_git: FakeGit
) -> None:
    """Verifies that every local commit is unpublished while the remote branch is unknown."""
    repo = GitRepo(tmp_path, fake_git)
    fake_git.script("rev-parse", returncode=1)
    fake_git.script("rev-list", stdout="1\n")

    assert repo.has_remote_branch("master") is False
    assert repo.commits_ahead("master") == 1
    assert fake_git.commands[-1] == ["rev-list", "--count", "HEAD"]


def test_read_lines_keeps_undecodable_bytes(tmp_path: Path) -> None:
    (tmp_path / ".gitignore").write_bytes(b"caf\xe9.tmp\n*.log\n")

    lines = GitRepo(tmp_path, FakeGit()).read_lines(".gitignore")

    assert lines == ["caf\udce9.tmp", "*.log"]
