"""Tests for repository discovery."""

from __future__ import annotations

import shutil
import subprocess
from pathlib import Path

import pytest

from git_tasks.core import (
    CommandGateway,
    GitOperations,
    ProcessStartFailure,
    discover_repositories,
    find_git_directories,
)

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")


def _git(cwd: Path, *args: str) -> None:
    subprocess.run(
        ["git", "-c", "user.name=Test", "-c", "user.email=test@example.com", *args],
        cwd=cwd,
        check=True,
        capture_output=True,
    )


def _init_repo(path: Path, branch: str = "main") -> Path:
    path.mkdir(parents=True, exist_ok=True)
    _git(path, "init", "-q")
    _git(path, "symbolic-ref", "HEAD", f"refs/heads/{branch}")
    _git(path, "commit", "-q", "--allow-empty", "-m", "init")
    return path


# =============================================================================
# Directory Scan Tests
# =============================================================================


class TestFindGitDirectories:
    """Tests for the filesystem scan."""

    def test_root_and_children(self, tmp_path: Path) -> None:
        (tmp_path / ".git").mkdir()
        (tmp_path / "app" / ".git").mkdir(parents=True)
        (tmp_path / "docs").mkdir()
        (tmp_path / "deep" / "nested" / ".git").mkdir(parents=True)
        assert find_git_directories(tmp_path) == [tmp_path, tmp_path / "app"]

    def test_gitdir_file(self, tmp_path: Path) -> None:
        """Submodules and worktrees have a `.git` file pointing elsewhere."""
        (tmp_path / "lib").mkdir()
        (tmp_path / "lib" / ".git").write_text("gitdir: ../.git/modules/lib\n")
        (tmp_path / "other").mkdir()
        (tmp_path / "other" / ".git").write_text("something else\n")
        assert find_git_directories(tmp_path) == [tmp_path / "lib"]

    def test_depth(self, tmp_path: Path) -> None:
        (tmp_path / "a" / "b" / ".git").mkdir(parents=True)
        assert find_git_directories(tmp_path, depth=1) == []
        assert find_git_directories(tmp_path, depth=2) == [tmp_path / "a" / "b"]


# =============================================================================
# Discovery Tests
# =============================================================================


class TestDiscoverRepositories:
    """Tests for resolving branch names and submodules."""

    def test_scripted_branches(self, scripted_gateway, tmp_path: Path) -> None:
        (tmp_path / ".git").mkdir()
        (tmp_path / "app" / ".git").mkdir(parents=True)
        root_path = tmp_path.resolve()

        def respond(args, path, token):
            if args[0] == "rev-parse":
                return (0, "main") if path == root_path else (0, "dev")
            if path == root_path:
                return (0, "origin/main")
            return (128, "fatal: ref refs/remotes/origin/HEAD is not a symbolic ref")

        with scripted_gateway(respond) as gateway:
            records = discover_repositories(tmp_path, GitOperations(gateway))

        root, app = (record.value for record in records)
        assert root.relative_path == "."
        assert (root.current_branch, root.default_branch) == ("main", "main")
        assert app.relative_path == "app"
        assert (app.current_branch, app.default_branch) == ("dev", None)
        assert app.ok is True

    def test_branch_failure_is_error(self, scripted_gateway, tmp_path: Path) -> None:
        (tmp_path / ".git").mkdir()
        gateway = scripted_gateway(lambda args, path, token: (128, "fatal: bad object HEAD"))
        with gateway:
            (record,) = discover_repositories(tmp_path, GitOperations(gateway))
        assert record.value.error_message == "fatal: bad object HEAD"
        assert record.value.current_branch is None
        assert record.value.default_branch is None

    def test_git_missing(self, tmp_path: Path) -> None:
        """Only a git that cannot start yields a record without a target."""
        (tmp_path / ".git").mkdir()
        with CommandGateway() as gateway:
            git = GitOperations(gateway, executable="git-tasks-no-such-git")
            (record,) = discover_repositories(tmp_path, git)
        assert record.value is None
        assert record.start_failure == ProcessStartFailure.NOT_FOUND
        assert record.reference == tmp_path.resolve()

    @requires_git
    def test_real_repositories_and_submodules(self, tmp_path: Path) -> None:
        root = _init_repo(tmp_path / "root")
        _init_repo(root / "child", branch="develop")
        (root / ".gitmodules").write_text('[submodule "libs/core"]\n\tpath = libs/core\n\turl = ../core.git\n')
        (root / "libs" / "core").mkdir(parents=True)

        with CommandGateway() as gateway:
            records = discover_repositories(root, GitOperations(gateway))

        by_label = {record.value.relative_path: record.value for record in records}
        assert list(by_label) == [".", "child", "libs/core"]
        assert by_label["."].current_branch == "main"
        assert by_label["."].default_branch is None
        assert by_label["child"].current_branch == "develop"
        core = by_label["libs/core"]
        assert core.is_submodule is True
        assert core.error_message == "not a git repository"
