"""
git-tasks: Run git across a repository tree and its submodules at once.

Domain models, the gateway that runs external commands, low-level git
operations and repository discovery.
"""

from __future__ import annotations

import os
import signal
import subprocess
import threading
from collections.abc import Callable, Mapping, Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from enum import StrEnum
from pathlib import Path
from typing import Any, Generic, TypeVar

from loguru import logger

T = TypeVar("T")
U = TypeVar("U")

# =============================================================================
# Domain Models
# =============================================================================


class ProcessStartFailure(StrEnum):
    """Why an external command could not be started."""

    NOT_FOUND = "not_found"
    ACCESS_DENIED = "access_denied"
    OTHER = "other"


class OperationKind(StrEnum):
    """Git operations whose results are kept per repository."""

    STATUS = "status"
    FULL_STATUS = "full_status"
    FETCH = "fetch"
    PULL = "pull"
    CHECKOUT = "checkout"
    BRANCHES = "branches"
    CLEAN = "clean"
    RESET = "reset"
    SET_HEAD = "set_head"
    COMMIT_POSITION = "commit_position"


class ResetMode(StrEnum):
    """How far `git reset` reaches into the index and working tree."""

    MIXED = "mixed"  # move HEAD and the index, keep the working tree
    SOFT = "soft"  # move HEAD only
    HARD = "hard"  # move HEAD, the index and the working tree

    @property
    def flag(self) -> str:
        return f"--{self.value}"


class InvalidOptionsError(ValueError):
    """Raised when mutually exclusive options are combined."""


@dataclass(frozen=True)
class ExecuteResult:
    """Outcome of one external command invocation.

    An exit code of -1 means the command never ran. `reference` carries the
    context the result belongs to, usually the repository path.
    """

    exit_code: int = -1
    killed: bool = False
    exception: BaseException | None = None
    output: str | None = None
    reference: Any = None
    start_failure: ProcessStartFailure | None = None

    @property
    def success(self) -> bool:
        return (
            self.exit_code == 0
            and not self.killed
            and self.exception is None
            and self.output is not None
        )

    @staticmethod
    def from_value(value: T, reference: Any = None) -> ValueResult[T]:
        """Successful result for a value obtained without running a command."""
        return ValueResult(exit_code=0, output="", reference=reference, value=value)

    @staticmethod
    def failed(message: str, reference: Any = None) -> ExecuteResult:
        """Failed result for a precondition detected without running a command."""
        return ExecuteResult(exit_code=1, output=message, reference=reference)

    def status_fields(self) -> dict[str, Any]:
        return {
            "exit_code": self.exit_code,
            "killed": self.killed,
            "exception": self.exception,
            "output": self.output,
            "start_failure": self.start_failure,
        }

    def with_reference(self, reference: Any) -> ExecuteResult:
        return replace(self, reference=reference)

    def with_value(self, value: U | None, reference: Any = None) -> ValueResult[U]:
        """Reinterpret as a typed result carrying `value`, keeping the status."""
        return ValueResult(
            **self.status_fields(),
            reference=self.reference if reference is None else reference,
            value=value,
        )

    def without_value(self, reference: Any = None) -> ValueResult[Any]:
        return self.with_value(None, reference)

    def __str__(self) -> str:
        if self.output:
            return self.output
        if self.exception is not None:
            return str(self.exception)
        if self.killed:
            return "process was killed"
        return f"exit code {self.exit_code}"


@dataclass(frozen=True)
class ValueResult(ExecuteResult, Generic[T]):
    """Result that also carries a parsed value; success requires the value."""

    value: T | None = None

    @property
    def success(self) -> bool:
        return super().success and self.value is not None

    def as_untyped(self) -> ExecuteResult:
        return ExecuteResult(**self.status_fields(), reference=self.reference)


@dataclass(frozen=True)
class CommitPosition:
    """Commits the local branch is ahead of and behind its origin counterpart."""

    ahead: int = 0
    behind: int = 0

    @property
    def has_changes(self) -> bool:
        return self.ahead > 0 or self.behind > 0


@dataclass(frozen=True)
class GitBranch:
    """One line of `git branch --all`."""

    name: str
    is_current: bool = False
    is_remote: bool = False
    remote: str | None = None

    @property
    def full_name(self) -> str:
        if self.is_remote and self.remote:
            return f"{self.remote}/{self.name}"
        return self.name

    @classmethod
    def parse(cls, line: str) -> GitBranch:
        text = line.strip()
        if text.startswith("* "):
            return cls(name=text[2:], is_current=True)
        if text.startswith("remotes/"):
            # remotes/origin/HEAD -> origin/main
            text = text.split(" -> ", 1)[0][len("remotes/") :]
            remote, sep, name = text.partition("/")
            if not sep:
                return cls(name=remote, is_remote=True)
            return cls(name=name, is_remote=True, remote=remote)
        return cls(name=text)


@dataclass(frozen=True)
class CleanOptions:
    """Switches passed to `git clean`."""

    recursive: bool = False
    force: bool = False
    ignore_rules: bool = False  # -x: also remove ignored files
    only_ignored: bool = False  # -X: remove only ignored files
    dry_run: bool = False

    @property
    def conflicting(self) -> bool:
        return self.ignore_rules and self.only_ignored

    def validate(self) -> None:
        if self.conflicting:
            raise InvalidOptionsError(
                "--ignore-rules and --only-ignored are mutually exclusive"
            )

    def to_args(self) -> list[str]:
        args = ["clean"]
        if self.recursive:
            args.append("-d")
        if self.force:
            args.append("-f")
        if self.ignore_rules:
            args.append("-x")
        if self.only_ignored:
            args.append("-X")
        if self.dry_run:
            args.append("-n")
        return args


@dataclass
class RepositoryTarget:
    """One working tree under management for the duration of an invocation.

    `screen_row`, `screen_column` and `activity_shown` belong to the terminal
    renderer. Everything else is written only by the repository's own task.
    """

    path: Path
    relative_path: str = "."
    current_branch: str | None = None
    default_branch: str | None = None
    is_submodule: bool = False
    error_message: str | None = None
    screen_row: int = 0
    screen_column: int = 0
    activity_shown: bool = False
    results: dict[OperationKind, ExecuteResult] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.error_message is None

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def label(self) -> str:
        return self.relative_path

    @property
    def on_default_branch(self) -> bool:
        return self.default_branch is not None and self.current_branch == self.default_branch


# =============================================================================
# Command Gateway
# =============================================================================


class CancellationToken:
    """Cooperative cancellation shared by every command of one invocation."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: list[Callable[[], None]] = []
        self._timer: threading.Timer | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback()

    def cancel_after(self, seconds: float) -> None:
        """Cancel automatically once `seconds` have elapsed."""
        self._timer = threading.Timer(seconds, self.cancel)
        self._timer.daemon = True
        self._timer.start()

    def wait(self, timeout: float | None = None) -> bool:
        return self._event.wait(timeout)

    def register(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Run `callback` on cancellation; returns a function that unregisters it.

        A callback registered on an already cancelled token runs immediately.
        """
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)

                def unregister() -> None:
                    with self._lock:
                        if callback in self._callbacks:
                            self._callbacks.remove(callback)

                return unregister
        callback()
        return lambda: None

    def close(self) -> None:
        if self._timer is not None:
            self._timer.cancel()


def _session_kwargs() -> dict[str, Any]:
    # Own process group so a kill reaches git's children (ssh, hooks) and the
    # terminal's Ctrl+C reaches only us.
    if os.name == "posix":
        return {"start_new_session": True}
    return {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP}


def _kill(process: subprocess.Popen) -> None:
    if os.name == "posix":
        try:
            os.killpg(process.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
    else:
        process.kill()


class CommandGateway:
    """Run external commands and capture their outcome as an ExecuteResult.

    Ordinary failures never raise: start failures are tagged with a
    ProcessStartFailure and cancellation kills the process and sets `killed`.
    """

    def __init__(self, max_workers: int | None = None):
        self._max_workers = max_workers
        self._executor: ThreadPoolExecutor | None = None
        self._executor_lock = threading.Lock()

    def execute(
        self,
        command: str,
        args: Sequence[str] = (),
        working_directory: Path | str | None = None,
        token: CancellationToken | None = None,
        env: Mapping[str, str] | None = None,
    ) -> ExecuteResult:
        argv = [command, *args]
        description = " ".join(argv) + (f" ({working_directory})" if working_directory else "")

        if token is not None and token.cancelled:
            logger.debug(f"Cancelled before start: {description}")
            return ExecuteResult(killed=True, output="")

        logger.debug(f"Running: {description}")
        try:
            process = subprocess.Popen(
                argv,
                cwd=working_directory,
                env={**os.environ, **env} if env else None,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                encoding="utf-8",
                errors="replace",
                **_session_kwargs(),
            )
        except FileNotFoundError as e:
            return ExecuteResult(exception=e, start_failure=ProcessStartFailure.NOT_FOUND)
        except PermissionError as e:
            return ExecuteResult(exception=e, start_failure=ProcessStartFailure.ACCESS_DENIED)
        except OSError as e:
            return ExecuteResult(exception=e, start_failure=ProcessStartFailure.OTHER)

        killed = threading.Event()

        def kill() -> None:
            if process.poll() is None:
                killed.set()
                _kill(process)
                logger.info(f"Killed: {description}")

        unregister = token.register(kill) if token is not None else (lambda: None)
        try:
            output, _ = process.communicate()
        except KeyboardInterrupt:
            kill()
            process.wait()
            raise
        finally:
            unregister()

        logger.debug(f"Exit {process.returncode}: {description}")
        return ExecuteResult(
            exit_code=process.returncode,
            killed=killed.is_set(),
            output=(output or "").rstrip(),
        )

    def execute_async(
        self,
        command: str,
        args: Sequence[str] = (),
        working_directory: Path | str | None = None,
        token: CancellationToken | None = None,
        env: Mapping[str, str] | None = None,
    ) -> Future[ExecuteResult]:
        """Dispatch `execute` to the gateway's thread pool and return at once."""
        return self._pool().submit(self.execute, command, args, working_directory, token, env)

    def _pool(self) -> ThreadPoolExecutor:
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self._max_workers, thread_name_prefix="git-tasks-exec"
                )
            return self._executor

    def close(self) -> None:
        with self._executor_lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=True)

    def __enter__(self) -> CommandGateway:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


# =============================================================================
# Git Operations (Low-level)
# =============================================================================


class GitOperations:
    """Low-level git commands; every result carries the repository path as reference."""

    # Output is classified by its English wording, and git must never wait on
    # a credential prompt nobody can see.
    ENVIRONMENT = {"LC_ALL": "C", "GIT_TERMINAL_PROMPT": "0"}

    def __init__(
        self,
        gateway: CommandGateway,
        executable: str = "git",
        token: CancellationToken | None = None,
    ):
        self.gateway = gateway
        self.executable = executable
        self.token = token

    def _run(self, path: Path, *args: str) -> ExecuteResult:
        result = self.gateway.execute(self.executable, args, path, self.token, self.ENVIRONMENT)
        return result.with_reference(path)

    def _run_async(self, path: Path, *args: str) -> Future[ExecuteResult]:
        return self.gateway.execute_async(
            self.executable, args, path, self.token, self.ENVIRONMENT
        )

    def status(self, path: Path, porcelain: bool = True) -> ExecuteResult:
        return self._run(path, "status", "--porcelain") if porcelain else self._run(path, "status")

    def fetch(self, path: Path, branch: str | None = None) -> ExecuteResult:
        if branch is None or branch == "HEAD":
            return self._run(path, "fetch")
        return self._run(path, "fetch", "origin", branch)

    def pull(self, path: Path) -> ExecuteResult:
        return self._run(path, "pull")

    def checkout(self, path: Path, target: str, create: bool = False) -> ExecuteResult:
        if create:
            return self._run(path, "checkout", "-b", target)
        return self._run(path, "checkout", target)

    def clean(self, path: Path, options: CleanOptions) -> ExecuteResult:
        if options.conflicting:
            return ExecuteResult.failed(
                "Cannot use both 'only-ignored' and 'ignore-rules' together.", path
            )
        return self._run(path, *options.to_args())

    def reset(
        self,
        path: Path,
        commit: str = "HEAD",
        mode: ResetMode = ResetMode.MIXED,
        back: int = 0,
    ) -> ExecuteResult:
        if back > 0:
            commit = f"{commit}~{back}"
        return self._run(path, "reset", mode.flag, commit)

    def set_head(
        self,
        path: Path,
        remote: str,
        branch: str | None = None,
        automatically: bool = False,
    ) -> ExecuteResult:
        if branch is None and not automatically:
            return ExecuteResult.failed(
                "Branch must be specified if not setting automatically", path
            )
        return self._run(path, "remote", "set-head", remote, branch or "--auto")

    def branches(self, path: Path) -> ValueResult[list[GitBranch]]:
        result = self._run(path, "branch", "--all")
        if not result.success:
            return result.without_value()
        lines = [line for line in result.output.splitlines() if line.strip()]
        return result.with_value([GitBranch.parse(line) for line in lines])

    def current_branch(self, path: Path) -> ValueResult[str]:
        return self._branch_name(self._run(path, "rev-parse", "--abbrev-ref", "HEAD"))

    def current_branch_async(self, path: Path) -> Future[ExecuteResult]:
        return self._run_async(path, "rev-parse", "--abbrev-ref", "HEAD")

    def default_branch(self, path: Path, remote: str = "origin") -> ValueResult[str]:
        return self._default_branch_name(
            self._run(path, "symbolic-ref", f"refs/remotes/{remote}/HEAD", "--short")
        )

    def default_branch_async(self, path: Path, remote: str = "origin") -> Future[ExecuteResult]:
        return self._run_async(path, "symbolic-ref", f"refs/remotes/{remote}/HEAD", "--short")

    @staticmethod
    def _branch_name(result: ExecuteResult) -> ValueResult[str]:
        if not result.success:
            return result.without_value()
        return result.with_value(result.output.strip() or None)

    @staticmethod
    def _default_branch_name(result: ExecuteResult) -> ValueResult[str]:
        if not result.success:
            return result.without_value()
        # origin/main -> main
        _, _, name = result.output.strip().partition("/")
        return result.with_value(name or None)

    def commit_position(self, path: Path, branch: str) -> ValueResult[CommitPosition]:
        """Count commits ahead of and behind `origin/<branch>`."""
        result = self._run(path, "rev-list", "--left-right", "--count", f"origin/{branch}...{branch}")
        if not result.success:
            return result.without_value()
        parts = result.output.split()
        if len(parts) != 2 or not all(part.isdigit() for part in parts):
            return result.without_value()
        behind, ahead = int(parts[0]), int(parts[1])
        return result.with_value(CommitPosition(ahead=ahead, behind=behind))

    def submodule_paths(self, path: Path) -> list[Path]:
        """Submodule directories declared in `.gitmodules`, declared or not checked out."""
        if not (path / ".gitmodules").is_file():
            return []
        result = self._run(path, "config", "--file", ".gitmodules", "--get-regexp", r"\.path$")
        if not result.success:
            logger.debug(f"No submodule paths in {path}: {result}")
            return []
        paths = []
        for line in result.output.splitlines():
            _, _, value = line.strip().partition(" ")
            if value:
                paths.append(path / value)
        return paths


# =============================================================================
# Repository Discovery
# =============================================================================


def is_git_directory(path: Path) -> bool:
    """A directory holding a `.git` directory, or a `.git` file pointing elsewhere."""
    marker = path / ".git"
    if marker.is_dir():
        return True
    if marker.is_file():
        try:
            return marker.read_text(encoding="utf-8", errors="replace").startswith("gitdir:")
        except OSError:
            return False
    return False


def find_git_directories(root: Path, depth: int = 1) -> list[Path]:
    """Find `root` and the directories up to `depth` levels below it that are repositories."""
    found: list[Path] = []

    def scan(path: Path, remaining: int) -> None:
        if is_git_directory(path):
            found.append(path)
        if remaining <= 0:
            return
        try:
            children = sorted(p for p in path.iterdir() if p.is_dir() and p.name != ".git")
        except OSError as e:
            logger.debug(f"Skipping {path}: {e}")
            return
        for child in children:
            scan(child, remaining - 1)

    scan(root, depth)
    return found


def _relative_path(path: Path, root: Path) -> str:
    if path == root:
        return "."
    try:
        return path.relative_to(root).as_posix()
    except ValueError:
        return str(path)


def discover_repositories(
    root: Path,
    git: GitOperations,
    depth: int = 1,
) -> list[ValueResult[RepositoryTarget]]:
    """Resolve every repository under `root`, submodules included, sorted by path.

    Branch names are queried concurrently. A repository whose current branch
    cannot be read gets an `error_message` and no branch names; a record has
    no target at all only when git itself could not be started.
    """
    root = root.resolve()
    candidates: dict[Path, bool] = {path: False for path in find_git_directories(root, depth)}
    for path in git.submodule_paths(root):
        candidates[path.resolve()] = True

    records: list[ValueResult[RepositoryTarget]] = []
    pending: dict[Path, tuple[Future[ExecuteResult], Future[ExecuteResult]]] = {}
    for path in sorted(candidates):
        relative = _relative_path(path, root)
        if not is_git_directory(path):
            target = RepositoryTarget(
                path=path,
                relative_path=relative,
                is_submodule=candidates[path],
                error_message="not a git repository",
            )
            records.append(ExecuteResult.from_value(target, path))
            continue
        pending[path] = (git.current_branch_async(path), git.default_branch_async(path))

    for path, (current_future, default_future) in pending.items():
        current = GitOperations._branch_name(current_future.result().with_reference(path))
        default = GitOperations._default_branch_name(default_future.result().with_reference(path))
        if current.start_failure is not None:
            records.append(current)
            continue

        target = RepositoryTarget(
            path=path,
            relative_path=_relative_path(path, root),
            is_submodule=candidates[path],
        )
        if current.success:
            target.current_branch = current.value
            target.default_branch = default.value if default.success else None
        else:
            target.error_message = str(current)
        records.append(ExecuteResult.from_value(target, path))

    records.sort(key=lambda record: record.reference)
    logger.debug(f"Discovered {len(records)} repositories under {root}")
    return records
