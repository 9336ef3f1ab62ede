"""Shared fixtures: a scripted gateway, a test console and a virtual screen."""

from __future__ import annotations

import io
import re
import threading
import time
from collections.abc import Callable
from pathlib import Path

import pytest
from rich.console import Console

from git_tasks.core import (
    CommandGateway,
    ExecuteResult,
    RepositoryTarget,
    ValueResult,
)

# =============================================================================
# Scripted Gateway
# =============================================================================


class ScriptedGateway(CommandGateway):
    """Gateway answering git invocations from a responder instead of running git.

    The responder receives `(args, working_directory, token)` and returns either
    an ExecuteResult or an `(exit_code, output)` tuple.
    """

    def __init__(self, responder: Callable):
        super().__init__()
        self.responder = responder
        self.calls: list[tuple[Path | None, tuple[str, ...]]] = []
        self._calls_lock = threading.Lock()

    def execute(self, command, args=(), working_directory=None, token=None, env=None):
        path = Path(working_directory) if working_directory is not None else None
        with self._calls_lock:
            self.calls.append((path, tuple(args)))
        if token is not None and token.cancelled:
            return ExecuteResult(killed=True, output="")
        response = self.responder(tuple(args), path, token)
        if isinstance(response, ExecuteResult):
            return response
        exit_code, output = response
        return ExecuteResult(exit_code=exit_code, output=output)

    def calls_for(self, path: Path) -> list[tuple[str, ...]]:
        with self._calls_lock:
            return [args for p, args in self.calls if p == path]


# =============================================================================
# Virtual Screen
# =============================================================================


class VirtualScreen:
    """Replay console output onto a character grid.

    Understands cursor positioning (CSI H), relative moves (CSI C/D) and
    newlines with scrolling; every other escape sequence is ignored.
    """

    CSI = re.compile(r"\x1b\[([0-9;?]*)([A-Za-z])")

    def __init__(self, width: int, height: int, row: int = 0):
        self.width = width
        self.height = height
        self.row = row
        self.col = 0
        self.grid = [[" "] * width for _ in range(height)]

    def feed(self, data: str) -> VirtualScreen:
        i = 0
        while i < len(data):
            if data[i] == "\x1b":
                match = self.CSI.match(data, i)
                if match:
                    self._control(match.group(1), match.group(2))
                    i = match.end()
                    continue
            char = data[i]
            if char == "\n":
                self._newline()
            elif char == "\r":
                self.col = 0
            else:
                self._put(char)
            i += 1
        return self

    def _control(self, params: str, final: str) -> None:
        if final == "H":
            row, _, col = params.partition(";")
            self.row = int(row or 1) - 1
            self.col = int(col or 1) - 1
        elif final == "C":
            self.col += int(params or 1)
        elif final == "D":
            self.col = max(0, self.col - int(params or 1))
        elif final == "G":
            self.col = int(params or 1) - 1

    def _newline(self) -> None:
        self.col = 0
        if self.row == self.height - 1:
            self.grid.pop(0)
            self.grid.append([" "] * self.width)
        else:
            self.row += 1

    def _put(self, char: str) -> None:
        if 0 <= self.col < self.width:
            self.grid[self.row][self.col] = char
        self.col += 1

    def line(self, row: int) -> str:
        return "".join(self.grid[row]).rstrip()

    def lines(self) -> list[str]:
        return [self.line(row) for row in range(self.height)]


# =============================================================================
# Locks
# =============================================================================


class RecordingLock:
    """Lock that records when it was held, to check that holders never overlap."""

    def __init__(self):
        self._lock = threading.Lock()
        self.spans: list[tuple[float, float]] = []
        self._acquired_at = 0.0

    def __enter__(self):
        self._lock.acquire()
        self._acquired_at = time.perf_counter()
        return self

    def __exit__(self, *exc_info):
        self.spans.append((self._acquired_at, time.perf_counter()))
        self._lock.release()

    def overlapping(self) -> bool:
        spans = sorted(self.spans)
        return any(later[0] < earlier[1] for earlier, later in zip(spans, spans[1:]))


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def terminal_console(monkeypatch):
    """Factory for a 'terminal' console writing into a buffer, without colors."""
    monkeypatch.setenv("TERM", "xterm-256color")
    monkeypatch.delenv("TERM_PROGRAM", raising=False)

    def factory(width: int = 80, height: int = 24) -> tuple[Console, io.StringIO]:
        buffer = io.StringIO()
        console = Console(
            file=buffer,
            force_terminal=True,
            width=width,
            height=height,
            color_system=None,
            highlight=False,
            legacy_windows=False,
        )
        return console, buffer

    return factory


@pytest.fixture
def scripted_gateway():
    return ScriptedGateway


@pytest.fixture
def virtual_screen():
    return VirtualScreen


@pytest.fixture
def recording_lock():
    return RecordingLock()


@pytest.fixture
def make_records(tmp_path: Path):
    """Factory for discovery records of repositories named after their labels."""

    def factory(*names: str, branch: str = "main", errors: dict[str, str] | None = None):
        errors = errors or {}
        records: list[ValueResult[RepositoryTarget]] = []
        for name in names:
            path = tmp_path / name
            path.mkdir(exist_ok=True)
            if name in errors:
                target = RepositoryTarget(path=path, relative_path=name, error_message=errors[name])
            else:
                target = RepositoryTarget(
                    path=path,
                    relative_path=name,
                    current_branch=branch,
                    default_branch="main",
                )
            records.append(ExecuteResult.from_value(target, path))
        return records

    return factory
