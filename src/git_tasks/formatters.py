"""Terminal rendering: repository header rows and in-place status updates."""

from __future__ import annotations

import os
import re
import sys
import threading
from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING, Any

from rich.console import Console
from rich.control import Control
from rich.text import Text

from .classifier import ClassifiedOutcome, excerpt
from .core import OperationKind, ValueResult

if TYPE_CHECKING:
    from .core import RepositoryTarget

ACTIVITY_PLACEHOLDER = " ..."

Fragment = tuple[str, str]


def allocate_rows(count: int, current_row: int, window_height: int) -> list[int]:
    """Assign one terminal row per repository.

    Printing the header block scrolls the terminal when it would run past the
    bottom of the window. In that case the block ends up on the rows just above
    the last one, which is where the cursor is left after the final newline.

    Args:
        count: Number of header lines about to be printed
        current_row: 0-based row of the cursor before printing
        window_height: Visible rows of the terminal window

    Returns:
        0-based row of each header, in print order
    """
    if count <= 0:
        return []
    if current_row + count < window_height:
        start = current_row
    else:
        start = max(0, window_height - count - 1)
    return list(range(start, start + count))


_CURSOR_REPORT = re.compile(r"\x1b\[(\d+);(\d+)R")


def probe_cursor_row(console: Console, timeout: float = 0.2) -> int | None:
    """Ask the terminal where the cursor is (DSR), returning the 0-based row.

    Returns None when stdin/stdout are not an interactive terminal or the
    terminal does not answer in time.
    """
    if not console.is_terminal or not sys.stdin.isatty():
        return None
    try:
        import select
        import termios
        import tty
    except ImportError:
        return None

    fd = sys.stdin.fileno()
    try:
        saved = termios.tcgetattr(fd)
    except termios.error:
        return None

    response = ""
    try:
        tty.setcbreak(fd)
        console.file.write("\x1b[6n")
        console.file.flush()
        while not response.endswith("R"):
            ready, _, _ = select.select([fd], [], [], timeout)
            if not ready:
                break
            chunk = os.read(fd, 32)
            if not chunk:
                break
            response += chunk.decode(errors="replace")
    finally:
        termios.tcsetattr(fd, termios.TCSADRAIN, saved)

    match = _CURSOR_REPORT.search(response)
    return int(match.group(1)) - 1 if match else None


def _error_header(label: str, message: str | None) -> Text:
    line = Text.assemble(label, (" error", "red"))
    detail = excerpt(message)
    if detail:
        line.append(f" ({detail})", style="dim")
    return line


class TerminalRenderer:
    """Draw one row per repository and update the rows in place.

    All writes go through one lock: a positioned write is a cursor move plus a
    write plus a column update, and two of them must never interleave.
    Outside positioned mode (verbose runs, plain files) fragments are written
    where the cursor already is.
    """

    def __init__(
        self,
        console: Console,
        lock: Any = None,
        cursor_probe: Callable[[Console], int | None] = probe_cursor_row,
    ):
        self.console = console
        self._lock = lock if lock is not None else threading.Lock()
        self._cursor_probe = cursor_probe
        self.positioned = False

    # -------------------------------------------------------------------------
    # Headers
    # -------------------------------------------------------------------------

    def write_headers(self, records: Sequence[ValueResult[RepositoryTarget]]) -> int:
        """Print the header block and switch to positioned mode.

        Returns the row just below the block, where the cursor belongs once
        the run is over.
        """
        height = self.console.size.height
        current = self._cursor_probe(self.console)
        if current is None:
            current = height - 1

        rows = allocate_rows(len(records), current, height)
        with self._lock:
            for record, row in zip(records, rows):
                if record.value is not None:
                    record.value.screen_row = row
                self._write_header_line(record, activity=True)
                self.console.print()
            self.positioned = True
            self.console.show_cursor(False)
        return rows[-1] + 1 if rows else current

    def write_header(self, record: ValueResult[RepositoryTarget], newline: bool = False) -> None:
        """Print one header at the cursor (verbose mode)."""
        with self._lock:
            self._write_header_line(record, activity=False)
            if newline:
                self.console.print()

    def _write_header_line(self, record: ValueResult[RepositoryTarget], activity: bool) -> None:
        repo = record.value
        if repo is None:
            self._emit(self._fit(_error_header(str(record.reference or "?"), str(record)), 0))
            return

        if repo.ok:
            branch_style = "dim" if repo.on_default_branch else "blue"
            line = Text.assemble(repo.label, (f" {repo.current_branch}", branch_style))
        else:
            line = _error_header(repo.label, repo.error_message)
        line = self._fit(line, 0)
        repo.screen_column = line.cell_len
        repo.activity_shown = False
        self._emit(line)

        if activity and repo.ok:
            placeholder = self._fit(Text(ACTIVITY_PLACEHOLDER, style="dim"), repo.screen_column)
            if placeholder.cell_len == len(ACTIVITY_PLACEHOLDER):
                self._emit(placeholder)
                repo.activity_shown = True

    # -------------------------------------------------------------------------
    # Positioned writes
    # -------------------------------------------------------------------------

    def show_activity(self, repo: RepositoryTarget) -> None:
        """Show the placeholder while a long git call runs (positioned mode only)."""
        with self._lock:
            if not self.positioned or repo.activity_shown:
                return
            placeholder = self._fit(Text(ACTIVITY_PLACEHOLDER, style="dim"), repo.screen_column)
            if placeholder.cell_len < len(ACTIVITY_PLACEHOLDER):
                return
            self._move_to(repo)
            self._emit(placeholder)
            repo.activity_shown = True

    def clear_activity(self, repo: RepositoryTarget, restore_column: bool = True) -> None:
        with self._lock:
            self._blank_activity(repo, restore_column)

    def _blank_activity(self, repo: RepositoryTarget, restore_column: bool = True) -> None:
        if not repo.activity_shown:
            return
        self._move_to(repo)
        self._emit(Text(" " * len(ACTIVITY_PLACEHOLDER)))
        if not restore_column:
            repo.screen_column += len(ACTIVITY_PLACEHOLDER)
        repo.activity_shown = False

    def write_fragment(self, repo: RepositoryTarget, text: str, style: str = "") -> None:
        self._write_parts(repo, [(text, style)])

    def write_notice(self, repo: RepositoryTarget, text: str, style: str = "yellow") -> None:
        self._write_parts(repo, [(f" {text}", style)])

    def write_outcome(self, repo: RepositoryTarget, outcome: ClassifiedOutcome) -> None:
        parts: list[Fragment] = [(f" {outcome.message}", outcome.style)]
        if outcome.detail:
            parts.append((f" ({outcome.detail})", "dim"))
        self._write_parts(repo, parts)

    def write_commit_position(self, repo: RepositoryTarget) -> None:
        """Render `↑ahead ↓behind`, nothing when in sync, or a red position error."""
        result = repo.results.get(OperationKind.COMMIT_POSITION)
        if result is None:
            return

        position = result.value if isinstance(result, ValueResult) else None
        parts: list[Fragment] = []
        if not result.success or position is None:
            parts.append((" position error", "red"))
        else:
            if position.ahead:
                parts.append((f" ↑{position.ahead}", "green"))
            if position.behind:
                parts.append((f" ↓{position.behind}", "yellow"))

        if parts:
            self._write_parts(repo, parts)
        else:
            self.clear_activity(repo)

    def _write_parts(self, repo: RepositoryTarget, parts: Sequence[Fragment]) -> None:
        with self._lock:
            self._blank_activity(repo)
            fragment = self._fit(Text.assemble(*parts), repo.screen_column)
            if not fragment.cell_len:
                return
            self._move_to(repo)
            self._emit(fragment)
            repo.screen_column += fragment.cell_len

    # -------------------------------------------------------------------------
    # Verbose output and teardown
    # -------------------------------------------------------------------------

    def end_line(self) -> None:
        with self._lock:
            self.console.print()

    def write_raw(self, text: str, label: str | None = None) -> None:
        """Print a block of raw git output, dimmed."""
        with self._lock:
            if label:
                self.console.print(Text(f"{label}:", style="dim bold"), soft_wrap=True)
            self.console.print(Text(text, style="dim"), soft_wrap=True)

    def finish(self, row: int | None = None) -> None:
        """Leave positioned mode with the cursor at column 0 of `row`."""
        with self._lock:
            if self.positioned:
                if row is not None:
                    self.console.control(Control.move_to(0, row))
                self.console.show_cursor(True)
                self.positioned = False
            self.console.file.flush()

    # -------------------------------------------------------------------------
    # Helpers (callers hold the lock)
    # -------------------------------------------------------------------------

    def _move_to(self, repo: RepositoryTarget) -> None:
        if self.positioned:
            self.console.control(Control.move_to(repo.screen_column, repo.screen_row))

    def _fit(self, text: Text, column: int) -> Text:
        # Never let a line wrap: a wrapped row would shift every row below it
        available = self.console.size.width - 1 - column
        if available <= 0:
            return Text()
        if text.cell_len > available:
            text = text.copy()
            text.truncate(available, overflow="ellipsis")
        return text

    def _emit(self, text: Text) -> None:
        self.console.print(text, end="", soft_wrap=True, highlight=False)
