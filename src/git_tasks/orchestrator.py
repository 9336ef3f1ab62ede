"""Run one unit of work per repository and keep the terminal consistent."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from concurrent.futures import Future, ThreadPoolExecutor, wait

from loguru import logger

from .classifier import ClassifiedOutcome, OutcomeCategory, classify, excerpt
from .core import (
    CancellationToken,
    ExecuteResult,
    GitOperations,
    OperationKind,
    RepositoryTarget,
    ValueResult,
)
from .formatters import TerminalRenderer

RepositoryWork = Callable[[RepositoryTarget, "WorkSession"], None]

KILLED = ClassifiedOutcome(OutcomeCategory.KILLED, "killed", is_error=True)


class WorkSession:
    """What a unit of work may touch while it runs for one repository.

    A unit writes only to its own repository and only through the renderer,
    so sibling units can run on other threads at the same time.
    """

    def __init__(
        self,
        repo: RepositoryTarget,
        git: GitOperations,
        renderer: TerminalRenderer,
        token: CancellationToken,
    ):
        self.repo = repo
        self.git = git
        self.token = token
        self.outputs: list[tuple[str, str]] = []
        self._renderer = renderer

    @property
    def cancelled(self) -> bool:
        return self.token.cancelled

    def record(self, kind: OperationKind, result: ExecuteResult) -> ExecuteResult:
        self.repo.results[kind] = result
        return result

    def report(
        self,
        kind: OperationKind,
        result: ExecuteResult,
        show_output: bool = True,
    ) -> ClassifiedOutcome:
        """Store, classify and render a result on the repository's row."""
        self.record(kind, result)
        outcome = classify(kind, result)
        self._renderer.write_outcome(self.repo, outcome)
        if show_output:
            self.attach_output(result.output, kind.value.upper())
        return outcome

    def position(self, branch: str | None = None) -> None:
        """Look up and render how far the branch is from its origin counterpart."""
        branch = branch or self.repo.current_branch
        if branch is None or self.cancelled:
            return
        self.record(OperationKind.COMMIT_POSITION, self.git.commit_position(self.repo.path, branch))
        self._renderer.write_commit_position(self.repo)

    def notice(self, text: str, style: str = "yellow") -> None:
        self._renderer.write_notice(self.repo, text, style)

    def activity(self) -> None:
        self._renderer.show_activity(self.repo)

    def attach_output(self, text: str | None, label: str) -> None:
        """Keep raw git output for verbose mode."""
        if text and text.strip():
            self.outputs.append((label, text))


class TaskOrchestrator:
    """Fan out one unit of work per repository and render the results.

    Live mode runs every unit at once and updates rows in place as they
    finish. Verbose mode runs them one after another in discovery order and
    prints the raw git output under each header.
    """

    def __init__(
        self,
        git: GitOperations,
        renderer: TerminalRenderer,
        token: CancellationToken | None = None,
        verbose: bool = False,
        max_workers: int | None = None,
    ):
        self.git = git
        self.renderer = renderer
        self.token = token or git.token or CancellationToken()
        if git.token is None:
            git.token = self.token
        self.verbose = verbose
        self.max_workers = max_workers

    def run(self, records: Sequence[ValueResult[RepositoryTarget]], work: RepositoryWork) -> int:
        if self.verbose:
            self._run_verbose(records, work)
        else:
            self._run_live(records, work)
        return 0

    # -------------------------------------------------------------------------
    # Live mode
    # -------------------------------------------------------------------------

    def _run_live(self, records: Sequence[ValueResult[RepositoryTarget]], work: RepositoryWork) -> None:
        below = self.renderer.write_headers(records)
        repositories = [r.value for r in records if r.value is not None and r.value.ok]
        try:
            if repositories:
                with ThreadPoolExecutor(
                    max_workers=self.max_workers or len(repositories),
                    thread_name_prefix="git-tasks",
                ) as executor:
                    futures = [executor.submit(self._run_unit, repo, work) for repo in repositories]
                    self._await_all(futures)
        finally:
            self.renderer.finish(below)

    def _await_all(self, futures: Sequence[Future]) -> None:
        pending = set(futures)
        while pending:
            try:
                _, pending = wait(pending)
            except KeyboardInterrupt:
                logger.warning("Interrupted, killing running git processes")
                self.token.cancel()

    # -------------------------------------------------------------------------
    # Verbose mode
    # -------------------------------------------------------------------------

    def _run_verbose(self, records: Sequence[ValueResult[RepositoryTarget]], work: RepositoryWork) -> None:
        try:
            for record in records:
                repo = record.value
                self.renderer.write_header(record)
                if repo is None or not repo.ok:
                    self.renderer.end_line()
                    continue

                try:
                    session = self._run_unit(repo, work)
                except KeyboardInterrupt:
                    logger.warning("Interrupted, killing running git processes")
                    self.token.cancel()
                    self.renderer.write_outcome(repo, KILLED)
                    self.renderer.end_line()
                    continue

                self.renderer.end_line()
                labelled = len(session.outputs) > 1
                for label, text in session.outputs:
                    self.renderer.write_raw(text, label if labelled else None)
        finally:
            self.renderer.finish()

    # -------------------------------------------------------------------------
    # Units
    # -------------------------------------------------------------------------

    def _run_unit(self, repo: RepositoryTarget, work: RepositoryWork) -> WorkSession:
        session = WorkSession(repo, self.git, self.renderer, self.token)
        try:
            work(repo, session)
        except Exception as e:
            logger.exception(f"Task failed for {repo.path}")
            self.renderer.write_outcome(
                repo,
                ClassifiedOutcome(OutcomeCategory.FATAL, "failed", is_error=True, detail=excerpt(str(e))),
            )
        finally:
            self.renderer.clear_activity(repo)
        return session
