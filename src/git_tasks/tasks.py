"""Units of work run against each repository by the orchestrator.

Each factory takes the command's options and returns a callable that
receives the repository and its WorkSession. A unit reports every step it
renders through the session and stops at the first step it cannot build on.
"""

from __future__ import annotations

import re

from .core import CleanOptions, OperationKind, RepositoryTarget, ResetMode
from .orchestrator import RepositoryWork, WorkSession


def _refresh_current_branch(repo: RepositoryTarget, session: WorkSession) -> None:
    result = session.git.current_branch(repo.path)
    if result.success:
        repo.current_branch = result.value


def status_work(fetch: bool = False, pending: bool = False, full: bool = False) -> RepositoryWork:
    """Porcelain status, optional fetch, then the commit position."""

    def work(repo: RepositoryTarget, session: WorkSession) -> None:
        status = session.git.status(repo.path)
        session.report(OperationKind.STATUS, status, show_output=False)

        if fetch:
            session.activity()
            fetched = session.record(OperationKind.FETCH, session.git.fetch(repo.path, repo.current_branch))
            if not fetched.success:
                session.report(OperationKind.FETCH, fetched, show_output=False)
                return
            session.attach_output(fetched.output, "FETCH")

        session.position()

        if full:
            full_status = session.record(OperationKind.FULL_STATUS, session.git.status(repo.path, porcelain=False))
            session.attach_output(full_status.output, "STATUS")
        elif pending:
            session.attach_output(status.output, "STATUS")

    return work


def pull_work() -> RepositoryWork:
    def work(repo: RepositoryTarget, session: WorkSession) -> None:
        session.activity()
        session.report(OperationKind.PULL, session.git.pull(repo.path))
        session.position()

    return work


def branch_pattern(pattern: str) -> re.Pattern[str]:
    """Case-insensitive matcher where `*` stands for any run of characters."""
    return re.compile("^" + re.escape(pattern).replace(r"\*", ".*") + "$", re.IGNORECASE)


def checkout_work(target: str, create: bool = False) -> RepositoryWork:
    """Check out `target`, resolving `*` patterns against each repository's branches."""
    matcher = branch_pattern(target) if "*" in target and not create else None

    def work(repo: RepositoryTarget, session: WorkSession) -> None:
        session.report(OperationKind.STATUS, session.git.status(repo.path), show_output=False)

        branch = target
        if matcher is not None:
            branches = session.record(OperationKind.BRANCHES, session.git.branches(repo.path))
            if not branches.success:
                session.report(OperationKind.BRANCHES, branches)
                return
            names = sorted({b.name for b in branches.value if b.name != "HEAD" and matcher.match(b.name)})
            if not names:
                session.notice("no matching branch")
                return
            if len(names) > 1:
                session.notice(f"{len(names)} matching branches")
                return
            branch = names[0]

        session.activity()
        checkout = session.git.checkout(repo.path, branch, create=create)
        session.report(OperationKind.CHECKOUT, checkout)
        if checkout.success:
            _refresh_current_branch(repo, session)

    return work


def main_work(pull: bool = False) -> RepositoryWork:
    """Switch to the default branch, optionally pull it."""

    def work(repo: RepositoryTarget, session: WorkSession) -> None:
        session.report(OperationKind.STATUS, session.git.status(repo.path), show_output=False)

        if repo.default_branch is None:
            session.notice("no default branch")
            return

        session.activity()
        checkout = session.git.checkout(repo.path, repo.default_branch)
        session.report(OperationKind.CHECKOUT, checkout)
        if not checkout.success:
            return
        repo.current_branch = repo.default_branch

        if pull:
            session.activity()
            session.report(OperationKind.PULL, session.git.pull(repo.path))
        session.position()

    return work


def clean_work(options: CleanOptions) -> RepositoryWork:
    options.validate()

    def work(repo: RepositoryTarget, session: WorkSession) -> None:
        session.activity()
        session.report(OperationKind.CLEAN, session.git.clean(repo.path, options))

    return work


def reset_work(
    commit: str = "HEAD",
    mode: ResetMode = ResetMode.MIXED,
    back: int = 0,
    clean: bool = False,
) -> RepositoryWork:
    """Reset to `commit~back`; with `clean`, remove untracked files once the reset succeeded."""

    def work(repo: RepositoryTarget, session: WorkSession) -> None:
        session.activity()
        reset = session.git.reset(repo.path, commit, mode, back)
        session.report(OperationKind.RESET, reset)
        if not clean or not reset.success:
            return

        session.activity()
        session.report(OperationKind.CLEAN, session.git.clean(repo.path, CleanOptions(recursive=True, force=True)))

    return work


def fix_ref_work() -> RepositoryWork:
    """Re-point `refs/remotes/<remote>/HEAD` at the remote's default branch."""

    def work(repo: RepositoryTarget, session: WorkSession) -> None:
        session.activity()
        branches = session.record(OperationKind.BRANCHES, session.git.branches(repo.path))
        if branches.killed:
            session.report(OperationKind.BRANCHES, branches)
            return

        remote = None
        if branches.success:
            remote = next((b.remote for b in branches.value if b.is_remote and b.remote), None)

        remote = remote or "origin"
        result = session.git.set_head(repo.path, remote, automatically=True)
        session.report(OperationKind.SET_HEAD, result)
        if result.success:
            default = session.git.default_branch(repo.path, remote)
            if default.success:
                repo.default_branch = default.value

    return work
