"""Tests for classifier.py."""

from __future__ import annotations

import pytest

from git_tasks.classifier import (
    ClassifiedOutcome,
    OutcomeCategory,
    classify,
    classify_output,
    excerpt,
)
from git_tasks.core import ExecuteResult, OperationKind, ProcessStartFailure

# =============================================================================
# Pull
# =============================================================================


class TestPull:
    """Pull output as git prints it."""

    def test_up_to_date(self) -> None:
        outcome = classify_output(OperationKind.PULL, "Already up to date.", True)
        assert outcome.category == OutcomeCategory.UNCHANGED
        assert outcome.message == "up to date"
        assert outcome.is_error is False

    def test_up_to_date_when_rebasing(self) -> None:
        outcome = classify_output(OperationKind.PULL, "Current branch main is up to date.", True)
        assert outcome.category == OutcomeCategory.UNCHANGED
        assert outcome.message == "up to date"
        assert outcome.is_error is False

    def test_fast_forward(self) -> None:
        output = (
            "Updating 1a2b3c4..5d6e7f8\n"
            "Fast-forward\n"
            " README.md | 2 +-\n"
            " 1 file changed, 1 insertion(+), 1 deletion(-)"
        )
        outcome = classify_output(OperationKind.PULL, output, True)
        assert outcome.category == OutcomeCategory.SUCCESS
        assert outcome.message == "pulled"
        assert outcome.style == "green"

    def test_conflict(self) -> None:
        output = (
            "Auto-merging src/app.py\n"
            "CONFLICT (content): Merge conflict in src/app.py\n"
            "Automatic merge failed; fix conflicts and then commit the result."
        )
        outcome = classify_output(OperationKind.PULL, output, False)
        assert outcome.category == OutcomeCategory.CONFLICT
        assert outcome.is_error is True

    def test_local_changes_beat_aborting(self) -> None:
        output = (
            "error: Your local changes to the following files would be overwritten by merge:\n"
            "\tsrc/app.py\n"
            "Please commit your changes or stash them before you merge.\n"
            "Aborting"
        )
        outcome = classify_output(OperationKind.PULL, output, False)
        assert outcome.category == OutcomeCategory.LOCAL_CHANGES

    def test_no_tracking(self) -> None:
        output = (
            "There is no tracking information for the current branch.\n"
            "Please specify which branch you want to merge with."
        )
        outcome = classify_output(OperationKind.PULL, output, False)
        assert outcome.category == OutcomeCategory.NO_TRACKING

    def test_unknown_remote_ref(self) -> None:
        """A missing remote branch is its own category, not a generic fatal."""
        outcome = classify_output(OperationKind.PULL, "fatal: couldn't find remote ref feature/x", False)
        assert outcome.category == OutcomeCategory.NO_REMOTE
        assert outcome.is_error is True

    def test_up_to_date_beats_embedded_error(self) -> None:
        """Rule order decides: the first matching rule wins."""
        output = "Already up to date.\nhint: error: this line is only a hint"
        outcome = classify_output(OperationKind.PULL, output, True)
        assert outcome.category == OutcomeCategory.UNCHANGED

    def test_generic_fatal_has_detail(self) -> None:
        output = "fatal: unable to access 'https://example.com/repo.git/': Could not resolve host: example.com"
        outcome = classify_output(OperationKind.PULL, output, False)
        assert outcome.category == OutcomeCategory.FATAL
        assert outcome.detail.startswith("unable to access")
        assert len(outcome.detail) <= 60

    def test_success_keywords_need_success(self) -> None:
        """Fast-forward text in a failed pull is not a success."""
        outcome = classify_output(OperationKind.PULL, "Not possible to fast-forward", False)
        assert outcome.category == OutcomeCategory.FATAL
        assert outcome.message == "pull failed"


# =============================================================================
# Checkout
# =============================================================================


class TestCheckout:
    """Checkout output and message interpolation."""

    def test_already_on(self) -> None:
        outcome = classify_output(OperationKind.CHECKOUT, "Already on 'main'\nYour branch is up to date with 'origin/main'.", True)
        assert outcome.category == OutcomeCategory.UNCHANGED
        assert outcome.message == "already on main"

    def test_switched(self) -> None:
        outcome = classify_output(OperationKind.CHECKOUT, "Switched to branch 'develop'", True)
        assert outcome.message == "switched to develop"
        assert outcome.is_notable is True

    def test_new_branch(self) -> None:
        output = "branch 'feature/x' set up to track 'origin/feature/x'.\nSwitched to a new branch 'feature/x'"
        outcome = classify_output(OperationKind.CHECKOUT, output, True)
        assert outcome.message == "switched to new branch feature/x"

    def test_detached(self) -> None:
        output = "Note: switching to 'v1.2.0'.\n\nHEAD is now at 1a2b3c4 Release 1.2.0"
        outcome = classify_output(OperationKind.CHECKOUT, output, True)
        assert outcome.message == "detached at 1a2b3c4"

    def test_no_such_branch(self) -> None:
        output = "error: pathspec 'nope' did not match any file(s) known to git"
        outcome = classify_output(OperationKind.CHECKOUT, output, False)
        assert outcome.category == OutcomeCategory.NO_MATCH

    def test_would_be_overwritten(self) -> None:
        output = "error: Your local changes to the following files would be overwritten by checkout:\n\ta.txt\nAborting"
        outcome = classify_output(OperationKind.CHECKOUT, output, False)
        assert outcome.category == OutcomeCategory.LOCAL_CHANGES

    def test_interpolation_falls_back(self) -> None:
        """A detail pattern that does not match yields the plain message."""
        outcome = classify_output(OperationKind.CHECKOUT, "Already on main", True)
        assert outcome.category == OutcomeCategory.UNCHANGED
        assert outcome.message == "already on branch"


# =============================================================================
# Other Operations
# =============================================================================


class TestOtherOperations:
    """Status, fetch, clean, reset and set-head tables."""

    def test_status_clean_and_dirty(self) -> None:
        assert classify_output(OperationKind.STATUS, "", True).category == OutcomeCategory.CLEAN
        dirty = classify_output(OperationKind.STATUS, " M src/app.py\n?? notes.txt", True)
        assert dirty.category == OutcomeCategory.DIRTY
        assert dirty.message == "local changes"
        assert dirty.style == "yellow"

    def test_status_failure(self) -> None:
        outcome = classify_output(OperationKind.STATUS, "fatal: not a git repository", False)
        assert outcome.is_error is True
        assert outcome.message == "status error"

    def test_fetch(self) -> None:
        output = "From github.com:acme/app\n   1a2b3c4..5d6e7f8  main       -> origin/main"
        assert classify_output(OperationKind.FETCH, output, True).message == "fetched"
        assert classify_output(OperationKind.FETCH, "", True).category == OutcomeCategory.UNCHANGED
        missing = "fatal: 'origin' does not appear to be a git repository"
        assert classify_output(OperationKind.FETCH, missing, False).category == OutcomeCategory.NO_REMOTE

    def test_clean_counts_files(self) -> None:
        output = "Removing build/\nRemoving notes.txt"
        assert classify_output(OperationKind.CLEAN, output, True).message == "cleaned 2 files"
        assert classify_output(OperationKind.CLEAN, "Would remove a.log", True).message == "would remove 1 file"
        assert classify_output(OperationKind.CLEAN, "", True).message == "nothing to clean"

    def test_clean_requires_force(self) -> None:
        output = "fatal: clean.requireForce defaults to true and neither -i, -n, nor -f given; refusing to clean"
        outcome = classify_output(OperationKind.CLEAN, output, False)
        assert outcome.message == "force required"

    def test_reset(self) -> None:
        hard = classify_output(OperationKind.RESET, "HEAD is now at 5d6e7f8 Fix build", True)
        assert hard.message == "reset to 5d6e7f8"
        mixed = classify_output(OperationKind.RESET, "Unstaged changes after reset:\nM\tsrc/app.py", True)
        assert mixed.message == "reset, unstaged changes"
        assert classify_output(OperationKind.RESET, "", True).message == "reset"

    def test_reset_unknown_revision(self) -> None:
        output = (
            "fatal: ambiguous argument 'nope': unknown revision or path not in the working tree.\n"
            "Use '--' to separate paths from revisions"
        )
        outcome = classify_output(OperationKind.RESET, output, False)
        assert outcome.category == OutcomeCategory.NO_MATCH
        assert outcome.message == "unknown revision"

    def test_set_head(self) -> None:
        assert classify_output(OperationKind.SET_HEAD, "origin/HEAD set to main", True).message == "set to main"
        unchanged = "'origin/HEAD' is unchanged and points to 'main'"
        assert classify_output(OperationKind.SET_HEAD, unchanged, True).message == "unchanged (main)"
        changed = "'origin/HEAD' has changed from 'master' and now points to 'main'"
        assert classify_output(OperationKind.SET_HEAD, changed, True).message == "set to main"
        created = classify_output(OperationKind.SET_HEAD, "'origin/HEAD' is now created and points to 'main'", True)
        assert created.category == OutcomeCategory.SUCCESS
        assert created.message == "set to main"
        assert created.is_error is False
        failed = "error: Cannot determine remote HEAD"
        assert classify_output(OperationKind.SET_HEAD, failed, False).category == OutcomeCategory.NO_REMOTE


# =============================================================================
# Policy and Totality
# =============================================================================


class TestPolicy:
    """Fallbacks and whole-result classification."""

    def test_unrecognised_success_is_unknown_error(self) -> None:
        """Successful output nobody anticipated is flagged, on purpose."""
        outcome = classify_output(OperationKind.PULL, "Something new from a future git", True)
        assert outcome.category == OutcomeCategory.UNKNOWN
        assert outcome.is_error is True
        assert outcome.detail == "Something new from a future git"

    def test_matching_rule_on_failure_is_error(self) -> None:
        """A non-error rule still yields an error when the command failed."""
        outcome = classify_output(OperationKind.PULL, "Already up to date.", False)
        assert outcome.category == OutcomeCategory.UNCHANGED
        assert outcome.is_error is True

    @pytest.mark.parametrize("kind", list(OperationKind))
    @pytest.mark.parametrize("output", [None, "", "   \n", "\x00\x1b[31m", "{branch} {0} }{"])
    @pytest.mark.parametrize("success", [True, False])
    def test_total_and_idempotent(self, kind, output, success) -> None:
        first = classify_output(kind, output, success)
        assert isinstance(first, ClassifiedOutcome)
        assert classify_output(kind, output, success) == first

    def test_killed(self) -> None:
        outcome = classify(OperationKind.PULL, ExecuteResult(killed=True, output="Already up to date."))
        assert outcome.category == OutcomeCategory.KILLED
        assert outcome.message == "killed"

    def test_start_failures(self) -> None:
        missing = ExecuteResult(start_failure=ProcessStartFailure.NOT_FOUND, exception=FileNotFoundError("git"))
        assert classify(OperationKind.PULL, missing).category == OutcomeCategory.NOT_FOUND
        denied = ExecuteResult(start_failure=ProcessStartFailure.ACCESS_DENIED, exception=PermissionError("git"))
        assert classify(OperationKind.PULL, denied).category == OutcomeCategory.ACCESS_DENIED
        other = ExecuteResult(start_failure=ProcessStartFailure.OTHER, exception=OSError("bad"))
        assert classify(OperationKind.PULL, other).message == "failed to start"

    def test_excerpt(self) -> None:
        assert excerpt("hint: x\nfatal: the real reason\nmore") == "the real reason"
        assert excerpt("") is None
        assert excerpt("x" * 100).endswith("…")
