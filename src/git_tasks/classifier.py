"""
Classify raw git output into semantic outcomes.

Every operation owns an ordered table of rules. Rules are evaluated top to
bottom and the first match wins, so the order of a table is part of its
contract: "Already up to date." beats an `error:` line that git echoes inside
a hint, for example.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import StrEnum

from .core import ExecuteResult, OperationKind, ProcessStartFailure

DETAIL_MAX_LENGTH = 60

# =============================================================================
# Outcome Models
# =============================================================================


class OutcomeCategory(StrEnum):
    UNCHANGED = "unchanged"
    SUCCESS = "success"
    CLEAN = "clean"
    DIRTY = "dirty"
    CONFLICT = "conflict"
    LOCAL_CHANGES = "local_changes"
    NO_TRACKING = "no_tracking"
    NO_REMOTE = "no_remote"
    NO_MATCH = "no_match"
    ABORTED = "aborted"
    ERROR = "error"
    FATAL = "fatal"
    UNKNOWN = "unknown"
    KILLED = "killed"
    NOT_FOUND = "not_found"
    ACCESS_DENIED = "access_denied"


# Categories whose message alone does not say what went wrong
_EXCERPTED = {
    OutcomeCategory.ERROR,
    OutcomeCategory.FATAL,
    OutcomeCategory.UNKNOWN,
    OutcomeCategory.NOT_FOUND,
    OutcomeCategory.ACCESS_DENIED,
}


@dataclass(frozen=True)
class ClassifiedOutcome:
    """What a command's result means, ready to be rendered."""

    category: OutcomeCategory
    message: str
    is_error: bool = False
    is_notable: bool = False
    detail: str | None = None

    @property
    def style(self) -> str:
        if self.is_error:
            return "red"
        if self.category == OutcomeCategory.DIRTY:
            return "yellow"
        if self.is_notable or self.category == OutcomeCategory.CLEAN:
            return "green"
        return "dim"


# =============================================================================
# Rules
# =============================================================================


def phrase(text: str, case_sensitive: bool = False) -> re.Pattern[str]:
    """Literal substring matcher."""
    return re.compile(re.escape(text), 0 if case_sensitive else re.IGNORECASE)


BLANK = re.compile(r"\A\s*\Z")
ANYTHING = re.compile(r"\S")
ERROR_LINE = phrase("error: ")
FATAL_LINE = phrase("fatal: ")

_BRANCH = r"'(?P<branch>[^'\n]+)'"
_HASH = r"(?P<hash>[0-9a-f]{7,40})"


@dataclass(frozen=True)
class Rule:
    """One row of a rule table: patterns to look for and the outcome they mean."""

    patterns: tuple[re.Pattern[str], ...]
    category: OutcomeCategory
    message: str
    is_error: bool = False
    is_notable: bool = False
    requires_success: bool = False
    detail: re.Pattern[str] | None = None
    count: re.Pattern[str] | None = None
    template: str | None = None

    def matches(self, text: str, success: bool) -> bool:
        if self.requires_success and not success:
            return False
        return any(pattern.search(text) for pattern in self.patterns)

    def render(self, text: str) -> str:
        """Interpolate the template, falling back to the plain message."""
        if self.template is None:
            return self.message

        fields: dict[str, str] = {}
        if self.detail is not None:
            match = self.detail.search(text)
            if match is None:
                return self.message
            fields.update({k: v for k, v in match.groupdict().items() if v is not None})
        if self.count is not None:
            total = len(self.count.findall(text))
            fields["count"] = str(total)
            fields["s"] = "" if total == 1 else "s"

        try:
            return self.template.format(**fields)
        except (KeyError, IndexError, ValueError):
            return self.message


@dataclass(frozen=True)
class RuleTable:
    kind: OperationKind
    rules: tuple[Rule, ...]
    failure_message: str = "failed"


def _generic_errors() -> tuple[Rule, Rule]:
    return (
        Rule((ERROR_LINE,), OutcomeCategory.ERROR, "error", is_error=True),
        Rule((FATAL_LINE,), OutcomeCategory.FATAL, "fatal", is_error=True),
    )


CHECKOUT_RULES = RuleTable(
    OperationKind.CHECKOUT,
    (
        Rule(
            (phrase("already on"),),
            OutcomeCategory.UNCHANGED,
            "already on branch",
            detail=re.compile(rf"already on {_BRANCH}", re.IGNORECASE),
            template="already on {branch}",
        ),
        Rule(
            (phrase("switched to branch"),),
            OutcomeCategory.SUCCESS,
            "switched",
            is_notable=True,
            detail=re.compile(rf"switched to branch {_BRANCH}", re.IGNORECASE),
            template="switched to {branch}",
        ),
        Rule(
            (phrase("switched to a new branch"),),
            OutcomeCategory.SUCCESS,
            "switched to new branch",
            is_notable=True,
            detail=re.compile(rf"switched to a new branch {_BRANCH}", re.IGNORECASE),
            template="switched to new branch {branch}",
        ),
        Rule(
            (phrase("HEAD is now at"),),
            OutcomeCategory.SUCCESS,
            "detached",
            is_notable=True,
            detail=re.compile(rf"HEAD is now at {_HASH}", re.IGNORECASE),
            template="detached at {hash}",
        ),
        Rule(
            (phrase("did not match any"),),
            OutcomeCategory.NO_MATCH,
            "no such branch",
            is_error=True,
        ),
        Rule(
            (phrase("would be overwritten"),),
            OutcomeCategory.LOCAL_CHANGES,
            "local changes would be overwritten",
            is_error=True,
        ),
        *_generic_errors(),
    ),
    failure_message="checkout failed",
)

PULL_RULES = RuleTable(
    OperationKind.PULL,
    (
        Rule(
            (phrase("already up to date"), phrase("already up-to-date")),
            OutcomeCategory.UNCHANGED,
            "up to date",
        ),
        # pull --rebase
        Rule(
            (re.compile(r"^Current branch \S+ is up to date", re.MULTILINE),),
            OutcomeCategory.UNCHANGED,
            "up to date",
            requires_success=True,
        ),
        Rule(
            (phrase("CONFLICT ", case_sensitive=True), phrase("merge conflict")),
            OutcomeCategory.CONFLICT,
            "conflict",
            is_error=True,
        ),
        Rule(
            (phrase("would be overwritten"),),
            OutcomeCategory.LOCAL_CHANGES,
            "local changes would be overwritten",
            is_error=True,
        ),
        Rule(
            (phrase("no tracking information"),),
            OutcomeCategory.NO_TRACKING,
            "no tracking branch",
            is_error=True,
        ),
        Rule(
            (phrase("no such ref was fetched"), phrase("couldn't find remote ref")),
            OutcomeCategory.NO_REMOTE,
            "no remote branch",
            is_error=True,
        ),
        Rule(
            (phrase("Aborting", case_sensitive=True),),
            OutcomeCategory.ABORTED,
            "aborted",
            is_error=True,
        ),
        *_generic_errors(),
        Rule(
            (
                phrase("fast-forward"),
                phrase("merge made"),
                phrase("applying: "),
                phrase("successfully rebased"),
            ),
            OutcomeCategory.SUCCESS,
            "pulled",
            is_notable=True,
            requires_success=True,
        ),
    ),
    failure_message="pull failed",
)

FETCH_RULES = RuleTable(
    OperationKind.FETCH,
    (
        Rule(
            (
                phrase("couldn't find remote ref"),
                phrase("no such remote"),
                phrase("does not appear to be a git repository"),
            ),
            OutcomeCategory.NO_REMOTE,
            "no remote",
            is_error=True,
        ),
        *_generic_errors(),
        Rule((phrase("->"),), OutcomeCategory.SUCCESS, "fetched", is_notable=True, requires_success=True),
        Rule((BLANK,), OutcomeCategory.UNCHANGED, "up to date", requires_success=True),
    ),
    failure_message="fetch failed",
)

CLEAN_RULES = RuleTable(
    OperationKind.CLEAN,
    (
        Rule(
            (phrase("Would remove ", case_sensitive=True),),
            OutcomeCategory.SUCCESS,
            "would remove files",
            is_notable=True,
            count=re.compile(r"^Would remove ", re.MULTILINE),
            template="would remove {count} file{s}",
        ),
        Rule(
            (phrase("Removing ", case_sensitive=True),),
            OutcomeCategory.SUCCESS,
            "cleaned",
            is_notable=True,
            count=re.compile(r"^Removing ", re.MULTILINE),
            template="cleaned {count} file{s}",
        ),
        Rule(
            (phrase("clean.requireForce"),),
            OutcomeCategory.ERROR,
            "force required",
            is_error=True,
        ),
        *_generic_errors(),
        Rule((BLANK,), OutcomeCategory.UNCHANGED, "nothing to clean", requires_success=True),
    ),
    failure_message="clean failed",
)

RESET_RULES = RuleTable(
    OperationKind.RESET,
    (
        Rule(
            (phrase("HEAD is now at"),),
            OutcomeCategory.SUCCESS,
            "reset",
            is_notable=True,
            detail=re.compile(rf"HEAD is now at {_HASH}", re.IGNORECASE),
            template="reset to {hash}",
        ),
        Rule(
            (phrase("unstaged changes after reset"),),
            OutcomeCategory.SUCCESS,
            "reset, unstaged changes",
            is_notable=True,
        ),
        Rule(
            (phrase("unknown revision"), phrase("ambiguous argument")),
            OutcomeCategory.NO_MATCH,
            "unknown revision",
            is_error=True,
        ),
        *_generic_errors(),
        Rule((BLANK,), OutcomeCategory.SUCCESS, "reset", is_notable=True, requires_success=True),
    ),
    failure_message="reset failed",
)

SET_HEAD_RULES = RuleTable(
    OperationKind.SET_HEAD,
    (
        Rule(
            (phrase("is unchanged"),),
            OutcomeCategory.UNCHANGED,
            "unchanged",
            detail=re.compile(rf"points to {_BRANCH}", re.IGNORECASE),
            template="unchanged ({branch})",
        ),
        Rule(
            (phrase("now points to"),),
            OutcomeCategory.SUCCESS,
            "set",
            is_notable=True,
            detail=re.compile(rf"now points to {_BRANCH}", re.IGNORECASE),
            template="set to {branch}",
        ),
        # git 2.48+, when origin/HEAD did not exist before
        Rule(
            (phrase("is now created"),),
            OutcomeCategory.SUCCESS,
            "set",
            is_notable=True,
            detail=re.compile(rf"points to {_BRANCH}", re.IGNORECASE),
            template="set to {branch}",
        ),
        Rule(
            (phrase("set to"),),
            OutcomeCategory.SUCCESS,
            "set",
            is_notable=True,
            detail=re.compile(r"set to (?P<branch>\S+)", re.IGNORECASE),
            template="set to {branch}",
        ),
        Rule(
            (phrase("cannot determine remote HEAD"), phrase("no such remote")),
            OutcomeCategory.NO_REMOTE,
            "no remote HEAD",
            is_error=True,
        ),
        Rule(
            (phrase("multiple remote HEAD branches"),),
            OutcomeCategory.ERROR,
            "ambiguous remote HEAD",
            is_error=True,
        ),
        *_generic_errors(),
    ),
    failure_message="set-head failed",
)

STATUS_RULES = RuleTable(
    OperationKind.STATUS,
    (
        Rule((BLANK,), OutcomeCategory.CLEAN, "clean", requires_success=True),
        Rule((ANYTHING,), OutcomeCategory.DIRTY, "local changes", requires_success=True),
    ),
    failure_message="status error",
)

RULE_TABLES: dict[OperationKind, RuleTable] = {
    table.kind: table
    for table in (
        CHECKOUT_RULES,
        PULL_RULES,
        FETCH_RULES,
        CLEAN_RULES,
        RESET_RULES,
        SET_HEAD_RULES,
        STATUS_RULES,
    )
}


# =============================================================================
# Classification
# =============================================================================


_DIAGNOSTIC_LINE = re.compile(r"^\s*(?:error|fatal):\s*(?P<text>.+)$", re.IGNORECASE | re.MULTILINE)


def excerpt(text: str | None, limit: int = DETAIL_MAX_LENGTH) -> str | None:
    """Shorten command output to the line that explains it."""
    if not text:
        return None
    match = _DIAGNOSTIC_LINE.search(text)
    if match:
        line = match.group("text").strip()
    else:
        line = next((line.strip() for line in text.splitlines() if line.strip()), "")
    if not line:
        return None
    if len(line) > limit:
        line = line[: limit - 1].rstrip() + "…"
    return line


def classify_output(kind: OperationKind, output: str | None, success: bool) -> ClassifiedOutcome:
    """Map raw output to an outcome; total for any text, `None` included."""
    text = output or ""
    table = RULE_TABLES.get(kind)

    if table is not None:
        for rule in table.rules:
            if rule.matches(text, success):
                is_error = rule.is_error or not success
                return ClassifiedOutcome(
                    category=rule.category,
                    message=rule.render(text),
                    is_error=is_error,
                    is_notable=rule.is_notable and not is_error,
                    detail=excerpt(text) if rule.category in _EXCERPTED else None,
                )

    if not success:
        failure_message = table.failure_message if table is not None else "failed"
        return ClassifiedOutcome(OutcomeCategory.FATAL, failure_message, is_error=True, detail=excerpt(text))

    # Output nobody anticipated is treated as a failure until a rule says otherwise
    return ClassifiedOutcome(OutcomeCategory.UNKNOWN, "unknown", is_error=True, detail=excerpt(text))


def classify(kind: OperationKind, result: ExecuteResult) -> ClassifiedOutcome:
    """Classify a whole result, process failures first."""
    if result.killed:
        return ClassifiedOutcome(OutcomeCategory.KILLED, "killed", is_error=True)

    if result.start_failure is not None:
        detail = excerpt(str(result.exception)) if result.exception is not None else None
        if result.start_failure == ProcessStartFailure.NOT_FOUND:
            return ClassifiedOutcome(OutcomeCategory.NOT_FOUND, "not found", is_error=True, detail=detail)
        if result.start_failure == ProcessStartFailure.ACCESS_DENIED:
            return ClassifiedOutcome(OutcomeCategory.ACCESS_DENIED, "access denied", is_error=True, detail=detail)
        return ClassifiedOutcome(OutcomeCategory.FATAL, "failed to start", is_error=True, detail=detail)

    if result.exception is not None:
        return ClassifiedOutcome(
            OutcomeCategory.FATAL, "failed", is_error=True, detail=excerpt(str(result.exception))
        )

    return classify_output(kind, result.output, result.success)
