"""git-tasks: Run git tasks across a repository tree and its submodules at once."""

# Guard against deleted CWD (e.g. directory removed by another process).
# rich crashes on import if os.getcwd() fails, so recover before any imports.
import os

try:
    os.getcwd()
except OSError:
    os.chdir(os.path.expanduser("~"))

from loguru import logger

from ._version import __version__
from .classifier import ClassifiedOutcome, OutcomeCategory, classify, classify_output
from .cli import app
from .config import Settings, configure_logging, load_settings
from .core import (
    CancellationToken,
    CleanOptions,
    CommandGateway,
    CommitPosition,
    ExecuteResult,
    GitBranch,
    GitOperations,
    InvalidOptionsError,
    OperationKind,
    ProcessStartFailure,
    RepositoryTarget,
    ResetMode,
    ValueResult,
    discover_repositories,
)
from .formatters import TerminalRenderer, allocate_rows
from .orchestrator import TaskOrchestrator, WorkSession
from .schema import get_tool_schema

# Silent as a library; the CLI turns logging on
logger.disable("git_tasks")

__all__ = [
    # Version
    "__version__",
    # CLI
    "app",
    # Models
    "ClassifiedOutcome",
    "CleanOptions",
    "CommitPosition",
    "ExecuteResult",
    "GitBranch",
    "InvalidOptionsError",
    "OperationKind",
    "OutcomeCategory",
    "ProcessStartFailure",
    "RepositoryTarget",
    "ResetMode",
    "Settings",
    "ValueResult",
    # Operations
    "CancellationToken",
    "CommandGateway",
    "GitOperations",
    "TaskOrchestrator",
    "WorkSession",
    # Functions
    "allocate_rows",
    "classify",
    "classify_output",
    "configure_logging",
    "discover_repositories",
    "get_tool_schema",
    "load_settings",
    # Formatters
    "TerminalRenderer",
]
