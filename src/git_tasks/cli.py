"""Command-line interface."""

from __future__ import annotations

import json
from pathlib import Path

import typer
from loguru import logger
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn

from ._version import __version__
from .config import Settings, configure_logging, load_settings
from .core import (
    CancellationToken,
    CleanOptions,
    CommandGateway,
    GitOperations,
    InvalidOptionsError,
    ResetMode,
    discover_repositories,
)
from .formatters import TerminalRenderer
from .orchestrator import RepositoryWork, TaskOrchestrator
from .schema import get_tool_schema
from .tasks import (
    checkout_work,
    clean_work,
    fix_ref_work,
    main_work,
    pull_work,
    reset_work,
    status_work,
)

# =============================================================================
# CLI Application
# =============================================================================


app = typer.Typer(
    name="git-tasks",
    help="Run git tasks across a repository tree and its submodules at once.",
    no_args_is_help=True,
)


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        print(f"git-tasks {__version__}")
        raise typer.Exit()


@app.callback(invoke_without_command=True)
def callback(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
    schema: bool = typer.Option(
        False,
        "--schema",
        help="Output MCP-compatible tool schema for AI agents",
    ),
    debug: bool = typer.Option(
        False,
        "--debug",
        help="Log every git invocation to stderr",
    ),
    log_file: Path = typer.Option(
        None,
        "--log-file",
        help="Append debug logs to this file (default: $GIT_TASKS_LOG_FILE)",
    ),
):
    """git-tasks: Run git tasks across a repository tree and its submodules at once."""
    if schema:
        print(json.dumps(get_tool_schema(), indent=2))
        raise typer.Exit()

    settings = load_settings()
    configure_logging(settings, debug=debug, log_file=log_file)
    ctx.obj = settings


def run_tasks(
    ctx: typer.Context,
    path: Path | None,
    work: RepositoryWork,
    verbose: bool = False,
    depth: int | None = None,
    timeout: float | None = None,
) -> None:
    """Discover repositories under `path` and run `work` on each of them."""
    settings: Settings = ctx.obj if isinstance(ctx.obj, Settings) else load_settings()
    console = Console(highlight=False)

    root = (path if path else Path(".")).expanduser().resolve()
    if not root.is_dir():
        console.print(f"[red]Error: Directory not found: {root}[/]")
        raise typer.Exit(1)

    # Positioned updates need a terminal to position in
    verbose = verbose or not console.is_terminal

    token = CancellationToken()
    if timeout:
        token.cancel_after(timeout)

    try:
        with CommandGateway() as gateway:
            git = GitOperations(gateway, executable=settings.git, token=token)
            search_depth = depth if depth is not None else settings.depth

            if console.is_terminal:
                with Progress(
                    SpinnerColumn(),
                    TextColumn("[progress.description]{task.description}"),
                    console=console,
                    transient=True,
                ) as progress:
                    progress.add_task("Discovering repositories...", total=None)
                    records = discover_repositories(root, git, depth=search_depth)
            else:
                records = discover_repositories(root, git, depth=search_depth)

            if not records:
                console.print(f"No git repositories found: {root}")
                raise typer.Exit(1)

            logger.info(f"Running {len(records)} repositories under {root} (verbose={verbose})")
            orchestrator = TaskOrchestrator(git, TerminalRenderer(console), token=token, verbose=verbose)
            exit_code = orchestrator.run(records, work)
    finally:
        token.close()

    if exit_code:
        raise typer.Exit(exit_code)


# =============================================================================
# Commands
# =============================================================================


@app.command()
def status(
    ctx: typer.Context,
    path: Path = typer.Argument(
        None,
        help="Root path to scan for repositories",
    ),
    show_git_output: bool = typer.Option(
        False,
        "--show-git-output",
        "-o",
        help="Run sequentially and show full git status output",
    ),
    pending: bool = typer.Option(
        False,
        "--pending",
        "-p",
        help="Run sequentially and list pending changes",
    ),
    fetch: bool = typer.Option(
        False,
        "--fetch",
        "-f",
        help="Fetch the current branch before computing ahead/behind",
    ),
    depth: int = typer.Option(
        None,
        "--depth",
        min=0,
        help="Directory levels below PATH to search (default: 1)",
    ),
    timeout: float = typer.Option(
        None,
        "--timeout",
        min=0,
        help="Kill all git processes after this many seconds",
    ),
):
    """Show working tree status and ahead/behind counts of every repository."""
    run_tasks(
        ctx,
        path,
        status_work(fetch=fetch, pending=pending, full=show_git_output),
        verbose=show_git_output or pending,
        depth=depth,
        timeout=timeout,
    )


@app.command()
def pull(
    ctx: typer.Context,
    path: Path = typer.Argument(
        None,
        help="Root path to scan for repositories",
    ),
    show_git_output: bool = typer.Option(
        False,
        "--show-git-output",
        "-o",
        help="Run sequentially and show git output",
    ),
    depth: int = typer.Option(
        None,
        "--depth",
        min=0,
        help="Directory levels below PATH to search (default: 1)",
    ),
    timeout: float = typer.Option(
        None,
        "--timeout",
        min=0,
        help="Kill all git processes after this many seconds",
    ),
):
    """Pull every repository."""
    run_tasks(ctx, path, pull_work(), verbose=show_git_output, depth=depth, timeout=timeout)


@app.command()
def checkout(
    ctx: typer.Context,
    branch: str = typer.Argument(
        ...,
        help="Branch, tag or commit to check out; '*' matches any characters",
    ),
    path: Path = typer.Argument(
        None,
        help="Root path to scan for repositories",
    ),
    create: bool = typer.Option(
        False,
        "--create",
        "-b",
        help="Create the branch before checking it out",
    ),
    show_git_output: bool = typer.Option(
        False,
        "--show-git-output",
        "-o",
        help="Run sequentially and show git output",
    ),
    depth: int = typer.Option(
        None,
        "--depth",
        min=0,
        help="Directory levels below PATH to search (default: 1)",
    ),
    timeout: float = typer.Option(
        None,
        "--timeout",
        min=0,
        help="Kill all git processes after this many seconds",
    ),
):
    """Check out a branch in every repository."""
    if create and "*" in branch:
        console = Console()
        console.print("[red]Error: --create cannot be used with a branch pattern[/]")
        raise typer.Exit(1)

    run_tasks(
        ctx,
        path,
        checkout_work(branch, create=create),
        verbose=show_git_output,
        depth=depth,
        timeout=timeout,
    )


@app.command(name="main")
def main_branch(
    ctx: typer.Context,
    path: Path = typer.Argument(
        None,
        help="Root path to scan for repositories",
    ),
    pull: bool = typer.Option(
        False,
        "--pull",
        "-p",
        help="Pull after switching to the default branch",
    ),
    show_git_output: bool = typer.Option(
        False,
        "--show-git-output",
        "-o",
        help="Run sequentially and show git output",
    ),
    depth: int = typer.Option(
        None,
        "--depth",
        min=0,
        help="Directory levels below PATH to search (default: 1)",
    ),
    timeout: float = typer.Option(
        None,
        "--timeout",
        min=0,
        help="Kill all git processes after this many seconds",
    ),
):
    """Check out the default branch (origin/HEAD) in every repository."""
    run_tasks(ctx, path, main_work(pull=pull), verbose=show_git_output, depth=depth, timeout=timeout)


@app.command()
def clean(
    ctx: typer.Context,
    path: Path = typer.Argument(
        None,
        help="Root path to scan for repositories",
    ),
    recursive: bool = typer.Option(
        False,
        "--recursive",
        "-d",
        help="Also remove untracked directories",
    ),
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Actually remove files (required unless clean.requireForce is false)",
    ),
    ignore_rules: bool = typer.Option(
        False,
        "--ignore-rules",
        "-x",
        help="Also remove files ignored by .gitignore",
    ),
    only_ignored: bool = typer.Option(
        False,
        "--only-ignored",
        "-X",
        help="Remove only files ignored by .gitignore",
    ),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        "-n",
        help="Show what would be removed (implies --show-git-output)",
    ),
    show_git_output: bool = typer.Option(
        False,
        "--show-git-output",
        "-o",
        help="Run sequentially and show git output",
    ),
    depth: int = typer.Option(
        None,
        "--depth",
        min=0,
        help="Directory levels below PATH to search (default: 1)",
    ),
    timeout: float = typer.Option(
        None,
        "--timeout",
        min=0,
        help="Kill all git processes after this many seconds",
    ),
):
    """Remove untracked files from every working tree."""
    options = CleanOptions(
        recursive=recursive,
        force=force,
        ignore_rules=ignore_rules,
        only_ignored=only_ignored,
        dry_run=dry_run,
    )
    try:
        work = clean_work(options)
    except InvalidOptionsError as e:
        console = Console()
        console.print(f"[red]Error: {e}[/]")
        raise typer.Exit(1)

    run_tasks(ctx, path, work, verbose=show_git_output or dry_run, depth=depth, timeout=timeout)


@app.command()
def reset(
    ctx: typer.Context,
    path: Path = typer.Argument(
        None,
        help="Root path to scan for repositories",
    ),
    commit: str = typer.Option(
        "HEAD",
        "--commit",
        "-c",
        help="Commit to reset to",
    ),
    mode: ResetMode = typer.Option(
        ResetMode.MIXED,
        "--mode",
        "-m",
        help="Reset mode",
    ),
    back: int = typer.Option(
        0,
        "--back",
        "-b",
        min=0,
        help="Go this many commits back from --commit",
    ),
    clean_after: bool = typer.Option(
        False,
        "--clean",
        help="Remove untracked files and directories after a successful reset",
    ),
    show_git_output: bool = typer.Option(
        False,
        "--show-git-output",
        "-o",
        help="Run sequentially and show git output",
    ),
    depth: int = typer.Option(
        None,
        "--depth",
        min=0,
        help="Directory levels below PATH to search (default: 1)",
    ),
    timeout: float = typer.Option(
        None,
        "--timeout",
        min=0,
        help="Kill all git processes after this many seconds",
    ),
):
    """Reset every repository to a commit."""
    run_tasks(
        ctx,
        path,
        reset_work(commit=commit, mode=mode, back=back, clean=clean_after),
        verbose=show_git_output,
        depth=depth,
        timeout=timeout,
    )


@app.command(name="fix-ref")
def fix_ref(
    ctx: typer.Context,
    path: Path = typer.Argument(
        None,
        help="Root path to scan for repositories",
    ),
    show_git_output: bool = typer.Option(
        False,
        "--show-git-output",
        "-o",
        help="Run sequentially and show git output",
    ),
    depth: int = typer.Option(
        None,
        "--depth",
        min=0,
        help="Directory levels below PATH to search (default: 1)",
    ),
    timeout: float = typer.Option(
        None,
        "--timeout",
        min=0,
        help="Kill all git processes after this many seconds",
    ),
):
    """Point origin/HEAD at the remote's default branch in every repository."""
    run_tasks(ctx, path, fix_ref_work(), verbose=show_git_output, depth=depth, timeout=timeout)
