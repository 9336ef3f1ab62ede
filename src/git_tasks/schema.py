"""MCP-compatible tool schema for AI agents."""

from __future__ import annotations

from ._version import __version__

_PATH = {
    "type": "string",
    "description": "Root path to scan for repositories (default: current directory)",
    "default": ".",
}
_SHOW_GIT_OUTPUT = {
    "type": "boolean",
    "description": "Run repositories one after another and print git's own output under each one",
    "default": False,
}
_DEPTH = {
    "type": "integer",
    "description": "Directory levels below path to search for repositories",
    "default": 1,
    "minimum": 0,
}
_TIMEOUT = {
    "type": "number",
    "description": "Kill every running git process after this many seconds",
    "minimum": 0,
}
_ROWS = {
    "type": "string",
    "description": "One line per repository: '<relative path> <branch>' followed by the outcome of each step, e.g. 'libs/core main up to date ↑1'. Rows that failed discovery read '<path> error (<reason>)'.",
}


def _properties(**extra: dict) -> dict:
    return {
        "path": _PATH,
        **extra,
        "show_git_output": _SHOW_GIT_OUTPUT,
        "depth": _DEPTH,
        "timeout": _TIMEOUT,
    }


def get_tool_schema() -> dict:
    """Generate MCP-compatible tool schema for AI agents."""
    return {
        "name": "git-tasks",
        "version": __version__,
        "description": "Run git tasks across a repository tree, its child repositories and the submodules listed in .gitmodules, all at once. Every repository gets one terminal row that is updated in place while git runs.",
        "usage": "git-tasks <command> [path] [options]",
        "tools": [
            {
                "name": "status",
                "description": "Show whether each working tree is clean and how many commits the current branch is ahead of or behind origin.",
                "inputSchema": {
                    "type": "object",
                    "properties": _properties(
                        fetch={
                            "type": "boolean",
                            "description": "Fetch the current branch first so ahead/behind counts are fresh",
                            "default": False,
                        },
                        pending={
                            "type": "boolean",
                            "description": "List pending changes (porcelain) under each repository",
                            "default": False,
                        },
                    ),
                    "required": [],
                },
                "outputSchema": _ROWS,
                "examples": [
                    {
                        "description": "Status of everything under ~/src with fresh remote data",
                        "command": "git-tasks status ~/src --fetch",
                    },
                ],
            },
            {
                "name": "pull",
                "description": "Pull every repository and report up to date, pulled, conflict, local changes, no tracking branch or errors.",
                "inputSchema": {"type": "object", "properties": _properties(), "required": []},
                "outputSchema": _ROWS,
                "examples": [
                    {"description": "Pull all repositories", "command": "git-tasks pull"},
                ],
            },
            {
                "name": "checkout",
                "description": "Check out a branch in every repository. A '*' in the branch name matches any characters; the checkout runs only where exactly one branch matches.",
                "inputSchema": {
                    "type": "object",
                    "properties": _properties(
                        branch={"type": "string", "description": "Branch, tag, commit or pattern"},
                        create={
                            "type": "boolean",
                            "description": "Create the branch (git checkout -b)",
                            "default": False,
                        },
                    ),
                    "required": ["branch"],
                },
                "outputSchema": _ROWS,
                "examples": [
                    {"description": "Switch every repository to its feature branch", "command": "git-tasks checkout 'feature/*login*'"},
                ],
            },
            {
                "name": "main",
                "description": "Check out each repository's default branch (the branch origin/HEAD points to).",
                "inputSchema": {
                    "type": "object",
                    "properties": _properties(
                        pull={
                            "type": "boolean",
                            "description": "Pull after switching",
                            "default": False,
                        },
                    ),
                    "required": [],
                },
                "outputSchema": _ROWS,
                "examples": [
                    {"description": "Back to the default branch and up to date", "command": "git-tasks main --pull"},
                ],
            },
            {
                "name": "clean",
                "description": "Remove untracked files with git clean. ignore_rules and only_ignored are mutually exclusive.",
                "inputSchema": {
                    "type": "object",
                    "properties": _properties(
                        recursive={"type": "boolean", "description": "Also remove untracked directories (-d)", "default": False},
                        force={"type": "boolean", "description": "Actually remove files (-f)", "default": False},
                        ignore_rules={"type": "boolean", "description": "Also remove ignored files (-x)", "default": False},
                        only_ignored={"type": "boolean", "description": "Remove only ignored files (-X)", "default": False},
                        dry_run={"type": "boolean", "description": "Only show what would be removed (-n)", "default": False},
                    ),
                    "required": [],
                },
                "outputSchema": _ROWS,
                "examples": [
                    {"description": "Preview removal of build output", "command": "git-tasks clean -d -X -n"},
                ],
            },
            {
                "name": "reset",
                "description": "Reset every repository to a commit, optionally going back a number of commits and cleaning afterwards. Clean runs only where the reset succeeded.",
                "inputSchema": {
                    "type": "object",
                    "properties": _properties(
                        commit={"type": "string", "description": "Commit to reset to", "default": "HEAD"},
                        mode={"type": "string", "enum": ["mixed", "soft", "hard"], "default": "mixed"},
                        back={"type": "integer", "description": "Commits to go back from commit", "default": 0, "minimum": 0},
                        clean={"type": "boolean", "description": "Run git clean -d -f after a successful reset", "default": False},
                    ),
                    "required": [],
                },
                "outputSchema": _ROWS,
                "examples": [
                    {"description": "Drop all local work", "command": "git-tasks reset --mode hard --clean"},
                ],
            },
            {
                "name": "fix-ref",
                "description": "Repair origin/HEAD with 'git remote set-head <remote> --auto' so the default branch can be resolved.",
                "inputSchema": {"type": "object", "properties": _properties(), "required": []},
                "outputSchema": _ROWS,
                "examples": [
                    {"description": "Repair default branch detection everywhere", "command": "git-tasks fix-ref"},
                ],
            },
        ],
        "globalOptions": {
            "--version, -V": "Show version and exit",
            "--schema": "Print this schema",
            "--debug": "Log every git invocation to stderr",
            "--log-file": "Append debug logs to a file",
        },
        "configuration": {
            "description": "Settings are read from the environment first, then from a config file of 'key = value' lines",
            "environment": {
                "GIT_TASKS_GIT": "git executable to run",
                "GIT_TASKS_DEPTH": "Default search depth",
                "GIT_TASKS_LOG_FILE": "Log file path",
                "GIT_TASKS_CONFIG": "Config file path",
            },
            "configFile": [
                "$GIT_TASKS_CONFIG",
                "~/.config/git-tasks/config (XDG-compliant)",
                "~/.git-tasks (legacy fallback)",
            ],
        },
        "notes": [
            "Exit code is 0 whenever the run completes, even if some repositories failed; read the rows",
            "Exit code 1 means no repositories were found, the path is not a directory or options conflict",
            "When stdout is not a terminal, repositories are processed one after another and git output is printed",
            "Ctrl+C or --timeout kills running git processes; affected rows read 'killed'",
        ],
    }
