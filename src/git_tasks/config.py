"""Settings resolution and logging setup."""

from __future__ import annotations

import os
import sys
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from loguru import logger
from pydantic import Field, ValidationError, ValidationInfo, ValidatorFunctionWrapHandler, field_validator
from pydantic_settings import BaseSettings

ENV_PREFIX = "GIT_TASKS_"

STDERR_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {thread.name} | {name}:{function}:{line} - {message}"


class Settings(BaseSettings):
    """Tool settings; environment beats the config file, which beats these defaults."""

    git: str = "git"
    depth: int = Field(1, ge=0)
    log_file: Path | None = None

    class Config:
        env_prefix = ENV_PREFIX
        env_ignore_empty = True
        extra = "ignore"

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # Keyword values are config file entries; the environment overrides them
        return env_settings, init_settings

    @field_validator("depth", mode="wrap")
    @classmethod
    def _ignore_invalid(cls, value: Any, handler: ValidatorFunctionWrapHandler, info: ValidationInfo) -> Any:
        try:
            return handler(value)
        except ValidationError:
            logger.warning(f"Ignoring invalid {info.field_name}: {value!r}")
            return cls.model_fields[info.field_name].default

    @field_validator("git")
    @classmethod
    def _expand_git(cls, value: str) -> str:
        return os.path.expanduser(value)

    @field_validator("log_file")
    @classmethod
    def _expand_log_file(cls, value: Path | None) -> Path | None:
        return value.expanduser() if value is not None else None


def resolve_config_file(environ: Mapping[str, str] | None = None) -> Path | None:
    """Auto-resolve the config file from environment and standard locations.

    Priority order:
    1. $GIT_TASKS_CONFIG environment variable
    2. ~/.config/git-tasks/config (XDG-compliant)
    3. ~/.git-tasks (legacy fallback)
    """
    environ = os.environ if environ is None else environ

    env_config = environ.get(f"{ENV_PREFIX}CONFIG")
    if env_config:
        env_path = Path(env_config).expanduser()
        if env_path.is_file():
            return env_path

    xdg_path = Path.home() / ".config" / "git-tasks" / "config"
    if xdg_path.is_file():
        return xdg_path

    legacy_path = Path.home() / ".git-tasks"
    if legacy_path.is_file():
        return legacy_path

    return None


def load_config_file(config_file: Path) -> dict[str, str]:
    """Read `key = value` lines; `#` starts a comment line."""
    values: dict[str, str] = {}
    try:
        with open(config_file.expanduser(), encoding="utf-8") as f:
            for number, line in enumerate(f, start=1):
                line = line.strip()
                if not line or line.startswith("#"):
                    continue
                key, sep, value = line.partition("=")
                if not sep:
                    logger.warning(f"{config_file}:{number}: expected 'key = value', got {line!r}")
                    continue
                key = key.strip().lower().replace("-", "_")
                values[key] = os.path.expandvars(value.strip())
    except FileNotFoundError:
        pass
    return values


def load_settings(config_file: Path | None = None) -> Settings:
    config_file = config_file or resolve_config_file()
    values = load_config_file(config_file) if config_file else {}
    return Settings(**values)


def configure_logging(settings: Settings, debug: bool = False, log_file: Path | None = None) -> None:
    """Install loguru sinks; without --debug or a log file nothing is logged."""
    logger.remove()
    logger.enable("git_tasks")

    if debug:
        logger.add(sys.stderr, format=STDERR_FORMAT, level="DEBUG", colorize=True)

    target = log_file or settings.log_file
    if target is not None:
        target.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            target,
            format=FILE_FORMAT,
            level="DEBUG",
            rotation="10 MB",
            retention="1 week",
            encoding="utf-8",
        )
