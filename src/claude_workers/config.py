"""Configuration management for claude-workers."""

from __future__ import annotations

import logging
import shlex
from functools import lru_cache
from pathlib import Path
from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

DEFAULT_BOOTSTRAP_PROMPT = (
    "Read ~/task.json and execute the task following your CLAUDE.md instructions."
)
LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(name)s: %(message)s"


class WorkerSettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore", populate_by_name=True
    )

    workers_root: Path = Field(default=Path("~/workers"), validation_alias="WORKERS_ROOT")
    agent_command: str = Field(default="claude", validation_alias="WORKERS_AGENT_COMMAND")
    agent_flags: Annotated[tuple[str, ...], NoDecode] = Field(
        default=("--print", "--dangerously-skip-permissions"),
        validation_alias="WORKERS_AGENT_FLAGS",
    )
    bootstrap_prompt: str = Field(
        default=DEFAULT_BOOTSTRAP_PROMPT, validation_alias="WORKERS_BOOTSTRAP_PROMPT"
    )
    gh_path: str | None = Field(default=None, validation_alias="GH_PATH")
    log_level: str = Field(default="INFO", validation_alias="WORKERS_LOG_LEVEL")
    reserve_floor: int = Field(default=0, validation_alias="WORKERS_RESERVE_FLOOR")
    reserved_agents: Annotated[tuple[str, ...], NoDecode] = Field(
        default=("vilicus", "dispensator"), validation_alias="WORKERS_RESERVED_AGENTS"
    )
    review_agent: str = Field(default="vilicus", validation_alias="WORKERS_REVIEW_AGENT")
    review_cache_path: Path | None = Field(default=None, validation_alias="WORKERS_REVIEW_CACHE")
    watch_interval: float = Field(default=5.0, validation_alias="WORKERS_WATCH_INTERVAL")
    stop_grace_period: float = Field(default=1.0, validation_alias="WORKERS_STOP_GRACE")
    assign_attempts: int = Field(default=3, validation_alias="WORKERS_ASSIGN_ATTEMPTS")

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "WORKERS_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("agent_flags", mode="before")
    @classmethod
    def _parse_agent_flags(cls, value):
        if value is None:
            return ()
        if isinstance(value, (list, tuple)):
            return tuple(str(item) for item in value)
        if isinstance(value, str):
            return tuple(shlex.split(value))
        raise TypeError("WORKERS_AGENT_FLAGS must be a list of flags or a shell-style string")

    @field_validator("reserved_agents", mode="before")
    @classmethod
    def _parse_reserved_agents(cls, value):
        if value is None or value == "":
            return ()
        if isinstance(value, (list, tuple)):
            return tuple(str(item).strip() for item in value if str(item).strip())
        if isinstance(value, str):
            return tuple(part.strip() for part in value.split(",") if part.strip())
        raise TypeError("WORKERS_RESERVED_AGENTS must be a list or a comma-separated string")

    @field_validator("reserve_floor")
    @classmethod
    def _validate_reserve_floor(cls, value: int) -> int:
        if value < 0:
            raise ValueError("WORKERS_RESERVE_FLOOR must be >= 0")
        return value

    @field_validator("assign_attempts")
    @classmethod
    def _validate_assign_attempts(cls, value: int) -> int:
        if value < 1:
            raise ValueError("WORKERS_ASSIGN_ATTEMPTS must be >= 1")
        return value

    @field_validator("watch_interval")
    @classmethod
    def _validate_watch_interval(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("WORKERS_WATCH_INTERVAL must be > 0")
        return value

    @field_validator("stop_grace_period")
    @classmethod
    def _validate_stop_grace(cls, value: float) -> float:
        if value < 0:
            raise ValueError("WORKERS_STOP_GRACE must be >= 0")
        return value

    @property
    def excluded_agents(self) -> frozenset[str]:
        """Worker ids that never take part in auto-assignment."""

        return frozenset((*self.reserved_agents, self.review_agent))

    def resolved(self) -> "WorkerSettings":
        """Return a copy with user and relative paths expanded."""

        root = self.workers_root.expanduser().resolve()
        cache = self.review_cache_path or root / ".review-cache.json"
        return self.model_copy(
            update={
                "workers_root": root,
                "review_cache_path": cache.expanduser().resolve(),
            }
        )


@lru_cache(maxsize=1)
def get_settings() -> WorkerSettings:
    """Return cached settings instance."""

    return WorkerSettings().resolved()


def configure_logging(level: str, *, fmt: str = LOG_FORMAT) -> None:
    """Configure root logging for claude-workers entry points."""

    logging.basicConfig(level=getattr(logging, level, logging.INFO), format=fmt)


__all__ = ["WorkerSettings", "configure_logging", "get_settings"]
