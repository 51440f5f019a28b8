"""Task record models."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utc_now_iso(now: datetime | None = None) -> str:
    """Return an ISO-8601 UTC timestamp with millisecond precision and a ``Z`` suffix."""

    moment = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_iso(value: str) -> datetime:
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return datetime.fromisoformat(value)


class WorkerStatus(str, Enum):
    """Derived lifecycle status of a worker."""

    IDLE = "idle"
    BUSY = "busy"
    CRASHED = "crashed"

    @property
    def terminal(self) -> bool:
        return self is not WorkerStatus.BUSY


class Task(BaseModel):
    """The single unit of work assigned to a worker, persisted as ``task.json``."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    repo: str = Field(..., description="Target repository as owner/name.")
    issue: int | None = Field(default=None, description="Issue or pull request number.")
    prompt: str | None = Field(default=None, description="Free-form instructions for the agent.")
    pid: int | None = Field(default=None, description="Process id of the spawned agent.")
    started_at: str | None = Field(default=None, alias="startedAt")
    error: str | None = Field(default=None, description="Failure recorded by the agent itself.")

    @field_validator("repo")
    @classmethod
    def _normalize_repo(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Task repo must not be empty")
        return normalized

    @property
    def label(self) -> str:
        """Human readable ``owner/name#issue`` reference."""

        return f"{self.repo}#{self.issue}" if self.issue is not None else self.repo

    @property
    def started(self) -> datetime | None:
        if not self.started_at:
            return None
        try:
            return parse_iso(self.started_at)
        except ValueError:
            return None

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


@dataclass(slots=True)
class StatusReport:
    worker_id: str
    status: WorkerStatus
    task: Task | None


@dataclass(slots=True)
class CompletedTask:
    """An archived task read back from a worker's completed history."""

    worker_id: str
    task: Task
    completed_at: datetime
    path: Path


__all__ = [
    "CompletedTask",
    "StatusReport",
    "Task",
    "WorkerStatus",
    "parse_iso",
    "utc_now_iso",
]
