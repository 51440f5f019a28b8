"""Exception types raised by the worker pool core."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .tasks.models import Task


class WorkerPoolError(RuntimeError):
    """Base class for worker pool errors."""


class UnknownWorker(WorkerPoolError):
    """Raised when a worker's home directory does not exist."""

    def __init__(self, worker_id: str) -> None:
        super().__init__(f"worker {worker_id} does not exist")
        self.worker_id = worker_id


class WorkerBusy(WorkerPoolError):
    """Raised when a worker holds a live task or is mid-dispatch."""

    def __init__(self, worker_id: str, task: Task | None = None, *, hint: str | None = None) -> None:
        if task is None:
            message = f"worker {worker_id} is busy (dispatch in progress)"
        else:
            message = f"worker {worker_id} is busy with {task.label} (PID {task.pid})"
        if hint:
            message = f"{message}; {hint}"
        super().__init__(message)
        self.worker_id = worker_id
        self.task = task


class InvalidTask(WorkerPoolError):
    """Raised when an assignment cannot form a valid task record."""


class SpawnFailure(WorkerPoolError):
    """Raised when the agent process cannot be started."""


class NoTaskToOperate(WorkerPoolError):
    """Raised when stop, restart or reset finds no task record."""

    def __init__(self, worker_id: str) -> None:
        super().__init__(f"worker {worker_id} has no task")
        self.worker_id = worker_id


class ProcessNotRunning(WorkerPoolError):
    """Raised when stop finds no live process; the task record is left in place."""

    def __init__(self, worker_id: str, pid: int | None) -> None:
        detail = f"PID {pid} not found" if pid else "no PID recorded"
        super().__init__(f"worker {worker_id} is not running ({detail})")
        self.worker_id = worker_id
        self.pid = pid


class AssignmentFailed(WorkerPoolError):
    """Raised when auto-assignment exhausts its attempts without committing."""


__all__ = [
    "AssignmentFailed",
    "InvalidTask",
    "NoTaskToOperate",
    "ProcessNotRunning",
    "SpawnFailure",
    "UnknownWorker",
    "WorkerBusy",
    "WorkerPoolError",
]
