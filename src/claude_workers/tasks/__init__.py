"""Task record models and persistence."""

from .models import CompletedTask, StatusReport, Task, WorkerStatus, utc_now_iso
from .store import TaskLockedError, TaskStore, archive_name

__all__ = [
    "CompletedTask",
    "StatusReport",
    "Task",
    "TaskLockedError",
    "TaskStore",
    "WorkerStatus",
    "archive_name",
    "utc_now_iso",
]
