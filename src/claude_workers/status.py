"""Derive worker lifecycle status from task records and process liveness."""

from __future__ import annotations

from .process.probe import LivenessProbe
from .tasks import StatusReport, Task, TaskStore, WorkerStatus


class StatusResolver:
    """Classify workers as idle, busy or crashed.

    Resolution is read-only: a crashed task is reported, never cleared.
    """

    def __init__(self, store: TaskStore, probe: LivenessProbe) -> None:
        self._store = store
        self._probe = probe

    @property
    def probe(self) -> LivenessProbe:
        return self._probe

    def is_running(self, task: Task | None) -> bool:
        return task is not None and bool(task.pid) and self._probe.is_alive(task.pid)

    def classify(self, task: Task | None) -> WorkerStatus:
        if task is None:
            return WorkerStatus.IDLE
        if self.is_running(task):
            return WorkerStatus.BUSY
        return WorkerStatus.CRASHED

    def resolve(self, worker_id: str) -> StatusReport:
        task = self._store.read(worker_id)
        return StatusReport(worker_id=worker_id, status=self.classify(task), task=task)


__all__ = ["StatusResolver"]
