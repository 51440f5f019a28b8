"""Status snapshots, orphaned-label detection and completed-task history."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from .errors import UnknownWorker
from .status import StatusResolver
from .tasks import CompletedTask, TaskStore, WorkerStatus
from .tracker import Issue, IssueTracker, TrackerError, worker_label

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class WorkerSnapshot:
    worker_id: str
    status: WorkerStatus
    repo: str | None = None
    issue: int | None = None
    pid: int | None = None
    started_at: str | None = None
    elapsed_minutes: int | None = None
    error: str | None = None
    orphans: list[Issue] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["status"] = self.status.value
        payload["orphans"] = [
            {"repo": issue.repo, "number": issue.number, "title": issue.title}
            for issue in self.orphans
        ]
        return payload

    def describe(self) -> str:
        line = f"{self.worker_id}: {self.status.value}"
        if self.repo:
            line += f" - {self.repo}#{self.issue}" if self.issue is not None else f" - {self.repo}"
        if self.pid:
            line += f" (PID {self.pid})"
        if self.elapsed_minutes is not None:
            line += f" [{self.elapsed_minutes}m]"
        return line


class PoolReporter:
    """Read-only views over the pool for ``status`` and ``history``."""

    def __init__(
        self,
        store: TaskStore,
        resolver: StatusResolver,
        tracker: IssueTracker | None = None,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._resolver = resolver
        self._tracker = tracker
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def snapshot(self, worker_id: str) -> WorkerSnapshot:
        if not self._store.exists(worker_id):
            raise UnknownWorker(worker_id)
        report = self._resolver.resolve(worker_id)
        snapshot = WorkerSnapshot(worker_id=worker_id, status=report.status)
        task = report.task
        if task is not None:
            snapshot.repo = task.repo
            snapshot.issue = task.issue
            snapshot.pid = task.pid
            snapshot.started_at = task.started_at
            snapshot.error = task.error
            started = task.started
            if started is not None:
                elapsed = self._clock() - started
                snapshot.elapsed_minutes = max(int(elapsed.total_seconds() // 60), 0)
        return snapshot

    def snapshot_all(self) -> list[WorkerSnapshot]:
        return [self.snapshot(worker_id) for worker_id in self._store.worker_ids()]

    async def find_orphans(self, snapshot: WorkerSnapshot) -> list[Issue]:
        """Open issues labelled for the worker that it is not currently working on."""

        if self._tracker is None:
            return []
        try:
            labelled = await self._tracker.search_labeled_issues(worker_label(snapshot.worker_id))
        except TrackerError as exc:
            logger.warning("Could not check labelled issues for worker %s: %s", snapshot.worker_id, exc)
            return []
        return [
            issue
            for issue in labelled
            if snapshot.status is WorkerStatus.IDLE
            or issue.repo != snapshot.repo
            or issue.number != snapshot.issue
        ]

    async def status(self, worker_id: str | None = None, *, orphans: bool = True) -> list[WorkerSnapshot]:
        snapshots = [self.snapshot(worker_id)] if worker_id else self.snapshot_all()
        if orphans:
            for snapshot in snapshots:
                snapshot.orphans = await self.find_orphans(snapshot)
        return snapshots

    def history(self, worker_id: str | None = None) -> list[CompletedTask]:
        """Completed tasks for one or all workers, newest first."""

        worker_ids = [worker_id] if worker_id else self._store.worker_ids()
        entries: list[CompletedTask] = []
        for candidate in worker_ids:
            entries.extend(self._store.completed(candidate))
        entries.sort(key=lambda entry: entry.completed_at, reverse=True)
        return entries


def format_history_entry(entry: CompletedTask) -> str:
    local = entry.completed_at.astimezone()
    return f"  {local:%Y-%m-%d %H:%M}  {entry.task.label}  ({entry.worker_id})"


__all__ = ["PoolReporter", "WorkerSnapshot", "format_history_entry"]
