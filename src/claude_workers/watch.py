"""Block until a worker reaches a terminal status."""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver

from .errors import UnknownWorker
from .status import StatusResolver
from .tasks import Task, TaskStore, WorkerStatus
from .tasks.store import TASK_FILENAME

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class WatchOutcome:
    """Terminal status of a watched worker and the task it was last seen with."""

    worker_id: str
    status: WorkerStatus
    task: Task | None

    @property
    def succeeded(self) -> bool:
        return self.status is WorkerStatus.IDLE

    @property
    def error(self) -> str | None:
        return self.task.error if self.task is not None else None


class TaskFileHandler(FileSystemEventHandler):
    """Watchdog handler that fires when a worker's task record changes."""

    def __init__(self, notify: Callable[[], None]) -> None:
        super().__init__()
        self._notify = notify

    def on_any_event(self, event: FileSystemEvent) -> None:
        paths = [event.src_path, getattr(event, "dest_path", "")]
        if any(path and Path(os.fsdecode(path)).name == TASK_FILENAME for path in paths):
            self._notify()


class WatchLoop:
    """Wait for a worker to finish (idle) or crash.

    Changes to ``task.json`` wake the loop immediately; the poll interval is
    the fallback that catches a process dying without touching its record.
    The loop holds no lock and never writes. Callers bound the wait with
    ``timeout`` or by cancelling the awaiting task.
    """

    def __init__(
        self,
        store: TaskStore,
        resolver: StatusResolver,
        *,
        interval: float = 5.0,
        observer_factory: Callable[[], BaseObserver] | None = Observer,
    ) -> None:
        self._store = store
        self._resolver = resolver
        self._interval = interval
        self._observer_factory = observer_factory

    async def wait(self, worker_id: str, *, timeout: float | None = None) -> WatchOutcome:
        if timeout is None:
            return await self._watch(worker_id)
        return await asyncio.wait_for(self._watch(worker_id), timeout)

    def _start_observer(self, worker_id: str, notify: Callable[[], None]) -> BaseObserver | None:
        if self._observer_factory is None:
            return None
        observer = self._observer_factory()
        try:
            observer.schedule(TaskFileHandler(notify), str(self._store.home(worker_id)), recursive=False)
            observer.start()
        except OSError as exc:
            logger.warning("File notifications unavailable for worker %s, polling only: %s", worker_id, exc)
            return None
        return observer

    async def _watch(self, worker_id: str) -> WatchOutcome:
        if not self._store.exists(worker_id):
            raise UnknownWorker(worker_id)

        loop = asyncio.get_running_loop()
        changed = asyncio.Event()
        observer = self._start_observer(worker_id, lambda: loop.call_soon_threadsafe(changed.set))
        last_task: Task | None = None
        try:
            while True:
                changed.clear()
                report = self._resolver.resolve(worker_id)
                if report.task is not None:
                    last_task = report.task
                if report.status.terminal:
                    return WatchOutcome(worker_id=worker_id, status=report.status, task=report.task or last_task)
                try:
                    await asyncio.wait_for(changed.wait(), self._interval)
                except asyncio.TimeoutError:
                    pass
        finally:
            if observer is not None:
                observer.stop()
                observer.join()


__all__ = ["TaskFileHandler", "WatchLoop", "WatchOutcome"]
