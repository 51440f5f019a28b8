"""Stop, restart and reset controls for individual workers."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from pathlib import Path

from .dispatch import Dispatcher
from .errors import NoTaskToOperate, ProcessNotRunning, UnknownWorker, WorkerBusy
from .process.launcher import SIGKILL, SIGTERM, AgentLauncher
from .status import StatusResolver
from .tasks import Task, TaskStore
from .tracker import IssueTracker, TrackerError, worker_label

logger = logging.getLogger(__name__)


class StopResult(str, Enum):
    TERMINATED = "terminated"
    KILLED = "killed"


class WorkerLifecycle:
    """Suspend, resume and clear worker assignments."""

    def __init__(
        self,
        store: TaskStore,
        resolver: StatusResolver,
        launcher: AgentLauncher,
        dispatcher: Dispatcher,
        tracker: IssueTracker | None = None,
        *,
        grace_period: float = 1.0,
    ) -> None:
        self._store = store
        self._resolver = resolver
        self._launcher = launcher
        self._dispatcher = dispatcher
        self._tracker = tracker
        self._grace_period = grace_period

    def _require_task(self, worker_id: str) -> Task:
        if not self._store.exists(worker_id):
            raise UnknownWorker(worker_id)
        task = self._store.read(worker_id)
        if task is None:
            raise NoTaskToOperate(worker_id)
        return task

    async def stop(self, worker_id: str) -> StopResult:
        """Terminate the worker's process; the task record stays for ``restart``."""

        task = self._require_task(worker_id)
        if task.pid is None or not self._resolver.is_running(task):
            raise ProcessNotRunning(worker_id, task.pid)

        logger.info("Stopping worker %s (%s, PID %s)", worker_id, task.label, task.pid)
        self._launcher.send_signal(task.pid, SIGTERM)
        await asyncio.sleep(self._grace_period)

        if self._resolver.probe.is_alive(task.pid):
            logger.info("Worker %s still running, sending SIGKILL", worker_id)
            self._launcher.send_signal(task.pid, SIGKILL)
            return StopResult.KILLED
        return StopResult.TERMINATED

    async def restart(self, worker_id: str) -> Task:
        """Respawn the agent for an existing task, replacing only its pid."""

        self._require_task(worker_id)
        with self._store.claim(worker_id):
            task = self._store.read(worker_id)
            if task is None:
                raise NoTaskToOperate(worker_id)
            if self._resolver.is_running(task):
                raise WorkerBusy(worker_id, task)

            logger.info("Restarting worker %s (%s)", worker_id, task.label)
            spawned = self._dispatcher.launch(worker_id)
            restarted = task.model_copy(update={"pid": spawned.pid})
            self._store.write(worker_id, restarted)

        logger.info("Worker %s restarted (PID %s, log %s)", worker_id, spawned.pid, spawned.log_path)
        return restarted

    async def reset(self, worker_id: str, *, force: bool = False) -> Path:
        """Archive the worker's task and return it to idle."""

        self._require_task(worker_id)
        with self._store.claim(worker_id):
            task = self._store.read(worker_id)
            if task is None:
                raise NoTaskToOperate(worker_id)
            if task.pid is not None and self._resolver.is_running(task):
                if not force:
                    raise WorkerBusy(
                        worker_id,
                        task,
                        hint="use 'stop' first, or 'reset --force' to kill and reset",
                    )
                logger.info("Killing worker %s (PID %s)", worker_id, task.pid)
                self._launcher.send_signal(task.pid, SIGKILL)

            archived = self._store.archive(worker_id, task)
        logger.info("Worker %s reset; archived %s to %s", worker_id, task.label, archived)

        if task.issue is not None and self._tracker is not None:
            label = worker_label(worker_id)
            try:
                await self._tracker.remove_label(task.repo, task.issue, label)
            except TrackerError as exc:
                logger.warning("Failed to remove label %s from %s: %s", label, task.label, exc)
            else:
                logger.info("Removed label %s from %s", label, task.label)
        return archived


__all__ = ["StopResult", "WorkerLifecycle"]
