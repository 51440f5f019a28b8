"""Commit new assignments to workers and spawn their agent processes."""

from __future__ import annotations

import logging
import sys
from datetime import datetime, timezone
from typing import Callable, TextIO

from pydantic import ValidationError

from .errors import InvalidTask, UnknownWorker, WorkerBusy
from .process.launcher import AgentLauncher, SpawnRecord
from .status import StatusResolver
from .tasks import Task, TaskLockedError, TaskStore, WorkerStatus, utc_now_iso
from .tracker import IssueTracker, TrackerError

logger = logging.getLogger(__name__)

PROMPT_PREVIEW_CHARS = 60


def _preview(text: str) -> str:
    if len(text) <= PROMPT_PREVIEW_CHARS:
        return text
    return text[:PROMPT_PREVIEW_CHARS] + "..."


class Dispatcher:
    """Assign a task to one worker.

    The task record is written only after the agent process has been
    spawned, and both happen while the worker's commit lock is held. A
    record on disk therefore always carries the pid of a process that was
    actually launched for it.
    """

    def __init__(
        self,
        store: TaskStore,
        resolver: StatusResolver,
        launcher: AgentLauncher,
        tracker: IssueTracker | None = None,
        *,
        stdin: TextIO | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._resolver = resolver
        self._launcher = launcher
        self._tracker = tracker
        self._stdin = stdin
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def read_prompt(self) -> str | None:
        """Drain a non-interactive stdin; empty input means no prompt."""

        stream = self._stdin if self._stdin is not None else sys.stdin
        if stream is None or stream.isatty():
            return None
        content = stream.read().strip()
        return content or None

    def launch(self, worker_id: str) -> SpawnRecord:
        """Spawn the worker's agent with its home as cwd and ``HOME``."""

        return self._launcher.spawn(self._store.home(worker_id), self._store.log_path(worker_id))

    async def _label_issue(self, worker_id: str, repo: str, issue: int) -> None:
        if self._tracker is None:
            return
        try:
            label = await self._tracker.claim_issue(worker_id, repo, issue)
        except TrackerError as exc:
            logger.warning("Failed to label %s#%s for worker %s: %s", repo, issue, worker_id, exc)
        else:
            logger.info("Added label %s to %s#%s", label, repo, issue)

    async def commit(
        self,
        worker_id: str,
        repo: str,
        issue: int | None = None,
        prompt: str | None = None,
        *,
        silent: bool = False,
        skip_stdin: bool = False,
    ) -> Task:
        """Dispatch or raise :class:`UnknownWorker`, :class:`InvalidTask` or :class:`WorkerBusy`.

        :class:`~claude_workers.errors.SpawnFailure` propagates unchanged.
        """

        if not self._store.exists(worker_id):
            raise UnknownWorker(worker_id)
        try:
            pending = Task(repo=repo, issue=issue)
        except ValidationError as exc:
            raise InvalidTask(f"invalid assignment for worker {worker_id}: {exc.errors()[0]['msg']}") from exc

        try:
            with self._store.claim(worker_id, blocking=False):
                report = self._resolver.resolve(worker_id)
                if report.status is WorkerStatus.BUSY:
                    raise WorkerBusy(worker_id, report.task)
                if report.status is WorkerStatus.CRASHED and report.task and not silent:
                    logger.warning(
                        "Worker %s has stale task from crashed run (%s); overwriting with new assignment",
                        worker_id,
                        report.task.label,
                    )

                task_prompt = prompt
                if not task_prompt and not skip_stdin:
                    task_prompt = self.read_prompt()

                logger.info("Dispatching worker %s to %s", worker_id, pending.label)
                if task_prompt:
                    logger.info("  Prompt: %s", _preview(task_prompt))

                if pending.issue is not None:
                    await self._label_issue(worker_id, pending.repo, pending.issue)

                spawned = self.launch(worker_id)
                task = pending.model_copy(
                    update={
                        "prompt": task_prompt or None,
                        "pid": spawned.pid,
                        "started_at": utc_now_iso(self._clock()),
                    }
                )
                self._store.write(worker_id, task)
        except TaskLockedError as exc:
            raise WorkerBusy(worker_id) from exc

        logger.info("Worker %s dispatched (PID %s, log %s)", worker_id, spawned.pid, spawned.log_path)
        return task

    async def dispatch(
        self,
        worker_id: str,
        repo: str,
        issue: int | None = None,
        prompt: str | None = None,
        *,
        silent: bool = False,
        skip_stdin: bool = False,
    ) -> bool:
        """Return ``True`` once the task is committed, ``False`` if the worker is unavailable."""

        try:
            await self.commit(
                worker_id, repo, issue, prompt, silent=silent, skip_stdin=skip_stdin
            )
        except (UnknownWorker, WorkerBusy) as exc:
            if not silent:
                logger.error("%s", exc)
            return False
        return True


__all__ = ["Dispatcher"]
