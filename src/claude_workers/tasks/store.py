"""Filesystem persistence for worker task records."""

from __future__ import annotations

import json
import logging
import os
import sys
import tempfile
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

from pydantic import ValidationError

from .models import CompletedTask, Task, utc_now_iso

if sys.platform == "win32":
    import msvcrt

    def _acquire(fd: int, blocking: bool) -> None:
        msvcrt.locking(fd, msvcrt.LK_LOCK if blocking else msvcrt.LK_NBLCK, 1)

    def _release(fd: int) -> None:
        os.lseek(fd, 0, os.SEEK_SET)
        msvcrt.locking(fd, msvcrt.LK_UNLCK, 1)

else:
    import fcntl

    def _acquire(fd: int, blocking: bool) -> None:
        fcntl.flock(fd, fcntl.LOCK_EX if blocking else fcntl.LOCK_EX | fcntl.LOCK_NB)

    def _release(fd: int) -> None:
        fcntl.flock(fd, fcntl.LOCK_UN)


logger = logging.getLogger(__name__)

TASK_FILENAME = "task.json"
LOG_FILENAME = "worker.log"
LOCK_FILENAME = ".task.lock"
COMPLETED_DIRNAME = "completed"


class TaskLockedError(RuntimeError):
    """Raised when a non-blocking claim finds the worker's commit lock held."""


def archive_name(task: Task, now: datetime | None = None) -> str:
    """Return the deterministic, filesystem-safe archive filename for a task."""

    stamp = utc_now_iso(now).replace(":", "-").replace(".", "-")
    issue = task.issue if task.issue is not None else "no-issue"
    return f"{task.repo.replace('/', '-')}-{issue}-{stamp}.json"


class TaskStore:
    """Read and write the per-worker ``task.json`` records under a workers root.

    Each worker is a directory directly below ``root``. The store never
    interprets task contents beyond parsing; status derivation lives in
    :mod:`claude_workers.status`.
    """

    def __init__(self, root: Path) -> None:
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def home(self, worker_id: str) -> Path:
        return self._root / worker_id

    def task_path(self, worker_id: str) -> Path:
        return self.home(worker_id) / TASK_FILENAME

    def log_path(self, worker_id: str) -> Path:
        return self.home(worker_id) / LOG_FILENAME

    def completed_dir(self, worker_id: str) -> Path:
        return self.home(worker_id) / COMPLETED_DIRNAME

    def exists(self, worker_id: str) -> bool:
        return bool(worker_id) and self.home(worker_id).is_dir()

    def worker_ids(self) -> list[str]:
        """Return worker ids sorted by name; a missing root yields no workers."""

        if not self._root.is_dir():
            return []
        return sorted(
            entry.name
            for entry in self._root.iterdir()
            if entry.is_dir() and not entry.name.startswith(".")
        )

    def read(self, worker_id: str) -> Task | None:
        path = self.task_path(worker_id)
        try:
            content = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        try:
            return Task.model_validate(json.loads(content))
        except (json.JSONDecodeError, ValidationError) as exc:
            logger.warning("Ignoring unreadable task record %s: %s", path, exc)
            return None

    def write(self, worker_id: str, task: Task) -> Path:
        """Atomically replace the worker's task record."""

        path = self.task_path(worker_id)
        payload = json.dumps(task.to_record(), indent=2) + "\n"
        fd, tmp_name = tempfile.mkstemp(prefix=".task-", suffix=".json", dir=path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        return path

    def archive(self, worker_id: str, task: Task, *, now: datetime | None = None) -> Path:
        """Move the live task record into the completed history and return its path."""

        target_dir = self.completed_dir(worker_id)
        target_dir.mkdir(parents=True, exist_ok=True)
        target = target_dir / archive_name(task, now)
        source = self.task_path(worker_id)
        try:
            os.replace(source, target)
            return target
        except FileNotFoundError:
            content = None
        except OSError:
            try:
                content = source.read_bytes()
            except FileNotFoundError:
                content = None

        if content is None:
            logger.info("Task record for worker %s already cleared; archiving the copy read earlier", worker_id)
            content = (json.dumps(task.to_record(), indent=2) + "\n").encode("utf-8")
        target.write_bytes(content)
        source.unlink(missing_ok=True)
        return target

    def completed(self, worker_id: str) -> list[CompletedTask]:
        directory = self.completed_dir(worker_id)
        if not directory.is_dir():
            return []

        entries: list[CompletedTask] = []
        for path in sorted(directory.glob("*.json")):
            try:
                task = Task.model_validate(json.loads(path.read_text(encoding="utf-8")))
                mtime = path.stat().st_mtime
            except (OSError, json.JSONDecodeError, ValidationError) as exc:
                logger.debug("Skipping malformed archive entry %s: %s", path, exc)
                continue
            entries.append(
                CompletedTask(
                    worker_id=worker_id,
                    task=task,
                    completed_at=datetime.fromtimestamp(mtime, tz=timezone.utc),
                    path=path,
                )
            )
        return entries

    @contextmanager
    def claim(self, worker_id: str, *, blocking: bool = True) -> Iterator[None]:
        """Hold the worker's commit lock for the duration of the block.

        With ``blocking=False`` a held lock raises :class:`TaskLockedError`
        immediately instead of waiting.
        """

        lock_path = self.home(worker_id) / LOCK_FILENAME
        fd = os.open(lock_path, os.O_RDWR | os.O_CREAT, 0o644)
        try:
            try:
                _acquire(fd, blocking)
            except OSError as exc:
                raise TaskLockedError(f"task lock for worker {worker_id} is held") from exc
            try:
                yield
            finally:
                _release(fd)
        finally:
            os.close(fd)


__all__ = ["TaskLockedError", "TaskStore", "archive_name"]
