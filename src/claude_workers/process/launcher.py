"""Detached launcher for worker agent processes."""

from __future__ import annotations

import os
import shutil
import signal
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Sequence

from ..config import DEFAULT_BOOTSTRAP_PROMPT
from ..errors import SpawnFailure
from .probe import FakeProbe
from .utils import worker_environment

SIGTERM = signal.SIGTERM
SIGKILL = getattr(signal, "SIGKILL", signal.SIGTERM)


def _detach_options() -> dict[str, Any]:
    if sys.platform == "win32":
        flags = subprocess.DETACHED_PROCESS | subprocess.CREATE_NEW_PROCESS_GROUP  # type: ignore[attr-defined]
        return {"creationflags": flags}
    return {"start_new_session": True}


@dataclass(slots=True)
class SpawnRecord:
    """Describes one launched agent process."""

    pid: int
    home: Path
    log_path: Path
    args: tuple[str, ...]


class AgentLauncher:
    """Start the agent CLI detached from the caller, one process per worker home."""

    def __init__(
        self,
        command: str = "claude",
        *,
        flags: Sequence[str] = (),
        bootstrap_prompt: str = DEFAULT_BOOTSTRAP_PROMPT,
    ) -> None:
        self._command = command
        self._flags = tuple(flags)
        self._bootstrap_prompt = bootstrap_prompt

    def _resolve_executable(self) -> str:
        candidate = Path(self._command)
        if candidate.is_absolute() or len(candidate.parts) > 1:
            if candidate.is_file():
                return str(candidate)
            raise SpawnFailure(f"Agent executable not found at {candidate}")
        binary = shutil.which(self._command)
        if binary is None:
            raise SpawnFailure(f"Agent executable '{self._command}' not found on PATH")
        return binary

    def arguments(self) -> tuple[str, ...]:
        return (*self._flags, self._bootstrap_prompt)

    def spawn(self, home: Path, log_path: Path) -> SpawnRecord:
        """Launch the agent in ``home`` and return as soon as it is running."""

        args = (self._resolve_executable(), *self.arguments())
        try:
            with open(log_path, "wb") as log_file:
                process = subprocess.Popen(
                    args,
                    cwd=str(home),
                    env=worker_environment(home),
                    stdin=subprocess.DEVNULL,
                    stdout=log_file,
                    stderr=subprocess.STDOUT,
                    **_detach_options(),
                )
        except OSError as exc:
            raise SpawnFailure(f"Failed to start agent in {home}: {exc}") from exc
        return SpawnRecord(pid=process.pid, home=Path(home), log_path=Path(log_path), args=args)

    def send_signal(self, pid: int, sig: int) -> bool:
        """Deliver ``sig`` to ``pid``; return ``False`` if the process is already gone."""

        try:
            os.kill(pid, sig)
        except ProcessLookupError:
            return False
        return True


class FakeLauncher(AgentLauncher):
    """Test double that hands out fake pids and registers them with a :class:`FakeProbe`."""

    def __init__(  # type: ignore[override]
        self,
        probe: FakeProbe,
        *,
        first_pid: int = 4000,
        fail: bool = False,
        ignore_terminate: bool = False,
    ) -> None:
        super().__init__("fake-agent")
        self._probe = probe
        self._next_pid = first_pid
        self.fail = fail
        self.ignore_terminate = ignore_terminate
        self.spawns: list[SpawnRecord] = []
        self.signals: list[tuple[int, int]] = []

    def spawn(self, home: Path, log_path: Path) -> SpawnRecord:  # type: ignore[override]
        if self.fail:
            raise SpawnFailure(f"Failed to start agent in {home}: simulated failure")
        pid = self._next_pid
        self._next_pid += 1
        self._probe.start(pid)
        record = SpawnRecord(pid=pid, home=Path(home), log_path=Path(log_path), args=self.arguments())
        self.spawns.append(record)
        return record

    def send_signal(self, pid: int, sig: int) -> bool:  # type: ignore[override]
        self.signals.append((pid, sig))
        if not self._probe.is_alive(pid):
            return False
        if sig == SIGTERM and self.ignore_terminate:
            return True
        self._probe.kill(pid)
        return True


__all__ = ["AgentLauncher", "FakeLauncher", "SIGKILL", "SIGTERM", "SpawnRecord"]
