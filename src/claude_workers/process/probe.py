"""Process liveness probes."""

from __future__ import annotations

import os
import sys
from typing import Iterable, Protocol


class LivenessProbe(Protocol):
    """Answers whether a process id still denotes a running process."""

    def is_alive(self, pid: int) -> bool:
        ...


class SignalProbe:
    """POSIX probe using a zero signal.

    Children of the current process that already exited are reaped first so
    that a long-lived coordinator does not mistake zombies for live agents.
    """

    def is_alive(self, pid: int) -> bool:
        if pid <= 0:
            return False
        try:
            reaped, _ = os.waitpid(pid, os.WNOHANG)
        except ChildProcessError:
            pass
        else:
            if reaped == pid:
                return False
        try:
            os.kill(pid, 0)
        except OSError:
            return False
        return True


class WindowsProbe:
    """Windows probe querying the process exit code through kernel32."""

    _PROCESS_QUERY_LIMITED_INFORMATION = 0x1000
    _STILL_ACTIVE = 259

    def is_alive(self, pid: int) -> bool:
        import ctypes

        if pid <= 0:
            return False
        kernel32 = ctypes.windll.kernel32  # type: ignore[attr-defined]
        handle = kernel32.OpenProcess(self._PROCESS_QUERY_LIMITED_INFORMATION, False, pid)
        if not handle:
            return False
        try:
            exit_code = ctypes.c_ulong()
            if not kernel32.GetExitCodeProcess(handle, ctypes.byref(exit_code)):
                return False
            return exit_code.value == self._STILL_ACTIVE
        finally:
            kernel32.CloseHandle(handle)


class FakeProbe:
    """Test double tracking a set of live pids in memory."""

    def __init__(self, alive: Iterable[int] | None = None) -> None:
        self._alive: set[int] = set(alive or [])
        self.checks: list[int] = []

    def is_alive(self, pid: int) -> bool:
        self.checks.append(pid)
        return pid in self._alive

    def start(self, pid: int) -> None:
        self._alive.add(pid)

    def kill(self, pid: int) -> None:
        self._alive.discard(pid)


def default_probe() -> LivenessProbe:
    """Return the liveness probe for the running platform."""

    if sys.platform == "win32":
        return WindowsProbe()
    return SignalProbe()


__all__ = ["FakeProbe", "LivenessProbe", "SignalProbe", "WindowsProbe", "default_probe"]
