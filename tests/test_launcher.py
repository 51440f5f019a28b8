from __future__ import annotations

import time
from pathlib import Path

import pytest

from claude_workers.errors import SpawnFailure
from claude_workers.process.launcher import SIGTERM, AgentLauncher, FakeLauncher
from claude_workers.process.probe import FakeProbe, SignalProbe
from claude_workers.process.utils import worker_environment


def _wait_for(path: Path, timeout: float = 5.0) -> str:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if path.exists() and path.read_text(encoding="utf-8").strip():
            return path.read_text(encoding="utf-8")
        time.sleep(0.05)
    raise AssertionError(f"{path} was not written within {timeout}s")


def test_spawn_runs_agent_in_worker_home(tmp_path: Path) -> None:
    home = tmp_path / "w1"
    home.mkdir()
    script = tmp_path / "agent"
    script.write_text(
        "#!/bin/sh\n"
        "echo \"agent output\"\n"
        "echo \"$HOME|$(pwd)|$*\" > \"$HOME/marker.tmp\"\n"
        "mv \"$HOME/marker.tmp\" \"$HOME/marker\"\n",
        encoding="utf-8",
    )
    script.chmod(0o755)
    launcher = AgentLauncher(str(script), flags=("--print",), bootstrap_prompt="Read ~/task.json")

    record = launcher.spawn(home, home / "worker.log")

    marker = _wait_for(home / "marker")
    assert marker.strip() == f"{home}|{home}|--print Read ~/task.json"
    assert record.pid > 0
    assert record.args[1:] == ("--print", "Read ~/task.json")
    assert "agent output" in _wait_for(home / "worker.log")


def test_log_is_truncated_on_each_spawn(tmp_path: Path) -> None:
    home = tmp_path / "w1"
    home.mkdir()
    log_path = home / "worker.log"
    log_path.write_text("previous run\n", encoding="utf-8")
    script = tmp_path / "agent"
    script.write_text("#!/bin/sh\necho fresh\n", encoding="utf-8")
    script.chmod(0o755)

    AgentLauncher(str(script)).spawn(home, log_path)

    assert _wait_for(log_path).strip() == "fresh"


def test_missing_executable_raises_spawn_failure(tmp_path: Path) -> None:
    launcher = AgentLauncher(str(tmp_path / "missing-agent"))

    with pytest.raises(SpawnFailure):
        launcher.spawn(tmp_path, tmp_path / "worker.log")


def test_command_not_on_path(monkeypatch) -> None:
    monkeypatch.setenv("PATH", "")

    with pytest.raises(SpawnFailure, match="not found on PATH"):
        AgentLauncher("claude-agent-that-does-not-exist").spawn(Path("."), Path("worker.log"))


def test_send_signal_to_exited_process(tmp_path: Path) -> None:
    script = tmp_path / "agent"
    script.write_text("#!/bin/sh\nexit 0\n", encoding="utf-8")
    script.chmod(0o755)
    record = AgentLauncher(str(script)).spawn(tmp_path, tmp_path / "worker.log")

    deadline = time.monotonic() + 5
    probe = SignalProbe()
    while probe.is_alive(record.pid) and time.monotonic() < deadline:
        time.sleep(0.05)

    assert not probe.is_alive(record.pid)
    assert AgentLauncher(str(script)).send_signal(record.pid, SIGTERM) is False


def test_worker_environment_sets_home_and_strips_virtualenv(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("VIRTUAL_ENV", "/tmp/venv")
    monkeypatch.setenv("PYTHONPATH", "/tmp/lib")

    env = worker_environment(tmp_path, {"EXTRA": "1"})

    assert env["HOME"] == str(tmp_path)
    assert env["EXTRA"] == "1"
    assert "VIRTUAL_ENV" not in env
    assert "PYTHONPATH" not in env


def test_fake_launcher_tracks_pids() -> None:
    probe = FakeProbe()
    launcher = FakeLauncher(probe, first_pid=10)

    first = launcher.spawn(Path("/w1"), Path("/w1/worker.log"))
    second = launcher.spawn(Path("/w2"), Path("/w2/worker.log"))

    assert (first.pid, second.pid) == (10, 11)
    assert probe.is_alive(10) and probe.is_alive(11)
    assert launcher.send_signal(10, SIGTERM)
    assert not probe.is_alive(10)
    assert launcher.send_signal(10, SIGTERM) is False
