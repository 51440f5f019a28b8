from __future__ import annotations

import io
from pathlib import Path

import pytest

from claude_workers.config import WorkerSettings
from claude_workers.pool import WorkerPool, build_pool
from claude_workers.process.launcher import FakeLauncher
from claude_workers.process.probe import FakeProbe
from claude_workers.tasks import Task, TaskStore
from claude_workers.tracker import IssueTracker
from claude_workers.tracker.github import FakeGitHubCLI


@pytest.fixture
def workers_root(tmp_path: Path) -> Path:
    root = tmp_path / "workers"
    root.mkdir()
    return root


@pytest.fixture
def store(workers_root: Path) -> TaskStore:
    return TaskStore(workers_root)


@pytest.fixture
def probe() -> FakeProbe:
    return FakeProbe()


@pytest.fixture
def launcher(probe: FakeProbe) -> FakeLauncher:
    return FakeLauncher(probe)


@pytest.fixture
def gh() -> FakeGitHubCLI:
    return FakeGitHubCLI()


@pytest.fixture
def tracker(gh: FakeGitHubCLI) -> IssueTracker:
    return IssueTracker(gh)


@pytest.fixture
def settings(workers_root: Path, tmp_path: Path) -> WorkerSettings:
    return WorkerSettings(
        workers_root=workers_root,
        review_cache_path=tmp_path / "review-cache.json",
        watch_interval=0.05,
        stop_grace_period=0,
    )


@pytest.fixture
def pool(
    settings: WorkerSettings,
    probe: FakeProbe,
    launcher: FakeLauncher,
    tracker: IssueTracker,
) -> WorkerPool:
    return build_pool(
        settings,
        probe=probe,
        launcher=launcher,
        tracker=tracker,
        stdin=io.StringIO(""),
        watch_observer=False,
    )


def add_worker(root: Path, worker_id: str) -> Path:
    home = root / worker_id
    home.mkdir()
    return home


def seed_task(store: TaskStore, worker_id: str, **fields) -> Task:
    fields.setdefault("repo", "acme/widgets")
    fields.setdefault("started_at", "2026-01-01T00:00:00.000Z")
    task = Task(**fields)
    store.write(worker_id, task)
    return task
