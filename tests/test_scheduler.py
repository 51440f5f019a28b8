from __future__ import annotations

import asyncio
import io
import json
from contextlib import contextmanager
from pathlib import Path

import pytest

from claude_workers.dedupe import ReviewDedupeCache
from claude_workers.dispatch import Dispatcher
from claude_workers.errors import AssignmentFailed, UnknownWorker
from claude_workers.process.launcher import FakeLauncher
from claude_workers.process.probe import FakeProbe
from claude_workers.scheduler import AssignmentScheduler
from claude_workers.status import StatusResolver
from claude_workers.tasks import Task, TaskStore
from claude_workers.tracker import GhResult, Issue, IssueTracker
from claude_workers.tracker.github import FakeGitHubCLI

from conftest import add_worker, seed_task


class RacingStore(TaskStore):
    """Simulates another invocation committing to ``victims`` between selection and commit."""

    def __init__(self, root: Path, probe: FakeProbe, victims: set[str]) -> None:
        super().__init__(root)
        self._probe = probe
        self._victims = set(victims)
        self._rival_pid = 9000

    @contextmanager
    def claim(self, worker_id: str, *, blocking: bool = True):
        with super().claim(worker_id, blocking=blocking):
            if worker_id in self._victims:
                self._victims.discard(worker_id)
                self._rival_pid += 1
                self._probe.start(self._rival_pid)
                self.write(worker_id, Task(repo="acme/rival", pid=self._rival_pid))
            yield


def _scheduler(
    store: TaskStore,
    probe: FakeProbe,
    launcher: FakeLauncher,
    *,
    gh: FakeGitHubCLI | None = None,
    cache_path: Path | None = None,
    reserve_floor: int = 0,
    max_attempts: int = 3,
) -> AssignmentScheduler:
    resolver = StatusResolver(store, probe)
    tracker = IssueTracker(gh or FakeGitHubCLI())
    dispatcher = Dispatcher(store, resolver, launcher, tracker, stdin=io.StringIO(""))
    return AssignmentScheduler(
        store,
        resolver,
        dispatcher,
        tracker=tracker,
        dedupe=ReviewDedupeCache(cache_path or store.root / ".review-cache.json"),
        reserve_floor=reserve_floor,
        excluded=("vilicus", "dispensator"),
        review_agent="vilicus",
        max_attempts=max_attempts,
    )


def _issue(repo: str, number: int, title: str = "", labels: tuple[str, ...] = ()) -> Issue:
    return Issue.model_validate(
        {
            "number": number,
            "title": title,
            "labels": [{"name": name} for name in labels],
            "repository": {"nameWithOwner": repo},
        }
    )


def test_reserve_floor_blocks_assignment_at_threshold(
    store: TaskStore, workers_root: Path, probe: FakeProbe, launcher: FakeLauncher
) -> None:
    for worker_id in ("w1", "w2"):
        add_worker(workers_root, worker_id)
    scheduler = _scheduler(store, probe, launcher, reserve_floor=2)

    assert scheduler.find_idle_worker() is None
    assert asyncio.run(scheduler.dispatch_any("acme/widgets", 1, skip_stdin=True)) is None
    assert launcher.spawns == []


def test_reserve_floor_allows_assignment_above_threshold(
    store: TaskStore, workers_root: Path, probe: FakeProbe, launcher: FakeLauncher
) -> None:
    for worker_id in ("w3", "w1", "w2"):
        add_worker(workers_root, worker_id)
    scheduler = _scheduler(store, probe, launcher, reserve_floor=2)

    assert scheduler.find_idle_worker() == "w1"


def test_busy_and_crashed_workers_are_not_idle(
    store: TaskStore, workers_root: Path, probe: FakeProbe, launcher: FakeLauncher
) -> None:
    for worker_id in ("w1", "w2", "w3"):
        add_worker(workers_root, worker_id)
    probe.start(11)
    seed_task(store, "w1", pid=11)
    seed_task(store, "w2", pid=12)

    assert _scheduler(store, probe, launcher).idle_workers() == ["w3"]


def test_reserved_agents_are_never_selected(
    store: TaskStore, workers_root: Path, probe: FakeProbe, launcher: FakeLauncher
) -> None:
    for worker_id in ("dispensator", "vilicus"):
        add_worker(workers_root, worker_id)
    scheduler = _scheduler(store, probe, launcher)

    assert scheduler.candidate_workers() == []
    assert scheduler.find_idle_worker() is None

    add_worker(workers_root, "w1")
    assert scheduler.find_idle_worker() == "w1"


def test_lost_race_retries_on_next_idle_worker(workers_root: Path, probe: FakeProbe, launcher: FakeLauncher) -> None:
    for worker_id in ("w1", "w2", "w3"):
        add_worker(workers_root, worker_id)
    store = RacingStore(workers_root, probe, {"w1"})
    scheduler = _scheduler(store, probe, launcher)

    assignment = asyncio.run(scheduler.dispatch_any("acme/widgets", 42, skip_stdin=True))

    assert assignment is not None
    assert assignment.worker_id == "w2"
    assert store.read("w1").repo == "acme/rival"
    assert store.read("w2").label == "acme/widgets#42"
    assert len(launcher.spawns) == 1


def test_exhausted_retries_raise(workers_root: Path, probe: FakeProbe, launcher: FakeLauncher) -> None:
    for worker_id in ("w1", "w2", "w3"):
        add_worker(workers_root, worker_id)
    store = RacingStore(workers_root, probe, {"w1", "w2"})
    scheduler = _scheduler(store, probe, launcher, max_attempts=2)

    with pytest.raises(AssignmentFailed, match="tried workers: w1, w2"):
        asyncio.run(scheduler.dispatch_any("acme/widgets", 42, skip_stdin=True))

    assert store.read("w3") is None
    assert launcher.spawns == []


def test_retry_with_no_idle_worker_left_raises(workers_root: Path, probe: FakeProbe, launcher: FakeLauncher) -> None:
    add_worker(workers_root, "w1")
    store = RacingStore(workers_root, probe, {"w1"})

    with pytest.raises(AssignmentFailed):
        asyncio.run(_scheduler(store, probe, launcher).dispatch_any("acme/widgets", skip_stdin=True))


def test_dispatch_any_drains_stdin_once(
    store: TaskStore, workers_root: Path, probe: FakeProbe, launcher: FakeLauncher
) -> None:
    add_worker(workers_root, "w1")
    resolver = StatusResolver(store, probe)
    dispatcher = Dispatcher(store, resolver, launcher, stdin=io.StringIO("Ship it\n"))
    scheduler = AssignmentScheduler(store, resolver, dispatcher)

    assignment = asyncio.run(scheduler.dispatch_any("acme/widgets", 8))

    assert assignment is not None
    assert store.read("w1").prompt == "Ship it"


def test_assign_picks_first_unassigned_issue(
    store: TaskStore, workers_root: Path, probe: FakeProbe, launcher: FakeLauncher
) -> None:
    add_worker(workers_root, "w1")
    payload = [
        {"number": 1, "title": "Taken", "labels": [{"name": "worker:w9"}], "repository": {"nameWithOwner": "acme/widgets"}},
        {"number": 2, "title": "Blocked", "labels": [{"name": "blocked"}], "repository": {"nameWithOwner": "acme/widgets"}},
        {"number": 3, "title": "Crash on save", "labels": [{"name": "bug"}], "repository": {"nameWithOwner": "acme/gears"}},
    ]

    def handler(args: tuple[str, ...]) -> GhResult:
        if args[:2] == ("search", "issues"):
            return GhResult(args=args, returncode=0, stdout=json.dumps(payload), stderr="")
        return GhResult(args=args, returncode=0, stdout="", stderr="")

    gh = FakeGitHubCLI(handler=handler)
    assignment = asyncio.run(_scheduler(store, probe, launcher, gh=gh).assign())

    assert assignment is not None
    assert (assignment.worker_id, assignment.label, assignment.title) == ("w1", "acme/gears#3", "Crash on save")
    assert store.read("w1").prompt is None
    assert ("issue", "edit", "3", "--repo", "acme/gears", "--add-label", "worker:w1") in gh.invocations


def test_assign_tracker_failure_is_no_op(
    store: TaskStore, workers_root: Path, probe: FakeProbe, launcher: FakeLauncher
) -> None:
    add_worker(workers_root, "w1")
    gh = FakeGitHubCLI(handler=lambda args: GhResult(args=args, returncode=1, stdout="", stderr="offline"))

    assert asyncio.run(_scheduler(store, probe, launcher, gh=gh).assign()) is None
    assert store.read("w1") is None


def test_poll_dispatches_review_agent_once_per_pull_request(
    store: TaskStore, workers_root: Path, probe: FakeProbe, launcher: FakeLauncher, tmp_path: Path
) -> None:
    add_worker(workers_root, "vilicus")
    cache_path = tmp_path / "cache.json"
    scheduler = _scheduler(store, probe, launcher, cache_path=cache_path)
    prs = [_issue("acme/widgets", 17, "Add retries")]

    first = asyncio.run(scheduler.poll(prs))

    assert first is not None and first.worker_id == "vilicus"
    task = store.read("vilicus")
    assert task.label == "acme/widgets#17"
    assert task.prompt == "Review PR #17: Add retries"

    probe.kill(task.pid)
    store.task_path("vilicus").unlink()

    assert asyncio.run(scheduler.poll(prs)) is None
    assert len(launcher.spawns) == 1
    assert ReviewDedupeCache(cache_path).has("acme/widgets#17")


def test_poll_skips_busy_or_crashed_review_agent(
    store: TaskStore, workers_root: Path, probe: FakeProbe, launcher: FakeLauncher
) -> None:
    add_worker(workers_root, "vilicus")
    scheduler = _scheduler(store, probe, launcher)
    prs = [_issue("acme/widgets", 17)]

    probe.start(31)
    seed_task(store, "vilicus", issue=3, pid=31)
    assert asyncio.run(scheduler.poll(prs)) is None

    probe.kill(31)
    assert asyncio.run(scheduler.poll(prs)) is None

    assert launcher.spawns == []
    assert not ReviewDedupeCache(store.root / ".review-cache.json").has("acme/widgets#17")


def test_poll_requires_review_agent(store: TaskStore, probe: FakeProbe, launcher: FakeLauncher) -> None:
    with pytest.raises(UnknownWorker):
        asyncio.run(_scheduler(store, probe, launcher).poll([]))


def test_poll_queries_review_label(
    store: TaskStore, workers_root: Path, probe: FakeProbe, launcher: FakeLauncher
) -> None:
    add_worker(workers_root, "vilicus")
    gh = FakeGitHubCLI()

    assert asyncio.run(_scheduler(store, probe, launcher, gh=gh).poll()) is None
    assert gh.invocations[0][:4] == ("search", "prs", "--label", "pull-request")
