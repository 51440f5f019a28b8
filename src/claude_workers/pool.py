"""Wire settings and collaborators into a ready-to-use worker pool."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import TextIO

from .config import WorkerSettings, get_settings
from .dedupe import ReviewDedupeCache
from .dispatch import Dispatcher
from .lifecycle import WorkerLifecycle
from .process import AgentLauncher, LivenessProbe, default_probe
from .reporting import PoolReporter
from .scheduler import AssignmentScheduler
from .status import StatusResolver
from .tasks import TaskStore
from .tracker import GitHubCLI, IssueTracker
from .watch import WatchLoop


@dataclass(slots=True)
class WorkerPool:
    settings: WorkerSettings
    store: TaskStore
    resolver: StatusResolver
    dispatcher: Dispatcher
    scheduler: AssignmentScheduler
    lifecycle: WorkerLifecycle
    watcher: WatchLoop
    reporter: PoolReporter
    dedupe: ReviewDedupeCache
    tracker: IssueTracker | None


def build_pool(
    settings: WorkerSettings | None = None,
    *,
    probe: LivenessProbe | None = None,
    launcher: AgentLauncher | None = None,
    tracker: IssueTracker | None = None,
    stdin: TextIO | None = None,
    watch_observer: bool = True,
) -> WorkerPool:
    """Instantiate every component against one workers root."""

    settings = settings or get_settings()
    store = TaskStore(settings.workers_root)
    resolver = StatusResolver(store, probe or default_probe())
    launcher = launcher or AgentLauncher(
        settings.agent_command,
        flags=settings.agent_flags,
        bootstrap_prompt=settings.bootstrap_prompt,
    )
    if tracker is None:
        tracker = IssueTracker(GitHubCLI(Path(settings.gh_path) if settings.gh_path else None))

    dispatcher = Dispatcher(store, resolver, launcher, tracker, stdin=stdin)
    dedupe = ReviewDedupeCache(
        settings.review_cache_path or settings.workers_root / ".review-cache.json"
    )
    scheduler = AssignmentScheduler(
        store,
        resolver,
        dispatcher,
        tracker=tracker,
        dedupe=dedupe,
        reserve_floor=settings.reserve_floor,
        excluded=settings.excluded_agents,
        review_agent=settings.review_agent,
        max_attempts=settings.assign_attempts,
    )
    lifecycle = WorkerLifecycle(
        store,
        resolver,
        launcher,
        dispatcher,
        tracker,
        grace_period=settings.stop_grace_period,
    )
    watcher_kwargs = {} if watch_observer else {"observer_factory": None}
    watcher = WatchLoop(store, resolver, interval=settings.watch_interval, **watcher_kwargs)
    reporter = PoolReporter(store, resolver, tracker)
    return WorkerPool(
        settings=settings,
        store=store,
        resolver=resolver,
        dispatcher=dispatcher,
        scheduler=scheduler,
        lifecycle=lifecycle,
        watcher=watcher,
        reporter=reporter,
        dedupe=dedupe,
        tracker=tracker,
    )


__all__ = ["WorkerPool", "build_pool"]
