"""Select workers for incoming work items."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Sequence

from .dedupe import ReviewDedupeCache
from .dispatch import Dispatcher
from .errors import AssignmentFailed, UnknownWorker
from .status import StatusResolver
from .tasks import TaskStore, WorkerStatus
from .tracker import Issue, IssueTracker, TrackerError

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Assignment:
    """A committed dispatch produced by the scheduler."""

    worker_id: str
    repo: str
    issue: int | None
    title: str | None = None

    @property
    def label(self) -> str:
        return f"{self.repo}#{self.issue}" if self.issue is not None else self.repo


class AssignmentScheduler:
    """Broker between the worker pool and pending work items.

    Auto-assignment keeps ``reserve_floor`` idle workers in hand: when the
    number of idle workers is at or below the floor nothing is assigned. A
    dispatch lost to a concurrent commit is retried on another idle worker,
    up to ``max_attempts`` attempts in total.
    """

    def __init__(
        self,
        store: TaskStore,
        resolver: StatusResolver,
        dispatcher: Dispatcher,
        *,
        tracker: IssueTracker | None = None,
        dedupe: ReviewDedupeCache | None = None,
        reserve_floor: int = 0,
        excluded: Iterable[str] = (),
        review_agent: str = "vilicus",
        max_attempts: int = 3,
    ) -> None:
        self._store = store
        self._resolver = resolver
        self._dispatcher = dispatcher
        self._tracker = tracker
        self._dedupe = dedupe
        self.reserve_floor = reserve_floor
        self.excluded = frozenset(excluded) | {review_agent}
        self.review_agent = review_agent
        self.max_attempts = max_attempts

    def candidate_workers(self) -> list[str]:
        return [worker_id for worker_id in self._store.worker_ids() if worker_id not in self.excluded]

    def idle_workers(self, exclude: Iterable[str] = ()) -> list[str]:
        skipped = set(exclude)
        return [
            worker_id
            for worker_id in self.candidate_workers()
            if worker_id not in skipped
            and self._resolver.resolve(worker_id).status is WorkerStatus.IDLE
        ]

    def find_idle_worker(self, exclude: Iterable[str] = ()) -> str | None:
        """Return the first idle worker by id, or ``None`` if that would breach the reserve."""

        idle = self.idle_workers(exclude)
        if len(idle) <= self.reserve_floor:
            return None
        return idle[0]

    async def dispatch_to(
        self,
        worker_id: str,
        repo: str,
        issue: int | None = None,
        prompt: str | None = None,
        *,
        skip_stdin: bool = False,
    ) -> bool:
        return await self._dispatcher.dispatch(worker_id, repo, issue, prompt, skip_stdin=skip_stdin)

    async def dispatch_any(
        self,
        repo: str,
        issue: int | None = None,
        prompt: str | None = None,
        *,
        skip_stdin: bool = False,
        title: str | None = None,
    ) -> Assignment | None:
        """Dispatch to whichever idle worker wins selection.

        Stdin is drained once up front so that retries never wait on it.
        """

        if not prompt and not skip_stdin:
            prompt = self._dispatcher.read_prompt()
        return await self._dispatch_with_retry(repo, issue, prompt, title)

    async def _dispatch_with_retry(
        self,
        repo: str,
        issue: int | None,
        prompt: str | None,
        title: str | None,
    ) -> Assignment | None:
        reference = f"{repo}#{issue}" if issue is not None else repo
        tried: list[str] = []
        for attempt in range(self.max_attempts):
            worker_id = self.find_idle_worker(exclude=tried)
            if worker_id is None:
                if attempt == 0:
                    logger.info(
                        "No idle workers available above the reserve of %d", self.reserve_floor
                    )
                    return None
                break

            tried.append(worker_id)
            logger.info("Assigning %s to worker %s", reference, worker_id)
            committed = await self._dispatcher.dispatch(
                worker_id,
                repo,
                issue,
                prompt,
                skip_stdin=True,
                silent=attempt > 0,
            )
            if committed:
                return Assignment(worker_id=worker_id, repo=repo, issue=issue, title=title)
            logger.warning(
                "Worker %s was taken before commit (attempt %d/%d)",
                worker_id,
                attempt + 1,
                self.max_attempts,
            )

        raise AssignmentFailed(
            f"Could not assign {reference}; tried workers: {', '.join(tried) or 'none'}"
        )

    async def assign(self, items: Sequence[Issue] | None = None) -> Assignment | None:
        """Assign the first pending issue to an idle worker."""

        if items is None:
            items = await self._fetch(lambda tracker: tracker.list_unassigned_issues(), "issues")

        if not items:
            logger.info("No unassigned issues found")
            return None

        logger.info("%d unassigned issue(s) found", len(items))
        issue = items[0]
        return await self._dispatch_with_retry(issue.repo, issue.number, None, issue.title)

    async def poll(self, pull_requests: Sequence[Issue] | None = None) -> Assignment | None:
        """Send the first unreviewed pull request to the review agent."""

        agent = self.review_agent
        if not self._store.exists(agent):
            raise UnknownWorker(agent)
        if self._dedupe is None:
            raise AssignmentFailed("Review polling requires a review cache")

        status = self._resolver.resolve(agent).status
        if status is WorkerStatus.BUSY:
            logger.info("%s is busy, skipping poll", agent)
            return None
        if status is WorkerStatus.CRASHED:
            logger.info("%s has crashed task, skipping poll", agent)
            return None

        if pull_requests is None:
            pull_requests = await self._fetch(lambda tracker: tracker.list_review_requests(), "pull requests")

        pending = [pr for pr in pull_requests if not self._dedupe.has(pr.key)]
        if not pending:
            logger.info("No PRs pending review")
            return None

        pr = pending[0]
        logger.info("%d PR(s) pending review; dispatching %s to review %s", len(pending), agent, pr.key)
        self._dedupe.mark(pr.key)

        committed = await self._dispatcher.dispatch(
            agent,
            pr.repo,
            pr.number,
            f"Review PR #{pr.number}: {pr.title}",
            skip_stdin=True,
        )
        if not committed:
            raise AssignmentFailed(f"Could not dispatch {agent} to review {pr.key}")
        return Assignment(worker_id=agent, repo=pr.repo, issue=pr.number, title=pr.title)

    async def _fetch(self, query, what: str) -> list[Issue]:
        if self._tracker is None:
            logger.error("No issue tracker configured; cannot query %s", what)
            return []
        try:
            return await query(self._tracker)
        except TrackerError as exc:
            logger.error("Error querying %s: %s", what, exc)
            return []


__all__ = ["Assignment", "AssignmentScheduler"]
