"""Async wrapper around the GitHub CLI used as the issue tracker."""

from __future__ import annotations

import asyncio
import json
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterable

from pydantic import TypeAdapter, ValidationError

from .models import (
    PULL_REQUEST_LABEL,
    PULL_REQUEST_LABEL_COLOR,
    WORKER_LABEL_COLOR,
    Issue,
    worker_label,
)

_ISSUE_LIST = TypeAdapter(list[Issue])


class TrackerError(RuntimeError):
    """Raised when a tracker command fails or returns unusable output."""


class TrackerUnavailableError(TrackerError):
    """Raised when the ``gh`` executable cannot be located."""


@dataclass(slots=True)
class GhResult:
    """Holds the outcome of a ``gh`` invocation."""

    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def error_text(self) -> str:
        return self.stderr.strip() or f"exit code {self.returncode}"


class GitHubCLI:
    """Execute ``gh`` commands asynchronously."""

    def __init__(self, executable: Path | str | None = None) -> None:
        self._explicit = Path(executable) if executable else None
        self._executable_path: Path | None = None

    def _resolve_executable(self) -> Path:
        if self._executable_path is not None:
            return self._executable_path
        if self._explicit is not None:
            if self._explicit.exists() and self._explicit.is_file():
                self._executable_path = self._explicit
                return self._explicit
            raise TrackerUnavailableError(f"gh executable not found at {self._explicit}")
        binary = shutil.which("gh")
        if binary is None:
            raise TrackerUnavailableError("gh CLI executable not found on PATH")
        self._executable_path = Path(binary)
        return self._executable_path

    async def run(self, *args: str) -> GhResult:
        return await self._invoke(*args)

    async def _invoke(self, *args: str) -> GhResult:
        cmd = [str(self._resolve_executable()), *args]
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise TrackerUnavailableError(f"Failed to run {cmd[0]}: {exc}") from exc
        stdout_bytes, stderr_bytes = await process.communicate()
        return GhResult(
            args=tuple(cmd),
            returncode=process.returncode if process.returncode is not None else -1,
            stdout=stdout_bytes.decode("utf-8", errors="replace"),
            stderr=stderr_bytes.decode("utf-8", errors="replace"),
        )


class FakeGitHubCLI(GitHubCLI):
    """Test double that replays scripted ``gh`` responses.

    ``handler`` takes precedence over queued ``responses``; without either a
    successful empty JSON list is returned.
    """

    def __init__(  # type: ignore[override]
        self,
        responses: Iterable[GhResult] | None = None,
        *,
        handler: Callable[[tuple[str, ...]], GhResult] | None = None,
    ) -> None:
        super().__init__(Path("/tmp/fake-gh"))
        self._responses = list(responses or [])
        self._handler = handler
        self._invocations: list[tuple[str, ...]] = []

    async def _invoke(self, *args: str) -> GhResult:  # type: ignore[override]
        self._invocations.append(tuple(args))
        if self._handler is not None:
            return self._handler(tuple(args))
        if self._responses:
            return self._responses.pop(0)
        return GhResult(args=tuple(args), returncode=0, stdout="[]", stderr="")

    @property
    def invocations(self) -> list[tuple[str, ...]]:
        return self._invocations


class IssueTracker:
    """Issue-tracker operations needed by the scheduler and dispatcher."""

    def __init__(self, cli: GitHubCLI) -> None:
        self._cli = cli

    @property
    def cli(self) -> GitHubCLI:
        return self._cli

    async def _checked(self, *args: str) -> GhResult:
        result = await self._cli.run(*args)
        if not result.ok:
            raise TrackerError(f"gh {' '.join(args[:2])} failed: {result.error_text}")
        return result

    async def _query(self, *args: str) -> list[Issue]:
        result = await self._checked(*args)
        try:
            payload: Any = json.loads(result.stdout or "[]")
            return _ISSUE_LIST.validate_python(payload)
        except (json.JSONDecodeError, ValidationError) as exc:
            raise TrackerError(f"Unexpected output from gh {' '.join(args[:2])}: {exc}") from exc

    async def list_open_issues(self) -> list[Issue]:
        """Open issues in repositories owned by the authenticated user."""

        return await self._query(
            "search", "issues",
            "--state", "open",
            "--owner", "@me",
            "--json", "number,title,labels,repository",
        )

    async def list_unassigned_issues(self) -> list[Issue]:
        return [issue for issue in await self.list_open_issues() if issue.is_unassigned()]

    async def list_review_requests(self, label: str = PULL_REQUEST_LABEL) -> list[Issue]:
        """Open pull requests carrying ``label`` across the user's repositories."""

        return await self._query(
            "search", "prs",
            "--label", label,
            "--state", "open",
            "--owner", "@me",
            "--json", "number,repository,title",
        )

    async def search_labeled_issues(self, label: str) -> list[Issue]:
        return await self._query(
            "search", "issues",
            "--label", label,
            "--state", "open",
            "--json", "repository,number,title",
        )

    async def ensure_label(self, repo: str, name: str, color: str) -> None:
        await self._checked("label", "create", name, "--repo", repo, "--color", color, "--force")

    async def add_label(self, repo: str, number: int, label: str) -> None:
        await self._checked("issue", "edit", str(number), "--repo", repo, "--add-label", label)

    async def remove_label(self, repo: str, number: int, label: str) -> None:
        await self._checked("issue", "edit", str(number), "--repo", repo, "--remove-label", label)

    async def claim_issue(self, worker_id: str, repo: str, number: int) -> str:
        """Create the worker and pull-request labels if needed and tag the issue."""

        label = worker_label(worker_id)
        await self.ensure_label(repo, label, WORKER_LABEL_COLOR)
        await self.ensure_label(repo, PULL_REQUEST_LABEL, PULL_REQUEST_LABEL_COLOR)
        await self.add_label(repo, number, label)
        return label


__all__ = [
    "FakeGitHubCLI",
    "GhResult",
    "GitHubCLI",
    "IssueTracker",
    "TrackerError",
    "TrackerUnavailableError",
]
