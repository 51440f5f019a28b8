"""Issue tracker collaborator backed by the GitHub CLI."""

from .github import GhResult, GitHubCLI, IssueTracker, TrackerError, TrackerUnavailableError
from .models import (
    BLOCKED_LABEL,
    PULL_REQUEST_LABEL,
    WORKER_LABEL_PREFIX,
    Issue,
    worker_label,
)

__all__ = [
    "BLOCKED_LABEL",
    "GhResult",
    "GitHubCLI",
    "Issue",
    "IssueTracker",
    "PULL_REQUEST_LABEL",
    "TrackerError",
    "TrackerUnavailableError",
    "WORKER_LABEL_PREFIX",
    "worker_label",
]
