"""Issue tracker payload models."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

WORKER_LABEL_PREFIX = "worker:"
PULL_REQUEST_LABEL = "pull-request"
BLOCKED_LABEL = "blocked"
WORKER_LABEL_COLOR = "0E8A16"
PULL_REQUEST_LABEL_COLOR = "1D76DB"


def worker_label(worker_id: str) -> str:
    return f"{WORKER_LABEL_PREFIX}{worker_id}"


class Label(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str


class Repository(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name_with_owner: str = Field(..., alias="nameWithOwner")


class Issue(BaseModel):
    """An open issue or pull request as reported by ``gh search``."""

    model_config = ConfigDict(extra="ignore")

    number: int
    title: str = ""
    labels: list[Label] = Field(default_factory=list)
    repository: Repository

    @property
    def repo(self) -> str:
        return self.repository.name_with_owner

    @property
    def key(self) -> str:
        """Stable ``owner/name#number`` identity used for deduplication."""

        return f"{self.repo}#{self.number}"

    @property
    def label_names(self) -> list[str]:
        return [label.name for label in self.labels]

    def is_unassigned(self) -> bool:
        """True when no worker, pull-request or blocked label is attached."""

        names = self.label_names
        if any(name.startswith(WORKER_LABEL_PREFIX) for name in names):
            return False
        return PULL_REQUEST_LABEL not in names and BLOCKED_LABEL not in names


__all__ = [
    "BLOCKED_LABEL",
    "Issue",
    "Label",
    "PULL_REQUEST_LABEL",
    "PULL_REQUEST_LABEL_COLOR",
    "Repository",
    "WORKER_LABEL_COLOR",
    "WORKER_LABEL_PREFIX",
    "worker_label",
]
