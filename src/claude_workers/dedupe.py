"""Persisted record of review items that were already dispatched."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from datetime import datetime
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from .tasks.models import utc_now_iso

logger = logging.getLogger(__name__)


class ReviewEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    reviewed_at: str = Field(..., alias="reviewedAt")
    outcome: str | None = None


_ENTRIES = TypeAdapter(dict[str, ReviewEntry])


class ReviewDedupeCache:
    """Flat ``owner/name#number`` mapping written through to disk on every mark.

    The file is created on first write. Failing to persist only logs a
    warning; the in-memory mark still prevents re-selection in this process.
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        self._entries: dict[str, ReviewEntry] = self._load()

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> dict[str, ReviewEntry]:
        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as exc:
            logger.warning("Could not read review cache %s: %s", self._path, exc)
            return {}
        try:
            return _ENTRIES.validate_python(json.loads(raw))
        except (json.JSONDecodeError, ValidationError) as exc:
            logger.warning("Ignoring malformed review cache %s: %s", self._path, exc)
            return {}

    def _persist(self) -> None:
        payload = {
            key: entry.model_dump(by_alias=True) for key, entry in self._entries.items()
        }
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=".review-cache-", dir=self._path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(payload, handle, indent=2)
                handle.write("\n")
            os.replace(tmp_name, self._path)
        except OSError:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def has(self, key: str) -> bool:
        return key in self._entries

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.has(key)

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> ReviewEntry | None:
        return self._entries.get(key)

    def entries(self) -> dict[str, ReviewEntry]:
        return dict(self._entries)

    def mark(
        self,
        key: str,
        timestamp: datetime | None = None,
        *,
        outcome: str | None = None,
    ) -> ReviewEntry:
        entry = ReviewEntry(reviewed_at=utc_now_iso(timestamp), outcome=outcome)
        self._entries[key] = entry
        try:
            self._persist()
        except OSError as exc:
            logger.warning("Failed to persist review cache %s: %s", self._path, exc)
        return entry


__all__ = ["ReviewDedupeCache", "ReviewEntry"]
