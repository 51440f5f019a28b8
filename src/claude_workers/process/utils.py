"""Environment helpers for agent processes."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Mapping

_SANITIZED_VARS = {
    "PYTHONHOME",
    "PYTHONPATH",
    "VIRTUAL_ENV",
    "PIP_RESPECT_VIRTUALENV",
}


def worker_environment(home: Path, additional: Mapping[str, str] | None = None) -> dict[str, str]:
    """Return the caller's environment with ``HOME`` pointed at the worker's home."""

    env = dict(os.environ)
    for key in _SANITIZED_VARS:
        env.pop(key, None)
    env["HOME"] = str(home)
    if additional:
        env.update(additional)
    return env
