"""FastMCP server bootstrap for claude-workers."""

import json
import logging
from datetime import datetime, timezone
from typing import Optional

from fastmcp import Context, FastMCP

from . import __version__
from .config import WorkerSettings, configure_logging, get_settings
from .pool import WorkerPool, build_pool
from .tasks import WorkerStatus
from .tools import register_tools


def create_server(
    settings: Optional[WorkerSettings] = None,
    pool: WorkerPool | None = None,
) -> FastMCP:
    """Instantiate the FastMCP server exposing the worker pool."""

    settings = settings or get_settings()
    pool = pool or build_pool(settings)

    server = FastMCP(
        name="claude-workers",
        version=__version__,
        instructions=(
            "claude-workers coordinates a pool of autonomous Claude agents, each in its "
            "own home directory. Use the tools to dispatch work, assign open issues, "
            "poll pull requests for review, and observe or reset workers."
        ),
    )

    handles = register_tools(server, pool=pool)

    @server.resource(
        "resource://workers/status",
        name="workers_status",
        title="Worker Pool Status",
        description="Current idle/busy/crashed state of every worker in the pool.",
        mime_type="application/json",
        tags={"status", "health"},
    )
    def status_resource(context: Context) -> str:
        """Return a JSON string summarizing the pool."""

        snapshots = pool.reporter.snapshot_all()
        status_counts = {status.value: 0 for status in WorkerStatus}
        for snapshot in snapshots:
            status_counts[snapshot.status.value] += 1

        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "server_version": __version__,
            "workers_root": str(pool.store.root),
            "reserve_floor": settings.reserve_floor,
            "review_agent": settings.review_agent,
            "status_counts": status_counts,
            "workers": [snapshot.as_dict() for snapshot in snapshots],
            "reviewed_count": len(pool.dedupe),
            "request_id": getattr(context, "request_id", None),
        }
        return json.dumps(payload)

    setattr(server, "worker_pool", pool)
    setattr(server, "tool_handles", handles)
    return server


def main() -> None:
    """Entry point for running the claude-workers MCP server."""

    settings = get_settings()
    configure_logging(settings.log_level)

    server = create_server(settings)
    logging.getLogger(__name__).info(
        "Launching claude-workers MCP server",
        extra={
            "version": __version__,
            "workers_root": str(settings.workers_root),
            "log_level": settings.log_level,
        },
    )
    server.run()


if __name__ == "__main__":
    main()
