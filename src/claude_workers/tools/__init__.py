"""Tool registration for the claude-workers MCP server."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from fastmcp import Context, FastMCP

from ..errors import InvalidTask, ProcessNotRunning, UnknownWorker, WorkerBusy
from ..pool import WorkerPool
from ..tasks import Task

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ToolHandles:
    dispatch_worker: Any
    assign_issue: Any
    poll_reviews: Any
    worker_status: Any
    watch_worker: Any
    stop_worker: Any
    restart_worker: Any
    reset_worker: Any
    task_history: Any


def _task_payload(task: Task | None) -> dict[str, Any] | None:
    return task.to_record() if task is not None else None


def register_tools(server: FastMCP, *, pool: WorkerPool) -> ToolHandles:
    """Register the worker pool operations as MCP tools on the server."""

    async def _dispatch_worker(
        repo: str,
        issue: int | None = None,
        prompt: str | None = None,
        worker_id: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Dispatch a worker to a repository, optionally pinned to an issue and worker id."""

        if worker_id is None:
            assignment = await pool.scheduler.dispatch_any(repo, issue, prompt, skip_stdin=True)
            if assignment is None:
                _emit_log(context, "info", "No idle workers available", extra={"repo": repo})
                return {"dispatched": False, "reason": "no idle workers available"}
            worker_id = assignment.worker_id
            task = pool.store.read(worker_id)
        else:
            try:
                task = await pool.dispatcher.commit(worker_id, repo, issue, prompt, skip_stdin=True)
            except (InvalidTask, UnknownWorker, WorkerBusy) as exc:
                _emit_log(context, "warning", "Dispatch refused", extra={"worker_id": worker_id, "reason": str(exc)})
                return {"dispatched": False, "worker_id": worker_id, "reason": str(exc)}

        _emit_log(context, "info", "Dispatched worker", extra={"worker_id": worker_id, "repo": repo, "issue": issue})
        return {"dispatched": True, "worker_id": worker_id, "task": _task_payload(task)}

    async def _assign_issue(context: Context | None = None) -> dict[str, Any]:
        """Assign the next unassigned issue to an idle worker above the reserve."""

        assignment = await pool.scheduler.assign()
        if assignment is None:
            return {"assigned": False}
        _emit_log(context, "info", "Assigned issue", extra={"worker_id": assignment.worker_id, "issue": assignment.label})
        return {
            "assigned": True,
            "worker_id": assignment.worker_id,
            "repo": assignment.repo,
            "issue": assignment.issue,
            "title": assignment.title,
        }

    async def _poll_reviews(context: Context | None = None) -> dict[str, Any]:
        """Send the review agent to the next pull request it has not reviewed yet."""

        assignment = await pool.scheduler.poll()
        if assignment is None:
            return {"dispatched": False}
        _emit_log(context, "info", "Dispatched review", extra={"pull_request": assignment.label})
        return {
            "dispatched": True,
            "worker_id": assignment.worker_id,
            "repo": assignment.repo,
            "number": assignment.issue,
        }

    async def _worker_status(
        worker_id: str | None = None,
        include_orphans: bool = False,
        context: Context | None = None,
    ) -> list[dict[str, Any]]:
        """Report idle/busy/crashed status for one worker or the whole pool."""

        snapshots = await pool.reporter.status(worker_id, orphans=include_orphans)
        _emit_log(context, "debug", "Reported worker status", extra={"count": len(snapshots)})
        return [snapshot.as_dict() for snapshot in snapshots]

    async def _watch_worker(
        worker_id: str,
        timeout: float = 300.0,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Wait until the worker finishes or crashes, up to ``timeout`` seconds."""

        try:
            outcome = await pool.watcher.wait(worker_id, timeout=timeout)
        except asyncio.TimeoutError:
            return {"worker_id": worker_id, "status": "busy", "timed_out": True}
        return {
            "worker_id": worker_id,
            "status": outcome.status.value,
            "timed_out": False,
            "task": _task_payload(outcome.task),
            "error": outcome.error,
        }

    async def _stop_worker(worker_id: str, context: Context | None = None) -> dict[str, Any]:
        """Terminate a worker's agent process while keeping its task for restart."""

        try:
            result = await pool.lifecycle.stop(worker_id)
        except ProcessNotRunning as exc:
            return {"worker_id": worker_id, "stopped": False, "reason": str(exc)}
        _emit_log(context, "warning", "Stopped worker", extra={"worker_id": worker_id, "result": result.value})
        return {"worker_id": worker_id, "stopped": True, "result": result.value}

    async def _restart_worker(worker_id: str, context: Context | None = None) -> dict[str, Any]:
        """Respawn the agent for a stopped or crashed worker's existing task."""

        task = await pool.lifecycle.restart(worker_id)
        _emit_log(context, "info", "Restarted worker", extra={"worker_id": worker_id, "pid": task.pid})
        return {"worker_id": worker_id, "task": _task_payload(task)}

    async def _reset_worker(
        worker_id: str,
        force: bool = False,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Archive a worker's task and return it to idle."""

        archived = await pool.lifecycle.reset(worker_id, force=force)
        _emit_log(context, "warning", "Reset worker", extra={"worker_id": worker_id, "archive": str(archived)})
        return {"worker_id": worker_id, "archived_to": str(archived)}

    def _task_history(
        worker_id: str | None = None,
        limit: int | None = None,
        context: Context | None = None,
    ) -> list[dict[str, Any]]:
        """List completed tasks, newest first."""

        entries = pool.reporter.history(worker_id)
        if limit is not None and limit > 0:
            entries = entries[:limit]
        return [
            {
                "worker_id": entry.worker_id,
                "completed_at": entry.completed_at.isoformat(),
                "task": _task_payload(entry.task),
            }
            for entry in entries
        ]

    read_only = {"readOnlyHint": True}
    destructive = {"destructiveHint": True}

    tool_dispatch = server.tool(
        name="dispatch_worker",
        description=(
            "Assign a repository task (optional issue number and prompt) to a worker. "
            "Without worker_id an idle worker is selected automatically."
        ),
    )(_dispatch_worker)
    tool_assign = server.tool(
        name="assign_issue",
        description="Assign the first unassigned open issue to an idle worker, keeping the idle reserve.",
    )(_assign_issue)
    tool_poll = server.tool(
        name="poll_reviews",
        description="Dispatch the review agent to the next pull request labelled for review.",
    )(_poll_reviews)
    tool_status = server.tool(
        name="worker_status",
        description="Show idle/busy/crashed status for one worker or all workers.",
        annotations=read_only,
    )(_worker_status)
    tool_watch = server.tool(
        name="watch_worker",
        description="Block until a worker finishes (idle) or crashes, or the timeout elapses.",
        annotations=read_only,
    )(_watch_worker)
    tool_stop = server.tool(
        name="stop_worker",
        description="Stop a running worker. The task stays in place for restart.",
        annotations=destructive,
    )(_stop_worker)
    tool_restart = server.tool(
        name="restart_worker",
        description="Restart a stopped or crashed worker on its existing task.",
    )(_restart_worker)
    tool_reset = server.tool(
        name="reset_worker",
        description="Archive a worker's task and return it to idle (force kills a running worker).",
        annotations=destructive,
    )(_reset_worker)
    tool_history = server.tool(
        name="task_history",
        description="List completed tasks across workers, newest first.",
        annotations=read_only,
    )(_task_history)

    return ToolHandles(
        dispatch_worker=tool_dispatch,
        assign_issue=tool_assign,
        poll_reviews=tool_poll,
        worker_status=tool_status,
        watch_worker=tool_watch,
        stop_worker=tool_stop,
        restart_worker=tool_restart,
        reset_worker=tool_reset,
        task_history=tool_history,
    )


def _emit_log(
    context: Context | None,
    level: str,
    message: str,
    *,
    extra: dict[str, Any] | None = None,
) -> None:
    """Best-effort logging that prefers the MCP context logger when available."""

    payload = extra or {}

    if context is not None:
        ctx_logger = getattr(context, "logger", None)
        if ctx_logger is not None:
            log_method = getattr(ctx_logger, level, None)
            if callable(log_method):
                log_method(message, extra=payload)
                return

    fallback = getattr(logger, level, logger.info)
    fallback(message, extra=payload)


__all__ = ["ToolHandles", "register_tools"]
