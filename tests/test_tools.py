from __future__ import annotations

import asyncio
import json
from pathlib import Path

from claude_workers.pool import WorkerPool
from claude_workers.process.probe import FakeProbe
from claude_workers.tools import register_tools

from conftest import add_worker, seed_task


class StubTool:
    def __init__(self, fn, name, annotations=None):
        self.fn = fn
        self.name = name
        self.annotations = annotations


class StubServer:
    def __init__(self) -> None:
        self._tools: dict[str, StubTool] = {}

    def tool(self, *args, **kwargs):
        provided_name = None
        if args and isinstance(args[0], str):
            provided_name = args[0]
        provided_name = kwargs.get("name", provided_name)

        def decorator(fn):
            tool_name = provided_name or fn.__name__
            tool = StubTool(fn, tool_name, kwargs.get("annotations"))
            self._tools[tool_name] = tool
            return tool

        return decorator


class StubLogger:
    def __init__(self) -> None:
        self.records: list[tuple[str, str, dict]] = []

    def info(self, message, extra=None):
        self.records.append(("info", message, extra or {}))

    def warning(self, message, extra=None):
        self.records.append(("warning", message, extra or {}))

    def debug(self, message, extra=None):
        self.records.append(("debug", message, extra or {}))


class StubContext:
    def __init__(self) -> None:
        self.logger = StubLogger()


def test_tools_are_registered_with_annotations(pool: WorkerPool) -> None:
    server = StubServer()

    register_tools(server, pool=pool)

    assert set(server._tools) == {
        "dispatch_worker",
        "assign_issue",
        "poll_reviews",
        "worker_status",
        "watch_worker",
        "stop_worker",
        "restart_worker",
        "reset_worker",
        "task_history",
    }
    assert server._tools["worker_status"].annotations == {"readOnlyHint": True}
    assert server._tools["reset_worker"].annotations == {"destructiveHint": True}


def test_dispatch_worker_tool(pool: WorkerPool, workers_root: Path) -> None:
    add_worker(workers_root, "w1")
    handles = register_tools(StubServer(), pool=pool)
    context = StubContext()

    result = asyncio.run(
        handles.dispatch_worker.fn(repo="acme/widgets", issue=42, prompt="Fix", worker_id="w1", context=context)
    )

    assert result["dispatched"] is True
    assert result["task"]["repo"] == "acme/widgets"
    assert result["task"]["pid"] == pool.store.read("w1").pid
    assert context.logger.records[-1][1] == "Dispatched worker"


def test_dispatch_worker_tool_reports_busy(pool: WorkerPool, workers_root: Path, probe: FakeProbe) -> None:
    add_worker(workers_root, "w1")
    probe.start(5)
    seed_task(pool.store, "w1", pid=5)
    handles = register_tools(StubServer(), pool=pool)

    result = asyncio.run(handles.dispatch_worker.fn(repo="acme/other", worker_id="w1"))

    assert result["dispatched"] is False
    assert "busy" in result["reason"]


def test_dispatch_worker_tool_auto_selects(pool: WorkerPool, workers_root: Path) -> None:
    handles = register_tools(StubServer(), pool=pool)

    assert asyncio.run(handles.dispatch_worker.fn(repo="acme/widgets"))["dispatched"] is False

    add_worker(workers_root, "w2")
    result = asyncio.run(handles.dispatch_worker.fn(repo="acme/widgets", issue=3))

    assert result["worker_id"] == "w2"
    assert result["task"]["issue"] == 3


def test_status_stop_reset_and_history_tools(pool: WorkerPool, workers_root: Path) -> None:
    add_worker(workers_root, "w1")
    handles = register_tools(StubServer(), pool=pool)
    asyncio.run(handles.dispatch_worker.fn(repo="acme/widgets", issue=9, worker_id="w1"))

    status = asyncio.run(handles.worker_status.fn(worker_id="w1"))
    assert status[0]["status"] == "busy"
    json.dumps(status)

    stopped = asyncio.run(handles.stop_worker.fn(worker_id="w1"))
    assert stopped == {"worker_id": "w1", "stopped": True, "result": "terminated"}
    assert asyncio.run(handles.stop_worker.fn(worker_id="w1"))["stopped"] is False

    restarted = asyncio.run(handles.restart_worker.fn(worker_id="w1"))
    assert restarted["task"]["issue"] == 9

    reset = asyncio.run(handles.reset_worker.fn(worker_id="w1", force=True))
    assert reset["archived_to"].endswith(".json")

    history = handles.task_history.fn(limit=5)
    assert [entry["task"]["issue"] for entry in history] == [9]


def test_watch_worker_tool_times_out(pool: WorkerPool, workers_root: Path, probe: FakeProbe) -> None:
    add_worker(workers_root, "w1")
    probe.start(6)
    seed_task(pool.store, "w1", pid=6)
    handles = register_tools(StubServer(), pool=pool)

    result = asyncio.run(handles.watch_worker.fn(worker_id="w1", timeout=0.1))

    assert result == {"worker_id": "w1", "status": "busy", "timed_out": True}


def test_poll_reviews_tool(pool: WorkerPool, workers_root: Path) -> None:
    add_worker(workers_root, "vilicus")
    handles = register_tools(StubServer(), pool=pool)

    assert asyncio.run(handles.poll_reviews.fn()) == {"dispatched": False}
    assert asyncio.run(handles.assign_issue.fn()) == {"assigned": False}
