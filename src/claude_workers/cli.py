"""claude-workers command line interface."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys

from .config import configure_logging, get_settings
from .errors import ProcessNotRunning, WorkerPoolError
from .pool import WorkerPool, build_pool
from .reporting import format_history_entry

CLI_LOG_FORMAT = "%(levelname)s: %(message)s"


def load_pool() -> WorkerPool:
    return build_pool(get_settings())


def _split_dispatch_args(args: argparse.Namespace) -> tuple[int | None, str | None]:
    rest = list(args.rest or [])
    issue = args.issue
    if issue is None and rest and rest[0].isdigit():
        issue = int(rest.pop(0))
    prompt = args.prompt or (" ".join(rest) if rest else None)
    return issue, prompt


def cmd_dispatch(args: argparse.Namespace) -> int:
    pool = load_pool()
    issue, prompt = _split_dispatch_args(args)

    if args.worker:
        committed = asyncio.run(pool.dispatcher.dispatch(args.worker, args.repo, issue, prompt))
        if not committed:
            return 1
        print(f"Worker {args.worker} dispatched. Check progress with: claude-workers status {args.worker}")
        return 0

    assignment = asyncio.run(pool.scheduler.dispatch_any(args.repo, issue, prompt))
    if assignment is None:
        print("No idle workers available")
        return 1
    print(f"Worker {assignment.worker_id} dispatched to {assignment.label}")
    return 0


def cmd_assign(args: argparse.Namespace) -> int:
    pool = load_pool()
    assignment = asyncio.run(pool.scheduler.assign())
    if assignment is not None:
        print(f"Assigned {assignment.label} to worker {assignment.worker_id}")
        if assignment.title:
            print(f"  {assignment.title}")
    return 0


def cmd_poll(args: argparse.Namespace) -> int:
    pool = load_pool()
    assignment = asyncio.run(pool.scheduler.poll())
    if assignment is not None:
        print(f"Dispatched {assignment.worker_id} to review {assignment.label}")
    return 0


def cmd_watch(args: argparse.Namespace) -> int:
    pool = load_pool()
    print(f"Watching worker {args.id}...")
    try:
        outcome = asyncio.run(pool.watcher.wait(args.id, timeout=args.timeout))
    except asyncio.TimeoutError:
        print(f"Timed out after {args.timeout}s; worker {args.id} is still busy")
        return 1

    if outcome.succeeded:
        print(f"Worker {args.id} finished (idle)")
    else:
        print(f"Worker {args.id} crashed")
    if outcome.task is not None:
        print(f"  Task: {outcome.task.label}")
    if outcome.error:
        print(f"  Error: {outcome.error}")
    return 0 if outcome.succeeded else 1


def cmd_stop(args: argparse.Namespace) -> int:
    pool = load_pool()
    try:
        result = asyncio.run(pool.lifecycle.stop(args.id))
    except ProcessNotRunning as exc:
        print(f"Worker {exc}")
        print("Task remains in place; use 'restart' to resume or 'reset' to clear it")
        return 0
    print(f"Worker {args.id} stopped ({result.value})")
    print("Task remains in place; use 'restart' to resume or 'reset' to clear it")
    return 0


def cmd_restart(args: argparse.Namespace) -> int:
    pool = load_pool()
    task = asyncio.run(pool.lifecycle.restart(args.id))
    print(f"Worker {args.id} restarted on {task.label} (PID {task.pid})")
    return 0


def cmd_reset(args: argparse.Namespace) -> int:
    pool = load_pool()
    archived = asyncio.run(pool.lifecycle.reset(args.id, force=args.force))
    print(f"Worker {args.id} is now idle (archived to {archived})")
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    pool = load_pool()
    snapshots = asyncio.run(pool.reporter.status(args.id, orphans=not args.no_orphans))

    if args.json:
        print(json.dumps([snapshot.as_dict() for snapshot in snapshots], indent=2))
        return 0

    if not snapshots:
        print(f"No workers found in {pool.store.root}")
        print("Each worker is a directory directly below the workers root")
        return 0

    if not args.id:
        print(f"Workers ({pool.store.root}):\n")
    for snapshot in snapshots:
        print(("" if args.id else "  ") + snapshot.describe())
        if snapshot.error:
            print(f"    Error: {snapshot.error}")
        if snapshot.status.value == "crashed":
            print(f"    Recoverable: restart, dispatch again, or check {pool.store.home(snapshot.worker_id)}")

    orphaned = [(snapshot.worker_id, issue) for snapshot in snapshots for issue in snapshot.orphans]
    if orphaned:
        print("\nOrphaned issues (labeled but not being worked):")
        for worker_id, issue in orphaned:
            print(f"  {issue.key} (worker:{worker_id}): {issue.title}")
    return 0


def cmd_history(args: argparse.Namespace) -> int:
    pool = load_pool()
    entries = pool.reporter.history(args.id)
    if not entries:
        print("No completed tasks")
        return 0
    print("Completed tasks:\n")
    for entry in entries:
        print(format_history_entry(entry))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="claude-workers",
        description="Orchestration for autonomous Claude agent workers",
        epilog="Dispatch reads the prompt from stdin when none is given (EOF = no prompt).",
    )
    sub = parser.add_subparsers(dest="cmd")

    p_dispatch = sub.add_parser("dispatch", help="Assign a task and spawn a worker")
    p_dispatch.add_argument("repo", help="Target repository (owner/name)")
    p_dispatch.add_argument("rest", nargs="*", help="Optional issue number followed by prompt words")
    p_dispatch.add_argument("-w", "--worker", help="Worker id; an idle worker is selected when omitted")
    p_dispatch.add_argument("--issue", type=int, default=None, help="Issue or PR number")
    p_dispatch.add_argument("--prompt", default=None, help="Prompt text for the agent")
    p_dispatch.set_defaults(func=cmd_dispatch)

    p_assign = sub.add_parser("assign", help="Assign the next unassigned issue to an idle worker")
    p_assign.set_defaults(func=cmd_assign)

    p_poll = sub.add_parser("poll", help="Dispatch the review agent to the next pending PR")
    p_poll.set_defaults(func=cmd_poll)

    p_watch = sub.add_parser("watch", help="Block until a worker finishes or crashes")
    p_watch.add_argument("id")
    p_watch.add_argument("--timeout", type=float, default=None, help="Give up after N seconds")
    p_watch.set_defaults(func=cmd_watch)

    p_stop = sub.add_parser("stop", help="Stop a running worker, keeping its task")
    p_stop.add_argument("id")
    p_stop.set_defaults(func=cmd_stop)

    p_restart = sub.add_parser("restart", help="Restart a stopped or crashed worker")
    p_restart.add_argument("id")
    p_restart.set_defaults(func=cmd_restart)

    p_reset = sub.add_parser("reset", help="Archive a worker's task and return it to idle")
    p_reset.add_argument("id")
    p_reset.add_argument("--force", action="store_true", help="Kill a running worker first")
    p_reset.set_defaults(func=cmd_reset)

    p_status = sub.add_parser("status", help="Show worker status")
    p_status.add_argument("id", nargs="?")
    p_status.add_argument("--json", action="store_true", help="Output JSON")
    p_status.add_argument("--no-orphans", action="store_true", help="Skip the labelled-issue check")
    p_status.set_defaults(func=cmd_status)

    p_history = sub.add_parser("history", help="Show completed tasks, newest first")
    p_history.add_argument("id", nargs="?")
    p_history.set_defaults(func=cmd_history)

    return parser


def run(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return 0
    try:
        return args.func(args)
    except WorkerPoolError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


def main(argv: list[str] | None = None) -> None:
    configure_logging(get_settings().log_level, fmt=CLI_LOG_FORMAT)
    exit_code = run(argv)
    if exit_code:
        raise SystemExit(exit_code)


if __name__ == "__main__":
    main()
