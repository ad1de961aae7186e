"""CLI entry point for sheettasks-sync."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from datetime import date
from pathlib import Path

from .aggregate import dashboard_stats, global_progress, kanban_columns
from .config import load_settings
from .filters import STATUS_FILTERS
from .google_sheets import GoogleSheetsClient
from .models import TaskNode, TaskStatus
from .store import BATCH_FIELDS
from .sync import Notification, TaskSync
from .tree import flatten_tree


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sheettasks-sync",
        description="Mirror a spreadsheet task list as a phase/task tree and edit it.",
    )
    parser.add_argument(
        "--sheet-id",
        type=str,
        default=None,
        help="Spreadsheet ID (or set SHEETTASKS_SHEET_ID)",
    )
    parser.add_argument(
        "--range",
        type=str,
        default=None,
        help="Cell range holding the tasks, e.g. 'Tasks!A1:Z1000'",
    )
    parser.add_argument(
        "--api-key",
        type=str,
        default=None,
        help="Google API key for reads (or set SHEETTASKS_API_KEY)",
    )
    parser.add_argument(
        "--token",
        type=str,
        default=None,
        help="OAuth access token, required for writes (or set SHEETTASKS_ACCESS_TOKEN)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Apply changes locally and log them without writing the sheet",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--output-json",
        type=str,
        default=None,
        help="Write the command result to a JSON file (useful for CI)",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    show = sub.add_parser("show", help="Print the task tree")
    show.add_argument("--filter", choices=STATUS_FILTERS, default="all")

    sub.add_parser("progress", help="Print global progress over leaf tasks")

    kanban = sub.add_parser("kanban", help="Print tasks grouped by status")
    kanban.add_argument("--filter", choices=STATUS_FILTERS, default="all")

    sub.add_parser("stats", help="Print dashboard counters")

    add = sub.add_parser("add", help="Create a task")
    add.add_argument("title")
    add.add_argument("--parent", default=None, help="Parent task id")
    _add_field_args(add)

    update = sub.add_parser("update", help="Update one task")
    update.add_argument("task_id")
    update.add_argument("--title", default=None)
    update.add_argument("--parent", default=None, help="Move under this task id, renumbering it ('' for root)")
    update.add_argument("--toggle", action="store_true", help="Toggle completion")
    _add_field_args(update)

    delete = sub.add_parser("delete", help="Delete a task and its subtasks")
    delete.add_argument("task_id")

    batch = sub.add_parser("batch", help="Set one field on several tasks")
    batch.add_argument("field", choices=BATCH_FIELDS)
    batch.add_argument("value")
    batch.add_argument("task_ids", nargs="+")

    watch = sub.add_parser("watch", help="Poll the sheet and report progress changes")
    watch.add_argument("--interval", type=float, default=None, help="Seconds between polls")
    watch.add_argument("--once", action="store_true", help="Poll a single time and exit")

    return parser


def _add_field_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--status", choices=[s.value for s in TaskStatus], default=None)
    p.add_argument("--progress", type=int, default=None)
    p.add_argument("--start", type=date.fromisoformat, default=None, help="YYYY-MM-DD")
    p.add_argument("--due", type=date.fromisoformat, default=None, help="YYYY-MM-DD")
    p.add_argument("--assignee", default=None)
    p.add_argument("--category", default=None)


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    # Configure logging
    level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(levelname)s %(message)s",
    )

    try:
        settings = load_settings(
            sheet_id=args.sheet_id,
            range=args.range,
            api_key=args.api_key,
            access_token=args.token,
            poll_interval=getattr(args, "interval", None),
        )
    except ValueError as e:
        logging.error("%s", e)
        return 1
    missing = settings.missing()
    if missing:
        logging.error("Missing configuration: %s", ", ".join(missing))
        return 1

    client = GoogleSheetsClient(
        sheet_id=settings.sheet_id,
        range_=settings.range,
        api_key=settings.api_key,
        access_token=settings.access_token,
        max_retries=settings.max_retries,
        backoff_base=settings.backoff_base,
        timeout=settings.timeout,
    )
    return asyncio.run(_run(args, client, settings.poll_interval))


async def _run(args: argparse.Namespace, client: GoogleSheetsClient, interval: float) -> int:
    def notify(n: Notification) -> None:
        log = logging.error if n.level == "error" else logging.info
        log("%s%s", n.title, f": {n.message}" if n.message else "")

    engine = TaskSync(client, notify=notify, dry_run=args.dry_run)
    try:
        if not await engine.refresh():
            return 1
        out = await _dispatch(args, engine, interval)
    finally:
        await client.close()

    if args.output_json:
        Path(args.output_json).write_text(json.dumps(out, indent=2))
        logging.info("Results written to %s", args.output_json)

    if engine.result.errors:
        logging.warning("Errors encountered:")
        for err in engine.result.errors:
            logging.warning("  - %s", err)
    return 1 if engine.result.errors else 0


async def _dispatch(args: argparse.Namespace, engine: TaskSync, interval: float) -> dict:
    cmd = args.command

    if cmd == "show":
        roots = engine.tree(args.filter)
        for line in render_tree(roots):
            print(line)
        return {"tasks": [t.to_dict() for t in flatten_tree(roots)]}

    if cmd == "progress":
        progress = global_progress(engine.store.tree())
        print(f"{progress}%")
        return {"progress": progress}

    if cmd == "kanban":
        columns = kanban_columns(engine.tree(args.filter))
        for status, tasks in columns.items():
            print(f"{status.value} ({len(tasks)})")
            for task in tasks:
                print(f"  {task.id}  {task.title}")
        return {s.value: [t.id for t in tasks] for s, tasks in columns.items()}

    if cmd == "stats":
        stats = dashboard_stats(engine.store.tree())
        for key, value in stats.to_dict().items():
            print(f"{key}: {value if value is not None else '-'}")
        return stats.to_dict()

    if cmd == "add":
        task = await engine.create(args.title, args.parent, **_field_changes(args))
        return {"created": task.to_dict() if task else None}

    if cmd == "update":
        changes = _field_changes(args)
        if args.title is not None:
            changes["title"] = args.title
        if args.parent is not None:
            changes["parent_id"] = args.parent or None
        task = None
        if changes:
            task = await engine.update(args.task_id, **changes)
        if args.toggle:
            task = await engine.toggle_completed(args.task_id)
        return {"updated": task.to_dict() if task else None}

    if cmd == "delete":
        removed = await engine.delete(args.task_id)
        return {"deleted": [t.id for t in removed]}

    if cmd == "batch":
        updated = await engine.batch_update(args.task_ids, args.field, args.value)
        return {"updated": [t.id for t in updated]}

    if cmd == "watch":
        engine.on_progress = lambda p: logging.info("Global progress: %d%%", p)
        logging.info("Global progress: %d%%", engine.progress or 0)
        if args.once:
            await engine.tick()
        else:
            await engine.run(interval)
        return {"progress": engine.progress, "polls_skipped": engine.result.skipped_polls}

    raise ValueError(f"Unknown command {cmd!r}")


def _field_changes(args: argparse.Namespace) -> dict:
    changes = {
        "status": args.status,
        "progress": args.progress,
        "start_date": args.start,
        "due_date": args.due,
        "assignee": args.assignee,
        "category": args.category,
    }
    return {k: v for k, v in changes.items() if v is not None}


def render_tree(roots: list[TaskNode], depth: int = 0) -> list[str]:
    """Indented one-line-per-task rendering of a forest."""
    lines: list[str] = []
    for node in roots:
        task = node.task
        mark = "x" if task.is_done else " "
        extras = [task.status.value, f"{task.progress}%"]
        if task.due_date:
            extras.append(f"due {task.due_date.isoformat()}")
        if task.assignee:
            extras.append(f"@{task.assignee}")
        lines.append(f"{'  ' * depth}[{mark}] {task.id} {task.title} ({', '.join(extras)})")
        lines.extend(render_tree(node.children, depth + 1))
    return lines


if __name__ == "__main__":
    sys.exit(main())
