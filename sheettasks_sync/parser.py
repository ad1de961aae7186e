"""Translate tasks sheet rows to Task records and back."""

from __future__ import annotations

import logging
import uuid
from datetime import date

from .models import Task, TaskStatus

logger = logging.getLogger(__name__)

# Fixed column order of the tasks sheet. The third column is a free notes
# column: it is read as progress when numeric and always written blank.
HEADER_ROW = [
    "ID",
    "Title",
    "Notes",
    "Status",
    "Start Date",
    "Due Date",
    "Assignee",
    "Category",
]
COL_ID, COL_TITLE, COL_NOTES, COL_STATUS, COL_START, COL_DUE, COL_ASSIGNEE, COL_CATEGORY = range(8)

PLACEHOLDER_TITLE = "Untitled task"


def parse_rows(values: list[list[str]], today: date | None = None) -> list[Task]:
    """Parse a sheet values payload; the first row is a header and is skipped."""
    if not values:
        return []
    today = today or date.today()
    tasks: list[Task] = []
    for row in values[1:]:
        if not any(str(cell).strip() for cell in row):
            continue
        tasks.append(parse_row(row, today))
    return tasks


def parse_row(row: list[str], today: date) -> Task:
    def cell(index: int) -> str:
        return str(row[index]).strip() if index < len(row) else ""

    task_id = cell(COL_ID) or _placeholder_id()
    status = TaskStatus.coerce(cell(COL_STATUS))
    progress = _parse_progress(cell(COL_NOTES), status)
    return Task(
        id=task_id,
        title=cell(COL_TITLE) or PLACEHOLDER_TITLE,
        status=status,
        progress=progress,
        completed=status == TaskStatus.COMPLETED,
        start_date=_parse_date(cell(COL_START), task_id) or today,
        due_date=_parse_date(cell(COL_DUE), task_id),
        assignee=cell(COL_ASSIGNEE) or None,
        category=cell(COL_CATEGORY) or None,
    )


def tasks_to_rows(tasks: list[Task]) -> list[list[str]]:
    """Serialize tasks into a full-range values payload, header first."""
    rows = [list(HEADER_ROW)]
    for task in tasks:
        rows.append(
            [
                task.id,
                task.title,
                "",
                task.status.value,
                task.start_date.isoformat() if task.start_date else "",
                task.due_date.isoformat() if task.due_date else "",
                task.assignee or "",
                task.category or "",
            ]
        )
    return rows


def _placeholder_id() -> str:
    return f"tmp-{uuid.uuid4().hex[:8]}"


def _parse_progress(raw: str, status: TaskStatus) -> int:
    if status == TaskStatus.COMPLETED:
        return 100
    raw = raw.rstrip("%").strip()
    if raw.isdigit():
        return max(0, min(100, int(raw)))
    return 0


def _parse_date(raw: str, task_id: str) -> date | None:
    if not raw:
        return None
    try:
        return date.fromisoformat(raw)
    except ValueError:
        logger.warning("Task %s has an unreadable date %r; ignoring it", task_id, raw)
        return None
