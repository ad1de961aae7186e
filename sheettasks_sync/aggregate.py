"""Derived views over the task tree: global progress, board columns, stats."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date

from .models import Task, TaskNode, TaskStatus


def leaf_tasks(roots: Iterable[TaskNode]) -> list[Task]:
    """Collect the tasks of nodes without children."""
    return [node.task for root in roots for node in root.walk() if node.is_leaf]


def global_progress(roots: Iterable[TaskNode]) -> int:
    """Average progress of leaf tasks, rounded; 0 when there are none.

    Phases and other parents are excluded, their own progress is cosmetic.
    """
    leaves = leaf_tasks(roots)
    if not leaves:
        return 0
    # Round half up rather than Python's banker's rounding.
    return int(sum(t.progress for t in leaves) / len(leaves) + 0.5)


def kanban_columns(roots: Iterable[TaskNode]) -> dict[TaskStatus, list[Task]]:
    """Bucket tasks by status, in pre-order.

    Every status gets a column, even an empty one.
    """
    columns: dict[TaskStatus, list[Task]] = {status: [] for status in TaskStatus}
    for root in roots:
        for node in root.walk():
            columns[TaskStatus.coerce(node.task.status)].append(node.task)
    return columns


@dataclass
class DashboardStats:
    """Headline numbers for the dashboard cards."""

    total: int = 0
    completed: int = 0
    remaining: int = 0
    overdue: int = 0
    next_deadline: date | None = None

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "completed": self.completed,
            "remaining": self.remaining,
            "overdue": self.overdue,
            "next_deadline": self.next_deadline.isoformat() if self.next_deadline else None,
        }


def dashboard_stats(roots: Iterable[TaskNode], today: date | None = None) -> DashboardStats:
    """Count leaf tasks by completion and find the next open deadline."""
    today = today or date.today()
    stats = DashboardStats()
    for task in leaf_tasks(roots):
        stats.total += 1
        if task.is_done:
            stats.completed += 1
            continue
        stats.remaining += 1
        if task.is_overdue(today):
            stats.overdue += 1
        elif task.due_date is not None:
            if stats.next_deadline is None or task.due_date < stats.next_deadline:
                stats.next_deadline = task.due_date
    return stats
