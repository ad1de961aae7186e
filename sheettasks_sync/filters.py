"""Status filters over the task tree."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from datetime import date

from .models import Task, TaskNode, TaskStatus

STATUS_FILTERS = ("all", "completed", "in_progress", "pending")


def matches_status(task: Task, status_filter: str | None, today: date | None = None) -> bool:
    """Return True if a single task satisfies the named status filter.

    Overdue tasks that are not done match "pending" whatever their stored
    status is. The stored status is left untouched.
    """
    if status_filter in (None, "all"):
        return True
    if status_filter == "completed":
        return task.is_done
    if status_filter == "in_progress":
        return task.status == TaskStatus.IN_PROGRESS
    if status_filter == "pending":
        today = today or date.today()
        return task.status == TaskStatus.PENDING or task.is_overdue(today)
    raise ValueError(
        f"Unknown status filter {status_filter!r}; expected one of {STATUS_FILTERS}"
    )


def filter_tree(
    roots: Iterable[TaskNode],
    status_filter: str | None,
    today: date | None = None,
) -> list[TaskNode]:
    """Keep nodes that match, plus every ancestor of a matching node.

    Returns new nodes; retained nodes only carry their retained children.
    A None or "all" filter returns the input forest unchanged.
    """
    roots = list(roots)
    if status_filter in (None, "all"):
        return roots
    today = today or date.today()
    return filter_nodes(roots, lambda t: matches_status(t, status_filter, today))


def filter_nodes(roots: Iterable[TaskNode], predicate: Callable[[Task], bool]) -> list[TaskNode]:
    kept: list[TaskNode] = []
    for node in roots:
        pruned = _prune(node, predicate, None)
        if pruned is not None:
            kept.append(pruned)
    return kept


def _prune(
    node: TaskNode,
    predicate: Callable[[Task], bool],
    parent: TaskNode | None,
) -> TaskNode | None:
    copy = TaskNode(task=node.task, parent=parent)
    for child in node.children:
        pruned = _prune(child, predicate, copy)
        if pruned is not None:
            copy.children.append(pruned)
    if copy.children or predicate(node.task):
        return copy
    return None
