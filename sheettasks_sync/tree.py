"""Build the phase/task hierarchy from the flat list of sheet rows."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable

from .models import Task, TaskNode

logger = logging.getLogger(__name__)

RE_DIGITS = re.compile(r"(\d+)")


def natural_key(task_id: str) -> tuple:
    """Sort key that compares digit runs numerically, so 1.2 < 1.10."""
    parts = RE_DIGITS.split(task_id)
    return tuple((0, int(p), "") if p.isdigit() else (1, 0, p) for p in parts if p)


def root_key(task_id: str) -> tuple:
    """Order roots by the numeric value of the leading segment.

    Ids without a numeric leading segment (placeholders for rows with an
    empty id cell) sort after every numbered phase.
    """
    head = task_id.split(".", 1)[0]
    if head.isdigit():
        return (0, int(head), natural_key(task_id))
    return (1, 0, natural_key(task_id))


def build_tree(tasks: Iterable[Task]) -> list[TaskNode]:
    """Turn a flat task list into a sorted forest.

    Duplicate ids keep the last record. A parent reference that does not
    resolve (or that would close a cycle) puts the task at the root.
    """
    nodes: dict[str, TaskNode] = {}
    for task in tasks:
        if task.id in nodes:
            logger.debug("Duplicate task id %r; keeping the last row", task.id)
        nodes[task.id] = TaskNode(task=task)

    parents = {tid: node.task.parent_id for tid, node in nodes.items()}
    roots: list[TaskNode] = []
    for tid, node in nodes.items():
        parent_id = node.task.parent_id
        parent = nodes.get(parent_id) if parent_id else None
        if parent is None:
            if parent_id:
                logger.debug("Task %r references missing parent %r", tid, parent_id)
            roots.append(node)
        elif _reaches(parents, parent_id, tid):
            logger.warning("Task %r is part of a parent cycle; placing at root", tid)
            roots.append(node)
        else:
            node.parent = parent
            parent.children.append(node)

    roots.sort(key=lambda n: root_key(n.id))
    for root in roots:
        _sort_children(root)
    return roots


def _sort_children(node: TaskNode) -> None:
    node.children.sort(key=lambda n: natural_key(n.id))
    for child in node.children:
        _sort_children(child)


def _reaches(parents: dict[str, str | None], start: str | None, target: str) -> bool:
    """True if following parent links from start arrives at target."""
    seen: set[str] = set()
    current = start
    while current is not None and current not in seen:
        if current == target:
            return True
        seen.add(current)
        current = parents.get(current)
    return False


def would_create_cycle(tasks: Iterable[Task], task_id: str, new_parent_id: str | None) -> bool:
    """Check whether making new_parent_id the parent of task_id closes a loop."""
    if new_parent_id is None:
        return False
    if new_parent_id == task_id:
        return True
    parents = {t.id: t.parent_id for t in tasks}
    return _reaches(parents, new_parent_id, task_id)


def flatten_tree(roots: Iterable[TaskNode]) -> list[Task]:
    """Return the tasks of a forest in pre-order."""
    return [node.task for root in roots for node in root.walk()]


def find_node(roots: Iterable[TaskNode], task_id: str) -> TaskNode | None:
    for root in roots:
        for node in root.walk():
            if node.id == task_id:
                return node
    return None


def next_child_id(tasks: Iterable[Task], parent_id: str | None) -> str:
    """Allocate the next free id under parent_id (or at the root).

    Siblings are numbered from 1; the new id takes one more than the
    highest numeric last segment already in use, so ids are never reused
    while a sibling with the same number exists.
    """
    tasks = list(tasks)
    taken = {t.id for t in tasks}
    siblings = [t for t in tasks if t.parent_id == parent_id]
    highest = len(siblings)
    for sibling in siblings:
        last = sibling.id.rsplit(".", 1)[-1]
        if last.isdigit():
            highest = max(highest, int(last))
    index = highest + 1
    while True:
        candidate = f"{parent_id}.{index}" if parent_id else str(index)
        if candidate not in taken:
            return candidate
        index += 1
