"""In-memory task store: the single owner of task state.

Tasks live in one arena keyed by id; the hierarchy is always computed from
it, so the flat list and the tree cannot drift apart. Every mutation bumps
``version`` and marks the store dirty until a remote write acknowledges it.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from .models import Task, TaskNode, TaskStatus, TaskValidationError
from .tree import build_tree, find_node, flatten_tree, next_child_id, would_create_cycle

logger = logging.getLogger(__name__)

BATCH_FIELDS = ("status", "assignee", "category")
UPDATABLE_FIELDS = (
    "title",
    "status",
    "progress",
    "completed",
    "start_date",
    "due_date",
    "assignee",
    "category",
    "parent_id",
)


# ----------------------------------------------------------------------
# Status transitions
# ----------------------------------------------------------------------


def apply_status(task: Task, status: TaskStatus | str) -> None:
    """Select a status directly, keeping progress and the completed flag in step."""
    status = TaskStatus.coerce(status)
    was_done = task.is_done
    task.status = status
    if status == TaskStatus.COMPLETED:
        task.completed = True
        task.progress = 100
        return
    task.completed = False
    if was_done:
        task.progress = 0


def apply_progress(task: Task, progress: int) -> None:
    """Move the progress slider; the boundaries force the adjacent status."""
    progress = max(0, min(100, int(progress)))
    task.progress = progress
    if progress == 100:
        task.status = TaskStatus.COMPLETED
        task.completed = True
        return
    task.completed = False
    if progress == 0:
        task.status = TaskStatus.PENDING
    elif task.status != TaskStatus.IN_PROGRESS:
        task.status = TaskStatus.IN_PROGRESS


def toggle_completed(task: Task) -> None:
    """Flip the completion checkbox."""
    if task.is_done:
        task.status = TaskStatus.IN_PROGRESS
        task.completed = False
        task.progress = 0
    else:
        apply_status(task, TaskStatus.COMPLETED)


# ----------------------------------------------------------------------
# Store
# ----------------------------------------------------------------------


@dataclass
class DeletedSnapshot:
    """The most recent deletion: the removed task first, then its descendants."""

    tasks: list[Task] = field(default_factory=list)

    @property
    def root(self) -> Task:
        return self.tasks[0]


class TaskStore:
    """Owns the task arena, the undo slot and the dirty/version bookkeeping."""

    def __init__(self, tasks: Iterable[Task] = ()) -> None:
        self._tasks: dict[str, Task] = {}
        self.version = 0
        self.dirty = False
        self.undo_buffer: DeletedSnapshot | None = None
        for task in tasks:
            self._tasks[task.id] = task

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    @property
    def tasks(self) -> list[Task]:
        """The flat task list in tree (pre-)order."""
        return flatten_tree(self.tree())

    def tree(self) -> list[TaskNode]:
        return build_tree(self._tasks.values())

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._tasks

    def get(self, task_id: str) -> Task:
        try:
            return self._tasks[task_id]
        except KeyError:
            raise TaskValidationError(f"Unknown task id '{task_id}'") from None

    def descendants(self, task_id: str) -> list[Task]:
        """Every task below task_id, parents before their children."""
        found: list[Task] = []
        seen = {task_id}
        frontier = [task_id]
        while frontier:
            current = frontier.pop(0)
            for task in self._tasks.values():
                if task.parent_id == current and task.id not in seen:
                    seen.add(task.id)
                    found.append(task)
                    frontier.append(task.id)
        return found

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    def _touch(self) -> None:
        self.version += 1
        self.dirty = True

    def mark_clean(self, version: int) -> None:
        """Record that the remote copy matches the given version."""
        if version == self.version:
            self.dirty = False

    def replace_all(self, tasks: Iterable[Task]) -> None:
        """Swap in a freshly fetched task list wholesale."""
        self._tasks = {}
        for task in tasks:
            self._tasks[task.id] = task
        self.version += 1
        self.dirty = False

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create(self, title: str, parent_id: str | None = None, **fields) -> Task:
        """Add a task under parent_id (or as a new phase) and return it."""
        _check_fields(fields, exclude=("parent_id",))
        if parent_id is not None and parent_id not in self._tasks:
            raise TaskValidationError(f"Parent task '{parent_id}' does not exist")
        status = fields.pop("status", TaskStatus.NOT_STARTED)
        progress = fields.pop("progress", None)
        completed = fields.pop("completed", None)
        task = Task(
            id=next_child_id(self._tasks.values(), parent_id),
            title=(title or "").strip(),
            parent_id=parent_id,
            **fields,
        )
        apply_status(task, status)
        if progress is not None:
            apply_progress(task, progress)
        if completed is not None and completed != task.is_done:
            toggle_completed(task)
        task.validate()
        self._tasks[task.id] = task
        self._touch()
        logger.info("Created task %s '%s'", task.id, task.title)
        return task

    def update(self, task_id: str, **changes) -> Task:
        """Apply field changes to one task.

        The sheet has no parent column, so a change of parent renumbers the
        task and its whole subtree under the new parent; other changes leave
        the children alone.
        """
        _check_fields(changes)
        current = self.get(task_id)
        candidate = copy.deepcopy(current)
        new_parent = current.parent_id

        if "parent_id" in changes:
            new_parent = changes.pop("parent_id")
            if new_parent is not None and new_parent not in self._tasks:
                raise TaskValidationError(f"Parent task '{new_parent}' does not exist")
            if would_create_cycle(self._tasks.values(), task_id, new_parent):
                raise TaskValidationError(
                    f"Moving '{task_id}' under '{new_parent}' would create a cycle"
                )

        status = changes.pop("status", None)
        progress = changes.pop("progress", None)
        completed = changes.pop("completed", None)
        for name, value in changes.items():
            setattr(candidate, name, value.strip() if name == "title" and value else value)
        if status is not None:
            apply_status(candidate, status)
        if progress is not None:
            apply_progress(candidate, progress)
        if completed is not None and completed != candidate.is_done:
            toggle_completed(candidate)
        candidate.validate()

        if new_parent != current.parent_id:
            self._reparent(candidate, new_parent)
        else:
            self._tasks[task_id] = candidate
        self._touch()
        logger.info("Updated task %s '%s'", candidate.id, candidate.title)
        return candidate

    def _reparent(self, candidate: Task, parent_id: str | None) -> None:
        node = find_node(self.tree(), candidate.id)
        subtree = [candidate] + [copy.deepcopy(n.task) for n in node.walk() if n is not node]
        old_ids = [t.id for t in subtree]
        live = {k: v for k, v in self._tasks.items() if k not in old_ids}
        _renumber(subtree, parent_id, live)
        for old_id in old_ids:
            del self._tasks[old_id]
        for task in subtree:
            self._tasks[task.id] = task
        logger.info(
            "Moved %s under %s as %s (%d task(s) renumbered)",
            old_ids[0], parent_id or "top level", candidate.id, len(subtree),
        )

    def move(self, task_id: str, new_parent_id: str | None) -> Task:
        return self.update(task_id, parent_id=new_parent_id)

    def set_status(self, task_id: str, status: TaskStatus | str) -> Task:
        return self.update(task_id, status=status)

    def set_progress(self, task_id: str, progress: int) -> Task:
        return self.update(task_id, progress=progress)

    def toggle_completed(self, task_id: str) -> Task:
        return self.update(task_id, completed=not self.get(task_id).is_done)

    def delete(self, task_id: str) -> list[Task]:
        """Remove a task with its whole subtree; the removal can be undone once."""
        root = self.get(task_id)
        removed = [root] + self.descendants(task_id)
        self.undo_buffer = DeletedSnapshot(tasks=copy.deepcopy(removed))
        for task in removed:
            del self._tasks[task.id]
        self._touch()
        logger.info("Deleted task %s '%s' (%d task(s) removed)", task_id, root.title, len(removed))
        return removed

    def undo(self) -> list[Task]:
        """Restore the last deletion; a no-op returning [] when nothing is buffered."""
        snapshot = self.undo_buffer
        if snapshot is None:
            return []
        self.undo_buffer = None
        restored = copy.deepcopy(snapshot.tasks)
        root = restored[0]

        if root.parent_id is not None and root.parent_id not in self._tasks:
            missing_parent, old_id = root.parent_id, root.id
            _renumber(restored, None, self._tasks)
            logger.info(
                "Parent %s of restored task %s is gone; restoring at top level as %s",
                missing_parent, old_id, root.id,
            )
        elif any(t.id in self._tasks for t in restored):
            _reassign_ids(restored, self._tasks)

        for task in restored:
            self._tasks[task.id] = task
        self._touch()
        logger.info("Restored task %s '%s'", root.id, root.title)
        return restored

    def batch_update(self, task_ids: Iterable[str], field_name: str, value) -> list[Task]:
        """Apply one field change to every selected task that still exists."""
        if field_name not in BATCH_FIELDS:
            raise TaskValidationError(
                f"Batch updates support {', '.join(BATCH_FIELDS)}, not '{field_name}'"
            )
        selected = set(task_ids)
        updated: list[Task] = []
        pending: dict[str, Task] = {}
        for node in (n for root in self.tree() for n in root.walk()):
            if node.id not in selected:
                continue
            candidate = copy.deepcopy(node.task)
            if field_name == "status":
                apply_status(candidate, value)
            else:
                setattr(candidate, field_name, value or None)
            candidate.validate()
            pending[candidate.id] = candidate
            updated.append(candidate)

        missing = selected - pending.keys()
        if missing:
            logger.warning("Batch update skipped unknown task id(s): %s", ", ".join(sorted(missing)))
        if not pending:
            return []
        self._tasks.update(pending)
        self._touch()
        logger.info("Batch-updated %s on %d task(s)", field_name, len(updated))
        return updated


def _check_fields(fields: dict, exclude: tuple[str, ...] = ()) -> None:
    unknown = [name for name in fields if name not in UPDATABLE_FIELDS or name in exclude]
    if unknown:
        raise TaskValidationError(f"Unknown task field(s): {', '.join(sorted(unknown))}")


def _reassign_ids(tasks: list[Task], live: dict[str, Task]) -> None:
    """Give colliding tasks of a detached subtree fresh ids, parents first."""
    renamed: dict[str, str] = {}
    taken = list(live.values())
    for task in tasks:
        moved = task.parent_id in renamed
        if moved:
            task.parent_id = renamed[task.parent_id]
        if moved or task.id in live or task.id in renamed.values():
            new_id = next_child_id(taken, task.parent_id)
            renamed[task.id] = new_id
            task.id = new_id
        taken.append(task)


def _renumber(tasks: list[Task], parent_id: str | None, live: dict[str, Task]) -> None:
    """Re-id a detached subtree (root first, parents before children) under parent_id."""
    renamed: dict[str, str] = {}
    taken = list(live.values())
    for i, task in enumerate(tasks):
        task.parent_id = parent_id if i == 0 else renamed.get(task.parent_id, task.parent_id)
        new_id = next_child_id(taken, task.parent_id)
        renamed[task.id] = new_id
        task.id = new_id
        taken.append(task)
