"""Data models for tasks mirrored from the tasks spreadsheet."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date
from enum import StrEnum

RE_PHASE_ID = re.compile(r"^\d+$")


class TaskValidationError(ValueError):
    """A task mutation was rejected before touching any state."""


class TaskStatus(StrEnum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    PENDING = "pending"

    @classmethod
    def coerce(cls, raw: str | None) -> TaskStatus:
        """Normalize a raw status label; anything unknown becomes not_started."""
        if not raw:
            return cls.NOT_STARTED
        lowered = raw.strip().lower()
        mapping = {
            "not_started": cls.NOT_STARTED,
            "not started": cls.NOT_STARTED,
            "todo": cls.NOT_STARTED,
            "to do": cls.NOT_STARTED,
            "à faire": cls.NOT_STARTED,
            "in_progress": cls.IN_PROGRESS,
            "in progress": cls.IN_PROGRESS,
            "in-progress": cls.IN_PROGRESS,
            "en cours": cls.IN_PROGRESS,
            "completed": cls.COMPLETED,
            "done": cls.COMPLETED,
            "complété": cls.COMPLETED,
            "terminé": cls.COMPLETED,
            "pending": cls.PENDING,
            "en attente": cls.PENDING,
        }
        return mapping.get(lowered, cls.NOT_STARTED)


def parent_id_of(task_id: str) -> str | None:
    """Return the id prefix before the last dot, or None for a root id."""
    if "." not in task_id:
        return None
    return task_id.rsplit(".", 1)[0]


@dataclass
class Task:
    """A single row of the tasks sheet."""

    id: str
    title: str
    status: TaskStatus = TaskStatus.NOT_STARTED
    progress: int = 0
    completed: bool = False
    start_date: date | None = None
    due_date: date | None = None
    assignee: str | None = None
    category: str | None = None
    parent_id: str | None = None

    def __post_init__(self) -> None:
        self.status = TaskStatus.coerce(self.status)
        if self.parent_id is None:
            self.parent_id = parent_id_of(self.id)
        if self.status == TaskStatus.COMPLETED:
            self.completed = True
            self.progress = 100
        elif self.completed:
            # A legacy completed flag without the status wins over the status.
            self.status = TaskStatus.COMPLETED
            self.progress = 100

    @property
    def is_done(self) -> bool:
        return self.status == TaskStatus.COMPLETED or self.completed

    def is_overdue(self, today: date) -> bool:
        return self.due_date is not None and self.due_date < today and not self.is_done

    def validate(self) -> None:
        if not self.title or not self.title.strip():
            raise TaskValidationError("Task title must not be empty")
        if self.start_date and self.due_date and self.due_date < self.start_date:
            raise TaskValidationError(
                f"Task '{self.title}' is due ({self.due_date}) before it starts "
                f"({self.start_date})"
            )
        if not 0 <= self.progress <= 100:
            raise TaskValidationError(
                f"Task '{self.title}' progress {self.progress} is outside 0-100"
            )

    def to_dict(self) -> dict:
        """Return a JSON-friendly dict of the task fields."""
        return {
            "id": self.id,
            "title": self.title,
            "status": self.status.value,
            "progress": self.progress,
            "completed": self.completed,
            "startDate": self.start_date.isoformat() if self.start_date else None,
            "dueDate": self.due_date.isoformat() if self.due_date else None,
            "assignee": self.assignee,
            "category": self.category,
            "parentId": self.parent_id,
        }


@dataclass
class TaskNode:
    """A task placed in the hierarchy, with an explicit parent pointer."""

    task: Task
    children: list[TaskNode] = field(default_factory=list)
    parent: TaskNode | None = field(default=None, repr=False, compare=False)

    @property
    def id(self) -> str:
        return self.task.id

    @property
    def is_phase(self) -> bool:
        return RE_PHASE_ID.match(self.task.id) is not None

    @property
    def is_leaf(self) -> bool:
        return not self.children

    def walk(self):
        """Yield this node and every descendant in pre-order."""
        yield self
        for child in self.children:
            yield from child.walk()
