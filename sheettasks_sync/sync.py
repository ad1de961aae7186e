"""Sync engine: optimistic local mutations, remote writes and polling."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import date

from .aggregate import global_progress
from .filters import filter_tree
from .google_sheets import GoogleSheetsClient, RateLimitedError, SheetsAPIError
from .models import Task, TaskNode, TaskStatus, TaskValidationError
from .store import TaskStore

logger = logging.getLogger(__name__)


@dataclass
class Notification:
    """A toast for the user. ``action`` is offered as a button (e.g. undo)."""

    level: str  # "info" or "error"
    title: str
    message: str = ""
    action_label: str | None = None
    action: Callable[[], Awaitable[object]] | None = None


@dataclass
class SyncResult:
    """Counters for one session of the engine."""

    fetched: int = 0
    writes: int = 0
    skipped_polls: int = 0
    errors: list[str] = field(default_factory=list)


class TaskSync:
    """Keeps a TaskStore in step with the tasks sheet.

    Every mutation commits locally first, then attempts a full-range write.
    A failed write keeps the optimistic state and leaves the store dirty;
    the next reconciler tick retries it before reading again.
    """

    def __init__(
        self,
        client: GoogleSheetsClient,
        store: TaskStore | None = None,
        notify: Callable[[Notification], None] | None = None,
        on_progress: Callable[[int], None] | None = None,
        on_tasks_loaded: Callable[[list[Task]], None] | None = None,
        dry_run: bool = False,
    ) -> None:
        self.client = client
        self.store = store if store is not None else TaskStore()
        self.notify = notify
        self.on_progress = on_progress
        self.on_tasks_loaded = on_tasks_loaded
        self.dry_run = dry_run
        self.write_in_flight = False
        self.result = SyncResult()
        self.progress: int | None = None
        self._write_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def tree(self, status_filter: str | None = None, today: date | None = None) -> list[TaskNode]:
        return filter_tree(self.store.tree(), status_filter, today)

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------

    async def refresh(self) -> bool:
        """Fetch the sheet and replace local state; False keeps the old state."""
        version = self.store.version
        try:
            tasks = await self.client.fetch_tasks()
        except RateLimitedError as e:
            self._error("Tasks sheet is rate limiting requests", str(e))
            return False
        except SheetsAPIError as e:
            self._error("Failed to fetch tasks", str(e))
            return False

        if self.store.version != version or self.store.dirty or self.write_in_flight:
            # A local edit landed while the read was in flight.
            logger.info("Discarding fetched tasks; local changes are newer")
            self.result.skipped_polls += 1
            return False

        self.store.replace_all(tasks)
        self.result.fetched += 1
        logger.info("Loaded %d tasks from the sheet", len(tasks))
        if self.on_tasks_loaded:
            self.on_tasks_loaded(self.store.tasks)
        self._emit_progress()
        return True

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    async def flush(self) -> bool:
        """Write the whole task list if there are unsaved changes."""
        async with self._write_lock:
            if not self.store.dirty:
                return True
            version = self.store.version
            tasks = self.store.tasks
            if self.dry_run:
                logger.info("[DRY RUN] Would write %d task(s) to %s", len(tasks), self.client.range)
                self.store.mark_clean(version)
                return True

            self.write_in_flight = True
            try:
                await self.client.write_tasks(tasks)
            except SheetsAPIError as e:
                self._error("Failed to save tasks", str(e))
                return False
            finally:
                self.write_in_flight = False

            self.store.mark_clean(version)
            self.result.writes += 1
            logger.info("Wrote %d task(s) to %s", len(tasks), self.client.range)
            return True

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def create(self, title: str, parent_id: str | None = None, **fields) -> Task | None:
        task = self._mutate(self.store.create, title, parent_id, **fields)
        if task is None:
            return None
        self._info("Task added", f"'{task.title}' was added as {task.id}")
        await self._after_mutation()
        return task

    async def update(self, task_id: str, **changes) -> Task | None:
        task = self._mutate(self.store.update, task_id, **changes)
        if task is None:
            return None
        self._info("Task updated", f"'{task.title}' was updated")
        await self._after_mutation()
        return task

    async def set_status(self, task_id: str, status: TaskStatus | str) -> Task | None:
        return await self.update(task_id, status=status)

    async def set_progress(self, task_id: str, progress: int) -> Task | None:
        return await self.update(task_id, progress=progress)

    async def toggle_completed(self, task_id: str) -> Task | None:
        task = self._mutate(self.store.toggle_completed, task_id)
        if task is None:
            return None
        await self._after_mutation()
        return task

    async def move(self, task_id: str, new_parent_id: str | None) -> Task | None:
        return await self.update(task_id, parent_id=new_parent_id)

    async def delete(self, task_id: str) -> list[Task]:
        removed = self._mutate(self.store.delete, task_id)
        if removed is None:
            return []
        self._notify(
            Notification(
                level="info",
                title="Task deleted",
                message=f"'{removed[0].title}' was removed",
                action_label="Undo",
                action=self.undo,
            )
        )
        await self._after_mutation()
        return removed

    async def undo(self) -> list[Task]:
        restored = self.store.undo()
        if not restored:
            logger.debug("Nothing to undo")
            return []
        self._info("Task restored", f"'{restored[0].title}' was restored")
        await self._after_mutation()
        return restored

    async def batch_update(self, task_ids, field_name: str, value) -> list[Task]:
        updated = self._mutate(self.store.batch_update, task_ids, field_name, value)
        if not updated:
            return []
        self._info("Tasks updated", f"{len(updated)} task(s) updated")
        await self._after_mutation()
        return updated

    def _mutate(self, operation, *args, **kwargs):
        try:
            return operation(*args, **kwargs)
        except TaskValidationError as e:
            self._error("Invalid task", str(e))
            return None

    async def _after_mutation(self) -> None:
        self._emit_progress()
        await self.flush()

    # ------------------------------------------------------------------
    # Reconciler
    # ------------------------------------------------------------------

    async def tick(self) -> bool:
        """One reconciler step: retry unsaved writes, otherwise re-read."""
        if self.write_in_flight:
            logger.debug("Skipping poll: write in flight")
            self.result.skipped_polls += 1
            return False
        if self.store.dirty:
            logger.debug("Skipping poll: retrying unsaved changes first")
            self.result.skipped_polls += 1
            await self.flush()
            return False
        return await self.refresh()

    async def run(self, interval_seconds: float) -> None:
        """Poll forever; cancel the task to stop."""
        sleep_s = max(0.5, float(interval_seconds))
        while True:
            await self.tick()
            await asyncio.sleep(sleep_s)

    # ------------------------------------------------------------------
    # Callbacks
    # ------------------------------------------------------------------

    def _emit_progress(self) -> None:
        progress = global_progress(self.store.tree())
        if progress == self.progress:
            return
        self.progress = progress
        if self.on_progress:
            self.on_progress(progress)

    def _info(self, title: str, message: str) -> None:
        self._notify(Notification(level="info", title=title, message=message))

    def _error(self, title: str, message: str) -> None:
        logger.error("%s: %s", title, message)
        self.result.errors.append(f"{title}: {message}")
        self._notify(Notification(level="error", title=title, message=message))

    def _notify(self, notification: Notification) -> None:
        if self.notify:
            self.notify(notification)
