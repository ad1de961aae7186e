"""Tests for the sync engine with a mocked GoogleSheetsClient.

These tests cover the optimistic mutation flow, the undo notification,
write failures without rollback and the polling reconciler. Round trips run
a real client against an in-memory sheet.
"""

from __future__ import annotations

import asyncio
import json
from unittest.mock import MagicMock

import httpx
import pytest

from sheettasks_sync.google_sheets import GoogleSheetsClient, RateLimitedError, SheetsAPIError
from sheettasks_sync.models import Task, TaskStatus
from sheettasks_sync.parser import HEADER_ROW
from sheettasks_sync.sync import TaskSync

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_task(task_id, status=TaskStatus.NOT_STARTED, **kwargs):
    return Task(id=task_id, title=f"Task {task_id}", status=status, **kwargs)


def _remote_tasks():
    return [
        _make_task("1"),
        _make_task("1.1", status=TaskStatus.COMPLETED),
        _make_task("1.2", status=TaskStatus.IN_PROGRESS, progress=50),
        _make_task("2"),
    ]


def _mock_client(tasks: list[Task] | None = None) -> MagicMock:
    """Create a mock GoogleSheetsClient pre-configured for testing."""
    client = MagicMock(spec=GoogleSheetsClient)
    client.range = "Tasks!A1:Z1000"
    client.fetch_tasks.return_value = tasks if tasks is not None else _remote_tasks()
    client.write_tasks.return_value = None
    return client


def _engine(client=None, **kwargs):
    notes = []
    engine = TaskSync(client or _mock_client(), notify=notes.append, **kwargs)
    return engine, notes


class _FakeSheet:
    """A values range that, like the real API, only overwrites the cells it is sent."""

    def __init__(self, rows: list[list[str]]) -> None:
        self.grid = [list(row) for row in rows]
        self.broken = False

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if self.broken:
            return httpx.Response(200, text="<html>oops</html>")
        if request.method == "PUT":
            for i, row in enumerate(json.loads(request.content)["values"]):
                while len(self.grid) <= i:
                    self.grid.append([])
                target = self.grid[i]
                target.extend([""] * (len(row) - len(target)))
                target[: len(row)] = row
            return httpx.Response(200, json={"updatedRows": len(self.grid)})
        rows = list(self.grid)
        while rows and not any(cell.strip() for cell in rows[-1]):
            rows.pop()
        return httpx.Response(200, json={"values": rows})


def _sheet_engine(*task_ids: str):
    sheet = _FakeSheet([HEADER_ROW] + [[tid, f"Task {tid}"] for tid in task_ids])
    client = GoogleSheetsClient(
        sheet_id="SHEET",
        range_="Tasks!A1:Z1000",
        access_token="TOKEN",
        transport=httpx.MockTransport(sheet),
    )
    engine, notes = _engine(client)
    return engine, notes, sheet


# ===================================================================
# Read path
# ===================================================================


class TestRefresh:
    @pytest.mark.asyncio
    async def test_refresh_loads_and_calls_back(self):
        loaded = []
        progress = []
        engine, _ = _engine(on_tasks_loaded=loaded.append, on_progress=progress.append)

        assert await engine.refresh() is True

        assert [t.id for t in loaded[0]] == ["1", "1.1", "1.2", "2"]
        # Leaves are 1.1 (100), 1.2 (50) and 2 (0).
        assert progress == [50]
        assert engine.store.dirty is False

    @pytest.mark.asyncio
    async def test_fetch_failure_keeps_previous_state(self):
        client = _mock_client()
        engine, notes = _engine(client)
        await engine.refresh()

        client.fetch_tasks.side_effect = SheetsAPIError("HTTP 500", status_code=500)
        assert await engine.refresh() is False

        assert len(engine.store) == 4
        assert notes[-1].level == "error"
        assert engine.result.errors

    @pytest.mark.asyncio
    async def test_rate_limit_exhausted_keeps_previous_state(self):
        client = _mock_client()
        engine, notes = _engine(client)
        await engine.refresh()

        client.fetch_tasks.side_effect = RateLimitedError("429", status_code=429)
        assert await engine.refresh() is False

        assert [t.id for t in engine.store.tasks] == ["1", "1.1", "1.2", "2"]
        assert "rate limiting" in notes[-1].title

    @pytest.mark.asyncio
    async def test_stale_read_is_discarded_after_local_edit(self):
        client = _mock_client()
        engine, _ = _engine(client)
        await engine.refresh()

        async def slow_fetch():
            engine.store.create("Local edit")
            return [_make_task("9")]

        client.fetch_tasks.side_effect = slow_fetch
        assert await engine.refresh() is False
        assert "9" not in engine.store
        assert "3" in engine.store

    @pytest.mark.asyncio
    async def test_filtered_tree(self):
        engine, _ = _engine()
        await engine.refresh()
        roots = engine.tree("completed")
        assert [r.id for r in roots] == ["1"]
        assert [c.id for c in roots[0].children] == ["1.1"]


# ===================================================================
# Mutations
# ===================================================================


class TestMutations:
    @pytest.mark.asyncio
    async def test_create_writes_full_list(self):
        client = _mock_client()
        engine, notes = _engine(client)
        await engine.refresh()

        task = await engine.create("New step", parent_id="1")

        assert task.id == "1.3"
        written = client.write_tasks.call_args.args[0]
        assert [t.id for t in written] == ["1", "1.1", "1.2", "1.3", "2"]
        assert engine.store.dirty is False
        assert notes[-1].title == "Task added"

    @pytest.mark.asyncio
    async def test_create_invalid_title_no_write(self):
        client = _mock_client()
        engine, notes = _engine(client)
        await engine.refresh()

        assert await engine.create("") is None

        client.write_tasks.assert_not_called()
        assert notes[-1].level == "error"
        assert len(engine.store) == 4

    @pytest.mark.asyncio
    async def test_write_failure_keeps_optimistic_state(self):
        client = _mock_client()
        client.write_tasks.side_effect = SheetsAPIError("HTTP 403", status_code=403)
        engine, notes = _engine(client)
        await engine.refresh()

        task = await engine.update("1.2", title="Renamed")

        assert task.title == "Renamed"
        assert engine.store.get("1.2").title == "Renamed"
        assert engine.store.dirty is True
        assert notes[-1].title == "Failed to save tasks"
        assert engine.write_in_flight is False

    @pytest.mark.asyncio
    async def test_progress_callback_only_on_change(self):
        progress = []
        engine, _ = _engine(on_progress=progress.append)
        await engine.refresh()

        await engine.update("2", assignee="alice")
        await engine.set_progress("2", 100)

        assert progress == [50, 83]

    @pytest.mark.asyncio
    async def test_toggle_completed(self):
        engine, _ = _engine()
        await engine.refresh()
        task = await engine.toggle_completed("1.1")
        assert task.status == TaskStatus.IN_PROGRESS
        assert task.progress == 0

    @pytest.mark.asyncio
    async def test_delete_offers_undo(self):
        client = _mock_client()
        engine, notes = _engine(client)
        await engine.refresh()
        before = engine.store.get("1.2")

        removed = await engine.delete("1.2")
        assert [t.id for t in removed] == ["1.2"]
        note = notes[-1]
        assert note.action_label == "Undo"

        restored = await note.action()
        assert restored[0] == before
        assert client.write_tasks.call_count == 2
        assert await engine.undo() == []
        assert client.write_tasks.call_count == 2

    @pytest.mark.asyncio
    async def test_batch_update_single_write(self):
        client = _mock_client()
        engine, _ = _engine(client)
        await engine.refresh()

        updated = await engine.batch_update(["1.2", "2"], "status", "completed")

        assert sorted(t.id for t in updated) == ["1.2", "2"]
        client.write_tasks.assert_called_once()
        assert all(t.progress == 100 for t in updated)

    @pytest.mark.asyncio
    async def test_dry_run_does_not_write(self):
        client = _mock_client()
        engine, _ = _engine(client, dry_run=True)
        await engine.refresh()
        await engine.create("Dry")
        client.write_tasks.assert_not_called()
        assert engine.store.dirty is False


# ===================================================================
# Reconciler
# ===================================================================


class TestReconciler:
    @pytest.mark.asyncio
    async def test_tick_reads_when_clean(self):
        client = _mock_client()
        engine, _ = _engine(client)
        assert await engine.tick() is True
        client.fetch_tasks.assert_called_once()

    @pytest.mark.asyncio
    async def test_tick_skipped_while_write_in_flight(self):
        client = _mock_client()
        engine, _ = _engine(client)
        engine.write_in_flight = True
        assert await engine.tick() is False
        client.fetch_tasks.assert_not_called()
        assert engine.result.skipped_polls == 1

    @pytest.mark.asyncio
    async def test_tick_retries_unsaved_write_before_reading(self):
        client = _mock_client()
        engine, _ = _engine(client)
        await engine.refresh()

        client.write_tasks.side_effect = SheetsAPIError("HTTP 503", status_code=503)
        await engine.create("Offline edit")
        assert engine.store.dirty is True

        client.write_tasks.side_effect = None
        client.fetch_tasks.reset_mock()
        assert await engine.tick() is False
        client.fetch_tasks.assert_not_called()
        assert engine.store.dirty is False
        assert "3" in engine.store

        assert await engine.tick() is True

    @pytest.mark.asyncio
    async def test_run_polls_until_cancelled(self):
        client = _mock_client()
        engine, _ = _engine(client)

        runner = asyncio.create_task(engine.run(0.5))
        await asyncio.sleep(0.05)
        runner.cancel()
        with pytest.raises(asyncio.CancelledError):
            await runner

        assert client.fetch_tasks.call_count >= 1


# ===================================================================
# Round trips through the sheet
# ===================================================================


class TestSheetRoundTrip:
    @pytest.mark.asyncio
    async def test_deleted_row_stays_deleted_after_poll(self):
        engine, _, _ = _sheet_engine("1", "2")
        await engine.refresh()

        await engine.delete("2")
        assert await engine.tick() is True

        assert "2" not in engine.store
        assert [t.id for t in engine.store.tasks] == ["1"]
        await engine.client.close()

    @pytest.mark.asyncio
    async def test_moved_task_keeps_new_parent_after_poll(self):
        engine, _, _ = _sheet_engine("1", "1.1", "2")
        await engine.refresh()

        moved = await engine.move("1.1", "2")
        assert moved.id == "2.1"
        assert await engine.tick() is True

        assert "1.1" not in engine.store
        assert engine.store.get("2.1").parent_id == "2"
        assert engine.store.get("2.1").title == "Task 1.1"
        await engine.client.close()

    @pytest.mark.asyncio
    async def test_malformed_body_is_reported_not_raised(self):
        engine, notes, sheet = _sheet_engine("1")
        await engine.refresh()
        sheet.broken = True

        assert await engine.refresh() is False
        assert await engine.tick() is False

        assert notes[-1].level == "error"
        assert "1" in engine.store
        await engine.client.close()
