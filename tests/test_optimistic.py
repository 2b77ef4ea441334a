"""Tests for the optimistic client board (client/optimistic.py)."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Optional

import pytest
from httpx import ASGITransport

from kanban_board.board.engine import BoardEngine
from kanban_board.board.model import BoardValidationError, Priority, Project, Task
from kanban_board.client import (
    HttpBoardRemote,
    LocalBoardRemote,
    Notice,
    OptimisticBoard,
    RemoteError,
)
from kanban_board.server.api import create_app


class FailingRemote(LocalBoardRemote):
    """Local remote whose listed operations always fail."""

    def __init__(self, engine: BoardEngine, failing: set[str]) -> None:
        super().__init__(engine)
        self.failing = failing

    def _check(self, name: str) -> None:
        if name in self.failing:
            raise RemoteError(f"{name} unavailable", status_code=503)

    async def get_all(self):
        self._check("get_all")
        return await super().get_all()

    async def update_task(self, task_id: str, changes: dict[str, Any]) -> Optional[Task]:
        self._check("update_task")
        return await super().update_task(task_id, changes)

    async def create_task(self, task: Task) -> Task:
        self._check("create_task")
        return await super().create_task(task)

    async def replace_all(self, projects, tasks):
        self._check("replace_all")
        return await super().replace_all(projects, tasks)


class SlowFirstUpdateRemote(LocalBoardRemote):
    """Holds back the response of the first task update until released."""

    def __init__(self, engine: BoardEngine) -> None:
        super().__init__(engine)
        self.reached = asyncio.Event()
        self.release = asyncio.Event()
        self._held = False

    async def update_task(self, task_id: str, changes: dict[str, Any]) -> Optional[Task]:
        result = await super().update_task(task_id, changes)
        if not self._held:
            self._held = True
            self.reached.set()
            await self.release.wait()
        return result


@pytest.fixture
def engine(tmp_path: Path) -> BoardEngine:
    engine = BoardEngine(tmp_path / ".kanban")
    engine.create_project(Project(id="p1", title="Inbox", position=1000, created_at=1))
    engine.create_project(Project(id="p2", title="Later", position=2000, created_at=1))
    engine.create_task(Task(id="t1", project_id="p1", title="a", position=1000, created_at=1))
    engine.create_task(Task(id="t2", project_id="p1", title="b", position=2000, created_at=1))
    return engine


@pytest.fixture
async def board(engine: BoardEngine):
    board = OptimisticBoard(LocalBoardRemote(engine))
    await board.load()
    yield board
    await board.aclose()


def _messages(board: OptimisticBoard, level: str) -> list[str]:
    return [n.message for n in board.notices if n.level == level]


@pytest.mark.anyio
class TestLoad:
    async def test_load_orders_projects(self, board: OptimisticBoard) -> None:
        state = board.state
        assert state.ready is True
        assert [p.id for p in state.ordered_projects()] == ["p1", "p2"]
        assert state.last_used_project_id == "p1"

    async def test_load_failure_keeps_state(self, engine: BoardEngine) -> None:
        board = OptimisticBoard(FailingRemote(engine, {"get_all"}))
        state = await board.load()
        assert state.ready is False
        assert _messages(board, "error") == ["Could not load the board"]


@pytest.mark.anyio
class TestProjects:
    async def test_add_project_is_immediate(self, board: OptimisticBoard, engine: BoardEngine) -> None:
        state = board.add_project("  Someday  ")
        added = state.project(state.last_used_project_id)
        assert added.title == "Someday"
        assert added.position == 3000

        await board.drain()
        assert engine.get_project(added.id).title == "Someday"
        assert _messages(board, "success") == ["Project created"]

    async def test_add_project_rejects_blank_title(self, board: OptimisticBoard) -> None:
        with pytest.raises(BoardValidationError):
            board.add_project("   ")
        assert len(board.state.projects) == 2

    async def test_rename(self, board: OptimisticBoard, engine: BoardEngine) -> None:
        assert board.rename_project("p1", "Renamed").project("p1").title == "Renamed"
        await board.drain()
        assert engine.get_project("p1").title == "Renamed"

    async def test_rename_missing_is_noop(self, board: OptimisticBoard) -> None:
        before = board.state
        assert board.rename_project("nope", "x") is before

    async def test_delete_cascades_and_clears_selection(self, board: OptimisticBoard, engine: BoardEngine) -> None:
        board.set_selection("t1")
        state = board.delete_project("p1")
        assert state.project("p1") is None
        assert [t for t in state.tasks if t.project_id == "p1"] == []
        assert state.selected_task_id is None

        await board.drain()
        assert engine.get_project("p1") is None
        assert engine.get_task("t1") is None

    async def test_reorder(self, board: OptimisticBoard, engine: BoardEngine) -> None:
        state = board.reorder_projects("p2", "p1")
        assert [p.id for p in state.ordered_projects()] == ["p2", "p1"]
        await board.drain()
        assert engine.get_project("p2").position == 0

    async def test_reorder_onto_itself_is_noop(self, board: OptimisticBoard) -> None:
        before = board.state
        assert board.reorder_projects("p1", "p1") is before

    async def test_remote_missing_record_drops_it(self, board: OptimisticBoard, engine: BoardEngine) -> None:
        engine.delete_project("p2")
        board.rename_project("p2", "Gone")
        await board.drain()
        assert board.state.project("p2") is None


@pytest.mark.anyio
class TestTasks:
    async def test_add_task_appends_to_project(self, board: OptimisticBoard, engine: BoardEngine) -> None:
        state = board.add_task("p1", "c", description="details", priority="high")
        added = state.tasks[-1]
        assert added.position == 3000
        assert added.priority == Priority.HIGH
        assert added.done is False
        assert state.last_used_project_id == "p1"

        await board.drain()
        assert engine.get_task(added.id).description == "details"

    async def test_add_task_validates_before_changing_state(self, board: OptimisticBoard) -> None:
        before = board.state
        with pytest.raises(BoardValidationError):
            board.add_task("nope", "c")
        with pytest.raises(BoardValidationError):
            board.add_task("p1", "")
        with pytest.raises(BoardValidationError):
            board.add_task("p1", "c", priority="urgent")
        assert board.state is before

    async def test_update_task(self, board: OptimisticBoard, engine: BoardEngine) -> None:
        board.update_task("t1", title="edited", priority="low", description=None)
        await board.drain()
        saved = engine.get_task("t1")
        assert saved.title == "edited"
        assert saved.priority == Priority.LOW
        assert _messages(board, "success") == ["Task updated"]

    async def test_update_task_rejects_other_fields(self, board: OptimisticBoard) -> None:
        with pytest.raises(BoardValidationError):
            board.update_task("t1", position=5)

    async def test_reorder_within_bucket(self, board: OptimisticBoard, engine: BoardEngine) -> None:
        state = board.reorder_tasks("t1", "t2")
        assert state.task("t1").position == 3000
        assert [t.id for t in board.visible_tasks("p1")] == ["t2", "t1"]
        await board.drain()
        assert engine.get_task("t1").position == 3000

    async def test_reorder_leaves_siblings_in_place(self, board: OptimisticBoard, engine: BoardEngine) -> None:
        board.add_task("p1", "c")
        await board.drain()
        added = board.state.tasks[-1].id
        before = {t.id: t.position for t in board.state.tasks}
        projects_before = {p.id: p.position for p in board.state.projects}

        board.reorder_tasks("t1", "t2")
        await board.drain()

        expected = dict(before, t1=2500.0)
        assert {t.id: t.position for t in board.state.tasks} == expected
        assert {t.id: t.position for t in engine.get_state().tasks} == expected
        assert board.state.task("t2").position == 2000
        assert engine.get_task(added).position == 3000
        assert {p.id: p.position for p in engine.get_state().projects} == projects_before
        assert [t.id for t in board.visible_tasks("p1")] == ["t2", "t1", added]

    async def test_project_reorder_leaves_siblings_in_place(self, board: OptimisticBoard, engine: BoardEngine) -> None:
        board.reorder_projects("p1", "p2")
        await board.drain()
        assert board.state.project("p2").position == 2000
        assert engine.get_project("p2").position == 2000
        assert engine.get_project("p1").position == 3000
        assert [p.id for p in board.state.ordered_projects()] == ["p2", "p1"]

    async def test_reorder_across_buckets_is_noop(self, board: OptimisticBoard, engine: BoardEngine) -> None:
        board.toggle_task("t2")
        await board.drain()
        before = board.state
        assert board.reorder_tasks("t1", "t2") is before

    async def test_toggle_moves_between_buckets(self, board: OptimisticBoard, engine: BoardEngine) -> None:
        state = board.toggle_task("t1")
        done = state.task("t1")
        assert done.done is True
        assert done.completed_at is not None
        assert done.position == 3000

        await board.drain()
        saved = engine.get_task("t1")
        assert saved.done is True
        assert saved.completed_at == done.completed_at

        active = board.toggle_task("t1").task("t1")
        assert active.done is False
        assert active.completed_at is None
        assert active.position == 1000
        await board.drain()
        assert engine.get_task("t1").completed_at is None

    async def test_delete_task(self, board: OptimisticBoard, engine: BoardEngine) -> None:
        board.set_selection("t1")
        state = board.delete_task("t1")
        assert state.task("t1") is None
        assert state.selected_task_id is None
        await board.drain()
        assert engine.get_task("t1") is None

    async def test_filters(self, board: OptimisticBoard) -> None:
        board.set_search_query("B")
        assert [t.id for t in board.visible_tasks("p1")] == ["t2"]
        board.set_filters(query="", status="done")
        assert board.visible_tasks("p1") == []
        with pytest.raises(BoardValidationError):
            board.set_filters(priority="urgent")


@pytest.mark.anyio
class TestReconciliation:
    async def test_failed_write_reloads_last_known_good(self, engine: BoardEngine) -> None:
        seen: list[Notice] = []
        board = OptimisticBoard(FailingRemote(engine, {"update_task"}), notify=seen.append)
        await board.load()

        state = board.reorder_tasks("t1", "t2")
        assert state.task("t1").position == 3000

        await board.drain()
        assert board.state.task("t1").position == 1000
        assert seen == [Notice("error", "Could not reorder the task")]
        assert board._tokens == {}

    async def test_failed_create_removes_optimistic_task(self, engine: BoardEngine) -> None:
        board = OptimisticBoard(FailingRemote(engine, {"create_task"}))
        await board.load()
        board.add_task("p1", "doomed")
        await board.drain()
        assert [t.title for t in board.state.tasks] == ["a", "b"]
        assert _messages(board, "error") == ["Could not create the task"]

    async def test_stale_response_does_not_overwrite_newer_edit(self, engine: BoardEngine) -> None:
        remote = SlowFirstUpdateRemote(engine)
        board = OptimisticBoard(remote)
        await board.load()

        board.update_task("t1", title="first")
        await remote.reached.wait()
        board.update_task("t1", title="second")
        while len(board.notices) < 1:
            await asyncio.sleep(0.01)

        remote.release.set()
        await board.drain()
        assert board.state.task("t1").title == "second"
        assert engine.get_task("t1").title == "second"
        assert _messages(board, "success") == ["Task updated"]

    async def test_concurrent_edits_to_different_tasks(self, board: OptimisticBoard, engine: BoardEngine) -> None:
        board.update_task("t1", title="x")
        board.update_task("t2", title="y")
        board.add_project("Third")
        await board.drain()
        assert engine.get_task("t1").title == "x"
        assert engine.get_task("t2").title == "y"
        assert len(engine.get_state().projects) == 3


@pytest.mark.anyio
class TestBackup:
    async def test_export_is_versioned_json(self, board: OptimisticBoard) -> None:
        data = json.loads(await board.export_backup())
        assert data["version"] == 1
        assert len(data["tasks"]) == 2

    async def test_import_replaces_everything(self, board: OptimisticBoard, engine: BoardEngine) -> None:
        document = {
            "version": 1,
            "exportedAt": 1,
            "projects": [{"id": "n1", "title": "New", "position": 1000, "createdAt": 1}],
            "tasks": [],
        }
        board.set_selection("t1")
        state = await board.import_backup(json.dumps(document))
        assert [p.id for p in state.projects] == ["n1"]
        assert state.tasks == ()
        assert state.selected_task_id is None
        assert [p.id for p in engine.get_state().projects] == ["n1"]
        assert _messages(board, "success") == ["Backup imported"]

    async def test_invalid_import_changes_nothing(self, board: OptimisticBoard, engine: BoardEngine) -> None:
        before = board.state
        bad = json.dumps({"version": 2, "exportedAt": 1, "projects": [], "tasks": []})
        with pytest.raises(BoardValidationError):
            await board.import_backup(bad)
        assert board.state is before
        assert len(engine.get_state().projects) == 2
        assert _messages(board, "error")[0].startswith("Import rejected")

    async def test_remote_import_failure_reloads(self, engine: BoardEngine) -> None:
        board = OptimisticBoard(FailingRemote(engine, {"replace_all"}))
        await board.load()
        document = json.dumps({"version": 1, "exportedAt": 1, "projects": [], "tasks": []})
        with pytest.raises(RemoteError):
            await board.import_backup(document)
        assert len(board.state.projects) == 2
        assert _messages(board, "error") == ["Could not import the backup"]

    async def test_summary(self, board: OptimisticBoard) -> None:
        assert board.summary()["byProject"] == [
            {"projectId": "p1", "tasks": 2},
            {"projectId": "p2", "tasks": 0},
        ]


@pytest.mark.anyio
class TestRebalance:
    async def test_rebalance_tasks_reloads(self, board: OptimisticBoard) -> None:
        board.reorder_tasks("t2", "t1")
        state = await board.rebalance_tasks("p1")
        assert [(t.id, t.position) for t in sorted(state.tasks, key=lambda t: t.position)] == [
            ("t2", 1000),
            ("t1", 2000),
        ]

    async def test_rebalance_projects(self, board: OptimisticBoard) -> None:
        board.reorder_projects("p2", "p1")
        state = await board.rebalance_projects()
        assert [(p.id, p.position) for p in state.ordered_projects()] == [("p2", 1000), ("p1", 2000)]


@pytest.mark.anyio
class TestOverHttp:
    async def test_session_against_api(self, tmp_path: Path) -> None:
        app = create_app(project_dir=tmp_path, enable_cors=False)
        remote = HttpBoardRemote("http://test/api", transport=ASGITransport(app=app))
        board = OptimisticBoard(remote)
        await board.load()

        project_id = board.add_project("Inbox").last_used_project_id
        await board.drain()
        task_id = board.add_task(project_id, "write tests", priority="high").tasks[-1].id
        await board.drain()
        board.toggle_task(task_id)
        await board.drain()

        snapshot = await remote.get_all()
        assert [p.id for p in snapshot.projects] == [project_id]
        assert snapshot.tasks[0].done is True
        assert snapshot.tasks[0].priority == Priority.HIGH
        assert snapshot.tasks[0].completed_at is not None
        assert _messages(board, "error") == []
        await board.aclose()

    async def test_server_rejection_reloads(self, tmp_path: Path) -> None:
        app = create_app(project_dir=tmp_path, enable_cors=False)
        remote = HttpBoardRemote("http://test/api", transport=ASGITransport(app=app))
        board = OptimisticBoard(remote)
        await board.load()
        project_id = board.add_project("Inbox").last_used_project_id
        await board.drain()

        await remote.delete_project(project_id)
        board.add_task(project_id, "orphan")
        await board.drain()

        assert board.state.projects == ()
        assert board.state.tasks == ()
        assert _messages(board, "error") == ["Could not create the task"]
        await board.aclose()

    async def test_http_errors_become_remote_errors(self, tmp_path: Path) -> None:
        app = create_app(project_dir=tmp_path, enable_cors=False)
        async with HttpBoardRemote("http://test/api", transport=ASGITransport(app=app)) as remote:
            with pytest.raises(RemoteError) as excinfo:
                await remote.create_task(Task(id="t1", project_id="nope", title="x"))
            assert excinfo.value.status_code == 400
            assert await remote.update_task("missing", {"title": "x"}) is None


class TestWithoutEventLoop:
    def test_mutators_leave_state_untouched(self, engine: BoardEngine) -> None:
        board = OptimisticBoard(LocalBoardRemote(engine))
        before = board.state
        with pytest.raises(RuntimeError):
            board.add_project("Someday")
        assert board.state is before
        assert board._tokens == {}
        assert len(engine.get_state().projects) == 2

    async def _loaded(self, engine: BoardEngine) -> OptimisticBoard:
        board = OptimisticBoard(LocalBoardRemote(engine))
        await board.load()
        return board

    def test_task_edits_leave_state_untouched(self, engine: BoardEngine) -> None:
        board = asyncio.run(self._loaded(engine))
        before = board.state
        with pytest.raises(RuntimeError):
            board.toggle_task("t1")
        with pytest.raises(RuntimeError):
            board.reorder_tasks("t1", "t2")
        assert board.state is before
        assert board.state.task("t1").done is False
        assert engine.get_task("t1").position == 1000
