"""Tests for the board HTTP API endpoints."""

from __future__ import annotations

from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient

from kanban_board.server.api import create_app


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    d = tmp_path / "board"
    d.mkdir()
    return d


@pytest.fixture
def app(project_dir: Path):
    return create_app(project_dir=project_dir, enable_cors=False)


@pytest.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


def _project(project_id: str = "p1", position: float = 1000) -> dict:
    return {"id": project_id, "title": f"Project {project_id}", "position": position, "createdAt": 1}


def _task(task_id: str = "t1", project_id: str = "p1", position: float = 1000, **extra) -> dict:
    body = {
        "id": task_id,
        "projectId": project_id,
        "title": f"Task {task_id}",
        "description": None,
        "priority": "medium",
        "done": False,
        "position": position,
        "createdAt": 2,
        "completedAt": None,
    }
    body.update(extra)
    return body


@pytest.mark.anyio
class TestMeta:
    async def test_health(self, client: AsyncClient) -> None:
        resp = await client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json()["ok"] is True

    async def test_empty_state(self, client: AsyncClient) -> None:
        resp = await client.get("/api/state")
        assert resp.status_code == 200
        assert resp.json() == {"projects": [], "tasks": []}


@pytest.mark.anyio
class TestProjects:
    async def test_create_and_list(self, client: AsyncClient) -> None:
        resp = await client.post("/api/projects", json=_project())
        assert resp.status_code == 201
        assert resp.json()["title"] == "Project p1"

        state = (await client.get("/api/state")).json()
        assert [p["id"] for p in state["projects"]] == ["p1"]

    async def test_create_invalid_is_400(self, client: AsyncClient) -> None:
        resp = await client.post("/api/projects", json={"id": "p1", "title": ""})
        assert resp.status_code == 400
        assert resp.json()["issues"]

    async def test_create_duplicate_is_400(self, client: AsyncClient) -> None:
        await client.post("/api/projects", json=_project())
        resp = await client.post("/api/projects", json=_project())
        assert resp.status_code == 400
        assert "already exists" in resp.json()["error"]

    async def test_patch(self, client: AsyncClient) -> None:
        await client.post("/api/projects", json=_project())
        resp = await client.patch("/api/projects/p1", json={"title": "Renamed"})
        assert resp.status_code == 200
        assert resp.json()["title"] == "Renamed"
        assert resp.json()["position"] == 1000

    async def test_patch_requires_a_field(self, client: AsyncClient) -> None:
        await client.post("/api/projects", json=_project())
        resp = await client.patch("/api/projects/p1", json={})
        assert resp.status_code == 400

    async def test_patch_missing_is_404(self, client: AsyncClient) -> None:
        resp = await client.patch("/api/projects/nope", json={"title": "x"})
        assert resp.status_code == 404

    async def test_delete_cascades(self, client: AsyncClient) -> None:
        await client.post("/api/projects", json=_project())
        await client.post("/api/tasks", json=_task())
        resp = await client.delete("/api/projects/p1")
        assert resp.status_code == 204
        assert (await client.get("/api/state")).json() == {"projects": [], "tasks": []}

    async def test_rebalance(self, client: AsyncClient) -> None:
        await client.post("/api/projects", json=_project("a", 1.5))
        await client.post("/api/projects", json=_project("b", 1.25))
        resp = await client.post("/api/projects/rebalance")
        assert resp.status_code == 200
        items = resp.json()["items"]
        assert [(p["id"], p["position"]) for p in items] == [("b", 1000), ("a", 2000)]


@pytest.mark.anyio
class TestTasks:
    async def test_create_requires_project(self, client: AsyncClient) -> None:
        resp = await client.post("/api/tasks", json=_task(project_id="nope"))
        assert resp.status_code == 400

    async def test_create_rejects_bad_priority(self, client: AsyncClient) -> None:
        await client.post("/api/projects", json=_project())
        resp = await client.post("/api/tasks", json=_task(priority="urgent"))
        assert resp.status_code == 400

    async def test_toggle_via_patch(self, client: AsyncClient) -> None:
        await client.post("/api/projects", json=_project())
        await client.post("/api/tasks", json=_task())
        resp = await client.patch("/api/tasks/t1", json={"done": True, "completedAt": 55, "position": 3000})
        assert resp.status_code == 200
        body = resp.json()
        assert body["done"] is True
        assert body["completedAt"] == 55
        assert body["position"] == 3000

    async def test_patch_can_clear_completed_at(self, client: AsyncClient) -> None:
        await client.post("/api/projects", json=_project())
        await client.post("/api/tasks", json=_task(done=True, completedAt=5))
        resp = await client.patch("/api/tasks/t1", json={"done": False, "completedAt": None})
        assert resp.json()["completedAt"] is None

    async def test_patch_done_alone_keeps_completed_at_in_step(self, client: AsyncClient) -> None:
        await client.post("/api/projects", json=_project())
        await client.post("/api/tasks", json=_task())
        done = await client.patch("/api/tasks/t1", json={"done": True})
        assert done.status_code == 200
        assert done.json()["completedAt"] is not None

        active = await client.patch("/api/tasks/t1", json={"done": False})
        assert active.json()["completedAt"] is None
        state = (await client.get("/api/state")).json()
        assert state["tasks"][0]["completedAt"] is None

    async def test_create_fills_completed_at_for_done_task(self, client: AsyncClient) -> None:
        await client.post("/api/projects", json=_project())
        done = await client.post("/api/tasks", json=_task(done=True))
        assert done.json()["completedAt"] is not None
        active = await client.post("/api/tasks", json=_task("t2", position=2000, completedAt=9))
        assert active.json()["completedAt"] is None

    async def test_patch_missing_is_404(self, client: AsyncClient) -> None:
        resp = await client.patch("/api/tasks/nope", json={"title": "x"})
        assert resp.status_code == 404

    async def test_delete(self, client: AsyncClient) -> None:
        await client.post("/api/projects", json=_project())
        await client.post("/api/tasks", json=_task())
        assert (await client.delete("/api/tasks/t1")).status_code == 204
        assert (await client.delete("/api/tasks/t1")).status_code == 204
        assert (await client.get("/api/state")).json()["tasks"] == []

    async def test_rebalance_bucket(self, client: AsyncClient) -> None:
        await client.post("/api/projects", json=_project())
        await client.post("/api/tasks", json=_task("t1", position=10.5))
        await client.post("/api/tasks", json=_task("t2", position=10.25))
        resp = await client.post("/api/projects/p1/rebalance")
        assert resp.status_code == 200
        assert [t["id"] for t in resp.json()["items"]] == ["t2", "t1"]

    async def test_rebalance_missing_project_is_404(self, client: AsyncClient) -> None:
        resp = await client.post("/api/projects/nope/rebalance")
        assert resp.status_code == 404


@pytest.mark.anyio
class TestExportImport:
    async def test_export_import_roundtrip(self, client: AsyncClient) -> None:
        await client.post("/api/projects", json=_project())
        await client.post("/api/tasks", json=_task())
        exported = (await client.get("/api/export")).json()
        assert exported["version"] == 1

        await client.delete("/api/projects/p1")
        resp = await client.post("/api/import", json=exported)
        assert resp.status_code == 200

        state = (await client.get("/api/state")).json()
        assert state["projects"] == exported["projects"]
        assert state["tasks"] == exported["tasks"]

    async def test_import_rejects_wrong_version(self, client: AsyncClient) -> None:
        await client.post("/api/projects", json=_project())
        resp = await client.post(
            "/api/import",
            json={"version": 2, "exportedAt": 1, "projects": [], "tasks": []},
        )
        assert resp.status_code == 400
        assert len((await client.get("/api/state")).json()["projects"]) == 1

    async def test_summary(self, client: AsyncClient) -> None:
        await client.post("/api/projects", json=_project())
        await client.post("/api/tasks", json=_task())
        resp = await client.get("/api/export/summary")
        assert resp.json() == {
            "projectCount": 1,
            "taskCount": 1,
            "byProject": [{"projectId": "p1", "tasks": 1}],
        }
