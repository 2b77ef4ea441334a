"""Board API endpoints.

This module provides a FastAPI router with project/task CRUD, whole-board
state, rebalancing, and export/import.  It is mounted under ``/api`` by
:func:`create_app`.
"""

from __future__ import annotations

from typing import Any, Callable, Optional

from fastapi import APIRouter, Body, HTTPException, Query, Response
from loguru import logger

from ..board.engine import BoardEngine
from ..board.model import Project, Task, now_ms
from .models import (
    CreateProjectRequest,
    CreateTaskRequest,
    HealthResponse,
    RebalanceResponse,
    StateResponse,
    UpdateProjectRequest,
    UpdateTaskRequest,
)


def create_board_router(get_engine: Callable[[Optional[str]], BoardEngine]) -> APIRouter:
    """Create the board API router.

    Parameters
    ----------
    get_engine:
        A callable ``(project_dir_param: str | None) -> BoardEngine`` that
        resolves the engine for the current request's project directory.
    """
    router = APIRouter(prefix="/api", tags=["board"])

    @router.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse(ok=True, timestamp=now_ms())

    @router.get("/state", response_model=StateResponse)
    async def get_state(project_dir: Optional[str] = Query(None)) -> StateResponse:
        engine = get_engine(project_dir)
        snap = engine.get_state()
        return StateResponse(**snap.to_dict())

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    @router.post("/projects", status_code=201)
    async def create_project(
        body: CreateProjectRequest,
        project_dir: Optional[str] = Query(None),
    ) -> dict[str, Any]:
        engine = get_engine(project_dir)
        project = engine.create_project(Project.from_dict(body.model_dump()))
        return project.to_dict()

    @router.post("/projects/rebalance", response_model=RebalanceResponse)
    async def rebalance_projects(project_dir: Optional[str] = Query(None)) -> RebalanceResponse:
        engine = get_engine(project_dir)
        projects = engine.rebalance_projects()
        return RebalanceResponse(updated=len(projects), items=[p.to_dict() for p in projects])

    @router.patch("/projects/{project_id}")
    async def update_project(
        project_id: str,
        body: UpdateProjectRequest,
        project_dir: Optional[str] = Query(None),
    ) -> dict[str, Any]:
        engine = get_engine(project_dir)
        project = engine.update_project(project_id, body.changes())
        if project is None:
            raise HTTPException(status_code=404, detail=f"Project {project_id} not found")
        return project.to_dict()

    @router.delete("/projects/{project_id}", status_code=204)
    async def delete_project(
        project_id: str,
        project_dir: Optional[str] = Query(None),
    ) -> Response:
        engine = get_engine(project_dir)
        engine.delete_project(project_id)
        return Response(status_code=204)

    @router.post("/projects/{project_id}/rebalance", response_model=RebalanceResponse)
    async def rebalance_tasks(
        project_id: str,
        done: bool = Query(False),
        project_dir: Optional[str] = Query(None),
    ) -> RebalanceResponse:
        engine = get_engine(project_dir)
        if engine.get_project(project_id) is None:
            raise HTTPException(status_code=404, detail=f"Project {project_id} not found")
        tasks = engine.rebalance_tasks(project_id, done=done)
        return RebalanceResponse(updated=len(tasks), items=[t.to_dict() for t in tasks])

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    @router.post("/tasks", status_code=201)
    async def create_task(
        body: CreateTaskRequest,
        project_dir: Optional[str] = Query(None),
    ) -> dict[str, Any]:
        engine = get_engine(project_dir)
        task = engine.create_task(Task.from_dict(body.model_dump()))
        return task.to_dict()

    @router.patch("/tasks/{task_id}")
    async def update_task(
        task_id: str,
        body: UpdateTaskRequest,
        project_dir: Optional[str] = Query(None),
    ) -> dict[str, Any]:
        engine = get_engine(project_dir)
        task = engine.update_task(task_id, body.changes())
        if task is None:
            raise HTTPException(status_code=404, detail=f"Task {task_id} not found")
        return task.to_dict()

    @router.delete("/tasks/{task_id}", status_code=204)
    async def delete_task(
        task_id: str,
        project_dir: Optional[str] = Query(None),
    ) -> Response:
        engine = get_engine(project_dir)
        engine.delete_task(task_id)
        return Response(status_code=204)

    # ------------------------------------------------------------------
    # Export / import
    # ------------------------------------------------------------------

    @router.get("/export")
    async def export_board(project_dir: Optional[str] = Query(None)) -> dict[str, Any]:
        engine = get_engine(project_dir)
        return engine.export_document()

    @router.get("/export/summary")
    async def export_summary(project_dir: Optional[str] = Query(None)) -> dict[str, Any]:
        engine = get_engine(project_dir)
        return engine.export_summary()

    @router.post("/import")
    async def import_board(
        payload: Any = Body(...),
        project_dir: Optional[str] = Query(None),
    ) -> dict[str, Any]:
        engine = get_engine(project_dir)
        document = engine.import_document(payload)
        logger.info(
            "Imported board: {} project(s), {} task(s)",
            len(document["projects"]),
            len(document["tasks"]),
        )
        return document

    return router
