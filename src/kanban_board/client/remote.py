"""Remote persistence collaborators for the optimistic board.

:class:`BoardRemote` is the contract the client store writes through.  Two
implementations ship: :class:`HttpBoardRemote` talks to the board API over
HTTP, :class:`LocalBoardRemote` drives a :class:`BoardEngine` in-process
(CLI use without a server).  Every failure surfaces as :class:`RemoteError`.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Callable, Optional, TypeVar

import httpx
from filelock import Timeout
from loguru import logger

from ..board.backup import build_export_document
from ..board.engine import BoardEngine
from ..board.model import BoardValidationError, Project, Task
from ..board.store import BoardSnapshot
from ..constants import DEFAULT_API_URL, DEFAULT_TIMEOUT_SECONDS

R = TypeVar("R")

_TASK_WIRE_KEYS = {"completed_at": "completedAt"}


class RemoteError(RuntimeError):
    """A remote write or read that did not succeed."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def _snapshot_from_payload(payload: dict[str, Any]) -> BoardSnapshot:
    return BoardSnapshot(
        projects=[Project.from_dict(p) for p in payload.get("projects") or []],
        tasks=[Task.from_dict(t) for t in payload.get("tasks") or []],
    )


class BoardRemote(ABC):
    @abstractmethod
    async def get_all(self) -> BoardSnapshot:
        raise NotImplementedError

    @abstractmethod
    async def create_project(self, project: Project) -> Project:
        raise NotImplementedError

    @abstractmethod
    async def update_project(self, project_id: str, changes: dict[str, Any]) -> Optional[Project]:
        raise NotImplementedError

    @abstractmethod
    async def delete_project(self, project_id: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def create_task(self, task: Task) -> Task:
        raise NotImplementedError

    @abstractmethod
    async def update_task(self, task_id: str, changes: dict[str, Any]) -> Optional[Task]:
        raise NotImplementedError

    @abstractmethod
    async def delete_task(self, task_id: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def replace_all(self, projects: list[Project], tasks: list[Task]) -> BoardSnapshot:
        raise NotImplementedError

    @abstractmethod
    async def export_document(self) -> dict[str, Any]:
        raise NotImplementedError

    @abstractmethod
    async def rebalance_tasks(self, project_id: str, done: bool = False) -> list[Task]:
        raise NotImplementedError

    @abstractmethod
    async def rebalance_projects(self) -> list[Project]:
        raise NotImplementedError

    async def aclose(self) -> None:
        return None


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------

class HttpBoardRemote(BoardRemote):
    """Board API client.

    Parameters
    ----------
    base_url:
        API root, e.g. ``http://127.0.0.1:4000/api``.
    timeout:
        Per-request timeout in seconds.
    transport:
        Optional httpx transport (``httpx.ASGITransport`` in tests).
    """

    def __init__(
        self,
        base_url: str = DEFAULT_API_URL,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "HttpBoardRemote":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        allow_missing: bool = False,
    ) -> Any:
        try:
            response = await self._client.request(method, path, json=json)
        except httpx.HTTPError as exc:
            raise RemoteError(f"{method} {path} failed: {exc}") from exc

        if response.status_code == 404 and allow_missing:
            return None
        if response.is_error:
            message = response.reason_phrase or f"HTTP {response.status_code}"
            try:
                body = response.json()
            except ValueError:
                body = None
            if isinstance(body, dict):
                message = str(body.get("error") or body.get("detail") or message)
            raise RemoteError(message, status_code=response.status_code)
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    async def get_all(self) -> BoardSnapshot:
        return _snapshot_from_payload(await self._request("GET", "/state"))

    async def create_project(self, project: Project) -> Project:
        return Project.from_dict(await self._request("POST", "/projects", json=project.to_dict()))

    async def update_project(self, project_id: str, changes: dict[str, Any]) -> Optional[Project]:
        data = await self._request("PATCH", f"/projects/{project_id}", json=changes, allow_missing=True)
        return Project.from_dict(data) if data is not None else None

    async def delete_project(self, project_id: str) -> None:
        await self._request("DELETE", f"/projects/{project_id}")

    async def create_task(self, task: Task) -> Task:
        return Task.from_dict(await self._request("POST", "/tasks", json=task.to_dict()))

    async def update_task(self, task_id: str, changes: dict[str, Any]) -> Optional[Task]:
        body: dict[str, Any] = {}
        for key, value in changes.items():
            if isinstance(value, Enum):
                value = value.value
            body[_TASK_WIRE_KEYS.get(key, key)] = value
        data = await self._request("PATCH", f"/tasks/{task_id}", json=body, allow_missing=True)
        return Task.from_dict(data) if data is not None else None

    async def delete_task(self, task_id: str) -> None:
        await self._request("DELETE", f"/tasks/{task_id}")

    async def replace_all(self, projects: list[Project], tasks: list[Task]) -> BoardSnapshot:
        payload = build_export_document(projects, tasks)
        return _snapshot_from_payload(await self._request("POST", "/import", json=payload))

    async def export_document(self) -> dict[str, Any]:
        return await self._request("GET", "/export")

    async def rebalance_tasks(self, project_id: str, done: bool = False) -> list[Task]:
        path = f"/projects/{project_id}/rebalance?done={str(done).lower()}"
        data = await self._request("POST", path, allow_missing=True)
        return [Task.from_dict(t) for t in (data or {}).get("items") or []]

    async def rebalance_projects(self) -> list[Project]:
        data = await self._request("POST", "/projects/rebalance")
        return [Project.from_dict(p) for p in (data or {}).get("items") or []]


# ---------------------------------------------------------------------------
# In-process
# ---------------------------------------------------------------------------

class LocalBoardRemote(BoardRemote):
    """Runs engine calls on a worker thread so the event loop stays responsive."""

    def __init__(self, engine: BoardEngine) -> None:
        self.engine = engine

    async def _call(self, fn: Callable[..., R], *args: Any) -> R:
        try:
            return await asyncio.to_thread(fn, *args)
        except (BoardValidationError, Timeout, OSError) as exc:
            logger.debug("Local board call {} failed: {}", getattr(fn, "__name__", fn), exc)
            raise RemoteError(str(exc)) from exc

    async def get_all(self) -> BoardSnapshot:
        return await self._call(self.engine.get_state)

    async def create_project(self, project: Project) -> Project:
        return await self._call(self.engine.create_project, project)

    async def update_project(self, project_id: str, changes: dict[str, Any]) -> Optional[Project]:
        return await self._call(self.engine.update_project, project_id, changes)

    async def delete_project(self, project_id: str) -> None:
        await self._call(self.engine.delete_project, project_id)

    async def create_task(self, task: Task) -> Task:
        return await self._call(self.engine.create_task, task)

    async def update_task(self, task_id: str, changes: dict[str, Any]) -> Optional[Task]:
        return await self._call(self.engine.update_task, task_id, changes)

    async def delete_task(self, task_id: str) -> None:
        await self._call(self.engine.delete_task, task_id)

    async def replace_all(self, projects: list[Project], tasks: list[Task]) -> BoardSnapshot:
        return await self._call(self.engine.replace_all, projects, tasks)

    async def export_document(self) -> dict[str, Any]:
        return await self._call(self.engine.export_document)

    async def rebalance_tasks(self, project_id: str, done: bool = False) -> list[Task]:
        return await self._call(self.engine.rebalance_tasks, project_id, done)

    async def rebalance_projects(self) -> list[Project]:
        return await self._call(self.engine.rebalance_projects)
