"""Optimistic client-side board.

Every mutator applies its effect to the in-memory :class:`BoardState`
immediately, schedules the matching remote write as a background task, and
returns the new state.  When the write succeeds the canonical record from
the remote replaces the locally synthesised one.  When it fails the local
state is thrown away and reloaded from the remote, and an error notice is
emitted; there is no per-operation undo or retry.

Each mutation takes a fresh token for the entity it touches.  A
reconciliation is merged only if its token is still the newest for that
entity, so a slow response cannot overwrite a later local edit.
"""

from __future__ import annotations

import asyncio
import itertools
import json
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Optional, TypeVar

from loguru import logger

from ..board.backup import parse_export_document, summarize_export
from ..board.filters import TaskFilters, visible_tasks
from ..board.model import BoardValidationError, Project, Task, coerce_priority, now_ms
from ..board.ordering import (
    complete_task,
    compute_project_position_after_reorder,
    compute_task_position_after_reorder,
    next_position,
    next_task_position,
    position_for_status_change,
)
from .remote import BoardRemote, RemoteError

R = TypeVar("R")

TASK_EDIT_FIELDS = frozenset({"title", "description", "priority"})


@dataclass(frozen=True)
class Notice:
    """A user-visible message (``level`` is ``"success"`` or ``"error"``)."""

    level: str
    message: str


@dataclass(frozen=True)
class BoardState:
    ready: bool = False
    projects: tuple[Project, ...] = ()
    tasks: tuple[Task, ...] = ()
    filters: TaskFilters = field(default_factory=TaskFilters)
    selected_task_id: Optional[str] = None
    last_used_project_id: Optional[str] = None

    def ordered_projects(self) -> list[Project]:
        return sorted(self.projects, key=lambda p: p.position)

    def project(self, project_id: str) -> Optional[Project]:
        return next((p for p in self.projects if p.id == project_id), None)

    def task(self, task_id: str) -> Optional[Task]:
        return next((t for t in self.tasks if t.id == task_id), None)


def _require_title(title: Any) -> str:
    if not isinstance(title, str) or not title.strip():
        raise BoardValidationError("'title' must be non-empty")
    return title.strip()


class OptimisticBoard:
    """State container for one client session.

    Parameters
    ----------
    remote:
        The persistence collaborator that owns the durable board.
    notify:
        Optional callback receiving every :class:`Notice`.

    Mutators must be called from a running event loop; the remote write is
    scheduled on it.  Without one they raise ``RuntimeError`` and leave the
    state untouched.  Use :meth:`drain` to wait for in-flight writes.
    """

    def __init__(self, remote: BoardRemote, notify: Optional[Callable[[Notice], None]] = None) -> None:
        self.remote = remote
        self.notices: list[Notice] = []
        self._notify = notify
        self._state = BoardState()
        self._pending: set[asyncio.Task[None]] = set()
        self._tokens: dict[str, int] = {}
        self._counter = itertools.count(1)

    @property
    def state(self) -> BoardState:
        return self._state

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _commit(self, **changes: Any) -> BoardState:
        self._state = replace(self._state, **changes)
        return self._state

    def _emit(self, level: str, message: str) -> None:
        notice = Notice(level=level, message=message)
        self.notices.append(notice)
        if level == "error":
            logger.warning("{}", message)
        else:
            logger.info("{}", message)
        if self._notify is not None:
            self._notify(notice)

    def _dispatch(
        self,
        entity_id: str,
        call: Callable[[], Awaitable[R]],
        *,
        failure: str,
        success: Optional[str] = None,
        merge: Optional[Callable[[R], None]] = None,
        **changes: Any,
    ) -> BoardState:
        """Commit ``changes`` locally and schedule ``call`` on the running loop."""
        loop = asyncio.get_running_loop()
        state = self._commit(**changes)
        token = next(self._counter)
        self._tokens[entity_id] = token
        task = loop.create_task(self._reconcile(entity_id, token, call, failure, success, merge))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return state

    async def _reconcile(
        self,
        entity_id: str,
        token: int,
        call: Callable[[], Awaitable[R]],
        failure: str,
        success: Optional[str],
        merge: Optional[Callable[[R], None]],
    ) -> None:
        try:
            result = await call()
        except RemoteError as exc:
            logger.opt(exception=exc).error("Remote write for {} failed; reloading board", entity_id)
            if self._tokens.get(entity_id) == token:
                del self._tokens[entity_id]
            self._emit("error", failure)
            await self.load()
            return

        if self._tokens.get(entity_id) != token:
            logger.debug("Ignoring stale reconciliation for {} (token {})", entity_id, token)
            return
        del self._tokens[entity_id]
        if success:
            self._emit("success", success)
        if merge is not None:
            merge(result)

    def _merge_project(self, project_id: str, saved: Optional[Project]) -> None:
        if saved is None:
            self._commit(projects=tuple(p for p in self._state.projects if p.id != project_id))
            return
        self._commit(projects=self._with_project(saved))

    def _merge_task(self, task_id: str, saved: Optional[Task]) -> None:
        if saved is None:
            self._commit(tasks=tuple(t for t in self._state.tasks if t.id != task_id))
            return
        self._commit(tasks=self._with_task(saved))

    def _with_task(self, updated: Task) -> tuple[Task, ...]:
        return tuple(updated if t.id == updated.id else t for t in self._state.tasks)

    def _with_project(self, updated: Project) -> tuple[Project, ...]:
        return tuple(updated if p.id == updated.id else p for p in self._state.projects)

    async def drain(self) -> None:
        """Wait until every scheduled remote write has been reconciled."""
        while self._pending:
            await asyncio.gather(*list(self._pending))

    async def aclose(self) -> None:
        await self.drain()
        await self.remote.aclose()

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def load(self) -> BoardState:
        """Replace local collections with the remote's canonical board."""
        try:
            snapshot = await self.remote.get_all()
        except RemoteError as exc:
            logger.error("Could not load board: {}", exc)
            self._emit("error", "Could not load the board")
            return self._state
        projects = tuple(sorted(snapshot.projects, key=lambda p: p.position))
        tasks = tuple(snapshot.tasks)
        selected = self._state.selected_task_id
        if selected is not None and not any(t.id == selected for t in tasks):
            selected = None
        return self._commit(
            ready=True,
            projects=projects,
            tasks=tasks,
            selected_task_id=selected,
            last_used_project_id=projects[0].id if projects else None,
        )

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    def add_project(self, title: str) -> BoardState:
        project = Project(
            title=_require_title(title),
            position=next_position(self._state.ordered_projects()),
            created_at=now_ms(),
        )
        return self._dispatch(
            project.id,
            lambda: self.remote.create_project(project),
            failure="Could not create the project",
            success="Project created",
            merge=lambda saved: self._merge_project(project.id, saved),
            projects=self._state.projects + (project,),
            last_used_project_id=project.id,
        )

    def rename_project(self, project_id: str, title: str) -> BoardState:
        title = _require_title(title)
        current = self._state.project(project_id)
        if current is None:
            return self._state
        return self._dispatch(
            project_id,
            lambda: self.remote.update_project(project_id, {"title": title}),
            failure="Could not update the project",
            success="Project updated",
            merge=lambda saved: self._merge_project(project_id, saved),
            projects=self._with_project(replace(current, title=title)),
        )

    def delete_project(self, project_id: str) -> BoardState:
        if self._state.project(project_id) is None:
            return self._state
        remaining = tuple(t for t in self._state.tasks if t.project_id != project_id)
        selected = self._state.selected_task_id
        if selected is not None and not any(t.id == selected for t in remaining):
            selected = None
        return self._dispatch(
            project_id,
            lambda: self.remote.delete_project(project_id),
            failure="Could not delete the project",
            success="Project deleted",
            projects=tuple(p for p in self._state.projects if p.id != project_id),
            tasks=remaining,
            selected_task_id=selected,
        )

    def reorder_projects(self, active_id: str, over_id: str) -> BoardState:
        position = compute_project_position_after_reorder(self._state.projects, active_id, over_id)
        if position is None:
            return self._state
        current = self._state.project(active_id)
        return self._dispatch(
            active_id,
            lambda: self.remote.update_project(active_id, {"position": position}),
            failure="Could not reorder the project",
            merge=lambda saved: self._merge_project(active_id, saved),
            projects=self._with_project(replace(current, position=position)),
        )

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def add_task(
        self,
        project_id: str,
        title: str,
        description: Optional[str] = None,
        priority: str = "medium",
    ) -> BoardState:
        title = _require_title(title)
        if self._state.project(project_id) is None:
            raise BoardValidationError(f"Project {project_id} does not exist")
        task = Task(
            project_id=project_id,
            title=title,
            description=description,
            priority=coerce_priority(priority),
            done=False,
            position=next_task_position(self._state.tasks, project_id),
            created_at=now_ms(),
        )
        return self._dispatch(
            task.id,
            lambda: self.remote.create_task(task),
            failure="Could not create the task",
            success="Task created",
            merge=lambda saved: self._merge_task(task.id, saved),
            tasks=self._state.tasks + (task,),
            last_used_project_id=project_id,
        )

    def update_task(self, task_id: str, **changes: Any) -> BoardState:
        """Edit title, description and/or priority of a task."""
        unknown = set(changes) - TASK_EDIT_FIELDS
        if unknown:
            raise BoardValidationError(f"Fields cannot be edited on a task: {sorted(unknown)}")
        if "title" in changes:
            changes["title"] = _require_title(changes["title"])
        if "priority" in changes:
            changes["priority"] = coerce_priority(changes["priority"])
        current = self._state.task(task_id)
        if current is None or not changes:
            return self._state
        return self._dispatch(
            task_id,
            lambda: self.remote.update_task(task_id, dict(changes)),
            failure="Could not update the task",
            success="Task updated",
            merge=lambda saved: self._merge_task(task_id, saved),
            tasks=self._with_task(replace(current, **changes)),
        )

    def delete_task(self, task_id: str) -> BoardState:
        if self._state.task(task_id) is None:
            return self._state
        selected = self._state.selected_task_id
        return self._dispatch(
            task_id,
            lambda: self.remote.delete_task(task_id),
            failure="Could not delete the task",
            success="Task deleted",
            tasks=tuple(t for t in self._state.tasks if t.id != task_id),
            selected_task_id=None if selected == task_id else selected,
        )

    def reorder_tasks(self, active_id: str, over_id: str) -> BoardState:
        position = compute_task_position_after_reorder(self._state.tasks, active_id, over_id)
        if position is None:
            return self._state
        return self._dispatch(
            active_id,
            lambda: self.remote.update_task(active_id, {"position": position}),
            failure="Could not reorder the task",
            merge=lambda saved: self._merge_task(active_id, saved),
            tasks=self._with_task(replace(self._state.task(active_id), position=position)),
        )

    def toggle_task(self, task_id: str) -> BoardState:
        """Flip ``done`` and move the task to the head/tail of its new bucket."""
        current = self._state.task(task_id)
        if current is None:
            return self._state
        toggled = complete_task(current, not current.done)
        updated = replace(toggled, position=position_for_status_change(self._state.tasks, current, toggled.done))
        changes = {
            "done": updated.done,
            "completed_at": updated.completed_at,
            "position": updated.position,
        }
        return self._dispatch(
            task_id,
            lambda: self.remote.update_task(task_id, changes),
            failure="Could not update the task status",
            merge=lambda saved: self._merge_task(task_id, saved),
            tasks=self._with_task(updated),
        )

    # ------------------------------------------------------------------
    # View state
    # ------------------------------------------------------------------

    def set_filters(self, **partial: Any) -> BoardState:
        return self._commit(filters=self._state.filters.merged(**partial))

    def set_search_query(self, query: str) -> BoardState:
        return self.set_filters(query=query)

    def set_selection(self, task_id: Optional[str] = None) -> BoardState:
        return self._commit(selected_task_id=task_id)

    def visible_tasks(self, project_id: str) -> list[Task]:
        return visible_tasks(self._state.tasks, project_id, self._state.filters)

    def get_project(self, project_id: str) -> Optional[Project]:
        return self._state.project(project_id)

    # ------------------------------------------------------------------
    # Rebalancing
    # ------------------------------------------------------------------

    async def rebalance_tasks(self, project_id: str, done: bool = False) -> BoardState:
        """Renumber one task bucket on the remote, then reload.

        In-flight writes are drained first so their positions are included.
        """
        await self.drain()
        try:
            await self.remote.rebalance_tasks(project_id, done)
        except RemoteError:
            self._emit("error", "Could not rebalance the tasks")
            raise
        return await self.load()

    async def rebalance_projects(self) -> BoardState:
        await self.drain()
        try:
            await self.remote.rebalance_projects()
        except RemoteError:
            self._emit("error", "Could not rebalance the projects")
            raise
        return await self.load()

    # ------------------------------------------------------------------
    # Backup
    # ------------------------------------------------------------------

    def summary(self) -> dict[str, Any]:
        return summarize_export(self._state.ordered_projects(), list(self._state.tasks))

    async def export_backup(self) -> str:
        try:
            document = await self.remote.export_document()
        except RemoteError:
            self._emit("error", "Could not export the board")
            raise
        return json.dumps(document, indent=2)

    async def import_backup(self, payload: str) -> BoardState:
        """Replace the whole board with an export document.

        The document is validated before anything changes; an invalid one
        raises :class:`BoardValidationError` and leaves the board untouched.
        """
        try:
            document = parse_export_document(payload)
        except BoardValidationError as exc:
            self._emit("error", f"Import rejected: {exc}")
            raise
        projects, tasks = document.to_entities()
        try:
            snapshot = await self.remote.replace_all(projects, tasks)
        except RemoteError:
            self._emit("error", "Could not import the backup")
            await self.load()
            raise
        self._tokens.clear()
        ordered = tuple(sorted(snapshot.projects, key=lambda p: p.position))
        state = self._commit(
            ready=True,
            projects=ordered,
            tasks=tuple(snapshot.tasks),
            selected_task_id=None,
            last_used_project_id=ordered[0].id if ordered else None,
        )
        self._emit("success", "Backup imported")
        return state
