"""Board engine: the durable, authoritative side of the board.

Wraps :class:`BoardStore` with validation, cascading deletes, the atomic
bulk replace used by import, and explicit bucket renumbering.  Clients hold
an optimistic copy of this state and resynchronise from :meth:`get_state`
whenever one of their writes fails.
"""

from __future__ import annotations

from dataclasses import replace
from pathlib import Path
from typing import Any, Iterable, Optional

from loguru import logger

from .backup import build_export_document, parse_export_document, summarize_export
from .model import BoardValidationError, Project, Task, coerce_priority, now_ms
from .ordering import needs_rebalance, recalc_positions
from .store import BoardSnapshot, BoardStore

PROJECT_UPDATE_FIELDS = frozenset({"title", "position"})
TASK_UPDATE_FIELDS = frozenset({"title", "description", "priority", "done", "position", "completed_at"})


def _check_title(changes: dict[str, Any]) -> None:
    if "title" in changes:
        title = changes["title"]
        if not isinstance(title, str) or not title.strip():
            raise BoardValidationError("'title' must be non-empty")


def _check_position(changes: dict[str, Any]) -> None:
    if "position" in changes:
        value = changes["position"]
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise BoardValidationError("'position' must be a number")
        changes["position"] = float(value)


def _check_completed_at(changes: dict[str, Any]) -> None:
    value = changes.get("completed_at")
    if value is not None and (isinstance(value, bool) or not isinstance(value, (int, float))):
        raise BoardValidationError("'completedAt' must be a number or null")


def _sync_completion(current: Task, changes: dict[str, Any]) -> None:
    """Keep ``completed_at`` set exactly when the task is done.

    Only change sets touching ``done`` or ``completed_at`` are adjusted.
    """
    if "done" not in changes and "completed_at" not in changes:
        return
    if not changes.get("done", current.done):
        changes["completed_at"] = None
    elif changes.get("completed_at") is None:
        keep = current.done and current.completed_at is not None
        changes["completed_at"] = current.completed_at if keep else now_ms()


def _normalize_completion(task: Task) -> Task:
    if task.done and task.completed_at is None:
        return replace(task, completed_at=now_ms())
    if not task.done and task.completed_at is not None:
        return replace(task, completed_at=None)
    return task


def _sorted_projects(projects: Iterable[Project]) -> list[Project]:
    return sorted(projects, key=lambda p: p.position)


def _sorted_tasks(tasks: Iterable[Task]) -> list[Task]:
    return sorted(tasks, key=lambda t: (t.project_id, t.position))


class BoardEngine:
    """Validated CRUD, bulk replace and export/import over one board.

    Parameters
    ----------
    state_dir:
        Path to the ``.kanban/`` directory.
    """

    def __init__(self, state_dir: Path) -> None:
        self.store = BoardStore(state_dir)
        self._state_dir = state_dir

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_state(self) -> BoardSnapshot:
        """Projects by position, tasks by project then position."""
        snap = self.store.read_snapshot()
        return BoardSnapshot(projects=_sorted_projects(snap.projects), tasks=_sorted_tasks(snap.tasks))

    def get_project(self, project_id: str) -> Optional[Project]:
        with self.store.transaction() as tx:
            return tx.get_project(project_id)

    def get_task(self, task_id: str) -> Optional[Task]:
        with self.store.transaction() as tx:
            return tx.get_task(task_id)

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    def create_project(self, project: Project) -> Project:
        errors = Project.validate_dict(project.to_dict())
        if errors:
            raise BoardValidationError("; ".join(errors), issues=errors)
        with self.store.transaction() as tx:
            tx.add_project(project)
        logger.info("Created project {}: {}", project.id, project.title)
        return project

    def update_project(self, project_id: str, changes: dict[str, Any]) -> Optional[Project]:
        """Apply a partial update (title/position).  Returns None if missing."""
        unknown = set(changes) - PROJECT_UPDATE_FIELDS
        if unknown:
            raise BoardValidationError(f"Fields cannot be updated on a project: {sorted(unknown)}")
        changes = dict(changes)
        _check_title(changes)
        _check_position(changes)
        with self.store.transaction() as tx:
            project = tx.update_project(project_id, changes)
            if project is not None and "position" in changes and needs_rebalance(tx.projects):
                logger.warning("Project positions are nearly exhausted; consider rebalancing")
        return project

    def delete_project(self, project_id: str) -> None:
        """Remove a project and its tasks.  Unknown ids are ignored."""
        with self.store.transaction() as tx:
            removed = tx.remove_project(project_id)
        if removed:
            logger.info("Deleted project {} and its tasks", project_id)

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def create_task(self, task: Task) -> Task:
        errors = Task.validate_dict(task.to_dict())
        if errors:
            raise BoardValidationError("; ".join(errors), issues=errors)
        task = _normalize_completion(task)
        with self.store.transaction() as tx:
            tx.add_task(task)
        logger.info("Created task {} in {}: {}", task.id, task.project_id, task.title)
        return task

    def update_task(self, task_id: str, changes: dict[str, Any]) -> Optional[Task]:
        """Apply a partial update.  Returns the updated task or None if missing."""
        unknown = set(changes) - TASK_UPDATE_FIELDS
        if unknown:
            raise BoardValidationError(f"Fields cannot be updated on a task: {sorted(unknown)}")
        changes = dict(changes)
        _check_title(changes)
        _check_position(changes)
        if "priority" in changes:
            changes["priority"] = coerce_priority(changes["priority"])
        if "done" in changes and not isinstance(changes["done"], bool):
            raise BoardValidationError("'done' must be a boolean")
        _check_completed_at(changes)

        with self.store.transaction() as tx:
            current = tx.get_task(task_id)
            if current is not None:
                _sync_completion(current, changes)
            task = tx.update_task(task_id, changes)
            if task is not None and "position" in changes:
                bucket = tx.find_tasks(project_id=task.project_id, done=task.done)
                if needs_rebalance(bucket):
                    logger.warning(
                        "Task positions in project {} ({}) are nearly exhausted; consider rebalancing",
                        task.project_id,
                        "done" if task.done else "active",
                    )
        return task

    def delete_task(self, task_id: str) -> None:
        with self.store.transaction() as tx:
            tx.remove_task(task_id)

    # ------------------------------------------------------------------
    # Bulk replace / export / import
    # ------------------------------------------------------------------

    def replace_all(self, projects: list[Project], tasks: list[Task]) -> BoardSnapshot:
        """Atomically replace the whole board.  Validates before touching the store."""
        project_ids = [p.id for p in projects]
        if len(set(project_ids)) != len(project_ids):
            raise BoardValidationError("Duplicate project ids in replacement set")
        task_ids = [t.id for t in tasks]
        if len(set(task_ids)) != len(task_ids):
            raise BoardValidationError("Duplicate task ids in replacement set")
        known = set(project_ids)
        dangling = sorted({t.project_id for t in tasks if t.project_id not in known})
        if dangling:
            raise BoardValidationError(f"Tasks reference unknown projects: {dangling}")
        tasks = [_normalize_completion(t) for t in tasks]

        with self.store.transaction() as tx:
            tx.replace_all(projects, tasks)
        logger.info("Replaced board with {} project(s) and {} task(s)", len(projects), len(tasks))
        return self.get_state()

    def export_document(self) -> dict[str, Any]:
        state = self.get_state()
        return build_export_document(state.projects, state.tasks)

    def export_summary(self) -> dict[str, Any]:
        state = self.get_state()
        return summarize_export(state.projects, state.tasks)

    def import_document(self, data: Any) -> dict[str, Any]:
        """Validate and import an export document; returns the new export document."""
        document = parse_export_document(data)
        projects, tasks = document.to_entities()
        state = self.replace_all(projects, tasks)
        return build_export_document(state.projects, state.tasks)

    # ------------------------------------------------------------------
    # Rebalancing
    # ------------------------------------------------------------------

    def rebalance_tasks(self, project_id: str, done: bool = False) -> list[Task]:
        """Renumber one ``(project, done)`` bucket to multiples of the gap, keeping order."""
        with self.store.transaction() as tx:
            if tx.get_project(project_id) is None:
                return []
            bucket = sorted(tx.find_tasks(project_id=project_id, done=done), key=lambda t: t.position)
            renumbered = recalc_positions(bucket)
            for task in renumbered:
                tx.update_task(task.id, {"position": task.position})
        logger.info("Rebalanced {} task(s) in project {}", len(renumbered), project_id)
        return renumbered

    def rebalance_projects(self) -> list[Project]:
        with self.store.transaction() as tx:
            renumbered = recalc_positions(_sorted_projects(tx.projects))
            for project in renumbered:
                tx.update_project(project.id, {"position": project.position})
        logger.info("Rebalanced {} project(s)", len(renumbered))
        return renumbered
