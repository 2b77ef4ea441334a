"""File-based board store with inter-process locking.

Projects and tasks live together in a single YAML document (``board.yaml``)
inside the project's ``.kanban/`` directory.  All reads and writes go through
:meth:`BoardStore.transaction`, which holds an exclusive file lock for the
whole load-mutate-save cycle.  Saves write a temp file and rename it over
the original, so a bulk replace is atomic from a reader's point of view.
"""

from __future__ import annotations

import os
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator, Optional

import yaml
from filelock import FileLock

from ..constants import BOARD_FILE, BOARD_LOCK_FILE, LOCK_TIMEOUT, STORE_SCHEMA_VERSION
from .model import BoardValidationError, Project, Task

_Loader = getattr(yaml, "CSafeLoader", yaml.SafeLoader)
_Dumper = getattr(yaml, "CSafeDumper", yaml.SafeDumper)


# ---------------------------------------------------------------------------
# Low-level I/O
# ---------------------------------------------------------------------------

def _load_raw(path: Path) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
    """Return the raw ``(projects, tasks)`` lists, empty when the file is missing."""
    if not path.exists():
        return [], []
    data = yaml.load(path.read_text(encoding="utf-8"), Loader=_Loader)
    if not isinstance(data, dict):
        return [], []
    projects = data.get("projects")
    tasks = data.get("tasks")
    return (
        [p for p in projects if isinstance(p, dict)] if isinstance(projects, list) else [],
        [t for t in tasks if isinstance(t, dict)] if isinstance(tasks, list) else [],
    )


def _save_raw(path: Path, projects: list[dict[str, Any]], tasks: list[dict[str, Any]]) -> None:
    """Atomically write the board document (write-tmp-then-rename)."""
    payload = {"version": STORE_SCHEMA_VERSION, "projects": projects, "tasks": tasks}
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=str(path.parent), suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            yaml.dump(payload, fh, Dumper=_Dumper, default_flow_style=False, sort_keys=False)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


@dataclass
class BoardSnapshot:
    projects: list[Project]
    tasks: list[Task]

    def to_dict(self) -> dict[str, Any]:
        return {
            "projects": [p.to_dict() for p in self.projects],
            "tasks": [t.to_dict() for t in self.tasks],
        }


# ---------------------------------------------------------------------------
# BoardStore
# ---------------------------------------------------------------------------

class BoardStore:
    """Locked, file-backed store for :class:`Project` and :class:`Task` records.

    Parameters
    ----------
    state_dir:
        Path to the ``.kanban/`` directory for the board.
    """

    def __init__(self, state_dir: Path) -> None:
        self._state_dir = state_dir
        self._store_path = state_dir / BOARD_FILE
        self._lock = FileLock(str(state_dir / BOARD_LOCK_FILE), timeout=LOCK_TIMEOUT)

    @property
    def path(self) -> Path:
        return self._store_path

    def _load(self) -> tuple[list[Project], list[Task]]:
        raw_projects, raw_tasks = _load_raw(self._store_path)
        return (
            [Project.from_dict(d) for d in raw_projects],
            [Task.from_dict(d) for d in raw_tasks],
        )

    def _save(self, projects: list[Project], tasks: list[Task]) -> None:
        _save_raw(
            self._store_path,
            [p.to_dict() for p in projects],
            [t.to_dict() for t in tasks],
        )

    @contextmanager
    def transaction(self) -> Iterator[_BoardTx]:
        """Acquire the lock, load the board, yield a transaction, save on exit.

        Usage::

            with store.transaction() as tx:
                tx.update_task("task-abc", {"title": "Renamed"})
                # saved on exit if anything changed
        """
        self._state_dir.mkdir(parents=True, exist_ok=True)
        with self._lock:
            projects, tasks = self._load()
            tx = _BoardTx(projects, tasks)
            yield tx
            if tx.dirty:
                self._save(tx.projects, tx.tasks)

    def read_snapshot(self) -> BoardSnapshot:
        with self.transaction() as tx:
            return BoardSnapshot(projects=tx.list_projects(), tasks=tx.list_tasks())


class _BoardTx:
    """In-memory transaction over the board's projects and tasks."""

    def __init__(self, projects: list[Project], tasks: list[Task]) -> None:
        self.projects = projects
        self.tasks = tasks
        self.dirty = False
        self._reindex()

    def _reindex(self) -> None:
        self._project_index: dict[str, int] = {p.id: i for i, p in enumerate(self.projects)}
        self._task_index: dict[str, int] = {t.id: i for i, t in enumerate(self.tasks)}

    # -- lookups ------------------------------------------------------------

    def get_project(self, project_id: str) -> Optional[Project]:
        idx = self._project_index.get(project_id)
        return self.projects[idx] if idx is not None else None

    def get_task(self, task_id: str) -> Optional[Task]:
        idx = self._task_index.get(task_id)
        return self.tasks[idx] if idx is not None else None

    def list_projects(self) -> list[Project]:
        return list(self.projects)

    def list_tasks(self) -> list[Task]:
        return list(self.tasks)

    def find_tasks(self, *, project_id: Optional[str] = None, done: Optional[bool] = None) -> list[Task]:
        out: list[Task] = []
        for t in self.tasks:
            if project_id is not None and t.project_id != project_id:
                continue
            if done is not None and t.done != done:
                continue
            out.append(t)
        return out

    # -- mutations ----------------------------------------------------------

    def add_project(self, project: Project) -> Project:
        if project.id in self._project_index:
            raise BoardValidationError(f"Project {project.id} already exists")
        self._project_index[project.id] = len(self.projects)
        self.projects.append(project)
        self.dirty = True
        return project

    def add_task(self, task: Task) -> Task:
        if task.id in self._task_index:
            raise BoardValidationError(f"Task {task.id} already exists")
        if task.project_id not in self._project_index:
            raise BoardValidationError(f"Project {task.project_id} does not exist")
        self._task_index[task.id] = len(self.tasks)
        self.tasks.append(task)
        self.dirty = True
        return task

    def update_project(self, project_id: str, changes: dict[str, Any]) -> Optional[Project]:
        project = self.get_project(project_id)
        if project is None:
            return None
        for key, value in changes.items():
            if hasattr(project, key):
                setattr(project, key, value)
        self.dirty = True
        return project

    def update_task(self, task_id: str, changes: dict[str, Any]) -> Optional[Task]:
        task = self.get_task(task_id)
        if task is None:
            return None
        for key, value in changes.items():
            if hasattr(task, key):
                setattr(task, key, value)
        self.dirty = True
        return task

    def remove_project(self, project_id: str) -> bool:
        """Physically remove a project and every task it owns."""
        if project_id not in self._project_index:
            return False
        self.projects = [p for p in self.projects if p.id != project_id]
        self.tasks = [t for t in self.tasks if t.project_id != project_id]
        self._reindex()
        self.dirty = True
        return True

    def remove_task(self, task_id: str) -> bool:
        if task_id not in self._task_index:
            return False
        self.tasks = [t for t in self.tasks if t.id != task_id]
        self._reindex()
        self.dirty = True
        return True

    def replace_all(self, projects: list[Project], tasks: list[Task]) -> None:
        """Swap the whole board for *projects* and *tasks*."""
        self.projects = list(projects)
        self.tasks = list(tasks)
        self._reindex()
        self.dirty = True
