"""Read-side projection of the tasks visible on the board."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Iterable, Literal, Union

from .model import BoardValidationError, Priority, Task

StatusFilter = Literal["all", "active", "done"]
PriorityFilter = Union[Literal["all"], str]

_STATUS_VALUES = ("all", "active", "done")


@dataclass(frozen=True)
class TaskFilters:
    query: str = ""
    priority: PriorityFilter = "all"
    status: StatusFilter = "all"

    def merged(self, **partial: Any) -> "TaskFilters":
        """Return a copy with the given fields replaced, validating the values."""
        unknown = set(partial) - {"query", "priority", "status"}
        if unknown:
            raise BoardValidationError(f"Unknown filter fields: {sorted(unknown)}")
        updated = replace(self, **partial)
        if updated.priority != "all" and updated.priority not in {p.value for p in Priority}:
            raise BoardValidationError(f"Unknown priority filter '{updated.priority}'")
        if updated.status not in _STATUS_VALUES:
            raise BoardValidationError(f"Unknown status filter '{updated.status}'")
        return updated


def apply_task_filters(tasks: Iterable[Task], filters: TaskFilters) -> list[Task]:
    out: list[Task] = []
    query = filters.query.lower()
    for task in tasks:
        if query:
            haystack = f"{task.title} {task.description or ''}".lower()
            if query not in haystack:
                continue
        if filters.priority != "all" and task.priority.value != filters.priority:
            continue
        if filters.status == "active" and task.done:
            continue
        if filters.status == "done" and not task.done:
            continue
        out.append(task)
    return out


def visible_tasks(tasks: Iterable[Task], project_id: str, filters: TaskFilters) -> list[Task]:
    """Filtered tasks of one project in ascending position order."""
    scoped = [t for t in tasks if t.project_id == project_id]
    return sorted(apply_task_filters(scoped, filters), key=lambda t: t.position)
