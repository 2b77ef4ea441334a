"""Versioned JSON export/import document for the whole board.

Document shape::

    {"version": 1, "exportedAt": <epoch-ms>, "projects": [...], "tasks": [...]}

Import is all-or-nothing: a document that fails validation is rejected
before anything is replaced.
"""

from __future__ import annotations

import json
from typing import Any, Literal, Optional, Sequence, Union

from pydantic import BaseModel, Field, ValidationError

from ..constants import EXPORT_VERSION
from .model import BoardValidationError, Project, Task, now_ms


class ProjectRecord(BaseModel):
    id: str
    title: str = Field(min_length=1)
    position: float
    createdAt: int


class TaskRecord(BaseModel):
    id: str
    projectId: str
    title: str = Field(min_length=1)
    description: Optional[str] = None
    priority: Literal["low", "medium", "high"]
    done: bool
    position: float
    createdAt: int
    completedAt: Optional[int] = None


class ExportDocument(BaseModel):
    version: Literal[1]
    exportedAt: int
    projects: list[ProjectRecord]
    tasks: list[TaskRecord]

    def to_entities(self) -> tuple[list[Project], list[Task]]:
        projects = [Project.from_dict(p.model_dump()) for p in self.projects]
        tasks = [Task.from_dict(t.model_dump()) for t in self.tasks]
        return projects, tasks


def parse_export_document(data: Union[str, bytes, dict[str, Any]]) -> ExportDocument:
    """Validate an import payload (raw JSON text or an already-decoded dict)."""
    if isinstance(data, (str, bytes)):
        try:
            data = json.loads(data)
        except json.JSONDecodeError as exc:
            raise BoardValidationError(f"Import document is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise BoardValidationError("Import document must be a JSON object")
    version = data.get("version")
    if version != EXPORT_VERSION:
        raise BoardValidationError(
            f"Unsupported export version {version!r}; expected {EXPORT_VERSION}"
        )
    try:
        return ExportDocument.model_validate(data)
    except ValidationError as exc:
        raise BoardValidationError(
            f"Invalid import document ({exc.error_count()} issue(s))",
            issues=exc.errors(include_url=False),
        ) from exc


def build_export_document(
    projects: Sequence[Project],
    tasks: Sequence[Task],
    exported_at: Optional[int] = None,
) -> dict[str, Any]:
    return {
        "version": EXPORT_VERSION,
        "exportedAt": exported_at if exported_at is not None else now_ms(),
        "projects": [p.to_dict() for p in projects],
        "tasks": [t.to_dict() for t in tasks],
    }


def summarize_export(projects: Sequence[Project], tasks: Sequence[Task]) -> dict[str, Any]:
    """Counts shown before an export is written or an import is confirmed."""
    return {
        "projectCount": len(projects),
        "taskCount": len(tasks),
        "byProject": [
            {
                "projectId": project.id,
                "tasks": sum(1 for t in tasks if t.project_id == project.id),
            }
            for project in projects
        ],
    }
