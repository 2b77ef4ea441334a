"""Board model: projects and the ordered tasks they own.

Both entities carry a real-valued ``position``.  Projects are ordered among
all projects; tasks are ordered only inside their ``(project_id, done)``
bucket.  Timestamps are epoch milliseconds so the wire form matches the
versioned export document.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class BoardValidationError(ValueError):
    """A malformed entity, change set or import document.

    Raised before any state is touched.  ``issues`` carries the individual
    problems when more than one was found.
    """

    def __init__(self, message: str, issues: Optional[list[Any]] = None) -> None:
        super().__init__(message)
        self.issues: list[Any] = list(issues or [])


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class Priority(str, Enum):
    """Task priority shown on the card."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def now_ms() -> int:
    return int(time.time() * 1000)


def generate_id(prefix: str) -> str:
    """Client-side id: ``<prefix>-<10hex>``."""
    return f"{prefix}-{uuid.uuid4().hex[:10]}"


def _pick(data: dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in data:
            return data[key]
    return default


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _id_from(data: dict[str, Any], prefix: str) -> str:
    raw = data.get("id")
    return generate_id(prefix) if raw is None else str(raw)


def _created_at_from(data: dict[str, Any]) -> int:
    raw = _pick(data, "createdAt", "created_at", default=None)
    return now_ms() if raw is None else int(raw)


# ---------------------------------------------------------------------------
# Project
# ---------------------------------------------------------------------------

@dataclass
class Project:
    id: str = field(default_factory=lambda: generate_id("project"))
    title: str = ""
    position: float = 0.0
    created_at: int = field(default_factory=now_ms)

    @classmethod
    def validate_dict(cls, data: dict[str, Any]) -> list[str]:
        errors: list[str] = []
        if not isinstance(data, dict):
            return ["Expected a dict"]
        if not data.get("id"):
            errors.append("'id' is required")
        if not isinstance(data.get("title"), str) or not data.get("title"):
            errors.append("'title' is required and must be non-empty")
        if not _is_number(data.get("position")):
            errors.append("'position' must be a number")
        created = _pick(data, "createdAt", "created_at")
        if not _is_number(created):
            errors.append("'createdAt' must be a number")
        return errors

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "position": self.position,
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Project":
        return cls(
            id=_id_from(data, "project"),
            title=str(data.get("title", "")),
            position=float(data.get("position") or 0),
            created_at=_created_at_from(data),
        )


# ---------------------------------------------------------------------------
# Task
# ---------------------------------------------------------------------------

@dataclass
class Task:
    """A card on the board.

    ``completed_at`` is present iff ``done`` is true.  ``project_id`` never
    changes after creation; moving a task to another project is not an
    operation this board supports.
    """

    id: str = field(default_factory=lambda: generate_id("task"))
    project_id: str = ""
    title: str = ""
    description: Optional[str] = None
    priority: Priority = Priority.MEDIUM
    done: bool = False
    position: float = 0.0
    created_at: int = field(default_factory=now_ms)
    completed_at: Optional[int] = None

    @classmethod
    def validate_dict(cls, data: dict[str, Any]) -> list[str]:
        """Lightweight validation of a task dict (empty list = valid)."""
        errors: list[str] = []
        if not isinstance(data, dict):
            return ["Expected a dict"]
        if not data.get("id"):
            errors.append("'id' is required")
        if not _pick(data, "projectId", "project_id"):
            errors.append("'projectId' is required")
        if not isinstance(data.get("title"), str) or not data.get("title"):
            errors.append("'title' is required and must be non-empty")
        description = data.get("description")
        if description is not None and not isinstance(description, str):
            errors.append("'description' must be a string")
        priority = data.get("priority")
        if priority is not None:
            valid = {p.value for p in Priority}
            raw = priority.value if isinstance(priority, Priority) else priority
            if raw not in valid:
                errors.append(f"'priority' must be one of {sorted(valid)}, got '{priority}'")
        if "done" in data and not isinstance(data.get("done"), bool):
            errors.append("'done' must be a boolean")
        if not _is_number(data.get("position")):
            errors.append("'position' must be a number")
        if not _is_number(_pick(data, "createdAt", "created_at")):
            errors.append("'createdAt' must be a number")
        completed = _pick(data, "completedAt", "completed_at")
        if completed is not None and not _is_number(completed):
            errors.append("'completedAt' must be a number or null")
        return errors

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "projectId": self.project_id,
            "title": self.title,
            "description": self.description,
            "priority": self.priority.value,
            "done": self.done,
            "position": self.position,
            "createdAt": self.created_at,
            "completedAt": self.completed_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Task":
        """Deserialize from camelCase or snake_case keys, coercing the priority."""
        raw_priority = data.get("priority")
        try:
            priority = Priority(raw_priority) if raw_priority is not None else Priority.MEDIUM
        except ValueError:
            priority = Priority.MEDIUM
        description = data.get("description")
        completed = _pick(data, "completedAt", "completed_at", default=None)
        return cls(
            id=_id_from(data, "task"),
            project_id=str(_pick(data, "projectId", "project_id", default="")),
            title=str(data.get("title", "")),
            description=str(description) if description is not None else None,
            priority=priority,
            done=bool(data.get("done", False)),
            position=float(data.get("position") or 0),
            created_at=_created_at_from(data),
            completed_at=int(completed) if completed is not None else None,
        )

    @property
    def bucket(self) -> tuple[str, bool]:
        """The ``(project_id, done)`` partition this task is ordered within."""
        return (self.project_id, self.done)


def coerce_priority(value: Any) -> Priority:
    """Return *value* as a :class:`Priority` or raise :class:`BoardValidationError`."""
    if isinstance(value, Priority):
        return value
    try:
        return Priority(str(value))
    except ValueError:
        valid = sorted(p.value for p in Priority)
        raise BoardValidationError(f"'priority' must be one of {valid}, got '{value}'") from None
