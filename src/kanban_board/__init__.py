"""Provide the public `kanban_board` package exports."""

from __future__ import annotations

from .board.engine import BoardEngine
from .board.model import BoardValidationError, Priority, Project, Task
from .client import OptimisticBoard

__all__ = ["BoardEngine", "BoardValidationError", "OptimisticBoard", "Priority", "Project", "Task"]
