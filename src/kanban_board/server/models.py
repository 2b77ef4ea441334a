"""Pydantic request/response models for the board API."""

from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, model_validator

from ..board.backup import ProjectRecord, TaskRecord

PriorityValue = Literal["low", "medium", "high"]


class CreateProjectRequest(ProjectRecord):
    """Full project record; the id is chosen by the client."""


class CreateTaskRequest(TaskRecord):
    """Full task record; the id is chosen by the client."""


class _PartialUpdate(BaseModel):
    @model_validator(mode="after")
    def _require_one_field(self) -> "_PartialUpdate":
        if not self.model_fields_set:
            raise ValueError("Provide at least one field to update")
        return self

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class UpdateProjectRequest(_PartialUpdate):
    title: Optional[str] = Field(default=None, min_length=1)
    position: Optional[float] = None


class UpdateTaskRequest(_PartialUpdate):
    title: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    priority: Optional[PriorityValue] = None
    done: Optional[bool] = None
    position: Optional[float] = None
    completedAt: Optional[int] = None

    def changes(self) -> dict[str, Any]:
        data = super().changes()
        if "completedAt" in data:
            data["completed_at"] = data.pop("completedAt")
        return data


class StateResponse(BaseModel):
    projects: list[dict[str, Any]]
    tasks: list[dict[str, Any]]


class HealthResponse(BaseModel):
    ok: bool
    timestamp: int


class RebalanceResponse(BaseModel):
    updated: int
    items: list[dict[str, Any]]
