"""Plan models for task graphs loaded from disk."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator


class PlanToolCall(BaseModel):
    """Tool invocation attached to a plan task."""

    name: str = Field(..., description="Tool name understood by the tool executor.")
    args: dict[str, Any] = Field(default_factory=dict, description="Arguments for the tool.")

    @field_validator("name")
    @classmethod
    def _normalize_name(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Tool name must not be empty")
        return normalized


class PlanTask(BaseModel):
    """A single task entry inside a plan."""

    id: str = Field(..., description="Task id, unique within the plan.")
    description: str = Field(..., description="What the task accomplishes.")
    active_form: str | None = Field(
        default=None,
        description="Label shown while the task runs; defaults to the description.",
    )
    dependencies: list[str] = Field(
        default_factory=list,
        description="Ids of tasks that must complete before this one may start.",
    )
    tool: PlanToolCall | None = Field(
        default=None,
        description="Optional tool call executed when the task runs.",
    )
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("id")
    @classmethod
    def _normalize_id(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Plan task id must not be empty")
        return normalized

    @field_validator("dependencies", mode="before")
    @classmethod
    def _ensure_list(cls, value: Any):  # type: ignore[override]
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        if isinstance(value, (list, tuple)):
            return list(value)
        raise TypeError("Dependencies must be a task id or a sequence of task ids")


class PlanDefinition(BaseModel):
    """An ordered set of tasks with dependencies between them."""

    id: str = Field(..., description="Unique identifier for the plan.")
    title: str = Field(..., description="Display title for the plan.")
    description: str = Field(default="", description="Longer explanation of the plan's goal.")
    tasks: list[PlanTask] = Field(default_factory=list)

    @field_validator("id")
    @classmethod
    def _normalize_id(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Plan id must not be empty")
        return normalized

    @model_validator(mode="after")
    def _check_task_ids(self) -> "PlanDefinition":
        seen: set[str] = set()
        for task in self.tasks:
            if task.id in seen:
                raise ValueError(f"Duplicate task id '{task.id}' in plan '{self.id}'")
            seen.add(task.id)
        for task in self.tasks:
            unknown = [dep for dep in task.dependencies if dep not in seen]
            if unknown:
                raise ValueError(
                    f"Task '{task.id}' depends on unknown tasks: {', '.join(unknown)}"
                )
        return self


__all__ = ["PlanDefinition", "PlanTask", "PlanToolCall"]
