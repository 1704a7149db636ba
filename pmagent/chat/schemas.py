"""Typed input records for each chat tool (parsed from the model's raw tool input)."""

from __future__ import annotations

from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from pmagent.store.models import MAX_TASKS_PER_BATCH, PhaseStatus, TaskCategory, TaskPriority, TaskStatus

_TASK_ENUMS = ("status", "priority", "category")


def _blank_to_none(v: Any) -> Any:
    if isinstance(v, str) and not v.strip():
        return None
    return v


def _id_str(v: Any) -> Any:
    # Models sometimes send phase ids as numbers even though the schema says string.
    if isinstance(v, bool):
        return v
    if isinstance(v, (int, float)):
        return str(int(v))
    return _blank_to_none(v)


class _ToolInput(BaseModel):
    model_config = ConfigDict(extra="ignore")


class ProjectOverviewInput(_ToolInput):
    include_tasks: bool = False
    include_notes: bool = False
    include_changelog: bool = False


class GetTasksInput(_ToolInput):
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    category: Optional[TaskCategory] = None
    phase_id: Optional[str] = None

    @field_validator("status", "priority", "category", mode="before")
    @classmethod
    def _blank_filters(cls, v: Any) -> Any:
        return _blank_to_none(v)

    @field_validator("phase_id", mode="before")
    @classmethod
    def _phase_id(cls, v: Any) -> Any:
        return _id_str(v)


class FeedbackSummaryInput(_ToolInput):
    pass


class DeliverableIn(_ToolInput):
    name: str
    status: PhaseStatus
    note: Optional[str] = None


class PhaseIn(_ToolInput):
    id: int = Field(ge=1)
    name: str
    status: PhaseStatus
    deliverables: List[DeliverableIn] = Field(default_factory=list)


class SetPhasesInput(_ToolInput):
    phases: List[PhaseIn]
    expected_revision: Optional[str] = None

    @field_validator("expected_revision", mode="before")
    @classmethod
    def _rev(cls, v: Any) -> Any:
        return _blank_to_none(v)


class BlockerIn(_ToolInput):
    item: str
    owner: str
    impact: str


class SetBlockersInput(_ToolInput):
    blockers: List[BlockerIn]
    expected_revision: Optional[str] = None

    @field_validator("expected_revision", mode="before")
    @classmethod
    def _rev(cls, v: Any) -> Any:
        return _blank_to_none(v)


class NewTaskIn(_ToolInput):
    title: str = Field(min_length=1)
    description: Optional[str] = None
    status: TaskStatus = "backlog"
    priority: TaskPriority = "medium"
    category: TaskCategory = "feature"
    phase_id: Optional[str] = None
    phase_name: Optional[str] = None
    sow_deliverable: Optional[str] = None

    @field_validator("title", mode="before")
    @classmethod
    def _title(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v

    @field_validator("description", "phase_name", "sow_deliverable", mode="before")
    @classmethod
    def _blank_text(cls, v: Any) -> Any:
        return _blank_to_none(v)

    @model_validator(mode="before")
    @classmethod
    def _defaults(cls, data: Any) -> Any:
        # Null/blank enum values fall back to the field default.
        if isinstance(data, dict):
            data = {k: v for k, v in data.items() if not (k in _TASK_ENUMS and _blank_to_none(v) is None)}
        return data

    @field_validator("phase_id", mode="before")
    @classmethod
    def _phase_id(cls, v: Any) -> Any:
        return _id_str(v)


class CreateTasksInput(_ToolInput):
    tasks: List[NewTaskIn] = Field(min_length=1, max_length=MAX_TASKS_PER_BATCH)


class TaskUpdateIn(_ToolInput):
    task_id: str = Field(min_length=1)
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    # phase fields distinguish "absent" (untouched) from explicit null (cleared) via model_fields_set.
    phase_id: Optional[str] = None
    phase_name: Optional[str] = None

    @field_validator("task_id", mode="before")
    @classmethod
    def _task_id(cls, v: Any) -> Any:
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v.strip() if isinstance(v, str) else v

    @field_validator("status", "priority", mode="before")
    @classmethod
    def _blank_enums(cls, v: Any) -> Any:
        return _blank_to_none(v)

    @field_validator("phase_id", mode="before")
    @classmethod
    def _phase_id(cls, v: Any) -> Any:
        if v is None or (isinstance(v, str) and not v.strip()):
            return v
        return _id_str(v)

    def changed_values(self) -> dict:
        values: dict = {}
        if self.status:
            values["status"] = self.status
        if self.priority:
            values["priority"] = self.priority
        if "phase_id" in self.model_fields_set:
            values["phase_id"] = self.phase_id
        if "phase_name" in self.model_fields_set:
            values["phase_name"] = self.phase_name
        return values
