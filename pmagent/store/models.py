from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

PhaseStatus = Literal["complete", "in_progress", "pending", "blocked"]
TaskStatus = Literal["backlog", "todo", "in_progress", "review", "done"]
TaskPriority = Literal["low", "medium", "high", "urgent"]
TaskCategory = Literal["feature", "bug", "refactor", "design", "docs", "test", "chore"]
MemoryCategory = Literal["decision", "preference", "context", "blocker", "insight", "todo"]

TASK_STATUSES = ("backlog", "todo", "in_progress", "review", "done")
TASK_PRIORITIES = ("low", "medium", "high", "urgent")
TASK_CATEGORIES = ("feature", "bug", "refactor", "design", "docs", "test", "chore")
PHASE_STATUSES = ("complete", "in_progress", "pending", "blocked")

MAX_TASKS_PER_BATCH = 50


def as_utc(ts: datetime) -> datetime:
    """`timestamp without time zone` columns come back naive; they hold UTC."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts


@dataclass(frozen=True)
class Project:
    id: str
    name: str
    slug: str
    description: Optional[str] = None
    # Stored as jsonb; kept as plain dicts so writes replace them wholesale.
    phases: List[Dict[str, Any]] = field(default_factory=list)
    blockers: List[Dict[str, Any]] = field(default_factory=list)
    updated_at: Optional[str] = None

    @property
    def revision(self) -> Optional[str]:
        return self.updated_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "description": self.description,
            "phases": list(self.phases or []),
            "blockers": list(self.blockers or []),
            "updated_at": self.updated_at,
        }


@dataclass(frozen=True)
class Task:
    id: str
    project_id: str
    title: str
    status: str = "backlog"
    priority: str = "medium"
    category: str = "feature"
    description: Optional[str] = None
    phase_id: Optional[str] = None
    phase_name: Optional[str] = None
    sow_deliverable: Optional[str] = None
    created_at: Optional[str] = None

    def to_tool_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "priority": self.priority,
            "category": self.category,
            "phase_id": self.phase_id,
            "phase_name": self.phase_name,
            "sow_deliverable": self.sow_deliverable,
        }


@dataclass(frozen=True)
class NewTask:
    title: str
    status: str = "backlog"
    priority: str = "medium"
    category: str = "feature"
    description: Optional[str] = None
    phase_id: Optional[str] = None
    phase_name: Optional[str] = None
    sow_deliverable: Optional[str] = None


@dataclass(frozen=True)
class TaskFilters:
    """Equality filters for task listing; None means no constraint. All set filters are ANDed."""

    status: Optional[str] = None
    priority: Optional[str] = None
    category: Optional[str] = None
    phase_id: Optional[str] = None


@dataclass(frozen=True)
class Note:
    id: str
    title: str
    category: Optional[str]
    content: Optional[str]
    is_pinned: bool = False
    created_at: Optional[str] = None


@dataclass(frozen=True)
class ChangelogEntry:
    type: str
    title: str
    description: Optional[str] = None
    project_id: Optional[str] = None
    previous_status: Optional[str] = None
    new_status: Optional[str] = None
    is_auto_generated: bool = True
    created_at: Optional[str] = None


@dataclass(frozen=True)
class FeedbackItem:
    id: str
    reason: Optional[str]
    status: str
    sub_option: Optional[str] = None
    priority: Optional[str] = None
    notes: Optional[str] = None
    page: Optional[str] = None
    created_at: Optional[str] = None


@dataclass(frozen=True)
class Memory:
    content: str
    category: str = "insight"
    expires_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    def is_active(self, now: datetime) -> bool:
        if self.expires_at is None:
            return True
        return as_utc(self.expires_at) > as_utc(now)
