"""
Static catalog of the tools the project assistant may call.

`TOOL_SPECS` is the single source of truth: the dispatcher only accepts these
names, the model receives exactly these specs, and the system prompt's capability
section is generated from `TOOL_DESCRIPTIONS`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List

from pmagent.store.models import MAX_TASKS_PER_BATCH, PHASE_STATUSES, TASK_CATEGORIES, TASK_PRIORITIES, TASK_STATUSES


@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    input_schema: Dict[str, Any]
    writes: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "description": self.description, "input_schema": self.input_schema}


_STATUS = list(TASK_STATUSES)
_PRIORITY = list(TASK_PRIORITIES)
_CATEGORY = list(TASK_CATEGORIES)
_PHASE_STATUS = list(PHASE_STATUSES)

_EXPECTED_REVISION = {
    "type": "string",
    "description": (
        "Optional: the `revision` returned by get_project_overview. "
        "If the project changed since then, the write is refused so you can re-read and merge."
    ),
}


TOOL_SPECS: List[ToolSpec] = [
    # Read tools
    ToolSpec(
        name="get_project_overview",
        description=(
            "Get a comprehensive overview of the current project state. Returns phases, blockers, "
            "task statistics by status and phase, the project revision, and optionally the full task list, "
            "notes, and changelog. Call this first to understand the project before making changes."
        ),
        input_schema={
            "type": "object",
            "properties": {
                "include_tasks": {
                    "type": "boolean",
                    "description": "Include the full task list (default: false, just returns stats)",
                },
                "include_notes": {"type": "boolean", "description": "Include project notes (default: false)"},
                "include_changelog": {
                    "type": "boolean",
                    "description": "Include recent changelog entries (default: false)",
                },
            },
            "required": [],
        },
    ),
    ToolSpec(
        name="get_tasks",
        description=(
            "Query tasks with optional filters. Use this when you need to find specific tasks by status, "
            "priority, phase, or category. Filters are combined with AND."
        ),
        input_schema={
            "type": "object",
            "properties": {
                "status": {"type": "string", "enum": _STATUS, "description": "Filter by task status"},
                "priority": {"type": "string", "enum": _PRIORITY, "description": "Filter by priority"},
                "category": {"type": "string", "enum": _CATEGORY, "description": "Filter by category"},
                "phase_id": {"type": "string", "description": 'Filter by phase ID (e.g. "1", "2")'},
            },
            "required": [],
        },
    ),
    ToolSpec(
        name="get_feedback_summary",
        description=(
            "Get a summary of user feedback for the project. "
            "Returns counts by status and the 10 most recent feedback items."
        ),
        input_schema={"type": "object", "properties": {}, "required": []},
    ),
    # Write tools
    ToolSpec(
        name="set_project_phases",
        description=(
            "Replace the project's SOW phases array. IMPORTANT: Always call get_project_overview first to read "
            "existing phases, then merge your changes before writing. Each phase has deliverables that track "
            "scope of work completion."
        ),
        writes=True,
        input_schema={
            "type": "object",
            "properties": {
                "phases": {
                    "type": "array",
                    "description": "The complete phases array to set on the project",
                    "items": {
                        "type": "object",
                        "properties": {
                            "id": {"type": "number", "description": "Phase number (1, 2, 3...)"},
                            "name": {"type": "string", "description": "Phase name"},
                            "status": {"type": "string", "enum": _PHASE_STATUS},
                            "deliverables": {
                                "type": "array",
                                "items": {
                                    "type": "object",
                                    "properties": {
                                        "name": {"type": "string", "description": "Deliverable name"},
                                        "status": {"type": "string", "enum": _PHASE_STATUS},
                                        "note": {"type": "string", "description": "Optional note"},
                                    },
                                    "required": ["name", "status"],
                                },
                            },
                        },
                        "required": ["id", "name", "status", "deliverables"],
                    },
                },
                "expected_revision": _EXPECTED_REVISION,
            },
            "required": ["phases"],
        },
    ),
    ToolSpec(
        name="set_project_blockers",
        description=(
            "Replace the project's blockers array. Always read existing blockers first "
            "(via get_project_overview), merge changes, then write back."
        ),
        writes=True,
        input_schema={
            "type": "object",
            "properties": {
                "blockers": {
                    "type": "array",
                    "description": "The complete blockers array to set on the project",
                    "items": {
                        "type": "object",
                        "properties": {
                            "item": {"type": "string", "description": "What is blocked"},
                            "owner": {"type": "string", "description": "Who owns resolving this"},
                            "impact": {"type": "string", "description": "Impact description"},
                        },
                        "required": ["item", "owner", "impact"],
                    },
                },
                "expected_revision": _EXPECTED_REVISION,
            },
            "required": ["blockers"],
        },
    ),
    ToolSpec(
        name="create_tasks",
        description=(
            "Create multiple tasks in batch (up to 50). Use this to populate tasks from an SOW or create a set "
            "of related tasks. Each task can be linked to a phase via phase_id and phase_name."
        ),
        writes=True,
        input_schema={
            "type": "object",
            "properties": {
                "tasks": {
                    "type": "array",
                    "description": "Array of tasks to create (max 50)",
                    "minItems": 1,
                    "maxItems": MAX_TASKS_PER_BATCH,
                    "items": {
                        "type": "object",
                        "properties": {
                            "title": {"type": "string", "description": "Task title (required)"},
                            "description": {"type": "string", "description": "Task description"},
                            "status": {
                                "type": "string",
                                "enum": _STATUS,
                                "description": "Initial status (default: backlog)",
                            },
                            "priority": {
                                "type": "string",
                                "enum": _PRIORITY,
                                "description": "Priority level (default: medium)",
                            },
                            "category": {
                                "type": "string",
                                "enum": _CATEGORY,
                                "description": "Task category (default: feature)",
                            },
                            "phase_id": {
                                "type": "string",
                                "description": 'Phase ID to link this task to (e.g. "1")',
                            },
                            "phase_name": {
                                "type": "string",
                                "description": 'Phase name for display (e.g. "Foundation")',
                            },
                            "sow_deliverable": {
                                "type": "string",
                                "description": "SOW deliverable this task fulfills",
                            },
                        },
                        "required": ["title"],
                    },
                },
            },
            "required": ["tasks"],
        },
    ),
    ToolSpec(
        name="update_tasks",
        description=(
            "Update multiple existing tasks in batch. Use this to change status, priority, or phase "
            "assignments on existing tasks. Each update succeeds or fails independently."
        ),
        writes=True,
        input_schema={
            "type": "object",
            "properties": {
                "updates": {
                    "type": "array",
                    "description": "Array of task updates",
                    "items": {
                        "type": "object",
                        "properties": {
                            "task_id": {"type": "string", "description": "UUID of the task to update"},
                            "status": {"type": "string", "enum": _STATUS},
                            "priority": {"type": "string", "enum": _PRIORITY},
                            "phase_id": {"type": "string", "description": "Phase ID to assign"},
                            "phase_name": {"type": "string", "description": "Phase name for display"},
                        },
                        "required": ["task_id"],
                    },
                },
            },
            "required": ["updates"],
        },
    ),
]

# One-line purposes for the system prompt's capability section.
TOOL_DESCRIPTIONS: Dict[str, str] = {
    "get_project_overview": "Full project state (phases, blockers, task stats, revision). Call this FIRST before making changes.",
    "get_tasks": "Query tasks by status, priority, phase, or category.",
    "get_feedback_summary": "User feedback counts and recent items.",
    "set_project_phases": "Set the project's SOW phases and deliverables.",
    "set_project_blockers": "Set the project's blockers list.",
    "create_tasks": "Batch create up to 50 tasks, optionally linked to phases.",
    "update_tasks": "Batch update existing tasks (status, priority, phase).",
}

_BY_NAME: Dict[str, ToolSpec] = {t.name: t for t in TOOL_SPECS}


def tool_names() -> List[str]:
    return [t.name for t in TOOL_SPECS]


def is_registered(name: str) -> bool:
    return str(name or "") in _BY_NAME


def get_tool_spec(name: str) -> ToolSpec:
    return _BY_NAME[name]


def read_tool_names() -> List[str]:
    return [t.name for t in TOOL_SPECS if not t.writes]


def write_tool_names() -> List[str]:
    return [t.name for t in TOOL_SPECS if t.writes]


def tool_specs() -> List[Dict[str, Any]]:
    """Tool definitions in the provider's `{name, description, input_schema}` shape."""
    return [t.to_dict() for t in TOOL_SPECS]
