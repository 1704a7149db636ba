from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError

from pmagent.chat.registry import TOOL_SPECS, is_registered
from pmagent.chat.schemas import (
    MAX_TASKS_PER_BATCH,
    CreateTasksInput,
    FeedbackSummaryInput,
    GetTasksInput,
    ProjectOverviewInput,
    SetBlockersInput,
    SetPhasesInput,
    TaskUpdateIn,
)
from pmagent.chat.types import ToolErrorKind, ToolResultEnvelope
from pmagent.store.changelog import log_changelog
from pmagent.store.gateway import StateGateway
from pmagent.store.models import NewTask, Project, TaskFilters

logger = logging.getLogger(__name__)


class ToolError(Exception):
    """Expected tool failure, reported back to the model rather than raised to the caller."""

    def __init__(self, kind: ToolErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind: ToolErrorKind = kind
        self.message = message


@dataclass(frozen=True)
class ToolContext:
    project_id: str
    store: StateGateway


@dataclass(frozen=True)
class ToolResult:
    ok: bool
    result: Any = None
    error: Optional[str] = None
    error_kind: Optional[ToolErrorKind] = None

    def to_envelope(self, tool_call_id: str) -> ToolResultEnvelope:
        if self.ok:
            return ToolResultEnvelope(tool_call_id=tool_call_id, content=self.result, is_error=False)
        return ToolResultEnvelope(
            tool_call_id=tool_call_id,
            content={"error": self.error or "Tool execution failed", "kind": self.error_kind or "internal"},
            is_error=True,
        )


def _validation_message(e: ValidationError, *, prefix: str = "") -> str:
    parts: List[str] = []
    for err in e.errors()[:5]:
        loc = ".".join(str(x) for x in err.get("loc", ()) if x != "__root__")
        parts.append(f"{prefix}{loc}: {err.get('msg')}" if loc else f"{prefix}{err.get('msg')}")
    return "Invalid input: " + "; ".join(parts) if parts else "Invalid input"


def _require_project(ctx: ToolContext) -> Project:
    project = ctx.store.get_project(ctx.project_id)
    if project is None:
        raise ToolError("not_found", "Project not found")
    return project


def _clip(s: Optional[str], n: int) -> Optional[str]:
    if s is None:
        return None
    return s[:n]


# --------------------
# read tools
# --------------------


def _get_project_overview(args: Dict[str, Any], ctx: ToolContext) -> Dict[str, Any]:
    inp = ProjectOverviewInput.model_validate(args)
    project = _require_project(ctx)

    # Task stats are always included; the full list only on request.
    tasks = ctx.store.list_tasks(ctx.project_id)
    by_status: Dict[str, int] = {}
    by_phase: Dict[str, int] = {}
    for t in tasks:
        by_status[t.status] = by_status.get(t.status, 0) + 1
        if t.phase_id:
            key = f"Phase {t.phase_id}: {t.phase_name or 'Unnamed'}"
            by_phase[key] = by_phase.get(key, 0) + 1

    out: Dict[str, Any] = {
        "name": project.name,
        "description": project.description,
        "revision": project.revision,
        "phases": list(project.phases or []),
        "blockers": list(project.blockers or []),
        "task_stats": {"total": len(tasks), "by_status": by_status, "by_phase": by_phase},
    }
    if inp.include_tasks:
        out["tasks"] = [t.to_tool_dict() for t in tasks]
    if inp.include_notes:
        out["notes"] = [
            {
                "id": n.id,
                "title": n.title,
                "category": n.category,
                "content": _clip(n.content, 500),
                "is_pinned": n.is_pinned,
            }
            for n in ctx.store.list_notes(ctx.project_id, limit=20)
        ]
    if inp.include_changelog:
        out["changelog"] = [
            {"type": e.type, "title": e.title, "description": e.description, "created_at": e.created_at}
            for e in ctx.store.list_changelog(ctx.project_id, limit=20)
        ]
    return out


def _get_tasks(args: Dict[str, Any], ctx: ToolContext) -> Dict[str, Any]:
    inp = GetTasksInput.model_validate(args)
    filters = TaskFilters(status=inp.status, priority=inp.priority, category=inp.category, phase_id=inp.phase_id)
    tasks = ctx.store.list_tasks(ctx.project_id, filters)
    return {"count": len(tasks), "tasks": [t.to_tool_dict() for t in tasks]}


def _get_feedback_summary(args: Dict[str, Any], ctx: ToolContext) -> Dict[str, Any]:
    FeedbackSummaryInput.model_validate(args)
    items = ctx.store.list_feedback(ctx.project_id)
    by_status: Dict[str, int] = {}
    for f in items:
        by_status[f.status] = by_status.get(f.status, 0) + 1
    return {
        "total": len(items),
        "by_status": by_status,
        "recent": [
            {
                "id": f.id,
                "reason": f.reason,
                "sub_option": f.sub_option,
                "priority": f.priority,
                "notes": _clip(f.notes, 200),
                "status": f.status,
                "page": f.page,
                "created_at": f.created_at,
            }
            for f in items[:10]
        ],
    }


# --------------------
# write tools
# --------------------


def _replace_project_field(ctx: ToolContext, field: str, value: List[Dict[str, Any]], expected_revision: Optional[str]):
    updated = ctx.store.replace_project_field(ctx.project_id, field, value, expected_revision=expected_revision)
    if updated is not None:
        return updated
    # No row matched: either the project is gone or the caller's revision is stale.
    if ctx.store.get_project(ctx.project_id) is None:
        raise ToolError("not_found", "Project not found")
    raise ToolError(
        "conflict",
        f"Project {field} changed since revision {expected_revision}; call get_project_overview and merge again",
    )


def _set_project_phases(args: Dict[str, Any], ctx: ToolContext) -> Dict[str, Any]:
    if not isinstance(args.get("phases"), list):
        raise ToolError("validation", "phases must be an array")
    inp = SetPhasesInput.model_validate(args)
    phases = [p.model_dump(exclude_none=True) for p in inp.phases]
    _replace_project_field(ctx, "phases", phases, inp.expected_revision)

    log_changelog(
        ctx.store,
        type="update",
        title=f"SOW phases updated ({len(phases)} phases)",
        description=", ".join(f"Phase {p.id}: {p.name}" for p in inp.phases),
        project_id=ctx.project_id,
    )
    return {
        "success": True,
        "phase_count": len(phases),
        "phases": [{"id": p.id, "name": p.name, "status": p.status} for p in inp.phases],
    }


def _set_project_blockers(args: Dict[str, Any], ctx: ToolContext) -> Dict[str, Any]:
    if not isinstance(args.get("blockers"), list):
        raise ToolError("validation", "blockers must be an array")
    inp = SetBlockersInput.model_validate(args)
    blockers = [b.model_dump() for b in inp.blockers]
    _replace_project_field(ctx, "blockers", blockers, inp.expected_revision)

    if blockers:
        log_changelog(
            ctx.store,
            type="blocker",
            title=f"Blockers updated ({len(blockers)} items)",
            description=", ".join(b.item for b in inp.blockers),
            project_id=ctx.project_id,
        )
    return {"success": True, "blocker_count": len(blockers)}


def _create_tasks(args: Dict[str, Any], ctx: ToolContext) -> Dict[str, Any]:
    raw = args.get("tasks")
    if not isinstance(raw, list) or len(raw) == 0:
        raise ToolError("validation", "tasks must be a non-empty array")
    if len(raw) > MAX_TASKS_PER_BATCH:
        raise ToolError("validation", f"Maximum {MAX_TASKS_PER_BATCH} tasks per batch")
    # The batch is all-or-nothing: one invalid item rejects the whole call.
    inp = CreateTasksInput.model_validate(args)

    created = ctx.store.insert_tasks(
        ctx.project_id,
        [
            NewTask(
                title=t.title,
                description=t.description,
                status=t.status,
                priority=t.priority,
                category=t.category,
                phase_id=t.phase_id,
                phase_name=t.phase_name,
                sow_deliverable=t.sow_deliverable,
            )
            for t in inp.tasks
        ],
    )

    titles = ", ".join(t.title for t in created[:5])
    if len(created) > 5:
        titles += f" (+{len(created) - 5} more)"
    log_changelog(
        ctx.store,
        type="feature",
        title=f"Created {len(created)} tasks via AI",
        description=titles,
        project_id=ctx.project_id,
    )
    return {
        "success": True,
        "created_count": len(created),
        "tasks": [{"id": t.id, "title": t.title, "status": t.status, "phase_id": t.phase_id} for t in created],
    }


def _update_one(raw: Any, ctx: ToolContext) -> Dict[str, Any]:
    task_id = str(raw.get("task_id") or "").strip() if isinstance(raw, dict) else ""
    if not task_id:
        return {"task_id": "unknown", "success": False, "error": "Missing task_id", "kind": "validation"}
    try:
        upd = TaskUpdateIn.model_validate(raw)
    except ValidationError as e:
        return {"task_id": task_id, "success": False, "error": _validation_message(e), "kind": "validation"}

    existing = ctx.store.get_task(ctx.project_id, upd.task_id)
    if existing is None:
        return {"task_id": upd.task_id, "success": False, "error": "Task not found in project", "kind": "not_found"}

    ctx.store.update_task(upd.task_id, upd.changed_values())

    if upd.status and upd.status != existing.status:
        log_changelog(
            ctx.store,
            type="update",
            title=f"Task status changed: {existing.title}",
            description=f"{existing.status} → {upd.status}",
            project_id=ctx.project_id,
            previous_status=existing.status,
            new_status=upd.status,
        )
    return {"task_id": upd.task_id, "success": True}


def _update_tasks(args: Dict[str, Any], ctx: ToolContext) -> Dict[str, Any]:
    updates = args.get("updates")
    if not isinstance(updates, list) or len(updates) == 0:
        raise ToolError("validation", "updates must be a non-empty array")

    results: List[Dict[str, Any]] = []
    for raw in updates:
        try:
            results.append(_update_one(raw, ctx))
        except Exception as e:
            # One failing item (e.g. a transient DB error) must not hide its siblings' outcomes.
            logger.exception("update_tasks item failed")
            task_id = str(raw.get("task_id") or "unknown") if isinstance(raw, dict) else "unknown"
            results.append({"task_id": task_id, "success": False, "error": str(e), "kind": "internal"})

    return {
        "success": all(r["success"] for r in results),
        "updated_count": sum(1 for r in results if r["success"]),
        "results": results,
    }


_EXECUTORS: Dict[str, Callable[[Dict[str, Any], ToolContext], Dict[str, Any]]] = {
    "get_project_overview": _get_project_overview,
    "get_tasks": _get_tasks,
    "get_feedback_summary": _get_feedback_summary,
    "set_project_phases": _set_project_phases,
    "set_project_blockers": _set_project_blockers,
    "create_tasks": _create_tasks,
    "update_tasks": _update_tasks,
}

# Registry and executors must describe the same closed set of tools.
if set(_EXECUTORS) != {t.name for t in TOOL_SPECS}:
    raise RuntimeError("tool registry and executors out of sync")


def run_tool(*, tool: str, args: Dict[str, Any], ctx: ToolContext) -> ToolResult:
    """
    Execute a single tool call, scoped to `ctx.project_id`.

    Never raises: unknown tools, invalid input and executor failures all come back
    as a failed `ToolResult` so the conversation can continue.
    """
    tool = (tool or "").strip()
    if not is_registered(tool):
        logger.warning("Unknown tool requested: %s", tool)
        return ToolResult(ok=False, error=f"Unknown tool: {tool}", error_kind="validation")

    args = args if isinstance(args, dict) else {}
    logger.info("Tool call: %s project_id=%s keys=%s", tool, ctx.project_id, sorted(args.keys()))
    try:
        return ToolResult(ok=True, result=_EXECUTORS[tool](args, ctx))
    except ToolError as e:
        logger.info("Tool %s failed (%s): %s", tool, e.kind, e.message)
        return ToolResult(ok=False, error=e.message, error_kind=e.kind)
    except ValidationError as e:
        msg = _validation_message(e)
        logger.info("Tool %s rejected input: %s", tool, msg)
        return ToolResult(ok=False, error=msg, error_kind="validation")
    except Exception as e:
        logger.exception("Tool %s raised unhandled exception", tool)
        return ToolResult(ok=False, error=str(e) or type(e).__name__, error_kind="internal")
