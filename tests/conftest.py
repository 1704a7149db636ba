"""
Pytest config.

The repo root is pinned on sys.path so `import pmagent` works even when a global
`pytest` entrypoint is used without an editable install.

`FakeStore` is an in-memory `StateGateway` shared by the tool, runtime and API tests.
"""

from __future__ import annotations

import itertools
import sys
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import pytest


def _ensure_repo_root_on_syspath() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    repo_root_str = str(repo_root)
    if repo_root_str not in sys.path:
        sys.path.insert(0, repo_root_str)


_ensure_repo_root_on_syspath()

from pmagent.store.models import (  # noqa: E402
    ChangelogEntry,
    FeedbackItem,
    Memory,
    NewTask,
    Note,
    Project,
    Task,
    TaskFilters,
)


class FakeStore:
    def __init__(self) -> None:
        self.projects: Dict[str, Project] = {}
        self.tasks: List[Task] = []
        self.notes: Dict[str, List[Note]] = {}
        self.feedback: Dict[str, List[FeedbackItem]] = {}
        self.memories: List[tuple] = []  # (project_id or None, Memory)
        self.changelog: List[ChangelogEntry] = []
        self.insert_calls = 0
        self.fail_changelog = False
        self._ids = itertools.count(1)
        self._rev = itertools.count(1)

    # ---- seeding helpers ----

    def add_project(self, project_id: str = "p1", *, name: str = "Apollo", slug: Optional[str] = None, **kw) -> Project:
        p = Project(
            id=project_id,
            name=name,
            slug=slug or project_id,
            updated_at=f"rev-{next(self._rev)}",
            **kw,
        )
        self.projects[project_id] = p
        return p

    def add_task(self, project_id: str, title: str, **kw) -> Task:
        t = Task(id=kw.pop("id", f"t{next(self._ids)}"), project_id=project_id, title=title, **kw)
        self.tasks.append(t)
        return t

    def add_memory(self, content: str, *, project_id: Optional[str] = None, **kw) -> Memory:
        m = Memory(content=content, **kw)
        self.memories.append((project_id, m))
        return m

    # ---- StateGateway ----

    def get_project(self, project_id: str) -> Optional[Project]:
        return self.projects.get(project_id)

    def get_project_by_slug(self, slug: str) -> Optional[Project]:
        for p in self.projects.values():
            if p.slug == slug:
                return p
        return None

    def list_projects(self) -> List[Project]:
        return sorted(self.projects.values(), key=lambda p: p.name)

    def list_tasks(self, project_id: str, filters: Optional[TaskFilters] = None) -> List[Task]:
        f = filters or TaskFilters()
        out = []
        for t in reversed(self.tasks):
            if t.project_id != project_id:
                continue
            if f.status and t.status != f.status:
                continue
            if f.priority and t.priority != f.priority:
                continue
            if f.category and t.category != f.category:
                continue
            if f.phase_id and t.phase_id != f.phase_id:
                continue
            out.append(t)
        return out

    def get_task(self, project_id: str, task_id: str) -> Optional[Task]:
        for t in self.tasks:
            if t.id == task_id and t.project_id == project_id:
                return t
        return None

    def insert_tasks(self, project_id: str, tasks: Sequence[NewTask]) -> List[Task]:
        self.insert_calls += 1
        created = []
        for nt in tasks:
            t = Task(
                id=f"t{next(self._ids)}",
                project_id=project_id,
                title=nt.title,
                status=nt.status,
                priority=nt.priority,
                category=nt.category,
                description=nt.description,
                phase_id=nt.phase_id,
                phase_name=nt.phase_name,
                sow_deliverable=nt.sow_deliverable,
            )
            self.tasks.append(t)
            created.append(t)
        return created

    def update_task(self, task_id: str, values: Dict[str, Any]) -> Optional[Task]:
        for i, t in enumerate(self.tasks):
            if t.id == task_id:
                self.tasks[i] = replace(t, **values)
                return self.tasks[i]
        return None

    def replace_project_field(
        self, project_id: str, field: str, value: List[Dict[str, Any]], *, expected_revision: Optional[str] = None
    ) -> Optional[Project]:
        p = self.projects.get(project_id)
        if p is None:
            return None
        if expected_revision is not None and expected_revision != p.revision:
            return None
        updated = replace(p, **{field: value, "updated_at": f"rev-{next(self._rev)}"})
        self.projects[project_id] = updated
        return updated

    def list_notes(self, project_id: str, *, limit: int = 20) -> List[Note]:
        return list(self.notes.get(project_id, []))[:limit]

    def list_changelog(self, project_id: str, *, limit: int = 20) -> List[ChangelogEntry]:
        return [e for e in reversed(self.changelog) if e.project_id == project_id][:limit]

    def list_feedback(self, project_id: str) -> List[FeedbackItem]:
        return list(self.feedback.get(project_id, []))

    def list_active_memories(self, project_id: Optional[str], *, now: datetime, limit: int = 50) -> List[Memory]:
        out = [m for pid, m in self.memories if (pid is None or pid == project_id) and m.is_active(now)]
        return out[:limit]

    def append_changelog(self, entry: ChangelogEntry) -> None:
        if self.fail_changelog:
            raise RuntimeError("changelog table unavailable")
        self.changelog.append(replace(entry, created_at=datetime.now(timezone.utc).isoformat()))


@pytest.fixture
def store() -> FakeStore:
    s = FakeStore()
    s.add_project("p1", name="Apollo", description="Moon lander")
    s.add_project("p2", name="Gemini")
    return s


@pytest.fixture
def ctx(store):
    from pmagent.chat.tools import ToolContext

    return ToolContext(project_id="p1", store=store)
