"""
Persistence boundary used by the chat tool executors and the admin API.

Every method is an independent short transaction; there is no cross-call
transaction or rollback. `PostgresStore` is the production implementation;
anything implementing `StateGateway` (e.g. an in-memory fake in tests) can be
injected instead.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Sequence

from pmagent.store.config import build_postgres_dsn, load_store_config
from pmagent.store.models import (
    ChangelogEntry,
    FeedbackItem,
    Memory,
    NewTask,
    Note,
    Project,
    Task,
    TaskFilters,
    as_utc,
)

logger = logging.getLogger(__name__)

# Project columns the tool layer may replace wholesale.
REPLACEABLE_PROJECT_FIELDS = ("phases", "blockers")


class StoreNotConfigured(RuntimeError):
    """Raised when no Postgres connection settings are available."""


class StateGateway(Protocol):
    def get_project(self, project_id: str) -> Optional[Project]: ...

    def get_project_by_slug(self, slug: str) -> Optional[Project]: ...

    def list_projects(self) -> List[Project]: ...

    def list_tasks(self, project_id: str, filters: Optional[TaskFilters] = None) -> List[Task]: ...

    def get_task(self, project_id: str, task_id: str) -> Optional[Task]: ...

    def insert_tasks(self, project_id: str, tasks: Sequence[NewTask]) -> List[Task]: ...

    def update_task(self, task_id: str, values: Dict[str, Any]) -> Optional[Task]: ...

    def replace_project_field(
        self, project_id: str, field: str, value: List[Dict[str, Any]], *, expected_revision: Optional[str] = None
    ) -> Optional[Project]:
        """
        Replace `phases` or `blockers` wholesale.

        Returns the updated project, or None when no row matched (unknown project or
        stale `expected_revision`).
        """

    def list_notes(self, project_id: str, *, limit: int = 20) -> List[Note]: ...

    def list_changelog(self, project_id: str, *, limit: int = 20) -> List[ChangelogEntry]: ...

    def list_feedback(self, project_id: str) -> List[FeedbackItem]: ...

    def list_active_memories(self, project_id: Optional[str], *, now: datetime, limit: int = 50) -> List[Memory]: ...

    def append_changelog(self, entry: ChangelogEntry) -> None: ...


def _connect(dsn: str):
    import psycopg  # type: ignore[import-not-found]

    return psycopg.connect(dsn)


def _text(v: Any) -> Optional[str]:
    return str(v) if v is not None else None


_PROJECT_COLS = "id::text, name, slug, description, phases, blockers, updated_at::text"
_TASK_COLS = (
    "id::text, project_id::text, title, status, priority, category, description, "
    "phase_id, phase_name, sow_deliverable, created_at::text"
)


def _row_to_project(row) -> Project:
    return Project(
        id=str(row[0]),
        name=str(row[1] or ""),
        slug=str(row[2] or ""),
        description=_text(row[3]),
        phases=list(row[4] or []),
        blockers=list(row[5] or []),
        updated_at=_text(row[6]),
    )


def _row_to_task(row) -> Task:
    return Task(
        id=str(row[0]),
        project_id=str(row[1]),
        title=str(row[2] or ""),
        status=str(row[3]),
        priority=str(row[4]),
        category=str(row[5]),
        description=_text(row[6]),
        phase_id=_text(row[7]),
        phase_name=_text(row[8]),
        sow_deliverable=_text(row[9]),
        created_at=_text(row[10]),
    )


class PostgresStore:
    """`StateGateway` backed by Postgres via psycopg 3."""

    def __init__(self, dsn: Optional[str] = None) -> None:
        self._dsn = dsn or build_postgres_dsn(load_store_config())

    @property
    def configured(self) -> bool:
        return bool(self._dsn)

    def _conn(self):
        if not self._dsn:
            raise StoreNotConfigured("Postgres not configured")
        return _connect(self._dsn)

    # ---- projects ----

    def get_project(self, project_id: str) -> Optional[Project]:
        with self._conn() as conn:
            row = conn.execute(
                f"SELECT {_PROJECT_COLS} FROM projects WHERE id::text = %s LIMIT 1;",
                (str(project_id),),
            ).fetchone()
        return _row_to_project(row) if row else None

    def get_project_by_slug(self, slug: str) -> Optional[Project]:
        with self._conn() as conn:
            row = conn.execute(
                f"SELECT {_PROJECT_COLS} FROM projects WHERE slug = %s LIMIT 1;",
                (str(slug),),
            ).fetchone()
        return _row_to_project(row) if row else None

    def list_projects(self) -> List[Project]:
        with self._conn() as conn:
            rows = conn.execute(f"SELECT {_PROJECT_COLS} FROM projects ORDER BY name ASC;").fetchall()
        return [_row_to_project(r) for r in rows or []]

    def replace_project_field(
        self, project_id: str, field: str, value: List[Dict[str, Any]], *, expected_revision: Optional[str] = None
    ) -> Optional[Project]:
        if field not in REPLACEABLE_PROJECT_FIELDS:
            raise ValueError(f"field not replaceable: {field}")
        from psycopg import sql  # type: ignore[import-not-found]
        from psycopg.types.json import Jsonb  # type: ignore[import-not-found]

        query = sql.SQL(
            "UPDATE projects SET {field} = %s, updated_at = now() "
            "WHERE id::text = %s AND (%s::text IS NULL OR updated_at::text = %s::text) "
            "RETURNING " + _PROJECT_COLS + ";"
        ).format(field=sql.Identifier(field))
        with self._conn() as conn:
            with conn.transaction():
                row = conn.execute(
                    query, (Jsonb(list(value)), str(project_id), expected_revision, expected_revision)
                ).fetchone()
        return _row_to_project(row) if row else None

    # ---- tasks ----

    def list_tasks(self, project_id: str, filters: Optional[TaskFilters] = None) -> List[Task]:
        f = filters or TaskFilters()
        cond: List[str] = ["project_id::text = %s"]
        params: List[Any] = [str(project_id)]
        for col, val in (
            ("status", f.status),
            ("priority", f.priority),
            ("category", f.category),
            ("phase_id", f.phase_id),
        ):
            if val is not None:
                cond.append(f"{col} = %s")
                params.append(val)
        with self._conn() as conn:
            rows = conn.execute(
                f"SELECT {_TASK_COLS} FROM dev_tasks WHERE {' AND '.join(cond)} ORDER BY created_at DESC;",
                tuple(params),
            ).fetchall()
        return [_row_to_task(r) for r in rows or []]

    def get_task(self, project_id: str, task_id: str) -> Optional[Task]:
        with self._conn() as conn:
            row = conn.execute(
                f"SELECT {_TASK_COLS} FROM dev_tasks WHERE id::text = %s AND project_id::text = %s LIMIT 1;",
                (str(task_id), str(project_id)),
            ).fetchone()
        return _row_to_task(row) if row else None

    def insert_tasks(self, project_id: str, tasks: Sequence[NewTask]) -> List[Task]:
        if not tasks:
            return []
        created: List[Task] = []
        with self._conn() as conn:
            with conn.transaction():
                with conn.cursor() as cur:
                    cur.executemany(
                        f"""
                        INSERT INTO dev_tasks(
                          title, description, status, priority, category,
                          phase_id, phase_name, sow_deliverable, project_id
                        )
                        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                        RETURNING {_TASK_COLS};
                        """,
                        [
                            (
                                t.title,
                                t.description,
                                t.status,
                                t.priority,
                                t.category,
                                t.phase_id,
                                t.phase_name,
                                t.sow_deliverable,
                                str(project_id),
                            )
                            for t in tasks
                        ],
                        returning=True,
                    )
                    while True:
                        row = cur.fetchone()
                        if row:
                            created.append(_row_to_task(row))
                        if not cur.nextset():
                            break
        return created

    def update_task(self, task_id: str, values: Dict[str, Any]) -> Optional[Task]:
        allowed = ("status", "priority", "phase_id", "phase_name")
        sets = [f"{k} = %s" for k in allowed if k in values]
        params: List[Any] = [values[k] for k in allowed if k in values]
        sets.append("updated_at = now()")
        params.append(str(task_id))
        with self._conn() as conn:
            with conn.transaction():
                row = conn.execute(
                    f"UPDATE dev_tasks SET {', '.join(sets)} WHERE id::text = %s RETURNING {_TASK_COLS};",
                    tuple(params),
                ).fetchone()
        return _row_to_task(row) if row else None

    # ---- notes / changelog / feedback ----

    def list_notes(self, project_id: str, *, limit: int = 20) -> List[Note]:
        lim = max(1, min(int(limit), 200))
        with self._conn() as conn:
            rows = conn.execute(
                """
                SELECT id::text, title, category, content, is_pinned, created_at::text
                FROM dev_notes
                WHERE project_id::text = %s
                ORDER BY created_at DESC
                LIMIT %s;
                """,
                (str(project_id), lim),
            ).fetchall()
        return [
            Note(
                id=str(r[0]),
                title=str(r[1] or ""),
                category=_text(r[2]),
                content=_text(r[3]),
                is_pinned=bool(r[4]),
                created_at=_text(r[5]),
            )
            for r in rows or []
        ]

    def list_changelog(self, project_id: str, *, limit: int = 20) -> List[ChangelogEntry]:
        lim = max(1, min(int(limit), 200))
        with self._conn() as conn:
            rows = conn.execute(
                """
                SELECT type, title, description, created_at::text
                FROM changelog_entries
                WHERE project_id::text = %s
                ORDER BY created_at DESC
                LIMIT %s;
                """,
                (str(project_id), lim),
            ).fetchall()
        return [
            ChangelogEntry(
                type=str(r[0]),
                title=str(r[1] or ""),
                description=_text(r[2]),
                project_id=str(project_id),
                created_at=_text(r[3]),
            )
            for r in rows or []
        ]

    def append_changelog(self, entry: ChangelogEntry) -> None:
        with self._conn() as conn:
            with conn.transaction():
                conn.execute(
                    """
                    INSERT INTO changelog_entries(
                      type, title, description, previous_status, new_status, is_auto_generated, project_id
                    )
                    VALUES (%s, %s, %s, %s, %s, %s, %s);
                    """,
                    (
                        entry.type,
                        entry.title,
                        entry.description,
                        entry.previous_status,
                        entry.new_status,
                        bool(entry.is_auto_generated),
                        entry.project_id,
                    ),
                )

    def list_feedback(self, project_id: str) -> List[FeedbackItem]:
        with self._conn() as conn:
            rows = conn.execute(
                """
                SELECT id::text, reason, status, sub_option, priority, notes, page, created_at::text
                FROM feedback
                WHERE project_id::text = %s
                ORDER BY created_at DESC;
                """,
                (str(project_id),),
            ).fetchall()
        return [
            FeedbackItem(
                id=str(r[0]),
                reason=_text(r[1]),
                status=str(r[2] or ""),
                sub_option=_text(r[3]),
                priority=_text(r[4]),
                notes=_text(r[5]),
                page=_text(r[6]),
                created_at=_text(r[7]),
            )
            for r in rows or []
        ]

    # ---- memories ----

    def list_active_memories(self, project_id: Optional[str], *, now: datetime, limit: int = 50) -> List[Memory]:
        lim = max(1, min(int(limit), 50))
        with self._conn() as conn:
            rows = conn.execute(
                """
                SELECT content, category, expires_at, created_at
                FROM ai_memories
                WHERE (expires_at IS NULL OR expires_at > %s)
                  AND (project_id IS NULL OR project_id::text = %s)
                ORDER BY created_at DESC
                LIMIT %s;
                """,
                # ai_memories.expires_at is `timestamp` (no zone) holding UTC.
                (as_utc(now).replace(tzinfo=None), str(project_id) if project_id else None, lim),
            ).fetchall()
        return [
            Memory(
                content=str(r[0] or ""),
                category=str(r[1] or "insight"),
                expires_at=as_utc(r[2]) if r[2] is not None else None,
                created_at=as_utc(r[3]) if r[3] is not None else None,
            )
            for r in rows or []
        ]
