"""SQLite storage for canvas objects, connectors, canvas versions, and jobs."""

from __future__ import annotations

import json
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import asdict, dataclass, fields
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from boardpilot.errors import StoreError

OBJECT_TYPES = ("sticky", "rectangle", "circle", "line", "frame", "text")
SHAPE_TYPES = ("rectangle", "circle", "line")
TERMINAL_JOB_STATUSES = ("completed", "failed")


@dataclass
class CanvasObject:
    id: str
    type: str
    x: float
    y: float
    width: float
    height: float
    color: str
    text: str = ""
    parent_id: str | None = None
    z_index: int = 0
    rotation: float = 0.0
    created_by: str = ""
    created_at: str | None = None
    updated_at: str | None = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> CanvasObject:
        names = {f.name for f in fields(cls)}
        return cls(**{k: row[k] for k in row.keys() if k in names})


@dataclass
class Connector:
    id: str
    from_id: str
    to_id: str
    style: str = "arrow"
    color: str = "#374151"
    stroke_width: float = 2.0
    created_by: str = ""
    created_at: str | None = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Connector:
        names = {f.name for f in fields(cls)}
        return cls(**{k: row[k] for k in row.keys() if k in names})


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SqliteStore:
    """Row-level persistence keyed by canvas id and object id.

    One connection is shared across threads (parallel tool batches run in a
    thread pool), so every statement runs under ``self._lock``.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._lock = threading.Lock()

    def close(self) -> None:
        self._conn.close()

    def init_db(self) -> None:
        """Create all tables and indexes."""
        cur = self._conn.cursor()
        cur.executescript(
            """
            CREATE TABLE IF NOT EXISTS objects (
                canvas_id TEXT NOT NULL,
                id TEXT NOT NULL,
                type TEXT NOT NULL,
                x REAL NOT NULL,
                y REAL NOT NULL,
                width REAL NOT NULL,
                height REAL NOT NULL,
                color TEXT NOT NULL,
                text TEXT NOT NULL DEFAULT '',
                parent_id TEXT,
                z_index INTEGER NOT NULL DEFAULT 0,
                rotation REAL NOT NULL DEFAULT 0,
                created_by TEXT NOT NULL DEFAULT '',
                created_at TEXT,
                updated_at TEXT,
                PRIMARY KEY (canvas_id, id)
            );
            CREATE INDEX IF NOT EXISTS idx_objects_parent ON objects(canvas_id, parent_id);

            CREATE TABLE IF NOT EXISTS connectors (
                canvas_id TEXT NOT NULL,
                id TEXT NOT NULL,
                from_id TEXT NOT NULL DEFAULT '',
                to_id TEXT NOT NULL DEFAULT '',
                style TEXT NOT NULL DEFAULT 'arrow',
                color TEXT NOT NULL DEFAULT '#374151',
                stroke_width REAL NOT NULL DEFAULT 2,
                created_by TEXT NOT NULL DEFAULT '',
                created_at TEXT,
                PRIMARY KEY (canvas_id, id)
            );
            CREATE INDEX IF NOT EXISTS idx_connectors_from ON connectors(canvas_id, from_id);
            CREATE INDEX IF NOT EXISTS idx_connectors_to ON connectors(canvas_id, to_id);

            CREATE TABLE IF NOT EXISTS canvases (
                id TEXT PRIMARY KEY,
                version INTEGER NOT NULL DEFAULT 0,
                updated_at TEXT
            );

            CREATE TABLE IF NOT EXISTS jobs (
                canvas_id TEXT NOT NULL,
                job_id TEXT NOT NULL,
                command TEXT NOT NULL DEFAULT '',
                status TEXT NOT NULL DEFAULT 'pending',
                current_step INTEGER NOT NULL DEFAULT 0,
                total_steps INTEGER NOT NULL DEFAULT 0,
                version_start INTEGER,
                version_end INTEGER,
                progress TEXT,
                plan_json TEXT,
                response_json TEXT,
                created_at TEXT,
                updated_at TEXT,
                PRIMARY KEY (canvas_id, job_id)
            );
            """
        )
        self._conn.commit()

        self._migrate_add_column("jobs", "error", "TEXT")

    def _migrate_add_column(self, table: str, column: str, col_type: str) -> None:
        """Add a column to a table if it doesn't exist."""
        cur = self._conn.execute(f"PRAGMA table_info({table})")
        columns = {row[1] for row in cur.fetchall()}
        if column not in columns:
            self._conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {col_type}")
            self._conn.commit()

    @contextmanager
    def _writing(self) -> Iterator[sqlite3.Connection]:
        """Serialize a write and translate driver errors into StoreError."""
        with self._lock:
            try:
                yield self._conn
                self._conn.commit()
            except sqlite3.Error as e:
                self._conn.rollback()
                raise StoreError(str(e)) from e

    def _select(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        with self._lock:
            return self._conn.execute(sql, params).fetchall()

    # ── Objects ──

    def insert_object(self, canvas_id: str, obj: CanvasObject) -> None:
        now = _now()
        obj.created_at = obj.created_at or now
        obj.updated_at = now
        row = asdict(obj)
        cols = ", ".join(["canvas_id", *row.keys()])
        marks = ", ".join("?" * (len(row) + 1))
        with self._writing() as conn:
            conn.execute(
                f"INSERT INTO objects ({cols}) VALUES ({marks})",
                (canvas_id, *row.values()),
            )

    def update_object(self, canvas_id: str, object_id: str, **changes: Any) -> None:
        """Patch the given columns of one object. Raises StoreError if it is gone."""
        if not changes:
            return
        changes["updated_at"] = _now()
        assignments = ", ".join(f"{k} = ?" for k in changes)
        with self._writing() as conn:
            cur = conn.execute(
                f"UPDATE objects SET {assignments} WHERE canvas_id = ? AND id = ?",
                (*changes.values(), canvas_id, object_id),
            )
            if cur.rowcount == 0:
                raise sqlite3.IntegrityError(f"object {object_id} does not exist")

    def delete_objects(self, canvas_id: str, object_ids: list[str]) -> tuple[int, int]:
        """Delete objects and every connector attached to them.

        Returns ``(objects_deleted, connectors_deleted)``.
        """
        if not object_ids:
            return 0, 0
        marks = ", ".join("?" * len(object_ids))
        with self._writing() as conn:
            cur = conn.execute(
                f"DELETE FROM objects WHERE canvas_id = ? AND id IN ({marks})",
                (canvas_id, *object_ids),
            )
            deleted = cur.rowcount
            conn.execute(
                f"UPDATE objects SET parent_id = NULL WHERE canvas_id = ? AND parent_id IN ({marks})",
                (canvas_id, *object_ids),
            )
            cur = conn.execute(
                f"DELETE FROM connectors WHERE canvas_id = ? "
                f"AND (from_id IN ({marks}) OR to_id IN ({marks}))",
                (canvas_id, *object_ids, *object_ids),
            )
        return deleted, cur.rowcount

    def delete_all_objects(self, canvas_id: str) -> tuple[int, int]:
        """Clear a canvas. Returns ``(objects_deleted, connectors_deleted)``."""
        with self._writing() as conn:
            objects = conn.execute(
                "DELETE FROM objects WHERE canvas_id = ?", (canvas_id,)
            ).rowcount
            connectors = conn.execute(
                "DELETE FROM connectors WHERE canvas_id = ?", (canvas_id,)
            ).rowcount
        return objects, connectors

    def get_object(self, canvas_id: str, object_id: str) -> CanvasObject | None:
        rows = self._select(
            "SELECT * FROM objects WHERE canvas_id = ? AND id = ?", (canvas_id, object_id)
        )
        return CanvasObject.from_row(rows[0]) if rows else None

    def list_objects(self, canvas_id: str) -> list[CanvasObject]:
        rows = self._select(
            "SELECT * FROM objects WHERE canvas_id = ? ORDER BY z_index, created_at",
            (canvas_id,),
        )
        return [CanvasObject.from_row(r) for r in rows]

    # ── Connectors ──

    def insert_connector(self, canvas_id: str, connector: Connector) -> None:
        connector.created_at = connector.created_at or _now()
        row = asdict(connector)
        cols = ", ".join(["canvas_id", *row.keys()])
        marks = ", ".join("?" * (len(row) + 1))
        with self._writing() as conn:
            conn.execute(
                f"INSERT INTO connectors ({cols}) VALUES ({marks})",
                (canvas_id, *row.values()),
            )

    def delete_connectors(self, canvas_id: str, connector_ids: list[str]) -> int:
        if not connector_ids:
            return 0
        marks = ", ".join("?" * len(connector_ids))
        with self._writing() as conn:
            cur = conn.execute(
                f"DELETE FROM connectors WHERE canvas_id = ? AND id IN ({marks})",
                (canvas_id, *connector_ids),
            )
        return cur.rowcount

    def list_connectors(self, canvas_id: str) -> list[Connector]:
        rows = self._select(
            "SELECT * FROM connectors WHERE canvas_id = ? ORDER BY created_at", (canvas_id,)
        )
        return [Connector.from_row(r) for r in rows]

    # ── Canvas versions ──

    def get_version(self, canvas_id: str) -> int:
        rows = self._select("SELECT version FROM canvases WHERE id = ?", (canvas_id,))
        return rows[0]["version"] if rows else 0

    def increment_version(self, canvas_id: str) -> int:
        """Bump the canvas version stamp and return the new value."""
        now = _now()
        with self._writing() as conn:
            conn.execute(
                """INSERT INTO canvases (id, version, updated_at) VALUES (?, 1, ?)
                   ON CONFLICT(id) DO UPDATE SET version = version + 1, updated_at = ?""",
                (canvas_id, now, now),
            )
            row = conn.execute(
                "SELECT version FROM canvases WHERE id = ?", (canvas_id,)
            ).fetchone()
        return row["version"]

    # ── Jobs ──

    def load_job(self, canvas_id: str, job_id: str) -> dict | None:
        rows = self._select(
            "SELECT * FROM jobs WHERE canvas_id = ? AND job_id = ?", (canvas_id, job_id)
        )
        if not rows:
            return None
        job = dict(rows[0])
        for key in ("plan_json", "response_json"):
            if job.get(key):
                job[key[: -len("_json")]] = json.loads(job[key])
        return job

    def update_job_progress(self, canvas_id: str, job_id: str, **patch: Any) -> bool:
        """Create or patch a job row.

        Jobs already in a terminal status are left untouched; returns False
        in that case. ``plan`` and ``response`` values are stored as JSON.
        """
        if "plan" in patch:
            patch["plan_json"] = json.dumps(patch.pop("plan"))
        if "response" in patch:
            patch["response_json"] = json.dumps(patch.pop("response"))
        now = _now()
        patch["updated_at"] = now
        assignments = ", ".join(f"{k} = ?" for k in patch)
        terminal = ", ".join(f"'{s}'" for s in TERMINAL_JOB_STATUSES)
        with self._writing() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO jobs (canvas_id, job_id, created_at) VALUES (?, ?, ?)",
                (canvas_id, job_id, now),
            )
            cur = conn.execute(
                f"UPDATE jobs SET {assignments} "
                f"WHERE canvas_id = ? AND job_id = ? AND status NOT IN ({terminal})",
                (*patch.values(), canvas_id, job_id),
            )
        return cur.rowcount > 0

    def list_jobs(self, canvas_id: str, limit: int = 50) -> list[dict]:
        rows = self._select(
            """SELECT canvas_id, job_id, command, status, current_step, total_steps,
                      version_start, version_end, progress, error, created_at, updated_at
               FROM jobs WHERE canvas_id = ? ORDER BY created_at DESC LIMIT ?""",
            (canvas_id, limit),
        )
        return [dict(r) for r in rows]
