"""
SQLite Document Store
=====================
Persistent storage for processed reports.

Each report is stored as a JSON document plus a few indexed columns used
for listing and filtering. No in-memory caching; always reads from disk.
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Optional

from .models import ReportPage, ReportStatus, utc_now_iso

logger = logging.getLogger(__name__)

# Default database path: project_root/database.sqlite
_DEFAULT_DB_PATH = str(Path(__file__).parent.parent / "database.sqlite")


def get_db_path() -> str:
    """Return the configured database path."""
    return os.environ.get("REPORT_DB_PATH", _DEFAULT_DB_PATH)


@contextmanager
def get_connection(db_path: str = None):
    """
    Context manager for database connections.
    Ensures proper commit/rollback and connection cleanup.
    """
    db_path = db_path or get_db_path()
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def init_db(db_path: str = None):
    """
    Initialize the database schema.
    Safe to call multiple times (uses IF NOT EXISTS).
    """
    db_path = db_path or get_db_path()
    logger.info(f"Initializing database at: {db_path}")

    with get_connection(db_path) as conn:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS reports (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT NOT NULL UNIQUE,
                status TEXT NOT NULL DEFAULT 'processed',
                patient_name TEXT DEFAULT '',
                owner_name TEXT DEFAULT '',
                species TEXT DEFAULT '',
                image_count INTEGER DEFAULT 0,
                document TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_reports_status
                ON reports(status);
            CREATE INDEX IF NOT EXISTS idx_reports_created_at
                ON reports(created_at);
        """)

    logger.info("Database schema initialized successfully")


def _index_columns(document: dict) -> dict:
    """Extract the denormalized columns from a wire-shaped document."""
    return {
        "status": document.get("status") or ReportStatus.PROCESSED.value,
        "patient_name": (document.get("patient") or {}).get("name", ""),
        "owner_name": (document.get("owner") or {}).get("name", ""),
        "species": (document.get("patient") or {}).get("species", ""),
        "image_count": len(document.get("images") or []),
    }


def _escape_like(term: str) -> str:
    """Make ``%`` and ``_`` literal inside a ``LIKE ... ESCAPE '\\'`` pattern."""
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class ReportStore:
    """
    Document store for wire-shaped report dicts.

    ``create`` assigns the permanent id (uuid4) and timestamps.
    """

    def __init__(self, db_path: str = None):
        self.db_path = db_path or get_db_path()

    def init(self):
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        init_db(self.db_path)

    # ─── CRUD ─────────────────────────────────────────────────────────────

    def create(self, record: dict) -> dict:
        """Insert a new report. Returns the stored document with its id."""
        now = utc_now_iso()
        document = {
            **record,
            "id": str(uuid.uuid4()),
            "status": ReportStatus.PROCESSED.value,
            "createdAt": now,
            "updatedAt": now,
        }
        cols = _index_columns(document)

        with get_connection(self.db_path) as conn:
            conn.execute(
                """INSERT INTO reports
                   (id, status, patient_name, owner_name, species, image_count,
                    document, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (document["id"], cols["status"], cols["patient_name"],
                 cols["owner_name"], cols["species"], cols["image_count"],
                 json.dumps(document, ensure_ascii=False), now, now),
            )

        logger.info(f"Report saved: {document['id']}")
        return document

    def get_by_id(self, report_id: str) -> Optional[dict]:
        """Fetch a single report by id, including soft-deleted ones."""
        with get_connection(self.db_path) as conn:
            row = conn.execute(
                "SELECT document FROM reports WHERE id = ?", (report_id,)
            ).fetchone()
            return json.loads(row["document"]) if row else None

    def update(self, report_id: str, patch: dict) -> Optional[dict]:
        """
        Shallow-merge ``patch`` into the stored document.
        Returns the updated document, or None if the id is unknown.
        """
        current = self.get_by_id(report_id)
        if current is None:
            return None

        protected = {"id", "createdAt"}
        document = {
            **current,
            **{k: v for k, v in patch.items() if k not in protected},
            "updatedAt": utc_now_iso(),
        }
        cols = _index_columns(document)

        with get_connection(self.db_path) as conn:
            conn.execute(
                """UPDATE reports SET status = ?, patient_name = ?, owner_name = ?,
                   species = ?, image_count = ?, document = ?, updated_at = ?
                   WHERE id = ?""",
                (cols["status"], cols["patient_name"], cols["owner_name"],
                 cols["species"], cols["image_count"],
                 json.dumps(document, ensure_ascii=False),
                 document["updatedAt"], report_id),
            )
        return document

    def delete(self, report_id: str) -> bool:
        """Soft delete. Returns True if the report existed."""
        now = utc_now_iso()
        updated = self.update(
            report_id,
            {"status": ReportStatus.DELETED.value, "deletedAt": now},
        )
        if updated:
            logger.info(f"Report soft-deleted: {report_id}")
        return updated is not None

    # ─── Queries ──────────────────────────────────────────────────────────

    def query(
        self,
        filters: Optional[dict] = None,
        limit: int = 20,
        start_after: Optional[str] = None,
        include_deleted: bool = False,
    ) -> ReportPage:
        """
        List reports newest first.

        Args:
            filters: ``patient_name`` / ``owner_name`` (case-insensitive
                substring), ``date_from`` / ``date_to`` (ISO, on createdAt).
            limit: Page size.
            start_after: Id of the last report of the previous page.
        """
        filters = filters or {}
        clauses: list[str] = []
        params: list[Any] = []

        if not include_deleted:
            clauses.append("status != ?")
            params.append(ReportStatus.DELETED.value)
        if filters.get("patient_name"):
            clauses.append("LOWER(patient_name) LIKE ? ESCAPE '\\'")
            params.append(f"%{_escape_like(filters['patient_name'].lower())}%")
        if filters.get("owner_name"):
            clauses.append("LOWER(owner_name) LIKE ? ESCAPE '\\'")
            params.append(f"%{_escape_like(filters['owner_name'].lower())}%")
        if filters.get("date_from"):
            clauses.append("created_at >= ?")
            params.append(filters["date_from"])
        if filters.get("date_to"):
            clauses.append("created_at <= ?")
            params.append(filters["date_to"])

        with get_connection(self.db_path) as conn:
            if start_after:
                cursor_row = conn.execute(
                    "SELECT seq FROM reports WHERE id = ?", (start_after,)
                ).fetchone()
                if cursor_row:
                    clauses.append("seq < ?")
                    params.append(cursor_row["seq"])

            where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
            rows = conn.execute(
                f"SELECT document FROM reports {where} ORDER BY seq DESC LIMIT ?",
                params + [limit + 1],
            ).fetchall()

        items = [json.loads(r["document"]) for r in rows[:limit]]
        return ReportPage(
            items=items,
            count=len(items),
            has_more=len(rows) > limit,
            last_id=items[-1]["id"] if items else None,
        )

    def statistics(self) -> dict:
        """Totals over processed (non-deleted) reports."""
        with get_connection(self.db_path) as conn:
            rows = conn.execute(
                "SELECT species, image_count, created_at FROM reports WHERE status = ?",
                (ReportStatus.PROCESSED.value,),
            ).fetchall()

        species: dict[str, int] = {}
        per_day: dict[str, int] = {}
        total_images = 0
        for row in rows:
            name = row["species"] or "Unknown"
            species[name] = species.get(name, 0) + 1
            day = (row["created_at"] or "unknown").split("T")[0]
            per_day[day] = per_day.get(day, 0) + 1
            total_images += row["image_count"] or 0

        return {
            "totalReports": len(rows),
            "speciesDistribution": species,
            "reportsPerDay": per_day,
            "averageImagesPerReport": (
                round(total_images / len(rows), 1) if rows else 0
            ),
        }

    def check_health(self) -> bool:
        try:
            with get_connection(self.db_path) as conn:
                conn.execute("SELECT 1 FROM reports LIMIT 1").fetchall()
            return True
        except sqlite3.Error as e:
            logger.error(f"Database health check failed: {e}")
            return False
