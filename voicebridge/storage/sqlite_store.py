"""
SQLite storage for the dashboard's documents and the usage ledger.

Documents live in named collections (agents, campaigns, calendars, ...),
each keyed by an application-level `id` and partitioned by `workspaceId`.
The body is stored as JSON; queries are equality filters plus a limit.

The usage ledger is its own append-only table: rows are inserted once per
proxied request and never updated.
"""

import json
import re
import sqlite3
import logging
from datetime import datetime, timezone
from pathlib import Path
from contextlib import contextmanager
from uuid import uuid4

from voicebridge.errors import RecordingFailure
from voicebridge.storage.models import UsageRecord

logger = logging.getLogger(__name__)

COLLECTIONS = (
    "agents",
    "campaigns",
    "calendars",
    "appointments",
    "usage",
    "users",
    "logs",
    "tasks",
    "integrations",
    "workspaces",
    "phonenumbers",
)

CREATE_TABLES = """
CREATE TABLE IF NOT EXISTS documents (
    collection TEXT NOT NULL,
    id TEXT NOT NULL,
    workspace_id TEXT NOT NULL DEFAULT '',
    data TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (collection, id)
);

CREATE TABLE IF NOT EXISTS usage (
    id TEXT PRIMARY KEY,
    created_by TEXT NOT NULL,
    model_id TEXT NOT NULL,
    prompt_tokens INTEGER NOT NULL DEFAULT 0,
    completion_tokens INTEGER NOT NULL DEFAULT 0,
    total_tokens INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_documents_workspace
    ON documents(collection, workspace_id);
CREATE INDEX IF NOT EXISTS idx_usage_created_by
    ON usage(created_by);
CREATE INDEX IF NOT EXISTS idx_usage_created_at
    ON usage(created_at);
"""

_FIELD_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SQLiteStore:
    """Thread-safe SQLite document store."""

    def __init__(self, db_path: str):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _init_db(self):
        with self._connect() as conn:
            conn.executescript(CREATE_TABLES)
        logger.info("SQLite store initialized at %s", self.db_path)

    @contextmanager
    def _connect(self):
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    @staticmethod
    def _check_collection(collection: str):
        if collection not in COLLECTIONS:
            raise ValueError(f"Unknown collection: {collection}")

    @staticmethod
    def _where(filters: dict) -> tuple[str, list]:
        """Build an equality WHERE fragment over JSON fields."""
        clauses, params = [], []
        for key, value in filters.items():
            if not _FIELD_RE.match(key):
                raise ValueError(f"Invalid filter field: {key}")
            if key == "workspaceId":
                clauses.append("workspace_id = ?")
            else:
                clauses.append(f"json_extract(data, '$.{key}') = ?")
            params.append(value)
        return (" AND " + " AND ".join(clauses)) if clauses else "", params

    # ─ Documents ──────────────────────────────────────────────────────────

    def create(self, collection: str, doc: dict) -> str:
        """Insert a new document. Assigns an id if the document has none."""
        self._check_collection(collection)
        doc = dict(doc)
        doc.setdefault("id", uuid4().hex)
        now = _now()
        with self._connect() as conn:
            conn.execute(
                """INSERT INTO documents (collection, id, workspace_id, data, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (collection, str(doc["id"]), doc.get("workspaceId", ""),
                 json.dumps(doc, ensure_ascii=False), now, now),
            )
        logger.debug("Created %s/%s", collection, doc["id"])
        return str(doc["id"])

    def upsert(self, collection: str, doc: dict) -> str:
        """Insert or fully replace a document by id."""
        self._check_collection(collection)
        if "id" not in doc:
            return self.create(collection, doc)
        now = _now()
        with self._connect() as conn:
            conn.execute(
                """INSERT INTO documents (collection, id, workspace_id, data, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?)
                   ON CONFLICT(collection, id) DO UPDATE SET
                       workspace_id = excluded.workspace_id,
                       data = excluded.data,
                       updated_at = excluded.updated_at""",
                (collection, str(doc["id"]), doc.get("workspaceId", ""),
                 json.dumps(doc, ensure_ascii=False), now, now),
            )
        return str(doc["id"])

    def get(self, collection: str, doc_id: str, workspace_id: str | None = None) -> dict | None:
        filters = {"workspaceId": workspace_id} if workspace_id is not None else {}
        docs = self.query(collection, filters, limit=1, doc_id=doc_id)
        return docs[0] if docs else None

    def query(
        self,
        collection: str,
        filters: dict | None = None,
        limit: int | None = None,
        doc_id: str | None = None,
    ) -> list[dict]:
        """Equality filter over document fields, oldest first."""
        self._check_collection(collection)
        where, params = self._where(filters or {})
        sql = f"SELECT data FROM documents WHERE collection = ?{where}"
        params = [collection, *params]
        if doc_id is not None:
            sql += " AND id = ?"
            params.append(str(doc_id))
        sql += " ORDER BY created_at"
        if limit:
            sql += " LIMIT ?"
            params.append(int(limit))
        with self._connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [json.loads(r["data"]) for r in rows]

    def update(self, collection: str, doc_id: str, fields: dict, workspace_id: str | None = None) -> bool:
        """Merge fields into one document. Returns False if it does not exist."""
        doc = self.get(collection, doc_id, workspace_id)
        if doc is None:
            return False
        doc.update(fields)
        doc["id"] = doc_id
        self.upsert(collection, doc)
        return True

    def replace(self, collection: str, doc_id: str, doc: dict, workspace_id: str | None = None) -> bool:
        """Overwrite an existing document's body. Returns False if it does not exist."""
        if self.get(collection, doc_id, workspace_id) is None:
            return False
        self.upsert(collection, {**doc, "id": doc_id})
        return True

    def update_where(self, collection: str, filters: dict, fields: dict) -> int:
        """Merge fields into every document matching the filters. Returns the count."""
        docs = self.query(collection, filters)
        for doc in docs:
            doc.update(fields)
            self.upsert(collection, doc)
        return len(docs)

    def delete(self, collection: str, doc_id: str, workspace_id: str | None = None) -> bool:
        self._check_collection(collection)
        sql = "DELETE FROM documents WHERE collection = ? AND id = ?"
        params = [collection, str(doc_id)]
        if workspace_id is not None:
            sql += " AND workspace_id = ?"
            params.append(workspace_id)
        with self._connect() as conn:
            deleted = conn.execute(sql, params).rowcount
        return deleted > 0

    # ─ Usage ledger ───────────────────────────────────────────────────────

    def insert_usage(self, record: UsageRecord) -> None:
        """Append one usage row. Raises RecordingFailure if the write fails."""
        try:
            with self._connect() as conn:
                conn.execute(
                    """INSERT INTO usage
                       (id, created_by, model_id, prompt_tokens, completion_tokens, total_tokens, created_at)
                       VALUES (?, ?, ?, ?, ?, ?, ?)""",
                    (record.id, record.created_by, record.model_id, record.prompt_tokens,
                     record.completion_tokens, record.total_tokens, record.created_at),
                )
        except sqlite3.Error as e:
            raise RecordingFailure(f"usage insert failed: {e}") from e
        logger.debug(
            "Recorded usage %s (user=%s, model=%s, total=%d)",
            record.id, record.created_by, record.model_id, record.total_tokens,
        )

    def get_usage(self, user_id: str | None = None, limit: int = 100) -> list[dict]:
        """Most recent usage rows, optionally for one user."""
        sql = "SELECT * FROM usage"
        params: list = []
        if user_id:
            sql += " WHERE created_by = ?"
            params.append(user_id)
        sql += " ORDER BY created_at DESC LIMIT ?"
        params.append(limit)
        with self._connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [dict(r) for r in rows]

    def usage_totals(self, user_id: str | None = None, model_id: str | None = None) -> dict:
        """Summed token counts over the whole ledger, optionally filtered."""
        clauses, params = [], []
        if user_id:
            clauses.append("created_by = ?")
            params.append(user_id)
        if model_id:
            clauses.append("model_id = ?")
            params.append(model_id)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT COUNT(*) as requests, "
                "COALESCE(SUM(prompt_tokens), 0) as prompt_tokens, "
                "COALESCE(SUM(completion_tokens), 0) as completion_tokens, "
                f"COALESCE(SUM(total_tokens), 0) as total_tokens FROM usage{where}",
                params,
            ).fetchone()
        return dict(row)

    def get_stats(self) -> dict:
        """Document counts per collection plus ledger size."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT collection, COUNT(*) as n FROM documents GROUP BY collection"
            ).fetchall()
            usage_rows = conn.execute("SELECT COUNT(*) FROM usage").fetchone()[0]
        return {
            "collections": {row["collection"]: row["n"] for row in rows},
            "usage_records": usage_rows,
        }
