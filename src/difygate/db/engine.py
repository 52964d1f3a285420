"""SQLite async database — registered apps and call logs.

Provides:
- Dify application configs, keyed by issued gateway API key
- Call log entries written by the gateway
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import aiosqlite
import structlog

logger = structlog.get_logger()

SCHEMA = """
CREATE TABLE IF NOT EXISTS apps (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    description TEXT,
    dify_api_url TEXT NOT NULL,
    dify_api_key TEXT NOT NULL,
    generated_api_key TEXT UNIQUE,
    bot_type TEXT NOT NULL DEFAULT 'Chat',
    input_variable TEXT,
    output_variable TEXT,
    model_name TEXT NOT NULL DEFAULT 'dify',
    is_enabled INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS call_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    api_key TEXT NOT NULL,
    app_name TEXT NOT NULL,
    method TEXT NOT NULL,
    endpoint TEXT NOT NULL,
    request_body TEXT NOT NULL,
    response_body TEXT,
    status_code INTEGER,
    response_time INTEGER,
    error_message TEXT,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_call_logs_created_at ON call_logs(created_at);
"""

APP_COLUMNS = (
    "name",
    "description",
    "dify_api_url",
    "dify_api_key",
    "bot_type",
    "input_variable",
    "output_variable",
    "model_name",
    "is_enabled",
)


def generate_api_key() -> str:
    """New gateway API key: ``sk-`` followed by 32 hex chars."""
    return "sk-" + uuid.uuid4().hex


def _now() -> str:
    return datetime.now(UTC).isoformat()


class Database:
    """Async SQLite database for the gateway's collaborator stores."""

    def __init__(
        self,
        data_dir: str,
        journal_mode: str = "WAL",
        busy_timeout_ms: int = 5000,
    ) -> None:
        self.data_dir = Path(data_dir)
        self.db_path = self.data_dir / "difygate.db"
        self.journal_mode = journal_mode.upper()
        if self.journal_mode not in {"WAL", "DELETE"}:
            raise ValueError(f"Unsupported SQLite journal mode: {journal_mode}")
        self.busy_timeout_ms = int(busy_timeout_ms)
        self._conn: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """Create the database and run migrations."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self._conn = await aiosqlite.connect(str(self.db_path))
        self._conn.row_factory = aiosqlite.Row

        # WAL may fail on network filesystems; fall back to DELETE mode.
        try:
            await self._conn.execute(f"PRAGMA journal_mode={self.journal_mode}")
        except Exception as exc:
            if self.journal_mode == "WAL":
                logger.warning(
                    "db.wal_unavailable_fallback",
                    path=str(self.db_path),
                    error=str(exc),
                )
                await self._conn.execute("PRAGMA journal_mode=DELETE")
            else:
                raise

        await self._conn.execute(f"PRAGMA busy_timeout={self.busy_timeout_ms}")
        await self._conn.executescript(SCHEMA)
        await self._conn.commit()

        logger.info("db.initialized", path=str(self.db_path))

    async def close(self) -> None:
        """Close the database connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None
            logger.info("db.closed")

    async def execute(self, sql: str, params: tuple = ()) -> aiosqlite.Cursor:
        """Execute a SQL statement."""
        assert self._conn, "Database not initialized"
        cursor = await self._conn.execute(sql, params)
        await self._conn.commit()
        return cursor

    async def fetch_one(self, sql: str, params: tuple = ()) -> dict[str, Any] | None:
        """Fetch a single row."""
        assert self._conn, "Database not initialized"
        cursor = await self._conn.execute(sql, params)
        row = await cursor.fetchone()
        return dict(row) if row else None

    async def fetch_all(self, sql: str, params: tuple = ()) -> list[dict[str, Any]]:
        """Fetch all rows."""
        assert self._conn, "Database not initialized"
        cursor = await self._conn.execute(sql, params)
        rows = await cursor.fetchall()
        return [dict(row) for row in rows]

    # ── Apps ────────────────────────────────────────────────────────

    async def app_create(self, **fields: Any) -> dict[str, Any]:
        """Register an app and issue its gateway API key."""
        values = {column: fields.get(column) for column in APP_COLUMNS}
        values["bot_type"] = values["bot_type"] or "Chat"
        values["model_name"] = values["model_name"] or "dify"
        values["is_enabled"] = 1 if fields.get("is_enabled", True) else 0
        now = _now()
        cursor = await self.execute(
            f"""INSERT INTO apps ({", ".join(APP_COLUMNS)}, generated_api_key, created_at, updated_at)
               VALUES ({", ".join("?" for _ in APP_COLUMNS)}, ?, ?, ?)""",
            (*values.values(), generate_api_key(), now, now),
        )
        row = await self.app_get(int(cursor.lastrowid))
        assert row is not None
        return row

    async def app_get(self, app_id: int) -> dict[str, Any] | None:
        return await self.fetch_one("SELECT * FROM apps WHERE id = ?", (app_id,))

    async def app_list(self) -> list[dict[str, Any]]:
        return await self.fetch_all("SELECT * FROM apps ORDER BY created_at DESC, id DESC")

    async def app_get_by_api_key(self, api_key: str) -> dict[str, Any] | None:
        """Look up the enabled app a gateway key was issued for."""
        return await self.fetch_one(
            "SELECT * FROM apps WHERE generated_api_key = ? AND is_enabled = 1",
            (api_key,),
        )

    async def app_update(self, app_id: int, **fields: Any) -> dict[str, Any] | None:
        """Update the given columns; unknown keys are ignored."""
        updates = {key: value for key, value in fields.items() if key in APP_COLUMNS}
        if "is_enabled" in updates:
            updates["is_enabled"] = 1 if updates["is_enabled"] else 0
        if updates:
            assignments = ", ".join(f"{key} = ?" for key in updates)
            await self.execute(
                f"UPDATE apps SET {assignments}, updated_at = ? WHERE id = ?",
                (*updates.values(), _now(), app_id),
            )
        return await self.app_get(app_id)

    async def app_delete(self, app_id: int) -> bool:
        cursor = await self.execute("DELETE FROM apps WHERE id = ?", (app_id,))
        return cursor.rowcount > 0

    async def app_regenerate_key(self, app_id: int) -> dict[str, Any] | None:
        """Replace the app's gateway key; the old key stops resolving immediately."""
        await self.execute(
            "UPDATE apps SET generated_api_key = ?, updated_at = ? WHERE id = ?",
            (generate_api_key(), _now(), app_id),
        )
        return await self.app_get(app_id)

    async def app_stats(self) -> dict[str, int]:
        row = await self.fetch_one(
            "SELECT COUNT(*) AS total, COALESCE(SUM(is_enabled), 0) AS active FROM apps"
        )
        return {
            "total_apps": int(row["total"]) if row else 0,
            "active_apps": int(row["active"]) if row else 0,
        }

    # ── Call logs ───────────────────────────────────────────────────

    async def call_log_insert(
        self,
        *,
        api_key: str,
        app_name: str,
        method: str,
        endpoint: str,
        request_body: str,
        response_body: str | None,
        status_code: int | None,
        response_time: int | None,
        error_message: str | None,
    ) -> int:
        cursor = await self.execute(
            """INSERT INTO call_logs
                    (api_key, app_name, method, endpoint, request_body, response_body,
                     status_code, response_time, error_message, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                api_key,
                app_name,
                method,
                endpoint,
                request_body,
                response_body,
                status_code,
                response_time,
                error_message,
                _now(),
            ),
        )
        return int(cursor.lastrowid)

    async def call_log_list(
        self,
        *,
        page: int = 1,
        limit: int = 50,
        status: int | None = None,
        endpoint: str | None = None,
        date_from: str | None = None,
        date_to: str | None = None,
    ) -> tuple[list[dict[str, Any]], int]:
        """Newest-first page of call logs plus the total matching count."""
        clauses: list[str] = []
        params: list[Any] = []
        if status is not None:
            clauses.append("status_code = ?")
            params.append(status)
        if endpoint:
            clauses.append("endpoint LIKE ?")
            params.append(f"%{endpoint}%")
        if date_from:
            clauses.append("created_at >= ?")
            params.append(date_from)
        if date_to:
            clauses.append("created_at <= ?")
            params.append(date_to)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""

        page = max(1, int(page))
        limit = max(1, min(500, int(limit)))
        rows = await self.fetch_all(
            f"SELECT * FROM call_logs{where} ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
            (*params, limit, (page - 1) * limit),
        )
        count = await self.fetch_one(f"SELECT COUNT(*) AS total FROM call_logs{where}", tuple(params))
        return rows, int(count["total"]) if count else 0

    async def call_log_stats(self) -> dict[str, int]:
        row = await self.fetch_one(
            """SELECT COUNT(*) AS total,
                      COALESCE(SUM(CASE WHEN status_code = 200 THEN 1 ELSE 0 END), 0) AS ok,
                      AVG(response_time) AS avg_time
               FROM call_logs"""
        )
        total = int(row["total"]) if row else 0
        successful = int(row["ok"]) if row else 0
        return {
            "total_calls": total,
            "successful_calls": successful,
            "error_calls": total - successful,
            "avg_response_time": round(row["avg_time"] or 0) if row else 0,
        }

    async def call_log_delete(self, log_id: int) -> bool:
        cursor = await self.execute("DELETE FROM call_logs WHERE id = ?", (log_id,))
        return cursor.rowcount > 0
