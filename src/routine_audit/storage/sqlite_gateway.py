# src/routine_audit/storage/sqlite_gateway.py

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import sqlite3
import uuid
from collections.abc import Iterable, Mapping, Sequence
from pathlib import Path
from typing import Any

from ..core.clock import now_iso
from ..core.errors import PersistenceError
from ..core.ports import TABLES, ChangeEvent, ChangeKind, ChangeListener, Row, Unsubscribe

logger = logging.getLogger(__name__)

# table -> column -> declaration (order matters for CREATE TABLE)
SCHEMA: dict[str, dict[str, str]] = {
    "roles": {
        "id": "TEXT PRIMARY KEY",
        "name": "TEXT NOT NULL DEFAULT ''",
        "created_at": "TEXT NOT NULL DEFAULT ''",
    },
    "users": {
        "id": "TEXT PRIMARY KEY",
        "email": "TEXT NOT NULL DEFAULT ''",
        "password_hash": "TEXT NOT NULL DEFAULT ''",
        "name": "TEXT NOT NULL DEFAULT ''",
        "user_type": "TEXT NOT NULL DEFAULT 'user'",
        "role_id": "TEXT",
        "disabled": "INTEGER NOT NULL DEFAULT 0",
        "created_at": "TEXT NOT NULL DEFAULT ''",
    },
    "task_definitions": {
        "id": "TEXT PRIMARY KEY",
        "title": "TEXT NOT NULL DEFAULT ''",
        "description": "TEXT",
        "subtasks": "TEXT NOT NULL DEFAULT '[]'",
        "created_by": "TEXT",
        "created_at": "TEXT NOT NULL DEFAULT ''",
    },
    "assignments": {
        "id": "TEXT PRIMARY KEY",
        "task_id": "TEXT NOT NULL",
        "user_id": "TEXT NOT NULL",
        "assigned_by": "TEXT",
        "assigned_at": "TEXT NOT NULL DEFAULT ''",
        "due_date": "TEXT",
        "status": "TEXT NOT NULL DEFAULT 'pending'",
        "employee_notes": "TEXT",
        "admin_notes": "TEXT",
        "submitted": "INTEGER NOT NULL DEFAULT 0",
        "completed_at": "TEXT",
    },
    "routines": {
        "id": "TEXT PRIMARY KEY",
        "task_id": "TEXT NOT NULL",
        "user_id": "TEXT NOT NULL",
        "created_by": "TEXT",
        "frequency": "TEXT NOT NULL DEFAULT 'daily'",
        "created_at": "TEXT NOT NULL DEFAULT ''",
    },
}

BOOL_COLUMNS = {"disabled", "submitted"}
JSON_COLUMNS = {"subtasks"}

# Columns filled with "now" on insert when the caller leaves them out.
TIMESTAMP_DEFAULTS = {
    "roles": "created_at",
    "users": "created_at",
    "task_definitions": "created_at",
    "assignments": "assigned_at",
    "routines": "created_at",
}

# table -> relation name -> (foreign key column, target table)
JOINS: dict[str, dict[str, tuple[str, str]]] = {
    "users": {"role": ("role_id", "roles")},
    "assignments": {"task": ("task_id", "task_definitions"), "user": ("user_id", "users")},
    "routines": {"task": ("task_id", "task_definitions"), "user": ("user_id", "users")},
}

INDEXES = (
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_users_email ON users(email)",
    "CREATE INDEX IF NOT EXISTS idx_assignments_user_assigned ON assignments(user_id, assigned_at)",
    "CREATE INDEX IF NOT EXISTS idx_assignments_status ON assignments(status)",
    "CREATE INDEX IF NOT EXISTS idx_routines_user ON routines(user_id)",
)


class SqliteGateway:
    """
    SQLite implementation of PersistenceGateway.

    The schema is migration-safe:
    - create tables if missing
    - use PRAGMA table_info to detect missing columns
    - add columns with ALTER TABLE only when needed

    Thread-safety:
    - each call opens its own SQLite connection
    - blocking work runs in asyncio.to_thread; listeners are called back on the event loop
    """

    def __init__(self, db_path: str | Path = "audit.sqlite3") -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._listeners: dict[str, list[tuple[ChangeListener, dict[str, Any]]]] = {t: [] for t in TABLES}
        self._ensure_schema()
        logger.info("SqliteGateway ready db=%s", self._db_path)

    def close(self) -> None:
        """Compatibility hook for shutdown (no persistent connections to close)."""
        return

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        with contextlib.suppress(sqlite3.Error):
            conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            for table, columns in SCHEMA.items():
                decls = ", ".join(f"{name} {decl}" for name, decl in columns.items())
                cur.execute(f"CREATE TABLE IF NOT EXISTS {table} ({decls})")

                cur.execute(f"PRAGMA table_info({table})")
                existing = {row["name"] for row in cur.fetchall()}
                for name, decl in columns.items():
                    if name in existing:
                        continue
                    cur.execute(f"ALTER TABLE {table} ADD COLUMN {name} {decl}")
                    logger.info("SqliteGateway migration: added column %s.%s", table, name)

            for stmt in INDEXES:
                cur.execute(stmt)
            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _check_table(table: str) -> dict[str, str]:
        columns = SCHEMA.get(table)
        if columns is None:
            raise PersistenceError(f"Unknown table: {table}")
        return columns

    @classmethod
    def _check_columns(cls, table: str, names: Iterable[str]) -> None:
        columns = cls._check_table(table)
        for name in names:
            if name not in columns:
                raise PersistenceError(f"Unknown column {table}.{name}")

    @staticmethod
    def _encode(column: str, value: Any) -> Any:
        if value is None:
            return None
        if column in BOOL_COLUMNS:
            return 1 if value else 0
        if column in JSON_COLUMNS and not isinstance(value, str):
            return json.dumps(value, ensure_ascii=False)
        if isinstance(value, bool):
            return 1 if value else 0
        return value

    @staticmethod
    def _decode(row: sqlite3.Row) -> Row:
        out: Row = {}
        for key in row.keys():
            value = row[key]
            if key in BOOL_COLUMNS:
                value = bool(value)
            elif key in JSON_COLUMNS:
                try:
                    value = json.loads(value) if value else []
                except ValueError:
                    logger.warning("Unreadable JSON in column %s; returning []", key)
                    value = []
            out[key] = value
        return out

    def _fetch_by_ids(self, conn: sqlite3.Connection, table: str, ids: Iterable[Any]) -> dict[str, Row]:
        keys = sorted({str(i) for i in ids if i is not None})
        if not keys:
            return {}
        placeholders = ",".join("?" for _ in keys)
        cur = conn.execute(f"SELECT * FROM {table} WHERE id IN ({placeholders})", keys)
        return {str(r["id"]): self._decode(r) for r in cur.fetchall()}

    def _attach_joins(self, conn: sqlite3.Connection, table: str, rows: list[Row], joins: Iterable[str]) -> None:
        relations = JOINS.get(table, {})
        for name in joins:
            if name not in relations:
                raise PersistenceError(f"Unknown relation {table}.{name}")
            fk, target = relations[name]
            related = self._fetch_by_ids(conn, target, (r.get(fk) for r in rows))
            if target == "users":
                for r in related.values():
                    r.pop("password_hash", None)
            for r in rows:
                # Dangling references are tolerated: the relation is just None.
                r[name] = related.get(str(r.get(fk))) if r.get(fk) is not None else None

    # ---- sync implementations ----

    def _select_sync(
            self,
            table: str,
            eq: Mapping[str, Any],
            gte: Mapping[str, Any],
            order_by: str | None,
            descending: bool,
            limit: int | None,
            joins: tuple[str, ...],
    ) -> list[Row]:
        self._check_columns(table, [*eq.keys(), *gte.keys(), *([order_by] if order_by else [])])

        where: list[str] = []
        params: list[Any] = []
        for col, val in eq.items():
            if val is None:
                where.append(f"{col} IS NULL")
            else:
                where.append(f"{col} = ?")
                params.append(self._encode(col, val))
        for col, val in gte.items():
            where.append(f"{col} >= ?")
            params.append(self._encode(col, val))

        sql = f"SELECT * FROM {table}"
        if where:
            sql += " WHERE " + " AND ".join(where)
        if order_by:
            sql += f" ORDER BY {order_by} {'DESC' if descending else 'ASC'}"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))

        conn = self._get_conn()
        try:
            rows = [self._decode(r) for r in conn.execute(sql, params).fetchall()]
            if joins:
                self._attach_joins(conn, table, rows, joins)
            return rows
        finally:
            conn.close()

    def _insert_sync(self, table: str, rows: Sequence[Mapping[str, Any]]) -> list[Row]:
        columns = self._check_table(table)
        prepared: list[dict[str, Any]] = []
        for raw in rows:
            self._check_columns(table, raw.keys())
            row = dict(raw)
            if not row.get("id"):
                row["id"] = uuid.uuid4().hex
            ts_col = TIMESTAMP_DEFAULTS.get(table)
            if ts_col and not row.get(ts_col):
                row[ts_col] = now_iso()
            prepared.append(row)

        conn = self._get_conn()
        try:
            for row in prepared:
                names = [c for c in columns if c in row]
                placeholders = ",".join("?" for _ in names)
                conn.execute(
                    f"INSERT INTO {table} ({', '.join(names)}) VALUES ({placeholders})",
                    [self._encode(c, row[c]) for c in names],
                )
            conn.commit()
            stored = self._fetch_by_ids(conn, table, (r["id"] for r in prepared))
            return [stored[str(r["id"])] for r in prepared]
        finally:
            conn.close()

    def _update_sync(self, table: str, row_id: str, values: Mapping[str, Any]) -> Row:
        self._check_columns(table, values.keys())
        if "id" in values:
            raise PersistenceError("id is immutable")

        conn = self._get_conn()
        try:
            if values:
                set_clause = ", ".join(f"{c} = ?" for c in values)
                params = [self._encode(c, v) for c, v in values.items()]
                cur = conn.execute(f"UPDATE {table} SET {set_clause} WHERE id = ?", (*params, str(row_id)))
                conn.commit()
                if cur.rowcount != 1:
                    raise PersistenceError(f"{table} row {row_id} not found")
            row = self._fetch_by_ids(conn, table, [row_id]).get(str(row_id))
            if row is None:
                raise PersistenceError(f"{table} row {row_id} not found")
            return row
        finally:
            conn.close()

    def _delete_sync(self, table: str, row_id: str) -> Row:
        self._check_table(table)
        conn = self._get_conn()
        try:
            row = self._fetch_by_ids(conn, table, [row_id]).get(str(row_id))
            if row is None:
                raise PersistenceError(f"{table} row {row_id} not found")
            conn.execute(f"DELETE FROM {table} WHERE id = ?", (str(row_id),))
            conn.commit()
            return row
        finally:
            conn.close()

    async def _run(self, fn, *args):
        try:
            return await asyncio.to_thread(fn, *args)
        except PersistenceError:
            raise
        except sqlite3.Error as e:
            logger.exception("SQLite call %s failed", getattr(fn, "__name__", fn))
            raise PersistenceError(f"Storage error: {e}") from e

    # ---- public API ----

    async def select(
            self,
            table: str,
            *,
            eq: Mapping[str, Any] | None = None,
            gte: Mapping[str, Any] | None = None,
            order_by: str | None = None,
            descending: bool = False,
            limit: int | None = None,
            joins: Iterable[str] = (),
    ) -> list[Row]:
        return await self._run(
            self._select_sync, table, dict(eq or {}), dict(gte or {}), order_by, descending, limit, tuple(joins)
        )

    async def insert(self, table: str, rows: Sequence[Mapping[str, Any]]) -> list[Row]:
        if not rows:
            return []
        inserted = await self._run(self._insert_sync, table, list(rows))
        logger.debug("Inserted %d row(s) into %s", len(inserted), table)
        for row in inserted:
            self._notify(table, ChangeKind.INSERT, row)
        return inserted

    async def update(self, table: str, row_id: str, values: Mapping[str, Any]) -> None:
        row = await self._run(self._update_sync, table, row_id, dict(values))
        logger.debug("Updated %s id=%s fields=%s", table, row_id, sorted(values))
        self._notify(table, ChangeKind.UPDATE, row)

    async def delete(self, table: str, row_id: str) -> None:
        row = await self._run(self._delete_sync, table, row_id)
        logger.debug("Deleted %s id=%s", table, row_id)
        self._notify(table, ChangeKind.DELETE, row)

    def subscribe(
            self,
            table: str,
            listener: ChangeListener,
            *,
            eq: Mapping[str, Any] | None = None,
    ) -> Unsubscribe:
        self._check_columns(table, (eq or {}).keys())
        entry = (listener, dict(eq or {}))
        self._listeners[table].append(entry)

        def _unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._listeners[table].remove(entry)

        return _unsubscribe

    def _notify(self, table: str, kind: ChangeKind, row: Row) -> None:
        event = ChangeEvent(table=table, kind=kind, row=row)
        for listener, eq in list(self._listeners.get(table, [])):
            if any(str(row.get(col)) != str(val) for col, val in eq.items()):
                continue
            try:
                listener(event)
            except Exception:
                logger.exception("Change listener failed table=%s kind=%s", table, kind.value)
