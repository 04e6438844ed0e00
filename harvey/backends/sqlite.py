from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
from datetime import datetime
from enum import Enum
from functools import partial
from pathlib import Path
from threading import Lock
from typing import Any, Mapping, Optional

from pydantic import BaseModel

from ..models import PersistenceError, format_timestamp, utcnow
from ..persistence import (
    APPOINTMENTS,
    CONSULTATIONS,
    PROFILES,
    SUMMARIES,
    SUMMARY_REVIEWS,
    TRANSCRIPTIONS,
    Row,
    new_id,
)

logger = logging.getLogger(__name__)

SCHEMA: dict[str, tuple[str, ...]] = {
    PROFILES: (
        "id",
        "created_at",
        "updated_at",
        "full_name",
        "email",
        "avatar_url",
        "emergency_info",
        "is_doctor",
        "is_admin",
        "specialty",
        "institution",
    ),
    APPOINTMENTS: (
        "id",
        "created_at",
        "updated_at",
        "patient_id",
        "doctor_id",
        "title",
        "scheduled_for",
        "location",
        "status",
        "notes",
        "consultation_id",
    ),
    CONSULTATIONS: (
        "id",
        "created_at",
        "updated_at",
        "title",
        "patient_id",
        "doctor_id",
        "appointment_date",
        "appointment_location",
        "audio_file_path",
        "status",
        "review_status",
        "review_notes",
        "share_hash",
        "share_hash_expires_at",
        "doctor_email",
    ),
    TRANSCRIPTIONS: (
        "id",
        "created_at",
        "consultation_id",
        "content",
        "provider",
        "confidence_score",
        "language",
    ),
    SUMMARIES: (
        "id",
        "created_at",
        "consultation_id",
        "type",
        "content",
        "original_content",
        "provider",
        "reviewed",
        "reviewed_at",
        "reviewed_by",
    ),
    SUMMARY_REVIEWS: (
        "id",
        "created_at",
        "summary_id",
        "doctor_id",
        "decision",
        "previous_content",
        "updated_content",
        "review_notes",
    ),
}

_INTEGER_COLUMNS = {"is_doctor", "is_admin", "reviewed"}
_REAL_COLUMNS = {"confidence_score"}


class SQLiteStore:
    """Persistence adapter over a local SQLite database.

    Blocking sqlite calls run in the default executor and are serialised by
    a lock, so one connection is shared safely between tasks.
    """

    def __init__(self, path: Path | str) -> None:
        self.path = path if str(path) == ":memory:" else Path(path)
        if isinstance(self.path, Path):
            self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = Lock()
        self._conn = sqlite3.connect(str(self.path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        for table, columns in SCHEMA.items():
            self._conn.execute(_create_statement(table, columns))
        self._conn.execute(
            "CREATE UNIQUE INDEX IF NOT EXISTS consultations_share_hash "
            "ON consultations(share_hash) WHERE share_hash IS NOT NULL"
        )
        self._conn.commit()
        logger.debug("Opened consultation store at %s", self.path)

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    async def select(
        self,
        table: str,
        *,
        where: Optional[Mapping[str, Any]] = None,
        any_of: Optional[Mapping[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[Row]:
        return await self._run(
            self._select, table, where or {}, any_of or {}, order_by, descending, limit
        )

    async def insert(self, table: str, row: Mapping[str, Any]) -> Row:
        return await self._run(self._insert, table, dict(row))

    async def update(
        self, table: str, row_id: str, changes: Mapping[str, Any]
    ) -> Optional[Row]:
        return await self._run(self._update, table, row_id, dict(changes))

    async def delete(self, table: str, *, where: Mapping[str, Any]) -> int:
        return await self._run(self._delete, table, dict(where))

    async def count(self, table: str, *, where: Optional[Mapping[str, Any]] = None) -> int:
        return await self._run(self._count, table, where or {})

    async def _run(self, fn, *args):
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, partial(fn, *args))
        except sqlite3.Error as exc:
            raise PersistenceError(str(exc)) from exc

    def _select(
        self,
        table: str,
        where: Mapping[str, Any],
        any_of: Mapping[str, Any],
        order_by: Optional[str],
        descending: bool,
        limit: Optional[int],
    ) -> list[Row]:
        columns = _columns(table)
        clauses: list[str] = []
        params: list[Any] = []
        for column, value in where.items():
            clause, clause_params = _equality(columns, column, value)
            clauses.append(clause)
            params.extend(clause_params)
        if any_of:
            group: list[str] = []
            for column, value in any_of.items():
                clause, clause_params = _equality(columns, column, value)
                group.append(clause)
                params.extend(clause_params)
            clauses.append("(" + " OR ".join(group) + ")")
        sql = f"SELECT * FROM {table}"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        if order_by:
            _check_column(columns, order_by)
            direction = "DESC" if descending else "ASC"
            sql += f" ORDER BY {order_by} {direction}, rowid {direction}"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))
        with self._lock:
            rows = self._conn.execute(sql, params).fetchall()
        return [dict(row) for row in rows]

    def _insert(self, table: str, row: dict[str, Any]) -> Row:
        columns = _columns(table)
        row.setdefault("id", new_id())
        row.setdefault("created_at", format_timestamp(utcnow()))
        for column in row:
            _check_column(columns, column)
        names = list(row)
        placeholders = ", ".join("?" for _ in names)
        values = [_adapt(row[name]) for name in names]
        with self._lock:
            self._conn.execute(
                f"INSERT INTO {table}({', '.join(names)}) VALUES({placeholders})",
                values,
            )
            self._conn.commit()
            stored = self._conn.execute(
                f"SELECT * FROM {table} WHERE id = ?", (row["id"],)
            ).fetchone()
        return dict(stored)

    def _update(self, table: str, row_id: str, changes: dict[str, Any]) -> Optional[Row]:
        columns = _columns(table)
        if "updated_at" in columns:
            changes.setdefault("updated_at", format_timestamp(utcnow()))
        for column in changes:
            _check_column(columns, column)
        assignments = ", ".join(f"{name} = ?" for name in changes)
        values = [_adapt(value) for value in changes.values()]
        with self._lock:
            cursor = self._conn.execute(
                f"UPDATE {table} SET {assignments} WHERE id = ?", (*values, row_id)
            )
            self._conn.commit()
            if cursor.rowcount == 0:
                return None
            stored = self._conn.execute(
                f"SELECT * FROM {table} WHERE id = ?", (row_id,)
            ).fetchone()
        return dict(stored) if stored else None

    def _delete(self, table: str, where: dict[str, Any]) -> int:
        if not where:
            raise PersistenceError(f"Refusing unfiltered delete on {table}")
        columns = _columns(table)
        clauses: list[str] = []
        params: list[Any] = []
        for column, value in where.items():
            clause, clause_params = _equality(columns, column, value)
            clauses.append(clause)
            params.extend(clause_params)
        with self._lock:
            cursor = self._conn.execute(
                f"DELETE FROM {table} WHERE " + " AND ".join(clauses), params
            )
            self._conn.commit()
        return cursor.rowcount

    def _count(self, table: str, where: Mapping[str, Any]) -> int:
        columns = _columns(table)
        clauses: list[str] = []
        params: list[Any] = []
        for column, value in where.items():
            clause, clause_params = _equality(columns, column, value)
            clauses.append(clause)
            params.extend(clause_params)
        sql = f"SELECT COUNT(*) FROM {table}"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        with self._lock:
            (total,) = self._conn.execute(sql, params).fetchone()
        return int(total)


def _create_statement(table: str, columns: tuple[str, ...]) -> str:
    definitions = []
    for column in columns:
        if column == "id":
            definitions.append("id TEXT PRIMARY KEY")
        elif column in _INTEGER_COLUMNS:
            definitions.append(f"{column} INTEGER NOT NULL DEFAULT 0")
        elif column in _REAL_COLUMNS:
            definitions.append(f"{column} REAL")
        else:
            definitions.append(f"{column} TEXT")
    return f"CREATE TABLE IF NOT EXISTS {table} (\n    " + ",\n    ".join(definitions) + "\n)"


def _columns(table: str) -> tuple[str, ...]:
    try:
        return SCHEMA[table]
    except KeyError:
        raise PersistenceError(f"Unknown table {table}") from None


def _check_column(columns: tuple[str, ...], column: str) -> None:
    if column not in columns:
        raise PersistenceError(f"Unknown column {column}")


def _equality(columns: tuple[str, ...], column: str, value: Any) -> tuple[str, list[Any]]:
    _check_column(columns, column)
    if value is None:
        return f"{column} IS NULL", []
    return f"{column} = ?", [_adapt(value)]


def _adapt(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, bool):
        return 1 if value else 0
    if isinstance(value, datetime):
        return format_timestamp(value)
    if isinstance(value, BaseModel):
        return value.model_dump_json()
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return value
