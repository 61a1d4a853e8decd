"""SQLite implementation of the pipeline store."""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

from pydantic import ValidationError

from .models import PipelinePatch, PipelineRecord, append_log_entry, apply_patch
from .repository import PipelineStore

logger = logging.getLogger(__name__)

_COLUMNS = "id, created_at, updated_at, status, attempts, data, logs, steps"


def _timestamp(value: datetime) -> str:
    # fixed width so ORDER BY on the text column sorts chronologically
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


class SQLitePipelineStore(PipelineStore):
    """Persist pipeline state using SQLite.

    A single connection is shared by worker threads; every statement or
    read-modify-write sequence runs under the connection lock and commits
    before the lock is released.
    """

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn_lock = threading.Lock()
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        with self._conn_lock:
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS pipelines (
                    id TEXT PRIMARY KEY,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    status TEXT NOT NULL,
                    attempts INTEGER NOT NULL DEFAULT 0,
                    data TEXT NOT NULL,
                    logs TEXT NOT NULL,
                    steps TEXT NOT NULL
                )
                """
            )
            self._conn.commit()

    def close(self) -> None:
        with self._conn_lock:
            self._conn.close()

    # ------------------------------------------------------------------
    # Row conversion
    @staticmethod
    def _to_params(record: PipelineRecord) -> tuple:
        doc = record.to_document()
        return (
            doc["id"],
            _timestamp(record.created_at),
            _timestamp(record.updated_at),
            doc["status"],
            doc["attempts"],
            json.dumps(doc["data"]),
            json.dumps(doc["logs"]),
            json.dumps(doc["steps"]),
        )

    @staticmethod
    def _from_row(row: sqlite3.Row) -> PipelineRecord | None:
        try:
            return PipelineRecord.from_document(
                {
                    "id": row["id"],
                    "createdAt": row["created_at"],
                    "updatedAt": row["updated_at"],
                    "status": row["status"],
                    "attempts": row["attempts"],
                    "data": json.loads(row["data"]),
                    "logs": json.loads(row["logs"]),
                    "steps": json.loads(row["steps"]),
                }
            )
        except (ValueError, ValidationError) as exc:
            logger.error(f"Skipping unreadable pipeline {row['id']}: {exc}")
            return None

    # ------------------------------------------------------------------
    # Helper methods
    def _fetchone(self, pipeline_id: str) -> PipelineRecord | None:
        with self._conn_lock:
            try:
                row = self._conn.execute(
                    f"SELECT {_COLUMNS} FROM pipelines WHERE id = ?", (pipeline_id,)
                ).fetchone()
            except sqlite3.Error as exc:
                logger.error(f"Error reading pipeline {pipeline_id}: {exc}")
                return None
        return self._from_row(row) if row else None

    def _fetchall(self) -> list[PipelineRecord]:
        with self._conn_lock:
            try:
                rows = self._conn.execute(
                    f"SELECT {_COLUMNS} FROM pipelines ORDER BY created_at DESC"
                ).fetchall()
            except sqlite3.Error as exc:
                logger.error(f"Error listing pipelines: {exc}")
                return []
        records = [self._from_row(row) for row in rows]
        return [r for r in records if r is not None]

    def _insert(self, record: PipelineRecord) -> PipelineRecord | None:
        with self._conn_lock:
            try:
                self._conn.execute(
                    f"INSERT OR IGNORE INTO pipelines ({_COLUMNS}) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    self._to_params(record),
                )
                self._conn.commit()
                row = self._conn.execute(
                    f"SELECT {_COLUMNS} FROM pipelines WHERE id = ?", (record.id,)
                ).fetchone()
            except sqlite3.Error as exc:
                self._conn.rollback()
                logger.error(f"Error saving pipeline {record.id}: {exc}")
                return None
        return self._from_row(row) if row else None

    def _mutate(
        self, pipeline_id: str, change: Callable[[PipelineRecord], PipelineRecord]
    ) -> PipelineRecord | None:
        with self._conn_lock:
            try:
                row = self._conn.execute(
                    f"SELECT {_COLUMNS} FROM pipelines WHERE id = ?", (pipeline_id,)
                ).fetchone()
                current = self._from_row(row) if row else None
                if current is None:
                    return None
                updated = change(current)
                params = self._to_params(updated)
                self._conn.execute(
                    """
                    UPDATE pipelines
                    SET updated_at = ?, status = ?, attempts = ?, logs = ?, steps = ?
                    WHERE id = ?
                    """,
                    (params[2], params[3], params[4], params[6], params[7], pipeline_id),
                )
                self._conn.commit()
            except sqlite3.Error as exc:
                self._conn.rollback()
                logger.error(f"Error saving pipeline {pipeline_id}: {exc}")
                return None
        return updated

    # ------------------------------------------------------------------
    # Store API
    async def get(self, pipeline_id: str) -> PipelineRecord | None:
        return await asyncio.to_thread(self._fetchone, pipeline_id)

    async def create(
        self, pipeline_id: str, data: dict | None = None
    ) -> PipelineRecord | None:
        return await self.insert(PipelineRecord.new(pipeline_id, data))

    async def insert(self, record: PipelineRecord) -> PipelineRecord | None:
        return await asyncio.to_thread(self._insert, record)

    async def update(
        self, pipeline_id: str, patch: PipelinePatch | dict
    ) -> PipelineRecord | None:
        return await asyncio.to_thread(
            self._mutate, pipeline_id, lambda current: apply_patch(current, patch)
        )

    async def append_log(
        self, pipeline_id: str, message: str, touch: bool = True
    ) -> PipelineRecord | None:
        return await asyncio.to_thread(
            self._mutate,
            pipeline_id,
            lambda current: append_log_entry(current, message, touch=touch),
        )

    async def list(self) -> list[PipelineRecord]:
        return await asyncio.to_thread(self._fetchall)
