"""PostgreSQL implementation of the pipeline store."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable

import asyncpg
from pydantic import ValidationError

from .models import PipelinePatch, PipelineRecord, append_log_entry, apply_patch
from .repository import PipelineStore

logger = logging.getLogger(__name__)

_COLUMNS = "id, created_at, updated_at, status, attempts, data, logs, steps"


class PostgresPipelineStore(PipelineStore):
    """Persist pipeline state using PostgreSQL.

    Read-modify-write operations lock the pipeline row with
    ``SELECT ... FOR UPDATE`` inside a transaction, so writers to the same id
    are serialized while other ids proceed independently. Connection failures
    propagate; statement failures are logged and reported as ``None``.
    """

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False
        self._schema_lock = asyncio.Lock()

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if self._initialized:
            return conn
        try:
            async with self._schema_lock:
                if not self._initialized:
                    await self._ensure_schema(conn)
                    self._initialized = True
        except BaseException:
            await conn.close()
            raise
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS pipelines (
                id TEXT PRIMARY KEY,
                created_at TIMESTAMPTZ NOT NULL,
                updated_at TIMESTAMPTZ NOT NULL,
                status TEXT NOT NULL,
                attempts INTEGER NOT NULL DEFAULT 0,
                data JSONB NOT NULL,
                logs JSONB NOT NULL,
                steps JSONB NOT NULL
            )
            """
        )

    # ------------------------------------------------------------------
    @staticmethod
    def _from_row(row: asyncpg.Record) -> PipelineRecord | None:
        def _json(value: Any) -> Any:
            return json.loads(value) if isinstance(value, str) else value

        try:
            return PipelineRecord(
                id=row["id"],
                created_at=row["created_at"],
                updated_at=row["updated_at"],
                status=row["status"],
                attempts=row["attempts"],
                data=_json(row["data"]) or {},
                logs=_json(row["logs"]) or [],
                steps=_json(row["steps"]) or {},
            )
        except (ValueError, ValidationError) as exc:
            logger.error(f"Skipping unreadable pipeline {row['id']}: {exc}")
            return None

    @staticmethod
    def _json_columns(record: PipelineRecord) -> tuple[str, str, str]:
        doc = record.to_document()
        return json.dumps(doc["data"]), json.dumps(doc["logs"]), json.dumps(doc["steps"])

    async def _mutate(
        self, pipeline_id: str, change: Callable[[PipelineRecord], PipelineRecord]
    ) -> PipelineRecord | None:
        conn = await self._connect()
        try:
            async with conn.transaction():
                row = await conn.fetchrow(
                    f"SELECT {_COLUMNS} FROM pipelines WHERE id = $1 FOR UPDATE",
                    pipeline_id,
                )
                current = self._from_row(row) if row else None
                if current is None:
                    return None
                updated = change(current)
                _, logs, steps = self._json_columns(updated)
                await conn.execute(
                    """
                    UPDATE pipelines
                    SET updated_at = $2, status = $3, attempts = $4,
                        logs = $5::jsonb, steps = $6::jsonb
                    WHERE id = $1
                    """,
                    pipeline_id,
                    updated.updated_at,
                    updated.status.value,
                    updated.attempts,
                    logs,
                    steps,
                )
        except asyncpg.PostgresError as exc:
            logger.error(f"Error saving pipeline {pipeline_id}: {exc}")
            return None
        finally:
            await conn.close()
        return updated

    # ------------------------------------------------------------------
    async def get(self, pipeline_id: str) -> PipelineRecord | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                f"SELECT {_COLUMNS} FROM pipelines WHERE id = $1", pipeline_id
            )
        except asyncpg.PostgresError as exc:
            logger.error(f"Error reading pipeline {pipeline_id}: {exc}")
            return None
        finally:
            await conn.close()
        return self._from_row(row) if row else None

    async def create(
        self, pipeline_id: str, data: dict | None = None
    ) -> PipelineRecord | None:
        return await self.insert(PipelineRecord.new(pipeline_id, data))

    async def insert(self, record: PipelineRecord) -> PipelineRecord | None:
        data, logs, steps = self._json_columns(record)
        conn = await self._connect()
        try:
            await conn.execute(
                f"""
                INSERT INTO pipelines ({_COLUMNS})
                VALUES ($1, $2, $3, $4, $5, $6::jsonb, $7::jsonb, $8::jsonb)
                ON CONFLICT (id) DO NOTHING
                """,
                record.id,
                record.created_at,
                record.updated_at,
                record.status.value,
                record.attempts,
                data,
                logs,
                steps,
            )
            row = await conn.fetchrow(
                f"SELECT {_COLUMNS} FROM pipelines WHERE id = $1", record.id
            )
        except asyncpg.PostgresError as exc:
            logger.error(f"Error saving pipeline {record.id}: {exc}")
            return None
        finally:
            await conn.close()
        return self._from_row(row) if row else None

    async def update(
        self, pipeline_id: str, patch: PipelinePatch | dict
    ) -> PipelineRecord | None:
        return await self._mutate(
            pipeline_id, lambda current: apply_patch(current, patch)
        )

    async def append_log(
        self, pipeline_id: str, message: str, touch: bool = True
    ) -> PipelineRecord | None:
        return await self._mutate(
            pipeline_id,
            lambda current: append_log_entry(current, message, touch=touch),
        )

    async def list(self) -> list[PipelineRecord]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                f"SELECT {_COLUMNS} FROM pipelines ORDER BY created_at DESC"
            )
        except asyncpg.PostgresError as exc:
            logger.error(f"Error listing pipelines: {exc}")
            return []
        finally:
            await conn.close()
        records = [self._from_row(row) for row in rows]
        return [r for r in records if r is not None]
