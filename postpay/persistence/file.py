"""JSON file implementation of the pipeline store."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import uuid
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from pydantic import ValidationError

from .models import PipelinePatch, PipelineRecord, append_log_entry, apply_patch
from .repository import PipelineStore

logger = logging.getLogger(__name__)

DEFAULT_STORE_PATH = Path("data") / "pipelines.json"

Document = Dict[str, Any]


class JSONFileStore(PipelineStore):
    """Persist pipeline state in a single JSON document.

    The document maps pipeline id to record. Every mutation is a whole-file
    read-modify-write performed under one lock and committed by writing a
    temporary file, fsyncing it and renaming it over the store file.
    """

    def __init__(self, path: str | Path = DEFAULT_STORE_PATH):
        self.path = Path(path)
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # File handling
    def _load(self, create: bool = True) -> Document:
        """Read the document, creating an empty one if absent and ``create``.

        Raises ``OSError`` or ``ValueError`` when the file is unreadable or
        does not hold a JSON object.
        """

        if not self.path.exists():
            if create:
                self._write({})
            return {}
        raw = self.path.read_text(encoding="utf-8")
        if not raw.strip():
            return {}
        document = json.loads(raw)
        if not isinstance(document, dict):
            raise ValueError("pipeline store document is not a JSON object")
        return document

    def _write(self, document: Document) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(f".{self.path.name}.{uuid.uuid4().hex}.tmp")
        try:
            with open(tmp_path, "w", encoding="utf-8") as fh:
                json.dump(document, fh, indent=2)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_path, self.path)
        finally:
            if tmp_path.exists():
                tmp_path.unlink()

    def _read_document(self, create: bool = False) -> Document:
        try:
            return self._load(create=create)
        except (OSError, ValueError) as exc:
            logger.error(f"Error loading pipeline store {self.path}: {exc}")
            return {}

    def _parse(self, pipeline_id: str, raw: Any) -> PipelineRecord | None:
        try:
            return PipelineRecord.from_document(raw)
        except ValidationError as exc:
            logger.error(f"Skipping unreadable pipeline {pipeline_id}: {exc}")
            return None

    def _mutate(
        self,
        pipeline_id: str,
        change: Callable[[Optional[PipelineRecord]], Optional[PipelineRecord]],
    ) -> PipelineRecord | None:
        try:
            document = self._load()
        except (OSError, ValueError) as exc:
            # never overwrite a document that could not be read
            logger.error(f"Refusing to write pipeline store {self.path}: {exc}")
            return None

        current = None
        if pipeline_id in document:
            current = self._parse(pipeline_id, document[pipeline_id])
            if current is None:
                return None
        updated = change(current)
        if updated is None or updated is current:
            return updated

        document[pipeline_id] = updated.to_document()
        try:
            self._write(document)
        except OSError as exc:
            logger.error(f"Error saving pipeline store {self.path}: {exc}")
            return None
        return updated

    async def _locked(self, func: Callable[..., Any], *args: Any) -> Any:
        async with self._lock:
            return await asyncio.to_thread(func, *args)

    # ------------------------------------------------------------------
    # Store API
    async def initialize(self) -> None:
        """Create the store file if it does not exist yet."""
        await self._locked(self._read_document, True)

    async def get(self, pipeline_id: str) -> PipelineRecord | None:
        document = await asyncio.to_thread(self._read_document)
        if pipeline_id not in document:
            return None
        return self._parse(pipeline_id, document[pipeline_id])

    async def create(
        self, pipeline_id: str, data: dict | None = None
    ) -> PipelineRecord | None:
        return await self.insert(PipelineRecord.new(pipeline_id, data))

    async def insert(self, record: PipelineRecord) -> PipelineRecord | None:
        return await self._locked(
            self._mutate, record.id, lambda current: current or record
        )

    async def update(
        self, pipeline_id: str, patch: PipelinePatch | dict
    ) -> PipelineRecord | None:
        return await self._locked(
            self._mutate,
            pipeline_id,
            lambda current: apply_patch(current, patch) if current else None,
        )

    async def append_log(
        self, pipeline_id: str, message: str, touch: bool = True
    ) -> PipelineRecord | None:
        return await self._locked(
            self._mutate,
            pipeline_id,
            lambda current: (
                append_log_entry(current, message, touch=touch) if current else None
            ),
        )

    async def list(self) -> list[PipelineRecord]:
        document = await asyncio.to_thread(self._read_document)
        records = []
        for pipeline_id, raw in document.items():
            record = self._parse(pipeline_id, raw)
            if record is not None:
                records.append(record)
        return sorted(records, key=lambda r: r.created_at, reverse=True)
