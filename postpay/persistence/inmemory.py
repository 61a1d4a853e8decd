"""In-memory implementation of the pipeline store."""

from __future__ import annotations

from typing import Dict

from .models import PipelinePatch, PipelineRecord, append_log_entry, apply_patch
from .repository import PipelineStore


class InMemoryPipelineStore(PipelineStore):
    """Store pipeline state in local memory.

    Useful for tests or when no backing store is configured. Data is not
    persisted across process restarts. Records are copied on the way in and
    out so callers never share state with the store.
    """

    def __init__(self) -> None:
        self._pipelines: Dict[str, PipelineRecord] = {}

    # ------------------------------------------------------------------
    async def get(self, pipeline_id: str) -> PipelineRecord | None:
        record = self._pipelines.get(pipeline_id)
        return record.model_copy(deep=True) if record else None

    async def create(
        self, pipeline_id: str, data: dict | None = None
    ) -> PipelineRecord | None:
        return await self.insert(PipelineRecord.new(pipeline_id, data))

    async def insert(self, record: PipelineRecord) -> PipelineRecord | None:
        existing = self._pipelines.get(record.id)
        if existing is None:
            existing = self._pipelines[record.id] = record.model_copy(deep=True)
        return existing.model_copy(deep=True)

    async def update(
        self, pipeline_id: str, patch: PipelinePatch | dict
    ) -> PipelineRecord | None:
        record = self._pipelines.get(pipeline_id)
        if record is None:
            return None
        self._pipelines[pipeline_id] = apply_patch(record, patch)
        return self._pipelines[pipeline_id].model_copy(deep=True)

    async def append_log(
        self, pipeline_id: str, message: str, touch: bool = True
    ) -> PipelineRecord | None:
        record = self._pipelines.get(pipeline_id)
        if record is None:
            return None
        self._pipelines[pipeline_id] = append_log_entry(record, message, touch=touch)
        return self._pipelines[pipeline_id].model_copy(deep=True)

    async def list(self) -> list[PipelineRecord]:
        records = sorted(
            self._pipelines.values(), key=lambda r: r.created_at, reverse=True
        )
        return [r.model_copy(deep=True) for r in records]
