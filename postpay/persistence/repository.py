"""Store abstraction for pipeline state persistence."""

from __future__ import annotations

from typing import Protocol

from .models import PipelinePatch, PipelineRecord


class PipelineStore(Protocol):
    """Protocol for pipeline state persistence backends.

    Mutating operations commit before returning. They return ``None`` when the
    pipeline is unknown or the write could not be committed; they do not raise
    for either case.
    """

    async def get(self, pipeline_id: str) -> PipelineRecord | None:
        """Retrieve the pipeline by id."""

    async def create(
        self, pipeline_id: str, data: dict | None = None
    ) -> PipelineRecord | None:
        """Create a pending pipeline, or return the existing one unchanged."""

    async def insert(self, record: PipelineRecord) -> PipelineRecord | None:
        """Persist a complete record unless its id exists; return the stored record."""

    async def update(
        self, pipeline_id: str, patch: PipelinePatch | dict
    ) -> PipelineRecord | None:
        """Apply ``patch`` to the pipeline and bump ``updatedAt``."""

    async def append_log(
        self, pipeline_id: str, message: str, touch: bool = True
    ) -> PipelineRecord | None:
        """Append a timestamped log entry."""

    async def list(self) -> list[PipelineRecord]:
        """Return all pipelines, newest first."""
