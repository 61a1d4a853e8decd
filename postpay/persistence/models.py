"""Data models for persisted pipeline state."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PipelineStatus(str, Enum):
    """Lifecycle states of a pipeline."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    FAILED = "failed"
    FINISHED = "finished"


class LogEntry(BaseModel):
    """Timestamped progress message.

    Entries written by the legacy service used ``ts``/``entry`` keys; both
    spellings are accepted on read.
    """

    timestamp: datetime = Field(
        default_factory=utcnow, validation_alias=AliasChoices("timestamp", "ts")
    )
    message: str = Field(validation_alias=AliasChoices("message", "entry"))


class StepSuccess(BaseModel):
    """Step whose operation succeeded within the attempt budget."""

    ok: Literal[True] = True
    attempt: int
    result: Any = None


class StepFailure(BaseModel):
    """Step whose operation failed on every attempt."""

    ok: Literal[False] = False
    attempt: int
    error: Any = None


StepOutcome = Union[StepSuccess, StepFailure]


class PipelinePatch(BaseModel):
    """Partial update of a pipeline record.

    Only mutable fields can be patched. ``steps`` is merged key by key into
    the existing mapping instead of replacing it.
    """

    status: Optional[PipelineStatus] = None
    attempts: Optional[int] = None
    steps: Dict[str, StepOutcome] = Field(default_factory=dict)


class PipelineRecord(BaseModel):
    """Persisted pipeline instance."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    status: PipelineStatus = PipelineStatus.PENDING
    attempts: int = 0
    data: Dict[str, Any] = Field(default_factory=dict)
    logs: List[LogEntry] = Field(default_factory=list)
    steps: Dict[str, StepOutcome] = Field(default_factory=dict)

    @classmethod
    def new(
        cls, pipeline_id: str, data: dict | None = None, now: datetime | None = None
    ) -> "PipelineRecord":
        now = now or utcnow()
        return cls(id=pipeline_id, created_at=now, updated_at=now, data=data or {})

    @property
    def is_finished(self) -> bool:
        return self.status == PipelineStatus.FINISHED

    def step_succeeded(self, name: str) -> bool:
        outcome = self.steps.get(name)
        return outcome is not None and outcome.ok

    def to_document(self) -> dict[str, Any]:
        """Return the JSON-compatible, camelCase representation."""
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> "PipelineRecord":
        return cls.model_validate(document)


def _touch(record: PipelineRecord, now: datetime | None) -> None:
    # updatedAt never drops below createdAt, even with a skewed clock
    record.updated_at = max(now or utcnow(), record.created_at)


def apply_patch(
    record: PipelineRecord,
    patch: PipelinePatch | dict,
    now: datetime | None = None,
) -> PipelineRecord:
    """Return a copy of ``record`` with ``patch`` applied and ``updatedAt`` bumped.

    A recorded success is never replaced by a failure for the same step.
    """

    if isinstance(patch, dict):
        patch = PipelinePatch.model_validate(patch)

    updated = record.model_copy(deep=True)
    if patch.status is not None:
        updated.status = patch.status
    if patch.attempts is not None:
        updated.attempts = patch.attempts
    for name, outcome in patch.steps.items():
        if updated.step_succeeded(name) and not outcome.ok:
            logger.warning(
                f"Ignoring failed outcome for step {name} of pipeline {record.id}: "
                "step already succeeded"
            )
            continue
        updated.steps[name] = outcome
    _touch(updated, now)
    return updated


def append_log_entry(
    record: PipelineRecord,
    message: str,
    touch: bool = True,
    now: datetime | None = None,
) -> PipelineRecord:
    """Return a copy of ``record`` with ``message`` appended to its logs."""

    updated = record.model_copy(deep=True)
    updated.logs.append(LogEntry(timestamp=now or utcnow(), message=message))
    if touch:
        _touch(updated, now)
    return updated
