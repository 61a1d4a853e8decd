"""Pipeline execution engine for postpay."""

from __future__ import annotations

import asyncio
import logging

from .config import PostpayConfig
from .constants import DEFAULT_BASE_DELAY_MS, DEFAULT_MAX_ATTEMPTS
from .contracts import PersistenceError
from .persistence import PipelinePatch, PipelineRecord, PipelineStatus, PipelineStore
from .persistence.models import StepOutcome
from .steps import PlannedStep, StepOperations, plan_steps
from .utils.retry import Sleep, execute_with_retry

logger = logging.getLogger(__name__)


class PipelineEngine:
    """Runs the fixed step sequence of a persisted pipeline.

    Every state transition is written to the store before the next one
    starts, so ``process`` can be called again at any point: steps that
    already succeeded are skipped, a finished pipeline is left untouched.
    """

    def __init__(
        self,
        store: PipelineStore,
        operations: StepOperations,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        base_delay_ms: float = DEFAULT_BASE_DELAY_MS,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._store = store
        self._operations = operations
        self.max_attempts = max_attempts
        self.base_delay_ms = base_delay_ms
        self._sleep = sleep

    @classmethod
    def from_config(
        cls, store: PipelineStore, operations: StepOperations, config: PostpayConfig
    ) -> "PipelineEngine":
        return cls(
            store,
            operations,
            max_attempts=config.retry.max_attempts,
            base_delay_ms=config.retry.base_delay_ms,
        )

    async def process(self, pipeline_id: str) -> PipelineRecord | None:
        """Drive the pipeline to ``finished`` or ``failed``.

        Returns the last persisted record, or ``None`` for an unknown id.

        Raises:
            PersistenceError: If the store cannot confirm a write. The record
                keeps its last committed state.
        """

        record = await self._store.get(pipeline_id)
        if record is None:
            logger.warning(f"Pipeline {pipeline_id} not found")
            return None

        if record.is_finished:
            logger.info(f"Pipeline {pipeline_id} already finished, skipping")
            return await self._log(
                pipeline_id, "Pipeline already finished, skipping", touch=False
            )

        await self._update(
            pipeline_id,
            PipelinePatch(
                status=PipelineStatus.IN_PROGRESS, attempts=record.attempts + 1
            ),
            "status in_progress",
        )
        record = await self._log(pipeline_id, "Processing pipeline")

        for step in plan_steps(record.data, self._operations):
            outcome = await self._run_step(pipeline_id, step)
            if outcome.ok:
                continue
            if not step.required:
                logger.warning(
                    f"Optional step {step.name} failed for pipeline {pipeline_id}, continuing"
                )
                continue
            await self._update(
                pipeline_id, PipelinePatch(status=PipelineStatus.FAILED), "status failed"
            )
            logger.error(f"Pipeline {pipeline_id} failed at {step.name} step")
            return await self._log(pipeline_id, f"Pipeline failed at {step.name} step")

        await self._update(
            pipeline_id, PipelinePatch(status=PipelineStatus.FINISHED), "status finished"
        )
        logger.info(f"Pipeline {pipeline_id} finished")
        return await self._log(pipeline_id, "Pipeline finished successfully")

    async def _run_step(self, pipeline_id: str, step: PlannedStep) -> StepOutcome:
        await self._log(pipeline_id, f"Step: {step.display_name}")

        current = await self._store.get(pipeline_id)
        if current is None:
            raise PersistenceError(pipeline_id, f"read before step {step.name}")
        existing = current.steps.get(step.name)
        if existing is not None and existing.ok:
            await self._log(pipeline_id, f"Skipping {step.name} (already succeeded)")
            return existing
        if existing is not None and not step.required:
            # optional failures are final once attempts are exhausted
            await self._log(pipeline_id, f"Skipping {step.name} (failure already recorded)")
            return existing

        outcome = await execute_with_retry(
            step.operation,
            *step.args,
            max_attempts=self.max_attempts,
            base_delay_ms=self.base_delay_ms,
            sleep=self._sleep,
        )
        await self._update(
            pipeline_id, PipelinePatch(steps={step.name: outcome}), f"step {step.name}"
        )
        await self._log(pipeline_id, f"{step.name} result: {outcome.model_dump_json()}")
        return outcome

    async def _update(
        self, pipeline_id: str, patch: PipelinePatch, action: str
    ) -> PipelineRecord:
        record = await self._store.update(pipeline_id, patch)
        if record is None:
            logger.error(f"Could not persist {action} for pipeline {pipeline_id}")
            raise PersistenceError(pipeline_id, action)
        return record

    async def _log(
        self, pipeline_id: str, message: str, touch: bool = True
    ) -> PipelineRecord:
        record = await self._store.append_log(pipeline_id, message, touch=touch)
        if record is None:
            logger.error(f"Could not append log for pipeline {pipeline_id}: {message}")
            raise PersistenceError(pipeline_id, "log entry")
        return record
