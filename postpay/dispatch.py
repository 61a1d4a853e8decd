"""Pipeline dispatcher for postpay."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Mapping, Optional

from pydantic import ValidationError

from .contracts import PipelineAlreadyFinished, PipelineNotFound, WebhookEvent
from .engine import PipelineEngine
from .persistence import PipelineRecord, PipelineStore

logger = logging.getLogger(__name__)


class PipelineDispatcher:
    """Entry points that start pipeline processing in the background.

    Processing runs as supervised asyncio tasks, at most one per pipeline id.
    A task never raises: errors escaping the engine are logged and appended
    to the pipeline's log.
    """

    def __init__(self, store: PipelineStore, engine: PipelineEngine) -> None:
        self._store = store
        self._engine = engine
        self._tasks: Dict[str, asyncio.Task] = {}

    @property
    def running(self) -> list[str]:
        return [pid for pid, task in self._tasks.items() if not task.done()]

    async def handle_event(self, event: Mapping[str, Any] | WebhookEvent) -> Optional[PipelineRecord]:
        """Create and schedule a pipeline for a verified webhook event.

        Returns the pipeline record, or ``None`` when the event is ignored
        (malformed, not a completed checkout, or no payer email).
        """

        try:
            if not isinstance(event, WebhookEvent):
                event = WebhookEvent.model_validate(event)
            if not event.is_checkout_completed:
                logger.debug(f"Ignoring webhook event of type {event.type}")
                return None
            session = event.checkout_session()
        except ValidationError as exc:
            logger.warning(f"Ignoring malformed webhook event: {exc}")
            return None

        email = session.resolve_email()
        logger.info(f"Payment completed (session={session.id}) for: {email}")
        if not email:
            logger.warning(f"Checkout session {session.id} has no email, ignoring")
            return None

        record = await self._store.create(session.id, session.to_pipeline_data())
        if record is None:
            logger.error(f"Could not create pipeline for session {session.id}")
            return None
        await self._store.append_log(session.id, f"Pipeline created for session {session.id}")
        self.run_pipeline(session.id)
        return record

    def run_pipeline(
        self, pipeline_id: str, error_label: str = "Async processing error"
    ) -> asyncio.Task:
        """Schedule processing of ``pipeline_id``; join the run already in flight."""

        task = self._tasks.get(pipeline_id)
        if task is not None and not task.done():
            logger.info(f"Pipeline {pipeline_id} already running")
            return task

        task = asyncio.create_task(
            self._supervise(pipeline_id, error_label), name=f"pipeline:{pipeline_id}"
        )
        self._tasks[pipeline_id] = task
        task.add_done_callback(lambda t, pid=pipeline_id: self._forget(pid, t))
        return task

    async def retry(self, pipeline_id: str) -> asyncio.Task:
        """Resume a pipeline that has not finished.

        Raises:
            PipelineNotFound: If the id is unknown.
            PipelineAlreadyFinished: If the pipeline already finished.
        """

        record = await self._store.get(pipeline_id)
        if record is None:
            raise PipelineNotFound(pipeline_id)
        if record.is_finished:
            raise PipelineAlreadyFinished(pipeline_id)
        await self._store.append_log(pipeline_id, "Manual retry requested")
        return self.run_pipeline(pipeline_id, error_label="Retry error")

    async def wait_idle(self) -> None:
        """Wait until every scheduled pipeline task has completed."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()))
            for pid, task in list(self._tasks.items()):
                if task.done():
                    self._forget(pid, task)

    async def close(self) -> None:
        await self.wait_idle()

    # ------------------------------------------------------------------
    async def _supervise(
        self, pipeline_id: str, error_label: str
    ) -> Optional[PipelineRecord]:
        try:
            return await self._engine.process(pipeline_id)
        except Exception as exc:
            logger.exception(f"{error_label} for pipeline {pipeline_id}")
            try:
                await self._store.append_log(pipeline_id, f"{error_label}: {exc}")
            except Exception:
                logger.exception(f"Could not record {error_label.lower()} for {pipeline_id}")
            return None

    def _forget(self, pipeline_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(pipeline_id) is task:
            del self._tasks[pipeline_id]
