"""Copy pipeline records between stores."""

from __future__ import annotations

import logging
from typing import List

from pydantic import BaseModel, Field

from .repository import PipelineStore

logger = logging.getLogger(__name__)


class MigrationReport(BaseModel):
    inserted: List[str] = Field(default_factory=list)
    skipped: List[str] = Field(default_factory=list)
    failed: List[str] = Field(default_factory=list)


async def migrate_records(source: PipelineStore, target: PipelineStore) -> MigrationReport:
    """Copy every record from ``source`` into ``target``.

    Records are copied whole, timestamps, logs and step outcomes included.
    Ids already present in ``target`` are left untouched.
    """

    report = MigrationReport()
    for record in reversed(await source.list()):
        if await target.get(record.id) is not None:
            logger.info(f"Skipping existing pipeline {record.id}")
            report.skipped.append(record.id)
            continue
        if await target.insert(record) is None:
            logger.error(f"Could not migrate pipeline {record.id}")
            report.failed.append(record.id)
            continue
        logger.info(f"Inserted pipeline {record.id}")
        report.inserted.append(record.id)
    return report
