"""Persistence layer for postpay pipelines."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from ..config import PostpayConfig, load_config
from .file import DEFAULT_STORE_PATH, JSONFileStore
from .inmemory import InMemoryPipelineStore
from .migrate import MigrationReport, migrate_records
from .models import (
    LogEntry,
    PipelinePatch,
    PipelineRecord,
    PipelineStatus,
    StepFailure,
    StepOutcome,
    StepSuccess,
)
from .postgres import PostgresPipelineStore
from .repository import PipelineStore
from .sqlite import SQLitePipelineStore

_store_instance: PipelineStore | None = None


def create_store(store_url: Optional[str]) -> PipelineStore:
    """Build a store for ``store_url`` without touching the shared instance.

    ``None`` or ``memory://`` selects the in-memory store, ``file://<path>``
    or a bare ``*.json`` path the JSON file store, ``sqlite://<path>`` SQLite
    and ``postgres://`` / ``postgresql://`` PostgreSQL.
    """

    if not store_url or store_url == "memory://":
        return InMemoryPipelineStore()
    if store_url.startswith("file://"):
        return JSONFileStore(store_url.replace("file://", "", 1) or DEFAULT_STORE_PATH)
    if store_url.startswith("sqlite://"):
        return SQLitePipelineStore(store_url.replace("sqlite://", "", 1))
    if store_url.startswith("postgres://") or store_url.startswith("postgresql://"):
        return PostgresPipelineStore(store_url)
    if "://" not in store_url and Path(store_url).suffix == ".json":
        return JSONFileStore(store_url)
    raise ValueError(f"Unsupported store backend: {store_url}")


def get_store(
    store_url: Optional[str] = None, config: Optional[PostpayConfig] = None
) -> PipelineStore:
    """Factory function to obtain the pipeline store.

    The backend is selected from ``store_url`` which can be provided
    explicitly or from loaded configuration (which already applies the
    ``POSTPAY_STORE_URL``, ``DATABASE_URL`` and ``PIPELINE_STORE_PATH``
    environment variables). When no store is configured, an in-memory store
    is returned.
    """

    global _store_instance
    if _store_instance is not None and store_url is None and config is None:
        return _store_instance

    config = config or load_config()
    _store_instance = create_store(store_url or config.store_url)
    return _store_instance


__all__ = [
    "DEFAULT_STORE_PATH",
    "LogEntry",
    "PipelinePatch",
    "PipelineRecord",
    "PipelineStatus",
    "PipelineStore",
    "StepFailure",
    "StepOutcome",
    "StepSuccess",
    "InMemoryPipelineStore",
    "JSONFileStore",
    "SQLitePipelineStore",
    "PostgresPipelineStore",
    "MigrationReport",
    "migrate_records",
    "create_store",
    "get_store",
]
