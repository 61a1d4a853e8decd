import json

import pytest

from postpay.persistence import JSONFileStore, PipelineStatus


@pytest.mark.asyncio
async def test_initialize_creates_empty_document(tmp_path):
    path = tmp_path / "nested" / "pipelines.json"
    store = JSONFileStore(path)

    assert await store.list() == []
    assert not path.exists()

    await store.initialize()

    assert json.loads(path.read_text()) == {}


@pytest.mark.asyncio
async def test_document_layout_is_camel_case(tmp_path):
    path = tmp_path / "pipelines.json"
    store = JSONFileStore(path)
    await store.create("cs_1", {"email": "a@example.com"})
    await store.append_log("cs_1", "Pipeline created for session cs_1")

    document = json.loads(path.read_text())

    assert list(document) == ["cs_1"]
    entry = document["cs_1"]
    assert entry["createdAt"] and entry["updatedAt"]
    assert entry["status"] == "pending"
    assert entry["logs"][0]["message"] == "Pipeline created for session cs_1"
    assert entry["steps"] == {}
    assert not list(tmp_path.glob("*.tmp"))


@pytest.mark.asyncio
async def test_corrupt_document_reads_as_empty(tmp_path):
    path = tmp_path / "pipelines.json"
    path.write_text("{not json")
    store = JSONFileStore(path)

    assert await store.get("cs_1") is None
    assert await store.list() == []


@pytest.mark.asyncio
async def test_corrupt_document_is_never_overwritten(tmp_path):
    path = tmp_path / "pipelines.json"
    path.write_text("{not json")
    store = JSONFileStore(path)

    assert await store.create("cs_1", {"email": "a@example.com"}) is None

    assert path.read_text() == "{not json"


@pytest.mark.asyncio
async def test_legacy_document_is_loaded(tmp_path):
    path = tmp_path / "pipelines.json"
    path.write_text(
        json.dumps(
            {
                "cs_legacy": {
                    "id": "cs_legacy",
                    "createdAt": "2025-03-01T10:00:00.000Z",
                    "updatedAt": "2025-03-01T10:00:05.000Z",
                    "status": "failed",
                    "attempts": 0,
                    "data": {"email": "old@example.com"},
                    "logs": [{"ts": "2025-03-01T10:00:01.000Z", "entry": "Processing pipeline"}],
                    "steps": {"invite": {"ok": False, "attempt": 3, "error": "timeout"}},
                }
            }
        )
    )
    store = JSONFileStore(path)

    record = await store.get("cs_legacy")
    assert record.status == PipelineStatus.FAILED
    assert record.logs[0].message == "Processing pipeline"

    await store.append_log("cs_legacy", "Manual retry requested")
    document = json.loads(path.read_text())
    assert document["cs_legacy"]["logs"][0] == {
        "timestamp": "2025-03-01T10:00:01Z",
        "message": "Processing pipeline",
    }
    assert document["cs_legacy"]["logs"][1]["message"] == "Manual retry requested"


@pytest.mark.asyncio
async def test_unreadable_record_does_not_hide_others(tmp_path):
    path = tmp_path / "pipelines.json"
    store = JSONFileStore(path)
    await store.create("cs_good")
    document = json.loads(path.read_text())
    document["cs_bad"] = {"id": "cs_bad", "status": "exploded"}
    path.write_text(json.dumps(document))

    records = await store.list()

    assert [r.id for r in records] == ["cs_good"]
    assert await store.get("cs_bad") is None
    assert await store.update("cs_bad", {"status": "failed"}) is None


@pytest.mark.asyncio
async def test_second_store_instance_sees_committed_state(tmp_path):
    path = tmp_path / "pipelines.json"
    writer = JSONFileStore(path)
    await writer.create("cs_1", {"email": "a@example.com"})
    await writer.update("cs_1", {"status": "in_progress", "attempts": 1})

    reader = JSONFileStore(path)
    record = await reader.get("cs_1")

    assert record.status == PipelineStatus.IN_PROGRESS
    assert record.attempts == 1
