from typing import Any, Dict, List, Optional

import pytest

from postpay import PipelineEngine
from postpay.contracts import StepOperationError
from postpay.persistence import InMemoryPipelineStore


async def no_sleep(delay: float) -> None:
    return None


class StubOperations:
    """Step operations that count calls and fail on demand."""

    def __init__(self) -> None:
        self.calls: Dict[str, int] = {"invite": 0, "crm": 0, "unlock": 0}
        self.args: Dict[str, List[tuple]] = {"invite": [], "crm": [], "unlock": []}
        self._failures: Dict[str, int] = {}

    def fail(self, name: str, times: Optional[int] = None) -> None:
        """Make ``name`` fail ``times`` times, or always when ``times`` is None."""
        self._failures[name] = -1 if times is None else times

    def recover(self, name: str) -> None:
        self._failures.pop(name, None)

    async def _call(self, name: str, *args: Any) -> Dict[str, Any]:
        self.calls[name] += 1
        self.args[name].append(args)
        remaining = self._failures.get(name, 0)
        if remaining:
            if remaining > 0:
                self._failures[name] = remaining - 1
            raise StepOperationError(f"{name} unavailable")
        return {"step": name}

    async def invite_member(self, email):
        return await self._call("invite", email)

    async def notify_crm(self, member):
        return await self._call("crm", member)

    async def unlock_content(self, email, content_id):
        return await self._call("unlock", email, content_id)


@pytest.fixture
def operations() -> StubOperations:
    return StubOperations()


@pytest.fixture
def store() -> InMemoryPipelineStore:
    return InMemoryPipelineStore()


@pytest.fixture
def engine(store, operations) -> PipelineEngine:
    return PipelineEngine(
        store, operations, max_attempts=3, base_delay_ms=100, sleep=no_sleep
    )


@pytest.fixture(autouse=True)
def _isolated_env(tmp_path, monkeypatch):
    monkeypatch.setenv("POSTPAY_CONFIG", str(tmp_path / "missing-config.yaml"))
    for name in (
        "POSTPAY_STORE_URL",
        "DATABASE_URL",
        "PIPELINE_STORE_PATH",
        "PIPELINE_RETRY_COUNT",
        "PIPELINE_RETRY_BASE_MS",
        "SKOOL_WEBHOOK_URL",
        "CRM_ENDPOINT",
        "CRM_API_KEY",
        "POSTPAY_HTTP_TIMEOUT",
        "POSTPAY_LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)
