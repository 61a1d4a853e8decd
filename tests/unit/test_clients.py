import json

import httpx
import pytest

from postpay.clients import HttpStepOperations
from postpay.config import ServiceConfig
from postpay.contracts import StepOperationError


def _operations(handler, **settings) -> HttpStepOperations:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpStepOperations(ServiceConfig(**settings), client=client)


@pytest.mark.asyncio
async def test_invite_posts_email_in_query_and_body():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"queued": True})

    ops = _operations(handler, community_webhook_url="https://hooks.example.com/invite")
    result = await ops.invite_member("a@example.com")

    request = seen[0]
    assert request.method == "POST"
    assert request.url.params["email"] == "a@example.com"
    assert json.loads(request.content) == {"email": "a@example.com"}
    assert result["status"] == 200
    assert result["body"] == {"queued": True}
    assert result["invited"] is True
    assert result["urlUsed"].startswith("https://hooks.example.com/invite?")


@pytest.mark.asyncio
async def test_crm_sends_member_with_bearer_key():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(201, text="created")

    ops = _operations(
        handler, crm_endpoint="https://crm.example.com/members", crm_api_key="secret"
    )
    member = {"email": "a@example.com", "name": "Ada", "sessionId": "cs_1"}
    result = await ops.notify_crm(member)

    request = seen[0]
    assert request.headers["Authorization"] == "Bearer secret"
    assert json.loads(request.content) == {"event": "paid_member", "member": member}
    assert result == {"status": 201, "body": "created"}


@pytest.mark.asyncio
async def test_unlock_sends_course_action():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content))
        return httpx.Response(200, json={})

    ops = _operations(handler, community_webhook_url="https://hooks.example.com/invite")
    await ops.unlock_content("a@example.com", "course-42")

    assert seen == [
        {"email": "a@example.com", "courseId": "course-42", "action": "unlock_course"}
    ]


@pytest.mark.asyncio
async def test_error_status_raises_with_response_details():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, json={"error": "maintenance"})

    ops = _operations(handler, community_webhook_url="https://hooks.example.com/invite")

    with pytest.raises(StepOperationError) as exc_info:
        await ops.invite_member("a@example.com")

    details = exc_info.value.details()
    assert details["status"] == 503
    assert details["body"] == {"error": "maintenance"}


@pytest.mark.asyncio
async def test_transport_error_raises_step_operation_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    ops = _operations(handler, crm_endpoint="https://crm.example.com/members")

    with pytest.raises(StepOperationError, match="connection refused"):
        await ops.notify_crm({"email": "a@example.com"})


@pytest.mark.asyncio
async def test_unconfigured_endpoints_are_skipped():
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    ops = _operations(handler)

    assert (await ops.invite_member("a@example.com"))["skipped"] is True
    assert (await ops.notify_crm({"email": "a@example.com"}))["skipped"] is True
    assert (await ops.unlock_content("a@example.com", "c1"))["skipped"] is True
