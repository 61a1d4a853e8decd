"""HTTP implementations of the pipeline step operations."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from .config import ServiceConfig
from .contracts import StepOperationError

logger = logging.getLogger(__name__)


def _response_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


class HttpStepOperations:
    """Step operations backed by the community platform webhook and the CRM.

    An operation whose endpoint is not configured succeeds with a
    ``skipped`` payload instead of failing the pipeline.
    """

    def __init__(
        self, settings: ServiceConfig, client: Optional[httpx.AsyncClient] = None
    ) -> None:
        self.settings = settings
        self._client = client

    async def _post(
        self,
        url: str,
        payload: Dict[str, Any],
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        try:
            if self._client is not None:
                response = await self._client.post(
                    url, json=payload, headers=headers, params=params
                )
            else:
                async with httpx.AsyncClient(timeout=self.settings.timeout) as client:
                    response = await client.post(
                        url, json=payload, headers=headers, params=params
                    )
        except httpx.HTTPError as exc:
            raise StepOperationError(f"POST {url} failed: {exc}") from exc

        if response.is_error:
            raise StepOperationError(
                f"POST {url} returned {response.status_code}",
                status=response.status_code,
                body=_response_body(response),
            )
        return response

    async def invite_member(self, email: str) -> Dict[str, Any]:
        url = self.settings.community_webhook_url
        if not url:
            logger.warning("Community webhook URL not configured, skipping invite")
            return {"skipped": True, "reason": "No community webhook URL"}
        response = await self._post(url, {"email": email}, params={"email": email})
        return {
            "status": response.status_code,
            "body": _response_body(response),
            "invited": True,
            "urlUsed": str(response.request.url),
        }

    async def notify_crm(self, member: Dict[str, Any]) -> Dict[str, Any]:
        url = self.settings.crm_endpoint
        if not url:
            return {"skipped": True, "reason": "No CRM endpoint"}
        headers = {}
        if self.settings.crm_api_key:
            headers["Authorization"] = f"Bearer {self.settings.crm_api_key}"
        response = await self._post(
            url, {"event": "paid_member", "member": member}, headers=headers
        )
        return {"status": response.status_code, "body": _response_body(response)}

    async def unlock_content(self, email: str, content_id: str) -> Dict[str, Any]:
        url = self.settings.community_webhook_url
        if not url:
            logger.warning("Community webhook URL not configured, skipping unlock")
            return {"skipped": True, "reason": "No community webhook URL"}
        response = await self._post(
            url, {"email": email, "courseId": content_id, "action": "unlock_course"}
        )
        return {"status": response.status_code, "body": _response_body(response)}
