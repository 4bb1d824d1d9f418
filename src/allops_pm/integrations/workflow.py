from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from allops_pm.config import get_settings
from allops_pm.integrations.http import build_outbound_headers

logger = logging.getLogger(__name__)


class WorkflowClient:
    """
    Client for the external automation workflow (n8n webhook).

    The target URL is resolved per call from the webhook settings, so the
    client carries only timeouts and an optional transport (tests).
    """

    def __init__(
        self,
        *,
        timeout_s: Optional[float] = None,
        health_timeout_s: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        settings = get_settings()
        self.timeout_s = timeout_s or settings.WORKFLOW_TIMEOUT_SECONDS
        self.health_timeout_s = health_timeout_s or settings.WORKFLOW_HEALTH_TIMEOUT_SECONDS
        self._transport = transport

    def _client(self, timeout_s: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout_s, transport=self._transport)

    async def dispatch_diagram(
        self,
        url: str,
        *,
        owner_id: int,
        file_name: str,
        content: bytes,
        content_type: str = "image/png",
        extension: str = "png",
    ) -> Any:
        """
        POST the diagram as multipart form data.

        Raises httpx.HTTPStatusError for non-2xx replies and httpx.RequestError
        for transport failures. Returns the decoded JSON body, or None when the
        workflow answers with something that is not JSON.
        """
        headers = build_outbound_headers().as_dict()
        files = {"file": (file_name, content, content_type)}
        data = {
            "status": "Active",
            "doctype": "project",
            "owner_id": str(owner_id),
            "extension": extension,
        }
        async with self._client(self.timeout_s) as client:
            resp = await client.post(url, data=data, files=files, headers=headers)
            resp.raise_for_status()
            try:
                return resp.json()
            except ValueError:
                logger.warning("Workflow reply is not JSON (status %s)", resp.status_code)
                return None

    async def health(self, url: str) -> Dict[str, Any]:
        headers = build_outbound_headers().as_dict()
        async with self._client(self.health_timeout_s) as client:
            resp = await client.get(url, params={"health": "1"}, headers=headers)
            resp.raise_for_status()
            return {"upstreamStatus": resp.status_code}
