from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import httpx

from allops_pm.config import get_settings
from allops_pm.integrations.http import build_outbound_headers

IMAGE_ACCEPT = "image/png,image/*;q=0.9,*/*;q=0.8"


class EmptyPayloadError(Exception):
    pass


@dataclass(frozen=True)
class FetchedFile:
    url: str
    content: bytes
    headers: httpx.Headers


class FileHostClient:
    """Plain GET against arbitrary upstream file hosts."""

    def __init__(
        self,
        *,
        timeout_s: Optional[float] = None,
        max_redirects: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        settings = get_settings()
        self.timeout_s = timeout_s or settings.DIAGRAM_PROXY_TIMEOUT_SECONDS
        self.max_redirects = (
            max_redirects if max_redirects is not None else settings.DIAGRAM_PROXY_MAX_REDIRECTS
        )
        self._transport = transport

    async def fetch(self, url: str) -> FetchedFile:
        """
        Fetch one URL, following at most `max_redirects` redirects.

        Raises httpx.HTTPStatusError unless the final status is 2xx,
        httpx.RequestError on transport failures (including too many
        redirects), httpx.InvalidURL for a malformed URL and
        EmptyPayloadError for an empty body.
        """
        headers = build_outbound_headers(accept=IMAGE_ACCEPT).as_dict()
        async with httpx.AsyncClient(
            timeout=self.timeout_s,
            follow_redirects=True,
            max_redirects=self.max_redirects,
            transport=self._transport,
        ) as client:
            resp = await client.get(url, headers=headers)
            if not resp.is_success:
                raise httpx.HTTPStatusError(
                    f"Upstream returned HTTP {resp.status_code}",
                    request=resp.request,
                    response=resp,
                )
            if not resp.content:
                raise EmptyPayloadError("Empty payload from upstream diagram URL")
            return FetchedFile(url=url, content=resp.content, headers=resp.headers)
