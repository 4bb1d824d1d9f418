from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import httpx

from allops_pm.exceptions import NotFoundError, UpstreamUnavailableError
from allops_pm.integrations.file_host import EmptyPayloadError, FileHostClient
from allops_pm.pm_engine.services.candidate_urls import resolve_candidate_urls
from allops_pm.pm_engine.services.share_link_service import ShareLinkService

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "image/png"
DEFAULT_CACHE_CONTROL = "private, max-age=60"
_PASSTHROUGH_HEADERS = ("ETag", "Last-Modified")


@dataclass
class ProxiedImage:
    content: bytes
    content_type: str
    source_url: str
    headers: Dict[str, str] = field(default_factory=dict)


def _describe_failure(exc: Exception) -> Dict[str, object]:
    info: Dict[str, object] = {"message": str(exc) or exc.__class__.__name__}
    if isinstance(exc, httpx.HTTPStatusError):
        info["status"] = exc.response.status_code
    return info


class DiagramProxyService:
    def __init__(self, links: ShareLinkService, client: Optional[FileHostClient] = None):
        self.links = links
        self.client = client or FileHostClient()

    async def fetch_latest(self, owner_id: int) -> ProxiedImage:
        latest = self.links.latest(owner_id)
        if latest is None or not (latest.url or "").strip():
            raise NotFoundError("Diagram not found", owner_id=owner_id)

        candidates = resolve_candidate_urls(latest.url)
        attempts: List[Dict[str, object]] = []
        last_error: Optional[Exception] = None

        for candidate in candidates:
            logger.info("Fetching diagram candidate for customer %s: %s", owner_id, candidate)
            try:
                fetched = await self.client.fetch(candidate)
            except (httpx.HTTPError, httpx.InvalidURL, EmptyPayloadError) as exc:
                last_error = exc
                failure = {"url": candidate, **_describe_failure(exc)}
                attempts.append(failure)
                logger.warning(
                    "Diagram candidate failed for customer %s: %s (%s)",
                    owner_id,
                    candidate,
                    failure["message"],
                )
                continue

            upstream = fetched.headers
            headers: Dict[str, str] = {
                "Cache-Control": upstream.get("cache-control") or DEFAULT_CACHE_CONTROL,
                "Content-Length": str(len(fetched.content)),
            }
            for name in _PASSTHROUGH_HEADERS:
                value = upstream.get(name)
                if value:
                    headers[name] = value
            return ProxiedImage(
                content=fetched.content,
                content_type=upstream.get("content-type") or DEFAULT_CONTENT_TYPE,
                source_url=candidate,
                headers=headers,
            )

        raise UpstreamUnavailableError(
            "Unable to load the diagram image from the stored link",
            detail=str(last_error) if last_error else None,
            attempts=attempts,
        )
