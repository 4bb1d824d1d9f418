from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

import httpx

from allops_pm.config import get_settings


@dataclass(frozen=True)
class OutboundHeaders:
    user_agent: Optional[str]
    accept: Optional[str] = None

    def as_dict(self) -> dict[str, str]:
        headers: dict[str, str] = {}
        if self.user_agent:
            headers["User-Agent"] = self.user_agent
        if self.accept:
            headers["Accept"] = self.accept
        return headers


def build_outbound_headers(*, accept: Optional[str] = None) -> OutboundHeaders:
    settings = get_settings()
    return OutboundHeaders(user_agent=settings.HTTP_USER_AGENT, accept=accept)


def response_detail(response: httpx.Response) -> Any:
    """Upstream body for error reporting: parsed JSON when possible, else text."""
    try:
        return response.json()
    except ValueError:
        text = response.text
        return text[:2000] if text else None
