"""
Alternate download URLs for a stored diagram share link.

Share links usually point at a hosting provider's viewer page rather than the
image itself. For known providers we extract the resource id and try the
direct/preview forms first, keeping the original URL as the last resort.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Optional, Pattern, Sequence, Tuple


@dataclass(frozen=True)
class HostPattern:
    name: str
    patterns: Tuple[Pattern[str], ...]
    templates: Tuple[str, ...]

    def extract_id(self, url: str) -> Optional[str]:
        for pattern in self.patterns:
            match = pattern.search(url)
            if match:
                return match.group(1)
        return None


GOOGLE_DRIVE = HostPattern(
    name="google-drive",
    patterns=(
        re.compile(r"https?://drive\.google\.com/file/d/([^/?#]+)", re.IGNORECASE),
        re.compile(r"https?://drive\.google\.com/open\?id=([^&#]+)", re.IGNORECASE),
        re.compile(
            r"https?://drive\.google\.com/uc\?(?:export=(?:view|download)&)?id=([^&#]+)",
            re.IGNORECASE,
        ),
    ),
    templates=(
        "https://drive.google.com/thumbnail?id={id}&sz=w2000",
        "https://drive.google.com/uc?id={id}",
        "https://drive.google.com/uc?export=download&id={id}",
        "https://drive.google.com/uc?export=view&id={id}",
        "https://drive.google.com/file/d/{id}/preview",
    ),
)

KNOWN_HOSTS: Tuple[HostPattern, ...] = (GOOGLE_DRIVE,)


def resolve_candidate_urls(
    raw_url: Optional[str], hosts: Sequence[HostPattern] = KNOWN_HOSTS
) -> List[str]:
    if not raw_url:
        return []
    trimmed = raw_url.strip()
    if not trimmed:
        return []

    urls: List[str] = []

    def push_unique(candidate: str) -> None:
        normalized = candidate.strip()
        if normalized and normalized not in urls:
            urls.append(normalized)

    for host in hosts:
        resource_id = host.extract_id(trimmed)
        if not resource_id:
            continue
        for template in host.templates:
            push_unique(template.format(id=resource_id))
        break

    push_unique(trimmed)
    return urls
