"""
Diagram ingestion.

An uploaded PNG is handed to the external workflow, which stores it with a
hosting provider and records the resulting share link in `url_share` on its
own schedule. The dispatch reply may or may not carry the share URL, so after
dispatching we poll the share link log for a row newer than the one seen
before dispatch, and only fall back to the URL from the reply when the poll
window closes without one.
"""

from __future__ import annotations

import base64
import binascii
import logging
import mimetypes
import re
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Sequence, Tuple

import httpx

from allops_pm.config import Settings, get_settings
from allops_pm.exceptions import (
    InvalidInputError,
    MisconfiguredError,
    NotFoundError,
    UpstreamError,
    UpstreamTimeoutError,
)
from allops_pm.integrations.http import response_detail
from allops_pm.integrations.workflow import WorkflowClient
from allops_pm.pm_engine.models.share_link import ShareLink
from allops_pm.pm_engine.services.cancellation import CancelToken
from allops_pm.pm_engine.services.share_link_service import ShareLinkService
from allops_pm.pm_engine.services.webhook_config_service import (
    WebhookConfig,
    WebhookConfigService,
    WebhookMode,
)

logger = logging.getLogger(__name__)

PNG_MIME = "image/png"
PNG_EXTENSION = "png"
SOURCE_WORKFLOW = "workflow"
SOURCE_EXTERNAL = "external"

_DATA_URL_RE = re.compile(r"^data:(?P<mime>[^;,]+);base64,(?P<data>.+)$", re.IGNORECASE | re.DOTALL)
_CODE_STRIP_RE = re.compile(r"[^A-Za-z0-9_-]")

SHAREABLE_URL_PATHS: Tuple[Tuple[str, ...], ...] = (
    ("publicUrl",),
    ("url",),
    ("data", "publicUrl"),
)


@dataclass
class DiagramFile:
    content: bytes
    content_type: Optional[str] = None
    filename: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass
class DiagramUpload:
    """Exactly one of the three sources must be set."""

    file: Optional[DiagramFile] = None
    image_data: Optional[str] = None
    external_url: Optional[str] = None


@dataclass(frozen=True)
class LinkMarker:
    id: Any
    created_at: Any


def parse_data_url(raw: str) -> Optional[DiagramFile]:
    match = _DATA_URL_RE.match(raw.strip())
    if not match:
        return None
    mime = match.group("mime").strip().lower()
    try:
        content = base64.b64decode(match.group("data").strip(), validate=True)
    except (binascii.Error, ValueError):
        return None
    extension = (mimetypes.guess_extension(mime) or f".{PNG_EXTENSION}").lstrip(".")
    return DiagramFile(content=content, content_type=mime, filename=f"diagram.{extension}")


def is_http_url(raw: Optional[str]) -> bool:
    """Absolute http(s) URL with a host that httpx can send a request to."""
    if not raw:
        return False
    try:
        url = httpx.URL(raw)
    except httpx.InvalidURL:
        return False
    return url.scheme in ("http", "https") and bool(url.host)


def is_png_file(diagram: DiagramFile) -> bool:
    content_type = (diagram.content_type or "").split(";")[0].strip().lower()
    if content_type and content_type != PNG_MIME:
        return False
    if content_type == PNG_MIME:
        return True
    return (diagram.filename or "").lower().endswith(f".{PNG_EXTENSION}")


def sanitize_customer_code(code: str) -> str:
    return _CODE_STRIP_RE.sub("", code or "").upper() or "CUST"


def build_file_name(customer_code: str, when: datetime) -> str:
    stamp = when.strftime("%Y_%m_%d_%H_%M_%S")
    return f"{sanitize_customer_code(customer_code)}_diagram_{stamp}.{PNG_EXTENSION}"


def extract_shareable_url(
    data: Any, paths: Sequence[Tuple[str, ...]] = SHAREABLE_URL_PATHS
) -> Optional[str]:
    # n8n "respond to webhook" nodes often wrap the item in a list
    if isinstance(data, list):
        data = data[0] if data else None
    if not isinstance(data, dict):
        return None
    for path in paths:
        node: Any = data
        for key in path:
            node = node.get(key) if isinstance(node, dict) else None
        if isinstance(node, str) and node.strip():
            return node.strip()
    return None


def _positive_int(value: Any) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return 0
    return number if number > 0 else 0


def _to_millis(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    if not isinstance(value, datetime):
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp() * 1000.0


def has_diagram_changed(baseline: Any, candidate: Any, min_diff_ms: float = 250) -> bool:
    """
    Whether `candidate` is a newer share link than `baseline`.

    Timestamps must advance by more than `min_diff_ms`; smaller differences
    are clock-resolution noise on the same row.
    """
    if candidate is None:
        return False
    if baseline is None:
        return True

    baseline_id = _positive_int(getattr(baseline, "id", None))
    candidate_id = _positive_int(getattr(candidate, "id", None))
    if baseline_id and candidate_id and baseline_id != candidate_id:
        return True

    baseline_ts = _to_millis(getattr(baseline, "created_at", None))
    candidate_ts = _to_millis(getattr(candidate, "created_at", None))
    if baseline_ts is None and candidate_ts is not None:
        return True
    if baseline_ts is not None and candidate_ts is not None:
        return candidate_ts - baseline_ts > min_diff_ms
    return False


class DiagramService:
    def __init__(
        self,
        links: ShareLinkService,
        webhook_config: WebhookConfigService,
        workflow: Optional[WorkflowClient] = None,
        *,
        settings: Optional[Settings] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        settings = settings or get_settings()
        self.links = links
        self.webhook_config = webhook_config
        self.workflow = workflow or WorkflowClient()
        self.max_file_bytes = int(settings.DIAGRAM_MAX_FILE_MB * 1024 * 1024)
        self.poll_timeout_s = settings.DIAGRAM_POLL_TIMEOUT_SECONDS
        self.poll_interval_s = settings.DIAGRAM_POLL_INTERVAL_SECONDS
        self.min_diff_ms = settings.DIAGRAM_POLL_MIN_DIFF_MS
        self._clock = clock

    # -------------------- Validation --------------------

    def _resolve_file(self, upload: DiagramUpload) -> Optional[DiagramFile]:
        image_data = (upload.image_data or "").strip()
        external_url = (upload.external_url or "").strip()
        provided = sum(
            1 for present in (upload.file is not None, bool(image_data), bool(external_url)) if present
        )
        if provided == 0:
            raise InvalidInputError("Missing diagram payload")
        if provided > 1:
            raise InvalidInputError("Provide exactly one of file, imageData or externalUrl")

        if external_url:
            return None

        diagram = upload.file
        if diagram is None:
            diagram = parse_data_url(image_data)
            if diagram is None:
                raise InvalidInputError("Invalid base64 image data", field="imageData")

        if not diagram.content:
            raise InvalidInputError("Diagram file is empty")
        if not is_png_file(diagram):
            raise InvalidInputError("Diagram file must be a PNG image")
        if diagram.size > self.max_file_bytes:
            limit_mb = self.max_file_bytes / (1024 * 1024)
            raise InvalidInputError(f"File size exceeds {limit_mb:.1f} MB limit")
        return diagram

    @staticmethod
    def _require_webhook_url(config: WebhookConfig, *, status_code: int = 500) -> None:
        config_key = "WEBHOOK_TEST_URL" if config.mode == WebhookMode.TEST else "WEBHOOK_PRD_URL"
        if not config.active_url:
            raise MisconfiguredError(
                "Workflow webhook URL is not configured",
                config_key=config_key,
                status_code=status_code,
            )
        if not is_http_url(config.active_url):
            raise MisconfiguredError(
                "Workflow webhook URL is not a valid http(s) URL",
                config_key=config_key,
                status_code=status_code,
            )

    def _require_customer(self, owner_id: int):
        customer = self.links.get_customer(owner_id)
        if customer is None:
            raise NotFoundError("Customer not found", owner_id=owner_id)
        return customer

    # -------------------- Upload --------------------

    async def upload(
        self, owner_id: int, upload: DiagramUpload, *, cancel: Optional[CancelToken] = None
    ) -> Dict[str, Any]:
        cancel = cancel or CancelToken()
        diagram = self._resolve_file(upload)
        if diagram is None:
            return self._record_external(owner_id, (upload.external_url or "").strip())

        customer = self._require_customer(owner_id)
        config = self.webhook_config.get_config()
        self._require_webhook_url(config)

        baseline_link = self.links.latest(owner_id)
        baseline = (
            LinkMarker(id=baseline_link.id, created_at=baseline_link.created_at)
            if baseline_link is not None
            else None
        )
        file_name = build_file_name(customer.code or f"CUST{owner_id}", datetime.now())

        logger.info(
            "Sending diagram to workflow: url=%s mode=%s file=%s size=%s",
            config.active_url,
            config.mode.value,
            file_name,
            diagram.size,
        )
        try:
            reply = await cancel.run(
                self.workflow.dispatch_diagram(
                    config.active_url,
                    owner_id=owner_id,
                    file_name=file_name,
                    content=diagram.content,
                    content_type=PNG_MIME,
                    extension=PNG_EXTENSION,
                )
            )
        except httpx.HTTPStatusError as exc:
            logger.error(
                "Workflow dispatch failed with HTTP %s for customer %s",
                exc.response.status_code,
                owner_id,
            )
            raise UpstreamError(
                "Failed to upload diagram through workflow",
                detail=response_detail(exc.response),
                upstream_status=exc.response.status_code,
            ) from exc
        except httpx.RequestError as exc:
            logger.error("Workflow dispatch failed for customer %s: %s", owner_id, exc)
            raise UpstreamError(
                "Failed to upload diagram through workflow", detail=str(exc) or repr(exc)
            ) from exc
        except httpx.InvalidURL as exc:
            raise MisconfiguredError(
                "Workflow webhook URL is not a valid http(s) URL", config_key="WEBHOOK_PRD_URL"
            ) from exc

        shareable_url = extract_shareable_url(reply)
        if not shareable_url:
            logger.warning(
                "Workflow reply has no shareable URL; waiting for share link update (customer %s)",
                owner_id,
            )

        updated = await self.wait_for_update(owner_id, baseline, cancel)
        if updated is not None:
            return self._result(updated, file_name=file_name, source=SOURCE_WORKFLOW, mode=config.mode.value)

        if shareable_url:
            logger.info("No share link recorded by workflow; storing reply URL for customer %s", owner_id)
            inserted = self.links.record(owner_id, shareable_url)
            return self._result(inserted, file_name=file_name, source=SOURCE_WORKFLOW, mode=config.mode.value)

        raise UpstreamTimeoutError(
            "Workflow did not return a shareable URL before timing out",
            timeout_seconds=self.poll_timeout_s,
        )

    async def wait_for_update(
        self, owner_id: int, baseline: Optional[Any], cancel: CancelToken
    ) -> Optional[ShareLink]:
        started = self._clock()
        while True:
            elapsed = self._clock() - started
            if elapsed >= self.poll_timeout_s:
                return None
            latest = self.links.latest(owner_id, fresh=True)
            if has_diagram_changed(baseline, latest, self.min_diff_ms):
                return latest
            remaining = self.poll_timeout_s - (self._clock() - started)
            if remaining <= 0:
                return None
            await cancel.sleep(min(self.poll_interval_s, remaining))

    def _record_external(self, owner_id: int, external_url: str) -> Dict[str, Any]:
        if not is_http_url(external_url):
            raise InvalidInputError(
                "externalUrl must be an absolute http:// or https:// URL", field="externalUrl"
            )
        self._require_customer(owner_id)
        inserted = self.links.record(owner_id, external_url)
        return self._result(inserted, file_name=None, source=SOURCE_EXTERNAL, mode=None)

    @staticmethod
    def _result(
        link: ShareLink, *, file_name: Optional[str], source: str, mode: Optional[str]
    ) -> Dict[str, Any]:
        payload = link.to_dict()
        payload.update({"file_name": file_name, "source": source, "mode": mode})
        return payload

    # -------------------- Health --------------------

    async def check_webhook_health(self) -> Dict[str, Any]:
        config = self.webhook_config.get_config()
        self._require_webhook_url(config, status_code=503)
        try:
            health = await self.workflow.health(config.active_url)
        except httpx.HTTPStatusError as exc:
            logger.error("Webhook health check returned HTTP %s", exc.response.status_code)
            raise UpstreamError(
                "Webhook responded with unexpected status",
                detail=response_detail(exc.response),
                upstream_status=exc.response.status_code,
            ) from exc
        except httpx.RequestError as exc:
            logger.error("Webhook health check failed: %s", exc)
            raise UpstreamError("Webhook unreachable", detail=str(exc) or repr(exc)) from exc
        except httpx.InvalidURL as exc:
            raise MisconfiguredError(
                "Workflow webhook URL is not a valid http(s) URL",
                config_key="WEBHOOK_PRD_URL",
                status_code=503,
            ) from exc

        return {
            "status": "ok",
            "mode": config.mode.value,
            "url": config.active_url,
            "upstreamStatus": health.get("upstreamStatus"),
            "checkedAt": datetime.now(timezone.utc).isoformat(),
        }
