import asyncio
import base64
import re
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock

import httpx
import pytest

from allops_pm.config import Settings
from allops_pm.exceptions import (
    InvalidInputError,
    MisconfiguredError,
    NotFoundError,
    OperationCancelledError,
    UpstreamError,
    UpstreamTimeoutError,
)
from allops_pm.integrations.workflow import WorkflowClient
from allops_pm.pm_engine.models.share_link import ShareLink
from allops_pm.pm_engine.services.cancellation import CancelToken
from allops_pm.pm_engine.services.diagram_service import (
    DiagramFile,
    DiagramService,
    DiagramUpload,
    build_file_name,
    extract_shareable_url,
    has_diagram_changed,
    parse_data_url,
)
from allops_pm.pm_engine.services.share_link_service import ShareLinkService
from allops_pm.pm_engine.services.webhook_config_service import (
    WebhookConfigService,
    WebhookDefaults,
)

WEBHOOK_URL = "https://n8n.example.com/webhook/diagram"
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 1992


def _settings(**overrides):
    values = {
        "DIAGRAM_POLL_TIMEOUT_SECONDS": 0.05,
        "DIAGRAM_POLL_INTERVAL_SECONDS": 0.01,
        "DIAGRAM_MAX_FILE_MB": 5.0,
    }
    values.update(overrides)
    return Settings(**values)


def _service(db, handler, *, defaults=None, settings=None):
    workflow = WorkflowClient(timeout_s=1, transport=httpx.MockTransport(handler))
    return DiagramService(
        ShareLinkService(db),
        WebhookConfigService(db, defaults or WebhookDefaults(prd_url=WEBHOOK_URL)),
        workflow,
        settings=settings or _settings(),
    )


def _png_upload():
    return DiagramUpload(
        file=DiagramFile(content=PNG_BYTES, content_type="image/png", filename="net.png")
    )


def _unreachable(request):
    raise AssertionError(f"unexpected workflow call: {request.url}")


# -------------------- Pure helpers --------------------


def test_change_predicate():
    t0 = datetime(2024, 3, 1, 12, 0, 0)
    baseline = SimpleNamespace(id=5, created_at=t0)

    assert has_diagram_changed(None, SimpleNamespace(id=1, created_at=t0)) is True
    assert has_diagram_changed(baseline, None) is False
    assert (
        has_diagram_changed(baseline, SimpleNamespace(id=5, created_at=t0 + timedelta(milliseconds=100)))
        is False
    )
    assert (
        has_diagram_changed(baseline, SimpleNamespace(id=5, created_at=t0 + timedelta(milliseconds=300)))
        is True
    )
    assert has_diagram_changed(baseline, SimpleNamespace(id=6, created_at=t0)) is True
    assert has_diagram_changed(baseline, SimpleNamespace(id=5, created_at=t0)) is False


def test_change_predicate_mixed_timestamp_shapes():
    baseline = SimpleNamespace(id=None, created_at="2024-03-01T12:00:00Z")
    later = SimpleNamespace(id=None, created_at=datetime(2024, 3, 1, 12, 0, 1, tzinfo=timezone.utc))
    assert has_diagram_changed(baseline, later) is True
    assert has_diagram_changed(SimpleNamespace(id=None, created_at=None), later) is True
    assert has_diagram_changed(later, SimpleNamespace(id=None, created_at=None)) is False


def test_extract_shareable_url_paths():
    assert extract_shareable_url({"publicUrl": "https://a", "url": "https://b"}) == "https://a"
    assert extract_shareable_url({"url": " https://b "}) == "https://b"
    assert extract_shareable_url({"data": {"publicUrl": "https://c"}}) == "https://c"
    assert extract_shareable_url([{"url": "https://d"}]) == "https://d"
    assert extract_shareable_url({"url": ""}) is None
    assert extract_shareable_url("https://e") is None
    assert extract_shareable_url([]) is None


def test_build_file_name_sanitises_code():
    when = datetime(2024, 3, 5, 7, 8, 9)
    assert build_file_name("acme 01/x", when) == "ACME01X_diagram_2024_03_05_07_08_09.png"
    assert build_file_name("", when) == "CUST_diagram_2024_03_05_07_08_09.png"


def test_parse_data_url():
    encoded = base64.b64encode(PNG_BYTES).decode()
    diagram = parse_data_url(f"data:image/png;base64,{encoded}")

    assert diagram.content == PNG_BYTES
    assert diagram.content_type == "image/png"
    assert parse_data_url("data:image/png;base64,@@@") is None
    assert parse_data_url("https://example.com/a.png") is None


# -------------------- Validation --------------------


@pytest.mark.parametrize(
    "upload, message",
    [
        (DiagramUpload(), "Missing diagram payload"),
        (
            DiagramUpload(
                file=DiagramFile(content=PNG_BYTES, content_type="image/png"),
                external_url="https://example.com/a.png",
            ),
            "exactly one",
        ),
        (DiagramUpload(image_data="not-a-data-url"), "Invalid base64"),
        (DiagramUpload(file=DiagramFile(content=b"", content_type="image/png")), "empty"),
        (DiagramUpload(file=DiagramFile(content=b"GIF89a", content_type="image/gif")), "PNG"),
        (DiagramUpload(file=DiagramFile(content=b"abc", filename="notes.txt")), "PNG"),
    ],
)
def test_invalid_uploads_rejected(db, seeded, upload, message):
    service = _service(db, _unreachable)

    with pytest.raises(InvalidInputError) as exc:
        asyncio.run(service.upload(1, upload))

    assert message in exc.value.message
    assert db.query(ShareLink).count() == 0


def test_oversized_file_rejected(db, seeded):
    service = _service(db, _unreachable, settings=_settings(DIAGRAM_MAX_FILE_MB=0.001))

    with pytest.raises(InvalidInputError) as exc:
        asyncio.run(service.upload(1, _png_upload()))

    assert "size exceeds" in exc.value.message


def test_png_by_extension_when_type_missing(db, seeded):
    service = _service(db, lambda request: httpx.Response(200, json={"url": "https://x"}))
    upload = DiagramUpload(file=DiagramFile(content=PNG_BYTES, filename="NET.PNG"))

    result = asyncio.run(service.upload(1, upload))

    assert result["url"] == "https://x"


# -------------------- External URL path --------------------


@pytest.mark.parametrize("url", ["ftp://bad", "http://", "http://[::1", "cdn.example.com/a.png"])
def test_external_url_must_be_http(url):
    links = MagicMock()
    service = DiagramService(
        links, MagicMock(), MagicMock(), settings=_settings()
    )

    with pytest.raises(InvalidInputError) as exc:
        asyncio.run(service.upload(1, DiagramUpload(external_url=url)))

    assert exc.value.details["field"] == "externalUrl"
    links.get_customer.assert_not_called()
    links.record.assert_not_called()


def test_external_url_recorded_directly(db, seeded):
    service = _service(db, _unreachable)

    result = asyncio.run(
        service.upload(1, DiagramUpload(external_url=" https://cdn.example.com/acme.png "))
    )

    assert result["source"] == "external"
    assert result["url"] == "https://cdn.example.com/acme.png"
    assert result["mode"] is None
    assert db.query(ShareLink).count() == 1


def test_external_url_for_unknown_customer(db, seeded):
    service = _service(db, _unreachable)

    with pytest.raises(NotFoundError):
        asyncio.run(service.upload(99, DiagramUpload(external_url="https://a/b.png")))


# -------------------- Workflow path --------------------


def test_reply_url_recorded_when_workflow_never_writes(db, seeded):
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["body"] = request.content
        return httpx.Response(200, json={"url": "https://x"})

    service = _service(db, handler)

    result = asyncio.run(service.upload(1, _png_upload()))

    assert result["url"] == "https://x"
    assert result["source"] == "workflow"
    assert result["mode"] == "PRD"
    assert re.fullmatch(r"ACME-01_diagram_\d{4}(_\d{2}){5}\.png", result["file_name"])
    assert db.query(ShareLink).count() == 1
    assert seen["url"] == WEBHOOK_URL
    assert b'name="owner_id"' in seen["body"]
    assert b'name="doctype"' in seen["body"]
    assert result["file_name"].encode() in seen["body"]


def test_share_link_written_by_workflow_wins(db, seeded):
    db.add(
        ShareLink(
            owner_id=1,
            url="https://old",
            type="project",
            created_at=datetime.utcnow() - timedelta(hours=1),
        )
    )
    db.commit()

    def handler(request):
        # The workflow records the hosted file itself before replying.
        db.add(ShareLink(owner_id=1, url="https://hosted/new.png", type="Project", created_at=datetime.utcnow()))
        db.commit()
        return httpx.Response(200, json={"url": "https://reply"})

    service = _service(db, handler)

    result = asyncio.run(service.upload(1, _png_upload()))

    assert result["url"] == "https://hosted/new.png"
    assert result["source"] == "workflow"
    assert db.query(ShareLink).count() == 2


def test_timeout_without_reply_url(db, seeded):
    service = _service(db, lambda request: httpx.Response(200, json={"ok": True}))

    with pytest.raises(UpstreamTimeoutError):
        asyncio.run(service.upload(1, _png_upload()))
    assert db.query(ShareLink).count() == 0


def test_non_json_reply_waits_then_times_out(db, seeded):
    service = _service(db, lambda request: httpx.Response(200, text="accepted"))

    with pytest.raises(UpstreamTimeoutError):
        asyncio.run(service.upload(1, _png_upload()))


def test_dispatch_failure_maps_to_upstream_error(db, seeded):
    service = _service(db, lambda request: httpx.Response(500, json={"message": "boom"}))

    with pytest.raises(UpstreamError) as exc:
        asyncio.run(service.upload(1, _png_upload()))

    assert exc.value.status_code == 502
    assert exc.value.detail == {"message": "boom"}
    assert exc.value.details["upstream_status"] == 500
    assert db.query(ShareLink).count() == 0


def test_dispatch_transport_error_maps_to_upstream_error(db, seeded):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    service = _service(db, handler)

    with pytest.raises(UpstreamError) as exc:
        asyncio.run(service.upload(1, _png_upload()))
    assert "connection refused" in exc.value.detail


def test_missing_webhook_is_misconfigured(db, seeded):
    service = _service(db, _unreachable, defaults=WebhookDefaults())

    with pytest.raises(MisconfiguredError) as exc:
        asyncio.run(service.upload(1, _png_upload()))
    assert exc.value.status_code == 500


def test_malformed_webhook_url_is_misconfigured(db, seeded):
    service = _service(db, _unreachable, defaults=WebhookDefaults(prd_url="http://[::1"))

    with pytest.raises(MisconfiguredError) as exc:
        asyncio.run(service.upload(1, _png_upload()))
    assert exc.value.status_code == 500
    assert exc.value.details["config_key"] == "WEBHOOK_PRD_URL"
    assert db.query(ShareLink).count() == 0


def test_unknown_customer_not_found(db, seeded):
    service = _service(db, _unreachable)

    with pytest.raises(NotFoundError):
        asyncio.run(service.upload(42, _png_upload()))


def test_cancelled_while_polling(db, seeded):
    service = _service(
        db,
        lambda request: httpx.Response(200, json={"url": "https://x"}),
        settings=_settings(DIAGRAM_POLL_TIMEOUT_SECONDS=5, DIAGRAM_POLL_INTERVAL_SECONDS=1),
    )

    async def run():
        token = CancelToken()
        asyncio.get_running_loop().call_later(0.05, token.cancel)
        await service.upload(1, _png_upload(), cancel=token)

    with pytest.raises(OperationCancelledError):
        asyncio.run(run())
    # No fallback write once the caller has gone.
    assert db.query(ShareLink).count() == 0


# -------------------- Health --------------------


def test_webhook_health_ok(db):
    seen = {}

    def handler(request):
        seen["params"] = dict(request.url.params)
        return httpx.Response(204)

    service = _service(db, handler)

    result = asyncio.run(service.check_webhook_health())

    assert seen["params"] == {"health": "1"}
    assert result["status"] == "ok"
    assert result["url"] == WEBHOOK_URL
    assert result["upstreamStatus"] == 204


def test_webhook_health_unconfigured(db):
    service = _service(db, _unreachable, defaults=WebhookDefaults())

    with pytest.raises(MisconfiguredError) as exc:
        asyncio.run(service.check_webhook_health())
    assert exc.value.status_code == 503


def test_webhook_health_malformed_url(db):
    service = _service(db, _unreachable, defaults=WebhookDefaults(prd_url="http://[::1"))

    with pytest.raises(MisconfiguredError) as exc:
        asyncio.run(service.check_webhook_health())
    assert exc.value.status_code == 503


def test_webhook_health_upstream_failure(db):
    service = _service(db, lambda request: httpx.Response(404, text="no such webhook"))

    with pytest.raises(UpstreamError) as exc:
        asyncio.run(service.check_webhook_health())
    assert exc.value.details["upstream_status"] == 404
    assert exc.value.detail == "no such webhook"
