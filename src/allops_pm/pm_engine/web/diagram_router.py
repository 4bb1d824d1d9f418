from __future__ import annotations

import asyncio
from typing import Any, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, Response
from sqlalchemy.orm import Session
from starlette.datastructures import UploadFile

from allops_pm.api.dependencies.services import (
    get_file_host_client,
    get_webhook_config_service,
    get_workflow_client,
)
from allops_pm.config import Settings, get_settings
from allops_pm.database import get_db
from allops_pm.exceptions import InvalidInputError
from allops_pm.integrations.file_host import FileHostClient
from allops_pm.integrations.workflow import WorkflowClient
from allops_pm.pm_engine.services.cancellation import CancelToken, watch_disconnect
from allops_pm.pm_engine.services.diagram_proxy_service import DiagramProxyService
from allops_pm.pm_engine.services.diagram_service import (
    DiagramFile,
    DiagramService,
    DiagramUpload,
)
from allops_pm.pm_engine.services.share_link_service import ShareLinkService
from allops_pm.pm_engine.services.webhook_config_service import WebhookConfigService

diagram_router = APIRouter(prefix="/customers", tags=["Diagram"])

_FORM_CONTENT_TYPES = ("multipart/form-data", "application/x-www-form-urlencoded")


def _text(value: Any) -> Optional[str]:
    return value.strip() if isinstance(value, str) else None


async def _read_upload(request: Request) -> DiagramUpload:
    content_type = request.headers.get("content-type", "").lower()
    if content_type.startswith(_FORM_CONTENT_TYPES):
        form = await request.form()
        upload = form.get("diagram") or form.get("file")
        diagram = None
        if isinstance(upload, UploadFile):
            diagram = DiagramFile(
                content=await upload.read(),
                content_type=upload.content_type,
                filename=upload.filename,
            )
        return DiagramUpload(
            file=diagram,
            image_data=_text(form.get("imageData")),
            external_url=_text(form.get("externalUrl")),
        )

    try:
        body = await request.json()
    except ValueError as exc:
        raise InvalidInputError("Request body must be JSON or multipart form data") from exc
    if not isinstance(body, dict):
        raise InvalidInputError("Request body must be a JSON object")
    return DiagramUpload(
        image_data=_text(body.get("imageData")),
        external_url=_text(body.get("externalUrl")),
    )


def _diagram_service(
    db: Session,
    webhook_config: WebhookConfigService,
    workflow: WorkflowClient,
    settings: Settings,
) -> DiagramService:
    return DiagramService(ShareLinkService(db), webhook_config, workflow, settings=settings)


@diagram_router.get("/diagram-webhook-health")
async def diagram_webhook_health(
    db: Session = Depends(get_db),
    webhook_config: WebhookConfigService = Depends(get_webhook_config_service),
    workflow: WorkflowClient = Depends(get_workflow_client),
    settings: Settings = Depends(get_settings),
) -> dict:
    service = _diagram_service(db, webhook_config, workflow, settings)
    return await service.check_webhook_health()


@diagram_router.get("/{owner_id}/diagram")
def get_latest_diagram(owner_id: int, db: Session = Depends(get_db)) -> Optional[dict]:
    latest = ShareLinkService(db).latest(owner_id)
    return latest.to_dict() if latest is not None else None


@diagram_router.get("/{owner_id}/diagram/image")
async def proxy_diagram_image(
    owner_id: int,
    db: Session = Depends(get_db),
    client: FileHostClient = Depends(get_file_host_client),
) -> Response:
    image = await DiagramProxyService(ShareLinkService(db), client).fetch_latest(owner_id)
    return Response(content=image.content, media_type=image.content_type, headers=image.headers)


@diagram_router.post("/{owner_id}/diagram", status_code=201)
async def upload_diagram(
    owner_id: int,
    request: Request,
    db: Session = Depends(get_db),
    webhook_config: WebhookConfigService = Depends(get_webhook_config_service),
    workflow: WorkflowClient = Depends(get_workflow_client),
    settings: Settings = Depends(get_settings),
) -> JSONResponse:
    upload = await _read_upload(request)
    service = _diagram_service(db, webhook_config, workflow, settings)

    token = CancelToken()
    watcher = asyncio.create_task(watch_disconnect(request.is_disconnected, token))
    try:
        result = await service.upload(owner_id, upload, cancel=token)
    finally:
        watcher.cancel()
    return JSONResponse(result, status_code=201)
