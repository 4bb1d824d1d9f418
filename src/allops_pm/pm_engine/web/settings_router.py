from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from allops_pm.api.dependencies.services import get_webhook_config_service
from allops_pm.pm_engine.services.webhook_config_service import WebhookConfigService

settings_router = APIRouter(prefix="/settings", tags=["Settings"])


class WebhookSettingsUpdate(BaseModel):
    mode: Optional[str] = None
    testUrl: Optional[str] = None
    prdUrl: Optional[str] = None


@settings_router.get("/webhook")
def get_webhook_settings(
    service: WebhookConfigService = Depends(get_webhook_config_service),
) -> dict:
    return service.get_config().to_dict()


@settings_router.put("/webhook")
def update_webhook_settings(
    payload: WebhookSettingsUpdate,
    service: WebhookConfigService = Depends(get_webhook_config_service),
) -> dict:
    # Only fields present in the body are applied; an explicit null clears the override.
    supplied = payload.model_fields_set
    kwargs = {}
    if "mode" in supplied:
        kwargs["mode"] = payload.mode
    if "testUrl" in supplied:
        kwargs["test_url"] = payload.testUrl
    if "prdUrl" in supplied:
        kwargs["prd_url"] = payload.prdUrl
    return service.update_config(**kwargs).to_dict()
