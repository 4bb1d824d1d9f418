from __future__ import annotations

from fastapi import Depends
from sqlalchemy.orm import Session

from allops_pm.config import get_settings
from allops_pm.database import get_db
from allops_pm.integrations.file_host import FileHostClient
from allops_pm.integrations.workflow import WorkflowClient
from allops_pm.pm_engine.services.webhook_config_service import (
    WebhookConfigService,
    WebhookDefaults,
)


def get_workflow_client() -> WorkflowClient:
    return WorkflowClient()


def get_file_host_client() -> FileHostClient:
    return FileHostClient()


def get_webhook_defaults() -> WebhookDefaults:
    return WebhookDefaults.from_settings(get_settings())


def get_webhook_config_service(
    db: Session = Depends(get_db),
    defaults: WebhookDefaults = Depends(get_webhook_defaults),
) -> WebhookConfigService:
    return WebhookConfigService(db, defaults)
