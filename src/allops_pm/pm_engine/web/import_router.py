from __future__ import annotations

from typing import Any, List

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from allops_pm.database import get_db
from allops_pm.pm_engine.models.snapshot import SnapshotFamily
from allops_pm.pm_engine.services.snapshot_import_service import SnapshotImportService

import_router = APIRouter(prefix="/pm", tags=["PM Import"])


# Fields stay untyped; SnapshotImportService validates them in a fixed order.
class SnapshotImportRequest(BaseModel):
    pm_id: Any = None
    cust_code: Any = None
    env_id: Any = None
    jsonData: Any = None


@import_router.post("/import/content-sizing")
def import_content_sizing(
    payload: SnapshotImportRequest, db: Session = Depends(get_db)
) -> dict:
    return SnapshotImportService(db).import_content_sizing(
        payload.pm_id, payload.cust_code, payload.jsonData
    )


@import_router.post("/import/api-response")
def import_api_response(payload: SnapshotImportRequest, db: Session = Depends(get_db)) -> dict:
    return SnapshotImportService(db).import_api_response(
        payload.pm_id, payload.cust_code, payload.env_id, payload.jsonData
    )


@import_router.post("/import/other-app-response")
def import_other_app_response(
    payload: SnapshotImportRequest, db: Session = Depends(get_db)
) -> dict:
    return SnapshotImportService(db).import_other_app_response(
        payload.pm_id, payload.cust_code, payload.jsonData, env_id=payload.env_id
    )


@import_router.get("/{pm_id}/snapshots/{family}")
def list_snapshots(
    pm_id: int, family: SnapshotFamily, db: Session = Depends(get_db)
) -> List[dict]:
    return SnapshotImportService(db).list_snapshots(pm_id, family)
