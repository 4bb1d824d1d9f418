from __future__ import annotations

from fastapi import APIRouter
from sqlalchemy import text

from allops_pm import __version__
from allops_pm.config import get_settings
from allops_pm.database import get_db_session

router = APIRouter(tags=["system"])


@router.get("/health")
def health() -> dict:
    settings = get_settings()
    try:
        with get_db_session() as db:
            db.execute(text("SELECT 1"))
        db_status: dict = {"ok": True}
    except Exception as exc:
        db_status = {"ok": False, "error": str(exc)}
    return {
        "ok": db_status["ok"],
        "service": "allops-pm",
        "version": __version__,
        "environment": settings.ENVIRONMENT,
        "schema_mode": settings.SCHEMA_MODE,
        "db": db_status,
    }
