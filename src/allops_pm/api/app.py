from __future__ import annotations

from fastapi import FastAPI

from allops_pm import __version__
from allops_pm.api.routers.health import router as health_router
from allops_pm.config import get_settings
from allops_pm.database import init_db
from allops_pm.exceptions import register_exception_handlers
from allops_pm.pm_engine.web.diagram_router import diagram_router
from allops_pm.pm_engine.web.import_router import import_router
from allops_pm.pm_engine.web.settings_router import settings_router


def create_app() -> FastAPI:
    app = FastAPI(title="AllOps PM", version=__version__)
    register_exception_handlers(app)
    app.include_router(health_router, prefix="/api/v1")
    app.include_router(diagram_router, prefix="/api/v1")
    app.include_router(settings_router, prefix="/api/v1")
    app.include_router(import_router, prefix="/api/v1")

    @app.on_event("startup")
    def _startup() -> None:  # pragma: no cover
        # Dev convenience: auto-create tables. Production uses migrations.
        settings = get_settings()
        if settings.ENVIRONMENT == "dev":
            init_db(create_tables=True)

    return app


app = create_app()
