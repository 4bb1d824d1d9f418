from __future__ import annotations

"""
PM engine bootstrap helpers.

SQLAlchemy only creates tables for models that have been imported (registered) in the
metadata. Dev workflows use `create_all()`, so this is the explicit import surface that
registers every model for API, CLI and Alembic.
"""


def import_all_models() -> None:
    # Identity anchors (read-only to the sync core)
    from allops_pm.pm_engine.models import customer as _customer  # noqa: F401

    # Sync core
    from allops_pm.pm_engine.models import app_setting as _app_setting  # noqa: F401
    from allops_pm.pm_engine.models import share_link as _share_link  # noqa: F401
    from allops_pm.pm_engine.models import snapshot as _snapshot  # noqa: F401
