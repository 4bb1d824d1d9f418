from __future__ import annotations

import os

import pytest

# Module-level engine in allops_pm.database is built at import time; keep it
# in memory so the suite never touches a developer database file.
os.environ.setdefault("ALLOPS_DATABASE_URL", "sqlite://")
os.environ.setdefault("ALLOPS_ENVIRONMENT", "test")


def pytest_configure(config: pytest.Config) -> None:
    from allops_pm.config import get_settings

    get_settings.cache_clear()
