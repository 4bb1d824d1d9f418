"""
Alembic migrations environment for AllOps PM.

Supports:
- PostgreSQL (production)
- SQLite (development)
"""

from __future__ import annotations

import os
from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

# Keep allops_pm.database from building its module-level engine
os.environ["ALEMBIC_RUNNING"] = "true"

from allops_pm.models.base import Base
from allops_pm.pm_engine.bootstrap import import_all_models

import_all_models()

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def get_database_url() -> str:
    """Get database URL from environment or config."""
    url = os.getenv("ALLOPS_DATABASE_URL")
    if url:
        return url

    config_url = config.get_main_option("sqlalchemy.url", "sqlite:///allops_pm_dev.db")
    if config_url.startswith("driver://"):
        return "sqlite:///allops_pm_dev.db"
    return config_url


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode, emitting SQL without a DBAPI."""
    context.configure(
        url=get_database_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=True,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode against a live connection."""
    configuration = config.get_section(config.config_ini_section, {})
    configuration["sqlalchemy.url"] = get_database_url()

    connectable = engine_from_config(
        configuration,
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            render_as_batch=connection.dialect.name == "sqlite",
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
