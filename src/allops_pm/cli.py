from __future__ import annotations

import logging
import os
import subprocess
import sys
from typing import Optional

import typer
import uvicorn

from allops_pm import __version__
from allops_pm.config import get_settings

app = typer.Typer(add_completion=False, help="AllOps PM CLI")


def _configure_logging() -> None:
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command()
def start(
    host: Optional[str] = typer.Option(None, help="Bind host"),
    port: Optional[int] = typer.Option(None, help="Bind port"),
    reload: bool = typer.Option(False, help="Auto-reload on changes (dev)"),
) -> None:
    _configure_logging()
    settings = get_settings()
    uvicorn.run(
        "allops_pm.api.app:app",
        host=host or settings.HOST,
        port=port or settings.PORT,
        reload=reload,
        log_level=settings.LOG_LEVEL.lower(),
    )


@app.command()
def version() -> None:
    typer.echo(__version__)


@app.command("init-db")
def init_db_command() -> None:
    """
    Create all tables on the configured database (dev / SCHEMA_MODE=create_all).
    """
    from allops_pm.database import init_db

    _configure_logging()
    try:
        init_db(create_tables=True)
    except RuntimeError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(1)
    typer.echo(f"Initialized schema on {get_settings().DATABASE_URL}")


@app.command("db")
def db_command(
    action: str = typer.Argument(..., help="upgrade|downgrade|current|history"),
    revision: Optional[str] = typer.Option(
        None, "--revision", "-r", help="Target revision (for upgrade/downgrade)"
    ),
) -> None:
    """
    Database migrations via Alembic.
    """
    alembic_ini = os.path.join(os.getcwd(), "alembic.ini")
    if not os.path.exists(alembic_ini):
        typer.echo("Error: alembic.ini not found", err=True)
        raise typer.Exit(1)

    cmd = [sys.executable, "-m", "alembic", "-c", alembic_ini]
    if action == "upgrade":
        cmd.extend(["upgrade", revision or "head"])
    elif action == "downgrade":
        cmd.extend(["downgrade", revision or "-1"])
    elif action in ("current", "history"):
        cmd.append(action)
    else:
        typer.echo(f"Unknown action: {action}", err=True)
        raise typer.Exit(1)

    typer.echo(f"Running: {' '.join(cmd)}", err=True)
    result = subprocess.run(cmd, cwd=os.getcwd())
    raise typer.Exit(result.returncode)


def main() -> None:
    app()
