from __future__ import annotations

import asyncio
import importlib
import sys
from typing import List, Optional, Type

import typer
from pydantic import BaseModel
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from polystore.config import get_settings
from polystore.errors import BackendError, MisuseError, PolystoreError
from polystore.infrastructure.db_factory import open_database, redact_url
from polystore.reporter import print_steps
from polystore.tables.abstract import Database
from polystore.utils.logging import configure_logging

app = typer.Typer(help="polystore schema CLI.")

URL_OPTION = typer.Option(
    None,
    "--url",
    "-u",
    help="Database URL (default: DATABASE_URL from settings).",
)


def load_model(path: str) -> Type[BaseModel]:
    """
    Import a record model from ``package.module:ClassName``.
    """
    module_name, _, attr = path.partition(":")
    if not module_name or not attr:
        raise typer.BadParameter(f"expected 'package.module:ClassName', got {path!r}")
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise typer.BadParameter(f"cannot import {module_name!r}: {exc}") from exc
    model = getattr(module, attr, None)
    if not (isinstance(model, type) and issubclass(model, BaseModel)):
        raise typer.BadParameter(f"{path!r} is not a pydantic model class")
    return model


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type(BackendError),
    reraise=True,
)
async def connect(url: Optional[str]) -> Database:
    """
    Open the database, retrying transient connection failures.

    A malformed URL raises `MisuseError` and is not retried.
    """
    return await open_database(url)


async def _connect_with_settings(url: Optional[str]) -> Database:
    settings = get_settings()
    return await connect.retry_with(stop=stop_after_attempt(settings.connect_retries))(url)


async def _plan(url: Optional[str], models: List[Type[BaseModel]]) -> None:
    async with await _connect_with_settings(url) as db:
        for model in models:
            table = await db.table(model, reconcile=False)
            print_steps(f"Plan for {table.name} ({db.name})", await table.plan())


async def _migrate(url: Optional[str], models: List[Type[BaseModel]]) -> None:
    async with await _connect_with_settings(url) as db:
        for model in models:
            table = await db.table(model, reconcile=False)
            print_steps(f"Applied to {table.name} ({db.name})", await table.reconcile())


def _run(coro) -> None:
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.log_json)
    try:
        asyncio.run(coro)
    except MisuseError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=2) from exc
    except PolystoreError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc


@app.command()
def info() -> None:
    """
    Show effective configuration values.
    """
    settings = get_settings()
    typer.echo(
        f"DATABASE_URL={redact_url(settings.database_url)} | "
        f"pool={settings.db_pool_min_size}..{settings.db_pool_max_size} "
        f"log={settings.log_level}{' (json)' if settings.log_json else ''} "
        f"connect_retries={settings.connect_retries}"
    )


@app.command()
def plan(
    models: List[str] = typer.Argument(..., help="Models as 'package.module:ClassName'."),
    url: Optional[str] = URL_OPTION,
) -> None:
    """
    Show the DDL steps reconciliation would run, without applying them.
    """
    _run(_plan(url, [load_model(path) for path in models]))


@app.command()
def migrate(
    models: List[str] = typer.Argument(..., help="Models as 'package.module:ClassName'."),
    url: Optional[str] = URL_OPTION,
) -> None:
    """
    Reconcile the schema of each model and print the applied steps.
    """
    _run(_migrate(url, [load_model(path) for path in models]))


def main() -> None:
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)


if __name__ == "__main__":
    main()
