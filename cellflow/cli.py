"""CLI entrypoint (Typer).

Commands:
- `cellflow serve`: run the API server
- `cellflow backfill TABLE_ID FIELD_ID`: generate a field for every record
- `cellflow order TABLE_ID`: show the order intelligence fields generate in
"""

from __future__ import annotations

import asyncio
import logging

import typer

from cellflow.config import get_settings
from cellflow.container import Container
from cellflow.database.session import close_db, init_db
from cellflow.exceptions import NotFoundError
from cellflow.intelligence.graph import find_unresolved


app = typer.Typer(help="CellFlow CLI.")


@app.command()
def serve(
    host: str = typer.Option(None, "--host", help="Bind address"),
    port: int = typer.Option(None, "--port", help="Bind port"),
    reload: bool = typer.Option(False, "--reload"),
):
    """Run the API server."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "cellflow.api.main:app",
        host=host or settings.api_host,
        port=port or settings.api_port,
        reload=reload,
    )


async def _prepare_db() -> None:
    if get_settings().environment == "development":
        await init_db()


async def _backfill(table_id: str, field_id: str) -> None:
    await _prepare_db()
    container = Container()
    try:
        field = await container.field_service.get_field(table_id, field_id)
        if field.intelligence is None:
            raise typer.BadParameter(f"Field {field_id} has no intelligence options")
        await container.intelligence_service.trigger_intelligence_create(
            table_id, field_id, field.intelligence
        )
        await container.emitter.drain()
    finally:
        await container.router.close()
        await close_db()


@app.command()
def backfill(table_id: str, field_id: str):
    """Generate an intelligence field for every record of a table."""
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    try:
        asyncio.run(_backfill(table_id, field_id))
    except NotFoundError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(code=1)
    typer.echo(f"Backfill of {field_id} finished.")


async def _order(table_id: str) -> None:
    await _prepare_db()
    container = Container()
    try:
        await container.table_service.get_table_meta(table_id)
        ordered = await container.intelligence_service.get_processing_order(table_id)
        fields = await container.intelligence_service.get_intelligence_fields(table_id)
        names = {field.id: field.name for field in await container.field_service.get_fields(table_id)}
    finally:
        await close_db()

    for position, field in enumerate(ordered, start=1):
        depends = ", ".join(names.get(dep, dep) for dep in field.depends) or "-"
        typer.echo(f"{position}. {names.get(field.field_id, field.field_id)} <- {depends}")

    unresolved = find_unresolved(fields)
    if unresolved:
        typer.echo(
            f"Not generated (dependency cycle): {', '.join(names.get(i, i) for i in unresolved)}",
            err=True,
        )


@app.command()
def order(table_id: str):
    """Print intelligence fields in generation order."""
    try:
        asyncio.run(_order(table_id))
    except NotFoundError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
