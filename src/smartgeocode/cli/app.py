"""Typer CLI root application with serve command."""

import typer
from pydantic import ValidationError

from smartgeocode.core.config import get_settings
from smartgeocode.core.logging import setup_logging

app = typer.Typer(name="smartgeocode", help="SmartGeocode batch geocoding service CLI")


@app.callback()
def _main_callback() -> None:
    """Initialize logging for all CLI commands."""
    try:
        settings = get_settings()
    except ValidationError:
        # Client-only commands run without server configuration
        setup_logging("INFO")
        return
    setup_logging(settings.log_level, log_dir=settings.log_dir)


@app.command()
def serve(
    reload: bool = typer.Option(False, "--reload", help="Enable auto-reload for development"),
    host: str = typer.Option("0.0.0.0", "--host", help="Bind host"),  # noqa: S104
    port: int = typer.Option(8000, "--port", help="Bind port"),
) -> None:
    """Start the API server and its geocoding workers."""
    import uvicorn

    uvicorn.run(
        "smartgeocode.main:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
    )


def _register_subcommands() -> None:
    """Register all CLI subcommand groups."""
    from smartgeocode.cli.account_cmd import account_app
    from smartgeocode.cli.batch_cmd import batch_app
    from smartgeocode.cli.db_cmd import db_app

    app.add_typer(db_app, name="db", help="Database migration commands")
    app.add_typer(account_app, name="account", help="Account and usage commands")
    app.add_typer(batch_app, name="batch", help="Batch upload and monitoring commands")


_register_subcommands()
