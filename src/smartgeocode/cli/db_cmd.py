"""Database migration CLI commands using Alembic programmatically."""

import typer
from loguru import logger

db_app = typer.Typer()

_ALEMBIC_INI = typer.Option("alembic.ini", "--config", "-c", help="Path to alembic.ini")


def _config(path: str):  # noqa: ANN202
    from alembic.config import Config

    return Config(path)


@db_app.command()
def upgrade(
    revision: str = typer.Argument("head", help="Target revision"),
    config_path: str = _ALEMBIC_INI,
) -> None:
    """Apply migrations up to the target revision."""
    from alembic import command

    logger.info(f"Upgrading database to {revision}")
    command.upgrade(_config(config_path), revision)
    logger.info("Database upgrade complete")


@db_app.command()
def downgrade(
    revision: str = typer.Argument("-1", help="Target revision"),
    config_path: str = _ALEMBIC_INI,
) -> None:
    """Roll migrations back to the target revision."""
    from alembic import command

    logger.info(f"Downgrading database to {revision}")
    command.downgrade(_config(config_path), revision)
    logger.info("Database downgrade complete")


@db_app.command()
def current(config_path: str = _ALEMBIC_INI) -> None:
    """Show the current migration revision."""
    from alembic import command

    command.current(_config(config_path), verbose=True)
