"""Account management CLI commands (operator side)."""

import asyncio

import typer

account_app = typer.Typer()


@account_app.command("create")
def create(
    email: str = typer.Option(..., prompt=True, help="Account email"),
    plan: str = typer.Option("free", help="Subscription plan (free/premium)"),
    if_not_exists: bool = typer.Option(
        False,
        "--if-not-exists",
        help="Exit successfully if the account already exists",
    ),
) -> None:
    """Create an account."""
    asyncio.run(_create(email, plan, if_not_exists=if_not_exists))


async def _create(email: str, plan: str, *, if_not_exists: bool) -> None:
    from smartgeocode.core.config import get_settings
    from smartgeocode.core.database import dispose_engine, get_session_factory, init_engine
    from smartgeocode.services.account_service import AccountExistsError, create_account

    settings = get_settings()
    if plan.lower() not in settings.plan_limits:
        typer.echo(f"Error: unknown plan '{plan}'. Available: {', '.join(settings.plan_limits)}", err=True)
        raise typer.Exit(code=1)

    init_engine(settings.database_url, schema=settings.database_schema)
    try:
        factory = get_session_factory()
        async with factory() as session:
            account = await create_account(session, email, plan=plan)
            typer.echo(f"Account '{account.email}' created on the {account.plan} plan")
    except AccountExistsError as e:
        if if_not_exists:
            typer.echo(f"Account '{email}' already exists, skipping (--if-not-exists)")
            return
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e
    finally:
        await dispose_engine()


@account_app.command("set-plan")
def set_plan(
    email: str = typer.Argument(..., help="Account email"),
    plan: str = typer.Argument(..., help="New plan (free/premium)"),
) -> None:
    """Change an account's plan, as the billing system would after checkout."""
    asyncio.run(_set_plan(email, plan))


async def _set_plan(email: str, plan: str) -> None:
    from smartgeocode.core.config import get_settings
    from smartgeocode.core.database import dispose_engine, get_session_factory, init_engine
    from smartgeocode.services import account_service

    settings = get_settings()
    if plan.lower() not in settings.plan_limits:
        typer.echo(f"Error: unknown plan '{plan}'", err=True)
        raise typer.Exit(code=1)

    init_engine(settings.database_url, schema=settings.database_schema)
    try:
        factory = get_session_factory()
        async with factory() as session:
            account = await account_service.set_plan(session, email, plan)
            typer.echo(
                f"Account '{account.email}' is now on the {account.plan} plan "
                f"({settings.limit_for_plan(account.plan)} lookups/month)"
            )
    except LookupError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e
    finally:
        await dispose_engine()


@account_app.command("token")
def token(
    email: str = typer.Argument(..., help="Account email"),
    expires_minutes: int | None = typer.Option(None, "--expires-minutes", help="Token lifetime"),
) -> None:
    """Print a bearer token for an account (operator and testing use)."""
    from smartgeocode.core.config import get_settings
    from smartgeocode.core.security import create_access_token

    settings = get_settings()
    typer.echo(
        create_access_token(
            email.strip().lower(),
            settings.jwt_secret_key,
            settings.jwt_algorithm,
            expires_minutes or settings.jwt_access_token_expire_minutes,
        )
    )


@account_app.command("usage")
def usage(email: str = typer.Argument(..., help="Account email")) -> None:
    """Show this month's usage for an account."""
    asyncio.run(_usage(email))


async def _usage(email: str) -> None:
    from smartgeocode.core.config import get_settings
    from smartgeocode.core.database import dispose_engine, get_session_factory, init_engine
    from smartgeocode.services import quota_service
    from smartgeocode.services.account_service import get_account_by_email

    settings = get_settings()
    init_engine(settings.database_url, schema=settings.database_schema)
    try:
        factory = get_session_factory()
        async with factory() as session:
            account = await get_account_by_email(session, email)
            if account is None:
                typer.echo(f"Error: account '{email}' not found", err=True)
                raise typer.Exit(code=1)
            snapshot = await quota_service.current(session, account.id, settings=settings)
            typer.echo(f"Period:   {snapshot.billing_period}")
            typer.echo(f"Plan:     {snapshot.plan}")
            typer.echo(f"Used:     {snapshot.used} / {snapshot.limit}")
            typer.echo(f"Reserved: {snapshot.reserved}")
    finally:
        await dispose_engine()
