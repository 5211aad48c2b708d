"""Batch client CLI commands — upload, watch, list and download via the HTTP API."""

import asyncio
from pathlib import Path

import typer

from smartgeocode.lib.client import (
    DEFAULT_POLL_INTERVAL,
    ApiError,
    BatchApiClient,
    BatchPoller,
    QuotaExceededApiError,
    TransientApiError,
)

batch_app = typer.Typer()

_API_URL = typer.Option(
    "http://localhost:8000/api/v1", "--api-url", envvar="SMARTGEOCODE_API_URL", help="API base URL"
)
_TOKEN = typer.Option(..., "--token", envvar="SMARTGEOCODE_TOKEN", help="Bearer token")
_INTERVAL = typer.Option(DEFAULT_POLL_INTERVAL, "--interval", help="Seconds between status polls")


@batch_app.command("submit")
def submit(
    file: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True, help="CSV file to geocode"),
    watch: bool = typer.Option(False, "--watch", help="Follow progress until the batch finishes"),
    api_url: str = _API_URL,
    token: str = _TOKEN,
    interval: float = _INTERVAL,
) -> None:
    """Upload a CSV of addresses as a batch job."""
    asyncio.run(_submit(file, api_url, token, watch=watch, interval=interval))


async def _submit(file: Path, api_url: str, token: str, *, watch: bool, interval: float) -> None:
    async with BatchApiClient(api_url, token) as client:
        try:
            submitted = await client.submit_batch(file.read_bytes(), file.name)
        except QuotaExceededApiError as e:
            typer.echo(f"Quota exceeded: {e.detail}", err=True)
            raise typer.Exit(code=2) from e
        except ApiError as e:
            typer.echo(f"Upload rejected: {e.detail}", err=True)
            raise typer.Exit(code=1) from e

        typer.echo(f"Batch {submitted.batch_id} queued: {submitted.total_rows} rows")
        if submitted.skipped_rows:
            typer.echo(f"Skipped {submitted.skipped_rows} rows with a blank or N/A address")
        if watch:
            await _watch(client, str(submitted.batch_id), interval)


@batch_app.command("watch")
def watch(
    batch_id: str = typer.Argument(..., help="Batch ID"),
    api_url: str = _API_URL,
    token: str = _TOKEN,
    interval: float = _INTERVAL,
) -> None:
    """Follow a batch until it completes or fails."""
    asyncio.run(_watch_standalone(batch_id, api_url, token, interval))


async def _watch_standalone(batch_id: str, api_url: str, token: str, interval: float) -> None:
    async with BatchApiClient(api_url, token) as client:
        await _watch(client, batch_id, interval)


async def _watch(client: BatchApiClient, batch_id: str, interval: float) -> None:
    outcome: dict[str, object] = {}

    def on_status(status) -> None:  # noqa: ANN001
        typer.echo(f"[{status.status}] {status.processed_rows}/{status.total_rows} rows processed")

    def on_usage(usage) -> None:  # noqa: ANN001
        typer.echo(f"  usage: {usage.used}/{usage.limit} ({usage.plan})")

    def on_terminal(status) -> None:  # noqa: ANN001
        outcome["status"] = status
        if status.status == "complete":
            typer.echo(f"Batch complete: {status.succeeded_rows} geocoded, {status.failed_rows} failed")
        else:
            typer.echo(f"Batch failed: {status.error_message or 'unknown error'}", err=True)

    def on_session_expired() -> None:
        outcome["expired"] = True
        typer.echo("Session expired. Obtain a new token and run 'batch watch' again.", err=True)

    def on_error(error: ApiError) -> None:
        outcome["error"] = error
        typer.echo(f"Error: {error.detail}", err=True)

    async with BatchPoller(
        client,
        interval=interval,
        on_status=on_status,
        on_usage=on_usage,
        on_terminal=on_terminal,
        on_session_expired=on_session_expired,
        on_error=on_error,
    ) as poller:
        await poller.start(batch_id)
        await poller.wait()

    status = outcome.get("status")
    if status is None or getattr(status, "status", None) != "complete":
        raise typer.Exit(code=1)


@batch_app.command("list")
def list_batches(api_url: str = _API_URL, token: str = _TOKEN) -> None:
    """List your batches, most recent first."""
    asyncio.run(_list(api_url, token))


async def _list(api_url: str, token: str) -> None:
    async with BatchApiClient(api_url, token) as client:
        try:
            items = await client.list_batches()
        except ApiError as e:
            typer.echo(f"Error: {e.detail}", err=True)
            raise typer.Exit(code=1) from e

    typer.echo(f"{'Batch ID':<38} {'Status':<11} {'Rows':>11}  {'Created':<20} File")
    typer.echo("-" * 100)
    for item in items:
        rows = f"{item.processed_rows}/{item.total_rows}"
        created = item.created_at.strftime("%Y-%m-%d %H:%M:%S")
        typer.echo(f"{item.id!s:<38} {item.status:<11} {rows:>11}  {created:<20} {item.file_name or ''}")


@batch_app.command("download")
def download(
    batch_id: str = typer.Argument(..., help="Batch ID"),
    output: Path | None = typer.Option(None, "--output", "-o", help="Destination file (default: stdout)"),
    api_url: str = _API_URL,
    token: str = _TOKEN,
) -> None:
    """Download the result CSV of a batch."""
    asyncio.run(_download(batch_id, output, api_url, token))


async def _download(batch_id: str, output: Path | None, api_url: str, token: str) -> None:
    async with BatchApiClient(api_url, token) as client:
        try:
            content = await client.download_batch(batch_id)
        except TransientApiError as e:
            typer.echo(f"Download failed, please retry: {e.detail}", err=True)
            raise typer.Exit(code=1) from e
        except ApiError as e:
            typer.echo(f"Error: {e.detail}", err=True)
            raise typer.Exit(code=1) from e

    if output is None:
        typer.echo(content.decode("utf-8"), nl=False)
        return
    output.write_bytes(content)
    typer.echo(f"Wrote {len(content)} bytes to {output}")
