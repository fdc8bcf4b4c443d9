"""Command-line interface for WipeBot.

Provides commands for configuration validation, inspecting filters,
simulating and running cleanups, and the API server.

Usage:
    python -m wipebot validate-config
    python -m wipebot filters WEBSITE_ID
    python -m wipebot simulate WEBSITE_ID "Old chats"
    python -m wipebot run WEBSITE_ID "Old chats" --yes
    python -m wipebot serve
"""

from __future__ import annotations

import asyncio
import signal
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import click
from rich.console import Console
from rich.progress import BarColumn, MofNCompleteColumn, Progress, TextColumn
from rich.table import Table

from wipebot.config import validate_config_file
from wipebot.core.logging import configure_logging

if TYPE_CHECKING:
    from wipebot.config_schema import AppConfig
    from wipebot.crisp.client import CrispClient
    from wipebot.db.store import DatabaseStore
    from wipebot.engine.cleanup import CleanupOrchestrator, CleanupResult
    from wipebot.filters.registry import FilterRegistry

console = Console()

PREVIEW_ROWS = 20


@dataclass(frozen=True, slots=True)
class CLIDeps:
    """Shared dependencies initialized by _init_cli_deps()."""

    config: AppConfig
    store: DatabaseStore
    registry: FilterRegistry
    crisp_client: CrispClient
    orchestrator: CleanupOrchestrator


async def _init_cli_deps() -> CLIDeps:
    """Initialize shared CLI dependencies.

    Loads config, opens the database and builds the Crisp client and
    cleanup orchestrator. Prints an actionable error message and calls
    sys.exit(1) when the config cannot be loaded.
    """
    from wipebot.config import get_config
    from wipebot.core.errors import ConfigLoadError, ConfigValidationError
    from wipebot.core.retry import RateLimitedExecutor
    from wipebot.crisp.client import CrispClient
    from wipebot.db.store import DatabaseStore
    from wipebot.engine.cleanup import CleanupOrchestrator
    from wipebot.filters.registry import FilterRegistry

    # 1. Load config
    try:
        config = get_config()
    except (ConfigLoadError, ConfigValidationError) as e:
        console.print(
            f"[red]Config error:[/red] {e}\n\n"
            "Copy config/config.yaml.example to config/config.yaml and fill in the "
            "[cyan]crisp[/cyan] section."
        )
        sys.exit(1)

    # 2. Initialize database
    db_path = Path(config.database.path)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    store = DatabaseStore(db_path)
    await store.initialize()

    # 3. Registry, Crisp client and orchestrator
    registry = FilterRegistry(store, max_filters=config.registry.max_filters_per_tenant)
    crisp_client = CrispClient(
        identifier=config.crisp.identifier,
        key=config.crisp.key,
        base_url=config.crisp.base_url,
        timeout=config.crisp.timeout_seconds,
    )
    orchestrator = CleanupOrchestrator(
        source=crisp_client,
        registry=registry,
        executor=RateLimitedExecutor(
            max_retries=config.retry.max_retries,
            base_delay=config.retry.base_delay_seconds,
            auth_retries=config.retry.auth_retries,
            auth_delay=config.retry.auth_delay_seconds,
        ),
        mode=config.mode,
        page_size=config.cleanup.effective_page_size,
        page_delay=config.cleanup.page_delay_seconds,
        delete_delay=config.cleanup.delete_delay_seconds,
        stats=store,
    )

    return CLIDeps(
        config=config,
        store=store,
        registry=registry,
        crisp_client=crisp_client,
        orchestrator=orchestrator,
    )


def _run_async(coro) -> None:
    """Run a command coroutine with the shared error handling."""
    try:
        asyncio.run(coro)
    except KeyboardInterrupt:
        console.print("\n[yellow]Cancelled.[/yellow]")
        sys.exit(130)
    except SystemExit:
        raise
    except Exception as e:
        console.print(f"\n[red]Error:[/red] {e}")
        sys.exit(1)


@click.group()
@click.option("--debug/--no-debug", default=False, help="Enable debug logging")
def cli(debug: bool) -> None:
    """WipeBot - filter-driven conversation cleanup for Crisp."""
    log_level = "DEBUG" if debug else "INFO"
    # Use human-readable output for CLI, JSON for server
    configure_logging(log_level=log_level, json_output=False)


@cli.command("validate-config")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False, path_type=Path),
    default=None,
    help="Path to config file (default: config/config.yaml)",
)
def validate_config(config_path: Path | None) -> None:
    """Validate the configuration file.

    Checks that config.yaml exists and passes Pydantic schema validation.
    Reports specific errors for invalid fields.
    """
    if config_path:
        console.print(f"Validating config: [cyan]{config_path}[/cyan]")
    else:
        console.print("Validating config: [cyan]config/config.yaml[/cyan]")

    is_valid, message = validate_config_file(config_path)

    if is_valid:
        console.print(f"\n[green]✓[/green] {message}")
        sys.exit(0)
    else:
        console.print(f"\n[red]✗[/red] {message}")
        sys.exit(1)


@cli.command("serve")
@click.option(
    "--host",
    default="127.0.0.1",
    help="Host to bind to (default: localhost only for security)",
)
@click.option(
    "--port",
    default=8000,
    type=int,
    help="Port to bind to",
)
def serve(host: str, port: int) -> None:
    """Start the REST API and the auto cleanup scheduler."""
    import uvicorn

    from wipebot.web.app import create_app

    if host == "0.0.0.0":  # noqa: S104
        console.print(
            "[yellow]Warning:[/yellow] Binding to 0.0.0.0 exposes the server to the network.\n"
            "This app has no authentication. Put it behind a proxy that checks plugin requests."
        )

    configure_logging(log_level="INFO", json_output=True)

    app = create_app()
    console.print(f"Starting server on [cyan]http://{host}:{port}[/cyan]")
    uvicorn.run(app, host=host, port=port, log_level="info")


@cli.command("filters")
@click.argument("tenant")
def list_filters(tenant: str) -> None:
    """List the filters of a Crisp website."""
    _run_async(_run_list_filters(tenant))


async def _run_list_filters(tenant: str) -> None:
    deps = await _init_cli_deps()
    try:
        doc = await deps.registry.load(tenant)
    finally:
        await deps.crisp_client.close()

    if not doc.filters:
        console.print(f"No filters for [cyan]{tenant}[/cyan]")
        return

    group_names = {g.id: g.name for g in doc.groups}
    table = Table(title=f"Filters for {tenant}", box=None, padding=(0, 2))
    table.add_column("Name", style="cyan")
    table.add_column("ID", style="dim")
    table.add_column("Group")
    table.add_column("Criteria")
    table.add_column("Auto", justify="center")
    table.add_column("Active", justify="center")

    for flt in doc.filters:
        if flt.is_combination_filter and flt.subfilters:
            criteria = f"{flt.combination_operation} of {len(flt.subfilters)} subfilters"
        else:
            parts = []
            if flt.max_days:
                parts.append(f">{flt.max_days}d")
            if flt.closed_only:
                parts.append("closed")
            if flt.inactivity_enabled and flt.inactivity_days:
                parts.append(f"idle {flt.inactivity_days}d")
            if flt.keyword_enabled and flt.keywords:
                parts.append(f"keywords ({flt.keyword_match_type})")
            if flt.delete_segments_only:
                parts.append("segments only")
            criteria = ", ".join(parts) or "-"
        table.add_row(
            flt.name,
            flt.id,
            group_names.get(flt.group, "") if flt.group else "",
            criteria,
            flt.auto_time if flt.auto_enabled else "",
            "✓" if flt.active else "✗",
        )
    console.print(table)


@cli.command("simulate")
@click.argument("tenant")
@click.argument("filter_name")
def simulate(tenant: str, filter_name: str) -> None:
    """Show which conversations a filter would delete (deletes nothing)."""
    _run_async(_run_simulate(tenant, filter_name))


async def _run_simulate(tenant: str, filter_name: str) -> None:
    deps = await _init_cli_deps()
    try:
        with console.status("Fetching conversations..."):
            result = await deps.orchestrator.simulate(tenant, filter_name)
    finally:
        await deps.crisp_client.close()

    if not result.success:
        console.print(f"[red]Simulation failed:[/red] {result.error}")
        sys.exit(1)

    console.print(
        f"Filter [cyan]{result.filter_name}[/cyan] matches "
        f"[bold]{result.count}[/bold] conversation(s)"
    )
    if result.conversations:
        table = Table(box=None, padding=(0, 2))
        table.add_column("Session", style="dim")
        table.add_column("Status")
        table.add_column("Updated")
        table.add_column("Preview", overflow="ellipsis", max_width=60)
        for item in result.conversations[:PREVIEW_ROWS]:
            table.add_row(
                item.id,
                item.status,
                item.updated.strftime("%Y-%m-%d %H:%M") if item.updated else "",
                item.preview,
            )
        console.print(table)
        if result.count > PREVIEW_ROWS:
            console.print(f"[dim]... and {result.count - PREVIEW_ROWS} more[/dim]")


@cli.command("run")
@click.argument("tenant")
@click.argument("filter_name")
@click.option("--yes", "-y", is_flag=True, help="Skip the confirmation prompt")
def run(tenant: str, filter_name: str, yes: bool) -> None:
    """Delete every conversation a filter matches.

    Ctrl-C stops the run after the current delete and prints the
    partial result.
    """
    if not yes:
        click.confirm(
            f"Delete all conversations of {tenant} matched by '{filter_name}'?",
            abort=True,
        )
    _run_async(_run_cleanup(tenant, filter_name))


async def _run_cleanup(tenant: str, filter_name: str) -> None:
    from wipebot.config_schema import OperatingMode
    from wipebot.core.cancellation import CancelToken
    from wipebot.engine.cleanup import ProgressUpdate

    deps = await _init_cli_deps()
    if deps.config.mode is OperatingMode.DEBUG:
        console.print("[yellow]Debug mode:[/yellow] deletes are logged, not sent to Crisp")

    cancel = CancelToken()
    asyncio.get_running_loop().add_signal_handler(signal.SIGINT, cancel.cancel)

    with Progress(
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        console=console,
    ) as progress:
        task = progress.add_task("Collecting conversations...", total=None)

        def on_progress(update: ProgressUpdate) -> None:
            progress.update(
                task,
                description="Deleting",
                completed=update.current,
                total=update.total,
            )

        try:
            result = await deps.orchestrator.run(
                tenant, filter_name, progress=on_progress, cancel=cancel, triggered_by="cli"
            )
        finally:
            await deps.crisp_client.close()

    _print_run_result(result)
    if not result.success:
        sys.exit(1)


def _print_run_result(result: CleanupResult) -> None:
    if not result.success:
        label = "Cancelled" if result.cancelled else "Cleanup failed"
        console.print(f"[red]{label}:[/red] {result.error}")
        return

    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_row("Filter", result.filter_name or "")
    table.add_row("Mode", result.mode)
    table.add_row("Matched", str(result.total))
    table.add_row("Deleted", f"[green]{result.deleted}[/green]")
    table.add_row("Errors", f"[red]{result.errors}[/red]" if result.errors else "0")
    if result.segments_deleted:
        table.add_row("Segments deleted", str(result.segments_deleted))
    console.print(table)
    if result.cancelled:
        console.print("[yellow]Run was cancelled; counts are partial.[/yellow]")


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
