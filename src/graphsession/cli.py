"""Command-line interface for graphsession.

Acts as a minimal host: engine work runs on the manager's worker pool while
the main thread pumps the dispatcher and renders notifications.

Usage:
    python -m graphsession validate-config
    python -m graphsession status
    python -m graphsession sign-in
    python -m graphsession search "quarterly report"
    python -m graphsession sign-out --purge
"""

from __future__ import annotations

import sys
from concurrent.futures import Future
from pathlib import Path
from typing import TYPE_CHECKING, TypeVar

import click
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from graphsession.config import validate_config_file
from graphsession.core.logging import configure_logging

if TYPE_CHECKING:
    from graphsession.manager import GraphSessionManager

console = Console()

T = TypeVar("T")

# Seconds the main thread waits for a notification before re-checking the worker
PUMP_INTERVAL = 0.25


def _build_manager(config_path: Path | None) -> GraphSessionManager:
    """Load config and build the session stack, exiting with a readable error on failure."""
    from graphsession.config import get_config
    from graphsession.core.errors import ConfigurationError
    from graphsession.manager import GraphSessionManager, SessionCallbacks

    try:
        config = get_config(config_path)
        manager = GraphSessionManager.from_config(config)
    except ConfigurationError as e:
        console.print(f"[red]Config error:[/red] {escape(str(e))}")
        sys.exit(1)

    manager.callbacks = SessionCallbacks(
        on_interactive_started=lambda: console.print("Opening browser for sign-in..."),
        on_device_code=_display_device_code,
        on_completed=lambda: console.print("[green]✓[/green] Signed in"),
        on_failed=lambda: console.print("[red]✗[/red] Sign-in failed (see log for details)"),
        on_signed_out=lambda: console.print("Signed out"),
    )
    return manager


def _display_device_code(verification_url: str, user_code: str) -> None:
    panel_content = (
        f"To sign in, open a browser and go to:\n\n"
        f"  [bold blue]{verification_url}[/bold blue]\n\n"
        f"Enter this code: [bold green]{user_code}[/bold green]\n\n"
        f"Waiting for authentication..."
    )
    console.print()
    console.print(
        Panel(
            panel_content,
            title="Microsoft Authentication Required",
            border_style="bright_blue",
        )
    )
    console.print()


def _run_pumping(manager: GraphSessionManager, future: Future[T]) -> T:
    """Wait for a worker job while delivering its notifications on this thread."""
    while not future.done():
        manager.tick(timeout=PUMP_INTERVAL)
    manager.tick()
    return future.result()


@click.group()
@click.option("--debug/--no-debug", default=False, help="Enable debug logging")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False, path_type=Path),
    default=None,
    help="Path to config file (default: config/config.yaml)",
)
@click.pass_context
def cli(ctx: click.Context, debug: bool, config_path: Path | None) -> None:
    """graphsession - Microsoft Graph sign-in and token cache."""
    configure_logging(log_level="DEBUG" if debug else "WARNING", json_output=False)
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


@cli.command("validate-config")
@click.pass_context
def validate_config(ctx: click.Context) -> None:
    """Validate the configuration file."""
    config_path = ctx.obj["config_path"]
    console.print(f"Validating config: [cyan]{config_path or 'config/config.yaml'}[/cyan]")

    is_valid, message = validate_config_file(config_path)

    if is_valid:
        console.print(f"\n[green]✓[/green] {message}")
        sys.exit(0)
    console.print(f"\n[red]✗[/red] {message}")
    sys.exit(1)


@cli.command("status")
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show the cached account and token cache location without signing in."""
    with _build_manager(ctx.obj["config_path"]) as manager:
        account = manager.engine.get_primary_account()
        cache = manager.token_cache

        table = Table(show_header=False, box=None)
        table.add_row("Account", account.username if account else "[yellow]none[/yellow]")
        table.add_row("Needs sign-in", "yes" if manager.engine.needs_sign_in() else "no")
        if cache is not None:
            table.add_row("Token cache", str(cache.path))
            table.add_row("Encrypted", "yes" if cache.protector.is_encrypted else "[red]no[/red]")
        console.print(table)


@cli.command("sign-in")
@click.option("--force", is_flag=True, help="Skip the silent attempt and always prompt")
@click.pass_context
def sign_in(ctx: click.Context, force: bool) -> None:
    """Sign in (browser, or device code when no browser is available)."""
    with _build_manager(ctx.obj["config_path"]) as manager:
        try:
            if force:
                _run_pumping(manager, manager.submit_sign_in())
            else:
                _run_pumping(manager, manager.submit(manager.engine.acquire_token_for_current_user))
        except KeyboardInterrupt:
            console.print("\n[yellow]Cancelled.[/yellow]")
            sys.exit(130)

        if not manager.is_connected:
            sys.exit(1)
        account = manager.engine.get_primary_account()
        console.print(f"Account: [cyan]{account.username if account else 'unknown'}[/cyan]")


@cli.command("sign-out")
@click.option("--purge", is_flag=True, help="Also delete the token cache file")
@click.pass_context
def sign_out(ctx: click.Context, purge: bool) -> None:
    """Remove cached accounts (and optionally the cache file)."""
    with _build_manager(ctx.obj["config_path"]) as manager:
        _run_pumping(manager, manager.submit_sign_out())
        if purge and manager.token_cache is not None:
            manager.token_cache.clear()
            console.print(f"Deleted [cyan]{manager.token_cache.path}[/cyan]")


@cli.command("search")
@click.argument("query")
@click.option("--max-pages", default=1, type=int, help="Maximum result pages to fetch")
@click.pass_context
def search(ctx: click.Context, query: str, max_pages: int) -> None:
    """Search the signed-in user's OneDrive."""
    from graphsession.core.errors import GraphSessionError

    with _build_manager(ctx.obj["config_path"]) as manager:
        try:
            items = _run_pumping(manager, manager.submit(manager.drive.search, query, max_pages))
        except GraphSessionError as e:
            console.print(f"[red]Error:[/red] {escape(str(e))}")
            sys.exit(1)

        if not items:
            console.print("No matching items.")
            return

        table = Table("Name", "Size", "Modified", "Link")
        for item in items:
            table.add_row(
                item.name + ("/" if item.is_folder else ""),
                str(item.size),
                item.last_modified or "",
                item.web_url or "",
            )
        console.print(table)


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
