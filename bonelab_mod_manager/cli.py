"""Command-line interface for bonelab-mod-manager."""

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .api import ModioAPIError
from .config import ConfigurationError, Settings, load_settings
from .downloader import create_download_progress
from .inventory import InstalledItem
from .ledger import LedgerError
from .manifest import MalformedManifest
from .service import ActionSummary, AuthenticationError, SyncService

console = Console()


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )
    # urllib3 is chatty at DEBUG
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def _fail(message: str, code: int = 1) -> None:
    console.print(f"[red]Error:[/red] {message}")
    sys.exit(code)


def _format_ms(value: int) -> str:
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc).strftime("%Y-%m-%d %H:%M")


def _load_items(service: SyncService) -> list[InstalledItem]:
    try:
        items = service.load_inventory()
    except (ConfigurationError, LedgerError) as e:
        _fail(str(e))
    except MalformedManifest as e:
        _fail(f"Malformed manifest, refusing to sync: {e}")
    console.print(
        f"[dim]{len(items)} pallets in {service.settings.mod_folder} "
        f"({sum(1 for i in items if i.syncable)} from mod.io)[/dim]"
    )
    return items


def _authenticate(service: SyncService) -> None:
    try:
        username = service.authenticate(
            prompt_code=lambda: click.prompt("Security code from your email"),
        )
    except (ConfigurationError, AuthenticationError) as e:
        _fail(str(e))
    console.print(f"[green]Logged in as:[/green] {username}")


def _print_summary(summary: ActionSummary) -> None:
    console.print(
        f"[bold]{summary.action.capitalize()}:[/bold] "
        f"[green]{len(summary.completed)} done[/green], "
        f"[yellow]{len(summary.skipped)} skipped[/yellow], "
        f"[red]{len(summary.failed)} failed[/red]"
    )
    for name in summary.skipped:
        console.print(f"  [yellow]-[/yellow] {name}")
    for name, error in summary.failed:
        console.print(f"  [red]x[/red] {name}: {error}")


@click.group()
@click.option(
    "--api-key",
    envvar="MODIO_API_KEY",
    help="mod.io API key (or set MODIO_API_KEY env var)",
)
@click.option("--email", "-e", envvar="MODIO_EMAIL", help="mod.io account email for logging in")
@click.option(
    "--mod-folder",
    "-m",
    type=click.Path(path_type=Path),
    help="BONELAB Mods folder (or set BONELAB_MOD_FOLDER)",
)
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging")
@click.pass_context
def main(
    ctx: click.Context,
    api_key: str | None,
    email: str | None,
    mod_folder: Path | None,
    verbose: bool,
) -> None:
    """Keep BONELAB mods in sync with your mod.io subscriptions."""
    _setup_logging(verbose)
    ctx.ensure_object(dict)
    try:
        ctx.obj["settings"] = load_settings(api_key=api_key, mod_folder=mod_folder, email=email)
    except ConfigurationError as e:
        _fail(str(e))


@main.command()
@click.option("--subscribe-all", "-s", is_flag=True, help="Subscribe to every installed mod")
@click.option("--update-all", "-u", is_flag=True, help="Update installed mods with newer files")
@click.option(
    "--install-all-subscribed", "-i", is_flag=True, help="Install subscribed mods not yet installed"
)
@click.pass_context
def sync(
    ctx: click.Context,
    subscribe_all: bool,
    update_all: bool,
    install_all_subscribed: bool,
) -> None:
    """Subscribe, update and install mods."""
    if not (subscribe_all or update_all or install_all_subscribed):
        raise click.UsageError("Choose at least one of -s, -u or -i.")

    settings: Settings = ctx.obj["settings"]
    try:
        settings.require_api_key()
        settings.require_mod_folder()
    except ConfigurationError as e:
        _fail(str(e))

    progress = create_download_progress(console=console)

    def on_progress(event: str, pct: float, msg: str) -> None:
        if msg != "done":
            progress.console.print(f"[dim]\\[{event} {pct:>4.0%}][/dim] {msg}")

    service = SyncService(settings, progress=on_progress, download_progress=progress)
    items = _load_items(service)
    _authenticate(service)

    try:
        with progress:
            summaries = service.sync(
                items,
                subscribe=subscribe_all,
                update=update_all,
                install=install_all_subscribed,
            )
    except KeyboardInterrupt:
        service.ledger.save()
        console.print("[yellow]Interrupted; progress so far is saved.[/yellow]")
        sys.exit(130)
    except (ConfigurationError, AuthenticationError, LedgerError, ModioAPIError) as e:
        _fail(str(e))

    for summary in summaries:
        _print_summary(summary)


@main.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show what a full sync would do, without changing anything."""
    settings: Settings = ctx.obj["settings"]
    service = SyncService(settings)
    items = _load_items(service)
    _authenticate(service)

    console.print("[dim]Checking mod.io...[/dim]")
    try:
        plan = service.plan(items, check_updates=True)
    except ModioAPIError as e:
        _fail(f"Could not fetch subscriptions: {e}")

    table = Table(title="Pending Changes")
    table.add_column("Mod", style="cyan")
    table.add_column("Installed", style="green")
    table.add_column("Latest", style="blue")
    table.add_column("Action")

    for item in plan.to_subscribe:
        table.add_row(item.title[:40], item.record.pallet.version or "-", "-", "[magenta]Subscribe[/magenta]")
    for action in plan.to_update:
        latest = action.entry.modfile.version if action.entry.modfile else None
        table.add_row(
            action.item.title[:40],
            action.item.record.pallet.version or "-",
            latest or "-",
            "[yellow]Update available[/yellow]",
        )
    for entry in plan.to_install:
        table.add_row(
            entry.name[:40],
            "-",
            (entry.modfile.version if entry.modfile else None) or "-",
            "[blue]Not installed[/blue]",
        )
    for entry in plan.skipped:
        table.add_row(entry.name[:40], "-", "-", "[dim]No file[/dim]")

    if plan.empty:
        console.print("[green]Everything is up to date![/green]")
    else:
        console.print(table)


@main.command(name="list")
@click.pass_context
def list_mods(ctx: click.Context) -> None:
    """List installed pallets, including ones not from mod.io."""
    service = SyncService(ctx.obj["settings"])
    items = _load_items(service)

    table = Table(title="Installed Pallets")
    table.add_column("Barcode", style="cyan")
    table.add_column("Title")
    table.add_column("Version", style="green")
    table.add_column("mod.io ID")
    table.add_column("Updated")
    table.add_column("Subscribed")
    for item in items:
        table.add_row(
            item.barcode,
            item.title[:40],
            item.record.pallet.version or "-",
            str(item.remote_mod_id) if item.syncable else "[dim]local[/dim]",
            _format_ms(item.updated_at),
            "yes" if service.ledger.is_subscribed(item.local_path) else "-",
        )
    console.print(table)


@main.command()
@click.pass_context
def login(ctx: click.Context) -> None:
    """Log in with an emailed security code and save the access token."""
    settings: Settings = ctx.obj["settings"]
    if settings.load_token():
        console.print("[dim]Already logged in; run 'logout' first to switch accounts.[/dim]")
    try:
        settings.require_api_key()
    except ConfigurationError as e:
        _fail(str(e))
    _authenticate(SyncService(settings))


@main.command()
@click.pass_context
def logout(ctx: click.Context) -> None:
    """Forget the saved access token."""
    settings: Settings = ctx.obj["settings"]
    if settings.clear_token():
        console.print("[green]Access token removed.[/green]")
    else:
        console.print("[dim]No saved access token.[/dim]")
