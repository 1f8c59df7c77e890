"""Sync CLI commands: status, now, reset, export, import, schema, daemon."""

import time
from importlib import resources
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from cli.utils import get_components
from observability import log_run_summary
from shared_types import ConnectionStatus

console = Console()

_STATUS_STYLE = {
    ConnectionStatus.CONNECTED: "green",
    ConnectionStatus.CONNECTING: "cyan",
    ConnectionStatus.DISCONNECTED: "yellow",
    ConnectionStatus.OFFLINE: "dim",
    ConnectionStatus.ERROR: "red",
    ConnectionStatus.UNKNOWN: "dim",
}


def _print_status(status) -> None:
    style = _STATUS_STYLE.get(status.status, "white")
    table = Table(show_header=False, box=None)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("Status", f"[{style}]{status.status.value}[/]")
    table.add_row(
        "Last sync",
        status.last_sync_time.strftime("%Y-%m-%d %H:%M:%S") if status.last_sync_time else "never",
    )
    table.add_row("Pending operations", str(status.pending_operations))
    table.add_row("Dropped operations", str(status.failed_operations))
    if status.error_message:
        table.add_row("Error", f"[red]{status.error_message}[/]")
    console.print(table)


@click.group("sync")
def sync_group():
    """Remote sync, offline queue and snapshots."""
    pass


@sync_group.command("status")
@click.option("--probe", is_flag=True, help="Check connectivity before reporting")
def sync_status(probe: bool):
    """Show connection state and queue depth."""
    c = get_components()
    if probe:
        c["sync"].connect()
    _print_status(c["sync"].status())


@sync_group.command("now")
def sync_now():
    """Push queued operations and pull remote patterns/preferences."""
    c = get_components()
    with console.status("Syncing..."):
        status = c["sync"].sync_now()
    _print_status(status)


@sync_group.command("reset")
@click.confirmation_option(prompt="Discard queued operations and sync from scratch?")
def sync_reset():
    """Clear sync bookkeeping and the offline queue, then sync."""
    c = get_components()
    with console.status("Resetting sync..."):
        status = c["sync"].reset_sync()
    _print_status(status)


@sync_group.command("export")
@click.option("-o", "--output", type=click.Path(path_type=Path), default=None,
              help="Output file or directory (default: configured export_dir)")
def sync_export(output: Path | None):
    """Export patterns, preferences and sessions to a JSON snapshot."""
    c = get_components()
    target = output
    if target is None:
        target = c["config_model"].paths.export_dir
        target.mkdir(parents=True, exist_ok=True)
    path = c["exporter"].export_snapshot(target)
    console.print(f"[green]Exported:[/] {path}")


@sync_group.command("import")
@click.argument("snapshot", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def sync_import(snapshot: Path):
    """Merge a JSON snapshot into the local store."""
    c = get_components()
    report = c["exporter"].import_snapshot(snapshot)

    for entity, count in report.imported.items():
        console.print(f"  {entity}: {count}")
    if report.ok:
        console.print("[green]Import complete.[/]")
    else:
        console.print(f"[red]Import stopped at {report.failed_entity}:[/] {report.error}")
        raise SystemExit(1)


@sync_group.command("schema")
def sync_schema():
    """Print the SQL for the remote tables."""
    sql = resources.files("sync").joinpath("remote_schema.sql").read_text()
    click.echo(sql)


@sync_group.command("daemon")
def sync_daemon():
    """Run background sync until interrupted."""
    c = get_components()
    engine = c["sync"]
    engine.start()
    console.print(
        f"[green]Started[/] background sync every {engine.interval_seconds:g}s "
        f"({engine.status().status.value})"
    )
    console.print("Press Ctrl+C to stop")

    try:
        while True:
            time.sleep(60)
    except KeyboardInterrupt:
        engine.stop()
        log_run_summary()
        console.print("\n[yellow]Stopped[/]")
