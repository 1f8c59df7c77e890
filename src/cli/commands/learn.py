"""Learning CLI commands: status, patterns, preferences, apply, delete, reset."""

import click
from rich.console import Console
from rich.table import Table

from cli.utils import get_components
from shared_types import RefinementMode

console = Console()

_MODES = [m.value for m in RefinementMode]


@click.group()
def learn():
    """Learned patterns and style preferences."""
    pass


@learn.command("status")
def learn_status():
    """Show session counts, pattern counts and learning quality."""
    c = get_components()
    stats = c["engine"].get_stats()
    sessions = stats["sessions"]

    console.print(f"Learning: {'[green]on[/]' if stats['enabled'] else '[yellow]paused[/]'}")
    console.print(f"Quality: [bold]{stats['learning_quality']}[/]")
    console.print(f"Sessions: {sessions['total']} ({sessions['skipped']} skipped, {sessions['unsynced']} unsynced)")
    console.print(f"Patterns: {stats['patterns']['active']} active / {stats['patterns']['total']} total")
    console.print(f"Queued operations: {stats['queue_pending']}")
    if sessions["by_mode"]:
        console.print("\nBy mode:")
        for mode, cnt in sorted(sessions["by_mode"].items()):
            console.print(f"  {mode}: {cnt}")


@learn.command("patterns")
@click.option("--all", "show_all", is_flag=True, help="Include patterns that are not active yet")
def learn_patterns(show_all: bool):
    """List learned phrase corrections."""
    c = get_components()
    store = c["store"]
    patterns = store.patterns.list_all() if show_all else c["engine"].get_active_patterns()

    if not patterns:
        console.print("[dim]No patterns learned yet.[/]")
        return

    table = Table(title="Learned Patterns")
    table.add_column("ID", style="dim", max_width=12)
    table.add_column("Original")
    table.add_column("Corrected", style="green")
    table.add_column("Seen", justify="right")
    table.add_column("Confidence", justify="right")
    table.add_column("Mode")
    table.add_column("Active")

    for p in patterns:
        table.add_row(
            p.id[:12],
            p.original_phrase,
            p.corrected_phrase,
            str(p.occurrence_count),
            f"{p.confidence:.2f}",
            p.mode.value if p.mode else "-",
            "yes" if p.is_active else "no",
        )
    console.print(table)


@learn.command("preferences")
def learn_preferences():
    """Show stylistic preference values."""
    c = get_components()
    prefs = c["engine"].get_preferences()

    if not prefs:
        console.print("[dim]No preferences learned yet.[/]")
        return

    table = Table(title="Preferences")
    table.add_column("Type")
    table.add_column("Value", justify="right")
    table.add_column("Samples", justify="right")
    table.add_column("Updated", style="dim")
    for p in prefs:
        table.add_row(
            p.preference_type.value,
            f"{p.value:+.3f}",
            str(p.sample_count),
            p.last_updated.strftime("%Y-%m-%d %H:%M"),
        )
    console.print(table)


@learn.command("apply")
@click.argument("text")
@click.option("-m", "--mode", type=click.Choice(_MODES), default=None, help="Refinement mode")
def learn_apply(text: str, mode: str | None):
    """Run TEXT through learned patterns and preferences."""
    c = get_components()
    result = c["engine"].apply_learned_adjustments(text, RefinementMode(mode) if mode else None)
    click.echo(result)


@learn.command("delete")
@click.argument("pattern_id")
def learn_delete(pattern_id: str):
    """Delete a pattern by ID (prefix match)."""
    c = get_components()
    matches = [p for p in c["store"].patterns.list_all() if p.id.startswith(pattern_id)]

    if not matches:
        console.print(f"[red]No pattern matching '{pattern_id}'[/]")
        return
    if len(matches) > 1:
        console.print(f"[yellow]Ambiguous ID '{pattern_id}': matches {len(matches)} patterns[/]")
        return

    pattern = matches[0]
    c["engine"].delete_pattern(pattern.id)
    console.print(
        f"[green]Deleted:[/] {pattern.original_phrase} → {pattern.corrected_phrase}"
    )


@learn.command("reset")
@click.confirmation_option(prompt="Delete ALL learned data, locally and remotely?")
def learn_reset():
    """Wipe all sessions, patterns and preferences."""
    c = get_components()
    counts = c["engine"].reset_all_learning()
    console.print(
        f"[green]Reset complete.[/] Removed {counts['sessions']} sessions, "
        f"{counts['patterns']} patterns, {counts['preferences']} preferences."
    )
