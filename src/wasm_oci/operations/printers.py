"""
Human-readable output formatting.

Centralizes all CLI output formatting so commands stay thin.
"""
from __future__ import annotations

from pathlib import Path

from rich.console import Console
from rich.table import Table

from ..distribution import PullResult, PushResult
from ..models import ResolvedComponent

_console = Console(soft_wrap=True)


def print_push_summary(result: PushResult) -> None:
    """Print the reference, manifest digest and blob counts of a push."""
    _console.print(f"[green]✓[/] Pushed [bold]{result.reference}[/]")
    _console.print(f"[bold]Manifest:[/] [dim]{result.manifest_digest}[/]")
    _console.print(f"[bold]Blobs:[/] {len(result.pushed)} uploaded, {len(result.skipped)} already present")


def print_pull_summary(result: PullResult, manifest_path: Path) -> None:
    """Print the reference, manifest digest and layer counts of a pull."""
    _console.print(f"[green]✓[/] Pulled [bold]{result.reference}[/]")
    _console.print(f"[bold]Manifest:[/] [dim]{result.manifest_digest}[/]")
    _console.print(f"[bold]Layers:[/] {len(result.fetched)} fetched, {len(result.skipped)} cached")
    _console.print(f"[bold]Cache:[/] {manifest_path}", highlight=False)


def print_component(component: ResolvedComponent) -> None:
    """
    Print a reassembled component: module path, environment and file mounts.
    """
    _console.print(f"[bold]Component:[/] {component.id}")
    _console.print(f"[bold]Module:[/] {component.source}", highlight=False)
    if component.environment:
        _console.print("[bold]Environment:[/]")
        for key, value in sorted(component.environment.items()):
            _console.print(f"  {key}={value}", highlight=False, markup=False)

    if not component.files:
        _console.print("[dim]No files mounted[/]")
        return

    table = Table(title="Files")
    table.add_column("Guest path", style="cyan", no_wrap=True)
    table.add_column("Source", style="yellow")
    for mount in component.files:
        table.add_row(mount.guest, str(mount.source))
    _console.print(table)
