"""
wasm-oci CLI

Thin command layer over DistributionClient:
- push: Push an application descriptor to a registry reference
- pull: Pull a reference into the local cache
- path: Print the cached manifest path for a reference
- inspect: Reassemble and print the component of a reference
"""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

import typer

from .cli_context import CLIContext
from .models import Application
from .operations import run_and_exit
from .operations.printers import print_component, print_pull_summary, print_push_summary
from .storage.reference import parse_reference

app = typer.Typer(name="wasm-oci", help="Distribute Wasm applications through OCI registries")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Distribute Wasm applications through OCI registries."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


def _context(cache_dir: Optional[Path], insecure: bool) -> CLIContext:
    # Only an explicit --insecure overrides the environment
    return CLIContext.from_env(cache_dir=cache_dir, insecure=True if insecure else None)


@app.command()
def push(
    app_file: Path = typer.Argument(..., help="Application descriptor (YAML)"),
    reference: str = typer.Argument(..., help="Target reference: registry/repository[:tag]"),
    insecure: bool = typer.Option(False, "--insecure", "-k", help="Use plain HTTP for the registry"),
    cache_dir: Optional[Path] = typer.Option(None, "--cache-dir", help="Cache root directory"),
) -> None:
    """Push an application to a registry."""
    def _push() -> None:
        ref = parse_reference(reference)
        application = Application.from_yaml_file(app_file)
        context = _context(cache_dir, insecure)
        result = asyncio.run(context.client.push(application, ref))
        print_push_summary(result)

    run_and_exit(_push)


@app.command()
def pull(
    reference: str = typer.Argument(..., help="Reference to pull: registry/repository[:tag]"),
    insecure: bool = typer.Option(False, "--insecure", "-k", help="Use plain HTTP for the registry"),
    cache_dir: Optional[Path] = typer.Option(None, "--cache-dir", help="Cache root directory"),
) -> None:
    """Pull an application into the local cache."""
    def _pull() -> None:
        ref = parse_reference(reference)
        context = _context(cache_dir, insecure)
        result = asyncio.run(context.client.pull(ref))
        print_pull_summary(result, context.client.cache_manifest_path(ref))

    run_and_exit(_pull)


@app.command()
def path(
    reference: str = typer.Argument(..., help="Reference: registry/repository[:tag]"),
    cache_dir: Optional[Path] = typer.Option(None, "--cache-dir", help="Cache root directory"),
) -> None:
    """Print the cached manifest path for a reference."""
    def _path() -> None:
        ref = parse_reference(reference)
        context = _context(cache_dir, False)
        typer.echo(str(context.client.cache_manifest_path(ref)))

    run_and_exit(_path)


@app.command()
def inspect(
    reference: str = typer.Argument(..., help="Reference: registry/repository[:tag]"),
    insecure: bool = typer.Option(False, "--insecure", "-k", help="Use plain HTTP for the registry"),
    cache_dir: Optional[Path] = typer.Option(None, "--cache-dir", help="Cache root directory"),
) -> None:
    """Show the component of a reference, pulling it if not cached."""
    def _inspect() -> None:
        ref = parse_reference(reference)
        context = _context(cache_dir, insecure)
        component = asyncio.run(context.client.component(ref))
        print_component(component)

    run_and_exit(_inspect)


if __name__ == "__main__":
    app()
