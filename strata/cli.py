"""Command-line interface for Strata.

This module defines the CLI commands using Click framework.

Commands:
- build: Build the site into the output directory, optionally watching for changes.
- serve: Build, then run the development server with live reload.
"""

from __future__ import annotations

import time
from pathlib import Path
from typing import Any

import click

from . import __version__, console
from .errors import BuildError


def _site_options(func):
    options = [
        click.option(
            "--input",
            "input_dir",
            type=click.Path(file_okay=False, path_type=Path),
            default=".",
            show_default=True,
            help="Site root directory",
        ),
        click.option(
            "--output",
            "output_dir",
            type=click.Path(file_okay=False, path_type=Path),
            default=None,
            help="Output directory (overrides strata.yaml)",
        ),
        click.option(
            "--incremental/--no-incremental",
            default=None,
            help="Skip unchanged files using the build cache",
        ),
        click.option("--clear-cache", is_flag=True, help="Discard the build cache first"),
        click.option(
            "--clear-output",
            is_flag=True,
            help="Empty the output directory first (implies --clear-cache)",
        ),
        click.option(
            "--level",
            type=click.Choice(console.LEVELS),
            default="info",
            show_default=True,
            help="Console output level",
        ),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _overrides(output_dir: Path | None, incremental: bool | None) -> dict[str, Any]:
    overrides: dict[str, Any] = {"incremental": incremental}
    if output_dir is not None:
        overrides["locations"] = {"output": str(output_dir.resolve())}
    return overrides


def _fail(exc: BuildError, project_root: Path) -> None:
    click.echo(click.style("Build failed:", fg="red", bold=True), err=True)
    if exc.source_path is not None:
        source = Path(exc.source_path)
        try:
            source = source.resolve().relative_to(project_root)
        except ValueError:
            pass
        click.echo(click.style(f"  File: {source}", fg="yellow"), err=True)
    click.echo(click.style(f"  Error: {exc.message}", fg="white"), err=True)
    raise SystemExit(1)


def _make_context(input_dir: Path, output_dir, incremental, clear_cache, clear_output):
    from .context import BuildContext

    context = BuildContext(input_dir, _overrides(output_dir, incremental))
    if clear_cache or clear_output:
        context.clear_cache()
    if clear_output:
        context.clear_output()
    return context


@click.group()
@click.version_option(version=__version__, prog_name="strata")
def cli():
    """Strata incremental static site builder."""


@cli.command()
@_site_options
@click.option("--watch", is_flag=True, help="Keep running and rebuild on changes")
def build(
    input_dir: Path,
    output_dir: Path | None,
    incremental: bool | None,
    clear_cache: bool,
    clear_output: bool,
    level: str,
    watch: bool,
):
    """Build the site into the output directory."""
    console.set_level(level)
    project_root = input_dir.resolve()
    from .build import build_site

    try:
        context = _make_context(project_root, output_dir, incremental, clear_cache, clear_output)
        result = build_site(project_root, context=context)
    except BuildError as exc:
        _fail(exc, project_root)
        return
    console.info(
        f"Rendered {len(result.rendered)} page(s), skipped {len(result.skipped)} "
        f"into {result.output_dir}"
    )
    if not watch:
        if not result.ok:
            raise SystemExit(1)
        return

    from .watcher import IncrementalRebuilder, Watcher

    watcher = Watcher(project_root, IncrementalRebuilder(context))
    watcher.start()
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        watcher.stop()


@cli.command()
@_site_options
@click.option("--port", type=int, required=False, help="Port to run the dev server (overrides strata.yaml)")
@click.option(
    "--ws-port",
    type=int,
    required=False,
    help="Port for the live reload websocket server (defaults to port + 1)",
)
def serve(
    input_dir: Path,
    output_dir: Path | None,
    incremental: bool | None,
    clear_cache: bool,
    clear_output: bool,
    level: str,
    port: int | None,
    ws_port: int | None,
):
    """Build, then run the dev server with live reload."""
    console.set_level(level)
    project_root = input_dir.resolve()
    from .server import DevServer

    try:
        context = _make_context(project_root, output_dir, incremental, clear_cache, clear_output)
    except BuildError as exc:
        _fail(exc, project_root)
        return
    server = DevServer(context, http_port=port, ws_port=ws_port)
    server.start()


def main():
    """Entry point for the CLI application."""
    cli()
