"""Console output for Strata.

Levelled wrappers around ``click.echo``. The CLI sets the level once per
process with ``set_level``; everything below it is dropped.

Levels, most to least severe: error, warning, notice, info, debug.
"""

from __future__ import annotations

from pathlib import Path

import click

LEVELS = ("silent", "error", "warning", "notice", "info", "debug")

_level = LEVELS.index("info")


def set_level(name: str) -> None:
    """Set the minimum level that is printed.

    Args:
        name: One of LEVELS.

    Raises:
        ValueError: If the level name is unknown.
    """
    global _level
    if name not in LEVELS:
        raise ValueError(f"Unknown console level '{name}'")
    _level = LEVELS.index(name)


def _enabled(name: str) -> bool:
    return LEVELS.index(name) <= _level


def error(message: str, path: Path | str | None = None) -> None:
    if not _enabled("error"):
        return
    click.echo(click.style("error:", fg="red", bold=True) + " " + _with_path(message, path), err=True)


def warning(message: str, path: Path | str | None = None) -> None:
    if not _enabled("warning"):
        return
    click.echo(click.style("warning:", fg="yellow") + " " + _with_path(message, path), err=True)


def notice(message: str) -> None:
    if _enabled("notice"):
        click.echo(message)


def info(message: str) -> None:
    if _enabled("info"):
        click.echo(message)


def debug(message: str) -> None:
    if _enabled("debug"):
        click.echo(click.style(message, dim=True))


def _with_path(message: str, path: Path | str | None) -> str:
    if path is None:
        return message
    return f"{path}: {message}"
