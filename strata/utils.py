"""Utility functions for Strata.

String, date, path and HTML helpers shared across the pipeline.

Key functions:
    slugify: Convert names to URL slugs.
    file_base: Derive a page's base name with ignored parts removed.
    extract_date_from_name: Extract date from a YYYY-MM-DD filename prefix.
    coerce_datetime: Normalize date-like front matter values.
    is_within: Whether a path lies beneath a directory.
    ensure_clean_dir: Ensure a directory exists and is empty.
    absolutize_html_urls: Convert root-relative URLs to absolute in HTML.
    gather_bounded: Run coroutines concurrently with an in-flight cap.
"""

from __future__ import annotations

import asyncio
import re
import shutil
from collections.abc import Awaitable, Callable, Iterable
from datetime import date, datetime
from pathlib import Path
from typing import TypeVar

T = TypeVar("T")

# URL attribute regex pattern for finding href, src, action attributes
_URL_ATTR_RE = re.compile(
    r'(?P<prefix>\b(?:href|src|action)=["\'])(?P<url>[^"\']+)(?P<suffix>["\'])'
)

# URL prefixes that should not be modified
_URL_SKIP_PREFIXES = (
    "http://",
    "https://",
    "//",
    "mailto:",
    "tel:",
    "#",
    "javascript:",
)


def slugify(name: str) -> str:
    """Convert a name to a lowercase, hyphen-separated slug.

    Args:
        name: Any string, e.g. a file stem or a tag.

    Returns:
        URL-friendly slug, or "index" when nothing usable remains.

    Examples:
        >>> slugify("Hello, World!")
        'hello-world'
    """
    cleaned = re.sub(r"[^a-zA-Z0-9]+", "-", str(name))
    cleaned = cleaned.strip("-").lower()
    return cleaned or "index"


def file_base(rel_path: str, ignore_parts: Iterable[str] = ()) -> str:
    """Derive the slugified base name of a file for permalinks.

    Args:
        rel_path: Site-relative path of the file.
        ignore_parts: Regular expressions removed from the stem first.

    Examples:
        >>> file_base("posts/2024-01-15-hello-world.md", [r"^\\d{4}-\\d{2}-\\d{2}-"])
        'hello-world'
    """
    stem = Path(rel_path).name.split(".")[0]
    for pattern in ignore_parts:
        stem = re.sub(pattern, "", stem)
    return slugify(stem)


def extract_date_from_name(name: str) -> datetime | None:
    """Extract a date from a filename with YYYY-MM-DD prefix.

    Args:
        name: Filename stem (without extension).

    Returns:
        datetime object if a valid date prefix is found, None otherwise.

    Examples:
        >>> extract_date_from_name("2024-01-15-hello-world")
        datetime.datetime(2024, 1, 15, 0, 0)

        >>> extract_date_from_name("hello-world") is None
        True
    """
    parts = name.split("-")
    if len(parts) >= 3 and all(p.isdigit() for p in parts[:3]):
        try:
            return datetime(int(parts[0]), int(parts[1]), int(parts[2]))
        except ValueError:
            return None
    return None


def coerce_datetime(value: object) -> datetime | None:
    """Normalize a front matter date value.

    YAML already turns unquoted dates into ``date``/``datetime`` objects;
    quoted ones arrive as ISO strings.

    Returns:
        A naive datetime, or None when the value is not date-like.
    """
    if isinstance(value, datetime):
        return value.replace(tzinfo=None)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str):
        text = value.strip()
        try:
            return datetime.fromisoformat(text.replace("Z", "+00:00")).replace(tzinfo=None)
        except ValueError:
            pass
        for fmt in ("%Y-%m-%d %H:%M", "%d %B %Y", "%b %d, %Y"):
            try:
                return datetime.strptime(text, fmt)
            except ValueError:
                continue
    return None


def ensure_clean_dir(path: Path) -> None:
    """Ensure a directory exists and is empty.

    If the directory exists, removes all contents. Creates the
    directory if it doesn't exist.

    Args:
        path: Directory path to clean or create.
    """
    if path.exists():
        shutil.rmtree(str(path), ignore_errors=True)
        if path.exists():
            # Fallback for stubborn directories
            for item in path.rglob("*"):
                if item.is_file():
                    item.unlink()
            for item in sorted(
                [p for p in path.rglob("*") if p.is_dir()], reverse=True
            ):
                item.rmdir()
            path.rmdir()
    path.mkdir(parents=True, exist_ok=True)


def join_root_url(root_url: str, path: str) -> str:
    """Safely join a root URL and a path, avoiding double slashes.

    Examples:
        >>> join_root_url('https://example.com/', 'about')
        'https://example.com/about'
    """
    if not root_url:
        return path if path.startswith("/") else f"/{path}"
    base = root_url.rstrip("/")
    suffix = path if path.startswith("/") else f"/{path}"
    return f"{base}{suffix}"


def absolutize_html_urls(html: str, root_url: str) -> str:
    """Rewrite root-relative URLs in href, src and action attributes.

    External URLs, anchors, mailto/tel links and javascript: URLs are left
    unchanged.

    Examples:
        >>> absolutize_html_urls('<a href="/about">About</a>', 'https://example.com')
        '<a href="https://example.com/about">About</a>'
    """
    if not root_url:
        return html

    def repl(match: re.Match) -> str:
        url = match.group("url")
        if not url or url.startswith(_URL_SKIP_PREFIXES) or not url.startswith("/"):
            return match.group(0)
        absolute = join_root_url(root_url, url)
        return f"{match.group('prefix')}{absolute}{match.group('suffix')}"

    return _URL_ATTR_RE.sub(repl, html)


async def gather_bounded(
    factories: Iterable[Callable[[], Awaitable[T]]], limit: int = 0
) -> list[T | BaseException]:
    """Run coroutine factories concurrently, at most ``limit`` at a time.

    Args:
        factories: Zero-argument callables returning awaitables.
        limit: Maximum number in flight; 0 means unbounded.

    Returns:
        Results in input order; exceptions are returned, not raised.
    """
    semaphore = asyncio.Semaphore(limit) if limit > 0 else None

    async def run(factory: Callable[[], Awaitable[T]]) -> T:
        if semaphore is None:
            return await factory()
        async with semaphore:
            return await factory()

    return await asyncio.gather(*(run(factory) for factory in factories), return_exceptions=True)


def is_within(path: Path, directory: Path) -> bool:
    """True when ``path`` is ``directory`` or lies beneath it."""
    try:
        path.resolve().relative_to(directory.resolve())
    except ValueError:
        return False
    return True
