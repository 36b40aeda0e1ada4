"""Pagination and aggregate page synthesis for Strata.

A unit with a ``pagination`` mapping in its data lists a window of a
collection. The host page is page 0; when more pages are needed, the
remaining pages are written into the staging directory from a pagination
template and re-enter the build as ordinary content.

Pagination data keys:
    data: Dotted path to the collection, e.g. ``collections.tags.python``.
    per_page: Page size (default 10).
    page: 0-based page index of this unit (default 0).
    alias: Name the page's items are exposed under (default ``items``).
    order: Collection order (default ``date-desc``).
    template: Pagination template in the layout directory.

Templates are plain text with markers replaced before writing:
``[[page]]`` (1-based page number) and ``[[pageIndex]]`` (0-based). Group
index templates use ``[[name]]`` and ``[[slug]]``.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from . import console
from .collections import DEFAULT_ORDER, Collection, CollectionStore
from .errors import ConfigurationError
from .merge import lookup
from .utils import slugify

PAGINATION_DIR = "paginate"


@dataclass
class PageWindow:
    """The slice of a collection shown on one page."""

    page: int
    per_page: int
    page_count: int
    size: int
    start: int
    end: int
    items: list[Any] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "page": self.page,
            "page_number": self.page + 1,
            "per_page": self.per_page,
            "page_count": self.page_count,
            "size": self.size,
            "from": self.start,
            "to": self.end,
            "items": self.items,
            "has_prev": self.page > 0,
            "has_next": self.page + 1 < self.page_count,
        }


class Pagination:
    """Pagination settings of one unit.

    Attributes:
        unit: The unit carrying the ``pagination`` data.
        data_path: Dotted path of the paginated collection.
        per_page: Page size.
        page: 0-based page index.
        alias: Template name for the page's items.
        order: Collection order.
        template: Pagination template name, or None.
    """

    def __init__(self, unit, settings: Mapping[str, Any]):
        self.unit = unit
        self.data_path = str(settings.get("data") or "collections.all")
        self.per_page = _positive_int(settings.get("per_page", 10), "per_page", unit)
        self.page = _non_negative_int(settings.get("page", 0), "page", unit)
        self.alias = str(settings.get("alias") or "items")
        self.order = str(settings.get("order") or DEFAULT_ORDER)
        self.template = settings.get("template")

    def resolve(self, context_data: Mapping[str, Any]) -> Collection | list[Any]:
        """Find the paginated collection in ``context_data``.

        Raises:
            ConfigurationError: If the dotted path does not resolve.
        """
        try:
            return lookup(context_data, self.data_path)
        except KeyError as exc:
            raise ConfigurationError(
                f"Pagination data '{self.data_path}' does not resolve", self.unit.path, exc
            ) from exc

    def calculate(self, context_data: Mapping[str, Any]) -> PageWindow:
        """Compute this page's window.

        ``page_count = ceil(size / per_page)``, ``from = page * per_page`` and
        ``to = min(from + per_page - 1, size - 1)``; an empty collection gives
        ``page_count == 0`` and ``to == -1``.
        """
        source = self.resolve(context_data)
        if isinstance(source, Collection):
            size = source.size
            items = source.get_selected(self.page * self.per_page, self.per_page, self.order)
        else:
            members = list(source or [])
            size = len(members)
            items = members[self.page * self.per_page : self.page * self.per_page + self.per_page]
        page_count = math.ceil(size / self.per_page)
        start = self.page * self.per_page
        end = min(start + self.per_page - 1, size - 1)
        return PageWindow(
            page=self.page,
            per_page=self.per_page,
            page_count=page_count,
            size=size,
            start=start,
            end=end,
            items=items,
        )

    def synthesize(self, window: PageWindow, layouts_dir: Path, staging_dir: Path) -> list[Path]:
        """Write pages 2..N of a host page into the staging directory.

        Only the host page (``page == 0``) synthesizes, and only when more than
        one page is needed.

        Returns:
            Paths of the files written or confirmed up to date.

        Raises:
            ConfigurationError: If the pagination template is missing.
        """
        if self.page != 0 or window.page_count <= 1:
            return []
        template_path = layouts_dir / str(self.template) if self.template else None
        if template_path is None or not template_path.is_file():
            raise ConfigurationError(
                f"Pagination needs {window.page_count} pages but template "
                f"'{self.template}' was not found in {layouts_dir}",
                self.unit.path,
            )
        text = template_path.read_text(encoding="utf-8")
        target_dir = staging_dir / PAGINATION_DIR / slugify(self.unit.rel_path)
        suffix = "".join(template_path.suffixes) or ".jinja"
        written = []
        for index in range(1, window.page_count):
            content = text.replace("[[page]]", str(index + 1)).replace("[[pageIndex]]", str(index))
            written.append(write_if_changed(target_dir / f"page-{index + 1}{suffix}", content))
        return written


def synthesize_group_pages(
    store: CollectionStore,
    group_templates: Mapping[str, str],
    layouts_dir: Path,
    staging_dir: Path,
) -> list[Path]:
    """Write one index page per grouped collection, e.g. one per tag.

    Raises:
        ConfigurationError: If a configured group template is missing.
    """
    written = []
    for group, template in group_templates.items():
        template_path = layouts_dir / template
        if not template_path.is_file():
            raise ConfigurationError(
                f"Group template '{template}' for '{group}' was not found in {layouts_dir}"
            )
        text = template_path.read_text(encoding="utf-8")
        suffix = "".join(template_path.suffixes) or ".jinja"
        taken: set[str] = set()
        for name in store.group_names(group):
            slug = _unique_slug(slugify(name), taken)
            if slug != slugify(name):
                console.warning(
                    f"'{name}' in '{group}' shares its slug with another name; using '{slug}'"
                )
            content = text.replace("[[name]]", name).replace("[[slug]]", slug)
            written.append(write_if_changed(staging_dir / group / f"{slug}{suffix}", content))
    return written


def _unique_slug(slug: str, taken: set[str]) -> str:
    candidate = slug
    counter = 2
    while candidate in taken:
        candidate = f"{slug}-{counter}"
        counter += 1
    taken.add(candidate)
    return candidate


def write_if_changed(path: Path, content: str) -> Path:
    """Write ``content`` unless the file already holds it, keeping its mtime stable."""
    if path.is_file() and path.read_text(encoding="utf-8") == content:
        return path
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


def prune_staging(staging_dir: Path, keep: set[Path]) -> list[Path]:
    """Delete staged files not produced by the current run."""
    removed = []
    if not staging_dir.is_dir():
        return removed
    for path in sorted(staging_dir.rglob("*")):
        if path.is_file() and path not in keep:
            path.unlink()
            removed.append(path)
    return removed


def _positive_int(value, name: str, unit) -> int:
    number = _non_negative_int(value, name, unit)
    if number == 0:
        raise ConfigurationError(f"Pagination '{name}' must be greater than zero", unit.path)
    return number


def _non_negative_int(value, name: str, unit) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(
            f"Pagination '{name}' must be an integer, got {value!r}", unit.path, exc
        ) from exc
    if number < 0:
        raise ConfigurationError(f"Pagination '{name}' must not be negative", unit.path)
    return number
