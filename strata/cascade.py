"""Data cascade and layout resolution for Strata.

Every content file becomes a ContentUnit whose data is merged from these
layers, lowest precedence first:

1. Global data: site ``data`` config, data added by plugins, ``_data`` files.
2. Layout data: front matter of every layout in the chain, furthest first.
3. Directory data: ``.strata.recurse``/``.strata.dir``/``.strata.<base>`` files.
4. The unit's own front matter.
5. Computed data, evaluated when the unit renders.

Key classes:
- ContentUnit: One template file with its merged data and layout chain.
- DataCascade: Loads units, walks layout chains and evaluates computed data.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING, Any

import yaml

from . import console
from .config import PHASES
from .datasources import DirectoryData
from .errors import ConfigurationError, DataError
from .frontmatter import FrontMatter, parse_front_matter
from .merge import merge, merge_many
from .pagination import Pagination
from .protocols import UnitRenderer
from .utils import file_base

if TYPE_CHECKING:
    from .context import BuildContext

PAGE_KEY = "page"


@dataclass
class ContentUnit:
    """One template file in the current run.

    Attributes:
        rel_path: Site-relative POSIX path; the unit's identity.
        path: Absolute file path.
        kind: ``markdown`` or ``jinja``.
        front_matter: Parsed front matter, body and excerpt.
        layout_chain: Layout units, nearest first.
        data: Merged data snapshot (computed data excluded).
        phase: Render phase: ``early``, ``late`` or ``last``.
        renderer: Callable bound by the template engine.
        synthetic: True for files synthesized into the staging directory.
        dirty: True when the unit or one of its dependencies changed.
        navigation: prev/next neighbours per collection key.
        pagination: Pagination settings when the unit paginates.
        data_files: Keys of the directory data files consumed.
    """

    rel_path: str
    path: Path
    kind: str = "jinja"
    front_matter: FrontMatter = field(default_factory=FrontMatter)
    layout_chain: list[ContentUnit] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)
    phase: str = "early"
    renderer: UnitRenderer | None = None
    synthetic: bool = False
    dirty: bool = True
    navigation: dict[str, dict[str, Any]] = field(default_factory=dict)
    pagination: Pagination | None = None
    data_files: list[str] = field(default_factory=list)

    @property
    def content(self) -> str:
        return self.front_matter.content

    @property
    def excerpt(self) -> str:
        return self.front_matter.excerpt

    @property
    def title(self) -> str:
        return str(self.data.get("title") or "")

    @property
    def date(self):
        return self.data.get("date")

    @property
    def url(self) -> str:
        return str(self.data.get("permalink") or "")

    @property
    def aggregate(self) -> bool:
        """True when the unit's output depends on other units' data."""
        return self.phase != "early" or self.pagination is not None or self.synthetic

    def __repr__(self) -> str:  # pragma: no cover - for debugging
        return f"ContentUnit({self.rel_path!r}, phase={self.phase!r})"


class DataCascade:
    """Resolves the data of content units for one build context.

    Attributes:
        context: The build context owning config, global data and caches.
    """

    def __init__(self, context: BuildContext):
        self.context = context
        self.config = context.config
        self.directory_data = DirectoryData(self.config.root, context)

    async def load(self, path: Path, synthetic: bool = False) -> ContentUnit:
        """Load a unit off the event loop and record its graph edges."""
        unit = await asyncio.to_thread(self.read, path, synthetic)
        self.record_dependencies(unit)
        return unit

    def read(self, path: Path, synthetic: bool = False) -> ContentUnit:
        """Parse a content file and merge its data layers.

        Raises:
            DataError: Malformed front matter, data files or phase.
            ConfigurationError: Missing or cyclic layout, bad pagination.
        """
        rel_path = self.config.key(path)
        kind = self.config.template_kind(path) or "jinja"
        front_matter = parse_front_matter(_read_text(path), path, excerpts=kind == "markdown")
        unit = ContentUnit(
            rel_path=rel_path,
            path=path,
            kind=kind,
            front_matter=front_matter,
            synthetic=synthetic,
        )

        global_data = self.context.global_data
        directory = self.directory_data.read(path)
        unit.data_files = [self.config.key(p) for p in directory.files]

        layout_name = merge_many([global_data, directory.data, front_matter.data]).get("layout")
        unit.layout_chain = self.resolve_layout_chain(unit, layout_name)
        layout_data = merge_many(layout.front_matter.data for layout in reversed(unit.layout_chain))

        data = merge_many([global_data, layout_data, directory.data, front_matter.data])
        data[PAGE_KEY] = self.page_info(unit)
        unit.data = data

        phase = data.get("phase", "early")
        if phase not in PHASES:
            raise DataError(f"Unknown phase '{phase}'; expected one of {', '.join(PHASES)}", path)
        unit.phase = phase

        settings = data.get("pagination")
        if settings is not None:
            if not isinstance(settings, Mapping):
                raise ConfigurationError("'pagination' must be a mapping", path)
            unit.pagination = Pagination(unit, settings)
        return unit

    def resolve_layout_chain(self, unit: ContentUnit, layout: Any = None) -> list[ContentUnit]:
        """Walk layout ancestors until one has no ``layout`` field.

        Args:
            unit: The content unit being resolved.
            layout: Name of the unit's layout; defaults to its front matter.

        Returns:
            Layout units, nearest first.

        Raises:
            ConfigurationError: If a layout is missing or a layout repeats.
        """
        if layout is None:
            layout = unit.front_matter.data.get("layout")
        chain: list[ContentUnit] = []
        visited: list[str] = []
        while layout:
            current = self.load_layout(layout, unit)
            if current.rel_path in visited:
                cycle = " -> ".join(visited + [current.rel_path])
                raise ConfigurationError(f"Cyclic layout reference: {cycle}", unit.path)
            visited.append(current.rel_path)
            chain.append(current)
            layout = current.front_matter.data.get("layout")
        return chain

    def load_layout(self, name: Any, unit: ContentUnit) -> ContentUnit:
        """Find and parse a layout, once per run.

        Raises:
            ConfigurationError: If the layout file does not exist.
        """
        if not isinstance(name, str):
            raise ConfigurationError(f"Layout must be a name, got {name!r}", unit.path)
        extension = self.config["layout_extension"]
        file_name = name if name.endswith(extension) else f"{name}{extension}"
        path = self.config.layouts_dir / file_name
        key = self.config.key(path)
        cached = self.context.layouts.get(key)
        if cached is not None:
            return cached
        if not path.is_file():
            raise ConfigurationError(
                f"Layout '{name}' not found in {self.config.layouts_dir}", unit.path
            )
        console.debug(f"Loading layout {key}")
        layout = ContentUnit(
            rel_path=key,
            path=path,
            kind="jinja",
            front_matter=parse_front_matter(_read_text(path), path, excerpts=False),
        )
        layout.data = layout.front_matter.data
        self.context.layouts[key] = layout
        return layout

    def page_info(self, unit: ContentUnit) -> dict[str, Any]:
        """The reserved ``page`` mapping exposed to templates."""
        rel = PurePosixPath(unit.rel_path)
        fdir = rel.parent.as_posix()
        return {
            "rel_path": unit.rel_path,
            "fbase": file_base(unit.rel_path, self.config["permalink_ignore_parts"]),
            "fdir": "" if fdir == "." else fdir,
            "ext": rel.suffix.lstrip("."),
            "synthetic": unit.synthetic,
            "excerpt": unit.excerpt,
        }

    def record_dependencies(self, unit: ContentUnit) -> None:
        """Point the unit's graph node at its layouts and data files."""
        dependencies = [layout.rel_path for layout in unit.layout_chain]
        dependencies.extend(unit.data_files)
        dependencies.extend(self.context.global_data_files)
        self.context.graph.set_dependencies(unit.rel_path, dependencies)

    def evaluate_computed(self, unit: ContentUnit, context_data: Mapping[str, Any]) -> dict[str, Any]:
        """Render the ``computed`` field and merge it on top of ``context_data``.

        The computed structure is dumped to YAML, rendered as a template with
        ``context_data``, and parsed back.

        Raises:
            DataError: If the rendered text is not a YAML mapping.
        """
        computed = context_data.get("computed")
        if not computed:
            return dict(context_data)
        text = yaml.safe_dump(computed, sort_keys=False, allow_unicode=True)
        rendered = self.context.engine.render_string(text, context_data)
        try:
            values = yaml.safe_load(rendered)
        except yaml.YAMLError as exc:
            raise DataError(f"Computed data did not parse: {exc}", unit.path, exc) from exc
        if not isinstance(values, dict):
            raise DataError("Computed data must render to a mapping", unit.path)
        return merge(context_data, values)


def _read_text(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise DataError(f"Unable to read file: {exc}", path, exc) from exc
