"""Site building for Strata.

The Builder runs one build in ordered steps:

1. Enumerate sources and sort them into copy-through, asset and template buckets.
2. Process copy-through files and assets.
3. Load every template through the data cascade and decide whether it changed;
   this fills the collection store and dependency graph without rendering.
4. Synthesize aggregate pages (group index pages, pagination overflow pages)
   into the staging directory.
5. Render phase ``early``.
6. Render phase ``late``.
7. Load the synthesized files ("stragglers") and commit the fingerprints of
   changed dependencies.
8. Render phase ``last``, which includes every straggler.

Units in a phase render concurrently; phases are strict barriers. Per-unit
data and render errors are reported and the run continues. Configuration
errors are collected until the end of the current step and then abort the run.

Key pieces:
- Builder: Runs the steps for a BuildContext.
- BuildResult: What a run rendered, skipped and failed on.
- build_site: Synchronous entry point used by the CLI.
"""

from __future__ import annotations

import asyncio
import inspect
import posixpath
import time
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Any

from . import console
from .assets import AssetPipeline, AssetReport
from .cache import TEMPLATE_GROUP
from .cascade import ContentUnit, DataCascade
from .collections import CollectionStore
from .context import BuildContext
from .errors import BuildError, ConfigurationError, DataError, RenderError, format_error_message
from .pagination import prune_staging, synthesize_group_pages
from .scanner import SourceScanner
from .utils import absolutize_html_urls, gather_bounded


@dataclass
class BuildResult:
    """Result of a site build.

    Attributes:
        rendered: Rel paths of units written this run.
        skipped: Rel paths of units loaded but not rendered.
        errors: Per-unit errors recorded this run.
        units: Every loaded unit by rel path.
        output_dir: Directory the site was written to.
        collections: The run's collection store.
        assets: Asset processing report.
    """

    rendered: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    errors: list[BuildError] = field(default_factory=list)
    units: dict[str, ContentUnit] = field(default_factory=dict)
    output_dir: Path | None = None
    collections: CollectionStore | None = None
    assets: AssetReport | None = None

    @property
    def ok(self) -> bool:
        return not self.errors


class Builder:
    """Runs builds for one BuildContext.

    Attributes:
        context: Build context.
        scanner: Source enumeration.
    """

    def __init__(self, context: BuildContext):
        self.context = context
        self.scanner = SourceScanner(context.config)
        self._interim: set[str] = set()
        self._outputs: dict[Path, str] = {}
        self._result = BuildResult()

    @property
    def config(self):
        return self.context.config

    async def run(
        self,
        targets: Iterable[str] | None = None,
        assets: Iterable[str] | None = None,
        copies: Iterable[str] | None = None,
        styles: Iterable[str] = (),
    ) -> BuildResult:
        """Run one build.

        Args:
            targets: Template rel paths to render. When given the run is
                restricted: only targets and changed units render, and only
                the listed assets and copies are processed.
            assets: Asset rel paths to process in a restricted run.
            copies: Copy-through rel paths to copy in a restricted run.
            styles: Style entry points recompiled regardless of the cache.

        Returns:
            BuildResult for the run.

        Raises:
            ConfigurationError: On a fatal configuration problem.
        """
        started = time.perf_counter()
        context = self.context
        context.reset()
        self.scanner = SourceScanner(self.config)
        self._interim = set()
        self._outputs = {}
        self._result = BuildResult(output_dir=self.config.output_dir, collections=context.collections)
        restricted = targets is not None
        target_set = set(targets or ())

        context.load_state()
        try:
            context.load_global_data()
        except DataError as exc:
            raise ConfigurationError(exc.message, exc.source_path, exc) from exc
        self.cascade = DataCascade(context)

        # 1. enumerate
        scan = self.scanner.scan()
        self.config.output_dir.mkdir(parents=True, exist_ok=True)

        # 2. copy-through and assets
        pipeline = AssetPipeline(context)
        copy_paths = scan.copies if copies is None and not restricted else list(copies or ())
        asset_paths = scan.assets if assets is None and not restricted else list(assets or ())
        await pipeline.copy_through(copy_paths)
        self._result.assets = await pipeline.run(asset_paths, force=styles)

        # 3. load templates
        units = await self._load_all([self.config.root / rel for rel in scan.templates])
        self._forget_vanished(scan.templates)
        context.collections.link_neighbours()

        # 4. synthesize aggregate pages
        staged = self._synthesize(units.values(), group_pages=True)
        prune_staging(self.config.temp_dir, staged)

        def selected(unit: ContentUnit) -> bool:
            if restricted:
                return unit.rel_path in target_set or unit.dirty
            return unit.dirty or unit.aggregate

        # 5, 6. early and late phases
        for phase in ("early", "late"):
            await self._render_phase(
                phase, [u for u in units.values() if u.phase == phase and not u.synthetic], selected
            )

        # 7. stragglers
        stragglers = await self._load_stragglers(units)
        for dependency in sorted(self._interim):
            context.cache.commit(dependency)
        context.collections.link_neighbours()

        # 8. last phase
        last = [u for u in units.values() if u.phase == "last" and not u.synthetic]
        last.extend(stragglers)
        await self._render_phase("last", last, selected)

        context.save_state()
        self._result.units = units
        self._result.errors = list(context.errors)
        self._result.skipped = sorted(set(units) - set(self._result.rendered))
        elapsed = time.perf_counter() - started
        console.info(
            f"Rendered {len(self._result.rendered)} page(s), skipped "
            f"{len(self._result.skipped)}, {len(self._result.errors)} error(s) in {elapsed:.2f}s"
        )
        return self._result

    async def _load_all(self, paths: list[Path], synthetic: bool = False) -> dict[str, ContentUnit]:
        """Load units concurrently; configuration errors abort after all finish."""
        results = await gather_bounded(
            [lambda path=path: self._load_unit(path, synthetic) for path in paths],
            self.config.get("concurrency", 0),
        )
        units: dict[str, ContentUnit] = {}
        fatal: list[ConfigurationError] = []
        for path, result in zip(paths, results):
            if isinstance(result, ContentUnit):
                units[result.rel_path] = result
            else:
                self._handle_error(self.config.key(path), result, fatal)
        self._raise_fatal(fatal)
        return units

    async def _load_unit(self, path: Path, synthetic: bool) -> ContentUnit:
        previous = self.context.graph.dependencies_of(self.config.key(path))
        unit = await self.cascade.load(path, synthetic=synthetic)
        unit.renderer = self.context.engine.compile(unit)
        unit.dirty = self._is_dirty(unit, previous)
        self.context.collections.index(unit, self.config["collections_to_track"])
        return unit

    def _is_dirty(self, unit: ContentUnit, previous: Iterable[str] = ()) -> bool:
        """Decide whether a unit changed itself or through a dependency.

        The unit's own fingerprint is recorded immediately. Changed
        dependencies are only peeked at and collected, so every unit that
        depends on them sees the change; they are committed after the
        straggler pass. ``previous`` holds the edges of the last run, so a
        dependency that was dropped or deleted since still marks the unit dirty.
        """
        cache = self.context.cache
        dirty = cache.check(unit.rel_path, TEMPLATE_GROUP)
        dependencies = self.context.graph.dependencies_of(unit.rel_path) | set(previous)
        for dependency in sorted(dependencies):
            if cache.peek(dependency, TEMPLATE_GROUP):
                self._interim.add(dependency)
                dirty = True
        return dirty

    def _forget_vanished(self, templates: list[str]) -> None:
        """Drop graph nodes and fingerprints of content files that no longer exist."""
        present = set(templates)
        graph = self.context.graph
        for node in sorted(graph.nodes):
            if node in present or not graph.dependencies_of(node):
                continue
            if not (self.config.root / node).exists():
                graph.remove_node(node)
                self.context.cache.group(TEMPLATE_GROUP).set(node, None)

    def _synthesize(self, units: Iterable[ContentUnit], group_pages: bool = False) -> set[Path]:
        """Write aggregate pages into the staging directory."""
        staged: set[Path] = set()
        fatal: list[ConfigurationError] = []
        layouts_dir = self.config.layouts_dir
        temp_dir = self.config.temp_dir
        if group_pages:
            try:
                staged.update(
                    synthesize_group_pages(
                        self.context.collections,
                        self.config.get("group_templates") or {},
                        layouts_dir,
                        temp_dir,
                    )
                )
            except ConfigurationError as exc:
                fatal.append(exc)
        for unit in units:
            if unit.pagination is None:
                continue
            try:
                window = unit.pagination.calculate(self._lookup_data(unit))
                staged.update(unit.pagination.synthesize(window, layouts_dir, temp_dir))
            except BuildError as exc:
                self._handle_error(unit.rel_path, exc, fatal)
        self._raise_fatal(fatal)
        return {path.resolve() for path in staged}

    async def _load_stragglers(self, units: dict[str, ContentUnit]) -> list[ContentUnit]:
        """Load staged files until no new ones appear."""
        attempted: set[str] = set(units)
        stragglers: list[ContentUnit] = []
        while True:
            fresh = [p for p in self.scanner.scan_staging() if self.config.key(p) not in attempted]
            if not fresh:
                return stragglers
            attempted.update(self.config.key(p) for p in fresh)
            loaded = await self._load_all(fresh, synthetic=True)
            units.update(loaded)
            stragglers.extend(loaded.values())
            self._synthesize(loaded.values())

    async def _render_phase(self, phase: str, units: list[ContentUnit], selected) -> None:
        chosen = [unit for unit in units if selected(unit)]
        if not chosen:
            return
        console.debug(f"Rendering phase '{phase}': {len(chosen)} unit(s)")
        results = await gather_bounded(
            [lambda unit=unit: self._render_unit(unit) for unit in chosen],
            self.config.get("concurrency", 0),
        )
        fatal: list[ConfigurationError] = []
        for unit, result in zip(chosen, results):
            if isinstance(result, BaseException):
                self._handle_error(unit.rel_path, result, fatal)
                self.context.cache.group(TEMPLATE_GROUP).set(unit.rel_path, None)
            else:
                self._result.rendered.append(unit.rel_path)
        self._raise_fatal(fatal)

    def _lookup_data(self, unit: ContentUnit) -> dict[str, Any]:
        return {**unit.data, "collections": self.context.collections.as_template_data()}

    def render_data(self, unit: ContentUnit) -> dict[str, Any]:
        """Final data for a unit: merged data, collections, navigation,
        the pagination window and then computed data."""
        data = self._lookup_data(unit)
        data["navigation"] = unit.navigation
        if unit.pagination is not None:
            window = unit.pagination.calculate(data)
            data["pagination"] = {**unit.data["pagination"], **window.as_dict()}
            data[unit.pagination.alias] = window.items
        return self.cascade.evaluate_computed(unit, data)

    async def _render_unit(self, unit: ContentUnit) -> Path:
        data = self.render_data(unit)
        permalink = data.get("permalink")
        if not permalink:
            raise ConfigurationError("Missing permalink", unit.path)
        dest = self.output_path(str(permalink), bool(data.get("no_index")), unit)
        try:
            output = unit.renderer(data)
            if inspect.isawaitable(output):
                output = await output
        except BuildError:
            raise
        except Exception as exc:
            raise RenderError(format_error_message(exc), unit.path, exc) from exc
        if self.config.root_url:
            output = absolutize_html_urls(str(output), self.config.root_url)
        previous = self._outputs.setdefault(dest, unit.rel_path)
        if previous != unit.rel_path:
            console.warning(f"Output {dest} is also written by {previous}", unit.rel_path)
        await asyncio.to_thread(_write_output, dest, str(output))
        console.debug(f"Wrote {dest}")
        return dest

    def output_path(self, permalink: str, no_index: bool, unit: ContentUnit) -> Path:
        """Map a permalink to a file in the output directory.

        Examples:
            ``/hello/`` -> ``<output>/hello/index.html``;
            ``/feed.xml`` -> ``<output>/feed.xml``.

        Raises:
            DataError: If the permalink is empty or escapes the output directory.
        """
        rel = permalink.lstrip("/")
        if not no_index and (not rel or rel.endswith("/") or not PurePosixPath(rel).suffix):
            rel = posixpath.join(rel, "index.html")
        rel = rel.rstrip("/")
        if not rel:
            raise DataError(f"Permalink '{permalink}' does not name a file", unit.path)
        output_dir = self.config.output_dir.resolve()
        dest = (output_dir / rel).resolve()
        try:
            dest.relative_to(output_dir)
        except ValueError as exc:
            raise DataError(
                f"Permalink '{permalink}' points outside the output directory", unit.path, exc
            ) from exc
        return dest

    def _handle_error(
        self, rel_path: str, exc: BaseException, fatal: list[ConfigurationError]
    ) -> None:
        if not isinstance(exc, Exception):
            raise exc
        if isinstance(exc, ConfigurationError):
            fatal.append(exc)
            return
        if not isinstance(exc, BuildError):
            exc = RenderError(format_error_message(exc), rel_path, exc)
        self._report(exc, rel_path)
        self.context.errors.append(exc)

    def _report(self, exc: BuildError, rel_path: str | None = None) -> None:
        console.error(exc.message, exc.source_path or rel_path)

    def _raise_fatal(self, fatal: list[ConfigurationError]) -> None:
        """Report every collected configuration error, then raise the first."""
        if not fatal:
            return
        for exc in fatal:
            self._report(exc)
        raise fatal[0]


def _write_output(dest: Path, text: str) -> None:
    dest.parent.mkdir(parents=True, exist_ok=True)
    with open(dest, "w", encoding="utf-8") as f:
        f.write(text)


def build_site(
    root: Path,
    overrides: dict[str, Any] | None = None,
    clear_cache: bool = False,
    clear_output: bool = False,
    targets: Iterable[str] | None = None,
    context: BuildContext | None = None,
) -> BuildResult:
    """Build a site synchronously.

    Args:
        root: Site root directory.
        overrides: Configuration overrides, e.g. ``{"incremental": False}``.
        clear_cache: Discard the persisted cache and graph first.
        clear_output: Empty the output directory first (implies a cold run).
        targets: Restrict rendering to these rel paths (plus changed units).
        context: Existing context to reuse instead of creating one.

    Returns:
        BuildResult of the run.

    Raises:
        ConfigurationError: On a fatal configuration problem.
    """
    context = context or BuildContext(root, overrides)
    if clear_cache or clear_output:
        context.clear_cache()
    if clear_output:
        context.clear_output()
    return asyncio.run(Builder(context).run(targets=targets))
