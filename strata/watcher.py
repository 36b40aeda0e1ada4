"""Watch mode for Strata.

File system events are queued and flushed as one batch after a short quiet
period. Each batch is turned into the smallest rebuild that covers it:

- The control file changed: rebuild everything from a cold cache.
- Output, cache or staging files changed: ignore them.
- A style source changed: recompile every declared style entry point.
- A layout or data file changed: re-render what depends on it, found through
  the dependency graph.
- Anything else: rebuild just that file.

Key classes:
- RebuildPlan: The rebuild a batch calls for.
- WatchPlanner: Maps a batch of paths to a RebuildPlan.
- Watcher: watchdog observer with debounced batches.
- IncrementalRebuilder: Runs the builder for each batch.
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from . import console
from .asset_processors import StyleSourceProcessor
from .build import Builder, BuildResult
from .config import SiteConfig
from .context import BuildContext
from .datasources import is_directory_data_file
from .errors import BuildError
from .graph import DependencyGraph
from .utils import is_within


@dataclass
class RebuildPlan:
    """Rebuild work for one batch of changes; paths are site-relative."""

    full: bool = False
    templates: set[str] = field(default_factory=set)
    assets: set[str] = field(default_factory=set)
    copies: set[str] = field(default_factory=set)
    styles: set[str] = field(default_factory=set)

    @property
    def empty(self) -> bool:
        return not (self.full or self.templates or self.assets or self.copies or self.styles)


class WatchPlanner:
    """Classifies changed paths using the configuration and dependency graph."""

    def __init__(self, config: SiteConfig, graph: DependencyGraph):
        self.config = config
        self.graph = graph

    def plan(self, paths: Iterable[Path | str]) -> RebuildPlan:
        plan = RebuildPlan()
        control_file = self.config.control_file.resolve()
        for raw in paths:
            path = Path(raw)
            if not path.is_absolute():
                path = self.config.root / path
            path = path.resolve()
            if path == control_file:
                return RebuildPlan(full=True)
            self._classify(path, plan)
        return plan

    def _classify(self, path: Path, plan: RebuildPlan) -> None:
        config = self.config
        if any(is_within(path, d) for d in (config.output_dir, config.cache_dir, config.temp_dir)):
            return
        key = config.key(path)
        if config.is_style_source(path):
            plan.styles.update(config.get("styles") or [])
            if not StyleSourceProcessor.is_partial(path):
                plan.styles.add(key)
            return
        if is_within(path, config.layouts_dir):
            plan.templates.update(self.graph.dependants_of(key))
            return
        if is_within(path, config.data_dir) or is_directory_data_file(path):
            dependants = self.graph.dependants_of(key)
            if not dependants and is_directory_data_file(path):
                dependants = self._templates_below(PurePosixPath(key).parent.as_posix())
            plan.templates.update(dependants)
            return
        if is_within(path, config.copy_dir):
            plan.copies.add(key)
            return
        if config.is_ignored(key):
            return
        if config.is_template(path):
            plan.templates.add(key)
        else:
            plan.assets.add(key)

    def _templates_below(self, directory: str) -> set[str]:
        """Known templates in ``directory`` or beneath it, for data files not yet in the graph."""
        prefix = "" if directory in ("", ".") else f"{directory}/"
        return {
            node
            for node in self.graph.nodes
            if node.startswith(prefix) and self.config.is_template(node)
        }


class _ChangeHandler(FileSystemEventHandler):
    def __init__(self, watcher: Watcher):
        super().__init__()
        self.watcher = watcher

    def on_any_event(self, event: FileSystemEvent):
        if event.is_directory:
            return
        self.watcher.queue(event.src_path)
        dest = getattr(event, "dest_path", None)
        if dest:
            self.watcher.queue(dest)


class Watcher:
    """Watches the site root and hands debounced batches to ``on_batch``.

    Attributes:
        root: Directory watched recursively.
        on_batch: Called with a sorted list of changed paths.
        debounce_seconds: Quiet period before a batch is flushed.
    """

    debounce_seconds = 0.2

    def __init__(
        self,
        root: Path,
        on_batch: Callable[[list[str]], object],
        debounce_seconds: float | None = None,
    ):
        self.root = root
        self.on_batch = on_batch
        if debounce_seconds is not None:
            self.debounce_seconds = debounce_seconds
        self._pending: set[str] = set()
        self._lock = threading.Lock()
        self._flush_lock = threading.Lock()
        self._timer: threading.Timer | None = None
        self._observer: Observer | None = None

    def start(self) -> None:  # pragma: no cover - integration path
        observer = Observer()
        observer.schedule(_ChangeHandler(self), str(self.root), recursive=True)
        observer.start()
        self._observer = observer
        console.info(f"Watching {self.root} for changes")

    def stop(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
        if self._observer is not None:
            self._observer.stop()
            self._observer.join()
            self._observer = None

    def queue(self, path: str) -> None:
        """Add a path to the pending batch and restart the quiet period."""
        with self._lock:
            self._pending.add(str(path))
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self.debounce_seconds, self.flush)
            self._timer.daemon = True
            self._timer.start()

    def flush(self) -> None:
        """Hand the pending batch to ``on_batch``; batches never overlap."""
        with self._flush_lock:
            with self._lock:
                batch = sorted(self._pending)
                self._pending.clear()
                self._timer = None
            if batch:
                self.on_batch(batch)


class IncrementalRebuilder:
    """Rebuilds a site for each batch of changes.

    Attributes:
        context: Build context reused across rebuilds.
        builder: Builder for the context.
        on_rebuilt: Called with each successful BuildResult.
    """

    def __init__(
        self,
        context: BuildContext,
        on_rebuilt: Callable[[BuildResult], object] | None = None,
    ):
        self.context = context
        self.builder = Builder(context)
        self.on_rebuilt = on_rebuilt

    def plan(self, paths: Iterable[Path | str]) -> RebuildPlan:
        return WatchPlanner(self.context.config, self.context.graph).plan(paths)

    def __call__(self, paths: Iterable[Path | str]) -> BuildResult | None:
        return self.handle(paths)

    def handle(self, paths: Iterable[Path | str]) -> BuildResult | None:
        """Plan and run a rebuild; fatal errors are printed, not raised."""
        plan = self.plan(paths)
        if plan.empty:
            return None
        try:
            if plan.full:
                console.info("Control file changed; rebuilding everything")
                self.context.configure()
                self.context.clear_cache()
                result = asyncio.run(self.builder.run())
            else:
                console.info(
                    f"Change detected; rebuilding {len(plan.templates)} page(s), "
                    f"{len(plan.assets) + len(plan.styles)} asset(s)"
                )
                result = asyncio.run(
                    self.builder.run(
                        targets=sorted(plan.templates),
                        assets=sorted(plan.assets | plan.styles),
                        copies=sorted(plan.copies),
                        styles=sorted(plan.styles),
                    )
                )
        except BuildError as exc:
            console.error(f"Build failed: {exc.message}", exc.source_path)
            return None
        if self.on_rebuilt is not None:
            self.on_rebuilt(result)
        return result
