"""Build context for Strata.

A BuildContext holds everything one build needs: the resolved configuration,
global data, the build cache and dependency graph, the collection store, the
template engine and the asset processors. It is created explicitly and passed
down, so independent contexts never share state.
"""

from __future__ import annotations

import shutil
from collections.abc import Mapping
from pathlib import Path
from typing import TYPE_CHECKING, Any

from . import console
from .asset_processors import AssetProcessorRegistry, create_default_registry
from .cache import BuildCache
from .collections import CollectionStore
from .config import import_plugin, read_control_file, resolve_config
from .datasources import load_global_data
from .errors import BuildError, ConfigurationError
from .graph import DependencyGraph
from .merge import merge, merge_many, nest
from .templates import TemplateEngine
from .utils import ensure_clean_dir

if TYPE_CHECKING:
    from .cascade import ContentUnit


class BuildContext:
    """State shared by the parts of one build.

    Attributes:
        root: Site root directory.
        overrides: Caller configuration overrides (e.g. CLI flags).
        config: Resolved SiteConfig.
        assets: Asset processor registry; plugins may register more.
        api_data: Global data added through ``add_global_data``.
        global_data: Merged global data layer.
        global_data_files: Graph keys of the global data files.
        cache: Build cache.
        graph: Dependency graph.
        collections: Collection store for the current run.
        engine: Template engine.
        layouts: Layout units parsed in the current run.
        errors: Per-unit errors recorded in the current run.
    """

    def __init__(self, root: Path, overrides: Mapping[str, Any] | None = None):
        self.root = Path(root).resolve()
        self.overrides = dict(overrides or {})
        self.api_data: dict[str, Any] = {}
        self.global_data: dict[str, Any] = {}
        self.global_data_files: list[str] = []
        self.layouts: dict[str, ContentUnit] = {}
        self.errors: list[BuildError] = []
        self.configure()

    def configure(self) -> None:
        """(Re)load the control file, run plugins and reset all state."""
        local = read_control_file(self.root)
        self.api_data = {}
        self.config = resolve_config(self.root, local, overrides=self.overrides)
        self.assets: AssetProcessorRegistry = create_default_registry(self.root)
        plugin_config = self._run_plugins()
        if plugin_config:
            self.config = resolve_config(self.root, local, plugin_config, self.overrides)
        self.cache = BuildCache(self.root, self.config.cache_dir, self.config.incremental)
        self.graph = DependencyGraph()
        self.engine = TemplateEngine(self.config)
        self.reset()

    def _run_plugins(self) -> dict[str, Any]:
        """Call each configured plugin; returned mappings merge into config."""
        plugin_config: dict[str, Any] = {}
        for entry in self.config.get("plugins") or []:
            if isinstance(entry, str):
                entry = {"name": entry}
            if not isinstance(entry, Mapping) or "name" not in entry:
                raise ConfigurationError(f"Plugin entries need a 'name', got {entry!r}")
            plugin = import_plugin(str(entry["name"]))
            try:
                returned = plugin(self, dict(entry.get("options") or {}))
            except BuildError:
                raise
            except Exception as exc:
                raise ConfigurationError(
                    f"Plugin '{entry['name']}' failed: {exc}", None, exc
                ) from exc
            if returned is not None and not isinstance(returned, Mapping):
                raise ConfigurationError(f"Plugin '{entry['name']}' must return a mapping or None")
            plugin_config = merge(plugin_config, returned)
            console.debug(f"Loaded plugin {entry['name']}")
        return plugin_config

    def reset(self) -> None:
        """Start a fresh run: new collections, layouts and error list."""
        self.collections = CollectionStore()
        self.layouts = {}
        self.errors = []
        self.engine.reset()

    def add_global_data(self, name: str, value: Any) -> None:
        """Add site-wide data under a dotted ``name``; used by plugins."""
        self.api_data = merge(self.api_data, nest(name.split("."), value))

    def load_global_data(self) -> dict[str, Any]:
        """Load the global data layer for this run."""
        file_data, files = load_global_data(self.config.data_dir, self)
        self.global_data = merge_many([self.config.get("data"), self.api_data, file_data])
        self.global_data_files = [self.config.key(path) for path in files]
        return self.global_data

    def load_state(self) -> None:
        """Read the persisted cache and dependency graph."""
        self.cache.load()
        self.graph.load(self.config.cache_dir)

    def save_state(self) -> None:
        self.cache.save()
        self.graph.save(self.config.cache_dir)

    def clear_cache(self) -> None:
        """Discard the persisted cache and graph, forcing a cold run."""
        self.cache.clear()
        self.graph.clear()
        if self.config.cache_dir.exists():
            shutil.rmtree(self.config.cache_dir)
        console.info(f"Cleared cache in {self.config.cache_dir}")

    def clear_output(self) -> None:
        ensure_clean_dir(self.config.output_dir)
        console.info(f"Cleared output in {self.config.output_dir}")
