"""Site configuration for Strata.

Configuration is merged from four layers, later layers winning:
built-in defaults < configuration returned by plugins < the control file
(``strata.yaml`` at the site root) < overrides passed in by the caller.

Key pieces:
- DEFAULT_CONFIG: Built-in defaults.
- SiteConfig: Resolved configuration with absolute locations and file
  classification helpers.
- read_control_file: Load ``strata.yaml``.
- resolve_config: Merge the layers into a SiteConfig.
- import_plugin: Resolve a ``module:function`` plugin reference.
"""

from __future__ import annotations

import fnmatch
import importlib
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Any

import yaml

from . import console
from .errors import ConfigurationError
from .merge import merge_many

CONTROL_FILE_NAME = "strata.yaml"

PHASES = ("early", "late", "last")

DEFAULT_CONFIG: dict[str, Any] = {
    "locations": {
        "layouts": "_layouts",
        "data": "_data",
        "cache": "_cache",
        "copy": "_copy",
        "temp": "_tmp",
        "output": "_site",
    },
    "incremental": True,
    "concurrency": 32,
    "port": 4000,
    "layout_extension": ".jinja",
    "template_extensions": {
        "markdown": ["md", "markdown"],
        "jinja": ["jinja", "njk"],
    },
    "asset_extensions": {
        "images": ["png", "jpg", "jpeg", "gif", "webp"],
        "scripts": ["js"],
        "styles": ["css"],
        "style_sources": ["scss", "sass"],
    },
    "styles": [],
    "collections_to_track": ["type", "tags"],
    "group_templates": {},
    "permalink_ignore_parts": [r"^\d{4}-\d{2}-\d{2}-"],
    "root_url": "",
    "ignore": ["node_modules/**", "_*/**", ".*", "*.pyc", CONTROL_FILE_NAME],
    "data": {"type": "page"},
    "plugins": [],
}


@dataclass
class SiteConfig:
    """Resolved site configuration.

    Attributes:
        root: Absolute site root (the input directory).
        values: The fully merged configuration mapping.
    """

    root: Path
    values: dict[str, Any] = field(default_factory=dict)

    def __getitem__(self, key: str) -> Any:
        return self.values[key]

    def get(self, key: str, default: Any = None) -> Any:
        return self.values.get(key, default)

    def location(self, name: str) -> Path:
        path = Path(self.values["locations"][name])
        return path if path.is_absolute() else self.root / path

    @property
    def layouts_dir(self) -> Path:
        return self.location("layouts")

    @property
    def data_dir(self) -> Path:
        return self.location("data")

    @property
    def cache_dir(self) -> Path:
        return self.location("cache")

    @property
    def copy_dir(self) -> Path:
        return self.location("copy")

    @property
    def temp_dir(self) -> Path:
        return self.location("temp")

    @property
    def output_dir(self) -> Path:
        return self.location("output")

    @property
    def control_file(self) -> Path:
        return self.root / CONTROL_FILE_NAME

    @property
    def incremental(self) -> bool:
        return bool(self.values.get("incremental", True))

    @property
    def root_url(self) -> str:
        return str(self.values.get("root_url") or "")

    def template_kind(self, path: str | Path) -> str | None:
        """Return "markdown", "jinja" or None for a file path."""
        ext = _extension(path)
        for kind, exts in self.values["template_extensions"].items():
            if ext in exts:
                return kind
        return None

    def asset_kind(self, path: str | Path) -> str | None:
        """Return the asset category of a file path, or None."""
        ext = _extension(path)
        for kind, exts in self.values["asset_extensions"].items():
            if ext in exts:
                return kind
        return None

    def is_template(self, path: str | Path) -> bool:
        return self.template_kind(path) is not None

    def is_asset(self, path: str | Path) -> bool:
        return self.asset_kind(path) is not None

    def is_style_source(self, path: str | Path) -> bool:
        return self.asset_kind(path) == "style_sources"

    def is_ignored(self, rel_path: str) -> bool:
        """Check a site-relative POSIX path against the ignore globs.

        A path is ignored when it, or any of its parent directories, matches
        a pattern.
        """
        parts = PurePosixPath(rel_path).parts
        parents = ["/".join(parts[:i]) for i in range(1, len(parts))]
        for pattern in self.values.get("ignore", []):
            if pattern.endswith("/**"):
                if any(fnmatch.fnmatchcase(parent, pattern[:-3]) for parent in parents):
                    return True
            elif fnmatch.fnmatchcase(rel_path, pattern) or any(
                fnmatch.fnmatchcase(part, pattern) for part in parts
            ):
                return True
        return False

    def relative(self, path: Path) -> str | None:
        """Site-relative POSIX path, or None if ``path`` is outside the site."""
        try:
            return path.resolve().relative_to(self.root.resolve()).as_posix()
        except ValueError:
            return None

    def key(self, path: Path) -> str:
        """Cache and graph key of a file: site-relative, else absolute POSIX."""
        rel = self.relative(path)
        return rel if rel is not None else path.resolve().as_posix()


def read_control_file(root: Path) -> dict[str, Any]:
    """Load the control file from the site root.

    Args:
        root: Site root directory.

    Returns:
        The parsed mapping, or an empty dict when there is no control file.

    Raises:
        ConfigurationError: If the file cannot be read or is not a mapping.
    """
    control = root / CONTROL_FILE_NAME
    if not control.exists():
        console.notice(f"No {CONTROL_FILE_NAME} found in {root}; using defaults.")
        return {}
    try:
        with open(control, encoding="utf-8") as f:
            loaded = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigurationError(f"Unable to load control file: {exc}", control, exc) from exc
    if not isinstance(loaded, dict):
        raise ConfigurationError("Control file must contain a mapping", control)
    return loaded


def resolve_config(
    root: Path,
    local: Mapping[str, Any] | None = None,
    plugin_config: Mapping[str, Any] | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> SiteConfig:
    """Merge configuration layers into a SiteConfig.

    Args:
        root: Site root directory.
        local: Control file contents.
        plugin_config: Configuration returned by plugins.
        overrides: Caller overrides (e.g. CLI flags); ``None`` values are dropped.

    Returns:
        Resolved SiteConfig.
    """
    cleaned = {k: v for k, v in (overrides or {}).items() if v is not None}
    values = merge_many([DEFAULT_CONFIG, plugin_config, local, cleaned])
    if not values["layout_extension"].startswith("."):
        values["layout_extension"] = "." + values["layout_extension"]
    return SiteConfig(root=root.resolve(), values=values)


def import_plugin(reference: str) -> Callable[..., Any]:
    """Import a plugin from a ``package.module:function`` reference.

    Raises:
        ConfigurationError: If the reference is malformed, the module cannot
            be imported, or the target is not callable.
    """
    module_name, sep, attr = reference.partition(":")
    if not sep or not module_name or not attr:
        raise ConfigurationError(
            f"Plugin reference '{reference}' must look like 'package.module:function'"
        )
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise ConfigurationError(f"Unable to import plugin '{reference}'", None, exc) from exc
    plugin = getattr(module, attr, None)
    if not callable(plugin):
        raise ConfigurationError(f"Plugin entry point '{reference}' is not callable")
    return plugin


def _extension(path: str | Path) -> str:
    return Path(path).suffix.lower().lstrip(".")
