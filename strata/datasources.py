"""Data file loading for Strata.

Data files come in three formats, each handled by a data source selected by
file extension. Every source produces a plain structured value.

Key classes:
- YamlDataSource: ``.yaml`` / ``.yml`` files.
- JsonDataSource: ``.json`` files.
- PythonDataSource: ``.py`` scripts defining ``data(context)``.
- DataSourceRegistry: Picks the source for a file.
- DirectoryData: Walks from the site root down to a content file and merges
  the directory-scoped data files found on the way.

Functions:
- load_global_data: Load every file in the global data directory.
"""

from __future__ import annotations

import hashlib
import importlib.util
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml

from . import console
from .errors import DataError
from .merge import merge, merge_many, nest
from .protocols import DataSource

if TYPE_CHECKING:
    from .context import BuildContext

DIR_DATA_PREFIX = ".strata."
RECURSE_NAME = "recurse"
DIRECTORY_NAME = "dir"


class YamlDataSource:
    """Reads YAML data files with the safe loader."""

    extensions = (".yaml", ".yml")

    def load(self, path: Path, context: BuildContext | None = None) -> Any:
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise DataError(f"Unable to read data file: {exc}", path, exc) from exc
        try:
            return yaml.safe_load(text) if text.strip() else {}
        except yaml.YAMLError as exc:
            raise DataError(f"Unable to parse data file: {exc}", path, exc) from exc


class JsonDataSource:
    """Reads JSON data files."""

    extensions = (".json",)

    def load(self, path: Path, context: BuildContext | None = None) -> Any:
        try:
            with open(path, encoding="utf-8") as f:
                return json.load(f)
        except OSError as exc:
            raise DataError(f"Unable to read data file: {exc}", path, exc) from exc
        except json.JSONDecodeError as exc:
            raise DataError(
                f"Unable to parse data file (line {exc.lineno}): {exc.msg}", path, exc
            ) from exc


class PythonDataSource:
    """Runs a Python data script and returns what its ``data`` function produces.

    The script is executed as an isolated module (it is never added to
    ``sys.modules``) and must define ``data(context)``. The build context is
    passed so scripts can read configuration.
    """

    extensions = (".py",)

    def load(self, path: Path, context: BuildContext | None = None) -> Any:
        digest = hashlib.sha1(str(path).encode("utf-8")).hexdigest()[:12]
        spec = importlib.util.spec_from_file_location(f"_strata_data_{digest}", path)
        if spec is None or spec.loader is None:
            raise DataError("Unable to load data script", path)
        module = importlib.util.module_from_spec(spec)
        try:
            spec.loader.exec_module(module)
        except Exception as exc:
            raise DataError(f"Data script failed to execute: {exc}", path, exc) from exc
        producer = getattr(module, "data", None)
        if not callable(producer):
            raise DataError("Data scripts must define a callable 'data(context)'", path)
        try:
            return producer(context)
        except Exception as exc:
            raise DataError(f"Data script raised: {exc}", path, exc) from exc


class DataSourceRegistry:
    """Maps file extensions to data sources."""

    def __init__(self):
        self._sources: dict[str, DataSource] = {}
        for source in (YamlDataSource(), JsonDataSource(), PythonDataSource()):
            self.register(source)

    def register(self, source: DataSource) -> None:
        if not isinstance(source, DataSource):
            raise TypeError(f"{source!r} does not implement DataSource")
        for ext in source.extensions:
            self._sources[ext] = source

    @property
    def extensions(self) -> tuple[str, ...]:
        return tuple(self._sources)

    def get(self, path: Path) -> DataSource | None:
        return self._sources.get(path.suffix.lower())

    def load(self, path: Path, context: BuildContext | None = None) -> Any:
        """Load a data file, or return None when no source handles it."""
        source = self.get(path)
        if source is None:
            console.debug(f"Ignoring data file {path}: no data source for '{path.suffix}'")
            return None
        return source.load(path, context)


default_data_sources = DataSourceRegistry()


def load_global_data(
    data_dir: Path,
    context: BuildContext | None = None,
    registry: DataSourceRegistry | None = None,
) -> tuple[dict[str, Any], list[Path]]:
    """Load every data file beneath the global data directory.

    Each file's value is nested under its path relative to ``data_dir``
    without the extension, so ``_data/nav/main.yaml`` becomes ``nav.main``.

    Args:
        data_dir: Global data directory.
        context: Build context handed to Python data scripts.
        registry: Data sources to use.

    Returns:
        Tuple of (merged data, list of files that contributed).
    """
    registry = registry or default_data_sources
    data: dict[str, Any] = {}
    used: list[Path] = []
    if not data_dir.is_dir():
        return data, used
    for path in sorted(data_dir.rglob("*")):
        if not path.is_file() or path.name.startswith("."):
            continue
        value = registry.load(path, context)
        if value is None:
            continue
        parts = list(path.relative_to(data_dir).with_suffix("").parts)
        data = merge(data, nest(parts, value))
        used.append(path)
    return data, used


@dataclass
class DirectoryDataResult:
    data: dict[str, Any] = field(default_factory=dict)
    files: list[Path] = field(default_factory=list)


class DirectoryData:
    """Directory-scoped data for one content file.

    Walking from the site root down to the file's own directory, each level
    may hold ``.strata.recurse.*`` files, which apply to that directory and
    everything below it. The file's own directory may also hold
    ``.strata.dir.*`` (that directory only) and ``.strata.<basename>.*``
    (that file only). Precedence is recursive < directory < per-file, and
    deeper recursive files override shallower ones.

    Attributes:
        root: Site root directory.
        registry: Data sources used to read the files.
    """

    def __init__(
        self,
        root: Path,
        context: BuildContext | None = None,
        registry: DataSourceRegistry | None = None,
    ):
        self.root = root
        self.context = context
        self.registry = registry or default_data_sources

    def read(self, path: Path) -> DirectoryDataResult:
        """Collect directory data for the file at ``path``."""
        result = DirectoryDataResult()
        directory = path.parent
        try:
            rel_dir = directory.relative_to(self.root)
        except ValueError:
            return result

        levels = [self.root]
        current = self.root
        for part in rel_dir.parts:
            current = current / part
            levels.append(current)

        recurse_data: dict[str, Any] = {}
        for level in levels:
            recurse_data = merge(recurse_data, self._load_named(level, RECURSE_NAME, result))

        base = path.name.split(".")[0]
        specific_data = self._load_named(directory, DIRECTORY_NAME, result)
        file_data = self._load_named(directory, base, result)
        result.data = merge_many([recurse_data, specific_data, file_data])
        return result

    def candidates(self, directory: Path, name: str) -> list[Path]:
        return [directory / f"{DIR_DATA_PREFIX}{name}{ext}" for ext in self.registry.extensions]

    def _load_named(self, directory: Path, name: str, result: DirectoryDataResult) -> dict[str, Any]:
        data: dict[str, Any] = {}
        for candidate in self.candidates(directory, name):
            if not candidate.is_file():
                continue
            console.debug(f"Loading directory data file: {candidate}")
            loaded = self.registry.load(candidate, self.context)
            if loaded is None:
                continue
            if not isinstance(loaded, dict):
                raise DataError("Directory data files must contain a mapping", candidate)
            data = merge(data, loaded)
            result.files.append(candidate)
        return data


def is_directory_data_file(path: Path | str) -> bool:
    return Path(path).name.startswith(DIR_DATA_PREFIX)


def load_data_file(path: Path, context: BuildContext | None = None) -> Any:
    """Load one data file with the default data sources."""
    return default_data_sources.load(path, context)
