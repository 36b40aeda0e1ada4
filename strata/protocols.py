"""Protocol definitions for Strata.

The interfaces below are what the pipeline expects from pluggable pieces:
data sources, asset processors and the render callables bound to units.
Plugins can register their own implementations.
"""

from __future__ import annotations

from abc import abstractmethod
from collections.abc import Awaitable, Mapping
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from .context import BuildContext


@runtime_checkable
class DataSource(Protocol):
    """Reads one data file format.

    Attributes:
        extensions: File suffixes handled, including the dot.
    """

    extensions: tuple[str, ...]

    @abstractmethod
    def load(self, path: Path, context: BuildContext | None = None) -> Any:
        """Return the file's value as plain data.

        Raises:
            DataError: If the file cannot be read or parsed.
        """
        ...


@runtime_checkable
class AssetProcessor(Protocol):
    """Turns one asset file into its output file."""

    @property
    @abstractmethod
    def priority(self) -> int:
        """Higher priorities are asked first."""
        ...

    @abstractmethod
    def can_process(self, path: Path) -> bool: ...

    @abstractmethod
    def output_name(self, rel_path: str) -> str:
        """Output path for an asset, relative to the output directory."""
        ...

    @abstractmethod
    def process(self, source: Path, dest: Path) -> bool:
        """Write ``dest`` from ``source``; return False when nothing was written."""
        ...


@runtime_checkable
class UnitRenderer(Protocol):
    """Render callable bound to a content unit.

    Receives the final merged data and returns the output text, either
    directly or as an awaitable.
    """

    def __call__(self, data: Mapping[str, Any]) -> str | Awaitable[str]: ...
