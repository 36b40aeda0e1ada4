"""Source enumeration for Strata.

Walks the site root and sorts every file into one of three buckets:
copy-through files (under the copy directory), templates (by extension) and
assets (everything else that is not ignored).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from .config import SiteConfig
from .utils import is_within


@dataclass
class ScanResult:
    """Site-relative POSIX paths per bucket, each sorted."""

    copies: list[str] = field(default_factory=list)
    assets: list[str] = field(default_factory=list)
    templates: list[str] = field(default_factory=list)


class SourceScanner:
    """Enumerates and classifies source files.

    Attributes:
        config: Site configuration (locations and ignore globs).
    """

    def __init__(self, config: SiteConfig):
        self.config = config

    def scan(self) -> ScanResult:
        result = ScanResult()
        root = self.config.root
        reserved = self._reserved_dirs()
        for path in sorted(root.rglob("*")):
            if not path.is_file() or any(is_within(path, d) for d in reserved):
                continue
            rel = path.relative_to(root).as_posix()
            if self.config.is_ignored(rel):
                continue
            if self.config.is_template(path):
                result.templates.append(rel)
            else:
                result.assets.append(rel)
        result.copies = self._scan_copies()
        return result

    def _reserved_dirs(self) -> list[Path]:
        """Configured locations that never hold content or assets."""
        config = self.config
        root = config.root.resolve()
        locations = (
            config.output_dir,
            config.cache_dir,
            config.temp_dir,
            config.layouts_dir,
            config.data_dir,
            config.copy_dir,
        )
        return [d for d in locations if d.resolve() != root]

    def _scan_copies(self) -> list[str]:
        copy_dir = self.config.copy_dir
        if not copy_dir.is_dir():
            return []
        return sorted(
            self.config.key(path) for path in copy_dir.rglob("*") if path.is_file()
        )

    def scan_staging(self) -> list[Path]:
        """Templates currently in the staging directory."""
        temp_dir = self.config.temp_dir
        if not temp_dir.is_dir():
            return []
        return sorted(
            path for path in temp_dir.rglob("*") if path.is_file() and self.config.is_template(path)
        )

