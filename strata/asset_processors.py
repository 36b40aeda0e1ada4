"""Asset processors for Strata.

Each processor handles one kind of asset file and knows where its output
goes. The registry asks processors in priority order and the first one that
accepts a file wins.

Key classes:
- ImageProcessor: Re-saves images optimised with Pillow.
- ScriptProcessor: Minifies JavaScript with rjsmin.
- StyleSourceProcessor: Compiles SCSS/Sass through the ``sass`` CLI.
- StaticAssetProcessor: Copies anything else unchanged.
- AssetProcessorRegistry: Priority-ordered processor lookup.
"""

from __future__ import annotations

import shutil
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path, PurePosixPath

from PIL import Image
from rjsmin import jsmin

from . import console
from .protocols import AssetProcessor


def find_executable(name: str, project_root: Path | None = None) -> str | None:
    """Find an executable in PATH or the project's ``node_modules/.bin``."""
    found = shutil.which(name)
    if found:
        return found
    if project_root is not None:
        local = project_root / "node_modules" / ".bin" / name
        if local.exists():
            return str(local)
    return None


class BaseAssetProcessor(ABC):
    """Base class for asset processors."""

    extensions: frozenset[str] = frozenset()

    @property
    @abstractmethod
    def priority(self) -> int:
        """Return processor priority (higher = checked first)."""
        ...

    def can_process(self, path: Path) -> bool:
        return path.suffix.lower() in self.extensions

    def output_name(self, rel_path: str) -> str:
        return rel_path

    @abstractmethod
    def process(self, source: Path, dest: Path) -> bool:
        """Process an asset file.

        Args:
            source: Source asset path.
            dest: Destination path for processed asset.

        Returns:
            True if an output file was written.
        """
        ...

    def ensure_dest_dir(self, dest: Path) -> None:
        dest.parent.mkdir(parents=True, exist_ok=True)


class ImageProcessor(BaseAssetProcessor):
    """Optimizes images with Pillow, copying files Pillow cannot read."""

    extensions = frozenset({".png", ".jpg", ".jpeg", ".gif", ".webp"})

    @property
    def priority(self) -> int:
        return 100

    def process(self, source: Path, dest: Path) -> bool:
        self.ensure_dest_dir(dest)
        try:
            with Image.open(source) as img:
                img.save(dest, optimize=True)
        except (OSError, ValueError) as exc:
            console.debug(f"Copying {source} unoptimised: {exc}")
            shutil.copy2(source, dest)
        return True


class ScriptProcessor(BaseAssetProcessor):
    """Minifies JavaScript files."""

    extensions = frozenset({".js"})

    @property
    def priority(self) -> int:
        return 80

    def process(self, source: Path, dest: Path) -> bool:
        self.ensure_dest_dir(dest)
        with open(source, encoding="utf-8") as f_in:
            minified = jsmin(f_in.read())
        with open(dest, "w", encoding="utf-8") as f_out:
            f_out.write(minified)
        return True


class StyleSourceProcessor(BaseAssetProcessor):
    """Compiles SCSS and Sass entry points to CSS with the ``sass`` CLI.

    Partials (base name starting with ``_``) are only compiled as part of an
    entry point. When the CLI is not installed a notice is printed and the
    file is skipped.
    """

    extensions = frozenset({".scss", ".sass"})

    def __init__(self, project_root: Path):
        self.project_root = project_root

    @property
    def priority(self) -> int:
        return 90

    @staticmethod
    def is_partial(path: Path | str) -> bool:
        return PurePosixPath(str(path)).name.startswith("_")

    def output_name(self, rel_path: str) -> str:
        return PurePosixPath(rel_path).with_suffix(".css").as_posix()

    def process(self, source: Path, dest: Path) -> bool:
        if self.is_partial(source):
            return False
        sass_bin = find_executable("sass", self.project_root)
        if not sass_bin:
            console.notice(f"sass CLI not found; skipping {source.name}.")
            console.notice("Install with `npm install -g sass` or `npm install -D sass` in the project.")
            return False
        self.ensure_dest_dir(dest)
        cmd = [sass_bin, "--no-source-map", "--style=compressed", str(source), str(dest)]
        result = subprocess.run(cmd, capture_output=True, text=True)
        if result.returncode != 0:
            console.error(f"sass failed: {result.stderr.strip()}", source)
            return False
        return True


class StaticAssetProcessor(BaseAssetProcessor):
    """Copies files unchanged; the fallback for every other asset."""

    @property
    def priority(self) -> int:
        return 0

    def can_process(self, path: Path) -> bool:
        return True

    def process(self, source: Path, dest: Path) -> bool:
        self.ensure_dest_dir(dest)
        shutil.copy2(source, dest)
        return True


class AssetProcessorRegistry:
    """Registry of asset processors, highest priority first."""

    def __init__(self):
        self._processors: list[AssetProcessor] = []

    def register(self, processor: AssetProcessor) -> None:
        if not isinstance(processor, AssetProcessor):
            raise TypeError(f"{processor!r} does not implement AssetProcessor")
        self._processors.append(processor)
        self._processors.sort(key=lambda p: p.priority, reverse=True)

    def get_processor(self, path: Path) -> AssetProcessor | None:
        for processor in self._processors:
            if processor.can_process(path):
                return processor
        return None


def create_default_registry(project_root: Path) -> AssetProcessorRegistry:
    registry = AssetProcessorRegistry()
    registry.register(ImageProcessor())
    registry.register(StyleSourceProcessor(project_root))
    registry.register(ScriptProcessor())
    registry.register(StaticAssetProcessor())
    return registry
