"""Build cache for Strata.

The build cache remembers, for every site-relative path, the modification
time seen on the last run. Paths are kept in named groups (``template`` and
``asset``), each persisted as a flat JSON object in its own file under the
cache directory.

``check`` both decides and records: the first call for a changed path in a
run reports it as changed and stores the new fingerprint, so a second call in
the same run reports it unchanged. Callers that need to ask without consuming
the signal use ``peek`` and later ``commit``.
"""

from __future__ import annotations

import json
from pathlib import Path

from . import console
from .errors import CacheIOError

TEMPLATE_GROUP = "template"
ASSET_GROUP = "asset"
GROUPS = (TEMPLATE_GROUP, ASSET_GROUP)


class CacheGroup:
    """Fingerprints for one named group of paths."""

    def __init__(self, name: str, entries: dict[str, float] | None = None):
        self.name = name
        self.entries: dict[str, float] = dict(entries or {})

    def get(self, rel_path: str) -> float | None:
        return self.entries.get(rel_path)

    def set(self, rel_path: str, fingerprint: float | None) -> None:
        if fingerprint is None:
            self.entries.pop(rel_path, None)
        else:
            self.entries[rel_path] = fingerprint

    def __contains__(self, rel_path: str) -> bool:
        return rel_path in self.entries

    def __len__(self) -> int:
        return len(self.entries)

    def read(self, path: Path) -> None:
        """Replace the entries with those stored in ``path``.

        Raises:
            CacheIOError: If the file is unreadable, not JSON, or not a flat
                object of numbers.
        """
        try:
            with open(path, encoding="utf-8") as f:
                payload = json.load(f)
        except (OSError, ValueError) as exc:
            raise CacheIOError(f"Unable to read cache file: {exc}", path, exc) from exc
        if not isinstance(payload, dict) or not all(
            isinstance(value, (int, float)) and not isinstance(value, bool)
            for value in payload.values()
        ):
            raise CacheIOError("Cache file must be a flat object of timestamps", path)
        self.entries = {str(key): float(value) for key, value in payload.items()}

    def write(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.entries, f, indent=2, sort_keys=True)


class BuildCache:
    """Per-path fingerprint store deciding skip or rebuild.

    Attributes:
        root: Site root; cache keys are relative to it.
        cache_dir: Directory holding one JSON file per group.
        incremental: When False every check reports "changed".
        groups: Named CacheGroups.
    """

    def __init__(self, root: Path, cache_dir: Path, incremental: bool = True):
        self.root = root
        self.cache_dir = cache_dir
        self.incremental = incremental
        self.groups: dict[str, CacheGroup] = {name: CacheGroup(name) for name in GROUPS}

    def group(self, name: str) -> CacheGroup:
        if name not in self.groups:
            self.groups[name] = CacheGroup(name)
        return self.groups[name]

    def file_for(self, name: str) -> Path:
        return self.cache_dir / f"{name}.json"

    def fingerprint(self, rel_path: str) -> float | None:
        """Current modification time of ``rel_path``, or None if it is gone."""
        try:
            return (self.root / rel_path).stat().st_mtime
        except OSError:
            return None

    def peek(self, rel_path: str, group: str = TEMPLATE_GROUP) -> bool:
        """Report whether ``rel_path`` changed without recording anything."""
        if not self.incremental:
            return True
        current = self.fingerprint(rel_path)
        if current is None:
            return True
        return self.group(group).get(rel_path) != current

    def commit(self, rel_path: str, group: str = TEMPLATE_GROUP) -> None:
        """Record the current fingerprint of ``rel_path``."""
        self.group(group).set(rel_path, self.fingerprint(rel_path))

    def check(self, rel_path: str, group: str = TEMPLATE_GROUP) -> bool:
        """Report whether ``rel_path`` changed, recording its fingerprint.

        Returns True ("changed") when nothing is stored for the path, the
        stored fingerprint differs from the current one, or incremental mode
        is off. The current fingerprint is stored in every case.
        """
        changed = self.peek(rel_path, group)
        self.commit(rel_path, group)
        return changed

    def load(self) -> None:
        """Read every group from disk; unreadable files leave the group empty."""
        for name, group in self.groups.items():
            path = self.file_for(name)
            if not path.exists():
                continue
            try:
                group.read(path)
            except CacheIOError as exc:
                console.warning(f"{exc.message}; rebuilding everything in '{name}'", path)
                group.entries = {}

    def save(self) -> None:
        for name, group in self.groups.items():
            path = self.file_for(name)
            try:
                group.write(path)
            except OSError as exc:
                console.warning(f"Unable to write cache file: {exc}", path)

    def clear(self) -> None:
        """Forget every fingerprint and delete the persisted files."""
        for name, group in self.groups.items():
            group.entries = {}
            self.file_for(name).unlink(missing_ok=True)
