"""Collection store for Strata.

Collections group content units for listing pages. Every indexed unit lands in
the ungrouped ``all`` collection; units also join grouped collections named by
the tracked data fields (``tags: [python, web]`` puts a unit in
``tags/python`` and ``tags/web``).

Key classes:
- Collection: Insertion-ordered set of units with ordered and windowed access.
- CollectionStore: Ungrouped and grouped collections for one run.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Sequence
from datetime import datetime
from typing import Any

from .utils import coerce_datetime, extract_date_from_name

DEFAULT_ORDER = "date-desc"


def unit_date(unit) -> datetime:
    """Date of a unit: its ``date`` field, a filename prefix, or datetime.min."""
    value = coerce_datetime(unit.data.get("date"))
    if value is not None:
        return value
    stem = unit.rel_path.rsplit("/", 1)[-1].split(".")[0]
    return extract_date_from_name(stem) or datetime.min


def unit_title(unit) -> str:
    return str(unit.data.get("title") or "").lower()


ORDERS = {
    "date-desc": (unit_date, True),
    "date-asc": (unit_date, False),
    "title-asc": (unit_title, False),
    "title-desc": (unit_title, True),
}


class Collection(Sequence):
    """A named, insertion-ordered mapping of rel path -> unit.

    Iterating a collection yields its members in the default order, so
    templates can loop over it directly.

    Attributes:
        name: Collection name, e.g. ``all`` or a tag value.
        group: Group name for grouped collections, else None.
        dirty: True when members were added since the last sort.
        last_order: Order used for the cached sort.
    """

    def __init__(self, name: str, group: str | None = None):
        self.name = name
        self.group = group
        self.dirty = False
        self.last_order: str | None = None
        self._members: dict[str, Any] = {}
        self._sorted: list[Any] = []

    @property
    def key(self) -> str:
        return f"{self.group}/{self.name}" if self.group else self.name

    @property
    def size(self) -> int:
        return len(self._members)

    def add(self, unit) -> None:
        """Add or replace a unit; a replaced unit keeps its original position."""
        self._members[unit.rel_path] = unit
        self.dirty = True

    def remove(self, rel_path: str) -> None:
        if self._members.pop(rel_path, None) is not None:
            self.dirty = True

    def __contains__(self, item) -> bool:
        rel_path = item if isinstance(item, str) else getattr(item, "rel_path", None)
        return rel_path in self._members

    def get_all(self, order: str = DEFAULT_ORDER) -> list[Any]:
        """All members sorted by ``order`` (stable)."""
        if order not in ORDERS:
            raise ValueError(f"Unknown collection order '{order}'")
        if self.dirty or order != self.last_order:
            key, reverse = ORDERS[order]
            self._sorted = sorted(self._members.values(), key=key, reverse=reverse)
            self.last_order = order
            self.dirty = False
        return list(self._sorted)

    def get_selected(self, start: int, count: int, order: str = DEFAULT_ORDER) -> list[Any]:
        """A contiguous window of the sorted members; out-of-range bounds are clamped.

        Examples:
            ``get_selected(20, 10)`` on a 25-item collection returns items 20-24.
        """
        start = max(0, start)
        count = max(0, count)
        return self.get_all(order)[start : start + count]

    def link_neighbours(self, order: str = DEFAULT_ORDER) -> None:
        """Attach prev/next references to every member under ``order``."""
        ordered = self.get_all(order)
        for index, unit in enumerate(ordered):
            unit.navigation[self.key] = {
                "prev": ordered[index - 1] if index > 0 else None,
                "next": ordered[index + 1] if index + 1 < len(ordered) else None,
            }

    def __iter__(self) -> Iterator[Any]:
        return iter(self.get_all())

    def __len__(self) -> int:
        return self.size

    def __getitem__(self, item):
        return self.get_all()[item]

    def __repr__(self) -> str:  # pragma: no cover - for debugging
        return f"Collection({self.key!r}, {self.size} units)"


class CollectionStore:
    """All collections of one run.

    Attributes:
        ungrouped: Collections by name; ``all`` always exists.
        grouped: Collections by group name, then collection name.
    """

    def __init__(self):
        self.ungrouped: dict[str, Collection] = {"all": Collection("all")}
        self.grouped: dict[str, dict[str, Collection]] = {}

    def get(self, name: str) -> Collection:
        if name not in self.ungrouped:
            self.ungrouped[name] = Collection(name)
        return self.ungrouped[name]

    def get_grouped(self, group: str, name: str) -> Collection:
        collections = self.grouped.setdefault(group, {})
        if name not in collections:
            collections[name] = Collection(name, group=group)
        return collections[name]

    def group_names(self, group: str) -> list[str]:
        return sorted(self.grouped.get(group, {}))

    def index(self, unit, tracked_fields: Iterable[str]) -> None:
        """Add ``unit`` to ``all`` and to each collection it declares.

        Units with ``collect: false`` and synthesized units are left out.
        """
        if unit.synthetic or unit.data.get("collect", True) is False:
            return
        self.ungrouped["all"].add(unit)
        for group in tracked_fields:
            for name in _names(unit.data.get(group)):
                self.get_grouped(group, name).add(unit)

    def remove(self, rel_path: str) -> None:
        for collection in self:
            collection.remove(rel_path)

    def link_neighbours(self, order: str = DEFAULT_ORDER) -> None:
        for collection in self:
            collection.link_neighbours(order)

    def __iter__(self) -> Iterator[Collection]:
        yield from self.ungrouped.values()
        for collections in self.grouped.values():
            yield from collections.values()

    def as_template_data(self) -> dict[str, Any]:
        """Collections as exposed to templates under ``collections``."""
        data: dict[str, Any] = dict(self.ungrouped)
        for group, collections in self.grouped.items():
            data[group] = dict(collections)
        return data


def _names(value) -> list[str]:
    if value is None or value == "":
        return []
    if isinstance(value, (list, tuple)):
        return [str(item) for item in value if item not in (None, "")]
    return [str(value)]
