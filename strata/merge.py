"""Deep-merge helpers for the data cascade.

Maps merge key by key with the later source winning on conflict. Any other
value, lists included, is replaced whole by the later source; nothing is
concatenated. Inputs are never mutated.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from typing import Any


def merge(base: Mapping[str, Any] | None, override: Mapping[str, Any] | None) -> dict[str, Any]:
    """Deep-merge two mappings into a new dict.

    Args:
        base: Lower-precedence mapping.
        override: Higher-precedence mapping.

    Returns:
        A new dict; nested mappings are merged recursively.

    Examples:
        >>> merge({"a": {"x": 1, "y": 2}}, {"a": {"y": 3}})
        {'a': {'x': 1, 'y': 3}}

        >>> merge({"tags": ["a", "b"]}, {"tags": ["c"]})
        {'tags': ['c']}
    """
    result: dict[str, Any] = _copy_mapping(base or {})
    for key, value in (override or {}).items():
        current = result.get(key)
        if isinstance(value, Mapping) and isinstance(current, Mapping):
            result[key] = merge(current, value)
        else:
            result[key] = _copy_value(value)
    return result


def merge_many(layers: Iterable[Mapping[str, Any] | None]) -> dict[str, Any]:
    """Fold ``merge`` over layers given lowest precedence first."""
    result: dict[str, Any] = {}
    for layer in layers:
        if layer:
            result = merge(result, layer)
    return result


def nest(parts: Sequence[str], value: Any) -> Any:
    """Wrap a value in nested dicts keyed by path parts.

    Examples:
        >>> nest(["nav", "main"], [1, 2])
        {'nav': {'main': [1, 2]}}
    """
    for part in reversed(parts):
        value = {part: value}
    return value


def lookup(data: Mapping[str, Any], dotted: str) -> Any:
    """Resolve a dotted path like ``collections.tags.python`` against nested data.

    Attribute access is tried when a level is not a mapping, so objects that
    expose collections as attributes resolve too.

    Raises:
        KeyError: If any part of the path is missing.
    """
    current: Any = data
    for part in dotted.split("."):
        if isinstance(current, Mapping):
            if part not in current:
                raise KeyError(dotted)
            current = current[part]
        elif hasattr(current, part):
            current = getattr(current, part)
        else:
            raise KeyError(dotted)
    return current


def _copy_mapping(mapping: Mapping[str, Any]) -> dict[str, Any]:
    return {key: _copy_value(value) for key, value in mapping.items()}


def _copy_value(value: Any) -> Any:
    if isinstance(value, Mapping):
        return _copy_mapping(value)
    if isinstance(value, list):
        return [_copy_value(item) for item in value]
    return value
