import pytest

from strata.merge import lookup, merge, merge_many, nest


def test_merge_is_deep_and_later_wins():
    base = {"site": {"title": "Old", "lang": "en"}, "tags": ["a", "b"]}
    override = {"site": {"title": "New"}, "tags": ["c"]}

    result = merge(base, override)

    assert result == {"site": {"title": "New", "lang": "en"}, "tags": ["c"]}


def test_merge_does_not_mutate_inputs():
    base = {"nested": {"items": [1, 2]}}
    override = {"nested": {"extra": True}}

    result = merge(base, override)
    result["nested"]["items"].append(3)

    assert base == {"nested": {"items": [1, 2]}}
    assert override == {"nested": {"extra": True}}


def test_merge_scalar_replaces_mapping():
    assert merge({"a": {"x": 1}}, {"a": 5}) == {"a": 5}
    assert merge({"a": 5}, {"a": {"x": 1}}) == {"a": {"x": 1}}


def test_merge_many_skips_empty_layers():
    layers = [{"a": 1}, None, {}, {"b": 2}, {"a": 3}]
    assert merge_many(layers) == {"a": 3, "b": 2}


def test_nest_and_lookup():
    data = nest(["nav", "main"], ["home"])
    assert data == {"nav": {"main": ["home"]}}
    assert lookup(data, "nav.main") == ["home"]

    class Holder:
        items = [1]

    assert lookup({"holder": Holder()}, "holder.items") == [1]
    with pytest.raises(KeyError):
        lookup(data, "nav.missing")
