import os
from pathlib import Path
from types import SimpleNamespace

import pytest

from strata.collections import Collection, CollectionStore
from strata.errors import ConfigurationError
from strata.pagination import Pagination, prune_staging, synthesize_group_pages, write_if_changed


def make_unit(rel_path, **data):
    return SimpleNamespace(
        rel_path=rel_path, path=Path(rel_path), data=data, synthetic=False, navigation={}
    )


@pytest.fixture
def posts():
    collection = Collection("all")
    for index in range(25):
        collection.add(make_unit(f"posts/p{index:02d}.md", date=f"2020-01-{index + 1:02d}"))
    return {"collections": {"all": collection}}


def test_windows_over_25_items(posts):
    host = make_unit("blog.jinja")
    first = Pagination(host, {"per_page": 10, "order": "date-asc"}).calculate(posts)
    last = Pagination(host, {"per_page": 10, "page": 2, "order": "date-asc"}).calculate(posts)

    assert first.page_count == 3
    assert (first.start, first.end) == (0, 9)
    assert len(first.items) == 10
    assert (last.start, last.end) == (20, 24)
    assert [u.rel_path for u in last.items][-1] == "posts/p24.md"
    assert last.as_dict()["has_next"] is False
    assert first.as_dict()["page_number"] == 1


def test_empty_collection():
    window = Pagination(make_unit("blog.jinja"), {}).calculate({"collections": {"all": Collection("all")}})
    assert window.page_count == 0
    assert window.end == -1
    assert window.items == []


def test_plain_list_is_paginated():
    window = Pagination(make_unit("x.jinja"), {"data": "numbers", "per_page": 2, "page": 1}).calculate(
        {"numbers": [1, 2, 3, 4, 5]}
    )
    assert window.items == [3, 4]
    assert window.page_count == 3


def test_unresolvable_data_is_configuration_error():
    pagination = Pagination(make_unit("x.jinja"), {"data": "collections.nope"})
    with pytest.raises(ConfigurationError, match="does not resolve"):
        pagination.calculate({"collections": {}})


@pytest.mark.parametrize("settings", [{"per_page": 0}, {"per_page": "ten"}, {"page": -1}])
def test_invalid_settings(settings):
    with pytest.raises(ConfigurationError):
        Pagination(make_unit("x.jinja"), settings)


def test_synthesize_writes_remaining_pages(tmp_path, posts):
    layouts = tmp_path / "_layouts"
    layouts.mkdir()
    (layouts / "page.jinja").write_text(
        "---\npagination: {page: [[pageIndex]], per_page: 10}\npermalink: /blog/[[page]]/\n---\n",
        encoding="utf-8",
    )
    host = make_unit("blog.jinja")
    pagination = Pagination(host, {"per_page": 10, "template": "page.jinja"})
    window = pagination.calculate(posts)

    written = pagination.synthesize(window, layouts, tmp_path / "_tmp")

    assert [p.name for p in written] == ["page-2.jinja", "page-3.jinja"]
    text = written[1].read_text(encoding="utf-8")
    assert "page: 2," in text
    assert "/blog/3/" in text


def test_synthesize_missing_template(tmp_path, posts):
    pagination = Pagination(make_unit("blog.jinja"), {"per_page": 10, "template": "nope.jinja"})
    window = pagination.calculate(posts)
    with pytest.raises(ConfigurationError, match="nope.jinja"):
        pagination.synthesize(window, tmp_path, tmp_path / "_tmp")


def test_non_host_pages_do_not_synthesize(tmp_path, posts):
    pagination = Pagination(make_unit("p2.jinja"), {"per_page": 10, "page": 1})
    assert pagination.synthesize(pagination.calculate(posts), tmp_path, tmp_path) == []


def test_group_pages(tmp_path):
    layouts = tmp_path / "_layouts"
    layouts.mkdir()
    (layouts / "tag.jinja").write_text("Tag [[name]] at /tags/[[slug]]/", encoding="utf-8")
    store = CollectionStore()
    store.index(make_unit("a.md", tags=["Web Dev"]), ["tags"])

    written = synthesize_group_pages(store, {"tags": "tag.jinja"}, layouts, tmp_path / "_tmp")

    assert written == [tmp_path / "_tmp" / "tags" / "web-dev.jinja"]
    assert written[0].read_text(encoding="utf-8") == "Tag Web Dev at /tags/web-dev/"


def test_group_pages_with_colliding_slugs(tmp_path, capsys):
    layouts = tmp_path / "_layouts"
    layouts.mkdir()
    (layouts / "tag.jinja").write_text("Tag [[name]] at /tags/[[slug]]/", encoding="utf-8")
    store = CollectionStore()
    store.index(make_unit("a.md", tags=["C++", "C#"]), ["tags"])

    written = synthesize_group_pages(store, {"tags": "tag.jinja"}, layouts, tmp_path / "_tmp")

    assert [path.name for path in written] == ["c.jinja", "c-2.jinja"]
    assert written[0].read_text(encoding="utf-8") == "Tag C# at /tags/c/"
    assert written[1].read_text(encoding="utf-8") == "Tag C++ at /tags/c-2/"
    assert "shares its slug" in capsys.readouterr().err


def test_write_if_changed_keeps_mtime(tmp_path):
    target = tmp_path / "a" / "page.jinja"
    write_if_changed(target, "same")
    os.utime(target, (1000, 1000))

    write_if_changed(target, "same")
    assert target.stat().st_mtime == 1000

    write_if_changed(target, "different")
    assert target.stat().st_mtime != 1000


def test_prune_staging(tmp_path):
    keep = write_if_changed(tmp_path / "keep.jinja", "x")
    stale = write_if_changed(tmp_path / "old" / "stale.jinja", "y")

    assert prune_staging(tmp_path, {keep}) == [stale]
    assert keep.exists()
    assert not stale.exists()
