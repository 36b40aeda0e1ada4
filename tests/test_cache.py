import os

from strata.cache import ASSET_GROUP, TEMPLATE_GROUP, BuildCache


def _make(tmp_path, incremental=True):
    return BuildCache(tmp_path, tmp_path / "_cache", incremental=incremental)


def test_check_reports_changed_once_then_records(tmp_path):
    page = tmp_path / "page.md"
    page.write_text("x", encoding="utf-8")
    cache = _make(tmp_path)

    assert cache.check("page.md") is True
    assert cache.check("page.md") is False
    assert cache.group(TEMPLATE_GROUP).get("page.md") == page.stat().st_mtime


def test_check_detects_mtime_change(tmp_path):
    page = tmp_path / "page.md"
    page.write_text("x", encoding="utf-8")
    cache = _make(tmp_path)
    cache.check("page.md")

    stat = page.stat()
    os.utime(page, (stat.st_atime, stat.st_mtime + 10))

    assert cache.check("page.md") is True


def test_peek_does_not_record(tmp_path):
    (tmp_path / "page.md").write_text("x", encoding="utf-8")
    cache = _make(tmp_path)

    assert cache.peek("page.md") is True
    assert cache.peek("page.md") is True
    cache.commit("page.md")
    assert cache.peek("page.md") is False


def test_groups_are_independent(tmp_path):
    (tmp_path / "site.css").write_text("a{}", encoding="utf-8")
    cache = _make(tmp_path)

    assert cache.check("site.css", ASSET_GROUP) is True
    assert cache.check("site.css", TEMPLATE_GROUP) is True
    assert cache.check("site.css", ASSET_GROUP) is False


def test_non_incremental_always_changed(tmp_path):
    (tmp_path / "page.md").write_text("x", encoding="utf-8")
    cache = _make(tmp_path, incremental=False)

    assert cache.check("page.md") is True
    assert cache.check("page.md") is True


def test_missing_file_is_changed_and_forgotten(tmp_path):
    cache = _make(tmp_path)
    cache.group(TEMPLATE_GROUP).set("gone.md", 123.0)

    assert cache.check("gone.md") is True
    assert "gone.md" not in cache.group(TEMPLATE_GROUP)


def test_save_and_load_round_trip(tmp_path):
    (tmp_path / "page.md").write_text("x", encoding="utf-8")
    cache = _make(tmp_path)
    cache.check("page.md")
    cache.save()

    assert (tmp_path / "_cache" / "template.json").exists()
    reloaded = _make(tmp_path)
    reloaded.load()
    assert reloaded.check("page.md") is False


def test_corrupt_cache_file_warns_and_starts_empty(tmp_path, capsys):
    (tmp_path / "page.md").write_text("x", encoding="utf-8")
    cache_dir = tmp_path / "_cache"
    cache_dir.mkdir()
    (cache_dir / "template.json").write_text("{not json", encoding="utf-8")
    (cache_dir / "asset.json").write_text('{"a.css": "yesterday"}', encoding="utf-8")
    cache = _make(tmp_path)

    cache.load()

    assert len(cache.group(TEMPLATE_GROUP)) == 0
    assert len(cache.group(ASSET_GROUP)) == 0
    assert cache.check("page.md") is True
    err = capsys.readouterr().err
    assert "Unable to read cache file" in err
    assert "flat object" in err


def test_clear_removes_files(tmp_path):
    (tmp_path / "page.md").write_text("x", encoding="utf-8")
    cache = _make(tmp_path)
    cache.check("page.md")
    cache.save()

    cache.clear()

    assert not (tmp_path / "_cache" / "template.json").exists()
    assert cache.check("page.md") is True
