import asyncio
from datetime import date, datetime

from strata.utils import (
    absolutize_html_urls,
    coerce_datetime,
    ensure_clean_dir,
    extract_date_from_name,
    file_base,
    gather_bounded,
    is_within,
    join_root_url,
    slugify,
)


def test_slugify():
    assert slugify("Hello, World!") == "hello-world"
    assert slugify("  Web  Dev ") == "web-dev"
    assert slugify("!!!") == "index"


def test_file_base_strips_date_prefix():
    ignore = [r"^\d{4}-\d{2}-\d{2}-"]
    assert file_base("posts/2024-01-15-Hello-World.md", ignore) == "hello-world"
    assert file_base("about.html.jinja") == "about"


def test_extract_date_from_name():
    assert extract_date_from_name("2024-01-15-hello") == datetime(2024, 1, 15)
    assert extract_date_from_name("2024-13-40-bad") is None
    assert extract_date_from_name("hello") is None


def test_coerce_datetime():
    assert coerce_datetime(date(2024, 2, 3)) == datetime(2024, 2, 3)
    assert coerce_datetime("2024-02-03T10:00:00Z") == datetime(2024, 2, 3, 10, 0)
    assert coerce_datetime("3 February 2024") == datetime(2024, 2, 3)
    assert coerce_datetime("someday") is None
    assert coerce_datetime(42) is None


def test_join_root_url():
    assert join_root_url("https://example.com/", "/about/") == "https://example.com/about/"
    assert join_root_url("", "about") == "/about"


def test_absolutize_html_urls():
    html = '<a href="/about">A</a><img src="logo.png"><a href="#top">T</a>'
    result = absolutize_html_urls(html, "https://example.com")
    assert 'href="https://example.com/about"' in result
    assert 'src="logo.png"' in result
    assert 'href="#top"' in result
    assert absolutize_html_urls(html, "") == html


def test_ensure_clean_dir(tmp_path):
    target = tmp_path / "out"
    (target / "nested").mkdir(parents=True)
    (target / "nested" / "file.txt").write_text("x", encoding="utf-8")

    ensure_clean_dir(target)

    assert target.is_dir()
    assert list(target.iterdir()) == []


def test_is_within(tmp_path):
    assert is_within(tmp_path / "a" / "b", tmp_path)
    assert is_within(tmp_path, tmp_path)
    assert not is_within(tmp_path.parent, tmp_path)


def test_gather_bounded_limits_concurrency_and_keeps_order():
    in_flight = 0
    peak = 0

    def factory(value):
        async def run():
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0)
            in_flight -= 1
            if value == 3:
                raise ValueError("three")
            return value

        return run

    results = asyncio.run(gather_bounded([factory(i) for i in range(6)], limit=2))

    assert peak <= 2
    assert results[:3] == [0, 1, 2]
    assert isinstance(results[3], ValueError)
    assert results[4:] == [4, 5]
