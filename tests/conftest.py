from pathlib import Path

import pytest

from strata import console


def write(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


@pytest.fixture(autouse=True)
def console_level():
    console.set_level("info")
    yield
    console.set_level("info")


@pytest.fixture
def blog_site(tmp_path):
    """A small site: two layouts, three posts on the post layout and an about page."""
    write(tmp_path / "_layouts" / "base.jinja", "<html><body>{{ content }}</body></html>")
    write(
        tmp_path / "_layouts" / "post.jinja",
        "---\nlayout: base\n---\n<article><h1>{{ title }}</h1>{{ content }}</article>",
    )
    for day, slug in ((1, "first"), (2, "second"), (3, "third")):
        write(
            tmp_path / "posts" / f"2024-01-0{day}-{slug}.md",
            f"---\nlayout: post\ntitle: {slug.title()}\ntags: [news]\n"
            f"permalink: /posts/{slug}/\n---\nPost *{slug}*\n",
        )
    write(
        tmp_path / "about.md",
        "---\nlayout: base\ntitle: About\npermalink: /about/\n---\nAbout us\n",
    )
    return tmp_path
