"""Front matter parsing for Strata.

Content files may open with a YAML block fenced by ``---`` lines. The block
becomes the file's own data layer and the rest is the body.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .errors import DataError

FRONTMATTER_RE = re.compile(r"^---[ \t]*\r?\n(.*?)\r?\n---[ \t]*(?:\r?\n|\Z)", re.DOTALL)
EXCERPT_SEPARATOR_RE = re.compile(r"^---[ \t]*$", re.MULTILINE)


@dataclass
class FrontMatter:
    """Parsed front matter of one file.

    Attributes:
        data: The YAML mapping, empty when the file has no front matter.
        content: Body text following the front matter.
        excerpt: Text before the excerpt separator, or the ``excerpt`` key.
    """

    data: dict[str, Any] = field(default_factory=dict)
    content: str = ""
    excerpt: str = ""


def parse_front_matter(text: str, path: Path | str | None = None, excerpts: bool = True) -> FrontMatter:
    """Split a file into front matter data, body and excerpt.

    Args:
        text: Raw file content.
        path: Source path, used in error messages.
        excerpts: Whether a ``---`` line inside the body marks an excerpt.

    Returns:
        FrontMatter for the file.

    Raises:
        DataError: If the YAML block does not parse or is not a mapping.

    Examples:
        >>> fm = parse_front_matter("---\\ntitle: Hi\\n---\\nBody")
        >>> fm.data, fm.content
        ({'title': 'Hi'}, 'Body')
    """
    match = FRONTMATTER_RE.match(text)
    if not match:
        data: dict[str, Any] = {}
        body = text
    else:
        try:
            loaded = yaml.safe_load(match.group(1))
        except yaml.YAMLError as exc:
            raise DataError(f"Malformed front matter: {exc}", path, exc) from exc
        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            raise DataError("Front matter must be a mapping", path)
        data = loaded
        body = text[match.end() :]

    excerpt = ""
    if excerpts:
        separator = EXCERPT_SEPARATOR_RE.search(body)
        if separator:
            excerpt = body[: separator.start()].strip()
            body = body[: separator.start()] + body[separator.end() :].lstrip("\r\n")
    if "excerpt" in data:
        excerpt = str(data.pop("excerpt"))
    return FrontMatter(data=data, content=body, excerpt=excerpt)
