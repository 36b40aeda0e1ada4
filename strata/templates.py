"""Template rendering engine for Strata.

This module wraps Jinja2. It compiles a content unit into a renderer bound
to that unit and renders the small templates used for computed data.

Key class:
- TemplateEngine: Compiles units, renders strings and installs filters.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from jinja2 import Environment, FileSystemLoader, Template, TemplateSyntaxError, select_autoescape
from markupsafe import Markup

from .errors import DataError
from .protocols import UnitRenderer
from .renderers import MarkdownRenderer, pygments_css
from .utils import coerce_datetime, join_root_url, slugify

if TYPE_CHECKING:
    from .cascade import ContentUnit
    from .config import SiteConfig

TEMPLATE_MARKERS = ("{{", "{%", "{#")
EXTERNAL_PREFIXES = ("http://", "https://", "//", "mailto:", "tel:", "#")


class TemplateEngine:
    """Template rendering engine using Jinja2.

    Layout files carry front matter, so they are compiled from their parsed
    bodies rather than loaded by name; the loader still serves partials for
    ``{% include %}`` and ``{% import %}``.

    Attributes:
        config: Site configuration.
        env: Jinja2 environment for pages and layouts.
        text_env: Same environment without autoescaping, for computed data.
        markdown: Markdown renderer.
    """

    def __init__(self, config: SiteConfig, markdown: MarkdownRenderer | None = None):
        self.config = config
        self.env = Environment(
            loader=FileSystemLoader([config.layouts_dir, config.root]),
            autoescape=select_autoescape(["html", "xml"]),
        )
        self.markdown = markdown or MarkdownRenderer()
        self._install_filters()
        self.text_env = self.env.overlay(autoescape=False)
        self._layout_templates: dict[str, Template] = {}

    def _install_filters(self) -> None:
        self.env.filters["slugify"] = slugify
        self.env.filters["url"] = self._url
        self.env.filters["absolute_url"] = self._absolute_url
        self.env.filters["display_date"] = display_date
        self.env.filters["iso_date"] = iso_date
        self.env.filters["markdown"] = lambda text: Markup(self.markdown.render(str(text or "")))
        self.env.globals["pygments_css"] = pygments_css

    def _url(self, value: Any) -> str:
        """Site-relative URL of a unit or a path."""
        path = _permalink_of(value)
        if path.startswith(EXTERNAL_PREFIXES):
            return path
        return join_root_url("", path)

    def _absolute_url(self, value: Any) -> str:
        """Fully qualified URL of a unit or a path.

        Falls back to the site-relative URL when no ``root_url`` is set.
        """
        path = _permalink_of(value)
        if path.startswith(EXTERNAL_PREFIXES):
            return path
        return join_root_url(self.config.root_url, path)

    def reset(self) -> None:
        """Forget compiled layouts; called when a new run starts."""
        self._layout_templates.clear()

    def _from_string(self, source: str, unit: ContentUnit) -> Template:
        try:
            return self.env.from_string(source)
        except TemplateSyntaxError as exc:
            raise DataError(
                f"Template syntax error on line {exc.lineno}: {exc.message}", unit.path, exc
            ) from exc

    def _layout_template(self, layout: ContentUnit) -> Template:
        template = self._layout_templates.get(layout.rel_path)
        if template is None:
            template = self._from_string(layout.content, layout)
            self._layout_templates[layout.rel_path] = template
        return template

    def compile(self, unit: ContentUnit) -> UnitRenderer:
        """Bind a renderer to ``unit``.

        The returned callable takes the final merged data and returns the
        page's HTML: the body is rendered through Jinja (Markdown bodies only
        when they contain template markers), converted from Markdown when
        needed, then wrapped by each layout in the chain, nearest first. Each
        layout sees the inner HTML as ``content``.

        Raises:
            DataError: If the body or a layout has a template syntax error.
        """
        body_template = None
        if unit.kind != "markdown" or any(marker in unit.content for marker in TEMPLATE_MARKERS):
            body_template = self._from_string(unit.content, unit)
        layouts = [self._layout_template(layout) for layout in unit.layout_chain]
        is_markdown = unit.kind == "markdown"

        def render(data: Mapping[str, Any]) -> str:
            body = body_template.render(data) if body_template is not None else unit.content
            html = self.markdown.render(body) if is_markdown else body
            for layout in layouts:
                html = layout.render({**data, "content": Markup(html)})
            return html

        return render

    def render_string(self, text: str, data: Mapping[str, Any]) -> str:
        """Render a template string without autoescaping.

        Args:
            text: Template string to render.
            data: Variables to make available in the template.

        Returns:
            Rendered string.
        """
        return self.text_env.from_string(text).render(data)


def display_date(value: Any, fmt: str = "%-d %B %Y") -> str:
    """Format a date-like value for display; non-dates are returned as text."""
    moment = coerce_datetime(value)
    if moment is None:
        return "" if value is None else str(value)
    return moment.strftime(fmt)


def iso_date(value: Any) -> str:
    moment = coerce_datetime(value)
    if moment is None:
        return ""
    return moment.date().isoformat()


def _permalink_of(value: Any) -> str:
    data = getattr(value, "data", None)
    if isinstance(data, Mapping):
        return str(data.get("permalink") or "/")
    return str(value or "/")
