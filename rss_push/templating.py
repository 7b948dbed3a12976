"""Jinja2 environment and markup helpers for rss_push templates."""

from __future__ import annotations

from datetime import datetime
from importlib import resources
from typing import List, Optional

import bleach
from bs4 import BeautifulSoup
from jinja2 import Environment, FileSystemLoader, select_autoescape
from markdown_it import MarkdownIt
from markupsafe import Markup, escape
from pygments import highlight
from pygments.formatters import HtmlFormatter
from pygments.lexers import TextLexer, get_lexer_by_name
from pygments.util import ClassNotFound

_ENV: Environment | None = None
_MARKDOWN: MarkdownIt | None = None

PYGMENTS_STYLE = "one-dark"

ALLOWED_TAGS = [
    "p", "br", "ul", "ol", "li", "strong", "em", "b", "i", "a", "img",
    "blockquote", "code", "pre", "h1", "h2", "h3", "h4", "h5", "h6", "figure",
    "figcaption", "span", "table", "thead", "tbody", "tr", "th", "td", "hr",
]
DROPPED_TAGS = ["script", "style", "noscript"]
ALLOWED_ATTRIBUTES = {"a": ["href", "title"], "img": ["src", "alt", "title"]}


def _lexer_for(language: Optional[str]):
    try:
        return get_lexer_by_name(language or "text", stripnl=False)
    except ClassNotFound:
        return TextLexer(stripnl=False)


def highlight_lines(code: str, language: Optional[str]) -> List[Markup]:
    """Highlight ``code`` and return one markup fragment per source line."""
    formatter = HtmlFormatter(nowrap=True, style=PYGMENTS_STYLE)
    highlighted = highlight(code, _lexer_for(language), formatter)
    if highlighted.endswith("\n"):
        highlighted = highlighted[:-1]
    return [Markup(line) for line in highlighted.split("\n")]


def highlight_css() -> Markup:
    """Return the stylesheet for Pygments token classes under ``.highlight``."""
    return Markup(HtmlFormatter(style=PYGMENTS_STYLE).get_style_defs(".highlight"))


def _highlight_fence(content: str, lang_name: str, _lang_attrs: str) -> str:
    formatter = HtmlFormatter(nowrap=True, style=PYGMENTS_STYLE)
    if lang_name:
        try:
            lexer = get_lexer_by_name(lang_name, stripnl=False)
        except ClassNotFound:
            lexer = None
        if lexer is not None:
            return (
                '<pre class="highlight"><code>'
                + highlight(content, lexer, formatter)
                + "</code></pre>"
            )
    return '<pre class="highlight"><code>' + str(escape(content)) + "</code></pre>"


def _get_markdown() -> MarkdownIt:
    global _MARKDOWN
    if _MARKDOWN is None:
        _MARKDOWN = MarkdownIt(
            "gfm-like",
            {"html": False, "typographer": True, "highlight": _highlight_fence},
        ).enable(["replacements", "smartquotes"])
    return _MARKDOWN


def _render_markdown(value: str | None) -> Markup:
    """Render markdown to HTML; raw HTML in the source is escaped."""
    if not value:
        return Markup("")
    return Markup(_get_markdown().render(value))


def _sanitize(value: str | None) -> Markup:
    """Keep a safe subset of feed-supplied HTML."""
    if not value:
        return Markup("")
    soup = BeautifulSoup(value, "html.parser")
    for tag in soup(DROPPED_TAGS):
        tag.decompose()
    clean_html = bleach.clean(
        str(soup), tags=ALLOWED_TAGS, attributes=ALLOWED_ATTRIBUTES, strip=True
    )
    return Markup(clean_html)


def _format_datetime(value: datetime | None) -> str:
    if value is None:
        return ""
    return value.strftime("%Y-%m-%d %H:%M UTC")


def get_environment() -> Environment:
    """Return a cached Jinja environment configured for package templates."""
    global _ENV
    if _ENV is None:
        template_dir = resources.files(__package__) / "templates"
        loader = FileSystemLoader(str(template_dir))
        _ENV = Environment(
            loader=loader,
            autoescape=select_autoescape(["html", "xml", "j2"]),
            trim_blocks=True,
            lstrip_blocks=True,
        )
        _ENV.filters["markdown"] = _render_markdown
        _ENV.filters["sanitize"] = _sanitize
        _ENV.filters["datetime"] = _format_datetime
        _ENV.globals["highlight_css"] = highlight_css
    return _ENV
