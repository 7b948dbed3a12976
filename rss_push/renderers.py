"""HTML builders for code, Markdown and feed-entry images."""

from __future__ import annotations

from typing import Tuple

from .models import FeedEntry
from .templating import get_environment, highlight_lines

THEME_COLOR = "#0f172a"

LANGUAGE_COLORS = {
    "javascript": ("#facc15", "#ca8a04"),
    "typescript": ("#60a5fa", "#2563eb"),
    "python": ("#22d3ee", "#0891b2"),
    "html": ("#fb923c", "#ef4444"),
    "css": ("#818cf8", "#4f46e5"),
    "json": ("#34d399", "#059669"),
    "yaml": ("#fbbf24", "#d97706"),
    "c": ("#93c5fd", "#3b82f6"),
    "cpp": ("#60a5fa", "#4f46e5"),
    "java": ("#f87171", "#f97316"),
    "kotlin": ("#f472b6", "#a855f7"),
    "csharp": ("#a78bfa", "#9333ea"),
    "c#": ("#a78bfa", "#9333ea"),
    "bash": ("#9ca3af", "#4b5563"),
    "shell": ("#9ca3af", "#4b5563"),
    "text": ("#94a3b8", "#475569"),
}
DEFAULT_LANGUAGE_COLORS = ("#22d3ee", "#0891b2")


def language_colors(language: str) -> Tuple[str, str]:
    return LANGUAGE_COLORS.get(language.lower(), DEFAULT_LANGUAGE_COLORS)


def build_code_html(code: str, language: str = "text", font_size: int = 16) -> str:
    """Render a highlighted, line-numbered code block page."""
    language = (language or "text").strip() or "text"
    lines = highlight_lines(code, language)
    template = get_environment().get_template("code.html.j2")
    return template.render(
        language=language,
        lines=lines,
        number_width=len(str(len(lines))),
        tag_colors=language_colors(language),
        font_size=font_size,
        theme_color=THEME_COLOR,
        min_width=320,
    )


def build_markdown_html(text: str, font_size: int = 18) -> str:
    """Render a Markdown document page."""
    template = get_environment().get_template("markdown.html.j2")
    return template.render(
        text=text,
        font_size=font_size,
        theme_color=THEME_COLOR,
        min_width=480,
        max_width=960,
    )


def build_entry_html(entry: FeedEntry, font_size: int = 18) -> str:
    """Render the card shown for a pushed feed entry."""
    template = get_environment().get_template("entry.html.j2")
    return template.render(
        entry=entry,
        font_size=font_size,
        theme_color=THEME_COLOR,
        min_width=480,
        max_width=800,
    )
