"""Markdown rendering for genkit.

Key functions:
- render_html: Render a Markdown document, optionally in feed-safe mode and
  with a table of contents.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from .render import Heading, MarkdownRender, RenderMode, Toc
from .visitor import MarkdownVisitor

if TYPE_CHECKING:
    from ..data import PreviewCache

__all__ = [
    "Heading",
    "MarkdownRender",
    "MarkdownVisitor",
    "RenderMode",
    "Toc",
    "render_html",
]


def render_html(
    markdown: str,
    cache: PreviewCache,
    visitor: MarkdownVisitor | None = None,
    *,
    toc: bool = False,
    rss: bool = False,
) -> tuple[str, list[Toc]]:
    """Render Markdown to HTML.

    Args:
        markdown: Markdown source.
        cache: Preview cache for url-preview blocks and markdown options.
        visitor: Optional custom block visitor.
        toc: Collect a table of contents.
        rss: Produce feed-safe output.

    Returns:
        Tuple of (html, toc entries). The entry list is empty unless ``toc``.
    """
    render = MarkdownRender(cache, visitor)
    if toc:
        render.enable_toc()
    if rss:
        render.enable_rss_mode()
    html = render.render_html(markdown)
    return html, render.get_toc()
