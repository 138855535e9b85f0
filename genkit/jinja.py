"""Jinja2 environments for genkit.

Built-in templates (headings, quotes, callouts, URL previews) live in the
package's ``templates`` directory and are addressed with the ``__genkit/``
prefix, so they never collide with a site's own templates.

Key functions:
- builtin_environment: Environment with only the built-in templates, used by
  the Markdown transducer.
- init_environment: Environment handed to generators, with the built-in
  templates, site template directories, and the helper globals and filters.
- render_toc: Render a table of contents as nested lists.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path
from typing import TYPE_CHECKING

from jinja2 import (
    ChoiceLoader,
    Environment,
    FileSystemLoader,
    PrefixLoader,
    select_autoescape,
)
from markupsafe import Markup

from .html_utils import escape_html, rebase_urls

if TYPE_CHECKING:
    from .data import PreviewCache
    from .markdown.render import Toc
    from .markdown.visitor import MarkdownVisitor

BUILTIN_TEMPLATES_DIR = Path(__file__).parent / "templates"
BUILTIN_PREFIX = "__genkit"

__all__ = [
    "builtin_environment",
    "init_environment",
    "render_toc",
]


def render_toc(toc: Sequence[Toc]) -> Markup:
    """Render a table of contents as nested HTML lists.

    Nesting follows each entry's relative depth, so a document using only
    ``h2`` and ``h4`` nests two levels deep rather than four.

    Args:
        toc: Entries from ``MarkdownRender.get_toc``.

    Returns:
        Markup-safe HTML string of the nested TOC, or empty Markup if no entries.
    """
    if not toc:
        return Markup("")

    html_parts: list[str] = []
    depth_stack: list[int] = []

    for entry in toc:
        depth = entry.depth

        # Close nested lists if going to a shallower depth
        while depth_stack and depth_stack[-1] > depth:
            depth_stack.pop()
            html_parts.append("</li></ul>")

        if depth_stack and depth_stack[-1] == depth:
            html_parts.append("</li>")
        elif not depth_stack or depth > depth_stack[-1]:  # pragma: no branch
            html_parts.append("<ul>")
            depth_stack.append(depth)

        html_parts.append(
            f'<li><a href="#{escape_html(entry.id or "")}">{escape_html(entry.title)}</a>'
        )

    while depth_stack:
        depth_stack.pop()
        html_parts.append("</li></ul>")

    return Markup("".join(html_parts))


def _builtin_loader() -> PrefixLoader:
    return PrefixLoader({BUILTIN_PREFIX: FileSystemLoader(str(BUILTIN_TEMPLATES_DIR))})


@lru_cache(maxsize=1)
def builtin_environment() -> Environment:
    """Environment holding only the built-in templates."""
    return Environment(
        loader=_builtin_loader(),
        autoescape=True,
        enable_async=False,
    )


def now() -> str:
    """Current UTC time in RFC 3339 format."""
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def trim_start_matches(value: str, prefix: str) -> str:
    """Strip every leading repetition of ``prefix``."""
    if not prefix:
        return value
    while value.startswith(prefix):
        value = value[len(prefix):]
    return value


def init_environment(
    cache: PreviewCache,
    visitor: MarkdownVisitor | None = None,
    search_path: Iterable[Path] = (),
) -> Environment:
    """Create the Jinja2 environment handed to generators.

    Args:
        cache: Preview cache consulted by Markdown rendering.
        visitor: Optional custom block visitor.
        search_path: Site template directories, searched before the built-ins.

    Returns:
        Configured Jinja2 Environment.
    """
    # Import here to avoid circular imports
    from .markdown import render_html

    loaders = [FileSystemLoader([str(path) for path in search_path])]
    loaders.append(_builtin_loader())
    env = Environment(
        loader=ChoiceLoader(loaders),
        autoescape=select_autoescape(["html", "xml", "jinja"]),
        enable_async=False,
    )

    def markdown_to_html(markdown: str) -> Markup:
        html, _ = render_html(markdown, cache, visitor)
        return Markup(html)

    def markdown_to_rss(markdown: str) -> Markup:
        html, _ = render_html(markdown, cache, visitor, rss=True)
        return Markup(html)

    env.globals["markdown_to_html"] = markdown_to_html
    env.globals["markdown_to_rss"] = markdown_to_rss
    env.globals["now"] = now
    env.globals["render_toc"] = render_toc
    env.filters["trim_start_matches"] = trim_start_matches
    env.filters["rebase_urls"] = lambda html, site_url: Markup(rebase_urls(str(html), site_url))
    return env
