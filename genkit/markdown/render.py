"""Streaming Markdown-to-HTML transducer.

MarkdownRender consumes the flat event stream of a document and rewrites it
in a single pass. At most one capture context is active at a time:

- heading capture: child events are buffered and rendered through the
  heading template once the heading closes;
- image capture: the alt text is collected and one lazy-loading ``<img>``
  is emitted when the image closes;
- fenced-block capture: the block text goes to a built-in block, the
  custom block visitor, or the syntax highlighter.

Everything else passes through untouched. Each render call owns its own
RenderState, so a MarkdownRender must not be shared between threads.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache
from typing import TYPE_CHECKING, Any

from jinja2 import Environment
from pygments import highlight
from pygments.formatters import HtmlFormatter
from pygments.lexers import TextLexer, get_lexer_by_name
from pygments.util import ClassNotFound

from ..code_blocks import (
    CALLOUT,
    QUOTE,
    URL_PREVIEW,
    CalloutBlock,
    Fenced,
    QuoteBlock,
    UrlPreviewBlock,
)
from ..errors import ConfigError
from ..html_utils import escape_html
from ..jinja import builtin_environment
from .events import Event, EventKind, markdown_events, render_events
from .visitor import MarkdownVisitor

if TYPE_CHECKING:
    from ..config import MarkdownOptions
    from ..data import PreviewCache

# `# Long title {#title}` sets the heading id explicitly.
HEADING_ID_RE = re.compile(r"\s*\{#([^\s{}]+)\}\s*$")


class RenderMode(Enum):
    ARTICLE = "article"
    # Feed-safe output: blocks unsuitable for syndication, such as url-preview, are skipped.
    RSS = "rss"


@dataclass
class Toc:
    """One table of contents entry.

    Attributes:
        depth: Rank of ``level`` among the distinct heading levels of the document.
        level: Raw heading level, 1 to 6.
        id: Anchor id of the heading.
        title: Plain-text heading title.
    """

    depth: int
    level: int
    id: str | None
    title: str


@dataclass
class Heading:
    toc: Toc
    events: list[Event] = field(default_factory=list)

    @classmethod
    def new(cls, level: int) -> Heading:
        return cls(Toc(depth=level, level=level, id=None, title=""))

    def push_event(self, event: Event) -> Heading:
        self.events.append(event)
        return self

    def push_text(self, text: str) -> Heading:
        self.toc.title += text
        return self

    def _take_explicit_id(self) -> None:
        match = HEADING_ID_RE.search(self.toc.title)
        if match is None:
            return
        self.toc.id = match.group(1)
        self.toc.title = self.toc.title[: match.start()]
        for index in range(len(self.events) - 1, -1, -1):
            event = self.events[index]
            if event.kind is not EventKind.TEXT:
                continue
            text_match = HEADING_ID_RE.search(event.text)
            if text_match is not None:
                self.events[index] = Event(EventKind.TEXT, text=event.text[: text_match.start()])
            break

    def render(self, env: Environment) -> Event:
        """Render the buffered heading into a single HTML event."""
        self._take_explicit_id()
        if self.toc.id is None:
            # Fallback to the title as anchor id if the author didn't specify one.
            self.toc.id = self.toc.title.lower().replace(" ", "-")

        heading = render_events(self.events, inline=True)
        self.events = []
        html = env.get_template("__genkit/heading.jinja").render(
            heading=heading,
            level=self.toc.level,
            id=self.toc.id,
        )
        return Event.html(html)


@dataclass
class RenderState:
    """Mutable state of one render call."""

    # Raw info string of the fenced block being processed.
    fenced: str | None = None
    image: dict[str, Any] | None = None
    image_alt: list[str] = field(default_factory=list)
    heading: Heading | None = None
    levels: set[int] = field(default_factory=set)
    headings: list[Heading] | None = None


@lru_cache(maxsize=8)
def _formatter(theme: str) -> HtmlFormatter:
    try:
        return HtmlFormatter(style=theme, noclasses=True)
    except ClassNotFound:
        raise ConfigError(f"No highlight theme `{theme}` found") from None


def highlight_code(lang: str, code: str, theme: str) -> str:
    """Highlight code, falling back to plain text for unknown languages."""
    try:
        lexer = get_lexer_by_name(lang) if lang else TextLexer()
    except ClassNotFound:
        lexer = TextLexer()
    return highlight(code, lexer, _formatter(theme))


class MarkdownRender:
    """Markdown to HTML renderer.

    Attributes:
        cache: Preview cache providing markdown options and URL previews.
        visitor: Optional custom block visitor.
        env: Environment holding the built-in templates.
    """

    def __init__(
        self,
        cache: PreviewCache,
        visitor: MarkdownVisitor | None = None,
        env: Environment | None = None,
    ):
        self.cache = cache
        self.visitor = visitor
        self.env = env or builtin_environment()
        self.mode = RenderMode.ARTICLE
        self._toc_enabled = False
        self._state = RenderState()
        self._options: MarkdownOptions = cache.markdown_options

    def set_markdown_visitor(self, visitor: MarkdownVisitor) -> MarkdownRender:
        self.visitor = visitor
        return self

    def enable_rss_mode(self) -> MarkdownRender:
        self.mode = RenderMode.RSS
        return self

    def enable_toc(self) -> MarkdownRender:
        self._toc_enabled = True
        return self

    def get_toc(self) -> list[Toc]:
        """Table of contents of the last render, empty unless enabled."""
        headings = self._state.headings
        if not headings:
            return []
        return [heading.toc for heading in headings]

    def render_html(self, markdown: str) -> str:
        """Render Markdown to HTML.

        Args:
            markdown: Markdown source.

        Returns:
            The rendered HTML.

        Raises:
            ParseError: If a built-in block is malformed.
        """
        self._state = RenderState(headings=[] if self._toc_enabled else None)
        self._options = self.cache.markdown_options
        visited = (self._visit(event) for event in markdown_events(markdown))
        html = render_events(event for event in visited if event is not None)
        self._rebuild_toc_depth()
        return html

    def _rebuild_toc_depth(self) -> None:
        state = self._state
        if state.headings is None:
            return
        depths = sorted(state.levels)
        for heading in state.headings:
            heading.toc.depth = depths.index(heading.toc.level) + 1

    def _render_nested(self, markdown: str) -> str:
        nested = MarkdownRender(self.cache, self.visitor, self.env)
        nested.mode = self.mode
        return nested.render_html(markdown)

    def _visit(self, event: Event) -> Event | None:
        if event.kind is EventKind.START:
            return self._visit_start(event)
        if event.kind is EventKind.END:
            return self._visit_end(event)
        if event.kind is EventKind.TEXT:
            return self._visit_text(event)
        if event.kind is EventKind.CODE:
            return self._visit_code(event)
        return self._buffer(event)

    def _buffer(self, event: Event) -> Event | None:
        state = self._state
        if state.image is not None:
            return None
        if state.heading is not None:
            state.heading.push_event(event)
            return None
        return event

    def _visit_start(self, event: Event) -> Event | None:
        state = self._state
        if event.tag == "block_code" and event.token.get("style") == "fenced":
            state.fenced = event.attrs.get("info") or ""
            return None
        if event.tag == "image" and state.image is None:
            state.image = event.attrs
            state.image_alt = []
            return None
        if event.tag == "heading" and state.heading is None and state.image is None:
            state.heading = Heading.new(int(event.attrs.get("level", 1)))
            return None
        return self._buffer(event)

    def _visit_end(self, event: Event) -> Event | None:
        state = self._state
        if event.tag == "block_code" and state.fenced is not None:
            state.fenced = None
            return None
        if event.tag == "image" and state.image is not None:
            img = Event.html(self._image_html(state.image, "".join(state.image_alt)))
            state.image = None
            state.image_alt = []
            return self._buffer(img)
        if event.tag == "heading" and state.heading is not None and state.image is None:
            heading = state.heading
            state.heading = None
            state.levels.add(heading.toc.level)
            rendered = heading.render(self.env)
            if state.headings is not None:
                state.headings.append(heading)
            return rendered
        return self._buffer(event)

    def _visit_text(self, event: Event) -> Event | None:
        state = self._state
        if state.fenced is not None:
            return self._visit_fenced(Fenced.parse(state.fenced), event.text)
        if state.image is not None:
            state.image_alt.append(event.text)
            return None
        if state.heading is not None:
            state.heading.push_text(event.text).push_event(event)
            return None
        return event

    def _visit_code(self, event: Event) -> Event | None:
        state = self._state
        if state.image is not None:
            state.image_alt.append(event.text)
            return None
        if state.heading is not None:
            state.heading.push_text(event.text).push_event(event)
            return None
        if self.visitor is not None:
            html = self.visitor.visit_code(event.text)
            if html is not None:
                return Event.html(html)
        return event

    def _visit_fenced(self, fenced: Fenced, text: str) -> Event | None:
        if fenced.name == URL_PREVIEW and self.mode is RenderMode.RSS:
            return None
        if fenced.is_builtin():
            return Event.html(self._render_code_block(fenced, text))
        if self.visitor is not None:
            html = self.visitor.visit_custom_block(fenced.name, text)
            if html is not None:
                return Event.html(html)
        if self._options.highlight_code:
            return Event.html(
                highlight_code(fenced.name, text, self._options.highlight_theme)
            )
        return Event.html(f"<pre>{escape_html(text)}</pre>")

    def _render_code_block(self, fenced: Fenced, text: str) -> str:
        if fenced.name == URL_PREVIEW:
            return UrlPreviewBlock(fenced.options, text).render(self.env, self.cache)
        if fenced.name == CALLOUT:
            return CalloutBlock(fenced.options, text).render(self.env, self._render_nested)
        if fenced.name == QUOTE:
            return QuoteBlock.parse(text).render(self.env, self._render_nested)
        raise ValueError(f"Unsupported built-in block: {fenced.name}")

    @staticmethod
    def _image_html(attrs: dict[str, Any], alt: str) -> str:
        src = escape_html(attrs.get("url") or "")
        html = f'<img src="{src}" alt="{escape_html(alt)}"'
        title = attrs.get("title")
        if title:
            html += f' title="{escape_html(title)}"'
        return html + ' loading="lazy">'
