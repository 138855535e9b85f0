"""Flat Markdown event stream.

mistune parses Markdown into a nested AST. The transducer works on a flat
sequence instead: every token with children becomes a START event, its
children, and an END event; text runs, inline code runs and raw HTML get
their own kinds; anything else passes through as OTHER. ``render_events``
folds a (rewritten) stream back into tokens and writes HTML with mistune's
HTML renderer, so all plugin output stays identical to a plain render.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache
from typing import Any

import mistune

PLUGINS = ["strikethrough", "footnotes", "table", "url"]

# Container tokens whose content mistune stores in ``raw`` instead of children.
_RAW_CONTAINERS = {"block_code"}


class EventKind(Enum):
    START = "start"
    END = "end"
    TEXT = "text"
    CODE = "code"
    HTML = "html"
    OTHER = "other"


@dataclass(frozen=True)
class Event:
    """One structural token of the stream.

    Attributes:
        kind: Event kind.
        tag: mistune token type for START/END/OTHER events.
        text: Content of TEXT, CODE and HTML events.
        token: Token attributes for START (without children) and OTHER events.
    """

    kind: EventKind
    tag: str = ""
    text: str = ""
    token: dict[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def start(cls, token: dict[str, Any]) -> Event:
        return cls(EventKind.START, tag=token["type"], token=token)

    @classmethod
    def end(cls, tag: str) -> Event:
        return cls(EventKind.END, tag=tag)

    @classmethod
    def html(cls, html: str) -> Event:
        return cls(EventKind.HTML, text=html)

    @property
    def attrs(self) -> dict[str, Any]:
        return self.token.get("attrs") or {}


class EventHtmlRenderer(mistune.HTMLRenderer):
    """HTML writer for rebuilt token trees.

    Raw HTML is trusted: it comes from the transducer itself or from the
    author's own Markdown source.
    """

    def __init__(self):
        super().__init__(escape=False)


@lru_cache(maxsize=1)
def _parser() -> mistune.Markdown:
    return mistune.create_markdown(renderer="ast", plugins=PLUGINS)


@lru_cache(maxsize=1)
def _writer() -> EventHtmlRenderer:
    # Plugins register their render methods on the renderer they are built with.
    markdown = mistune.create_markdown(
        escape=False, renderer=EventHtmlRenderer(), plugins=PLUGINS
    )
    return markdown.renderer


def parse_tokens(markdown: str) -> list[dict[str, Any]]:
    """Parse Markdown into mistune AST tokens."""
    return _parser()(markdown)


def iter_events(tokens: Iterable[dict[str, Any]]) -> Iterator[Event]:
    """Flatten AST tokens into a stream of events."""
    for token in tokens:
        kind = token["type"]
        if kind == "text":
            yield Event(EventKind.TEXT, text=token.get("raw", ""))
        elif kind == "codespan":
            yield Event(EventKind.CODE, text=token.get("raw", ""))
        elif kind in ("block_html", "inline_html"):
            yield Event.html(token.get("raw", ""))
        elif kind in _RAW_CONTAINERS:
            head = {k: v for k, v in token.items() if k != "raw"}
            yield Event.start(head)
            yield Event(EventKind.TEXT, text=token.get("raw", ""))
            yield Event.end(kind)
        elif "children" in token:
            head = {k: v for k, v in token.items() if k != "children"}
            yield Event.start(head)
            yield from iter_events(token["children"])
            yield Event.end(kind)
        else:
            yield Event(EventKind.OTHER, tag=kind, token=token)


def markdown_events(markdown: str) -> Iterator[Event]:
    return iter_events(parse_tokens(markdown))


def _leaf(event: Event, top_level: bool) -> dict[str, Any]:
    if event.kind is EventKind.TEXT:
        return {"type": "text", "raw": event.text}
    if event.kind is EventKind.CODE:
        return {"type": "codespan", "raw": event.text}
    if event.kind is EventKind.HTML:
        return {"type": "block_html" if top_level else "inline_html", "raw": event.text}
    return event.token


def build_tokens(
    events: Iterable[Event], inline: bool = False
) -> list[dict[str, Any]]:
    """Fold an event stream back into nested tokens.

    Args:
        events: The stream to fold.
        inline: Whether the stream is inline content, such as a heading body.

    Raises:
        ValueError: If START and END events are unbalanced.
    """
    root: list[dict[str, Any]] = []
    stack: list[tuple[dict[str, Any], list[dict[str, Any]]]] = []
    for event in events:
        if event.kind is EventKind.START:
            stack.append((dict(event.token), []))
            continue
        if event.kind is EventKind.END:
            if not stack or stack[-1][0]["type"] != event.tag:
                raise ValueError(f"Unbalanced end event: {event.tag}")
            node, children = stack.pop()
            if node["type"] in _RAW_CONTAINERS:
                node["raw"] = "".join(child.get("raw", "") for child in children)
            else:
                node["children"] = children
            (stack[-1][1] if stack else root).append(node)
            continue
        target = stack[-1][1] if stack else root
        target.append(_leaf(event, top_level=not stack and not inline))
    if stack:
        raise ValueError(f"Unclosed start event: {stack[-1][0]['type']}")
    return root


def render_events(events: Iterable[Event], inline: bool = False) -> str:
    """Write HTML for an event stream."""
    tokens = build_tokens(events, inline=inline)
    return _writer().render_tokens(tokens, mistune.BlockState())
