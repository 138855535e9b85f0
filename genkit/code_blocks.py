"""Built-in fenced blocks.

A fenced block's info string is ``name`` optionally followed by
comma-separated ``key: value`` options::

    ```callout, type: warning, title: Heads up
    Mind the **gap**.
    ```

Built-in blocks:
- ``url-preview``: the body is a URL rendered as a preview card.
- ``callout``: a highlighted Markdown body.
- ``quote``: a YAML mapping with author, avatar, bio and content.

Malformed built-in syntax raises ParseError and aborts the render.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import yaml
from jinja2 import Environment

from .data import Failed, Finished
from .errors import ParseError

if TYPE_CHECKING:
    from .data import PreviewCache

URL_PREVIEW = "url-preview"
CALLOUT = "callout"
QUOTE = "quote"
BUILTIN_BLOCKS = frozenset({URL_PREVIEW, CALLOUT, QUOTE})

RenderMarkdown = Callable[[str], str]


@dataclass
class Fenced:
    """Parsed info string of a fenced block.

    Attributes:
        name: Block name (or code language).
        options: Option values keyed by option name.
    """

    name: str
    options: dict[str, str] = field(default_factory=dict)

    @classmethod
    def parse(cls, info: str) -> Fenced:
        """Parse ``name[, key: value]*``.

        Raises:
            ParseError: If an option is not a ``key: value`` pair.
        """
        name, _, rest = info.strip().partition(",")
        fenced = cls(name=name.strip())
        if not rest.strip():
            return fenced
        for pair in rest.split(","):
            key, sep, value = pair.partition(":")
            if not sep or not key.strip():
                raise ParseError(
                    f"Invalid option `{pair.strip()}` in fenced block `{fenced.name}`"
                )
            fenced.options[key.strip()] = value.strip()
        return fenced

    def is_builtin(self) -> bool:
        return self.name in BUILTIN_BLOCKS


class CalloutBlock:
    """A highlighted note with a Markdown body."""

    KINDS = ("note", "info", "tip", "warning", "danger")
    OPTIONS = ("type", "title")

    def __init__(self, options: dict[str, str], body: str):
        unknown = sorted(set(options) - set(self.OPTIONS))
        if unknown:
            raise ParseError(f"Unknown callout option: {', '.join(unknown)}")
        self.kind = options.get("type", "note") or "note"
        if self.kind not in self.KINDS:
            raise ParseError(
                f"Invalid callout type `{self.kind}`, expected one of {', '.join(self.KINDS)}"
            )
        self.title = options.get("title") or None
        self.body = body

    def render(self, env: Environment, render_markdown: RenderMarkdown) -> str:
        return env.get_template("__genkit/callout.jinja").render(
            kind=self.kind,
            title=self.title,
            body=render_markdown(self.body),
        )


@dataclass
class QuoteBlock:
    """A quotation with its author."""

    author: str
    content: str
    avatar: str | None = None
    bio: str | None = None

    @classmethod
    def parse(cls, text: str) -> QuoteBlock:
        """Parse the YAML body of a quote block.

        Raises:
            ParseError: If the body is not a mapping with author and content.
        """
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise ParseError(f"Invalid quote block: {exc}") from exc
        if not isinstance(data, dict):
            raise ParseError("Invalid quote block: expected a mapping")
        missing = [key for key in ("author", "content") if not data.get(key)]
        if missing:
            raise ParseError(f"Invalid quote block: missing {', '.join(missing)}")
        unknown = sorted(set(data) - {"author", "content", "avatar", "bio"})
        if unknown:
            raise ParseError(f"Invalid quote block: unknown field {', '.join(unknown)}")
        return cls(
            author=str(data["author"]),
            content=str(data["content"]),
            avatar=data.get("avatar") or None,
            bio=data.get("bio") or None,
        )

    def render(self, env: Environment, render_markdown: RenderMarkdown) -> str:
        return env.get_template("__genkit/quote.jinja").render(
            author=self.author,
            avatar=self.avatar,
            bio=self.bio,
            content=render_markdown(self.content),
        )


class UrlPreviewBlock:
    """A preview card for a URL, backed by the preview cache."""

    def __init__(self, options: dict[str, str], body: str):
        if options:
            raise ParseError(f"Unknown url-preview option: {', '.join(sorted(options))}")
        self.url = body.strip()
        if not self.url or any(ch.isspace() for ch in self.url):
            raise ParseError(f"Invalid url-preview block: `{self.url}`")

    def render(self, env: Environment, cache: PreviewCache) -> str:
        record = cache.get(self.url)
        if record is None:
            first, handle = cache.get_or_fetch(self.url)
            if first:
                print(f"URL previewing: {self.url}")
            outcome = handle.result()
            if isinstance(outcome, Failed):
                print(f"URL preview `{self.url}` failed: `{outcome.reason}`")
                return env.get_template("__genkit/url_preview.jinja").render(
                    url=self.url, failed=True
                )
            assert isinstance(outcome, Finished)
            record = outcome.record
        return env.get_template("__genkit/url_preview.jinja").render(
            url=self.url,
            title=record.title or self.url,
            description=record.description,
            image=record.image,
            failed=False,
        )
