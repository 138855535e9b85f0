"""HTML utility functions for genkit.

This module provides HTML manipulation utilities: escaping, rewriting
root-relative URLs against a site URL, and extracting preview meta
information (title, description, image) from a fetched page.

Functions:
    escape_html: Escape special HTML characters in a string.
    join_root_url: Join a base URL with a path.
    rebase_urls: Convert root-relative URLs to absolute in HTML.
    parse_html_meta: Extract a PageMeta from raw HTML.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from urllib.parse import urlparse

from bs4 import BeautifulSoup

from .errors import ConfigError, ExtractError

META_TEXT_LIMIT = 200

# URL attribute regex pattern for finding href, src, action attributes
_URL_ATTR_RE = re.compile(
    r'(?P<prefix>\b(?:href|src|action)=["\'])(?P<url>[^"\']+)(?P<suffix>["\'])'
)

# Only root-relative URLs are rewritten
_URL_SKIP_PREFIXES = ("//",)

_DESCRIPTION_NAMES = ("description", "og:description", "twitter:description")
_TITLE_NAMES = ("og:title", "twitter:title")
_IMAGE_NAMES = ("og:image", "twitter:image")
_URL_NAMES = ("og:url", "twitter:url")


def escape_html(text: str) -> str:
    """Escape special HTML characters in a string.

    Examples:
        >>> escape_html('<b>"Tom" & Jerry</b>')
        '&lt;b&gt;&quot;Tom&quot; &amp; Jerry&lt;/b&gt;'
    """
    return (
        text.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
    )


def join_root_url(root_url: str, path: str) -> str:
    """Safely join a root URL and a path, avoiding double slashes.

    Examples:
        >>> join_root_url('https://example.com/', 'about')
        'https://example.com/about'
    """
    if not root_url:
        return path
    base = root_url.rstrip("/")
    suffix = path if path.startswith("/") else f"/{path}"
    return f"{base}{suffix}"


def rebase_urls(html: str, site_url: str) -> str:
    """Rewrite root-relative URLs in HTML against the site URL.

    Feed readers resolve relative links against the feed, not the site,
    so feed content carries absolute URLs.

    Args:
        html: HTML content to process.
        site_url: Absolute site URL, such as ``https://example.com/blog``.

    Returns:
        HTML with ``href``/``src``/``action`` values starting with ``/``
        made absolute.

    Raises:
        ConfigError: If ``site_url`` is not an absolute http(s) URL.
    """
    parsed = urlparse(site_url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ConfigError(f"Invalid site url `{site_url}`")

    def repl(match: re.Match) -> str:
        url = match.group("url")
        if not url.startswith("/") or url.startswith(_URL_SKIP_PREFIXES):
            return match.group(0)
        absolute = join_root_url(site_url, url)
        return f"{match.group('prefix')}{absolute}{match.group('suffix')}"

    return _URL_ATTR_RE.sub(repl, html)


@dataclass
class PageMeta:
    """Meta information of an HTML page.

    Attributes:
        title: Page title.
        description: Page description.
        url: Canonical URL, if declared.
        image: Preview image URL, if declared.
    """

    title: str = ""
    description: str = ""
    url: str | None = None
    image: str | None = None

    def truncate(self, limit: int = META_TEXT_LIMIT) -> PageMeta:
        self.title = self.title[:limit]
        self.description = self.description[:limit]
        return self


def _attr(tag, name: str) -> str | None:
    # Some attribute values are empty, such as <meta property="og:title" content="" />
    value = tag.get(name)
    if value is None:
        return None
    value = value.strip()
    return value or None


def parse_html_meta(html: bytes | str) -> PageMeta:
    """Parse preview meta information from a page.

    Only ``<head>`` content is considered. The ``<title>`` element wins
    over ``og:title``/``twitter:title``; the other fields take the first
    non-empty declaration.

    Args:
        html: Raw page body.

    Returns:
        PageMeta truncated to 200 characters per text field.

    Raises:
        ExtractError: If the body cannot be decoded or parsed.
    """
    if isinstance(html, bytes):
        html = html.decode("utf-8", errors="replace")
    try:
        soup = BeautifulSoup(html, "html.parser")
    except Exception as exc:  # html.parser raises assorted errors on broken markup
        raise ExtractError(f"Malformed page: {exc}") from exc

    meta = PageMeta()
    head = soup.head
    if head is None:
        return meta

    for tag in head.find_all("meta"):
        name = _attr(tag, "name") or _attr(tag, "property")
        content = _attr(tag, "content")
        if not name or content is None:
            continue
        if name in _DESCRIPTION_NAMES and not meta.description:
            meta.description = content
        elif name in _TITLE_NAMES and not meta.title:
            meta.title = content
        elif name in _IMAGE_NAMES and meta.image is None:
            meta.image = content
        elif name in _URL_NAMES and meta.url is None:
            meta.url = content

    title = head.find("title")
    if title is not None:
        text = title.get_text().strip()
        if text:
            meta.title = text

    return meta.truncate()
