"""Link linting for cached URL previews.

Every URL in the preview cache is checked with a HEAD request and
classified by its status code. Redirects are not followed, so a moved page
shows up as redirected rather than as the page it points to.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from enum import Enum
from pathlib import Path

import httpx

from .config import DEFAULT_DATA_FILENAME
from .data import PreviewCache
from .errors import FetchError

LINT_TIMEOUT = 10.0


class UrlCondition(Enum):
    NORMAL = "normal"
    NOT_FOUND = "not_found"
    REDIRECTED = "redirected"
    SERVER_ERROR = "server_error"


# Report order and wording of each non-normal condition.
REPORTS = (
    (UrlCondition.NOT_FOUND, "are 404"),
    (UrlCondition.REDIRECTED, "have been redirected"),
    (UrlCondition.SERVER_ERROR, "have a server error"),
)


def classify_status(status_code: int) -> UrlCondition:
    if status_code == 404:
        return UrlCondition.NOT_FOUND
    if 300 <= status_code < 400:
        return UrlCondition.REDIRECTED
    if 500 <= status_code < 600:
        return UrlCondition.SERVER_ERROR
    return UrlCondition.NORMAL


async def check_url(client: httpx.AsyncClient, url: str) -> tuple[str, UrlCondition]:
    """Classify one URL by the status of a HEAD request.

    Raises:
        FetchError: If the request could not be sent.
    """
    try:
        resp = await client.head(url)
    except httpx.HTTPError as exc:
        raise FetchError(f"Failed to check {url}: {exc}") from exc
    return url, classify_status(resp.status_code)


async def lint_previews(
    cache: PreviewCache,
    client: httpx.AsyncClient | None = None,
) -> dict[UrlCondition, list[str]]:
    """Check every cached URL concurrently.

    Args:
        cache: Loaded preview cache.
        client: Optional client, a new one is created by default.

    Returns:
        Non-normal URLs grouped by condition, each group sorted.
    """
    urls = sorted(cache.all_previews())
    if client is None:
        async with httpx.AsyncClient(timeout=LINT_TIMEOUT) as owned:
            results = await asyncio.gather(*(check_url(owned, url) for url in urls))
    else:
        results = await asyncio.gather(*(check_url(client, url) for url in urls))

    conditions: dict[UrlCondition, list[str]] = defaultdict(list)
    for url, condition in results:
        if condition is not UrlCondition.NORMAL:
            conditions[condition].append(url)
    return dict(conditions)


async def lint_project(
    source: Path | str,
    data_filename: str = DEFAULT_DATA_FILENAME,
    client: httpx.AsyncClient | None = None,
) -> bool:
    """Lint the cached previews of a project and print the findings.

    Args:
        source: Source directory holding the data file.
        data_filename: Name of the data file.
        client: Optional HTTP client.

    Returns:
        True if every URL is normal.
    """
    cache = PreviewCache.open(Path(source), data_filename)
    conditions = await lint_previews(cache, client)
    for condition, statement in REPORTS:
        urls = conditions.get(condition)
        if not urls:
            continue
        print(f"\nThe following URLs {statement}:")
        for url in urls:
            print(f"- {url}")
    return not conditions
