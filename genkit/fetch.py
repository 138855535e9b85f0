"""Page fetching for URL previews."""

from __future__ import annotations

import httpx

from .errors import FetchError

FETCH_TIMEOUT = 10.0
USER_AGENT = "Mozilla/5.0 (compatible; genkit-preview/0.1)"


async def fetch_url(url: str, timeout: float = FETCH_TIMEOUT) -> bytes:
    """Download a page body, following redirects.

    Args:
        url: Absolute URL to fetch.
        timeout: Request timeout in seconds.

    Returns:
        The raw response body.

    Raises:
        FetchError: On transport failures and non-2xx final responses.
    """
    try:
        async with httpx.AsyncClient(
            follow_redirects=True,
            timeout=timeout,
            headers={"User-Agent": USER_AGENT},
        ) as client:
            resp = await client.get(url)
            resp.raise_for_status()
            return resp.content
    except httpx.HTTPStatusError as exc:
        raise FetchError(f"{url} responded {exc.response.status_code}") from exc
    except httpx.HTTPError as exc:
        raise FetchError(f"Failed to fetch {url}: {exc}") from exc
