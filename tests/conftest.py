import asyncio
import threading

import pytest

from genkit.data import PreviewCache
from genkit.errors import FetchError

PAGE = b"""<html><head>
<title>Example Page</title>
<meta name="description" content="An example page">
<meta property="og:image" content="https://example.com/cover.png">
</head><body><p>Body</p></body></html>"""


class CountingFetcher:
    """Async fetcher stand-in that records every request."""

    def __init__(self, pages=None, failures=None, delay=0.0):
        self.pages = pages or {}
        # url -> number of upcoming requests that fail
        self.failures = dict(failures or {})
        self.delay = delay
        self.calls = []
        self._lock = threading.Lock()

    async def __call__(self, url):
        with self._lock:
            self.calls.append(url)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.failures.get(url, 0) > 0:
            self.failures[url] -= 1
            raise FetchError(f"{url} responded 500")
        return self.pages.get(url, PAGE)


@pytest.fixture
def background_loop():
    loop = asyncio.new_event_loop()
    thread = threading.Thread(target=loop.run_forever, daemon=True)
    thread.start()
    yield loop
    loop.call_soon_threadsafe(loop.stop)
    thread.join(timeout=5)
    loop.close()


@pytest.fixture
def fetcher():
    return CountingFetcher()


@pytest.fixture
def cache(tmp_path, background_loop, fetcher):
    cache = PreviewCache.open(tmp_path, fetcher=fetcher)
    cache.attach_loop(background_loop)
    return cache
