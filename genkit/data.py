"""Preview cache for genkit.

The cache maps a URL to its fetched preview metadata. It deduplicates
concurrent fetches of the same URL (singleflight), keeps successful
records for the lifetime of the process and persists them to a JSON file
at the source root so restarts and rebuilds never refetch.

Key classes:
- PreviewRecord: Immutable title/description/image triple for one URL.
- Finished / Failed: The outcome delivered to every waiter of a fetch.
- PreviewCache: The store, handed to every component that needs it.

Fetch tasks run on the asyncio loop attached with ``attach_loop``. Readers
on worker threads wait on the ``concurrent.futures.Future`` returned by
``get_or_fetch``; they must never do so on the loop thread itself.
"""

from __future__ import annotations

import asyncio
import json
import logging
import threading
from collections.abc import Awaitable, Callable
from concurrent.futures import Future
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Union

from .config import DEFAULT_DATA_FILENAME, MarkdownOptions
from .errors import CacheError, ExtractError
from .fetch import fetch_url
from .html_utils import META_TEXT_LIMIT, PageMeta, parse_html_meta

logger = logging.getLogger(__name__)

Fetcher = Callable[[str], Awaitable[bytes]]
Extractor = Callable[[Union[bytes, str]], PageMeta]


@dataclass(frozen=True)
class PreviewRecord:
    """Fetched preview metadata of one URL.

    Persisted as a positional ``[title, description, image]`` array to
    keep the data file small.
    """

    title: str
    description: str
    image: str | None = None

    def to_json(self) -> list[str]:
        return [self.title, self.description, self.image or ""]

    @classmethod
    def from_json(cls, value: Any) -> PreviewRecord:
        """Deserialize a 0 to 3 element array.

        Missing trailing fields default to empty strings and an empty image
        becomes ``None``.
        """
        if not isinstance(value, list) or len(value) > 3:
            raise CacheError(f"Expected a 2 or 3 elements array, got {value!r}")
        if not all(isinstance(item, str) for item in value):
            raise CacheError(f"Expected an array of strings, got {value!r}")
        title = value[0] if len(value) > 0 else ""
        description = value[1] if len(value) > 1 else ""
        image = value[2] if len(value) > 2 else None
        return cls(title=title or "", description=description or "", image=image or None)

    @classmethod
    def from_meta(cls, meta: PageMeta) -> PreviewRecord:
        return cls(
            title=meta.title[:META_TEXT_LIMIT],
            description=meta.description[:META_TEXT_LIMIT],
            image=meta.image or None,
        )


@dataclass(frozen=True)
class Finished:
    record: PreviewRecord


@dataclass(frozen=True)
class Failed:
    reason: str


PreviewOutcome = Union[Finished, Failed]


def _resolved(outcome: PreviewOutcome) -> Future:
    future: Future = Future()
    future.set_result(outcome)
    return future


class PreviewCache:
    """URL preview store with in-flight deduplication and persistence.

    Attributes:
        path: Location of the persisted JSON file.
    """

    def __init__(
        self,
        path: Path,
        fetcher: Fetcher = fetch_url,
        extractor: Extractor = parse_html_meta,
    ):
        self.path = Path(path)
        self._fetcher = fetcher
        self._extractor = extractor
        self._lock = threading.Lock()
        self._options_lock = threading.Lock()
        self._previews: dict[str, PreviewRecord] = {}
        self._inflight: dict[str, Future] = {}
        self._markdown_options = MarkdownOptions()
        self._dirty = False
        # Bumped on every insertion so an export racing an insertion stays dirty.
        self._version = 0
        self._loaded = False
        self._loop: asyncio.AbstractEventLoop | None = None

    @classmethod
    def open(
        cls,
        source: Path,
        filename: str = DEFAULT_DATA_FILENAME,
        **kwargs: Any,
    ) -> PreviewCache:
        """Create a cache backed by ``<source>/<filename>`` and load it."""
        cache = cls(Path(source) / filename, **kwargs)
        cache.load()
        return cache

    def load(self) -> bool:
        """Load persisted previews once.

        Returns:
            False if the cache was already loaded, True otherwise.

        Raises:
            CacheError: If the file is not valid JSON or has the wrong shape.
        """
        with self._lock:
            if self._loaded:
                return False
            self._loaded = True
            if not self.path.exists():
                return True
            try:
                payload = json.loads(self.path.read_text(encoding="utf-8"))
            except json.JSONDecodeError as exc:
                raise CacheError(f"Invalid data file {self.path}: {exc}") from exc
            if not isinstance(payload, dict):
                raise CacheError(f"Invalid data file {self.path}: expected an object")
            previews = payload.get("urlPreviews", {})
            if not isinstance(previews, dict):
                raise CacheError(f"Invalid data file {self.path}: urlPreviews")
            for url, value in previews.items():
                self._previews[url] = PreviewRecord.from_json(value)
            return True

    def attach_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        """Bind the event loop that runs fetch tasks."""
        self._loop = loop

    @property
    def markdown_options(self) -> MarkdownOptions:
        with self._options_lock:
            return self._markdown_options

    def set_markdown_options(self, options: MarkdownOptions) -> None:
        options.validate()
        with self._options_lock:
            self._markdown_options = options

    @property
    def is_dirty(self) -> bool:
        with self._lock:
            return self._dirty

    def __len__(self) -> int:
        with self._lock:
            return len(self._previews)

    def get(self, url: str) -> PreviewRecord | None:
        """Return the cached record for ``url`` without waiting on a fetch."""
        with self._lock:
            return self._previews.get(url)

    def all_previews(self) -> dict[str, PreviewRecord]:
        """Snapshot of every cached record."""
        with self._lock:
            return dict(self._previews)

    def insert(self, url: str, record: PreviewRecord) -> None:
        with self._lock:
            self._previews[url] = record
            self._dirty = True
            self._version += 1

    def get_or_fetch(self, url: str) -> tuple[bool, Future]:
        """Return the preview outcome handle for ``url``, fetching if needed.

        Args:
            url: URL to preview.

        Returns:
            Tuple of (is_new_request, handle). The handle resolves to a
            Finished or Failed outcome; concurrent callers for the same URL
            share one handle and one fetch.

        Raises:
            RuntimeError: If a fetch is needed and no loop is attached.
        """
        with self._lock:
            record = self._previews.get(url)
            if record is not None:
                return False, _resolved(Finished(record))
            handle = self._inflight.get(url)
            if handle is not None:
                return False, handle
            if self._loop is None or self._loop.is_closed():
                raise RuntimeError("The preview cache is not attached to an event loop")
            # The task removes its entry under this lock, so it is registered first.
            handle = asyncio.run_coroutine_threadsafe(self._fetch(url), self._loop)
            self._inflight[url] = handle
        return True, handle

    async def _fetch(self, url: str) -> PreviewOutcome:
        # The entry goes away however the task ends, cancellation included,
        # so a later request can fetch again.
        try:
            return await self._resolve(url)
        finally:
            with self._lock:
                self._inflight.pop(url, None)

    async def _resolve(self, url: str) -> PreviewOutcome:
        try:
            raw = await self._fetcher(url)
        except Exception as exc:  # any fetch failure degrades to a Failed outcome
            return Failed(str(exc) or type(exc).__name__)

        try:
            record = PreviewRecord.from_meta(self._extractor(raw))
        except ExtractError as exc:
            logger.debug("Meta extraction failed for %s: %s", url, exc)
            record = PreviewRecord.from_meta(PageMeta())
        except Exception as exc:  # a broken extractor must not abort the build
            logger.warning("Meta extractor crashed on %s", url, exc_info=True)
            return Failed(f"{type(exc).__name__}: {exc}")
        with self._lock:
            self._previews[url] = record
            self._dirty = True
            self._version += 1
        return Finished(record)

    def to_json(self) -> str:
        with self._lock:
            previews = {url: self._previews[url].to_json() for url in sorted(self._previews)}
        return json.dumps({"urlPreviews": previews}, indent=2, ensure_ascii=False)

    def export(self, directory: Path | None = None) -> bool:
        """Persist the previews if anything changed since the last export.

        An empty cache never creates a file and an unmodified cache is never
        rewritten, so a data file inside a watched directory cannot trigger
        rebuild loops.

        Args:
            directory: Optional directory overriding the configured location;
                the file name is kept.

        Returns:
            True if the file was written.
        """
        target = self.path if directory is None else Path(directory) / self.path.name
        with self._lock:
            if not self._dirty:
                return False
            version = self._version
            empty = not self._previews
        written = False
        if not empty:
            target.write_text(self.to_json(), encoding="utf-8")
            written = True
        with self._lock:
            self._dirty = self._version != version
        return written
