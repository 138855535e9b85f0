"""Build and watch orchestration.

watch_build runs the first build of a site and, in watch mode, keeps
rebuilding it whenever the source tree changes:

- filesystem events from a watchdog observer are pushed onto the event loop
  and coalesced by a Debouncer with a fixed window;
- a batch rebuilds only if it holds a content change (see is_content_change);
- builds run on a single worker thread, so at most one is in flight;
- after a successful rebuild, reload subscribers are notified and the
  preview cache is exported if dirty;
- on exit or cancellation the cache is exported one last time.

Key classes:
- BuildSignals: First-build event and reload broadcast.
- Debouncer: Coalesces bursts of events into batches.
"""

from __future__ import annotations

import asyncio
import logging
import os
import threading
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import TYPE_CHECKING, Any

from watchdog.events import (
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from .config import DEFAULT_DATA_FILENAME, load_config
from .data import PreviewCache
from .engine import GenkitEngine
from .errors import BuildError

if TYPE_CHECKING:
    from .entity import Generator
    from .markdown.visitor import MarkdownVisitor

logger = logging.getLogger(__name__)

CONTENT_EVENT_TYPES = frozenset(
    {EVENT_TYPE_MODIFIED, EVENT_TYPE_CREATED, EVENT_TYPE_DELETED, EVENT_TYPE_MOVED}
)
# Reloaded in debug mode so built-in templates and assets can be edited live.
DEBUG_WATCH_DIRS = ("templates", "static")


class BuildSignals:
    """Build notifications for the dev server.

    ``first_build`` is set once the initial build finished, whatever its
    mode. Every subscriber gets its own bounded queue receiving one item per
    successful rebuild; a subscriber that falls behind loses its oldest
    pending signals instead of blocking the build loop.

    ``subscribe``, ``unsubscribe`` and ``notify_reload`` must be called on the
    event loop thread.
    """

    def __init__(self, maxsize: int = 16):
        self.first_build = threading.Event()
        self._maxsize = maxsize
        self._subscribers: set[asyncio.Queue] = set()

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._maxsize)
        self._subscribers.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        self._subscribers.discard(queue)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def notify_reload(self) -> None:
        for queue in list(self._subscribers):
            if queue.full():
                queue.get_nowait()
            queue.put_nowait(None)


class Debouncer:
    """Coalesce events arriving within a fixed window.

    The window opens with the first event of a batch and is not extended by
    later ones. Events pushed after it closes start the next batch.
    """

    def __init__(self, window: float = 0.5):
        self.window = window
        self._queue: asyncio.Queue = asyncio.Queue()

    def push(self, event: Any) -> None:
        self._queue.put_nowait(event)

    async def next_batch(self) -> list[Any]:
        """Wait for the next batch of events."""
        batch = [await self._queue.get()]
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.window
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            try:
                batch.append(await asyncio.wait_for(self._queue.get(), remaining))
            except asyncio.TimeoutError:
                break
        return batch


def _is_under(path: Path, directories: Iterable[Path]) -> bool:
    for directory in directories:
        try:
            path.relative_to(directory)
            return True
        except ValueError:
            pass
    return False


def is_content_change(event: FileSystemEvent, ignored: Iterable[Path] = ()) -> bool:
    """Whether a filesystem event should trigger a rebuild.

    Args:
        event: A watchdog event.
        ignored: Directories whose events never count, such as the build output.

    Returns:
        True for file modifications, creations, deletions and moves outside
        the ignored directories.
    """
    if event.event_type not in CONTENT_EVENT_TYPES:
        return False
    # Directory mtimes change whenever a child does; the child event is enough.
    if event.is_directory and event.event_type == EVENT_TYPE_MODIFIED:
        return False
    ignored = list(ignored)
    paths = [event.src_path]
    dest_path = getattr(event, "dest_path", "")
    if dest_path:
        paths.append(dest_path)
    return any(not _is_under(Path(os.fsdecode(path)), ignored) for path in paths)


class _ChangeHandler(FileSystemEventHandler):
    """Forwards watchdog events from the observer thread to the event loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop, debouncer: Debouncer):
        super().__init__()
        self.loop = loop
        self.debouncer = debouncer

    def on_any_event(self, event):
        self.loop.call_soon_threadsafe(self.debouncer.push, event)


def _export_quietly(cache: PreviewCache) -> None:
    try:
        cache.export()
    except OSError:
        logger.exception("Failed to export %s", cache.path)


async def watch_build(
    generator: Generator,
    source: Path | str,
    dest: Path | str,
    *,
    watch: bool = False,
    signals: BuildSignals | None = None,
    cache: PreviewCache | None = None,
    visitor: MarkdownVisitor | None = None,
    config: dict[str, Any] | None = None,
) -> None:
    """Build a site once, then optionally rebuild it on every change.

    Args:
        generator: Site-specific entity factory.
        source: Source directory; it must exist.
        dest: Destination directory.
        watch: Keep watching the source directory after the first build.
        signals: Optional build notifications, used by the dev server.
        cache: Preview cache, opened from the source directory by default.
        visitor: Optional custom block visitor.
        config: Engine configuration, loaded from the source directory by default.

    Raises:
        BuildError: If the first build fails.
        OSError: If the source directory is missing or the cache cannot be
            exported after a one-shot build.
    """
    source = Path(source).resolve(strict=True)
    dest = Path(dest).resolve()
    if config is None:
        config = load_config(source)
    if cache is None:
        cache = PreviewCache.open(source, config.get("data_filename", DEFAULT_DATA_FILENAME))
    else:
        cache.load()

    loop = asyncio.get_running_loop()
    cache.attach_loop(loop)
    engine = GenkitEngine(source, dest, generator, cache, visitor)
    # Single worker: a rebuild never overlaps another build.
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="genkit-build")
    try:
        await loop.run_in_executor(executor, engine.build, False)
        if signals is not None:
            signals.first_build.set()

        if not watch:
            cache.export()
            return

        await _watch(engine, executor, signals, config)
    finally:
        executor.shutdown(wait=False)


async def _watch(
    engine: GenkitEngine,
    executor: ThreadPoolExecutor,
    signals: BuildSignals | None,
    config: dict[str, Any],
) -> None:
    loop = asyncio.get_running_loop()
    debouncer = Debouncer(int(config.get("debounce_ms", 500)) / 1000)
    handler = _ChangeHandler(loop, debouncer)

    print("Watching...")
    observer = Observer()
    observer.schedule(handler, str(engine.source), recursive=True)
    if config.get("debug"):
        for name in DEBUG_WATCH_DIRS:
            path = Path(name)
            if path.exists():
                observer.schedule(handler, str(path.resolve()), recursive=True)
    observer.start()

    try:
        while True:
            batch = await debouncer.next_batch()
            if not any(is_content_change(event, (engine.dest,)) for event in batch):
                continue
            try:
                await loop.run_in_executor(executor, engine.build, True)
            except BuildError as exc:
                print(f"build error: {exc}")
                continue
            if signals is not None:
                signals.notify_reload()
            _export_quietly(engine.cache)
    finally:
        observer.stop()
        observer.join()
        # Persist whatever was fetched since the last successful rebuild.
        _export_quietly(engine.cache)
