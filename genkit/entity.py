"""Entities and generators.

An entity is one unit of a site (a page, a feed, a whole collection) that
goes through two stages during a build:

- **parse**: read what it needs from the source directory, such as
  rendering its Markdown to HTML.
- **render**: write its output files below the destination directory.

A generator creates the root entity of a site and hooks into the build.

Key classes:
- Entity: Base class with no-op stages.
- EntityList: A collection of entities processed in parallel.
- Generator: The site-specific factory plugged into the engine.
"""

from __future__ import annotations

import os
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from pathlib import Path
from typing import TYPE_CHECKING, Any, TypeVar

from jinja2 import Environment

if TYPE_CHECKING:
    from .config import MarkdownOptions
    from .context import Context

T = TypeVar("T")


class Entity:
    """Base entity. Both stages do nothing unless overridden."""

    def parse(self, source: Path) -> None:
        """Parse the entity from the source directory."""

    def render(self, env: Environment, context: Context, dest: Path) -> None:
        """Render the entity into the destination directory."""


def parallel_for_each(items: Iterable[T], func: Callable[[T], Any]) -> None:
    """Run ``func`` on every item in a thread pool, failing fast.

    The error that stopped the run is raised once every started call has
    settled; calls that have not started yet are cancelled.

    Args:
        items: Items to process.
        func: Callable applied to each item.
    """
    items = list(items)
    if not items:
        return
    if len(items) == 1:
        func(items[0])
        return

    max_workers = min(len(items), os.cpu_count() or 1)
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = [executor.submit(func, item) for item in items]
        done, pending = wait(futures, return_when=FIRST_EXCEPTION)
        for future in pending:
            future.cancel()
    # Units that had already failed when the wait returned come first.
    for group in ([f for f in futures if f in done], futures):
        for future in group:
            if future.cancelled():
                continue
            error = future.exception()
            if error is not None:
                raise error


class EntityList(Entity):
    """Entities parsed and rendered in parallel.

    ``None`` members are allowed and skipped, so optional parts of a site can
    be kept in place.
    """

    def __init__(self, entities: Iterable[Entity | None] = ()):
        self.entities: list[Entity | None] = list(entities)

    def __iter__(self):
        return iter(self.entities)

    def __len__(self) -> int:
        return len(self.entities)

    def append(self, entity: Entity | None) -> None:
        self.entities.append(entity)

    def _present(self) -> list[Entity]:
        return [entity for entity in self.entities if entity is not None]

    def parse(self, source: Path) -> None:
        parallel_for_each(self._present(), lambda entity: entity.parse(source))

    def render(self, env: Environment, context: Context, dest: Path) -> None:
        parallel_for_each(
            self._present(),
            lambda entity: entity.render(env, context.clone(), dest),
        )


class Generator(ABC):
    """Site-specific entity factory.

    Subclasses must implement ``on_load``; every other hook has a default.
    """

    @abstractmethod
    def on_load(self, source: Path) -> Entity:
        """Create the root entity for the first build."""

    def on_reload(self, source: Path) -> Entity:
        """Create the root entity for a rebuild triggered by a change."""
        return self.on_load(source)

    def on_extend_environment(
        self, source: Path, env: Environment, entity: Entity
    ) -> Environment:
        """Add site templates, globals or filters to the environment."""
        return env

    def get_markdown_options(self, entity: Entity) -> MarkdownOptions | None:
        """Markdown options for this build, or None to keep the current ones."""
        return None

    def on_render(self, env: Environment, context: Context, entity: Entity) -> None:
        """Called after the entity tree has been rendered."""
