"""Single build cycle.

GenkitEngine runs one build of a site: it asks the generator for the root
entity, parses it, prepares the template environment, renders the entity
tree and hands control back to the generator.
"""

from __future__ import annotations

import time
from pathlib import Path
from typing import TYPE_CHECKING

from jinja2 import TemplateSyntaxError

from .context import Context
from .errors import BuildError, format_error_message
from .jinja import init_environment

if TYPE_CHECKING:
    from .data import PreviewCache
    from .entity import Generator
    from .markdown.visitor import MarkdownVisitor


class GenkitEngine:
    """Runs build cycles for one source/destination pair.

    Attributes:
        source: Source directory of the site.
        dest: Destination directory, created if missing.
        generator: Site-specific entity factory.
        cache: Preview cache shared by every build.
        visitor: Optional custom block visitor for Markdown rendering.
    """

    def __init__(
        self,
        source: Path,
        dest: Path,
        generator: Generator,
        cache: PreviewCache,
        visitor: MarkdownVisitor | None = None,
    ):
        self.source = Path(source)
        self.dest = Path(dest)
        self.dest.mkdir(parents=True, exist_ok=True)
        self.generator = generator
        self.cache = cache
        self.visitor = visitor

    def build(self, reload: bool = False) -> None:
        """Run one build cycle.

        Args:
            reload: Whether the build was triggered by a change.

        Raises:
            BuildError: If any stage of the cycle fails.
        """
        started = time.perf_counter()
        try:
            self._build(reload)
        except BuildError:
            raise
        except TemplateSyntaxError as exc:
            raise BuildError(
                self.source,
                f"Template syntax error on line {exc.lineno}: {exc.message}",
                exc,
            ) from exc
        except Exception as exc:
            raise BuildError(self.source, format_error_message(exc), exc) from exc
        elapsed_ms = int((time.perf_counter() - started) * 1000)
        print(f"Build cost: {elapsed_ms}ms")

    def _build(self, reload: bool) -> None:
        source = self.source
        if reload:
            entity = self.generator.on_reload(source)
        else:
            entity = self.generator.on_load(source)

        entity.parse(source)

        env = self.generator.on_extend_environment(
            source, init_environment(self.cache, self.visitor), entity
        )

        options = self.generator.get_markdown_options(entity)
        if options is not None:
            self.cache.set_markdown_options(options)

        context = Context()
        entity.render(env, context.clone(), self.dest)
        self.generator.on_render(env, context, entity)
