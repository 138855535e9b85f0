"""genkit content-build engine.

This package is the engine under static site generators: a site generator
implements a Generator that turns its source directory into a tree of
entities, and genkit takes care of the rest:

- a Markdown transducer with built-in fenced blocks (url-preview, callout,
  quote), syntax highlighting, heading anchors and a table of contents;
- a persisted, deduplicated cache of URL preview metadata;
- incremental builds on file changes, a live reloading dev server and a
  link linter, exposed through the Genkit command line application.
"""

__version__ = "0.1.0"

from .context import Context  # noqa: E402
from .entity import Entity, EntityList, Generator  # noqa: E402
from .cli import Genkit  # noqa: E402
from .markdown import MarkdownVisitor, render_html  # noqa: E402

__all__ = [
    "Context",
    "Entity",
    "EntityList",
    "Generator",
    "Genkit",
    "MarkdownVisitor",
    "__version__",
    "render_html",
]
