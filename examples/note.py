"""A minimal genkit site generator.

Renders every ``*.md`` file of the source directory into
``<dest>/<stem>/index.html``::

    python examples/note.py build ./notes
    python examples/note.py serve ./notes --open
"""

from __future__ import annotations

from pathlib import Path

import click
from jinja2 import ChoiceLoader, DictLoader

from genkit import Entity, EntityList, Generator, Genkit

PAGE_TEMPLATE = """<!doctype html>
<html>
<head><title>{{ title }}</title></head>
<body>
<article>{{ markdown_to_html(markdown) }}</article>
</body>
</html>
"""


class Note(Entity):
    def __init__(self, path: Path):
        self.path = path
        self.markdown = ""

    def parse(self, source: Path) -> None:
        self.markdown = self.path.read_text(encoding="utf-8")

    def render(self, env, context, dest: Path) -> None:
        context.insert("title", self.path.stem).insert("markdown", self.markdown)
        target = dest / self.path.stem / "index.html"
        target.parent.mkdir(parents=True, exist_ok=True)
        page = env.get_template("note.jinja").render(context.to_dict())
        target.write_text(page, encoding="utf-8")


class NoteGenerator(Generator):
    def on_load(self, source: Path) -> Entity:
        return EntityList(Note(path) for path in sorted(source.glob("*.md")))

    def on_extend_environment(self, source, env, entity):
        env.loader = ChoiceLoader([DictLoader({"note.jinja": PAGE_TEMPLATE}), env.loader])
        return env


@click.command()
def version():
    """Print the version."""
    click.echo("note 0.1.0")


if __name__ == "__main__":
    Genkit("note", NoteGenerator()).set_banner("NOTE").add_command(version).bootstrap()
