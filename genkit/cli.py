"""Command-line interface for genkit applications.

A site generator wraps its Generator in a Genkit application and calls
``bootstrap``; the application assembles a click group with the built-in
commands plus any command the generator adds.

Commands:
- build: Build the site, optionally watching for changes.
- serve: Run the development server with live reload.
- lint: Check the HTTP status of every cached URL preview.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import click

from . import __version__
from .config import load_config
from .entity import Generator
from .errors import BuildError, ConfigError, GenkitError, format_error_message
from .markdown.visitor import MarkdownVisitor


def _configure_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


def _report_failure(title: str, exc: Exception) -> None:
    """Display a user-friendly error message."""
    click.echo(click.style(title, fg="red", bold=True), err=True)
    if isinstance(exc, BuildError):
        click.echo(click.style(f"  Source: {exc.source_path}", fg="yellow"), err=True)
        message = exc.message
    else:
        message = format_error_message(exc)
    click.echo(click.style(f"  Error: {message}", fg="white"), err=True)


class Genkit:
    """A site generator application.

    Attributes:
        name: Program name, also used for the dev server build directory.
        generator: Site-specific entity factory.
        data_filename: Name of the preview cache file, overriding genkit.yaml.
        banner: Optional text printed when the dev server starts.
        visitor: Optional custom block visitor.
    """

    def __init__(
        self,
        name: str,
        generator: Generator,
        data_filename: str | None = None,
    ):
        self.name = name
        self.generator = generator
        self.data_filename = data_filename
        self.banner: str | None = None
        self.visitor: MarkdownVisitor | None = None
        self._commands: list[click.Command] = []

    def set_banner(self, banner: str) -> Genkit:
        self.banner = banner
        return self

    def set_markdown_visitor(self, visitor: MarkdownVisitor) -> Genkit:
        self.visitor = visitor
        return self

    def add_command(self, command: click.Command) -> Genkit:
        self._commands.append(command)
        return self

    def load_config(self, source: Path) -> dict[str, Any]:
        try:
            config = load_config(source)
        except ConfigError as exc:
            _report_failure("Invalid configuration:", exc)
            raise SystemExit(1) from None
        if self.data_filename:
            config["data_filename"] = self.data_filename
        _configure_logging(bool(config.get("debug")))
        return config

    def create_cli(self) -> click.Group:
        """Assemble the click group of this application."""
        app = self

        @click.group(name=self.name)
        @click.version_option(version=__version__, prog_name=self.name)
        def cli():
            pass

        cli.help = f"{self.name} static site generator."

        @cli.command()
        @click.argument("source", required=False, default=".")
        @click.argument("dest", required=False)
        @click.option("-w", "--watch", is_flag=True, help="Enable watching")
        def build(source: str, dest: str | None, watch: bool):
            """Build the site."""
            from .build import watch_build

            source_path = Path(source)
            config = app.load_config(source_path)
            dest = dest or str(config["dest"])
            try:
                asyncio.run(
                    watch_build(
                        app.generator,
                        source_path,
                        Path(dest),
                        watch=watch,
                        visitor=app.visitor,
                        config=config,
                    )
                )
            except KeyboardInterrupt:
                return
            except (GenkitError, OSError) as exc:
                if config.get("debug"):
                    raise
                _report_failure("Build failed:", exc)
                raise SystemExit(1) from None
            click.echo(f"Build success! The build directory is `{dest}`.")

        @cli.command()
        @click.argument("source", required=False, default=".")
        @click.option("-p", "--port", type=int, default=None, help="The port to listen")
        @click.option(
            "-o",
            "--open",
            "open_browser",
            is_flag=True,
            help="Auto open browser after server started",
        )
        def serve(source: str, port: int | None, open_browser: bool):
            """Serve the site."""
            from .server import DevServer

            source_path = Path(source)
            config = app.load_config(source_path)
            server = DevServer(
                app.generator,
                source_path,
                port or int(config["port"]),
                name=app.name,
                open_browser=open_browser,
                banner=app.banner,
                visitor=app.visitor,
                config=config,
            )
            try:
                server.start()
            except (GenkitError, OSError) as exc:
                if config.get("debug"):
                    raise
                _report_failure("Serve failed:", exc)
                raise SystemExit(1) from None

        @cli.command()
        @click.argument("source", required=False, default=".")
        @click.option(
            "--ci",
            is_flag=True,
            help="Enable CI mode. Exit with a non-zero code if lint failed.",
        )
        def lint(source: str, ci: bool):
            """Lint the project."""
            from .lint import lint_project

            source_path = Path(source)
            config = app.load_config(source_path)
            try:
                success = asyncio.run(
                    lint_project(source_path, str(config["data_filename"]))
                )
            except (GenkitError, OSError) as exc:
                if config.get("debug"):
                    raise
                _report_failure("Lint failed:", exc)
                raise SystemExit(1) from None
            if not success and ci:
                raise SystemExit(1)

        for command in self._commands:
            cli.add_command(command)
        return cli

    def bootstrap(self, args: Sequence[str] | None = None) -> None:
        """Parse the command line and run the selected command."""
        self.create_cli().main(args=args, prog_name=self.name)
