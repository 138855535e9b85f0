"""Error taxonomy for genkit.

Fetch and extract failures never abort a build; they only degrade the
preview of one block. Parse and config errors abort the current build
cycle. Filesystem failures surface as plain ``OSError``.
"""

from __future__ import annotations

from pathlib import Path


class GenkitError(Exception):
    """Base class for every error raised by genkit."""


class FetchError(GenkitError):
    """Network or transport failure while fetching a page."""


class ExtractError(GenkitError):
    """A fetched page could not be turned into meta information."""


class ParseError(GenkitError):
    """Malformed built-in block syntax in a Markdown document."""


class ConfigError(GenkitError):
    """Invalid configuration value, such as an unknown highlight theme."""


class CacheError(GenkitError):
    """The persisted preview cache file is unreadable."""


class BuildError(GenkitError):
    """Error during a build cycle with source context.

    Attributes:
        source_path: Source directory (or file) being built.
        message: Human-readable error message.
        original_error: The original exception that was caught.
    """

    def __init__(
        self,
        source_path: Path,
        message: str,
        original_error: Exception | None = None,
    ):
        self.source_path = source_path
        self.message = message
        self.original_error = original_error
        super().__init__(f"{source_path}: {message}")


def format_error_message(exc: Exception) -> str:
    """Format an exception into a user-friendly error message.

    Args:
        exc: The exception to format.

    Returns:
        A human-readable error message.
    """
    error_type = type(exc).__name__
    error_msg = str(exc)

    if isinstance(exc, ParseError):
        return f"Invalid block syntax: {error_msg}"
    if isinstance(exc, ConfigError):
        return f"Invalid configuration: {error_msg}"
    # Jinja2 errors
    if error_type == "UndefinedError":
        return f"Undefined variable: {error_msg}"
    if error_type == "TemplateSyntaxError":
        return f"Template syntax error: {error_msg}"
    if error_type == "TemplateNotFound":
        return f"Template not found: {error_msg}"

    return f"{error_type}: {error_msg}"
