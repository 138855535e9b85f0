"""Configuration for genkit.

Engine settings come from an optional ``genkit.yaml`` at the project root,
with defaults applied. Markdown options are supplied per build by the
generator, usually from its own site configuration.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from pygments.styles import get_style_by_name
from pygments.util import ClassNotFound

from .errors import ConfigError

DEFAULT_DATA_FILENAME = "genkit.json"
DEFAULT_HIGHLIGHT_THEME = "monokai"

DEFAULT_CONFIG = {
    "dest": "build",
    "port": 3000,
    "data_filename": DEFAULT_DATA_FILENAME,
    "debounce_ms": 500,
    "debug": False,
}


@dataclass(frozen=True)
class MarkdownOptions:
    """Options consulted by the Markdown transducer.

    Attributes:
        highlight_code: Whether fenced code blocks are syntax highlighted.
        highlight_theme: Pygments style used for highlighting.
    """

    highlight_code: bool = True
    highlight_theme: str = DEFAULT_HIGHLIGHT_THEME

    def validate(self) -> MarkdownOptions:
        """Check the theme against the Pygments style registry.

        Raises:
            ConfigError: If the theme is unknown.
        """
        try:
            get_style_by_name(self.highlight_theme)
        except ClassNotFound:
            raise ConfigError(
                f"No highlight theme `{self.highlight_theme}` found"
            ) from None
        return self

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> MarkdownOptions:
        """Build options from a ``markdown:`` config section.

        Args:
            data: Mapping with optional ``highlight_code`` and ``highlight_theme``.

        Returns:
            Validated MarkdownOptions.
        """
        if not data:
            return cls()
        if not isinstance(data, Mapping):
            raise ConfigError("The markdown section must be a mapping")
        highlight_code = data.get("highlight_code", True)
        if not isinstance(highlight_code, bool):
            raise ConfigError("markdown.highlight_code must be a boolean")
        theme = data.get("highlight_theme", DEFAULT_HIGHLIGHT_THEME)
        if not isinstance(theme, str) or not theme:
            raise ConfigError("markdown.highlight_theme must be a non-empty string")
        return cls(highlight_code=highlight_code, highlight_theme=theme).validate()


def _env_flag(name: str) -> bool | None:
    value = os.environ.get(name)
    if value is None:
        return None
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_config(project_root: Path) -> dict[str, Any]:
    """Load engine configuration from genkit.yaml.

    Args:
        project_root: Root directory of the project.

    Returns:
        Dictionary containing configuration values, with defaults applied.
    """
    config_path = project_root / "genkit.yaml"
    config = DEFAULT_CONFIG.copy()
    if config_path.exists():
        with open(config_path, encoding="utf-8") as f:
            try:
                loaded = yaml.safe_load(f) or {}
            except yaml.YAMLError as exc:
                raise ConfigError(f"Invalid {config_path.name}: {exc}") from exc
            if isinstance(loaded, dict):
                config.update(loaded)
    debug = _env_flag("GENKIT_DEBUG")
    if debug is not None:
        config["debug"] = debug
    return config
