"""Render context shared by the entities of one build."""

from __future__ import annotations

from typing import Any


class Context:
    """Template variables passed down the entity tree.

    Each entity receives its own clone, so values inserted while rendering
    one entity never leak into its siblings.
    """

    def __init__(self, values: dict[str, Any] | None = None):
        self._values: dict[str, Any] = dict(values or {})

    def insert(self, key: str, value: Any) -> Context:
        self._values[key] = value
        return self

    def get(self, key: str, default: Any = None) -> Any:
        return self._values.get(key, default)

    def clone(self) -> Context:
        return Context(self._values)

    def to_dict(self) -> dict[str, Any]:
        """Shallow copy of the values, ready for ``Template.render``."""
        return dict(self._values)

    def __contains__(self, key: object) -> bool:
        return key in self._values

    def __repr__(self) -> str:
        return f"Context({self._values!r})"
