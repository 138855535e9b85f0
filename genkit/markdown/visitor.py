"""Extension point for custom Markdown rendering."""

from __future__ import annotations


class MarkdownVisitor:
    """Renders inline code and unknown fenced blocks.

    Subclass and override either method; returning ``None`` declines and
    lets the default rendering happen. One visitor is shared by every render
    call, so implementations must not keep per-document state.
    """

    def visit_code(self, code: str) -> str | None:
        """Render an inline code run outside headings."""
        return None

    def visit_custom_block(self, name: str, content: str) -> str | None:
        """Render a fenced block whose name is not a built-in block.

        Args:
            name: Fence name, e.g. ``mermaid`` for a ```` ```mermaid ```` block.
            content: Raw block text.
        """
        return None
