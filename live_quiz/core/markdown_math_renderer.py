"""Markdown + LaTeX rendering for question and answer markup.

The server hands clients HTML fragments and leaves the math to MathJax in the
browser, so the same fragment works on the instructor projector and on
student devices. The core never looks inside the markup.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from markdown_it import MarkdownIt


@dataclass(slots=True)
class MarkdownMathRenderer:
    """Converts markdown-with-math into HTML fragments."""

    enable_html: bool = False
    _markdown: MarkdownIt = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._markdown = (
            MarkdownIt("commonmark", {"html": self.enable_html})
            .enable("table")
            .enable("strikethrough")
        )

    def render_fragment(self, markdown_text: str) -> str:
        """Render a markdown string into an HTML fragment."""

        sanitized = markdown_text.strip()
        if not sanitized:
            return "<p><em>No content provided.</em></p>"
        return self._markdown.render(sanitized)

    def render_inline(self, markdown_text: str) -> str:
        """Render a short answer string without wrapping it in a paragraph."""

        return self._markdown.renderInline(markdown_text.strip())


renderer = MarkdownMathRenderer()
# MarkdownIt is safe for concurrent read-only renders, so request handlers
# share this instance.
