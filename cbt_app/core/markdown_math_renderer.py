"""Markdown + LaTeX rendering of question text for student-facing views.

Question text is authored as Markdown with ``$...$`` / ``$$...$$`` math.
The server renders the Markdown to an HTML fragment and leaves the math
delimiters untouched so MathJax can typeset them in the browser. Math spans
are swapped for placeholders before Markdown runs, otherwise ``a_1 * b_2``
inside a formula would come back as emphasis.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import html
import re

from markdown_it import MarkdownIt

_MATH_PATTERN = re.compile(r"\$\$.+?\$\$|\$[^$\n]+?\$", re.DOTALL)
_PLACEHOLDER_PATTERN = re.compile(r"CBTMATH(\d+)X")


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
        """Render a markdown string into a block-level HTML fragment."""

        sanitized = markdown_text.strip()
        if not sanitized:
            return "<p><em>No content provided.</em></p>"
        protected, spans = _protect_math(sanitized)
        return _restore_math(self._markdown.render(protected), spans)

    def render_inline(self, markdown_text: str) -> str:
        """Render a single line (an answer option) without wrapping paragraphs."""

        protected, spans = _protect_math(markdown_text.strip())
        return _restore_math(self._markdown.renderInline(protected), spans)


def _protect_math(text: str) -> tuple[str, list[str]]:
    spans: list[str] = []

    def stash(match: re.Match[str]) -> str:
        spans.append(match.group(0))
        return f"CBTMATH{len(spans) - 1}X"

    return _MATH_PATTERN.sub(stash, text), spans


def _restore_math(rendered: str, spans: list[str]) -> str:
    if not spans:
        return rendered
    return _PLACEHOLDER_PATTERN.sub(
        lambda match: html.escape(spans[int(match.group(1))], quote=False),
        rendered,
    )


# MarkdownIt is safe to share for read-only renders across request threads.
renderer = MarkdownMathRenderer()
