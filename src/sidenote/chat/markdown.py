"""Constrained markdown renderer for assistant replies.

Replies are parsed with markdown-it-py starting from the ``zero`` preset, so
only the enabled rules are recognised: fenced code blocks, inline code, ``#``
to ``###`` headings, ``**strong**``, ``*em*``, ``-`` and ``1.`` lists,
line breaks and blank-line paragraphs. Raw HTML is never passed through and
every text run is escaped by the renderer, so the only tags in the output are
the ones emitted here.
"""

from __future__ import annotations

from typing import Any, Optional, Sequence

from markdown_it import MarkdownIt
from markdown_it.common.utils import escapeHtml
from markdown_it.rules_core import StateCore
from markdown_it.token import Token

__all__ = ["ENABLED_RULES", "build_renderer", "render_markdown"]

ENABLED_RULES = ("fence", "heading", "list", "paragraph", "backticks", "emphasis", "newline")
# Reply headings sit below the panel's own <h3> title.
HEADING_LEVEL_OFFSET = 1
MAX_HEADING_LEVEL = 3

_RENDERER: Optional[MarkdownIt] = None


def _compact_blocks(state: StateCore) -> None:
    # Block tokens render without the newline markdown-it appends after them.
    for token in state.tokens:
        token.block = False


def _render_heading_open(self: Any, tokens: Sequence[Token], idx: int, options: Any, env: Any) -> str:
    token = tokens[idx]
    level = int(token.tag[1:])
    if level > MAX_HEADING_LEVEL:
        return "<p>" + escapeHtml(token.markup) + " "
    return f"<h{level + HEADING_LEVEL_OFFSET}>"


def _render_heading_close(self: Any, tokens: Sequence[Token], idx: int, options: Any, env: Any) -> str:
    level = int(tokens[idx].tag[1:])
    if level > MAX_HEADING_LEVEL:
        return "</p>"
    return f"</h{level + HEADING_LEVEL_OFFSET}>"


def _render_fence(self: Any, tokens: Sequence[Token], idx: int, options: Any, env: Any) -> str:
    content = tokens[idx].content
    if content.endswith("\n"):
        content = content[:-1]
    return f"<pre><code>{escapeHtml(content)}</code></pre>"


def build_renderer() -> MarkdownIt:
    renderer = MarkdownIt("zero", {"html": False}).enable(list(ENABLED_RULES))
    renderer.core.ruler.push("compact_blocks", _compact_blocks)
    renderer.add_render_rule("heading_open", _render_heading_open)
    renderer.add_render_rule("heading_close", _render_heading_close)
    renderer.add_render_rule("fence", _render_fence)
    return renderer


def _renderer() -> MarkdownIt:
    global _RENDERER
    if _RENDERER is None:
        _RENDERER = build_renderer()
    return _RENDERER


def render_markdown(text: str) -> str:
    """Render assistant ``text`` into a safe markup fragment."""

    if not text:
        return ""
    return _renderer().render(text)
