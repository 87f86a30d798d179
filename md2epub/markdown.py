"""Markdown tokenizer set-up and HTML materialisation."""

from __future__ import annotations

from typing import Any, Dict, Iterator, List, Optional, Sequence

from markdown_it import MarkdownIt
from markdown_it.token import Token
from mdit_py_plugins.footnote import footnote_plugin
from mdit_py_plugins.tasklists import tasklists_plugin


def create_parser(footnotes_in_place: bool = False) -> MarkdownIt:
    """Return a tokenizer with tables, footnotes, strikethrough and task lists.

    With ``footnotes_in_place`` the footnote definitions stay where they were
    written, wrapped in ``footnote_reference_open``/``footnote_reference_close``
    tokens, so a filter can collect and re-emit them itself.
    """
    md = MarkdownIt("commonmark", {"html": True, "xhtmlOut": True})
    md.enable(["table", "strikethrough"])
    if footnotes_in_place:
        md.use(footnote_plugin, inline=False, move_to_end=False)
    else:
        md.use(footnote_plugin)
    md.use(tasklists_plugin)
    return md


def tokenize(
    md: MarkdownIt, text: str, env: Optional[Dict[str, Any]] = None
) -> List[Token]:
    return md.parse(text, env if env is not None else {})


def render_tokens(
    md: MarkdownIt, tokens: Sequence[Token], env: Optional[Dict[str, Any]] = None
) -> str:
    return md.renderer.render(list(tokens), md.options, env if env is not None else {})


def walk_tokens(tokens: Sequence[Token]) -> Iterator[Token]:
    """Yield every token, descending into inline children in document order."""
    for token in tokens:
        yield token
        if token.children:
            yield from walk_tokens(token.children)


def html_block(content: str) -> Token:
    return Token("html_block", "", 0, content=content, block=True)


def html_inline(content: str) -> Token:
    return Token("html_inline", "", 0, content=content)
