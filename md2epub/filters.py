"""Token filters applied to one chapter's markdown token stream."""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Union

from markdown_it.token import Token

from .assets import AssetTable, is_remote_link, rewrite_img_sources
from .utils import TRACE, path_prefix

logger = logging.getLogger("md2epub")

Log = Union[logging.Logger, logging.LoggerAdapter]

OPENING_SINGLE = "‘"
CLOSING_SINGLE = "’"
OPENING_DOUBLE = "“"
CLOSING_DOUBLE = "”"

CODE_TOKEN_TYPES = ("code_inline", "code_block", "fence")


class TokenFilter:
    """Base class: a filter sees each block token and each inline child once.

    Returning ``None`` consumes the token.
    """

    def apply(self, token: Token) -> Optional[Token]:
        return token

    def apply_inline(self, token: Token) -> Optional[Token]:
        return token

    def finish(self) -> List[Token]:
        """Tokens to append once the whole chapter has been filtered."""
        return []


class QuoteConverterFilter(TokenFilter):
    """Replace straight quotes in prose with typographic ones."""

    def __init__(self, enabled: bool = True) -> None:
        self.enabled = enabled

    @staticmethod
    def convert(text: str) -> str:
        converted = []
        after_whitespace = True
        for char in text:
            if char == "'":
                char = OPENING_SINGLE if after_whitespace else CLOSING_SINGLE
            elif char == '"':
                char = OPENING_DOUBLE if after_whitespace else CLOSING_DOUBLE
            converted.append(char)
            after_whitespace = char.isspace()
        return "".join(converted)

    def apply_inline(self, token: Token) -> Optional[Token]:
        # code spans and blocks are never "text" tokens
        if self.enabled and token.type == "text":
            token.content = self.convert(token.content)
        return token


class AssetLinkFilter(TokenFilter):
    """Point image links at the asset's place inside the container."""

    def __init__(self, assets: AssetTable, depth: int, log: Optional[Log] = None) -> None:
        self.assets = assets
        self.depth = depth
        self.log = log or logger

    def _new_link(self, link: str) -> Optional[str]:
        asset = self.assets.get(link)
        if asset is None:
            return None
        return path_prefix(self.depth, asset.filename)

    def _rewrite_src(self, src: str) -> Optional[str]:
        if not (is_remote_link(src) or src in self.assets):
            return None
        new_link = self._new_link(src)
        if new_link is None:
            self.log.error("Remote image '%s' was not fetched and stays as is", src)
            return None
        self.log.log(TRACE, "Rewriting img src '%s' to '%s'", src, new_link)
        return new_link

    def rewrite_html(self, html: str) -> str:
        return rewrite_img_sources(html, self._rewrite_src)

    def _rewrite(self, token: Token) -> Token:
        if token.type == "image":
            src = token.attrGet("src")
            new_link = self._new_link(str(src)) if src else None
            if new_link is not None:
                self.log.log(TRACE, "Rewriting image link '%s' to '%s'", src, new_link)
                token.attrSet("src", new_link)
        elif token.type in ("html_inline", "html_block"):
            token.content = self.rewrite_html(token.content)
        return token

    def apply(self, token: Token) -> Optional[Token]:
        return self._rewrite(token)

    def apply_inline(self, token: Token) -> Optional[Token]:
        return self._rewrite(token)


class FilterChain:
    """Run filters in order over a token stream.

    Inline children are filtered before their parent block token, so numbering
    and quoting state follow document order.
    """

    def __init__(self, filters: Sequence[TokenFilter]) -> None:
        self.filters = list(filters)

    def _run_inline(self, token: Token) -> Optional[Token]:
        current: Optional[Token] = token
        for token_filter in self.filters:
            if current is None:
                break
            current = token_filter.apply_inline(current)
        return current

    def _run_block(self, token: Token) -> Optional[Token]:
        current: Optional[Token] = token
        for token_filter in self.filters:
            if current is None:
                break
            current = token_filter.apply(current)
        return current

    def _run_children(self, token: Token) -> None:
        # image alt text is a second level of children
        filtered: List[Token] = []
        for child in token.children or []:
            result = self._run_inline(child)
            if result is None:
                continue
            if result.children:
                self._run_children(result)
            filtered.append(result)
        token.children = filtered

    def run(self, tokens: Sequence[Token]) -> List[Token]:
        output: List[Token] = []
        for token in tokens:
            if token.children:
                self._run_children(token)
            filtered = self._run_block(token)
            if filtered is not None:
                output.append(filtered)
        for token_filter in self.filters:
            output.extend(token_filter.finish())
        return output
