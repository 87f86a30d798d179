"""Footnote numbering, collection and back-reference rendering."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from html import escape
from typing import Dict, List, Optional, Union

from markdown_it.token import Token

from .filters import TokenFilter
from .markdown import html_block, html_inline
from .utils import TRACE

logger = logging.getLogger("md2epub")

BACKREF_GLYPH = "↩"


@dataclass
class FootnoteEntry:
    name: str
    tokens: List[Token] = field(default_factory=list)
    number: int = 0
    usage: int = 0


class FootnoteFilter(TokenFilter):
    """Move footnote definitions to the end of a chapter with links back to each use.

    Definitions are numbered in the order they are first referenced. Unused
    definitions are dropped. A fresh instance is needed for every chapter.
    """

    def __init__(self, log: Union[logging.Logger, logging.LoggerAdapter, None] = None) -> None:
        self.log = log or logger
        self.entries: Dict[str, FootnoteEntry] = {}
        self.numbers: Dict[str, List[int]] = {}
        self._open: List[FootnoteEntry] = []

    def _entry(self, name: str) -> FootnoteEntry:
        if name not in self.entries:
            self.entries[name] = FootnoteEntry(name)
        return self.entries[name]

    def reference(self, name: str) -> str:
        """Count one use of ``name`` and return the anchor markup for it."""
        numbering = self.numbers.setdefault(name, [len(self.numbers) + 1, 0])
        numbering[1] += 1
        number, usage = numbering
        anchor = escape(name, quote=True)
        self.log.log(TRACE, "Footnote '%s' is number %d, use %d", name, number, usage)
        return (
            f'<sup class="footnote-reference" id="fr-{anchor}-{usage}">'
            f'<a href="#fn-{anchor}">[{number}]</a></sup>'
        )

    def apply_inline(self, token: Token) -> Optional[Token]:
        if token.type != "footnote_ref":
            return token
        return html_inline(self.reference(token.meta["label"]))

    def apply(self, token: Token) -> Optional[Token]:
        if token.type == "footnote_reference_open":
            self._open.append(self._entry(token.meta["label"]))
            return None
        if token.type == "footnote_reference_close":
            if self._open:
                self._open.pop()
            return None
        if self._open:
            self._open[-1].tokens.append(token)
            return None
        return token

    def _backrefs(self, entry: FootnoteEntry) -> str:
        anchor = escape(entry.name, quote=True)
        links = [f' <a href="#fr-{anchor}-1">{BACKREF_GLYPH}</a>']
        for usage in range(2, entry.usage + 1):
            links.append(f' <a href="#fr-{anchor}-{usage}">{BACKREF_GLYPH}{usage}</a>')
        return "".join(links)

    def render_entry(self, entry: FootnoteEntry) -> List[Token]:
        anchor = escape(entry.name, quote=True)
        output = [
            html_block(
                f'<div class="footnote-definition" id="fn-{anchor}" epub:type="footnote">\n'
            )
        ]
        labelled = False
        backrefs_done = False
        last = len(entry.tokens) - 1
        for index, token in enumerate(entry.tokens):
            if token.type == "paragraph_open" and not token.hidden:
                if labelled:
                    output.append(html_block("<p>"))
                else:
                    output.append(
                        html_block(
                            f'<p><span class="footnote-definition-label">[{entry.number}]</span> '
                        )
                    )
                    labelled = True
            elif (
                token.type == "paragraph_close"
                and not token.hidden
                and index >= last - 1
                and not backrefs_done
            ):
                output.append(html_block(f"{self._backrefs(entry)}</p>\n"))
                backrefs_done = True
            else:
                output.append(token)
        if backrefs_done:
            output.append(html_block("</div>\n"))
        else:
            output.append(html_block(f"{self._backrefs(entry)}</div>\n"))
        return output

    def collect(self) -> List[FootnoteEntry]:
        """Referenced definitions in first-reference order."""
        used = []
        for name, entry in self.entries.items():
            if name not in self.numbers:
                self.log.debug("Dropping unreferenced footnote '%s'", name)
                continue
            entry.number, entry.usage = self.numbers[name]
            used.append(entry)
        return sorted(used, key=lambda entry: entry.number)

    def finish(self) -> List[Token]:
        entries = self.collect()
        if not entries:
            return []
        output = [html_block('<div class="footnotes" epub:type="footnotes">\n')]
        for entry in entries:
            output.extend(self.render_entry(entry))
        output.append(html_block("</div>\n"))
        return output
