"""Per-chapter rendering: tokenize, filter, materialise HTML, apply the template."""

from __future__ import annotations

import logging
from typing import List, Optional, Union

from .assets import AssetTable
from .config import EpubConfig
from .errors import ContentFileNotFoundError
from .filters import AssetLinkFilter, FilterChain, QuoteConverterFilter, TokenFilter
from .footnotes import FootnoteFilter
from .markdown import create_parser, render_tokens, tokenize
from .models import Chapter
from .packaging import STYLESHEET_NAME
from .templating import ChapterTemplate
from .utils import TRACE, chapter_depth, path_prefix

logger = logging.getLogger("md2epub")


class ChapterRenderer:
    """Turns one chapter's markdown into a complete XHTML page."""

    def __init__(
        self,
        config: EpubConfig,
        assets: AssetTable,
        template: ChapterTemplate,
        log: Union[logging.Logger, logging.LoggerAdapter, None] = None,
    ) -> None:
        self.config = config
        self.assets = assets
        self.template = template
        self.log = log or logger

    def filters(self, depth: int, log) -> List[TokenFilter]:
        chain: List[TokenFilter] = []
        if self.config.curly_quotes:
            chain.append(QuoteConverterFilter())
        chain.append(AssetLinkFilter(self.assets, depth, log))
        if self.config.render_footnote_backrefs:
            chain.append(FootnoteFilter(log))
        return chain

    def render_body(self, chapter: Chapter, depth: int, log=None) -> str:
        log = log or self.log
        md = create_parser(footnotes_in_place=self.config.render_footnote_backrefs)
        env: dict = {}
        tokens = tokenize(md, chapter.content, env)
        log.log(TRACE, "Tokenized into %d block tokens", len(tokens))
        tokens = FilterChain(self.filters(depth, log)).run(tokens)
        return render_tokens(md, tokens, env)

    def render(self, chapter: Chapter, log=None) -> str:
        if chapter.path is None:
            raise ContentFileNotFoundError(
                f"Draft chapter: '{chapter.name}' could not be rendered."
            )
        depth = chapter_depth(chapter.path)
        body = self.render_body(chapter, depth, log)
        return self.template.render(
            title=chapter.name,
            body=body,
            stylesheet=path_prefix(depth, STYLESHEET_NAME),
            epub_version_3=self.config.epub_version_3,
        )


def chapter_title(chapter: Chapter, no_section_label: bool = False) -> str:
    label: Optional[str] = chapter.section_label
    if no_section_label or not label:
        return chapter.name
    return f"{label} {chapter.name}"
