"""EPUB container assembly on top of ebooklib."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, List, Optional, Set, Tuple, Union

from ebooklib import epub

from .errors import PackagingError

logger = logging.getLogger("md2epub")

XHTML_MIMETYPE = "application/xhtml+xml"
STYLESHEET_NAME = "stylesheet.css"
WRITE_OPTIONS = {"raise_exceptions": True, "epub3_pages": False}


@dataclass
class NavEntry:
    link: epub.Link
    level: int


class BookPackager:
    """Collects metadata, chapters and resources, then writes one ``.epub`` file."""

    def __init__(self) -> None:
        self.book = epub.EpubBook()
        self.book.set_identifier(str(uuid.uuid4()))
        self.chapters: List[epub.EpubItem] = []
        self.nav: List[NavEntry] = []
        self._names: Set[str] = set()
        self._resource_count = 0

    def _claim(self, name: str) -> bool:
        if name in self._names:
            logger.debug("Container already holds %s, skipping duplicate", name)
            return False
        self._names.add(name)
        return True

    def add_metadata(self, key: str, value: str) -> None:
        if key == "title":
            self.book.set_title(value)
        elif key == "author":
            self.book.add_author(value)
        elif key == "lang":
            self.book.set_language(value)
        elif key == "generator":
            self.book.set_unique_metadata(
                "OPF", "generator", "", {"name": "generator", "content": value}
            )
        else:
            self.book.add_metadata("DC", key, value)

    def add_content(
        self,
        path: str,
        html: bytes,
        title: str,
        nav_level: int = 0,
        guide_type: Optional[str] = None,
    ) -> epub.EpubItem:
        """Add one rendered chapter, its table of contents entry and its spine slot."""
        if not self._claim(path):
            raise PackagingError(f"Duplicate chapter path in container: {path}")
        uid = f"chapter_{len(self.chapters)}"
        item = epub.EpubItem(uid=uid, file_name=path, media_type=XHTML_MIMETYPE, content=html)
        self.book.add_item(item)
        self.chapters.append(item)
        self.nav.append(NavEntry(epub.Link(path, title, f"nav_{uid}"), nav_level))
        if guide_type:
            self.book.guide.append({"href": path, "title": title, "type": guide_type})
        return item

    def add_resource(self, path: str, content: bytes, mimetype: str) -> Optional[epub.EpubItem]:
        if not self._claim(path):
            return None
        self._resource_count += 1
        item = epub.EpubItem(
            uid=f"asset_{self._resource_count}",
            file_name=path,
            media_type=mimetype,
            content=content,
        )
        return self.book.add_item(item)

    def set_stylesheet(self, content: bytes) -> None:
        self._claim(STYLESHEET_NAME)
        self.book.add_item(
            epub.EpubItem(
                uid="stylesheet",
                file_name=STYLESHEET_NAME,
                media_type="text/css",
                content=content,
            )
        )

    def set_cover_image(self, path: str, content: bytes, mimetype: str) -> None:
        self._claim(path)
        self.book.set_cover(path, content)
        self.book.get_item_with_id("cover-img").media_type = mimetype

    def build_toc(self) -> list:
        """Nest navigation entries by level into ebooklib's toc structure."""
        roots: List[Tuple[epub.Link, list]] = []
        stack: List[Tuple[int, Tuple[epub.Link, list]]] = []
        for entry in self.nav:
            node: Tuple[epub.Link, list] = (entry.link, [])
            while stack and stack[-1][0] >= entry.level:
                stack.pop()
            siblings = stack[-1][1][1] if stack else roots
            siblings.append(node)
            stack.append((entry.level, node))
        return [self._toc_node(node) for node in roots]

    def _toc_node(self, node: Tuple[epub.Link, list]):
        link, children = node
        if not children:
            return link
        section = epub.Section(link.title, link.href)
        return (section, [self._toc_node(child) for child in children])

    def finalize(self, output: Union[str, Path, BinaryIO]) -> None:
        self.book.toc = self.build_toc()
        self.book.add_item(epub.EpubNcx())
        self.book.add_item(epub.EpubNav())
        self.book.spine = list(self.chapters)
        target = str(output) if isinstance(output, Path) else output
        logger.debug("Writing %d chapters to %s", len(self.chapters), target)
        try:
            epub.write_epub(target, self.book, dict(WRITE_OPTIONS))
        except Exception as err:
            raise PackagingError(f"Failed to write the EPUB container: {err}") from err
