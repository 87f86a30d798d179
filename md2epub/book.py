"""Loading a book: from a renderer JSON document or from a book directory."""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path, PurePosixPath
from typing import IO, Any, Dict, List, Mapping, Optional, Tuple, Union

from .config import DEFAULT_BUILD_DIR, configs_from_table, load_book_toml
from .errors import ConfigError, ContentFileNotFoundError
from .models import BookItem, Chapter, PartTitle, RenderContext, Separator

logger = logging.getLogger("md2epub")

SUMMARY_FILE = "SUMMARY.md"
README_NAMES = ("README.md", "readme.md")
INDEX_NAME = "index.md"

LINK_RE = re.compile(r"^\[(?P<name>.+?)\]\((?P<target>[^)]*)\)\s*$")
LIST_ITEM_RE = re.compile(r"^(?P<indent>[ \t]*)[-*+]\s+(?P<rest>.+?)\s*$")
PART_RE = re.compile(r"^#{1,6}\s+(?P<title>.+?)\s*#*\s*$")
SEPARATOR_RE = re.compile(r"^\s*(?:-{3,}|\*{3,}|_{3,})\s*$")


def _chapter_from_json(data: Mapping[str, Any]) -> Chapter:
    path = data.get("path")
    return Chapter(
        name=data.get("name", ""),
        content=data.get("content") or "",
        path=PurePosixPath(path) if path else None,
        number=list(data["number"]) if data.get("number") else None,
        sub_items=_items_from_json(data.get("sub_items") or []),
    )


def _items_from_json(items: List[Any]) -> List[BookItem]:
    parsed: List[BookItem] = []
    for item in items:
        if item == "Separator":
            parsed.append(Separator())
        elif isinstance(item, dict) and "Chapter" in item:
            parsed.append(_chapter_from_json(item["Chapter"]))
        elif isinstance(item, dict) and "PartTitle" in item:
            parsed.append(PartTitle(item["PartTitle"]))
        else:
            logger.debug("Ignoring unknown book item %r", item)
    return parsed


def context_from_json(data: Union[str, bytes, Mapping[str, Any]]) -> RenderContext:
    """Build a render context from the document a book tool pipes to its renderers."""
    if isinstance(data, (str, bytes)):
        try:
            data = json.loads(data)
        except json.JSONDecodeError as err:
            raise ConfigError(f"Unable to parse the render context: {err}") from err
    if not isinstance(data, Mapping):
        raise ConfigError("Render context must be a JSON object")
    try:
        root = Path(data["root"])
        destination = Path(data["destination"])
    except KeyError as err:
        raise ConfigError(f"Render context is missing {err}") from err
    book = data.get("book") or {}
    items = book.get("items", book.get("sections", []))
    book_config, epub_config = configs_from_table(data.get("config") or {})
    return RenderContext(
        root=root,
        items=_items_from_json(items),
        book=book_config,
        epub=epub_config,
        destination=destination,
    )


def read_context(stream: IO[str]) -> RenderContext:
    return context_from_json(stream.read())


def _parse_link(text: str) -> Optional[Tuple[str, Optional[str]]]:
    match = LINK_RE.match(text.strip())
    if not match:
        return None
    target = match.group("target").strip()
    return match.group("name").strip(), target or None


def parse_summary(text: str) -> List[BookItem]:
    """Parse a ``SUMMARY.md`` into the book tree, numbering list chapters.

    Links outside of lists are unnumbered prefix or suffix chapters, headings
    after the first item start a new part and horizontal rules become
    separators.
    """
    items: List[BookItem] = []
    stack: List[Tuple[int, Chapter]] = []
    top_level_count = 0
    seen_item = False
    in_comment = False

    for lineno, raw in enumerate(text.splitlines(), start=1):
        line = raw.rstrip()
        if in_comment:
            in_comment = "-->" not in line
            continue
        if line.lstrip().startswith("<!--"):
            in_comment = "-->" not in line
            continue
        if not line.strip():
            continue

        heading = PART_RE.match(line)
        if heading:
            if seen_item:
                items.append(PartTitle(heading.group("title")))
            stack = []
            continue
        if SEPARATOR_RE.match(line):
            items.append(Separator())
            stack = []
            continue

        list_item = LIST_ITEM_RE.match(line)
        if list_item:
            link = _parse_link(list_item.group("rest"))
            if link is None:
                raise ConfigError(f"{SUMMARY_FILE}:{lineno}: expected a link, got '{line.strip()}'")
            indent = len(list_item.group("indent").expandtabs(4))
            while stack and stack[-1][0] >= indent:
                stack.pop()
            if stack:
                parent = stack[-1][1]
                siblings = parent.sub_items
                number = list(parent.number or []) + [
                    sum(1 for item in siblings if isinstance(item, Chapter)) + 1
                ]
            else:
                siblings = items
                top_level_count += 1
                number = [top_level_count]
            name, target = link
            chapter = Chapter(name, path=PurePosixPath(target) if target else None, number=number)
            siblings.append(chapter)
            stack.append((indent, chapter))
            seen_item = True
            continue

        link = _parse_link(line)
        if link is None:
            raise ConfigError(f"{SUMMARY_FILE}:{lineno}: unexpected line '{line.strip()}'")
        name, target = link
        items.append(Chapter(name, path=PurePosixPath(target) if target else None))
        stack = []
        seen_item = True
    return items


def _load_chapter(chapter: Chapter, src_dir: Path) -> None:
    if chapter.path is not None:
        source = src_dir / chapter.path
        if source.is_file():
            chapter.content = source.read_text(encoding="utf-8")
        else:
            logger.warning("Chapter '%s' has no source file at %s", chapter.name, source)
        if chapter.path.name in README_NAMES:
            chapter.path = chapter.path.with_name(INDEX_NAME)
    for item in chapter.sub_items:
        if isinstance(item, Chapter):
            _load_chapter(item, src_dir)


def load_book(root: Union[str, Path], destination: Optional[Path] = None) -> RenderContext:
    """Load ``book.toml``, ``SUMMARY.md`` and every chapter of a book directory."""
    root = Path(root)
    table: Dict[str, Any] = load_book_toml(root)
    book_config, epub_config = configs_from_table(table)
    src_dir = root / book_config.src
    summary = src_dir / SUMMARY_FILE
    if not summary.is_file():
        raise ContentFileNotFoundError(f"Book summary not found: {summary}")
    items = parse_summary(summary.read_text(encoding="utf-8"))
    for item in items:
        if isinstance(item, Chapter):
            _load_chapter(item, src_dir)
    destination = destination or root / DEFAULT_BUILD_DIR
    logger.debug("Loaded book from %s with %d top-level items", root, len(items))
    return RenderContext(
        root=root,
        items=items,
        book=book_config,
        epub=epub_config,
        destination=destination,
    )
