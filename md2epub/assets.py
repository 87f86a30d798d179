"""Asset discovery and link resolution for chapter content."""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path, PurePosixPath
from typing import Callable, Dict, Iterator, List, Optional, Sequence, Tuple, Union
from urllib.parse import unquote, urlsplit

from bs4 import BeautifulSoup

from .errors import (
    AssetError,
    AssetFileError,
    AssetFileNotFoundError,
    AssetOutsideSrcDirError,
)
from .markdown import create_parser, tokenize, walk_tokens
from .models import (
    Asset,
    Chapter,
    LocalSource,
    RemoteSource,
    RenderContext,
    guess_mimetype,
)
from .utils import TRACE, hash_link, normalize_path, with_context

logger = logging.getLogger("md2epub")

REMOTE_SCHEMES = ("http", "https")
HTML_TOKEN_TYPES = ("html_block", "html_inline")
DEFAULT_REMOTE_MIMETYPE = "application/octet-stream"
IMG_TAG_RE = re.compile(r"""<img\b(?:[^>"']|"[^"]*"|'[^']*')*>""", re.IGNORECASE)


def _upper_folder_markers() -> Tuple[str, ...]:
    markers = ["/", "../"]
    for sep in filter(None, (os.sep, os.altsep)):
        if sep != "/":
            markers.insert(1, sep)
            markers.append(f"..{sep}")
    return tuple(markers)


UPPER_FOLDER_MARKERS = _upper_folder_markers()


def is_remote_link(link: str) -> bool:
    """True when ``link`` is an absolute http(s) URL, anything else is local."""
    try:
        parts = urlsplit(link.strip())
    except ValueError:
        return False
    return parts.scheme.lower() in REMOTE_SCHEMES and bool(parts.netloc)


def is_embedded_data(link: str) -> bool:
    return link.strip().lower().startswith("data:")


def classify_link(link: str) -> Union[LocalSource, RemoteSource]:
    if is_remote_link(link):
        return RemoteSource(link)
    return LocalSource(PurePosixPath(unquote(link)))


def strip_upper_marker(link: str) -> Optional[str]:
    """Remove one leading upward-traversal marker, or return None if absent."""
    for marker in UPPER_FOLDER_MARKERS:
        if link.startswith(marker):
            return link[len(marker) :]
    return None


def asset_root_for_link(link: str, chapter_path: Path) -> Tuple[Path, str]:
    """Walk up from the chapter's directory while ``link`` climbs upward.

    Returns the working root and what is left of the link once every leading
    ``../`` (or root separator) has been consumed.
    """
    root = chapter_path
    if chapter_path.is_file() or (
        not chapter_path.exists() and chapter_path.suffix in (".md", ".markdown")
    ):
        # README.md chapters are addressed as index.md and do not exist on disk
        root = chapter_path.parent
    remainder = link
    while remainder:
        stripped = strip_upper_marker(remainder)
        if stripped is None:
            break
        root = root.parent
        remainder = stripped
    return root, remainder


def _within(path: Path, root: Path) -> bool:
    try:
        path.relative_to(root)
    except ValueError:
        return False
    return True


def resolve_local(link: str, src_dir: Path, chapter_path: Union[str, PurePosixPath]) -> Asset:
    """Resolve a relative link found in ``chapter_path`` to a file under ``src_dir``.

    ``src_dir`` must already be canonical. Symlinks, directories and anything
    resolving outside ``src_dir`` are rejected.
    """
    logger.debug(
        "Composing asset path for %s + %s in chapter %s", src_dir, link, chapter_path
    )
    decoded = unquote(link)
    root, remainder = asset_root_for_link(decoded, src_dir / Path(chapter_path))
    candidate = normalize_path(root / normalize_path(Path(remainder)))
    logger.log(TRACE, "Candidate for '%s' is %s", link, candidate)

    if not _within(candidate, src_dir):
        raise AssetOutsideSrcDirError(
            f"Asset '{link}' resolves to {candidate}, outside of the book source {src_dir}"
        )
    try:
        absolute_location = candidate.resolve(strict=True)
    except (OSError, RuntimeError) as err:
        raise AssetFileNotFoundError(
            f"Asset was not found: '{link}' by '{candidate}', error = {err}"
        ) from err
    if candidate.is_symlink() or not absolute_location.is_file():
        raise AssetFileError(f"Asset was not a file {absolute_location}")
    if not _within(absolute_location, src_dir):
        raise AssetOutsideSrcDirError(
            f"Asset '{link}' points to {absolute_location}, outside of the book source {src_dir}"
        )

    filename = PurePosixPath(candidate.relative_to(src_dir).as_posix())
    return Asset(
        original_link=link,
        source=LocalSource(PurePosixPath(decoded)),
        location_on_disk=absolute_location,
        filename=filename,
        mimetype=guess_mimetype(absolute_location),
    )


def resolve_remote(url: str, dest_dir: Path) -> Asset:
    """Describe where ``url`` will be cached; nothing is fetched yet."""
    filename = PurePosixPath(hash_link(url))
    location = normalize_path(dest_dir / filename)
    mimetype = guess_mimetype(filename) if filename.suffix else DEFAULT_REMOTE_MIMETYPE
    asset = Asset(
        original_link=url,
        source=RemoteSource(url),
        location_on_disk=location,
        filename=filename,
        mimetype=mimetype,
    )
    logger.debug("Remote asset '%s' will be cached at %s", url, location)
    return asset


class AssetTable:
    """Links found while walking the book, keyed by their exact text.

    The first discovery of a link wins; iteration follows discovery order.
    """

    def __init__(self) -> None:
        self._assets: Dict[str, Asset] = {}

    def add(self, asset: Asset) -> bool:
        if asset.original_link in self._assets:
            logger.debug("Skipped already known asset '%s'", asset.original_link)
            return False
        self._assets[asset.original_link] = asset
        return True

    def get(self, link: str) -> Optional[Asset]:
        return self._assets.get(link)

    def remote(self) -> List[Asset]:
        return [asset for asset in self._assets.values() if asset.is_remote]

    def __contains__(self, link: object) -> bool:
        return link in self._assets

    def __iter__(self) -> Iterator[Asset]:
        return iter(list(self._assets.values()))

    def __len__(self) -> int:
        return len(self._assets)


def find_img_sources(html: str) -> List[str]:
    """Collect ``src`` of every ``img`` element in an HTML fragment, nested or not."""
    soup = BeautifulSoup(html, "html.parser")
    sources = []
    for img in soup.find_all("img"):
        src = img.get("src")
        if src:
            sources.append(src)
    return sources


def rewrite_img_sources(html: str, rewrite: Callable[[str], Optional[str]]) -> str:
    """Replace the ``src`` of each ``img`` tag for which ``rewrite`` returns a new link.

    Only the matched tags are re-serialised; the rest of the fragment is kept
    byte for byte. ``rewrite`` receives the entity-decoded attribute value.
    """

    def replace(match: re.Match) -> str:
        tag = match.group(0)
        img = BeautifulSoup(tag, "html.parser").find("img")
        src = img.get("src") if img is not None else None
        if not src:
            return tag
        new_link = rewrite(src)
        if new_link is None:
            return tag
        img["src"] = new_link
        return str(img)

    return IMG_TAG_RE.sub(replace, html)


def find_links_in_tokens(tokens: Sequence) -> List[str]:
    """Image destinations and raw HTML ``img`` sources, deduplicated in order."""
    found: List[str] = []
    for token in walk_tokens(tokens):
        if token.type == "image":
            src = token.attrGet("src")
            if src:
                found.append(str(src))
        elif token.type in HTML_TOKEN_TYPES:
            found.extend(find_img_sources(token.content))
    return list(dict.fromkeys(found))


def find_links_in_markdown(content: str) -> List[str]:
    return find_links_in_tokens(tokenize(create_parser(), content))


def resolve_link(link: str, src_dir: Path, chapter: Chapter, cache_dir: Path) -> Asset:
    if is_remote_link(link):
        return resolve_remote(link, cache_dir)
    assert chapter.path is not None
    return resolve_local(link, src_dir, chapter.path)


def discover_chapter(
    chapter: Chapter,
    src_dir: Path,
    cache_dir: Path,
    table: AssetTable,
    log: Optional[logging.LoggerAdapter] = None,
) -> int:
    """Add every asset referenced by one chapter to ``table``.

    Links outside the source directory are ignored with a warning; any other
    asset error propagates so the caller can abandon this chapter.
    """
    log = log or with_context(logger, chapter.name)
    added = 0
    for link in find_links_in_markdown(chapter.content):
        if is_embedded_data(link):
            log.log(TRACE, "Skipping inline data URI")
            continue
        if link in table:
            log.debug("Skipped asset for '%s'", link)
            continue
        try:
            asset = resolve_link(link, src_dir, chapter, cache_dir)
        except AssetOutsideSrcDirError as err:
            log.warning("Asset '%s' is outside source dir '%s' and ignored: %s", link, src_dir, err)
            continue
        log.debug("Adding asset by link '%s' : %s", link, asset)
        if table.add(asset):
            added += 1
    return added


def find_assets(
    ctx: RenderContext,
    cache_dir: Path,
    log: Union[logging.Logger, logging.LoggerAdapter, None] = None,
) -> AssetTable:
    """First pass over the book: resolve every asset referenced by any chapter."""
    log = log or logger
    table = AssetTable()
    src_dir = ctx.src_dir.resolve()
    if not src_dir.is_dir():
        raise AssetFileNotFoundError(f"Book source directory not found: {src_dir}")
    log.debug("Start searching assets in src_dir = %s", src_dir)

    for chapter in ctx.chapters():
        chapter_log = with_context(log, chapter.name)
        if chapter.is_draft:
            chapter_log.debug("Draft chapter has no content, skipping asset search")
            continue
        try:
            count = discover_chapter(chapter, src_dir, cache_dir, table, chapter_log)
        except AssetError as err:
            chapter_log.error(
                "Failed finding/fetch resource taken from content? "
                "Look up the content of chapter '%s' for a possible error... Caused by: %s",
                chapter.name,
                err,
            )
            continue
        chapter_log.debug("Found %d new links and assets", count)
    log.info("Found [%d] assets", len(table))
    return table
