"""Whole-book EPUB generation."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import BinaryIO, List, Optional, Sequence, Union

from .assets import AssetTable, find_assets
from .cache import ContentRetriever
from .errors import AssetFileNotFoundError, InvalidOutputFilenameError, Md2EpubError
from .models import BookItem, Chapter, RenderContext, guess_mimetype
from .packaging import BookPackager
from .render import ChapterRenderer, chapter_title
from .templating import DEFAULT_CSS, compile_template
from .utils import is_valid_filename, with_context

logger = logging.getLogger("md2epub")

GENERATOR_NAME = "md2epub"
DEFAULT_OUTPUT_NAME = "book"
EPUB_EXTENSION = "epub"
CACHE_DIR_NAME = "cache"
BODYMATTER = "text"


def output_filename(ctx: RenderContext) -> Path:
    """Where the finished book is written inside the destination directory."""
    title = ctx.book.title
    if title is None:
        return ctx.destination / f"{DEFAULT_OUTPUT_NAME}.{EPUB_EXTENSION}"
    if not is_valid_filename(title):
        raise InvalidOutputFilenameError(title)
    return ctx.destination / f"{title}.{EPUB_EXTENSION}"


def locate_resource(ctx: RenderContext, path: Path) -> Path:
    """Find a configured file as given, then under the source dir, then under the root."""
    candidates = [path, ctx.src_dir / path, ctx.root / path]
    for candidate in candidates:
        logger.debug("Looking for resource %s at %s", path, candidate)
        if candidate.is_file():
            return candidate.resolve()
    raise AssetFileNotFoundError(
        f"Failed to find resource '{path}', tried: {', '.join(str(c) for c in candidates)}"
    )


class Generator:
    """Builds one EPUB from a render context.

    Assets are discovered across the whole book before any chapter is
    rendered, remote ones are downloaded, and only then are chapters rendered
    and packaged.
    """

    def __init__(
        self,
        ctx: RenderContext,
        retriever: Optional[ContentRetriever] = None,
        log: Union[logging.Logger, logging.LoggerAdapter, None] = None,
    ) -> None:
        self.ctx = ctx
        self.config = ctx.epub
        self.log = log or logger
        self.cache_dir = ctx.destination / CACHE_DIR_NAME
        self.retriever = retriever or ContentRetriever(self.cache_dir)
        self.packager = BookPackager()
        self.assets = AssetTable()
        self.template = compile_template(self._template_source())
        self.rendered: List[str] = []

    def _template_source(self) -> Optional[str]:
        if self.config.index_template is None:
            return None
        path = locate_resource(self.ctx, self.config.index_template)
        self.log.debug("Using chapter template %s", path)
        return path.read_text(encoding="utf-8")

    def populate_metadata(self) -> None:
        self.log.info("1. Populate metadata")
        book = self.ctx.book
        if book.title:
            self.packager.add_metadata("title", book.title)
        else:
            self.log.warning(
                "No `title` attribute found yet all EPUB documents should have a title"
            )
        if book.description:
            self.packager.add_metadata("description", book.description)
        if book.authors:
            self.packager.add_metadata("author", ", ".join(book.authors))
        self.packager.add_metadata("generator", GENERATOR_NAME)
        self.packager.add_metadata("lang", book.language or "en")

    def discover_assets(self) -> AssetTable:
        self.log.info("2. Find assets")
        self.assets = find_assets(self.ctx, self.cache_dir, self.log)
        return self.assets

    def prefetch_assets(self) -> int:
        self.log.info("3. Download remote assets")
        count = self.retriever.prefetch(self.assets)
        self.log.debug("Downloaded or reused [%d] remote assets", count)
        return count

    def generate_chapters(self) -> int:
        self.log.info("4. Generate chapters")
        renderer = ChapterRenderer(self.config, self.assets, self.template, self.log)
        self._add_items(renderer, self.ctx.items, top_level=True)
        self.log.info("Generated [%d] chapters", len(self.rendered))
        return len(self.rendered)

    def _add_items(
        self, renderer: ChapterRenderer, items: Sequence[BookItem], top_level: bool
    ) -> None:
        for item in items:
            if isinstance(item, Chapter):
                self.add_chapter(renderer, item, top_level)

    def add_chapter(self, renderer: ChapterRenderer, chapter: Chapter, top_level: bool) -> None:
        log = with_context(self.log, chapter.name)
        try:
            rendered = renderer.render(chapter, log)
        except Md2EpubError as err:
            log.warning("SKIPPED chapter due to error = %s", err)
        else:
            assert chapter.path is not None
            path = chapter.path.with_suffix(".html").as_posix()
            title = chapter_title(chapter, self.config.no_section_label)
            guide_type = BODYMATTER if top_level and not self.rendered else None
            self.packager.add_content(
                path,
                rendered.encode("utf-8"),
                title,
                nav_level=chapter.nav_level,
                guide_type=guide_type,
            )
            self.rendered.append(path)
            log.debug("Added chapter as %s", path)
        self._add_items(renderer, chapter.sub_items, top_level=False)

    def add_cover_image(self) -> None:
        self.log.info("5. Add cover image")
        if self.config.cover_image is None:
            return
        location = locate_resource(self.ctx, self.config.cover_image)
        mimetype = guess_mimetype(location)
        self.log.debug("Adding cover image: %s / %s", self.config.cover_image, mimetype)
        self.packager.set_cover_image(
            self.config.cover_image.as_posix(), location.read_bytes(), mimetype
        )

    def generate_stylesheet(self) -> bytes:
        stylesheet = bytearray()
        if self.config.use_default_css:
            stylesheet.extend(DEFAULT_CSS.encode("utf-8"))
        for css in self.config.additional_css:
            location = locate_resource(self.ctx, css)
            self.log.debug("Appending stylesheet %s", location)
            stylesheet.extend(location.read_bytes())
        self.log.debug("Found style(s) = [%d] bytes", len(stylesheet))
        return bytes(stylesheet)

    def embed_stylesheets(self) -> None:
        self.log.info("6. Embed stylesheets")
        self.packager.set_stylesheet(self.generate_stylesheet())

    def embed_assets(self) -> int:
        self.log.info("7. Embed assets [%d]", len(self.assets))
        count = 0
        for asset in self.assets:
            content = self.retriever.read(asset.location_on_disk)
            self.log.debug("Adding asset: %s as %s", asset.original_link, asset.filename)
            if self.packager.add_resource(asset.filename.as_posix(), content, asset.mimetype):
                count += 1
        return count

    def embed_additional_resources(self) -> int:
        self.log.info("8. Embed additional resources")
        count = 0
        for path in self.config.additional_resources:
            location = locate_resource(self.ctx, path)
            mimetype = guess_mimetype(location)
            self.log.debug("Adding resource [%d]: %s / %s", count, path, mimetype)
            if self.packager.add_resource(path.as_posix(), location.read_bytes(), mimetype):
                count += 1
        return count

    def generate(self, output: Union[str, Path, BinaryIO]) -> None:
        self.log.info("Generating the EPUB book")
        self.populate_metadata()
        self.discover_assets()
        self.prefetch_assets()
        self.generate_chapters()
        self.add_cover_image()
        self.embed_stylesheets()
        self.embed_assets()
        self.embed_additional_resources()
        self.log.info("9. Final generation")
        self.packager.finalize(output)
        self.log.info("Generating the EPUB book - DONE")


def generate(
    ctx: RenderContext,
    retriever: Optional[ContentRetriever] = None,
    log: Union[logging.Logger, logging.LoggerAdapter, None] = None,
) -> Path:
    """Render the book described by ``ctx`` into ``<destination>/<title>.epub``."""
    log = log or logger
    log.debug("Starting the EPUB generator for %s", ctx.root)
    outfile = output_filename(ctx)
    ctx.destination.mkdir(parents=True, exist_ok=True)
    log.debug("Writing to %s", outfile)
    generator = Generator(ctx, retriever=retriever, log=log)
    try:
        with outfile.open("wb") as handle:
            generator.generate(handle)
    except BaseException:
        outfile.unlink(missing_ok=True)
        raise
    log.info("Book is ready: %s", outfile)
    return outfile
