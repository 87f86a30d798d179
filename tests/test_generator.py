import logging
import re
import zipfile
from pathlib import Path

import pytest

from md2epub.cache import ContentRetriever
from md2epub.config import EpubConfig
from md2epub.errors import InvalidOutputFilenameError, TransportError
from md2epub.generator import generate, locate_resource, output_filename
from md2epub.models import Chapter
from md2epub.utils import hash_link

REMOTE_URL = "https://host/b.svg"


def read_book(path):
    with zipfile.ZipFile(path) as archive:
        return {name: archive.read(name) for name in archive.namelist()}


@pytest.fixture
def retriever(http_session, svg_bytes):
    def factory(ctx):
        session = http_session(svg_bytes, "image/svg+xml")
        return ContentRetriever(ctx.destination / "cache", session=session)

    return factory


class TestOutputFilename:
    def test_title(self, make_context):
        ctx = make_context([], title="My Book")
        assert output_filename(ctx) == ctx.destination / "My Book.epub"

    def test_no_title(self, make_context):
        ctx = make_context([], title=None)
        assert output_filename(ctx) == ctx.destination / "book.epub"

    def test_invalid_title(self, make_context):
        with pytest.raises(InvalidOutputFilenameError):
            output_filename(make_context([], title="a/b"))


class TestLocateResource:
    def test_prefers_src_dir(self, make_context, book_root):
        (book_root / "src" / "extra.css").write_text("p {}")
        (book_root / "extra.css").write_text("h1 {}")
        ctx = make_context([])
        assert locate_resource(ctx, Path("extra.css")) == (book_root / "src" / "extra.css").resolve()

    def test_falls_back_to_root(self, make_context, book_root):
        (book_root / "theme.css").write_text("h1 {}")
        ctx = make_context([])
        assert locate_resource(ctx, Path("theme.css")) == (book_root / "theme.css").resolve()


class TestGenerate:
    def test_full_book(self, make_context, write_chapter, book_root, png_bytes, retriever):
        (book_root / "src" / "a.png").write_bytes(png_bytes)
        first = write_chapter(
            "chapter_1.md",
            f"# One\n\n![local](a.png)\n\n![remote]({REMOTE_URL})\n",
            name="One",
            number=[1],
        )
        nested = write_chapter(
            "sub/chapter_2.md",
            "# Two\n\n![up](../a.png)\n",
            name="Two",
            number=[1, 1],
        )
        first.sub_items.append(nested)
        draft = Chapter("Draft", number=[2])
        ctx = make_context([first, draft])

        outfile = generate(ctx, retriever=retriever(ctx))

        assert outfile == ctx.destination / "Test Book.epub"
        files = read_book(outfile)
        cached = hash_link(REMOTE_URL)
        assert files["EPUB/a.png"] == png_bytes
        assert f"EPUB/{cached}" in files
        assert "EPUB/stylesheet.css" in files

        one = files["EPUB/chapter_1.html"].decode("utf-8")
        assert 'src="a.png"' in one
        assert f'src="{cached}"' in one
        assert 'href="stylesheet.css"' in one

        two = files["EPUB/sub/chapter_2.html"].decode("utf-8")
        assert 'src="../a.png"' in two
        assert 'href="../stylesheet.css"' in two

        assert "Draft" not in files["EPUB/nav.xhtml"].decode("utf-8")
        opf = files["EPUB/content.opf"].decode("utf-8")
        assert 'type="text"' in opf
        assert (ctx.destination / "cache" / cached).is_file()

    def test_book_without_title(self, make_context, write_chapter, retriever, caplog):
        chapter = write_chapter("intro.md", "# Intro\n", name="Intro")
        ctx = make_context([chapter], title=None)
        with caplog.at_level(logging.WARNING, logger="md2epub"):
            outfile = generate(ctx, retriever=retriever(ctx))
        assert outfile.name == "book.epub"
        assert "No `title` attribute found" in caplog.text

    def test_invalid_title_creates_nothing(self, make_context, write_chapter):
        chapter = write_chapter("intro.md", "# Intro\n")
        ctx = make_context([chapter], title="bad:title")
        with pytest.raises(InvalidOutputFilenameError):
            generate(ctx)
        assert not ctx.destination.exists()

    def test_outside_link_is_ignored(self, make_context, write_chapter, book_root, retriever, caplog):
        (book_root / "secret.png").write_bytes(b"not for the book")
        chapter = write_chapter("intro.md", "![x](../secret.png)\n", name="Intro")
        ctx = make_context([chapter])
        with caplog.at_level(logging.WARNING, logger="md2epub"):
            outfile = generate(ctx, retriever=retriever(ctx))
        files = read_book(outfile)
        assert "EPUB/secret.png" not in files
        assert 'src="../secret.png"' in files["EPUB/intro.html"].decode("utf-8")
        assert "outside source dir" in caplog.text

    def test_missing_asset_skips_discovery_only(self, make_context, write_chapter, retriever, caplog):
        chapter = write_chapter("intro.md", "Text ![x](missing.png)\n", name="Intro")
        ctx = make_context([chapter])
        with caplog.at_level(logging.ERROR, logger="md2epub"):
            outfile = generate(ctx, retriever=retriever(ctx))
        assert "Look up the content of chapter 'Intro'" in caplog.text
        assert "EPUB/intro.html" in read_book(outfile)

    def test_epub3_footnotes_and_quotes(self, make_context, write_chapter, retriever):
        chapter = write_chapter(
            "notes.md",
            'He said "hi"[^n].\n\n[^n]: A note.\n',
            name="Notes",
        )
        epub = EpubConfig(curly_quotes=True, epub_version=3, footnote_backrefs=True)
        ctx = make_context([chapter], epub=epub)
        page = read_book(generate(ctx, retriever=retriever(ctx)))["EPUB/notes.html"].decode("utf-8")
        assert "He said “hi”" in page
        assert 'xmlns:epub="http://www.idpf.org/2007/ops"' in page
        assert 'epub:type="footnote"' in page
        assert '<a href="#fr-n-1">↩</a>' in page

    def test_additional_css_and_resources(self, make_context, write_chapter, book_root, retriever):
        (book_root / "src" / "extra.css").write_text(".extra { color: red; }")
        (book_root / "src" / "fonts").mkdir()
        (book_root / "src" / "fonts" / "a.ttf").write_bytes(b"font")
        chapter = write_chapter("intro.md", "# Intro\n", name="Intro")
        epub = EpubConfig(
            use_default_css=False,
            additional_css=[Path("extra.css")],
            additional_resources=[Path("fonts/a.ttf")],
        )
        ctx = make_context([chapter], epub=epub)
        files = read_book(generate(ctx, retriever=retriever(ctx)))
        assert files["EPUB/stylesheet.css"] == b".extra { color: red; }"
        assert files["EPUB/fonts/a.ttf"] == b"font"

    def test_failed_download_removes_output(self, make_context, write_chapter, http_session):
        chapter = write_chapter("intro.md", f"![r]({REMOTE_URL})\n", name="Intro")
        ctx = make_context([chapter])
        failing = ContentRetriever(ctx.destination / "cache", session=http_session(status_code=500))
        with pytest.raises(TransportError):
            generate(ctx, retriever=failing)
        assert not (ctx.destination / "Test Book.epub").exists()

    def test_skipped_parent_keeps_children_and_siblings(self, make_context, write_chapter, retriever):
        child = write_chapter("sub/child.md", "# Child\n", name="Child", number=[1, 1])
        parent = Chapter("Parent", number=[1], sub_items=[child])
        sibling = write_chapter("sib.md", "# Sibling\n", name="Sibling", number=[2])
        ctx = make_context([parent, sibling])

        files = read_book(generate(ctx, retriever=retriever(ctx)))

        assert "EPUB/sub/child.html" in files
        assert "EPUB/sib.html" in files
        opf = files["EPUB/content.opf"].decode("utf-8")
        guide = re.findall(r"<reference [^>]*>", opf)
        assert len(guide) == 1
        assert 'type="text"' in guide[0]
        assert 'href="sib.html"' in guide[0]
