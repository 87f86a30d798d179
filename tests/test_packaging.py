import zipfile
from io import BytesIO

import pytest
from ebooklib import epub

from md2epub.errors import PackagingError
from md2epub.packaging import BookPackager


def page(title):
    return f"<html><head><title>{title}</title></head><body><p>{title}</p></body></html>".encode()


class TestBuildToc:
    def test_nested_levels(self):
        packager = BookPackager()
        packager.add_content("intro.html", page("Intro"), "Intro")
        packager.add_content("one.html", page("One"), "1. One")
        packager.add_content("one/a.html", page("A"), "1.1. A", nav_level=1)
        packager.add_content("one/a/x.html", page("X"), "1.1.1. X", nav_level=2)
        packager.add_content("one/b.html", page("B"), "1.2. B", nav_level=1)
        packager.add_content("two.html", page("Two"), "2. Two")

        intro, one, two = packager.build_toc()

        assert isinstance(intro, epub.Link) and intro.href == "intro.html"
        section, children = one
        assert isinstance(section, epub.Section)
        assert section.title == "1. One" and section.href == "one.html"
        first, second = children
        nested_section, nested = first
        assert nested_section.title == "1.1. A"
        assert [link.title for link in nested] == ["1.1.1. X"]
        assert second.title == "1.2. B"
        assert two.href == "two.html"


class TestBookPackager:
    def build(self):
        packager = BookPackager()
        packager.add_metadata("title", "Packaged")
        packager.add_metadata("author", "Ann")
        packager.add_metadata("lang", "en")
        packager.add_metadata("generator", "md2epub")
        packager.add_metadata("description", "A test book")
        packager.add_content("index.html", page("Intro"), "Intro", guide_type="text")
        packager.add_content("chapter_1.html", page("One"), "1. One")
        packager.set_stylesheet(b"body { margin: 0; }")
        packager.add_resource("assets/a.png", b"\x89PNG\r\n\x1a\n", "image/png")
        return packager

    def test_duplicate_resource(self):
        packager = self.build()
        assert packager.add_resource("assets/a.png", b"other", "image/png") is None
        assert packager.add_resource("assets/b.png", b"other", "image/png") is not None

    def test_finalize_writes_container(self):
        packager = self.build()
        buffer = BytesIO()
        packager.finalize(buffer)

        with zipfile.ZipFile(BytesIO(buffer.getvalue())) as archive:
            names = archive.namelist()
            assert names[0] == "mimetype"
            assert archive.read("mimetype") == b"application/epub+zip"
            for expected in (
                "EPUB/index.html",
                "EPUB/chapter_1.html",
                "EPUB/stylesheet.css",
                "EPUB/assets/a.png",
                "EPUB/toc.ncx",
                "EPUB/nav.xhtml",
            ):
                assert expected in names
            opf = archive.read("EPUB/content.opf").decode("utf-8")
            chapter = archive.read("EPUB/index.html")

        assert "<dc:title>Packaged</dc:title>" in opf
        assert "<dc:creator" in opf and "Ann" in opf
        assert 'type="text"' in opf
        assert opf.index('idref="chapter_0"') < opf.index('idref="chapter_1"')
        assert chapter == page("Intro")

    def test_cover_image(self):
        packager = self.build()
        packager.set_cover_image("cover.png", b"\x89PNG\r\n\x1a\n", "image/png")
        buffer = BytesIO()
        packager.finalize(buffer)
        with zipfile.ZipFile(BytesIO(buffer.getvalue())) as archive:
            assert "EPUB/cover.png" in archive.namelist()

    def test_duplicate_chapter_path(self):
        packager = self.build()
        with pytest.raises(PackagingError, match="chapter_1.html"):
            packager.add_content("chapter_1.html", page("Again"), "Again")

    def test_write_failure_is_reported(self, monkeypatch):
        packager = self.build()

        def broken_writer(*args, **kwargs):
            raise KeyError("nav")

        monkeypatch.setattr(epub, "write_epub", broken_writer)
        with pytest.raises(PackagingError) as exc:
            packager.finalize(BytesIO())
        assert isinstance(exc.value.__cause__, KeyError)
