import io
import json
import zipfile

import pytest

from md2epub import cli


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch):
    monkeypatch.setattr(cli, "_configure_logging", lambda args: None)


def write_book(root, title):
    (root / "book.toml").write_text(f'[book]\ntitle = "{title}"\n')
    (root / "src" / "SUMMARY.md").write_text("- [Chapter 1](chapter_1.md)\n")
    (root / "src" / "chapter_1.md").write_text("# Chapter 1\n\nHello.\n")


class TestParseArgs:
    def test_defaults(self):
        args = cli.parse_args([])
        assert str(args.root) == "."
        assert not args.standalone
        assert not args.verbose and not args.trace

    def test_flags(self, tmp_path):
        args = cli.parse_args(["-s", "--verbose", str(tmp_path)])
        assert args.standalone and args.verbose
        assert args.root == tmp_path


class TestMain:
    def test_standalone(self, book_root):
        write_book(book_root, "Standalone")
        cli.main(["--standalone", str(book_root)])
        outfile = book_root / "book" / "epub" / "Standalone.epub"
        with zipfile.ZipFile(outfile) as archive:
            assert "EPUB/chapter_1.html" in archive.namelist()

    def test_plugin_reads_stdin(self, book_root, monkeypatch):
        (book_root / "src" / "chapter_1.md").write_text("# Chapter 1\n")
        destination = book_root / "out"
        document = {
            "root": str(book_root),
            "destination": str(destination),
            "book": {
                "sections": [
                    {
                        "Chapter": {
                            "name": "Chapter 1",
                            "content": "# Chapter 1\n",
                            "number": [1],
                            "sub_items": [],
                            "path": "chapter_1.md",
                        }
                    }
                ]
            },
            "config": {"book": {"title": "Plugin"}},
        }
        monkeypatch.setattr("sys.stdin", io.StringIO(json.dumps(document)))
        cli.main([])
        assert (destination / "Plugin.epub").is_file()

    def test_invalid_title_exits(self, book_root):
        write_book(book_root, "what?")
        with pytest.raises(SystemExit) as exc:
            cli.main(["-s", str(book_root)])
        assert exc.value.code == 1

    def test_duplicate_chapter_exits(self, book_root):
        write_book(book_root, "Twice")
        (book_root / "src" / "SUMMARY.md").write_text(
            "- [Chapter 1](chapter_1.md)\n- [Chapter 1 again](chapter_1.md)\n"
        )
        with pytest.raises(SystemExit) as exc:
            cli.main(["--standalone", str(book_root)])
        assert exc.value.code == 1
