import sys
from pathlib import Path, PurePosixPath
from unittest.mock import MagicMock

import pytest
import requests

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from md2epub.config import BookConfig, EpubConfig  # noqa: E402
from md2epub.models import Chapter, RenderContext  # noqa: E402

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64
SVG_BYTES = b'<svg xmlns="http://www.w3.org/2000/svg" width="1" height="1"></svg>'


@pytest.fixture
def png_bytes():
    return PNG_BYTES


@pytest.fixture
def svg_bytes():
    return SVG_BYTES


@pytest.fixture
def http_session():
    """Factory for a requests.Session stand-in answering every GET the same way."""

    def factory(content=b"", content_type=None, status_code=200, error=None):
        session = MagicMock()
        session.headers = {}
        if error is not None:
            session.get.side_effect = error
            return session
        response = MagicMock()
        response.status_code = status_code
        response.content = content
        response.headers = {"Content-Type": content_type} if content_type else {}
        if status_code >= 400:
            response.raise_for_status.side_effect = requests.HTTPError(f"{status_code} Error")
        else:
            response.raise_for_status.return_value = None
        session.get.return_value = response
        return session

    return factory


@pytest.fixture
def book_root(tmp_path):
    root = tmp_path / "book"
    (root / "src").mkdir(parents=True)
    return root


@pytest.fixture
def make_context(book_root):
    def factory(items, title="Test Book", epub=None, destination=None):
        return RenderContext(
            root=book_root,
            items=items,
            book=BookConfig(title=title),
            epub=epub or EpubConfig(),
            destination=destination or book_root / "book" / "epub",
        )

    return factory


@pytest.fixture
def write_chapter(book_root):
    """Write a chapter file under src/ and return the matching Chapter."""

    def factory(relative, content, name=None, number=None):
        path = book_root / "src" / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        return Chapter(
            name=name or Path(relative).stem,
            content=content,
            path=PurePosixPath(relative),
            number=number,
        )

    return factory
