"""Data models shared by the discovery, rendering and packaging passes."""

from __future__ import annotations

import mimetypes
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Iterator, List, Optional, Sequence, Union

from .config import BookConfig, EpubConfig

DEFAULT_MIMETYPE = "application/octet-stream"


def guess_mimetype(path: Union[str, Path]) -> str:
    mimetype, _ = mimetypes.guess_type(str(path), strict=False)
    return mimetype or DEFAULT_MIMETYPE


@dataclass(frozen=True)
class LocalSource:
    """Link to a file inside the book's source directory."""

    path: PurePosixPath


@dataclass(frozen=True)
class RemoteSource:
    """Absolute http(s) URL fetched into the remote content cache."""

    url: str


AssetSource = Union[LocalSource, RemoteSource]


@dataclass(frozen=True)
class AssetUpdate:
    """Fields of a remote asset that become known after the first download."""

    mimetype: str
    filename: PurePosixPath
    location_on_disk: Path


@dataclass
class Asset:
    """One resolved image or resource reference found in chapter content."""

    original_link: str
    source: AssetSource
    location_on_disk: Path
    filename: PurePosixPath
    mimetype: str

    @property
    def is_remote(self) -> bool:
        return isinstance(self.source, RemoteSource)

    def apply(self, update: AssetUpdate) -> None:
        self.mimetype = update.mimetype
        self.filename = update.filename
        self.location_on_disk = update.location_on_disk


@dataclass
class Chapter:
    """A markdown-sourced node of the book tree."""

    name: str
    content: str = ""
    path: Optional[PurePosixPath] = None
    number: Optional[List[int]] = None
    sub_items: List["BookItem"] = field(default_factory=list)

    @property
    def is_draft(self) -> bool:
        return self.path is None

    @property
    def section_label(self) -> Optional[str]:
        if not self.number:
            return None
        return "".join(f"{n}." for n in self.number)

    @property
    def nav_level(self) -> int:
        return len(self.number) - 1 if self.number else 0

    def __str__(self) -> str:
        label = self.section_label
        return f"{label} {self.name}" if label else self.name


@dataclass(frozen=True)
class Separator:
    pass


@dataclass(frozen=True)
class PartTitle:
    title: str


BookItem = Union[Chapter, Separator, PartTitle]


def iter_chapters(items: Sequence[BookItem]) -> Iterator[Chapter]:
    """Depth-first, parent before children, in source order."""
    for item in items:
        if isinstance(item, Chapter):
            yield item
            yield from iter_chapters(item.sub_items)


@dataclass
class RenderContext:
    """Everything a single book render needs to know."""

    root: Path
    items: List[BookItem]
    book: BookConfig
    epub: EpubConfig
    destination: Path

    @property
    def src_dir(self) -> Path:
        return self.root / self.book.src

    def chapters(self) -> Iterator[Chapter]:
        return iter_chapters(self.items)
