"""Configuration objects and constants for the EPUB generator."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import tomli

from .errors import ConfigError

logger = logging.getLogger("md2epub")

DEFAULT_SRC_DIR = "src"
DEFAULT_LANGUAGE = "en"
DEFAULT_BUILD_DIR = Path("book") / "epub"
SUPPORTED_EPUB_VERSIONS = (2, 3)


@dataclass
class BookConfig:
    """The ``[book]`` table of ``book.toml``."""

    title: Optional[str] = None
    authors: List[str] = field(default_factory=list)
    description: Optional[str] = None
    language: Optional[str] = DEFAULT_LANGUAGE
    src: str = DEFAULT_SRC_DIR

    @classmethod
    def from_table(cls, table: Mapping[str, Any]) -> "BookConfig":
        return cls(
            title=table.get("title"),
            authors=list(table.get("authors") or []),
            description=table.get("description"),
            language=table.get("language") or DEFAULT_LANGUAGE,
            src=table.get("src") or DEFAULT_SRC_DIR,
        )


@dataclass
class EpubConfig:
    """Settings of the ``[output.epub]`` table that control EPUB generation."""

    additional_css: List[Path] = field(default_factory=list)
    additional_resources: List[Path] = field(default_factory=list)
    use_default_css: bool = True
    index_template: Optional[Path] = None
    cover_image: Optional[Path] = None
    curly_quotes: bool = False
    epub_version: Optional[int] = None
    footnote_backrefs: bool = False
    no_section_label: bool = False

    def __post_init__(self) -> None:
        if (
            self.epub_version is not None
            and self.epub_version not in SUPPORTED_EPUB_VERSIONS
        ):
            raise ConfigError(
                f"Unsupported epub version specified in book.toml: {self.epub_version}"
            )

    @property
    def epub_version_3(self) -> bool:
        return self.epub_version == 3

    @property
    def render_footnote_backrefs(self) -> bool:
        return self.epub_version_3 and self.footnote_backrefs

    @classmethod
    def from_table(cls, table: Optional[Mapping[str, Any]]) -> "EpubConfig":
        """Build the config from a kebab-case table, ignoring unknown keys."""
        if not table:
            return cls()
        known = {f.name for f in fields(cls)}
        values: Dict[str, Any] = {}
        for key, value in table.items():
            name = key.replace("-", "_")
            if name not in known:
                logger.debug("Ignoring unknown [output.epub] key '%s'", key)
                continue
            values[name] = value
        for name in ("additional_css", "additional_resources"):
            if name in values:
                values[name] = [Path(p) for p in values[name]]
        for name in ("index_template", "cover_image"):
            if values.get(name):
                values[name] = Path(values[name])
        if "epub_version" in values and values["epub_version"] is not None:
            try:
                values["epub_version"] = int(values["epub_version"])
            except (TypeError, ValueError) as err:
                raise ConfigError(
                    f"Invalid epub version in book.toml: {values['epub_version']!r}"
                ) from err
        return cls(**values)


def load_book_toml(root: Path) -> Dict[str, Any]:
    """Read ``book.toml`` from the book root, returning an empty table if absent."""
    config_path = root / "book.toml"
    if not config_path.is_file():
        logger.warning("No book.toml found in %s, using defaults", root)
        return {}
    try:
        with config_path.open("rb") as handle:
            return tomli.load(handle)
    except tomli.TOMLDecodeError as err:
        raise ConfigError(f"Unable to parse {config_path}: {err}") from err


def configs_from_table(table: Mapping[str, Any]):
    """Split a full ``book.toml`` document into book and EPUB settings."""
    book = BookConfig.from_table(table.get("book") or {})
    epub = EpubConfig.from_table((table.get("output") or {}).get("epub"))
    return book, epub
