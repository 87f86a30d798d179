"""Exception types raised while building an EPUB book."""

from __future__ import annotations


class Md2EpubError(RuntimeError):
    """Base class for every error the generator reports to the user."""


class ConfigError(Md2EpubError):
    pass


class AssetError(Md2EpubError):
    """A link found in chapter content could not be turned into an asset."""


class AssetFileNotFoundError(AssetError):
    pass


class AssetFileError(AssetError):
    """The link resolves to something that is not a plain regular file."""


class AssetOutsideSrcDirError(AssetFileError):
    pass


class ContentFileNotFoundError(Md2EpubError):
    pass


class TemplateParseError(Md2EpubError):
    pass


class TransportError(Md2EpubError):
    pass


class MimeParseError(Md2EpubError):
    pass


class InvalidOutputFilenameError(Md2EpubError):
    def __init__(self, title: str) -> None:
        super().__init__(
            f"Incorrect book 'title', impossible to create file with name: '{title}'"
        )
        self.title = title


class PackagingError(Md2EpubError):
    """The EPUB container could not be assembled or written."""
