"""Remote asset downloading, type sniffing and the on-disk content cache."""

from __future__ import annotations

import logging
import mimetypes
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Iterable, Optional

import requests
from filetype import guess

from .errors import AssetFileNotFoundError, MimeParseError, TransportError
from .models import Asset, AssetUpdate, RemoteSource, guess_mimetype
from .utils import TRACE

logger = logging.getLogger("md2epub")

USER_AGENT = "md2epub (+https://github.com/md2epub/md2epub)"
SVG_MIMETYPE = "image/svg+xml"
SVG_SNIFF_BYTES = 1024
PREFERRED_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/svg+xml": "svg",
    "image/tiff": "tiff",
    "text/plain": "txt",
}


@dataclass
class RetrievedContent:
    """Body and declared type of one HTTP response."""

    data: bytes
    content_type: Optional[str] = None


def looks_like_svg(data: bytes) -> bool:
    head = data[:SVG_SNIFF_BYTES].lstrip().lower()
    if head.startswith(b"<svg"):
        return True
    return head.startswith(b"<?xml") and b"<svg" in head


def detect_mimetype(data: bytes, content_type: Optional[str] = None) -> Optional[str]:
    """Identify content from its signature, falling back to the HTTP header."""
    kind = guess(data)
    if kind:
        return kind.mime
    if looks_like_svg(data):
        return SVG_MIMETYPE
    if content_type:
        declared = content_type.split(";")[0].strip().lower()
        if "/" in declared and declared != "application/octet-stream":
            return declared
    return None


def extension_for_mimetype(mimetype: str) -> Optional[str]:
    if mimetype in PREFERRED_EXTENSIONS:
        return PREFERRED_EXTENSIONS[mimetype]
    ext = mimetypes.guess_extension(mimetype, strict=False)
    return ext.lstrip(".") if ext else None


def _with_extension(filename: PurePosixPath, location: Path, ext: str):
    return (
        filename.with_name(f"{filename.name}.{ext}"),
        location.with_name(f"{location.name}.{ext}"),
    )


class ContentRetriever:
    """Fetches remote assets once and serves them from ``cache_dir`` afterwards."""

    def __init__(
        self,
        cache_dir: Path,
        session: Optional[requests.Session] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.cache_dir = cache_dir
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.setdefault("User-Agent", USER_AGENT)

    def retrieve(self, url: str) -> RetrievedContent:
        try:
            resp = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as exc:
            raise TransportError(f"Failed to fetch {url}: {exc}") from exc
        if resp.status_code == 404:
            raise AssetFileNotFoundError(f"Remote asset not found (404): {url}")
        try:
            resp.raise_for_status()
        except requests.HTTPError as exc:
            raise TransportError(f"Failed to fetch {url}: {exc}") from exc
        return RetrievedContent(resp.content, resp.headers.get("Content-Type"))

    def _cached_variant(self, location: Path) -> Optional[Path]:
        # Files without a URL extension are stored with the sniffed one appended
        if location.suffix:
            return None
        if not location.parent.is_dir():
            return None
        for candidate in sorted(location.parent.glob(f"{location.name}.*")):
            if candidate.is_file():
                return candidate
        return None

    def download(self, asset: Asset) -> AssetUpdate:
        """Make sure ``asset`` is present on disk and report its final identity.

        Already cached files are not fetched again. The caller applies the
        returned update to its own copy of the asset.
        """
        if not isinstance(asset.source, RemoteSource):
            raise TypeError(f"Only remote assets can be downloaded: {asset.original_link}")
        location = asset.location_on_disk
        unchanged = AssetUpdate(asset.mimetype, asset.filename, location)
        if location.is_file():
            logger.debug("Cache file %s for '%s' already exists", location, asset.original_link)
            return unchanged
        cached = self._cached_variant(location)
        if cached is not None:
            logger.debug("Using cached %s for '%s'", cached, asset.original_link)
            return AssetUpdate(
                guess_mimetype(cached),
                asset.filename.with_name(cached.name),
                cached,
            )

        location.parent.mkdir(parents=True, exist_ok=True)
        logger.info("Downloading remote content from %s", asset.source.url)
        content = self.retrieve(asset.source.url)
        mimetype = detect_mimetype(content.data, content.content_type)
        if mimetype is None:
            raise MimeParseError(
                f"Unable to determine content type of {asset.source.url} "
                f"(Content-Type={content.content_type})"
            )

        filename, target = asset.filename, location
        if not filename.suffix:
            ext = extension_for_mimetype(mimetype)
            if ext:
                filename, target = _with_extension(filename, location, ext)

        logger.log(TRACE, "Writing %d bytes to %s", len(content.data), target)
        try:
            target.write_bytes(content.data)
        except OSError as exc:
            raise TransportError(f"Failed to write {target}: {exc}") from exc
        logger.debug("Downloaded '%s' to %s as %s", asset.original_link, target, mimetype)
        return AssetUpdate(mimetype, filename, target)

    def ensure_downloaded(self, asset: Asset) -> Asset:
        """Download and update ``asset`` in place."""
        asset.apply(self.download(asset))
        return asset

    def prefetch(self, assets: Iterable[Asset]) -> int:
        count = 0
        for asset in assets:
            if asset.is_remote:
                self.ensure_downloaded(asset)
                count += 1
        return count

    @staticmethod
    def read(location: Path) -> bytes:
        try:
            return location.read_bytes()
        except FileNotFoundError as exc:
            raise AssetFileNotFoundError(f"Asset file not found: {location}") from exc
