"""Path algebra, link hashing and logging helpers."""

from __future__ import annotations

import hashlib
import logging
from pathlib import PurePath, PurePosixPath
from typing import Any, MutableMapping, Tuple, TypeVar, Union
from urllib.parse import urlsplit

TRACE = 5
logging.addLevelName(TRACE, "TRACE")

FORBIDDEN_FILENAME_CHARS = set('<>:"/\\|?*')
RESERVED_WINDOWS_NAMES = {
    "CON",
    "PRN",
    "AUX",
    "NUL",
    *(f"COM{n}" for n in range(1, 10)),
    *(f"LPT{n}" for n in range(1, 10)),
}
MAX_FILENAME_BYTES = 255

P = TypeVar("P", bound=PurePath)


class ContextAdapter(logging.LoggerAdapter):
    """Prefix every message with the unit of work it belongs to."""

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> Tuple[Any, MutableMapping[str, Any]]:
        return f"[{self.extra['context']}] {msg}", kwargs


def with_context(logger: Union[logging.Logger, logging.LoggerAdapter], context: str):
    if isinstance(logger, logging.LoggerAdapter):
        logger = logger.logger
    return ContextAdapter(logger, {"context": context})


def normalize_path(path: P) -> P:
    """Collapse ``.`` and ``..`` components without touching the filesystem.

    A ``..`` with nothing left to pop is kept when the path is relative and
    dropped when it would climb above an absolute root.
    """
    anchor = path.anchor
    parts = path.parts[1:] if anchor else path.parts
    kept: list = []
    for part in parts:
        if part == ".":
            continue
        if part == "..":
            if kept and kept[-1] != "..":
                kept.pop()
            elif not anchor:
                kept.append(part)
            continue
        kept.append(part)
    return type(path)(anchor, *kept)


def path_prefix(depth: int, filename: Union[str, PurePath]) -> str:
    """Return ``filename`` as seen from a chapter ``depth`` directories deep.

    The result always uses forward slashes, whatever the host separator is.
    """
    if isinstance(filename, PurePath):
        target = "/".join(filename.parts)
    else:
        target = filename.replace("\\", "/")
    return "/".join([".."] * depth + [target])


def chapter_depth(chapter_path: Union[str, PurePath]) -> int:
    """Number of directories between the container root and a chapter."""
    return len(PurePosixPath(str(chapter_path).replace("\\", "/")).parent.parts)


def hash_link(url: str) -> str:
    """Deterministic cache name for a remote URL.

    Only scheme, host, path and query take part in the hash; the fragment does
    not change the fetched bytes. A file extension found on the URL path is
    kept so the cached file can be recognised without sniffing.
    """
    parts = urlsplit(url)
    identity = f"{parts.scheme}://{parts.netloc}{parts.path}"
    if parts.query:
        identity += f"?{parts.query}"
    digest = hashlib.blake2b(identity.encode("utf-8"), digest_size=8).hexdigest()
    suffix = PurePosixPath(parts.path).suffix
    if suffix and len(suffix) > 1:
        return f"{digest}{suffix.lower()}"
    return digest


def is_valid_filename(filename: str) -> bool:
    """Check that ``filename`` is usable on Linux, macOS and Windows."""
    if not filename:
        return False
    if any(char in FORBIDDEN_FILENAME_CHARS for char in filename):
        return False
    if filename.upper() in RESERVED_WINDOWS_NAMES:
        return False
    if "\0" in filename:
        return False
    if len(filename.encode("utf-8")) > MAX_FILENAME_BYTES:
        return False
    return len(PurePath(filename).parts) == 1
