"""File handler module: encoding-aware read/write and mirror file formats.

Provides the file I/O used by the identifier index and the reconcilers.
Every function here is synchronous and side-effect free apart from the
file system calls it makes.
"""

import os
import tempfile
from pathlib import Path

from charset_normalizer import from_bytes

# =============================================================================
# Mirror formats
# =============================================================================

HEADER_FORMAT = "structured-text-with-header"
DATA_FORMAT = "plain-structured-data"

_EXTENSION_FORMAT_MAP: dict[str, str] = {
    ".mdx": HEADER_FORMAT,
    ".md": HEADER_FORMAT,
    ".html": HEADER_FORMAT,
    ".json": DATA_FORMAT,
}


def detect_file_format(path: Path) -> str | None:
    """Return the mirror format implied by *path*'s extension.

    Returns:
        ``HEADER_FORMAT``, ``DATA_FORMAT``, or ``None`` for files the
        mirror does not manage (images, cursor files, editor backups).
    """
    if path.name.startswith("."):
        return None
    return _EXTENSION_FORMAT_MAP.get(path.suffix.lower())


# =============================================================================
# File Read/Write
# =============================================================================


def read_file_with_encoding(path: Path) -> tuple[str, str]:
    """Read a file, detecting its encoding when it is not UTF-8.

    UTF-8 is tried first since every file the engine writes uses it;
    anything else goes through charset-normalizer.

    Args:
        path: Path to the file to read.

    Returns:
        Tuple of (content_string, detected_encoding).
    """
    raw = path.read_bytes()
    if not raw:
        return ("", "utf-8")

    try:
        return (raw.decode("utf-8"), "utf-8")
    except UnicodeDecodeError:
        pass

    result = from_bytes(raw).best()
    if result is None:
        return (raw.decode("utf-8", errors="replace"), "utf-8")
    return (str(result), result.encoding)


def read_text_if_exists(path: Path) -> str | None:
    """Return the decoded content of *path*, or ``None`` if it is absent."""
    if not path.is_file():
        return None
    content, _ = read_file_with_encoding(path)
    return content


def write_file(
    path: Path, content: str, encoding: str = "utf-8"
) -> int:
    """Write content to a file, creating parent directories as needed.

    The text goes to a hidden temporary file in the same directory which
    then replaces *path*, so readers never see a half-written file.

    Args:
        path: Path to the output file.
        content: String content to write.
        encoding: Encoding to use (default: utf-8).

    Returns:
        Number of bytes written.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    encoded = content.encode(encoding)

    fd, tmp_path = tempfile.mkstemp(
        dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp"
    )
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(encoded)
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise
    return len(encoded)


def delete_file(path: Path) -> bool:
    """Delete *path* if present.

    Returns:
        ``True`` if a file was removed, ``False`` if it did not exist.
    """
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    return True


def prune_empty_dirs(start: Path, stop: Path) -> None:
    """Remove empty directories from *start* upwards, never removing *stop*."""
    stop = stop.resolve()
    current = start.resolve()
    while current != stop and current.is_relative_to(stop):
        try:
            current.rmdir()
        except OSError:
            # Not empty (or already gone); nothing above can be empty either.
            return
        current = current.parent
