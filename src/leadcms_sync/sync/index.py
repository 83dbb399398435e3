"""Identifier index over a local mirror.

The index maps each record id to the mirror file(s) that currently hold
it.  It is built by a read-only walk before any mutation and then kept
current in memory by the reconciler, so slug, type and language changes
can find and remove a record's previous file no matter where it lives.

Ids are extracted with anchored patterns: a file whose id is ``100`` is
never reported for id ``10``.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterator
from pathlib import Path

from ..file_handler import (
    DATA_FORMAT,
    HEADER_FORMAT,
    detect_file_format,
    read_file_with_encoding,
)
from .models import LocalFileRecord
from .transform import header_block

logger = logging.getLogger(__name__)

_YAML_ID = re.compile(r"(?:^|\n)id:\s*['\"]?(\d+)['\"]?[ \t]*(?:\r?\n|$)")
_JSON_ID = re.compile(r"\"id\"\s*:\s*['\"]?(\d+)['\"]?\s*(?:,|\}|\n|$)")


def extract_id(text: str, fmt: str) -> int | None:
    """Extract the record id embedded in a mirror file.

    For ``HEADER_FORMAT`` only the header block is searched, so an ``id:``
    line inside the body never counts.  For ``DATA_FORMAT`` the top-level
    object's ``"id"`` is used.

    Returns:
        The id, or ``None`` for files that carry no identifier.
    """
    if fmt == HEADER_FORMAT:
        header = header_block(text)
        if header is None:
            return None
        match = _YAML_ID.search(header)
        return int(match.group(1)) if match else None

    try:
        data = json.loads(text)
    except ValueError:
        match = _JSON_ID.search(text)
        return int(match.group(1)) if match else None
    if isinstance(data, dict):
        value = data.get("id")
        if isinstance(value, bool):
            return None
        if isinstance(value, int):
            return value
        if isinstance(value, str) and value.strip().isdigit():
            return int(value)
    return None


def extract_container_ids(text: str) -> list[int]:
    """Return the ids of every record in a JSON array container file."""
    try:
        data = json.loads(text)
    except ValueError:
        return []
    if not isinstance(data, list):
        return []
    ids = []
    for entry in data:
        if isinstance(entry, dict):
            value = entry.get("id")
            if isinstance(value, int) and not isinstance(value, bool):
                ids.append(value)
    return ids


def find_files_for_id(root: Path, record_id: int) -> list[Path]:
    """Rescan *root* for every file that declares exactly *record_id*.

    Used by deletion to catch files the in-memory index did not cover.
    Only the header block (or the top-level JSON id) is consulted, so a
    file for id ``100`` never matches ``10``.
    """
    return [
        record.path
        for record in scan_mirror(root)
        if record.extracted_id == record_id
    ]


def scan_mirror(root: Path) -> Iterator[LocalFileRecord]:
    """Yield every managed file under *root* with its extracted id."""
    if not root.is_dir():
        return
    for path in sorted(root.rglob("*")):
        if not path.is_file():
            continue
        if any(part.startswith(".") for part in path.relative_to(root).parts):
            continue
        fmt = detect_file_format(path)
        if fmt is None:
            continue
        try:
            text, _ = read_file_with_encoding(path)
        except OSError as exc:
            logger.warning("Cannot read %s: %s", path, exc)
            continue
        yield LocalFileRecord(path=path, extracted_id=extract_id(text, fmt), format=fmt)


class IdentifierIndex:
    """Map of record id to the mirror path(s) holding it.

    Normally each id maps to zero or one path; several paths appear only
    transiently, e.g. when an earlier run was interrupted mid-rename.
    """

    def __init__(self) -> None:
        self._paths: dict[int, list[Path]] = {}

    @classmethod
    def build(cls, root: Path, containers: bool = False) -> IdentifierIndex:
        """Walk *root* and index every file that embeds an id.

        Args:
            root: Mirror directory.
            containers: Treat JSON files as arrays of records (comments)
                and index every contained id.
        """
        index = cls()
        for record in scan_mirror(root):
            if containers and record.format == DATA_FORMAT:
                text, _ = read_file_with_encoding(record.path)
                for record_id in extract_container_ids(text):
                    index.add(record_id, record.path)
            elif record.extracted_id is not None:
                index.add(record.extracted_id, record.path)
        logger.debug("Indexed %d ids under %s", len(index), root)
        return index

    def lookup(self, record_id: int) -> list[Path]:
        """Return the paths holding *record_id* (empty list if none)."""
        return list(self._paths.get(record_id, ()))

    def add(self, record_id: int, path: Path) -> None:
        paths = self._paths.setdefault(record_id, [])
        if path not in paths:
            paths.append(path)

    def remove(self, record_id: int, path: Path | None = None) -> None:
        """Forget *path* for *record_id*, or every path when *path* is None."""
        if path is None:
            self._paths.pop(record_id, None)
            return
        paths = self._paths.get(record_id)
        if not paths:
            return
        if path in paths:
            paths.remove(path)
        if not paths:
            del self._paths[record_id]

    def release(self, path: Path) -> None:
        """Forget *path* for every id, e.g. after another record took it."""
        for record_id in [i for i, paths in self._paths.items() if path in paths]:
            self.remove(record_id, path)

    def ids(self) -> list[int]:
        return sorted(self._paths)

    def __contains__(self, record_id: object) -> bool:
        return record_id in self._paths

    def __len__(self) -> int:
        return len(self._paths)
