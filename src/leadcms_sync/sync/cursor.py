"""Sync cursor persistence.

Each entity kind keeps one opaque cursor in ``<entity_dir>/.sync-token``.
Older releases stored it beside the entity directory under a kind-specific
name (``sync-token.txt``, ``media-sync-token.txt``,
``comment-sync-token.txt``); such a legacy cursor is read once when the new
file is missing and is deleted by the next successful commit.

Key design choices:

* **Atomic writes** -- ``commit()`` writes to a temp file then calls
  ``os.replace()`` so a crash never leaves a truncated cursor.
* **Commit after success only** -- the engine calls ``commit()`` once the
  whole fetch loop has finished; this class never advances a cursor on
  its own.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import NamedTuple

from ..config import Config
from .models import EntityKind

logger = logging.getLogger(__name__)

CURSOR_FILE_NAME = ".sync-token"


class CursorRead(NamedTuple):
    """A cursor read from disk and whether it came from a legacy file."""

    token: str | None
    migrated: bool


class CursorStore:
    """Read, commit and clear per-kind sync cursors.

    Args:
        config: Resolved configuration supplying each kind's directory.
    """

    def __init__(self, config: Config) -> None:
        self._config = config

    # ------------------------------------------------------------------
    # Locations
    # ------------------------------------------------------------------

    def cursor_path(self, kind: EntityKind) -> Path:
        """Return the cursor file inside the kind's mirror directory."""
        return self._config.entity_dir(kind) / CURSOR_FILE_NAME

    def legacy_path(self, kind: EntityKind) -> Path | None:
        """Return the pre-upgrade cursor location, if the kind had one."""
        if kind.legacy_cursor_name is None:
            return None
        return self._config.entity_dir(kind).parent / kind.legacy_cursor_name

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def read(self, kind: EntityKind) -> CursorRead:
        """Read the cursor for *kind*.

        The new location wins.  The legacy file is consulted only when the
        new one is missing or blank.
        """
        token = _read_token(self.cursor_path(kind))
        if token:
            return CursorRead(token, False)

        legacy = self.legacy_path(kind)
        if legacy is not None:
            token = _read_token(legacy)
            if token:
                logger.info(
                    "Migrating %s cursor from legacy location %s",
                    kind.value,
                    legacy,
                )
                return CursorRead(token, True)

        return CursorRead(None, False)

    def commit(self, kind: EntityKind, token: str) -> None:
        """Persist *token* atomically and drop any legacy cursor file.

        Args:
            kind: Entity kind whose cursor advances.
            token: The cursor returned by a completed fetch loop.
        """
        target = self.cursor_path(kind)
        target.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_path = tempfile.mkstemp(dir=str(target.parent), suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(token)
            os.replace(tmp_path, target)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

        legacy = self.legacy_path(kind)
        if legacy is not None and legacy.exists():
            legacy.unlink()
            logger.debug("Removed legacy %s cursor %s", kind.value, legacy)

    def clear(self, kind: EntityKind) -> None:
        """Delete the cursor and the legacy cursor for *kind*."""
        self.cursor_path(kind).unlink(missing_ok=True)
        legacy = self.legacy_path(kind)
        if legacy is not None:
            legacy.unlink(missing_ok=True)


def _read_token(path: Path) -> str | None:
    try:
        token = path.read_text(encoding="utf-8").strip()
    except FileNotFoundError:
        return None
    return token or None
