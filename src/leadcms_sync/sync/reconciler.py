"""Apply remote changes to the local mirror.

One reconciler per entity kind.  Each owns the identifier index of its
mirror subtree and, for every changed record:

1. computes the target path from the record's current slug, type and
   language;
2. finds where the record currently lives through the index;
3. removes any stale file (rename, type or language change);
4. writes the rendered record, three-way merging with the local file when
   a base snapshot is available and force-overwrite is off;
5. updates the index so later records in the same run see the new layout.

Deletions remove every file the index (or a rescan) attributes to the id
and prune directories left empty.  Nothing here catches exceptions: the
engine turns a failing record into a skipped result.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from ..config import Config
from ..core.client import LeadCMSClient
from ..file_handler import (
    DATA_FORMAT,
    delete_file,
    prune_empty_dirs,
    read_text_if_exists,
    write_file,
)
from . import transform
from .index import IdentifierIndex, find_files_for_id, scan_mirror
from .merger import generate_diff, is_locally_modified, reconcile
from .models import (
    DeletionMarker,
    EntityKind,
    FileStatus,
    RemoteRecord,
    StatusEntry,
    SyncAction,
    SyncResult,
)

logger = logging.getLogger(__name__)


class Reconciler:
    """Base reconciler for kinds stored as one file per record.

    Subclasses provide ``target_path()`` and ``render()``.

    Args:
        config: Resolved configuration.
    """

    kind: EntityKind
    containers = False

    def __init__(self, config: Config) -> None:
        self.config = config
        self.root = config.entity_dir(self.kind)
        self.index = IdentifierIndex()

    def build_index(self) -> IdentifierIndex:
        """Walk the mirror once, before any mutation of this run."""
        self.index = IdentifierIndex.build(self.root, containers=self.containers)
        return self.index

    def target_path(self, record: RemoteRecord) -> Path:
        raise NotImplementedError

    def render(self, record: RemoteRecord) -> str:
        raise NotImplementedError

    def enrich(self, record: RemoteRecord) -> RemoteRecord:
        return record

    def relative(self, path: Path) -> str:
        try:
            return path.relative_to(self.root).as_posix()
        except ValueError:
            return str(path)

    # ------------------------------------------------------------------
    # Changed records
    # ------------------------------------------------------------------

    def apply(
        self,
        record: RemoteRecord,
        base: RemoteRecord | None = None,
        force_overwrite: bool = False,
    ) -> SyncResult:
        """Write one changed record to its target path.

        Args:
            record: The new remote value.
            base: The remote value the local file was last synced from.
            force_overwrite: Write the remote value even over local edits.

        Raises:
            ValueError: If the record has no id or no usable path.
            OSError: On file system failures.
        """
        if record.id is None:
            raise ValueError(f"{self.kind.value} record without id")

        target = self.target_path(record)
        existing = self.index.lookup(record.id)

        # Only files the index attributes to this id count as local state;
        # the target may still hold another record mid-swap.
        local = None
        for path in sorted(existing, key=lambda p: p != target):
            local = read_text_if_exists(path)
            if local is not None:
                break
        had_file = local is not None

        for stale in existing:
            if stale != target:
                self._remove(stale)
                logger.debug(
                    "[%s] %d moved from %s",
                    self.kind.value,
                    record.id,
                    self.relative(stale),
                )

        remote_text = self.render(record)
        conflicts = 0
        if base is not None and local is not None and not force_overwrite:
            merged = reconcile(self.render(base), local, remote_text)
            text = merged.merged_text
            conflicts = merged.conflict_count
            if conflicts:
                action = SyncAction.CONFLICT
                logger.warning(
                    "[%s] %s: %d conflict region(s) written with markers",
                    self.kind.value,
                    self.relative(target),
                    conflicts,
                )
                logger.debug(
                    "%s",
                    generate_diff(local, text, "local", "merged"),
                )
            elif text == remote_text:
                action = SyncAction.UPDATE
            else:
                action = SyncAction.MERGE
        else:
            text = remote_text
            action = SyncAction.UPDATE if had_file else SyncAction.CREATE

        if read_text_if_exists(target) != text:
            write_file(target, text)
        logger.debug(
            "[%s] %s %s", self.kind.value, action.value, self.relative(target)
        )

        self.index.remove(record.id)
        self.index.release(target)
        self.index.add(record.id, target)
        return SyncResult(
            record_id=record.id,
            path=self.relative(target),
            action=action,
            conflict_count=conflicts,
        )

    # ------------------------------------------------------------------
    # Read-only comparison
    # ------------------------------------------------------------------

    def compare(
        self, record: RemoteRecord, with_diff: bool = False
    ) -> StatusEntry:
        """Compare the mirror with the current remote value of *record*.

        Nothing is written.  Formatting noise (line endings, trailing
        whitespace, timestamp precision) does not count as a difference.

        Raises:
            ValueError: If the record has no id or no usable path.
        """
        if record.id is None:
            raise ValueError(f"{self.kind.value} record without id")
        record = self.enrich(record)
        target = self.target_path(record)
        remote_text = self.render(record)

        existing = self.index.lookup(record.id)
        if not existing:
            return StatusEntry(
                record_id=record.id,
                path=self.relative(target),
                status=FileStatus.REMOTE_ONLY,
            )

        local_path = target if target in existing else existing[0]
        local = read_text_if_exists(local_path) or ""
        differs = is_locally_modified(remote_text, local)
        if local_path != target or len(existing) > 1:
            status = FileStatus.MOVED
        elif differs:
            status = FileStatus.MODIFIED
        else:
            status = FileStatus.IN_SYNC

        diff = None
        if with_diff and differs:
            rel = self.relative(local_path)
            diff = generate_diff(
                local, remote_text, f"local/{rel}", f"remote/{self.relative(target)}"
            )
        return StatusEntry(
            record_id=record.id,
            path=self.relative(local_path),
            target=self.relative(target) if status is FileStatus.MOVED else None,
            status=status,
            diff=diff,
        )

    # ------------------------------------------------------------------
    # Deletions
    # ------------------------------------------------------------------

    def delete(self, marker: DeletionMarker) -> SyncResult:
        """Remove every file holding the marker's id; absence is fine."""
        if marker.id is None:
            raise ValueError(f"{self.kind.value} deletion without id")

        paths = self.index.lookup(marker.id)
        for stray in find_files_for_id(self.root, marker.id):
            if stray not in paths:
                paths.append(stray)

        removed = [p for p in paths if self._remove(p)]
        self.index.remove(marker.id)
        if not removed:
            logger.debug(
                "[%s] %d already absent", self.kind.value, marker.id
            )
        return SyncResult(
            record_id=marker.id,
            path=", ".join(self.relative(p) for p in removed),
            action=SyncAction.DELETE,
        )

    def _remove(self, path: Path) -> bool:
        removed = delete_file(path)
        prune_empty_dirs(path.parent, self.root)
        return removed


class ContentReconciler(Reconciler):
    """Articles, pages and components as MDX or JSON files.

    Args:
        config: Resolved configuration.
        type_map: Content type uid -> ``"MDX"`` or ``"JSON"``.
    """

    kind = EntityKind.CONTENT

    def __init__(
        self, config: Config, type_map: dict[str, str] | None = None
    ) -> None:
        super().__init__(config)
        self.type_map = type_map or {}

    def target_path(self, record: RemoteRecord) -> Path:
        return transform.content_path(
            self.root, record, self.type_map, self.config.default_language
        )

    def render(self, record: RemoteRecord) -> str:
        return transform.render_content(record, self.type_map)

    def save_preview(self, record: RemoteRecord, user_id: str) -> Path | None:
        """Write a draft as ``<slug>-<user_id>`` with ``draft: true``.

        The preview keeps the record id, so the next change or deletion of
        the published record removes it like any other stale copy.

        Returns:
            The preview path, or ``None`` when the type map does not declare
            the record's type as MDX or JSON.

        Raises:
            ValueError: If the draft has no slug or an unsafe user id.
        """
        declared = self.type_map.get(record.type or "")
        if declared not in (transform.MDX, transform.JSON_FORMAT):
            logger.debug(
                "[%s] draft of type %s is neither MDX nor JSON; no preview",
                self.kind.value,
                record.type,
            )
            return None
        if not record.slug:
            raise ValueError(f"Draft of content {record.id} has no slug")
        if not user_id or "/" in user_id or "\\" in user_id:
            raise ValueError(f"Unsafe draft author id '{user_id}'")

        preview = record.with_fields(slug=f"{record.slug}-{user_id}", draft=True)
        target = self.target_path(preview)
        write_file(target, self.render(preview))
        logger.info("[%s] draft preview %s", self.kind.value, self.relative(target))
        return target


class EmailTemplateReconciler(Reconciler):
    """Email templates as HTML files grouped by email group.

    Templates reference their group by ``emailGroupId``; the group object is
    looked up and attached before rendering so the folder and the
    ``groupName`` header field are known.  Base snapshots are enriched the
    same way.
    """

    kind = EntityKind.EMAIL_TEMPLATES

    def __init__(
        self, config: Config, groups: list[dict[str, Any]] | None = None
    ) -> None:
        super().__init__(config)
        self.groups = {
            g["id"]: g for g in groups or [] if g.get("id") is not None
        }

    def enrich(self, record: RemoteRecord) -> RemoteRecord:
        if isinstance(record.get("emailGroup"), dict):
            return record
        group = self.groups.get(record.get("emailGroupId"))
        if group is None:
            return record
        return record.with_fields(emailGroup=group)

    def apply(
        self,
        record: RemoteRecord,
        base: RemoteRecord | None = None,
        force_overwrite: bool = False,
    ) -> SyncResult:
        return super().apply(
            self.enrich(record),
            self.enrich(base) if base is not None else None,
            force_overwrite,
        )

    def target_path(self, record: RemoteRecord) -> Path:
        return transform.email_template_path(
            self.root, record, self.config.default_language
        )

    def render(self, record: RemoteRecord) -> str:
        return transform.render_email_template(record)


class CommentReconciler(Reconciler):
    """Comments stored as JSON arrays, one file per commentable entity.

    The index maps each comment id to its container file.  A changed comment
    is removed from every other container that holds it and upserted into its
    own; a container left empty is deleted.
    """

    kind = EntityKind.COMMENTS
    containers = True

    def target_path(self, record: RemoteRecord) -> Path:
        return transform.comment_path(
            self.root, record, self.config.default_language
        )

    def apply(
        self,
        record: RemoteRecord,
        base: RemoteRecord | None = None,
        force_overwrite: bool = False,
    ) -> SyncResult:
        if record.id is None:
            raise ValueError("comment without id")

        target = self.target_path(record)
        for path in self.index.lookup(record.id):
            if path != target:
                self._drop_from_container(path, record.id)

        entries = self._load(target)
        existed = any(e.get("id") == record.id for e in entries)
        entries = [e for e in entries if e.get("id") != record.id]
        entries.append(transform.to_stored_comment(record))
        self._store(target, entries)

        self.index.remove(record.id)
        self.index.add(record.id, target)
        action = SyncAction.UPDATE if existed else SyncAction.CREATE
        logger.debug(
            "[comments] %s %d in %s",
            action.value,
            record.id,
            self.relative(target),
        )
        return SyncResult(
            record_id=record.id, path=self.relative(target), action=action
        )

    def delete(self, marker: DeletionMarker) -> SyncResult:
        if marker.id is None:
            raise ValueError("comment deletion without id")

        paths = self.index.lookup(marker.id)
        if not paths:
            paths = self._containers_holding(marker.id)
        touched = [p for p in paths if self._drop_from_container(p, marker.id)]
        self.index.remove(marker.id)
        return SyncResult(
            record_id=marker.id,
            path=", ".join(self.relative(p) for p in touched),
            action=SyncAction.DELETE,
        )

    def _containers_holding(self, comment_id: int) -> list[Path]:
        found = []
        for record in scan_mirror(self.root):
            if record.format != DATA_FORMAT:
                continue
            if any(e.get("id") == comment_id for e in self._load(record.path)):
                found.append(record.path)
        return found

    def _drop_from_container(self, path: Path, comment_id: int) -> bool:
        entries = self._load(path)
        kept = [e for e in entries if e.get("id") != comment_id]
        if len(kept) == len(entries):
            return False
        self._store(path, kept)
        return True

    def _load(self, path: Path) -> list[dict[str, Any]]:
        text = read_text_if_exists(path)
        if not text:
            return []
        try:
            data = json.loads(text)
        except ValueError:
            logger.warning("Ignoring malformed comment file %s", path)
            return []
        if not isinstance(data, list):
            return []
        return [e for e in data if isinstance(e, dict)]

    def _store(self, path: Path, entries: list[dict[str, Any]]) -> None:
        if not entries:
            self._remove(path)
            return
        text = transform.render_comments(entries)
        if read_text_if_exists(path) != text:
            write_file(path, text)


class MediaReconciler(Reconciler):
    """Binary media files downloaded from their ``location``.

    Media files carry no embedded id; deletions name the file by scope and
    name instead.
    """

    kind = EntityKind.MEDIA

    def __init__(self, config: Config, client: LeadCMSClient) -> None:
        super().__init__(config)
        self.client = client

    def build_index(self) -> IdentifierIndex:
        return self.index

    def target_path(self, record: RemoteRecord) -> Path:
        location = record.get("location")
        if not location:
            raise ValueError(f"Media {record.id} has no location")
        return transform.media_path(self.root, str(location))

    def apply(
        self,
        record: RemoteRecord,
        base: RemoteRecord | None = None,
        force_overwrite: bool = False,
    ) -> SyncResult:
        target = self.target_path(record)
        existed = target.exists()
        if not self.client.download_media(str(record.get("location")), target):
            prune_empty_dirs(target.parent, self.root)
            return SyncResult(
                record_id=record.id,
                path=self.relative(target),
                action=SyncAction.SKIP,
                success=False,
                error="media not found remotely",
            )
        action = SyncAction.UPDATE if existed else SyncAction.CREATE
        logger.debug("[media] %s %s", action.value, self.relative(target))
        return SyncResult(
            record_id=record.id, path=self.relative(target), action=action
        )

    def delete(self, marker: DeletionMarker) -> SyncResult:
        if not marker.is_location:
            raise ValueError("media deletion needs scopeUid and name")
        path = transform.media_path_for_deletion(
            self.root, marker.scope_uid or "", marker.name or ""
        )
        self._remove(path)
        return SyncResult(
            record_id=marker.id,
            path=self.relative(path),
            action=SyncAction.DELETE,
        )


class SettingsWriter:
    """Write tracked settings as ``[<lang>/]settings.json`` key/value maps.

    Settings have no cursor: every run receives the full export, so a
    language whose tracked settings disappeared has its file removed.
    """

    def __init__(self, config: Config) -> None:
        self.config = config
        self.root = config.entity_dir(EntityKind.SETTINGS)

    def write(self, settings: list[dict[str, Any]]) -> list[SyncResult]:
        by_language: dict[str | None, dict[str, Any]] = {}
        for setting in settings:
            key = setting.get("key")
            value = setting.get("value")
            if not key or not transform.is_tracked_setting(str(key)):
                continue
            if value is None or value == "":
                continue
            language = setting.get("language") or None
            if language == self.config.default_language:
                language = None
            by_language.setdefault(language, {})[str(key)] = value

        results = []
        wanted = set()
        for language, values in sorted(
            by_language.items(), key=lambda kv: kv[0] or ""
        ):
            path = transform.settings_path(
                self.root, language, self.config.default_language
            )
            wanted.add(path)
            text = transform.render_settings(values)
            previous = read_text_if_exists(path)
            if previous == text:
                continue
            write_file(path, text)
            results.append(
                SyncResult(
                    path=path.relative_to(self.root).as_posix(),
                    action=SyncAction.CREATE
                    if previous is None
                    else SyncAction.UPDATE,
                )
            )

        if self.root.is_dir():
            for path in sorted(self.root.rglob("settings.json")):
                if path in wanted:
                    continue
                delete_file(path)
                prune_empty_dirs(path.parent, self.root)
                results.append(
                    SyncResult(
                        path=path.relative_to(self.root).as_posix(),
                        action=SyncAction.DELETE,
                    )
                )
        return results
