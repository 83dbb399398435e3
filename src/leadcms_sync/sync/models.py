"""Pydantic models for the LeadCMS pull engine.

Defines the data contracts shared by the sync modules:

- ``EntityKind``: The remote entity families that own a mirror subtree.
- ``RemoteRecord``: One changed record as delivered by a sync page.
- ``DeletionMarker``: One deleted record (numeric id or media location).
- ``FetchResult``: Everything accumulated by one fetch loop.
- ``LocalFileRecord``: A scanned mirror file and its embedded id.
- ``MergeResult``: Outcome of a three-way merge.
- ``SyncAction`` / ``SyncResult`` / ``SyncReport``: Per-record and
  per-run outcomes.
- ``FileStatus`` / ``StatusEntry`` / ``StatusReport``: Read-only comparison
  of the mirror with the remote state.

All models are frozen (immutable) for safety.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from ..core.errors import LeadCMSError


class EntityKind(str, Enum):
    """Remote entity families, each with its own cursor and subtree."""

    CONTENT = "content"
    MEDIA = "media"
    COMMENTS = "comments"
    EMAIL_TEMPLATES = "email-templates"
    SETTINGS = "settings"

    @property
    def sync_path(self) -> str:
        """Path segment of the ``/api/<segment>/sync`` endpoint."""
        return self.value

    @property
    def requires_auth(self) -> bool:
        """Whether reads for this kind need the bearer credential."""
        return self in (EntityKind.EMAIL_TEMPLATES, EntityKind.SETTINGS)

    @property
    def uses_cursor(self) -> bool:
        """Settings are exported in full on every run."""
        return self is not EntityKind.SETTINGS

    @property
    def cms_entities(self) -> tuple[str, ...]:
        """Names this kind may appear under in ``/api/config`` entities."""
        return {
            EntityKind.CONTENT: ("Content",),
            EntityKind.MEDIA: ("Media",),
            EntityKind.COMMENTS: ("Comment",),
            EntityKind.EMAIL_TEMPLATES: ("EmailTemplate", "EmailTemplates"),
            EntityKind.SETTINGS: ("Setting", "Settings"),
        }[self]

    @property
    def legacy_cursor_name(self) -> str | None:
        """File name of the pre-upgrade cursor beside the entity dir."""
        return {
            EntityKind.CONTENT: "sync-token.txt",
            EntityKind.MEDIA: "media-sync-token.txt",
            EntityKind.COMMENTS: "comment-sync-token.txt",
        }.get(self)


# Wire name -> attribute name for the well-known record fields.
_KNOWN_FIELDS = {
    "id": "id",
    "slug": "slug",
    "type": "type",
    "language": "language",
    "name": "name",
    "updatedAt": "updated_at",
    "body": "body",
}


def _coerce_id(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    text = str(value).strip()
    return int(text) if text.isdigit() else None


class RemoteRecord(BaseModel):
    """A remote record: well-known fields plus an open attribute map.

    Identity is ``id``.  ``slug``, ``type`` and ``language`` are mutable
    remotely and together decide where the record lives on disk.  Every
    field the server sends that is not listed here is carried untouched in
    ``attributes``; ``key_order`` remembers the wire order so rendering is
    stable.

    Attributes:
        id: Stable numeric identifier (``None`` for id-less payloads).
        slug: URL slug; may contain ``/`` segments.
        type: Content type uid (chooses MDX vs JSON for content).
        language: Language code; ``None`` means the default language.
        name: Display name (email templates, media).
        updated_at: Server timestamp as sent (never parsed).
        body: Body text as sent.
        attributes: Every other wire field.
        key_order: Wire key order.
    """

    id: int | None = None
    slug: str | None = None
    type: str | None = None
    language: str | None = None
    name: str | None = None
    updated_at: str | None = None
    body: str | None = None
    attributes: dict[str, Any] = Field(default_factory=dict)
    key_order: tuple[str, ...] = ()

    model_config = {"frozen": True}

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> RemoteRecord:
        """Build a record from a sync-page item dict."""
        if not isinstance(data, dict):
            raise ValueError(f"Invalid remote record: {data!r}")
        known: dict[str, Any] = {}
        attributes: dict[str, Any] = {}
        for key, value in data.items():
            if key in _KNOWN_FIELDS:
                known[_KNOWN_FIELDS[key]] = value
            else:
                attributes[key] = value
        if "id" in known:
            known["id"] = _coerce_id(known["id"])
        for key in ("slug", "type", "language", "name", "updated_at", "body"):
            if known.get(key) is not None and not isinstance(known[key], str):
                known[key] = str(known[key])
        return cls(
            **known, attributes=attributes, key_order=tuple(data.keys())
        )

    def to_api(self) -> dict[str, Any]:
        """Return the wire dict, in the order the server sent it."""
        values: dict[str, Any] = dict(self.attributes)
        for wire, attr in _KNOWN_FIELDS.items():
            values[wire] = getattr(self, attr)
        ordered = {k: values[k] for k in self.key_order if k in values}
        for key, value in values.items():
            if key not in ordered and (
                key in self.attributes or value is not None
            ):
                ordered[key] = value
        return ordered

    def get(self, wire_key: str, default: Any = None) -> Any:
        """Look up a field by its wire name."""
        if wire_key in _KNOWN_FIELDS:
            value = getattr(self, _KNOWN_FIELDS[wire_key])
            return default if value is None else value
        return self.attributes.get(wire_key, default)

    def with_fields(self, **wire_fields: Any) -> RemoteRecord:
        """Return a copy with extra or replaced wire fields."""
        data = self.to_api()
        data.update(wire_fields)
        return RemoteRecord.from_api(data)


class DeletionMarker(BaseModel):
    """A record the server no longer has.

    Content, comments and email templates are identified by ``id``;
    media is identified by its location (``scope_uid`` + ``name``).
    """

    id: int | None = None
    scope_uid: str | None = None
    name: str | None = None

    model_config = {"frozen": True}

    @classmethod
    def from_api(cls, value: Any) -> DeletionMarker:
        """Build a marker from a ``deleted`` list entry."""
        if isinstance(value, dict):
            if value.get("scopeUid") is not None or value.get("name"):
                return cls(
                    id=_coerce_id(value.get("id")),
                    scope_uid=value.get("scopeUid"),
                    name=value.get("name"),
                )
            value = value.get("id")
        record_id = _coerce_id(value)
        if record_id is None:
            raise ValueError(f"Invalid deletion marker: {value!r}")
        return cls(id=record_id)

    @property
    def is_location(self) -> bool:
        return self.scope_uid is not None and bool(self.name)


class FetchResult(BaseModel):
    """Everything accumulated by one fetch loop.

    Attributes:
        items: Changed records from every page, in page order.
        deleted: Deletion markers from every page, in page order.
        base_items: Base snapshots keyed by record id (later pages win).
        start_cursor: Cursor the loop started from.
        next_cursor: Cursor to commit; equals ``start_cursor`` on failure.
        pages: Number of non-terminal pages received.
        error: The error that stopped the loop, if any.
    """

    items: list[RemoteRecord] = []
    deleted: list[DeletionMarker] = []
    base_items: dict[int, RemoteRecord] = {}
    start_cursor: str = ""
    next_cursor: str = ""
    pages: int = 0
    error: LeadCMSError | None = None

    model_config = {"frozen": True, "arbitrary_types_allowed": True}

    @property
    def completed(self) -> bool:
        """``True`` when every page arrived without error."""
        return self.error is None


class LocalFileRecord(BaseModel):
    """A mirror file found by the index scan; never persisted."""

    path: Path
    extracted_id: int | None = None
    format: str

    model_config = {"frozen": True}


class MergeResult(BaseModel):
    """Outcome of a three-way merge.

    Attributes:
        merged_text: The full document to write (may hold conflict markers).
        success: ``True`` when no conflict region remains.
        conflict_count: Number of conflict regions emitted.
    """

    merged_text: str
    success: bool
    conflict_count: int = 0

    model_config = {"frozen": True}


class SyncAction(str, Enum):
    """What happened to one record during a run."""

    CREATE = "create"
    UPDATE = "update"
    MERGE = "merge"
    CONFLICT = "conflict"
    DELETE = "delete"
    SKIP = "skip"


class SyncResult(BaseModel):
    """Result of reconciling one record or deletion.

    Attributes:
        record_id: Record id (``None`` for media location deletes).
        path: Mirror-relative path written or removed.
        action: What was done.
        success: Whether the operation succeeded.
        conflict_count: Conflict regions written (``CONFLICT`` only).
        error: Error message if the operation failed.
    """

    record_id: int | None = None
    path: str = ""
    action: SyncAction
    success: bool = True
    conflict_count: int = 0
    error: str | None = None

    model_config = {"frozen": True}


class SyncReport(BaseModel):
    """Aggregate report for one entity kind's run.

    Attributes:
        kind: Entity kind that was synced.
        force_overwrite: Whether merges were bypassed.
        results: Individual record results.
        pages: Sync pages received.
        cursor_before: Cursor read at the start of the run.
        cursor_after: Cursor on disk at the end of the run.
        cursor_committed: Whether a new cursor was written.
        error: Fetch error that aborted the run, if any.
        started_at: ISO 8601 timestamp when the run started.
        completed_at: ISO 8601 timestamp when the run ended.
    """

    kind: EntityKind
    force_overwrite: bool = False
    results: list[SyncResult] = []
    pages: int = 0
    cursor_before: str | None = None
    cursor_after: str | None = None
    cursor_committed: bool = False
    error: str | None = None
    started_at: str
    completed_at: str | None = None

    model_config = {"frozen": True}

    def _with_action(self, action: SyncAction) -> list[SyncResult]:
        return [r for r in self.results if r.action == action]

    @property
    def created(self) -> list[SyncResult]:
        """Results where action is CREATE."""
        return self._with_action(SyncAction.CREATE)

    @property
    def updated(self) -> list[SyncResult]:
        """Results where action is UPDATE."""
        return self._with_action(SyncAction.UPDATE)

    @property
    def merged(self) -> list[SyncResult]:
        """Results where action is MERGE."""
        return self._with_action(SyncAction.MERGE)

    @property
    def conflicts(self) -> list[SyncResult]:
        """Results where action is CONFLICT."""
        return self._with_action(SyncAction.CONFLICT)

    @property
    def deleted(self) -> list[SyncResult]:
        """Results where action is DELETE."""
        return self._with_action(SyncAction.DELETE)

    @property
    def errors(self) -> list[SyncResult]:
        """Results where success is False."""
        return [r for r in self.results if not r.success]

    @property
    def skipped_count(self) -> int:
        """Records that could not be applied."""
        return len(self.errors)

    @property
    def ok(self) -> bool:
        """``True`` when the fetch completed and no record was skipped."""
        return self.error is None and not self.errors

    def summary(self) -> str:
        """Format a human-readable summary of the run.

        Returns:
            Multi-line summary string with counts by action.
        """
        lines = [
            f"Sync report for '{self.kind.value}'"
            + (" (force overwrite)" if self.force_overwrite else ""),
            f"  Pages:     {self.pages}",
            f"  Created:   {len(self.created)}",
            f"  Updated:   {len(self.updated)}",
            f"  Merged:    {len(self.merged)}",
            f"  Conflicts: {len(self.conflicts)}",
            f"  Deleted:   {len(self.deleted)}",
            f"  Skipped:   {self.skipped_count}",
            f"  Cursor:    "
            + ("committed" if self.cursor_committed else "unchanged"),
        ]
        if self.error:
            lines.append(f"  Error:     {self.error}")
        return "\n".join(lines)


class FileStatus(str, Enum):
    """How one mirror file compares with the current remote value."""

    IN_SYNC = "in-sync"
    MODIFIED = "modified"
    MOVED = "moved"
    REMOTE_ONLY = "remote-only"
    LOCAL_ONLY = "local-only"


class StatusEntry(BaseModel):
    """One record or file in a status check.

    Attributes:
        record_id: Record id (``None`` for local files without one).
        path: Mirror-relative path of the local file, or of the target
            path for ``REMOTE_ONLY``.
        target: Mirror-relative path the remote value maps to; set only
            for ``MOVED``.
        status: The comparison outcome.
        diff: Unified diff from the local file to the remote value, when
            requested and the two differ.
    """

    record_id: int | None = None
    path: str
    target: str | None = None
    status: FileStatus
    diff: str | None = None

    model_config = {"frozen": True}


class StatusReport(BaseModel):
    """Read-only comparison of one kind's mirror with the server."""

    kind: EntityKind
    entries: list[StatusEntry] = []
    pages: int = 0
    started_at: str
    completed_at: str | None = None

    model_config = {"frozen": True}

    @property
    def changed(self) -> list[StatusEntry]:
        """Entries that a pull would touch or that only exist locally."""
        return [e for e in self.entries if e.status != FileStatus.IN_SYNC]
