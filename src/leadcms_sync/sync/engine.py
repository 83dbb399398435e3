"""Sync engine: one reconciliation run per entity kind.

The ``SyncEngine`` ties together the cursor store, page fetcher, identifier
index and reconcilers.  For one entity kind it:

1. Checks the kind is enabled on the LeadCMS instance (``/api/config``).
2. Reads the kind's cursor (migrating a legacy cursor if needed).
3. Fetches every page of changes since that cursor.
4. Builds the identifier index once, before any mutation.
5. Applies changed records in order, then deletions (so a delete wins
   over a create of the same id in one run).  A record repeated on a later
   page merges against the version this run already wrote.
6. Commits the new cursor only when the whole fetch completed.
7. Builds and returns a ``SyncReport``.

Error handling is per record: a bad record is reported as skipped and the
run continues.  A fetch failure is re-raised after the records that did
arrive have been applied.  ``sync_all`` runs kinds concurrently and
isolates their failures.

``status`` fetches the full remote state without a cursor and compares it
with the mirror; it writes nothing.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
from datetime import datetime, timezone

from ..config import Config
from ..core.async_utils import gather_ordered, init_semaphore, run_in_thread
from ..core.client import LeadCMSClient
from ..core.errors import AuthenticationError, ConfigurationError, LeadCMSError
from .cursor import CursorStore
from .fetcher import PageFetcher
from .index import scan_mirror
from .models import (
    DeletionMarker,
    EntityKind,
    FileStatus,
    RemoteRecord,
    StatusEntry,
    StatusReport,
    SyncAction,
    SyncReport,
    SyncResult,
)
from .reconciler import (
    CommentReconciler,
    ContentReconciler,
    EmailTemplateReconciler,
    MediaReconciler,
    Reconciler,
    SettingsWriter,
)

logger = logging.getLogger(__name__)

# Order used by sync_all when no kinds are given.
DEFAULT_KINDS = (
    EntityKind.CONTENT,
    EntityKind.MEDIA,
    EntityKind.COMMENTS,
    EntityKind.EMAIL_TEMPLATES,
    EntityKind.SETTINGS,
)

# Kinds stored one file per record, which status can compare.
STATUS_KINDS = (EntityKind.CONTENT, EntityKind.EMAIL_TEMPLATES)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _resolve_kind(kind: EntityKind | str) -> EntityKind:
    try:
        return EntityKind(kind)
    except ValueError:
        names = ", ".join(k.value for k in EntityKind)
        raise ConfigurationError(
            f"Unknown entity kind '{kind}' (expected one of: {names})"
        ) from None


class SyncEngine:
    """Pull remote changes into the local mirror.

    Args:
        config: Resolved configuration.
        client: HTTP client; one is created from *config* when omitted.
    """

    def __init__(
        self, config: Config, client: LeadCMSClient | None = None
    ) -> None:
        self.config = config
        self.client = client or LeadCMSClient(config)
        self.cursors = CursorStore(config)
        self._entities: set[str] | None = None
        self._entities_loaded = False

    # ------------------------------------------------------------------
    # Entity support
    # ------------------------------------------------------------------

    def supported_entities(self) -> set[str] | None:
        """Lower-cased entity names enabled remotely, or ``None`` if unknown."""
        if not self._entities_loaded:
            try:
                cms_config = self.client.get_cms_config()
            except AuthenticationError:
                raise
            except LeadCMSError as exc:
                logger.warning(
                    "Cannot read /api/config (%s); assuming every entity "
                    "is supported",
                    exc,
                )
                cms_config = {}
            entities = cms_config.get("entities")
            if isinstance(entities, list):
                self._entities = {str(e).lower() for e in entities}
            else:
                self._entities = None
            self._entities_loaded = True
        return self._entities

    def is_supported(self, kind: EntityKind) -> bool:
        entities = self.supported_entities()
        if entities is None:
            return True
        return any(name.lower() in entities for name in kind.cms_entities)

    # ------------------------------------------------------------------
    # Main entry points
    # ------------------------------------------------------------------

    def sync(
        self, kind: EntityKind | str, force_overwrite: bool = False
    ) -> SyncReport:
        """Run one reconciliation pass for *kind*.

        Args:
            kind: Entity kind (member or value).
            force_overwrite: Write remote values without merging; meant for
                the real-time watcher only.

        Returns:
            A ``SyncReport`` of what was done.

        Raises:
            ConfigurationError: If *kind* is not a known entity kind.
            AuthenticationError: If the kind needs an API key and none is
                configured, or the server rejected the credential.
            LeadCMSError: If a page could not be fetched; records from
                earlier pages have been applied and the cursor is unchanged.
            OSError: If the mirror cannot be written.
        """
        kind = _resolve_kind(kind)
        started_at = _now()

        if not self.is_supported(kind):
            logger.info("[%s] not enabled on this LeadCMS instance", kind.value)
            return SyncReport(
                kind=kind,
                force_overwrite=force_overwrite,
                started_at=started_at,
                completed_at=_now(),
            )

        if kind.requires_auth and not self.client.has_credentials:
            raise AuthenticationError(
                f"Syncing {kind.value} requires an API key. "
                "Set LEADCMS_API_KEY or pass --api-key."
            )

        if not kind.uses_cursor:
            return self._sync_settings(force_overwrite, started_at)

        cursor = self.cursors.read(kind)
        fetch = PageFetcher(self.client, kind, self.config.page_size).fetch(
            cursor.token
        )

        reconciler = self._reconciler(kind)
        reconciler.build_index()

        results: list[SyncResult] = []
        # A record seen again on a later page merges against what this run
        # already wrote for it, not the server's base from before the run.
        bases = dict(fetch.base_items)
        for record in fetch.items:
            base = bases.get(record.id) if record.id is not None else None
            result = self._apply(reconciler, record, base, force_overwrite)
            if record.id is not None and result.action is not SyncAction.SKIP:
                bases[record.id] = record
            results.append(result)
        for marker in fetch.deleted:
            results.append(self._delete(reconciler, marker))

        committed = False
        cursor_after = cursor.token
        if fetch.completed and fetch.next_cursor:
            if fetch.next_cursor != cursor.token or cursor.migrated:
                self.cursors.commit(kind, fetch.next_cursor)
                committed = True
            cursor_after = fetch.next_cursor

        report = SyncReport(
            kind=kind,
            force_overwrite=force_overwrite,
            results=results,
            pages=fetch.pages,
            cursor_before=cursor.token,
            cursor_after=cursor_after,
            cursor_committed=committed,
            error=str(fetch.error) if fetch.error else None,
            started_at=started_at,
            completed_at=_now(),
        )
        logger.info(report.summary())
        for failed in report.errors:
            logger.warning(
                "[%s] skipped %s: %s", kind.value, failed.record_id, failed.error
            )

        if fetch.error is not None:
            raise fetch.error
        return report

    def reset(self, kind: EntityKind | str) -> None:
        """Delete the mirror subtree and cursors of *kind*."""
        kind = _resolve_kind(kind)
        root = self.config.entity_dir(kind)
        self.cursors.clear(kind)
        if root.is_dir():
            shutil.rmtree(root)
        logger.info("[%s] reset: removed %s", kind.value, root)

    def status(
        self, kind: EntityKind | str, with_diff: bool = False
    ) -> StatusReport:
        """Compare the mirror of *kind* with the server without writing.

        The whole remote state is fetched from an empty cursor, so the
        stored cursor is neither read nor advanced.

        Args:
            kind: ``content`` or ``email-templates``.
            with_diff: Attach a unified diff to every entry whose local
                file differs from the remote value.

        Raises:
            ConfigurationError: If *kind* is not one of ``STATUS_KINDS``.
            AuthenticationError: If the kind needs an API key and none is
                configured, or the server rejected the credential.
            LeadCMSError: If a page could not be fetched.
        """
        kind = _resolve_kind(kind)
        if kind not in STATUS_KINDS:
            names = ", ".join(k.value for k in STATUS_KINDS)
            raise ConfigurationError(
                f"Status is available for {names}, not '{kind.value}'"
            )
        started_at = _now()
        if not self.is_supported(kind):
            logger.info("[%s] not enabled on this LeadCMS instance", kind.value)
            return StatusReport(
                kind=kind, started_at=started_at, completed_at=_now()
            )
        if kind.requires_auth and not self.client.has_credentials:
            raise AuthenticationError(
                f"Checking {kind.value} requires an API key. "
                "Set LEADCMS_API_KEY or pass --api-key."
            )

        fetch = PageFetcher(self.client, kind, self.config.page_size).fetch()
        if fetch.error is not None:
            raise fetch.error

        latest: dict[int, RemoteRecord] = {}
        for record in fetch.items:
            if record.id is not None:
                latest[record.id] = record
        for marker in fetch.deleted:
            if marker.id is not None:
                latest.pop(marker.id, None)

        reconciler = self._reconciler(kind)
        index = reconciler.build_index()

        entries: list[StatusEntry] = []
        for record_id in sorted(latest):
            try:
                entries.append(reconciler.compare(latest[record_id], with_diff))
            except ValueError as exc:
                logger.warning(
                    "[%s] cannot compare %s: %s", kind.value, record_id, exc
                )
        for record_id in index.ids():
            if record_id in latest:
                continue
            for path in index.lookup(record_id):
                entries.append(
                    StatusEntry(
                        record_id=record_id,
                        path=reconciler.relative(path),
                        status=FileStatus.LOCAL_ONLY,
                    )
                )
        for local in scan_mirror(reconciler.root):
            if local.extracted_id is None:
                entries.append(
                    StatusEntry(
                        path=reconciler.relative(local.path),
                        status=FileStatus.LOCAL_ONLY,
                    )
                )

        report = StatusReport(
            kind=kind,
            entries=entries,
            pages=fetch.pages,
            started_at=started_at,
            completed_at=_now(),
        )
        logger.info(
            "[%s] status: %d of %d entries differ",
            kind.value,
            len(report.changed),
            len(entries),
        )
        return report

    def sync_all(
        self,
        kinds: list[EntityKind | str] | None = None,
        force_overwrite: bool = False,
        max_parallel: int = 4,
    ) -> dict[EntityKind, SyncReport]:
        """Sync several kinds concurrently; one failing kind never blocks another.

        A kind whose run raised is reported with ``error`` set.
        """
        selected = [_resolve_kind(k) for k in kinds] if kinds else list(DEFAULT_KINDS)
        return asyncio.run(
            self._sync_all(selected, force_overwrite, max_parallel)
        )

    async def _sync_all(
        self,
        kinds: list[EntityKind],
        force_overwrite: bool,
        max_parallel: int,
    ) -> dict[EntityKind, SyncReport]:
        init_semaphore(max_parallel)
        # Resolve entity support once, before the threads start.
        try:
            await run_in_thread(self.supported_entities)
        except LeadCMSError as exc:
            logger.error("Cannot read /api/config: %s", exc)

        async def one(kind: EntityKind) -> SyncReport:
            started_at = _now()
            try:
                return await run_in_thread(self.sync, kind, force_overwrite)
            except (LeadCMSError, OSError) as exc:
                logger.error("[%s] sync failed: %s", kind.value, exc)
                return SyncReport(
                    kind=kind,
                    force_overwrite=force_overwrite,
                    error=str(exc),
                    started_at=started_at,
                    completed_at=_now(),
                )

        reports = await gather_ordered([one(kind) for kind in kinds])
        return dict(zip(kinds, reports))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _reconciler(self, kind: EntityKind) -> Reconciler:
        if kind is EntityKind.CONTENT:
            return ContentReconciler(self.config, self.client.get_content_types())
        if kind is EntityKind.EMAIL_TEMPLATES:
            return EmailTemplateReconciler(
                self.config, self.client.get_email_groups()
            )
        if kind is EntityKind.COMMENTS:
            return CommentReconciler(self.config)
        if kind is EntityKind.MEDIA:
            return MediaReconciler(self.config, self.client)
        raise ValueError(f"No reconciler for '{kind.value}'")

    def _apply(
        self,
        reconciler: Reconciler,
        record: RemoteRecord,
        base: RemoteRecord | None,
        force_overwrite: bool,
    ) -> SyncResult:
        try:
            return reconciler.apply(record, base, force_overwrite)
        except (ValueError, LeadCMSError) as exc:
            logger.warning(
                "[%s] cannot apply %s: %s",
                reconciler.kind.value,
                record.id,
                exc,
            )
            return SyncResult(
                record_id=record.id,
                action=SyncAction.SKIP,
                success=False,
                error=str(exc),
            )

    def _delete(
        self, reconciler: Reconciler, marker: DeletionMarker
    ) -> SyncResult:
        try:
            return reconciler.delete(marker)
        except ValueError as exc:
            logger.warning(
                "[%s] cannot delete %s: %s",
                reconciler.kind.value,
                marker.id if marker.id is not None else marker.name,
                exc,
            )
            return SyncResult(
                record_id=marker.id,
                action=SyncAction.SKIP,
                success=False,
                error=str(exc),
            )

    def _sync_settings(
        self, force_overwrite: bool, started_at: str
    ) -> SyncReport:
        settings = self.client.export_settings()
        results = SettingsWriter(self.config).write(settings)
        report = SyncReport(
            kind=EntityKind.SETTINGS,
            force_overwrite=force_overwrite,
            results=results,
            pages=1,
            started_at=started_at,
            completed_at=_now(),
        )
        logger.info(report.summary())
        return report
