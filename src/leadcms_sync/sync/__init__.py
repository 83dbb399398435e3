"""LeadCMS pull engine.

Public API for mirroring LeadCMS content, media, comments, email
templates and settings into a local file tree.

Architecture
------------
Each entity kind has its own opaque **sync cursor**.  A run fetches every
page of changes since that cursor, builds an **identifier index** of the
local mirror, and reconciles each change against it: stale files left by
slug, type or language changes are removed, and a locally edited file is
**three-way merged** with the remote update using the base snapshot the
server sends.  The cursor advances only after the whole fetch succeeded.

Modules:

- ``engine``     -- ``SyncEngine``: one run per entity kind, ``sync_all``,
                    read-only ``status``.
- ``cursor``     -- ``CursorStore``: cursor files and legacy migration.
- ``fetcher``    -- ``PageFetcher``: the page loop.
- ``index``      -- ``IdentifierIndex``: id -> mirror path(s).
- ``transform``  -- path rules and file renderers per kind.
- ``merger``     -- Three-way merge via ``merge3`` library.
- ``reconciler`` -- per-kind apply/delete against the index.
- ``watcher``    -- ``ChangeWatcher``: debounced real-time content sync.
- ``reporter``   -- Human-readable and JSON report formatting.

Usage example
-------------
::

    from leadcms_sync.config import load_config
    from leadcms_sync.sync import EntityKind, SyncEngine, format_sync_report

    engine = SyncEngine(load_config())
    report = engine.sync(EntityKind.CONTENT)
    print(format_sync_report(report))
"""

from .cursor import CursorStore
from .engine import SyncEngine
from .fetcher import PageFetcher
from .index import IdentifierIndex
from .merger import reconcile, three_way_merge
from .models import (
    DeletionMarker,
    EntityKind,
    FetchResult,
    FileStatus,
    MergeResult,
    RemoteRecord,
    StatusEntry,
    StatusReport,
    SyncAction,
    SyncReport,
    SyncResult,
)
from .reporter import (
    format_status_report,
    format_sync_report,
    report_to_json,
    status_to_json,
)
from .watcher import ChangeWatcher

__all__ = [
    "ChangeWatcher",
    "CursorStore",
    "DeletionMarker",
    "EntityKind",
    "FetchResult",
    "FileStatus",
    "IdentifierIndex",
    "MergeResult",
    "PageFetcher",
    "RemoteRecord",
    "StatusEntry",
    "StatusReport",
    "SyncAction",
    "SyncEngine",
    "SyncReport",
    "SyncResult",
    "format_status_report",
    "format_sync_report",
    "reconcile",
    "report_to_json",
    "status_to_json",
    "three_way_merge",
]
