"""Remote page fetcher.

Walks a ``/api/<kind>/sync`` endpoint page by page, starting from a
cursor, until the server says there is nothing more.  The loop stops when:

1. the server answers 204 (terminal page), or
2. the cursor in the ``x-next-sync-token`` header is empty or equal to the
   cursor just sent (guards against a server that would never advance).

Items, deletions and base snapshots of every page are accumulated in
memory without de-duplication.  A failing page stops the loop but keeps
what was accumulated; the returned ``next_cursor`` is then the starting
cursor so that nothing gets committed.
"""

from __future__ import annotations

import logging

from ..core.client import LeadCMSClient
from ..core.errors import LeadCMSError
from .models import DeletionMarker, EntityKind, FetchResult, RemoteRecord

logger = logging.getLogger(__name__)


class PageFetcher:
    """Fetch every change since a cursor for one entity kind.

    Args:
        client: HTTP client.
        kind: Entity kind to fetch.
        page_size: Value of ``filter[limit]`` for each page.
    """

    def __init__(
        self, client: LeadCMSClient, kind: EntityKind, page_size: int = 100
    ) -> None:
        self.client = client
        self.kind = kind
        self.page_size = page_size

    def fetch(self, cursor: str | None = None) -> FetchResult:
        """Run the page loop from *cursor* (``None`` means from scratch).

        Returns:
            A ``FetchResult``; ``result.error`` is set when a page failed.
        """
        start = cursor or ""
        token = start
        items: list[RemoteRecord] = []
        deleted: list[DeletionMarker] = []
        base_items: dict[int, RemoteRecord] = {}
        pages = 0

        while True:
            logger.debug(
                "[%s] requesting page %d (cursor=%s)",
                self.kind.value,
                pages,
                token or "NONE",
            )
            try:
                page = self.client.get_sync_page(
                    self.kind.sync_path,
                    token,
                    self.page_size,
                    include_base=bool(start),
                    authenticated=self.kind.requires_auth,
                )
            except LeadCMSError as exc:
                logger.error(
                    "[%s] page %d failed: %s", self.kind.value, pages, exc
                )
                return FetchResult(
                    items=items,
                    deleted=deleted,
                    base_items=base_items,
                    start_cursor=start,
                    next_cursor=start,
                    pages=pages,
                    error=exc,
                )

            if page.terminal:
                logger.debug("[%s] 204 No Content; done", self.kind.value)
                break

            pages += 1
            items.extend(self._records(page.items))
            deleted.extend(self._markers(page.deleted))
            for key, data in page.base_items.items():
                try:
                    base = RemoteRecord.from_api(data)
                except ValueError:
                    logger.warning(
                        "[%s] ignoring malformed base item %s",
                        self.kind.value,
                        key,
                    )
                    continue
                base_id = base.id if base.id is not None else _int_or_none(key)
                if base_id is not None:
                    base_items[base_id] = base

            logger.debug(
                "[%s] page %d: %d items, %d deleted",
                self.kind.value,
                pages,
                len(page.items),
                len(page.deleted),
            )

            next_token = page.next_token or token
            if not next_token or next_token == token:
                break
            token = next_token

        logger.info(
            "[%s] fetched %d items, %d deletions over %d page(s)",
            self.kind.value,
            len(items),
            len(deleted),
            pages,
        )
        return FetchResult(
            items=items,
            deleted=deleted,
            base_items=base_items,
            start_cursor=start,
            next_cursor=token,
            pages=pages,
        )

    def _records(self, raw_items: list[dict]) -> list[RemoteRecord]:
        records = []
        for data in raw_items:
            try:
                records.append(RemoteRecord.from_api(data))
            except ValueError as exc:
                logger.warning("[%s] skipping item: %s", self.kind.value, exc)
        return records

    def _markers(self, raw_deleted: list) -> list[DeletionMarker]:
        markers = []
        for value in raw_deleted:
            try:
                markers.append(DeletionMarker.from_api(value))
            except ValueError as exc:
                logger.warning(
                    "[%s] skipping deletion: %s", self.kind.value, exc
                )
        return markers


def _int_or_none(value: str) -> int | None:
    return int(value) if value.isdigit() else None
