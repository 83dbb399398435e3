"""Real-time content watcher driven by the LeadCMS server-sent event stream.

Change notifications arrive in bursts (one edit may produce a
``content-updated`` event and an untyped ``message`` for the same change),
so notifications are debounced and runs are serialized:

* a burst within ``debounce`` seconds yields a single content sync;
* a notification arriving while a sync runs queues exactly one more run;
* every run uses force-overwrite, because two overlapping runs may start
  from the same cursor and would otherwise report spurious conflicts.

A ``draft-updated`` event that carries the draft also writes a preview file
``<slug>-<createdById>`` with ``draft: true`` for MDX and JSON types.

A dropped stream is reopened after ``reconnect_delay`` seconds.
"""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Iterable, Iterator

import requests

from ..core.client import LeadCMSClient
from ..core.errors import AuthenticationError, LeadCMSError
from .engine import SyncEngine
from .models import EntityKind, RemoteRecord
from .reconciler import ContentReconciler

logger = logging.getLogger(__name__)

CONTENT_EVENTS = frozenset({"content-updated", "draft-updated"})


def iter_events(lines: Iterable[str | bytes]) -> Iterator[tuple[str, str]]:
    """Parse server-sent event lines into ``(event, data)`` pairs.

    Multi-line ``data:`` fields are joined with newlines; comment lines
    (``:``) and events without data are ignored.
    """
    event = "message"
    data: list[str] = []
    for raw in lines:
        line = raw.decode("utf-8") if isinstance(raw, bytes) else raw
        line = line.rstrip("\r")
        if not line:
            if data:
                yield event, "\n".join(data)
            event, data = "message", []
            continue
        if line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "event":
            event = value or "message"
        elif field == "data":
            data.append(value)
    if data:
        yield event, "\n".join(data)


def _parse(data: str) -> dict:
    try:
        payload = json.loads(data)
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}


class ChangeWatcher:
    """Run a debounced, serialized content sync for every change event.

    Args:
        engine: Engine whose ``sync()`` is called.
        client: Client that opens the event stream.
        debounce: Quiet period in seconds before a sync starts.
        reconnect_delay: Seconds to wait before reopening a dropped stream.
    """

    def __init__(
        self,
        engine: SyncEngine,
        client: LeadCMSClient,
        debounce: float = 0.3,
        reconnect_delay: float = 5.0,
    ) -> None:
        self.engine = engine
        self.client = client
        self.debounce = debounce
        self.reconnect_delay = reconnect_delay

        self._lock = threading.Lock()
        self._timer: threading.Timer | None = None
        self._in_progress = False
        self._queued = False
        self._type_map: dict[str, str] | None = None

    # ------------------------------------------------------------------
    # Debounced scheduling
    # ------------------------------------------------------------------

    def notify(self) -> None:
        """Schedule a content sync, restarting the debounce window."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self.debounce, self._fire)
            self._timer.daemon = True
            self._timer.start()

    def cancel(self) -> None:
        """Drop a pending (not yet started) sync."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def _fire(self) -> None:
        with self._lock:
            self._timer = None
            if self._in_progress:
                self._queued = True
                logger.debug("[watch] sync already running; queued another")
                return
            self._in_progress = True

        try:
            while True:
                self._run_once()
                with self._lock:
                    if not self._queued:
                        self._in_progress = False
                        return
                    self._queued = False
                logger.debug("[watch] running queued sync")
        except BaseException:
            with self._lock:
                self._in_progress = False
            raise

    def _run_once(self) -> None:
        try:
            report = self.engine.sync(EntityKind.CONTENT, force_overwrite=True)
        except (LeadCMSError, OSError) as exc:
            logger.error("[watch] content sync failed: %s", exc)
            return
        logger.info(
            "[watch] content synced: %d written, %d deleted",
            len(report.created) + len(report.updated) + len(report.merged),
            len(report.deleted),
        )

    # ------------------------------------------------------------------
    # Draft previews
    # ------------------------------------------------------------------

    def save_draft_preview(self, payload: dict) -> bool:
        """Write the draft carried by a ``draft-updated`` payload.

        The payload holds ``createdById`` and ``data``, the draft content
        as an object or a JSON string.  Failures are logged; the content
        sync still runs.

        Returns:
            ``True`` if a preview file was written.
        """
        user_id = payload.get("createdById")
        draft = payload.get("data")
        if user_id is None or not draft:
            return False
        if isinstance(draft, str):
            draft = _parse(draft)
        if not isinstance(draft, dict) or not draft:
            logger.debug("[watch] draft payload without content")
            return False

        try:
            if self._type_map is None:
                self._type_map = self.client.get_content_types()
            reconciler = ContentReconciler(self.engine.config, self._type_map)
            path = reconciler.save_preview(
                RemoteRecord.from_api(draft), str(user_id)
            )
        except (ValueError, LeadCMSError, OSError) as exc:
            logger.error("[watch] cannot save draft preview: %s", exc)
            return False
        return path is not None

    # ------------------------------------------------------------------
    # Event stream
    # ------------------------------------------------------------------

    def handle_event(self, event: str, data: str) -> bool:
        """React to one server-sent event.

        Returns:
            ``True`` if the event scheduled a content sync.
        """
        if event == "connected":
            payload = _parse(data)
            logger.info(
                "[watch] connected (client %s)", payload.get("clientId", "?")
            )
            return False
        if event == "heartbeat":
            logger.debug("[watch] heartbeat %s", _parse(data).get("timestamp"))
            return False
        if event in CONTENT_EVENTS:
            logger.debug("[watch] %s", event)
            if event == "draft-updated":
                self.save_draft_preview(_parse(data))
            self.notify()
            return True
        if event == "message":
            payload = _parse(data)
            if payload.get("entityType") == "Content":
                logger.debug(
                    "[watch] content %s", payload.get("operation", "change")
                )
                self.notify()
                return True
        logger.debug("[watch] ignoring '%s' event", event)
        return False

    def watch(self, stop_event: threading.Event | None = None) -> None:
        """Consume the event stream until *stop_event* is set.

        Raises:
            AuthenticationError: If the server rejects the credential.
        """
        stop_event = stop_event or threading.Event()
        try:
            while not stop_event.is_set():
                try:
                    response = self.client.open_event_stream("Content")
                    with response:
                        lines = response.iter_lines(decode_unicode=True)
                        for event, data in iter_events(lines):
                            self.handle_event(event, data)
                            if stop_event.is_set():
                                break
                    if not stop_event.is_set():
                        logger.warning("[watch] event stream closed")
                except AuthenticationError:
                    raise
                except (LeadCMSError, requests.RequestException) as exc:
                    logger.error("[watch] event stream error: %s", exc)

                if stop_event.wait(self.reconnect_delay):
                    break
                logger.info("[watch] reconnecting")
        finally:
            self.cancel()
