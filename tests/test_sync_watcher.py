"""Tests for leadcms_sync.sync.watcher -- event parsing, debounce and the stream loop."""

import json
import threading
import time
from unittest.mock import MagicMock

import pytest

from leadcms_sync.core.errors import (
    AuthenticationError,
    LeadCMSError,
    TransportError,
)
from leadcms_sync.sync.models import EntityKind, SyncReport
from leadcms_sync.sync.watcher import ChangeWatcher, iter_events


def _report():
    return SyncReport(kind=EntityKind.CONTENT, started_at="2026-01-01T00:00:00Z")


def _wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture
def engine():
    mock = MagicMock()
    mock.sync.return_value = _report()
    return mock


@pytest.fixture
def watcher(engine):
    w = ChangeWatcher(engine, MagicMock(), debounce=0.05, reconnect_delay=0)
    yield w
    w.cancel()


# ---------------------------------------------------------------------------
# iter_events
# ---------------------------------------------------------------------------


class TestIterEvents:
    def test_named_event(self):
        lines = ["event: content-updated", 'data: {"id": 1}', ""]
        assert list(iter_events(lines)) == [("content-updated", '{"id": 1}')]

    def test_default_event_is_message(self):
        assert list(iter_events(["data: x", ""])) == [("message", "x")]

    def test_multiline_data_joined(self):
        lines = ["data: one", "data: two", ""]
        assert list(iter_events(lines)) == [("message", "one\ntwo")]

    def test_comments_and_empty_events_skipped(self):
        lines = [": keep-alive", "", "event: heartbeat", "", "data: y", ""]
        assert list(iter_events(lines)) == [("message", "y")]

    def test_bytes_and_crlf(self):
        lines = [b"event: connected\r", b'data: {"clientId": "c1"}\r', b""]
        assert list(iter_events(lines)) == [("connected", '{"clientId": "c1"}')]

    def test_trailing_event_without_blank_line(self):
        assert list(iter_events(["event: draft-updated", "data: z"])) == [
            ("draft-updated", "z")
        ]

    def test_event_name_resets_between_events(self):
        lines = ["event: heartbeat", "data: 1", "", "data: 2", ""]
        assert list(iter_events(lines)) == [("heartbeat", "1"), ("message", "2")]


# ---------------------------------------------------------------------------
# handle_event
# ---------------------------------------------------------------------------


class TestHandleEvent:
    @pytest.fixture(autouse=True)
    def _no_timer(self, watcher, monkeypatch):
        self.notified = 0

        def fake_notify():
            self.notified += 1

        monkeypatch.setattr(watcher, "notify", fake_notify)

    def test_connected_and_heartbeat_ignored(self, watcher):
        assert not watcher.handle_event("connected", '{"clientId": "abc"}')
        assert not watcher.handle_event("heartbeat", '{"timestamp": "now"}')
        assert self.notified == 0

    @pytest.mark.parametrize("event", ["content-updated", "draft-updated"])
    def test_content_events_schedule_sync(self, watcher, event):
        assert watcher.handle_event(event, "{}")
        assert self.notified == 1

    def test_content_message(self, watcher):
        data = '{"entityType": "Content", "operation": "Updated"}'
        assert watcher.handle_event("message", data)
        assert self.notified == 1

    def test_other_entity_message_ignored(self, watcher):
        assert not watcher.handle_event("message", '{"entityType": "Media"}')
        assert not watcher.handle_event("message", "not json")
        assert not watcher.handle_event("message", "[1, 2]")
        assert not watcher.handle_event("mystery", "{}")
        assert self.notified == 0


# ---------------------------------------------------------------------------
# Debounce and serialization
# ---------------------------------------------------------------------------


class TestDebounce:
    def test_burst_yields_single_sync(self, watcher, engine):
        for _ in range(5):
            watcher.notify()

        assert _wait_for(lambda: engine.sync.call_count == 1)
        time.sleep(0.15)
        assert engine.sync.call_count == 1
        engine.sync.assert_called_with(EntityKind.CONTENT, force_overwrite=True)

    def test_notification_during_sync_queues_one_more(self, watcher, engine):
        started = threading.Event()
        release = threading.Event()

        def slow_sync(*args, **kwargs):
            started.set()
            release.wait(2)
            return _report()

        engine.sync.side_effect = slow_sync

        watcher.notify()
        assert started.wait(2)
        watcher.notify()
        time.sleep(0.1)
        watcher.notify()
        time.sleep(0.1)
        release.set()

        assert _wait_for(lambda: engine.sync.call_count == 2)
        time.sleep(0.15)
        assert engine.sync.call_count == 2

    def test_cancel_drops_pending_sync(self, watcher, engine):
        watcher.debounce = 0.2
        watcher.notify()
        watcher.cancel()
        time.sleep(0.3)
        engine.sync.assert_not_called()

    def test_sync_failure_is_logged(self, watcher, engine, caplog):
        engine.sync.side_effect = TransportError("server unavailable", status_code=503)

        watcher._run_once()

        assert "content sync failed" in caplog.text

    def test_failed_sync_does_not_block_next(self, watcher, engine):
        engine.sync.side_effect = [LeadCMSError("boom"), _report()]

        watcher.notify()
        assert _wait_for(lambda: engine.sync.call_count == 1)
        watcher.notify()
        assert _wait_for(lambda: engine.sync.call_count == 2)


# ---------------------------------------------------------------------------
# watch loop
# ---------------------------------------------------------------------------


def _stream(lines):
    response = MagicMock()
    response.iter_lines.return_value = lines
    return response


class TestWatch:
    def test_events_dispatched_then_reconnect(self, engine):
        stop = threading.Event()
        client = MagicMock()
        calls = []

        def open_stream(entities):
            calls.append(entities)
            if len(calls) == 1:
                return _stream(["event: content-updated", "data: {}", ""])
            stop.set()
            raise TransportError("connection refused")

        client.open_event_stream.side_effect = open_stream
        w = ChangeWatcher(engine, client, debounce=0.01, reconnect_delay=0)
        handled = []
        w.handle_event = lambda event, data: handled.append(event)

        w.watch(stop)

        assert calls == ["Content", "Content"]
        assert handled == ["content-updated"]

    def test_stop_event_ends_stream(self, engine):
        stop = threading.Event()
        client = MagicMock()
        client.open_event_stream.return_value = _stream(
            ["data: 1", "", "data: 2", ""]
        )
        w = ChangeWatcher(engine, client, reconnect_delay=0)
        handled = []

        def handle(event, data):
            handled.append(data)
            stop.set()

        w.handle_event = handle

        w.watch(stop)

        assert handled == ["1"]
        assert client.open_event_stream.call_count == 1

    def test_authentication_error_propagates(self, engine):
        client = MagicMock()
        client.open_event_stream.side_effect = AuthenticationError(
            "Invalid API key", status_code=401
        )
        w = ChangeWatcher(engine, client, reconnect_delay=0)

        with pytest.raises(AuthenticationError):
            w.watch(threading.Event())

    def test_pending_sync_cancelled_on_exit(self, engine):
        stop = threading.Event()
        client = MagicMock()

        def open_stream(entities):
            stop.set()
            return _stream(["event: content-updated", "data: {}", ""])

        client.open_event_stream.side_effect = open_stream
        w = ChangeWatcher(engine, client, debounce=0.2, reconnect_delay=0)

        w.watch(stop)
        time.sleep(0.3)

        engine.sync.assert_not_called()


# ---------------------------------------------------------------------------
# Draft previews
# ---------------------------------------------------------------------------


class TestDraftPreview:
    @pytest.fixture
    def preview_watcher(self, mirror_config):
        engine = MagicMock()
        engine.config = mirror_config
        client = MagicMock()
        client.get_content_types.return_value = {"article": "MDX", "component": "JSON"}
        w = ChangeWatcher(engine, client, debounce=0.05, reconnect_delay=0)
        w.notify = MagicMock()
        yield w
        w.cancel()

    def _content_dir(self, watcher):
        return watcher.engine.config.entity_dir(EntityKind.CONTENT)

    def test_draft_event_writes_preview_and_syncs(self, preview_watcher):
        draft = {"id": 3, "slug": "launch", "type": "article", "body": "Soon"}
        data = json.dumps({"createdById": 17, "data": json.dumps(draft)})

        assert preview_watcher.handle_event("draft-updated", data)

        path = self._content_dir(preview_watcher) / "article" / "launch-17.mdx"
        assert "draft: true" in path.read_text()
        preview_watcher.notify.assert_called_once()

    def test_draft_object_payload(self, preview_watcher):
        draft = {"id": 4, "slug": "hero", "type": "component", "body": "{}"}

        assert preview_watcher.save_draft_preview({"createdById": "u1", "data": draft})

        path = self._content_dir(preview_watcher) / "component" / "hero-u1.json"
        assert json.loads(path.read_text())["draft"] is True

    def test_type_map_fetched_once(self, preview_watcher):
        draft = {"id": 3, "slug": "launch", "type": "article", "body": "Soon"}
        preview_watcher.save_draft_preview({"createdById": 1, "data": draft})
        preview_watcher.save_draft_preview({"createdById": 2, "data": draft})
        assert preview_watcher.client.get_content_types.call_count == 1

    def test_payload_without_draft_ignored(self, preview_watcher):
        assert not preview_watcher.save_draft_preview({"createdById": 1})
        assert not preview_watcher.save_draft_preview({"data": {"slug": "x"}})
        assert not preview_watcher.save_draft_preview({"createdById": 1, "data": "not json"})
        preview_watcher.client.get_content_types.assert_not_called()

    def test_undeclared_type_not_written(self, preview_watcher):
        draft = {"id": 5, "slug": "odd", "type": "mystery", "body": "x"}
        assert not preview_watcher.save_draft_preview({"createdById": 1, "data": draft})
        assert not self._content_dir(preview_watcher).exists()

    def test_failure_logged_and_sync_still_scheduled(self, preview_watcher, caplog):
        preview_watcher.client.get_content_types.side_effect = TransportError("down")
        draft = {"id": 3, "slug": "launch", "type": "article"}
        data = json.dumps({"createdById": 1, "data": draft})

        assert preview_watcher.handle_event("draft-updated", data)

        assert "cannot save draft preview" in caplog.text
        preview_watcher.notify.assert_called_once()
