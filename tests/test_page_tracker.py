"""Tests for the per-page capture pipeline."""

import asyncio
from unittest.mock import MagicMock, PropertyMock

import pytest

from netmonitor.models import NetworkLimits
from netmonitor.page_tracker import PageTracker, get_header, normalize_timing, truncate_text
from netmonitor.storage import RequestStorage

from fakes import FakePage, FakeRequest, FakeResponse


def make_tracker(limits=None, page=None):
    page = page or FakePage()
    storage = RequestStorage()
    tracker = PageTracker(page=page, page_id="page-1", storage=storage, limits=limits)
    return tracker, page, storage


class TestTruncateText:
    def test_short_body_unchanged(self):
        assert truncate_text("abc", 3) == ("abc", 3, False)

    def test_long_body_cut_to_limit(self):
        body, size, truncated = truncate_text("a" * 10, 4)
        assert body == "aaaa"
        assert size == 10
        assert truncated is True

    def test_multibyte_character_not_split(self):
        body, size, truncated = truncate_text("aé", 2)
        assert body == "a"
        assert size == 3
        assert truncated is True

    @pytest.mark.parametrize("value", [None, "", b"bytes"])
    def test_non_text(self, value):
        body, size, truncated = truncate_text(value, 4)
        assert size == 0
        assert truncated is False


class TestTimingAndHeaders:
    def test_normalize_timing(self):
        timing = normalize_timing(
            {
                "startTime": 1700000000000.0,
                "domainLookupStart": -1,
                "connectStart": 1.5,
                "connectEnd": 3.0,
                "requestStart": 3.5,
                "responseStart": 40.0,
                "responseEnd": 55.0,
            }
        )
        assert timing["start_time"] == 1700000000000.0
        assert timing["domain_lookup"] is None
        assert timing["connect_start"] == 1.5
        assert timing["response_end"] == 55.0
        assert timing["duration"] == 55.0

    def test_duration_missing_without_response_end(self):
        timing = normalize_timing({"startTime": 1.0, "responseEnd": -1})
        assert timing["duration"] is None

    def test_normalize_timing_rejects_non_dict(self):
        assert normalize_timing(None) is None

    def test_get_header_case_insensitive(self):
        assert get_header({"Content-Type": "text/html"}, "content-type") == "text/html"
        assert get_header(None, "content-type") is None


class TestSubscriptions:
    def test_subscribes_and_registers_monitor(self):
        tracker, page, storage = make_tracker()
        for event in ("request", "response", "requestfailed"):
            assert page.listener_count(event) == 1
        assert storage.get_stats()["active_monitors"] == 1
        assert tracker.monitor_id.startswith("monitor-")

    def test_dispose_is_idempotent(self):
        tracker, page, storage = make_tracker()
        tracker.dispose()
        tracker.dispose()
        for event in ("request", "response", "requestfailed"):
            assert page.listener_count(event) == 0
        assert storage.get_stats()["active_monitors"] == 0
        assert tracker.disposed is True


class TestRequestCapture:
    def test_request_creates_observed_record(self):
        tracker, page, storage = make_tracker()
        request = FakeRequest(method="POST", post_data='{"a": 1}', navigation=False)
        page.emit("request", request)

        record = storage.get_request("req-1")
        assert record["state"] == "observed"
        assert record["page_id"] == "page-1"
        assert record["page_url"] == "https://example.com/"
        assert record["method"] == "POST"
        assert record["resource_type"] == "fetch"
        assert record["frame_url"] == "https://example.com/"
        assert record["request_body"] == '{"a": 1}'
        assert record["request_body_truncated"] is False
        assert record["request_body_bytes"] == 8
        assert record["status"] is None
        assert record["error"] is None

    def test_headers_are_cloned(self):
        tracker, page, storage = make_tracker()
        request = FakeRequest(headers={"x-token": "one"})
        page.emit("request", request)
        request.headers["x-token"] = "two"
        assert storage.get_request("req-1")["request_headers"] == {"x-token": "one"}

    def test_request_body_truncated_to_limit(self):
        limits = NetworkLimits(max_request_body_bytes=10, max_response_body_bytes=10)
        tracker, page, storage = make_tracker(limits=limits)
        page.emit("request", FakeRequest(post_data="x" * 25))
        record = storage.get_request("req-1")
        assert record["request_body"] == "x" * 10
        assert record["request_body_truncated"] is True
        assert record["request_body_bytes"] == 10
        assert record["request_body_size"] == 25

    def test_unreadable_fields_degrade(self):
        tracker, page, storage = make_tracker()
        request = MagicMock()
        request.url = "https://example.com/x"
        request.method = "GET"
        type(request).post_data = PropertyMock(side_effect=UnicodeDecodeError("utf-8", b"", 0, 1, "bad"))
        type(request).frame = PropertyMock(side_effect=RuntimeError("service worker"))
        request.headers = {"a": "b"}
        request.is_navigation_request.side_effect = RuntimeError("gone")
        page.emit("request", request)

        record = storage.get_request("req-1")
        assert record["url"] == "https://example.com/x"
        assert record["request_body"] is None
        assert record["frame_url"] is None
        assert record["is_navigation_request"] is False

    def test_unreadable_page_url(self):
        page = FakePage()
        tracker, page, storage = make_tracker(page=page)
        page.url = None
        page.emit("request", FakeRequest())
        assert storage.get_request("req-1")["page_url"] == "about:blank"


class TestResponseCapture:
    @pytest.mark.asyncio
    async def test_response_completes_record(self):
        tracker, page, storage = make_tracker()
        request = FakeRequest(
            timing={"startTime": 1000.0, "requestStart": 2.0, "responseEnd": 30.0},
        )
        page.emit("request", request)
        page.emit(
            "response",
            FakeResponse(request, status=201, status_text="Created",
                         headers={"Content-Type": "application/json"}, body='{"ok": true}'),
        )
        await tracker.wait_idle()

        record = storage.get_request("req-1")
        assert record["state"] == "completed"
        assert record["status"] == 201
        assert record["status_text"] == "Created"
        assert record["content_type"] == "application/json"
        assert record["response_body"] == '{"ok": true}'
        assert record["response_body_truncated"] is False
        assert record["response_body_bytes"] == 12
        assert record["timing"]["request_start"] == 2.0
        assert record["duration_ms"] == 30.0

    @pytest.mark.asyncio
    async def test_response_body_truncated(self):
        tracker, page, storage = make_tracker()
        request = FakeRequest()
        page.emit("request", request)
        page.emit("response", FakeResponse(request, body="z" * 70000))
        await tracker.wait_idle()

        record = storage.get_request("req-1")
        assert len(record["response_body"]) == 65536
        assert record["response_body_truncated"] is True
        usage = storage.get_usage()
        assert usage["response_bytes"] == 65536
        assert usage["response_original_bytes"] == 70000
        assert usage["response_truncated"] == 1

    @pytest.mark.asyncio
    async def test_body_read_failure_recorded(self):
        tracker, page, storage = make_tracker()
        request = FakeRequest()
        page.emit("request", request)
        page.emit("response", FakeResponse(request, body_error=RuntimeError("No resource with given identifier")))
        await tracker.wait_idle()

        record = storage.get_request("req-1")
        assert record["status"] == 200
        assert record["response_body"] is None
        assert record["response_body_error"] == "No resource with given identifier"
        assert record["response_body_bytes"] == 0

    @pytest.mark.asyncio
    async def test_orphaned_response_ignored(self):
        tracker, page, storage = make_tracker()
        page.emit("response", FakeResponse(FakeRequest()))
        await tracker.wait_idle()
        assert len(storage) == 0

    @pytest.mark.asyncio
    async def test_navigation_response_refreshes_title(self):
        tracker, page, storage = make_tracker()
        request = FakeRequest(resource_type="document", navigation=True)
        page.emit("request", request)
        page.emit("response", FakeResponse(request, body="<html></html>"))
        await tracker.wait_idle()

        snapshot = tracker.snapshot()
        assert snapshot.title == "Example"
        assert snapshot.page_id == "page-1"

    @pytest.mark.asyncio
    async def test_interleaved_completions(self):
        tracker, page, storage = make_tracker()
        first = FakeRequest(url="https://example.com/1")
        second = FakeRequest(url="https://example.com/2")
        page.emit("request", first)
        page.emit("request", second)
        page.emit("response", FakeResponse(second, status=404))
        page.emit("response", FakeResponse(first, status=200))
        await tracker.wait_idle()
        assert storage.get_request("req-1")["status"] == 200
        assert storage.get_request("req-2")["status"] == 404


class TestFailureCapture:
    def test_failure_marks_record(self):
        tracker, page, storage = make_tracker()
        request = FakeRequest(failure="net::ERR_CONNECTION_REFUSED")
        page.emit("request", request)
        page.emit("requestfailed", request)

        record = storage.get_request("req-1")
        assert record["state"] == "failed"
        assert record["status"] == 0
        assert record["status_text"] == "FAILED"
        assert record["error"] == "net::ERR_CONNECTION_REFUSED"

    def test_failure_without_text_uses_default(self):
        tracker, page, storage = make_tracker()
        request = FakeRequest(failure=None)
        page.emit("request", request)
        page.emit("requestfailed", request)
        assert storage.get_request("req-1")["error"] == "Request failed"

    def test_failure_descriptor_mapping(self):
        tracker, page, storage = make_tracker()
        request = FakeRequest(failure={"errorText": "net::ERR_ABORTED"})
        page.emit("request", request)
        page.emit("requestfailed", request)
        assert storage.get_request("req-1")["error"] == "net::ERR_ABORTED"

    def test_orphaned_failure_ignored(self):
        tracker, page, storage = make_tracker()
        page.emit("requestfailed", FakeRequest(failure="boom"))
        assert len(storage) == 0

    @pytest.mark.asyncio
    async def test_failure_after_response_does_not_reopen_record(self):
        tracker, page, storage = make_tracker()
        request = FakeRequest(failure="net::ERR_FAILED")
        page.emit("request", request)
        page.emit("response", FakeResponse(request, status=200, body="ok"))
        page.emit("requestfailed", request)
        await tracker.wait_idle()

        record = storage.get_request("req-1")
        assert record["state"] == "completed"
        assert record["status"] == 200
        assert record["error"] is None


class TestDisposal:
    def test_events_after_dispose_not_captured(self):
        tracker, page, storage = make_tracker()
        tracker.dispose()
        page.emit("request", FakeRequest())
        assert len(storage) == 0

    @pytest.mark.asyncio
    async def test_in_flight_update_after_reset_is_dropped(self):
        tracker, page, storage = make_tracker()
        request = FakeRequest()
        page.emit("request", request)
        page.emit("response", FakeResponse(request))
        tracker.dispose()
        storage.reset()
        await tracker.wait_idle()
        assert len(storage) == 0

    @pytest.mark.asyncio
    async def test_pending_response_skips_record_after_dispose(self):
        tracker, page, storage = make_tracker()
        gate = asyncio.Event()
        old = FakeRequest(url="https://example.com/old")
        page.emit("request", old)
        page.emit("response", FakeResponse(old, status=500, body="stale", gate=gate))
        tracker.dispose()
        storage.reset()

        replacement = PageTracker(page=page, page_id="page-2", storage=storage)
        page.emit("request", FakeRequest(url="https://example.com/new"))
        gate.set()
        await tracker.wait_idle()

        record = storage.get_request("req-1")
        assert record["page_id"] == replacement.page_id
        assert record["state"] == "observed"
        assert record["response_body"] is None
