"""Tests for converting requests objects to snapshots and back."""
import io
from types import SimpleNamespace

import pytest
import requests

from replay_queue.queue.codec import (
    allow_redirects,
    capture_response,
    fold_headers,
    from_snapshot,
    to_snapshot,
)
from replay_queue.queue.models import RequestSnapshot
from conftest import API, make_response, post_request


class RawHeaders:
    """Transport headers that keep repeated fields, like urllib3's."""

    def __init__(self, pairs):
        self._pairs = pairs

    def items(self):
        return list(self._pairs)


class TestToSnapshot:

    def test_post_keeps_body_and_header_order(self):
        request = post_request(data=b"name=ada", headers={"X-Token": "t1", "Content-Type": "text/plain"})

        snapshot = to_snapshot(request)

        assert snapshot.url == API + "/forms"
        assert snapshot.method == "POST"
        assert snapshot.body == "name=ada"
        assert snapshot.headers[0] == ("X-Token", "t1")
        assert snapshot.headers[1] == ("Content-Type", "text/plain")
        assert ("Content-Length", "8") in snapshot.headers

    def test_defaults_for_mode_and_redirect(self):
        snapshot = to_snapshot(post_request())
        assert snapshot.mode == "cors"
        assert snapshot.redirect == "follow"

    def test_mode_and_redirect_attributes_are_kept(self):
        request = post_request()
        request.mode = "same-origin"
        request.redirect = "manual"

        snapshot = to_snapshot(request)

        assert snapshot.mode == "same-origin"
        assert snapshot.redirect == "manual"

    def test_navigate_mode_becomes_same_origin(self):
        request = requests.Request("GET", API + "/page")
        request.mode = "navigate"
        assert to_snapshot(request).mode == "same-origin"

    def test_get_never_stores_body(self):
        request = requests.Request("GET", API + "/search", data=b"ignored")
        assert to_snapshot(request).body is None

    def test_empty_body_is_absent(self):
        request = requests.Request("POST", API + "/ping", data=b"")
        snapshot = to_snapshot(request)
        assert snapshot.body is None
        assert "body" not in snapshot.to_dict()

    def test_prepared_request_with_file_body_is_consumed(self):
        prepared = requests.Request("PUT", API + "/upload").prepare()
        stream = io.BytesIO(b"chunk-data")
        prepared.body = stream

        snapshot = to_snapshot(prepared)

        assert snapshot.method == "PUT"
        assert snapshot.body == "chunk-data"
        assert stream.read() == b""

    def test_generator_body_is_joined(self):
        prepared = requests.Request("POST", API + "/stream").prepare()
        prepared.body = (part for part in [b"a", b"b", "c"])
        assert to_snapshot(prepared).body == "abc"

    def test_rejects_non_request(self):
        with pytest.raises(TypeError):
            to_snapshot({"url": API})

    def test_rejects_unknown_redirect_policy(self):
        request = post_request()
        request.redirect = "sometimes"
        with pytest.raises(ValueError):
            to_snapshot(request)


class TestFromSnapshot:

    def test_rebuilds_sendable_request(self):
        snapshot = to_snapshot(post_request(data=b"a=1&b=2"))

        request = from_snapshot(snapshot)
        prepared = request.prepare()

        assert prepared.method == "POST"
        assert prepared.url == API + "/forms"
        assert prepared.body == b"a=1&b=2"
        assert prepared.headers["Content-Type"] == "application/x-www-form-urlencoded"
        assert request.mode == "cors"
        assert request.redirect == "follow"

    def test_binary_body_survives_text_storage(self):
        payload = b"\xff\xfe\x00binary\x80"
        snapshot = to_snapshot(requests.Request("POST", API + "/blob", data=payload))

        restored = RequestSnapshot.from_dict(snapshot.to_dict())

        assert from_snapshot(restored).prepare().body == payload

    def test_no_body_when_absent(self):
        snapshot = RequestSnapshot(url=API + "/items", method="DELETE", headers=[("Accept", "*/*")])
        prepared = from_snapshot(snapshot).prepare()
        assert not prepared.body
        assert prepared.headers["Accept"] == "*/*"

    def test_repeated_headers_are_folded_not_dropped(self):
        headers = fold_headers([("Accept", "text/html"), ("X-Trace", "1"), ("accept", "application/json")])

        assert headers["Accept"] == "text/html, application/json"
        assert [name.lower() for name in headers] == ["accept", "x-trace"]

    def test_allow_redirects_only_for_follow(self):
        assert allow_redirects(RequestSnapshot(url=API, method="GET", redirect="follow"))
        assert not allow_redirects(RequestSnapshot(url=API, method="GET", redirect="manual"))
        assert not allow_redirects(RequestSnapshot(url=API, method="GET", redirect="error"))


class TestCaptureResponse:

    def test_captures_status_body_and_headers(self):
        response = make_response(201, b"\x00created", {"Content-Type": "application/octet-stream"})

        snapshot = capture_response(response)

        assert snapshot.status == 201
        assert snapshot.body == b"\x00created"
        assert snapshot.headers == (("Content-Type", "application/octet-stream"),)

    def test_prefers_raw_headers_to_keep_duplicates(self):
        response = make_response(200, b"ok", {"Set-Cookie": "a=1, b=2"})
        response.raw = SimpleNamespace(headers=RawHeaders([("Set-Cookie", "a=1"), ("Set-Cookie", "b=2")]))

        snapshot = capture_response(response)

        assert snapshot.headers == (("Set-Cookie", "a=1"), ("Set-Cookie", "b=2"))

    def test_snapshot_is_immutable(self):
        snapshot = capture_response(make_response())
        with pytest.raises(AttributeError):
            snapshot.status = 500
