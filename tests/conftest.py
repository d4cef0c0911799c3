"""Shared fixtures for replay queue tests."""
import pytest
import requests
from requests.structures import CaseInsensitiveDict

from replay_queue import settings
from replay_queue.broadcast import BroadcastChannel
from replay_queue.replay.coordinator import reset_coordinators
from replay_queue.replay.triggers import SyncManager, reset_sync_manager
from replay_queue.store.backends import SpoolBackend
from replay_queue.store.durable_store import DurableStore, reset_stores

API = "https://api.example.com"


def make_response(status=200, body=b"ok", headers=None, url=API + "/"):
    """Build a requests.Response without touching the network."""
    response = requests.Response()
    response.status_code = status
    response._content = body
    response.headers = CaseInsensitiveDict(headers or {"Content-Type": "text/plain"})
    response.url = url
    return response


def post_request(path="/forms", data=b"name=ada", headers=None):
    return requests.Request(
        "POST",
        API + path,
        data=data,
        headers=headers or {"Content-Type": "application/x-www-form-urlencoded"},
    )


class FakeFetcher:
    """Records fetched URLs in order and answers from per-URL routes.

    A route is a response, an exception to raise, or a coroutine function
    taking the request. Unrouted URLs get a 200.
    """

    def __init__(self):
        self.calls = []
        self.requests = []
        self.routes = {}

    def route(self, url, result):
        self.routes[url] = result

    async def fetch(self, request, allow_redirects=True):
        self.calls.append(request.url)
        self.requests.append(request)
        result = self.routes.get(request.url)
        if result is None:
            return make_response(200, f"replayed {request.url}".encode(), url=request.url)
        if isinstance(result, Exception):
            raise result
        if isinstance(result, requests.Response):
            return result
        return await result(request)

    def close(self):
        pass


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    """Point default stores at a temp directory and clear process-wide singletons."""
    monkeypatch.setattr(settings, "STORE_DIR", tmp_path / "default-store")
    monkeypatch.setattr(settings, "DATABASE_URL", None)
    reset_stores()
    reset_sync_manager()
    reset_coordinators()
    yield
    reset_stores()
    reset_sync_manager()
    reset_coordinators()


@pytest.fixture
def store(tmp_path):
    return DurableStore(SpoolBackend(tmp_path / "spool", "testDB", 1, "QueueStore"), label="test/QueueStore")


@pytest.fixture
def sync_store(tmp_path):
    return DurableStore(SpoolBackend(tmp_path / "spool", "testDB", 1, "SyncRegistrations"), label="test/Sync")


@pytest.fixture
def sync_manager(sync_store):
    return SyncManager(sync_store)


@pytest.fixture
def channel():
    return BroadcastChannel("test-channel")


@pytest.fixture
def messages(channel):
    received = []
    channel.subscribe(received.append)
    return received


@pytest.fixture
def fetcher():
    return FakeFetcher()
