"""Conversion between requests objects and storable snapshots.

This module is the only place where `requests.Request`,
`requests.PreparedRequest` and `requests.Response` are turned into queue
records or rebuilt from them.

`mode` and `redirect` have no counterpart in `requests`; callers that care
set them as plain attributes on the request object before queueing it:

    >>> req = requests.Request("POST", "https://api.example.com/forms", data=b"a=1")
    >>> req.redirect = "manual"
"""
from typing import Any, Iterable, List, Optional, Tuple, Union

import requests
from requests.structures import CaseInsensitiveDict

from replay_queue.queue.models import RequestSnapshot, ResponseSnapshot

DEFAULT_MODE = "cors"
DEFAULT_REDIRECT = "follow"
REDIRECT_POLICIES = ("follow", "manual", "error")
BODYLESS_METHODS = frozenset({"GET", "HEAD"})

# Keeps undecodable bytes through a text round trip
BODY_ENCODING = "utf-8"
BODY_ERRORS = "surrogateescape"

QueueableRequest = Union[requests.Request, requests.PreparedRequest]


def validate_request(request: Any) -> None:
    """Raise if `request` cannot be queued at all."""
    if not isinstance(request, (requests.Request, requests.PreparedRequest)):
        raise TypeError(
            f"Expected requests.Request or requests.PreparedRequest, got {type(request).__name__}"
        )
    if not request.url:
        raise ValueError("Request has no URL")
    redirect = getattr(request, "redirect", None) or DEFAULT_REDIRECT
    if redirect not in REDIRECT_POLICIES:
        raise ValueError(f"Unsupported redirect policy {redirect!r}; expected one of {REDIRECT_POLICIES}")


def to_snapshot(request: QueueableRequest) -> RequestSnapshot:
    """Serialize a request into a RequestSnapshot.

    Reads the whole body, so streamed or file-like bodies are consumed.
    Pass a copy if the caller still needs to send the original.
    """
    validate_request(request)
    prepared = request.prepare() if isinstance(request, requests.Request) else request

    mode = getattr(request, "mode", None) or DEFAULT_MODE
    if mode == "navigate":
        # A navigation cannot be re-issued as one
        mode = "same-origin"

    method = (prepared.method or "GET").upper()
    body = None
    if method not in BODYLESS_METHODS:
        body = _read_body(prepared.body)

    return RequestSnapshot(
        url=prepared.url,
        method=method,
        headers=[(str(name), _header_text(value)) for name, value in prepared.headers.items()],
        mode=mode,
        redirect=getattr(request, "redirect", None) or DEFAULT_REDIRECT,
        body=body,
    )


def from_snapshot(snapshot: RequestSnapshot) -> requests.Request:
    """Rebuild a request that can be sent again."""
    data = None
    if snapshot.body:
        data = snapshot.body.encode(BODY_ENCODING, BODY_ERRORS)
    request = requests.Request(
        method=snapshot.method,
        url=snapshot.url,
        headers=fold_headers(snapshot.headers),
        data=data,
    )
    request.mode = snapshot.mode
    request.redirect = snapshot.redirect
    return request


def fold_headers(pairs: Iterable[Tuple[str, str]]) -> CaseInsensitiveDict:
    """Build a header mapping from ordered pairs.

    requests sends one field per name, so repeated names are combined into a
    single comma-separated field in the order they were recorded.
    """
    headers = CaseInsensitiveDict()
    for name, value in pairs:
        if name in headers:
            headers[name] = f"{headers[name]}, {value}"
        else:
            headers[name] = value
    return headers


def allow_redirects(snapshot: RequestSnapshot) -> bool:
    return snapshot.redirect == "follow"


def capture_response(response: requests.Response) -> ResponseSnapshot:
    """Serialize a response; reads the full body."""
    return ResponseSnapshot(
        headers=tuple(_response_header_pairs(response)),
        status=int(response.status_code),
        body=response.content or b"",
    )


def _response_header_pairs(response: requests.Response) -> List[Tuple[str, str]]:
    # The transport headers keep repeated fields; response.headers has merged them
    raw_headers = getattr(getattr(response, "raw", None), "headers", None)
    if raw_headers is not None and hasattr(raw_headers, "items"):
        pairs = [(str(name), _header_text(value)) for name, value in raw_headers.items()]
        if pairs:
            return pairs
    return [(str(name), _header_text(value)) for name, value in response.headers.items()]


def _header_text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("latin-1")
    return str(value)


def _read_body(body: Any) -> Optional[str]:
    if body is None:
        return None
    if hasattr(body, "read"):
        body = body.read()
    elif not isinstance(body, (bytes, bytearray, str)):
        # Generator or other chunked body
        body = b"".join(
            chunk if isinstance(chunk, (bytes, bytearray)) else str(chunk).encode(BODY_ENCODING)
            for chunk in body
        )
    if isinstance(body, (bytes, bytearray)):
        body = bytes(body).decode(BODY_ENCODING, BODY_ERRORS)
    return body or None
