"""Queue data models."""
import base64
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Tuple

from replay_queue import settings

HeaderPairs = List[Tuple[str, str]]


@dataclass
class RequestSnapshot:
    """Storage-safe copy of a request."""

    url: str
    method: str
    headers: HeaderPairs = field(default_factory=list)  # ordered, duplicates kept
    mode: str = "cors"
    redirect: str = "follow"
    body: Optional[str] = None  # only set for a non-empty body

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "url": self.url,
            "method": self.method,
            "mode": self.mode,
            "redirect": self.redirect,
            "headers": [[name, value] for name, value in self.headers],
        }
        if self.body:
            data["body"] = self.body
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RequestSnapshot":
        return cls(
            url=data["url"],
            method=data.get("method", "GET"),
            headers=[(name, value) for name, value in data.get("headers") or []],
            mode=data.get("mode", "cors"),
            redirect=data.get("redirect", "follow"),
            body=data.get("body") or None,
        )


@dataclass(frozen=True)
class ResponseSnapshot:
    """Storage-safe copy of a replayed response. Immutable once created."""

    headers: Tuple[Tuple[str, str], ...]
    status: int
    body: bytes

    def to_dict(self) -> Dict[str, Any]:
        return {
            "headers": [[name, value] for name, value in self.headers],
            "status": self.status,
            "body": base64.b64encode(self.body).decode("ascii"),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ResponseSnapshot":
        return cls(
            headers=tuple((name, value) for name, value in data.get("headers") or []),
            status=int(data["status"]),
            body=base64.b64decode(data.get("body") or ""),
        )


@dataclass
class QueueConfig:
    """Per-entry retention settings."""

    max_age: float = settings.DEFAULT_MAX_AGE_SECONDS  # seconds

    def __post_init__(self):
        max_age = self.max_age
        if not isinstance(max_age, (int, float)) or isinstance(max_age, bool) or max_age < 0:
            raise ValueError(f"max_age must be a non-negative number of seconds, got {max_age!r}")
        self.max_age = float(max_age)

    def merged(self, override: Optional[Dict[str, Any]] = None) -> "QueueConfig":
        """Return a copy with any keys from `override` applied."""
        if override is None:
            return replace(self)
        if isinstance(override, QueueConfig):
            return replace(override)
        unknown = set(override) - {"max_age"}
        if unknown:
            raise ValueError(f"Unknown queue config keys: {sorted(unknown)}")
        return QueueConfig(max_age=override.get("max_age", self.max_age))

    def to_dict(self) -> Dict[str, Any]:
        return {"max_age": self.max_age}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "QueueConfig":
        if not data:
            return cls()
        return cls(max_age=float(data.get("max_age", settings.DEFAULT_MAX_AGE_SECONDS)))


@dataclass
class QueueEntryRecord:
    """A queued request as persisted under its entry id."""

    request: RequestSnapshot
    config: QueueConfig
    metadata: Dict[str, Any]
    response: Optional[ResponseSnapshot] = None

    @classmethod
    def create(cls, request: RequestSnapshot, config: QueueConfig, creation_timestamp: float):
        """Factory method to create a fresh, not yet replayed record."""
        return cls(
            request=request,
            config=config,
            metadata={"creation_timestamp": creation_timestamp},
        )

    @property
    def creation_timestamp(self) -> float:
        return float(self.metadata.get("creation_timestamp", 0))

    def is_expired(self, now: float) -> bool:
        return self.creation_timestamp + self.config.max_age <= now

    def with_response(self, response: ResponseSnapshot) -> "QueueEntryRecord":
        """Return a new record carrying the response; the original is left untouched."""
        return replace(self, metadata=dict(self.metadata), response=response)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "request": self.request.to_dict(),
            "config": self.config.to_dict(),
            "metadata": dict(self.metadata),
        }
        if self.response is not None:
            data["response"] = self.response.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QueueEntryRecord":
        response = data.get("response")
        return cls(
            request=RequestSnapshot.from_dict(data["request"]),
            config=QueueConfig.from_dict(data.get("config")),
            metadata=dict(data.get("metadata") or {}),
            response=ResponseSnapshot.from_dict(response) if response else None,
        )
