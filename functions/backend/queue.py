"""
Queue abstraction for outbound alert emails.

Supports an in-memory fallback for tests/local runs and a Redis-backed
implementation for production.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from typing import Optional, Protocol

import redis
from redis import exceptions as redis_exceptions

from shared.types import AlertMessage


def _encode(message: AlertMessage) -> str:
    return json.dumps(asdict(message))


def _decode(raw: bytes | str) -> AlertMessage:
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    return AlertMessage(**json.loads(raw))


class AlertQueue(Protocol):
    """Minimal queue interface for handing rendered alerts to the alert worker."""

    def enqueue(self, message: AlertMessage) -> None:
        ...

    def dequeue(
        self, *, block: bool = True, timeout: int | None = None
    ) -> Optional[AlertMessage]:
        ...


@dataclass
class InMemoryAlertQueue:
    """Simple FIFO queue for testing/dev."""

    items: list[str] = field(default_factory=list)

    def enqueue(self, message: AlertMessage) -> None:
        self.items.append(_encode(message))

    def dequeue(
        self, *, block: bool = True, timeout: int | None = None
    ) -> Optional[AlertMessage]:
        if not self.items:
            return None
        return _decode(self.items.pop(0))


@dataclass
class RedisAlertQueue:
    """Redis-backed queue using list push/pop operations."""

    url: str
    queue_key: str = "seo:alerts"

    def __post_init__(self):
        self.client = redis.Redis.from_url(self.url)

    def enqueue(self, message: AlertMessage) -> None:
        self.client.rpush(self.queue_key, _encode(message))

    def dequeue(
        self, *, block: bool = True, timeout: int | None = None
    ) -> Optional[AlertMessage]:
        try:
            if block:
                result = self.client.blpop(self.queue_key, timeout=timeout or 0)
                if result is None:
                    return None
                _, raw = result
            else:
                raw = self.client.lpop(self.queue_key)
                if raw is None:
                    return None
        except redis_exceptions.ConnectionError:
            # Managed Redis drops idle connections; reconnect and let the
            # worker loop poll again.
            self.client = redis.Redis.from_url(self.url)
            return None
        return _decode(raw)
