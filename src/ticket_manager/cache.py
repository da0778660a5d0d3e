"""
ticket_manager.cache

Single-process cache store and cache key derivation.

Responsibilities:
- Define the cache store contract (async get/set/delete, each atomic per key).
- Provide an in-memory implementation with optional TTL.
- Derive deterministic, namespaced keys for ticket entries.
"""

from __future__ import annotations

import base64
import hashlib
import time
from collections.abc import Callable
from typing import Protocol


class CacheStore(Protocol):
    """
    Values are opaque serialized snapshots. Implementations raise `CacheError`
    when the backing cache is unavailable.
    """

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str) -> None: ...

    async def delete(self, key: str) -> None: ...


class InMemoryCacheStore:
    def __init__(
        self,
        *,
        default_ttl: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._default_ttl = default_ttl
        self._clock = clock
        # key -> (value, expires_at or None)
        self._entries: dict[str, tuple[str, float | None]] = {}

    async def get(self, key: str) -> str | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and expires_at <= self._clock():
            self._entries.pop(key, None)
            return None
        return value

    async def set(self, key: str, value: str) -> None:
        expires_at = None if self._default_ttl is None else self._clock() + self._default_ttl
        self._entries[key] = (value, expires_at)

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def __len__(self) -> int:
        return len(self._entries)


class CacheKeyBuilder:
    def __init__(self, namespace: str) -> None:
        self._namespace = namespace

    def build(self, prefix: str) -> str:
        return f"{self._namespace}:{prefix}"

    def ticket(self, ticket_id: int) -> str:
        # One-way fingerprint of the id, URL-safe and unpadded.
        digest = hashlib.sha3_256(str(ticket_id).encode("utf-8")).digest()
        fingerprint = base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")
        return self.build(f"Ticket_{fingerprint}")

    def tickets(self) -> str:
        return self.build("Tickets_General")


# --- Module Notes -----------------------------------------------------------
# The in-memory store is the only implementation shipped. A distributed store plugs in
# through `CacheStore`: a `redis.asyncio.Redis` client wrapped with get/set(ex=ttl)/delete,
# logging a warning and raising `CacheError` on `RedisError`, is the intended shape.
