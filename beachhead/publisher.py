"""Destinations for parsed service records.

Every record is written as one key per scheme (see
:func:`beachhead.records.publication_key`) holding a JSON
:class:`~beachhead.api_models.PublishedEntry`. Keys are only ever upserted;
removal is left to the store's expiry.
"""
from __future__ import annotations

import logging
import re
import time
from abc import ABC, abstractmethod
from threading import Lock
from typing import Callable

import redis

from .api_models import PublishedEntry
from .errors import PublishError
from .events import log_event
from .records import ServiceRecord, publication_key
from .settings import Settings

logger = logging.getLogger(__name__)

_GLOB_SPECIAL_RE = re.compile(r"([*?\[\]\\])")


def _glob_escape(s: str) -> str:
    return _GLOB_SPECIAL_RE.sub(r"\\\1", s)


class Publisher(ABC):
    def __init__(self, key_prefix: str):
        self.key_prefix = key_prefix

    def entries(self, record: ServiceRecord) -> list[tuple[str, str]]:
        """(key, serialized payload) for every scheme of the record."""
        out: list[tuple[str, str]] = []
        for m in record.mappings:
            entry = PublishedEntry(
                id=record.spec_id,
                domain=record.domain,
                scheme=m.scheme.value,
                port=m.port,
                host=record.host,
                container=record.container,
            )
            out.append((publication_key(self.key_prefix, record.domain, m.scheme), entry.model_dump_json()))
        return out

    @abstractmethod
    def publish(self, record: ServiceRecord, ttl_s: int | None = None) -> None:
        """Upsert all keys of the record. ``ttl_s=None`` means never expire.

        Raises PublishError.
        """

    @abstractmethod
    def query(self, prefix: str = "") -> dict[str, str]:
        """Live keys below ``key_prefix + prefix`` mapped to their raw payload."""


class RedisPublisher(Publisher):
    def __init__(self, client: redis.Redis, key_prefix: str):
        super().__init__(key_prefix)
        self.client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> "RedisPublisher":
        client = redis.Redis(
            host=settings.redis_host,
            port=settings.redis_port,
            db=settings.redis_db,
            password=settings.redis_password,
            decode_responses=True,
        )
        return cls(client, settings.key_prefix)

    def publish(self, record: ServiceRecord, ttl_s: int | None = None) -> None:
        # SET ... EX sets value and expiry in one command; MULTI/EXEC keeps the
        # scheme keys of a record together.
        pipe = self.client.pipeline(transaction=True)
        for key, payload in self.entries(record):
            if ttl_s is not None:
                pipe.set(key, payload, ex=ttl_s)
            else:
                pipe.set(key, payload)
        try:
            pipe.execute()
        except redis.RedisError as e:
            raise PublishError(f"Redis write failed for {record.domain}: {e}") from e
        finally:
            pipe.reset()
        logger.debug("Published %s (%s), ttl=%s", record.domain, ",".join(s.value for s in record.schemes), ttl_s)

    def query(self, prefix: str = "") -> dict[str, str]:
        pattern = _glob_escape(self.key_prefix + prefix) + "*"
        try:
            keys = sorted(self.client.scan_iter(match=pattern))
            if not keys:
                return {}
            values = self.client.mget(keys)
        except redis.RedisError as e:
            raise PublishError(f"Redis query failed for {pattern!r}: {e}") from e
        # A key may expire between SCAN and MGET.
        return {k: v for k, v in zip(keys, values) if v is not None}


class MemoryPublisher(Publisher):
    """Process-local store with per-key expiry, for local runs without Redis."""

    def __init__(self, key_prefix: str, clock: Callable[[], float] = time.monotonic):
        super().__init__(key_prefix)
        self.clock = clock
        self._lock = Lock()
        self._data: dict[str, tuple[str, float | None]] = {}
        self.writes = 0

    def publish(self, record: ServiceRecord, ttl_s: int | None = None) -> None:
        entries = self.entries(record)
        with self._lock:
            expires_at = None if ttl_s is None else self.clock() + ttl_s
            for key, payload in entries:
                self._data[key] = (payload, expires_at)
            self.writes += 1

    def _alive(self, expires_at: float | None, now: float) -> bool:
        return expires_at is None or now < expires_at

    def query(self, prefix: str = "") -> dict[str, str]:
        full = self.key_prefix + prefix
        with self._lock:
            now = self.clock()
            expired = [k for k, (_, exp) in self._data.items() if not self._alive(exp, now)]
            for k in expired:
                del self._data[k]
            return {k: v for k, (v, _) in sorted(self._data.items()) if k.startswith(full)}

    def ttl(self, key: str) -> float | None:
        """Seconds left for a key; None if missing or without expiry."""
        with self._lock:
            item = self._data.get(key)
            if item is None or item[1] is None:
                return None
            left = item[1] - self.clock()
            return left if left > 0 else None


class DryRunPublisher(Publisher):
    """Logs what would be published and writes nothing."""

    def publish(self, record: ServiceRecord, ttl_s: int | None = None) -> None:
        expiry = f"expire after {ttl_s}s" if ttl_s is not None else "no expiry"
        for key, payload in self.entries(record):
            log_event("INFO", f"[dry-run] would set {key} = {payload} ({expiry})", container=record.container, domain=record.domain)

    def query(self, prefix: str = "") -> dict[str, str]:
        return {}


def publisher_from_settings(settings: Settings) -> Publisher:
    if settings.dry_run:
        return DryRunPublisher(settings.key_prefix)
    if settings.store == "memory":
        return MemoryPublisher(settings.key_prefix)
    if settings.store == "redis":
        return RedisPublisher.from_settings(settings)
    raise ValueError(f"Unknown store {settings.store!r}. Use 'redis' or 'memory'.")
