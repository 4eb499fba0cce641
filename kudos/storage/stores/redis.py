"""Redis-backed implementation of DocumentStore."""

import asyncio
import json
from datetime import datetime, timedelta
from typing import Any

from redis.asyncio import Redis
from redis.exceptions import RedisError, WatchError

from kudos.clock import Clock, SystemClock
from kudos.errors import ConcurrencyConflictError, StoreUnavailableError
from kudos.observability.logging import get_logger
from kudos.storage.models import Document
from kudos.storage.store import (
    DocumentExistsError,
    DocumentNotFoundError,
    DocumentStore,
    matches,
)

logger = get_logger(__name__)


class RedisDocumentStore(DocumentStore):
    """Redis-backed document store.

    Key format: {prefix}:{collection}:{doc_id}
    Value format: {"version": int, "expires_at": iso | null, "data": {...}}

    Conditional create uses SET NX; version-checked replace and delete use
    WATCH/MULTI so a concurrent writer aborts the transaction. Expiry is
    delegated to Redis key TTLs. Every command is bounded by
    operation_timeout and any Redis failure surfaces as
    StoreUnavailableError.
    """

    def __init__(
        self,
        redis: Redis,
        key_prefix: str = "kudos",
        operation_timeout: float = 2.0,
        clock: Clock | None = None,
        scan_count: int = 500,
    ):
        """Initialize Redis document store.

        Args:
            redis: Redis client instance
            key_prefix: Prefix for Redis keys
            operation_timeout: Seconds before a store call is abandoned
            clock: Time source used to stamp expires_at
            scan_count: SCAN batch hint for find()
        """
        self._redis = redis
        self._key_prefix = key_prefix
        self._timeout = operation_timeout
        self._clock = clock or SystemClock()
        self._scan_count = scan_count

    def _make_key(self, collection: str, doc_id: str) -> str:
        return f"{self._key_prefix}:{collection}:{doc_id}"

    def _encode(self, version: int, data: dict[str, Any], expires_at: datetime | None) -> str:
        return json.dumps(
            {
                "version": version,
                "expires_at": expires_at.isoformat() if expires_at else None,
                "data": data,
            },
            default=str,
        )

    def _decode(self, collection: str, doc_id: str, raw: Any) -> Document:
        value = raw.decode() if isinstance(raw, bytes) else raw
        envelope = json.loads(value)
        expires_at = envelope.get("expires_at")
        return Document(
            id=doc_id,
            collection=collection,
            data=envelope["data"],
            version=envelope["version"],
            expires_at=datetime.fromisoformat(expires_at) if expires_at else None,
        )

    def _expiry(self, ttl_seconds: float | None) -> datetime | None:
        if ttl_seconds is None:
            return None
        return self._clock.now() + timedelta(seconds=ttl_seconds)

    @staticmethod
    def _ttl_ms(ttl_seconds: float | None) -> int | None:
        if ttl_seconds is None:
            return None
        return max(1, int(ttl_seconds * 1000))

    def _unavailable(self, operation: str, error: Exception) -> StoreUnavailableError:
        logger.error(
            "store_operation_failed",
            backend="redis",
            operation=operation,
            error=str(error),
            error_type=type(error).__name__,
        )
        return StoreUnavailableError(f"Redis {operation} failed: {error}")

    async def create(
        self,
        collection: str,
        doc_id: str,
        data: dict[str, Any],
        ttl_seconds: float | None = None,
    ) -> Document:
        key = self._make_key(collection, doc_id)
        expires_at = self._expiry(ttl_seconds)
        try:
            async with asyncio.timeout(self._timeout):
                created = await self._redis.set(
                    key,
                    self._encode(1, data, expires_at),
                    nx=True,
                    px=self._ttl_ms(ttl_seconds),
                )
        except (RedisError, TimeoutError, OSError) as e:
            raise self._unavailable("create", e) from e

        if not created:
            raise DocumentExistsError(collection, doc_id)
        return Document(
            id=doc_id,
            collection=collection,
            data=data,
            version=1,
            expires_at=expires_at,
        )

    async def get(self, collection: str, doc_id: str) -> Document | None:
        try:
            async with asyncio.timeout(self._timeout):
                raw = await self._redis.get(self._make_key(collection, doc_id))
        except (RedisError, TimeoutError, OSError) as e:
            raise self._unavailable("get", e) from e
        if raw is None:
            return None
        return self._decode(collection, doc_id, raw)

    async def replace(
        self,
        collection: str,
        doc_id: str,
        data: dict[str, Any],
        expected_version: int,
        ttl_seconds: float | None = None,
    ) -> Document:
        key = self._make_key(collection, doc_id)
        try:
            async with asyncio.timeout(self._timeout):
                async with self._redis.pipeline(transaction=True) as pipe:
                    await pipe.watch(key)
                    raw = await pipe.get(key)
                    if raw is None:
                        raise DocumentNotFoundError(collection, doc_id)
                    current = self._decode(collection, doc_id, raw)
                    if current.version != expected_version:
                        raise ConcurrencyConflictError(
                            f"Version mismatch on {collection}/{doc_id}: "
                            f"expected {expected_version}, found {current.version}"
                        )
                    if ttl_seconds is not None:
                        expires_at = self._expiry(ttl_seconds)
                    else:
                        expires_at = current.expires_at
                    value = self._encode(current.version + 1, data, expires_at)

                    pipe.multi()
                    if ttl_seconds is not None:
                        pipe.set(key, value, px=self._ttl_ms(ttl_seconds))
                    else:
                        pipe.set(key, value, keepttl=True)
                    await pipe.execute()
        except WatchError as e:
            raise ConcurrencyConflictError(
                f"Concurrent write on {collection}/{doc_id}"
            ) from e
        except (RedisError, TimeoutError, OSError) as e:
            raise self._unavailable("replace", e) from e

        return Document(
            id=doc_id,
            collection=collection,
            data=data,
            version=current.version + 1,
            expires_at=expires_at,
        )

    async def delete(
        self,
        collection: str,
        doc_id: str,
        expected_version: int | None = None,
    ) -> bool:
        key = self._make_key(collection, doc_id)
        try:
            async with asyncio.timeout(self._timeout):
                if expected_version is None:
                    return bool(await self._redis.delete(key))

                async with self._redis.pipeline(transaction=True) as pipe:
                    await pipe.watch(key)
                    raw = await pipe.get(key)
                    if raw is None:
                        return False
                    current = self._decode(collection, doc_id, raw)
                    if current.version != expected_version:
                        raise ConcurrencyConflictError(
                            f"Version mismatch deleting {collection}/{doc_id}"
                        )
                    pipe.multi()
                    pipe.delete(key)
                    await pipe.execute()
                    return True
        except WatchError as e:
            raise ConcurrencyConflictError(
                f"Concurrent write on {collection}/{doc_id}"
            ) from e
        except (RedisError, TimeoutError, OSError) as e:
            raise self._unavailable("delete", e) from e

    async def find(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> list[Document]:
        prefix = self._make_key(collection, "")
        results: list[Document] = []
        try:
            async with asyncio.timeout(self._timeout * 5):
                keys = [
                    key
                    async for key in self._redis.scan_iter(
                        match=f"{prefix}*", count=self._scan_count
                    )
                ]
                for start in range(0, len(keys), self._scan_count):
                    batch = keys[start : start + self._scan_count]
                    values = await self._redis.mget(batch)
                    for key, raw in zip(batch, values, strict=True):
                        if raw is None:
                            continue
                        key_str = key.decode() if isinstance(key, bytes) else key
                        document = self._decode(collection, key_str[len(prefix) :], raw)
                        if not matches(document.data, filters):
                            continue
                        results.append(document)
                        if limit is not None and len(results) >= limit:
                            return results
        except (RedisError, TimeoutError, OSError) as e:
            raise self._unavailable("find", e) from e
        return results

    async def ping(self) -> bool:
        try:
            async with asyncio.timeout(self._timeout):
                return bool(await self._redis.ping())
        except (RedisError, TimeoutError, OSError) as e:
            logger.warning("store_ping_failed", backend="redis", error=str(e))
            return False
