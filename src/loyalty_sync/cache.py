"""Two-tier cache for the account and transaction collections.

Tier one is an in-memory entry per collection with a short freshness TTL.
Tier two is the durable :class:`~loyalty_sync.local_store.LocalCache`, which
survives restarts and is good enough for instant display for up to
``max_age_seconds``. Reads never raise: store failures degrade to whatever
cached data exists, else to an empty collection.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable

from pydantic import BaseModel
from pydantic import ValidationError as ModelValidationError

from .exceptions import StoreError
from .local_store import LocalCache
from .models import Account, Transaction
from .remote import RemoteStore

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 5 * 60
DEFAULT_MAX_AGE_SECONDS = 24 * 60 * 60


class Collection(str, Enum):
    ACCOUNTS = "accounts"
    TRANSACTIONS = "transactions"


class CacheState(str, Enum):
    EMPTY = "EMPTY"
    FRESH = "FRESH"
    STALE = "STALE"


@dataclass(frozen=True)
class CacheEntry:
    data: list[Any]
    fetched_at: float


@dataclass(frozen=True)
class CacheRead:
    data: list[Any]
    stale: bool
    source: str

    @property
    def is_miss(self) -> bool:
        return self.source == "empty"


_MODELS: dict[Collection, type[BaseModel]] = {
    Collection.ACCOUNTS: Account,
    Collection.TRANSACTIONS: Transaction,
}


class CacheLayer:
    def __init__(
        self,
        store: RemoteStore,
        local_cache: LocalCache | None = None,
        *,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_age_seconds: float = DEFAULT_MAX_AGE_SECONDS,
        now: Callable[[], float] | None = None,
    ) -> None:
        self.store = store
        self.local_cache = local_cache
        self.ttl_seconds = ttl_seconds
        self.max_age_seconds = max_age_seconds
        self._now = now or time.time
        self._entries: dict[Collection, CacheEntry] = {}
        self._inflight: dict[Collection, asyncio.Task[CacheRead]] = {}
        self._generations: dict[Collection, int] = {collection: 0 for collection in Collection}
        self._background: set[asyncio.Task[Any]] = set()

    def state(self, collection: Collection) -> CacheState:
        entry = self._entries.get(collection)
        if entry is None:
            return CacheState.EMPTY
        return CacheState.FRESH if self._is_fresh(entry.fetched_at) else CacheState.STALE

    def read_fast(self, collection: Collection) -> CacheRead:
        """Best available data without waiting; schedules a refresh when stale or absent."""
        entry = self._entries.get(collection)
        if entry is not None:
            stale = not self._is_fresh(entry.fetched_at)
            if stale:
                self._schedule_refresh(collection)
            return CacheRead(data=entry.data, stale=stale, source="memory")

        self._schedule_refresh(collection)
        stored = self._load_durable(collection, max_age=self.max_age_seconds)
        if stored is not None:
            return CacheRead(data=stored.data, stale=not self._is_fresh(stored.fetched_at), source="durable")
        return CacheRead(data=[], stale=True, source="empty")

    async def read_fresh(self, collection: Collection, force_refresh: bool = False) -> list[Any]:
        entry = self._entries.get(collection)
        if entry is not None and not force_refresh and self._is_fresh(entry.fetched_at):
            return entry.data
        result = await self._fetch_shared(collection)
        return result.data

    async def refresh(self, collection: Collection) -> CacheRead:
        """Force a fetch and report whether the data came from the network."""
        return await self._fetch_shared(collection)

    def invalidate(self, collection: Collection) -> None:
        """Drop the memory entry; the durable copy stays for instant loads."""
        self._entries.pop(collection, None)
        self._generations[collection] += 1
        # A fetch started before the write must not be shared with later readers.
        self._inflight.pop(collection, None)
        logger.debug("cache_invalidated", extra={"collection": collection.value})

    def invalidate_all(self) -> None:
        for collection in Collection:
            self.invalidate(collection)

    async def wait_idle(self) -> None:
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def aclose(self) -> None:
        pending = [*self._background, *self._inflight.values()]
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        self._background.clear()
        self._inflight.clear()

    def _is_fresh(self, fetched_at: float) -> bool:
        return self._now() - fetched_at <= self.ttl_seconds

    def _fetcher(self, collection: Collection) -> Callable[[], Awaitable[list[Any]]]:
        if collection is Collection.ACCOUNTS:
            return self.store.fetch_accounts
        return self.store.fetch_transactions

    async def _fetch_shared(self, collection: Collection) -> CacheRead:
        task = self._inflight.get(collection)
        if task is None:
            task = asyncio.create_task(self._fetch(collection, self._generations[collection]))
            self._inflight[collection] = task
            task.add_done_callback(lambda done, key=collection: self._forget_inflight(key, done))
        return await asyncio.shield(task)

    def _forget_inflight(self, collection: Collection, task: asyncio.Task[CacheRead]) -> None:
        if self._inflight.get(collection) is task:
            self._inflight.pop(collection, None)

    async def _fetch(self, collection: Collection, generation: int) -> CacheRead:
        try:
            rows = await self._fetcher(collection)()
        except StoreError as exc:
            logger.warning(
                "cache_fetch_failed",
                extra={"collection": collection.value, "code": exc.code, "error": exc.message},
            )
            return self._fallback(collection)

        if generation != self._generations[collection]:
            # Invalidated mid-flight: hand the rows to this fetch's waiters only.
            return CacheRead(data=rows, stale=True, source="network")

        fetched_at = self._now()
        self._entries[collection] = CacheEntry(data=rows, fetched_at=fetched_at)
        self._save_durable(collection, rows, fetched_at)
        logger.info("cache_refreshed", extra={"collection": collection.value, "rows": len(rows)})
        return CacheRead(data=rows, stale=False, source="network")

    def _fallback(self, collection: Collection) -> CacheRead:
        entry = self._entries.get(collection)
        if entry is not None:
            return CacheRead(data=entry.data, stale=True, source="memory")
        stored = self._load_durable(collection, max_age=None)
        if stored is not None:
            return CacheRead(data=stored.data, stale=True, source="durable")
        return CacheRead(data=[], stale=True, source="empty")

    def _schedule_refresh(self, collection: Collection) -> None:
        if collection in self._inflight:
            return
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("cache_refresh_skipped_no_loop", extra={"collection": collection.value})
            return
        task = asyncio.create_task(self._fetch_shared(collection))
        self._background.add(task)
        task.add_done_callback(self._background_done)

    def _background_done(self, task: asyncio.Task[Any]) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("cache_background_refresh_failed", exc_info=exc)

    def _load_durable(self, collection: Collection, *, max_age: float | None) -> CacheEntry | None:
        if self.local_cache is None:
            return None
        try:
            stored = self.local_cache.load(collection.value)
        except OSError:
            logger.warning("durable_cache_unreadable", extra={"collection": collection.value})
            return None
        if stored is None:
            return None
        if max_age is not None and self._now() - stored.fetched_at > max_age:
            return None
        model = _MODELS[collection]
        rows: list[Any] = []
        for raw in stored.rows:
            try:
                rows.append(model.model_validate(raw))
            except ModelValidationError:
                continue
        return CacheEntry(data=rows, fetched_at=stored.fetched_at)

    def _save_durable(self, collection: Collection, rows: list[Any], fetched_at: float) -> None:
        if self.local_cache is None:
            return
        try:
            self.local_cache.save(
                collection.value,
                [row.model_dump(mode="json", by_alias=True) for row in rows],
                fetched_at,
            )
        except OSError:
            logger.warning("durable_cache_write_failed", extra={"collection": collection.value})
