from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from .cache import CacheLayer
from .clients.store_client import StoreClient
from .config import StoreConfig
from .http_client import HttpClient
from .local_store import JsonFileStore, LocalCache, SessionStore
from .models import Account
from .refresh import BalanceRefresher, TransactionsListener
from .remote import RemoteStore, ThreadedRemoteStore
from .session import SessionListener, SessionResolver
from .terminal import TransactionTerminal


@dataclass
class LoyaltyRuntime:
    """Process-wide wiring: one cache and one session resolver per process."""

    config: StoreConfig
    store: RemoteStore
    cache: CacheLayer
    sessions: SessionResolver

    def terminal(self, operator: Account) -> TransactionTerminal:
        return TransactionTerminal(self.cache, self.store, operator, earn_rate=self.config.earn_rate)

    def refresher(self, on_transactions: TransactionsListener | None = None) -> BalanceRefresher:
        return BalanceRefresher(
            self.cache,
            self.sessions,
            interval_seconds=self.config.poll_interval_seconds,
            debounce_seconds=self.config.refresh_debounce_seconds,
            on_transactions=on_transactions,
        )

    async def aclose(self) -> None:
        await self.cache.aclose()


def build_runtime(
    config: StoreConfig,
    *,
    store: RemoteStore | None = None,
    data_dir: Path | None = None,
    on_session_change: SessionListener | None = None,
) -> LoyaltyRuntime:
    if store is None:
        store = ThreadedRemoteStore(StoreClient(http=HttpClient(config=config)))
    files = JsonFileStore(app_name=config.app_name, base_dir=data_dir)
    cache = CacheLayer(
        store,
        LocalCache(files),
        ttl_seconds=config.cache_ttl_seconds,
        max_age_seconds=config.cache_max_age_seconds,
    )
    sessions = SessionResolver(cache, store, SessionStore(files), on_change=on_session_change)
    return LoyaltyRuntime(config=config, store=store, cache=cache, sessions=sessions)
