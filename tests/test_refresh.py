from __future__ import annotations

import asyncio
from decimal import Decimal

import pytest

from conftest import FakeRemoteStore, make_account, make_transaction
from loyalty_sync.cache import CacheLayer
from loyalty_sync.local_store import SessionStore
from loyalty_sync.models import Account
from loyalty_sync.refresh import BalanceRefresher
from loyalty_sync.session import SessionResolver

pytestmark = pytest.mark.asyncio


@pytest.fixture
def resolver(cache: CacheLayer, store: FakeRemoteStore, session_store: SessionStore) -> SessionResolver:
    return SessionResolver(cache, store, session_store)


def _refresher(cache: CacheLayer, resolver: SessionResolver, **kwargs) -> BalanceRefresher:
    kwargs.setdefault("interval_seconds", 60)
    kwargs.setdefault("debounce_seconds", 0.01)
    return BalanceRefresher(cache, resolver, **kwargs)


async def test_start_is_noop_without_holder_session(
    cache: CacheLayer, resolver: SessionResolver, operator: Account
) -> None:
    refresher = _refresher(cache, resolver)
    assert refresher.start() is False

    resolver.replace(operator)
    assert refresher.start() is False
    assert refresher.running is False


async def test_refresh_once_replaces_changed_balance(
    cache: CacheLayer, resolver: SessionResolver, store: FakeRemoteStore
) -> None:
    resolver.replace(make_account("u1", balance=10))
    store.accounts.append(make_account("u1", balance=30))
    store.transactions.extend(
        [
            make_transaction("t1", "u1", delta=10, occurred_at="2024-01-01T00:00:00Z"),
            make_transaction("t2", "u1", delta=20, occurred_at="2024-01-05T00:00:00Z"),
            make_transaction("t3", "u2", delta=99),
        ]
    )
    seen: list[list] = []
    refresher = _refresher(cache, resolver, on_transactions=seen.append)

    outcome = await refresher.refresh_once()

    assert outcome.balance_changed is True
    assert resolver.current.loyalty_balance == Decimal("30")
    assert [t.id for t in outcome.transactions] == ["t2", "t1"]
    assert seen == [outcome.transactions]


async def test_refresh_once_leaves_unchanged_session(
    cache: CacheLayer, resolver: SessionResolver, store: FakeRemoteStore
) -> None:
    account = make_account("u1", balance=10)
    resolver.replace(account)
    store.accounts.append(account)

    outcome = await _refresher(cache, resolver).refresh_once()

    assert outcome.balance_changed is False
    assert resolver.current is account


async def test_visibility_toggles_collapse_into_one_refresh(
    cache: CacheLayer, resolver: SessionResolver, store: FakeRemoteStore
) -> None:
    resolver.replace(make_account("u1", balance=10))
    refresher = _refresher(cache, resolver)

    assert refresher.start() is True
    for visible in (False, True, False, True):
        refresher.set_visible(visible)
    await asyncio.sleep(0.05)

    assert store.count("fetch_accounts") == 1
    assert refresher.running is True
    await refresher.stop()
    assert refresher.running is False


async def test_hidden_view_does_not_poll(cache: CacheLayer, resolver: SessionResolver, store: FakeRemoteStore) -> None:
    resolver.replace(make_account("u1", balance=10))
    refresher = _refresher(cache, resolver)
    refresher.set_visible(False)

    refresher.start()
    await asyncio.sleep(0.03)

    assert store.calls == []
    assert refresher.running is False


async def test_refresh_failure_is_recorded(
    cache: CacheLayer, resolver: SessionResolver, store: FakeRemoteStore
) -> None:
    resolver.replace(make_account("u1", balance=10))

    def broken_listener(_transactions) -> None:
        raise RuntimeError("view gone")

    refresher = _refresher(cache, resolver, on_transactions=broken_listener)
    refresher.start()
    await asyncio.sleep(0.05)

    assert isinstance(refresher.last_error, RuntimeError)
    assert refresher.running is True
    await refresher.stop()
