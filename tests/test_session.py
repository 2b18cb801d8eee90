from __future__ import annotations

import re
from decimal import Decimal

import pytest

from conftest import FakeRemoteStore, make_account, store_error
from loyalty_sync.cache import CacheLayer
from loyalty_sync.exceptions import NetworkError
from loyalty_sync.local_store import LocalCache, SessionStore
from loyalty_sync.models import Account, AccountRole, ExternalIdentity
from loyalty_sync.session import SessionResolver

pytestmark = pytest.mark.asyncio


@pytest.fixture
def changes() -> list[Account | None]:
    return []


@pytest.fixture
def resolver(cache: CacheLayer, store: FakeRemoteStore, session_store: SessionStore, changes) -> SessionResolver:
    return SessionResolver(cache, store, session_store, on_change=changes.append)


def _identity() -> ExternalIdentity:
    return ExternalIdentity(external_id=123456789, first_name="Ana", last_name="Lopez")


async def test_resume_without_session(resolver: SessionResolver, store: FakeRemoteStore) -> None:
    assert await resolver.resume() is None
    assert store.calls == []


async def test_resume_replaces_outdated_record(
    resolver: SessionResolver, store: FakeRemoteStore, session_store: SessionStore, changes
) -> None:
    session_store.save(make_account("u1", balance=10))
    store.accounts.append(make_account("u1", balance=35))

    account = await resolver.resume()

    assert account.loyalty_balance == Decimal("35")
    assert [c.loyalty_balance for c in changes] == [Decimal("10"), Decimal("35")]
    assert session_store.load().loyalty_balance == Decimal("35")


async def test_resume_keeps_local_record_when_offline(
    resolver: SessionResolver, store: FakeRemoteStore, session_store: SessionStore
) -> None:
    session_store.save(make_account("u1", balance=10))
    store.read_error = store_error()

    account = await resolver.resume()

    assert account is not None
    assert account.loyalty_balance == Decimal("10")
    assert resolver.current == account


async def test_external_sign_in_creates_account(
    resolver: SessionResolver, store: FakeRemoteStore, session_store: SessionStore
) -> None:
    account = await resolver.sign_in_external(_identity())

    assert account.id == "123456789"
    assert account.qr_token == "ext_123456789"
    assert account.display_name == "Ana Lopez"
    assert account.role is AccountRole.ACCOUNT_HOLDER
    assert store.count("persist_account") == 1
    assert session_store.load().id == "123456789"


async def test_external_sign_in_create_failure_keeps_provisional_session(
    resolver: SessionResolver, store: FakeRemoteStore
) -> None:
    store.write_error = store_error()

    with pytest.raises(NetworkError):
        await resolver.sign_in_external(_identity())

    assert resolver.current is not None
    assert resolver.current.qr_token == "ext_123456789"


@pytest.mark.parametrize("legacy_token", ["", "123456789"])
async def test_external_sign_in_backfills_token(
    resolver: SessionResolver, store: FakeRemoteStore, legacy_token: str
) -> None:
    store.accounts.append(make_account("123456789", balance=40, qr_token=legacy_token))

    account = await resolver.sign_in_external(_identity())

    assert account.qr_token == "ext_123456789"
    assert account.loyalty_balance == Decimal("40")
    assert store.count("persist_account") == 1
    saved = next(a for a in store.accounts if a.id == "123456789")
    assert saved.qr_token == "ext_123456789"


async def test_external_sign_in_backfill_failure_is_not_fatal(
    resolver: SessionResolver, store: FakeRemoteStore
) -> None:
    store.accounts.append(make_account("123456789", balance=40, qr_token=""))
    store.write_error = store_error()

    account = await resolver.sign_in_external(_identity())

    assert account.qr_token == ""
    assert resolver.current == account


async def test_external_sign_in_existing_canonical_token(resolver: SessionResolver, store: FakeRemoteStore) -> None:
    store.accounts.append(make_account("123456789", balance=40, qr_token="ext_123456789"))

    account = await resolver.sign_in_external(_identity())

    assert account.loyalty_balance == Decimal("40")
    assert store.count("persist_account") == 0


async def test_register_phone_creates_account(resolver: SessionResolver, store: FakeRemoteStore) -> None:
    account = await resolver.register_phone(" +34600000000 ", " Ana ")

    assert account.contact_phone == "+34600000000"
    assert account.display_name == "Ana"
    assert re.fullmatch(r"cb_[0-9a-f]{32}", account.qr_token)
    assert store.count("persist_account") == 1


async def test_register_phone_reuses_existing(resolver: SessionResolver, store: FakeRemoteStore) -> None:
    store.accounts.append(make_account("u7", phone="+34600000000", balance=12))

    account = await resolver.register_phone("+34600000000", "Someone Else")

    assert account.id == "u7"
    assert store.count("persist_account") == 0


async def test_operator_sign_in_reuses_existing(resolver: SessionResolver, store: FakeRemoteStore) -> None:
    account = await resolver.sign_in_operator()
    assert account.id == "op-1"
    assert store.count("persist_account") == 0


async def test_operator_sign_in_creates_record(session_store: SessionStore, clock) -> None:
    store = FakeRemoteStore()
    resolver = SessionResolver(CacheLayer(store, None, now=clock), store, session_store)

    account = await resolver.sign_in_operator()

    assert account.is_operator
    assert account.id.startswith("admin_")
    assert account.qr_token == account.id
    assert store.count("persist_account") == 1


async def test_sign_out_clears_session(
    resolver: SessionResolver, session_store: SessionStore, changes
) -> None:
    await resolver.sign_in_operator()
    resolver.sign_out()

    assert resolver.current is None
    assert session_store.load() is None
    assert changes[-1] is None


async def test_external_sign_in_offline_never_overwrites_account(
    resolver: SessionResolver, store: FakeRemoteStore
) -> None:
    store.accounts.append(make_account("777", balance=900, qr_token="ext_777"))
    store.read_error = store_error()

    account = await resolver.sign_in_external(ExternalIdentity(external_id="777", first_name="Ana"))

    assert store.calls == ["fetch_accounts"]
    assert next(a for a in store.accounts if a.id == "777").loyalty_balance == Decimal("900")
    assert account.qr_token == "ext_777"
    assert resolver.current == account


async def test_external_sign_in_offline_skips_backfill(
    resolver: SessionResolver, store: FakeRemoteStore, local_cache: LocalCache, clock
) -> None:
    cached = make_account("123456789", balance=40, qr_token="")
    local_cache.save("accounts", [cached.to_wire()], clock() - 60)
    store.read_error = store_error()

    account = await resolver.sign_in_external(_identity())

    assert account.loyalty_balance == Decimal("40")
    assert account.qr_token == ""
    assert store.count("persist_account") == 0


async def test_register_phone_offline_refuses_to_create(resolver: SessionResolver, store: FakeRemoteStore) -> None:
    store.read_error = store_error()

    with pytest.raises(NetworkError) as exc_info:
        await resolver.register_phone("+34600000000", "Ana")

    assert exc_info.value.code == "ACCOUNTS_UNVERIFIED"
    assert store.count("persist_account") == 0
    assert resolver.current is None


async def test_operator_sign_in_offline_refuses_to_create(session_store: SessionStore, clock) -> None:
    store = FakeRemoteStore()
    store.read_error = store_error()
    resolver = SessionResolver(CacheLayer(store, None, now=clock), store, session_store)

    with pytest.raises(NetworkError):
        await resolver.sign_in_operator()

    assert store.count("persist_account") == 0
