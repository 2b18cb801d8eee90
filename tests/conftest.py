from __future__ import annotations

import asyncio
from decimal import Decimal

import pytest

from loyalty_sync.cache import CacheLayer
from loyalty_sync.exceptions import StoreError
from loyalty_sync.local_store import JsonFileStore, LocalCache, SessionStore
from loyalty_sync.models import Account, AccountRole, Transaction, TransactionKind


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


class FakeRemoteStore:
    """In-memory stand-in for the spreadsheet endpoint.

    Saved transactions are applied to the stored balance, like the sheet
    script does, so reconciling reads see the server's view.
    """

    def __init__(self, accounts: list[Account] | None = None, transactions: list[Transaction] | None = None) -> None:
        self.accounts: list[Account] = list(accounts or [])
        self.transactions: list[Transaction] = list(transactions or [])
        self.calls: list[str] = []
        self.read_error: StoreError | None = None
        self.write_error: StoreError | None = None
        self.read_gate: asyncio.Event | None = None
        self.write_gate: asyncio.Event | None = None

    async def fetch_accounts(self) -> list[Account]:
        self.calls.append("fetch_accounts")
        if self.read_gate is not None:
            await self.read_gate.wait()
        if self.read_error is not None:
            raise self.read_error
        return [account.model_copy() for account in self.accounts]

    async def fetch_transactions(self) -> list[Transaction]:
        self.calls.append("fetch_transactions")
        if self.read_gate is not None:
            await self.read_gate.wait()
        if self.read_error is not None:
            raise self.read_error
        return list(self.transactions)

    async def persist_account(self, account: Account) -> None:
        self.calls.append("persist_account")
        if self.write_error is not None:
            raise self.write_error
        self.accounts = [a for a in self.accounts if a.id != account.id] + [account]

    async def persist_transaction(self, transaction: Transaction) -> None:
        self.calls.append("persist_transaction")
        if self.write_gate is not None:
            await self.write_gate.wait()
        if self.write_error is not None:
            raise self.write_error
        self.transactions.append(transaction)
        self.accounts = [
            a.model_copy(update={"loyalty_balance": a.loyalty_balance + transaction.signed_delta})
            if a.id == transaction.account_id
            else a
            for a in self.accounts
        ]

    def count(self, call: str) -> int:
        return self.calls.count(call)


def make_account(
    account_id: str,
    *,
    balance: str | int = 0,
    qr_token: str | None = None,
    role: AccountRole = AccountRole.ACCOUNT_HOLDER,
    name: str = "Customer",
    phone: str = "",
) -> Account:
    return Account(
        id=account_id,
        display_name=name,
        contact_phone=phone,
        role=role,
        loyalty_balance=Decimal(str(balance)),
        qr_token=qr_token if qr_token is not None else f"cb_{account_id}",
        created_at="2024-01-01T00:00:00Z",
    )


def make_transaction(
    transaction_id: str,
    account_id: str,
    *,
    kind: TransactionKind = TransactionKind.EARN,
    gross: str | int = 0,
    delta: str | int = 0,
    occurred_at: str = "2024-01-02T10:00:00Z",
    operator_id: str = "op-1",
) -> Transaction:
    return Transaction(
        id=transaction_id,
        account_id=account_id,
        gross_amount=Decimal(str(gross)),
        cashback_delta=Decimal(str(delta)),
        kind=kind,
        occurred_at=occurred_at,
        operator_id=operator_id,
    )


def store_error(message: str = "boom") -> StoreError:
    from loyalty_sync.exceptions import NetworkError

    return NetworkError(code="TRANSPORT_ERROR", message=message)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def files(tmp_path) -> JsonFileStore:
    return JsonFileStore(app_name="loyalty-sync-tests", base_dir=tmp_path)


@pytest.fixture
def local_cache(files: JsonFileStore) -> LocalCache:
    return LocalCache(files)


@pytest.fixture
def session_store(files: JsonFileStore) -> SessionStore:
    return SessionStore(files)


@pytest.fixture
def operator() -> Account:
    return make_account("op-1", role=AccountRole.OPERATOR, name="Administrator", qr_token="op-1")


@pytest.fixture
def store(operator: Account) -> FakeRemoteStore:
    return FakeRemoteStore(accounts=[operator])


@pytest.fixture
def cache(store: FakeRemoteStore, local_cache: LocalCache, clock: FakeClock) -> CacheLayer:
    return CacheLayer(store, local_cache, now=clock)
