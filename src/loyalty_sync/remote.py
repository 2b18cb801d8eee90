from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Protocol

from .clients.store_client import StoreClient
from .models import Account, Transaction


class RemoteStore(Protocol):
    async def fetch_accounts(self) -> list[Account]: ...

    async def fetch_transactions(self) -> list[Transaction]: ...

    async def persist_account(self, account: Account) -> None: ...

    async def persist_transaction(self, transaction: Transaction) -> None: ...


@dataclass
class ThreadedRemoteStore:
    """Runs the blocking :class:`StoreClient` off the event loop."""

    client: StoreClient

    async def fetch_accounts(self) -> list[Account]:
        return await asyncio.to_thread(self.client.fetch_accounts)

    async def fetch_transactions(self) -> list[Transaction]:
        return await asyncio.to_thread(self.client.fetch_transactions)

    async def persist_account(self, account: Account) -> None:
        await asyncio.to_thread(self.client.persist_account, account)

    async def persist_transaction(self, transaction: Transaction) -> None:
        await asyncio.to_thread(self.client.persist_transaction, transaction)
