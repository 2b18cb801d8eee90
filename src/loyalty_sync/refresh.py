from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from typing import Callable

from .cache import CacheLayer, Collection
from .ledger import account_history
from .models import Account, Transaction
from .session import SessionResolver

logger = logging.getLogger(__name__)

TransactionsListener = Callable[[list[Transaction]], None]


@dataclass(frozen=True)
class RefreshOutcome:
    account: Account | None
    balance_changed: bool
    transactions: list[Transaction]


class BalanceRefresher:
    """Keeps an account holder's balance and history current while the view is visible.

    One task owns the schedule: an optional debounced immediate refresh, then a
    refresh every ``interval_seconds``. Hiding the view cancels it; showing the
    view again replaces it, so rapid visibility toggles collapse into a
    single refresh.
    """

    def __init__(
        self,
        cache: CacheLayer,
        resolver: SessionResolver,
        *,
        interval_seconds: float = 60.0,
        debounce_seconds: float = 0.3,
        on_transactions: TransactionsListener | None = None,
    ) -> None:
        self.cache = cache
        self.resolver = resolver
        self.interval_seconds = interval_seconds
        self.debounce_seconds = debounce_seconds
        self.on_transactions = on_transactions
        self.visible = True
        self.last_error: Exception | None = None
        self._active = False
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> bool:
        account = self.resolver.current
        if account is None or account.is_operator:
            return False
        self._active = True
        if self.visible:
            self._arm()
        return True

    def set_visible(self, visible: bool) -> None:
        self.visible = visible
        if not self._active:
            return
        if visible:
            self._arm()
        else:
            self._cancel()

    async def stop(self) -> None:
        self._active = False
        task = self._task
        self._cancel()
        if task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def refresh_once(self) -> RefreshOutcome:
        account = self.resolver.current
        if account is None or account.is_operator:
            return RefreshOutcome(account=account, balance_changed=False, transactions=[])

        accounts = await self.cache.read_fresh(Collection.ACCOUNTS, force_refresh=True)
        fresh = next((a for a in accounts if str(a.id) == str(account.id)), None)
        changed = False
        current = self.resolver.current
        if (
            fresh is not None
            and current is not None
            and current.id == account.id
            and fresh.loyalty_balance != current.loyalty_balance
        ):
            self.resolver.replace(fresh)
            changed = True
            logger.info("balance_refreshed", extra={"account_id": fresh.id})

        transactions = await self.cache.read_fresh(Collection.TRANSACTIONS, force_refresh=True)
        history = account_history(account.id, transactions)
        if self.on_transactions is not None:
            self.on_transactions(history)
        return RefreshOutcome(account=self.resolver.current, balance_changed=changed, transactions=history)

    def _arm(self) -> None:
        self._cancel()
        self._task = asyncio.create_task(self._run())

    def _cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def _run(self) -> None:
        await asyncio.sleep(self.debounce_seconds)
        await self._refresh_logged()
        while True:
            await asyncio.sleep(self.interval_seconds)
            await self._refresh_logged()

    async def _refresh_logged(self) -> None:
        try:
            await self.refresh_once()
        except Exception as exc:
            self.last_error = exc
            logger.exception("balance_refresh_failed")
