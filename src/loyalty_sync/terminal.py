"""Operator terminal: identity selection, amount entry and optimistic submission.

A submission runs in three phases. First the new transaction and the adjusted
balance are staged into the terminal's working view, before anything is
awaited. Then the transaction is written to the remote store. Finally the
caches are invalidated and both collections re-fetched on success, or the
captured snapshot is restored on failure.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum

from .cache import CacheLayer, Collection
from .exceptions import (
    InvalidTransition,
    SubmissionInProgress,
    UnknownIdentity,
    ValidationError,
)
from .identity import new_transaction_id
from .ledger import (
    EARN_RATE,
    AmountIssue,
    compute_cashback,
    dedupe_transactions,
    newest_first,
    validate_amount,
)
from .models import Account, Transaction, TransactionKind, utc_now_iso
from .remote import RemoteStore

logger = logging.getLogger(__name__)


class TerminalState(str, Enum):
    IDLE = "IDLE"
    IDENTITY_SELECTED = "IDENTITY_SELECTED"
    AMOUNT_ENTRY = "AMOUNT_ENTRY"
    SUBMITTING = "SUBMITTING"
    COMMITTED = "COMMITTED"
    ROLLED_BACK = "ROLLED_BACK"


@dataclass(frozen=True)
class AmountCheck:
    amount: Decimal | None
    kind: TransactionKind | None
    cashback_delta: Decimal
    projected_balance: Decimal | None
    issues: list[AmountIssue]
    can_submit: bool


@dataclass(frozen=True)
class ViewSnapshot:
    account: Account
    accounts: tuple[Account, ...]
    transactions: tuple[Transaction, ...]


@dataclass(frozen=True)
class CommitResult:
    transaction: Transaction
    account: Account
    reconciled: bool


def parse_amount(raw: Decimal | str | int | float | None) -> Decimal | None:
    """Parse operator input; dots are thousands separators in the entry field."""
    if raw is None:
        return None
    if isinstance(raw, Decimal):
        return raw
    if isinstance(raw, float):
        return Decimal(str(raw))
    if isinstance(raw, int):
        return Decimal(raw)
    text = raw.strip().replace(" ", "").replace(".", "").replace(",", ".")
    if not text:
        return None
    try:
        return Decimal(text)
    except InvalidOperation:
        return None


class TransactionTerminal:
    def __init__(
        self,
        cache: CacheLayer,
        store: RemoteStore,
        operator: Account,
        *,
        earn_rate: Decimal = EARN_RATE,
    ) -> None:
        self.cache = cache
        self.store = store
        self.operator = operator
        self.earn_rate = earn_rate
        self.state = TerminalState.IDLE
        self.kind: TransactionKind | None = None
        self.selected: Account | None = None
        self.accounts: list[Account] = []
        self.transactions: list[Transaction] = []
        self.last_error: BaseException | None = None
        self.last_outcome: TerminalState | None = None

    @property
    def is_submitting(self) -> bool:
        return self.state is TerminalState.SUBMITTING

    async def load(self, force_refresh: bool = False) -> None:
        accounts = await self.cache.read_fresh(Collection.ACCOUNTS, force_refresh=force_refresh)
        transactions = await self.cache.read_fresh(Collection.TRANSACTIONS, force_refresh=force_refresh)
        self._replace_view(accounts, transactions)

    def choose_kind(self, kind: TransactionKind) -> None:
        self._require_not_submitting("choose kind")
        self.kind = kind
        if self.selected is not None:
            self.state = TerminalState.AMOUNT_ENTRY

    async def resolve_scan(self, payload: str) -> Account:
        self._require_not_submitting("scan")
        accounts = await self.cache.read_fresh(Collection.ACCOUNTS, force_refresh=True)
        if accounts:
            self.accounts = list(accounts)
        scanned = str(payload).strip()
        match = next((a for a in accounts if str(a.qr_token).strip() == scanned), None)
        if match is None:
            match = next((a for a in accounts if str(a.id).strip() == scanned), None)
        if match is None:
            known = [str(a.qr_token) for a in accounts]
            self.reset()
            logger.warning("scan_unknown_identity", extra={"known_count": len(known)})
            raise UnknownIdentity(scanned=payload, known_tokens=known)
        self._select(match)
        return match

    def select_account(self, account_id: str) -> Account:
        self._require_not_submitting("select account")
        match = next((a for a in self.accounts if str(a.id) == str(account_id)), None)
        if match is None:
            raise UnknownIdentity(scanned=str(account_id), known_tokens=[a.qr_token for a in self.accounts])
        self._select(match)
        return match

    def preview(self, raw_amount: Decimal | str | int | float | None) -> AmountCheck:
        amount = parse_amount(raw_amount)
        balance = self.selected.loyalty_balance if self.selected is not None else None
        validation = validate_amount(self.kind, amount, balance)
        issues = list(validation.issues)
        if self.selected is None:
            issues.insert(0, AmountIssue(field="account", reason="is required"))
        delta = Decimal("0")
        projected = balance
        if amount is not None and amount.is_finite() and self.kind is not None:
            delta = compute_cashback(self.kind, amount, self.earn_rate)
            if balance is not None:
                projected = balance + (delta if self.kind is TransactionKind.EARN else -delta)
        return AmountCheck(
            amount=amount,
            kind=self.kind,
            cashback_delta=delta,
            projected_balance=projected,
            issues=issues,
            can_submit=not issues and not self.is_submitting,
        )

    async def submit(self, raw_amount: Decimal | str | int | float | None) -> CommitResult:
        if self.is_submitting:
            raise SubmissionInProgress("A transaction is already being submitted")
        check = self.preview(raw_amount)
        if not check.can_submit:
            raise ValidationError(issues=check.issues)
        selected, kind, amount = self.selected, self.kind, check.amount
        if selected is None or kind is None or amount is None:
            raise InvalidTransition(state=self.state.value, action="submit")

        self.state = TerminalState.SUBMITTING
        transaction = Transaction(
            id=new_transaction_id(),
            account_id=selected.id,
            gross_amount=amount,
            cashback_delta=check.cashback_delta,
            kind=kind,
            occurred_at=utc_now_iso(),
            operator_id=self.operator.id,
        )
        snapshot = self._stage(transaction, selected)

        write = asyncio.ensure_future(self.store.persist_transaction(transaction))
        try:
            await asyncio.shield(write)
        except asyncio.CancelledError as exc:
            # The write runs to completion; its outcome reaches the view through the cache.
            write.add_done_callback(functools.partial(self._detached_write_done, transaction))
            self._rollback(snapshot, transaction, exc)
            raise
        except Exception as exc:
            self._rollback(snapshot, transaction, exc)
            raise

        updated = self._account_by_id(transaction.account_id) or snapshot.account
        logger.info(
            "transaction_committed",
            extra={
                "transaction_id": transaction.id,
                "account_id": transaction.account_id,
                "kind": transaction.kind.value,
                "cashback_delta": str(transaction.cashback_delta),
            },
        )
        try:
            reconciled = await self._reconcile()
            updated = self._account_by_id(transaction.account_id) or updated
        finally:
            self.state = TerminalState.COMMITTED
            self._finish()
        return CommitResult(transaction=transaction, account=updated, reconciled=reconciled)

    def cancel(self) -> None:
        self._require_not_submitting("cancel")
        self.reset()

    def reset(self) -> None:
        self.state = TerminalState.IDLE
        self.kind = None
        self.selected = None

    def _select(self, account: Account) -> None:
        self.selected = account
        self.state = TerminalState.AMOUNT_ENTRY if self.kind is not None else TerminalState.IDENTITY_SELECTED

    def _stage(self, transaction: Transaction, selected: Account) -> ViewSnapshot:
        current = self._account_by_id(transaction.account_id) or selected
        snapshot = ViewSnapshot(
            account=current.model_copy(deep=True),
            accounts=tuple(account.model_copy(deep=True) for account in self.accounts),
            transactions=tuple(self.transactions),
        )
        updated = current.model_copy(update={"loyalty_balance": current.loyalty_balance + transaction.signed_delta})
        self.transactions = [transaction, *self.transactions]
        if self._account_by_id(updated.id) is None:
            self.accounts = [*self.accounts, updated]
        else:
            self.accounts = [updated if account.id == updated.id else account for account in self.accounts]
        self.selected = updated
        return snapshot

    def _rollback(self, snapshot: ViewSnapshot, transaction: Transaction, exc: BaseException) -> None:
        self.accounts = list(snapshot.accounts)
        self.transactions = list(snapshot.transactions)
        self.selected = snapshot.account
        self.last_error = exc
        self.state = TerminalState.ROLLED_BACK
        logger.warning(
            "transaction_rolled_back",
            extra={
                "transaction_id": transaction.id,
                "account_id": transaction.account_id,
                "code": getattr(exc, "code", type(exc).__name__),
            },
        )
        self._finish()

    def _detached_write_done(self, transaction: Transaction, write: asyncio.Future[None]) -> None:
        if write.cancelled():
            return
        exc = write.exception()
        if exc is not None:
            logger.warning(
                "transaction_write_failed",
                extra={"transaction_id": transaction.id, "code": getattr(exc, "code", type(exc).__name__)},
            )
            return
        self.cache.invalidate(Collection.TRANSACTIONS)
        self.cache.invalidate(Collection.ACCOUNTS)
        logger.info(
            "transaction_committed",
            extra={"transaction_id": transaction.id, "account_id": transaction.account_id, "detached": True},
        )

    async def _reconcile(self) -> bool:
        self.cache.invalidate(Collection.TRANSACTIONS)
        self.cache.invalidate(Collection.ACCOUNTS)
        transactions = await self.cache.refresh(Collection.TRANSACTIONS)
        accounts = await self.cache.refresh(Collection.ACCOUNTS)
        if transactions.source != "network" or accounts.source != "network":
            logger.warning(
                "transaction_reconcile_deferred",
                extra={"accounts_source": accounts.source, "transactions_source": transactions.source},
            )
            return False
        self._replace_view(accounts.data, transactions.data)
        return True

    def _finish(self) -> None:
        # COMMITTED and ROLLED_BACK are transient; the operator starts over.
        self.last_outcome = self.state
        self.reset()

    def _replace_view(self, accounts: list[Account], transactions: list[Transaction]) -> None:
        self.accounts = list(accounts)
        self.transactions = newest_first(dedupe_transactions(transactions))

    def _account_by_id(self, account_id: str) -> Account | None:
        return next((a for a in self.accounts if str(a.id) == str(account_id)), None)

    def _require_not_submitting(self, action: str) -> None:
        if self.is_submitting:
            raise InvalidTransition(state=self.state.value, action=action)
