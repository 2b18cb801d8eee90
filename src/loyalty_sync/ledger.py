from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Sequence

from .models import Account, Transaction, TransactionKind

EARN_RATE = Decimal("0.01")
RECENT_LIMIT = 10

# Minimum total earned cashback for each tier, checked highest first.
TIER_THRESHOLDS: tuple[tuple[str, Decimal], ...] = (
    ("Gold", Decimal("50")),
    ("Silver", Decimal("20")),
)
BASE_TIER = "Bronze"


@dataclass(frozen=True)
class AmountIssue:
    field: str
    reason: str


@dataclass(frozen=True)
class AmountValidation:
    ok: bool
    issues: list[AmountIssue]


@dataclass(frozen=True)
class AccountSummary:
    total_earned: Decimal
    total_redeemed: Decimal
    tier: str
    recent: list[Transaction]


def compute_cashback(kind: TransactionKind, gross_amount: Decimal, earn_rate: Decimal = EARN_RATE) -> Decimal:
    """EARN credits a percentage of the bill; REDEEM deducts the full amount."""
    if kind is TransactionKind.EARN:
        return gross_amount * earn_rate
    return gross_amount


def validate_amount(
    kind: TransactionKind | None,
    amount: Decimal | None,
    balance: Decimal | None,
) -> AmountValidation:
    issues: list[AmountIssue] = []
    if kind is None:
        issues.append(AmountIssue(field="kind", reason="is required"))
    if amount is None:
        issues.append(AmountIssue(field="amount", reason="is required"))
    elif not amount.is_finite() or amount <= 0:
        issues.append(AmountIssue(field="amount", reason="must be greater than 0"))
    elif kind is TransactionKind.REDEEM and balance is not None and amount > balance:
        issues.append(AmountIssue(field="amount", reason="exceeds available balance"))
    return AmountValidation(ok=not issues, issues=issues)


def ledger_balance(account_id: str, transactions: Iterable[Transaction]) -> Decimal:
    total = Decimal("0")
    for transaction in transactions:
        if transaction.account_id == account_id:
            total += transaction.signed_delta
    return total


def balance_drift(
    accounts: Iterable[Account],
    transactions: Iterable[Transaction],
) -> dict[str, tuple[Decimal, Decimal]]:
    """Accounts whose recorded balance disagrees with their transaction history.

    Maps account id to ``(recorded_balance, ledger_balance)``.
    """
    sums: dict[str, Decimal] = defaultdict(lambda: Decimal("0"))
    for transaction in transactions:
        sums[transaction.account_id] += transaction.signed_delta
    drift: dict[str, tuple[Decimal, Decimal]] = {}
    for account in accounts:
        expected = sums[account.id]
        if account.loyalty_balance != expected:
            drift[account.id] = (account.loyalty_balance, expected)
    return drift


def dedupe_transactions(transactions: Iterable[Transaction]) -> list[Transaction]:
    by_id: dict[str, Transaction] = {}
    for transaction in transactions:
        by_id[transaction.id] = transaction
    return list(by_id.values())


def newest_first(transactions: Iterable[Transaction]) -> list[Transaction]:
    return sorted(transactions, key=lambda transaction: transaction.occurred_at_datetime(), reverse=True)


def account_history(
    account_id: str,
    transactions: Iterable[Transaction],
    limit: int | None = None,
) -> list[Transaction]:
    history = newest_first(t for t in transactions if t.account_id == account_id)
    return history[:limit] if limit is not None else history


def tier_for(total_earned: Decimal) -> str:
    for name, threshold in TIER_THRESHOLDS:
        if total_earned > threshold:
            return name
    return BASE_TIER


def summarize_account(account: Account, transactions: Sequence[Transaction]) -> AccountSummary:
    history = account_history(account.id, transactions)
    total_earned = sum(
        (t.cashback_delta for t in history if t.kind is TransactionKind.EARN),
        Decimal("0"),
    )
    total_redeemed = sum(
        (t.cashback_delta for t in history if t.kind is TransactionKind.REDEEM),
        Decimal("0"),
    )
    return AccountSummary(
        total_earned=total_earned,
        total_redeemed=total_redeemed,
        tier=tier_for(total_earned),
        recent=history[:RECENT_LIMIT],
    )
