from .cache import CacheLayer, CacheRead, CacheState, Collection
from .config import ConfigError, StoreConfig, load_config
from .exceptions import (
    InvalidTransition,
    NetworkError,
    RemoteError,
    StoreError,
    SubmissionInProgress,
    TerminalError,
    UnknownIdentity,
    ValidationError,
)
from .ledger import compute_cashback, ledger_balance, summarize_account, validate_amount
from .models import Account, AccountRole, ExternalIdentity, Transaction, TransactionKind
from .refresh import BalanceRefresher
from .runtime import LoyaltyRuntime, build_runtime
from .session import SessionResolver
from .terminal import AmountCheck, CommitResult, TerminalState, TransactionTerminal

__version__ = "0.1.0"

__all__ = [
    "Account",
    "AccountRole",
    "AmountCheck",
    "BalanceRefresher",
    "CacheLayer",
    "CacheRead",
    "CacheState",
    "Collection",
    "CommitResult",
    "ConfigError",
    "ExternalIdentity",
    "InvalidTransition",
    "LoyaltyRuntime",
    "NetworkError",
    "RemoteError",
    "SessionResolver",
    "StoreConfig",
    "StoreError",
    "SubmissionInProgress",
    "TerminalError",
    "TerminalState",
    "Transaction",
    "TransactionKind",
    "TransactionTerminal",
    "UnknownIdentity",
    "ValidationError",
    "build_runtime",
    "compute_cashback",
    "ledger_balance",
    "load_config",
    "summarize_account",
    "validate_amount",
]
