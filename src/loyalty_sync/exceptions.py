from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .ledger import AmountIssue


@dataclass
class StoreError(Exception):
    code: str
    message: str
    details: object | None = None
    status_code: int = 0
    raw_payload: object | None = None

    def __str__(self) -> str:
        status = f"[{self.status_code}] " if self.status_code else ""
        return f"{status}{self.code}: {self.message}"


class NetworkError(StoreError):
    """Transport failure, timeout, non-2xx status or undecodable body."""


class RemoteError(StoreError):
    """The endpoint answered but reported ``success: false``."""


class TerminalError(Exception):
    pass


@dataclass
class UnknownIdentity(TerminalError):
    scanned: str
    known_tokens: list[str] = field(default_factory=list)

    def __str__(self) -> str:
        known = ", ".join(f"'{token}'" for token in self.known_tokens) or "none"
        return f"Unknown account QR. Scanned: '{self.scanned}'. Known QR codes: {known}"


@dataclass
class ValidationError(TerminalError):
    issues: list[AmountIssue] = field(default_factory=list)

    def __str__(self) -> str:
        reasons = "; ".join(f"{issue.field}: {issue.reason}" for issue in self.issues)
        return f"Validation failed: {reasons}" if reasons else "Validation failed"


class SubmissionInProgress(TerminalError):
    """A transaction is already being submitted from this terminal."""


@dataclass
class InvalidTransition(TerminalError):
    state: str
    action: str

    def __str__(self) -> str:
        return f"Cannot {self.action} while terminal is {self.state}"
