from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class AccountRole(str, Enum):
    ACCOUNT_HOLDER = "USER"
    OPERATOR = "ADMIN"


class TransactionKind(str, Enum):
    EARN = "EARN"
    REDEEM = "REDEEM"


class Account(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str
    display_name: str = Field(default="", alias="name")
    contact_phone: str = Field(default="", alias="phoneNumber")
    role: AccountRole = AccountRole.ACCOUNT_HOLDER
    loyalty_balance: Decimal = Field(default=Decimal("0"), alias="balance")
    qr_token: str = Field(default="", alias="qrData")
    created_at: str = Field(default_factory=utc_now_iso, alias="createdAt")

    @field_validator("id", "display_name", "contact_phone", "qr_token", mode="before")
    @classmethod
    def _coerce_text(cls, value: object) -> object:
        # Spreadsheet cells come back as numbers for numeric ids and phones.
        if value is None:
            return ""
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(int(value)) if float(value).is_integer() else str(value)
        return value

    @field_validator("loyalty_balance", mode="before")
    @classmethod
    def _coerce_balance(cls, value: object) -> object:
        if value is None or value == "":
            return Decimal("0")
        if isinstance(value, float):
            return Decimal(str(value))
        return value

    @field_serializer("loyalty_balance", when_used="json")
    def _balance_as_number(self, value: Decimal) -> float | int:
        return int(value) if value == value.to_integral_value() else float(value)

    @property
    def is_operator(self) -> bool:
        return self.role is AccountRole.OPERATOR

    def to_wire(self) -> dict[str, object]:
        return self.model_dump(mode="json", by_alias=True)


class Transaction(BaseModel):
    """Immutable ledger entry; ``cashback_delta`` is a magnitude, ``kind`` gives the sign."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)

    id: str
    account_id: str = Field(alias="userId")
    gross_amount: Decimal = Field(alias="amount")
    cashback_delta: Decimal = Field(alias="cashbackAmount")
    kind: TransactionKind = Field(alias="type")
    occurred_at: str = Field(default_factory=utc_now_iso, alias="timestamp")
    operator_id: str = Field(default="", alias="adminId")

    @field_validator("id", "account_id", "operator_id", mode="before")
    @classmethod
    def _coerce_text(cls, value: object) -> object:
        if value is None:
            return ""
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(int(value)) if float(value).is_integer() else str(value)
        return value

    @field_validator("gross_amount", "cashback_delta", mode="before")
    @classmethod
    def _coerce_amount(cls, value: object) -> object:
        if isinstance(value, float):
            return Decimal(str(value))
        return value

    @field_serializer("gross_amount", "cashback_delta", when_used="json")
    def _amount_as_number(self, value: Decimal) -> float | int:
        return int(value) if value == value.to_integral_value() else float(value)

    @property
    def signed_delta(self) -> Decimal:
        if self.kind is TransactionKind.EARN:
            return self.cashback_delta
        return -self.cashback_delta

    def occurred_at_datetime(self) -> datetime:
        try:
            parsed = datetime.fromisoformat(self.occurred_at.replace("Z", "+00:00"))
        except ValueError:
            return datetime.min.replace(tzinfo=timezone.utc)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed

    def to_wire(self) -> dict[str, object]:
        return self.model_dump(mode="json", by_alias=True)


class ExternalIdentity(BaseModel):
    """Identity handed over by the chat-platform sign-in widget."""

    external_id: str
    first_name: str = ""
    last_name: str | None = None

    @field_validator("external_id", mode="before")
    @classmethod
    def _coerce_id(cls, value: object) -> object:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @property
    def display_name(self) -> str:
        if self.last_name:
            return f"{self.first_name} {self.last_name}"
        return self.first_name
