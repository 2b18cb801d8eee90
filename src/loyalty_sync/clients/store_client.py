from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as ModelValidationError

from ..error_mapper import map_write_result
from ..exceptions import NetworkError
from ..models import Account, Transaction
from .base import BaseClient

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


@dataclass
class StoreClient(BaseClient):
    """Blocking client for the spreadsheet endpoint (``?action=...``)."""

    def fetch_accounts(self) -> list[Account]:
        data = self._request("GET", "getUsers")
        return _parse_rows(data, Account, "getUsers")

    def fetch_transactions(self) -> list[Transaction]:
        data = self._request("GET", "getTransactions")
        return _parse_rows(data, Transaction, "getTransactions")

    def persist_account(self, account: Account) -> None:
        data = self._request("POST", "saveUser", json_body=account.to_wire())
        error = map_write_result(data)
        if error is not None:
            raise error
        logger.info("account_saved", extra={"account_id": account.id})

    def persist_transaction(self, transaction: Transaction) -> None:
        data = self._request("POST", "saveTransaction", json_body=transaction.to_wire())
        error = map_write_result(data)
        if error is not None:
            raise error
        logger.info("transaction_saved", extra={"transaction_id": transaction.id})


def _parse_rows(data: Any, model_type: type[ModelT], action: str) -> list[ModelT]:
    if not isinstance(data, list):
        raise NetworkError(
            code="INVALID_RESPONSE",
            message=f"Expected {action} response to be a JSON array",
            raw_payload=data,
        )
    rows: list[ModelT] = []
    for raw in data:
        try:
            rows.append(model_type.model_validate(raw))
        except ModelValidationError as exc:
            # Malformed sheet rows are skipped.
            logger.warning("store_row_skipped", extra={"action": action, "errors": exc.error_count()})
    return rows
