from __future__ import annotations

import secrets
import uuid

QR_TOKEN_PREFIX = "cb_"
EXTERNAL_TOKEN_PREFIX = "ext_"


def new_transaction_id() -> str:
    return str(uuid.uuid4())


def new_account_id() -> str:
    return str(uuid.uuid4())


def new_qr_token() -> str:
    """128 bits from the OS CSPRNG, prefixed so scanners can recognise our codes."""
    return QR_TOKEN_PREFIX + secrets.token_hex(16)


def external_qr_token(external_id: str) -> str:
    return EXTERNAL_TOKEN_PREFIX + str(external_id)


def needs_token_backfill(qr_token: str | None, external_id: str) -> bool:
    """Empty tokens and the legacy raw-id placeholder get the canonical token."""
    token = str(qr_token or "").strip()
    return token == "" or token == str(external_id).strip()
