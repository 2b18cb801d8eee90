from __future__ import annotations

import logging
from typing import Callable

from .cache import CacheLayer, CacheRead, Collection
from .exceptions import NetworkError, StoreError
from .identity import external_qr_token, new_account_id, new_qr_token, needs_token_backfill
from .local_store import SessionStore
from .models import Account, AccountRole, ExternalIdentity
from .remote import RemoteStore

logger = logging.getLogger(__name__)

SessionListener = Callable[[Account | None], None]


class SessionResolver:
    """Tracks which account this device is signed in as.

    The persisted record is shown first and then checked against the remote
    copy. When the remote cannot be reached the local record stays in effect,
    so a holder may briefly see an outdated balance.
    """

    def __init__(
        self,
        cache: CacheLayer,
        store: RemoteStore,
        session_store: SessionStore,
        on_change: SessionListener | None = None,
    ) -> None:
        self.cache = cache
        self.store = store
        self.session_store = session_store
        self.on_change = on_change
        self._current: Account | None = None

    @property
    def current(self) -> Account | None:
        return self._current

    async def resume(self) -> Account | None:
        stored = self.session_store.load()
        if stored is None:
            return None
        self._present(stored)

        accounts = await self.cache.read_fresh(Collection.ACCOUNTS)
        fresh = _find_by_id(accounts, stored.id)
        if fresh is None:
            logger.warning("session_unverified", extra={"account_id": stored.id})
            return self._current
        if self._current is not None and self._current.id == stored.id and fresh != self._current:
            self.replace(fresh)
            logger.info("session_refreshed", extra={"account_id": fresh.id})
        return self._current

    async def sign_in_external(self, identity: ExternalIdentity) -> Account:
        external_id = identity.external_id
        provisional = Account(
            id=external_id,
            display_name=identity.display_name,
            contact_phone="",
            role=AccountRole.ACCOUNT_HOLDER,
            qr_token=external_qr_token(external_id),
        )
        self._establish(provisional)

        result = await self.cache.refresh(Collection.ACCOUNTS)
        verified = result.source == "network"
        existing = _find_by_id(result.data, external_id)
        if existing is None:
            if not verified:
                # saveUser upserts whole records.
                logger.warning("session_unverified", extra={"account_id": external_id, "source": result.source})
                return provisional
            await self.store.persist_account(provisional)
            self.cache.invalidate(Collection.ACCOUNTS)
            logger.info("account_created", extra={"account_id": provisional.id, "flow": "external"})
            return provisional

        if verified and needs_token_backfill(existing.qr_token, external_id):
            migrated = existing.model_copy(update={"qr_token": external_qr_token(external_id)})
            try:
                await self.store.persist_account(migrated)
            except StoreError as exc:
                logger.warning(
                    "qr_token_backfill_failed",
                    extra={"account_id": existing.id, "code": exc.code, "error": exc.message},
                )
            else:
                self.cache.invalidate(Collection.ACCOUNTS)
                logger.info("qr_token_backfilled", extra={"account_id": existing.id})
                existing = migrated

        self._establish(existing)
        return existing

    async def register_phone(self, phone: str, display_name: str) -> Account:
        normalized = phone.strip()
        result = await self.cache.refresh(Collection.ACCOUNTS)
        existing = next((a for a in result.data if a.contact_phone.strip() == normalized), None)
        if existing is not None:
            self._establish(existing)
            return existing
        _require_verified(result, "register_phone")

        account = Account(
            id=new_account_id(),
            display_name=display_name.strip(),
            contact_phone=normalized,
            role=AccountRole.ACCOUNT_HOLDER,
            qr_token=new_qr_token(),
        )
        await self.store.persist_account(account)
        self.cache.invalidate(Collection.ACCOUNTS)
        logger.info("account_created", extra={"account_id": account.id, "flow": "phone"})
        self._establish(account)
        return account

    async def sign_in_operator(self, display_name: str = "Administrator") -> Account:
        result = await self.cache.refresh(Collection.ACCOUNTS)
        existing = next((a for a in result.data if a.is_operator), None)
        if existing is not None:
            self._establish(existing)
            return existing
        _require_verified(result, "sign_in_operator")

        operator_id = "admin_" + new_account_id()
        operator = Account(
            id=operator_id,
            display_name=display_name,
            role=AccountRole.OPERATOR,
            qr_token=operator_id,
        )
        await self.store.persist_account(operator)
        self.cache.invalidate(Collection.ACCOUNTS)
        logger.info("account_created", extra={"account_id": operator.id, "flow": "operator"})
        self._establish(operator)
        return operator

    def replace(self, account: Account) -> None:
        self._establish(account)

    def sign_out(self) -> None:
        self.session_store.clear()
        self._present(None)
        logger.info("session_cleared")

    def _establish(self, account: Account) -> None:
        self.session_store.save(account)
        self._present(account)

    def _present(self, account: Account | None) -> None:
        self._current = account
        if self.on_change is not None:
            self.on_change(account)


def _find_by_id(accounts: list[Account], account_id: str) -> Account | None:
    target = str(account_id)
    return next((account for account in accounts if str(account.id) == target), None)


def _require_verified(result: CacheRead, operation: str) -> None:
    """New accounts are only created against a list read from the network."""
    if result.source == "network":
        return
    logger.warning("account_create_blocked", extra={"operation": operation, "source": result.source})
    raise NetworkError(
        code="ACCOUNTS_UNVERIFIED",
        message="Could not load accounts from the store; try again when online",
        details={"source": result.source},
    )
