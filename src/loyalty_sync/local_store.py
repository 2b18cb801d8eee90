from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from platformdirs import user_data_dir
from pydantic import ValidationError as ModelValidationError

from .models import Account

logger = logging.getLogger(__name__)

SESSION_KEY = "loyalty_session"


@dataclass
class JsonFileStore:
    app_name: str = "loyalty-sync"
    base_dir: Path | None = None

    def _path(self, key: str) -> Path:
        base = self.base_dir or Path(user_data_dir(self.app_name, "LoyaltySync"))
        base.mkdir(parents=True, exist_ok=True)
        return base / f"{key}.json"

    def write(self, key: str, data: Any) -> None:
        path = self._path(key)
        tmp = path.with_suffix(".tmp")
        tmp.write_text(json.dumps(data, indent=2))
        tmp.replace(path)
        try:
            path.chmod(0o600)
        except OSError:
            pass

    def read(self, key: str) -> Any | None:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text())
        except (json.JSONDecodeError, UnicodeDecodeError):
            logger.warning("local_record_corrupt", extra={"key": key})
            self.delete(key)
            return None

    def delete(self, key: str) -> None:
        path = self._path(key)
        if path.exists():
            path.unlink()


@dataclass
class SessionStore:
    """The last-known account for this device, under a fixed well-known key."""

    files: JsonFileStore

    def save(self, account: Account) -> None:
        self.files.write(SESSION_KEY, account.to_wire())

    def load(self) -> Account | None:
        data = self.files.read(SESSION_KEY)
        if data is None:
            return None
        try:
            return Account.model_validate(data)
        except ModelValidationError:
            self.clear()
            return None

    def clear(self) -> None:
        self.files.delete(SESSION_KEY)


@dataclass(frozen=True)
class StoredCollection:
    fetched_at: float
    rows: list[dict[str, Any]]


@dataclass
class LocalCache:
    """Durable copy of each collection for instant display after a restart."""

    files: JsonFileStore

    @staticmethod
    def _key(collection: str) -> str:
        return f"cache_{collection}"

    def save(self, collection: str, rows: list[dict[str, Any]], fetched_at: float) -> None:
        self.files.write(self._key(collection), {"fetched_at": fetched_at, "data": rows})

    def load(self, collection: str) -> StoredCollection | None:
        payload = self.files.read(self._key(collection))
        if not isinstance(payload, dict):
            return None
        rows = payload.get("data")
        fetched_at = payload.get("fetched_at")
        if not isinstance(rows, list) or not isinstance(fetched_at, (int, float)):
            self.files.delete(self._key(collection))
            return None
        return StoredCollection(fetched_at=float(fetched_at), rows=rows)

    def clear(self, collection: str) -> None:
        self.files.delete(self._key(collection))
