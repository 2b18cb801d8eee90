from __future__ import annotations

from dataclasses import dataclass

from ..http_client import HttpClient


@dataclass
class BaseClient:
    http: HttpClient
    module: str = "store"

    def _request(self, method: str, action: str, **kwargs):
        params = {"action": action, **kwargs.pop("params", {})}
        return self.http.request(method, params=params, module=self.module, operation=action, **kwargs)
