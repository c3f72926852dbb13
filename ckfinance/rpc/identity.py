"""
Identity provider backed by an HTTP delegation endpoint.

The delegation returned on login is kept in memory and, when a path is
given, on disk so a restarted client can restore its session without a
new interactive login.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Any, Callable, Optional

import httpx

from ckfinance.errors import AuthError
from ckfinance.infra.json_utils import JSONDecodeError, dumps, dumps_pretty, loads
from ckfinance.rpc.models import Identity

log = logging.getLogger("ckfinance")


class HttpIdentityProvider:
    def __init__(
        self,
        identity_url: str,
        credential_path: Optional[str] = None,
        timeout: float = 10.0,
        login_hook: Optional[Callable[[str], Any]] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """
        Args:
            identity_url: Base URL of the identity service
            credential_path: File to persist the delegation (None = memory only)
            timeout: HTTP timeout for login/logout
            login_hook: Called with the authorize URL before the exchange,
                e.g. to open a browser for interactive approval
            client: Optional shared httpx client (not closed by this provider)
        """
        self.identity_url = identity_url.rstrip("/")
        self._path = Path(credential_path) if credential_path else None
        self._timeout = timeout
        self._login_hook = login_hook
        self._client = client
        self._identity: Optional[Identity] = None
        self._expires_at: float = 0.0
        self._restore()

    def _restore(self) -> None:
        if self._path is None or not self._path.exists():
            return
        try:
            data = loads(self._path.read_bytes())
        except (OSError, JSONDecodeError) as exc:
            log.warning(dumps({"event": "credential_load_error", "error": str(exc)}))
            return
        if isinstance(data, dict) and data.get("principal"):
            self._identity = Identity(principal=data["principal"], credential=data.get("delegation"))
            self._expires_at = float(data.get("expires_at", 0.0))

    def _persist(self) -> None:
        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        if self._identity is None:
            self._path.unlink(missing_ok=True)
            return
        self._path.write_bytes(dumps_pretty({
            "principal": self._identity.principal,
            "delegation": self._identity.credential,
            "expires_at": self._expires_at,
        }))

    async def _post(self, path: str, payload: dict) -> dict:
        if self._client is not None:
            resp = await self._client.post(f"{self.identity_url}{path}", json=payload)
        else:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(f"{self.identity_url}{path}", json=payload)
        resp.raise_for_status()
        return resp.json()

    async def login(self) -> Identity:
        if self._login_hook:
            self._login_hook(f"{self.identity_url}/#authorize")
        try:
            data = await self._post("/authorize", {"ts": int(time.time())})
        except (httpx.HTTPError, ValueError) as exc:
            raise AuthError(f"login failed: {exc}", cause=exc) from exc
        principal = data.get("principal") if isinstance(data, dict) else None
        if not principal:
            raise AuthError("login failed: identity service returned no principal")
        self._identity = Identity(principal=str(principal), credential=data.get("delegation"))
        self._expires_at = float(data.get("expiresAt", 0.0))
        self._persist()
        return self._identity

    async def logout(self) -> None:
        identity, self._identity = self._identity, None
        self._expires_at = 0.0
        self._persist()
        if identity is None or not identity.credential:
            return
        try:
            await self._post("/logout", {"delegation": identity.credential})
        except httpx.HTTPError as exc:
            # Local credential is already gone; the server-side revoke is best effort.
            log.warning(dumps({"event": "logout_revoke_error", "error": str(exc)}))

    async def is_authenticated(self) -> bool:
        if self._identity is None:
            return False
        return self._expires_at == 0.0 or time.time() < self._expires_at

    def get_identity(self) -> Optional[Identity]:
        return self._identity
