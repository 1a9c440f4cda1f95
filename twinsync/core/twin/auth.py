"""Identity verification for twin API callers."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Protocol

import httpx

from twinsync.core.errors import UnauthorizedError

logger = logging.getLogger(__name__)


class IdentityVerifier(Protocol):
    async def identify(self, token: str) -> str:
        """Return the principal owning ``token``; raise UnauthorizedError otherwise."""
        ...


class StaticIdentityVerifier:
    """Resolves tokens from a fixed token -> principal mapping."""

    def __init__(self, tokens: Optional[Dict[str, str]] = None) -> None:
        self._tokens = dict(tokens or {})

    async def identify(self, token: str) -> str:
        principal = self._tokens.get(token) if token else None
        if not principal:
            raise UnauthorizedError()
        return principal


@dataclass(frozen=True)
class HttpIdentityConfig:
    base_url: str = "http://localhost:8189"
    timeout_seconds: float = 5.0


class HttpIdentityVerifier:
    """Asks a remote authentication service to identify tokens.

    ``POST {base_url}/identify`` with ``{"token": ...}`` must answer with
    ``{"id": <principal>}``. Any failure is reported as unauthorized access.
    """

    def __init__(self, config: Optional[HttpIdentityConfig] = None) -> None:
        self.config = config or HttpIdentityConfig()
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.config.base_url.rstrip("/"),
                timeout=httpx.Timeout(self.config.timeout_seconds),
            )
        return self._client

    async def identify(self, token: str) -> str:
        if not token:
            raise UnauthorizedError()
        try:
            resp = await self._get_client().post("/identify", json={"token": token})
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPStatusError as exc:
            raise UnauthorizedError() from exc
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Identity service request failed: %s", exc)
            raise UnauthorizedError() from exc
        principal = data.get("id") if isinstance(data, dict) else None
        if not principal:
            raise UnauthorizedError()
        return str(principal)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
        self._client = None


__all__ = [
    "IdentityVerifier",
    "StaticIdentityVerifier",
    "HttpIdentityConfig",
    "HttpIdentityVerifier",
]
