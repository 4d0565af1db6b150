"""
Rollwright Adapters - Control-plane REST client.

Thin httpx client that maps HTTP failures onto the error taxonomy:
429 is a RateLimitError carrying Retry-After, 5xx and network errors are
transient, 401/403 are credential errors, other 4xx are permanent.
"""

from __future__ import annotations

import os
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any

import httpx
from loguru import logger

from rollwright.core.exceptions import (
    CredentialError,
    PermanentError,
    RateLimitError,
    TransientError,
)
from rollwright.core.types import ApiResponse

DEFAULT_BASE_URL = "https://api.cloudflare.com/client/v4"
DEFAULT_TOKEN_ENV = "ROLLWRIGHT_API_TOKEN"


def parse_retry_after(value: str | None) -> float | None:
    """Retry-After header as seconds (delta-seconds or HTTP date)."""
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


def raise_for_status(response: httpx.Response, path: str) -> None:
    """
    Raise the taxonomy error matching a failed response.

    Raises:
        RateLimitError: 429
        CredentialError: 401 / 403
        TransientError: 5xx
        PermanentError: Other 4xx
    """
    status = response.status_code
    if status < 400:
        return
    if status == 429:
        raise RateLimitError(
            f"Rate limited on {path}",
            retry_after=parse_retry_after(response.headers.get("Retry-After")),
        )
    if status in (401, 403):
        raise CredentialError("api token", "rejected" if status == 403 else "unauthorized")
    if status >= 500:
        raise TransientError(f"Control plane error {status} on {path}", {"status": status})
    raise PermanentError(f"Request to {path} failed with {status}", {"status": status})


class HttpControlPlaneClient:
    """
    ControlPlaneClient over httpx.

    Example:
        async with HttpControlPlaneClient(token=token) as api:
            if not await api.resource_exists(f"accounts/{account}/workers/scripts/{name}"):
                ...
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        token: str | None = None,
        timeout: float = 30.0,
        token_env: str = DEFAULT_TOKEN_ENV,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize client.

        Args:
            base_url: API root
            token: Bearer token (default: read from ``token_env``)
            timeout: Request timeout in seconds
            token_env: Environment variable holding the token
            transport: Custom httpx transport (tests)
        """
        self.base_url = base_url.rstrip("/")
        self.token = token if token is not None else os.environ.get(token_env)
        self.token_env = token_env
        self._client = httpx.AsyncClient(
            base_url=self.base_url, timeout=timeout, transport=transport
        )

    async def __aenter__(self) -> HttpControlPlaneClient:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    async def _send(self, method: str, path: str, body: Any = None) -> httpx.Response:
        if not self.token:
            raise CredentialError(self.token_env)
        path = path.lstrip("/")
        try:
            return await self._client.request(
                method.upper(),
                path,
                json=body,
                headers={"Authorization": f"Bearer {self.token}"},
            )
        except httpx.TransportError as e:
            raise TransientError(
                f"Control plane unreachable: {e or type(e).__name__}", {"path": path}
            ) from e

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return None

    async def request(self, method: str, path: str, body: Any = None) -> ApiResponse:
        """
        Send a request.

        Raises:
            RateLimitError, CredentialError, TransientError, PermanentError
        """
        response = await self._send(method, path, body)
        logger.debug(f"{method.upper()} {path} -> {response.status_code}")
        raise_for_status(response, path)
        return ApiResponse(
            status=response.status_code,
            json=self._json(response),
            headers=dict(response.headers),
        )

    async def resource_exists(self, path: str) -> bool:
        """GET a resource; 404 means it does not exist."""
        response = await self._send("GET", path)
        if response.status_code == 404:
            return False
        raise_for_status(response, path)
        return True

    async def list_routes(self, zone_id: str) -> list[dict[str, Any]]:
        """Worker routes of a zone."""
        response = await self.request("GET", f"zones/{zone_id}/workers/routes")
        payload = response.json or {}
        if isinstance(payload, dict):
            return list(payload.get("result") or [])
        return list(payload)
