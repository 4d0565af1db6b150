"""
Rollwright Health - Remote health checks.

Checks a deployed target over HTTP and answers with a HealthCheck.
"""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable

import httpx
from loguru import logger

from rollwright.core.exceptions import ConfigurationError
from rollwright.core.protocols import HealthPredicate
from rollwright.core.types import HealthCheck, HealthStatus, TargetSpec


class HttpHealthPredicate:
    """
    HTTP GET health check.

    A response is healthy when its status code is in ``expected_status`` and,
    if ``expect_text`` is set, its body contains that text.
    """

    def __init__(
        self,
        timeout: float = 10.0,
        expected_status: tuple[int, ...] = (200,),
        expect_text: str | None = None,
        headers: dict[str, str] | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.timeout = timeout
        self.expected_status = expected_status
        self.expect_text = expect_text
        self.headers = headers or {}
        self._client = client

    async def _get(self, url: str) -> httpx.Response:
        if self._client is not None:
            return await self._client.get(url, headers=self.headers, timeout=self.timeout)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.get(url, headers=self.headers)

    async def check(self, url: str) -> HealthCheck:
        """
        Check a URL.

        Args:
            url: Health endpoint of the target

        Returns:
            HealthCheck with ``status_code`` and ``latency_ms`` details,
            or an ERROR check when the endpoint is unreachable.
        """
        start = time.time()
        try:
            response = await self._get(url)
        except httpx.HTTPError as e:
            logger.debug(f"Health check {url} unreachable: {e}")
            return HealthCheck(
                status=HealthStatus.ERROR,
                details={"url": url, "error": str(e) or type(e).__name__},
            )

        latency_ms = (time.time() - start) * 1000
        details = {"url": url, "status_code": response.status_code, "latency_ms": latency_ms}

        if response.status_code not in self.expected_status:
            return HealthCheck(status=HealthStatus.UNHEALTHY, details=details)
        if self.expect_text is not None and self.expect_text not in response.text:
            details["reason"] = f"body does not contain '{self.expect_text}'"
            return HealthCheck(status=HealthStatus.UNHEALTHY, details=details)
        return HealthCheck(status=HealthStatus.HEALTHY, details=details)


def predicate_for(
    checker: HealthPredicate, url: str | None = None
) -> Callable[[TargetSpec], Awaitable[HealthCheck]]:
    """
    Adapt a HealthPredicate to the per-target form HealthMonitor expects.

    Args:
        checker: Remote health check
        url: Fixed URL; defaults to each target's ``health_url``
    """

    async def is_healthy(target: TargetSpec) -> HealthCheck:
        target_url = url or target.health_url
        if not target_url:
            raise ConfigurationError(
                f"No health URL for target '{target.target_id}'",
                {"target_id": target.target_id},
            )
        return await checker.check(target_url)

    return is_healthy
