"""
Async HTTP client wrapper for provider requests.
Translates transport failures into the sync error taxonomy and records metrics.
Retrying is left to the fetch policy executor.
"""
from __future__ import annotations

import time
from typing import Any, Optional

import httpx

from shared.config import get_settings
from shared.errors import ProviderError, TransientFetchError
from shared.utils.logging import get_logger
from shared.utils.metrics import PROVIDER_LATENCY, PROVIDER_REQUESTS

logger = get_logger(__name__)


class ProviderHTTPClient:
    """
    Async HTTP client tailored for sports data provider APIs.

    429 and 5xx responses, timeouts and connection errors raise
    TransientFetchError; other 4xx responses and undecodable bodies raise
    ProviderError.
    """

    def __init__(
        self,
        provider_name: str,
        base_url: str,
        headers: dict[str, str] | None = None,
        timeout_s: float | None = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        settings = get_settings()
        self._provider = provider_name
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_s or settings.provider_request_timeout_s
        self._default_headers = headers or {}
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def start(self) -> None:
        """Initialize the underlying httpx client."""
        if self._client is not None:
            return
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers=self._default_headers,
            timeout=httpx.Timeout(self._timeout, connect=5.0),
            follow_redirects=True,
            limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
            transport=self._transport,
        )

    async def close(self) -> None:
        """Close the underlying httpx client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        """
        GET ``path`` (relative to base_url, or absolute) and decode JSON.

        Raises:
            TransientFetchError: Timeouts, connection errors, 429 and 5xx.
            ProviderError: Other 4xx responses or a body that is not JSON.
        """
        if not self._client:
            raise RuntimeError("ProviderHTTPClient not started. Call start() first.")

        start_time = time.perf_counter()
        status = "error"
        try:
            resp = await self._client.get(path, params=params)
            status = str(resp.status_code)
        except httpx.TimeoutException as exc:
            status = "timeout"
            logger.warning("provider_timeout", provider=self._provider, path=path)
            raise TransientFetchError(self._provider, f"timeout on {path}") from exc
        except httpx.HTTPError as exc:
            logger.warning("provider_request_error", provider=self._provider, path=path, error=str(exc))
            raise TransientFetchError(self._provider, f"request to {path} failed: {exc}") from exc
        finally:
            PROVIDER_REQUESTS.labels(provider=self._provider, status=status).inc()
            PROVIDER_LATENCY.labels(provider=self._provider).observe(time.perf_counter() - start_time)

        if resp.status_code == 429:
            retry_after = _parse_retry_after(resp.headers.get("Retry-After"))
            logger.warning("provider_rate_limited", provider=self._provider, path=path, retry_after=retry_after)
            raise TransientFetchError(self._provider, "rate limited", retry_after=retry_after)
        if resp.status_code >= 500:
            logger.warning("provider_server_error", provider=self._provider, path=path, status=resp.status_code)
            raise TransientFetchError(self._provider, f"HTTP {resp.status_code} on {path}")
        if resp.status_code >= 400:
            # Client errors are not retried
            logger.error("provider_http_error", provider=self._provider, path=path, status=resp.status_code)
            raise ProviderError(self._provider, f"HTTP {resp.status_code} on {path}")

        try:
            data = resp.json()
        except ValueError as exc:
            raise ProviderError(self._provider, f"malformed JSON from {path}") from exc

        logger.debug(
            "provider_request_success",
            provider=self._provider,
            path=path,
            status=resp.status_code,
            latency_ms=round((time.perf_counter() - start_time) * 1000, 2),
        )
        return data


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None
