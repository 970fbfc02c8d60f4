"""Shared HTTP plumbing for provider clients."""

import logging
from typing import Any, Dict, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from ..config import Settings
from ..exceptions import ProviderError, ProviderTimeout

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = {429, 500, 502, 503, 504}


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in RETRYABLE_STATUS
    return isinstance(exc, httpx.TransportError) and not isinstance(exc, httpx.TimeoutException)


class HTTPProvider:
    """Base class owning one httpx.AsyncClient with tenacity retries"""

    name = "provider"

    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None):
        self.settings = settings
        self._client = client

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(headers={"Content-Type": "application/json"})
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _require_key(self, key: Optional[str], env_name: str) -> str:
        if not key:
            raise ProviderError(f"{env_name} not configured", self.name)
        return key

    async def _post_json(
        self,
        url: str,
        payload: Dict[str, Any],
        timeout: float,
        headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """POST JSON with retries on transport errors and retryable status codes.

        Raises:
            ProviderTimeout: the request timed out
            ProviderError: any other failure after the last attempt
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.settings.RETRY_MAX_TRIES),
            wait=wait_exponential(multiplier=self.settings.RETRY_BACKOFF_BASE_SECONDS, max=8),
            retry=retry_if_exception(_is_retryable),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    response = await self.client.post(url, json=payload, headers=headers, timeout=timeout)
                    response.raise_for_status()
        except httpx.TimeoutException as e:
            raise ProviderTimeout(self.name, timeout) from e
        except httpx.HTTPStatusError as e:
            raise ProviderError(
                f"{self.name} returned HTTP {e.response.status_code}", self.name, e.response.status_code
            ) from e
        except httpx.HTTPError as e:
            raise ProviderError(f"{self.name} request failed: {e}", self.name) from e

        try:
            return response.json()
        except ValueError as e:
            raise ProviderError(f"{self.name} returned a non-JSON body", self.name, response.status_code) from e
