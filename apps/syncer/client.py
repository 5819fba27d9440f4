"""
Scorecard API Client - Single Page Requests

Performs one GET against the schools endpoint and classifies the outcome:
- 2xx with a decodable body -> PageResult
- 429 -> RateLimitedError (retry_after taken from the Retry-After header)
- transport failure, timeout, any other status, undecodable body -> TransientFetchError

Retrying is the caller's job (see apps.syncer.retrier).
"""

import logging
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from utils.config import settings
from utils.errors import RateLimitedError, TransientFetchError
from utils.schemas import PageResult

logger = logging.getLogger(__name__)


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError:
        # HTTP-date form is not worth supporting here; fall back to backoff
        return None
    return seconds if seconds >= 0 else None


class ScorecardClient:
    """Async client for the College Scorecard schools endpoint."""

    def __init__(
        self,
        api_key: str,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """
        Initialize client.

        Args:
            api_key: data.gov API key, sent as the api_key query parameter
            base_url: Endpoint URL, defaults to settings.SCORECARD_API_BASE
            timeout: Request timeout in seconds, defaults to settings.API_TIMEOUT
            http_client: Pre-built httpx client (tests inject a MockTransport here)
        """
        self.base_url = base_url or settings.SCORECARD_API_BASE
        self._api_key = api_key
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=timeout if timeout is not None else settings.API_TIMEOUT
        )

    async def fetch_page(self, params: dict[str, Any]) -> PageResult:
        """
        Fetch one page.

        Args:
            params: Query parameters without the API key

        Returns:
            Parsed page

        Raises:
            RateLimitedError: On HTTP 429
            TransientFetchError: On any other failure
        """
        query = {**params, "api_key": self._api_key}

        try:
            response = await self._client.get(self.base_url, params=query)
        except httpx.TimeoutException as e:
            raise TransientFetchError(f"Request timed out: {type(e).__name__}") from e
        except httpx.RequestError as e:
            raise TransientFetchError(f"Transport error: {type(e).__name__}: {e}") from e

        if response.status_code == 429:
            retry_after = _parse_retry_after(response.headers.get("Retry-After"))
            raise RateLimitedError("Rate limited by remote source", retry_after=retry_after)

        if not response.is_success:
            raise TransientFetchError(
                f"Unexpected status {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )

        try:
            return PageResult.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise TransientFetchError(
                f"Malformed page payload: {str(e).splitlines()[0] if str(e) else type(e).__name__}",
                status_code=response.status_code,
            ) from e

    async def close(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "ScorecardClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
