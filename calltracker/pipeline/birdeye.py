"""
Call Tracker - Birdeye Price History Client

Fetches historical token prices from Birdeye's /defi/history_price endpoint.
This is the price-history provider the verification and backfill jobs consume.

Failure modes surfaced to callers:
- RateLimitExceeded: HTTP 429 persisted through every retry
- UpstreamError: any other non-2xx response, a transport failure, or a body
  that is not the expected JSON envelope
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, Protocol

import httpx
import structlog
from pydantic import BaseModel, ValidationError

from calltracker.config import Resolution, settings
from calltracker.engine.price_history import PriceHistory
from calltracker.engine.resolution import as_utc

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class PriceHistoryError(Exception):
    """Base class for price-history provider failures."""


class RateLimitExceeded(PriceHistoryError):
    """Upstream kept answering 429."""


class UpstreamError(PriceHistoryError):
    """Upstream returned an error or could not be reached."""


# ---------------------------------------------------------------------------
# Provider interface
# ---------------------------------------------------------------------------


class PriceHistoryProvider(Protocol):
    async def fetch_price_history(
        self,
        token_id: str,
        start: datetime,
        end: datetime,
        resolution: Resolution,
    ) -> PriceHistory: ...


# ---------------------------------------------------------------------------
# Pydantic Response Models
# ---------------------------------------------------------------------------


class BirdeyeHistoryResponse(BaseModel):
    """Envelope of /defi/history_price. data.items may be missing."""

    success: bool = True
    data: PriceHistory | None = None


# ---------------------------------------------------------------------------
# API Client
# ---------------------------------------------------------------------------


class BirdeyeClient:
    """
    Async client for the Birdeye public API.

    Usage:
        async with BirdeyeClient() as client:
            history = await client.fetch_price_history(mint, start, end, Resolution.FIVE_MINUTES)
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        chain: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        base_backoff: float | None = None,
    ):
        self._api_key = api_key if api_key is not None else settings.BIRDEYE_API_KEY
        self._base_url = base_url or settings.BIRDEYE_BASE_URL
        self._chain = chain or settings.BIRDEYE_CHAIN
        self._timeout = timeout if timeout is not None else settings.BIRDEYE_TIMEOUT_SECONDS
        self._max_retries = (
            max_retries if max_retries is not None else settings.BIRDEYE_MAX_RETRIES
        )
        self._base_backoff = (
            base_backoff if base_backoff is not None else settings.BIRDEYE_BASE_BACKOFF_SECONDS
        )
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> BirdeyeClient:
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers={
                "X-API-KEY": self._api_key,
                "x-chain": self._chain,
                "Accept": "application/json",
            },
            timeout=self._timeout,
        )
        return self

    async def __aexit__(self, *args: Any) -> None:
        if self._client:
            await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Make an API request with retry logic and exponential backoff."""
        assert self._client is not None, "Client not initialized. Use 'async with'."

        last_error: Exception | None = None
        rate_limited = False

        for attempt in range(self._max_retries + 1):
            try:
                response = await self._client.request(method, path, params=params)

                if response.status_code == 429:
                    rate_limited = True
                    wait_time = self._base_backoff * (2 ** attempt)
                    logger.warning(
                        "birdeye_rate_limited",
                        attempt=attempt + 1,
                        wait_seconds=wait_time,
                        path=path,
                    )
                    if attempt < self._max_retries:
                        await asyncio.sleep(wait_time)
                    continue

                rate_limited = False
                response.raise_for_status()
                try:
                    return response.json()
                except ValueError as e:
                    logger.error("birdeye_invalid_json", path=path, error=str(e))
                    raise UpstreamError(f"Birdeye returned a non-JSON body for {path}") from e

            except httpx.HTTPStatusError as e:
                last_error = e
                logger.error(
                    "birdeye_http_error",
                    status_code=e.response.status_code,
                    attempt=attempt + 1,
                    path=path,
                )
                if e.response.status_code >= 500 and attempt < self._max_retries:
                    await asyncio.sleep(self._base_backoff * (2 ** attempt))
                    continue
                raise UpstreamError(
                    f"Failed to fetch price data from Birdeye: HTTP {e.response.status_code}"
                ) from e

            except httpx.RequestError as e:
                last_error = e
                rate_limited = False
                logger.error(
                    "birdeye_request_error",
                    error=str(e),
                    attempt=attempt + 1,
                    path=path,
                )
                if attempt < self._max_retries:
                    await asyncio.sleep(self._base_backoff * (2 ** attempt))
                continue

        if rate_limited:
            raise RateLimitExceeded(
                f"Rate limit exceeded fetching {path} after {self._max_retries + 1} attempts"
            )
        raise UpstreamError(
            f"Birdeye request failed after {self._max_retries + 1} attempts"
        ) from last_error

    # -----------------------------------------------------------------------
    # Public API
    # -----------------------------------------------------------------------

    async def fetch_price_history(
        self,
        token_id: str,
        start: datetime,
        end: datetime,
        resolution: Resolution,
    ) -> PriceHistory:
        """
        Fetch price samples for a token between start and end.

        Args:
            token_id: Token mint address.
            start: Window start (naive values are taken as UTC).
            end: Window end.
            resolution: Sampling resolution.

        Returns:
            PriceHistory ascending by unix time. Empty for an empty or
            inverted window, or when upstream returns no items.
        """
        time_from = int(as_utc(start).timestamp())
        time_to = int(as_utc(end).timestamp())

        if time_from >= time_to:
            logger.warning(
                "birdeye_invalid_time_range",
                token_id=token_id,
                time_from=time_from,
                time_to=time_to,
            )
            return PriceHistory()

        logger.info(
            "birdeye_fetch_price_history",
            token_id=token_id,
            resolution=resolution.value,
            time_from=time_from,
            time_to=time_to,
        )

        data = await self._request(
            "GET",
            "/defi/history_price",
            params={
                "address": token_id,
                "address_type": "token",
                "type": resolution.value,
                "time_from": time_from,
                "time_to": time_to,
            },
        )
        try:
            response = BirdeyeHistoryResponse.model_validate(data)
        except ValidationError as e:
            logger.error("birdeye_invalid_response", token_id=token_id, error=str(e))
            raise UpstreamError(f"Unexpected history_price payload for {token_id}") from e

        if response.data is None or not response.data.items:
            logger.warning("birdeye_no_price_history", token_id=token_id)
            return PriceHistory()

        logger.info(
            "birdeye_fetch_price_history_complete",
            token_id=token_id,
            samples=len(response.data.items),
        )
        return response.data
