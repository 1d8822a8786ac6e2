"""
Source Fetcher Module
=====================

Provides rate-limited JSON fetching with retries for source APIs
(Reddit listings, Discogs REST).
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import httpx

if TYPE_CHECKING:
    from vinyl_drop.ingestion.registry import SourceConfig

logger = logging.getLogger(__name__)

# Status codes worth another attempt
RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


@dataclass
class FetchResult:
    """Result of fetching a JSON document."""

    url: str
    status_code: int
    fetched_at: datetime
    data: Any = None
    error: str | None = None

    @property
    def success(self) -> bool:
        """Check if fetch was successful."""
        return self.error is None and 200 <= self.status_code < 300


class TokenBucket:
    """
    Token bucket rate limiter for per-source rate limiting.

    Allows bursting up to burst_limit requests, then enforces
    the steady-state rate of requests_per_second.
    """

    def __init__(self, requests_per_second: float, burst_limit: int) -> None:
        self.requests_per_second = requests_per_second
        self.burst_limit = burst_limit
        self.tokens = float(burst_limit)
        self.last_update = time.monotonic()
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Acquire a token, waiting until one is available."""
        async with self._lock:
            now = time.monotonic()
            elapsed = now - self.last_update
            self.last_update = now

            self.tokens = min(
                self.burst_limit, self.tokens + elapsed * self.requests_per_second
            )

            if self.tokens < 1.0:
                wait_time = (1.0 - self.tokens) / self.requests_per_second
                await asyncio.sleep(wait_time)
                self.tokens = 0.0
            else:
                self.tokens -= 1.0


class Crawler:
    """
    JSON fetcher with per-source rate limiting and retries.

    Features:
    - Per-source rate limiting with token bucket algorithm
    - Exponential backoff on timeouts, transport errors and 429/5xx
    - Pluggable httpx transport (used by tests to stub responses)
    """

    def __init__(
        self,
        user_agent: str = "VinylDrop/1.0",
        timeout: float = 30.0,
        max_retries: int = 3,
        backoff_base: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.user_agent = user_agent
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.backoff_base = backoff_base
        self.transport = transport

        self._rate_limiters: dict[str, TokenBucket] = {}

    def _get_rate_limiter(self, source: SourceConfig) -> TokenBucket:
        """Get or create a rate limiter for a source."""
        if source.name not in self._rate_limiters:
            self._rate_limiters[source.name] = TokenBucket(
                requests_per_second=source.rate_limit.requests_per_second,
                burst_limit=source.rate_limit.burst_limit,
            )
        return self._rate_limiters[source.name]

    async def fetch_json(
        self,
        url: str,
        source: SourceConfig,
        params: dict[str, Any] | None = None,
    ) -> FetchResult:
        """
        Fetch and decode a JSON document with rate limiting.

        Args:
            url: URL to fetch
            source: Source configuration for rate limiting
            params: Optional query parameters

        Returns:
            FetchResult with decoded data or error
        """
        fetched_at = datetime.now(UTC)

        rate_limiter = self._get_rate_limiter(source)
        await rate_limiter.acquire()

        last_error: str | None = None
        status_code = 0
        for attempt in range(self.max_retries):
            try:
                async with httpx.AsyncClient(
                    timeout=self.timeout, transport=self.transport
                ) as client:
                    response = await client.get(
                        url,
                        params=params,
                        headers={
                            "User-Agent": self.user_agent,
                            "Accept": "application/json",
                        },
                        follow_redirects=True,
                    )

                status_code = response.status_code
                if status_code in RETRYABLE_STATUS_CODES:
                    last_error = f"HTTP {status_code}"
                    logger.warning(
                        f"HTTP {status_code} fetching {url} (attempt {attempt + 1}/{self.max_retries})"
                    )
                elif not 200 <= status_code < 300:
                    return FetchResult(
                        url=url,
                        status_code=status_code,
                        fetched_at=fetched_at,
                        error=f"HTTP {status_code}",
                    )
                else:
                    try:
                        data = response.json()
                    except ValueError as e:
                        return FetchResult(
                            url=url,
                            status_code=status_code,
                            fetched_at=fetched_at,
                            error=f"Malformed JSON response: {e}",
                        )
                    return FetchResult(
                        url=url,
                        status_code=status_code,
                        fetched_at=fetched_at,
                        data=data,
                    )

            except httpx.TimeoutException:
                last_error = f"Timeout after {self.timeout}s"
                logger.warning(f"Timeout fetching {url} (attempt {attempt + 1}/{self.max_retries})")
            except httpx.HTTPError as e:
                last_error = str(e) or e.__class__.__name__
                logger.warning(f"HTTP error fetching {url}: {e} (attempt {attempt + 1}/{self.max_retries})")

            if attempt < self.max_retries - 1:
                await asyncio.sleep(self.backoff_base * 2**attempt)

        return FetchResult(
            url=url,
            status_code=status_code,
            fetched_at=fetched_at,
            error=last_error or "Unknown error",
        )
