"""
Discogs Adapter
===============

Reads structured release data from the Discogs REST API. Used both to
discover recently added vinyl releases and to look up a single release
by artist + album for enrichment.

Discogs allows 60 requests per minute, so detail fetches are serialized
with a fixed delay between calls.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from typing import TYPE_CHECKING, Any

from vinyl_drop.core.enums import ReleaseSource
from vinyl_drop.core.schema import UNKNOWN_ALBUM, UNKNOWN_ARTIST, ReleaseCandidate
from vinyl_drop.ingestion.adapters.base import AdapterError, BaseAdapter, is_absolute_url

if TYPE_CHECKING:
    from vinyl_drop.ingestion.crawler import Crawler
    from vinyl_drop.ingestion.normalizer import TitleNormalizer
    from vinyl_drop.ingestion.registry import SourceConfig

logger = logging.getLogger(__name__)

DISCOGS_API_URL = "https://api.discogs.com"
DISCOGS_SITE_URL = "https://www.discogs.com"
DEFAULT_REQUEST_DELAY = 1.1  # seconds, keeps us under 60 requests/minute


class DiscogsAdapter(BaseAdapter):
    """
    Adapter for the Discogs database API.

    Custom config:
        request_delay: Seconds between detail fetches (default 1.1)
        consumer_key / consumer_secret: API credentials (fall back to the
            DISCOGS_CONSUMER_KEY / DISCOGS_CONSUMER_SECRET env vars)
        base_url: Override for the API host
    """

    ADAPTER_NAME = "discogs"
    ADAPTER_VERSION = "1.0.0"

    def __init__(
        self,
        config: dict[str, Any] | None = None,
        normalizer: TitleNormalizer | None = None,
    ) -> None:
        super().__init__(config, normalizer)
        self.request_delay = float(self.config.get("request_delay", DEFAULT_REQUEST_DELAY))
        self.base_url = str(self.config.get("base_url", DISCOGS_API_URL)).rstrip("/")
        self._last_request_time: float = 0.0
        self._throttle_lock = asyncio.Lock()

    def _auth_params(self) -> dict[str, str]:
        """Credential query parameters, if any are configured."""
        key = self.config.get("consumer_key") or os.environ.get("DISCOGS_CONSUMER_KEY")
        secret = self.config.get("consumer_secret") or os.environ.get("DISCOGS_CONSUMER_SECRET")
        params = {}
        if key:
            params["key"] = key
        if secret:
            params["secret"] = secret
        return params

    async def _throttle(self) -> None:
        """Enforce the minimum interval between detail requests."""
        now = time.monotonic()
        elapsed = now - self._last_request_time
        if self._last_request_time > 0 and elapsed < self.request_delay:
            await asyncio.sleep(self.request_delay - elapsed)
        self._last_request_time = time.monotonic()

    async def _search(
        self,
        params: dict[str, Any],
        source: SourceConfig,
        crawler: Crawler,
    ) -> list[dict[str, Any]]:
        url = f"{self.base_url}/database/search"
        result = await crawler.fetch_json(
            url,
            source,
            params={"type": "release", "format": "vinyl", **params, **self._auth_params()},
        )
        if not result.success:
            raise AdapterError(f"Discogs search failed: {result.error}", source.name)

        results = result.data.get("results") if isinstance(result.data, dict) else None
        if not isinstance(results, list):
            raise AdapterError("Malformed Discogs search response", source.name)
        if not all(isinstance(hit, dict) for hit in results):
            raise AdapterError("Malformed Discogs search result entry", source.name)
        return results

    async def search_release(
        self,
        artist: str,
        album: str,
        source: SourceConfig,
        crawler: Crawler,
    ) -> dict[str, Any] | None:
        """
        Search for a vinyl release by artist and album text.

        Returns:
            The first (most relevant) search hit, or None if nothing matched
        """
        results = await self._search({"q": f"{artist} {album}"}, source, crawler)
        return results[0] if results else None

    async def get_release_details(
        self,
        release_id: int | str,
        source: SourceConfig,
        crawler: Crawler,
    ) -> dict[str, Any]:
        """
        Fetch the full release record, honoring the inter-call delay.

        Raises:
            AdapterError: If the release cannot be fetched
        """
        async with self._throttle_lock:
            await self._throttle()
            url = f"{self.base_url}/releases/{release_id}"
            result = await crawler.fetch_json(url, source, params=self._auth_params() or None)

        if not result.success or not isinstance(result.data, dict):
            raise AdapterError(
                f"Failed to fetch Discogs release {release_id}: {result.error or 'malformed response'}",
                source.name,
            )
        return result.data

    async def fetch_postings(
        self,
        source: SourceConfig,
        crawler: Crawler,
        limit: int,
    ) -> list[dict[str, Any]]:
        """Fetch details for the most recently added vinyl releases."""
        hits = await self._search(
            {"sort": "added", "sort_order": "desc", "per_page": limit},
            source,
            crawler,
        )

        details = []
        for hit in hits[:limit]:
            release_id = hit.get("id")
            if release_id is None:
                continue
            try:
                details.append(await self.get_release_details(release_id, source, crawler))
            except AdapterError as e:
                logger.warning(str(e))

        logger.info(f"Fetched {len(details)} Discogs release details")
        return details

    async def lookup(
        self,
        artist: str,
        album: str,
        source: SourceConfig,
        crawler: Crawler,
    ) -> ReleaseCandidate | None:
        """
        Find a release by artist and album and map its full detail.

        Returns:
            ReleaseCandidate, or None if Discogs has no match
        """
        hit = await self.search_release(artist, album, source, crawler)
        if not hit or hit.get("id") is None:
            return None
        details = await self.get_release_details(hit["id"], source, crawler)
        return self.map_posting(details)

    def map_posting(self, posting: dict[str, Any]) -> ReleaseCandidate | None:
        """Map a Discogs release detail onto a ReleaseCandidate."""
        release_id = posting.get("id")
        if release_id is None:
            return None

        artists = posting.get("artists") or []
        artist = posting.get("artists_sort") or (artists[0].get("name") if artists else None)

        release_date = self.normalizer.parse_release_date(posting.get("released"))
        if release_date is None and posting.get("year"):
            release_date = self.normalizer.parse_release_date(_as_year(posting.get("year")))

        labels = posting.get("labels") or []
        site_url = self.site_url(posting.get("uri"))

        return ReleaseCandidate(
            artist=artist or UNKNOWN_ARTIST,
            album=posting.get("title") or UNKNOWN_ALBUM,
            label=labels[0].get("name") if labels else None,
            release_date=release_date,
            genres=[*(posting.get("genres") or []), *(posting.get("styles") or [])],
            formats=self.extract_formats(posting),
            price=self.normalizer.parse_price(posting.get("lowest_price")),
            cover_url=self.extract_cover_url(posting),
            purchase_url=site_url,
            description=posting.get("notes") or None,
            source=ReleaseSource.DISCOGS,
            source_id=str(release_id),
            source_url=site_url,
        )

    def extract_formats(self, posting: dict[str, Any]) -> list[str]:
        """Flatten format names and their descriptions, e.g. ["Vinyl", "LP", "Album"]."""
        formats: list[str] = []
        for fmt in posting.get("formats") or []:
            if fmt.get("name"):
                formats.append(fmt["name"])
            formats.extend(d for d in fmt.get("descriptions") or [] if d)
        return formats

    def extract_cover_url(self, posting: dict[str, Any]) -> str | None:
        """
        Pick the cover image: primary image, then first image, then the
        legacy cover field, then the thumbnail.
        """
        images = posting.get("images") or []
        if images:
            primary = next((img for img in images if img.get("type") == "primary"), None)
            chosen = (primary or images[0]).get("uri")
            if is_absolute_url(chosen):
                return chosen

        for key in ("cover_image", "thumb"):
            if is_absolute_url(posting.get(key)):
                return posting[key]
        return None

    def site_url(self, uri: str | None) -> str | None:
        """Absolute discogs.com URL for a release ``uri`` field."""
        if not uri:
            return None
        if is_absolute_url(uri):
            return uri
        return f"{DISCOGS_SITE_URL}{uri if uri.startswith('/') else '/' + uri}"


def _as_year(value: Any) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
