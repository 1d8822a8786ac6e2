"""
Reddit Adapter
==============

Reads a subreddit's public "new" listing and turns each posting title
into a release candidate via the title normalizer.
"""

from __future__ import annotations

import html
import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from vinyl_drop.core.enums import ReleaseSource
from vinyl_drop.core.schema import ReleaseCandidate
from vinyl_drop.ingestion.adapters.base import AdapterError, BaseAdapter, is_absolute_url

if TYPE_CHECKING:
    from vinyl_drop.ingestion.crawler import Crawler
    from vinyl_drop.ingestion.registry import SourceConfig

logger = logging.getLogger(__name__)

REDDIT_BASE_URL = "https://www.reddit.com"

# Values Reddit puts in "thumbnail" when there is no real image
PLACEHOLDER_THUMBNAILS = frozenset({"self", "default", "nsfw", "spoiler", "image", ""})


class RedditAdapter(BaseAdapter):
    """
    Adapter for subreddit listings (e.g. r/VinylReleases, r/VGMvinyl).

    Custom config:
        subreddit: Community name without the "r/" prefix (required)
        allowed_flairs: Optional list of flairs; other postings are dropped
            before parsing
        base_url: Override for the Reddit host
        retailer_domains: Override for the retailer allow-list
    """

    ADAPTER_NAME = "reddit"
    ADAPTER_VERSION = "1.0.0"

    @property
    def subreddit(self) -> str:
        subreddit = self.config.get("subreddit")
        if not subreddit:
            raise AdapterError("Reddit adapter requires a 'subreddit' setting")
        return str(subreddit).removeprefix("r/")

    @property
    def allowed_flairs(self) -> list[str]:
        return list(self.config.get("allowed_flairs") or [])

    @property
    def base_url(self) -> str:
        return str(self.config.get("base_url", REDDIT_BASE_URL)).rstrip("/")

    def listing_url(self) -> str:
        """URL of the subreddit's newest-first JSON listing."""
        return f"{self.base_url}/r/{self.subreddit}/new.json"

    async def fetch_postings(
        self,
        source: SourceConfig,
        crawler: Crawler,
        limit: int,
    ) -> list[dict[str, Any]]:
        """Fetch up to ``limit`` postings from the subreddit listing."""
        url = self.listing_url()
        result = await crawler.fetch_json(url, source, params={"limit": limit})
        if not result.success:
            raise AdapterError(f"Failed to fetch {url}: {result.error}", source.name)

        try:
            children = result.data["data"]["children"]
            postings = [child["data"] for child in children]
        except (KeyError, TypeError) as e:
            raise AdapterError(f"Malformed listing from {url}: missing {e}", source.name) from e

        malformed = sum(1 for posting in postings if not isinstance(posting, dict))
        if malformed:
            logger.warning(f"Dropped {malformed} malformed postings from r/{self.subreddit}")
            postings = [posting for posting in postings if isinstance(posting, dict)]

        logger.info(f"Fetched {len(postings)} postings from r/{self.subreddit}")
        return postings[:limit]

    def accept_posting(self, posting: dict[str, Any]) -> bool:
        """Keep only postings whose flair is allowed (when a filter is set)."""
        allowed = self.allowed_flairs
        if not allowed:
            return True
        flair = posting.get("link_flair_text")
        return bool(flair) and flair in allowed

    def map_posting(self, posting: dict[str, Any]) -> ReleaseCandidate | None:
        """Map a Reddit posting onto a ReleaseCandidate."""
        title = posting.get("title")
        post_id = posting.get("id")
        if not title or not post_id:
            return None

        parsed = self.normalizer.parse(title)
        link = posting.get("url")

        return ReleaseCandidate(
            artist=parsed.artist,
            album=parsed.album,
            genres=parsed.genres,
            formats=parsed.formats,
            price=parsed.price,
            cover_url=self.extract_image_url(posting),
            purchase_url=link if self.is_purchase_url(link) else None,
            description=posting.get("selftext") or None,
            source=ReleaseSource.REDDIT,
            source_id=str(post_id),
            source_url=self.permalink_url(posting),
            subreddit=self.subreddit,
            author=posting.get("author"),
            flair=posting.get("link_flair_text"),
            reddit_score=_as_int(posting.get("score")),
            num_comments=_as_int(posting.get("num_comments")),
            posted_at=_from_epoch(posting.get("created_utc")),
        )

    def permalink_url(self, posting: dict[str, Any]) -> str | None:
        """Absolute URL of the posting's own discussion page."""
        permalink = posting.get("permalink")
        if not permalink:
            return None
        return f"{REDDIT_BASE_URL}{permalink}"

    def extract_image_url(self, posting: dict[str, Any]) -> str | None:
        """
        Pick the best cover image for a posting.

        Prefers the full-size preview image over the thumbnail and
        rejects Reddit's placeholder thumbnail values.

        Args:
            posting: Raw Reddit posting

        Returns:
            Absolute image URL, or None if no usable image exists
        """
        try:
            preview_url = posting["preview"]["images"][0]["source"]["url"]
        except (KeyError, IndexError, TypeError):
            preview_url = None

        if preview_url:
            preview_url = html.unescape(preview_url)
            if is_absolute_url(preview_url):
                return preview_url

        thumbnail = posting.get("thumbnail") or ""
        if thumbnail not in PLACEHOLDER_THUMBNAILS and is_absolute_url(thumbnail):
            return thumbnail

        return None


def _as_int(value: Any) -> int | None:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def _from_epoch(value: Any) -> datetime | None:
    try:
        return datetime.fromtimestamp(float(value), UTC) if value is not None else None
    except (TypeError, ValueError, OverflowError, OSError):
        return None
