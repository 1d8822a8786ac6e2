"""
Adapter Base Module
===================

Defines the abstract base class for source-specific adapters.
Adapters are responsible for:
1. Fetching raw postings from a source
2. Mapping one raw posting onto a ReleaseCandidate
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import date
from typing import TYPE_CHECKING, Any
from urllib.parse import urlparse

from vinyl_drop.core.schema import ReleaseCandidate
from vinyl_drop.ingestion.normalizer import TitleNormalizer

if TYPE_CHECKING:
    from vinyl_drop.ingestion.crawler import Crawler
    from vinyl_drop.ingestion.registry import SourceConfig


# Hosts whose links count as a place to buy the record
RETAILER_DOMAINS: tuple[str, ...] = (
    "bandcamp.com",
    "amazon.com",
    "roughtrade.com",
    "discogs.com",
    "merchbar.com",
    "turntablelab.com",
    "urbanoutfitters.com",
    "target.com",
)


class AdapterError(Exception):
    """Raised when an adapter cannot fetch or read its source."""

    def __init__(self, message: str, source_name: str | None = None) -> None:
        super().__init__(message)
        self.source_name = source_name


def is_absolute_url(url: str | None) -> bool:
    """Check that a value is an absolute http(s) URL."""
    if not url or not isinstance(url, str):
        return False
    parsed = urlparse(url)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def host_matches(url: str | None, domains: tuple[str, ...] | list[str]) -> bool:
    """
    Check if a URL's host is one of the domains or a subdomain of one.

    Args:
        url: URL to check
        domains: Allowed registrable domains (e.g., "bandcamp.com")

    Returns:
        True if the host matches an allowed domain
    """
    if not is_absolute_url(url):
        return False
    host = (urlparse(url).hostname or "").lower()
    return any(host == d or host.endswith(f".{d}") for d in domains)


class BaseAdapter(ABC):
    """
    Abstract base class for source-specific adapters.

    Subclasses must implement:
    - fetch_postings: Fetch raw postings from the source
    - map_posting: Map one raw posting to a ReleaseCandidate

    Adapters keep no state between runs; each fetch returns its own list.
    """

    ADAPTER_NAME: str = "base"
    ADAPTER_VERSION: str = "1.0.0"

    def __init__(
        self,
        config: dict[str, Any] | None = None,
        normalizer: TitleNormalizer | None = None,
    ) -> None:
        """
        Initialize the adapter.

        Args:
            config: Optional custom configuration from sources.yaml
            normalizer: Title normalizer (a default one is created if omitted)
        """
        self.config = config or {}
        self.normalizer = normalizer or TitleNormalizer()

    @property
    def retailer_domains(self) -> tuple[str, ...]:
        """Retailer allow-list, overridable per source."""
        domains = self.config.get("retailer_domains")
        return tuple(domains) if domains else RETAILER_DOMAINS

    @abstractmethod
    async def fetch_postings(
        self,
        source: SourceConfig,
        crawler: Crawler,
        limit: int,
    ) -> list[dict[str, Any]]:
        """
        Fetch raw postings from the source.

        Args:
            source: Source configuration
            crawler: Rate-limited fetcher
            limit: Maximum number of postings to fetch

        Returns:
            List of raw postings as decoded JSON objects

        Raises:
            AdapterError: If the source cannot be fetched or read
        """
        pass

    @abstractmethod
    def map_posting(self, posting: dict[str, Any]) -> ReleaseCandidate | None:
        """
        Map one raw posting onto a ReleaseCandidate.

        Args:
            posting: Raw posting as returned by fetch_postings

        Returns:
            ReleaseCandidate, or None if the posting carries no release
        """
        pass

    def accept_posting(self, posting: dict[str, Any]) -> bool:
        """
        Decide whether a posting should be parsed at all.

        Runs before map_posting; override to filter by source tags.
        """
        return True

    def is_purchase_url(self, url: str | None) -> bool:
        """Check if a link points at a known retailer."""
        return host_matches(url, self.retailer_domains)

    def validate_candidate(self, candidate: ReleaseCandidate) -> list[str]:
        """
        Validate a mapped candidate.

        Override this method to add adapter-specific validation.

        Args:
            candidate: Candidate to validate

        Returns:
            List of validation error messages (empty if valid)
        """
        errors = []

        if not candidate.source_id:
            errors.append("Missing source id")

        if candidate.price is not None and candidate.price <= 0:
            errors.append(f"Invalid price: {candidate.price}")

        for field_name in ("release_date", "preorder_date"):
            value: date | None = getattr(candidate, field_name)
            if value is not None and not 1900 <= value.year <= 2100:
                errors.append(f"Invalid {field_name}: {value}")

        for field_name in ("cover_url", "purchase_url", "source_url"):
            value_url = getattr(candidate, field_name)
            if value_url is not None and not is_absolute_url(value_url):
                errors.append(f"Invalid {field_name}: {value_url}")

        return errors

    def get_info(self) -> dict[str, str]:
        """Get adapter information."""
        return {
            "name": self.ADAPTER_NAME,
            "version": self.ADAPTER_VERSION,
            "class": self.__class__.__name__,
        }
