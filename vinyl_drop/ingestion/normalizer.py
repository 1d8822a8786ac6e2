"""
Title Normalizer Module
=======================

Turns free-form release posting titles into structured fields
(artist, album, formats, price, genre tags).

The stages run in a fixed order on a progressively cleaned copy of the
title, while the genre keyword scan always reads the original title:

1. Noise stripping (order-status prefixes, signing/exclusivity notes,
   trailing "vinyl")
2. Bracketed format extraction, e.g. "[2LP]"
3. Parenthetical descriptor extraction, e.g. "(180g)"
4. Price extraction ("$34.99", "30 USD")
5. Whitespace/dash normalization
6. Artist/album split
7. Field cleanup with sentinel fallback
8. Genre keyword scan
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Callable

from vinyl_drop.core.schema import UNKNOWN_ALBUM, UNKNOWN_ARTIST


@dataclass
class ParsedTitle:
    """Structured fields extracted from one posting title."""

    artist: str = UNKNOWN_ARTIST
    album: str = UNKNOWN_ALBUM
    formats: list[str] = field(default_factory=list)
    price: Decimal | None = None
    genres: list[str] = field(default_factory=list)

    # Title before any stripping (for reference)
    original_title: str = ""


class TitleNormalizer:
    """
    Parses release posting titles into structured fields.

    Never raises on malformed input: a stage that finds nothing leaves
    the working string unchanged and contributes nothing.
    """

    # Bump whenever one of the tables below changes; stored on every row.
    TABLES_VERSION: str = "1.0.0"

    # Order-status markers anchored at the start of the title
    PREFIX_PATTERNS: list[re.Pattern[str]] = [
        re.compile(
            r"^\[?\s*(?:pre-?order|preorder|new release|restock(?:ed)?|reissue|available now)"
            r"\s*:?\s*\]?\s*",
            re.I,
        ),
        re.compile(r"^pre\s*-?\s*order\s*:?\s*", re.I),
    ]

    # Order-status markers anchored at the end of the title
    SUFFIX_PATTERNS: list[re.Pattern[str]] = [
        re.compile(
            r"\s*[\[(]\s*(?:pre-?order|new release|restock(?:ed)?|reissue|available now)\s*[\])]\s*$",
            re.I,
        ),
    ]

    # Signing and store-exclusivity notes, with their replacement text
    NOTE_PATTERNS: list[tuple[re.Pattern[str], str]] = [
        (re.compile(r"\s*\(signed\)", re.I), ""),
        (re.compile(r"\s*\(autographed?\)", re.I), ""),
        (re.compile(r"\s*signed\s+jacket", re.I), ""),
        (re.compile(r"\s*w/\s*signed\s+", re.I), " "),
        (re.compile(r"\s*\(target exclusive\)", re.I), ""),
        (re.compile(r"\s*\(uo exclusive\)", re.I), ""),
        (re.compile(r"\s*\(indie exclusive\)", re.I), ""),
        (re.compile(r"\s*\(walmart exclusive\)", re.I), ""),
    ]

    TRAILING_VINYL_PATTERN: re.Pattern[str] = re.compile(r"\s+vinyl\s*$", re.I)

    # Substrings that mark a [...] group as a format token
    FORMAT_KEYWORDS: tuple[str, ...] = (
        "vinyl", "lp", "ep", '7"', '10"', '12"',
        "single", "double lp", "2lp", "2xlp", "3lp",
        "picture disc", "colored vinyl", "clear vinyl",
    )

    # Substrings that mark a (...) group as a format descriptor
    DESCRIPTOR_KEYWORDS: tuple[str, ...] = (
        "colored", "clear", "transparent", "opaque",
        "splatter", "marble", "swirl", "smoke",
        "red vinyl", "blue vinyl", "green vinyl", "yellow vinyl",
        "white vinyl", "black vinyl", "pink vinyl", "purple vinyl",
        "orange vinyl", "gold vinyl", "silver vinyl",
        "limited to", "ltd", "/500", "/1000", "/300",
        "180g", "140g", "gram", "heavyweight",
    )

    # Keyword -> canonical genre label, matched against the lower-cased title
    GENRE_KEYWORDS: dict[str, str] = {
        "indie": "Indie",
        "rock": "Rock",
        "metal": "Metal",
        "electronic": "Electronic",
        "jazz": "Jazz",
        "hip-hop": "Hip-Hop",
        "hip hop": "Hip-Hop",
        "punk": "Punk",
        "folk": "Folk",
        "pop": "Pop",
        "classical": "Classical",
        "country": "Country",
        "r&b": "R&B",
        "soul": "Soul",
        "funk": "Funk",
        "ambient": "Ambient",
        "experimental": "Experimental",
        "blues": "Blues",
        "reggae": "Reggae",
        "soundtrack": "Soundtrack",
    }

    # Retailers whose names end up in the artist field when a title is misparsed
    STORE_NAMES: tuple[str, ...] = (
        "amazon", "bandcamp", "ebay", "discogs", "rough trade", "roughtrade",
        "urban outfitters", "target", "walmart", "best buy", "turntable lab",
        "merchbar", "bull moose", "newbury comics", "amoeba", "record store",
        "vinyl me please", "vmp", "sound of vinyl", "udiscover", "importcds",
    )

    BRACKET_GROUP_PATTERN: re.Pattern[str] = re.compile(r"\[([^\]]+)\]")
    PAREN_GROUP_PATTERN: re.Pattern[str] = re.compile(r"\(([^)]+)\)")
    PRICE_PATTERN: re.Pattern[str] = re.compile(r"\$\s*(\d+\.?\d*)|(\d+\.?\d*)\s*USD", re.I)
    DOLLAR_AMOUNT_PATTERN: re.Pattern[str] = re.compile(r"\$\s*\d+\.?\d*")
    USD_AMOUNT_PATTERN: re.Pattern[str] = re.compile(r"\d+\.?\d*\s*USD", re.I)
    DASH_PATTERN: re.Pattern[str] = re.compile(r"\s*[-–—]\s*")
    SPLIT_PATTERN: re.Pattern[str] = re.compile(r"^([^-]+?)\s*-\s*(.+?)$")
    LEADING_THE_PATTERN: re.Pattern[str] = re.compile(r"^\s*the\s+", re.I)
    BRACKET_CHARS_PATTERN: re.Pattern[str] = re.compile(r"[\[\](){}]")
    EDGE_DASHES_PATTERN: re.Pattern[str] = re.compile(r"^[-–—\s]+|[-–—\s]+$")

    def parse(self, title: str | None, full_title: str | None = None) -> ParsedTitle:
        """
        Parse a posting title into structured fields.

        Args:
            title: Raw title text
            full_title: Optional longer copy of the title used only for the
                genre keyword scan (defaults to ``title``)

        Returns:
            ParsedTitle; formats may be empty and artist/album may be the
            "Unknown" sentinels
        """
        original = title or ""
        result = ParsedTitle(original_title=original)

        cleaned = self.strip_noise(original)
        cleaned, bracket_formats = self.extract_bracket_formats(cleaned)
        cleaned, descriptor_formats = self.extract_descriptors(cleaned)
        result.formats = bracket_formats + descriptor_formats
        cleaned, result.price = self.extract_price(cleaned)
        cleaned = self.normalize_separators(cleaned)

        artist, album = self.split_artist_album(cleaned)
        result.artist = self.clean_artist(artist)
        result.album = self.clean_album(album)

        result.genres = self.scan_genres(full_title if full_title is not None else original)
        return result

    def strip_noise(self, title: str) -> str:
        """
        Remove order-status markers, signing/exclusivity notes and a
        trailing redundant "vinyl".

        All prefix/suffix rules run first, then the note rules, then the
        trailing-vinyl rule.
        """
        cleaned = title
        for pattern in self.PREFIX_PATTERNS:
            cleaned = pattern.sub("", cleaned)
        for pattern in self.SUFFIX_PATTERNS:
            cleaned = pattern.sub("", cleaned)
        for pattern, replacement in self.NOTE_PATTERNS:
            cleaned = pattern.sub(replacement, cleaned)
        cleaned = self.TRAILING_VINYL_PATTERN.sub("", cleaned)
        return cleaned.strip()

    def is_format(self, text: str) -> bool:
        """Check if bracketed text names a physical format."""
        lowered = text.lower()
        return any(keyword in lowered for keyword in self.FORMAT_KEYWORDS)

    def is_format_descriptor(self, text: str) -> bool:
        """Check if parenthetical text describes a pressing (color, weight, run size)."""
        lowered = text.lower()
        return any(keyword in lowered for keyword in self.DESCRIPTOR_KEYWORDS)

    def extract_bracket_formats(self, text: str) -> tuple[str, list[str]]:
        """
        Pull format tokens out of ``[...]`` groups.

        Non-format groups stay in place since they may belong to the album title.

        Returns:
            Tuple of (remaining text, formats in order of appearance)
        """
        return self._extract_groups(text, self.BRACKET_GROUP_PATTERN, self.is_format)

    def extract_descriptors(self, text: str) -> tuple[str, list[str]]:
        """
        Pull format descriptors out of ``(...)`` groups.

        Returns:
            Tuple of (remaining text, descriptors in order of appearance)
        """
        return self._extract_groups(text, self.PAREN_GROUP_PATTERN, self.is_format_descriptor)

    def _extract_groups(
        self,
        text: str,
        pattern: re.Pattern[str],
        predicate: Callable[[str], bool],
    ) -> tuple[str, list[str]]:
        found: list[str] = []
        for match in pattern.finditer(text):
            content = match.group(1)
            if predicate(content):
                found.append(content.strip())
                text = text.replace(match.group(0), "", 1).strip()
        return text, found

    def extract_price(self, text: str) -> tuple[str, Decimal | None]:
        """
        Extract the first price and strip every amount from the text.

        Returns:
            Tuple of (text without amounts, price or None)
        """
        match = self.PRICE_PATTERN.search(text)
        if match is None:
            return text, None

        price = self.parse_price(match.group(1) or match.group(2))
        text = self.DOLLAR_AMOUNT_PATTERN.sub("", text)
        text = self.USD_AMOUNT_PATTERN.sub("", text)
        return text.strip(), price

    def parse_price(self, value: Any) -> Decimal | None:
        """
        Parse a price value into a Decimal.

        Args:
            value: Price as string, int, float or Decimal

        Returns:
            Decimal price, or None if the value is malformed or not positive
        """
        if value is None or isinstance(value, bool):
            return None
        try:
            price = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            return None
        if not price.is_finite() or price <= 0:
            return None
        return price

    def normalize_separators(self, text: str) -> str:
        """Collapse whitespace and turn any dash variant into " - "."""
        text = re.sub(r"\s+", " ", text)
        text = self.DASH_PATTERN.sub(" - ", text)
        return text.strip()

    def split_artist_album(self, text: str) -> tuple[str, str]:
        """
        Split normalized text into (artist, album) candidates.

        Splits on the first " - ". Without a separator, three or more
        words give a two-word artist and the rest as album; anything
        shorter becomes the album with an unknown artist.
        """
        match = self.SPLIT_PATTERN.match(text)
        if match:
            return match.group(1), match.group(2)

        words = text.split()
        if len(words) >= 3:
            return " ".join(words[:2]), " ".join(words[2:])
        return UNKNOWN_ARTIST, text

    def clean_artist(self, name: str) -> str:
        """Canonicalize a leading "the", drop bracket characters, collapse whitespace."""
        name = self.LEADING_THE_PATTERN.sub("The ", name)
        name = self.BRACKET_CHARS_PATTERN.sub("", name)
        name = re.sub(r"\s+", " ", name).strip()
        return name or UNKNOWN_ARTIST

    def clean_album(self, name: str) -> str:
        """Drop bracket characters, collapse whitespace, trim dash remnants."""
        name = self.BRACKET_CHARS_PATTERN.sub("", name)
        name = re.sub(r"\s+", " ", name)
        name = self.EDGE_DASHES_PATTERN.sub("", name).strip()
        return name or UNKNOWN_ALBUM

    def scan_genres(self, title: str) -> list[str]:
        """
        Collect canonical genre labels for every keyword found in the title.

        Each label appears at most once however often its keywords occur.
        """
        lowered = title.lower()
        genres: list[str] = []
        for keyword, genre in self.GENRE_KEYWORDS.items():
            if keyword in lowered and genre not in genres:
                genres.append(genre)
        return genres

    def looks_like_store_name(self, artist: str) -> bool:
        """Check if an artist value starts with a known retailer name."""
        lowered = artist.strip().lower()
        return any(lowered.startswith(store) for store in self.STORE_NAMES)

    def parse_release_date(self, value: str | int | None) -> date | None:
        """
        Parse a release date from the formats sources report.

        Accepts "YYYY-MM-DD", partial dates with zeroed parts
        ("2019-00-00", "2019-03-00") and bare years; a bare year maps to
        January 1st of that year.

        Args:
            value: Date string or year

        Returns:
            date, or None if nothing usable was found
        """
        if value is None:
            return None

        if isinstance(value, int):
            return date(value, 1, 1) if 1000 <= value <= 9999 else None

        match = re.match(r"^\s*(\d{4})(?:-(\d{1,2}))?(?:-(\d{1,2}))?", str(value))
        if not match:
            return None

        year = int(match.group(1))
        month = int(match.group(2) or 0) or 1
        day = int(match.group(3) or 0) or 1
        try:
            return date(year, month, day)
        except ValueError:
            try:
                return date(year, 1, 1)
            except ValueError:
                return None
