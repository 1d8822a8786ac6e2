"""Tests for the title normalizer module."""

from datetime import date
from decimal import Decimal

import pytest

from vinyl_drop.core.enums import ReleaseSource
from vinyl_drop.core.schema import UNKNOWN_ALBUM, UNKNOWN_ARTIST, ReleaseCandidate
from vinyl_drop.ingestion.normalizer import ParsedTitle, TitleNormalizer


@pytest.fixture
def normalizer() -> TitleNormalizer:
    """Create a normalizer instance."""
    return TitleNormalizer()


class TestParseExamples:
    """End-to-end parses of typical posting titles."""

    def test_preorder_with_formats_and_price(self, normalizer: TitleNormalizer) -> None:
        """Test a title with a status prefix, format tokens and a price."""
        parsed = normalizer.parse("[Preorder] Tame Impala - Currents [2LP] (Limited to 500) $34.99")

        assert parsed.artist == "Tame Impala"
        assert parsed.album == "Currents"
        assert parsed.formats == ["2LP", "Limited to 500"]
        assert parsed.price == Decimal("34.99")

    def test_descriptor_and_bracket_format(self, normalizer: TitleNormalizer) -> None:
        """Test weight descriptor plus bracketed color format."""
        parsed = normalizer.parse("The Beatles - Abbey Road (180g) [Clear Vinyl]")

        assert parsed.artist == "The Beatles"
        assert parsed.album == "Abbey Road"
        assert "180g" in parsed.formats
        assert "Clear Vinyl" in parsed.formats
        assert parsed.price is None

    def test_no_dash_word_count_fallback(self, normalizer: TitleNormalizer) -> None:
        """Test that a dash-less title splits into a two-word artist."""
        parsed = normalizer.parse("Untitled Jazz Session Vinyl")

        assert parsed.artist == "Untitled Jazz"
        assert parsed.album == "Session"
        assert parsed.formats == []
        assert parsed.genres == ["Jazz"]

    def test_malformed_price(self, normalizer: TitleNormalizer) -> None:
        """Test that non-numeric price text yields no price but still splits."""
        parsed = normalizer.parse("Artist - Album $abc")

        assert parsed.price is None
        assert parsed.artist == "Artist"
        # Not a price, so it is left in place
        assert parsed.album == "Album $abc"

    def test_two_short_words_become_album(self, normalizer: TitleNormalizer) -> None:
        """Test that fewer than three words leave the artist unknown."""
        parsed = normalizer.parse("Kid A")

        assert parsed.artist == UNKNOWN_ARTIST
        assert parsed.album == "Kid A"

    def test_empty_title(self, normalizer: TitleNormalizer) -> None:
        """Test that an empty title degrades to sentinels."""
        parsed = normalizer.parse("")

        assert parsed.artist == UNKNOWN_ARTIST
        assert parsed.album == UNKNOWN_ALBUM
        assert parsed.formats == []
        assert parsed.price is None
        assert parsed.genres == []

    def test_none_title(self, normalizer: TitleNormalizer) -> None:
        """Test that a missing title never raises."""
        parsed = normalizer.parse(None)

        assert isinstance(parsed, ParsedTitle)
        assert parsed.artist == UNKNOWN_ARTIST
        assert parsed.album == UNKNOWN_ALBUM

    def test_original_title_kept(self, normalizer: TitleNormalizer) -> None:
        """Test that the unmodified title is kept for reference."""
        title = "Pre-Order: Radiohead - Kid A [2LP]"
        assert normalizer.parse(title).original_title == title

    def test_en_dash_separator(self, normalizer: TitleNormalizer) -> None:
        """Test splitting on an en dash."""
        parsed = normalizer.parse("Boards of Canada – Geogaddi")

        assert parsed.artist == "Boards of Canada"
        assert parsed.album == "Geogaddi"

    def test_signed_note_removed(self, normalizer: TitleNormalizer) -> None:
        """Test that signing notes never reach the album."""
        parsed = normalizer.parse("Phoebe Bridgers - Punisher (Signed) $30")

        assert parsed.album == "Punisher"
        assert parsed.price == Decimal("30")


class TestStripNoise:
    """Tests for prefix/note stripping."""

    def test_preorder_colon_prefix(self, normalizer: TitleNormalizer) -> None:
        """Test removing a "Pre-Order:" prefix."""
        assert normalizer.strip_noise("Pre-Order: Radiohead - Kid A") == "Radiohead - Kid A"

    def test_bracketed_new_release_prefix(self, normalizer: TitleNormalizer) -> None:
        """Test removing a bracketed "New Release" prefix."""
        assert normalizer.strip_noise("[New Release] Big Thief - Dragon") == "Big Thief - Dragon"

    def test_status_suffix(self, normalizer: TitleNormalizer) -> None:
        """Test removing a bracketed status marker at the end."""
        assert normalizer.strip_noise("Boards of Canada - Geogaddi [Restock]") == (
            "Boards of Canada - Geogaddi"
        )

    def test_exclusive_note(self, normalizer: TitleNormalizer) -> None:
        """Test removing a store-exclusivity note."""
        assert normalizer.strip_noise("Lorde - Melodrama (Target Exclusive)") == "Lorde - Melodrama"

    def test_trailing_vinyl(self, normalizer: TitleNormalizer) -> None:
        """Test removing a trailing redundant "vinyl"."""
        assert normalizer.strip_noise("Daft Punk - Discovery Vinyl") == "Daft Punk - Discovery"

    def test_no_noise_unchanged(self, normalizer: TitleNormalizer) -> None:
        """Test that a clean title passes through."""
        assert normalizer.strip_noise("Radiohead - Kid A") == "Radiohead - Kid A"


class TestFormatExtraction:
    """Tests for bracket and parenthetical format extraction."""

    def test_bracket_format_extracted(self, normalizer: TitleNormalizer) -> None:
        """Test that a format token in brackets is pulled out."""
        text, formats = normalizer.extract_bracket_formats("Currents [2LP]")

        assert text == "Currents"
        assert formats == ["2LP"]

    def test_non_format_bracket_kept(self, normalizer: TitleNormalizer) -> None:
        """Test that a non-format bracket group stays in the text."""
        text, formats = normalizer.extract_bracket_formats("Album [Deluxe Edition] [2LP]")

        assert text == "Album [Deluxe Edition]"
        assert formats == ["2LP"]

    def test_multiple_brackets_in_order(self, normalizer: TitleNormalizer) -> None:
        """Test that formats keep their order of appearance."""
        _, formats = normalizer.extract_bracket_formats('Album [Picture Disc] [12"]')
        assert formats == ["Picture Disc", '12"']

    def test_descriptor_extracted(self, normalizer: TitleNormalizer) -> None:
        """Test that a weight descriptor in parentheses is pulled out."""
        text, formats = normalizer.extract_descriptors("Abbey Road (Remastered) (180g)")

        assert text == "Abbey Road (Remastered)"
        assert formats == ["180g"]

    def test_color_descriptor(self, normalizer: TitleNormalizer) -> None:
        """Test that a color variant counts as a descriptor."""
        assert normalizer.is_format_descriptor("Red Vinyl")
        assert normalizer.is_format_descriptor("Blue Marble")
        assert not normalizer.is_format_descriptor("Remastered")

    def test_is_format(self, normalizer: TitleNormalizer) -> None:
        """Test the bracket format allow-list."""
        assert normalizer.is_format("2xLP")
        assert normalizer.is_format('7" Single')
        assert normalizer.is_format("Clear Vinyl")
        assert not normalizer.is_format("Deluxe Edition")


class TestPriceExtraction:
    """Tests for price extraction."""

    def test_dollar_price(self, normalizer: TitleNormalizer) -> None:
        """Test a "$N" price."""
        text, price = normalizer.extract_price("Currents $34.99")

        assert price == Decimal("34.99")
        assert text == "Currents"

    def test_usd_price(self, normalizer: TitleNormalizer) -> None:
        """Test an "N USD" price."""
        text, price = normalizer.extract_price("Currents 30 USD")

        assert price == Decimal("30")
        assert text == "Currents"

    def test_all_amounts_stripped(self, normalizer: TitleNormalizer) -> None:
        """Test that only the first amount is the price but all are removed."""
        text, price = normalizer.extract_price("Album $25 was $40")

        assert price == Decimal("25")
        assert "$" not in text

    def test_leftmost_match_wins(self, normalizer: TitleNormalizer) -> None:
        """Test that the leftmost amount of either pattern becomes the price."""
        text, price = normalizer.extract_price("Album 30 USD $25")

        assert price == Decimal("30")
        assert "USD" not in text
        assert "$" not in text

    def test_no_price(self, normalizer: TitleNormalizer) -> None:
        """Test text without any amount."""
        assert normalizer.extract_price("Kid A") == ("Kid A", None)

    @pytest.mark.parametrize("value", ["abc", "NaN", "Infinity", "-5", "", None, True])
    def test_parse_price_rejects_malformed(self, normalizer: TitleNormalizer, value) -> None:
        """Test that malformed prices yield None instead of raising."""
        assert normalizer.parse_price(value) is None

    def test_parse_price_numbers(self, normalizer: TitleNormalizer) -> None:
        """Test numeric price values."""
        assert normalizer.parse_price("19.99") == Decimal("19.99")
        assert normalizer.parse_price(28.5) == Decimal("28.5")
        assert normalizer.parse_price(20) == Decimal("20")

    @pytest.mark.parametrize("value", ["0", "0.00", 0, Decimal("0")])
    def test_parse_price_zero_is_missing(self, normalizer: TitleNormalizer, value) -> None:
        """Test that a zero amount carries no price."""
        assert normalizer.parse_price(value) is None

    def test_zero_price_title_still_parses(self, normalizer: TitleNormalizer) -> None:
        """Test that a $0 title keeps its artist and album with no price."""
        result = normalizer.parse("Artist - Free Album $0")

        assert result.artist == "Artist"
        assert result.album == "Free Album"
        assert result.price is None


class TestSplitAndCleanup:
    """Tests for separator normalization, splitting and cleanup."""

    def test_normalize_dashes(self, normalizer: TitleNormalizer) -> None:
        """Test that dash variants become " - "."""
        assert normalizer.normalize_separators("Artist—Album") == "Artist - Album"
        assert normalizer.normalize_separators("Artist  –   Album") == "Artist - Album"

    def test_collapse_whitespace(self, normalizer: TitleNormalizer) -> None:
        """Test whitespace collapsing."""
        assert normalizer.normalize_separators("  Kid    A  ") == "Kid A"

    def test_split_on_first_separator(self, normalizer: TitleNormalizer) -> None:
        """Test that only the first separator splits."""
        assert normalizer.split_artist_album("Artist - Album - Live") == ("Artist", "Album - Live")

    def test_split_word_count(self, normalizer: TitleNormalizer) -> None:
        """Test the dash-less three-word split."""
        assert normalizer.split_artist_album("Sufjan Stevens Carrie Lowell") == (
            "Sufjan Stevens",
            "Carrie Lowell",
        )

    def test_clean_artist_leading_the(self, normalizer: TitleNormalizer) -> None:
        """Test leading "the" capitalization."""
        assert normalizer.clean_artist("the national") == "The national"
        assert normalizer.clean_artist("THE Cure") == "The Cure"

    def test_clean_artist_empty(self, normalizer: TitleNormalizer) -> None:
        """Test that an empty artist becomes the sentinel."""
        assert normalizer.clean_artist("[ ]") == UNKNOWN_ARTIST

    def test_clean_album_dash_remnants(self, normalizer: TitleNormalizer) -> None:
        """Test trimming dash remnants and brackets from an album."""
        assert normalizer.clean_album("- Currents (  -") == "Currents"
        assert normalizer.clean_album("") == UNKNOWN_ALBUM


class TestGenreScan:
    """Tests for the genre keyword scan."""

    def test_genre_dedup(self, normalizer: TitleNormalizer) -> None:
        """Test that repeated keywords yield one label."""
        parsed = normalizer.parse("Hip-Hop Classics - Hip-Hop Vol. 1")
        assert parsed.genres.count("Hip-Hop") == 1

    def test_synonyms_collapse(self, normalizer: TitleNormalizer) -> None:
        """Test that keyword variants map to one canonical label."""
        assert normalizer.scan_genres("hip hop and hip-hop") == ["Hip-Hop"]

    def test_scans_original_title(self, normalizer: TitleNormalizer) -> None:
        """Test that stripped tokens still contribute genres."""
        parsed = normalizer.parse("Khruangbin - Mordechai (Soul Edition)")
        assert "Soul" in parsed.genres

    def test_full_title_used_for_scan(self, normalizer: TitleNormalizer) -> None:
        """Test that a full title overrides the scanned text."""
        parsed = normalizer.parse("Artist - Album", full_title="Artist - Album | indie rock")
        assert parsed.genres == ["Indie", "Rock"]

    def test_r_and_b(self, normalizer: TitleNormalizer) -> None:
        """Test symbol-bearing keywords."""
        assert normalizer.scan_genres("SZA - SOS (R&B)") == ["R&B"]


class TestHelpers:
    """Tests for store-name and release-date helpers."""

    def test_store_names(self, normalizer: TitleNormalizer) -> None:
        """Test store-name detection on artist values."""
        assert normalizer.looks_like_store_name("Amazon Exclusive")
        assert normalizer.looks_like_store_name("  Rough Trade ")
        assert not normalizer.looks_like_store_name("Radiohead")

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("2019-03-15", date(2019, 3, 15)),
            ("2019-00-00", date(2019, 1, 1)),
            ("2019-03-00", date(2019, 3, 1)),
            ("2019", date(2019, 1, 1)),
            (2019, date(2019, 1, 1)),
            ("2019-02-30", date(2019, 1, 1)),
            ("unknown", None),
            (None, None),
        ],
    )
    def test_parse_release_date(self, normalizer: TitleNormalizer, value, expected) -> None:
        """Test release date parsing across source formats."""
        assert normalizer.parse_release_date(value) == expected


class TestReleaseCandidateDefaults:
    """Tests for candidate-level normalization."""

    def test_formats_default_to_vinyl(self, normalizer: TitleNormalizer) -> None:
        """Test that zero extracted formats become ["Vinyl"]."""
        parsed = normalizer.parse("Radiohead - Kid A")
        candidate = ReleaseCandidate(
            artist=parsed.artist,
            album=parsed.album,
            formats=parsed.formats,
            source=ReleaseSource.REDDIT,
            source_id="t3_1",
        )
        assert candidate.formats == ["Vinyl"]

    def test_blank_names_become_sentinels(self) -> None:
        """Test that blank artist/album values fall back to sentinels."""
        candidate = ReleaseCandidate(artist="  ", album="", source="reddit", source_id="1")

        assert candidate.artist == UNKNOWN_ARTIST
        assert candidate.album == UNKNOWN_ALBUM

    def test_genres_deduplicated(self) -> None:
        """Test that candidate genres have set semantics."""
        candidate = ReleaseCandidate(
            genres=["Rock", "Jazz", "Rock"], source="discogs", source_id="1"
        )
        assert candidate.genres == ["Rock", "Jazz"]

    def test_identity_is_normalized(self) -> None:
        """Test the lower/trim-normalized dedup identity."""
        candidate = ReleaseCandidate(
            artist=" Tame Impala ", album="CURRENTS", source="reddit", source_id="1"
        )
        assert candidate.identity == ("tame impala", "currents", "reddit")
