"""
Unit tests for normalization transforms.
"""

from datetime import date

import pytest

from event_ingest.normalization import (
    canonicalize_url,
    is_iso_datetime,
    is_valid_http_url,
    normalize_date,
    normalize_ws,
    strip_or_none,
)

REFERENCE = date(2026, 1, 10)


class TestNormalizeDate:
    """Tests for normalize_date()."""

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("2026-05-01T20:00:00", "2026-05-01T20:00:00"),
            ("2026-05-01", "2026-05-01"),
            ("20260115T200000", "2026-01-15T20:00:00"),
            ("20260115T200000Z", "2026-01-15T20:00:00Z"),
            ("20260115", "2026-01-15"),
            ("Fri, 15 May 2026 19:30:00 +0200", "2026-05-15T19:30:00+02:00"),
            ("15-05-2026 20:30", "2026-05-15T20:30:00"),
            ("3 juni 2026", "2026-06-03"),
            ("Za 14 mrt. 21:00", "2026-03-14T21:00:00"),
        ],
    )
    def test_formats(self, text, expected):
        assert normalize_date(text, reference=REFERENCE) == expected

    def test_yearless_date_rolls_over(self):
        """A yearless date well in the past belongs to next year."""
        assert normalize_date("5 jan", reference=date(2026, 11, 20)) == "2027-01-05"

    def test_recent_yearless_date_kept(self):
        assert normalize_date("1 nov", reference=date(2026, 11, 20)) == "2026-11-01"

    @pytest.mark.parametrize("text", [None, "", "   ", "TBA", "31-02-2026"])
    def test_unparseable(self, text):
        assert normalize_date(text, reference=REFERENCE) is None

    def test_is_iso_datetime(self):
        assert is_iso_datetime("2026-05-01T20:00:00Z")
        assert not is_iso_datetime("May 1st")


class TestUrls:
    def test_canonicalize(self):
        url = "HTTPS://Venue.Example:443/Events/?utm_source=x&b=2&a=1#top"
        assert canonicalize_url(url) == "https://venue.example/Events?a=1&b=2"

    def test_canonicalize_root_keeps_slash(self):
        assert canonicalize_url("http://venue.example:80") == "http://venue.example/"

    def test_canonicalize_relative_untouched(self):
        assert canonicalize_url("/events/1") == "/events/1"

    @pytest.mark.parametrize(
        "url,expected",
        [
            ("https://venue.example/a.jpg", True),
            ("ftp://venue.example/a.jpg", False),
            ("/img/a.jpg", False),
            ("https://venue.example/a b.jpg", False),
            (None, False),
        ],
    )
    def test_is_valid_http_url(self, url, expected):
        assert is_valid_http_url(url) is expected


class TestText:
    def test_normalize_ws(self):
        assert normalize_ws("  Jazz \n\t Night ") == "Jazz Night"

    def test_strip_or_none(self):
        assert strip_or_none("   ") is None
        assert strip_or_none(42) == "42"
