"""
event_ingest.normalization.transforms

Normalization utilities used after extraction.
Keep these pure (input -> output), so they're easy to test.

Examples:
- clean text
- canonicalize URL
- free-text dates to ISO 8601
"""

from __future__ import annotations

import re
from datetime import date, datetime, time, timezone
from email.utils import parsedate_to_datetime
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

_WS = re.compile(r"\s+")

TRACKING_PARAMS = (
    "utm_source",
    "utm_medium",
    "utm_campaign",
    "utm_term",
    "utm_content",
    "gclid",
    "fbclid",
    "mc_cid",
    "mc_eid",
)


def normalize_ws(text: str) -> str:
    return _WS.sub(" ", (text or "").strip())


def strip_or_none(x: Any) -> str | None:
    if x is None:
        return None
    s = normalize_ws(str(x))
    return s if s else None


def canonicalize_url(url: str, *, drop_tracking_params: bool = True) -> str:
    """
    Canonical form used as the exact-match dedup key.

    Lowercases scheme and host, drops default ports, fragments and tracking
    params, sorts the query, strips a trailing slash from non-root paths.
    """
    url = (url or "").strip()
    if not url:
        return url

    parts = urlparse(url)
    if not parts.netloc:
        return url

    scheme = (parts.scheme or "http").lower()
    netloc = parts.netloc.lower()

    if netloc.endswith(":80") and scheme == "http":
        netloc = netloc[:-3]
    if netloc.endswith(":443") and scheme == "https":
        netloc = netloc[:-4]

    path = parts.path or "/"
    if len(path) > 1:
        path = path.rstrip("/")

    query_pairs = parse_qsl(parts.query, keep_blank_values=True)
    if drop_tracking_params:
        query_pairs = [(k, v) for (k, v) in query_pairs if k.lower() not in TRACKING_PARAMS]
    query_pairs.sort(key=lambda kv: (kv[0], kv[1]))
    query = urlencode(query_pairs, doseq=True)

    return urlunparse((scheme, netloc, path, parts.params, query, ""))


def is_valid_http_url(url: str | None) -> bool:
    if not url:
        return False
    parts = urlparse(url.strip())
    return parts.scheme in ("http", "https") and bool(parts.netloc) and " " not in url.strip()


# ---------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------

MONTHS = {
    # en / nl / de, keyed by three-letter prefix
    "jan": 1,
    "feb": 2,
    "mar": 3,
    "mrt": 3,
    "mär": 3,
    "maa": 3,
    "apr": 4,
    "may": 5,
    "mei": 5,
    "mai": 5,
    "jun": 6,
    "jul": 7,
    "aug": 8,
    "sep": 9,
    "oct": 10,
    "okt": 10,
    "nov": 11,
    "dec": 12,
    "dez": 12,
}

_ICS_FORMATS = ("%Y%m%dT%H%M%SZ", "%Y%m%dT%H%M%S", "%Y%m%dT%H%MZ", "%Y%m%dT%H%M", "%Y%m%d")
_NUMERIC_DATE_RE = re.compile(r"\b(\d{1,2})[-/.](\d{1,2})[-/.](\d{2,4})\b")
_MONTH_NAME_RE = re.compile(r"\b(\d{1,2})\.?\s+([a-zäé]{3,})\.?(?:\s+(\d{4}))?", re.IGNORECASE)
_TIME_RE = re.compile(r"\b([01]?\d|2[0-3])[:.h]([0-5]\d)\b")
_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}")

# Yearless dates this far in the past roll over to next year.
ROLLOVER_DAYS = 60


def parse_iso(value: str | None) -> datetime | date | None:
    """Parse an ISO-8601 date or datetime; None when ``value`` is not ISO."""
    if not value or not _ISO_DATE_RE.match(value.strip()):
        return None
    s = value.strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    try:
        if len(s) == 10:
            return date.fromisoformat(s)
        return datetime.fromisoformat(s)
    except ValueError:
        return None


def to_utc(moment: datetime | date) -> datetime:
    """
    Express ``moment`` in UTC. Naive datetimes are taken to be UTC already and
    bare dates become midnight UTC.
    """
    if not isinstance(moment, datetime):
        moment = datetime.combine(moment, time.min)
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def is_iso_datetime(value: str | None) -> bool:
    return parse_iso(value) is not None


def _with_time(d: date, text: str) -> str:
    m = _TIME_RE.search(text)
    if not m:
        return d.isoformat()
    return datetime.combine(d, time(int(m.group(1)), int(m.group(2)))).isoformat()


def _roll_year(d: date, reference: date) -> date:
    if (reference - d).days > ROLLOVER_DAYS:
        try:
            return d.replace(year=d.year + 1)
        except ValueError:
            return d
    return d


def normalize_date(text: str | None, *, reference: date | None = None) -> str | None:
    """
    Best-effort conversion of an extracted date string to ISO 8601.

    Handles ISO, iCalendar basic format, RFC 822 (RSS pubDate), numeric
    day-first dates and day + month-name dates in English, Dutch and German.
    Date-only inputs stay date-only. Yearless dates take the reference year,
    rolling into the next year when that would put them well in the past.
    """
    s = strip_or_none(text)
    if not s:
        return None
    reference = reference or date.today()

    iso = parse_iso(s)
    if iso is not None:
        return iso.isoformat()

    for fmt in _ICS_FORMATS:
        try:
            dt = datetime.strptime(s, fmt)
        except ValueError:
            continue
        if fmt == "%Y%m%d":
            return dt.date().isoformat()
        if fmt.endswith("Z"):
            return dt.strftime("%Y-%m-%dT%H:%M:%S") + "Z"
        return dt.isoformat()

    try:
        return parsedate_to_datetime(s).isoformat()
    except (TypeError, ValueError, IndexError):
        pass

    m = _NUMERIC_DATE_RE.search(s)
    if m:
        day, month, year = int(m.group(1)), int(m.group(2)), int(m.group(3))
        if year < 100:
            year += 2000
        try:
            return _with_time(date(year, month, day), s[m.end():])
        except ValueError:
            return None

    for m in _MONTH_NAME_RE.finditer(s):
        month = MONTHS.get(m.group(2).lower()[:3])
        if not month:
            continue
        day = int(m.group(1))
        try:
            if m.group(3):
                d = date(int(m.group(3)), month, day)
            else:
                d = _roll_year(date(reference.year, month, day), reference)
        except ValueError:
            return None
        return _with_time(d, s[m.end():])

    return None
