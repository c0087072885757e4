from event_ingest.normalization.transforms import (
    canonicalize_url,
    is_iso_datetime,
    is_valid_http_url,
    normalize_date,
    normalize_ws,
    parse_iso,
    strip_or_none,
)

__all__ = [
    "canonicalize_url",
    "is_iso_datetime",
    "is_valid_http_url",
    "normalize_date",
    "normalize_ws",
    "parse_iso",
    "strip_or_none",
]
