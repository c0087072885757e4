"""
event_ingest.extraction.hydration

Priority 1: application state embedded by server-rendering frameworks
(Next.js, Nuxt, Redux-style preloaded state). When present it is the most
accurate source on the page, so it runs first.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from typing import Any

from event_ingest.schemas.event import RawEventCard
from event_ingest.schemas.pipeline import ExtractionStrategy

from .base import ExtractionContext, ExtractionResult, load_json_lenient, resolve_url, run_strategy, snapshot

logger = logging.getLogger(__name__)

MAX_DEPTH = 10


def _assignment(name: str) -> re.Pattern:
    return re.compile(rf"window\.{name}\s*=\s*(\{{.*?\}});?\s*</script>", re.IGNORECASE | re.DOTALL)


HYDRATION_MARKERS: tuple[tuple[str, re.Pattern], ...] = (
    (
        "__NEXT_DATA__",
        re.compile(r"<script[^>]*\bid=[\"']__NEXT_DATA__[\"'][^>]*>(.*?)</script>", re.IGNORECASE | re.DOTALL),
    ),
    ("__NUXT__", _assignment("__NUXT__")),
    (
        "__NUXT_DATA__",
        re.compile(r"<script[^>]*\bid=[\"']__NUXT_DATA__[\"'][^>]*>(.*?)</script>", re.IGNORECASE | re.DOTALL),
    ),
    ("__INITIAL_STATE__", _assignment("__INITIAL_STATE__")),
    ("__PRELOADED_STATE__", _assignment("__PRELOADED_STATE__")),
    ("__APP_DATA__", _assignment("__APP_DATA__")),
)

# ============================================================================
# KEY ALIASES
# ============================================================================

TITLE_KEYS = ("title", "name", "eventName", "headline")
DATE_KEYS = ("date", "startDate", "start_date", "eventDate", "datetime", "start")
LOCATION_KEYS = ("venue", "location", "place", "address")
DESCRIPTION_KEYS = ("description", "excerpt", "summary", "content")
URL_KEYS = ("url", "link", "href", "detailUrl", "eventUrl")
IMAGE_KEYS = ("image", "imageUrl", "thumbnail", "picture", "photo")

# Substrings that mark a key as a likely container of events.
CONTAINER_KEYWORDS = ("event", "agenda", "concert", "show", "performance", "match", "game")
CONTAINER_KEYS = ("data", "items")


def is_event_like(obj: Any) -> bool:
    """A mapping with a title key and at least a date or a location key."""
    if not isinstance(obj, Mapping):
        return False
    has_title = any(k in obj for k in TITLE_KEYS)
    has_date = any(k in obj for k in DATE_KEYS)
    has_location = any(k in obj for k in LOCATION_KEYS)
    return has_title and (has_date or has_location)


def is_container_key(key: str) -> bool:
    key_lower = key.lower()
    return key_lower in CONTAINER_KEYS or any(k in key_lower for k in CONTAINER_KEYWORDS)


def lookup_string(obj: Mapping[str, Any], keys: tuple[str, ...]) -> str:
    """
    First string value among ``keys``.

    Nested mappings contribute their ``name`` or ``text`` member, which covers
    shapes like ``{"venue": {"name": "Paradiso"}}``.
    """
    for key in keys:
        value = obj.get(key)
        if isinstance(value, str):
            return value
        if isinstance(value, Mapping):
            for inner in ("name", "text"):
                if value.get(inner) is not None:
                    return str(value[inner])
    return ""


def to_event_card(obj: Mapping[str, Any], base_url: str) -> RawEventCard | None:
    title = lookup_string(obj, TITLE_KEYS).strip()
    if not title:
        return None
    image_url = resolve_url(lookup_string(obj, IMAGE_KEYS), base_url)
    return RawEventCard(
        title=title,
        date=lookup_string(obj, DATE_KEYS).strip(),
        location=lookup_string(obj, LOCATION_KEYS).strip(),
        description=lookup_string(obj, DESCRIPTION_KEYS).strip(),
        detail_url=resolve_url(lookup_string(obj, URL_KEYS), base_url),
        image_url=image_url or None,
        raw_html=snapshot(obj),
    )


def find_events(obj: Any, base_url: str, depth: int = 0) -> list[RawEventCard]:
    """
    Recursively collect event-like mappings from a decoded payload.

    Container-looking keys are searched first; only when they yield nothing
    is every key searched. Results accumulate and are returned together.
    """
    if depth > MAX_DEPTH:
        return []

    events: list[RawEventCard] = []

    if isinstance(obj, list):
        for item in obj:
            if is_event_like(item):
                card = to_event_card(item, base_url)
                if card:
                    events.append(card)
            else:
                events.extend(find_events(item, base_url, depth + 1))
        return events

    if not isinstance(obj, Mapping):
        return events

    if is_event_like(obj):
        card = to_event_card(obj, base_url)
        if card:
            events.append(card)

    for key, value in obj.items():
        if is_container_key(str(key)):
            events.extend(find_events(value, base_url, depth + 1))

    if not events:
        for value in obj.values():
            events.extend(find_events(value, base_url, depth + 1))

    return events


def _extract(html: str, ctx: ExtractionContext) -> list[RawEventCard]:
    for name, pattern in HYDRATION_MARKERS:
        match = pattern.search(html)
        if not match or not match.group(1).strip():
            continue

        data = load_json_lenient(match.group(1))
        if data is None:
            logger.debug(f"Skipping unparseable {name} payload on {ctx.base_url}")
            continue

        events = find_events(data, ctx.base_url)
        if events:
            logger.debug(f"Found {len(events)} events in {name}")
            return events
    return []


def extract_from_hydration(html: str, ctx: ExtractionContext) -> ExtractionResult:
    return run_strategy(ExtractionStrategy.HYDRATION, lambda: _extract(html, ctx))
