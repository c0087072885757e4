"""
event_ingest.extraction.structured_data

Priority 2: schema.org JSON-LD blocks. Common on WordPress and Squarespace
venue sites and usually complete enough to skip the DOM entirely.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from event_ingest.schemas.event import RawEventCard
from event_ingest.schemas.pipeline import ExtractionStrategy

from .base import ExtractionContext, ExtractionResult, load_json_lenient, resolve_url, run_strategy, snapshot
from .parsers import soup_html

logger = logging.getLogger(__name__)

VALID_EVENT_TYPES = frozenset(
    {
        "Event",
        "SportsEvent",
        "MusicEvent",
        "Festival",
        "TheaterEvent",
        "DanceEvent",
        "ComedyEvent",
        "ExhibitionEvent",
        "SocialEvent",
        "BusinessEvent",
        "EducationEvent",
        "FoodEvent",
        "ScreeningEvent",
    }
)

SCHEMA_CATEGORY_HINTS = {
    "MusicEvent": "music",
    "SportsEvent": "active",
    "TheaterEvent": "entertainment",
    "DanceEvent": "entertainment",
    "ComedyEvent": "entertainment",
    "ExhibitionEvent": "entertainment",
    "ScreeningEvent": "entertainment",
    "FoodEvent": "foodie",
    "Festival": "community",
    "SocialEvent": "social",
    "EducationEvent": "workshops",
}


def _types(item: Mapping[str, Any]) -> list[str]:
    t = item.get("@type")
    if not t:
        return []
    if isinstance(t, list):
        return [str(x) for x in t]
    return [str(t)]


def is_event_schema(item: Any) -> bool:
    if not isinstance(item, Mapping):
        return False
    return any(t in VALID_EVENT_TYPES for t in _types(item))


def infer_category(item: Mapping[str, Any]) -> str | None:
    for t in _types(item):
        if t in SCHEMA_CATEGORY_HINTS:
            return SCHEMA_CATEGORY_HINTS[t]
    return None


def _value(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, Mapping):
        for key in ("@value", "name", "text"):
            if value.get(key):
                return str(value[key])
    return ""


def _location(loc: Any) -> str:
    if isinstance(loc, str):
        return loc
    if isinstance(loc, list):
        return _location(loc[0]) if loc else ""
    if not isinstance(loc, Mapping):
        return ""

    location = _value(loc.get("name")) or _value(loc.get("address"))
    address = loc.get("address")
    if isinstance(address, Mapping):
        parts = [
            _value(address.get("streetAddress")),
            _value(address.get("addressLocality")),
            _value(address.get("addressRegion")),
        ]
        parts = [p for p in parts if p]
        if parts:
            joined = ", ".join(parts)
            # PostalAddress with only a name resolves _value() to that name already
            if location and location != joined:
                location = f"{location}, {joined}"
            else:
                location = joined
    return location


def _image(img: Any) -> str:
    if isinstance(img, str):
        return img
    if isinstance(img, list) and img:
        return img[0] if isinstance(img[0], str) else _value(img[0]) or _value_url(img[0])
    return _value_url(img)


def _value_url(img: Any) -> str:
    if isinstance(img, Mapping):
        return _value(img.get("url"))
    return ""


def schema_to_event_card(item: Mapping[str, Any], base_url: str) -> RawEventCard | None:
    title = (_value(item.get("name")) or _value(item.get("headline"))).strip()
    if not title:
        return None

    date = ""
    if item.get("startDate"):
        date = _value(item["startDate"])
    elif isinstance(item.get("eventSchedule"), Mapping):
        date = _value(item["eventSchedule"].get("startDate"))

    image_url = resolve_url(_image(item.get("image")), base_url)
    return RawEventCard(
        title=title,
        date=date.strip(),
        location=_location(item.get("location")).strip(),
        description=_value(item.get("description")).strip(),
        detail_url=resolve_url(_value(item.get("url")), base_url),
        image_url=image_url or None,
        raw_html=snapshot(item),
        category_hint=infer_category(item),
    )


def iter_schema_items(data: Any) -> list[Any]:
    """Flatten top-level arrays and ``@graph`` containers into one list."""
    pending = list(data) if isinstance(data, list) else [data]
    out: list[Any] = []
    while pending:
        item = pending.pop(0)
        if isinstance(item, Mapping) and "@graph" in item:
            graph = item["@graph"]
            if isinstance(graph, list):
                pending.extend(graph)
            continue
        out.append(item)
    return out


def _extract(html: str, ctx: ExtractionContext) -> list[RawEventCard]:
    soup = soup_html(html)
    events: list[RawEventCard] = []
    for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
        content = script.string or script.get_text()
        if not content or not content.strip():
            continue

        data = load_json_lenient(content)
        if data is None:
            logger.debug(f"Skipping unparseable JSON-LD block on {ctx.base_url}")
            continue

        for item in iter_schema_items(data):
            if not is_event_schema(item):
                continue
            card = schema_to_event_card(item, ctx.base_url)
            if card:
                events.append(card)
    return events


def extract_from_structured_data(html: str, ctx: ExtractionContext) -> ExtractionResult:
    return run_strategy(ExtractionStrategy.STRUCTURED_DATA, lambda: _extract(html, ctx))
