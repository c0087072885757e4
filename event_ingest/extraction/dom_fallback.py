"""
event_ingest.extraction.dom_fallback

Priority 4: generic CSS heuristics over the markup. Lowest fidelity, only
reached when nothing structured was found.
"""

from __future__ import annotations

import re

from bs4 import Tag

from event_ingest.schemas.event import RawEventCard
from event_ingest.schemas.pipeline import ExtractionStrategy

from .base import ExtractionContext, ExtractionResult, resolve_url, run_strategy
from .parsers import first_attr, first_text, node_text, soup_html

DEFAULT_SELECTORS = (
    "article.event",
    ".event-item",
    ".event-card",
    "[itemtype*='Event']",
    ".agenda-item",
    ".calendar-event",
    "[class*='event']",
    "[class*='agenda']",
    "li.event",
    ".post-item",
    ".datum-item",
    ".activity-card",
    ".card--event",
    ".event-list-item",
)

MIN_TITLE_LENGTH = 3

TITLE_SELECTOR = "h1, h2, h3, h4, .title, [class*='title']"
DATE_SELECTOR = "time, .date, [class*='date'], [class*='datum'], [class*='tijd'], [datetime]"
LOCATION_SELECTOR = ".location, .venue, [class*='location'], [class*='venue']"
DESCRIPTION_SELECTOR = "p, .description, .excerpt, [class*='description']"

# English, Dutch and German month abbreviations, or numeric D/M/Y.
DATE_TEXT_RE = re.compile(
    r"(?:\d{1,2}\s+(?:jan|feb|mar|mrt|apr|may|mei|mai|mär|jun|jul|aug|sep|oct|okt|nov|dec|dez)[a-zäé]*"
    r"|\d{1,2}[-/.]\d{1,2}[-/.]\d{2,4})",
    re.IGNORECASE,
)
BACKGROUND_URL_RE = re.compile(r"url\(['\"]?([^'\")]+)['\"]?\)")


def _date_text(el: Tag) -> str:
    node = el.select_one(DATE_SELECTOR)
    if node is not None:
        # machine-readable attribute beats display text like "Fri 15 Jan"
        attr = node.get("datetime")
        if attr:
            return str(attr).strip()
        text = node_text(node)
        if text:
            return text

    if el.get("datetime"):
        return str(el["datetime"]).strip()

    match = DATE_TEXT_RE.search(node_text(el))
    return match.group(0) if match else ""


def _image_url(el: Tag) -> str:
    src = first_attr(el, "img", "src")
    if src:
        return src
    style = first_attr(el, "[style*='background']", "style")
    match = BACKGROUND_URL_RE.search(style)
    return match.group(1) if match else ""


def element_to_event_card(el: Tag, base_url: str) -> RawEventCard | None:
    title = first_text(el, TITLE_SELECTOR) or first_text(el, "a")
    if len(title) < MIN_TITLE_LENGTH:
        return None

    detail_url = first_attr(el, "a", "href") or str(el.get("href") or "")
    image_url = _image_url(el)
    return RawEventCard(
        title=title,
        date=_date_text(el),
        location=first_text(el, LOCATION_SELECTOR),
        description=first_text(el, DESCRIPTION_SELECTOR),
        detail_url=resolve_url(detail_url, base_url),
        image_url=resolve_url(image_url, base_url) or None,
        raw_html=str(el),
    )


def _extract(html: str, ctx: ExtractionContext) -> list[RawEventCard]:
    soup = soup_html(html)
    selectors = ctx.dom_selectors or DEFAULT_SELECTORS

    for selector in selectors:
        events = []
        for el in soup.select(selector):
            card = element_to_event_card(el, ctx.base_url)
            if card:
                events.append(card)
        # one selector per page; never mix results across selectors
        if events:
            return events
    return []


def count_selector_matches(html: str, selectors: list[str]) -> dict[str, int]:
    """How many elements each selector matches; used to spot stale custom selectors."""
    soup = soup_html(html)
    return {selector: len(soup.select(selector)) for selector in selectors}


def extract_from_dom(html: str, ctx: ExtractionContext) -> ExtractionResult:
    return run_strategy(ExtractionStrategy.DOM, lambda: _extract(html, ctx))
