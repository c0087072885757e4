"""
event_ingest.extraction.feeds

Priority 3: RSS, Atom and iCalendar feeds. Municipal calendars and
libraries rarely have JSON-LD but often publish one of these.
"""

from __future__ import annotations

import logging
import re

from bs4 import Tag

from event_ingest.schemas.event import RawEventCard
from event_ingest.schemas.pipeline import ExtractionStrategy

from .base import ExtractionContext, ExtractionResult, origin_of, resolve_url, run_strategy
from .parsers import node_text, soup_html, soup_xml

logger = logging.getLogger(__name__)

FEED_PATHS = (
    "/feed",
    "/rss",
    "/rss.xml",
    "/atom.xml",
    "/events/feed",
    "/agenda/feed",
    "/calendar.ics",
    "/events.ics",
    "/agenda.ics",
    "/feed/events",
)

MAX_FEED_FETCHES = 3

_FEED_LINK_SELECTOR = 'link[type="application/rss+xml"], link[type="application/atom+xml"]'
_CALENDAR_ANCHOR_SELECTOR = 'a[href*=".ics"], a[href*=".ical"], a[href^="webcal://"]'

# ============================================================================
# DISCOVERY
# ============================================================================


def discover_feed_urls(html: str, ctx: ExtractionContext) -> list[str]:
    """
    Feed URLs advertised by the page, else conventional paths on its origin.

    Conventional paths are only probed when discovery is enabled or the feed
    strategy is explicitly preferred. Order is preserved, duplicates dropped.
    """
    soup = soup_html(html)
    urls: list[str] = []

    for link in soup.select(_FEED_LINK_SELECTOR):
        href = link.get("href")
        if href:
            urls.append(resolve_url(str(href), ctx.base_url))

    for anchor in soup.select(_CALENDAR_ANCHOR_SELECTOR):
        href = anchor.get("href")
        if href:
            href = str(href).replace("webcal://", "https://", 1)
            urls.append(resolve_url(href, ctx.base_url))

    if not urls and (ctx.feed_discovery or ctx.preferred_strategy == ExtractionStrategy.FEED):
        origin = origin_of(ctx.base_url)
        if origin:
            urls.extend(f"{origin}{path}" for path in FEED_PATHS)

    return list(dict.fromkeys(urls))


# ============================================================================
# PARSERS
# ============================================================================


def _child_text(parent: Tag, *names: str) -> str:
    node = parent.find(list(names)) if len(names) > 1 else parent.find(names[0])
    return node_text(node)


def parse_rss_feed(content: str, base_url: str) -> list[RawEventCard]:
    """Map RSS ``<item>`` elements, or Atom ``<entry>`` elements when there are none."""
    soup = soup_xml(content)
    events: list[RawEventCard] = []

    for item in soup.find_all("item"):
        title = _child_text(item, "title")
        if not title:
            continue
        enclosure = item.find("enclosure", attrs={"type": re.compile(r"^image")})
        link = _child_text(item, "link") or _child_text(item, "guid")
        events.append(
            RawEventCard(
                title=title,
                date=_child_text(item, "pubDate"),
                description=_child_text(item, "description") or _child_text(item, "encoded"),
                detail_url=resolve_url(link, base_url),
                image_url=str(enclosure["url"]) if enclosure and enclosure.get("url") else None,
                raw_html=str(item),
            )
        )

    if events:
        return events

    for entry in soup.find_all("entry"):
        title = _child_text(entry, "title")
        if not title:
            continue
        link = entry.find("link", attrs={"rel": "alternate"}) or entry.find("link")
        href = str(link.get("href") or "") if link else ""
        events.append(
            RawEventCard(
                title=title,
                date=_child_text(entry, "updated", "published"),
                description=_child_text(entry, "summary", "content"),
                detail_url=resolve_url(href, base_url),
                raw_html=str(entry),
            )
        )
    return events


_VEVENT_RE = re.compile(r"BEGIN:VEVENT.*?END:VEVENT", re.IGNORECASE | re.DOTALL)
_DTSTART_RE = re.compile(r"DTSTART[^:\r\n]*:(\d{8}T?\d{0,6}Z?)", re.IGNORECASE)
_FOLDED_LINE_RE = re.compile(r"\r?\n[ \t]")


def _ics_value(block: str, field: str) -> str:
    match = re.search(rf"^{field}[^:\r\n]*:(.*)$", block, re.IGNORECASE | re.MULTILINE)
    if not match:
        return ""
    value = re.sub(r"\\[nN]", "\n", match.group(1))
    return value.replace("\\,", ",").replace("\\;", ";").strip()


def parse_ics_feed(content: str, base_url: str = "") -> list[RawEventCard]:
    """Scan ``BEGIN:VEVENT ... END:VEVENT`` blocks with line-prefix regexes."""
    content = _FOLDED_LINE_RE.sub("", content)
    events: list[RawEventCard] = []

    for block in _VEVENT_RE.findall(content):
        title = _ics_value(block, "SUMMARY")
        if not title:
            continue

        # DTSTART;TZID=Europe/Amsterdam:20260115T200000
        dtstart = _DTSTART_RE.search(block)
        date = dtstart.group(1) if dtstart else _ics_value(block, "DTSTART")

        events.append(
            RawEventCard(
                title=title,
                date=date,
                location=_ics_value(block, "LOCATION"),
                description=_ics_value(block, "DESCRIPTION"),
                detail_url=resolve_url(_ics_value(block, "URL"), base_url),
                raw_html=block,
            )
        )
    return events


def parse_feed(content: str, url: str) -> list[RawEventCard]:
    if "<rss" in content or "<feed" in content or "<rdf:RDF" in content:
        return parse_rss_feed(content, url)
    if "BEGIN:VEVENT" in content.upper():
        return parse_ics_feed(content, url)
    return []


# ============================================================================
# STRATEGY
# ============================================================================


def _extract(html: str, ctx: ExtractionContext) -> tuple[list[RawEventCard], int, int]:
    """Return (events, feeds discovered, feeds fetched)."""
    feed_urls = discover_feed_urls(html, ctx)
    if ctx.fetcher is None:
        return [], len(feed_urls), 0

    fetched = 0
    for url in feed_urls[:MAX_FEED_FETCHES]:
        try:
            response = ctx.fetcher(url)
        except Exception as e:
            logger.warning(f"Failed to fetch feed {url}: {e}")
            continue

        if not 200 <= response.status < 300 or not response.html:
            continue
        fetched += 1

        events = parse_feed(response.html, url)
        if events:
            logger.debug(f"Feed {url} yielded {len(events)} events")
            return events, len(feed_urls), fetched

    return [], len(feed_urls), fetched


def extract_from_feeds(html: str, ctx: ExtractionContext) -> ExtractionResult:
    counts: dict[str, int] = {}

    def _run() -> list[RawEventCard]:
        events, counts["discovered"], counts["fetched"] = _extract(html, ctx)
        return events

    result = run_strategy(ExtractionStrategy.FEED, _run)
    if not result.events and result.error is None and counts.get("discovered"):
        result.error = (
            f"Discovered {counts['discovered']} feeds, fetched {counts['fetched']}, found 0 events."
        )
    return result
