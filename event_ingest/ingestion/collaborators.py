"""
event_ingest.ingestion.collaborators

Interfaces to the systems the ingestion core talks to, plus in-memory
implementations used by tests and local runs:

- EventStore: insert / update / upsert-on-conflict / filtered select
- VenueLookup: coordinates and place identifiers by venue name + city
- SourceRegistry: scraper source configuration and history
- RunLogSink: one record per scraper run

The queue store lives in ``event_ingest.ingestion.queue``.
"""

from __future__ import annotations

import logging
import re
import threading
import uuid
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Protocol

from geopy.extra.rate_limiter import RateLimiter as GeocodeRateLimiter
from geopy.geocoders import Nominatim

from event_ingest.errors import PersistenceError
from event_ingest.normalization.transforms import parse_iso, to_utc
from event_ingest.schemas.pipeline import ScraperSource

logger = logging.getLogger(__name__)


# =============================================================================
# EVENT STORE
# =============================================================================

FILTER_OPS = ("eq", "ilike", "gte", "lte")


@dataclass(frozen=True)
class Filter:
    """A single ``column <op> value`` predicate; filters in a list are ANDed."""

    field: str
    op: str
    value: Any

    def __post_init__(self) -> None:
        if self.op not in FILTER_OPS:
            raise ValueError(f"Unsupported filter op '{self.op}', expected one of {FILTER_OPS}")


class EventStore(Protocol):
    def insert(self, record: dict[str, Any]) -> str: ...

    def update(self, record_id: str, record: dict[str, Any]) -> None: ...

    def upsert(self, record: dict[str, Any], on_conflict: str) -> str: ...

    def select(
        self,
        filters: Sequence[Filter],
        columns: Sequence[str] | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]: ...


def escape_like(text: str) -> str:
    """Make ``text`` match itself literally inside a LIKE pattern."""
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def like_to_regex(pattern: str) -> re.Pattern:
    """
    Translate a SQL LIKE pattern into an anchored, case-insensitive regex.

    Backslash escapes the next character, as in Postgres.
    """
    parts = []
    chars = iter(pattern)
    for ch in chars:
        if ch == "\\":
            parts.append(re.escape(next(chars, "\\")))
        elif ch == "%":
            parts.append(".*")
        elif ch == "_":
            parts.append(".")
        else:
            parts.append(re.escape(ch))
    return re.compile("^" + "".join(parts) + "$", re.IGNORECASE | re.DOTALL)


def _comparable(value: Any) -> Any:
    if isinstance(value, datetime):
        return to_utc(value).isoformat()
    return value


def _range_key(value: Any) -> Any:
    """Order ISO date strings by instant, whatever offset they carry."""
    if isinstance(value, str):
        parsed = parse_iso(value)
        if parsed is not None:
            return to_utc(parsed).isoformat()
    if isinstance(value, date):
        return to_utc(value).isoformat()
    return value


def matches(row: Mapping[str, Any], flt: Filter) -> bool:
    value = row.get(flt.field)
    if flt.op == "eq":
        return _comparable(value) == _comparable(flt.value)
    if value is None:
        return False
    if flt.op == "ilike":
        return bool(like_to_regex(str(flt.value)).match(str(value)))
    if flt.op == "gte":
        return _range_key(value) >= _range_key(flt.value)
    return _range_key(value) <= _range_key(flt.value)


class InMemoryEventStore:
    """Dict-backed event store. Rows carry their own ``id``."""

    def __init__(self, rows: Iterable[dict[str, Any]] | None = None) -> None:
        self._rows: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()
        for row in rows or []:
            row = dict(row)
            row.setdefault("id", str(uuid.uuid4()))
            self._rows[row["id"]] = row

    def __len__(self) -> int:
        return len(self._rows)

    def insert(self, record: dict[str, Any]) -> str:
        with self._lock:
            row = dict(record)
            row["id"] = row.get("id") or str(uuid.uuid4())
            self._rows[row["id"]] = row
            return row["id"]

    def update(self, record_id: str, record: dict[str, Any]) -> None:
        with self._lock:
            if record_id not in self._rows:
                raise PersistenceError(f"No event with id {record_id}")
            self._rows[record_id].update({k: v for k, v in record.items() if k != "id"})

    def upsert(self, record: dict[str, Any], on_conflict: str) -> str:
        keys = [k.strip() for k in on_conflict.split(",") if k.strip()]
        filters = [Filter(k, "eq", record.get(k)) for k in keys]
        existing = self.select(filters, columns=["id"], limit=1)
        if existing:
            self.update(existing[0]["id"], record)
            return existing[0]["id"]
        return self.insert(record)

    def select(
        self,
        filters: Sequence[Filter],
        columns: Sequence[str] | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        out: list[dict[str, Any]] = []
        with self._lock:
            for row in self._rows.values():
                if all(matches(row, f) for f in filters):
                    if columns:
                        out.append({c: row.get(c) for c in {"id", *columns}})
                    else:
                        out.append(dict(row))
                    if limit is not None and len(out) >= limit:
                        break
        return out

    def get(self, record_id: str) -> dict[str, Any] | None:
        row = self._rows.get(record_id)
        return dict(row) if row else None


# =============================================================================
# VENUE LOOKUP
# =============================================================================


@dataclass(frozen=True)
class VenueMatch:
    lat: float
    lng: float
    place_id: str | None = None
    display_name: str | None = None


class VenueLookup(Protocol):
    def lookup(self, name: str, city: str | None) -> VenueMatch | None: ...


def _venue_key(name: str, city: str | None) -> tuple[str, str]:
    return (name or "").strip().lower(), (city or "").strip().lower()


class StaticVenueLookup:
    """Lookup table keyed by (venue name, city), case-insensitive."""

    def __init__(self, venues: Mapping[tuple[str, str], VenueMatch] | None = None) -> None:
        self._venues = {_venue_key(n, c): v for (n, c), v in (venues or {}).items()}
        self.calls = 0

    def add(self, name: str, city: str, match: VenueMatch) -> None:
        self._venues[_venue_key(name, city)] = match

    def lookup(self, name: str, city: str | None) -> VenueMatch | None:
        self.calls += 1
        return self._venues.get(_venue_key(name, city)) or self._venues.get(_venue_key(name, ""))


class NominatimVenueLookup:
    """
    Geocode venues through OpenStreetMap Nominatim (geopy).

    Nominatim allows roughly one request per second; the orchestrator's token
    bucket enforces the shared budget, the geopy limiter here only spaces out
    calls made outside the orchestrator.
    """

    def __init__(
        self,
        *,
        user_agent: str,
        min_delay_s: float = 1.0,
        timeout_s: float = 10.0,
        geocoder: Any | None = None,
    ) -> None:
        self._geocoder = geocoder or Nominatim(user_agent=user_agent, timeout=timeout_s)
        self._geocode = GeocodeRateLimiter(
            self._geocoder.geocode,
            min_delay_seconds=min_delay_s,
            max_retries=1,
            swallow_exceptions=True,
            return_value_on_exception=None,
        )
        self._cache: dict[tuple[str, str], VenueMatch | None] = {}

    def lookup(self, name: str, city: str | None) -> VenueMatch | None:
        key = _venue_key(name, city)
        if not key[0]:
            return None
        if key in self._cache:
            return self._cache[key]

        query = ", ".join(p for p in (name, city) if p)
        location = self._geocode(query, exactly_one=True)
        if location is None:
            logger.debug(f"Nominatim returned no result for query: {query}")
            self._cache[key] = None
            return None

        raw = getattr(location, "raw", None) or {}
        place_id = None
        if raw.get("osm_type") and raw.get("osm_id"):
            place_id = f"osm:{raw['osm_type']}/{raw['osm_id']}"
        elif raw.get("place_id"):
            place_id = f"nominatim:{raw['place_id']}"

        match = VenueMatch(
            lat=round(float(location.latitude), 6),
            lng=round(float(location.longitude), 6),
            place_id=place_id,
            display_name=getattr(location, "address", None),
        )
        self._cache[key] = match
        return match


# =============================================================================
# SOURCE REGISTRY
# =============================================================================


class SourceRegistry(Protocol):
    def get(self, source_id: str) -> ScraperSource | None: ...

    def list_enabled(self) -> list[ScraperSource]: ...

    def list_broken(self, min_failures: int = 3) -> list[ScraperSource]: ...

    def save(self, source: ScraperSource) -> None: ...


class InMemorySourceRegistry:
    def __init__(self, sources: Iterable[ScraperSource] | None = None) -> None:
        self._sources: dict[str, ScraperSource] = {s.id: s for s in sources or []}

    def get(self, source_id: str) -> ScraperSource | None:
        return self._sources.get(source_id)

    def list_enabled(self) -> list[ScraperSource]:
        return [s for s in self._sources.values() if s.enabled]

    def list_broken(self, min_failures: int = 3) -> list[ScraperSource]:
        """Enabled sources whose failure streak reached ``min_failures``, worst first."""
        broken = [s for s in self.list_enabled() if s.history.consecutive_failures >= min_failures]
        return sorted(broken, key=lambda s: s.history.consecutive_failures, reverse=True)

    def save(self, source: ScraperSource) -> None:
        self._sources[source.id] = source


# =============================================================================
# RUN LOG
# =============================================================================


@dataclass
class ScraperRunRecord:
    strategy: str
    status: str  # success | error
    source_id: str | None = None
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    error: str | None = None
    duration_ms: float = 0.0
    completed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        out = asdict(self)
        out["completed_at"] = self.completed_at.isoformat()
        return out


class RunLogSink(Protocol):
    def log_run(self, record: ScraperRunRecord) -> None: ...


class InMemoryRunLog:
    def __init__(self) -> None:
        self.records: list[ScraperRunRecord] = []

    def log_run(self, record: ScraperRunRecord) -> None:
        self.records.append(record)


class LoggingRunLog:
    """Run-log sink that only writes structured log lines."""

    def log_run(self, record: ScraperRunRecord) -> None:
        logger.info(
            f"Run {record.strategy} finished: {record.status}",
            extra={"source_id": record.source_id, "payload": record.to_dict()},
        )
