# Persistence layer for ingested data
"""
PostgreSQL implementations of the event store and run log.

Each write runs in its own transaction: a failing statement is rolled back
and surfaces as PersistenceError, previously committed rows stay.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

import psycopg2
from psycopg2 import sql
from psycopg2.extras import Json, RealDictCursor

from event_ingest.configs.settings import Settings
from event_ingest.errors import PersistenceError

from .collaborators import Filter, ScraperRunRecord

logger = logging.getLogger(__name__)

# Value placeholders per filter op. ILIKE patterns come from ``escape_like``.
_OPERATORS = {
    "eq": "= %s",
    "ilike": "ILIKE %s ESCAPE '\\'",
    "gte": ">= %s",
    "lte": "<= %s",
}

JSON_COLUMNS = ("structured_date", "structured_location")


def connect(settings: Settings):
    """Open a psycopg2 connection from ``DATABASE_URL``."""
    return psycopg2.connect(**settings.get_psycopg2_params())


def _adapt(record: dict[str, Any]) -> dict[str, Any]:
    return {k: Json(v) if k in JSON_COLUMNS and v is not None else v for k, v in record.items()}


def _placeholder(column: str) -> sql.Composable:
    if column == "location":
        return sql.SQL("ST_GeogFromText({})").format(sql.Placeholder(column))
    return sql.Placeholder(column)


class PostgresEventStore:
    """Event store backed by the ``events`` table."""

    def __init__(self, db_connection, table: str = "events") -> None:
        """Initialize with an active psycopg2 connection."""
        self.conn = db_connection
        self.table = sql.Identifier(table)

    def _execute(self, query: sql.Composable, params: dict[str, Any] | list[Any]) -> list[dict[str, Any]]:
        try:
            with self.conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(query, params)
                rows = [dict(r) for r in cur.fetchall()] if cur.description else []
            self.conn.commit()
            return rows
        except psycopg2.Error as e:
            self.conn.rollback()
            raise PersistenceError(str(e).strip()) from e

    def insert(self, record: dict[str, Any]) -> str:
        columns = list(record)
        query = sql.SQL("INSERT INTO {} ({}) VALUES ({}) RETURNING id").format(
            self.table,
            sql.SQL(", ").join(map(sql.Identifier, columns)),
            sql.SQL(", ").join(_placeholder(c) for c in columns),
        )
        rows = self._execute(query, _adapt(record))
        return str(rows[0]["id"])

    def update(self, record_id: str, record: dict[str, Any]) -> None:
        columns = [c for c in record if c != "id"]
        query = sql.SQL("UPDATE {} SET {} WHERE id = {} RETURNING id").format(
            self.table,
            sql.SQL(", ").join(
                sql.SQL("{} = {}").format(sql.Identifier(c), _placeholder(c)) for c in columns
            ),
            sql.Placeholder("__id"),
        )
        params = _adapt({c: record[c] for c in columns})
        params["__id"] = record_id
        if not self._execute(query, params):
            raise PersistenceError(f"No event with id {record_id}")

    def upsert(self, record: dict[str, Any], on_conflict: str) -> str:
        columns = list(record)
        keys = [k.strip() for k in on_conflict.split(",") if k.strip()]
        updates = [c for c in columns if c not in keys]
        query = sql.SQL(
            "INSERT INTO {} ({}) VALUES ({}) ON CONFLICT ({}) DO UPDATE SET {} RETURNING id"
        ).format(
            self.table,
            sql.SQL(", ").join(map(sql.Identifier, columns)),
            sql.SQL(", ").join(_placeholder(c) for c in columns),
            sql.SQL(", ").join(map(sql.Identifier, keys)),
            sql.SQL(", ").join(
                sql.SQL("{} = EXCLUDED.{}").format(sql.Identifier(c), sql.Identifier(c)) for c in updates
            ),
        )
        rows = self._execute(query, _adapt(record))
        return str(rows[0]["id"])

    def select(
        self,
        filters: Sequence[Filter],
        columns: Sequence[str] | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        if columns:
            cols = sql.SQL(", ").join(map(sql.Identifier, ["id", *(c for c in columns if c != "id")]))
        else:
            cols = sql.SQL("*")
        where = sql.SQL(" AND ").join(
            sql.SQL("{} {}").format(sql.Identifier(f.field), sql.SQL(_OPERATORS[f.op])) for f in filters
        )
        query = sql.SQL("SELECT {} FROM {}").format(cols, self.table)
        if filters:
            query = query + sql.SQL(" WHERE ") + where
        if limit is not None:
            query = query + sql.SQL(" LIMIT {}").format(sql.Literal(int(limit)))
        rows = self._execute(query, [f.value for f in filters])
        for row in rows:
            row["id"] = str(row["id"])
        return rows


class PostgresRunLog:
    """Run-log sink writing to ``scraper_runs``."""

    def __init__(self, db_connection, table: str = "scraper_runs") -> None:
        self.conn = db_connection
        self.table = sql.Identifier(table)

    def log_run(self, record: ScraperRunRecord) -> None:
        row = record.to_dict()
        query = sql.SQL("INSERT INTO {} ({}) VALUES ({})").format(
            self.table,
            sql.SQL(", ").join(map(sql.Identifier, row)),
            sql.SQL(", ").join(map(sql.Placeholder, row)),
        )
        try:
            with self.conn.cursor() as cur:
                cur.execute(query, row)
            self.conn.commit()
        except psycopg2.Error as e:
            self.conn.rollback()
            logger.error(f"Failed to write run log for {record.source_id}: {e}")
