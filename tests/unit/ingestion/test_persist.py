"""
Unit tests for the PostgreSQL event store and run log.

The psycopg2 connection is a MagicMock; queries are only checked for their
parameters and transaction handling, never executed.
"""

import uuid
from unittest.mock import MagicMock

import psycopg2
import pytest
from psycopg2.extras import Json

from event_ingest.errors import PersistenceError
from event_ingest.ingestion.collaborators import Filter, ScraperRunRecord
from event_ingest.ingestion.persist import PostgresEventStore, PostgresRunLog


@pytest.fixture
def conn():
    return MagicMock()


@pytest.fixture
def cursor(conn):
    """The cursor yielded by ``with conn.cursor(...) as cur``."""
    cur = conn.cursor.return_value.__enter__.return_value
    cur.description = [("id",)]
    cur.fetchall.return_value = []
    return cur


class TestPostgresEventStore:
    """Tests for PostgresEventStore."""

    def test_insert_returns_id_and_commits(self, conn, cursor):
        row_id = uuid.uuid4()
        cursor.fetchall.return_value = [{"id": row_id}]

        new_id = PostgresEventStore(conn).insert({"title": "Jazz Night", "location": "POINT(4.88 52.36)"})

        assert new_id == str(row_id)
        conn.commit.assert_called_once()
        conn.rollback.assert_not_called()

    def test_json_columns_are_adapted(self, conn, cursor):
        cursor.fetchall.return_value = [{"id": 1}]
        record = {
            "title": "Jazz Night",
            "structured_date": {"utc_start": "2026-05-01T20:00:00"},
            "structured_location": None,
        }

        PostgresEventStore(conn).insert(record)

        _, params = cursor.execute.call_args.args
        assert isinstance(params["structured_date"], Json)
        assert params["structured_location"] is None
        assert params["title"] == "Jazz Night"

    def test_error_rolls_back(self, conn, cursor):
        cursor.execute.side_effect = psycopg2.Error("duplicate key value")

        with pytest.raises(PersistenceError, match="duplicate key value"):
            PostgresEventStore(conn).insert({"title": "Jazz Night"})

        conn.rollback.assert_called_once()
        conn.commit.assert_not_called()

    def test_update_passes_id(self, conn, cursor):
        cursor.fetchall.return_value = [{"id": 7}]

        PostgresEventStore(conn).update("7", {"id": "ignored", "description": "New text"})

        _, params = cursor.execute.call_args.args
        assert params == {"description": "New text", "__id": "7"}

    def test_update_missing_row_raises(self, conn, cursor):
        with pytest.raises(PersistenceError, match="No event with id 42"):
            PostgresEventStore(conn).update("42", {"description": "x"})

    def test_upsert_returns_id(self, conn, cursor):
        cursor.fetchall.return_value = [{"id": 9}]
        assert PostgresEventStore(conn).upsert({"source_url": "u", "title": "t"}, "source_url") == "9"

    def test_select_params_and_ids(self, conn, cursor):
        cursor.fetchall.return_value = [{"id": 3, "title": "Jazz Night"}]
        filters = [Filter("source_url", "eq", "https://venue.example/e"), Filter("title", "ilike", "jazz%")]

        rows = PostgresEventStore(conn).select(filters, columns=["title"], limit=1)

        _, params = cursor.execute.call_args.args
        assert params == ["https://venue.example/e", "jazz%"]
        assert rows == [{"id": "3", "title": "Jazz Night"}]

    def test_ilike_declares_backslash_escape(self, conn, cursor):
        cursor.fetchall.return_value = []
        PostgresEventStore(conn).select([Filter("title", "ilike", "100\\% Jazz")])

        query, params = cursor.execute.call_args.args
        assert "ILIKE %s ESCAPE" in repr(query)
        assert params == ["100\\% Jazz"]

    def test_statement_without_result_set(self, conn, cursor):
        cursor.description = None
        assert PostgresEventStore(conn).select([]) == []
        cursor.fetchall.assert_not_called()


class TestPostgresRunLog:
    """Tests for PostgresRunLog."""

    def test_writes_record(self, conn):
        cur = conn.cursor.return_value.__enter__.return_value

        PostgresRunLog(conn).log_run(ScraperRunRecord(strategy="waterfall", status="success", source_id="paradiso"))

        _, params = cur.execute.call_args.args
        assert params["strategy"] == "waterfall"
        assert params["source_id"] == "paradiso"
        assert isinstance(params["completed_at"], str)
        conn.commit.assert_called_once()

    def test_errors_are_logged_not_raised(self, conn):
        cur = conn.cursor.return_value.__enter__.return_value
        cur.execute.side_effect = psycopg2.OperationalError("connection lost")

        PostgresRunLog(conn).log_run(ScraperRunRecord(strategy="waterfall", status="error"))

        conn.rollback.assert_called_once()
