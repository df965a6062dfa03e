"""Row cap and statement checks inside the Postgres stored functions.

Needs a disposable Postgres reachable through ``TEST_DATABASE_URL``. The
functions and a temporary ``payments`` table are created in one transaction
that is rolled back afterwards.
"""
import os
from pathlib import Path

import pytest

from spending_analyst.core.config import DatabaseSettings
from spending_analyst.db.engine import create_sync_engine

TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL")
SQL_PATH = Path(__file__).resolve().parents[1] / "spending_analyst" / "db" / "sql" / "analytics_functions.sql"

pytestmark = pytest.mark.skipif(not TEST_DATABASE_URL, reason="TEST_DATABASE_URL is not set")


@pytest.fixture
def cursor():
    engine = create_sync_engine(DatabaseSettings(url=TEST_DATABASE_URL).sqlalchemy_url)
    raw = engine.raw_connection()
    try:
        with raw.cursor() as cur:
            # The search functions reference spending tables this database may not have.
            cur.execute("SET LOCAL check_function_bodies = off")
            cur.execute(SQL_PATH.read_text(encoding="utf-8"))
            cur.execute('CREATE TEMP TABLE "payments" AS SELECT n FROM generate_series(1, 100) AS n')
            yield cur
    finally:
        raw.rollback()
        raw.close()
        engine.dispose()


def display(cursor, query):
    cursor.execute("SELECT execute_analytics_query(%s)", (query,))
    return cursor.fetchone()[0]


def bulk(cursor, query, max_rows=None):
    cursor.execute("SELECT execute_bulk_analytics_query(%s, %s)", (query, max_rows))
    return cursor.fetchone()[0]


def test_display_appends_cap_when_query_has_no_limit(cursor):
    assert len(display(cursor, 'SELECT n FROM "payments"')) == 25


def test_display_clamps_larger_trailing_limit(cursor):
    assert len(display(cursor, 'SELECT n FROM "payments" ORDER BY n LIMIT 100')) == 25


def test_display_keeps_smaller_trailing_limit(cursor):
    rows = display(cursor, 'SELECT n FROM "payments" ORDER BY n LIMIT 5')

    assert sorted(row["n"] for row in rows) == [1, 2, 3, 4, 5]


def test_display_clamps_trailing_limit_all_behind_inner_limit_all(cursor):
    rows = display(
        cursor,
        'SELECT n FROM "payments" WHERE EXISTS (SELECT 1 FROM "payments" LIMIT ALL) LIMIT ALL',
    )

    assert len(rows) == 25


def test_display_caps_outer_limit_over_nested_limit(cursor):
    rows = display(
        cursor,
        'SELECT n FROM (SELECT n FROM "payments" ORDER BY n LIMIT 100) AS t ORDER BY n LIMIT 50',
    )

    assert len(rows) == 25


def test_display_cap_survives_trailing_comment(cursor):
    assert len(display(cursor, 'SELECT n FROM "payments" -- every row please')) == 25


def test_display_returns_empty_array_for_no_rows(cursor):
    assert display(cursor, 'SELECT n FROM "payments" WHERE n > 1000') == []


def test_bulk_without_max_rows_is_unlimited(cursor):
    assert len(bulk(cursor, 'SELECT n FROM "payments" -- full export')) == 100


def test_bulk_honours_max_rows(cursor):
    assert len(bulk(cursor, 'SELECT n FROM "payments"', max_rows=10)) == 10
