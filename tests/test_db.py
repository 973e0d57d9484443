"""
Query executor tests.

Statement rewriting for Postgres is checked as pure string transforms; the
run/get/all contract is exercised against a real SQLite file, and the
Postgres executor against a mocked psycopg2 pool.
"""

from unittest.mock import MagicMock

import pytest

from survey_platform.config import Config
from survey_platform.db import (
    PostgresExecutor,
    SQLiteExecutor,
    _detect_dialect,
    _qmark_to_pct,
    _redact_dsn,
    _translate_insert_or_ignore,
    create_executor,
    prepare_postgres,
)
from survey_platform.errors import ConfigError, StoreError
from survey_platform.models import RunResult


# =============================================================================
# Dialect normalization (pure)
# =============================================================================


def test_qmark_placeholders_become_pyformat():
    assert _qmark_to_pct("SELECT * FROM t WHERE a = ? AND b = ?") == "SELECT * FROM t WHERE a = %s AND b = %s"


def test_question_marks_inside_literals_are_kept():
    sql = "SELECT '?' AS q, \"we?ird\" FROM t WHERE a = ? AND b = 'it''s ?'"
    assert _qmark_to_pct(sql) == "SELECT '?' AS q, \"we?ird\" FROM t WHERE a = %s AND b = 'it''s ?'"


def test_literal_percent_is_escaped():
    assert _qmark_to_pct("SELECT * FROM t WHERE name LIKE 'a%' AND id = ?") == (
        "SELECT * FROM t WHERE name LIKE 'a%%' AND id = %s"
    )


def test_insert_gets_returning_id():
    assert prepare_postgres("INSERT INTO companies (name, created_at) VALUES (?, ?);") == (
        "INSERT INTO companies (name, created_at) VALUES (%s, %s) RETURNING id"
    )


def test_explicit_returning_is_left_alone():
    sql = "INSERT INTO survey_questions (survey_id, question_id, position) VALUES (?, ?, ?) RETURNING survey_id"
    assert prepare_postgres(sql) == (
        "INSERT INTO survey_questions (survey_id, question_id, position) VALUES (%s, %s, %s) RETURNING survey_id"
    )


def test_insert_or_ignore_becomes_on_conflict_do_nothing():
    assert _translate_insert_or_ignore("INSERT OR IGNORE INTO categories (name) VALUES (?);") == (
        "INSERT INTO categories (name) VALUES (?) ON CONFLICT DO NOTHING"
    )
    assert prepare_postgres("insert or ignore into categories (name) values (?)") == (
        "INSERT INTO categories (name) values (%s) ON CONFLICT DO NOTHING RETURNING id"
    )


def test_insert_or_ignore_keeps_returning_last():
    sql = "INSERT OR IGNORE INTO survey_questions (survey_id, question_id) VALUES (?, ?)\nRETURNING survey_id"
    assert prepare_postgres(sql) == (
        "INSERT INTO survey_questions (survey_id, question_id) VALUES (%s, %s) ON CONFLICT DO NOTHING RETURNING survey_id"
    )


def test_plain_insert_does_not_swallow_conflicts():
    assert "ON CONFLICT" not in prepare_postgres("INSERT INTO companies (name) VALUES (?)")


def test_reads_and_updates_only_change_placeholders():
    assert prepare_postgres("UPDATE companies SET name = ? WHERE id = ?") == "UPDATE companies SET name = %s WHERE id = %s"
    assert prepare_postgres("SELECT * FROM surveys WHERE id = ?") == "SELECT * FROM surveys WHERE id = %s"


@pytest.mark.parametrize(
    "dsn,dialect",
    [
        ("postgres://u:p@host/db", "postgres"),
        ("postgresql://host/db", "postgres"),
        ("sqlite:///tmp/x.sqlite", "sqlite"),
        ("./survey.sqlite", "sqlite"),
        ("", "sqlite"),
    ],
)
def test_detect_dialect(dsn, dialect):
    assert _detect_dialect(dsn) == dialect


def test_redact_dsn_hides_password():
    assert _redact_dsn("postgresql://app:hunter2@db:5432/survey") == "postgresql://app:***@db:5432/survey"
    assert _redact_dsn("./survey.sqlite") == "./survey.sqlite"


# =============================================================================
# SQLite executor contract
# =============================================================================


def test_create_executor_uses_sqlite_for_paths(tmp_path):
    path = tmp_path / "a" / "b.sqlite"
    ex = create_executor(Config(DB_DSN=f"sqlite:///{path}", AUTH_JWT_SECRET="x"))
    assert isinstance(ex, SQLiteExecutor)
    assert ex.path == str(path)
    assert path.parent.is_dir()


def test_run_insert_returns_generated_id(db):
    first = db.run("INSERT INTO companies (name, created_at) VALUES (?, ?)", ("Acme", "2030-01-01T00:00:00Z"))
    second = db.run("INSERT INTO companies (name, created_at) VALUES (?, ?)", ("Globex", "2030-01-01T00:00:00Z"))

    assert first == RunResult(rows_affected=1, generated_id=first.generated_id)
    assert second.generated_id == first.generated_id + 1


def test_run_update_reports_rows_affected_without_id(db):
    for name in ("a", "b", "c"):
        db.run("INSERT INTO categories (name, created_at) VALUES (?, ?)", (name, "t"))

    res = db.run("UPDATE categories SET created_at = ? WHERE name <> ?", ("t2", "a"))
    assert res == RunResult(rows_affected=2, generated_id=None)


def test_insert_or_ignore_duplicate_reports_nothing(db):
    sql = "INSERT OR IGNORE INTO categories (name, created_at) VALUES (?, ?)"
    assert db.run(sql, ("Engagement", "t")).rows_affected == 1

    dup = db.run(sql, ("Engagement", "t"))
    assert dup == RunResult(rows_affected=0, generated_id=None)


def test_get_returns_first_row_or_none(db):
    db.run("INSERT INTO companies (name, created_at) VALUES (?, ?)", ("Acme", "t"))

    row = db.get("SELECT id, name FROM companies WHERE name = ?", ("Acme",))
    assert isinstance(row, dict)
    assert row["name"] == "Acme"
    assert db.get("SELECT * FROM companies WHERE name = ?", ("missing",)) is None


def test_all_returns_every_row_as_dicts(db):
    assert db.all("SELECT * FROM companies") == []
    for name in ("b", "a"):
        db.run("INSERT INTO companies (name, created_at) VALUES (?, ?)", (name, "t"))

    rows = db.all("SELECT name FROM companies ORDER BY name")
    assert rows == [{"name": "a"}, {"name": "b"}]


def test_arguments_never_change_statement_structure(db):
    db.run("INSERT INTO companies (name, created_at) VALUES (?, ?)", ("Acme", "t"))

    hostile = "' OR '1'='1"
    assert db.get("SELECT * FROM companies WHERE name = ?", (hostile,)) is None
    assert db.all("SELECT * FROM companies WHERE name = ?", (hostile,)) == []

    dropper = "x'); DROP TABLE companies; --"
    res = db.run("INSERT INTO companies (name, created_at) VALUES (?, ?)", (dropper, "t"))
    stored = db.get("SELECT name FROM companies WHERE id = ?", (res.generated_id,))
    assert stored["name"] == dropper
    assert len(db.all("SELECT * FROM companies")) == 2


def test_foreign_key_violation_is_a_store_error(db):
    with pytest.raises(StoreError) as exc:
        db.run(
            "INSERT INTO employees (company_id, name, email, created_at) VALUES (?, ?, ?, ?)",
            (999, "Eve", None, "t"),
        )
    assert exc.value.status_code == 500
    assert exc.value.code == "internal_error"
    assert "FOREIGN KEY" in str(exc.value)


def test_bad_sql_is_a_store_error(db):
    with pytest.raises(StoreError):
        db.all("SELECT * FROM no_such_table")


def test_failed_statement_does_not_leave_partial_writes(db):
    db.run("INSERT INTO companies (name, created_at) VALUES (?, ?)", ("Acme", "t"))
    with pytest.raises(StoreError):
        db.run("INSERT INTO companies (name, created_at) VALUES (?, ?)", ("Acme", "t"))
    assert len(db.all("SELECT * FROM companies")) == 1


@pytest.mark.parametrize("path", [":memory:", "sqlite:///:memory:", "file:shared?mode=memory&cache=shared"])
def test_in_memory_sqlite_is_rejected(path):
    with pytest.raises(ConfigError):
        SQLiteExecutor(path)


def test_out_of_range_integer_argument_is_a_store_error(db):
    with pytest.raises(StoreError) as exc:
        db.get("SELECT * FROM surveys WHERE id = ?", (2**63,))
    assert exc.value.status_code == 500


# =============================================================================
# Postgres executor (mocked pool)
# =============================================================================


@pytest.fixture
def pg(monkeypatch):
    """A PostgresExecutor whose pool hands out one MagicMock connection."""
    psycopg2 = pytest.importorskip("psycopg2")
    import psycopg2.pool

    conn = MagicMock(name="conn")
    conn.closed = 0
    cursor = conn.cursor.return_value.__enter__.return_value
    cursor.description = None
    cursor.fetchall.return_value = []
    cursor.rowcount = 0

    pool = MagicMock(name="pool")
    pool.getconn.return_value = conn
    factory = MagicMock(return_value=pool)
    monkeypatch.setattr(psycopg2.pool, "ThreadedConnectionPool", factory)

    ex = PostgresExecutor("postgresql://app:hunter2@db:5432/survey", min_conn=2, max_conn=4, require_tls=True)
    return {"ex": ex, "pool": pool, "conn": conn, "cursor": cursor, "factory": factory, "psycopg2": psycopg2}


def test_pg_pool_is_built_from_config(pg):
    args, kwargs = pg["factory"].call_args
    assert args == (2, 4, "postgresql://app:hunter2@db:5432/survey")
    assert kwargs["sslmode"] == "require"
    assert "hunter2" not in pg["ex"].describe()


def test_pg_run_returns_id_from_returning_row(pg):
    cursor = pg["cursor"]
    cursor.description = [("id",)]
    cursor.fetchall.return_value = [{"id": 42}]
    cursor.rowcount = 1

    res = pg["ex"].run("INSERT INTO companies (name, created_at) VALUES (?, ?)", ("Acme", "t"))

    assert res == RunResult(rows_affected=1, generated_id=42)
    cursor.execute.assert_called_once_with(
        "INSERT INTO companies (name, created_at) VALUES (%s, %s) RETURNING id", ("Acme", "t")
    )
    pg["conn"].commit.assert_called_once()
    pg["conn"].rollback.assert_not_called()
    pg["pool"].putconn.assert_called_once_with(pg["conn"], close=False)


def test_pg_get_and_all_return_dict_rows(pg):
    cursor = pg["cursor"]
    cursor.description = [("id",), ("name",)]
    cursor.fetchall.return_value = [{"id": 1, "name": "a"}, {"id": 2, "name": "b"}]

    assert pg["ex"].get("SELECT id, name FROM companies") == {"id": 1, "name": "a"}
    assert pg["ex"].all("SELECT id, name FROM companies") == [{"id": 1, "name": "a"}, {"id": 2, "name": "b"}]
    assert pg["pool"].putconn.call_count == 2


def test_pg_driver_error_rolls_back_and_returns_connection(pg):
    pg["cursor"].execute.side_effect = pg["psycopg2"].Error("duplicate key")

    with pytest.raises(StoreError) as exc:
        pg["ex"].run("INSERT INTO companies (name, created_at) VALUES (?, ?)", ("Acme", "t"))

    assert exc.value.status_code == 500
    pg["conn"].commit.assert_not_called()
    pg["conn"].rollback.assert_called_once()
    pg["pool"].putconn.assert_called_once_with(pg["conn"], close=False)


def test_pg_broken_connection_is_discarded(pg):
    conn = pg["conn"]

    def drop(*_args):
        conn.closed = 2
        raise pg["psycopg2"].OperationalError("server closed the connection")

    pg["cursor"].execute.side_effect = drop

    with pytest.raises(StoreError):
        pg["ex"].all("SELECT * FROM companies")

    conn.rollback.assert_not_called()
    pg["pool"].putconn.assert_called_once_with(conn, close=True)


def test_pg_pool_checkout_failure_is_a_store_error(pg):
    pg["pool"].getconn.side_effect = pg["psycopg2"].pool.PoolError("connection pool exhausted")

    with pytest.raises(StoreError):
        pg["ex"].get("SELECT 1")
    pg["pool"].putconn.assert_not_called()
