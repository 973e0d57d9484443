"""Uniform parameterized query execution over SQLite or Postgres.

Call sites write SQLite-style statements (`?` placeholders, optional
`INSERT OR IGNORE`) and pass arguments positionally. Each adapter normalizes the
statement for its own engine; nothing outside this module knows which one is in use.

Values are only ever passed to the driver as bound parameters.
"""

from __future__ import annotations

import re
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence
from urllib.parse import urlparse

from survey_platform.config import Config
from survey_platform.errors import ConfigError, StoreError
from survey_platform.models import RunResult
from survey_platform.schema import get_schema_sql


def _debug(msg: str) -> None:
    print(f"[db] {msg}")


_INSERT_RE = re.compile(r"^\s*INSERT\b", re.IGNORECASE)
_INSERT_OR_IGNORE_RE = re.compile(r"INSERT\s+OR\s+IGNORE\s+INTO", re.IGNORECASE)
_ON_CONFLICT_RE = re.compile(r"\bON\s+CONFLICT\b", re.IGNORECASE)
_RETURNING_RE = re.compile(r"\bRETURNING\b", re.IGNORECASE)


def _detect_dialect(dsn: str) -> str:
    """Return 'postgres' or 'sqlite'."""
    s = (dsn or "").strip()
    if not s:
        return "sqlite"
    scheme = urlparse(s).scheme.lower()
    if scheme in ("postgres", "postgresql"):
        return "postgres"
    # sqlite:///path style or a plain file path.
    return "sqlite"


def _redact_dsn(dsn: str) -> str:
    """Hide the password part of a connection URL for log lines."""
    parsed = urlparse(dsn)
    if not parsed.password:
        return dsn
    netloc = parsed.netloc.replace(f":{parsed.password}@", ":***@", 1)
    return parsed._replace(netloc=netloc).geturl()


def _strip_terminator(sql: str) -> str:
    return sql.rstrip().rstrip(";").rstrip()


def _is_insert(sql: str) -> bool:
    return _INSERT_RE.match(sql) is not None


def _qmark_to_pct(sql: str) -> str:
    """Convert SQLite qmark placeholders (?) to psycopg2 placeholders (%s).

    '?' inside single/double-quoted literals is left alone. Literal '%' is doubled
    everywhere because psycopg2 scans the whole statement for format markers.
    It's not a full SQL parser, but it is sufficient for this codebase.
    """
    out: List[str] = []
    in_single = False
    in_double = False
    i = 0
    while i < len(sql):
        ch = sql[i]

        if ch == "%":
            out.append("%%")
            i += 1
            continue

        if ch == "'" and not in_double:
            out.append(ch)
            if in_single:
                # Escaped single quote: ''
                if i + 1 < len(sql) and sql[i + 1] == "'":
                    out.append("'")
                    i += 2
                    continue
                in_single = False
            else:
                in_single = True
            i += 1
            continue

        if ch == '"' and not in_single:
            out.append(ch)
            if in_double:
                # Escaped double quote: ""
                if i + 1 < len(sql) and sql[i + 1] == '"':
                    out.append('"')
                    i += 2
                    continue
                in_double = False
            else:
                in_double = True
            i += 1
            continue

        if ch == "?" and not in_single and not in_double:
            out.append("%s")
            i += 1
            continue

        out.append(ch)
        i += 1

    return "".join(out)


def _translate_insert_or_ignore(sql: str) -> str:
    """INSERT OR IGNORE INTO ... -> INSERT INTO ... ON CONFLICT DO NOTHING."""
    if not _INSERT_OR_IGNORE_RE.search(sql):
        return sql
    out = _INSERT_OR_IGNORE_RE.sub("INSERT INTO", sql, count=1)
    if _ON_CONFLICT_RE.search(out):
        return out

    body = _strip_terminator(out)
    m = _RETURNING_RE.search(body)
    if m is not None:
        return f"{body[:m.start()].rstrip()} ON CONFLICT DO NOTHING {body[m.start():]}"
    return f"{body} ON CONFLICT DO NOTHING"


def prepare_postgres(sql: str) -> str:
    """Rewrite a SQLite-style statement into the form psycopg2 executes."""
    out = _translate_insert_or_ignore(sql)
    if _is_insert(out) and not _RETURNING_RE.search(out):
        out = f"{_strip_terminator(out)} RETURNING id"
    return _qmark_to_pct(out)


def _store_error(dialect: str, sql: str, exc: BaseException) -> StoreError:
    # Full detail server-side; bound args are never printed.
    one_line = " ".join(sql.split())
    _debug(f"store error ({dialect}): {exc!r} :: {one_line}")
    return StoreError(f"{type(exc).__name__}: {exc}")


def _generated_id(rows: Sequence[Dict[str, Any]]) -> Optional[int]:
    if not rows:
        return None
    row = rows[0]
    value = row["id"] if "id" in row else next(iter(row.values()), None)
    return int(value) if value is not None else None


class QueryExecutor:
    """run / get / all over one relational store.

    - run(sql, args)  -> RunResult(rows_affected, generated_id)
    - get(sql, args)  -> first row as a dict, or None
    - all(sql, args)  -> every row as a dict, in store order
    """

    dialect = "unknown"

    def run(self, sql: str, args: Sequence[Any] = ()) -> RunResult:
        raise NotImplementedError

    def get(self, sql: str, args: Sequence[Any] = ()) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def all(self, sql: str, args: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def execute_script(self, ddl: str) -> None:
        raise NotImplementedError

    def describe(self) -> str:
        return self.dialect

    def close(self) -> None:
        pass


class SQLiteExecutor(QueryExecutor):
    """One short-lived connection per call; foreign keys are always enforced."""

    dialect = "sqlite"

    def __init__(self, path: str):
        if path.lower().startswith("sqlite:///"):
            path = path[len("sqlite:///") :]
        if path.strip() == ":memory:" or "mode=memory" in path:
            raise ConfigError("SQLite in-memory databases are not supported (one connection per call); use a file path")
        self.path = path
        Path(path).parent.mkdir(parents=True, exist_ok=True)

    def describe(self) -> str:
        return f"sqlite:{self.path}"

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.path, timeout=30, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        try:
            # Concurrency pragmas (safe defaults for several API worker processes)
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA busy_timeout=5000;")
            conn.execute("PRAGMA foreign_keys = ON;")
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _execute(self, sql: str, args: Sequence[Any]) -> tuple[List[Dict[str, Any]], int, Optional[int]]:
        try:
            with self._connect() as conn:
                cur = conn.execute(sql, tuple(args))
                rows = [dict(r) for r in cur.fetchall()] if cur.description is not None else []
                return rows, cur.rowcount, cur.lastrowid
        except (sqlite3.Error, OverflowError) as e:
            raise _store_error(self.dialect, sql, e) from e

    def run(self, sql: str, args: Sequence[Any] = ()) -> RunResult:
        rows, rowcount, lastrowid = self._execute(sql, args)
        if _RETURNING_RE.search(sql):
            return RunResult(rows_affected=len(rows), generated_id=_generated_id(rows))
        generated = lastrowid if (_is_insert(sql) and rowcount > 0) else None
        return RunResult(rows_affected=max(rowcount, 0), generated_id=generated)

    def get(self, sql: str, args: Sequence[Any] = ()) -> Optional[Dict[str, Any]]:
        rows, _, _ = self._execute(sql, args)
        return rows[0] if rows else None

    def all(self, sql: str, args: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        rows, _, _ = self._execute(sql, args)
        return rows

    def execute_script(self, ddl: str) -> None:
        try:
            with self._connect() as conn:
                conn.executescript(ddl)
        except sqlite3.Error as e:
            raise _store_error(self.dialect, "<schema script>", e) from e


class PostgresExecutor(QueryExecutor):
    """psycopg2 connection pool; rows come back as dicts (RealDictCursor)."""

    dialect = "postgres"

    def __init__(self, dsn: str, *, min_conn: int = 1, max_conn: int = 10, require_tls: bool = False):
        try:
            import psycopg2
            import psycopg2.extras
            import psycopg2.pool
        except ImportError as e:
            raise RuntimeError(
                "Postgres selected but psycopg2 is not installed. "
                "Install psycopg2-binary and try again."
            ) from e

        self._errors = psycopg2.Error
        self._dsn = dsn
        kwargs: Dict[str, Any] = {"cursor_factory": psycopg2.extras.RealDictCursor}
        if require_tls:
            kwargs["sslmode"] = "require"
        try:
            self._pool = psycopg2.pool.ThreadedConnectionPool(min_conn, max_conn, dsn, **kwargs)
        except psycopg2.Error as e:
            raise _store_error(self.dialect, "<connect>", e) from e

    def describe(self) -> str:
        return _redact_dsn(self._dsn)

    @contextmanager
    def _connection(self) -> Iterator[Any]:
        try:
            conn = self._pool.getconn()
        except self._errors as e:
            raise _store_error(self.dialect, "<pool checkout>", e) from e
        try:
            yield conn
            conn.commit()
        except Exception:
            if not conn.closed:
                conn.rollback()
            raise
        finally:
            self._pool.putconn(conn, close=bool(conn.closed))

    def _execute(self, sql: str, args: Sequence[Any]) -> tuple[List[Dict[str, Any]], int]:
        stmt = prepare_postgres(sql)
        try:
            with self._connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(stmt, tuple(args))
                    rows = [dict(r) for r in cur.fetchall()] if cur.description is not None else []
                    return rows, int(cur.rowcount or 0)
        except self._errors as e:
            raise _store_error(self.dialect, stmt, e) from e

    def run(self, sql: str, args: Sequence[Any] = ()) -> RunResult:
        rows, rowcount = self._execute(sql, args)
        return RunResult(rows_affected=max(rowcount, 0), generated_id=_generated_id(rows))

    def get(self, sql: str, args: Sequence[Any] = ()) -> Optional[Dict[str, Any]]:
        rows, _ = self._execute(sql, args)
        return rows[0] if rows else None

    def all(self, sql: str, args: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        rows, _ = self._execute(sql, args)
        return rows

    def execute_script(self, ddl: str) -> None:
        # Naive split is OK for our schema (no ';' inside literals).
        statements = [s.strip() for s in ddl.split(";") if s.strip()]
        try:
            with self._connection() as conn:
                with conn.cursor() as cur:
                    # Ensure only one process runs schema DDL at a time; released at commit/rollback.
                    cur.execute("SELECT pg_advisory_xact_lock(2147483647)")
                    for stmt in statements:
                        cur.execute(stmt)
        except self._errors as e:
            raise _store_error(self.dialect, "<schema script>", e) from e

    def close(self) -> None:
        self._pool.closeall()


def create_executor(cfg: Config) -> QueryExecutor:
    dsn = (cfg.DB_DSN or "").strip()
    if _detect_dialect(dsn) == "postgres":
        return PostgresExecutor(
            dsn,
            min_conn=cfg.DB_POOL_MIN,
            max_conn=cfg.DB_POOL_MAX,
            require_tls=cfg.DB_REQUIRE_TLS,
        )
    return SQLiteExecutor(dsn or Config.DB_DSN)


def init_db(executor: QueryExecutor) -> None:
    """Create all tables (idempotent)."""
    _debug(f"Initializing DB ({executor.dialect}) at {executor.describe()}")
    executor.execute_script(get_schema_sql(executor.dialect))
