import os

import pytest


@pytest.fixture
def clean_db():
    """
    Fresh schema for Postgres-bound tests. Skips unless DATABASE_URL is set.
    """
    if not os.getenv("DATABASE_URL"):
        pytest.skip("DATABASE_URL must be set for Postgres-only tests.")

    from core.db.schema import init_db, truncate_all

    init_db()
    truncate_all()
    yield
    truncate_all()


class FakeCursor:
    """Records executed SQL; fails on the `fail_nth` statement containing `fail_on`."""

    def __init__(self, conn):
        self.conn = conn
        self._rows = []
        self.rowcount = 0

    def execute(self, sql, params=None):
        self.conn.executed.append((" ".join(sql.split()), params))
        if self.conn.fail_on and self.conn.fail_on in sql:
            self.conn.matches += 1
            if self.conn.matches == self.conn.fail_nth:
                raise self.conn.error
        self._rows = list(self.conn.results.pop(0)) if self.conn.results else []
        self.rowcount = len(self._rows)

    def fetchone(self):
        return self._rows.pop(0) if self._rows else None

    def fetchall(self):
        rows, self._rows = self._rows, []
        return rows


class FakeConn:
    def __init__(self, results=None, fail_on=None, fail_nth=1, error=None):
        self.results = list(results or [])
        self.fail_on = fail_on
        self.fail_nth = fail_nth
        self.matches = 0
        self.error = error or RuntimeError("boom")
        self.executed = []
        self.committed = False
        self.rolled_back = False
        self.closed = False

    def cursor(self):
        return FakeCursor(self)

    def commit(self):
        self.committed = True

    def rollback(self):
        self.rolled_back = True

    def close(self):
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


@pytest.fixture
def fake_conn(monkeypatch):
    """Factory installing a FakeConn as the connection returned by core.db.base.get_conn."""
    import core.db.base as base

    def install(results=None, fail_on=None, fail_nth=1, error=None):
        conn = FakeConn(results=results, fail_on=fail_on, fail_nth=fail_nth, error=error)
        monkeypatch.setattr(base, "get_conn", lambda: conn)
        return conn

    return install
