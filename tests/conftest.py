import re

import pytest
import psycopg2
import psycopg2.extensions as _psql_ext
from psycopg import pq
from psycopg.rows import dict_row
from psycopg2.extras import RealDictCursor


# FETCH ALL FROM "name" / FETCH FORWARD n FROM "name"
_FETCH:re.Pattern = re.compile(r'^FETCH (ALL|FORWARD (\d+)) FROM "(.*)"$')


class FakeServer:
    """Holds what the fake connections "return": the refcursor names from the function call and the rows of each
    cursor. Records every statement executed so tests can check which FETCHes happened."""

    def __init__(self, names, cursors, columns=None):
        self.names = list(names)
        self.cursors = {k: list(v) for k, v in cursors.items()}
        self.columns = columns or {}
        self.positions = {}
        self.executed = []

    @property
    def fetches(self):
        return [s for s, _ in self.executed if s.startswith("FETCH")]

    def run(self, statement, params, as_dict):
        """Returns (description, rows) for the given statement."""
        self.executed.append((statement, params))

        # The stored function call: one refcursor name per row
        if statement.startswith("SELECT * FROM"):
            return [("refcursor",)], [{"refcursor": n} if as_dict else (n,) for n in self.names]

        match = _FETCH.match(statement)
        if match is None:
            raise psycopg2.ProgrammingError(f"unexpected statement: {statement}")

        name = match.group(3).replace('""', '"')
        if name not in self.cursors:
            raise psycopg2.ProgrammingError(f'cursor "{name}" does not exist')

        # Page through the cursor's rows
        rows = self.cursors[name]
        start = self.positions.get(name, 0)
        end = len(rows) if match.group(1) == "ALL" else start + int(match.group(2))
        page = rows[start:end]
        self.positions[name] = start + len(page)

        cols = list(rows[0].keys()) if rows else self.columns.get(name, [])
        return [(c,) for c in cols], [dict(r) if as_dict else tuple(r.values()) for r in page]


class FakeCursor:
    """psycopg2-like cursor."""

    def __init__(self, server, cursor_factory=None):
        self.server = server
        self.as_dict = cursor_factory is RealDictCursor
        self.description = None
        self._rows = []

    def execute(self, statement, params=None):
        self.description, self._rows = self.server.run(statement, params, self.as_dict)

    def fetchall(self):
        return list(self._rows)

    def close(self): pass

    def __enter__(self): return self

    def __exit__(self, exc_type, exc, tb): self.close()


class FakeConn:
    """psycopg2-like connection. The transaction starts with the first statement and ends on commit/rollback."""

    def __init__(self, server):
        self.server = server
        self.closed = 0
        self.autocommit = False
        self._tx_status = _psql_ext.TRANSACTION_STATUS_IDLE
        self.info = FakeInfo()
        self.rollbacks = 0

    def cursor(self, cursor_factory=None):
        self._tx_status = _psql_ext.TRANSACTION_STATUS_INTRANS
        return FakeCursor(self.server, cursor_factory)

    def get_transaction_status(self):
        return self._tx_status

    def commit(self): self._tx_status = _psql_ext.TRANSACTION_STATUS_IDLE
    def rollback(self):
        self.rollbacks += 1
        self._tx_status = _psql_ext.TRANSACTION_STATUS_IDLE

    def close(self): self.closed = 1


class FakeAsyncCursor:
    """psycopg AsyncCursor-like cursor."""

    def __init__(self, server, row_factory=None):
        self.server = server
        self.as_dict = row_factory is dict_row
        self.description = None
        self._rows = []

    async def execute(self, query, params=None):
        self.description, self._rows = self.server.run(query, params, self.as_dict)

    async def fetchall(self):
        return list(self._rows)

    async def close(self): pass

    async def __aenter__(self): return self

    async def __aexit__(self, exc_type, exc, tb): await self.close()


class FakeInfo:
    """ConnectionInfo-like object (connection status and transaction status, libpq values)."""

    def __init__(self):
        self.status = pq.ConnStatus.OK
        self.transaction_status = pq.TransactionStatus.IDLE


class FakeAsyncConn:
    """psycopg AsyncConnection-like connection."""

    def __init__(self, server):
        self.server = server
        self.closed = False
        self.autocommit = False
        self.info = FakeInfo()
        self.rollbacks = 0

    def cursor(self, row_factory=None):
        self.info.transaction_status = pq.TransactionStatus.INTRANS
        return FakeAsyncCursor(self.server, row_factory)

    async def commit(self): self.info.transaction_status = pq.TransactionStatus.IDLE
    async def rollback(self):
        self.rollbacks += 1
        self.info.transaction_status = pq.TransactionStatus.IDLE

    async def close(self): self.closed = True


# The get_report function: returns refcursors c1 and c2
REPORT_NAMES = ["c1", "c2"]
REPORT_CURSORS = {"c1": [{"id": 1}], "c2": [{"id": 2}, {"id": 3}]}


@pytest.fixture
def make_server():
    """Factory for a FakeServer (defaults to the get_report refcursors)."""
    def _make(names=REPORT_NAMES, cursors=REPORT_CURSORS, columns=None):
        return FakeServer(names, cursors, columns)
    return _make


@pytest.fixture
def report_server(make_server):
    return make_server()


@pytest.fixture
def report_cxn(report_server):
    """A fake psycopg2 connection for the get_report function."""
    return FakeConn(report_server)


@pytest.fixture
def report_acxn(report_server):
    """A fake psycopg AsyncConnection for the get_report function."""
    return FakeAsyncConn(report_server)


@pytest.fixture
def make_cxn(make_server):
    """Factory for a fake psycopg2 connection (the FakeServer is on .server)."""
    def _make(**kwargs):
        return FakeConn(make_server(**kwargs))
    return _make


@pytest.fixture
def make_acxn(make_server):
    """Factory for a fake psycopg AsyncConnection (the FakeServer is on .server)."""
    def _make(**kwargs):
        return FakeAsyncConn(make_server(**kwargs))
    return _make
