# Standard imports
import logging
from collections import deque
from typing import Any, Callable, Iterable, Sequence
import pandas as pd

# Imports for DB drivers
from psycopg2.extras import RealDictCursor
from psycopg.rows import dict_row, tuple_row

# Custom utils and objs
from ..exceptions import NoRefcursorLeftException
from ..utils.general import ensure_can_open_refcursors, ensure_transaction_open
from ..utils.sql import build_function_call, fetch_statement, names_from_rows
from .db_cursor import AsyncDBCursor, DBCursor, Params, Row
from .refcursor_types import RefcursorState, RowFormat


class _RefcursorsBase(object):
    """State shared by the blocking and the awaitable iterators: the refcursor names still to fetch and the buffered
    rows of the cursor currently being streamed. Subclasses only add the round-trips (FETCH) to the database.

    The connection is borrowed: it must stay open, inside the transaction that opened the refcursors, for as long as
    the iterator is used. The iterator never commits, rolls back or closes it.
    """

    cxn:Any                         # Borrowed connection (psycopg2 connection or psycopg AsyncConnection)
    row_format:RowFormat            # Shape of the fetched rows
    fetch_size:int|None             # None = one FETCH ALL per cursor; otherwise rows per FETCH FORWARD
    logger:logging.Logger|None      # Optional - every FETCH is logged at DEBUG


    def __init__(
            self,
            cxn:Any,
            names:Iterable[str],
            *,
            row_format:RowFormat=RowFormat.TUPLE,
            fetch_size:int|None=None,
            logger:logging.Logger|None=None
        ):

        # Validate the given params
        if names is None:
            raise ValueError("Refcursor names cannot be None (pass an empty sequence for no refcursors).")
        if fetch_size is not None and fetch_size < 1:
            raise ValueError(f"fetch_size must be a positive integer or None, got {fetch_size!r}.")

        self.cxn = cxn
        self.row_format = row_format
        self.fetch_size = fetch_size
        self.logger = logger

        # Materialize the names now so a generator is not consumed twice
        self._names:tuple[str, ...] = tuple(names)
        self._pending:deque[str] = deque(self._names)

        # Current cursor
        self._state:RefcursorState = RefcursorState.BEFORE_FIRST_CURSOR
        self._index:int = -1
        self._current:str|None = None
        self._rows:deque[Row] = deque()
        self._columns:list[str] = []
        self._cursor_done:bool = True   # True once the server has no more rows for the current cursor


    # ---- Public state ---- #
    @property
    def state(self) -> RefcursorState:
        return self._state

    @property
    def cursor_index(self) -> int|None:
        """Position of the cursor being streamed in [names], or None before the first pull and once exhausted."""
        return self._index if self._state is RefcursorState.STREAMING_CURSOR else None

    @property
    def names(self) -> tuple[str, ...]:
        """Every refcursor name returned by the function, in declaration order."""
        return self._names

    @property
    def remaining(self) -> tuple[str, ...]:
        """Refcursor names that have not been fetched yet."""
        return tuple(self._pending)

    @property
    def current(self) -> str|None:
        return self._current

    @property
    def columns(self) -> list[str]:
        """Column names of the current cursor (empty until its first FETCH)."""
        return list(self._columns)


    # ---- Helpers for moving through the cursors ---- #
    def _advance(self) -> str|None:
        """Moves to the next refcursor name. Returns it, or None (and enters EXHAUSTED) when none remain."""

        # Terminal state or nothing left
        if self._state is RefcursorState.EXHAUSTED or not self._pending:
            self._state = RefcursorState.EXHAUSTED
            self._current = None
            self._rows.clear()
            self._cursor_done = True
            return None

        self._current = self._pending.popleft()
        self._index += 1
        self._state = RefcursorState.STREAMING_CURSOR
        self._rows.clear()
        self._columns = []
        self._cursor_done = False
        return self._current


    def _needs_fetch(self) -> bool:
        """True if the current cursor's buffer is empty but the server may still hold rows for it."""
        return not self._rows and not self._cursor_done


    def _has_unread_rows(self) -> bool:
        return self._state is RefcursorState.STREAMING_CURSOR and (bool(self._rows) or not self._cursor_done)


    def _next_statement(self) -> str:
        """Builds the FETCH for the current cursor and logs it."""
        statement:str = fetch_statement(self._current, self.fetch_size)
        if self.logger is not None:
            self.logger.debug("%s: %s", type(self).__name__, statement)
        return statement


    def _load(self, rows:list[Row], description:Any|None) -> None:
        """Buffers one FETCH result for the current cursor."""

        # Column names come from the cursor description (NOTE: name is at index 0 for both drivers)
        if description:
            self._columns = [d[0] for d in description]

        self._rows.extend(rows)

        # A FETCH ALL returns everything; a page shorter than fetch_size means the cursor is drained
        self._cursor_done = self.fetch_size is None or len(rows) < self.fetch_size


    def _take_buffered(self) -> list[Row]:
        rows:list[Row] = list(self._rows)
        self._rows.clear()
        return rows


    def _no_refcursor_left(self) -> NoRefcursorLeftException:
        return NoRefcursorLeftException(
            f'All {len(self._names)} refcursor(s) have already been read.'
        )


    def _materialize(self, rows:list[Row], as_type:Callable[..., Any]|None) -> list[Any]:
        """Maps rows onto [as_type] (called with the columns as keyword arguments) when given."""
        if as_type is None:
            return rows
        return [
            as_type(**(dict(row) if isinstance(row, dict) else dict(zip(self._columns, row))))
            for row in rows
        ]


    def _as_df(self, rows:list[Row]) -> pd.DataFrame:
        """Converts the rows of one cursor into a DataFrame with that cursor's columns."""
        return pd.DataFrame.from_records(rows, columns=self._columns or None)


class Refcursors(_RefcursorsBase):
    """Blocking iterator over the rows of the refcursors returned by one stored function call (psycopg2).

        - Iterating (or calling fetchone()) streams every row of cursor 0, then cursor 1, etc.
        - read() returns all the rows of the next cursor and raises NoRefcursorLeftException when none remain
        - No FETCH is issued until rows are needed, and cursors that are never reached are never fetched
    """

    def _cursor(self) -> DBCursor:
        if self.row_format is RowFormat.DICT:
            return self.cxn.cursor(cursor_factory=RealDictCursor)
        return self.cxn.cursor()


    def _fetch(self) -> None:
        """Issues one FETCH for the current cursor."""

        # Make sure the cursors still exist
        ensure_transaction_open(self.cxn)

        statement:str = self._next_statement()
        with self._cursor() as cursor:
            cursor.execute(statement)
            self._load(cursor.fetchall(), cursor.description)


    def fetchone(self) -> Row|None:
        """Returns the next row across all the refcursors, or None once every cursor has been read."""
        while True:
            if self._rows:
                return self._rows.popleft()
            if self._needs_fetch():
                self._fetch()
                continue
            if self._advance() is None:
                return None


    def read(self, as_type:Callable[..., Any]|None=None) -> list[Any]:
        """Returns every row of the next refcursor. If a cursor is partially consumed, its unread rows are returned.

        Raises NoRefcursorLeftException if every refcursor has already been read."""

        if not self._has_unread_rows() and self._advance() is None:
            raise self._no_refcursor_left()

        # Drain the current cursor
        rows:list[Row] = self._take_buffered()
        while not self._cursor_done:
            self._fetch()
            rows.extend(self._take_buffered())

        return self._materialize(rows, as_type)


    def read_df(self) -> pd.DataFrame:
        """read() as a DataFrame, using the refcursor's column names."""
        return self._as_df(self.read())


    def read_all(self, as_type:Callable[..., Any]|None=None) -> list[list[Any]]:
        """Reads every remaining refcursor, one list of rows per cursor."""
        results:list[list[Any]] = []
        while self._has_unread_rows() or self._pending:
            results.append(self.read(as_type))
        return results


    def __iter__(self):
        return self


    def __next__(self) -> Row:
        row = self.fetchone()
        if row is None:
            raise StopIteration
        return row


class AsyncRefcursors(_RefcursorsBase):
    """Awaitable counterpart of Refcursors for psycopg AsyncConnections. Same contract, with async for, await
    fetchone(), await read(), etc."""

    def _cursor(self) -> AsyncDBCursor:
        if self.row_format is RowFormat.DICT:
            return self.cxn.cursor(row_factory=dict_row)
        return self.cxn.cursor(row_factory=tuple_row)


    async def _fetch(self) -> None:
        """Issues one FETCH for the current cursor."""

        # Make sure the cursors still exist
        ensure_transaction_open(self.cxn)

        statement:str = self._next_statement()
        async with self._cursor() as cursor:
            await cursor.execute(statement)
            self._load(await cursor.fetchall(), cursor.description)


    async def fetchone(self) -> Row|None:
        """Returns the next row across all the refcursors, or None once every cursor has been read."""
        while True:
            if self._rows:
                return self._rows.popleft()
            if self._needs_fetch():
                await self._fetch()
                continue
            if self._advance() is None:
                return None


    async def read(self, as_type:Callable[..., Any]|None=None) -> list[Any]:
        """Returns every row of the next refcursor. If a cursor is partially consumed, its unread rows are returned.

        Raises NoRefcursorLeftException if every refcursor has already been read."""

        if not self._has_unread_rows() and self._advance() is None:
            raise self._no_refcursor_left()

        rows:list[Row] = self._take_buffered()
        while not self._cursor_done:
            await self._fetch()
            rows.extend(self._take_buffered())

        return self._materialize(rows, as_type)


    async def read_df(self) -> pd.DataFrame:
        return self._as_df(await self.read())


    async def read_all(self, as_type:Callable[..., Any]|None=None) -> list[list[Any]]:
        results:list[list[Any]] = []
        while self._has_unread_rows() or self._pending:
            results.append(await self.read(as_type))
        return results


    def __aiter__(self):
        return self


    async def __anext__(self) -> Row:
        row = await self.fetchone()
        if row is None:
            raise StopAsyncIteration
        return row


    def __iter__(self):
        raise TypeError('AsyncRefcursors can only be iterated asynchronously. Did you forget to use "async for"?')


# ---- Entry points: call the function, then wrap its refcursor names ---- #
def query_refcursors(cxn:Any, function_name:str|Sequence[str], params:Params=None, **options:Any) -> Refcursors:
    """Calls the stored function [function_name] on the given psycopg2 connection and returns a Refcursors over the
    refcursor(s) it returned. [options] are passed to Refcursors (row_format, fetch_size, logger).

        NOTE:
            - The connection must not be in autocommit mode: refcursors only live until the end of the transaction
            - No rows are fetched here, only the refcursor names
    """

    # Make sure the refcursors will outlive the call
    ensure_can_open_refcursors(cxn)

    statement, bound = build_function_call(function_name, params)
    logger:logging.Logger|None = options.get("logger")
    if logger is not None:
        logger.debug("query_refcursors: %s", statement)

    with cxn.cursor() as cursor:
        cursor.execute(statement, bound)
        names:list[str] = names_from_rows(cursor.fetchall())

    return Refcursors(cxn, names, **options)


async def query_refcursors_async(acxn:Any, function_name:str|Sequence[str], params:Params=None, **options:Any) -> AsyncRefcursors:
    """Awaitable version of query_refcursors() for a psycopg AsyncConnection. Returns an AsyncRefcursors."""

    ensure_can_open_refcursors(acxn)

    statement, bound = build_function_call(function_name, params)
    logger:logging.Logger|None = options.get("logger")
    if logger is not None:
        logger.debug("query_refcursors_async: %s", statement)

    async with acxn.cursor(row_factory=tuple_row) as cursor:
        await cursor.execute(statement, bound)
        names:list[str] = names_from_rows(await cursor.fetchall())

    return AsyncRefcursors(acxn, names, **options)
