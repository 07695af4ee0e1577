from __future__ import annotations  # allow __enter__ to return RefcursorConnector

# Standard imports
import logging
from types import TracebackType
from typing import Any, Sequence

# Imports for DB drivers
import psycopg
import psycopg2 as psql
from psycopg import AsyncConnection, pq
from psycopg2.extensions import connection as PSQLConnection

# Custom utils and objs
from ..utils.general import setup_logger
from ..exceptions import DatabaseNotConnected
from .db_cursor import Params
from .refcursor_types import RowFormat
from .refcursors import AsyncRefcursors, Refcursors, query_refcursors, query_refcursors_async


class _ConnectorBase(object):
    """Configuration and logging shared by RefcursorConnector and AsyncRefcursorConnector."""

    host:str                        # PostgreSQL host
    port:int                        # PostgreSQL port; defaults to 5432
    username:str
    password:str
    database:str|None               # Database name (server default if None)
    row_format:RowFormat            # Row shape for the returned refcursor iterators
    fetch_size:int|None             # None = FETCH ALL per refcursor; otherwise the page size
    enable_logging:bool             # Optional - specify whether to enable logging for this instance; defaults to True
    logger:logging.Logger           # Logger for debug/info/etc


    def __init__(
            self,
            host:str,
            username:str,
            password:str,
            *,
            port:int|None=None,
            database:str|None=None,
            row_format:RowFormat=RowFormat.TUPLE,
            fetch_size:int|None=None,
            enable_logging:bool=True,
            log_file_path:str='./refcursors.log',
            logger_name:str='refcursors_logger',
            logger_min_level:int=logging.DEBUG,
            logger_format:str="%(asctime)s - %(levelname)s: %(message)s"
        ):

        # Set the base attributes
        self.host = host
        self.port = port if port is not None else 5432
        self.username = username
        self.password = password
        self.database = database
        self.row_format = row_format
        self.fetch_size = fetch_size
        self.enable_logging = enable_logging
        self.logger = None

        # Setup logging if configured
        if enable_logging:
            self.logger = setup_logger(
                log_file_path=log_file_path,
                logger_name=logger_name,
                min_level=logger_min_level,
                log_format=logger_format,
            )


    def _connect_kwargs(self) -> dict[str, Any]:
        """Keyword arguments understood by both psycopg2.connect() and psycopg.AsyncConnection.connect()."""
        return dict(
            dbname=self.database,
            host=self.host,
            port=self.port,
            user=self.username,
            password=self.password,
        )


    def _iterator_options(self) -> dict[str, Any]:
        """Options passed through to every Refcursors/AsyncRefcursors this connector creates."""
        return dict(
            row_format=self.row_format,
            fetch_size=self.fetch_size,
            logger=self.logger if self.enable_logging else None,
        )


    # ---- Helper functions for standardizing logging ---- #
    def _log(
        self,
        level:int,
        fmt:str,
        *args,
        exc:BaseException|None=None,
        stacklevel:int=2,
    ) -> None:
        """Helper func to standardize logging format (or do nothing if not [self.enable_logging] or not self.logger).
        Log format is: "[calling_function]: [message|Exception]" """

        # Check if enable logging is True
        if not getattr(self, "enable_logging", False): return

        # Make sure self.logger is not None
        logger:logging.Logger = getattr(self, "logger", None)
        if logger is None: return

        # Write to the log
        logger.log(level, fmt, *args, exc_info=exc, stacklevel=stacklevel)


    def log_debug(self, calling_func:str, message:str, stacklevel:int=2) -> None:
        """Logs a DEBUG message."""
        self._log(logging.DEBUG, "%s: %s", calling_func, message, stacklevel=stacklevel)


    def log_warning(self, calling_func:str, message:str, stacklevel:int=2) -> None:
        """Logs a WARNING message."""
        self._log(logging.WARNING, "%s error (non-critical): %s", calling_func, message, stacklevel=stacklevel)


    def log_error(self, calling_func:str, exception:Exception, stacklevel:int=2) -> None:
        """Logs an ERROR message."""
        self._log(logging.ERROR, "%s failed: %s - %s", calling_func, type(exception).__name__, exception, exc=exception, stacklevel=stacklevel)


class RefcursorConnector(_ConnectorBase):
    """Owns a blocking psycopg2 connection and calls refcursor-returning functions on it.

    The connection is opened with autocommit off, so the transaction started by query_refcursors() stays open (and
    the refcursors with it) until commit() or rollback() is called.
    """

    cxn:PSQLConnection|None         # The database connection object


    def __init__(self, host:str, username:str, password:str, **kwargs):
        super().__init__(host, username, password, **kwargs)

        # Connect
        try:
            self.cxn = psql.connect(**self._connect_kwargs())

        # Handle exceptions
        except Exception as e:
            self.log_error('__init__()', e)
            self.cxn = None


    # ---- Functions for checking if the database connection is running and healthy ---- #
    def _ensure_cxn(self) -> None:
        """Raises a DatabaseNotConnected exception if the DB is not connected."""
        if not self._check_connection():
            self.log_error('_ensure_cxn()', DatabaseNotConnected())
            raise DatabaseNotConnected()


    def _check_connection(self) -> bool:
        """Returns True if the connection is running and is healthy, False otherwise."""
        if self.cxn is None: return False

        # NOTE: psycopg2 exposes libpq's PQstatus on cxn.info.status, the same values as psycopg's pq.ConnStatus
        status = getattr(getattr(self.cxn, "info", None), "status", pq.ConnStatus.OK)
        return getattr(self.cxn, "closed", 1) == 0 and status != pq.ConnStatus.BAD


    def is_connected(self) -> bool:
        """Public method for checking if the DB is connected and the connection is healthy (does not raise Exceptions)."""
        return self._check_connection()


    # ---- Refcursors ---- #
    def query_refcursors(self, function_name:str|Sequence[str], params:Params=None) -> Refcursors:
        """Calls [function_name] with [params] and returns a Refcursors over the refcursor(s) it returned.
        Errors from the driver are logged and re-raised unchanged."""

        # Check if the cxn is active
        self._ensure_cxn()

        try:
            refcursors:Refcursors = query_refcursors(self.cxn, function_name, params, **self._iterator_options())
        except Exception as e:
            self.log_error('query_refcursors()', e)
            raise

        self.log_debug('query_refcursors()', f'"{function_name}" returned {len(refcursors.names)} refcursor(s).')
        return refcursors


    # ---- Transaction and lifecycle ---- #
    def commit(self, rollback_on_error:bool=True) -> None:
        """Commits the current transaction (closing its refcursors) and logs any errors if they occur."""
        self._ensure_cxn()
        try: self.cxn.commit()
        except Exception as e:
            self.log_error('commit()', e)
            if rollback_on_error:
                self.rollback()
            raise


    def rollback(self) -> None:
        """Rolls back the current transaction (closing its refcursors)."""
        self._ensure_cxn()
        self.cxn.rollback()
        self.log_warning('rollback()', 'Rolled back changes.')


    def close(self) -> None:
        """Closes the connection (a no-op if it was never opened or is already closed)."""
        if self.cxn is None or self.cxn.closed: return
        self.cxn.close()
        self.log_debug('close()', 'Connection closed.')


    def __enter__(self) -> RefcursorConnector:
        return self


    def __exit__(self, exc_type: type[BaseException] | None, exc_val: BaseException | None, traceback: TracebackType | None) -> None:
        self.close()


class AsyncRefcursorConnector(_ConnectorBase):
    """Awaitable counterpart of RefcursorConnector built on a psycopg AsyncConnection.

    Nothing is opened by the constructor: call ``await connector.connect()`` or use ``async with``.
    """

    cxn:AsyncConnection|None        # The database connection object


    def __init__(self, host:str, username:str, password:str, **kwargs):
        super().__init__(host, username, password, **kwargs)
        self.cxn = None


    async def connect(self) -> AsyncRefcursorConnector:
        """Opens the connection. Failures are logged and leave [cxn] as None."""
        try:
            self.cxn = await psycopg.AsyncConnection.connect(**self._connect_kwargs())
        except Exception as e:
            self.log_error('connect()', e)
            self.cxn = None
        return self


    # ---- Functions for checking if the database connection is running and healthy ---- #
    def _ensure_cxn(self) -> None:
        """Raises a DatabaseNotConnected exception if the DB is not connected."""
        if not self._check_connection():
            self.log_error('_ensure_cxn()', DatabaseNotConnected())
            raise DatabaseNotConnected()


    def _check_connection(self) -> bool:
        """Returns True if the connection is running and is healthy, False otherwise."""
        if self.cxn is None or self.cxn.closed: return False
        return self.cxn.info.status != pq.ConnStatus.BAD


    def is_connected(self) -> bool:
        """Public method for checking if the DB is connected and the connection is healthy (does not raise Exceptions)."""
        return self._check_connection()


    # ---- Refcursors ---- #
    async def query_refcursors(self, function_name:str|Sequence[str], params:Params=None) -> AsyncRefcursors:
        """Calls [function_name] with [params] and returns an AsyncRefcursors over the refcursor(s) it returned.
        Errors from the driver are logged and re-raised unchanged."""

        self._ensure_cxn()

        try:
            refcursors:AsyncRefcursors = await query_refcursors_async(self.cxn, function_name, params, **self._iterator_options())
        except Exception as e:
            self.log_error('query_refcursors()', e)
            raise

        self.log_debug('query_refcursors()', f'"{function_name}" returned {len(refcursors.names)} refcursor(s).')
        return refcursors


    # ---- Transaction and lifecycle ---- #
    async def commit(self, rollback_on_error:bool=True) -> None:
        """Commits the current transaction (closing its refcursors) and logs any errors if they occur."""
        self._ensure_cxn()
        try: await self.cxn.commit()
        except Exception as e:
            self.log_error('commit()', e)
            if rollback_on_error:
                await self.rollback()
            raise


    async def rollback(self) -> None:
        """Rolls back the current transaction (closing its refcursors)."""
        self._ensure_cxn()
        await self.cxn.rollback()
        self.log_warning('rollback()', 'Rolled back changes.')


    async def close(self) -> None:
        if self.cxn is None or self.cxn.closed: return
        await self.cxn.close()
        self.log_debug('close()', 'Connection closed.')


    async def __aenter__(self) -> AsyncRefcursorConnector:
        if self.cxn is None:
            await self.connect()
        return self


    async def __aexit__(self, exc_type: type[BaseException] | None, exc_val: BaseException | None, traceback: TracebackType | None) -> None:
        await self.close()
