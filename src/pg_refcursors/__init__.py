from .classes import (
    AsyncRefcursorConnector,
    AsyncRefcursors,
    RefcursorConnector,
    Refcursors,
    RefcursorState,
    RowFormat,
    query_refcursors,
    query_refcursors_async,
)
from .exceptions import DatabaseNotConnected, NoRefcursorLeftException, TransactionNotActive

__all__ = [
    "AsyncRefcursorConnector",
    "AsyncRefcursors",
    "DatabaseNotConnected",
    "NoRefcursorLeftException",
    "RefcursorConnector",
    "Refcursors",
    "RefcursorState",
    "RowFormat",
    "TransactionNotActive",
    "query_refcursors",
    "query_refcursors_async",
]
