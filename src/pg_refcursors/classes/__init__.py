from .refcursor_types import RefcursorState, RowFormat
from .refcursors import AsyncRefcursors, Refcursors, query_refcursors, query_refcursors_async
from .refcursor_connector import AsyncRefcursorConnector, RefcursorConnector
