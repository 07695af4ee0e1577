from enum import Enum


class RefcursorState(Enum):
    """Enum of the states a Refcursors iterator moves through (BEFORE_FIRST_CURSOR -> STREAMING_CURSOR -> EXHAUSTED)."""
    BEFORE_FIRST_CURSOR = 1
    STREAMING_CURSOR = 2
    EXHAUSTED = 3


class RowFormat(Enum):
    """Enum of the row shapes a refcursor can be materialized as."""
    TUPLE = 1       # Driver default (tuple per row)
    DICT = 2        # Column name -> value (psycopg2 RealDictCursor / psycopg dict_row)
