from __future__ import annotations
from typing import Protocol, Any, Mapping, Sequence, runtime_checkable

# NOTE: rows can be tuples (default) or dict-like
Row = Any

# NOTE: parameters for the stored function call (positional or named)
Params = Sequence[Any] | Mapping[str, Any] | None


@runtime_checkable
class DBCursor(Protocol):
    """The subset of a blocking DB-API cursor (psycopg2) used to call functions and fetch refcursors."""

    description: Any | None

    def execute(
        self,
        operation: str,
        params: Sequence[Any] | Mapping[str, Any] | None = None,
    ) -> Any: ...

    def fetchall(self) -> list[Row]: ...

    # Lifecycle
    def close(self) -> None: ...
    def __enter__(self) -> "DBCursor": ...
    def __exit__(self, exc_type, exc, tb) -> None: ...


@runtime_checkable
class AsyncDBCursor(Protocol):
    """The same subset for an awaitable cursor (psycopg AsyncCursor)."""

    description: Any | None

    async def execute(
        self,
        query: str,
        params: Sequence[Any] | Mapping[str, Any] | None = None,
    ) -> Any: ...

    async def fetchall(self) -> list[Row]: ...

    # Lifecycle
    async def close(self) -> None: ...
    async def __aenter__(self) -> "AsyncDBCursor": ...
    async def __aexit__(self, exc_type, exc, tb) -> None: ...
