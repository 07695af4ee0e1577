
class NoRefcursorLeftException(LookupError):
    """Raised when a refcursor is requested (e.g. Refcursors.read()) but every refcursor name returned by the function
    has already been consumed. Can be built with no message, a message, or a message plus the exception that caused it."""

    def __init__(self, message:str|None=None, cause:BaseException|None=None):
        self.message = message or 'No refcursor left to read.'
        super().__init__(self.message)

        # Chain the wrapped exception the same way "raise ... from cause" would
        if cause is not None:
            self.__cause__ = cause


class DatabaseNotConnected(ConnectionError):
    """Raised when a RefcursorConnector (or AsyncRefcursorConnector) is used but does not have an active [cxn] attribute."""

    def __init__(self):
        super().__init__('The database is not connected or the connection is not healthy.')


class TransactionNotActive(RuntimeError):
    """Raised when refcursors are queried or fetched outside of an open transaction (closed connection, autocommit
    mode, or the transaction that opened the cursors has already been committed or rolled back)."""

    def __init__(self, reason:str):
        self.reason = reason or ""
        pretty_reason = f": {self.reason}" if self.reason else ""
        super().__init__(f"Refcursors can only be used inside the transaction that opened them{pretty_reason}.")
