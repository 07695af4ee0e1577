from .general import setup_logger, ensure_can_open_refcursors, ensure_transaction_open
from .sql import quote_identifier, quote_name, quote_cursor_name, fetch_statement, build_function_call, names_from_rows
