import logging
import os
from typing import Any

import psycopg2.extensions as _psql_ext
from psycopg import pq

from ..exceptions import TransactionNotActive


def setup_logger(log_file_path:str, logger_name:str, min_level:int=logging.DEBUG, log_format:str='%(asctime)s - %(levelname)s: %(message)s') -> logging.Logger:
    """Sets up a logger to save logs to the given filepath."""

    # Init a logger and set the lowest level
    logger:logging.Logger = logging.getLogger(logger_name)
    logger.setLevel(min_level)

    # Prevent double logging if root logger is used
    logger.propagate = False

    # Avoid duplicate handlers if setup is called multiple times
    if not logger.handlers:

        # NOTE: default path if log file path is None or empty string
        if log_file_path == None or not log_file_path:
            log_file_path = './refcursors.log'

        # Create the output dir if it doesn't exist (a bare filename has no dir part)
        log_dir:str = os.path.dirname(log_file_path)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)

        # Create a file handler with the given format
        file_handler:logging.FileHandler = logging.FileHandler(log_file_path, encoding='utf-8')
        file_handler.setFormatter(logging.Formatter(log_format))
        logger.addHandler(file_handler)

    return logger


def _transaction_is_idle(cxn:Any) -> bool:
    """True if the connection has no transaction in progress. Works for psycopg2 connections and psycopg AsyncConnections."""

    # psycopg2
    if hasattr(cxn, "get_transaction_status"):
        return cxn.get_transaction_status() == _psql_ext.TRANSACTION_STATUS_IDLE

    # psycopg (v3): status lives on the ConnectionInfo object
    return cxn.info.transaction_status == pq.TransactionStatus.IDLE


def ensure_can_open_refcursors(cxn:Any) -> None:
    """Raises TransactionNotActive if refcursors opened by a function call on [cxn] would not survive the call, i.e.
    the connection is closed or it is in autocommit mode without an explicit transaction block."""

    if cxn is None or getattr(cxn, "closed", 1):
        raise TransactionNotActive("the connection is closed")

    if getattr(cxn, "autocommit", False) and _transaction_is_idle(cxn):
        raise TransactionNotActive("the connection is in autocommit mode")


def ensure_transaction_open(cxn:Any) -> None:
    """Raises TransactionNotActive if the transaction that opened the refcursors has ended."""

    if cxn is None or getattr(cxn, "closed", 1):
        raise TransactionNotActive("the connection is closed")

    if _transaction_is_idle(cxn):
        raise TransactionNotActive("the transaction has already ended")
