"""
Database Package.

Async SQLAlchemy engine and the SQL-backed stores.
"""

from .engine import (
    Base,
    create_database_engine,
    create_session_factory,
    initialize_database,
    transaction_scope,
)
from .repositories import SqlAlertStateStore, SqlExecutionLedger, SqlIndicatorStore

__all__ = [
    "Base",
    "create_database_engine",
    "create_session_factory",
    "initialize_database",
    "transaction_scope",
    "SqlAlertStateStore",
    "SqlExecutionLedger",
    "SqlIndicatorStore",
]
