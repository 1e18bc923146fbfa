"""
Database module for the billing engine.

Exports database connection utilities and the billing repository.
"""

from aac_billing.db.connection import (
    check_db_connection,
    close_db_connection,
    create_engine_for_url,
    create_session_maker,
    get_engine,
    get_session,
    get_session_maker,
    init_db,
)

__all__ = [
    "create_engine_for_url",
    "create_session_maker",
    "get_engine",
    "get_session_maker",
    "get_session",
    "init_db",
    "close_db_connection",
    "check_db_connection",
]
